"""
Shell-command exceptions.

This module defines exceptions raised when classifying or running commands.
"""

from typing import Optional


class CommandError(Exception):
    """Base exception for all command-related errors."""

    def __init__(self, message: str, *, command: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.command = command

    def __str__(self) -> str:
        if self.command:
            return f"{self.message} command='{self.command}'"
        return self.message


class CommandBlockedError(CommandError):
    """Raised when the safety classifier rejects a command; nothing is spawned."""

    def __init__(self, command: str, reason: str):
        self.reason = reason
        super().__init__(
            f"Command not allowed for security reasons: {reason}", command=command
        )


class CommandsDisabledError(CommandError):
    """Raised when command execution is turned off in the configuration."""

    pass
