"""
Allowlisted shell command execution inside the sandbox.
"""

from sandbox_tools.shell.classifier import SafetyClassifier
from sandbox_tools.shell.exceptions import (
    CommandBlockedError,
    CommandError,
    CommandsDisabledError,
)
from sandbox_tools.shell.models import TIMEOUT_EXIT_CODE, CommandResult, CommandVerdict
from sandbox_tools.shell.runner import CommandRunner

__all__ = [
    "SafetyClassifier",
    "CommandBlockedError",
    "CommandError",
    "CommandsDisabledError",
    "TIMEOUT_EXIT_CODE",
    "CommandResult",
    "CommandVerdict",
    "CommandRunner",
]
