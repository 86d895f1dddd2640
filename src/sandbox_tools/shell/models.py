"""
Shell-command data models.
"""

from typing import Optional

from pydantic import BaseModel, Field

TIMEOUT_EXIT_CODE = 124


class CommandVerdict(BaseModel):
    """Outcome of classifying a command string."""

    command: str = Field(description="The command as given")
    allowed: bool = Field(description="Whether the command may run")
    reason: str = Field(description="Why it was allowed or blocked")
    verbs: list[str] = Field(default_factory=list, description="Verbs found, in order")

    def __bool__(self) -> bool:
        return self.allowed


class CommandResult(BaseModel):
    """Outcome of running a command."""

    command: str = Field(description="The command that ran")
    working_directory: str = Field(description="Working directory (forward slashes)")
    exit_code: int = Field(description="Process exit code (124 on timeout)")
    stdout: str = Field(default="", description="Captured standard output")
    stderr: str = Field(default="", description="Captured standard error")
    duration_ms: int = Field(description="Wall-clock duration in milliseconds")
    timed_out: bool = Field(default=False, description="Whether the time budget ran out")
    pid: Optional[int] = Field(default=None, description="Process id, if spawned")

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    def to_dict(self) -> dict:
        """Serialize for a tool response."""
        return {
            "command": self.command,
            "working_directory": self.working_directory,
            "exit_code": self.exit_code,
            "duration_ms": self.duration_ms,
            "stdout": self.stdout or "(no output)",
            "stderr": self.stderr or "(no errors)",
            "timed_out": self.timed_out,
            "success": self.success,
        }
