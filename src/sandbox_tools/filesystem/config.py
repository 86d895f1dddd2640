"""
Configuration for the sandboxed filesystem and command tools.
"""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator

DEFAULT_ROOT = Path.home() / "Desktop" / "Otak"


class SandboxConfig(BaseModel):
    """
    Configuration for the sandbox root and the limits applied inside it.

    Every path handed to the tools is confined to ``root``. Search, tail
    and command execution are bounded by the limits below.
    """

    root: Path = Field(
        default=DEFAULT_ROOT,
        description="Sandbox root directory (resolved to an absolute path)",
    )

    create_root: bool = Field(
        default=True,
        description="Create the sandbox root on startup if it does not exist",
    )

    max_file_size_bytes: int = Field(
        default=10_000_000,  # 10 MB
        ge=0,
        description="Maximum file size that can be read or grepped (bytes)",
    )

    max_write_size_bytes: int = Field(
        default=10_000_000,  # 10 MB
        ge=0,
        description="Maximum size for content being written (bytes)",
    )

    glob_result_limit: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Maximum number of glob/search results returned",
    )

    grep_result_limit: int = Field(
        default=200,
        ge=1,
        le=10000,
        description="Maximum number of grep matches returned",
    )

    max_search_depth: int = Field(
        default=10,
        ge=1,
        le=64,
        description="Directory depth at which recursive traversal stops",
    )

    search_concurrency: int = Field(
        default=32,
        ge=1,
        le=1024,
        description="Maximum number of directories scanned concurrently",
    )

    tail_lines: int = Field(
        default=10,
        ge=1,
        le=10000,
        description="Number of trailing lines in a tail snapshot",
    )

    stream_queue_size: int = Field(
        default=256,
        ge=1,
        description="Capacity of the event queue behind each stream session",
    )

    watch_debounce_ms: int = Field(
        default=50,
        ge=0,
        description="Debounce window for grouping raw change notifications",
    )

    allow_commands: bool = Field(
        default=True,
        description="Allow shell command execution (allowlisted commands only)",
    )

    command_timeout_seconds: float = Field(
        default=30.0,
        ge=1.0,
        le=3600.0,
        description="Time budget for a single command before it is killed",
    )

    @field_validator("root", mode="before")
    @classmethod
    def resolve_root(cls, v):
        """Expand ``~`` and resolve the root to a canonical absolute path."""
        if v is None or v == "":
            return DEFAULT_ROOT.resolve()
        return Path(v).expanduser().resolve()

    def ensure_root(self) -> Path:
        """
        Create the sandbox root if configured to do so.

        Returns:
            The sandbox root path
        """
        if self.create_root:
            self.root.mkdir(parents=True, exist_ok=True)
        return self.root

    def __repr__(self) -> str:
        """Compact representation."""
        return (
            f"SandboxConfig("
            f"root={str(self.root)!r}, "
            f"allow_commands={self.allow_commands}, "
            f"max_depth={self.max_search_depth})"
        )
