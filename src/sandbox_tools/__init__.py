"""
Sandbox Tools - confined filesystem and shell tools for agents.

This package exposes a fixed set of tools (list, read, write, edit,
search, tail/watch, execute, ...) whose every path is confined to a single
sandbox root directory, plus a fail-closed allowlist for shell commands.
"""

__version__ = "0.1.0"

from sandbox_tools.filesystem import (
    AccessDeniedError,
    EditOp,
    EditTextNotFoundError,
    EditTransaction,
    FileSizeLimitExceededError,
    FileSystemError,
    InvalidEditError,
    InvalidPathError,
    PathConfiner,
    SandboxConfig,
    SandboxFileReader,
    SandboxFileWriter,
    SandboxSearchEngine,
    SearchError,
    SearchResults,
    StreamEngine,
    StreamEvent,
    StreamSession,
)

from sandbox_tools.shell import (
    CommandBlockedError,
    CommandError,
    CommandResult,
    CommandRunner,
    CommandVerdict,
    SafetyClassifier,
)

from sandbox_tools.settings import SandboxToolsSettings

from sandbox_tools.tools import SandboxTools, ToolName, ToolResult

__all__ = [
    # Version
    "__version__",
    # Filesystem
    "SandboxConfig",
    "PathConfiner",
    "SandboxFileReader",
    "SandboxFileWriter",
    "SandboxSearchEngine",
    "EditTransaction",
    "EditOp",
    "SearchResults",
    "StreamEngine",
    "StreamEvent",
    "StreamSession",
    # Filesystem errors
    "FileSystemError",
    "AccessDeniedError",
    "InvalidPathError",
    "FileSizeLimitExceededError",
    "SearchError",
    "EditTextNotFoundError",
    "InvalidEditError",
    # Shell
    "SafetyClassifier",
    "CommandRunner",
    "CommandVerdict",
    "CommandResult",
    "CommandError",
    "CommandBlockedError",
    # Settings
    "SandboxToolsSettings",
    # Tools
    "SandboxTools",
    "ToolName",
    "ToolResult",
]
