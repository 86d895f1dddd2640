"""
Sandboxed filesystem interface.

This module confines every path to a single sandbox root and provides
reading, writing, exact-text editing, bounded search and streaming
(tail/watch) on top of that confinement.
"""

from sandbox_tools.filesystem.config import SandboxConfig
from sandbox_tools.filesystem.confiner import PathConfiner, ResolvedPath
from sandbox_tools.filesystem.editor import EditTransaction
from sandbox_tools.filesystem.exceptions import (
    AccessDeniedError,
    EditError,
    EditTextNotFoundError,
    FileSizeLimitExceededError,
    FileSystemError,
    InvalidEditError,
    InvalidPathError,
    SearchError,
)
from sandbox_tools.filesystem.models import (
    EditOp,
    EditSummary,
    SearchResults,
    StreamEvent,
    StreamEventType,
    StreamKind,
)
from sandbox_tools.filesystem.reader import SandboxFileReader
from sandbox_tools.filesystem.search import SandboxSearchEngine
from sandbox_tools.filesystem.streams import StreamEngine, StreamSession
from sandbox_tools.filesystem.writer import SandboxFileWriter

__all__ = [
    "SandboxConfig",
    "PathConfiner",
    "ResolvedPath",
    "EditTransaction",
    "AccessDeniedError",
    "EditError",
    "EditTextNotFoundError",
    "FileSizeLimitExceededError",
    "FileSystemError",
    "InvalidEditError",
    "InvalidPathError",
    "SearchError",
    "EditOp",
    "EditSummary",
    "SearchResults",
    "StreamEvent",
    "StreamEventType",
    "StreamKind",
    "SandboxFileReader",
    "SandboxSearchEngine",
    "StreamEngine",
    "StreamSession",
    "SandboxFileWriter",
]
