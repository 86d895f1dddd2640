"""
Exceptions for sandboxed filesystem operations.
"""

from typing import Optional


class FileSystemError(Exception):
    """Base exception for filesystem operations."""

    pass


class AccessDeniedError(FileSystemError):
    """Raised when a path resolves outside the sandbox root."""

    def __init__(
        self,
        path: str,
        sandbox_root: Optional[str] = None,
        reason: str = "Access denied: path outside sandbox root",
    ):
        self.path = path
        self.sandbox_root = sandbox_root
        self.reason = reason
        message = f"{reason}: {path}"
        if sandbox_root:
            message += f" (sandbox root: {sandbox_root})"
        super().__init__(message)


class FileSizeLimitExceededError(FileSystemError):
    """Raised when a file exceeds the size limit."""

    def __init__(self, path: str, size: int, limit: int):
        self.path = path
        self.size = size
        self.limit = limit
        super().__init__(f"File too large ({size} bytes > {limit} bytes): {path}")


class InvalidPathError(FileSystemError):
    """Raised when a path is invalid or malformed."""

    def __init__(self, path: str, reason: str = "Invalid path"):
        self.path = path
        self.reason = reason
        super().__init__(f"{reason}: {path!r}")


class SearchError(FileSystemError):
    """Raised when a search operation fails."""

    pass


class EditError(FileSystemError):
    """Base exception for edit transactions."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(message)


class EditTextNotFoundError(EditError):
    """Raised when an edit's old text is absent; nothing has been written."""

    def __init__(self, path: str, index: int):
        self.index = index
        super().__init__(
            path, f"Text for edit {index} not found in {path}; no changes written"
        )


class InvalidEditError(EditError):
    """Raised when an edit request is malformed (e.g. empty old text)."""

    pass
