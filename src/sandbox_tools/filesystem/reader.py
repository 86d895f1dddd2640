"""
Read-only operations inside the sandbox: list, read, stat and tail.
"""

import logging
import os
import stat as stat_module
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from sandbox_tools.filesystem.config import SandboxConfig
from sandbox_tools.filesystem.confiner import PathConfiner, ResolvedPath
from sandbox_tools.filesystem.exceptions import FileSizeLimitExceededError
from sandbox_tools.filesystem.models import (
    DirectoryEntry,
    EntryKind,
    FileContent,
    FileStat,
    TailSnapshot,
)

logger = logging.getLogger(__name__)


def utc_timestamp(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


def entry_kind(st: os.stat_result) -> EntryKind:
    """Classify a (non-following) stat result."""
    if stat_module.S_ISLNK(st.st_mode):
        return EntryKind.SYMLINK
    if stat_module.S_ISDIR(st.st_mode):
        return EntryKind.DIRECTORY
    if stat_module.S_ISREG(st.st_mode):
        return EntryKind.FILE
    return EntryKind.OTHER


def read_text(path: Path, encoding: str = "utf-8") -> str:
    """Read a whole file without newline translation."""
    with open(path, "r", encoding=encoding, newline="") as f:
        return f.read()


class SandboxFileReader:
    """
    Read-only file access confined to the sandbox root.

    Usage:
        config = SandboxConfig(root=Path("/srv/sandbox"))
        reader = SandboxFileReader(config, PathConfiner(config.root))

        content = reader.read_file("notes/todo.txt")
        print(content.total_lines)
    """

    def __init__(self, config: SandboxConfig, confiner: PathConfiner):
        """
        Initialize the file reader.

        Args:
            config: Sandbox configuration
            confiner: Path confiner owning the sandbox root
        """
        self.config = config
        self.confiner = confiner

    def _resolve(self, path: Union[str, Path, ResolvedPath]) -> ResolvedPath:
        if isinstance(path, ResolvedPath):
            return path
        return self.confiner.resolve(path)

    def _resolve_file(self, path: Union[str, Path, ResolvedPath]) -> ResolvedPath:
        resolved = self._resolve(path)
        if not resolved.path.exists():
            raise FileNotFoundError(f"File not found: {resolved.relative}")
        if resolved.path.is_dir():
            raise IsADirectoryError(f"Path is a directory: {resolved.relative}")

        file_size = resolved.path.stat().st_size
        if file_size > self.config.max_file_size_bytes:
            logger.warning(
                f"File too large: {resolved.path} ({file_size} bytes > "
                f"{self.config.max_file_size_bytes} bytes)"
            )
            raise FileSizeLimitExceededError(
                resolved.relative, file_size, self.config.max_file_size_bytes
            )
        return resolved

    def list_directory(
        self, path: Union[str, Path, ResolvedPath] = "."
    ) -> list[DirectoryEntry]:
        """
        List the entries of a directory.

        Args:
            path: Directory to list (default: sandbox root)

        Returns:
            Entries sorted by name

        Raises:
            AccessDeniedError: If the path escapes the sandbox
            FileNotFoundError: If the directory doesn't exist
            NotADirectoryError: If the path is not a directory
        """
        resolved = self._resolve(path)
        if not resolved.path.exists():
            raise FileNotFoundError(f"Directory not found: {resolved.relative}")
        if not resolved.path.is_dir():
            raise NotADirectoryError(f"Not a directory: {resolved.relative}")

        entries = []
        with os.scandir(resolved.path) as it:
            for entry in it:
                try:
                    st = entry.stat(follow_symlinks=False)
                except OSError as e:
                    logger.debug(f"Skipping {entry.path}: {e}")
                    continue
                entries.append(
                    DirectoryEntry(
                        name=entry.name,
                        kind=entry_kind(st),
                        size=st.st_size,
                        modified=utc_timestamp(st.st_mtime),
                    )
                )

        entries.sort(key=lambda e: e.name)
        logger.debug(f"Listed {len(entries)} entries in {resolved.path}")
        return entries

    def read_file(
        self,
        path: Union[str, Path, ResolvedPath],
        offset: Optional[int] = None,
        limit: Optional[int] = None,
        encoding: str = "utf-8",
    ) -> FileContent:
        """
        Read a text file, optionally a window of its lines.

        Without ``offset`` and ``limit`` the content is returned unchanged,
        byte for byte as decoded text.

        Args:
            path: File to read
            offset: First line to return (1-based)
            limit: Maximum number of lines to return
            encoding: Text encoding (default: utf-8)

        Returns:
            FileContent with the selected lines and line counters

        Raises:
            AccessDeniedError: If the path escapes the sandbox
            FileNotFoundError: If the file doesn't exist
            IsADirectoryError: If the path is a directory
            FileSizeLimitExceededError: If the file is too large
            UnicodeDecodeError: If the file can't be decoded
        """
        resolved = self._resolve_file(path)
        text = read_text(resolved.path, encoding=encoding)
        lines = text.splitlines(keepends=True)
        total = len(lines)

        if offset is None and limit is None:
            logger.debug(f"Read file: {resolved.path} ({len(text)} chars)")
            return FileContent(
                content=text, total_lines=total, start_line=1 if total else 0, end_line=total
            )

        start = max(1, offset or 1)
        selected = lines[start - 1 :]
        if limit is not None:
            selected = selected[: max(0, limit)]

        end = start + len(selected) - 1 if selected else start - 1
        logger.debug(f"Read lines {start}-{end} of {resolved.path}")
        return FileContent(
            content="".join(selected),
            total_lines=total,
            start_line=start,
            end_line=end,
        )

    def stat(self, path: Union[str, Path, ResolvedPath]) -> FileStat:
        """
        Get metadata for a file or directory.

        Raises:
            AccessDeniedError: If the path escapes the sandbox
            FileNotFoundError: If the path doesn't exist
        """
        resolved = self._resolve(path)
        try:
            st = resolved.path.stat()
        except FileNotFoundError:
            raise FileNotFoundError(f"Path not found: {resolved.relative}")

        created = getattr(st, "st_birthtime", None) or st.st_ctime
        return FileStat(
            path=resolved.relative,
            kind=entry_kind(st),
            size=st.st_size,
            created=utc_timestamp(created),
            modified=utc_timestamp(st.st_mtime),
            accessed=utc_timestamp(st.st_atime),
            permissions=oct(stat_module.S_IMODE(st.st_mode))[2:],
        )

    def tail(
        self, path: Union[str, Path, ResolvedPath], lines: Optional[int] = None
    ) -> TailSnapshot:
        """
        Return the last lines of a file and its total line count.

        Args:
            path: File to read
            lines: Number of trailing lines (default: config.tail_lines)
        """
        count = lines if lines is not None else self.config.tail_lines
        resolved = self._resolve_file(path)
        all_lines = read_text(resolved.path).splitlines()
        tail = all_lines[-count:] if count > 0 else []
        return TailSnapshot(lines=tail, total_lines=len(all_lines))
