"""
Path confinement for the sandbox root.

Every path argument handed to the tools passes through
:class:`PathConfiner` before it touches the filesystem.
"""

import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional, Union

from sandbox_tools.filesystem.exceptions import AccessDeniedError, InvalidPathError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedPath:
    """
    A canonical absolute path checked against the sandbox root.

    Attributes:
        path: Canonical absolute path (symlinks resolved)
        root: The sandbox root snapshot the path was checked against
        inside_sandbox: Whether ``path`` is the root or a descendant of it
    """

    path: Path
    root: Path
    inside_sandbox: bool

    @property
    def relative(self) -> str:
        """Path relative to the root with forward slashes ('.' for the root)."""
        if not self.inside_sandbox:
            return to_posix(self.path)
        rel = self.path.relative_to(self.root)
        return rel.as_posix() if rel.parts else "."

    @property
    def display(self) -> str:
        """Absolute path with forward slashes."""
        return to_posix(self.path)

    @property
    def is_root(self) -> bool:
        return self.path == self.root

    def __fspath__(self) -> str:
        return str(self.path)

    def __str__(self) -> str:
        return self.display


def to_posix(path: Union[str, Path]) -> str:
    """Normalize path separators to forward slashes."""
    return str(path).replace("\\", "/")


def is_within(path: Path, directory: Path) -> bool:
    """Check if path is within directory (segment-aware)."""
    try:
        path.relative_to(directory)
        return True
    except ValueError:
        return False


def expand_home(request: str) -> str:
    """Expand a leading ``~`` to the process home directory."""
    if request == "~" or request.startswith("~/") or request.startswith("~\\"):
        return str(Path.home()) + request[1:]
    return request


class PathConfiner:
    """
    Resolves caller-supplied paths to canonical paths inside the sandbox root.

    The root is held by the instance, not by module state. It can be
    reassigned with :meth:`change_root`, which swaps the reference under a
    lock; readers take one snapshot of :attr:`root` per operation.

    Usage:
        confiner = PathConfiner(Path("/srv/sandbox"))

        resolved = confiner.resolve("notes/todo.txt")
        print(resolved.path)  # /srv/sandbox/notes/todo.txt

        confiner.resolve("../../etc/passwd")  # raises AccessDeniedError
    """

    def __init__(self, root: Union[str, Path]):
        """
        Initialize the confiner.

        Args:
            root: Sandbox root directory
        """
        self._root = Path(expand_home(str(root))).resolve()
        self._lock = threading.Lock()

    @property
    def root(self) -> Path:
        """Current sandbox root (canonical)."""
        return self._root

    def resolve(self, request: Union[str, Path], root: Optional[Path] = None) -> ResolvedPath:
        """
        Resolve a path request and ensure it stays inside the sandbox.

        Args:
            request: Absolute or root-relative path
            root: Root snapshot to check against (default: current root)

        Returns:
            ResolvedPath inside the sandbox

        Raises:
            InvalidPathError: If the request is empty or malformed
            AccessDeniedError: If the canonical path escapes the root
        """
        resolved = self.check(request, root=root)
        if not resolved.inside_sandbox:
            logger.warning(
                f"Access denied to {resolved.path} (requested {request!r}, "
                f"root {resolved.root})"
            )
            raise AccessDeniedError(
                to_posix(request), sandbox_root=to_posix(resolved.root)
            )
        return resolved

    def check(self, request: Union[str, Path], root: Optional[Path] = None) -> ResolvedPath:
        """
        Canonicalize a request without raising on escape.

        Returns:
            ResolvedPath whose ``inside_sandbox`` reports the verdict
        """
        root = root if root is not None else self._root
        text = os.fspath(request)

        if not text or not text.strip():
            raise InvalidPathError(text, "Empty path")
        if "\x00" in text:
            raise InvalidPathError(text, "Path contains a NUL byte")

        candidate = Path(expand_home(text))
        if not candidate.is_absolute():
            candidate = root / candidate

        try:
            canonical = candidate.resolve(strict=False)
        except (OSError, RuntimeError) as e:
            raise InvalidPathError(text, f"Cannot resolve path: {e}")

        return ResolvedPath(
            path=canonical, root=root, inside_sandbox=is_within(canonical, root)
        )

    def is_inside(self, request: Union[str, Path]) -> bool:
        """Check whether a request resolves inside the sandbox."""
        try:
            return self.check(request).inside_sandbox
        except InvalidPathError:
            return False

    def relative(self, path: Path, root: Optional[Path] = None) -> str:
        """Express an absolute path relative to the root, with forward slashes."""
        root = root if root is not None else self._root
        try:
            rel = PurePosixPath(Path(path).relative_to(root).as_posix())
        except ValueError:
            return to_posix(path)
        return str(rel) if rel.parts else "."

    def change_root(self, request: Union[str, Path]) -> Path:
        """
        Move the sandbox root to a directory inside the current root.

        Args:
            request: Absolute or root-relative directory path

        Returns:
            The new root

        Raises:
            AccessDeniedError: If the target escapes the current root
            NotADirectoryError: If the target is not an existing directory
        """
        with self._lock:
            resolved = self.resolve(request)
            if not resolved.path.is_dir():
                raise NotADirectoryError(f"Not a directory: {resolved.display}")
            old_root = self._root
            self._root = resolved.path
        logger.info(f"Sandbox root changed from {old_root} to {resolved.path}")
        return resolved.path

    def __repr__(self) -> str:
        return f"PathConfiner(root={str(self._root)!r})"
