"""
Mutating operations inside the sandbox: write, mkdir, delete, rename, copy.
"""

import logging
import shutil
from pathlib import Path
from typing import Optional, Union

from sandbox_tools.filesystem.config import SandboxConfig
from sandbox_tools.filesystem.confiner import PathConfiner, ResolvedPath
from sandbox_tools.filesystem.exceptions import (
    AccessDeniedError,
    FileSizeLimitExceededError,
)

logger = logging.getLogger(__name__)


def write_text(path: Path, content: str, encoding: str = "utf-8") -> None:
    """Write a whole file in one call without newline translation."""
    with open(path, "w", encoding=encoding, newline="") as f:
        f.write(content)


class SandboxFileWriter:
    """
    File and directory mutation confined to the sandbox root.

    The sandbox root itself can never be deleted, renamed or overwritten.

    Usage:
        config = SandboxConfig(root=Path("/srv/sandbox"))
        writer = SandboxFileWriter(config, PathConfiner(config.root))

        writer.write_file("out/report.txt", "Hello, world!")
        writer.rename("out/report.txt", "out/final.txt")
    """

    def __init__(self, config: SandboxConfig, confiner: PathConfiner):
        """
        Initialize the file writer.

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

    def _resolve_pair(self, first, second) -> tuple[ResolvedPath, ResolvedPath]:
        """Resolve two requests against the same root snapshot."""
        root = self.confiner.root
        resolved = []
        for path in (first, second):
            if isinstance(path, ResolvedPath):
                resolved.append(path)
            else:
                resolved.append(self.confiner.resolve(path, root=root))
        return resolved[0], resolved[1]

    def _refuse_root(self, resolved: ResolvedPath, action: str) -> None:
        if resolved.is_root:
            logger.warning(f"Refusing to {action} the sandbox root {resolved.path}")
            raise AccessDeniedError(
                resolved.display,
                sandbox_root=resolved.display,
                reason=f"Cannot {action} the sandbox root",
            )

    def write_file(
        self,
        path: Union[str, Path, ResolvedPath],
        content: str,
        encoding: str = "utf-8",
        create_parents: bool = True,
    ) -> ResolvedPath:
        """
        Write content to a file, replacing any existing content.

        Args:
            path: File to write
            content: Content to write
            encoding: Text encoding (default: utf-8)
            create_parents: Create parent directories if they don't exist

        Returns:
            The resolved path written

        Raises:
            AccessDeniedError: If the path escapes the sandbox
            FileSizeLimitExceededError: If the content is too large
            IsADirectoryError: If the path is a directory
        """
        resolved = self._resolve(path)
        self._refuse_root(resolved, "overwrite")

        size = len(content.encode(encoding))
        if size > self.config.max_write_size_bytes:
            logger.warning(
                f"Content too large: {size} bytes > "
                f"{self.config.max_write_size_bytes} bytes"
            )
            raise FileSizeLimitExceededError(
                resolved.relative, size, self.config.max_write_size_bytes
            )

        if resolved.path.is_dir():
            raise IsADirectoryError(f"Path is a directory: {resolved.relative}")

        if create_parents and not resolved.path.parent.exists():
            resolved.path.parent.mkdir(parents=True, exist_ok=True)
            logger.debug(f"Created parent directories for {resolved.path}")

        write_text(resolved.path, content, encoding=encoding)
        logger.info(f"Wrote file: {resolved.path} ({size} bytes)")
        return resolved

    def create_directory(
        self, path: Union[str, Path, ResolvedPath], parents: bool = True
    ) -> ResolvedPath:
        """
        Create a directory (and its parents).

        Raises:
            AccessDeniedError: If the path escapes the sandbox
            FileExistsError: If a non-directory already exists at the path
        """
        resolved = self._resolve(path)
        resolved.path.mkdir(parents=parents, exist_ok=True)
        logger.info(f"Created directory: {resolved.path}")
        return resolved

    def delete(self, path: Union[str, Path, ResolvedPath]) -> ResolvedPath:
        """
        Delete a file, or a directory with all of its contents.

        A symlink is removed itself; its target is left alone.

        Raises:
            AccessDeniedError: If the path escapes the sandbox or is the root
            FileNotFoundError: If the path doesn't exist
        """
        # Checked before resolve(), which follows the link to its target.
        link = self._unresolved_link(path)
        if link is not None:
            link.unlink()
            logger.info(f"Deleted symlink: {link}")
            root = self.confiner.root
            return ResolvedPath(path=link, root=root, inside_sandbox=True)

        resolved = self._resolve(path)
        self._refuse_root(resolved, "delete")

        if not resolved.path.exists():
            raise FileNotFoundError(f"Path not found: {resolved.relative}")

        if resolved.path.is_dir():
            shutil.rmtree(resolved.path)
            logger.info(f"Deleted directory: {resolved.path}")
        else:
            resolved.path.unlink()
            logger.info(f"Deleted file: {resolved.path}")
        return resolved

    def rename(
        self,
        old_path: Union[str, Path, ResolvedPath],
        new_path: Union[str, Path, ResolvedPath],
    ) -> tuple[ResolvedPath, ResolvedPath]:
        """
        Rename or move a file or directory within the sandbox.

        Raises:
            AccessDeniedError: If either path escapes the sandbox
            FileNotFoundError: If the source doesn't exist
            FileExistsError: If the destination already exists
        """
        source, target = self._resolve_pair(old_path, new_path)
        self._refuse_root(source, "rename")
        self._refuse_root(target, "replace")

        if not source.path.exists():
            raise FileNotFoundError(f"Path not found: {source.relative}")
        if target.path.exists():
            raise FileExistsError(f"Destination already exists: {target.relative}")

        target.path.parent.mkdir(parents=True, exist_ok=True)
        source.path.rename(target.path)
        logger.info(f"Renamed {source.path} -> {target.path}")
        return source, target

    def copy(
        self,
        source: Union[str, Path, ResolvedPath],
        destination: Union[str, Path, ResolvedPath],
        recursive: bool = False,
    ) -> tuple[ResolvedPath, ResolvedPath]:
        """
        Copy a file, or a directory tree when ``recursive`` is set.

        Symlinks inside a copied tree are copied as links, never followed.

        Raises:
            AccessDeniedError: If either path escapes the sandbox
            FileNotFoundError: If the source doesn't exist
            IsADirectoryError: If the source is a directory and not recursive
            FileExistsError: If a directory destination already exists
        """
        src, dst = self._resolve_pair(source, destination)
        root = src.root
        self._refuse_root(dst, "replace")

        if not src.path.exists():
            raise FileNotFoundError(f"Path not found: {src.relative}")

        if src.path.is_dir():
            if not recursive:
                raise IsADirectoryError(
                    f"Source is a directory (use recursive=True): {src.relative}"
                )
            if dst.path == src.path or dst.path.is_relative_to(src.path):
                raise AccessDeniedError(
                    dst.display,
                    sandbox_root=src.root.as_posix(),
                    reason="Cannot copy a directory into itself",
                )
            shutil.copytree(src.path, dst.path, symlinks=True)
        else:
            if dst.path.is_dir():
                dst = self.confiner.resolve(dst.path / src.path.name, root=root)
            dst.path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src.path, dst.path)

        logger.info(f"Copied {src.path} -> {dst.path}")
        return src, dst

    def _unresolved_link(
        self, path: Union[str, Path, ResolvedPath]
    ) -> Optional[Path]:
        """Return the literal symlink path for a request, if it names one inside the root."""
        if isinstance(path, ResolvedPath):
            return None
        root = self.confiner.root
        candidate = Path(path).expanduser()
        if not candidate.is_absolute():
            candidate = root / candidate
        if not candidate.is_symlink():
            return None
        parent = candidate.parent.resolve()
        if parent != root and not parent.is_relative_to(root):
            return None
        return parent / candidate.name
