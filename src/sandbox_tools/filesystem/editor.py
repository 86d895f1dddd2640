"""
All-or-nothing exact-text edits of a single file.
"""

import logging
from pathlib import Path
from typing import Iterable, Union

from sandbox_tools.filesystem.config import SandboxConfig
from sandbox_tools.filesystem.confiner import PathConfiner, ResolvedPath
from sandbox_tools.filesystem.exceptions import (
    EditTextNotFoundError,
    FileSizeLimitExceededError,
    InvalidEditError,
)
from sandbox_tools.filesystem.models import EditOp, EditSummary
from sandbox_tools.filesystem.reader import read_text
from sandbox_tools.filesystem.writer import write_text

logger = logging.getLogger(__name__)


class EditTransaction:
    """
    Applies an ordered list of edits to one file's content in memory and
    writes the result back once.

    Each edit sees the buffer left by the previous one, so edits can chain
    (``x=1 -> x=2`` then ``x=2 -> x=3``). If any edit's text is missing at
    the point it is needed, nothing is written and the file on disk is left
    byte-identical.

    No lock is taken against concurrent writers; a write from elsewhere
    between the read and the write-back is lost.

    Usage:
        editor = EditTransaction(config, PathConfiner(config.root))

        summary = editor.apply_edits(
            "settings.ini",
            [EditOp(old_text="debug=0", new_text="debug=1")],
        )
        print(summary.per_edit_counts)  # [1]
    """

    def __init__(self, config: SandboxConfig, confiner: PathConfiner):
        """
        Initialize the editor.

        Args:
            config: Sandbox configuration
            confiner: Path confiner owning the sandbox root
        """
        self.config = config
        self.confiner = confiner

    def edit(
        self,
        path: Union[str, Path, ResolvedPath],
        old_text: str,
        new_text: str,
        replace_all: bool = False,
    ) -> EditSummary:
        """Apply a single edit (the one-element transaction)."""
        return self.apply_edits(
            path, [EditOp(old_text=old_text, new_text=new_text, replace_all=replace_all)]
        )

    def apply_edits(
        self,
        path: Union[str, Path, ResolvedPath],
        edits: Iterable[Union[EditOp, dict]],
        encoding: str = "utf-8",
    ) -> EditSummary:
        """
        Apply edits in order and write the file once.

        Args:
            path: File to edit
            edits: Ordered edits (EditOp or dicts with the same fields)
            encoding: Text encoding (default: utf-8)

        Returns:
            EditSummary with the number of occurrences replaced per edit

        Raises:
            InvalidEditError: If there are no edits or an old_text is empty
            EditTextNotFoundError: If an edit's old_text is missing
            AccessDeniedError: If the path escapes the sandbox
            FileNotFoundError: If the file doesn't exist
            IsADirectoryError: If the path is a directory
        """
        ops = [e if isinstance(e, EditOp) else EditOp.model_validate(e) for e in edits]
        resolved = path if isinstance(path, ResolvedPath) else self.confiner.resolve(path)

        if not ops:
            raise InvalidEditError(resolved.relative, "No edits given")
        for index, op in enumerate(ops):
            if op.old_text == "":
                raise InvalidEditError(
                    resolved.relative, f"Edit {index} has an empty old_text"
                )

        if not resolved.path.exists():
            raise FileNotFoundError(f"File not found: {resolved.relative}")
        if resolved.path.is_dir():
            raise IsADirectoryError(f"Path is a directory: {resolved.relative}")
        size = resolved.path.stat().st_size
        if size > self.config.max_file_size_bytes:
            raise FileSizeLimitExceededError(
                resolved.relative, size, self.config.max_file_size_bytes
            )

        buffer = read_text(resolved.path, encoding=encoding)
        counts = []
        for index, op in enumerate(ops):
            occurrences = buffer.count(op.old_text)
            if occurrences == 0:
                logger.warning(
                    f"Edit {index} text not found in {resolved.path}; aborting"
                )
                raise EditTextNotFoundError(resolved.relative, index)

            if op.replace_all:
                buffer = buffer.replace(op.old_text, op.new_text)
                counts.append(occurrences)
            else:
                buffer = buffer.replace(op.old_text, op.new_text, 1)
                counts.append(1)

        new_size = len(buffer.encode(encoding))
        if new_size > self.config.max_write_size_bytes:
            raise FileSizeLimitExceededError(
                resolved.relative, new_size, self.config.max_write_size_bytes
            )

        write_text(resolved.path, buffer, encoding=encoding)
        logger.info(
            f"Applied {len(ops)} edit(s) to {resolved.path} "
            f"({sum(counts)} replacement(s))"
        )
        return EditSummary(path=resolved.relative, per_edit_counts=counts)
