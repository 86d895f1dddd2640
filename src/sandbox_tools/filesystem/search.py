"""
Bounded recursive search inside the sandbox: glob, grep and recency search.
"""

import asyncio
import logging
import os
import re
import stat as stat_module
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional, Union

from sandbox_tools.filesystem.config import SandboxConfig
from sandbox_tools.filesystem.confiner import PathConfiner, ResolvedPath, is_within
from sandbox_tools.filesystem.exceptions import SearchError
from sandbox_tools.filesystem.models import (
    ContentMatch,
    EntryKind,
    NameMatch,
    SearchResults,
)
from sandbox_tools.filesystem.reader import utc_timestamp

logger = logging.getLogger(__name__)


def _translate(pattern: str) -> str:
    """Translate a glob pattern into a regex fragment."""
    out = []
    i, n = 0, len(pattern)
    while i < n:
        c = pattern[i]
        if c == "*":
            if i + 1 < n and pattern[i + 1] == "*":
                i += 2
                if i < n and pattern[i] == "/":
                    # "**/" also matches zero directories
                    out.append("(?:.*/)?")
                    i += 1
                else:
                    out.append(".*")
                continue
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "[":
            j = i + 1
            if j < n and pattern[j] in "!^":
                j += 1
            if j < n and pattern[j] == "]":
                j += 1
            while j < n and pattern[j] != "]":
                j += 1
            if j >= n:
                out.append(re.escape(c))
            else:
                body = pattern[i + 1 : j].replace("\\", "\\\\")
                if body[:1] in ("!", "^"):
                    body = "^" + body[1:]
                out.append(f"[{body}]")
                i = j
        elif c == "{":
            j = pattern.find("}", i + 1)
            if j == -1:
                out.append(re.escape(c))
            else:
                alternatives = pattern[i + 1 : j].split(",")
                out.append("(?:" + "|".join(_translate(a) for a in alternatives) + ")")
                i = j
        else:
            out.append(re.escape(c))
        i += 1
    return "".join(out)


def compile_glob(pattern: str, case_sensitive: bool = True) -> re.Pattern:
    """
    Compile a glob pattern to a full-match regex.

    ``*`` matches any run of characters within one path segment, ``?`` a
    single character, ``**`` any run across separators, ``[...]`` a
    character class and ``{a,b}`` alternatives.
    """
    normalized = pattern.replace("\\", "/")
    flags = 0 if case_sensitive else re.IGNORECASE
    return re.compile(rf"\A{_translate(normalized)}\Z", flags)


@dataclass
class _Entry:
    path: Path
    name: str
    kind: EntryKind
    mtime: float
    size: int
    depth: int


class SandboxSearchEngine:
    """
    Depth-limited, capped search over the sandbox tree.

    Traversal is a breadth-first work queue of ``(directory, depth)``
    items. Each level is scanned concurrently (bounded by
    ``search_concurrency``) and joined before the next level starts.
    Directories deeper than ``max_search_depth`` are never opened, and
    unreadable directories are skipped.

    Usage:
        config = SandboxConfig(root=Path("/srv/sandbox"))
        engine = SandboxSearchEngine(config, PathConfiner(config.root))

        found = await engine.glob("**/*.py")
        hits = await engine.grep("def main", file_filter="*.py")
        recent = await engine.search("**/*.log", limit=5)
    """

    def __init__(self, config: SandboxConfig, confiner: PathConfiner):
        """
        Initialize the search engine.

        Args:
            config: Sandbox configuration
            confiner: Path confiner owning the sandbox root
        """
        self.config = config
        self.confiner = confiner

    async def glob(
        self,
        pattern: str,
        path: Union[str, Path, ResolvedPath] = ".",
        recursive: bool = True,
    ) -> SearchResults:
        """
        Find entries by glob pattern.

        A pattern without ``/`` is matched against entry names; a pattern
        with ``/`` is matched against the path relative to ``path``.

        Args:
            pattern: Glob pattern (e.g. "*.py", "src/**/test_*.py")
            path: Directory to search from (default: sandbox root)
            recursive: Descend into subdirectories

        Returns:
            SearchResults of NameMatch, capped at ``glob_result_limit``
        """
        start = self._resolve_directory(path)
        if not pattern:
            raise SearchError("Empty glob pattern")
        matcher = compile_glob(pattern)
        by_name = "/" not in pattern.replace("\\", "/")
        limit = self.config.glob_result_limit

        results: list[NameMatch] = []
        total = 0
        async for batch in self._walk(start, recursive):
            for entry in batch:
                subject = entry.name if by_name else self._relative(entry.path, start.path)
                if not matcher.match(subject):
                    continue
                total += 1
                if len(results) < limit:
                    results.append(self._name_match(entry, start.root))

        self._log_cap("glob", total, limit)
        return SearchResults(results=results, total_matches=total)

    async def grep(
        self,
        pattern: str,
        path: Union[str, Path, ResolvedPath] = ".",
        recursive: bool = True,
        case_sensitive: bool = True,
        file_filter: Optional[str] = None,
    ) -> SearchResults:
        """
        Search file contents line by line with a regular expression.

        Files that are too large, binary, not UTF-8 or unreadable are
        skipped. Counting continues past the cap so ``total_matches``
        is exact.

        Args:
            pattern: Regular expression
            path: Directory (or single file) to search
            recursive: Descend into subdirectories
            case_sensitive: Whether matching is case-sensitive
            file_filter: Glob applied to file names (e.g. "*.py")

        Returns:
            SearchResults of ContentMatch, capped at ``grep_result_limit``

        Raises:
            SearchError: If the pattern is not a valid regex
        """
        flags = 0 if case_sensitive else re.IGNORECASE
        try:
            regex = re.compile(pattern, flags)
        except re.error as e:
            raise SearchError(f"Invalid regex pattern: {e}")

        name_filter = compile_glob(file_filter) if file_filter else None
        limit = self.config.grep_result_limit
        resolved = self._resolve(path)

        if resolved.path.is_file():
            candidates = [[resolved.path]]
        else:
            start = self._resolve_directory(resolved)
            candidates = self._file_batches(start, recursive, name_filter)

        results: list[ContentMatch] = []
        total = 0
        semaphore = asyncio.Semaphore(self.config.search_concurrency)

        async def scan(file_path: Path) -> list[tuple[int, str, str]]:
            async with semaphore:
                return await asyncio.to_thread(self._grep_file, file_path, regex)

        async for files in _aiter(candidates):
            hits = await asyncio.gather(*(scan(f) for f in files))
            for file_path, file_hits in zip(files, hits):
                for line_number, line_text, matched in file_hits:
                    total += 1
                    if len(results) < limit:
                        results.append(
                            ContentMatch(
                                file=self._relative(file_path, resolved.root),
                                line_number=line_number,
                                line_text=line_text,
                                matched_text=matched,
                            )
                        )

        self._log_cap("grep", total, limit)
        return SearchResults(results=results, total_matches=total)

    async def search(
        self,
        pattern: str,
        path: Union[str, Path, ResolvedPath] = ".",
        limit: Optional[int] = None,
    ) -> SearchResults:
        """
        Find entries by glob against their sandbox-relative path, newest first.

        All matches are sorted by modification time before the cap is
        applied, so the returned slice is the truly most recent one.

        Args:
            pattern: Glob matched against the path relative to the root
                (``*`` stays within a segment, ``**`` crosses segments)
            path: Directory to search from (default: sandbox root)
            limit: Maximum results (clamped to ``glob_result_limit``)

        Returns:
            SearchResults of NameMatch sorted by mtime descending
        """
        start = self._resolve_directory(path)
        if not pattern:
            raise SearchError("Empty search pattern")
        matcher = compile_glob(pattern.lstrip("/"))
        cap = self.config.glob_result_limit
        if limit is not None:
            cap = max(1, min(limit, cap))

        matches: list[_Entry] = []
        async for batch in self._walk(start, recursive=True):
            for entry in batch:
                if matcher.match(self._relative(entry.path, start.root)):
                    matches.append(entry)

        matches.sort(key=lambda e: (-e.mtime, str(e.path)))
        self._log_cap("search", len(matches), cap)
        return SearchResults(
            results=[self._name_match(e, start.root) for e in matches[:cap]],
            total_matches=len(matches),
        )

    async def _walk(
        self, start: ResolvedPath, recursive: bool
    ) -> AsyncIterator[list[_Entry]]:
        """Yield the entries of each traversal level, in path order."""
        max_depth = self.config.max_search_depth
        semaphore = asyncio.Semaphore(self.config.search_concurrency)
        root = start.root

        async def scan(directory: Path, depth: int) -> list[_Entry]:
            async with semaphore:
                return await asyncio.to_thread(self._scan_directory, directory, depth, root)

        queue: list[tuple[Path, int]] = [(start.path, 0)]
        while queue:
            scanned = await asyncio.gather(*(scan(d, depth) for d, depth in queue))
            queue = []
            batch: list[_Entry] = []
            for entries in scanned:
                batch.extend(entries)
                for entry in entries:
                    if (
                        recursive
                        and entry.kind == EntryKind.DIRECTORY
                        and entry.depth + 1 < max_depth
                    ):
                        queue.append((entry.path, entry.depth + 1))
            yield batch

    def _scan_directory(self, directory: Path, depth: int, root: Path) -> list[_Entry]:
        entries = []
        try:
            with os.scandir(directory) as it:
                for item in it:
                    try:
                        st = item.stat(follow_symlinks=False)
                    except OSError:
                        continue
                    if stat_module.S_ISLNK(st.st_mode):
                        # Links are reported only when they land inside the
                        # sandbox, and never descended into.
                        try:
                            target = Path(item.path).resolve()
                        except (OSError, RuntimeError):
                            continue
                        if not is_within(target, root):
                            continue
                        kind = EntryKind.SYMLINK
                    elif stat_module.S_ISDIR(st.st_mode):
                        kind = EntryKind.DIRECTORY
                    elif stat_module.S_ISREG(st.st_mode):
                        kind = EntryKind.FILE
                    else:
                        kind = EntryKind.OTHER
                    entries.append(
                        _Entry(
                            path=Path(item.path),
                            name=item.name,
                            kind=kind,
                            mtime=st.st_mtime,
                            size=st.st_size,
                            depth=depth,
                        )
                    )
        except OSError as e:
            logger.debug(f"Skipping unreadable directory {directory}: {e}")
            return []
        entries.sort(key=lambda e: e.name)
        return entries

    async def _file_batches(
        self,
        start: ResolvedPath,
        recursive: bool,
        name_filter: Optional[re.Pattern],
    ) -> AsyncIterator[list[Path]]:
        async for batch in self._walk(start, recursive):
            files = [
                e.path
                for e in batch
                if e.kind == EntryKind.FILE
                and e.size <= self.config.max_file_size_bytes
                and (name_filter is None or name_filter.match(e.name))
            ]
            if files:
                yield files

    def _grep_file(self, path: Path, regex: re.Pattern) -> list[tuple[int, str, str]]:
        try:
            data = path.read_bytes()
        except OSError as e:
            logger.debug(f"Skipping unreadable file {path}: {e}")
            return []
        if len(data) > self.config.max_file_size_bytes or b"\x00" in data:
            return []
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            logger.debug(f"Skipping non-UTF-8 file {path}")
            return []

        hits = []
        for line_number, line in enumerate(text.splitlines(), start=1):
            match = regex.search(line)
            if match:
                hits.append((line_number, line, match.group(0)))
        return hits

    def _resolve(self, path: Union[str, Path, ResolvedPath]) -> ResolvedPath:
        if isinstance(path, ResolvedPath):
            return path
        return self.confiner.resolve(path)

    def _resolve_directory(self, path: Union[str, Path, ResolvedPath]) -> ResolvedPath:
        resolved = self._resolve(path)
        if not resolved.path.exists():
            raise FileNotFoundError(f"Directory not found: {resolved.relative}")
        if not resolved.path.is_dir():
            raise NotADirectoryError(f"Not a directory: {resolved.relative}")
        return resolved

    def _relative(self, path: Path, base: Path) -> str:
        return self.confiner.relative(path, root=base)

    def _name_match(self, entry: _Entry, root: Path) -> NameMatch:
        return NameMatch(
            name=entry.name,
            path=self._relative(entry.path, root),
            kind=entry.kind,
            modified=utc_timestamp(entry.mtime),
        )

    def _log_cap(self, operation: str, total: int, limit: int) -> None:
        if total > limit:
            logger.warning(f"{operation} found {total} matches, returning {limit}")
        else:
            logger.info(f"{operation} found {total} matches")


async def _aiter(source):
    """Iterate a plain or async iterable uniformly."""
    if hasattr(source, "__aiter__"):
        async for item in source:
            yield item
    else:
        for item in source:
            yield item
