"""
Streaming subscriptions: tail a growing file or watch a path for changes.

A :class:`StreamSession` owns a producer task that pushes
:class:`StreamEvent` objects into a bounded queue; the transport consumes
the session as an async iterator and closes it when the caller
disconnects. Change notifications come from ``watchfiles``; batches may
be coalesced, so every batch is treated as "something may have changed".
"""

import asyncio
import logging
import stat as stat_module
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Optional, Union

from watchfiles import awatch

from sandbox_tools.filesystem.config import SandboxConfig
from sandbox_tools.filesystem.confiner import PathConfiner, ResolvedPath, to_posix
from sandbox_tools.filesystem.exceptions import FileSystemError
from sandbox_tools.filesystem.models import (
    StreamEvent,
    StreamEventType,
    StreamKind,
)
from sandbox_tools.filesystem.reader import utc_timestamp

logger = logging.getLogger(__name__)

ChangeBatch = Iterable[tuple[Any, str]]
ChangeSource = Callable[[Path, bool, asyncio.Event], AsyncIterator[ChangeBatch]]

_END = object()


def watchfiles_source(debounce_ms: int = 50) -> ChangeSource:
    """
    Build a change source backed by :func:`watchfiles.awatch`.

    The returned callable takes ``(path, recursive, stop_event)`` and yields
    batches of ``(Change, path)`` tuples until ``stop_event`` is set.
    """

    def source(path: Path, recursive: bool, stop_event: asyncio.Event):
        return awatch(
            path,
            watch_filter=None,
            debounce=debounce_ms,
            stop_event=stop_event,
            recursive=recursive,
        )

    return source


def change_name(change: Any) -> str:
    """Name of a raw change (``watchfiles.Change`` or plain string)."""
    name = getattr(change, "name", None)
    return name if isinstance(name, str) else str(change)


def read_range(path: Path, start: int, end: int) -> bytes:
    """Read bytes ``[start, end)`` of a file."""
    with open(path, "rb") as f:
        f.seek(start)
        return f.read(end - start)


class StreamSession:
    """
    A live tail or watch subscription.

    Iterate it to receive events; the iteration ends after a ``deleted`` or
    ``error`` event, or once :meth:`close` is called. Sessions are not
    restartable.

    Usage:
        async with engine.open("tail", "logs/app.log") as session:
            async for event in session:
                print(event.to_dict())
    """

    def __init__(
        self,
        kind: StreamKind,
        target: str,
        producer: Callable[["StreamSession"], Awaitable[None]],
        queue_size: int = 256,
    ):
        self.kind = kind
        self.target = target
        self.last_known_size: Optional[int] = None
        self.stop_event = asyncio.Event()
        self._producer = producer
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._task: Optional[asyncio.Task] = None
        self._exhausted = False

    @property
    def active(self) -> bool:
        """Whether the session can still produce events."""
        if self._exhausted or self.stop_event.is_set():
            return False
        return self._task is None or not self._task.done()

    def start(self) -> None:
        """Start the producer task (done automatically on first iteration)."""
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._run())

    async def emit(self, type: StreamEventType, **data: Any) -> None:
        """Queue an event, waiting while the queue is full."""
        await self._queue.put(StreamEvent(type=type, data=data))

    async def _run(self) -> None:
        try:
            await self._producer(self)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{self.kind.value} stream for {self.target} failed: {e}")
            await self.emit(
                StreamEventType.ERROR, error=str(e), error_type=type(e).__name__
            )
        finally:
            if not self.stop_event.is_set():
                await self._queue.put(_END)

    def __aiter__(self) -> "StreamSession":
        return self

    async def __anext__(self) -> StreamEvent:
        if self._exhausted:
            raise StopAsyncIteration
        if self.stop_event.is_set() and self._queue.empty():
            self._exhausted = True
            raise StopAsyncIteration
        self.start()
        item = await self._queue.get()
        if item is _END:
            self._exhausted = True
            raise StopAsyncIteration
        return item

    async def close(self) -> None:
        """Cancel the subscription (caller disconnected)."""
        self.stop_event.set()
        self._exhausted = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.debug(f"Closed {self.kind.value} stream for {self.target}")

    async def __aenter__(self) -> "StreamSession":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return (
            f"StreamSession(kind={self.kind.value!r}, target={self.target!r}, "
            f"active={self.active})"
        )


class StreamEngine:
    """
    Creates tail and watch sessions on confined paths.

    Usage:
        engine = StreamEngine(config, PathConfiner(config.root))

        session = engine.watch("project")
        async for event in session:
            ...
        await session.close()
    """

    def __init__(
        self,
        config: SandboxConfig,
        confiner: PathConfiner,
        change_source: Optional[ChangeSource] = None,
    ):
        """
        Initialize the stream engine.

        Args:
            config: Sandbox configuration
            confiner: Path confiner owning the sandbox root
            change_source: Source of raw change batches (default: watchfiles)
        """
        self.config = config
        self.confiner = confiner
        self.change_source = change_source or watchfiles_source(config.watch_debounce_ms)

    def open(self, kind: Union[str, StreamKind], path: Union[str, Path]) -> StreamSession:
        """
        Open a stream session.

        Args:
            kind: "tail" or "watch"
            path: Path to stream

        Raises:
            ValueError: If the kind is unknown
        """
        kind = StreamKind(kind)
        producer = self._watch if kind == StreamKind.WATCH else self._tail

        async def run(session: StreamSession) -> None:
            await producer(session, path)

        logger.info(f"Opening {kind.value} stream for {path}")
        return StreamSession(
            kind, to_posix(path), run, queue_size=self.config.stream_queue_size
        )

    def watch(self, path: Union[str, Path]) -> StreamSession:
        return self.open(StreamKind.WATCH, path)

    def tail(self, path: Union[str, Path]) -> StreamSession:
        return self.open(StreamKind.TAIL, path)

    async def _subscribe(
        self, path: Path, is_directory: bool, session: StreamSession
    ) -> AsyncIterator[list[tuple[str, Path]]]:
        """Yield ``(change name, path)`` lists that concern ``path``."""
        if is_directory:
            source = self.change_source(path, True, session.stop_event)
        else:
            source = self.change_source(path.parent, False, session.stop_event)

        async for batch in source:
            changes = []
            for change, changed in batch:
                changed_path = Path(changed)
                if is_directory or changed_path == path:
                    changes.append((change_name(change), changed_path))
            if changes:
                yield changes

    async def _resolve(self, session: StreamSession, request) -> Optional[ResolvedPath]:
        try:
            return self.confiner.resolve(request)
        except FileSystemError as e:
            await session.emit(
                StreamEventType.ERROR, error=str(e), error_type=type(e).__name__
            )
            return None

    async def _watch(self, session: StreamSession, request) -> None:
        resolved = await self._resolve(session, request)
        if resolved is None:
            return
        path = resolved.path

        try:
            st = await asyncio.to_thread(path.stat)
        except FileNotFoundError:
            await session.emit(
                StreamEventType.ERROR,
                error=f"Path not found: {resolved.relative}",
                error_type="FileNotFoundError",
            )
            return

        is_directory = stat_module.S_ISDIR(st.st_mode)
        await session.emit(
            StreamEventType.INITIAL,
            path=resolved.relative,
            exists=True,
            is_directory=is_directory,
            size=st.st_size,
            modified=utc_timestamp(st.st_mtime).isoformat(),
        )

        async for changes in self._subscribe(path, is_directory, session):
            for name, changed in changes:
                if is_directory:
                    filename = self.confiner.relative(changed, root=path)
                else:
                    filename = changed.name
                await session.emit(
                    StreamEventType.CHANGE, event_type=name, filename=filename
                )
            if not path.exists():
                await session.emit(StreamEventType.DELETED, path=resolved.relative)
                return

    async def _tail(self, session: StreamSession, request) -> None:
        resolved = await self._resolve(session, request)
        if resolved is None:
            return
        path = resolved.path

        if path.is_dir():
            await session.emit(
                StreamEventType.ERROR,
                error="Cannot tail a directory",
                error_type="IsADirectoryError",
            )
            return
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            await session.emit(
                StreamEventType.ERROR,
                error=f"File not found: {resolved.relative}",
                error_type="FileNotFoundError",
            )
            return

        lines = data.decode("utf-8", errors="replace").splitlines()
        session.last_known_size = len(data)
        await session.emit(
            StreamEventType.INITIAL,
            path=resolved.relative,
            lines=lines[-self.config.tail_lines :],
            total_lines=len(lines),
        )

        async for _ in self._subscribe(path, False, session):
            try:
                new_size = (await asyncio.to_thread(path.stat)).st_size
            except FileNotFoundError:
                await session.emit(StreamEventType.DELETED, path=resolved.relative)
                return

            # Shrinking is not tracked: truncate-then-append goes unseen
            # until the file grows past the last known size.
            if new_size <= session.last_known_size:
                continue

            chunk = await asyncio.to_thread(
                read_range, path, session.last_known_size, new_size
            )
            appended = [
                line
                for line in chunk.decode("utf-8", errors="replace").splitlines()
                if line
            ]
            session.last_known_size = new_size
            await session.emit(StreamEventType.APPEND, lines=appended)
