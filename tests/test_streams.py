"""
Tests for tail and watch stream sessions.

A fake change source stands in for watchfiles so that change batches are
delivered exactly when a test pushes them.
"""

import asyncio
import tempfile
from pathlib import Path

import pytest

from sandbox_tools.filesystem import (
    PathConfiner,
    SandboxConfig,
    StreamEngine,
    StreamEventType,
    StreamKind,
)


class FakeChangeSource:
    """Change source fed by the test."""

    def __init__(self):
        self.batches: asyncio.Queue = asyncio.Queue()
        self.subscriptions: list[tuple[Path, bool]] = []

    def __call__(self, path: Path, recursive: bool, stop_event: asyncio.Event):
        self.subscriptions.append((path, recursive))
        return self._iterate(stop_event)

    async def _iterate(self, stop_event: asyncio.Event):
        while not stop_event.is_set():
            batch = await self.batches.get()
            yield batch
            # Reached once the consumer has handled the batch.
            self.batches.task_done()

    def push(self, change: str, path: Path) -> None:
        self.batches.put_nowait({(change, str(path))})


async def next_event(session, timeout: float = 2.0):
    return await asyncio.wait_for(session.__anext__(), timeout)


@pytest.fixture
def root():
    """Create a temporary sandbox root."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def source():
    return FakeChangeSource()


@pytest.fixture
def engine(root, source):
    """Create a StreamEngine with the fake change source."""
    config = SandboxConfig(root=root, tail_lines=3)
    return StreamEngine(config, PathConfiner(config.root), change_source=source)


class TestTail:
    """Test tail sessions."""

    @pytest.mark.asyncio
    async def test_initial_snapshot(self, root, engine):
        """Test that the first event carries the last lines."""
        (root / "app.log").write_text("1\n2\n3\n4\n5\n")

        async with engine.tail("app.log") as session:
            event = await next_event(session)
            assert event.type == StreamEventType.INITIAL
            assert event.data["lines"] == ["3", "4", "5"]
            assert event.data["total_lines"] == 5
            assert session.last_known_size == 10

    @pytest.mark.asyncio
    async def test_appended_lines_only(self, root, engine, source):
        """Test that only bytes past the last known size are emitted."""
        log = root / "app.log"
        log.write_text("a\nb\n")

        async with engine.tail("app.log") as session:
            await next_event(session)

            with open(log, "a") as f:
                f.write("c\n\nd\n")
            source.push("modified", log)

            event = await next_event(session)
            assert event.type == StreamEventType.APPEND
            assert event.data["lines"] == ["c", "d"]
            assert session.last_known_size == log.stat().st_size

            with open(log, "a") as f:
                f.write("e\n")
            source.push("modified", log)

            event = await next_event(session)
            assert event.data["lines"] == ["e"]

    @pytest.mark.asyncio
    async def test_shrink_emits_nothing(self, root, engine, source):
        """Test that shrinking is skipped and only growth past the old size is read."""
        log = root / "app.log"
        log.write_text("a\nb\nc\n")

        async with engine.tail("app.log") as session:
            await next_event(session)
            assert session.last_known_size == 6

            log.write_text("x\n")
            source.push("modified", log)
            await asyncio.wait_for(source.batches.join(), 2.0)
            assert session.last_known_size == 6

            with open(log, "a") as f:
                f.write("yy\nzz\n")
            source.push("modified", log)

            event = await next_event(session)
            assert event.type == StreamEventType.APPEND
            assert event.data["lines"] == ["z"]
            assert session.last_known_size == 8

    @pytest.mark.asyncio
    async def test_subscribes_to_parent(self, root, engine, source):
        """Test that a file tail watches its parent non-recursively."""
        (root / "app.log").write_text("x\n")

        async with engine.tail("app.log") as session:
            await next_event(session)
            log = root / "app.log"
            source.push("modified", root / "other.log")
            with open(log, "a") as f:
                f.write("y\n")
            source.push("modified", log)

            event = await next_event(session)
            assert event.data["lines"] == ["y"]
            assert source.subscriptions == [(root, False)]

    @pytest.mark.asyncio
    async def test_deleted_ends_stream(self, root, engine, source):
        """Test that deleting the file emits deleted and ends the stream."""
        log = root / "app.log"
        log.write_text("x\n")

        async with engine.tail("app.log") as session:
            await next_event(session)
            log.unlink()
            source.push("deleted", log)

            event = await next_event(session)
            assert event.type == StreamEventType.DELETED
            with pytest.raises(StopAsyncIteration):
                await next_event(session)

    @pytest.mark.asyncio
    async def test_missing_file_error(self, engine):
        """Test that tailing a missing file yields one error event."""
        async with engine.tail("missing.log") as session:
            events = [event async for event in session]

        assert len(events) == 1
        assert events[0].type == StreamEventType.ERROR
        assert events[0].data["error_type"] == "FileNotFoundError"

    @pytest.mark.asyncio
    async def test_outside_sandbox_error(self, engine):
        """Test that an escaping path becomes an error event."""
        async with engine.tail("../outside.log") as session:
            event = await next_event(session)

        assert event.type == StreamEventType.ERROR
        assert event.data["error_type"] == "AccessDeniedError"

    @pytest.mark.asyncio
    async def test_directory_error(self, root, engine):
        (root / "logs").mkdir()
        async with engine.tail("logs") as session:
            event = await next_event(session)
        assert event.data["error_type"] == "IsADirectoryError"


class TestWatch:
    """Test watch sessions."""

    @pytest.mark.asyncio
    async def test_watch_directory(self, root, engine, source):
        """Test initial state and change events for a directory."""
        (root / "project").mkdir()

        async with engine.watch("project") as session:
            event = await next_event(session)
            assert event.type == StreamEventType.INITIAL
            assert event.data["path"] == "project"
            assert event.data["is_directory"] is True

            (root / "project" / "new.txt").write_text("x")
            source.push("added", root / "project" / "new.txt")

            event = await next_event(session)
            assert event.type == StreamEventType.CHANGE
            assert event.data["event_type"] == "added"
            assert event.data["filename"] == "new.txt"
            assert source.subscriptions == [(root / "project", True)]

    @pytest.mark.asyncio
    async def test_watch_file_deleted(self, root, engine, source):
        """Test that watching a file ends once it is gone."""
        target = root / "a.txt"
        target.write_text("x")

        async with engine.watch("a.txt") as session:
            event = await next_event(session)
            assert event.data["is_directory"] is False
            assert event.data["size"] == 1

            target.unlink()
            source.push("deleted", target)

            event = await next_event(session)
            assert event.type == StreamEventType.CHANGE
            event = await next_event(session)
            assert event.type == StreamEventType.DELETED

    @pytest.mark.asyncio
    async def test_close_stops_session(self, root, engine):
        """Test that closing a session cancels its producer."""
        (root / "a.txt").write_text("x")
        session = engine.open(StreamKind.WATCH, "a.txt")

        await next_event(session)
        assert session.active
        await session.close()

        assert not session.active
        with pytest.raises(StopAsyncIteration):
            await session.__anext__()

    def test_unknown_kind(self, engine):
        with pytest.raises(ValueError):
            engine.open("follow", "a.txt")

    @pytest.mark.asyncio
    async def test_event_to_dict(self, root, engine):
        (root / "a.txt").write_text("x")
        async with engine.watch("a.txt") as session:
            event = await next_event(session)

        data = event.to_dict()
        assert data["type"] == "initial"
        assert data["path"] == "a.txt"
        assert "timestamp" in data
