"""
Tests for path confinement and the sandboxed reader/writer.
"""

import os
import tempfile
from pathlib import Path

import pytest

from sandbox_tools.filesystem import (
    AccessDeniedError,
    FileSizeLimitExceededError,
    InvalidPathError,
    PathConfiner,
    SandboxConfig,
    SandboxFileReader,
    SandboxFileWriter,
)
from sandbox_tools.filesystem.models import EntryKind


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def root(temp_dir):
    """Sandbox root inside the temporary directory."""
    sandbox = temp_dir / "sandbox"
    sandbox.mkdir()
    return sandbox


@pytest.fixture
def config(root):
    """Create a test sandbox configuration."""
    return SandboxConfig(root=root, max_file_size_bytes=1000, max_write_size_bytes=1000)


@pytest.fixture
def confiner(config):
    return PathConfiner(config.root)


@pytest.fixture
def reader(config, confiner):
    """Create a SandboxFileReader instance."""
    return SandboxFileReader(config, confiner)


@pytest.fixture
def writer(config, confiner):
    """Create a SandboxFileWriter instance."""
    return SandboxFileWriter(config, confiner)


class TestSandboxConfig:
    """Test SandboxConfig."""

    def test_default_config(self):
        """Test default limits."""
        config = SandboxConfig()
        assert config.max_file_size_bytes == 10_000_000
        assert config.glob_result_limit == 100
        assert config.grep_result_limit == 200
        assert config.max_search_depth == 10
        assert config.command_timeout_seconds == 30.0
        assert config.root.name == "Otak"

    def test_root_expanded_and_resolved(self, root):
        """Test that the root is made absolute."""
        config = SandboxConfig(root=str(root / "a" / ".."))
        assert config.root == root

    def test_ensure_root_creates_directory(self, temp_dir):
        """Test that ensure_root creates a missing root."""
        config = SandboxConfig(root=temp_dir / "new" / "root")
        assert config.ensure_root().is_dir()


class TestPathConfiner:
    """Test PathConfiner."""

    def test_relative_path_resolves_inside(self, root, confiner):
        """Test that relative paths are joined onto the root."""
        resolved = confiner.resolve("notes/todo.txt")
        assert resolved.path == root / "notes" / "todo.txt"
        assert resolved.relative == "notes/todo.txt"

    def test_root_itself_is_inside(self, root, confiner):
        """Test that the root resolves to '.'."""
        resolved = confiner.resolve(".")
        assert resolved.is_root
        assert resolved.relative == "."

    def test_dotdot_escape_denied(self, confiner):
        """Test that '..' cannot climb out of the root."""
        with pytest.raises(AccessDeniedError):
            confiner.resolve("../../etc/passwd")

    def test_absolute_outside_denied(self, confiner):
        """Test that absolute paths outside the root are denied."""
        with pytest.raises(AccessDeniedError):
            confiner.resolve("/etc/passwd")

    def test_absolute_inside_allowed(self, root, confiner):
        """Test that absolute paths inside the root are accepted."""
        resolved = confiner.resolve(str(root / "a.txt"))
        assert resolved.relative == "a.txt"

    def test_sibling_with_shared_prefix_denied(self, temp_dir, root, confiner):
        """Test that /x/sandbox-evil is not treated as inside /x/sandbox."""
        sibling = temp_dir / "sandbox-evil"
        sibling.mkdir()
        with pytest.raises(AccessDeniedError):
            confiner.resolve(str(sibling / "file.txt"))

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unsupported")
    def test_symlink_escape_denied(self, temp_dir, root, confiner):
        """Test that a link pointing outside the root is denied."""
        outside = temp_dir / "outside"
        outside.mkdir()
        (outside / "secret.txt").write_text("secret")
        (root / "link").symlink_to(outside)

        with pytest.raises(AccessDeniedError):
            confiner.resolve("link/secret.txt")

    def test_empty_path_invalid(self, confiner):
        """Test that empty paths are rejected."""
        with pytest.raises(InvalidPathError):
            confiner.resolve("")

    def test_nul_byte_invalid(self, confiner):
        """Test that NUL bytes are rejected."""
        with pytest.raises(InvalidPathError):
            confiner.resolve("a\x00b")

    def test_is_inside(self, confiner):
        """Test the non-raising check."""
        assert confiner.is_inside("a/b") is True
        assert confiner.is_inside("../x") is False
        assert confiner.is_inside("") is False

    def test_change_root(self, root, confiner):
        """Test moving the root to a subdirectory."""
        (root / "project").mkdir()
        new_root = confiner.change_root("project")

        assert new_root == root / "project"
        assert confiner.root == root / "project"
        with pytest.raises(AccessDeniedError):
            confiner.resolve(str(root / "other.txt"))

    def test_change_root_requires_directory(self, root, confiner):
        """Test that the new root must be an existing directory."""
        (root / "file.txt").write_text("x")
        with pytest.raises(NotADirectoryError):
            confiner.change_root("file.txt")
        with pytest.raises(NotADirectoryError):
            confiner.change_root("missing")
        assert confiner.root == root

    def test_change_root_cannot_escape(self, root, confiner):
        """Test that the root cannot move outside itself."""
        with pytest.raises(AccessDeniedError):
            confiner.change_root("..")
        assert confiner.root == root


class TestSandboxFileReader:
    """Test SandboxFileReader."""

    def test_read_file_exact(self, root, reader):
        """Test that content comes back unchanged, line endings included."""
        content = "line1\r\nline2\n\nline4"
        (root / "crlf.txt").write_bytes(content.encode("utf-8"))

        result = reader.read_file("crlf.txt")
        assert result.content == content
        assert result.total_lines == 4

    def test_read_file_window(self, root, reader):
        """Test reading a 1-based window of lines."""
        (root / "lines.txt").write_text("".join(f"line{i}\n" for i in range(1, 11)))

        result = reader.read_file("lines.txt", offset=3, limit=2)
        assert result.content == "line3\nline4\n"
        assert result.start_line == 3
        assert result.end_line == 4
        assert result.total_lines == 10

    def test_read_file_window_past_end(self, root, reader):
        """Test that a window past the end returns nothing."""
        (root / "short.txt").write_text("a\nb\n")

        result = reader.read_file("short.txt", offset=5)
        assert result.content == ""
        assert result.total_lines == 2

    def test_read_file_size_limit(self, root, reader):
        """Test that large files are rejected."""
        (root / "large.txt").write_text("x" * 2000)

        with pytest.raises(FileSizeLimitExceededError):
            reader.read_file("large.txt")

    def test_read_file_not_found(self, reader):
        """Test that missing files raise FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            reader.read_file("missing.txt")

    def test_read_directory_rejected(self, root, reader):
        """Test that reading a directory raises IsADirectoryError."""
        (root / "dir").mkdir()
        with pytest.raises(IsADirectoryError):
            reader.read_file("dir")

    def test_read_outside_denied(self, reader):
        """Test that reading outside the sandbox is denied."""
        with pytest.raises(AccessDeniedError):
            reader.read_file("/etc/passwd")

    def test_list_directory(self, root, reader):
        """Test listing entries with kinds, sorted by name."""
        (root / "b.txt").write_text("content")
        (root / "a_dir").mkdir()

        entries = reader.list_directory(".")
        assert [e.name for e in entries] == ["a_dir", "b.txt"]
        assert entries[0].kind == EntryKind.DIRECTORY
        assert entries[1].kind == EntryKind.FILE
        assert entries[1].size == 7

    def test_list_directory_errors(self, root, reader):
        """Test listing a file or a missing path."""
        (root / "file.txt").write_text("x")
        with pytest.raises(NotADirectoryError):
            reader.list_directory("file.txt")
        with pytest.raises(FileNotFoundError):
            reader.list_directory("missing")

    def test_stat(self, root, reader):
        """Test file metadata."""
        path = root / "file.txt"
        path.write_text("hello")
        path.chmod(0o644)

        info = reader.stat("file.txt")
        assert info.path == "file.txt"
        assert info.size == 5
        assert info.kind == EntryKind.FILE
        if os.name != "nt":
            assert info.permissions == "644"

    def test_tail(self, root, reader):
        """Test the last lines of a file."""
        (root / "log.txt").write_text("".join(f"{i}\n" for i in range(1, 21)))

        snapshot = reader.tail("log.txt", lines=3)
        assert snapshot.lines == ["18", "19", "20"]
        assert snapshot.total_lines == 20


class TestSandboxFileWriter:
    """Test SandboxFileWriter."""

    def test_write_then_read_identity(self, root, reader, writer):
        """Test that written content reads back unchanged."""
        content = "first\r\nsecond\néè"
        writer.write_file("out.txt", content)

        assert reader.read_file("out.txt").content == content

    def test_write_creates_parents(self, root, writer):
        """Test that parent directories are created."""
        writer.write_file("a/b/c.txt", "x")
        assert (root / "a" / "b" / "c.txt").read_text() == "x"

    def test_write_size_limit(self, root, writer):
        """Test that oversized content is rejected before writing."""
        with pytest.raises(FileSizeLimitExceededError):
            writer.write_file("big.txt", "x" * 2000)
        assert not (root / "big.txt").exists()

    def test_write_outside_denied(self, temp_dir, writer):
        """Test that writing outside the sandbox is denied."""
        with pytest.raises(AccessDeniedError):
            writer.write_file("../escape.txt", "x")
        assert not (temp_dir / "escape.txt").exists()

    def test_create_directory(self, root, writer):
        """Test creating nested directories."""
        resolved = writer.create_directory("x/y/z")
        assert (root / "x" / "y" / "z").is_dir()
        assert resolved.relative == "x/y/z"

    def test_delete_file_and_directory(self, root, writer):
        """Test deleting a file and a non-empty directory."""
        (root / "f.txt").write_text("x")
        (root / "d" / "sub").mkdir(parents=True)
        (root / "d" / "sub" / "g.txt").write_text("y")

        writer.delete("f.txt")
        writer.delete("d")
        assert not (root / "f.txt").exists()
        assert not (root / "d").exists()

    def test_delete_root_refused(self, root, writer):
        """Test that the sandbox root cannot be deleted."""
        with pytest.raises(AccessDeniedError):
            writer.delete(".")
        assert root.is_dir()

    def test_delete_missing(self, writer):
        """Test deleting a missing path."""
        with pytest.raises(FileNotFoundError):
            writer.delete("missing.txt")

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unsupported")
    def test_delete_symlink_keeps_target(self, root, writer):
        """Test that deleting a link leaves its target alone."""
        (root / "target.txt").write_text("keep")
        (root / "link.txt").symlink_to(root / "target.txt")

        writer.delete("link.txt")
        assert not (root / "link.txt").is_symlink()
        assert (root / "target.txt").read_text() == "keep"

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unsupported")
    def test_delete_symlink_pointing_outside(self, temp_dir, root, writer):
        """Test that a link to an outside directory can be removed without touching it."""
        outside = temp_dir / "outside"
        outside.mkdir()
        (outside / "victim.txt").write_text("keep")
        (root / "link").symlink_to(outside)

        resolved = writer.delete("link")
        assert resolved.relative == "link"
        assert not (root / "link").is_symlink()
        assert (outside / "victim.txt").read_text() == "keep"

    def test_rename(self, root, writer):
        """Test renaming into a new directory."""
        (root / "old.txt").write_text("x")

        source, target = writer.rename("old.txt", "moved/new.txt")
        assert target.relative == "moved/new.txt"
        assert (root / "moved" / "new.txt").read_text() == "x"
        assert not (root / "old.txt").exists()

    def test_rename_existing_destination(self, root, writer):
        """Test that rename never overwrites."""
        (root / "a.txt").write_text("a")
        (root / "b.txt").write_text("b")
        with pytest.raises(FileExistsError):
            writer.rename("a.txt", "b.txt")
        assert (root / "b.txt").read_text() == "b"

    def test_rename_outside_denied(self, root, writer):
        """Test that renaming out of the sandbox is denied."""
        (root / "a.txt").write_text("a")
        with pytest.raises(AccessDeniedError):
            writer.rename("a.txt", "../a.txt")
        assert (root / "a.txt").exists()

    def test_copy_file(self, root, writer):
        """Test copying a file, including into a directory."""
        (root / "a.txt").write_text("a")
        (root / "dir").mkdir()

        writer.copy("a.txt", "b.txt")
        _, target = writer.copy("a.txt", "dir")
        assert (root / "b.txt").read_text() == "a"
        assert target.relative == "dir/a.txt"

    def test_copy_directory_requires_recursive(self, root, writer):
        """Test that directories are only copied recursively."""
        (root / "src").mkdir()
        (root / "src" / "f.txt").write_text("f")

        with pytest.raises(IsADirectoryError):
            writer.copy("src", "dst")
        writer.copy("src", "dst", recursive=True)
        assert (root / "dst" / "f.txt").read_text() == "f"

    def test_copy_directory_into_itself_denied(self, root, writer):
        """Test that a tree cannot be copied into itself."""
        (root / "src").mkdir()
        with pytest.raises(AccessDeniedError):
            writer.copy("src", "src/inner", recursive=True)
