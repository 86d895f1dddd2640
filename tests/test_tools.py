"""
Tests for the unified SandboxTools interface.
"""

import os
import tempfile
from pathlib import Path

import pytest

from sandbox_tools.filesystem import SandboxConfig
from sandbox_tools.tools import TOOL_ARGS, SandboxTools, ToolName, resolve_tool_name


@pytest.fixture
def root():
    """Create a temporary sandbox root."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def tools(root):
    """Create a SandboxTools instance."""
    return SandboxTools(SandboxConfig(root=root, glob_result_limit=3))


class TestToolTable:
    """Test tool naming and schemas."""

    def test_every_tool_has_args(self):
        assert set(TOOL_ARGS) == set(ToolName)

    def test_aliases(self):
        assert resolve_tool_name("multiEdit") == ToolName.MULTI_EDIT
        assert resolve_tool_name("listSafeCommands") == ToolName.LIST_SAFE_COMMANDS
        with pytest.raises(ValueError):
            resolve_tool_name("format_disk")

    def test_tool_schemas(self, tools):
        """Test OpenAI-style schemas for every tool."""
        schemas = tools.get_tool_schemas()
        names = [s["function"]["name"] for s in schemas]
        assert names == [t.value for t in ToolName]

        read = next(s for s in schemas if s["function"]["name"] == "read")
        params = read["function"]["parameters"]
        assert params["type"] == "object"
        assert params["required"] == ["path"]
        assert "offset" in params["properties"]

    def test_multi_edit_schema_is_inlined(self, tools):
        schemas = tools.get_tool_schemas()
        multi = next(s for s in schemas if s["function"]["name"] == "multi_edit")
        params = multi["function"]["parameters"]
        assert "$defs" not in params
        assert "old_text" in params["properties"]["edits"]["items"]["properties"]

    def test_execute_hidden_when_disabled(self, root):
        tools = SandboxTools(SandboxConfig(root=root, allow_commands=False))
        names = [s["function"]["name"] for s in tools.get_tool_schemas()]
        assert "execute" not in names

    def test_summary(self, root, tools):
        summary = tools.get_summary()
        assert summary["root"] == root.as_posix()
        assert "multi_edit" in summary["tools"]


class TestInvoke:
    """Test SandboxTools.invoke."""

    @pytest.mark.asyncio
    async def test_write_read_roundtrip(self, tools):
        result = await tools.invoke("write", {"path": "notes/a.txt", "content": "hi\n"})
        assert result.success
        assert result.data == {"path": "notes/a.txt", "size": 3}

        result = await tools.invoke("read", {"path": "notes/a.txt"})
        assert result.success
        assert result.data["content"] == "hi\n"
        assert result.data["total_lines"] == 1

    @pytest.mark.asyncio
    async def test_list_and_stat(self, root, tools):
        (root / "a.txt").write_text("abc")

        listing = await tools.invoke("list", {})
        assert [e["name"] for e in listing.data] == ["a.txt"]
        assert listing.data[0]["kind"] == "file"

        info = await tools.invoke("stat", {"path": "a.txt"})
        assert info.data["size"] == 3
        assert info.data["path"] == "a.txt"

    @pytest.mark.asyncio
    async def test_access_denied_is_reported(self, tools):
        """Test that confinement errors come back as failed results."""
        result = await tools.invoke("read", {"path": "../../etc/passwd"})
        assert not result.success
        assert result.error_type == "AccessDeniedError"

    @pytest.mark.asyncio
    async def test_not_found_is_reported(self, tools):
        result = await tools.invoke("read", {"path": "missing.txt"})
        assert not result.success
        assert result.error_type == "FileNotFoundError"

    @pytest.mark.asyncio
    async def test_unknown_tool(self, tools):
        result = await tools.invoke("format_disk", {})
        assert not result.success
        assert result.error_type == "UnknownToolError"

    @pytest.mark.asyncio
    async def test_invalid_arguments(self, tools):
        """Test missing and unexpected arguments."""
        result = await tools.invoke("read", {})
        assert result.error_type == "InvalidArgumentsError"

        result = await tools.invoke("read", {"path": "a.txt", "mode": "rb"})
        assert result.error_type == "InvalidArgumentsError"

    @pytest.mark.asyncio
    async def test_rename_copy_delete(self, root, tools):
        (root / "a.txt").write_text("a")

        result = await tools.invoke("rename", {"old_path": "a.txt", "new_path": "b.txt"})
        assert result.data == {"old_path": "a.txt", "new_path": "b.txt"}

        result = await tools.invoke("copy", {"source": "b.txt", "destination": "c.txt"})
        assert result.data == {"source": "b.txt", "destination": "c.txt"}

        result = await tools.invoke("delete", {"path": "b.txt"})
        assert result.success
        assert sorted(p.name for p in root.iterdir()) == ["c.txt"]

    @pytest.mark.asyncio
    async def test_delete_root_refused(self, root, tools):
        result = await tools.invoke("delete", {"path": "."})
        assert not result.success
        assert result.error_type == "AccessDeniedError"
        assert root.is_dir()

    @pytest.mark.asyncio
    async def test_edit_and_multi_edit(self, root, tools):
        (root / "conf.ini").write_text("debug=0\nlevel=1\n")

        result = await tools.invoke(
            "edit", {"path": "conf.ini", "old_text": "debug=0", "new_text": "debug=1"}
        )
        assert result.data == {"path": "conf.ini", "replaced_count": 1}

        result = await tools.invoke(
            "multiEdit",
            {
                "path": "conf.ini",
                "edits": [
                    {"old_text": "level=1", "new_text": "level=2"},
                    {"old_text": "missing", "new_text": "x"},
                ],
            },
        )
        assert not result.success
        assert result.error_type == "EditTextNotFoundError"
        assert (root / "conf.ini").read_text() == "debug=1\nlevel=1\n"

    @pytest.mark.asyncio
    async def test_search_results_shape(self, root, tools):
        for i in range(5):
            (root / f"f{i}.txt").write_text("needle\n")

        result = await tools.invoke("glob", {"pattern": "*.txt"})
        assert result.data["returned"] == 3
        assert result.data["total_matches"] == 5
        assert result.data["truncated"] is True

        result = await tools.invoke("grep", {"pattern": "needle", "file_filter": "f1*"})
        assert result.data["results"][0]["file"] == "f1.txt"

        result = await tools.invoke("search", {"pattern": "*.txt", "limit": 2})
        assert result.data["returned"] == 2

    @pytest.mark.asyncio
    async def test_tail(self, root, tools):
        (root / "log.txt").write_text("a\nb\nc\n")
        result = await tools.invoke("tail", {"path": "log.txt", "lines": 2})
        assert result.data == {"lines": ["b", "c"], "total_lines": 3}

    @pytest.mark.asyncio
    async def test_pwd_and_cd(self, root, tools):
        (root / "project").mkdir()
        (root / "project" / "inner.txt").write_text("x")

        result = await tools.invoke("pwd")
        assert result.data == root.as_posix()

        result = await tools.invoke("cd", {"path": "project"})
        assert result.data == {"root": (root / "project").as_posix()}

        result = await tools.invoke("read", {"path": "inner.txt"})
        assert result.data["content"] == "x"

        result = await tools.invoke("cd", {"path": ".."})
        assert result.error_type == "AccessDeniedError"

    @pytest.mark.asyncio
    async def test_list_safe_commands(self, tools):
        result = await tools.invoke("listSafeCommands", {"category": "network"})
        assert list(result.data["commands"]) == ["network"]
        assert result.data["note"]

    @pytest.mark.asyncio
    async def test_execute_blocked(self, tools):
        result = await tools.invoke("execute", {"command": "rm -rf /"})
        assert not result.success
        assert result.error_type == "CommandBlockedError"

    @pytest.mark.asyncio
    @pytest.mark.skipif(os.name == "nt", reason="requires a POSIX shell")
    async def test_execute(self, root, tools):
        (root / "a.txt").write_text("x")
        result = await tools.invoke("execute", {"command": "ls"})
        assert result.success
        assert result.data["exit_code"] == 0
        assert "a.txt" in result.data["stdout"]

    @pytest.mark.asyncio
    async def test_shell_info(self, tools):
        result = await tools.invoke("shell_info")
        assert result.success
        assert "platform" in result.data

    @pytest.mark.asyncio
    async def test_result_to_dict(self, tools):
        result = await tools.invoke("read", {"path": "missing.txt"})
        data = result.to_dict()
        assert data["success"] is False
        assert data["tool"] == "read"
        assert "data" not in data
