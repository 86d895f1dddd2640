"""
Tests for the sandbox-tools command line.
"""

import os
import tempfile
from pathlib import Path

import pytest
from click.testing import CliRunner

from sandbox_tools.cli.main import cli


@pytest.fixture
def root():
    """Create a temporary sandbox root."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def runner():
    return CliRunner()


class TestCli:
    """Test CLI commands against a temporary root."""

    def test_tools_lists_every_tool(self, root, runner):
        result = runner.invoke(cli, ["--root", str(root), "tools"])
        assert result.exit_code == 0
        assert "multi_edit" in result.output
        assert "list_safe_commands" in result.output

    def test_call_read(self, root, runner):
        (root / "notes.txt").write_text("hello\n")

        result = runner.invoke(
            cli, ["--root", str(root), "call", "read", "--args", '{"path": "notes.txt"}']
        )
        assert result.exit_code == 0
        assert '"success": true' in result.output

    def test_call_failure_exit_code(self, root, runner):
        """Test that a failed tool call exits non-zero."""
        result = runner.invoke(
            cli, ["--root", str(root), "call", "read", "-a", '{"path": "../outside.txt"}']
        )
        assert result.exit_code == 1
        assert "AccessDeniedError" in result.output

    def test_call_invalid_json(self, root, runner):
        result = runner.invoke(cli, ["--root", str(root), "call", "read", "-a", "{path"])
        assert result.exit_code == 2

    def test_check_allowed(self, root, runner):
        result = runner.invoke(cli, ["--root", str(root), "check", "git status"])
        assert result.exit_code == 0
        assert "allowed" in result.output

    def test_check_blocked(self, root, runner):
        result = runner.invoke(cli, ["--root", str(root), "check", "rm -rf /"])
        assert result.exit_code == 1
        assert "blocked" in result.output

    @pytest.mark.skipif(os.name == "nt", reason="requires a POSIX shell")
    def test_exec(self, root, runner):
        result = runner.invoke(cli, ["--root", str(root), "exec", "echo hi"])
        assert result.exit_code == 0
        assert "hi" in result.output

    def test_exec_working_dir_outside(self, root, runner):
        result = runner.invoke(cli, ["--root", str(root), "exec", "ls", "--cwd", ".."])
        assert result.exit_code == 1

    def test_bad_config_file(self, root, runner):
        """Test that an invalid config file is reported, not raised."""
        config = root / "config.yaml"
        config.write_text("sandbx:\n  root: .\n")

        result = runner.invoke(cli, ["--config", str(config), "tools"])
        assert result.exit_code == 1
        assert "Configuration error" in result.output
