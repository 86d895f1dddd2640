"""
CLI module for sandbox-tools.

Provides a command-line interface for invoking the sandbox tools,
streaming tail/watch events and running allowlisted commands.
"""

from sandbox_tools.cli.main import cli

__all__ = ["cli"]
