"""
CLI for sandbox-tools.

Invoke sandbox tools from the command line, stream tail/watch events and
run allowlisted commands.
"""

import asyncio
import json
import logging
import sys
from typing import Optional

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from sandbox_tools import __version__
from sandbox_tools.filesystem.config import SandboxConfig
from sandbox_tools.filesystem.exceptions import FileSystemError
from sandbox_tools.filesystem.models import StreamEventType
from sandbox_tools.settings.config import SandboxToolsSettings
from sandbox_tools.shell.exceptions import CommandError
from sandbox_tools.tools import TOOL_DESCRIPTIONS, SandboxTools, ToolName

# Load environment variables
load_dotenv()

console = Console()
err_console = Console(stderr=True)


def setup_logging(verbose: bool = False, level: str = "INFO") -> None:
    """Setup rich logging."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level, logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True)],
    )
    # Reduce noise from the file watcher
    logging.getLogger("watchfiles").setLevel(logging.WARNING)


def load_settings(config_path: Optional[str], root: Optional[str]) -> SandboxToolsSettings:
    """Settings from a file (if given) or the environment, with --root applied."""
    if config_path:
        settings = SandboxToolsSettings.from_file(config_path)
    else:
        settings = SandboxToolsSettings.from_env()
    if root:
        settings.sandbox = SandboxConfig(**{**settings.sandbox.model_dump(), "root": root})
    return settings


def print_json(data) -> None:
    console.print_json(json.dumps(data, default=str))


@click.group()
@click.version_option(version=__version__)
@click.option("--root", "-r", default=None, help="Sandbox root directory")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True),
    default=None,
    help="Configuration file (YAML or JSON)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, root: Optional[str], config_path: Optional[str], verbose: bool):
    """Sandbox Tools CLI - confined filesystem and shell tools."""
    try:
        settings = load_settings(config_path, root)
    except (ValueError, FileNotFoundError) as e:
        err_console.print(f"[bold red]Configuration error:[/bold red] {e}")
        sys.exit(1)
    setup_logging(verbose, settings.log_level)
    ctx.obj = SandboxTools(settings.sandbox)


@cli.command()
@click.pass_obj
def tools(sandbox: SandboxTools):
    """List available tools."""
    table = Table(title=f"Tools (root: {sandbox.confiner.root.as_posix()})")
    table.add_column("Tool", style="green")
    table.add_column("Description")
    for name in ToolName:
        table.add_row(name.value, TOOL_DESCRIPTIONS[name])
    console.print(table)


@cli.command()
@click.argument("tool")
@click.option("--args", "-a", "args_json", default="{}", help="Tool arguments as a JSON object")
@click.pass_obj
def call(sandbox: SandboxTools, tool: str, args_json: str):
    """
    Invoke one tool and print the result as JSON.

    Examples:

        sandbox-tools call read --args '{"path": "notes.txt"}'

        sandbox-tools call grep -a '{"pattern": "TODO", "file_filter": "*.py"}'
    """
    try:
        arguments = json.loads(args_json)
    except json.JSONDecodeError as e:
        err_console.print(f"[bold red]Invalid JSON arguments:[/bold red] {e}")
        sys.exit(2)

    result = asyncio.run(sandbox.invoke(tool, arguments))
    print_json(result.to_dict())
    if not result.success:
        sys.exit(1)


async def _stream(sandbox: SandboxTools, kind: str, path: str) -> int:
    exit_code = 0
    async with sandbox.open_stream(kind, path) as session:
        async for event in session:
            print_json(event.to_dict())
            if event.type == StreamEventType.ERROR:
                exit_code = 1
    return exit_code


def _run_stream(sandbox: SandboxTools, kind: str, path: str) -> None:
    try:
        exit_code = asyncio.run(_stream(sandbox, kind, path))
    except KeyboardInterrupt:
        console.print("[yellow]Stopped.[/yellow]")
        return
    sys.exit(exit_code)


@cli.command()
@click.argument("path")
@click.pass_obj
def watch(sandbox: SandboxTools, path: str):
    """Watch a file or directory for changes until Ctrl-C."""
    _run_stream(sandbox, "watch", path)


@cli.command()
@click.argument("path")
@click.pass_obj
def tail(sandbox: SandboxTools, path: str):
    """Follow a file's appended lines until Ctrl-C."""
    _run_stream(sandbox, "tail", path)


@cli.command(name="exec")
@click.argument("command")
@click.option("--cwd", default=None, help="Working directory inside the sandbox")
@click.pass_obj
def exec_command(sandbox: SandboxTools, command: str, cwd: Optional[str]):
    """Classify and run an allowlisted command."""
    try:
        result = asyncio.run(sandbox.runner.execute(command, working_dir=cwd))
    except (CommandError, FileSystemError, OSError) as e:
        err_console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)

    if result.stdout:
        console.out(result.stdout)
    if result.stderr:
        err_console.out(result.stderr)
    sys.exit(result.exit_code)


@cli.command()
@click.argument("command")
@click.pass_obj
def check(sandbox: SandboxTools, command: str):
    """Classify a command without running it."""
    verdict = sandbox.classifier.classify(command)
    if verdict.allowed:
        console.print(f"[green]allowed[/green] {verdict.reason}")
    else:
        console.print(f"[red]blocked[/red] {verdict.reason}")
        sys.exit(1)


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
