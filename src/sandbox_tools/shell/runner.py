"""
Run classified commands inside the sandbox with a time budget.
"""

import asyncio
import logging
import os
import platform
import shutil
import signal
import subprocess
import time
from pathlib import Path
from typing import Optional, Union

from sandbox_tools.filesystem.config import SandboxConfig
from sandbox_tools.filesystem.confiner import PathConfiner, to_posix
from sandbox_tools.shell.classifier import IS_WINDOWS, SafetyClassifier
from sandbox_tools.shell.exceptions import CommandBlockedError, CommandsDisabledError
from sandbox_tools.shell.models import TIMEOUT_EXIT_CODE, CommandResult

logger = logging.getLogger(__name__)

# How long to wait for a killed process group to release its pipes.
KILL_GRACE_SECONDS = 5.0

# Repository-local git config can name programs to run; neutralize the
# ones read-only subcommands consult.
_GIT_OVERRIDES = {
    "core.fsmonitor": "false",
    "core.hooksPath": os.devnull,
    "core.pager": "cat",
}


def shell_argv(command: str) -> list[str]:
    """Argument vector that runs ``command`` through the platform shell."""
    if IS_WINDOWS:
        return [os.environ.get("COMSPEC", "cmd.exe"), "/c", command]
    return [shutil.which("bash") or "/bin/sh", "-c", command]


def spawn_options() -> dict:
    """Put the command in its own process group so a timeout can kill all of it."""
    if IS_WINDOWS:
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


async def kill_process_tree(process: asyncio.subprocess.Process) -> None:
    """Kill a spawned shell together with every process it started."""
    if IS_WINDOWS:
        try:
            killer = await asyncio.create_subprocess_exec(
                "taskkill", "/F", "/T", "/PID", str(process.pid),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await killer.wait()
        except OSError as e:
            logger.warning(f"taskkill failed for {process.pid}: {e}")
            process.kill()
        return
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def command_env() -> dict[str, str]:
    env = dict(os.environ)
    env["GIT_CONFIG_NOSYSTEM"] = "1"
    env["GIT_TERMINAL_PROMPT"] = "0"
    env["LESSSECURE"] = "1"
    env["GIT_CONFIG_COUNT"] = str(len(_GIT_OVERRIDES))
    for i, (key, value) in enumerate(_GIT_OVERRIDES.items()):
        env[f"GIT_CONFIG_KEY_{i}"] = key
        env[f"GIT_CONFIG_VALUE_{i}"] = value
    return env


class CommandRunner:
    """
    Executes allowlisted commands with the sandbox as working directory.

    Every command is classified before anything is spawned. A command that
    outlives the time budget is killed and reported with exit code 124.

    Usage:
        confiner = PathConfiner(config.root)
        runner = CommandRunner(config, confiner, SafetyClassifier(confiner))

        result = await runner.execute("ls -la")
        print(result.exit_code, result.stdout)
    """

    def __init__(
        self,
        config: SandboxConfig,
        confiner: PathConfiner,
        classifier: Optional[SafetyClassifier] = None,
    ):
        """
        Initialize the runner.

        Args:
            config: Sandbox configuration
            confiner: Path confiner owning the sandbox root
            classifier: Safety classifier (default: one on the same confiner)
        """
        self.config = config
        self.confiner = confiner
        self.classifier = classifier or SafetyClassifier(confiner)

    async def execute(
        self,
        command: str,
        working_dir: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """
        Classify and run a command.

        Args:
            command: Shell command string
            working_dir: Directory inside the sandbox (default: root)
            timeout: Seconds before the process is killed
                (default: config.command_timeout_seconds)

        Returns:
            CommandResult; a non-zero exit is a result, not an exception

        Raises:
            CommandsDisabledError: If commands are turned off
            CommandBlockedError: If the classifier rejects the command
            AccessDeniedError: If working_dir escapes the sandbox
            NotADirectoryError: If working_dir is not an existing directory
        """
        if not self.config.allow_commands:
            raise CommandsDisabledError(
                "Command execution is disabled", command=command
            )

        cwd = self.confiner.resolve(working_dir or ".")
        if not cwd.path.is_dir():
            raise NotADirectoryError(f"Working directory not found: {cwd.relative}")

        verdict = self.classifier.classify(command, working_dir=cwd.path)
        if not verdict.allowed:
            raise CommandBlockedError(command, verdict.reason)

        budget = timeout if timeout is not None else self.config.command_timeout_seconds
        logger.info(f"Executing in {cwd.path}: {command}")
        started = time.monotonic()

        def elapsed_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        try:
            process = await asyncio.create_subprocess_exec(
                *shell_argv(command),
                cwd=str(cwd.path),
                env=command_env(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                **spawn_options(),
            )
        except OSError as e:
            logger.error(f"Failed to spawn {command!r}: {e}")
            return CommandResult(
                command=command,
                working_directory=to_posix(cwd.path),
                exit_code=1,
                stderr=str(e),
                duration_ms=elapsed_ms(),
            )

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=budget)
        except asyncio.TimeoutError:
            await kill_process_tree(process)
            try:
                await asyncio.wait_for(process.wait(), timeout=KILL_GRACE_SECONDS)
            except asyncio.TimeoutError:
                logger.warning(f"Process {process.pid} did not exit after kill")
            logger.warning(f"Command timed out after {budget:g}s: {command}")
            return CommandResult(
                command=command,
                working_directory=to_posix(cwd.path),
                exit_code=TIMEOUT_EXIT_CODE,
                stderr=f"Command timed out after {budget:g} seconds",
                duration_ms=elapsed_ms(),
                timed_out=True,
                pid=process.pid,
            )

        result = CommandResult(
            command=command,
            working_directory=to_posix(cwd.path),
            exit_code=process.returncode if process.returncode is not None else 1,
            stdout=stdout.decode("utf-8", errors="replace").strip(),
            stderr=stderr.decode("utf-8", errors="replace").strip(),
            duration_ms=elapsed_ms(),
            pid=process.pid,
        )
        logger.debug(f"Command exited with {result.exit_code} in {result.duration_ms}ms")
        return result

    def shell_info(self) -> dict:
        """Describe the shell commands run under."""
        argv = shell_argv("")
        return {
            "platform": "windows" if IS_WINDOWS else "posix",
            "system": platform.system(),
            "architecture": platform.machine(),
            "python_version": platform.python_version(),
            "is_windows": IS_WINDOWS,
            "shell": to_posix(argv[0]),
            "working_directory": to_posix(self.confiner.root),
            "timeout_seconds": self.config.command_timeout_seconds,
            "commands_enabled": self.config.allow_commands,
            "path": os.environ.get("PATH", "").split(os.pathsep)[:5],
        }
