"""
Sandbox tools configuration.

This module provides configuration management for the sandbox tools,
loaded from YAML/JSON files or environment variables.
"""

import json
import os
from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator

from sandbox_tools.filesystem.config import SandboxConfig

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


def parse_bool(value: str) -> bool:
    """Parse an environment flag such as ``true``/``0``/``yes``."""
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")


class SandboxToolsSettings(BaseModel):
    """
    Top-level sandbox tools configuration.

    Example:
        ```python
        settings = SandboxToolsSettings.from_file("~/.sandbox-tools/config.yaml")
        tools = SandboxTools(settings.sandbox)
        ```
    """

    model_config = {"extra": "forbid"}

    sandbox: SandboxConfig = Field(
        default_factory=SandboxConfig,
        description="Sandbox root and limits",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Upper-case and validate the log level."""
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Invalid log level: {v} (expected one of {', '.join(LOG_LEVELS)})")
        return level

    def __str__(self) -> str:
        return f"SandboxToolsSettings(root={self.sandbox.root}, log_level={self.log_level})"

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "SandboxToolsSettings":
        """
        Load configuration from a YAML or JSON file.

        File format (YAML):
            ```yaml
            sandbox:
              root: ~/Desktop/Otak
              max_search_depth: 10
              command_timeout_seconds: 30
              allow_commands: true

            log_level: INFO
            ```

        Args:
            path: Path to configuration file

        Returns:
            Loaded SandboxToolsSettings instance

        Raises:
            FileNotFoundError: If the config file doesn't exist
        """
        path = Path(path).expanduser().resolve()

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        content = path.read_text()

        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(content)
        elif path.suffix == ".json":
            data = json.loads(content)
        else:
            # Try YAML first, then JSON
            try:
                data = yaml.safe_load(content)
            except yaml.YAMLError:
                data = json.loads(content)

        return cls.from_dict(data or {})

    @classmethod
    def from_dict(cls, data: dict) -> "SandboxToolsSettings":
        """
        Create configuration from a dictionary.

        Args:
            data: Configuration dictionary

        Returns:
            SandboxToolsSettings instance
        """
        return cls(**data)

    @classmethod
    def from_env(
        cls, prefix: str = "SANDBOX_TOOLS_", environ: Optional[dict[str, str]] = None
    ) -> "SandboxToolsSettings":
        """
        Load configuration from environment variables.

        Environment variables:
            SANDBOX_TOOLS_ROOT - Sandbox root directory
            SANDBOX_TOOLS_ALLOWED_DIRECTORY - Legacy name for the root
            SANDBOX_TOOLS_LOG_LEVEL - Logging level
            SANDBOX_TOOLS_COMMAND_TIMEOUT - Command time budget in seconds
            SANDBOX_TOOLS_ALLOW_COMMANDS - Enable command execution (true/false)

        Args:
            prefix: Environment variable prefix
            environ: Mapping to read instead of os.environ

        Returns:
            SandboxToolsSettings instance

        Raises:
            ValueError: If a variable has an invalid value
        """
        env = os.environ if environ is None else environ

        sandbox: dict = {}
        root = env.get(f"{prefix}ROOT") or env.get(f"{prefix}ALLOWED_DIRECTORY")
        if root:
            sandbox["root"] = root
        timeout = env.get(f"{prefix}COMMAND_TIMEOUT")
        if timeout:
            sandbox["command_timeout_seconds"] = float(timeout)
        allow_commands = env.get(f"{prefix}ALLOW_COMMANDS")
        if allow_commands:
            sandbox["allow_commands"] = parse_bool(allow_commands)

        return cls(
            sandbox=SandboxConfig(**sandbox),
            log_level=env.get(f"{prefix}LOG_LEVEL", "INFO"),
        )

    def to_dict(self) -> dict:
        """
        Export configuration to a dictionary.

        Returns:
            Dictionary representation (JSON/YAML friendly)
        """
        sandbox = self.sandbox.model_dump(mode="json")
        return {"sandbox": sandbox, "log_level": self.log_level}

    def save(self, path: Union[str, Path], format: str = "yaml") -> None:
        """
        Save configuration to a file.

        Args:
            path: Output file path
            format: Output format ('yaml' or 'json')
        """
        path = Path(path).expanduser().resolve()
        path.parent.mkdir(parents=True, exist_ok=True)

        data = self.to_dict()

        if format == "yaml":
            content = yaml.dump(data, default_flow_style=False, sort_keys=False)
        else:
            content = json.dumps(data, indent=2)

        path.write_text(content)
        os.chmod(path, 0o600)
