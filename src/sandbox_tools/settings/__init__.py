"""
Settings and configuration for the sandbox tools.

Example:
    ```python
    from sandbox_tools.settings import SandboxToolsSettings

    # Load from a file
    settings = SandboxToolsSettings.from_file("~/.sandbox-tools/config.yaml")

    # Or from SANDBOX_TOOLS_* environment variables
    settings = SandboxToolsSettings.from_env()
    print(settings.sandbox.root)
    ```
"""

from sandbox_tools.settings.config import SandboxToolsSettings

__all__ = [
    "SandboxToolsSettings",
]
