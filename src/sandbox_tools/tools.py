"""
Unified tool interface over the sandboxed filesystem and shell.

Provides a closed set of named tools that can be exposed to an agent
through function calling (OpenAI function calling format). Every tool
call returns a :class:`ToolResult`; operational failures never escape
:meth:`SandboxTools.invoke` as exceptions.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from sandbox_tools.filesystem.config import SandboxConfig
from sandbox_tools.filesystem.confiner import PathConfiner, to_posix
from sandbox_tools.filesystem.editor import EditTransaction
from sandbox_tools.filesystem.exceptions import FileSystemError
from sandbox_tools.filesystem.models import EditOp, StreamKind
from sandbox_tools.filesystem.reader import SandboxFileReader
from sandbox_tools.filesystem.search import SandboxSearchEngine
from sandbox_tools.filesystem.streams import ChangeSource, StreamEngine, StreamSession
from sandbox_tools.filesystem.writer import SandboxFileWriter
from sandbox_tools.shell.classifier import SafetyClassifier
from sandbox_tools.shell.exceptions import CommandError
from sandbox_tools.shell.runner import CommandRunner

logger = logging.getLogger(__name__)


class ToolName(str, Enum):
    """Names of the available tools."""

    LIST = "list"
    READ = "read"
    WRITE = "write"
    MKDIR = "mkdir"
    DELETE = "delete"
    RENAME = "rename"
    COPY = "copy"
    STAT = "stat"
    GLOB = "glob"
    GREP = "grep"
    SEARCH = "search"
    EDIT = "edit"
    MULTI_EDIT = "multi_edit"
    TAIL = "tail"
    PWD = "pwd"
    CD = "cd"
    EXECUTE = "execute"
    LIST_SAFE_COMMANDS = "list_safe_commands"
    SHELL_INFO = "shell_info"


# camelCase names used by existing clients
_ALIASES = {
    "multiEdit": ToolName.MULTI_EDIT,
    "listSafeCommands": ToolName.LIST_SAFE_COMMANDS,
    "shellInfo": ToolName.SHELL_INFO,
    "whichShell": ToolName.SHELL_INFO,
}


def resolve_tool_name(name: Union[str, ToolName]) -> ToolName:
    """
    Map a tool name (or known alias) to a :class:`ToolName`.

    Raises:
        ValueError: If the name is unknown
    """
    if isinstance(name, ToolName):
        return name
    if name in _ALIASES:
        return _ALIASES[name]
    return ToolName(name)


class ToolArgs(BaseModel):
    """Base for tool argument models; unknown arguments are rejected."""

    model_config = ConfigDict(extra="forbid")


class NoArgs(ToolArgs):
    pass


class PathArgs(ToolArgs):
    path: str = Field(description="Path inside the sandbox (relative to the root or absolute)")


class ListArgs(ToolArgs):
    path: str = Field(default=".", description="Directory to list (default: sandbox root)")


class ReadArgs(PathArgs):
    offset: Optional[int] = Field(default=None, ge=1, description="First line to return (1-based)")
    limit: Optional[int] = Field(default=None, ge=0, description="Maximum number of lines to return")


class WriteArgs(PathArgs):
    content: str = Field(description="Content to write; replaces the file")


class RenameArgs(ToolArgs):
    old_path: str = Field(description="Existing path")
    new_path: str = Field(description="New path (must not exist)")


class CopyArgs(ToolArgs):
    source: str = Field(description="Path to copy")
    destination: str = Field(description="Destination path")
    recursive: bool = Field(default=False, description="Copy directories recursively")


class GlobArgs(ToolArgs):
    pattern: str = Field(description="Glob pattern, e.g. '*.py' or 'src/**/*.ts'")
    path: str = Field(default=".", description="Directory to search from")
    recursive: bool = Field(default=True, description="Descend into subdirectories")


class GrepArgs(ToolArgs):
    pattern: str = Field(description="Regular expression to search for")
    path: str = Field(default=".", description="File or directory to search")
    recursive: bool = Field(default=True, description="Descend into subdirectories")
    case_sensitive: bool = Field(default=True, description="Case-sensitive matching")
    file_filter: Optional[str] = Field(
        default=None, description="Only search files whose name matches this glob"
    )


class SearchArgs(ToolArgs):
    pattern: str = Field(description="Glob pattern matched against root-relative paths")
    path: str = Field(default=".", description="Directory to search from")
    limit: Optional[int] = Field(default=None, ge=1, description="Maximum results (most recent first)")


class EditArgs(PathArgs):
    old_text: str = Field(description="Exact text to replace")
    new_text: str = Field(description="Replacement text")
    replace_all: bool = Field(default=False, description="Replace every occurrence")


class MultiEditArgs(PathArgs):
    edits: list[EditOp] = Field(description="Edits applied in order; all or nothing")


class TailArgs(PathArgs):
    lines: Optional[int] = Field(default=None, ge=0, description="Number of trailing lines")


class ExecuteArgs(ToolArgs):
    command: str = Field(description="Command to run (allowlisted commands only)")
    working_dir: Optional[str] = Field(
        default=None, description="Working directory inside the sandbox (default: root)"
    )


class ListSafeCommandsArgs(ToolArgs):
    category: Optional[str] = Field(
        default=None, description="One of file, text, system, network, dev"
    )


class ToolResult(BaseModel):
    """Outcome of a tool call."""

    success: bool
    tool: str
    data: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "tool": self.tool, "data": self.data}
        return {
            "success": False,
            "tool": self.tool,
            "error": self.error,
            "error_type": self.error_type,
        }


TOOL_ARGS: dict[ToolName, type[ToolArgs]] = {
    ToolName.LIST: ListArgs,
    ToolName.READ: ReadArgs,
    ToolName.WRITE: WriteArgs,
    ToolName.MKDIR: PathArgs,
    ToolName.DELETE: PathArgs,
    ToolName.RENAME: RenameArgs,
    ToolName.COPY: CopyArgs,
    ToolName.STAT: PathArgs,
    ToolName.GLOB: GlobArgs,
    ToolName.GREP: GrepArgs,
    ToolName.SEARCH: SearchArgs,
    ToolName.EDIT: EditArgs,
    ToolName.MULTI_EDIT: MultiEditArgs,
    ToolName.TAIL: TailArgs,
    ToolName.PWD: NoArgs,
    ToolName.CD: PathArgs,
    ToolName.EXECUTE: ExecuteArgs,
    ToolName.LIST_SAFE_COMMANDS: ListSafeCommandsArgs,
    ToolName.SHELL_INFO: NoArgs,
}

TOOL_DESCRIPTIONS: dict[ToolName, str] = {
    ToolName.LIST: "List the entries of a directory with kind, size and modification time.",
    ToolName.READ: "Read a text file, optionally a window of lines (1-based offset and limit).",
    ToolName.WRITE: "Write a text file, replacing its content. Parent directories are created.",
    ToolName.MKDIR: "Create a directory and any missing parents.",
    ToolName.DELETE: "Delete a file, or a directory with all of its contents.",
    ToolName.RENAME: "Rename or move a file or directory within the sandbox.",
    ToolName.COPY: "Copy a file, or a directory when recursive is set.",
    ToolName.STAT: "Get size, timestamps, permissions and kind of a path.",
    ToolName.GLOB: "Find files and directories whose name (or relative path) matches a glob.",
    ToolName.GREP: "Search file contents with a regular expression; returns matching lines.",
    ToolName.SEARCH: "Find files by glob over root-relative paths, most recently modified first.",
    ToolName.EDIT: "Replace exact text in a file. Fails without writing if the text is missing.",
    ToolName.MULTI_EDIT: "Apply several exact-text edits to one file; all succeed or none are written.",
    ToolName.TAIL: "Return the last lines of a file and its total line count.",
    ToolName.PWD: "Return the current sandbox root.",
    ToolName.CD: "Move the sandbox root to a directory inside the current root.",
    ToolName.EXECUTE: "Run an allowlisted shell command inside the sandbox with a time limit.",
    ToolName.LIST_SAFE_COMMANDS: "List example commands that are allowed, by category.",
    ToolName.SHELL_INFO: "Describe the shell and platform commands run under.",
}

if set(TOOL_ARGS) != set(ToolName) or set(TOOL_DESCRIPTIONS) != set(ToolName):
    raise RuntimeError("Tool tables do not cover ToolName exactly")


def _inline_refs(schema: Any, defs: dict[str, Any]) -> Any:
    """Replace ``$ref`` pointers with their definitions and drop titles."""
    if isinstance(schema, dict):
        if "$ref" in schema:
            return _inline_refs(defs[schema["$ref"].split("/")[-1]], defs)
        return {
            key: _inline_refs(value, defs)
            for key, value in schema.items()
            if key not in ("title", "$defs")
        }
    if isinstance(schema, list):
        return [_inline_refs(item, defs) for item in schema]
    return schema


def parameters_schema(model: type[BaseModel]) -> dict[str, Any]:
    """JSON schema of an argument model, flattened for function calling."""
    schema = model.model_json_schema()
    parameters = _inline_refs(schema, schema.get("$defs", {}))
    parameters.setdefault("properties", {})
    return parameters


class SandboxTools:
    """
    Unified sandbox interface for agent function calling.

    Usage:
        config = SandboxConfig(root=Path("/srv/sandbox"))
        tools = SandboxTools(config)

        # Get tool schemas for the model
        schemas = tools.get_tool_schemas()

        # Execute a tool call
        result = await tools.invoke("read", {"path": "notes.txt"})
        if result.success:
            print(result.data["content"])
    """

    def __init__(
        self,
        config: Optional[SandboxConfig] = None,
        change_source: Optional[ChangeSource] = None,
    ):
        """
        Initialize the sandbox tools.

        Args:
            config: Sandbox configuration (default: SandboxConfig())
            change_source: Change notification source for streams
                (default: watchfiles)
        """
        self.config = config or SandboxConfig()
        self.config.ensure_root()
        self.confiner = PathConfiner(self.config.root)
        self.reader = SandboxFileReader(self.config, self.confiner)
        self.writer = SandboxFileWriter(self.config, self.confiner)
        self.search = SandboxSearchEngine(self.config, self.confiner)
        self.editor = EditTransaction(self.config, self.confiner)
        self.streams = StreamEngine(self.config, self.confiner, change_source)
        self.classifier = SafetyClassifier(self.confiner)
        self.runner = CommandRunner(self.config, self.confiner, self.classifier)

        missing = [t.value for t in ToolName if not hasattr(self, f"_{t.value}")]
        if missing:
            raise RuntimeError(f"No handler for tools: {missing}")

    def get_tool_schemas(self) -> list[dict[str, Any]]:
        """
        Get OpenAI function calling schemas for all available tools.

        Returns:
            List of tool schemas in OpenAI format
        """
        schemas = []
        for name, args_model in TOOL_ARGS.items():
            if name == ToolName.EXECUTE and not self.config.allow_commands:
                continue
            schemas.append(
                {
                    "type": "function",
                    "function": {
                        "name": name.value,
                        "description": TOOL_DESCRIPTIONS[name],
                        "parameters": parameters_schema(args_model),
                    },
                }
            )
        return schemas

    async def invoke(
        self, tool_name: Union[str, ToolName], arguments: Optional[dict[str, Any]] = None
    ) -> ToolResult:
        """
        Execute a tool call.

        Args:
            tool_name: Name of the tool to execute
            arguments: Tool arguments (from the function call)

        Returns:
            ToolResult; failures are reported with ``success=False``
        """
        try:
            name = resolve_tool_name(tool_name)
        except ValueError:
            logger.warning(f"Unknown tool requested: {tool_name}")
            return ToolResult(
                success=False,
                tool=str(tool_name),
                error=f"Unknown tool: {tool_name}",
                error_type="UnknownToolError",
            )

        args_model = TOOL_ARGS[name]
        handler = getattr(self, f"_{name.value}")
        try:
            args = args_model.model_validate(arguments or {})
        except ValidationError as e:
            logger.warning(f"Invalid arguments for {name.value}: {e}")
            return ToolResult(
                success=False,
                tool=name.value,
                error=f"Invalid arguments: {e}",
                error_type="InvalidArgumentsError",
            )

        try:
            data = await handler(args)
        except (FileSystemError, CommandError, OSError, UnicodeDecodeError) as e:
            logger.warning(f"Tool {name.value} failed: {e}")
            return ToolResult(
                success=False, tool=name.value, error=str(e), error_type=type(e).__name__
            )
        except Exception as e:
            logger.error(f"Tool {name.value} unexpected error: {e}")
            return ToolResult(
                success=False,
                tool=name.value,
                error=f"Unexpected error: {e}",
                error_type="UnexpectedError",
            )

        logger.debug(f"Tool {name.value} succeeded")
        return ToolResult(success=True, tool=name.value, data=data)

    def open_stream(self, kind: Union[str, StreamKind], path: str) -> StreamSession:
        """
        Open a tail or watch stream session on a sandbox path.

        Raises:
            ValueError: If the kind is unknown
        """
        return self.streams.open(kind, path)

    async def _list(self, args: ListArgs) -> list[dict[str, Any]]:
        entries = await asyncio.to_thread(self.reader.list_directory, args.path)
        return [e.model_dump(mode="json") for e in entries]

    async def _read(self, args: ReadArgs) -> dict[str, Any]:
        content = await asyncio.to_thread(
            self.reader.read_file, args.path, args.offset, args.limit
        )
        return content.model_dump(mode="json")

    async def _write(self, args: WriteArgs) -> dict[str, Any]:
        resolved = await asyncio.to_thread(self.writer.write_file, args.path, args.content)
        return {"path": resolved.relative, "size": len(args.content.encode("utf-8"))}

    async def _mkdir(self, args: PathArgs) -> dict[str, Any]:
        resolved = await asyncio.to_thread(self.writer.create_directory, args.path)
        return {"path": resolved.relative}

    async def _delete(self, args: PathArgs) -> dict[str, Any]:
        resolved = await asyncio.to_thread(self.writer.delete, args.path)
        return {"path": resolved.relative}

    async def _rename(self, args: RenameArgs) -> dict[str, Any]:
        source, target = await asyncio.to_thread(
            self.writer.rename, args.old_path, args.new_path
        )
        return {"old_path": source.relative, "new_path": target.relative}

    async def _copy(self, args: CopyArgs) -> dict[str, Any]:
        source, target = await asyncio.to_thread(
            self.writer.copy, args.source, args.destination, args.recursive
        )
        return {"source": source.relative, "destination": target.relative}

    async def _stat(self, args: PathArgs) -> dict[str, Any]:
        info = await asyncio.to_thread(self.reader.stat, args.path)
        return info.model_dump(mode="json")

    async def _glob(self, args: GlobArgs) -> dict[str, Any]:
        results = await self.search.glob(args.pattern, args.path, recursive=args.recursive)
        return results.to_dict()

    async def _grep(self, args: GrepArgs) -> dict[str, Any]:
        results = await self.search.grep(
            args.pattern,
            args.path,
            recursive=args.recursive,
            case_sensitive=args.case_sensitive,
            file_filter=args.file_filter,
        )
        return results.to_dict()

    async def _search(self, args: SearchArgs) -> dict[str, Any]:
        results = await self.search.search(args.pattern, args.path, limit=args.limit)
        return results.to_dict()

    async def _edit(self, args: EditArgs) -> dict[str, Any]:
        summary = await asyncio.to_thread(
            self.editor.edit, args.path, args.old_text, args.new_text, args.replace_all
        )
        return {"path": summary.path, "replaced_count": summary.replaced_count}

    async def _multi_edit(self, args: MultiEditArgs) -> dict[str, Any]:
        summary = await asyncio.to_thread(self.editor.apply_edits, args.path, args.edits)
        return {
            "path": summary.path,
            "per_edit_counts": summary.per_edit_counts,
            "replaced_count": summary.replaced_count,
        }

    async def _tail(self, args: TailArgs) -> dict[str, Any]:
        snapshot = await asyncio.to_thread(self.reader.tail, args.path, args.lines)
        return snapshot.model_dump(mode="json")

    async def _pwd(self, args: NoArgs) -> str:
        return to_posix(self.confiner.root)

    async def _cd(self, args: PathArgs) -> dict[str, Any]:
        root = await asyncio.to_thread(self.confiner.change_root, args.path)
        return {"root": to_posix(root)}

    async def _execute(self, args: ExecuteArgs) -> dict[str, Any]:
        result = await self.runner.execute(args.command, working_dir=args.working_dir)
        return result.to_dict()

    async def _list_safe_commands(self, args: ListSafeCommandsArgs) -> dict[str, Any]:
        return {
            "description": "Commands allowed in the sandbox, by category",
            "note": (
                "Only allowlisted commands run. Substitution, redirection and "
                "background jobs are rejected; rm, mv, cp, mkdir, rmdir and touch "
                "may only name paths inside the sandbox."
            ),
            "commands": self.classifier.list_safe_commands(args.category),
        }

    async def _shell_info(self, args: NoArgs) -> dict[str, Any]:
        return self.runner.shell_info()

    def get_summary(self) -> dict[str, Any]:
        """
        Get a summary of the sandbox configuration.

        Returns:
            Dict with configuration summary
        """
        return {
            "root": to_posix(self.confiner.root),
            "tools": [t.value for t in ToolName],
            "max_file_size_mb": self.config.max_file_size_bytes / (1024 * 1024),
            "max_write_size_mb": self.config.max_write_size_bytes / (1024 * 1024),
            "glob_result_limit": self.config.glob_result_limit,
            "grep_result_limit": self.config.grep_result_limit,
            "max_search_depth": self.config.max_search_depth,
            "allow_commands": self.config.allow_commands,
            "command_timeout_seconds": self.config.command_timeout_seconds,
        }
