"""
Example: Driving the sandbox tools the way an agent would

This example creates a throwaway sandbox, writes and edits a file,
searches it, runs an allowlisted command and follows a log file with a
tail stream. Tool results are printed as the JSON an agent would see.
"""

import asyncio
import json
import tempfile
from pathlib import Path

from sandbox_tools import SandboxConfig, SandboxTools


async def show(tools: SandboxTools, name: str, arguments: dict) -> None:
    result = await tools.invoke(name, arguments)
    print(f"--> {name} {json.dumps(arguments)}")
    print(json.dumps(result.to_dict(), indent=2, default=str))


async def follow_log(tools: SandboxTools, path: Path) -> None:
    """Tail a log while another task appends to it."""
    async def writer():
        for i in range(3):
            await asyncio.sleep(0.3)
            with open(path, "a") as f:
                f.write(f"event {i}\n")

    task = asyncio.create_task(writer())
    async with tools.open_stream("tail", path.name) as session:
        async for event in session:
            print(json.dumps(event.to_dict()))
            if event.data.get("lines") == ["event 2"]:
                break
    await task


async def main():
    with tempfile.TemporaryDirectory() as tmpdir:
        tools = SandboxTools(SandboxConfig(root=Path(tmpdir)))

        print("Available tools:")
        for schema in tools.get_tool_schemas():
            print(f"  {schema['function']['name']}: {schema['function']['description']}")

        await show(tools, "write", {"path": "app/settings.ini", "content": "debug=0\nlevel=1\n"})
        await show(
            tools,
            "multi_edit",
            {
                "path": "app/settings.ini",
                "edits": [
                    {"old_text": "debug=0", "new_text": "debug=1"},
                    {"old_text": "level=1", "new_text": "level=3"},
                ],
            },
        )
        await show(tools, "grep", {"pattern": r"level=\d", "file_filter": "*.ini"})
        await show(tools, "read", {"path": "../../etc/passwd"})
        await show(tools, "execute", {"command": "ls -la app"})
        await show(tools, "execute", {"command": "rm -rf /"})

        log = Path(tmpdir) / "app.log"
        log.write_text("started\n")
        await follow_log(tools, log)


if __name__ == "__main__":
    asyncio.run(main())
