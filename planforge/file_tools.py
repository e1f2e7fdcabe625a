from typing import Any, Dict, List

from .filesystem import WorkspaceFileSystem
from .schemas import ParameterSpec, ToolResult
from .tool_registry import Tool, ToolRegistry


def _path_spec() -> ParameterSpec:
    return ParameterSpec(type="string", required=True, description="Path to the file")


def build_file_tools(fs: WorkspaceFileSystem) -> List[Tool]:
    async def create_file(params: Dict[str, Any]) -> ToolResult:
        await fs.write_file(params["path"], params["content"])
        return ToolResult(success=True, output=f"File created: {params['path']}")

    async def write_file(params: Dict[str, Any]) -> ToolResult:
        await fs.write_file(params["path"], params["content"])
        return ToolResult(success=True, output=f"File written: {params['path']}")

    async def read_file(params: Dict[str, Any]) -> ToolResult:
        content = await fs.read_file(params["path"])
        return ToolResult(success=True, output=content)

    async def list_files(params: Dict[str, Any]) -> ToolResult:
        names = await fs.list_files(params.get("path") or ".")
        return ToolResult(success=True, output=names)

    content_spec = ParameterSpec(type="string", required=True, description="Content to write")
    return [
        Tool(
            name="create_file",
            description="Create a new file with content",
            parameters={"path": _path_spec(), "content": content_spec},
            execute=create_file,
        ),
        Tool(
            name="write_file",
            description="Write content to a file (creates or overwrites)",
            parameters={"path": _path_spec(), "content": content_spec},
            execute=write_file,
        ),
        Tool(
            name="read_file",
            description="Read content from a file",
            parameters={"path": _path_spec()},
            execute=read_file,
        ),
        Tool(
            name="list_files",
            description="List files in a workspace directory",
            parameters={
                "path": ParameterSpec(type="string", description="Directory to list", default=".")
            },
            execute=list_files,
        ),
    ]


def register_file_tools(registry: ToolRegistry, fs: WorkspaceFileSystem) -> None:
    for tool in build_file_tools(fs):
        registry.register(tool)
