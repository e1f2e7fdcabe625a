from pathlib import Path

import pytest

from planforge.file_tools import register_file_tools
from planforge.filesystem import WorkspaceFileSystem
from planforge.tool_registry import ToolRegistry


@pytest.fixture
def workspace(tmp_path: Path) -> WorkspaceFileSystem:
    return WorkspaceFileSystem(str(tmp_path / "workspace"))


@pytest.fixture
def file_registry(workspace: WorkspaceFileSystem) -> ToolRegistry:
    registry = ToolRegistry()
    register_file_tools(registry, workspace)
    return registry
