import pytest

from planforge.errors import WorkspacePathError
from planforge.filesystem import WorkspaceFileSystem


@pytest.mark.asyncio
async def test_write_then_read_creates_parent_directories(workspace):
    await workspace.write_file("nested/dir/notes.md", "# hi")
    assert await workspace.read_file("nested/dir/notes.md") == "# hi"
    assert await workspace.exists("nested/dir/notes.md") is True
    assert await workspace.list_files("nested/dir") == ["notes.md"]


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ["../escape.txt", "a/../../escape.txt", "/etc/passwd"])
async def test_paths_outside_workspace_are_rejected(workspace, path):
    with pytest.raises(WorkspacePathError):
        await workspace.write_file(path, "x")
    assert await workspace.exists(path) is False


@pytest.mark.asyncio
async def test_extension_allow_list(tmp_path):
    fs = WorkspaceFileSystem(str(tmp_path / "ws"), allowed_extensions=[".txt"])
    await fs.write_file("ok.txt", "fine")
    with pytest.raises(WorkspacePathError, match="extension"):
        await fs.write_file("script.sh", "rm -rf /")


@pytest.mark.asyncio
async def test_size_limit_applies_to_writes(tmp_path):
    fs = WorkspaceFileSystem(str(tmp_path / "ws"), max_file_size=4)
    with pytest.raises(ValueError, match="too large"):
        await fs.write_file("big.txt", "12345")


@pytest.mark.asyncio
async def test_missing_file_raises(workspace):
    with pytest.raises(FileNotFoundError):
        await workspace.read_file("nope.txt")


@pytest.mark.asyncio
async def test_file_tools_through_registry(file_registry, workspace):
    created = await file_registry.execute("create_file", {"path": "a.txt", "content": "alpha"})
    assert created.success is True
    assert created.output == "File created: a.txt"

    written = await file_registry.execute("write_file", {"path": "a.txt", "content": "beta"})
    assert written.output == "File written: a.txt"

    read = await file_registry.execute("read_file", {"path": "a.txt"})
    assert read.output == "beta"

    listed = await file_registry.execute("list_files", {})
    assert listed.output == ["a.txt"]


@pytest.mark.asyncio
async def test_file_tool_errors_become_failed_results(file_registry):
    escaped = await file_registry.execute("write_file", {"path": "../x.txt", "content": "x"})
    assert escaped.success is False
    assert "outside workspace" in escaped.error

    missing = await file_registry.execute("read_file", {"path": "ghost.txt"})
    assert missing.success is False
    assert "File not found" in missing.error
