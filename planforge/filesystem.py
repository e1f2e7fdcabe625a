import asyncio
from pathlib import Path
from typing import List, Optional

from .errors import WorkspacePathError


DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024


class WorkspaceFileSystem:
    """File access sandboxed to a single workspace root."""

    def __init__(
        self,
        root: str,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        allowed_extensions: Optional[List[str]] = None,
    ):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self.max_file_size = max_file_size
        self.allowed_extensions = (
            {ext.lower() for ext in allowed_extensions} if allowed_extensions else None
        )

    def resolve_path(self, path_value: str) -> Path:
        if path_value is None:
            raise WorkspacePathError("Missing path")
        raw = str(path_value).strip()
        if not raw:
            raise WorkspacePathError("Missing path")
        resolved = (self.root / raw).resolve()
        if resolved != self.root and self.root not in resolved.parents:
            raise WorkspacePathError(f"Path outside workspace: {raw}")
        if self.allowed_extensions is not None and resolved.suffix.lower() not in self.allowed_extensions:
            raise WorkspacePathError(f"File extension not allowed: {resolved.suffix}")
        return resolved

    async def read_file(self, path_value: str) -> str:
        resolved = self.resolve_path(path_value)

        def _read() -> str:
            if not resolved.is_file():
                raise FileNotFoundError(f"File not found: {path_value}")
            size = resolved.stat().st_size
            if size > self.max_file_size:
                raise ValueError(
                    f"File too large: {path_value} ({size} bytes, max {self.max_file_size})"
                )
            return resolved.read_text(encoding="utf-8")

        return await asyncio.to_thread(_read)

    async def write_file(self, path_value: str, content: str) -> None:
        resolved = self.resolve_path(path_value)
        size = len(content.encode("utf-8"))
        if size > self.max_file_size:
            raise ValueError(f"Content too large: {size} bytes, max {self.max_file_size}")

        def _write() -> None:
            resolved.parent.mkdir(parents=True, exist_ok=True)
            resolved.write_text(content, encoding="utf-8")

        await asyncio.to_thread(_write)

    async def list_files(self, path_value: str = ".") -> List[str]:
        resolved = self.resolve_path(path_value) if path_value not in ("", ".") else self.root

        def _list() -> List[str]:
            if not resolved.exists():
                raise FileNotFoundError(f"Directory not found: {path_value}")
            if not resolved.is_dir():
                raise NotADirectoryError(f"Not a directory: {path_value}")
            return sorted(entry.name for entry in resolved.iterdir() if entry.is_file())

        return await asyncio.to_thread(_list)

    async def exists(self, path_value: str) -> bool:
        try:
            resolved = self.resolve_path(path_value)
        except WorkspacePathError:
            return False
        return resolved.exists()
