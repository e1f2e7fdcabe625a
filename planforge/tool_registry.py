import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .errors import ToolRegistrationError
from .schemas import ParameterSpec, ToolResult


logger = logging.getLogger("planforge.tool_registry")

ToolCallable = Callable[[Dict[str, Any]], Union[Awaitable[Any], Any]]

FILE_WRITE_TOOLS = frozenset({"create_file", "write_file", "file_write"})

_PARAM_TYPE_NAMES = {
    bool: "boolean",
    str: "string",
    dict: "object",
    list: "array",
    tuple: "array",
    int: "number",
    float: "number",
}


def is_file_write_tool(name: str) -> bool:
    return name in FILE_WRITE_TOOLS


def _type_name(value: Any) -> str:
    for py_type, name in _PARAM_TYPE_NAMES.items():
        if isinstance(value, py_type):
            return name
    return type(value).__name__


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    parameters: Dict[str, ParameterSpec]
    execute: ToolCallable

    def schema(self) -> Dict[str, Any]:
        return {
            name: spec.model_dump(exclude_none=True) for name, spec in self.parameters.items()
        }


@dataclass
class ToolStats:
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    average_execution_time_ms: float = 0.0

    def record(self, success: bool, elapsed_ms: float) -> None:
        self.total_executions += 1
        if success:
            self.successful_executions += 1
        else:
            self.failed_executions += 1
        self.average_execution_time_ms = (
            self.average_execution_time_ms * (self.total_executions - 1) + elapsed_ms
        ) / self.total_executions

    def as_dict(self) -> Dict[str, Any]:
        return {
            "total_executions": self.total_executions,
            "successful_executions": self.successful_executions,
            "failed_executions": self.failed_executions,
            "average_execution_time_ms": self.average_execution_time_ms,
        }


class ToolRegistry:
    """Named tools with declared parameter schemas and per-tool execution stats."""

    def __init__(self) -> None:
        self._tools: Dict[str, Tool] = {}
        self._stats: Dict[str, ToolStats] = {}
        self._stats_lock = asyncio.Lock()

    def register(self, tool: Tool) -> None:
        if not isinstance(tool, Tool):
            raise ToolRegistrationError("tool must be a Tool instance")
        self._validate_definition(tool)
        if tool.name in self._tools:
            raise ToolRegistrationError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool
        self._stats[tool.name] = ToolStats()
        logger.debug("Registered tool %s (%d params)", tool.name, len(tool.parameters))

    def unregister(self, name: str) -> bool:
        removed = self._tools.pop(name, None)
        self._stats.pop(name, None)
        return removed is not None

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def list_tools(self) -> List[Tool]:
        return list(self._tools.values())

    def describe(self) -> List[Dict[str, Any]]:
        return [
            {"name": tool.name, "description": tool.description, "parameters": tool.schema()}
            for tool in self._tools.values()
        ]

    def get_stats(self, name: str) -> Optional[Dict[str, Any]]:
        stats = self._stats.get(name)
        return stats.as_dict() if stats else None

    def all_stats(self) -> Dict[str, Dict[str, Any]]:
        return {name: stats.as_dict() for name, stats in self._stats.items()}

    async def execute(self, name: str, params: Optional[Dict[str, Any]] = None) -> ToolResult:
        tool = self._tools.get(name)
        if tool is None:
            return ToolResult(success=False, error=f"Tool '{name}' not found")
        params = dict(params or {})
        error = self._validate_parameters(tool, params)
        if error:
            logger.warning("Rejected call to %s: %s", name, error)
            return ToolResult(success=False, error=error)
        for param_name, spec in tool.parameters.items():
            if param_name not in params and spec.default is not None:
                params[param_name] = spec.default

        started = time.perf_counter()
        try:
            raw = tool.execute(params)
            if inspect.isawaitable(raw):
                raw = await raw
            result = self._coerce_result(raw)
        except Exception as exc:
            result = ToolResult(success=False, error=str(exc) or exc.__class__.__name__)
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        result.metadata = {**result.metadata, "execution_time_ms": elapsed_ms}

        async with self._stats_lock:
            stats = self._stats.get(name)
            if stats is not None:
                stats.record(result.success, elapsed_ms)
        if result.success:
            logger.debug("Tool %s succeeded in %.1fms", name, elapsed_ms)
        else:
            logger.warning("Tool %s failed in %.1fms: %s", name, elapsed_ms, result.error)
        return result

    def _coerce_result(self, raw: Any) -> ToolResult:
        if isinstance(raw, ToolResult):
            return raw
        if isinstance(raw, dict) and "success" in raw:
            return ToolResult(**raw)
        return ToolResult(success=True, output=raw)

    def _validate_definition(self, tool: Tool) -> None:
        if not tool.name or not isinstance(tool.name, str):
            raise ToolRegistrationError("Tool name must be a non-empty string")
        if not tool.description or not isinstance(tool.description, str):
            raise ToolRegistrationError(f"Tool '{tool.name}': description must be a non-empty string")
        if not isinstance(tool.parameters, dict):
            raise ToolRegistrationError(f"Tool '{tool.name}': parameters must be a mapping")
        for param_name, spec in tool.parameters.items():
            if not isinstance(spec, ParameterSpec):
                raise ToolRegistrationError(
                    f"Tool '{tool.name}': parameter '{param_name}' must be a ParameterSpec"
                )
        if not callable(tool.execute):
            raise ToolRegistrationError(f"Tool '{tool.name}': execute must be callable")

    def _validate_parameters(self, tool: Tool, params: Dict[str, Any]) -> Optional[str]:
        for param_name, spec in tool.parameters.items():
            if param_name not in params:
                if spec.required:
                    return f"Missing required parameter: {param_name}"
                continue
            value = params[param_name]
            if value is None:
                continue
            actual = _type_name(value)
            if actual != spec.type:
                return f"Parameter '{param_name}' must be of type {spec.type}, got {actual}"
            if spec.enum and value not in spec.enum:
                allowed = ", ".join(str(item) for item in spec.enum)
                return f"Parameter '{param_name}' must be one of: {allowed}"
        for param_name in params:
            if param_name not in tool.parameters:
                return f"Unexpected parameter: {param_name}"
        return None
