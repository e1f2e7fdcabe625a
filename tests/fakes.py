import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from planforge.config import AgentSettings, EndpointConfig
from planforge.errors import ProviderError
from planforge.schemas import CompletionResponse, ParameterSpec, TokenUsage, ToolResult
from planforge.tool_registry import Tool


ScriptItem = Union[str, Dict[str, Any], Exception]


class FakeProvider:
    """Completion provider that replays scripted responses in order."""

    def __init__(self, name: str, responses: Optional[List[ScriptItem]] = None) -> None:
        self.name = name
        self.responses: List[ScriptItem] = list(responses or [])
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def queue(self, *items: ScriptItem) -> None:
        self.responses.extend(items)

    async def generate(
        self,
        prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 2000,
    ) -> CompletionResponse:
        self.calls.append({"prompt": prompt, "temperature": temperature, "max_tokens": max_tokens})
        if not self.responses:
            raise ProviderError(f"{self.name}: no scripted response")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        text = item if isinstance(item, str) else json.dumps(item)
        return CompletionResponse(
            text=text,
            model=f"{self.name}-model",
            provider=self.name,
            tokens_used=TokenUsage(input=5, output=5, total=10),
            cost=0.01,
        )

    async def close(self) -> None:
        self.closed = True


class CountingTool:
    """Callable tool body that records invocations and fails on demand."""

    def __init__(self, fail_times: int = 0, output: Any = "ok", raise_error: bool = False) -> None:
        self.fail_times = fail_times
        self.output = output
        self.raise_error = raise_error
        self.calls: List[Dict[str, Any]] = []

    async def __call__(self, params: Dict[str, Any]) -> ToolResult:
        self.calls.append(dict(params))
        if len(self.calls) <= self.fail_times:
            if self.raise_error:
                raise RuntimeError(f"boom #{len(self.calls)}")
            return ToolResult(success=False, error=f"failure #{len(self.calls)}")
        return ToolResult(success=True, output=self.output)


def make_tool(name: str, body: Any, **params: ParameterSpec) -> Tool:
    return Tool(name=name, description=f"{name} test tool", parameters=dict(params), execute=body)


def two_file_plan() -> Dict[str, Any]:
    return {
        "steps": [
            {
                "id": "step_1",
                "description": "Write A",
                "tool": "create_file",
                "parameters": {"path": "a.txt", "content": "alpha"},
                "dependencies": [],
            },
            {
                "id": "step_2",
                "description": "Read A back",
                "tool": "read_file",
                "parameters": {"path": "a.txt"},
                "dependencies": ["a.txt"],
            },
            {
                "id": "step_3",
                "description": "Write B from A's content",
                "tool": "write_file",
                "parameters": {"path": "out/b.txt", "content": "$step_2"},
                "dependencies": ["step_2"],
            },
        ],
        "estimatedTime": 2,
    }


def make_settings(tmp_path: Path, **overrides) -> AgentSettings:
    settings = AgentSettings(
        fast_endpoint=EndpointConfig(base_url="http://lm.test/v1", model_id="fast-model", name="fast"),
        standard_endpoint=EndpointConfig(base_url="http://lm.test/v1", model_id="std-model", name="standard"),
        premium_endpoint=EndpointConfig(base_url="http://cloud.test/v1", model_id="big-model", name="premium"),
        workspace_root=str(tmp_path / "workspace"),
    )
    if overrides:
        settings = settings.model_copy(update=overrides)
    return settings
