import re
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from .errors import EngineInvariantError


ParameterType = Literal["string", "number", "boolean", "object", "array"]
StepStatus = Literal["pending", "running", "completed", "failed"]
TaskClass = Literal["planning", "code_generation", "validation", "refactoring", "testing"]

_REF_STRING_RE = re.compile(r"^\$([A-Za-z_][\w\-]*)$")

# pending -> running -> {completed, failed}; a step that never started may fail directly.
_ALLOWED_TRANSITIONS: Dict[str, set] = {
    "pending": {"running", "failed"},
    "running": {"completed", "failed"},
    "completed": set(),
    "failed": set(),
}


class ParameterSpec(BaseModel):
    type: ParameterType
    description: str = ""
    required: bool = False
    enum: Optional[List[Any]] = None
    default: Optional[Any] = None


class ToolResult(BaseModel):
    success: bool
    output: Optional[Any] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class LiteralValue(BaseModel):
    kind: Literal["literal"] = "literal"
    value: Any = None


class StepOutputRef(BaseModel):
    kind: Literal["ref"] = "ref"
    step_id: str


ParamValue = Annotated[Union[LiteralValue, StepOutputRef], Field(discriminator="kind")]


def coerce_param_value(raw: Any) -> Union[LiteralValue, StepOutputRef]:
    """Map a raw model-emitted parameter onto the explicit value sum type.

    ``"$step_1"`` and ``{"$ref": "step_1"}`` become references; anything else is a literal.
    """
    if isinstance(raw, (LiteralValue, StepOutputRef)):
        return raw
    if isinstance(raw, str):
        match = _REF_STRING_RE.match(raw.strip())
        if match:
            return StepOutputRef(step_id=match.group(1))
    if isinstance(raw, dict) and set(raw.keys()) == {"$ref"} and isinstance(raw["$ref"], str):
        return StepOutputRef(step_id=raw["$ref"])
    return LiteralValue(value=raw)


def render_param_value(value: Union[LiteralValue, StepOutputRef]) -> Any:
    if isinstance(value, StepOutputRef):
        return f"${value.step_id}"
    return value.value


class Step(BaseModel):
    id: str
    description: str = ""
    tool: str
    parameters: Dict[str, ParamValue] = Field(default_factory=dict)
    dependencies: List[str] = Field(default_factory=list)
    status: StepStatus = "pending"
    result: Optional[ToolResult] = None

    def transition(self, new_status: StepStatus) -> None:
        if new_status not in _ALLOWED_TRANSITIONS[self.status]:
            raise EngineInvariantError(
                f"Step {self.id}: illegal status transition {self.status} -> {new_status}"
            )
        self.status = new_status

    def literal_param(self, name: str, default: Any = None) -> Any:
        value = self.parameters.get(name)
        if isinstance(value, LiteralValue):
            return value.value
        return default

    def references(self) -> List[str]:
        return [v.step_id for v in self.parameters.values() if isinstance(v, StepOutputRef)]

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump(exclude={"parameters"})
        data["parameters"] = {k: render_param_value(v) for k, v in self.parameters.items()}
        return data


class Plan(BaseModel):
    steps: List[Step]
    dependency_map: Dict[str, List[str]] = Field(default_factory=dict)
    estimated_time: float = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def get_step(self, step_id: str) -> Optional[Step]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def step_ids(self) -> List[str]:
        return [step.id for step in self.steps]

    def rebuild_dependency_map(self) -> None:
        self.dependency_map = {
            step.id: list(step.dependencies) for step in self.steps if step.dependencies
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "steps": [step.to_dict() for step in self.steps],
            "dependency_map": {k: list(v) for k, v in self.dependency_map.items()},
            "estimated_time": self.estimated_time,
            "metadata": dict(self.metadata),
        }


class Artifact(BaseModel):
    path: str
    name: str
    content: str
    type: str
    created_by: str


class ExecutionMetadata(BaseModel):
    total_time_ms: float = 0
    iterations: int = 0
    tools_used: List[str] = Field(default_factory=list)


class ExecutionResult(BaseModel):
    success: bool
    plan: Plan
    completed_steps: List[Step] = Field(default_factory=list)
    failed_steps: List[Step] = Field(default_factory=list)
    output: Optional[Any] = None
    error: Optional[str] = None
    artifacts: List[Artifact] = Field(default_factory=list)
    metadata: ExecutionMetadata = Field(default_factory=ExecutionMetadata)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "plan": self.plan.to_dict(),
            "completed_steps": [step.to_dict() for step in self.completed_steps],
            "failed_steps": [step.to_dict() for step in self.failed_steps],
            "output": self.output,
            "error": self.error,
            "artifacts": [artifact.model_dump() for artifact in self.artifacts],
            "metadata": self.metadata.model_dump(),
        }


class TokenUsage(BaseModel):
    input: int = 0
    output: int = 0
    total: int = 0


class CompletionResponse(BaseModel):
    text: str
    model: str = ""
    provider: str = ""
    tokens_used: TokenUsage = Field(default_factory=TokenUsage)
    cost: float = 0.0
    latency_ms: float = 0.0

    model_config = {"extra": "allow", "protected_namespaces": ()}


class ProviderMetric(BaseModel):
    provider: str
    response_time_ms: float
    quality_score: Optional[float] = None
    validation_passed: bool = True
    tokens_used: int = 0
    cost: float = 0.0
