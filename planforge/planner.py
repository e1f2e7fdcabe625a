import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .errors import EngineInvariantError, PlanParseError, PlanValidationError, ProviderError
from .llm import CompletionProvider
from .model_selector import AdaptiveModelSelector
from .plan_parser import parse_plan_text
from .plan_validator import PlanValidator
from .schemas import Plan
from .tool_registry import Tool, ToolRegistry


logger = logging.getLogger("planforge.planner")

PLANNING_TASK_CLASS = "planning"

PLAN_OUTPUT_EXAMPLE = {
    "steps": [
        {
            "id": "step_1",
            "description": "Create the page markup",
            "tool": "create_file",
            "parameters": {"path": "index.html", "content": "<!DOCTYPE html>..."},
            "dependencies": [],
        },
        {
            "id": "step_2",
            "description": "Read the page back to check it",
            "tool": "read_file",
            "parameters": {"path": "index.html"},
            "dependencies": ["step_1"],
        },
    ],
    "estimatedTime": 5,
}

_TASK_TYPE_KEYWORDS = {
    "scaffold-app": ["create app", "new app", "scaffold", "initialize project", "setup project"],
    "api-endpoint": ["api", "endpoint", "route", "rest api"],
    "testing": ["unit test", "integration test", "e2e test", "test"],
    "documentation": ["document", "readme", "docs"],
    "refactor": ["refactor", "restructure", "reorganize", "clean up"],
    "bugfix": ["fix", "bug", "error", "broken"],
    "feature": ["add feature", "implement", "new feature", "functionality"],
}
_COMPLEX_HINTS = ("full", "complete", "multiple", "system", "integrate", "authentication", "database")


@dataclass
class TaskAnalysis:
    type: str
    complexity: str

    def as_dict(self) -> Dict[str, str]:
        return {"type": self.type, "complexity": self.complexity}


def analyze_task(task_text: str) -> TaskAnalysis:
    lowered = (task_text or "").lower()
    task_type = "unknown"
    for candidate, keywords in _TASK_TYPE_KEYWORDS.items():
        if any(keyword in lowered for keyword in keywords):
            task_type = candidate
            break
    words = len(lowered.split())
    hints = sum(1 for hint in _COMPLEX_HINTS if hint in lowered)
    if words > 60 or hints >= 2:
        complexity = "complex"
    elif words > 20 or hints == 1:
        complexity = "moderate"
    else:
        complexity = "simple"
    return TaskAnalysis(type=task_type, complexity=complexity)


def render_tools(tools: List[Tool]) -> str:
    lines: List[str] = []
    for tool in tools:
        lines.append(f"- {tool.name}: {tool.description}")
        lines.append(f"  Parameters: {json.dumps(tool.schema(), ensure_ascii=True)}")
    return "\n".join(lines)


def build_planning_prompt(task_text: str, tools: List[Tool]) -> str:
    return (
        "You MUST return ONLY valid JSON. NO explanations, NO markdown, NO code blocks.\n\n"
        f"TASK: {task_text.strip()}\n\n"
        f"TOOLS:\n{render_tools(tools)}\n\n"
        "RULES:\n"
        "1. Use only the tools listed above, with exactly the parameters they declare.\n"
        '2. Every step has a unique id of the form "step_N".\n'
        '3. "dependencies" lists step ids (like "step_1"), NEVER file names.\n'
        "4. If a step needs a file created by another step, depend on that step's id.\n"
        '5. To pass a previous step\'s output as a parameter value, use the string "$step_N".\n'
        "6. File contents must be complete and working, not placeholders.\n"
        "7. Use \\n for newlines inside JSON strings and escape quotes as \\\".\n\n"
        "REQUIRED JSON FORMAT:\n"
        f"{json.dumps(PLAN_OUTPUT_EXAMPLE, indent=2)}\n\n"
        "START YOUR RESPONSE WITH { AND END WITH }. NO OTHER TEXT."
    )


class PlanCompiler:
    """Turn a task description into a validated Plan via a completion model."""

    def __init__(
        self,
        registry: ToolRegistry,
        validator: Optional[PlanValidator] = None,
        *,
        selector: Optional[AdaptiveModelSelector] = None,
        provider: Optional[CompletionProvider] = None,
        max_attempts: int = 3,
        temperature: float = 0.3,
        max_tokens: int = 2000,
    ) -> None:
        if selector is None and provider is None:
            raise ValueError("PlanCompiler needs a selector or a fixed provider")
        self.registry = registry
        self.validator = validator or PlanValidator(registry)
        self.selector = selector
        self.provider = provider
        self.max_attempts = max(1, max_attempts)
        self.temperature = temperature
        self.max_tokens = max_tokens

    def _options(self) -> Dict[str, Any]:
        return {"temperature": self.temperature, "max_tokens": self.max_tokens}

    def _build(self, text: str, analysis: TaskAnalysis) -> Plan:
        plan = parse_plan_text(text)
        plan = self.validator.validate(plan)
        plan.metadata.setdefault("analysis", analysis.as_dict())
        return plan

    async def compile(self, task_text: str) -> Plan:
        if not task_text or not task_text.strip():
            raise PlanValidationError("task description is empty")
        analysis = analyze_task(task_text)
        logger.info("Task analysis: type=%s complexity=%s", analysis.type, analysis.complexity)
        tools = self.registry.list_tools()
        prompt = build_planning_prompt(task_text, tools)
        logger.debug("Planning prompt built (%d chars, %d tools)", len(prompt), len(tools))

        if self.selector is None:
            try:
                response = await self.provider.generate(prompt, **self._options())
            except ProviderError:
                raise
            except Exception as exc:
                raise ProviderError(f"{self.provider.name}: {exc}") from exc
            plan = self._build(response.text, analysis)
            plan.metadata["provider"] = response.provider
            return plan

        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                response = await self.selector.generate_with_adaptive_selection(
                    prompt, PLANNING_TASK_CLASS, self._options()
                )
            except ProviderError as exc:
                last_error = exc
                logger.warning("Plan generation failed on attempt %d: %s", attempt, exc)
                continue
            try:
                plan = self._build(response.text, analysis)
            except (PlanParseError, PlanValidationError) as exc:
                last_error = exc
                self.selector.record_quality(0, False)
                logger.warning("Plan rejected on attempt %d/%d: %s", attempt, self.max_attempts, exc)
                continue
            self.selector.record_quality(100, True)
            plan.metadata["provider"] = response.provider
            plan.metadata["attempts"] = attempt
            logger.info("Plan with %d steps validated on attempt %d", len(plan.steps), attempt)
            return plan
        if last_error is None:
            raise EngineInvariantError("plan compilation finished without an attempt")
        raise last_error
