import logging
import posixpath
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from .errors import EngineBudgetError, EngineInvariantError, StepExecutionError
from .filesystem import WorkspaceFileSystem
from .schemas import (
    Artifact,
    ExecutionMetadata,
    ExecutionResult,
    LiteralValue,
    Plan,
    Step,
    StepOutputRef,
    ToolResult,
)
from .tool_registry import ToolRegistry, is_file_write_tool


logger = logging.getLogger("planforge.plan_executor")

FILE_TYPES = {
    "html": "html",
    "htm": "html",
    "js": "javascript",
    "ts": "typescript",
    "json": "json",
    "py": "python",
    "txt": "text",
    "md": "markdown",
    "css": "css",
    "svg": "svg",
}


def file_type_for(path: str) -> str:
    ext = posixpath.splitext(path)[1].lstrip(".").lower()
    return FILE_TYPES.get(ext, "text")


@dataclass
class _RunState:
    """Per-call bookkeeping; never stored on the executor."""

    iterations: int = 0
    completed: List[Step] = field(default_factory=list)
    failed: List[Step] = field(default_factory=list)
    outputs: Dict[str, Any] = field(default_factory=dict)
    resolved_params: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def completed_ids(self) -> Set[str]:
        return {step.id for step in self.completed}


class PlanExecutor:
    """Drive a validated plan to completion, one step at a time in dependency order."""

    def __init__(
        self,
        registry: ToolRegistry,
        fs: Optional[WorkspaceFileSystem] = None,
        *,
        max_iterations: int = 10,
        max_retries: int = 3,
    ) -> None:
        self.registry = registry
        self.fs = fs
        self.max_iterations = max(1, max_iterations)
        self.max_retries = max(1, max_retries)

    async def execute(self, plan: Plan) -> ExecutionResult:
        started = time.perf_counter()
        state = _RunState()
        budget_error: Optional[EngineBudgetError] = None
        try:
            await self._run_steps(plan, state)
        except EngineBudgetError as exc:
            logger.error("Plan execution stopped: %s", exc)
            budget_error = exc

        success = budget_error is None and not state.failed
        artifacts = await self.collect_artifacts(state)
        tools_used: List[str] = []
        for step in state.completed:
            if step.tool not in tools_used:
                tools_used.append(step.tool)
        error: Optional[str] = None
        if budget_error is not None:
            error = str(budget_error)
        elif state.failed:
            error = self.aggregate_errors(state.failed)
        result = ExecutionResult(
            success=success,
            plan=plan,
            completed_steps=state.completed,
            failed_steps=state.failed,
            output=self.aggregate_output(state.completed) if success else None,
            error=error,
            artifacts=artifacts,
            metadata=ExecutionMetadata(
                total_time_ms=(time.perf_counter() - started) * 1000.0,
                iterations=state.iterations,
                tools_used=tools_used,
            ),
        )
        logger.info(
            "Plan finished success=%s completed=%d failed=%d artifacts=%d",
            success,
            len(state.completed),
            len(state.failed),
            len(artifacts),
        )
        return result

    def execution_order(self, plan: Plan) -> List[str]:
        known = set(plan.step_ids())
        order: List[str] = []
        visited: Set[str] = set()
        visiting: Set[str] = set()

        def visit(step_id: str) -> None:
            if step_id in visited:
                return
            if step_id in visiting:
                raise EngineInvariantError(f"Circular dependency detected at step {step_id}")
            visiting.add(step_id)
            for dep in plan.dependency_map.get(step_id, []):
                if dep in known:
                    visit(dep)
            visiting.discard(step_id)
            visited.add(step_id)
            order.append(step_id)

        for step in plan.steps:
            visit(step.id)
        return order

    async def _run_steps(self, plan: Plan, state: _RunState) -> None:
        for step_id in self.execution_order(plan):
            state.iterations += 1
            if state.iterations > self.max_iterations:
                raise EngineBudgetError(f"Maximum iterations exceeded ({self.max_iterations})")
            step = plan.get_step(step_id)
            if step is None:
                raise EngineInvariantError(f"Step {step_id} disappeared from the plan")
            if step.status != "pending":
                raise EngineInvariantError(f"Step {step.id} is {step.status}, expected pending")
            logger.info("Executing step %s (%s): %s", step.id, step.tool, step.description)

            done = state.completed_ids()
            missing = [dep for dep in step.dependencies if dep not in done]
            if missing:
                step.transition("failed")
                step.result = ToolResult(
                    success=False,
                    error=(
                        f"Dependencies not satisfied. Required: {', '.join(step.dependencies)}, "
                        f"Completed: {', '.join(sorted(done))}"
                    ),
                )
                logger.warning("Step %s skipped, missing dependencies: %s", step.id, ", ".join(missing))
                state.failed.append(step)
                continue

            result = await self._execute_with_retry(step, state)
            step.result = result
            if result.success:
                step.transition("completed")
                state.completed.append(step)
                state.outputs[step.id] = result.output
            else:
                step.transition("failed")
                state.failed.append(step)
                logger.warning("Step %s failed, stopping run: %s", step.id, result.error)
                break

    def resolve_parameters(self, step: Step, outputs: Dict[str, Any]) -> Dict[str, Any]:
        resolved: Dict[str, Any] = {}
        for name, value in step.parameters.items():
            if isinstance(value, StepOutputRef):
                if value.step_id not in outputs:
                    logger.warning("Step %s references %s which has no output", step.id, value.step_id)
                resolved[name] = outputs.get(value.step_id)
            elif isinstance(value, LiteralValue):
                resolved[name] = value.value
            else:
                resolved[name] = value
        return resolved

    async def _execute_with_retry(self, step: Step, state: _RunState) -> ToolResult:
        step.transition("running")
        last_error: Optional[str] = None
        attempts = 0
        for attempt in range(1, self.max_retries + 1):
            attempts = attempt
            params = self.resolve_parameters(step, state.outputs)
            state.resolved_params[step.id] = params
            try:
                result = await self.registry.execute(step.tool, params)
            except Exception as exc:
                last_error = str(exc) or exc.__class__.__name__
                logger.warning("Step %s attempt %d/%d raised: %s", step.id, attempt, self.max_retries, last_error)
                continue
            if result.success:
                result.metadata = {**result.metadata, "attempts": attempt}
                return result
            last_error = result.error
            logger.warning("Step %s attempt %d/%d failed: %s", step.id, attempt, self.max_retries, last_error)
        error = StepExecutionError(step.id, attempts, last_error)
        return ToolResult(success=False, error=str(error), metadata={"attempts": attempts})

    def aggregate_output(self, completed: List[Step]) -> Any:
        if not completed:
            return None
        if len(completed) == 1:
            return completed[0].result.output if completed[0].result else None
        return [
            {
                "step": step.id,
                "description": step.description,
                "output": step.result.output if step.result else None,
            }
            for step in completed
        ]

    def aggregate_errors(self, failed: List[Step]) -> str:
        return "; ".join(
            f"{step.id}: {(step.result.error if step.result else None) or 'Unknown error'}"
            for step in failed
        )

    async def collect_artifacts(self, state: _RunState) -> List[Artifact]:
        artifacts: List[Artifact] = []
        for step in state.completed:
            if not is_file_write_tool(step.tool):
                continue
            params = state.resolved_params.get(step.id) or {}
            path = params.get("path")
            if not isinstance(path, str) or not path:
                continue
            content: Optional[str] = None
            if self.fs is not None:
                try:
                    content = await self.fs.read_file(path)
                except Exception as exc:
                    logger.debug("Artifact %s not readable, using step content: %s", path, exc)
            if content is None:
                fallback = params.get("content")
                content = fallback if isinstance(fallback, str) else ("" if fallback is None else str(fallback))
            artifacts.append(
                Artifact(
                    path=path,
                    name=posixpath.basename(path.replace("\\", "/")),
                    content=content,
                    type=file_type_for(path),
                    created_by=step.id,
                )
            )
        return artifacts
