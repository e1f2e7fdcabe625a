import logging
import time
import uuid
from typing import Callable, List, Optional

from .config import AgentSettings, EndpointConfig
from .errors import PlanForgeError
from .file_tools import register_file_tools
from .filesystem import WorkspaceFileSystem
from .llm import ChatCompletionProvider, CompletionProvider
from .model_selector import AdaptiveModelSelector
from .plan_executor import PlanExecutor
from .plan_validator import PlanValidator
from .planner import PlanCompiler
from .schemas import ExecutionMetadata, ExecutionResult, Plan
from .tool_registry import ToolRegistry


logger = logging.getLogger("planforge.agent")

ProviderFactory = Callable[[EndpointConfig, AgentSettings], CompletionProvider]


def new_task_id() -> str:
    return f"task_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


def default_provider_factory(endpoint: EndpointConfig, settings: AgentSettings) -> CompletionProvider:
    return ChatCompletionProvider(
        endpoint.base_url,
        endpoint.model_id,
        name=endpoint.name or endpoint.model_id,
        api_key=endpoint.api_key,
        timeout=settings.request_timeout_s,
    )


class TaskAgent:
    """Single entry point: task text in, structured ExecutionResult out."""

    def __init__(
        self,
        compiler: PlanCompiler,
        executor: PlanExecutor,
        providers: Optional[List[CompletionProvider]] = None,
    ) -> None:
        self.compiler = compiler
        self.executor = executor
        self.providers = providers or []

    @property
    def registry(self) -> ToolRegistry:
        return self.executor.registry

    async def generate_plan(self, task_text: str) -> Plan:
        return await self.compiler.compile(task_text)

    async def execute(self, task_text: str) -> ExecutionResult:
        task_id = new_task_id()
        started = time.perf_counter()
        logger.info("Task %s started: %s", task_id, task_text[:150])
        plan: Optional[Plan] = None
        try:
            plan = await self.compiler.compile(task_text)
            logger.info("Task %s plan ready with %d steps", task_id, len(plan.steps))
            result = await self.executor.execute(plan)
        except PlanForgeError as exc:
            logger.error("Task %s failed: %s", task_id, exc)
            return ExecutionResult(
                success=False,
                plan=plan or Plan(steps=[]),
                error=str(exc),
                metadata=ExecutionMetadata(total_time_ms=(time.perf_counter() - started) * 1000.0),
            )
        result.metadata.total_time_ms = (time.perf_counter() - started) * 1000.0
        logger.info("Task %s finished success=%s", task_id, result.success)
        return result

    async def aclose(self) -> None:
        for provider in self.providers:
            closer = getattr(provider, "close", None)
            if callable(closer):
                await closer()


def build_agent(
    settings: AgentSettings,
    provider_factory: Optional[ProviderFactory] = None,
    registry: Optional[ToolRegistry] = None,
) -> TaskAgent:
    factory = provider_factory or default_provider_factory
    fs = WorkspaceFileSystem(settings.workspace_root, max_file_size=settings.max_file_size_bytes)
    if registry is None:
        registry = ToolRegistry()
        register_file_tools(registry, fs)
    fast = factory(settings.fast_endpoint, settings)
    standard = factory(settings.standard_endpoint, settings)
    premium = factory(settings.premium_endpoint, settings) if settings.premium_endpoint else None
    selector = AdaptiveModelSelector(
        fast,
        standard,
        premium,
        max_validation_failures=settings.max_validation_failures,
        max_response_time_ms=settings.max_response_time_ms,
        max_attempts=settings.provider_max_attempts,
    )
    compiler = PlanCompiler(
        registry,
        PlanValidator(registry),
        selector=selector,
        max_attempts=settings.planning_max_attempts,
        temperature=settings.planning_temperature,
        max_tokens=settings.planning_max_tokens,
    )
    executor = PlanExecutor(
        registry,
        fs,
        max_iterations=settings.max_iterations,
        max_retries=settings.max_retries,
    )
    providers = [p for p in (fast, standard, premium) if p is not None]
    return TaskAgent(compiler, executor, providers)
