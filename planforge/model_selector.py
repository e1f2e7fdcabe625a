import logging
import time
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from .errors import ProviderError
from .llm import CompletionProvider
from .schemas import CompletionResponse, ProviderMetric


logger = logging.getLogger("planforge.model_selector")

FAST_TASK_CLASSES = {"planning", "validation"}


class AdaptiveResponse(CompletionResponse):
    metrics: ProviderMetric


class AdaptiveModelSelector:
    """Pick a completion tier from rolling quality/latency telemetry.

    Tiers run fast -> standard -> premium. Consecutive validation failures or a slow
    recent latency window push every request to premium; a failed generation
    escalates one tier before the next attempt.
    """

    def __init__(
        self,
        fast: CompletionProvider,
        standard: CompletionProvider,
        premium: Optional[CompletionProvider] = None,
        *,
        max_validation_failures: int = 2,
        max_response_time_ms: float = 30000.0,
        latency_window: int = 5,
        max_attempts: int = 3,
        min_quality_score: float = 70.0,
        metrics_history: int = 100,
    ) -> None:
        self.fast = fast
        self.standard = standard
        self.premium = premium or standard
        self.max_validation_failures = max(1, max_validation_failures)
        self.max_response_time_ms = max_response_time_ms
        self.latency_window = max(1, latency_window)
        self.max_attempts = max(1, max_attempts)
        self.min_quality_score = min_quality_score
        self.metrics: Deque[ProviderMetric] = deque(maxlen=max(metrics_history, self.latency_window, 10))
        self.consecutive_failures = 0

    def _recent_latency_ms(self) -> float:
        recent = list(self.metrics)[-self.latency_window:]
        if not recent:
            return 0.0
        return sum(m.response_time_ms for m in recent) / len(recent)

    def select_provider(self, task_class: str, force_premium: bool = False) -> CompletionProvider:
        if force_premium:
            logger.info("Using premium provider %s (forced)", self.premium.name)
            return self.premium
        if self.consecutive_failures >= self.max_validation_failures:
            logger.warning(
                "Escalating to premium provider %s (%d consecutive failures)",
                self.premium.name,
                self.consecutive_failures,
            )
            return self.premium
        avg_latency = self._recent_latency_ms()
        if avg_latency > self.max_response_time_ms:
            logger.warning(
                "Escalating to premium provider %s (avg response time %.0fms)",
                self.premium.name,
                avg_latency,
            )
            return self.premium
        if task_class in FAST_TASK_CLASSES:
            logger.debug("Using fast provider %s for %s", self.fast.name, task_class)
            return self.fast
        logger.debug("Using standard provider %s for %s", self.standard.name, task_class)
        return self.standard

    def _escalate(self, provider: CompletionProvider) -> CompletionProvider:
        if provider is self.fast:
            return self.standard
        return self.premium

    async def generate_with_adaptive_selection(
        self,
        prompt: str,
        task_class: str,
        options: Optional[Dict[str, Any]] = None,
        force_premium: bool = False,
    ) -> AdaptiveResponse:
        options = options or {}
        temperature = float(options.get("temperature", 0.3))
        max_tokens = int(options.get("max_tokens", 2000))
        provider = self.select_provider(task_class, force_premium)
        errors: List[str] = []
        for attempt in range(1, self.max_attempts + 1):
            logger.info("Generation attempt %d/%d with %s", attempt, self.max_attempts, provider.name)
            started = time.perf_counter()
            try:
                response = await provider.generate(prompt, temperature=temperature, max_tokens=max_tokens)
            except Exception as exc:
                self.consecutive_failures += 1
                errors.append(f"{provider.name}: {exc}")
                logger.warning("Attempt %d failed with %s: %s", attempt, provider.name, exc)
                if attempt < self.max_attempts:
                    next_provider = self._escalate(provider)
                    if next_provider is not provider:
                        logger.info("Escalating %s -> %s", provider.name, next_provider.name)
                    provider = next_provider
                continue
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            metric = ProviderMetric(
                provider=provider.name,
                response_time_ms=elapsed_ms,
                validation_passed=True,
                tokens_used=response.tokens_used.total,
                cost=response.cost,
            )
            self.metrics.append(metric)
            logger.info("Generated with %s in %.0fms", provider.name, elapsed_ms)
            return AdaptiveResponse(**response.model_dump(), metrics=metric)
        raise ProviderError(
            f"All providers failed after {self.max_attempts} attempts: {'; '.join(errors)}"
        )

    def record_quality(self, quality_score: float, validation_passed: bool) -> None:
        """Attach caller-side quality to the newest metric and update the failure streak."""
        if self.metrics:
            latest = self.metrics[-1]
            latest.quality_score = quality_score
            latest.validation_passed = validation_passed
        if validation_passed:
            self.consecutive_failures = 0
        else:
            self.consecutive_failures += 1

    def metrics_summary(self) -> Dict[str, Any]:
        recent = list(self.metrics)[-10:]
        scored = [m.quality_score for m in recent if m.quality_score is not None]
        return {
            "total_generations": len(self.metrics),
            "consecutive_failures": self.consecutive_failures,
            "avg_response_time_ms": sum(m.response_time_ms for m in recent) / (len(recent) or 1),
            "avg_quality_score": sum(scored) / (len(scored) or 1),
            "below_quality_threshold": bool(scored) and sum(scored) / len(scored) < self.min_quality_score,
            "total_cost": sum(m.cost for m in self.metrics),
        }

    def reset(self) -> None:
        self.metrics.clear()
        self.consecutive_failures = 0
