from typing import Optional


class PlanForgeError(Exception):
    """Base class for planner and engine failures."""


class PlanParseError(PlanForgeError):
    """Model output could not be recovered as structured data."""


class PlanValidationError(PlanForgeError):
    """Plan is well-formed but semantically invalid."""

    def __init__(self, reason: str, step_id: Optional[str] = None):
        self.reason = reason
        self.step_id = step_id
        message = f"Step {step_id}: {reason}" if step_id else reason
        super().__init__(message)


class StepExecutionError(PlanForgeError):
    """A tool invocation kept failing until the retry bound ran out."""

    def __init__(self, step_id: str, attempts: int, last_error: Optional[str]):
        self.step_id = step_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Failed after {attempts} attempts: {last_error}")


class EngineBudgetError(PlanForgeError):
    """Iteration cap exceeded while executing a plan."""


class EngineInvariantError(PlanForgeError):
    """Engine state that a validated plan should never produce."""


class ProviderError(PlanForgeError):
    """Completion provider failed to produce a response."""


class ToolRegistrationError(PlanForgeError):
    pass


class WorkspacePathError(PlanForgeError):
    pass
