from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Protocol

from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from ..core.config import RetrySettings, get_settings
from ..core.errors import ExecutionError, InvalidStateError
from ..core.logging import get_logger
from ..core.metrics import record_step_attempt
from ..schemas.tasks import Step, StepStatus, Task

if TYPE_CHECKING:  # pragma: no cover - typing only
    from ..orchestration.orchestrator import Orchestrator

logger = get_logger(name=__name__)


class TaskPlanner(Protocol):
    async def create_plan(self, task: Task) -> str:
        ...


class TaskExecutor(Protocol):
    async def execute_task(self, task: Task) -> None:
        ...

    async def execute_step(self, task: Task, step: Step) -> Any:
        ...


@dataclass(slots=True)
class RetryPolicy:
    max_attempts: int
    initial_backoff_seconds: float
    backoff_multiplier: float
    max_backoff_seconds: float

    @classmethod
    def from_settings(cls, settings: RetrySettings | None = None) -> "RetryPolicy":
        resolved = settings or get_settings().retry
        return cls(
            max_attempts=resolved.max_attempts,
            initial_backoff_seconds=resolved.initial_backoff_seconds,
            backoff_multiplier=resolved.backoff_multiplier,
            max_backoff_seconds=resolved.max_backoff_seconds,
        )

    @classmethod
    def single_attempt(cls) -> "RetryPolicy":
        return cls(max_attempts=1, initial_backoff_seconds=0.0, backoff_multiplier=1.0, max_backoff_seconds=0.0)

    def retrying(self) -> AsyncRetrying:
        """Exponential backoff: initial * multiplier ** (attempt - 1), capped at the max backoff."""
        attempts = self.max_attempts if self.max_attempts > 0 else 1
        wait_strategy = wait_exponential(
            multiplier=self.initial_backoff_seconds,
            exp_base=max(1.0, self.backoff_multiplier),
            max=self.max_backoff_seconds,
        )
        return AsyncRetrying(stop=stop_after_attempt(attempts), wait=wait_strategy, reraise=True)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PlanExecutor:
    """Runs an approved plan step by step, retrying each step on failure.

    Subclasses implement ``execute_step``. Step states are written onto the
    task passed in; the first step that exhausts its retries stops the run.
    """

    def __init__(self, *, retry_policy: RetryPolicy | None = None) -> None:
        self.retry_policy = retry_policy or RetryPolicy.from_settings()

    async def execute_step(self, task: Task, step: Step) -> Any:
        raise NotImplementedError

    async def execute_task(self, task: Task) -> None:
        plan = task.plan
        if plan is None or not plan.is_approved:
            raise InvalidStateError("task plan is not approved")

        for step in sorted(plan.steps, key=lambda item: item.order):
            if step.status is StepStatus.COMPLETED:
                continue
            await self._run_step(task, step)

    async def _run_step(self, task: Task, step: Step) -> None:
        step.status = StepStatus.EXECUTING
        step.started_at = _utcnow()
        step.error = None
        attempt_number = 0
        try:
            async for attempt in self.retry_policy.retrying():
                with attempt:
                    attempt_number = attempt.retry_state.attempt_number
                    try:
                        output = await self.execute_step(task, step)
                    except Exception:
                        record_step_attempt(outcome="failed")
                        logger.warning("plan_step_attempt_failed", task_id=task.id, step=step.order, attempt=attempt_number)
                        raise
                    record_step_attempt(outcome="succeeded")
        except Exception as exc:
            step.status = StepStatus.FAILED
            step.error = str(exc)
            step.completed_at = _utcnow()
            logger.error("plan_step_failed", task_id=task.id, step=step.order, attempts=attempt_number, error=str(exc))
            raise ExecutionError(f"step {step.order} failed after {attempt_number} attempts: {exc}") from exc

        step.status = StepStatus.COMPLETED
        step.completed_at = _utcnow()
        if output is not None:
            step.output = str(output)
        logger.info("plan_step_completed", task_id=task.id, step=step.order, attempts=attempt_number)


class OrchestratedPlanExecutor(PlanExecutor):
    """Hands each plan step to the orchestrator as a query."""

    def __init__(self, orchestrator: "Orchestrator", *, retry_policy: RetryPolicy | None = None) -> None:
        super().__init__(retry_policy=retry_policy)
        self.orchestrator = orchestrator

    async def execute_step(self, task: Task, step: Step) -> str:
        context: dict[str, Any] = {
            "task_id": task.id,
            "step_id": step.id,
            "agents": self.orchestrator.registry.descriptions(),
        }
        result = await self.orchestrator.handle_request(step.description, context)
        return result.response


__all__ = ["OrchestratedPlanExecutor", "PlanExecutor", "RetryPolicy", "TaskExecutor", "TaskPlanner"]
