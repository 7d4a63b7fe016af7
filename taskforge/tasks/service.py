from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Coroutine, Iterable

from ..core.config import Settings, get_settings
from ..core.errors import InvalidStateError, PlanParseError, TaskNotFoundError
from ..core.logging import get_logger, log_context
from ..core.metrics import record_plan_metrics, record_task_transition, track_background_unit
from ..schemas.tasks import (
    ApproveTaskPlanRequest,
    CreateTaskRequest,
    LogEntry,
    LogLevel,
    Plan,
    Step,
    Task,
    TaskEvent,
    TaskFilter,
    TaskStatus,
    TaskUpdate,
    UpdateType,
)
from .executor import TaskExecutor, TaskPlanner
from .parser import CompositePlanParser
from .store import InMemoryTaskRepository, TaskRepository

logger = get_logger(name=__name__)

TaskSubscriber = Callable[[TaskEvent], Awaitable[None]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _set_status(task: Task, status: TaskStatus) -> None:
    now = _utcnow()
    task.status = status
    task.updated_at = now
    task.completed_at = now if status.is_terminal else None


class TaskService:
    """Owns the task lifecycle: creation, planning, approval and execution.

    ``create_task`` and ``approve_task_plan`` return immediately; planning and
    execution continue as tracked background units. Callers may poll
    ``get_task``, await ``wait_for_background`` or subscribe to task events.
    Every returned task is a copy; the repository holds the live state.
    """

    def __init__(
        self,
        *,
        repository: TaskRepository | None = None,
        planner: TaskPlanner | None = None,
        executor: TaskExecutor | None = None,
        plan_parser: CompositePlanParser | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or InMemoryTaskRepository(history_limit=self._settings.tasks.history_limit)
        self._planner = planner
        self._executor = executor
        self._plan_parser = plan_parser
        self._background: dict[str, asyncio.Task[None]] = {}
        self._subscribers: set[TaskSubscriber] = set()

    @property
    def repository(self) -> TaskRepository:
        return self._repository

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def create_task(self, request: CreateTaskRequest) -> Task:
        task = Task(
            description=request.description,
            title=request.title,
            task_kind=request.task_kind,
            conversation_id=request.conversation_id,
            user_id=request.user_id,
            metadata=dict(request.metadata),
        )
        task.add_log("Task created")
        stored = await self._repository.add(task, history=[request.description])
        logger.info("task_created", task_id=stored.id, user_id=stored.user_id, task_kind=stored.task_kind)
        await self._publish(TaskEvent(task_id=stored.id, previous_status=None, status=stored.status, message="Task created"))

        if self._planner is not None:
            self._launch(stored.id, "planning", self._plan_task(stored.id))
        return stored

    async def get_task(self, task_id: str) -> Task:
        try:
            return await self._repository.get(task_id)
        except TaskNotFoundError:
            logger.warning("task_not_found", task_id=task_id)
            raise

    async def get_task_history(self, task_id: str) -> list[str]:
        return await self._repository.history(task_id)

    async def list_tasks(self, task_filter: TaskFilter | None = None) -> list[Task]:
        criteria = task_filter or TaskFilter()
        tasks = await self._repository.list()
        return [task for task in tasks if criteria.matches(task)]

    async def approve_task_plan(self, task_id: str, request: ApproveTaskPlanRequest) -> Task:
        previous: list[TaskStatus] = []

        def apply(task: Task) -> None:
            if task.status is not TaskStatus.AWAITING_APPROVAL:
                raise InvalidStateError("task is not awaiting approval")
            previous.append(task.status)
            if not request.approved:
                feedback = request.feedback or ""
                task.feedback = feedback
                _set_status(task, TaskStatus.PLANNING)
                task.add_log(f"Plan rejected with feedback: {feedback}")
                return
            if task.plan is None:
                raise InvalidStateError("task has no plan to approve")
            now = _utcnow()
            task.plan.is_approved = True
            task.plan.approved_at = now
            task.started_at = now
            _set_status(task, TaskStatus.EXECUTING)
            task.add_log("Plan approved, starting execution")

        try:
            updated = await self._repository.update(task_id, apply)
        except (TaskNotFoundError, InvalidStateError) as exc:
            logger.warning("task_approval_rejected", task_id=task_id, error=str(exc))
            raise

        message = updated.logs[-1].message
        await self._after_transition(updated, previous[0], message)

        if not request.approved:
            feedback = request.feedback or ""
            await self._repository.append_history(task_id, f"FEEDBACK: {feedback}")
            logger.info("task_plan_rejected", task_id=task_id, feedback=feedback)
            if self._planner is not None:
                self._launch(task_id, "replanning", self._replan_task(task_id, feedback))
            return updated

        logger.info("task_plan_approved", task_id=task_id)
        if self._executor is not None:
            self._launch(task_id, "execution", self._execute_task(task_id))
        return updated

    async def update_task(self, task_id: str, updates: Iterable[TaskUpdate]) -> Task:
        pending_updates = list(updates)

        def apply(task: Task) -> None:
            plan_id = task.plan.id if task.plan is not None else ""
            steps = task.effective_steps
            for update in pending_updates:
                _apply_step_update(steps, update, plan_id=plan_id, task_id=task.id)
            task.add_log("Task plan updated")

        try:
            updated = await self._repository.update(task_id, apply)
        except TaskNotFoundError:
            logger.warning("task_not_found", task_id=task_id)
            raise
        logger.info("task_plan_updated", task_id=task_id, updates=len(pending_updates))
        return updated

    async def add_task_log(
        self,
        task_id: str,
        message: str,
        level: LogLevel | str = LogLevel.INFO,
        *,
        step_id: str | None = None,
    ) -> LogEntry:
        resolved_level = LogLevel(level)
        entries: list[LogEntry] = []

        def apply(task: Task) -> None:
            entries.append(task.add_log(message, resolved_level, step_id=step_id))

        try:
            await self._repository.update(task_id, apply)
        except TaskNotFoundError:
            logger.warning("task_not_found", task_id=task_id)
            raise
        return entries[0]

    # ------------------------------------------------------------------
    # Background units
    # ------------------------------------------------------------------
    def has_background(self, task_id: str) -> bool:
        unit = self._background.get(task_id)
        return unit is not None and not unit.done()

    async def wait_for_background(self, task_id: str, *, timeout: float | None = None) -> Task:
        """Wait for the unit currently running for ``task_id`` and return the task afterwards."""
        unit = self._background.get(task_id)
        if unit is not None:
            done, _ = await asyncio.wait({unit}, timeout=timeout)
            if not done:
                raise asyncio.TimeoutError(f"background work for task {task_id} still running")
        return await self.get_task(task_id)

    async def cancel_background(self, task_id: str) -> bool:
        unit = self._background.get(task_id)
        if unit is None or unit.done():
            return False
        unit.cancel()
        await asyncio.wait({unit})
        return True

    async def shutdown(self) -> None:
        units = [unit for unit in self._background.values() if not unit.done()]
        for unit in units:
            unit.cancel()
        if units:
            await asyncio.wait(units)
        logger.info("task_service_shutdown", cancelled=len(units))

    def subscribe(self, subscriber: TaskSubscriber) -> None:
        self._subscribers.add(subscriber)

    def unsubscribe(self, subscriber: TaskSubscriber) -> None:
        self._subscribers.discard(subscriber)

    def _launch(self, task_id: str, phase: str, work: Coroutine[Any, Any, None]) -> None:
        unit = asyncio.create_task(self._run_unit(task_id, phase, work), name=f"task-{phase}-{task_id}")
        self._background[task_id] = unit
        track_background_unit(phase=phase, delta=1)

        def _forget(finished: asyncio.Task[None]) -> None:
            track_background_unit(phase=phase, delta=-1)
            if self._background.get(task_id) is finished:
                del self._background[task_id]

        unit.add_done_callback(_forget)

    async def _run_unit(self, task_id: str, phase: str, work: Coroutine[Any, Any, None]) -> None:
        try:
            with log_context(background_phase=phase):
                await work
        except asyncio.CancelledError:
            logger.warning("task_background_cancelled", task_id=task_id, phase=phase)
            await self._fail(task_id, f"{phase.capitalize()} cancelled")
            raise
        except Exception:
            logger.exception("task_background_crashed", task_id=task_id, phase=phase)
            await self._fail(task_id, f"{phase.capitalize()} failed unexpectedly")

    async def _plan_task(self, task_id: str) -> None:
        task = await self._transition(task_id, TaskStatus.PLANNING, "Planning started")
        logger.info("task_planning_started", task_id=task_id)
        try:
            content = await self._planner.create_plan(task)  # type: ignore[union-attr]
        except Exception as exc:
            await self._planning_failed(task_id, exc, phase="initial")
            return

        plan = self._build_plan(task_id, content)

        def attach(target: Task) -> None:
            target.plan = plan
            target.metadata["original_plan"] = content

        await self._transition(task_id, TaskStatus.AWAITING_APPROVAL, "Plan created, awaiting approval", mutate=attach)
        record_plan_metrics(phase="initial", status="created")
        logger.info("task_planning_completed", task_id=task_id, steps=len(plan.steps))

    async def _replan_task(self, task_id: str, feedback: str) -> None:
        task = await self._repository.get(task_id)
        task.metadata["feedback"] = feedback
        logger.info("task_replanning_started", task_id=task_id, feedback=feedback)
        try:
            content = await self._planner.create_plan(task)  # type: ignore[union-attr]
        except Exception as exc:
            await self._planning_failed(task_id, exc, phase="replan")
            return

        plan = self._build_plan(task_id, content)

        def attach(target: Task) -> None:
            target.plan = plan
            target.metadata["updated_plan"] = content

        await self._transition(
            task_id,
            TaskStatus.AWAITING_APPROVAL,
            "Plan updated with feedback, awaiting approval",
            mutate=attach,
        )
        record_plan_metrics(phase="replan", status="created")
        logger.info("task_replanning_completed", task_id=task_id, steps=len(plan.steps))

    async def _execute_task(self, task_id: str) -> None:
        task = await self._repository.get(task_id)
        logger.info("task_execution_started", task_id=task_id)
        try:
            await self._executor.execute_task(task)  # type: ignore[union-attr]
        except Exception as exc:
            logger.exception("task_execution_failed", task_id=task_id)
            await self._transition(
                task_id,
                TaskStatus.FAILED,
                f"Execution failed: {exc}",
                level=LogLevel.ERROR,
                mutate=lambda target: _merge_step_states(target, task),
            )
            return

        await self._transition(
            task_id,
            TaskStatus.COMPLETED,
            "Task execution completed",
            mutate=lambda target: _merge_step_states(target, task),
        )
        logger.info("task_execution_completed", task_id=task_id)

    async def _planning_failed(self, task_id: str, exc: Exception, *, phase: str) -> None:
        logger.error("task_planning_failed", task_id=task_id, phase=phase, error=str(exc))
        record_plan_metrics(phase=phase, status="failed")
        await self._transition(task_id, TaskStatus.FAILED, f"Planning failed: {exc}", level=LogLevel.ERROR)

    async def _fail(self, task_id: str, message: str) -> None:
        try:
            current = await self._repository.get(task_id)
        except TaskNotFoundError:
            return
        if current.status.is_terminal:
            return
        await self._transition(task_id, TaskStatus.FAILED, message, level=LogLevel.ERROR)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _build_plan(self, task_id: str, content: str) -> Plan:
        plan = Plan(task_id=task_id)
        if self._plan_parser is None:
            return plan
        try:
            steps = self._plan_parser.parse_plan(content)
        except PlanParseError as exc:
            logger.warning("task_plan_unparsed", task_id=task_id, error=str(exc))
            steps = []
        plan.steps = [step.model_copy(update={"plan_id": plan.id}) for step in steps]
        _renumber_steps(plan.steps)
        plan.description = self._plan_parser.get_description(content)
        return plan

    async def _transition(
        self,
        task_id: str,
        target: TaskStatus,
        message: str,
        *,
        level: LogLevel = LogLevel.INFO,
        mutate: Callable[[Task], None] | None = None,
    ) -> Task:
        previous: list[TaskStatus] = []

        def apply(task: Task) -> None:
            previous.append(task.status)
            if mutate is not None:
                mutate(task)
            _set_status(task, target)
            task.add_log(message, level)

        updated = await self._repository.update(task_id, apply)
        await self._after_transition(updated, previous[0], message)
        return updated

    async def _after_transition(self, task: Task, previous: TaskStatus, message: str) -> None:
        record_task_transition(source=previous.value, target=task.status.value)
        logger.info("task_status_changed", task_id=task.id, source=previous.value, target=task.status.value)
        await self._publish(TaskEvent(task_id=task.id, previous_status=previous, status=task.status, message=message))

    async def _publish(self, event: TaskEvent) -> None:
        if not self._subscribers:
            return
        results = await asyncio.gather(
            *(subscriber(event) for subscriber in list(self._subscribers)),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                logger.warning("task_subscriber_failed", task_id=event.task_id, error=str(result))


def _apply_step_update(steps: list[Step], update: TaskUpdate, *, plan_id: str, task_id: str) -> None:
    if update.type == UpdateType.ADD_STEP.value:
        next_order = max((step.order for step in steps), default=0) + 1
        steps.append(Step(plan_id=plan_id, description=update.description or "", order=next_order))
        _renumber_steps(steps)
    elif update.type == UpdateType.MODIFY_STEP.value:
        for step in steps:
            if step.id == update.step_id:
                if update.description:
                    step.description = update.description
                if update.status is not None:
                    step.status = update.status
                break
    elif update.type == UpdateType.REMOVE_STEP.value:
        for index, step in enumerate(steps):
            if step.id == update.step_id:
                del steps[index]
                break
        _renumber_steps(steps)
    else:
        logger.debug("task_update_ignored", task_id=task_id, update_type=update.type)


def _renumber_steps(steps: list[Step]) -> None:
    """Sort by declared order and renumber 1..n in place."""
    steps.sort(key=lambda step: step.order)
    for order, step in enumerate(steps, start=1):
        step.order = order


def _merge_step_states(target: Task, executed: Task) -> None:
    if target.plan is None or executed.plan is None:
        return
    executed_steps = {step.id: step for step in executed.plan.steps}
    for index, step in enumerate(target.plan.steps):
        result = executed_steps.get(step.id)
        if result is None:
            continue
        target.plan.steps[index] = step.model_copy(
            update={
                "status": result.status,
                "started_at": result.started_at,
                "completed_at": result.completed_at,
                "error": result.error,
                "output": result.output,
            }
        )


__all__ = ["TaskService", "TaskSubscriber"]
