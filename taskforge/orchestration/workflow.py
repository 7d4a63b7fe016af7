from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Iterable

from ..core.config import Settings, get_settings
from ..core.errors import AgentExecutionError, AgentNotFoundError, WorkflowFinalResultMissingError
from ..core.logging import get_logger
from ..core.metrics import record_workflow_task
from .registry import AgentRegistry

logger = get_logger(name=__name__)

DEPENDENCY_BLOCK = "\n\n===== Result from {task_id} =====\n{result}\n=====\n"


@dataclass(slots=True)
class WorkflowTask:
    id: str
    agent_id: str
    input: str
    dependencies: list[str] = field(default_factory=list)


@dataclass
class Workflow:
    """Ordered sub-tasks for one orchestrated run, plus their results and errors.

    A workflow is built per run and discarded afterwards.
    """

    tasks: list[WorkflowTask] = field(default_factory=list)
    results: dict[str, str] = field(default_factory=dict)
    errors: dict[str, BaseException] = field(default_factory=dict)
    final_task_id: str | None = None

    def add_task(
        self,
        task_id: str,
        agent_id: str,
        input: str,
        dependencies: Iterable[str] | None = None,
    ) -> WorkflowTask:
        if self.get_task(task_id) is not None:
            raise ValueError(f"duplicate workflow task id: {task_id}")
        task = WorkflowTask(id=task_id, agent_id=agent_id, input=input, dependencies=list(dependencies or []))
        self.tasks.append(task)
        return task

    def set_final_task(self, task_id: str) -> None:
        self.final_task_id = task_id

    def get_task(self, task_id: str) -> WorkflowTask | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None


def build_task_input(task: WorkflowTask, results: dict[str, str]) -> str:
    """Append each available dependency result, in declaration order, to the task input."""
    text = task.input
    for dependency in task.dependencies:
        if dependency in results:
            text += DEPENDENCY_BLOCK.format(task_id=dependency, result=results[dependency])
    return text


def recover_final_result(workflow: Workflow) -> str | None:
    """Fallback for a missing final result: the final task's first dependency result, if any."""
    if workflow.final_task_id is None:
        return None
    final_task = workflow.get_task(workflow.final_task_id)
    if final_task is None or not final_task.dependencies:
        return None
    result = workflow.results.get(final_task.dependencies[0])
    return result or None


class WorkflowExecutor:
    """Runs workflow tasks against registered agents.

    Tasks run in declaration order and failures are recorded per task rather
    than aborting the run. With ``max_concurrency`` above one, tasks are
    launched in declaration order and each waits only for the dependencies
    launched before it.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        *,
        settings: Settings | None = None,
        max_concurrency: int | None = None,
        task_timeout: float | None = None,
    ) -> None:
        resolved = settings or get_settings()
        self.registry = registry
        self.max_concurrency = max(1, max_concurrency or resolved.orchestration.workflow_max_concurrency)
        self.task_timeout = task_timeout if task_timeout is not None else resolved.orchestration.workflow_task_timeout_seconds

    async def execute(self, workflow: Workflow) -> str:
        logger.info(
            "workflow_started",
            tasks=[task.id for task in workflow.tasks],
            final_task=workflow.final_task_id,
            max_concurrency=self.max_concurrency,
        )
        if self.max_concurrency == 1:
            for task in workflow.tasks:
                await self._run_task(workflow, task)
        else:
            await self._execute_concurrently(workflow)

        logger.info(
            "workflow_finished",
            succeeded=sorted(workflow.results),
            failed=sorted(workflow.errors),
        )
        if workflow.final_task_id is None:
            return ""
        result = workflow.results.get(workflow.final_task_id)
        if result:
            return result
        raise WorkflowFinalResultMissingError("final task result not found")

    async def _execute_concurrently(self, workflow: Workflow) -> None:
        semaphore = asyncio.Semaphore(self.max_concurrency)
        launched: dict[str, asyncio.Task[None]] = {}

        async def run(task: WorkflowTask, waits_on: list[asyncio.Task[None]]) -> None:
            if waits_on:
                await asyncio.wait(waits_on)
            async with semaphore:
                await self._run_task(workflow, task)

        for task in workflow.tasks:
            waits_on = [launched[dep] for dep in task.dependencies if dep in launched]
            launched[task.id] = asyncio.create_task(run(task, waits_on))

        try:
            await asyncio.gather(*launched.values())
        except asyncio.CancelledError:
            for pending in launched.values():
                pending.cancel()
            raise

    async def _run_task(self, workflow: Workflow, task: WorkflowTask) -> None:
        agent = self.registry.get(task.agent_id)
        if agent is None:
            workflow.errors[task.id] = AgentNotFoundError(task.agent_id)
            record_workflow_task(agent=task.agent_id, outcome="missing")
            logger.warning("workflow_agent_missing", task=task.id, agent=task.agent_id)
            return

        task_input = build_task_input(task, workflow.results)
        try:
            if self.task_timeout is not None:
                result = await asyncio.wait_for(agent.run(task_input), timeout=self.task_timeout)
            else:
                result = await agent.run(task_input)
        except asyncio.TimeoutError as exc:
            workflow.errors[task.id] = exc
            record_workflow_task(agent=task.agent_id, outcome="timeout")
            logger.warning("workflow_task_timeout", task=task.id, agent=task.agent_id, timeout=self.task_timeout)
            return
        except Exception as exc:
            workflow.errors[task.id] = AgentExecutionError(task.agent_id, exc)
            record_workflow_task(agent=task.agent_id, outcome="error")
            logger.warning("workflow_task_failed", task=task.id, agent=task.agent_id, error=str(exc))
            return

        workflow.results[task.id] = str(result)
        record_workflow_task(agent=task.agent_id, outcome="success")
        logger.info("workflow_task_completed", task=task.id, agent=task.agent_id, result_chars=len(str(result)))


__all__ = [
    "Workflow",
    "WorkflowExecutor",
    "WorkflowTask",
    "build_task_input",
    "recover_final_result",
]
