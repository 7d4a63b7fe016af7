"""Named async task functions run with timeout and retry.

Library API for embedding applications; the HTTP service does not expose it.
Pair with :func:`taskforge.tasks.api_client.api_task` to run HTTP calls as tasks.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable
from uuid import uuid4

from ..core.errors import TaskNotFoundError
from ..core.logging import get_logger
from .executor import RetryPolicy

logger = get_logger(name=__name__)

TaskFunction = Callable[[Any], Awaitable[Any]]


@dataclass(slots=True)
class TaskOptions:
    timeout: float | None = None
    retry_policy: RetryPolicy | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TaskResult:
    data: Any = None
    error: BaseException | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None


class TaskRunner:
    """Registry of named async functions executed with optional timeout and retry.

    Failures of the function itself are reported on the ``TaskResult``; only an
    unknown task name raises.
    """

    def __init__(self) -> None:
        self._functions: dict[str, TaskFunction] = {}

    def register(self, name: str, function: TaskFunction) -> None:
        self._functions[name] = function

    def registered(self) -> list[str]:
        return sorted(self._functions)

    def _resolve(self, name: str) -> TaskFunction:
        function = self._functions.get(name)
        if function is None:
            raise TaskNotFoundError(name)
        return function

    async def execute_sync(self, name: str, params: Any = None, options: TaskOptions | None = None) -> TaskResult:
        function = self._resolve(name)
        return await self._execute(name, function, params, options or TaskOptions())

    def execute_async(self, name: str, params: Any = None, options: TaskOptions | None = None) -> asyncio.Task[TaskResult]:
        function = self._resolve(name)
        resolved = options or TaskOptions()
        run_id = str(uuid4())

        async def run() -> TaskResult:
            result = await self._execute(name, function, params, resolved)
            result.metadata["task_id"] = run_id
            return result

        return asyncio.create_task(run(), name=f"runner-{name}-{run_id}")

    async def _execute(self, name: str, function: TaskFunction, params: Any, options: TaskOptions) -> TaskResult:
        data: Any = None
        error: BaseException | None = None
        try:
            if options.timeout is not None:
                data = await asyncio.wait_for(self._with_retry(function, params, options), timeout=options.timeout)
            else:
                data = await self._with_retry(function, params, options)
        except asyncio.TimeoutError as exc:
            error = exc
            logger.warning("runner_task_timeout", task=name, timeout=options.timeout)
        except Exception as exc:
            error = exc
            logger.warning("runner_task_failed", task=name, error=str(exc))

        metadata = dict(options.metadata)
        metadata["execution_time"] = datetime.now(timezone.utc)
        return TaskResult(data=data, error=error, metadata=metadata)

    async def _with_retry(self, function: TaskFunction, params: Any, options: TaskOptions) -> Any:
        if options.retry_policy is None:
            return await function(params)
        async for attempt in options.retry_policy.retrying():
            with attempt:
                return await function(params)
        return None


__all__ = ["TaskFunction", "TaskOptions", "TaskResult", "TaskRunner"]
