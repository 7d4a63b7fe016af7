from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Protocol, TypeVar

from ..core.errors import TaskNotFoundError
from ..schemas.tasks import Task

__all__ = ["AsyncReadWriteLock", "InMemoryTaskRepository", "TaskMutator", "TaskRepository"]

T = TypeVar("T")
TaskMutator = Callable[[Task], T]


class AsyncReadWriteLock:
    """Many concurrent readers or a single writer; waiting writers block new readers."""

    def __init__(self) -> None:
        self._condition = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._condition:
            await self._condition.wait_for(lambda: not self._writer and self._waiting_writers == 0)
            self._readers += 1
        try:
            yield
        finally:
            async with self._condition:
                self._readers -= 1
                if self._readers == 0:
                    self._condition.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._condition:
            self._waiting_writers += 1
            try:
                await self._condition.wait_for(lambda: not self._writer and self._readers == 0)
            finally:
                self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            async with self._condition:
                self._writer = False
                self._condition.notify_all()


class TaskRepository(Protocol):
    async def add(self, task: Task, *, history: list[str] | None = None) -> Task:
        ...

    async def get(self, task_id: str) -> Task:
        ...

    async def list(self) -> list[Task]:
        ...

    async def update(self, task_id: str, mutator: TaskMutator) -> Task:
        ...

    async def append_history(self, task_id: str, entry: str) -> None:
        ...

    async def history(self, task_id: str) -> list[str]:
        ...


class InMemoryTaskRepository:
    """Process-local task map plus a parallel append-only history map.

    Every accessor takes the shared lock for its critical section only.
    Callers always receive deep copies. ``update`` applies the mutator to a
    copy and commits it only when the mutator returns without raising.
    """

    def __init__(self, *, history_limit: int | None = None) -> None:
        self._tasks: dict[str, Task] = {}
        self._history: dict[str, list[str]] = {}
        self._history_limit = history_limit
        self._lock = AsyncReadWriteLock()

    async def add(self, task: Task, *, history: list[str] | None = None) -> Task:
        async with self._lock.write():
            self._tasks[task.id] = task.model_copy(deep=True)
            self._history[task.id] = self._trim(list(history or []))
            return task.model_copy(deep=True)

    async def get(self, task_id: str) -> Task:
        async with self._lock.read():
            task = self._tasks.get(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            return task.model_copy(deep=True)

    async def list(self) -> list[Task]:
        async with self._lock.read():
            return [task.model_copy(deep=True) for task in self._tasks.values()]

    async def update(self, task_id: str, mutator: TaskMutator) -> Task:
        async with self._lock.write():
            current = self._tasks.get(task_id)
            if current is None:
                raise TaskNotFoundError(task_id)
            working = current.model_copy(deep=True)
            mutator(working)
            self._tasks[task_id] = working
            return working.model_copy(deep=True)

    async def append_history(self, task_id: str, entry: str) -> None:
        async with self._lock.write():
            if task_id not in self._tasks:
                raise TaskNotFoundError(task_id)
            history = self._history.setdefault(task_id, [])
            history.append(entry)
            self._history[task_id] = self._trim(history)

    async def history(self, task_id: str) -> list[str]:
        async with self._lock.read():
            if task_id not in self._tasks:
                raise TaskNotFoundError(task_id)
            return list(self._history.get(task_id, []))

    def _trim(self, history: list[str]) -> list[str]:
        if self._history_limit is not None and len(history) > self._history_limit:
            return history[-self._history_limit :]
        return history
