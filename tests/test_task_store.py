from __future__ import annotations

import asyncio

import pytest

from taskforge.core.errors import TaskNotFoundError
from taskforge.schemas.tasks import Task, TaskStatus
from taskforge.tasks.store import AsyncReadWriteLock, InMemoryTaskRepository


@pytest.mark.asyncio
async def test_repository_hands_out_copies() -> None:
    repository = InMemoryTaskRepository()
    stored = await repository.add(Task(description="copy me"))

    stored.description = "mutated locally"
    fetched = await repository.get(stored.id)
    fetched.metadata["touched"] = True

    again = await repository.get(stored.id)
    assert again.description == "copy me"
    assert "touched" not in again.metadata


@pytest.mark.asyncio
async def test_update_commits_only_when_mutator_succeeds() -> None:
    repository = InMemoryTaskRepository()
    stored = await repository.add(Task(description="atomic"))

    def broken(task: Task) -> None:
        task.status = TaskStatus.FAILED
        raise ValueError("nope")

    with pytest.raises(ValueError):
        await repository.update(stored.id, broken)
    assert (await repository.get(stored.id)).status is TaskStatus.PENDING

    def planning(task: Task) -> None:
        task.status = TaskStatus.PLANNING

    updated = await repository.update(stored.id, planning)
    assert updated.status is TaskStatus.PLANNING
    assert (await repository.get(stored.id)).status is TaskStatus.PLANNING


@pytest.mark.asyncio
async def test_unknown_ids_raise_not_found() -> None:
    repository = InMemoryTaskRepository()

    with pytest.raises(TaskNotFoundError, match="task not found: missing"):
        await repository.get("missing")
    with pytest.raises(TaskNotFoundError):
        await repository.update("missing", lambda task: None)
    with pytest.raises(TaskNotFoundError):
        await repository.append_history("missing", "entry")
    with pytest.raises(TaskNotFoundError):
        await repository.history("missing")


@pytest.mark.asyncio
async def test_history_is_append_only_and_trimmed() -> None:
    repository = InMemoryTaskRepository(history_limit=3)
    stored = await repository.add(Task(description="history"), history=["created"])

    for index in range(4):
        await repository.append_history(stored.id, f"entry-{index}")

    assert await repository.history(stored.id) == ["entry-1", "entry-2", "entry-3"]


@pytest.mark.asyncio
async def test_list_returns_every_task() -> None:
    repository = InMemoryTaskRepository()
    first = await repository.add(Task(description="one"))
    second = await repository.add(Task(description="two"))

    assert {task.id for task in await repository.list()} == {first.id, second.id}


@pytest.mark.asyncio
async def test_writer_waits_for_active_readers() -> None:
    lock = AsyncReadWriteLock()
    events: list[str] = []
    release = asyncio.Event()

    async def reader() -> None:
        async with lock.read():
            events.append("read-start")
            await release.wait()
            events.append("read-end")

    async def writer() -> None:
        async with lock.write():
            events.append("write")

    reader_task = asyncio.create_task(reader())
    await asyncio.sleep(0)
    writer_task = asyncio.create_task(writer())
    await asyncio.sleep(0)
    assert events == ["read-start"]

    release.set()
    await asyncio.gather(reader_task, writer_task)
    assert events == ["read-start", "read-end", "write"]
