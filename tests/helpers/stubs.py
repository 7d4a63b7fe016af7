from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Iterable

from taskforge.schemas.tasks import Step, Task
from taskforge.tasks.executor import PlanExecutor, RetryPolicy


class StubLanguageModel:
    """Returns queued responses in order; the last one repeats once the queue drains."""

    def __init__(self, responses: Iterable[str] | str = "") -> None:
        if isinstance(responses, str):
            responses = [responses]
        self._responses: deque[str] = deque(responses)
        self._last = self._responses[-1] if self._responses else ""
        self.prompts: list[str] = []
        self.error: Exception | None = None

    async def generate(self, prompt: str, **options: Any) -> str:  # noqa: ARG002
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        if self._responses:
            self._last = self._responses.popleft()
        return self._last


class StubAgent:
    def __init__(self, response: str = "done", *, description: str = "", delay: float = 0.0) -> None:
        self.response = response
        self.description = description
        self.delay = delay
        self.queries: list[str] = []

    async def run(self, query: str) -> str:
        self.queries.append(query)
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.response


class FailingAgent:
    description = "always fails"

    def __init__(self, message: str = "agent exploded") -> None:
        self.message = message
        self.calls = 0

    async def run(self, query: str) -> str:  # noqa: ARG002
        self.calls += 1
        raise RuntimeError(self.message)


class StubPlanner:
    def __init__(self, plans: Iterable[str] | str = "# Plan\n1. First\n2. Second") -> None:
        if isinstance(plans, str):
            plans = [plans]
        self._plans: deque[str] = deque(plans)
        self._last = self._plans[-1] if self._plans else ""
        self.seen: list[Task] = []
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None

    async def create_plan(self, task: Task) -> str:
        self.seen.append(task)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        if self._plans:
            self._last = self._plans.popleft()
        return self._last


class RecordingExecutor(PlanExecutor):
    """Plan executor whose step behaviour is driven by a per-description failure count."""

    def __init__(self, *, failures: dict[str, int] | None = None, retry_policy: RetryPolicy | None = None) -> None:
        super().__init__(
            retry_policy=retry_policy
            or RetryPolicy(max_attempts=2, initial_backoff_seconds=0.0, backoff_multiplier=1.0, max_backoff_seconds=0.0)
        )
        self.failures = dict(failures or {})
        self.calls: list[str] = []

    async def execute_step(self, task: Task, step: Step) -> str:  # noqa: ARG002
        self.calls.append(step.description)
        remaining = self.failures.get(step.description, 0)
        if remaining:
            self.failures[step.description] = remaining - 1
            raise RuntimeError(f"step failed: {step.description}")
        return f"ran {step.description}"
