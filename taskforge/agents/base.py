from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class Agent(Protocol):
    """An autonomous worker answering one query at a time.

    A response may embed a ``[HANDOFF:<agent>:<reason>]`` marker followed by
    the query the next agent should answer.
    """

    description: str

    async def run(self, query: str) -> str:
        ...


def describe_agent(agent: object) -> str:
    return str(getattr(agent, "description", "") or "")


__all__ = ["Agent", "describe_agent"]
