from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class HandoffRequest(BaseModel):
    """Structured request for one agent to take over from another."""

    target_agent: str = Field(..., min_length=1, description="Identifier of the agent taking over")
    reason: str = Field(default="", description="Free-text reason given by the handing-off agent")
    query: str = Field(default="", description="Query the target agent should answer")
    context: dict[str, Any] = Field(default_factory=dict)
    preserve_memory: bool = Field(default=True)


class HandoffResult(BaseModel):
    agent_id: str
    response: str
    completed: bool
    next_handoff: HandoffRequest | None = None
    hops: list[str] = Field(default_factory=list, description="Agent ids visited in order")


class OrchestrateRequest(BaseModel):
    query: str = Field(..., min_length=1)
    context: dict[str, Any] = Field(default_factory=dict)


__all__ = ["HandoffRequest", "HandoffResult", "OrchestrateRequest"]
