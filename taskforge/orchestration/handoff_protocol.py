"""
Agent Handoff Protocol

Agents redirect a conversation by embedding a marker in their response:

    [HANDOFF:<agent_id>:<reason>]<continuation query>

``parse_handoff`` extracts that instruction; ``HandoffChain`` keeps track of
the hops taken during one orchestration run.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Mapping

from ..schemas.orchestration import HandoffRequest

HANDOFF_PATTERN = re.compile(r"\[HANDOFF:([a-zA-Z0-9_-]+):([^\]]+)\]")


def parse_handoff(text: str, *, context: Mapping[str, Any] | None = None) -> HandoffRequest | None:
    """Return the handoff requested by ``text`` or ``None`` when it has no well-formed marker.

    Only the first marker counts. The continuation query is the trimmed text
    following the closing bracket.
    """
    match = HANDOFF_PATTERN.search(text)
    if match is None:
        return None
    return HandoffRequest(
        target_agent=match.group(1),
        reason=match.group(2),
        query=text[match.end():].strip(),
        context=dict(context or {}),
        preserve_memory=True,
    )


def format_handoff(target_agent: str, reason: str, query: str = "") -> str:
    """Render a handoff marker that ``parse_handoff`` accepts."""
    if not HANDOFF_PATTERN.fullmatch(f"[HANDOFF:{target_agent}:{reason}]"):
        raise ValueError(f"invalid handoff target or reason: {target_agent!r}, {reason!r}")
    return f"[HANDOFF:{target_agent}:{reason}]{query}"


@dataclass
class HandoffChain:
    """Tracks a chain of handoffs for debugging and transparency."""

    max_depth: int = 5
    hops: list[str] = field(default_factory=list)
    handoffs: list[tuple[str, str, str]] = field(default_factory=list)

    def visit(self, agent_id: str) -> None:
        self.hops.append(agent_id)

    def add_handoff(self, source: str, target: str, reason: str) -> bool:
        """Record a handoff. Returns False once the chain has used all its hops."""
        self.handoffs.append((source, target, reason))
        return len(self.hops) < self.max_depth

    def has_cycle(self, target: str) -> bool:
        return target in self.hops

    @property
    def depth(self) -> int:
        return len(self.hops)

    def to_summary(self) -> str:
        if not self.handoffs:
            return "No handoffs"
        return " | ".join(f"{source} -> {target} ({reason})" for source, target, reason in self.handoffs)


__all__ = ["HANDOFF_PATTERN", "HandoffChain", "format_handoff", "parse_handoff"]
