from __future__ import annotations

import threading

from ..agents.base import Agent, describe_agent
from ..core.logging import get_logger

__all__ = ["AgentRegistry"]

logger = get_logger(name=__name__)


class AgentRegistry:
    """Thread-safe mapping of agent identifiers to agents.

    Registration may happen while requests are in flight; every read and write
    goes through the same lock. Registering an existing id replaces the agent.
    """

    def __init__(self) -> None:
        self._agents: dict[str, Agent] = {}
        self._lock = threading.RLock()

    def register(self, agent_id: str, agent: Agent) -> None:
        with self._lock:
            replaced = agent_id in self._agents
            self._agents[agent_id] = agent
        logger.info("agent_registered", agent=agent_id, replaced=replaced)

    def unregister(self, agent_id: str) -> None:
        with self._lock:
            removed = self._agents.pop(agent_id, None)
        if removed is not None:
            logger.info("agent_unregistered", agent=agent_id)

    def get(self, agent_id: str) -> Agent | None:
        with self._lock:
            return self._agents.get(agent_id)

    def list(self) -> dict[str, Agent]:
        with self._lock:
            return dict(self._agents)

    def descriptions(self) -> dict[str, str]:
        """Return ``id -> description`` in registration order, suitable for model routing."""
        with self._lock:
            return {agent_id: describe_agent(agent) for agent_id, agent in self._agents.items()}

    def __contains__(self, agent_id: object) -> bool:
        with self._lock:
            return agent_id in self._agents

    def __len__(self) -> int:
        with self._lock:
            return len(self._agents)
