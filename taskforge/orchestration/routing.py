from __future__ import annotations

from typing import Any, Mapping, Protocol

from ..core.errors import RoutingError
from ..core.logging import get_logger
from ..services.llm import LanguageModel

logger = get_logger(name=__name__)

ROUTER_PROMPT_TEMPLATE = (
    "You are a router that determines which specialized agent should handle a user query.\n"
    "Available agents:\n"
    "{agents}\n\n"
    "User query: {query}\n\n"
    "Respond with only the ID of the agent that should handle this query."
)


class Router(Protocol):
    async def route(self, query: str, context: Mapping[str, Any] | None = None) -> str:
        ...


class KeywordRouter:
    """Case-insensitive substring router.

    Keywords are evaluated in the order they were first added; the first
    keyword contained in the query wins. Re-adding a keyword does not change
    the agent it points at.
    """

    def __init__(self, routes: Mapping[str, str] | None = None) -> None:
        self._routes: dict[str, str] = {}
        for keyword, agent_id in (routes or {}).items():
            self.add_route(keyword, agent_id)

    def add_route(self, keyword: str, agent_id: str) -> None:
        normalized = keyword.strip().lower()
        if not normalized:
            raise ValueError("keyword must not be empty")
        if normalized in self._routes:
            logger.debug("keyword_route_ignored", keyword=normalized, agent=agent_id, existing=self._routes[normalized])
            return
        self._routes[normalized] = agent_id

    @property
    def routes(self) -> dict[str, str]:
        return dict(self._routes)

    async def route(self, query: str, context: Mapping[str, Any] | None = None) -> str:
        lowered = query.lower()
        for keyword, agent_id in self._routes.items():
            if keyword in lowered:
                logger.debug("keyword_route_matched", keyword=keyword, agent=agent_id)
                return agent_id
        raise RoutingError(f"no agent found for query: {query}")


class LLMRouter:
    """Router that asks a language model to pick an agent id.

    The candidate agents come from ``context["agents"]``, a mapping of agent id
    to description.
    """

    def __init__(self, llm: LanguageModel) -> None:
        self._llm = llm

    @staticmethod
    def build_prompt(query: str, agents: Mapping[str, str]) -> str:
        lines = "".join(f"- {agent_id}: {description}\n" for agent_id, description in agents.items())
        return ROUTER_PROMPT_TEMPLATE.format(agents=lines, query=query)

    async def route(self, query: str, context: Mapping[str, Any] | None = None) -> str:
        agents = (context or {}).get("agents")
        if not isinstance(agents, Mapping) or not agents:
            raise RoutingError("no agents available for routing")

        prompt = self.build_prompt(query, agents)
        try:
            raw = await self._llm.generate(prompt)
        except Exception as exc:
            logger.warning("llm_route_failed", error=str(exc))
            raise RoutingError(f"routing model failed: {exc}") from exc

        agent_id = str(raw).strip()
        if agent_id not in agents:
            logger.warning("llm_route_invalid", agent=agent_id)
            raise RoutingError(f"invalid agent ID: {agent_id}")
        logger.debug("llm_route_selected", agent=agent_id)
        return agent_id


__all__ = ["KeywordRouter", "LLMRouter", "ROUTER_PROMPT_TEMPLATE", "Router"]
