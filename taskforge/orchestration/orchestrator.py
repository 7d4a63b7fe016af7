from __future__ import annotations

import asyncio
import time
from typing import Any, Mapping

from ..core.config import Settings, get_settings
from ..core.errors import (
    AgentExecutionError,
    AgentNotFoundError,
    HopLimitExceededError,
    HopTimeoutError,
    TaskforgeError,
)
from ..core.logging import get_logger
from ..core.metrics import (
    mark_orchestrator_run_completed,
    mark_orchestrator_run_started,
    record_handoff_hop,
)
from ..schemas.orchestration import HandoffRequest, HandoffResult
from .handoff_protocol import HandoffChain, parse_handoff
from .registry import AgentRegistry
from .routing import Router

logger = get_logger(name=__name__)


class Orchestrator:
    """Routes a query to an agent and follows the handoffs agents emit.

    Each hop runs under its own timeout, nested inside whatever deadline the
    caller applies to ``handle_request``. Cancelling the caller aborts the run.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        router: Router,
        *,
        settings: Settings | None = None,
        max_handoffs: int | None = None,
        hop_timeout: float | None = None,
        entry_point: str = "api",
    ) -> None:
        resolved = settings or get_settings()
        self.registry = registry
        self.router = router
        self.max_handoffs = max_handoffs if max_handoffs is not None else resolved.orchestration.max_handoffs
        self.hop_timeout = hop_timeout if hop_timeout is not None else resolved.orchestration.hop_timeout_seconds
        self.entry_point = entry_point

    async def handle_request(self, query: str, context: Mapping[str, Any] | None = None) -> HandoffResult:
        run_context = dict(context or {})
        started = time.perf_counter()
        chain = HandoffChain(max_depth=self.max_handoffs)
        mark_orchestrator_run_started(entry_point=self.entry_point)
        status = "failed"
        try:
            target = await self.router.route(query, run_context)
            logger.info("orchestrator_routed", agent=target)
            request = HandoffRequest(
                target_agent=target,
                query=query,
                context=run_context,
                preserve_memory=True,
            )
            result = await self._follow_handoffs(request, chain)
            status = "completed"
            return result
        except asyncio.CancelledError:
            status = "cancelled"
            logger.info("orchestrator_cancelled", hops=chain.hops)
            raise
        except TaskforgeError as exc:
            logger.warning("orchestrator_failed", error=str(exc), hops=chain.hops)
            raise
        finally:
            mark_orchestrator_run_completed(
                entry_point=self.entry_point,
                status=status,
                latency=time.perf_counter() - started,
                hops=chain.depth,
            )

    async def _follow_handoffs(self, request: HandoffRequest, chain: HandoffChain) -> HandoffResult:
        hop = 0
        while True:
            hop += 1
            agent_id = request.target_agent
            agent = self.registry.get(agent_id)
            if agent is None:
                record_handoff_hop(agent=agent_id, outcome="missing")
                raise AgentNotFoundError(agent_id)

            chain.visit(agent_id)
            response = await self._run_hop(agent_id, agent, request.query, hop=hop)

            next_request = parse_handoff(response, context=request.context)
            if next_request is None:
                logger.info("orchestrator_completed", agent=agent_id, hop=hop, chain=chain.to_summary())
                return HandoffResult(
                    agent_id=agent_id,
                    response=response,
                    completed=True,
                    hops=list(chain.hops),
                )

            if not chain.add_handoff(agent_id, next_request.target_agent, next_request.reason):
                logger.warning("orchestrator_hop_limit", chain=chain.to_summary(), max_handoffs=self.max_handoffs)
                raise HopLimitExceededError("exceeded maximum number of handoffs")
            logger.info(
                "agent_handoff",
                source=agent_id,
                target=next_request.target_agent,
                reason=next_request.reason,
                hop=hop,
                cycle=chain.has_cycle(next_request.target_agent),
            )
            request = next_request

    async def _run_hop(self, agent_id: str, agent: Any, query: str, *, hop: int) -> str:
        started = time.perf_counter()
        try:
            response = await asyncio.wait_for(agent.run(query), timeout=self.hop_timeout)
        except asyncio.TimeoutError as exc:
            record_handoff_hop(agent=agent_id, outcome="timeout", latency=time.perf_counter() - started)
            logger.warning("agent_hop_timeout", agent=agent_id, hop=hop, timeout=self.hop_timeout)
            raise HopTimeoutError(f"agent {agent_id} timed out after {self.hop_timeout}s") from exc
        except asyncio.CancelledError:
            record_handoff_hop(agent=agent_id, outcome="cancelled", latency=time.perf_counter() - started)
            raise
        except Exception as exc:
            record_handoff_hop(agent=agent_id, outcome="error", latency=time.perf_counter() - started)
            logger.exception("agent_hop_failed", agent=agent_id, hop=hop)
            raise AgentExecutionError(agent_id, exc) from exc

        record_handoff_hop(agent=agent_id, outcome="success", latency=time.perf_counter() - started)
        return str(response)


__all__ = ["Orchestrator"]
