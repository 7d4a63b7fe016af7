from __future__ import annotations

from collections.abc import AsyncIterator, Iterable

from fastapi import Depends

from .agents.base import Agent
from .agents.prompt import PromptAgent
from .core.config import Settings, get_settings
from .core.errors import InvalidStateError
from .orchestration.orchestrator import Orchestrator
from .orchestration.registry import AgentRegistry
from .orchestration.routing import KeywordRouter, LLMRouter, Router
from .services.llm import LanguageModel
from .tasks.executor import OrchestratedPlanExecutor
from .tasks.parser import default_plan_parser
from .tasks.planner import LLMTaskPlanner
from .tasks.service import TaskService

_agent_registry_singleton: AgentRegistry | None = None
_keyword_router_singleton: KeywordRouter | None = None
_language_model: LanguageModel | None = None
_task_service_singleton: TaskService | None = None


def configure_language_model(llm: LanguageModel | None) -> None:
    """Install the model used for routing and planning. Rebuilds the task service on next use."""
    global _language_model, _task_service_singleton
    _language_model = llm
    _task_service_singleton = None


def get_agent_registry_singleton() -> AgentRegistry:
    global _agent_registry_singleton
    if _agent_registry_singleton is None:
        _agent_registry_singleton = AgentRegistry()
    return _agent_registry_singleton


def get_keyword_router_singleton() -> KeywordRouter:
    global _keyword_router_singleton
    if _keyword_router_singleton is None:
        _keyword_router_singleton = KeywordRouter()
    return _keyword_router_singleton


def register_agent(agent_id: str, agent: Agent, *, keywords: Iterable[str] = ()) -> None:
    """Add an agent to the shared registry and route ``keywords`` to it."""
    get_agent_registry_singleton().register(agent_id, agent)
    router = get_keyword_router_singleton()
    for keyword in keywords:
        router.add_route(keyword, agent_id)


def register_prompt_agent(
    agent_id: str,
    system_prompt: str,
    *,
    description: str = "",
    keywords: Iterable[str] = (),
) -> PromptAgent:
    if _language_model is None:
        raise InvalidStateError("no language model configured")
    agent = PromptAgent(llm=_language_model, system_prompt=system_prompt, description=description, name=agent_id)
    register_agent(agent_id, agent, keywords=keywords)
    return agent


def build_orchestrator(settings: Settings, *, router: Router | None = None) -> Orchestrator:
    if router is None:
        router = LLMRouter(_language_model) if _language_model is not None else get_keyword_router_singleton()
    return Orchestrator(get_agent_registry_singleton(), router, settings=settings)


def get_task_service_singleton(settings: Settings) -> TaskService:
    global _task_service_singleton
    if _task_service_singleton is None:
        planner = LLMTaskPlanner(_language_model) if _language_model is not None else None
        executor = OrchestratedPlanExecutor(build_orchestrator(settings, router=None)) if planner is not None else None
        parser = default_plan_parser(settings.tasks.default_plan_description) if settings.tasks.parse_plans else None
        _task_service_singleton = TaskService(
            planner=planner,
            executor=executor,
            plan_parser=parser,
            settings=settings,
        )
    return _task_service_singleton


async def shutdown_dependencies() -> None:
    if _task_service_singleton is not None:
        await _task_service_singleton.shutdown()


def reset_dependencies() -> None:
    global _agent_registry_singleton, _keyword_router_singleton, _language_model, _task_service_singleton
    _agent_registry_singleton = None
    _keyword_router_singleton = None
    _language_model = None
    _task_service_singleton = None


async def get_app_settings() -> AsyncIterator[Settings]:
    yield get_settings()


async def get_agent_registry() -> AsyncIterator[AgentRegistry]:
    yield get_agent_registry_singleton()


async def get_orchestrator(
    settings: Settings = Depends(get_app_settings),
) -> AsyncIterator[Orchestrator]:
    yield build_orchestrator(settings)


async def get_task_service(
    settings: Settings = Depends(get_app_settings),
) -> AsyncIterator[TaskService]:
    yield get_task_service_singleton(settings)
