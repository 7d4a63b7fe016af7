from __future__ import annotations

import pytest

from taskforge.core.errors import RoutingError
from taskforge.orchestration.routing import KeywordRouter, LLMRouter
from tests.helpers.stubs import StubLanguageModel

AGENTS = {"research": "Finds facts", "writer": "Writes prose"}


@pytest.mark.asyncio
async def test_keyword_router_matches_case_insensitively() -> None:
    router = KeywordRouter()
    router.add_route("Weather", "weather_agent")

    assert await router.route("What is the WEATHER like today?") == "weather_agent"


@pytest.mark.asyncio
async def test_keyword_router_prefers_first_registered_keyword() -> None:
    router = KeywordRouter()
    router.add_route("report", "writer")
    router.add_route("sales", "finance")

    assert await router.route("sales report for Q3") == "writer"


@pytest.mark.asyncio
async def test_keyword_router_keeps_first_agent_for_duplicate_keyword() -> None:
    router = KeywordRouter({"code": "engineer"})
    router.add_route("CODE", "reviewer")

    assert router.routes == {"code": "engineer"}
    assert await router.route("review my code") == "engineer"


@pytest.mark.asyncio
async def test_keyword_router_raises_when_nothing_matches() -> None:
    router = KeywordRouter({"weather": "weather_agent"})

    with pytest.raises(RoutingError, match="no agent found for query: tell me a joke"):
        await router.route("tell me a joke")


def test_keyword_router_rejects_blank_keyword() -> None:
    with pytest.raises(ValueError):
        KeywordRouter().add_route("   ", "agent")


def test_llm_router_prompt_lists_agents_in_order() -> None:
    prompt = LLMRouter.build_prompt("Find X", AGENTS)

    assert prompt.startswith("You are a router that determines which specialized agent should handle a user query.")
    assert "Available agents:\n- research: Finds facts\n- writer: Writes prose\n" in prompt
    assert "User query: Find X" in prompt
    assert prompt.endswith("Respond with only the ID of the agent that should handle this query.")


@pytest.mark.asyncio
async def test_llm_router_returns_trimmed_agent_id() -> None:
    llm = StubLanguageModel("  writer \n")
    router = LLMRouter(llm)

    assert await router.route("Draft a blog post", {"agents": AGENTS}) == "writer"
    assert "Draft a blog post" in llm.prompts[0]


@pytest.mark.asyncio
async def test_llm_router_rejects_unknown_agent_id() -> None:
    router = LLMRouter(StubLanguageModel("poet"))

    with pytest.raises(RoutingError, match="invalid agent ID: poet"):
        await router.route("Write a haiku", {"agents": AGENTS})


@pytest.mark.asyncio
async def test_llm_router_requires_agent_catalogue() -> None:
    router = LLMRouter(StubLanguageModel("research"))

    with pytest.raises(RoutingError):
        await router.route("anything", {})
    with pytest.raises(RoutingError):
        await router.route("anything", None)


@pytest.mark.asyncio
async def test_llm_router_wraps_model_failures() -> None:
    llm = StubLanguageModel()
    llm.error = ConnectionError("model offline")
    router = LLMRouter(llm)

    with pytest.raises(RoutingError) as excinfo:
        await router.route("anything", {"agents": AGENTS})
    assert isinstance(excinfo.value.__cause__, ConnectionError)
