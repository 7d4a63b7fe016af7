from __future__ import annotations

import pytest

from taskforge.agents.base import describe_agent
from taskforge.agents.prompt import PromptAgent
from taskforge.core.errors import InvalidStateError
from taskforge.dependencies import (
    configure_language_model,
    get_agent_registry_singleton,
    get_keyword_router_singleton,
    register_prompt_agent,
    reset_dependencies,
)
from taskforge.schemas.tasks import Task
from taskforge.tasks.planner import DEFAULT_PLANNER_SYSTEM_PROMPT, LLMTaskPlanner
from tests.helpers.stubs import StubLanguageModel


@pytest.mark.asyncio
async def test_prompt_agent_prefixes_system_prompt() -> None:
    llm = StubLanguageModel("Here you go")
    agent = PromptAgent(llm=llm, system_prompt="You are a release manager.", description="Ships releases")

    assert await agent.run("Ship 1.2") == "Here you go"
    assert llm.prompts == ["You are a release manager.\n\nShip 1.2"]
    assert describe_agent(agent) == "Ships releases"


@pytest.mark.asyncio
async def test_planner_prompt_includes_task_details() -> None:
    llm = StubLanguageModel("# Plan\n1. Do it")
    planner = LLMTaskPlanner(llm)
    task = Task(description="Migrate the database", title="DB migration")

    assert await planner.create_plan(task) == "# Plan\n1. Do it"
    prompt = llm.prompts[0]
    assert prompt.startswith(DEFAULT_PLANNER_SYSTEM_PROMPT)
    assert "Task: Migrate the database" in prompt
    assert "Title: DB migration" in prompt
    assert "rejected" not in prompt


def test_planner_prompt_carries_feedback_and_previous_plan() -> None:
    planner = LLMTaskPlanner(StubLanguageModel(), system_prompt="Plan it.")
    task = Task(
        description="Migrate the database",
        metadata={"feedback": "Add a backup step", "original_plan": "1. Migrate"},
    )

    prompt = planner.build_prompt(task)

    assert prompt.startswith("Plan it.")
    assert "rejected with this feedback: Add a backup step" in prompt
    assert "Previous plan:\n1. Migrate" in prompt


def test_prompt_agent_registration_requires_language_model() -> None:
    reset_dependencies()
    try:
        with pytest.raises(InvalidStateError):
            register_prompt_agent("writer", "You write.")

        llm = StubLanguageModel("draft")
        configure_language_model(llm)
        agent = register_prompt_agent("writer", "You write.", description="Writes drafts", keywords=["draft"])

        assert get_agent_registry_singleton().get("writer") is agent
        assert get_agent_registry_singleton().descriptions() == {"writer": "Writes drafts"}
        assert get_keyword_router_singleton().routes == {"draft": "writer"}
    finally:
        reset_dependencies()
