from __future__ import annotations

import httpx
import pytest
from prometheus_client import REGISTRY

from taskforge.core.metrics import (
    record_plan_parser,
    record_step_attempt,
    record_task_transition,
    record_workflow_task,
    track_background_unit,
)


def _sample(name: str, labels: dict[str, str]) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


def test_task_transition_counter_increments() -> None:
    labels = {"source": "planning", "target": "awaiting_approval"}
    before = _sample("taskforge_task_transitions_total", labels)

    record_task_transition(source="planning", target="awaiting_approval")

    assert _sample("taskforge_task_transitions_total", labels) == pytest.approx(before + 1.0)


def test_background_gauge_tracks_units() -> None:
    labels = {"phase": "metrics-test"}

    track_background_unit(phase="metrics-test", delta=1)
    track_background_unit(phase="metrics-test", delta=1)
    track_background_unit(phase="metrics-test", delta=-1)

    assert _sample("taskforge_tasks_background_active", labels) == pytest.approx(1.0)


def test_parser_and_step_counters() -> None:
    parser_labels = {"parser": "metrics-test", "outcome": "parsed"}
    step_labels = {"outcome": "succeeded"}
    parser_before = _sample("taskforge_plan_parser_total", parser_labels)
    step_before = _sample("taskforge_step_attempts_total", step_labels)

    record_plan_parser(parser="metrics-test", outcome="parsed", steps=3)
    record_step_attempt(outcome="succeeded")

    assert _sample("taskforge_plan_parser_total", parser_labels) == pytest.approx(parser_before + 1.0)
    assert _sample("taskforge_step_attempts_total", step_labels) == pytest.approx(step_before + 1.0)
    assert _sample("taskforge_planner_plan_steps_count", {"parser": "metrics-test"}) >= 1.0


@pytest.mark.asyncio
async def test_metrics_endpoint_includes_custom_series(monkeypatch: pytest.MonkeyPatch) -> None:
    from taskforge import main

    monkeypatch.setattr(main.settings.observability, "prometheus_enabled", True, raising=False)
    record_workflow_task(agent="metrics-agent", outcome="success")

    transport = httpx.ASGITransport(app=main.app)
    try:
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.get("/metrics")
    finally:
        await transport.aclose()

    assert response.status_code == 200
    assert response.headers.get("content-type", "").startswith("text/plain")
    body = response.text
    assert 'taskforge_workflow_tasks_total{agent="metrics-agent",outcome="success"}' in body
    assert "taskforge_orchestrator_runs_total" in body
