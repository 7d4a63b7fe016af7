from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

HANDOFF_HOPS_TOTAL = Counter(
    "taskforge_handoff_hops_total",
    "Agent hops executed by the orchestrator grouped by agent and outcome",
    labelnames=("agent", "outcome"),
)

AGENT_LATENCY_SECONDS = Histogram(
    "taskforge_agent_execution_latency_seconds",
    "Latency for each agent execution",
    labelnames=("agent",),
)

ORCHESTRATOR_RUNS_TOTAL = Counter(
    "taskforge_orchestrator_runs_total",
    "Total orchestrator runs by status",
    labelnames=("entry_point", "status"),
)

ORCHESTRATOR_RUN_LATENCY_SECONDS = Histogram(
    "taskforge_orchestrator_run_latency_seconds",
    "End-to-end orchestrator runtime",
    labelnames=("entry_point",),
    buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60, 120, 300, float("inf")),
)

ORCHESTRATOR_ACTIVE_GAUGE = Gauge(
    "taskforge_orchestrator_runs_active",
    "Active orchestrator runs in flight",
    labelnames=("entry_point",),
)

ORCHESTRATOR_HOPS = Histogram(
    "taskforge_orchestrator_hops",
    "Number of agent hops per orchestrator run",
    buckets=(1, 2, 3, 4, 5, 8, 13),
)

WORKFLOW_TASKS_TOTAL = Counter(
    "taskforge_workflow_tasks_total",
    "Workflow task outcomes grouped by agent",
    labelnames=("agent", "outcome"),
)

TASK_TRANSITIONS_TOTAL = Counter(
    "taskforge_task_transitions_total",
    "Task lifecycle status transitions",
    labelnames=("source", "target"),
)

TASKS_ACTIVE_GAUGE = Gauge(
    "taskforge_tasks_background_active",
    "Background planning/execution units in flight",
    labelnames=("phase",),
)

PLANNER_OUTCOMES_TOTAL = Counter(
    "taskforge_planner_plan_total",
    "Count of planner outcomes grouped by phase and status",
    labelnames=("phase", "status"),
)

PLANNER_STEPS = Histogram(
    "taskforge_planner_plan_steps",
    "Number of steps produced per parsed plan",
    labelnames=("parser",),
    buckets=(0, 1, 2, 3, 4, 5, 8, 13, 21),
)

PLAN_PARSER_TOTAL = Counter(
    "taskforge_plan_parser_total",
    "Plan parser strategy attempts grouped by outcome",
    labelnames=("parser", "outcome"),
)

STEP_ATTEMPTS_TOTAL = Counter(
    "taskforge_step_attempts_total",
    "Plan step execution attempts grouped by outcome",
    labelnames=("outcome",),
)


def record_handoff_hop(*, agent: str, outcome: str, latency: float | None = None) -> None:
    HANDOFF_HOPS_TOTAL.labels(agent=agent, outcome=outcome).inc()
    if latency is not None:
        AGENT_LATENCY_SECONDS.labels(agent=agent).observe(max(0.0, latency))


def mark_orchestrator_run_started(*, entry_point: str) -> None:
    ORCHESTRATOR_ACTIVE_GAUGE.labels(entry_point=entry_point).inc()
    ORCHESTRATOR_RUNS_TOTAL.labels(entry_point, "started").inc()


def mark_orchestrator_run_completed(
    *,
    entry_point: str,
    status: str,
    latency: float,
    hops: int | None = None,
) -> None:
    ORCHESTRATOR_ACTIVE_GAUGE.labels(entry_point=entry_point).dec()
    ORCHESTRATOR_RUNS_TOTAL.labels(entry_point, status).inc()
    ORCHESTRATOR_RUN_LATENCY_SECONDS.labels(entry_point=entry_point).observe(latency)
    if hops is not None:
        ORCHESTRATOR_HOPS.observe(hops)


def record_workflow_task(*, agent: str, outcome: str) -> None:
    WORKFLOW_TASKS_TOTAL.labels(agent=agent, outcome=outcome).inc()


def record_task_transition(*, source: str, target: str) -> None:
    TASK_TRANSITIONS_TOTAL.labels(source=source, target=target).inc()


def track_background_unit(*, phase: str, delta: int) -> None:
    TASKS_ACTIVE_GAUGE.labels(phase=phase).inc(delta)


def record_plan_metrics(*, phase: str, status: str) -> None:
    PLANNER_OUTCOMES_TOTAL.labels(phase=phase, status=status).inc()


def record_plan_parser(*, parser: str, outcome: str, steps: int | None = None) -> None:
    PLAN_PARSER_TOTAL.labels(parser=parser, outcome=outcome).inc()
    if steps is not None:
        PLANNER_STEPS.labels(parser=parser).observe(max(0, steps))


def record_step_attempt(*, outcome: str) -> None:
    STEP_ATTEMPTS_TOTAL.labels(outcome=outcome).inc()


__all__ = [
    "mark_orchestrator_run_completed",
    "mark_orchestrator_run_started",
    "record_handoff_hop",
    "record_plan_metrics",
    "record_plan_parser",
    "record_step_attempt",
    "record_task_transition",
    "record_workflow_task",
    "track_background_unit",
]
