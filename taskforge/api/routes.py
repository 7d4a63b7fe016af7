from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..core.errors import (
    ExecutionError,
    HopLimitExceededError,
    HopTimeoutError,
    InvalidStateError,
    NotFoundError,
    RoutingError,
    TaskforgeError,
    WorkflowFinalResultMissingError,
)
from ..dependencies import get_agent_registry, get_orchestrator, get_task_service
from ..orchestration.orchestrator import Orchestrator
from ..orchestration.registry import AgentRegistry
from ..schemas.orchestration import HandoffResult, OrchestrateRequest
from ..schemas.tasks import (
    AddTaskLogRequest,
    ApproveTaskPlanRequest,
    CreateTaskRequest,
    LogEntry,
    Task,
    TaskFilter,
    TaskStatus,
    TaskUpdate,
)
from ..tasks.service import TaskService


router = APIRouter()

_STATUS_BY_ERROR: tuple[tuple[type[TaskforgeError], int], ...] = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidStateError, status.HTTP_409_CONFLICT),
    (RoutingError, 422),
    (HopTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
    (HopLimitExceededError, status.HTTP_502_BAD_GATEWAY),
    (WorkflowFinalResultMissingError, status.HTTP_502_BAD_GATEWAY),
    (ExecutionError, status.HTTP_502_BAD_GATEWAY),
)


def _http_error(exc: TaskforgeError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.get("/health", tags=["health"])
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/agents", tags=["orchestration"])
async def list_agents(registry: AgentRegistry = Depends(get_agent_registry)) -> dict[str, str]:
    return registry.descriptions()


@router.post("/orchestrate", response_model=HandoffResult, tags=["orchestration"])
async def orchestrate(
    request: OrchestrateRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> HandoffResult:
    context = dict(request.context)
    context.setdefault("agents", orchestrator.registry.descriptions())
    try:
        return await orchestrator.handle_request(request.query, context)
    except TaskforgeError as exc:
        raise _http_error(exc) from exc


@router.post("/tasks", response_model=Task, status_code=status.HTTP_201_CREATED, tags=["tasks"])
async def create_task(
    request: CreateTaskRequest,
    service: TaskService = Depends(get_task_service),
) -> Task:
    return await service.create_task(request)


@router.get("/tasks", response_model=list[Task], tags=["tasks"])
async def list_tasks(
    user_id: str | None = None,
    conversation_id: str | None = None,
    task_status: list[TaskStatus] | None = Query(None, alias="status"),
    task_kind: str | None = None,
    created_after: datetime | None = None,
    created_before: datetime | None = None,
    service: TaskService = Depends(get_task_service),
) -> list[Task]:
    task_filter = TaskFilter(
        user_id=user_id,
        conversation_id=conversation_id,
        statuses=task_status or [],
        task_kind=task_kind,
        created_after=created_after,
        created_before=created_before,
    )
    return await service.list_tasks(task_filter)


@router.get("/tasks/{task_id}", response_model=Task, tags=["tasks"])
async def get_task(task_id: str, service: TaskService = Depends(get_task_service)) -> Task:
    try:
        return await service.get_task(task_id)
    except TaskforgeError as exc:
        raise _http_error(exc) from exc


@router.get("/tasks/{task_id}/history", response_model=list[str], tags=["tasks"])
async def get_task_history(task_id: str, service: TaskService = Depends(get_task_service)) -> list[str]:
    try:
        return await service.get_task_history(task_id)
    except TaskforgeError as exc:
        raise _http_error(exc) from exc


@router.post("/tasks/{task_id}/approve", response_model=Task, tags=["tasks"])
async def approve_task_plan(
    task_id: str,
    request: ApproveTaskPlanRequest,
    service: TaskService = Depends(get_task_service),
) -> Task:
    try:
        return await service.approve_task_plan(task_id, request)
    except TaskforgeError as exc:
        raise _http_error(exc) from exc


@router.patch("/tasks/{task_id}", response_model=Task, tags=["tasks"])
async def update_task(
    task_id: str,
    updates: list[TaskUpdate],
    service: TaskService = Depends(get_task_service),
) -> Task:
    try:
        return await service.update_task(task_id, updates)
    except TaskforgeError as exc:
        raise _http_error(exc) from exc


@router.post(
    "/tasks/{task_id}/logs",
    response_model=LogEntry,
    status_code=status.HTTP_201_CREATED,
    tags=["tasks"],
)
async def add_task_log(
    task_id: str,
    request: AddTaskLogRequest,
    service: TaskService = Depends(get_task_service),
) -> LogEntry:
    try:
        return await service.add_task_log(task_id, request.message, request.level, step_id=request.step_id)
    except TaskforgeError as exc:
        raise _http_error(exc) from exc
