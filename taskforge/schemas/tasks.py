from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class TaskStatus(str, Enum):
    PENDING = "pending"
    PLANNING = "planning"
    AWAITING_APPROVAL = "awaiting_approval"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {TaskStatus.COMPLETED, TaskStatus.FAILED}


class StepStatus(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class LogLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class UpdateType(str, Enum):
    ADD_STEP = "add_step"
    MODIFY_STEP = "modify_step"
    REMOVE_STEP = "remove_step"


class Step(BaseModel):
    id: str = Field(default_factory=_new_id)
    plan_id: str = ""
    description: str
    status: StepStatus = StepStatus.PENDING
    order: int = Field(1, ge=1)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    output: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class Plan(BaseModel):
    id: str = Field(default_factory=_new_id)
    task_id: str
    description: str | None = None
    steps: list[Step] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    approved_at: datetime | None = None
    is_approved: bool = False


class LogEntry(BaseModel):
    """Audit record attached to a task; entries are never edited once written."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    task_id: str
    step_id: str | None = None
    message: str
    level: LogLevel = LogLevel.INFO
    timestamp: datetime = Field(default_factory=_utcnow)


class Task(BaseModel):
    id: str = Field(default_factory=_new_id)
    title: str | None = None
    description: str
    status: TaskStatus = TaskStatus.PENDING
    task_kind: str | None = None
    conversation_id: str | None = None
    user_id: str | None = None
    plan: Plan | None = None
    steps: list[Step] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    logs: list[LogEntry] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    feedback: str | None = None

    @property
    def effective_steps(self) -> list[Step]:
        """Steps of the plan when one exists, otherwise the task's own steps."""
        if self.plan is not None:
            return self.plan.steps
        return self.steps

    def add_log(self, message: str, level: LogLevel = LogLevel.INFO, *, step_id: str | None = None) -> LogEntry:
        entry = LogEntry(task_id=self.id, step_id=step_id, message=message, level=level)
        self.logs.append(entry)
        self.updated_at = entry.timestamp
        return entry


class CreateTaskRequest(BaseModel):
    description: str = Field(..., min_length=1)
    user_id: str | None = None
    title: str | None = None
    task_kind: str | None = None
    conversation_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ApproveTaskPlanRequest(BaseModel):
    approved: bool
    feedback: str | None = None


class TaskUpdate(BaseModel):
    type: str
    step_id: str | None = None
    description: str | None = None
    status: StepStatus | None = None


class TaskFilter(BaseModel):
    user_id: str | None = None
    conversation_id: str | None = None
    statuses: list[TaskStatus] = Field(default_factory=list)
    task_kind: str | None = None
    created_after: datetime | None = None
    created_before: datetime | None = None

    @field_validator("created_after", "created_before")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        """Naive bounds are read as UTC so they compare with stored timestamps."""
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def matches(self, task: Task) -> bool:
        if self.user_id is not None and task.user_id != self.user_id:
            return False
        if self.conversation_id is not None and task.conversation_id != self.conversation_id:
            return False
        if self.statuses and task.status not in self.statuses:
            return False
        if self.task_kind is not None and task.task_kind != self.task_kind:
            return False
        if self.created_after is not None and task.created_at < self.created_after:
            return False
        if self.created_before is not None and task.created_at > self.created_before:
            return False
        return True


class AddTaskLogRequest(BaseModel):
    message: str = Field(..., min_length=1)
    level: LogLevel = LogLevel.INFO
    step_id: str | None = None


class TaskEvent(BaseModel):
    task_id: str
    previous_status: TaskStatus | None = None
    status: TaskStatus
    message: str
    timestamp: datetime = Field(default_factory=_utcnow)


__all__ = [
    "AddTaskLogRequest",
    "ApproveTaskPlanRequest",
    "CreateTaskRequest",
    "LogEntry",
    "LogLevel",
    "Plan",
    "Step",
    "StepStatus",
    "Task",
    "TaskEvent",
    "TaskFilter",
    "TaskStatus",
    "TaskUpdate",
    "UpdateType",
]
