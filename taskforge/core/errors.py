from __future__ import annotations


class TaskforgeError(RuntimeError):
    """Base class for orchestration and task lifecycle failures."""


class NotFoundError(TaskforgeError):
    """Raised when a task or agent identifier cannot be resolved."""


class TaskNotFoundError(NotFoundError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"task not found: {task_id}")
        self.task_id = task_id


class AgentNotFoundError(NotFoundError):
    def __init__(self, agent_id: str) -> None:
        super().__init__(f"agent not found: {agent_id}")
        self.agent_id = agent_id


class InvalidStateError(TaskforgeError):
    """Raised when an operation is not valid for the task's current status."""


class RoutingError(TaskforgeError):
    """Raised when no agent can be selected for a query."""


class PlanParseError(TaskforgeError):
    """Raised when a plan parser cannot extract steps or a description."""


class ExecutionError(TaskforgeError):
    """Raised when a collaborator (agent, planner, executor) reports a failure."""


class AgentExecutionError(ExecutionError):
    def __init__(self, agent_id: str, cause: BaseException) -> None:
        super().__init__(f"agent execution failed: {agent_id}: {cause}")
        self.agent_id = agent_id


class HopTimeoutError(TaskforgeError, TimeoutError):
    """Raised when a single agent hop exceeds its timeout."""


class HopLimitExceededError(TaskforgeError):
    """Raised when an orchestration run does not terminate within the hop limit."""


class WorkflowFinalResultMissingError(TaskforgeError):
    """Raised when the designated final workflow task produced no result."""


__all__ = [
    "AgentExecutionError",
    "AgentNotFoundError",
    "ExecutionError",
    "HopLimitExceededError",
    "HopTimeoutError",
    "InvalidStateError",
    "NotFoundError",
    "PlanParseError",
    "RoutingError",
    "TaskNotFoundError",
    "TaskforgeError",
    "WorkflowFinalResultMissingError",
]
