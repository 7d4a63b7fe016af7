"""
Orchestration Package

Interactive request path of the engine:
- Agent registry
- Keyword and model-based routing
- Handoff marker protocol and the bounded handoff loop
- Declarative workflows with inter-task dependencies
"""

from .handoff_protocol import HandoffChain, format_handoff, parse_handoff
from .orchestrator import Orchestrator
from .registry import AgentRegistry
from .routing import KeywordRouter, LLMRouter, Router
from .workflow import Workflow, WorkflowExecutor, WorkflowTask, recover_final_result

__all__ = [
    "AgentRegistry",
    "HandoffChain",
    "KeywordRouter",
    "LLMRouter",
    "Orchestrator",
    "Router",
    "Workflow",
    "WorkflowExecutor",
    "WorkflowTask",
    "format_handoff",
    "parse_handoff",
    "recover_final_result",
]
