from __future__ import annotations

from ..core.logging import get_logger
from ..schemas.tasks import Task
from ..services.llm import LanguageModel

logger = get_logger(name=__name__)

DEFAULT_PLANNER_SYSTEM_PROMPT = (
    "You are a planning assistant. Break the task below into a short, ordered list of concrete steps. "
    "Answer with a Markdown title followed by a numbered list, one step per line."
)


class LLMTaskPlanner:
    """Produces free-text plans with a language model; the plan parser turns them into steps."""

    def __init__(self, llm: LanguageModel, *, system_prompt: str | None = None) -> None:
        self._llm = llm
        self.system_prompt = system_prompt or DEFAULT_PLANNER_SYSTEM_PROMPT

    def build_prompt(self, task: Task) -> str:
        sections = [self.system_prompt, "", f"Task: {task.description}"]
        if task.title:
            sections.append(f"Title: {task.title}")
        feedback = task.metadata.get("feedback")
        if feedback:
            sections.extend(["", f"The previous plan was rejected with this feedback: {feedback}"])
            previous = task.metadata.get("updated_plan") or task.metadata.get("original_plan")
            if previous:
                sections.extend(["Previous plan:", str(previous)])
        return "\n".join(sections)

    async def create_plan(self, task: Task) -> str:
        prompt = self.build_prompt(task)
        logger.debug("task_plan_requested", task_id=task.id, replan=bool(task.metadata.get("feedback")))
        return await self._llm.generate(prompt)


__all__ = ["DEFAULT_PLANNER_SYSTEM_PROMPT", "LLMTaskPlanner"]
