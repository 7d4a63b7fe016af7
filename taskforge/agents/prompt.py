from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..core.logging import get_logger
from ..services.llm import LanguageModel

logger = get_logger(name=__name__)


@dataclass(slots=True)
class PromptAgent:
    """Agent backed by a language model and a fixed system prompt."""

    llm: LanguageModel
    system_prompt: str
    description: str = ""
    name: str = "prompt_agent"

    def build_prompt(self, query: str) -> str:
        return f"{self.system_prompt}\n\n{query}"

    async def run(self, query: str, **options: Any) -> str:
        prompt = self.build_prompt(query)
        logger.debug("prompt_agent_run", agent=self.name, prompt_chars=len(prompt))
        return await self.llm.generate(prompt, **options)


__all__ = ["PromptAgent"]
