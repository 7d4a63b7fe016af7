from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class LanguageModel(Protocol):
    """Text-in, text-out model client consumed by routers and prompt agents.

    Implementations own transport, retries and credentials; the engine only
    needs a single completion call.
    """

    async def generate(self, prompt: str, **options: Any) -> str:
        ...


__all__ = ["LanguageModel"]
