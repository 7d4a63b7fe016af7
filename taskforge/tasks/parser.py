from __future__ import annotations

import json
import re
from typing import Any, Iterable, Protocol, Sequence

from pydantic import BaseModel, Field, ValidationError, field_validator

from ..core.config import get_settings
from ..core.errors import PlanParseError
from ..core.logging import get_logger
from ..core.metrics import record_plan_parser
from ..schemas.tasks import Step, StepStatus

__all__ = [
    "CompositePlanParser",
    "FallbackPlanParser",
    "JSONPlanParser",
    "MarkdownPlanParser",
    "PlanParser",
    "default_plan_parser",
    "extract_json",
]

logger = get_logger(name=__name__)

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*\n?(.*?)```", re.DOTALL | re.IGNORECASE)
_NUMBERED_PATTERN = re.compile(r"^\s*(\d+)\.\s+(.+)$", re.MULTILINE)
_BULLET_PATTERN = re.compile(r"^\s*[-*]\s+(.+)$", re.MULTILINE)
_TITLE_PATTERN = re.compile(r"^#\s+(.+)$", re.MULTILINE)
_PARAGRAPH_PATTERN = re.compile(r"^([^#\-*\n].+)$", re.MULTILINE)

_FALLBACK_TOPICS: tuple[tuple[tuple[str, ...], tuple[str, ...]], ...] = (
    (("Requirements", "Analysis"), ("Analyze requirements and constraints",)),
    (("Infrastructure",), ("Configure infrastructure resources",)),
    (("Deployment",), ("Prepare deployment manifests", "Deploy the application")),
    (("Monitoring", "Observability"), ("Configure monitoring and logging",)),
    (("Testing", "Validation"), ("Test and validate the deployment",)),
)

_GENERIC_STEPS: tuple[str, ...] = (
    "Analyze requirements and constraints",
    "Configure infrastructure resources",
    "Prepare deployment manifests",
    "Deploy the application",
    "Configure monitoring and logging",
)


class PlanParser(Protocol):
    name: str

    def parse_plan(self, content: str) -> list[Step]:
        ...

    def get_description(self, content: str) -> str:
        ...


class _JSONStep(BaseModel):
    description: str
    status: StepStatus = StepStatus.PENDING
    order: int = 0

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> StepStatus:
        try:
            return StepStatus(str(value or "").strip().lower())
        except ValueError:
            return StepStatus.PENDING


class _JSONPlanBody(BaseModel):
    steps: list[_JSONStep] = Field(default_factory=list)


class _JSONPlanDocument(BaseModel):
    description: str = ""
    plan: _JSONPlanBody = Field(default_factory=_JSONPlanBody)


def extract_json(text: str) -> str:
    """Return the span from the first ``{`` to the last ``}``, looking inside a code fence first."""
    fenced = _FENCE_PATTERN.search(text)
    if fenced is not None:
        text = fenced.group(1)
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return ""
    return text[start : end + 1]


def _pending_steps(descriptions: Iterable[str]) -> list[Step]:
    return [
        Step(description=description, status=StepStatus.PENDING, order=index)
        for index, description in enumerate(descriptions, start=1)
    ]


class JSONPlanParser:
    """Parses ``{"description": ..., "plan": {"steps": [...]}}`` documents."""

    name = "json"

    def _load(self, content: str) -> _JSONPlanDocument:
        snippet = extract_json(content)
        if not snippet:
            raise PlanParseError("could not extract JSON from content")
        try:
            return _JSONPlanDocument.model_validate(json.loads(snippet))
        except (json.JSONDecodeError, ValidationError) as exc:
            raise PlanParseError(f"failed to parse JSON: {exc}") from exc

    def parse_plan(self, content: str) -> list[Step]:
        if "{" not in content and "}" not in content:
            raise PlanParseError("content does not appear to be JSON")
        if not all(tag in content for tag in ('"description"', '"plan"', '"steps"')):
            raise PlanParseError("content does not appear to be in expected JSON format")

        document = self._load(content)
        steps = [
            Step(
                description=item.description,
                status=item.status,
                order=item.order if item.order >= 1 else index,
            )
            for index, item in enumerate(document.plan.steps, start=1)
        ]
        logger.info("json_plan_parsed", description=document.description, step_count=len(steps))
        return steps

    def get_description(self, content: str) -> str:
        if '"description"' not in content:
            raise PlanParseError("content does not appear to contain a JSON description")
        description = self._load(content).description
        if not description:
            raise PlanParseError("empty description in JSON")
        return description


class MarkdownPlanParser:
    """Numbered or bulleted outlines, with an optional ``# Title``."""

    name = "markdown"

    def parse_plan(self, content: str) -> list[Step]:
        if "#" not in content and "-" not in content:
            raise PlanParseError("content does not appear to be in Markdown format")

        descriptions = [match.group(2).strip() for match in _NUMBERED_PATTERN.finditer(content)]
        if not descriptions:
            descriptions = [match.group(1).strip() for match in _BULLET_PATTERN.finditer(content)]
        if not descriptions:
            raise PlanParseError("no steps found in Markdown content")

        logger.info("markdown_plan_parsed", step_count=len(descriptions))
        return _pending_steps(descriptions)

    def get_description(self, content: str) -> str:
        for pattern in (_TITLE_PATTERN, _PARAGRAPH_PATTERN):
            match = pattern.search(content)
            if match is not None and match.group(1).strip():
                return match.group(1).strip()
        raise PlanParseError("no description found in Markdown content")


class FallbackPlanParser:
    """Builds canned steps from topic keywords. Never fails."""

    name = "fallback"

    def __init__(self, default_description: str | None = None) -> None:
        self.default_description = default_description or get_settings().tasks.default_plan_description

    def parse_plan(self, content: str) -> list[Step]:
        descriptions: list[str] = []
        for keywords, topic_steps in _FALLBACK_TOPICS:
            if any(keyword in content for keyword in keywords):
                descriptions.extend(topic_steps)
        if not descriptions:
            descriptions = list(_GENERIC_STEPS)
        logger.info("fallback_plan_created", step_count=len(descriptions))
        return _pending_steps(descriptions)

    def get_description(self, content: str) -> str:
        for line in content.split("\n"):
            line = line.strip()
            if len(line) > 10 and not line.startswith("#") and not line.startswith("-"):
                if len(line) > 100:
                    line = line[:100] + "..."
                return line
        return self.default_description


class CompositePlanParser:
    """Tries each parser in order; the first non-empty result wins."""

    def __init__(self, parsers: Sequence[PlanParser] | None = None, *, default_description: str | None = None) -> None:
        self._parsers: list[PlanParser] = list(parsers or [])
        self.default_description = default_description or get_settings().tasks.default_plan_description

    @property
    def parsers(self) -> list[PlanParser]:
        return list(self._parsers)

    def add_parser(self, parser: PlanParser) -> None:
        self._parsers.append(parser)

    def parse_plan(self, content: str) -> list[Step]:
        last_error: Exception | None = None
        for parser in self._parsers:
            try:
                steps = parser.parse_plan(content)
            except PlanParseError as exc:
                record_plan_parser(parser=parser.name, outcome="rejected")
                logger.debug("plan_parser_rejected", parser=parser.name, error=str(exc))
                last_error = exc
                continue
            if steps:
                record_plan_parser(parser=parser.name, outcome="parsed", steps=len(steps))
                return steps
            record_plan_parser(parser=parser.name, outcome="empty")

        if last_error is not None:
            raise PlanParseError(f"all parsers failed: {last_error}") from last_error
        raise PlanParseError("no steps could be extracted from the plan")

    def get_description(self, content: str) -> str:
        last_error: Exception | None = None
        for parser in self._parsers:
            try:
                description = parser.get_description(content)
            except PlanParseError as exc:
                last_error = exc
                continue
            if description:
                return description
        if last_error is not None:
            logger.warning("plan_description_parsers_failed", error=str(last_error))
        return self.default_description


def default_plan_parser(default_description: str | None = None) -> CompositePlanParser:
    """JSON, then Markdown, then the keyword fallback."""
    return CompositePlanParser(
        [JSONPlanParser(), MarkdownPlanParser(), FallbackPlanParser(default_description)],
        default_description=default_description,
    )
