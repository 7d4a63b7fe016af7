from __future__ import annotations

import pytest

from taskforge.core.errors import PlanParseError
from taskforge.schemas.tasks import StepStatus
from taskforge.tasks.parser import (
    CompositePlanParser,
    FallbackPlanParser,
    JSONPlanParser,
    MarkdownPlanParser,
    default_plan_parser,
    extract_json,
)

JSON_PLAN = """{
  "description": "Roll out the billing service",
  "plan": {
    "steps": [
      {"description": "Provision database", "status": "completed", "order": 1},
      {"description": "Deploy API", "status": "bogus", "order": 2},
      {"description": "Smoke test"}
    ]
  }
}"""

MARKDOWN_PLAN = """# Billing rollout

Roll out billing in three stages.

1. Provision database
2. Deploy API
3. Smoke test
"""


def test_json_parser_reads_steps_and_coerces_status() -> None:
    steps = JSONPlanParser().parse_plan(JSON_PLAN)

    assert [step.description for step in steps] == ["Provision database", "Deploy API", "Smoke test"]
    assert [step.status for step in steps] == [StepStatus.COMPLETED, StepStatus.PENDING, StepStatus.PENDING]
    assert [step.order for step in steps] == [1, 2, 3]


def test_json_parser_reads_fenced_block_with_surrounding_prose() -> None:
    content = f"Here is the plan you asked for:\n```json\n{JSON_PLAN}\n```\nLet me know."

    assert len(JSONPlanParser().parse_plan(content)) == 3
    assert JSONPlanParser().get_description(content) == "Roll out the billing service"


def test_extract_json_returns_outermost_braces() -> None:
    assert extract_json('prefix {"a": {"b": 1}} suffix') == '{"a": {"b": 1}}'
    assert extract_json("no braces here") == ""


@pytest.mark.parametrize(
    "content",
    [
        "1. just markdown",
        '{"description": "missing plan tags"}',
        '{"description": "x", "plan": {"steps": [oops]}}',
    ],
)
def test_json_parser_rejects_non_matching_content(content: str) -> None:
    with pytest.raises(PlanParseError):
        JSONPlanParser().parse_plan(content)


def test_json_description_must_not_be_empty() -> None:
    with pytest.raises(PlanParseError, match="empty description"):
        JSONPlanParser().get_description('{"description": "", "plan": {"steps": []}}')


def test_markdown_parser_prefers_numbered_lines() -> None:
    parser = MarkdownPlanParser()
    steps = parser.parse_plan(MARKDOWN_PLAN)

    assert [step.description for step in steps] == ["Provision database", "Deploy API", "Smoke test"]
    assert [step.order for step in steps] == [1, 2, 3]
    assert all(step.status is StepStatus.PENDING for step in steps)
    assert parser.get_description(MARKDOWN_PLAN) == "Billing rollout"


def test_markdown_parser_falls_back_to_bullets_and_paragraph() -> None:
    content = "Ship the release safely\n- Freeze the branch\n* Tag the build\n"
    parser = MarkdownPlanParser()

    assert [step.description for step in parser.parse_plan(content)] == ["Freeze the branch", "Tag the build"]
    assert parser.get_description(content) == "Ship the release safely"


def test_markdown_parser_requires_markdown_markers() -> None:
    with pytest.raises(PlanParseError):
        MarkdownPlanParser().parse_plan("plain sentence without structure")
    with pytest.raises(PlanParseError, match="no steps"):
        MarkdownPlanParser().parse_plan("# Title only")


def test_fallback_parser_maps_topics_to_steps() -> None:
    steps = FallbackPlanParser().parse_plan("Deployment then Monitoring")

    assert [step.description for step in steps] == [
        "Prepare deployment manifests",
        "Deploy the application",
        "Configure monitoring and logging",
    ]


def test_fallback_parser_uses_generic_steps_without_keywords() -> None:
    steps = FallbackPlanParser().parse_plan("deployment in lowercase does not count")

    assert len(steps) == 5
    assert steps[0].description == "Analyze requirements and constraints"
    assert steps[-1].order == 5


def test_fallback_description_rules() -> None:
    parser = FallbackPlanParser(default_description="Default plan")
    long_line = "x" * 150

    assert parser.get_description("# heading\n- bullet\nshort\nA sufficiently long line") == "A sufficiently long line"
    assert parser.get_description(long_line) == "x" * 100 + "..."
    assert parser.get_description("# only\n- markers") == "Default plan"


def test_composite_tries_parsers_in_order() -> None:
    parser = default_plan_parser("Default plan")

    assert [step.description for step in parser.parse_plan(MARKDOWN_PLAN)][0] == "Provision database"
    assert parser.get_description(JSON_PLAN) == "Roll out the billing service"
    assert len(parser.parse_plan("something unstructured")) == 5


def test_composite_reports_last_error_when_all_parsers_fail() -> None:
    parser = CompositePlanParser([JSONPlanParser(), MarkdownPlanParser()], default_description="Default plan")

    with pytest.raises(PlanParseError, match="all parsers failed"):
        parser.parse_plan("nothing structured here")
    assert parser.get_description("") == "Default plan"


def test_composite_without_parsers_extracts_nothing() -> None:
    parser = CompositePlanParser(default_description="Default plan")

    with pytest.raises(PlanParseError, match="no steps could be extracted"):
        parser.parse_plan(MARKDOWN_PLAN)

    parser.add_parser(MarkdownPlanParser())
    assert [p.name for p in parser.parsers] == ["markdown"]
    assert len(parser.parse_plan(MARKDOWN_PLAN)) == 3
