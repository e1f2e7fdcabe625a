import json

import pytest

from planforge.errors import PlanParseError
from planforge.plan_parser import parse_plan_text, repair_json_text, strip_wrappers
from planforge.schemas import LiteralValue, StepOutputRef


PLAN = {
    "steps": [
        {"id": "step_1", "description": "a", "tool": "create_file", "parameters": {"path": "a.txt", "content": "x"}},
        {"id": "step_2", "description": "b", "tool": "read_file", "parameters": {"path": "$step_1"}, "dependencies": ["step_1"]},
    ],
    "estimatedTime": 4,
}


def test_parses_fenced_output_with_prose():
    text = "Sure! Here is the plan:\n```json\n" + json.dumps(PLAN) + "\n```\nGood luck."
    plan = parse_plan_text(text)
    assert plan.step_ids() == ["step_1", "step_2"]
    assert plan.estimated_time == 4
    assert plan.dependency_map == {"step_2": ["step_1"]}
    assert all(step.status == "pending" for step in plan.steps)


def test_tagged_reference_becomes_explicit_ref():
    plan = parse_plan_text(json.dumps(PLAN))
    assert plan.steps[1].parameters["path"] == StepOutputRef(step_id="step_1")
    assert plan.steps[0].parameters["path"] == LiteralValue(value="a.txt")
    assert plan.to_dict()["steps"][1]["parameters"]["path"] == "$step_1"


def test_prices_are_not_references():
    raw = {"steps": [{"id": "s", "tool": "t", "parameters": {"price": "$5.00", "ref": {"$ref": "s0"}}}]}
    plan = parse_plan_text(json.dumps(raw))
    assert plan.steps[0].parameters["price"] == LiteralValue(value="$5.00")
    assert plan.steps[0].parameters["ref"] == StepOutputRef(step_id="s0")


def test_repairs_bad_escapes_and_trailing_commas():
    text = '{"steps": [{"id": "step_1", "tool": "t", "parameters": {"pattern": "\\d+\\s", "n": "a\\nb"},},],}'
    plan = parse_plan_text(text)
    params = plan.steps[0].parameters
    assert params["pattern"].value == "\\d+\\s"
    assert params["n"].value == "a\nb"


def test_repair_keeps_valid_escapes_intact():
    assert repair_json_text('"\\\\d \\u00e9 \\q"') == '"\\\\d \\u00e9 \\\\q"'


def test_unterminated_fence_is_stripped():
    assert strip_wrappers('```json\n{"steps": []}') == '{"steps": []}'


@pytest.mark.parametrize(
    "text",
    [
        "",
        "no json here",
        "[1, 2, 3]",
        '{"steps": "nope"}',
        '{"steps": [{"tool": "t"}]}',
        '{"steps": [{"id": "step_1"}]}',
        '{"steps": [{"id": "step_1", "tool": "t", "parameters": [1]}]}',
    ],
)
def test_unrecoverable_output_raises_parse_error(text):
    with pytest.raises(PlanParseError):
        parse_plan_text(text)


def test_dependency_scalars_are_normalised():
    raw = {"steps": [{"id": 1, "tool": "t"}, {"id": "2", "tool": "t", "dependencies": 1}]}
    plan = parse_plan_text(json.dumps(raw))
    assert plan.step_ids() == ["1", "2"]
    assert plan.steps[1].dependencies == ["1"]


README_PLAN = {
    "steps": [
        {
            "id": "step_1",
            "tool": "create_file",
            "parameters": {"path": "README.md", "content": "# Demo\n\n```python\nprint('hi')\n```\n"},
        }
    ]
}


def test_raw_json_keeps_fenced_markdown_content():
    plan = parse_plan_text(json.dumps(README_PLAN))
    assert plan.steps[0].parameters["content"].value == README_PLAN["steps"][0]["parameters"]["content"]


def test_fenced_json_keeps_fenced_markdown_content():
    text = "```json\n" + json.dumps(README_PLAN, indent=2) + "\n```"
    plan = parse_plan_text(text)
    assert plan.steps[0].parameters["content"].value == README_PLAN["steps"][0]["parameters"]["content"]


def test_prose_around_fenced_json_with_inner_fence():
    text = "Here you go:\n```json\n" + json.dumps(README_PLAN) + "\n```\nLet me know."
    plan = parse_plan_text(text)
    assert plan.steps[0].parameters["path"].value == "README.md"
    assert "```python" in plan.steps[0].parameters["content"].value


def test_repair_leaves_commas_inside_strings_alone():
    text = (
        '{"steps": [{"id": "step_1", "tool": "create_file", '
        '"parameters": {"path": "a.py", "content": "xs = [1, 2,]\\nys = {3,}"},},],}'
    )
    plan = parse_plan_text(text)
    assert plan.steps[0].parameters["content"].value == "xs = [1, 2,]\nys = {3,}"


def test_repair_only_drops_structural_trailing_commas():
    assert repair_json_text('{"a": "x,]", "b": [1, 2, ], }') == '{"a": "x,]", "b": [1, 2 ] }'
