import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from openai import OpenAIError

from agent_loop.models import ExecutionResult, ErrorKind, Step, StepKind, ToolCallInstruction, ToolSelection
from agent_loop.planner import (
    OpenAIPlanner,
    PlannerError,
    StepContractViolation,
    build_loop_hint,
    format_history,
    format_tools,
    parse_step,
)

TOOLS = [
    ToolSelection(name="calculate", description="Evaluate arithmetic", category="utility", enabled=True),
    ToolSelection(name="search_web", description="Search the web", category="web", enabled=False),
]


def _response(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _planner(*contents):
    client = MagicMock()
    client.chat.completions.create.side_effect = [_response(c) for c in contents]
    return OpenAIPlanner(model="test-model", api_key="k", base_url="http://localhost", client=client), client


# ---------------------------------------------------------------------------
# parse_step
# ---------------------------------------------------------------------------


def test_parse_call_tool_with_object_instruction():
    step = parse_step(
        json.dumps(
            {
                "action": "Compute",
                "rationale": "Local tool is enough",
                "kind": "CALL_TOOL",
                "instruction": {"toolName": "calculate", "params": {"expression": "2+3*4"}},
            }
        )
    )
    assert step.kind is StepKind.CALL_TOOL
    assert step.instruction == ToolCallInstruction(tool_name="calculate", params={"expression": "2+3*4"})
    assert step.tool == "calculate"
    assert step.sequence_number == 0


def test_parse_call_tool_with_string_instruction():
    raw = json.dumps(
        {"kind": "CALL_TOOL", "instruction": json.dumps({"toolName": "get_current_time", "params": {}})}
    )
    assert parse_step(raw).instruction.tool_name == "get_current_time"


def test_parse_strips_code_fences():
    raw = '```json\n{"kind": "NAVIGATE", "action": "Open", "instruction": "https://example.com"}\n```'
    step = parse_step(raw)
    assert step.kind is StepKind.NAVIGATE
    assert step.instruction == "https://example.com"
    assert step.tool == "NAVIGATE"


def test_parse_serializes_structured_browser_instruction():
    step = parse_step(json.dumps({"kind": "EXTRACT", "instruction": {"field": "price"}}))
    assert step.instruction == '{"field": "price"}'


@pytest.mark.parametrize(
    "raw",
    [
        "not json at all",
        "[1, 2, 3]",
        json.dumps({"kind": "FLY", "instruction": ""}),
        json.dumps({"instruction": "missing kind"}),
        json.dumps({"kind": "CALL_TOOL", "instruction": "calculate 2+2"}),
        json.dumps({"kind": "CALL_TOOL", "instruction": {"params": {}}}),
    ],
)
def test_parse_rejects_contract_violations(raw):
    with pytest.raises(StepContractViolation):
        parse_step(raw)


# ---------------------------------------------------------------------------
# Prompt helpers
# ---------------------------------------------------------------------------


def test_format_tools_lists_only_enabled():
    text = format_tools(TOOLS)
    assert "calculate" in text
    assert "search_web" not in text


def test_format_tools_with_nothing_enabled():
    assert format_tools([t.model_copy(update={"enabled": False}) for t in TOOLS]) == "No local tools are enabled."


def test_format_history_includes_outcomes():
    steps = [
        Step(
            sequence_number=1,
            kind=StepKind.CALL_TOOL,
            action="Compute",
            instruction=ToolCallInstruction(tool_name="calculate", params={"expression": "1/0"}),
            result=ExecutionResult.fail(ErrorKind.TOOL_EXECUTION, "Division by zero"),
        ),
        Step(sequence_number=2, kind=StepKind.NAVIGATE, action="Open", instruction="https://example.com",
             result=ExecutionResult.ok({"url": "https://example.com"})),
    ]

    history = format_history(steps)

    assert "-- Step 1: Compute" in history
    assert '"toolName": "calculate"' in history
    assert "ToolExecutionError: Division by zero" in history
    assert "-- Step 2: Open" in history
    assert "Outcome:     success" in history


def test_loop_hint_names_tool_and_count():
    hint = build_loop_hint("calculate", 3, ["calculate", "calculate", "calculate"])
    assert '"calculate" 3 times in a row' in hint
    assert "calculate → calculate → calculate" in hint


# ---------------------------------------------------------------------------
# OpenAIPlanner
# ---------------------------------------------------------------------------


def test_first_step_sends_goal_and_enabled_tools():
    planner, client = _planner(
        json.dumps({"kind": "CALL_TOOL", "action": "Compute", "instruction": {"toolName": "calculate", "params": {"expression": "2+3*4"}}})
    )

    step = planner.first_step("What is 2+3*4?", TOOLS, "ja")

    assert step.instruction.params == {"expression": "2+3*4"}
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "test-model"
    assert kwargs["response_format"] == {"type": "json_object"}
    user = kwargs["messages"][1]["content"]
    assert "What is 2+3*4?" in user
    assert "calculate" in user
    assert "search_web" not in user
    assert "language: ja" in user


def test_first_step_must_be_call_tool_or_navigate():
    planner, _ = _planner(json.dumps({"kind": "EXTRACT", "instruction": "title"}))
    with pytest.raises(StepContractViolation, match="First step"):
        planner.first_step("goal", TOOLS, "en")


def test_next_step_includes_history_extraction_and_hint():
    planner, client = _planner(json.dumps({"kind": "TERMINATE", "action": "Done", "instruction": "14"}))
    prior = [
        Step(
            sequence_number=1,
            kind=StepKind.CALL_TOOL,
            action="Compute",
            instruction=ToolCallInstruction(tool_name="calculate", params={"expression": "2+3*4"}),
            result=ExecutionResult.ok({"value": 14}),
        )
    ]

    step = planner.next_step("What is 2+3*4?", prior, {"value": 14}, TOOLS, "en", loop_hint="LOOP NOTICE")

    assert step.kind is StepKind.TERMINATE
    user = client.chat.completions.create.call_args.kwargs["messages"][1]["content"]
    assert "-- Step 1: Compute" in user
    assert 'Result of the previous step: {"value": 14}' in user
    assert "LOOP NOTICE" in user


def test_model_failure_is_planner_error():
    client = MagicMock()
    client.chat.completions.create.side_effect = OpenAIError("connection refused")
    planner = OpenAIPlanner(model="m", api_key=None, base_url="http://localhost", client=client)

    with pytest.raises(PlannerError, match="connection refused"):
        planner.first_step("goal", TOOLS, "en")


def test_empty_model_response_is_planner_error():
    planner, _ = _planner("")
    with pytest.raises(PlannerError, match="empty"):
        planner.next_step("goal", [], None, TOOLS, "en")


@pytest.mark.parametrize("choices", [[], None])
def test_response_without_choices_is_planner_error(choices):
    client = MagicMock()
    client.chat.completions.create.return_value = SimpleNamespace(choices=choices)
    planner = OpenAIPlanner(model="m", api_key=None, base_url="http://localhost", client=client)

    with pytest.raises(PlannerError, match="no choices"):
        planner.first_step("goal", TOOLS, "en")
