from unittest.mock import patch

import pytest

from agent_loop import run
from agent_loop.models import RunResult, RunStatus


@pytest.fixture(autouse=True)
def no_dotenv(monkeypatch):
    monkeypatch.setattr("agent_loop.config.load_dotenv", lambda: False)


def test_goal_is_required():
    with pytest.raises(SystemExit):
        run.parse_args([])


def test_parse_args():
    args = run.parse_args(["What is 2+3*4?", "--tools", "calculate,get_current_time", "--max-steps", "7"])
    assert args.goal == "What is 2+3*4?"
    assert args.tools == "calculate,get_current_time"
    assert args.max_total_steps == 7
    assert args.session_id is None


@patch("agent_loop.run.display")
@patch("agent_loop.run.AgentHarness")
def test_main_runs_goal_inside_a_session(mock_harness_cls, mock_display):
    harness = mock_harness_cls.return_value.__enter__.return_value
    harness.run.return_value = RunResult(status=RunStatus.COMPLETED, goal="g", session_id="s1", message="14")

    code = run.main(["g", "--session", "s1", "--tools", "calculate, get_current_time", "--max-steps", "3"])

    assert code == 0
    settings = mock_harness_cls.call_args.kwargs["settings"]
    assert settings.max_total_steps == 3
    harness.sessions.start.assert_called_once_with("s1")
    harness.run.assert_called_once_with("g", "s1", enabled_tools=["calculate", "get_current_time"])
    harness.sessions.close.assert_called_once_with("s1")
    mock_display.run_summary.assert_called_once_with(harness.run.return_value)


@patch("agent_loop.run.display")
@patch("agent_loop.run.AgentHarness")
def test_main_exit_code_reflects_status(mock_harness_cls, mock_display):
    harness = mock_harness_cls.return_value.__enter__.return_value
    harness.run.return_value = RunResult(status=RunStatus.STEP_LIMIT_REACHED, goal="g", session_id="x")

    assert run.main(["g"]) == 1
    session_id = harness.sessions.start.call_args.args[0]
    assert session_id.startswith("session-")


@patch("agent_loop.run.display")
@patch("agent_loop.run.AgentHarness")
def test_list_tools(mock_harness_cls, mock_display):
    harness = mock_harness_cls.return_value.__enter__.return_value

    assert run.main(["--list-tools"]) == 0

    mock_display.tool_catalogue.assert_called_once_with(harness.tool_catalogue.return_value)
    harness.run.assert_not_called()
