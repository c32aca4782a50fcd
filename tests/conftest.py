import pytest

from agent_loop.config import Settings
from agent_loop.models import Step, StepKind, ToolCallInstruction
from agent_loop.sessions import SessionTracker
from agent_loop.tools import ToolContext


class FakeClock:
    """Manually advanced clock for LoopDetector windows."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedPlanner:
    """StepPlanner that replays a fixed script, then repeats `repeat` forever."""

    def __init__(self, steps=(), repeat=None):
        self._steps = list(steps)
        self.repeat = repeat
        self.first_calls = []
        self.next_calls = []

    def _take(self):
        item = self._steps.pop(0) if self._steps else self.repeat
        if item is None:
            raise AssertionError("ScriptedPlanner ran out of steps")
        if isinstance(item, Exception):
            raise item
        return item.model_copy(deep=True)

    def first_step(self, goal, tools, language):
        self.first_calls.append({"goal": goal, "tools": list(tools), "language": language})
        return self._take()

    def next_step(self, goal, prior_steps, previous_extraction, tools, language, loop_hint=None):
        self.next_calls.append(
            {
                "goal": goal,
                "prior_steps": list(prior_steps),
                "extraction": previous_extraction,
                "tools": list(tools),
                "loop_hint": loop_hint,
            }
        )
        return self._take()


def call_tool(name: str, **params) -> Step:
    return Step(
        kind=StepKind.CALL_TOOL,
        action=f"call {name}",
        instruction=ToolCallInstruction(tool_name=name, params=params),
    )


def browser(kind: StepKind, instruction: str = "") -> Step:
    return Step(kind=kind, action=kind.value.lower(), instruction=instruction)


def terminate(answer: str = "done") -> Step:
    return Step(kind=StepKind.TERMINATE, action="finish", instruction=answer)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def workspace(tmp_path):
    return tmp_path / "workspace"


@pytest.fixture
def settings(workspace):
    return Settings(workspace_dir=workspace, max_total_steps=5)


@pytest.fixture
def sessions():
    return SessionTracker()


@pytest.fixture
def ctx(workspace, sessions):
    return ToolContext(workspace=workspace, sessions=sessions)
