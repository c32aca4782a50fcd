# harness.py
# Orchestration loop for the agent.
#
# The harness owns all control flow: it asks the planner for one step at a
# time, executes it (tool dispatch or gated browser primitive), records the
# result on the step and feeds it into the next request. The planner is a
# passive responder and never executes anything itself.
#
# Control flow per iteration:
#   step limit? → planner → TERMINATE? → execute → record → loop hint
#   → session failure check → repeat
#
# All terminal output is delegated to display.py.

import logging
import time
from typing import Any, Callable, Iterable, Sequence

from agent_loop import display
from agent_loop.automation import AutomationBackend, BrowserExecutor, select_backend
from agent_loop.config import Settings
from agent_loop.dispatcher import ToolDispatcher
from agent_loop.loop_detector import LoopDetector
from agent_loop.models import (
    ErrorKind,
    ExecutionResult,
    RunResult,
    RunStatus,
    Step,
    StepKind,
    ToolCallInstruction,
    ToolSelection,
)
from agent_loop.planner import OpenAIPlanner, PlannerError, StepContractViolation, StepPlanner, build_loop_hint
from agent_loop.registry import ToolRegistry
from agent_loop.sessions import SessionTracker
from agent_loop.tools import ToolContext, build_registry

logger = logging.getLogger(__name__)

RECENT_TOOLS_IN_HINT = 5


class AgentHarness:
    """
    Central harness for goal runs.

    Stores (registry, loop detector, session tracker) are built per
    instance unless injected, so unrelated harnesses never share state.

    Example:
        harness = AgentHarness(settings=Settings.from_env())
        harness.sessions.start("s-1")
        result = harness.run("What is 2+3*4?", session_id="s-1")
    """

    def __init__(
        self,
        planner: StepPlanner | None = None,
        settings: Settings | None = None,
        *,
        registry: ToolRegistry | None = None,
        detector: LoopDetector | None = None,
        sessions: SessionTracker | None = None,
        backend: AutomationBackend | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or Settings()
        self.planner = planner or OpenAIPlanner.from_settings(self.settings)
        self.sessions = sessions or SessionTracker()
        self.detector = detector or LoopDetector(
            window=self.settings.loop_detection_window_sec,
            max_age=self.settings.max_history_age_sec,
            max_identical=self.settings.max_identical_calls,
            clock=clock,
        )
        self._owns_backend = backend is None
        backend = backend or select_backend(self.settings)
        self.registry = registry or build_registry(
            ToolContext(
                workspace=self.settings.workspace_dir,
                sessions=self.sessions,
                automation_mode=backend.mode,
                python_timeout=self.settings.tool_timeout_sec,
            )
        )
        self.dispatcher = ToolDispatcher(
            self.registry,
            self.detector,
            default_timeout=self.settings.tool_timeout_sec,
        )
        self.browser = BrowserExecutor(self.sessions, backend)
        display.banner(self.settings.model, backend.mode, len(self.registry))

    def close(self) -> None:
        close = getattr(self.browser.backend, "close", None)
        if self._owns_backend and close is not None:
            close()

    def __enter__(self) -> "AgentHarness":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Tool catalogue
    # ------------------------------------------------------------------

    def tools_for(self, enabled_tools: Iterable[str] | None = None) -> list[ToolSelection]:
        return self.registry.selections(enabled_tools)

    def tool_catalogue(self) -> dict[str, Any]:
        """Every registered tool with its schema, grouped for listing."""
        return {
            "tools": [tool.describe() for tool in self.registry],
            "tools_by_category": {
                category: [tool.name for tool in tools]
                for category, tools in self.registry.by_category().items()
            },
            "categories": self.registry.categories(),
            "total_count": len(self.registry),
        }

    # ------------------------------------------------------------------
    # Caller-facing contract: START / GET_NEXT_STEP / EXECUTE_STEP
    # ------------------------------------------------------------------

    def start(self, goal: str, session_id: str, enabled_tools: Iterable[str] | None = None) -> Step:
        """
        First step of a run.

        Raises StepContractViolation or PlannerError when the planner
        breaks its contract; run() turns those into a terminal status.
        """
        logger.info("START %s: %s", session_id, goal)
        step = self.planner.first_step(goal, self.tools_for(enabled_tools), self.settings.language)
        return step.model_copy(update={"sequence_number": 1})

    def get_next_step(
        self,
        goal: str,
        session_id: str,
        prior_steps: Sequence[Step],
        previous_extraction: Any = None,
        enabled_tools: Iterable[str] | None = None,
        loop_hint: str | None = None,
    ) -> Step:
        """Next step given the history. Raises like start()."""
        logger.debug("GET_NEXT_STEP %s after %d step(s)", session_id, len(prior_steps))
        step = self.planner.next_step(
            goal,
            prior_steps,
            previous_extraction,
            self.tools_for(enabled_tools),
            self.settings.language,
            loop_hint=loop_hint,
        )
        number = max((s.sequence_number for s in prior_steps), default=0) + 1
        return step.model_copy(update={"sequence_number": number})

    def execute_step(
        self,
        session_id: str,
        step: Step,
        enabled_tools: Iterable[str] | None = None,
    ) -> ExecutionResult:
        """Execute one step. Always returns a result; never raises."""
        if step.kind is StepKind.TERMINATE:
            return ExecutionResult.ok({"done": True, "answer": step.instruction})

        if step.kind is StepKind.CALL_TOOL:
            if not isinstance(step.instruction, ToolCallInstruction):
                return ExecutionResult.fail(
                    ErrorKind.STEP_CONTRACT_VIOLATION,
                    "CALL_TOOL step without a {toolName, params} instruction.",
                )
            name = step.instruction.tool_name
            if name in self.registry and name not in self.registry.enabled_names(enabled_tools):
                logger.warning("planner named disabled tool %r", name)
                return ExecutionResult.fail(
                    ErrorKind.STEP_CONTRACT_VIOLATION,
                    f"Tool '{name}' is disabled for this run. Choose an enabled tool.",
                    tool_name=name,
                )
            return self.dispatcher.dispatch(name, step.instruction.params)

        instruction = step.instruction if isinstance(step.instruction, str) else ""
        return self.browser.execute(session_id, step.kind, instruction)

    # ------------------------------------------------------------------
    # Orchestration loop
    # ------------------------------------------------------------------

    def _finish(
        self,
        status: RunStatus,
        goal: str,
        session_id: str,
        steps: list[Step],
        message: str,
        error_kind: ErrorKind | None = None,
    ) -> RunResult:
        result = RunResult(
            status=status,
            goal=goal,
            session_id=session_id,
            steps=steps,
            error_kind=error_kind,
            message=message,
        )
        logger.info("run %s finished: %s after %d step(s)", session_id, status.value, len(steps))
        display.run_finished(result)
        return result

    def run(self, goal: str, session_id: str, enabled_tools: Iterable[str] | None = None) -> RunResult:
        """
        Drive one goal to a terminal status.

        Always returns a RunResult carrying the terminal status and every
        step with its result; planner failures never escape as exceptions.
        """
        enabled = list(enabled_tools) if enabled_tools is not None else None
        max_steps = self.settings.max_total_steps
        steps: list[Step] = []
        extraction: Any = None
        same_tool_run = 0
        last_tool: str | None = None
        hint: str | None = None
        session_failures = 0

        display.run_started(goal, session_id, max_steps)

        while True:
            if len(steps) >= max_steps:
                return self._finish(
                    RunStatus.STEP_LIMIT_REACHED,
                    goal,
                    session_id,
                    steps,
                    f"Stopped after the maximum of {max_steps} steps.",
                    ErrorKind.STEP_LIMIT_EXCEEDED,
                )

            try:
                if not steps:
                    step = self.start(goal, session_id, enabled)
                else:
                    step = self.get_next_step(goal, session_id, steps, extraction, enabled, loop_hint=hint)
            except StepContractViolation as exc:
                display.halt(f"Step contract violation: {exc}")
                return self._finish(
                    RunStatus.FATAL_TOOL_ERROR, goal, session_id, steps, str(exc), ErrorKind.STEP_CONTRACT_VIOLATION
                )
            except PlannerError as exc:
                display.halt(str(exc))
                return self._finish(
                    RunStatus.FATAL_TOOL_ERROR, goal, session_id, steps, str(exc), ErrorKind.MODEL_INFERENCE_ERROR
                )
            except Exception as exc:
                logger.exception("planner failed for %s", session_id)
                message = f"Planner failed: {type(exc).__name__}: {exc}"
                display.halt(message)
                return self._finish(
                    RunStatus.FATAL_TOOL_ERROR, goal, session_id, steps, message, ErrorKind.MODEL_INFERENCE_ERROR
                )

            steps.append(step)
            display.step_planned(step, max_steps)

            result = self.execute_step(session_id, step, enabled)
            step.result = result
            display.step_result(step)

            if step.kind is StepKind.TERMINATE:
                return self._finish(RunStatus.COMPLETED, goal, session_id, steps, _answer_text(step))

            extraction = result.extraction

            # Soft same-tool hint, independent of the dispatcher's hard gate.
            if step.tool == last_tool:
                same_tool_run += 1
            else:
                same_tool_run = 1
                last_tool = step.tool
            hint = None
            if same_tool_run >= self.settings.same_tool_hint_threshold:
                recent = [s.tool for s in steps[-RECENT_TOOLS_IN_HINT:]]
                hint = build_loop_hint(step.tool, same_tool_run, recent)
                display.loop_hint(step.tool, same_tool_run)

            if result.error_kind is ErrorKind.SESSION_NOT_ACTIVE:
                session_failures += 1
            else:
                session_failures = 0
            if session_failures >= self.settings.max_session_failures:
                return self._finish(
                    RunStatus.SESSION_ERROR,
                    goal,
                    session_id,
                    steps,
                    f"Session '{session_id}' is not active ({session_failures} consecutive browser steps refused).",
                    ErrorKind.SESSION_NOT_ACTIVE,
                )


def _answer_text(step: Step) -> str:
    if isinstance(step.instruction, str) and step.instruction:
        return step.instruction
    return step.action or "Goal completed."
