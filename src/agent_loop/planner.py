# planner.py
# Step state machine: the closed step vocabulary and the contract for
# asking the model-inference collaborator for the next step.
#
# The planner only proposes. It never executes anything; the harness owns
# numbering, execution and termination.

import json
import logging
import re
from typing import Any, Protocol, Sequence

from openai import OpenAI, OpenAIError
from pydantic import ValidationError

from agent_loop.config import Settings
from agent_loop.models import Step, StepKind, ToolCallInstruction, ToolSelection

logger = logging.getLogger(__name__)

MAX_EXTRACTION_CHARS = 4000


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class StepContractViolation(Exception):
    """The model returned something outside the step contract. Always fatal."""


class PlannerError(Exception):
    """The model-inference call itself failed."""


# ---------------------------------------------------------------------------
# Collaborator contract
# ---------------------------------------------------------------------------


class StepPlanner(Protocol):
    def first_step(self, goal: str, tools: Sequence[ToolSelection], language: str) -> Step: ...

    def next_step(
        self,
        goal: str,
        prior_steps: Sequence[Step],
        previous_extraction: Any,
        tools: Sequence[ToolSelection],
        language: str,
        loop_hint: str | None = None,
    ) -> Step: ...


# ---------------------------------------------------------------------------
# System Prompts
# ---------------------------------------------------------------------------

STEP_FORMAT = """\
Respond with ONLY a JSON object of this exact shape:

{
  "action": "short description of the step",
  "rationale": "why this step moves toward the goal",
  "kind": "<one of: NAVIGATE, INTERACT, EXTRACT, OBSERVE, WAIT, NAVIGATE_BACK, CALL_TOOL, TERMINATE>",
  "instruction": <see below>
}

Instruction by kind:
- NAVIGATE: the URL to open
- INTERACT: the element interaction in plain words ("click the Search button")
- EXTRACT: what to extract from the page
- OBSERVE: what to look for on the page
- WAIT: milliseconds to wait, as a string ("1000")
- NAVIGATE_BACK: empty string
- CALL_TOOL: {"toolName": "<enabled tool>", "params": {...}}
- TERMINATE: the final answer or a summary of what was achieved\
"""

PLANNER_SYSTEM_PROMPT = f"""\
You are an autonomous agent that completes goals one atomic step at a time.

PRIORITY GUIDELINES:
1. ALWAYS prefer local tools (CALL_TOOL) over web browsing when a tool can do the job.
2. Only browse when you need information from, or interaction with, a website.
3. Browser steps need an active browser session; start one with the start_browser_session tool.
4. Never call a tool that is not listed as enabled.
5. Never repeat an identical tool call; if a result is already known, move on.
6. When the goal is achieved, emit TERMINATE.

{STEP_FORMAT}\
"""

FIRST_STEP_PROMPT = """\
Decide how to begin. If the goal can be accomplished with the enabled local tools \
(calculations, files, code, todos, time), return a CALL_TOOL step for the first tool. \
Otherwise return a NAVIGATE step whose instruction is the best URL to start from \
(a search engine or a site you are confident about).\
"""

LOOP_HINT_TEMPLATE = """\
IMPORTANT LOOP PREVENTION NOTICE:
You have used "{tool}" {count} times in a row. You may be stuck in a loop.
1. Review the results of those attempts carefully.
2. If they succeeded, do NOT repeat the same tool; move to the next logical step.
3. If they failed, try a different approach or tool.
4. If you already have enough information, use format_final_answer or TERMINATE.
Recent steps: {history}\
"""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def build_loop_hint(tool: str, count: int, recent: Sequence[str]) -> str:
    return LOOP_HINT_TEMPLATE.format(tool=tool, count=count, history=" → ".join(recent))


def _instruction_text(step: Step) -> str:
    if isinstance(step.instruction, ToolCallInstruction):
        return json.dumps(step.instruction.model_dump(by_alias=True), ensure_ascii=False)
    return step.instruction


def format_history(steps: Sequence[Step]) -> str:
    """Render prior steps as a structured string for the next request."""
    lines: list[str] = []
    for step in steps:
        lines.append(f"-- Step {step.sequence_number}: {step.action}")
        lines.append(f"   Kind:        {step.kind.value}")
        lines.append(f"   Rationale:   {step.rationale}")
        lines.append(f"   Instruction: {_instruction_text(step)}")
        if step.result is not None:
            if step.result.success:
                lines.append("   Outcome:     success")
            else:
                lines.append(f"   Outcome:     {step.result.extraction['error_kind']}: {step.result.error}")
    return "\n".join(lines)


def format_tools(tools: Sequence[ToolSelection]) -> str:
    enabled = [t for t in tools if t.enabled]
    if not enabled:
        return "No local tools are enabled."
    return "Enabled local tools:\n" + "\n".join(
        f"- {t.name}: {t.description} (Category: {t.category})" for t in enabled
    )


def _format_extraction(previous_extraction: Any) -> str:
    text = json.dumps(previous_extraction, ensure_ascii=False, default=str)
    if len(text) > MAX_EXTRACTION_CHARS:
        text = text[:MAX_EXTRACTION_CHARS] + "…"
    return text


def parse_step(response: str) -> Step:
    """
    Validate a raw model response against the step contract.

    Raises StepContractViolation on malformed JSON, an unknown kind, or a
    CALL_TOOL step without a {toolName, params} instruction. Nothing is
    coerced into a different kind.
    """
    raw = response.strip()
    # Strip markdown code blocks if the model wrapped its JSON
    if raw.startswith("```"):
        raw = re.sub(r"^```(?:json)?\s*", "", raw)
        raw = re.sub(r"\s*```$", "", raw)
    try:
        data = json.loads(raw, strict=False)
    except json.JSONDecodeError as exc:
        raise StepContractViolation(f"Step is not valid JSON: {exc}\nPayload: {raw[:500]}") from exc
    if not isinstance(data, dict):
        raise StepContractViolation(f"Step must be a JSON object, got {type(data).__name__}")

    kind_raw = data.get("kind")
    try:
        kind = StepKind(kind_raw)
    except ValueError as exc:
        raise StepContractViolation(f"Unrecognized step kind: {kind_raw!r}") from exc

    instruction = data.get("instruction", "")
    if kind is StepKind.CALL_TOOL:
        if isinstance(instruction, str):
            try:
                instruction = json.loads(instruction)
            except json.JSONDecodeError as exc:
                raise StepContractViolation(f"CALL_TOOL instruction is not JSON: {instruction!r}") from exc
        try:
            instruction = ToolCallInstruction.model_validate(instruction)
        except ValidationError as exc:
            raise StepContractViolation(f"CALL_TOOL instruction is malformed: {exc}") from exc
    elif instruction is None:
        instruction = ""
    elif not isinstance(instruction, str):
        instruction = json.dumps(instruction, ensure_ascii=False)

    return Step(
        kind=kind,
        action=str(data.get("action") or ""),
        rationale=str(data.get("rationale") or ""),
        instruction=instruction,
    )


# ---------------------------------------------------------------------------
# OpenAI-compatible planner
# ---------------------------------------------------------------------------


class OpenAIPlanner:
    """
    Model-inference collaborator backed by an OpenAI-compatible chat API.

    Defaults to OpenRouter; swap base_url for any compatible endpoint.

    Example:
        planner = OpenAIPlanner.from_settings(Settings.from_env())
        step = planner.first_step("What is 2+3*4?", tools, "en")
    """

    def __init__(self, model: str, api_key: str | None, base_url: str, client: OpenAI | None = None) -> None:
        self._model = model
        self._client = client or OpenAI(base_url=base_url, api_key=api_key or "missing")

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenAIPlanner":
        return cls(model=settings.model, api_key=settings.api_key, base_url=settings.base_url)

    # ------------------------------------------------------------------
    # Low-level model call
    # ------------------------------------------------------------------

    def _call_model(self, messages: list[dict]) -> str:
        try:
            response = self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                response_format={"type": "json_object"},
            )
        except OpenAIError as exc:
            raise PlannerError(f"Model call failed: {exc}") from exc
        choices = getattr(response, "choices", None)
        if not choices:
            raise PlannerError("Model returned no choices.")
        content = choices[0].message.content
        if not content:
            raise PlannerError("Model returned an empty response.")
        logger.debug("model response: %s", content)
        return content.strip()

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    def first_step(self, goal: str, tools: Sequence[ToolSelection], language: str) -> Step:
        messages = [
            {"role": "system", "content": PLANNER_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": (
                    f'Goal: "{goal}"\n\n{format_tools(tools)}\n\n'
                    f"{FIRST_STEP_PROMPT}\n\nWrite action and rationale in language: {language}."
                ),
            },
        ]
        step = parse_step(self._call_model(messages))
        if step.kind not in (StepKind.CALL_TOOL, StepKind.NAVIGATE):
            raise StepContractViolation(f"First step must be CALL_TOOL or NAVIGATE, got {step.kind.value}")
        return step

    def next_step(
        self,
        goal: str,
        prior_steps: Sequence[Step],
        previous_extraction: Any,
        tools: Sequence[ToolSelection],
        language: str,
        loop_hint: str | None = None,
    ) -> Step:
        sections = [f'Goal: "{goal}"', format_tools(tools)]
        if prior_steps:
            sections.append("Previous steps taken:\n" + format_history(prior_steps))
        if previous_extraction is not None:
            sections.append(f"Result of the previous step: {_format_extraction(previous_extraction)}")
        if loop_hint:
            sections.append(loop_hint)
        sections.append(
            "Determine the immediate next step to achieve the goal. "
            f"Write action and rationale in language: {language}."
        )
        messages = [
            {"role": "system", "content": PLANNER_SYSTEM_PROMPT},
            {"role": "user", "content": "\n\n".join(sections)},
        ]
        return parse_step(self._call_model(messages))
