# models.py
# Data contracts for the agent loop.
# No business logic lives here, only schema and validation.

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class StepKind(str, Enum):
    """Closed vocabulary of step kinds the model may emit."""

    NAVIGATE = "NAVIGATE"
    INTERACT = "INTERACT"
    EXTRACT = "EXTRACT"
    OBSERVE = "OBSERVE"
    WAIT = "WAIT"
    NAVIGATE_BACK = "NAVIGATE_BACK"
    CALL_TOOL = "CALL_TOOL"
    TERMINATE = "TERMINATE"

    @property
    def is_browser(self) -> bool:
        return self not in (StepKind.CALL_TOOL, StepKind.TERMINATE)


BROWSER_KINDS = frozenset(kind for kind in StepKind if kind.is_browser)


class ErrorKind(str, Enum):
    TOOL_NOT_FOUND = "ToolNotFound"
    PARAMETER_VALIDATION = "ParameterValidationError"
    TOOL_EXECUTION = "ToolExecutionError"
    LOOP_DETECTED = "LoopDetected"
    SESSION_NOT_ACTIVE = "SessionNotActive"
    STEP_CONTRACT_VIOLATION = "StepContractViolation"
    STEP_LIMIT_EXCEEDED = "StepLimitExceeded"
    AUTOMATION_ERROR = "AutomationError"
    MODEL_INFERENCE_ERROR = "ModelInferenceError"


class RunStatus(str, Enum):
    COMPLETED = "completed"
    STEP_LIMIT_REACHED = "step-limit-reached"
    SESSION_ERROR = "session-error"
    FATAL_TOOL_ERROR = "fatal-tool-error"


class ToolCallInstruction(BaseModel):
    """Structured instruction carried by a CALL_TOOL step."""

    model_config = ConfigDict(populate_by_name=True)

    tool_name: str = Field(..., alias="toolName", min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)


class ExecutionResult(BaseModel):
    """Envelope for every step outcome, success or failure."""

    success: bool
    payload: Any = None
    error_kind: ErrorKind | None = None
    error: str | None = None
    loop_detected: bool = False
    tool_name: str | None = None
    category: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, payload: Any = None, **kwargs: Any) -> "ExecutionResult":
        return cls(success=True, payload=payload, **kwargs)

    @classmethod
    def fail(cls, kind: ErrorKind, error: str, **kwargs: Any) -> "ExecutionResult":
        return cls(
            success=False,
            error_kind=kind,
            error=error,
            loop_detected=kind is ErrorKind.LOOP_DETECTED,
            **kwargs,
        )

    @property
    def extraction(self) -> Any:
        """What the next planner request sees as the previous extraction."""
        if self.success:
            return self.payload
        kind = self.error_kind.value if self.error_kind else None
        return {"error_kind": kind, "error": self.error, **self.details}


class Step(BaseModel):
    """A single atomic action emitted by the model-inference collaborator."""

    sequence_number: int = Field(default=0, ge=0, description="1-based within a run; 0 until numbered.")
    kind: StepKind
    action: str = Field(default="", description="Short human-readable summary of the action.")
    rationale: str = Field(default="", description="Why the model chose this step.")
    instruction: ToolCallInstruction | str = ""
    result: ExecutionResult | None = None

    @property
    def tool(self) -> str:
        """Tool name for CALL_TOOL steps, the step kind otherwise."""
        if isinstance(self.instruction, ToolCallInstruction):
            return self.instruction.tool_name
        return self.kind.value


class ToolCallRecord(BaseModel):
    """One logged dispatch attempt used for loop detection."""

    model_config = ConfigDict(frozen=True)

    tool_name: str
    normalized_params: str
    timestamp: float


class Session(BaseModel):
    session_id: str
    started_at: datetime
    is_active: bool = True
    closed_at: datetime | None = None


class ToolSelection(BaseModel):
    """A tool as presented to the planner, tagged enabled or disabled."""

    name: str
    description: str
    category: str
    enabled: bool


class RunResult(BaseModel):
    """Terminal report of one orchestration run."""

    status: RunStatus
    goal: str
    session_id: str
    steps: list[Step] = Field(default_factory=list)
    error_kind: ErrorKind | None = None
    message: str = ""

    @property
    def last_step(self) -> Step | None:
        return self.steps[-1] if self.steps else None

    @property
    def last_result(self) -> ExecutionResult | None:
        step = self.last_step
        return step.result if step else None
