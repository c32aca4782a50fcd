# dispatcher.py
# Tool dispatch: lookup → schema validation → loop gate → handler.
#
# Every outcome is normalized into an ExecutionResult. Nothing raised by a
# handler, a validator or the loop gate crosses dispatch().

import logging
import threading
from typing import Any

from pydantic import ValidationError

from agent_loop.loop_detector import LoopDetector
from agent_loop.models import ErrorKind, ExecutionResult
from agent_loop.registry import Tool, ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_TOOL_TIMEOUT = 10.0


def _invalid_fields(exc: ValidationError) -> list[str]:
    fields: list[str] = []
    for error in exc.errors():
        name = ".".join(str(part) for part in error["loc"]) or "<root>"
        if name not in fields:
            fields.append(name)
    return fields


class ToolDispatcher:
    """
    Runs registered tools on behalf of the orchestration loop.

    Each handler runs on its own thread and the deadline starts when it
    does. A handler that overruns is reported as ToolExecutionError; its
    thread is not killed, so handlers that spawn processes must also pass
    their own timeout down.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        detector: LoopDetector | None = None,
        default_timeout: float = DEFAULT_TOOL_TIMEOUT,
    ) -> None:
        self.registry = registry
        self.detector = detector or LoopDetector()
        self.default_timeout = default_timeout

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def dispatch(self, name: str, raw_params: dict[str, Any] | None = None) -> ExecutionResult:
        raw_params = raw_params if raw_params is not None else {}

        tool = self.registry.get(name)
        if tool is None:
            self.detector.record(name, raw_params)
            available = self.registry.names()
            logger.info("tool %r not found", name)
            return ExecutionResult.fail(
                ErrorKind.TOOL_NOT_FOUND,
                f"Tool '{name}' not found. Available tools: {', '.join(available)}",
                tool_name=name,
                details={"available_tools": available},
            )

        try:
            params = tool.params.model_validate(raw_params)
        except ValidationError as exc:
            self.detector.record(tool.name, raw_params)
            fields = _invalid_fields(exc)
            logger.info("tool %r rejected params: %s", tool.name, fields)
            return ExecutionResult.fail(
                ErrorKind.PARAMETER_VALIDATION,
                f"Invalid parameters for '{tool.name}': {', '.join(fields)}",
                tool_name=tool.name,
                category=tool.category,
                details={"invalid_fields": fields},
            )

        normalized = params.model_dump(mode="json")
        if self.detector.should_block(tool.name, normalized):
            logger.warning("loop detected for %r with %s", tool.name, normalized)
            return ExecutionResult.fail(
                ErrorKind.LOOP_DETECTED,
                (
                    f"Possible infinite loop: '{tool.name}' was called "
                    f"{self.detector.max_identical} times with identical parameters "
                    f"within {self.detector.window:g}s. Change the parameters or choose another action."
                ),
                tool_name=tool.name,
                category=tool.category,
                details={"params": normalized},
            )

        return self._invoke(tool, params)

    # ------------------------------------------------------------------
    # Handler invocation
    # ------------------------------------------------------------------

    def _invoke(self, tool: Tool, params: Any) -> ExecutionResult:
        timeout = tool.timeout or self.default_timeout
        outcome: dict[str, Any] = {}

        def target() -> None:
            try:
                outcome["payload"] = tool.handler(params)
            except Exception as exc:
                outcome["error"] = exc

        # One daemon thread per call: an overrunning handler is abandoned
        # and can never delay the next dispatch.
        worker = threading.Thread(target=target, name=f"tool-{tool.name}", daemon=True)
        worker.start()
        worker.join(timeout)

        if worker.is_alive():
            logger.error("tool %r timed out after %ss", tool.name, timeout)
            return ExecutionResult.fail(
                ErrorKind.TOOL_EXECUTION,
                f"Tool '{tool.name}' timed out after {timeout:g}s.",
                tool_name=tool.name,
                category=tool.category,
                details={"timeout": timeout},
            )
        if "error" in outcome:
            exc = outcome["error"]
            logger.error("tool %r failed", tool.name, exc_info=exc)
            return ExecutionResult.fail(
                ErrorKind.TOOL_EXECUTION,
                f"Failed to execute tool '{tool.name}': {type(exc).__name__}: {exc}",
                tool_name=tool.name,
                category=tool.category,
                details={"exception": type(exc).__name__},
            )

        return ExecutionResult.ok(outcome.get("payload"), tool_name=tool.name, category=tool.category)
