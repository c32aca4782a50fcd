# loop_detector.py
# Call-history loop detection for tool dispatch.
#
# Keeps a rolling log of (tool, normalized params, timestamp) records and
# blocks a call once the same tool has been called with the same params
# MAX_IDENTICAL_CALLS_IN_WINDOW times inside the short detection window.
# Records older than the long history horizon are pruned on every call.

import json
import threading
import time
from typing import Any, Callable

from agent_loop.models import ToolCallRecord

LOOP_DETECTION_WINDOW = 5.0
MAX_HISTORY_AGE = 60.0
MAX_IDENTICAL_CALLS_IN_WINDOW = 3


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def normalize_params(params: Any) -> str:
    """Deterministic serialization. sort_keys makes key order irrelevant."""
    return json.dumps(params if params is not None else {}, sort_keys=True, ensure_ascii=False, default=str)


# ---------------------------------------------------------------------------
# LoopDetector
# ---------------------------------------------------------------------------


class LoopDetector:
    """
    Time-windowed duplicate-call detector.

    Identity is (tool name, normalized params): the same params on another
    tool, or other params on the same tool, never count toward each other.
    Only the latest unbroken run counts: a call to the same tool with other
    params ends it, calls to other tools do not.

    The clock is injectable so windows can be tested without sleeping:

        now = [0.0]
        detector = LoopDetector(clock=lambda: now[0])
    """

    def __init__(
        self,
        window: float = LOOP_DETECTION_WINDOW,
        max_age: float = MAX_HISTORY_AGE,
        max_identical: int = MAX_IDENTICAL_CALLS_IN_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if window > max_age:
            raise ValueError("Detection window cannot exceed the max history age.")
        self.window = window
        self.max_age = max_age
        self.max_identical = max_identical
        self._clock = clock
        self._history: list[ToolCallRecord] = []
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        self._history = [r for r in self._history if now - r.timestamp <= self.max_age]

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record(self, tool_name: str, params: Any, now: float | None = None) -> ToolCallRecord:
        """Log an attempt without judging it (attempts rejected before the gate)."""
        now = self._clock() if now is None else now
        record = ToolCallRecord(
            tool_name=tool_name,
            normalized_params=normalize_params(params),
            timestamp=now,
        )
        with self._lock:
            self._prune(now)
            self._history.append(record)
        return record

    def should_block(self, tool_name: str, params: Any, now: float | None = None) -> bool:
        """
        Judge the current call and log it.

        The current call counts toward the limit, so with the default of 3
        the third identical call inside the window is the first one blocked.
        """
        now = self._clock() if now is None else now
        key = normalize_params(params)
        with self._lock:
            self._prune(now)
            matches = 0
            for r in reversed(self._history):
                if now - r.timestamp > self.window:
                    break
                if r.tool_name != tool_name:
                    continue
                if r.normalized_params != key:
                    break
                matches += 1
            self._history.append(ToolCallRecord(tool_name=tool_name, normalized_params=key, timestamp=now))
        return matches + 1 >= self.max_identical

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def reset(self) -> None:
        with self._lock:
            self._history.clear()

    @property
    def history(self) -> list[ToolCallRecord]:
        """Shallow copy of the current records, oldest first."""
        with self._lock:
            return list(self._history)

    def __len__(self) -> int:
        with self._lock:
            return len(self._history)
