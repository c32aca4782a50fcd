# automation.py
# Browser-automation strategies and the session gate in front of them.
#
# Two strategies share one contract: RemoteAutomation forwards primitives
# to an automation service over HTTP, OfflineAutomation returns synthetic
# payloads when no service is configured. Both are only reachable through
# BrowserExecutor, which refuses to start a primitive for a session that
# is not active.

import logging
import time
from typing import Any, Callable, Protocol

import httpx

from agent_loop.config import Settings
from agent_loop.models import ErrorKind, ExecutionResult, StepKind
from agent_loop.sessions import SessionTracker

logger = logging.getLogger(__name__)

NAVIGATE_TIMEOUT = 60.0
DEFAULT_TIMEOUT = 30.0
OFFLINE_MAX_WAIT_MS = 1000


class AutomationError(Exception):
    """Raised by a backend when a primitive fails. Recoverable."""


class AutomationBackend(Protocol):
    mode: str

    def run(self, session_id: str, kind: StepKind, instruction: str) -> Any: ...


def _wait_ms(instruction: str) -> int:
    try:
        return max(0, int(float(instruction)))
    except (TypeError, ValueError) as exc:
        raise AutomationError(f"WAIT expects a duration in milliseconds, got {instruction!r}") from exc


# ---------------------------------------------------------------------------
# Offline strategy
# ---------------------------------------------------------------------------


class OfflineAutomation:
    """Synthetic payloads for running without a remote browser."""

    mode = "offline"

    def __init__(self, sleep: Callable[[float], None] = time.sleep) -> None:
        self._sleep = sleep

    def run(self, session_id: str, kind: StepKind, instruction: str) -> Any:
        logger.debug("offline %s [%s]: %s", kind.value, session_id, instruction)
        if kind is StepKind.NAVIGATE:
            return {"message": f"Navigated to {instruction}", "url": instruction, "mock": True}
        if kind is StepKind.INTERACT:
            return {"message": f"Performed action: {instruction}", "mock": True}
        if kind is StepKind.EXTRACT:
            return {"data": f"Extracted information from page about: {instruction}", "mock": True}
        if kind is StepKind.OBSERVE:
            return [
                {
                    "id": 1,
                    "selector": "body",
                    "description": f"Mock observation: {instruction}",
                    "action": "click",
                }
            ]
        if kind is StepKind.WAIT:
            waited = min(_wait_ms(instruction), OFFLINE_MAX_WAIT_MS)
            self._sleep(waited / 1000)
            return {"waited_ms": waited, "mock": True}
        if kind is StepKind.NAVIGATE_BACK:
            return {"message": "Navigated back", "mock": True}
        raise AutomationError(f"{kind.value} is not a browser primitive.")


# ---------------------------------------------------------------------------
# Remote strategy
# ---------------------------------------------------------------------------


class RemoteAutomation:
    """
    Forwards primitives to an automation service.

    POST {base_url}/sessions/{session_id}/primitives
      {"primitive": "NAVIGATE", "instruction": "https://example.com"}
    → {"payload": ...}
    """

    mode = "remote"

    def __init__(self, base_url: str, api_key: str, client: httpx.Client | None = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(headers={"X-API-Key": api_key})

    def run(self, session_id: str, kind: StepKind, instruction: str) -> Any:
        timeout = NAVIGATE_TIMEOUT if kind is StepKind.NAVIGATE else DEFAULT_TIMEOUT
        if kind is StepKind.WAIT:
            timeout += _wait_ms(instruction) / 1000
        url = f"{self._base_url}/sessions/{session_id}/primitives"
        try:
            response = self._client.post(
                url,
                json={"primitive": kind.value, "instruction": instruction},
                timeout=timeout,
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as exc:
            raise AutomationError(
                f"{kind.value} failed: {exc.response.status_code} {exc.response.text[:200]}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise AutomationError(f"{kind.value} failed: {exc}") from exc
        return body.get("payload") if isinstance(body, dict) else body

    def close(self) -> None:
        self._client.close()


def select_backend(settings: Settings) -> AutomationBackend:
    if settings.offline:
        logger.warning("no automation service configured, using offline mode")
        return OfflineAutomation()
    return RemoteAutomation(settings.automation_url, settings.automation_api_key)


# ---------------------------------------------------------------------------
# Session gate
# ---------------------------------------------------------------------------


class BrowserExecutor:
    """Runs browser-kind steps, but only against active sessions."""

    def __init__(self, sessions: SessionTracker, backend: AutomationBackend) -> None:
        self.sessions = sessions
        self.backend = backend

    def execute(self, session_id: str, kind: StepKind, instruction: str) -> ExecutionResult:
        if not kind.is_browser:
            return ExecutionResult.fail(
                ErrorKind.STEP_CONTRACT_VIOLATION,
                f"{kind.value} is not a browser primitive.",
            )
        if not self.sessions.is_active(session_id):
            logger.info("refusing %s: session %s not active", kind.value, session_id)
            return ExecutionResult.fail(
                ErrorKind.SESSION_NOT_ACTIVE,
                f"Session '{session_id}' is not active. Start a browser session first.",
                details={"session_id": session_id},
            )
        try:
            payload = self.backend.run(session_id, kind, instruction)
        except AutomationError as exc:
            logger.warning("%s failed for session %s: %s", kind.value, session_id, exc)
            return ExecutionResult.fail(
                ErrorKind.AUTOMATION_ERROR,
                str(exc),
                details={"session_id": session_id, "mode": self.backend.mode},
            )
        except Exception as exc:
            logger.exception("%s crashed for session %s", kind.value, session_id)
            return ExecutionResult.fail(
                ErrorKind.AUTOMATION_ERROR,
                f"{kind.value} failed: {type(exc).__name__}: {exc}",
                details={"session_id": session_id, "mode": self.backend.mode},
            )
        return ExecutionResult.ok(payload, details={"mode": self.backend.mode})
