# config.py
# Runtime settings. Values come from the environment (and a .env file when
# present); everything has a default so the harness runs offline.

import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "anthropic/claude-3.5-haiku"

# Environment variable → Settings field.
ENV_MAPPING = {
    "api_key": "OPENROUTER_API_KEY",
    "model": "AGENT_MODEL",
    "base_url": "AGENT_BASE_URL",
    "language": "AGENT_LANGUAGE",
    "automation_url": "AUTOMATION_URL",
    "automation_api_key": "AUTOMATION_API_KEY",
    "max_total_steps": "MAX_TOTAL_STEPS",
    "same_tool_hint_threshold": "SAME_TOOL_HINT_THRESHOLD",
    "max_session_failures": "MAX_SESSION_FAILURES",
    "loop_detection_window_sec": "LOOP_DETECTION_WINDOW_SEC",
    "max_history_age_sec": "MAX_HISTORY_AGE_SEC",
    "max_identical_calls": "MAX_IDENTICAL_CALLS",
    "tool_timeout_sec": "TOOL_TIMEOUT_SEC",
    "workspace_dir": "WORKSPACE_DIR",
    "log_level": "LOG_LEVEL",
}


class Settings(BaseModel):
    """Agent configuration."""

    api_key: str | None = Field(default=None, description="Key for the model-inference API.")
    model: str = Field(default=DEFAULT_MODEL)
    base_url: str = Field(default=DEFAULT_BASE_URL)
    language: str = Field(default="en", description="Language the model should answer in.")

    automation_url: str | None = Field(
        default=None,
        description="Remote browser-automation service. Offline mode when unset.",
    )
    automation_api_key: str | None = Field(default=None)

    max_total_steps: int = Field(default=25, ge=1, le=500)
    same_tool_hint_threshold: int = Field(default=3, ge=2)
    max_session_failures: int = Field(default=2, ge=1)

    loop_detection_window_sec: float = Field(default=5.0, gt=0)
    max_history_age_sec: float = Field(default=60.0, gt=0)
    max_identical_calls: int = Field(default=3, ge=2)

    tool_timeout_sec: float = Field(default=10.0, gt=0)
    workspace_dir: Path = Field(default=Path("workspace"))
    log_level: str = Field(default="INFO")

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def upper_level(cls, v: str) -> str:
        return v.upper()

    @property
    def offline(self) -> bool:
        """True when no remote automation backend is configured."""
        return not (self.automation_url and self.automation_api_key)

    @classmethod
    def from_env(cls, **overrides: Any) -> "Settings":
        """Build settings from .env and the process environment.

        Explicit keyword overrides win over the environment.
        """
        load_dotenv()
        data: dict[str, Any] = {}
        for field_name, env_var in ENV_MAPPING.items():
            value = os.getenv(env_var)
            if value:
                data[field_name] = value
        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(data)
