"""Central configuration for Aide.

All settings are loaded from environment variables (with ``.env`` file support
via *python-dotenv*).  Validation and type coercion are handled by
``pydantic-settings``.

Usage::

    from aide.config import get_settings

    settings = get_settings()
    print(settings.REASONING_MODEL)

The :func:`get_settings` helper creates the :class:`AideSettings` singleton
lazily so that importing this module never triggers validation before the
caller has had a chance to load a ``.env`` file or populate the environment.
"""

from __future__ import annotations

import functools
import logging
import os
from pathlib import Path
from typing import ClassVar

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Canonical .env locations (checked in order of priority).
ENV_PATHS: list[str] = ["config/.env", ".env"]

# ---------------------------------------------------------------------------
# Settings model
# ---------------------------------------------------------------------------


class AideSettings(BaseSettings):
    """Validated configuration for the Aide orchestrator.

    Required fields (no defaults):
        ``OPENROUTER_API_KEY``

    Every other setting carries a sensible default so the assistant can start
    with just the reasoning-service key.
    """

    model_config = SettingsConfigDict(
        # .env loading is handled by load_dotenv() in __main__.py.
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Reasoning service
    # ------------------------------------------------------------------
    OPENROUTER_API_KEY: str = Field(
        ...,
        description="API key for OpenRouter (https://openrouter.ai).",
    )
    OPENROUTER_BASE_URL: str = Field(
        default="https://openrouter.ai/api/v1",
        description="Chat-completions base URL.  Override for proxies or tests.",
    )
    REASONING_MODEL: str = Field(
        default="google/gemini-2.5-flash",
        description=(
            "Model used for classification escalation, command synthesis, "
            "code generation and conversation."
        ),
    )
    REASONING_TIMEOUT: float = Field(
        default=60.0,
        gt=0.0,
        description="Seconds before a single reasoning call is treated as failed.",
    )
    REASONING_TEMPERATURE: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Sampling temperature for reasoning calls.",
    )
    REASONING_MAX_TOKENS: int = Field(
        default=8192,
        ge=1,
        description="Maximum tokens generated per reasoning call.",
    )

    # ------------------------------------------------------------------
    # Memory
    # ------------------------------------------------------------------
    REDIS_URL: str = Field(
        default="redis://localhost:6379/0",
        description=(
            "Redis connection URL for the memory store.  When Redis is "
            "unreachable the store falls back to process memory."
        ),
    )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    SHELL_TIMEOUT: float = Field(
        default=30.0,
        gt=0.0,
        description="Seconds before a foreground shell command is killed.",
    )
    SHELL_WORKDIR: str | None = Field(
        default=None,
        description="Working directory for commands.  ``None`` uses the process cwd.",
    )
    EDITOR_COMMAND: str = Field(
        default="cursor",
        description="Executable used to open files and project folders.",
    )
    PROJECTS_ROOT: str = Field(
        default="~/Projects",
        description="Directory where scaffolded projects are created by default.",
    )

    # ------------------------------------------------------------------
    # User identity
    # ------------------------------------------------------------------
    USER_NAME: str | None = Field(default=None, description="Name used in grounding prompts.")
    USER_ROLE: str | None = Field(default=None, description="Role used in grounding prompts.")
    LANGUAGE: str | None = Field(default=None, description="Preferred reply language.")

    # ------------------------------------------------------------------
    # Classification and context policy
    # ------------------------------------------------------------------
    CLASSIFIER_CONFIDENCE_THRESHOLD: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description=(
            "Keyword-score confidence at or above which a request is routed "
            "without consulting the reasoning service."
        ),
    )
    CONTEXT_CONVERSATION_MESSAGES: int = Field(
        default=20,
        ge=0,
        description="Messages pulled from the active conversation.",
    )
    CONTEXT_RECENT_MESSAGES: int = Field(
        default=10,
        ge=0,
        description="Messages pulled across conversations when none is active.",
    )
    CONTEXT_FACT_LIMIT: int = Field(default=5, ge=0, description="Relevant facts per bundle.")
    CONTEXT_PROJECT_LIMIT: int = Field(default=5, ge=0, description="Active projects per bundle.")
    CONTEXT_FACT_CHARS: int = Field(default=500, ge=1, description="Character budget per fact.")
    CONTEXT_MESSAGE_CHARS: int = Field(default=200, ge=1, description="Character budget per message.")

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------
    TASK_RETENTION: int = Field(
        default=100,
        ge=0,
        description="Finished background tasks kept for status queries.",
    )
    TASK_OUTPUT_MAX_CHARS: int = Field(
        default=1_000_000,
        ge=1,
        description="Per-stream output cap for a background task.",
    )

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("SHELL_WORKDIR", "USER_NAME", "USER_ROLE", "LANGUAGE", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        """Treat empty strings from ``.env`` files as unset."""
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("EDITOR_COMMAND")
    @classmethod
    def _editor_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("EDITOR_COMMAND must not be empty.")
        return value.strip()

    # ------------------------------------------------------------------
    # Repr: redact secrets
    # ------------------------------------------------------------------

    _SENSITIVE_FIELDS: ClassVar[set[str]] = {"OPENROUTER_API_KEY"}

    def __repr__(self) -> str:
        fields = []
        for name in type(self).model_fields:
            val = getattr(self, name)
            if name in self._SENSITIVE_FIELDS:
                val = "***" if val else None
            fields.append(f"{name}={val!r}")
        return f"AideSettings({', '.join(fields)})"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def find_env_file() -> Path | None:
    """Return the first existing ``.env`` file from :data:`ENV_PATHS`."""
    for candidate in ENV_PATHS:
        p = Path(candidate)
        if p.is_file():
            return p
    return None


def has_config() -> bool:
    """Return ``True`` if the reasoning-service key is available."""
    if os.environ.get("OPENROUTER_API_KEY"):
        return True
    env_file = find_env_file()
    if env_file is None:
        return False
    text = env_file.read_text(encoding="utf-8", errors="replace")
    return any(
        line.strip().startswith("OPENROUTER_API_KEY=") and len(line.split("=", 1)[1].strip()) > 0
        for line in text.splitlines()
    )


# ---------------------------------------------------------------------------
# Lazy singleton accessor
# ---------------------------------------------------------------------------


@functools.lru_cache(maxsize=1)
def get_settings() -> AideSettings:
    """Return the global :class:`AideSettings` singleton.

    Raises:
        pydantic.ValidationError: If ``OPENROUTER_API_KEY`` is missing or any
            value fails validation.
    """
    logger.debug("Initialising AideSettings from environment.")
    return AideSettings()  # type: ignore[call-arg]
