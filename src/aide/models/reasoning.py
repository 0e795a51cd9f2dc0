"""Single-shot reasoning calls with a hard timeout.

:class:`ReasoningService` is the only path from the orchestration core to the
language model.  Every outcome of a chat call, including transport errors and
timeouts, comes back as a :class:`Completion`, so callers branch on
``completion.success`` instead of catching exceptions.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import aiohttp

from aide.models.openrouter import OpenRouterError

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Completion:
    """Result of one reasoning call.

    Attributes:
        success: Whether the model returned a reply.
        text: Reply text (empty on failure).
        error: Failure description, ``None`` on success.
    """

    success: bool
    text: str = ""
    error: str | None = None


class ReasoningService:
    """Bounded prompt -> text completion over a chat client.

    Args:
        client: Any object with an async ``chat(model, messages, temperature,
            max_tokens)`` method returning an object with ``content``
            (normally :class:`~aide.models.openrouter.OpenRouterClient`).
        model: Model identifier sent with every request.
        timeout: Seconds before a call is abandoned and reported as failed.
        temperature: Sampling temperature.
        max_tokens: Maximum tokens to generate.
    """

    def __init__(
        self,
        client: Any,
        model: str,
        timeout: float = 60.0,
        temperature: float = 0.7,
        max_tokens: int = 8192,
    ) -> None:
        self._client = client
        self.model = model
        self.timeout = timeout
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def complete(self, prompt: str, system_prompt: str | None = None) -> Completion:
        """Send *prompt* (optionally preceded by *system_prompt*) and return the reply."""
        messages: list[dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        try:
            response = await asyncio.wait_for(
                self._client.chat(
                    model=self.model,
                    messages=messages,
                    temperature=self._temperature,
                    max_tokens=self._max_tokens,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            log.warning("Reasoning call timed out after %.1fs (model=%s).", self.timeout, self.model)
            return Completion(
                success=False,
                error=f"Reasoning service timed out after {self.timeout:g}s",
            )
        except (OpenRouterError, aiohttp.ClientError, OSError) as exc:
            log.warning("Reasoning call failed (model=%s): %s", self.model, exc)
            return Completion(success=False, error=str(exc) or type(exc).__name__)

        return Completion(success=True, text=response.content)

    def info(self) -> dict[str, Any]:
        """Describe the backend for status reporting."""
        return {
            "model": self.model,
            "timeout_seconds": self.timeout,
            "session_cost_usd": round(getattr(self._client, "session_cost", 0.0), 6),
        }

    async def close(self) -> None:
        close = getattr(self._client, "close", None)
        if close is not None:
            await close()
