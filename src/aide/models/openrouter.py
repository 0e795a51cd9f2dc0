"""Chat-completions client for the Aide reasoning backend.

Aide talks to one OpenAI-compatible endpoint (OpenRouter by default) and only
ever needs a single non-streaming completion per call: classification
escalation, shell-command synthesis, code generation and grounded replies all
go through :meth:`OpenRouterClient.chat`.  :class:`~aide.models.reasoning.ReasoningService`
wraps the client with a timeout; nothing else in the package calls it.

Usage::

    async with OpenRouterClient(api_key="sk-or-...") as client:
        reply = await client.chat(
            model="google/gemini-2.5-flash",
            messages=[{"role": "user", "content": "ping"}],
        )
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import aiohttp

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL: str = "https://openrouter.ai/api/v1"

# HTTP 429 handling: attempts in total, first delay doubled on each retry.
_RATE_LIMIT_ATTEMPTS: int = 3
_RATE_LIMIT_DELAY: float = 1.0

_APP_TITLE: str = "Aide"


class OpenRouterError(Exception):
    """The completion endpoint answered with an error.

    Attributes:
        message: Error text reported by the endpoint.
        status_code: HTTP status of the response.
        model: Model that was asked for, when known.
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        model: str | None = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.model = model
        suffix = f" (model={model})" if model else ""
        super().__init__(f"OpenRouter error {status_code}{suffix}: {message}")


@dataclass(frozen=True, slots=True)
class ChatResponse:
    """One completion.  ``cost`` is in USD and ``0.0`` when not reported."""

    content: str
    model: str
    input_tokens: int
    output_tokens: int
    cost: float
    finish_reason: str


class OpenRouterClient:
    """Async chat-completions client.

    The ``aiohttp`` session is created on first use so the client can be
    built outside a running loop (``PersonalAgent.from_settings`` does this).

    Args:
        api_key: Bearer token for the endpoint.
        base_url: Endpoint root; ``/chat/completions`` is appended.
    """

    def __init__(self, api_key: str, base_url: str = DEFAULT_BASE_URL) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._session: aiohttp.ClientSession | None = None
        # Running USD total, reported by ReasoningService.info().
        self.session_cost: float = 0.0

    async def __aenter__(self) -> OpenRouterClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "X-Title": _APP_TITLE,
        }

    async def _session_for_loop(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers=self._headers())
        return self._session

    async def _post(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST *payload* and return the decoded body.

        Rate-limited requests are retried with a doubling delay.  An error
        object in the body is raised even when the status is 200.

        Raises:
            OpenRouterError: For error responses, or when every attempt was
                rate-limited.
        """
        session = await self._session_for_loop()
        url = f"{self._base_url}{endpoint}"
        model = payload.get("model")

        for attempt in range(1, _RATE_LIMIT_ATTEMPTS + 1):
            async with session.post(url, json=payload) as resp:
                if resp.status == 429:
                    if attempt == _RATE_LIMIT_ATTEMPTS:
                        break
                    delay = _RATE_LIMIT_DELAY * 2 ** (attempt - 1)
                    logger.warning(
                        "Rate-limited by %s; retry %d/%d in %.1fs.",
                        self._base_url,
                        attempt,
                        _RATE_LIMIT_ATTEMPTS - 1,
                        delay,
                    )
                    await asyncio.sleep(delay)
                    continue

                body = await resp.json(content_type=None)
                if not isinstance(body, dict):
                    raise OpenRouterError(f"Unexpected response body: {body!r:.200}", resp.status, model)

                error = body.get("error")
                if error is not None:
                    detail = error.get("message", str(error)) if isinstance(error, dict) else str(error)
                    raise OpenRouterError(detail, resp.status, model)
                if resp.status >= 400:
                    raise OpenRouterError(f"HTTP {resp.status}: {body}", resp.status, model)
                return body

        raise OpenRouterError(
            f"Still rate-limited after {_RATE_LIMIT_ATTEMPTS} attempts", 429, model
        )

    async def chat(
        self,
        model: str,
        messages: list[dict[str, Any]],
        temperature: float = 0.7,
        max_tokens: int = 4096,
    ) -> ChatResponse:
        """Return the first choice of a non-streaming completion.

        Raises:
            OpenRouterError: On error responses or an empty ``choices`` list.
        """
        body = await self._post(
            "/chat/completions",
            {
                "model": model,
                "messages": messages,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "stream": False,
            },
        )

        choices = body.get("choices") or []
        if not choices:
            raise OpenRouterError("No choices returned in chat completion response.", 200, model)

        choice = choices[0]
        usage = body.get("usage") or {}
        try:
            cost = float(usage.get("total_cost", body.get("cost", 0.0)))
        except (TypeError, ValueError):
            cost = 0.0
        self.session_cost += cost

        response = ChatResponse(
            content=(choice.get("message") or {}).get("content") or "",
            model=body.get("model", model),
            input_tokens=int(usage.get("prompt_tokens", 0)),
            output_tokens=int(usage.get("completion_tokens", 0)),
            cost=cost,
            finish_reason=choice.get("finish_reason") or "unknown",
        )
        logger.debug(
            "%s answered: %d+%d tokens, $%.6f, finish=%s",
            response.model,
            response.input_tokens,
            response.output_tokens,
            cost,
            response.finish_reason,
        )
        return response

    async def close(self) -> None:
        """Close the HTTP session.  Safe to call more than once."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
            logger.debug("Reasoning session closed; total cost $%.6f.", self.session_cost)
        self._session = None
