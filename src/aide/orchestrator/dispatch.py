"""Route a request to its capability adapter and normalise the outcome.

The :class:`Dispatcher` classifies a request (unless the caller forces a
domain), records it as a ``tasks`` fact in memory, hands it to the matching
adapter and wraps whatever comes back in an :class:`OutcomeRecord`.  Adapter
exceptions never escape :meth:`Dispatcher.route_and_execute`; they become a
failed outcome carrying the error text.

Usage::

    dispatcher = Dispatcher(classifier, memory, adapters)
    outcome = await dispatcher.route_and_execute("run: git status")
    if outcome.success:
        print(outcome.result["output"])
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

from aide.orchestrator.classifier import (
    DOMAIN_ALIASES,
    ClassificationResult,
    Domain,
    TaskClassifier,
    parse_domain,
)

log = logging.getLogger(__name__)


class UnsupportedDomainError(ValueError):
    """A forced domain name that maps to no capability."""

    def __init__(self, value: Any) -> None:
        self.value = value
        super().__init__(
            f"Unsupported domain {value!r}; expected one of: "
            f"{', '.join(sorted(DOMAIN_ALIASES))}"
        )


def resolve_domain(value: str | Domain) -> Domain:
    """Return the :class:`Domain` for a name or alias.

    Raises:
        UnsupportedDomainError: If *value* names no known domain.
    """
    domain = parse_domain(value)
    if domain is None:
        raise UnsupportedDomainError(value)
    return domain


@dataclass(frozen=True, slots=True)
class OutcomeRecord:
    """Uniform result of one dispatched request.

    Attributes:
        success: Whether the adapter reported success.
        domain: Domain that handled the request.
        result: Adapter payload (see :mod:`aide.orchestrator.adapters`),
            ``None`` when the adapter raised.
        error: Failure description, ``None`` on success.
        duration_ms: Wall-clock dispatch time.
        classification: The classification used, ``None`` when the domain
            was forced.
    """

    success: bool
    domain: Domain
    result: dict[str, Any] | None = None
    error: str | None = None
    duration_ms: float = 0.0
    classification: ClassificationResult | None = None


class Dispatcher:
    """Classifies requests and invokes the matching adapter.

    Args:
        classifier: :class:`~aide.orchestrator.classifier.TaskClassifier`.
        memory: Memory store used to record dispatched requests.
        adapters: Adapter per domain; each has an async
            ``handle(request, conversation_id)`` returning a payload dict.
    """

    def __init__(
        self,
        classifier: TaskClassifier,
        memory: Any,
        adapters: dict[Domain, Any],
    ) -> None:
        missing = [d.value for d in Domain if d not in adapters]
        if missing:
            raise ValueError(f"No adapter for domain(s): {', '.join(missing)}")
        self._classifier = classifier
        self._memory = memory
        self._adapters = adapters

    async def _record(self, request: str, domain: Domain, classification: ClassificationResult | None) -> None:
        tags = [domain.value]
        if classification is not None:
            tags.append(classification.category.value)
        try:
            await self._memory.add_knowledge("tasks", "Last task", request, tags=tags)
        except Exception as exc:
            log.warning("Could not record task in memory: %s", exc)

    async def route_and_execute(
        self,
        request: str,
        forced_domain: str | Domain | None = None,
        conversation_id: str | None = None,
    ) -> OutcomeRecord:
        """Dispatch *request* and return its outcome.

        Raises:
            UnsupportedDomainError: If *forced_domain* is not a known domain.
                Nothing is classified, recorded or executed in that case.
        """
        start = time.perf_counter()
        classification: ClassificationResult | None = None
        if forced_domain is not None:
            domain = resolve_domain(forced_domain)
        else:
            classification = await self._classifier.classify(request)
            domain = classification.domain

        await self._record(request, domain, classification)

        log.info(
            "Dispatching to %s%s: %.100s",
            domain.value,
            " (forced)" if classification is None else "",
            request,
        )

        try:
            payload = await self._adapters[domain].handle(request, conversation_id=conversation_id)
        except Exception as exc:
            elapsed = (time.perf_counter() - start) * 1000
            log.error("%s adapter failed: %s", domain.value, exc, exc_info=True)
            return OutcomeRecord(
                success=False,
                domain=domain,
                error=str(exc) or type(exc).__name__,
                duration_ms=elapsed,
                classification=classification,
            )

        elapsed = (time.perf_counter() - start) * 1000
        success = bool(payload.get("success", True))
        outcome = OutcomeRecord(
            success=success,
            domain=domain,
            result=payload,
            error=None if success else (payload.get("error") or "The request did not succeed."),
            duration_ms=elapsed,
            classification=classification,
        )
        log.debug(
            "Dispatch finished: domain=%s, type=%s, success=%s, %.0fms",
            domain.value,
            payload.get("type"),
            success,
            elapsed,
        )
        return outcome
