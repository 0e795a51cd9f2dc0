"""Request classification for the Aide orchestrator.

Every request is first scored against three term lists, one per capability
domain (execution, coding, conversation).  Each term found in the request
(case-insensitive substring match) adds one point to its domain.  The
highest score wins; ties go to the earlier domain in :data:`PRECEDENCE`.

Confidence is the winner's share of all points, or ``0.5`` when no term
matches at all (the request is then treated as plain conversation).  When
confidence is below the threshold the reasoning service is asked for a
second opinion as JSON.  Any failure on that path (call error, timeout,
no parseable JSON, unknown domain) falls back to the keyword result, so
:meth:`TaskClassifier.classify` never raises.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

log = logging.getLogger(__name__)


class Domain(str, Enum):
    """Capability domains a request can be dispatched to."""

    EXECUTION = "execution"
    CODING = "coding"
    CONVERSATION = "conversation"


class Category(str, Enum):
    """What kind of work a request asks for."""

    EXECUTION = "execution"
    CODING = "coding"
    ANALYSIS = "analysis"
    CONVERSATION = "conversation"
    MIXED = "mixed"


# Tie-break order for equal scores.
PRECEDENCE: tuple[Domain, ...] = (Domain.EXECUTION, Domain.CODING, Domain.CONVERSATION)

DEFAULT_CONFIDENCE = 0.5

DOMAIN_TERMS: dict[Domain, tuple[str, ...]] = {
    Domain.EXECUTION: (
        # running things
        "شغل", "نفذ", "run", "execute", "start", "stop", "restart",
        # files
        "ملف", "مجلد", "file", "folder", "directory", "create", "delete", "move", "copy",
        "اقرأ", "اكتب", "read", "write", "open", "افتح",
        # git
        "git", "push", "pull", "commit", "clone",
        # system
        "install", "ثبت", "حمل", "download", "upload",
        "process", "عملية", "kill", "أوقف",
        # shells
        "command", "cmd", "shell", "terminal", "powershell", "أمر",
    ),
    Domain.CODING: (
        "كود", "code", "برمج", "program", "script",
        "function", "دالة", "class", "كلاس",
        "مشروع", "project", "app", "تطبيق", "website", "موقع",
        "عدل", "edit", "modify", "fix", "أصلح", "صحح",
        "refactor", "أعد كتابة", "حسن",
        "javascript", "typescript", "python", "react", "node",
        "html", "css", "api", "database", "قاعدة بيانات",
    ),
    Domain.CONVERSATION: (
        "حلل", "analyze", "analysis", "تحليل",
        "اشرح", "explain", "شرح", "وضح",
        "ابحث", "search", "find", "بحث",
        "ما هو", "what is", "كيف", "how", "لماذا", "why",
        "أخبرني", "tell me", "قل لي",
        "لخص", "summarize", "summary", "ملخص",
        "ترجم", "translate", "ترجمة",
    ),
}

# Names accepted for a domain, including the tool names older clients send.
DOMAIN_ALIASES: dict[str, Domain] = {
    "execution": Domain.EXECUTION,
    "execute": Domain.EXECUTION,
    "shell": Domain.EXECUTION,
    "manus": Domain.EXECUTION,
    "coding": Domain.CODING,
    "code": Domain.CODING,
    "cursor": Domain.CODING,
    "conversation": Domain.CONVERSATION,
    "analysis": Domain.CONVERSATION,
    "chat": Domain.CONVERSATION,
    "google": Domain.CONVERSATION,
}

_CATEGORY_FOR_DOMAIN: dict[Domain, Category] = {
    Domain.EXECUTION: Category.EXECUTION,
    Domain.CODING: Category.CODING,
    Domain.CONVERSATION: Category.ANALYSIS,
}


def parse_domain(value: Any) -> Domain | None:
    """Map a domain name or alias to a :class:`Domain`; ``None`` if unknown."""
    if isinstance(value, Domain):
        return value
    if not isinstance(value, str):
        return None
    return DOMAIN_ALIASES.get(value.strip().casefold())


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ClassificationResult:
    """How a request should be handled.

    Attributes:
        request: The classified request text.
        category: Kind of work requested.
        domain: Domain the request should be dispatched to.
        confidence: Winning domain's share of matched terms, in [0, 1].
        rationale: Human-readable explanation.
        escalated: Whether the reasoning service decided the domain.
    """

    request: str
    category: Category
    domain: Domain
    confidence: float
    rationale: str
    escalated: bool = False


class ClassificationFragment(BaseModel):
    """Structured answer expected back from the reasoning service."""

    model_config = ConfigDict(extra="ignore")

    needs_execution: bool = Field(
        default=False, validation_alias=AliasChoices("needs_execution", "needsExecution")
    )
    needs_coding: bool = Field(
        default=False, validation_alias=AliasChoices("needs_coding", "needsCoding")
    )
    needs_analysis: bool = Field(
        default=False, validation_alias=AliasChoices("needs_analysis", "needsAnalysis")
    )
    needs_research: bool = Field(
        default=False, validation_alias=AliasChoices("needs_research", "needsResearch")
    )
    suggested_domain: Domain | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "suggested_domain", "suggestedDomain", "domain", "suggestedTool", "suggested_tool"
        ),
    )
    reasoning: str = ""

    @field_validator("suggested_domain", mode="before")
    @classmethod
    def _known_domain(cls, value: Any) -> Any:
        if value is None:
            return None
        domain = parse_domain(value)
        if domain is None:
            raise ValueError(f"unknown domain {value!r}")
        return domain

    def flagged(self) -> list[Category]:
        flags = []
        if self.needs_execution:
            flags.append(Category.EXECUTION)
        if self.needs_coding:
            flags.append(Category.CODING)
        if self.needs_analysis or self.needs_research:
            flags.append(Category.ANALYSIS)
        return flags


def extract_fragment(text: str) -> ClassificationFragment | None:
    """Return the first JSON object in *text* that validates, else ``None``."""
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            candidate, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            candidate = None
        if isinstance(candidate, dict):
            try:
                return ClassificationFragment.model_validate(candidate)
            except ValidationError as exc:
                log.debug("Discarding classification fragment: %s", exc)
        start = text.find("{", start + 1)
    return None


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = (
    "You are a task analyst for a personal assistant. "
    "Reply with a single JSON object and nothing else."
)

_PROMPT_TEMPLATE = """Analyse this request and decide which capability should handle it.

Request: "{request}"

Capabilities:
1. execution - run on the user's machine (shell commands, file management, git, launching programs)
2. coding - write or change code (create projects, write code, edit source files)
3. conversation - analysis, research and conversation (questions, explanations, summaries)

Reply with JSON only:
{{
    "needsExecution": true or false,
    "needsCoding": true or false,
    "needsAnalysis": true or false,
    "needsResearch": true or false,
    "suggestedDomain": "execution" or "coding" or "conversation",
    "reasoning": "why"
}}"""


class TaskClassifier:
    """Two-tier request classifier.

    Args:
        reasoning: Reasoning collaborator with an async ``complete(prompt,
            system_prompt)`` returning an object with ``success``/``text``.
        threshold: Keyword confidence at or above which the reasoning
            service is not consulted.
    """

    def __init__(self, reasoning: Any, threshold: float = 0.8) -> None:
        self._reasoning = reasoning
        self.threshold = threshold

    @staticmethod
    def score(request: str) -> dict[Domain, int]:
        """Number of distinct terms of each domain found in *request*."""
        text = request.casefold()
        return {
            domain: sum(1 for term in terms if term.casefold() in text)
            for domain, terms in DOMAIN_TERMS.items()
        }

    def quick_classify(self, request: str) -> ClassificationResult:
        """Keyword-only classification.  Never touches the network."""
        scores = self.score(request)
        total = sum(scores.values())
        if total == 0:
            return ClassificationResult(
                request=request,
                category=Category.CONVERSATION,
                domain=Domain.CONVERSATION,
                confidence=DEFAULT_CONFIDENCE,
                rationale="No domain terms matched; treating as conversation.",
            )

        best = max(scores.values())
        winner = next(domain for domain in PRECEDENCE if scores[domain] == best)
        return ClassificationResult(
            request=request,
            category=_CATEGORY_FOR_DOMAIN[winner],
            domain=winner,
            confidence=best / total,
            rationale=(
                f"Matched {best} of {total} domain terms for {winner.value} "
                f"(execution={scores[Domain.EXECUTION]}, coding={scores[Domain.CODING]}, "
                f"conversation={scores[Domain.CONVERSATION]})."
            ),
        )

    async def classify(self, request: str) -> ClassificationResult:
        """Classify *request*, consulting the reasoning service when unsure."""
        quick = self.quick_classify(request)
        if quick.confidence >= self.threshold:
            log.debug("Fast-path classification: %s (%.2f)", quick.domain.value, quick.confidence)
            return quick

        try:
            completion = await self._reasoning.complete(
                _PROMPT_TEMPLATE.format(request=request), system_prompt=_SYSTEM_PROMPT
            )
        except Exception as exc:
            log.warning("Classification escalation failed: %s; using keyword result.", exc)
            return quick

        if not completion.success:
            log.warning(
                "Classification escalation failed: %s; using keyword result.", completion.error
            )
            return quick

        fragment = extract_fragment(completion.text)
        if fragment is None:
            log.warning("No usable classification in reasoning reply: %.200s", completion.text)
            return quick

        flags = fragment.flagged()
        domain = fragment.suggested_domain
        if domain is None:
            if not flags:
                log.warning("Reasoning reply named no domain; using keyword result.")
                return quick
            domain = {
                Category.EXECUTION: Domain.EXECUTION,
                Category.CODING: Domain.CODING,
            }.get(flags[0], Domain.CONVERSATION)

        if len(flags) >= 2:
            category = Category.MIXED
        elif flags:
            category = flags[0]
        else:
            category = _CATEGORY_FOR_DOMAIN[domain]

        result = ClassificationResult(
            request=request,
            category=category,
            domain=domain,
            confidence=quick.confidence,
            rationale=fragment.reasoning or f"Reasoning service suggested {domain.value}.",
            escalated=True,
        )
        log.info(
            "Escalated classification: %s/%s (keyword guess was %s)",
            result.domain.value,
            result.category.value,
            quick.domain.value,
        )
        return result
