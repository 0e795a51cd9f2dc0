"""Request classification, dispatch, and the personal agent."""

from aide.orchestrator.agent import AgentMessage, AgentResponse, PersonalAgent
from aide.orchestrator.classifier import (
    Category,
    ClassificationResult,
    Domain,
    TaskClassifier,
)
from aide.orchestrator.dispatch import (
    Dispatcher,
    OutcomeRecord,
    UnsupportedDomainError,
    resolve_domain,
)
from aide.orchestrator.adapters import DispatchError

__all__ = [
    "AgentMessage",
    "AgentResponse",
    "Category",
    "ClassificationResult",
    "DispatchError",
    "Dispatcher",
    "Domain",
    "OutcomeRecord",
    "PersonalAgent",
    "TaskClassifier",
    "UnsupportedDomainError",
    "resolve_domain",
]
