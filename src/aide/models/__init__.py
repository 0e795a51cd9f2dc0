"""Reasoning-service clients for Aide."""

from aide.models.openrouter import (
    ChatResponse,
    OpenRouterClient,
    OpenRouterError,
)
from aide.models.reasoning import Completion, ReasoningService

__all__ = [
    "ChatResponse",
    "Completion",
    "OpenRouterClient",
    "OpenRouterError",
    "ReasoningService",
]
