"""User-facing fallback message for upstream outages."""

from __future__ import annotations

from pydantic import BaseModel

from ragchat.errors import (
    COLLABORATOR_EMBEDDING,
    COLLABORATOR_GENERATION,
    COLLABORATOR_SEARCH,
    UpstreamFailure,
)

APOLOGY = "I apologize, but I'm experiencing some technical difficulties right now."


class FallbackResponse(BaseModel):
    content: str
    suggestions: list[str]
    retryable: bool = True


def build_fallback_response(error: UpstreamFailure) -> FallbackResponse:
    """Explain an upstream failure in the terms of the failing collaborator."""
    if error.collaborator in (COLLABORATOR_SEARCH, COLLABORATOR_EMBEDDING):
        return FallbackResponse(
            content=f"{APOLOGY} I'm having trouble accessing your documents at the moment.",
            suggestions=[
                "Check if your documents are properly uploaded and processed",
                "Try a different search term",
                "Try again in a few moments",
            ],
        )
    if error.collaborator == COLLABORATOR_GENERATION:
        return FallbackResponse(
            content=(
                f"{APOLOGY} I'm experiencing connectivity issues with external services."
            ),
            suggestions=[
                "Please try again in a few moments",
                "Try a shorter or more specific question",
                "Contact support if the issue persists",
            ],
        )
    return FallbackResponse(
        content=(
            f"{APOLOGY} I can still provide general information, but may not be "
            "able to access your specific documents."
        ),
        suggestions=[
            "Try asking a general question",
            "Try rephrasing your question",
            "Contact support if the issue persists",
        ],
    )
