"""Response modes and LLM request construction.

``build_llm_request`` is a pure data transformation: no network call,
and no failure mode beyond an unknown response mode, which falls back
to ``detailed``.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict

from .models import (
    ROLE_SYSTEM,
    ROLE_USER,
    AssembledContext,
    IntentType,
    LLMMessage,
    LLMRequest,
    QueryIntent,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"

MODE_DETAILED = "detailed"
MODE_CONCISE = "concise"
MODE_TECHNICAL = "technical"
MODE_CONVERSATIONAL = "conversational"

DEFAULT_RESPONSE_MODE = MODE_DETAILED


class ResponseModeConfig(BaseModel):
    """Verbosity, sampling and prompt preset for one response mode."""

    model_config = ConfigDict(frozen=True)

    name: str
    max_tokens: int
    temperature: float
    instructions: str


RESPONSE_MODES: dict[str, ResponseModeConfig] = {
    MODE_DETAILED: ResponseModeConfig(
        name=MODE_DETAILED,
        max_tokens=1500,
        temperature=0.7,
        instructions=(
            "You are a knowledgeable AI assistant. Provide detailed, "
            "comprehensive responses. Explain concepts thoroughly and provide "
            "context when possible."
        ),
    ),
    MODE_CONCISE: ResponseModeConfig(
        name=MODE_CONCISE,
        max_tokens=500,
        temperature=0.5,
        instructions=(
            "You are a helpful AI assistant. Provide concise, direct answers. "
            "Be brief but accurate."
        ),
    ),
    MODE_TECHNICAL: ResponseModeConfig(
        name=MODE_TECHNICAL,
        max_tokens=1200,
        temperature=0.3,
        instructions=(
            "You are a technical AI assistant. Provide precise, technical "
            "responses with specific details. Focus on accuracy and technical "
            "depth, and include relevant technical terms and concepts."
        ),
    ),
    MODE_CONVERSATIONAL: ResponseModeConfig(
        name=MODE_CONVERSATIONAL,
        max_tokens=800,
        temperature=0.8,
        instructions=(
            "You are a friendly AI assistant. Provide conversational, "
            "easy-to-understand responses. Explain complex topics in simple "
            "terms."
        ),
    ),
}

CITATION_RULES = """Citation rules:
- The documents are numbered [1], [2], ... in the order given.
- When a statement relies on a document, cite it inline with its number, e.g. [1] or [2][3].
- Only cite numbers that appear in the provided documents; never invent citations.
- If the documents do not contain the answer, say so instead of guessing."""

PREVIOUS_CONVERSATION_HEADER = "Previous conversation:"
DOCUMENTS_HEADER = "Relevant documents:"
QUERY_PREFIX = "Query: "

FOLLOW_UP_NOTE = (
    "Note: This appears to be a follow-up question. "
    "Please reference the previous conversation context."
)
NO_DOCUMENTS_NOTE = (
    "Note: No relevant documents were found for this question. "
    "Answer from general knowledge and say that no documents support it."
)


def get_response_mode_config(mode: str | None) -> ResponseModeConfig:
    """Resolve *mode* (case-insensitive); unknown modes fall back to detailed."""
    key = (mode or "").strip().lower()
    config = RESPONSE_MODES.get(key)
    if config is None:
        logger.debug("Unknown response mode %r; using %s", mode, DEFAULT_RESPONSE_MODE)
        return RESPONSE_MODES[DEFAULT_RESPONSE_MODE]
    return config


def render_system_prompt(mode_config: ResponseModeConfig) -> str:
    return f"{mode_config.instructions}\n\n{CITATION_RULES}"


def build_llm_request(
    query: str,
    context: AssembledContext,
    intent: QueryIntent,
    response_mode: str | None,
    *,
    model: str = DEFAULT_MODEL,
) -> LLMRequest:
    """Build a fresh request: system prompt, context, then the query."""
    mode_config = get_response_mode_config(response_mode)

    messages = [LLMMessage(role=ROLE_SYSTEM, content=render_system_prompt(mode_config))]

    if context.conversation_context:
        messages.append(
            LLMMessage(
                role=ROLE_USER,
                content=f"{PREVIOUS_CONVERSATION_HEADER}\n{context.conversation_context}",
            )
        )

    parts: list[str] = []
    if context.document_context:
        parts.append(f"{DOCUMENTS_HEADER}\n{context.document_context}")
    parts.append(f"{QUERY_PREFIX}{query}")
    if intent.type is IntentType.FOLLOW_UP:
        parts.append(FOLLOW_UP_NOTE)
    elif intent.requires_documents and not context.sources:
        parts.append(NO_DOCUMENTS_NOTE)

    messages.append(LLMMessage(role=ROLE_USER, content="\n\n".join(parts)))

    return LLMRequest(
        messages=messages,
        temperature=mode_config.temperature,
        max_tokens=mode_config.max_tokens,
        model=model,
    )
