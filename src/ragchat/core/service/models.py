"""Domain models for the RAG context pipeline.

Input records (``Message``, ``SearchResult``) and the records the
pipeline creates (``Citation``) are frozen: pruning and assembly only
ever select subsets, never mutate.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_SYSTEM = "system"

Role = Literal["user", "assistant", "system"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Sources and citations
# ---------------------------------------------------------------------------


class SearchResult(BaseModel):
    """A ranked passage returned by the search collaborator."""

    model_config = ConfigDict(frozen=True)

    id: str
    content: str
    document_id: str
    filename: str
    page_number: int | None = None
    relevance_score: float = Field(ge=0.0, le=1.0)


class Citation(BaseModel):
    """A resolved in-text citation marker."""

    model_config = ConfigDict(frozen=True)

    citation_index: int = Field(ge=1, description="Matches the in-text [k] marker")
    document_id: str
    filename: str
    page_number: int | None = None
    chunk_content: str = ""
    relevance_score: float

    @classmethod
    def from_source(cls, index: int, source: SearchResult) -> Citation:
        return cls(
            citation_index=index,
            document_id=source.document_id,
            filename=source.filename,
            page_number=source.page_number,
            chunk_content=source.content,
            relevance_score=source.relevance_score,
        )


class Message(BaseModel):
    """One conversation turn.  Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    conversation_id: str = ""
    role: Role
    content: str
    citations: tuple[Citation, ...] = ()
    created_at: datetime = Field(default_factory=_utcnow)

    def to_langchain(self) -> BaseMessage:
        if self.role == ROLE_SYSTEM:
            return SystemMessage(content=self.content)
        if self.role == ROLE_ASSISTANT:
            return AIMessage(content=self.content)
        return HumanMessage(content=self.content)


# ---------------------------------------------------------------------------
# Intent
# ---------------------------------------------------------------------------


class IntentType(str, Enum):
    GREETING = "greeting"
    DOCUMENT_QUERY = "document_query"
    CLARIFICATION = "clarification"
    FOLLOW_UP = "follow_up"
    GENERAL_QUERY = "general_query"


class QueryIntent(BaseModel):
    """Heuristic classification of a user query."""

    model_config = ConfigDict(frozen=True)

    type: IntentType
    requires_documents: bool
    requires_context: bool
    confidence: float = Field(ge=0.0, le=1.0)
    key_terms: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Context and request
# ---------------------------------------------------------------------------


class AssembledContext(BaseModel):
    """Bounded context window with provenance.

    ``sources[i]`` is the passage rendered as ``[i + 1]`` in
    ``document_context``; that numbering is what citation markers in the
    model output refer to.
    """

    model_config = ConfigDict(frozen=True)

    document_context: str = ""
    conversation_context: str = ""
    sources: tuple[SearchResult, ...] = ()
    document_tokens: int = 0
    conversation_tokens: int = 0
    total_tokens: int = 0
    was_truncated: bool = False


class LLMMessage(BaseModel):
    role: Role
    content: str


class LLMRequest(BaseModel):
    """Model-ready request.  Built fresh per call."""

    messages: list[LLMMessage]
    temperature: float
    max_tokens: int
    model: str

    def to_langchain_messages(self) -> list[BaseMessage]:
        converted: list[BaseMessage] = []
        for message in self.messages:
            if message.role == ROLE_SYSTEM:
                converted.append(SystemMessage(content=message.content))
            elif message.role == ROLE_ASSISTANT:
                converted.append(AIMessage(content=message.content))
            else:
                converted.append(HumanMessage(content=message.content))
        return converted


class GenerationResult(BaseModel):
    """Raw text returned by the generation collaborator."""

    text: str
    tokens_used: int = 0


# ---------------------------------------------------------------------------
# Final answer
# ---------------------------------------------------------------------------


class AnswerMetadata(BaseModel):
    search_time_ms: float = 0.0
    llm_time_ms: float = 0.0
    total_time_ms: float = 0.0
    tokens_used: int = 0
    documents_found: int = 0
    cache_hits: int = 0
    intent: str = IntentType.GENERAL_QUERY.value
    context_truncated: bool = False
    history_summary: str = ""
    citation_warnings: list[str] = Field(default_factory=list)
    degraded: list[str] = Field(default_factory=list)


class RagAnswer(BaseModel):
    """Structured, citation-linked answer returned to the caller."""

    message_id: str = Field(default_factory=_new_id)
    content: str
    citations: list[Citation] = Field(default_factory=list)
    metadata: AnswerMetadata = Field(default_factory=AnswerMetadata)
    follow_up_questions: list[str] = Field(default_factory=list)

    def to_message(self, conversation_id: str) -> Message:
        """The assistant turn to append to the conversation."""
        return Message(
            id=self.message_id,
            conversation_id=conversation_id,
            role=ROLE_ASSISTANT,
            content=self.content,
            citations=tuple(self.citations),
        )
