"""Pydantic models for the RAG query API.

Wire format is camelCase; both camelCase and snake_case are accepted on
input.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ragchat.core.service.models import Citation, Message, RagAnswer

QUERY_MAX_LENGTH = 4096
HISTORY_MAX_MESSAGES = 200
MAX_RESULTS_LIMIT = 50


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------


class HistoryMessage(CamelModel):
    """A prior conversation turn supplied by the caller."""

    id: str | None = None
    role: Literal["user", "assistant", "system"] = Field(description="Message sender role")
    content: str = Field(description="Message content")
    created_at: datetime | None = None

    def to_message(self, conversation_id: str) -> Message:
        fields: dict = {
            "conversation_id": conversation_id,
            "role": self.role,
            "content": self.content,
        }
        if self.id is not None:
            fields["id"] = self.id
        if self.created_at is not None:
            fields["created_at"] = self.created_at
        return Message(**fields)


class RagQueryRequest(CamelModel):
    """Request model for ``POST /api/v1/chat/rag/query``."""

    query: str = Field(
        min_length=1, max_length=QUERY_MAX_LENGTH, description="User query to answer"
    )
    conversation_id: str = Field(default="", description="Conversation identifier")
    history: list[HistoryMessage] = Field(
        default_factory=list,
        max_length=HISTORY_MAX_MESSAGES,
        description="Prior messages, oldest first",
    )
    response_mode: str = Field(
        default="detailed",
        description="detailed | concise | technical | conversational",
    )
    enable_reranking: bool = True
    include_history: bool = True
    max_results: int | None = Field(default=None, ge=1, le=MAX_RESULTS_LIMIT)

    def history_messages(self) -> list[Message]:
        return [m.to_message(self.conversation_id) for m in self.history]


# ---------------------------------------------------------------------------
# Response
# ---------------------------------------------------------------------------


class CitationOut(CamelModel):
    citation_index: int = Field(ge=1)
    document_id: str
    filename: str
    page_number: int | None
    chunk_content: str
    relevance_score: float

    @classmethod
    def from_citation(cls, citation: Citation) -> "CitationOut":
        return cls(**citation.model_dump())


class AnswerMetadataOut(CamelModel):
    search_time: float = Field(description="Search stage duration (ms)")
    llm_time: float = Field(description="Generation stage duration (ms)")
    total_time: float = Field(description="End-to-end duration (ms)")
    tokens_used: int
    documents_found: int
    cache_hits: int
    intent: str
    context_truncated: bool
    history_summary: str
    citation_warnings: list[str]
    degraded: list[str]


class RagQueryResponse(CamelModel):
    message_id: str
    content: str
    citations: list[CitationOut]
    metadata: AnswerMetadataOut
    follow_up_questions: list[str]

    @classmethod
    def from_answer(cls, answer: RagAnswer) -> "RagQueryResponse":
        meta = answer.metadata
        return cls(
            message_id=answer.message_id,
            content=answer.content,
            citations=[CitationOut.from_citation(c) for c in answer.citations],
            metadata=AnswerMetadataOut(
                search_time=meta.search_time_ms,
                llm_time=meta.llm_time_ms,
                total_time=meta.total_time_ms,
                tokens_used=meta.tokens_used,
                documents_found=meta.documents_found,
                cache_hits=meta.cache_hits,
                intent=meta.intent,
                context_truncated=meta.context_truncated,
                history_summary=meta.history_summary,
                citation_warnings=meta.citation_warnings,
                degraded=meta.degraded,
            ),
            follow_up_questions=answer.follow_up_questions,
        )


# ---------------------------------------------------------------------------
# Citation tools
# ---------------------------------------------------------------------------


class CitationValidationRequest(CamelModel):
    """Request model for ``POST /api/v1/chat/rag/citations/validate``."""

    response_text: str = Field(description="Model output containing [k] markers")
    source_count: int = Field(ge=0, description="Number of sources the answer may cite")


class CitationValidationOut(CamelModel):
    valid: bool
    errors: list[str]
    warnings: list[str]
    suggestions: list[str]


class CitationFormatRequest(CamelModel):
    """Request model for ``POST /api/v1/chat/rag/citations/format``."""

    citations: list[CitationOut]

    def to_citations(self) -> list[Citation]:
        return [Citation(**c.model_dump()) for c in self.citations]


class CitationFormatResponse(CamelModel):
    formatted: list[str]


class ErrorResponse(CamelModel):
    detail: str
    code: str
    fallback_message: str | None = None
    suggestions: list[str] = Field(default_factory=list)
    trace_id: str | None = None


class HealthResponse(BaseModel):
    status: Literal["ok"] = "ok"
    timestamp: datetime
    cache: str = Field(description="off | l1 | l1+redis")
