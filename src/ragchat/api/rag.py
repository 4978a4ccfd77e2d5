"""RAG query endpoint and citation tools."""

import logging

from fastapi import APIRouter

from ragchat.core.service.citations import (
    format_citations_for_display,
    validate_citations,
)

from .deps import RagPipelineDep
from .models import (
    CitationFormatRequest,
    CitationFormatResponse,
    CitationValidationOut,
    CitationValidationRequest,
    ErrorResponse,
    RagQueryRequest,
    RagQueryResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/chat/rag", tags=["rag"])


@router.post(
    "/query",
    response_model=RagQueryResponse,
    responses={
        422: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    },
)
async def rag_query(
    rag_request: RagQueryRequest,
    pipeline: RagPipelineDep,
) -> RagQueryResponse:
    """Answer a query from search results and the conversation so far.

    Citations in ``content`` (``[1]``, ``[2]``, ...) resolve to the
    ``citations`` entries with the same ``citationIndex``.  Upstream
    outages return 502/504 with a fallback message and suggestions.
    """
    answer = await pipeline.answer(
        rag_request.query,
        rag_request.history_messages(),
        rag_request.response_mode,
        enable_reranking=rag_request.enable_reranking,
        include_history=rag_request.include_history,
        max_results=rag_request.max_results,
    )
    return RagQueryResponse.from_answer(answer)


@router.post("/citations/validate", response_model=CitationValidationOut)
async def validate_response_citations(
    body: CitationValidationRequest,
) -> CitationValidationOut:
    """Check the ``[k]`` markers of a response against its source count."""
    validation = validate_citations(body.response_text, body.source_count)
    logger.debug(
        "Citation validation: valid=%s errors=%d warnings=%d",
        validation.valid,
        len(validation.errors),
        len(validation.warnings),
    )
    return CitationValidationOut(
        valid=validation.valid,
        errors=validation.errors,
        warnings=validation.warnings,
        suggestions=validation.suggestions,
    )


@router.post("/citations/format", response_model=CitationFormatResponse)
async def format_response_citations(
    body: CitationFormatRequest,
) -> CitationFormatResponse:
    """Render citations as one ``[k] filename (p. n)`` line per source."""
    return CitationFormatResponse(
        formatted=format_citations_for_display(body.to_citations())
    )
