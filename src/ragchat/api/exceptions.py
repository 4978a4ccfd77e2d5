"""Global exception handlers.

Registered when the app is built: Starlette snapshots the handler table
into its middleware stack before the lifespan runs.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ragchat.core.service.fallback import build_fallback_response
from ragchat.errors import UpstreamFailure, ValidationError
from ragchat.infra.telemetry import get_current_trace_id

from .models import ErrorResponse

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    """Register domain exception handlers on ``app``."""

    @app.exception_handler(ValidationError)
    async def handle_validation_error(
        request: Request, exc: ValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content=ErrorResponse(detail=str(exc), code="VALIDATION_ERROR").model_dump(
                by_alias=True
            ),
        )

    @app.exception_handler(UpstreamFailure)
    async def handle_upstream_failure(
        request: Request, exc: UpstreamFailure
    ) -> JSONResponse:
        fallback = build_fallback_response(exc)
        return JSONResponse(
            status_code=504 if exc.timed_out else 502,
            content=ErrorResponse(
                detail=str(exc),
                code=exc.code,
                fallback_message=fallback.content,
                suggestions=fallback.suggestions,
                trace_id=get_current_trace_id(),
            ).model_dump(by_alias=True),
        )

    logger.debug("Exception handlers registered")
