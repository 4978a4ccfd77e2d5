"""FastAPI application entry point."""

import logging
from typing import Annotated

from fastapi import Depends, FastAPI

from ragchat.api.exceptions import register_exception_handlers
from ragchat.api.observability import router as observability_router
from ragchat.api.rag import router as rag_router
from ragchat.configs.config import get_app_config
from ragchat.core.service.deps import build_pipeline
from ragchat.core.service.pipeline import RagPipeline
from ragchat.infra.lifespan import inject
from ragchat.infra.logging import setup_logging
from ragchat.infra.telemetry import build_telemetry

logger = logging.getLogger(__name__)


@inject
async def lifespan(
    app: FastAPI,
    _telemetry: Annotated[bool, Depends(build_telemetry)],
    _pipeline: Annotated[RagPipeline, Depends(build_pipeline)],
):
    """Startup and shutdown are owned by the injected dependencies."""
    logger.info("Starting ragchat application...")
    yield
    logger.info("Shutting down ragchat application...")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    setup_logging(get_app_config().logging)

    app = FastAPI(
        title="ragchat",
        description="Retrieval-augmented chat: context assembly, prompting and citations",
        version="0.1.0",
        lifespan=lifespan,
    )

    register_exception_handlers(app)

    app.include_router(rag_router)
    app.include_router(observability_router)

    return app


app = create_app()
