# =============================================================================
# FastAPI Application Entry Point
# =============================================================================
#
#   uvicorn earnings_qa.main:app --reload
#   celery -A earnings_qa.workers.celery_app worker --loglevel=info
#
# The API process serves /ask directly and hands /ingest jobs to Celery.
# =============================================================================

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from earnings_qa.api.ask import router as ask_router
from earnings_qa.api.ingest import router as ingest_router
from earnings_qa.config import get_settings
from earnings_qa.models.responses import HealthResponse

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    # httpx logs every request at INFO; the fetcher already does.
    logging.getLogger("httpx").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings = get_settings()
    logger.info(
        "Starting %s v%s (store=%s, collection=%s, llm=%s)",
        settings.app_name,
        settings.app_version,
        settings.vectorstore_type,
        settings.collection_name,
        settings.llm_provider,
    )
    yield


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title=settings.app_name,
        description="Question answering over a company's quarterly earnings reports",
        version=settings.app_version,
        debug=settings.debug,
        lifespan=lifespan,
    )

    app.include_router(ingest_router)
    app.include_router(ask_router)

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health() -> HealthResponse:
        return HealthResponse(
            status="ok",
            version=settings.app_version,
            service=settings.app_name,
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("earnings_qa.main:app", host="0.0.0.0", port=8000, reload=True)
