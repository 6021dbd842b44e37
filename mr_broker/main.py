# =============================================================================
# FastAPI Application - Router Assembly and Error Rendering
# =============================================================================
#
# Run locally:
#   uvicorn mr_broker.main:app --reload
#
# Every typed BrokerError is rendered as {"error": {"kind", "detail"}}:
#   ValidationError (and request body validation)  -> 400
#   ConfigurationError                             -> 503
#   any other BrokerError (dependency failure)     -> 502
# =============================================================================

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from mr_broker.api import ingest, libraries, search, slides
from mr_broker.config import settings
from mr_broker.errors import BrokerError, ConfigurationError, ValidationError
from mr_broker.models.responses import HealthResponse
from mr_broker.services.slides import get_slide_renderer

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Starting %s %s (vectorstore=%s, llm=%s, staleness_filter=%s)",
        settings.app_name, settings.app_version, settings.vectorstore_type,
        settings.llm_provider, settings.staleness_filter_enabled,
    )
    yield
    await get_slide_renderer().close()


def status_for(exc: BrokerError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, ConfigurationError):
        return 503
    return 502


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Grounded, cited Q&A over per-tenant market research libraries",
        lifespan=lifespan,
    )

    @app.exception_handler(BrokerError)
    async def broker_error_handler(request: Request, exc: BrokerError) -> JSONResponse:
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error("%s %s failed: %s: %s", request.method, request.url.path, exc.kind, exc.detail)
        return JSONResponse(status_code=status_code, content={"error": exc.to_dict()})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}"
            for err in exc.errors()
        )
        return JSONResponse(
            status_code=400,
            content={"error": ValidationError(problems or "invalid request").to_dict()},
        )

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health() -> HealthResponse:
        return HealthResponse(version=settings.app_version, service=settings.app_name)

    app.include_router(search.router)
    app.include_router(slides.router)
    app.include_router(libraries.router)
    app.include_router(ingest.router)
    return app


app = create_app()
