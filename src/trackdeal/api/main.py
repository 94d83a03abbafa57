"""
FastAPI application entry point.

This module instantiates the FastAPI app, registers API routers, maps
domain errors to HTTP responses and wires the process-wide analysis
dispatcher and broadcaster. When run via ``uvicorn`` the app will be
served as an ASGI application::

    uvicorn trackdeal.api.main:create_app --factory
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..core.config import get_settings
from ..core.db import dispose_engine, init_db_schema
from ..core.exceptions import TrackdealError, ValidationError
from ..core.services.broadcast import NegotiationBroadcaster
from ..core.services.dispatcher import AnalysisDispatcher
from ..core.utils.logger import configure_logging
from .routers import negotiations as negotiations_router


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover
    """Application lifespan hook.

    On startup this hook creates the database schema when running in dev
    or test; production relies on Alembic migrations. On shutdown it waits
    for in-flight analysis tasks before disposing the engine.
    """
    settings = get_settings()
    if settings.env in {"dev", "test"}:
        logger.info("Initialising database schema…")
        await init_db_schema()
    yield
    await app.state.analysis_dispatcher.drain()
    await dispose_engine()


async def handle_domain_error(request: Request, exc: TrackdealError) -> JSONResponse:
    """Render a domain error as ``{"detail", "error_code"}``."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.error_code, request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error_code": exc.error_code},
    )


async def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render malformed request bodies and parameters like a domain ``ValidationError``."""
    problems = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err["loc"] if part != "body")
        problems.append(f"{field}: {err['msg']}" if field else err["msg"])
    logger.info("Rejected %s %s: %s", request.method, request.url.path, problems)
    return JSONResponse(
        status_code=ValidationError.status_code,
        content={"detail": "; ".join(problems), "error_code": ValidationError.default_error_code},
    )


def create_app() -> FastAPI:
    """Factory for the FastAPI app."""
    settings = get_settings()
    configure_logging(settings.log_level)
    app = FastAPI(title="trackdeal API", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    broadcaster = NegotiationBroadcaster()
    app.state.broadcaster = broadcaster
    app.state.analysis_dispatcher = AnalysisDispatcher(broadcaster)
    app.add_exception_handler(TrackdealError, handle_domain_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.include_router(negotiations_router.router)
    return app
