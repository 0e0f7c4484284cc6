"""FastAPI application: wires the session store, sweeper and routes."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.api.sessions import router as sessions_router
from app.domain.errors import (
    BackendUnavailable,
    CodeGenerationExhausted,
    EntityNotFound,
    Forbidden,
    InvalidArgument,
    SessionNotFound,
)
from app.domain.store import SessionStore, create_session_store
from app.domain.sweeper import EvictionSweeper
from app.infra.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

ENGINE_NAME = "tavern-core"

# Most specific first: EntityNotFound is also an InvalidArgument.
_ERROR_STATUS: list[tuple[type[Exception], int]] = [
    (SessionNotFound, 404),
    (EntityNotFound, 404),
    (Forbidden, 403),
    (InvalidArgument, 400),
    (BackendUnavailable, 503),
    (CodeGenerationExhausted, 503),
]


def _status_for(exc: Exception) -> int:
    for error_type, status in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 500


async def _store_error(request: Request, exc: Exception) -> JSONResponse:
    status = _status_for(exc)
    detail = str(exc)
    if status == 503:
        logger.warning("%s %s: %s", request.method, request.url.path, exc)
        detail = "Storage is temporarily unavailable, try again shortly"
    return JSONResponse(status_code=status, content={"detail": detail})


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(cfg: Settings | None = None, store: SessionStore | None = None) -> FastAPI:
    cfg = cfg or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        active = store or create_session_store(cfg)
        await active.start()
        sweeper = EvictionSweeper(active, cfg.sweep_interval_seconds)
        sweeper.start()
        app.state.store = active
        app.state.sweeper = sweeper
        try:
            yield
        finally:
            await sweeper.stop()
            await active.close()

    app = FastAPI(title="tavern-core", lifespan=lifespan)
    app.include_router(sessions_router)
    for error_type, _status in _ERROR_STATUS:
        app.add_exception_handler(error_type, _store_error)

    @app.get("/health")
    async def health(request: Request) -> dict:
        active: SessionStore = request.app.state.store
        return {
            "status": "ok",
            "engine": ENGINE_NAME,
            "backends": [b.name for b in active.backends],
        }

    @app.get("/db-check")
    async def db_check(request: Request) -> JSONResponse:
        active: SessionStore = request.app.state.store
        if active.durable is None:
            return JSONResponse({"db": "not configured"})
        try:
            await active.durable.ping()
        except BackendUnavailable as exc:
            logger.warning("Durable store check failed: %s", exc)
            return JSONResponse({"db": "fail"}, status_code=503)
        return JSONResponse({"db": "ok"})

    return app


def build_app() -> FastAPI:
    """Entry point for ``uvicorn --factory app.main:build_app``."""
    configure_logging(default_settings.log_level)
    return create_app()
