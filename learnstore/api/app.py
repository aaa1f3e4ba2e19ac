"""
FastAPI application factory for learnstore.

This module creates the FastAPI app with:
- CORS configuration for the UI shell
- LocalStore lifecycle management
- Command routes under /api/v1
- Translation of store errors into JSON error responses
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .._version import __version__
from ..config import AppConfig
from ..store import (
    ConflictError,
    LearnStoreError,
    LocalStore,
    LockError,
    NotFoundError,
    SerializationError,
    ValidationError,
)
from .commands import router

logger = logging.getLogger(__name__)


def status_for(error: LearnStoreError) -> int:
    """HTTP status code for a store error."""
    if isinstance(error, (ValidationError, SerializationError)):
        return 400
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, ConflictError):
        return 409
    if isinstance(error, LockError):
        return 503
    return 500


async def learnstore_error_handler(request: Request, exc: LearnStoreError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(
            "Command failed",
            extra={"path": request.url.path, "error_code": exc.code, "error": exc.message},
        )
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(status_code=status_code, content=exc.to_dict(), headers=headers)


def open_store(config: AppConfig) -> LocalStore:
    """Open the store described by ``config`` (creating and migrating it)."""
    storage = config.storage
    return LocalStore.open_at(
        storage.db_path,
        wal_mode=storage.wal_mode,
        busy_timeout_ms=storage.busy_timeout_ms,
        lock_timeout_seconds=storage.lock_timeout,
    )


def create_app(
    config: Optional[AppConfig] = None,
    store: Optional[LocalStore] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Process configuration (loaded from env if not provided)
        store: An already-open store; when given, the app does not close it
    """
    config = config or AppConfig.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Manage LocalStore lifecycle."""
        owned = None
        if getattr(app.state, "store", None) is None:
            owned = open_store(config)
            app.state.store = owned

        yield

        if owned is not None:
            owned.close()
            app.state.store = None

    app = FastAPI(
        title="learnstore",
        description="Local-first store for notes, decks, cards and study progress.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.store = store

    # CORS for the UI shell
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.api.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(LearnStoreError, learnstore_error_handler)
    app.include_router(router, prefix="/api/v1")

    return app
