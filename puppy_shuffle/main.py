"""FastAPI application wiring for routes, error handlers, and lifespan."""

from __future__ import annotations

import logging
import random
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from puppy_shuffle.api.errors import APIError
from puppy_shuffle.api.routes import router
from puppy_shuffle.config import (
    get_log_level,
    get_max_sessions,
    get_public_base_url,
    get_reveal_target_on_end,
    get_store_backend,
)
from puppy_shuffle.models.schemas import ErrorBody, ErrorResponse
from puppy_shuffle.services.leaderboard import LeaderboardService
from puppy_shuffle.services.session import SessionRegistry
from puppy_shuffle.services.timing import AsyncioScheduler, Scheduler
from puppy_shuffle.storage.base import BlobStore
from puppy_shuffle.storage.memory import MemoryBlobStore
from puppy_shuffle.storage.redis import RedisBlobStore, create_redis_client

logger = logging.getLogger(__name__)


def create_blob_store(backend: str | None = None) -> BlobStore:
    backend = backend or get_store_backend()
    if backend == "memory":
        return MemoryBlobStore()
    if backend != "redis":
        logger.warning("Unknown STORE_BACKEND %r, falling back to redis", backend)
    return RedisBlobStore(create_redis_client())


def create_app(
    store: BlobStore | None = None,
    scheduler_factory: Callable[[], Scheduler] = AsyncioScheduler,
    rng_factory: Callable[[], random.Random] = random.Random,
) -> FastAPI:
    logging.basicConfig(level=get_log_level())

    @asynccontextmanager
    async def app_lifespan(app: FastAPI):
        blob_store = store or create_blob_store()
        app.state.store = blob_store
        app.state.public_base_url = get_public_base_url()
        app.state.sessions = SessionRegistry(
            LeaderboardService(blob_store),
            scheduler_factory=scheduler_factory,
            rng_factory=rng_factory,
            reveal_target_on_end=get_reveal_target_on_end(),
            max_sessions=get_max_sessions(),
        )
        try:
            yield
        finally:
            app.state.sessions.close_all()
            await blob_store.aclose()

    app = FastAPI(title="Puppy Shuffle API", version="1.0.0", lifespan=app_lifespan)

    @app.exception_handler(APIError)
    async def api_error_handler(_: Request, exc: APIError) -> JSONResponse:
        payload = ErrorResponse(
            error=ErrorBody(code=exc.code, message=exc.message, details=exc.details),
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=payload.model_dump(exclude_none=True),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
        payload = ErrorResponse(
            error=ErrorBody(
                code="VALIDATION_ERROR",
                message="Request validation failed",
                details={"errors": exc.errors()},
            ),
        )
        return JSONResponse(status_code=400, content=payload.model_dump(exclude_none=True))

    app.include_router(router)
    return app


app = create_app()
