"""FastAPI application factory for HealthQuest."""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo import MongoClient

from healthquest import game_config as config
from healthquest.content import ContentGenerator
from healthquest.errors import GameError
from healthquest.game_store import GameStore
from healthquest.handler import router

log = logging.getLogger(__name__)


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(GameError)
    async def _game_error(request: Request, exc: GameError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(ValueError)
    async def _value_error(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": "validation_error", "message": str(exc)})

    @app.exception_handler(PermissionError)
    async def _permission_error(request: Request, exc: PermissionError) -> JSONResponse:
        return JSONResponse(status_code=403, content={"error": "forbidden", "message": str(exc)})

    @app.exception_handler(Exception)
    async def _generic(request: Request, exc: Exception) -> JSONResponse:
        log.exception("unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "internal server error"})


async def _log_requests(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
    started = time.perf_counter()
    response = await call_next(request)
    if request.url.path.startswith("/api"):
        elapsed_ms = (time.perf_counter() - started) * 1000
        log.info("%s %s %d in %.0fms", request.method, request.url.path, response.status_code, elapsed_ms)
    return response


def create_app(store: GameStore | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    When called without arguments (production), a MongoDB client and the store
    are created inside the lifespan context. When a store is passed (tests), it
    is used directly and no client is managed.
    """
    _provided_store = store

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        if _provided_store is not None:
            yield
            return

        client: MongoClient = MongoClient(config.MONGO_URI)
        app.state.store = GameStore(client[config.MONGO_DB_NAME], content=ContentGenerator())
        log.info("connected to MongoDB database %s", config.MONGO_DB_NAME)
        try:
            yield
        finally:
            client.close()

    app = FastAPI(title="HealthQuest", lifespan=lifespan)

    if _provided_store is not None:
        app.state.store = _provided_store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=600,
    )
    app.middleware("http")(_log_requests)

    _register_exception_handlers(app)
    app.include_router(router)
    return app
