"""
FastAPI application entry point for the todo service.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from todoapi.config import DEFAULT_JWT_SECRET, Settings, get_settings
from todoapi.dependencies import close_db_client, init_db_client
from todoapi.engine import StorageEngine, parse_storage_engine
from todoapi.errors import ConfigurationError, TodoApiError
from todoapi.routes import router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db_client(app.state.settings)
    try:
        yield
    finally:
        close_db_client()


async def handle_api_error(request: Request, exc: TodoApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.as_dict())


async def handle_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ())[1:]),
            "message": error.get("msg", ""),
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "message": "Validation error",
            "errorCode": "VALIDATION_ERROR",
            "errors": errors,
        },
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Internal server error",
            "errorCode": "SERVER_ERROR",
        },
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level.upper())
    # Bad configuration stops the process here, before any request is served.
    # The engine itself is pinned when the app starts up.
    engine = parse_storage_engine(settings.db_type)
    if engine is not StorageEngine.MEMORY and settings.jwt_secret == DEFAULT_JWT_SECRET:
        raise ConfigurationError(
            f"JWT_SECRET must be set for the {engine.value!r} storage engine"
        )

    app = FastAPI(title="Todo API", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.add_exception_handler(TodoApiError, handle_api_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
    app.include_router(router, prefix=settings.api_prefix)
    logger.info("Todo API configured for %s storage", engine.value)
    return app


app = create_app()
