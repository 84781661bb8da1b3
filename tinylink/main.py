"""FastAPI application entry point for the TinyLink service.

Application Lifecycle Diagram
=============================
::
    ┌──────────────┐
    │  uvicorn     │
    │  startup     │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ create_app() │
    │ middleware,  │
    │ routes       │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ lifespan()   │
    │ startup:     │
    │ ServiceMgr.  │
    │ initialize() │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ Serve HTTP   │
    │ requests     │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ lifespan()   │
    │ shutdown:    │
    │ cleanup()    │
    └──────────────┘

How to Use
===========
**Run with uvicorn**::
    uvicorn tinylink.main:app --host 0.0.0.0 --port 3000

**Make API calls**::
    curl -X POST http://localhost:3000/api/links \
         -H "Content-Type: application/json" \
         -d '{"url": "https://example.com"}'
    curl -i http://localhost:3000/<code>

Key Behaviours
===============
- Database tables are created on startup unless DB_CREATE_TABLES is false.
- Malformed request bodies are answered with 400, like any other bad input.
- Unhandled errors are logged with a traceback and answered with a generic 500.
- Every response carries an X-Request-ID header.
- Prometheus metrics are exposed at /metrics.
"""

__all__ = ["app", "create_app"]

import logging
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from tinylink import __version__
from tinylink.config import Settings, get_settings
from tinylink.dependencies import ServiceManager
from tinylink.routes import router

logger = logging.getLogger("tinylink")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        manager = ServiceManager(settings)
        await manager.initialize()
        app.state.services = manager
        yield
        await manager.cleanup()

    app = FastAPI(
        title=settings.APP_NAME,
        version=__version__,
        description="Short links with click counting",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_id_middleware(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info(f"Rejected malformed request to {request.url.path}: {exc.errors()}")
        return JSONResponse(status_code=400, content={"detail": "Invalid request body"})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=False,
        should_respect_env_var=False,
    ).instrument(app).expose(app)

    app.include_router(router)
    return app


app = create_app()
