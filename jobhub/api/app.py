"""FastAPI application factory for the job hub."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from jobhub import __version__
from jobhub.api import stream
from jobhub.api.routes import router
from jobhub.api.schemas import HealthResponse
from jobhub.core.errors import HubError, UnauthorizedError
from jobhub.core.hub import JobHub

logger = logging.getLogger(__name__)


async def hub_error_handler(request: Request, exc: HubError) -> JSONResponse:
    """Render any HubError as ``{"error": code, "message": msg}``."""
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, UnauthorizedError) else None
    if exc.http_status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict(), headers=headers)


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    messages = [
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', '')}"
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content={"error": "invalid_request", "message": "; ".join(messages)},
    )


def create_app(hub: JobHub) -> FastAPI:
    """Create the FastAPI application serving ``hub``.

    The application lifespan starts the hub's retention reaper and shuts
    the hub down (terminating live runs) when the server stops.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Starting job hub API (%s mode)", hub.config.environment)
        hub.start()
        yield
        logger.info("Stopping job hub API")
        hub.shutdown()

    docs_enabled = not hub.config.is_production
    app = FastAPI(
        title="Job Hub",
        description="Run per-project pipelines on demand over HTTP",
        version=__version__,
        docs_url="/docs" if docs_enabled else None,
        redoc_url=None,
        openapi_url="/openapi.json" if docs_enabled else None,
        lifespan=lifespan,
    )
    app.state.hub = hub

    if hub.config.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=hub.config.cors_allow_origins,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_exception_handler(HubError, hub_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    def health() -> HealthResponse:
        return HealthResponse(status="ok", version=__version__)

    app.include_router(router)
    app.include_router(stream.router)
    return app
