"""ChatOrder API application.

Serves the Messenger webhook (which only verifies and enqueues; the order
pipeline runs in Celery), the dashboard's conversation and order actions,
and the catalog sync trigger. Run with ``uvicorn chatorder.main:app``.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from chatorder.api.v1.router import api_router
from chatorder.core.config import settings
from chatorder.core.database import engine
from chatorder.core.deps import close_redis_pool
from chatorder.core.logging_config import (
    generate_request_id,
    request_id_var,
    setup_logging,
)
from chatorder.core.rate_limit import limiter

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging(debug=settings.debug)
    logger.info("Starting %s v%s (%s)", settings.project_name, settings.version, settings.environment)
    yield
    logger.info("Shutting down; closing Redis and database pools")
    await close_redis_pool()
    await engine.dispose()


async def stamp_request_id(request: Request, call_next: Any) -> Response:
    """Tag the request's logs with an id and echo it back.

    The webhook forwards the same id to the Celery task it enqueues, so a
    Messenger delivery can be followed from HTTP into the worker.
    """
    rid = request.headers.get("X-Request-ID") or generate_request_id()
    request_id_var.set(rid)
    response: Response = await call_next(request)
    response.headers["X-Request-ID"] = rid
    return response


async def unhandled_error(_request: Request, exc: Exception) -> JSONResponse:
    # Route-level handlers map domain errors; anything reaching here is a bug
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def create_app() -> FastAPI:
    if settings.sentry_dsn:
        import sentry_sdk

        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            traces_sample_rate=0.1,
        )

    app = FastAPI(
        title=settings.project_name,
        version=settings.version,
        openapi_url=f"{settings.api_v1_prefix}/openapi.json",
        docs_url=f"{settings.api_v1_prefix}/docs",
        redoc_url=f"{settings.api_v1_prefix}/redoc",
        lifespan=lifespan,
    )

    # Sync trigger limits; counters shared through Redis
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore[arg-type]
    app.add_middleware(SlowAPIMiddleware)

    # Dashboard origins only; Meta calls the webhook server-to-server
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )
    app.middleware("http")(stamp_request_id)
    app.add_exception_handler(Exception, unhandled_error)

    app.include_router(api_router, prefix=settings.api_v1_prefix)

    @app.get("/docs", include_in_schema=False)
    async def docs_redirect() -> RedirectResponse:
        return RedirectResponse(url=f"{settings.api_v1_prefix}/docs")

    @app.get("/")
    async def root() -> dict[str, Any]:
        """Where to find the docs, health checks and the Messenger webhook."""
        return {
            "name": settings.project_name,
            "version": settings.version,
            "docs": f"{settings.api_v1_prefix}/docs",
            "health": f"{settings.api_v1_prefix}/health",
            "webhook": f"{settings.api_v1_prefix}/webhooks/messenger",
        }

    return app


app = create_app()
