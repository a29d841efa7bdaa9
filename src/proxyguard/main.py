"""FastAPI application factory for ProxyGuard."""

import logging
import sys
import time
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from proxyguard.config import settings
from proxyguard.db.session import engine
from proxyguard.engine.strategies import UndoRegistry
from proxyguard.exceptions import (
    AccessDenied,
    NotFoundError,
    ProxyGuardError,
    RollbackNotAllowed,
)
from proxyguard.models.base import Base
from proxyguard.models.audit_log import ProxyAuditLog  # noqa: F401  (register model)
from proxyguard.models.authorization import ProxyAuthorization  # noqa: F401  (register model)
from proxyguard.models.consent_history import ConsentHistory  # noqa: F401  (register model)
from proxyguard.models.rollback import ProxyRollback  # noqa: F401  (register model)

logger = logging.getLogger("proxyguard")


def configure_logging() -> None:
    """Set up structured JSON-style logging."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter(
        '{"time":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s","message":"%(message)s"}'
    )
    handler.setFormatter(formatter)
    root = logging.getLogger("proxyguard")
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("x-request-id", str(uuid.uuid4()))
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            "request_id=%s method=%s path=%s status=%d duration_ms=%.2f",
            request_id,
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
        )
        response.headers["X-Request-ID"] = request_id
        return response


_ERROR_STATUS: list[tuple[type[ProxyGuardError], int]] = [
    (AccessDenied, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (RollbackNotAllowed, status.HTTP_409_CONFLICT),
]


async def proxyguard_error_handler(request: Request, exc: ProxyGuardError) -> JSONResponse:
    code = next(
        (code for cls, code in _ERROR_STATUS if isinstance(exc, cls)),
        status.HTTP_400_BAD_REQUEST,
    )
    logger.info("path=%s error=%s detail=%s", request.url.path, type(exc).__name__, exc)
    return JSONResponse(status_code=code, content={"detail": str(exc)})


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    # Startup
    configure_logging()
    # Auto-create tables for dev/test (production uses Alembic)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("ProxyGuard started with %d undo capabilities", len(app.state.undo_registry))
    yield
    # Shutdown
    logger.info("ProxyGuard shutting down")


def create_app(undo_registry: UndoRegistry | None = None) -> FastAPI:
    """Build the app. The host registers its undo capabilities on ``undo_registry``."""
    app = FastAPI(
        title="ProxyGuard",
        description=(
            "Consent and safety core for assistants acting on a user's behalf: "
            "authorizes proxy actions, audits them, and rolls them back."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.undo_registry = undo_registry if undo_registry is not None else UndoRegistry()

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request logging
    app.add_middleware(RequestLoggingMiddleware)

    app.add_exception_handler(ProxyGuardError, proxyguard_error_handler)

    # Include routers
    from proxyguard.api.health import router as health_router
    from proxyguard.api.v1.audit import router as audit_router
    from proxyguard.api.v1.authorizations import router as authorizations_router
    from proxyguard.api.v1.consent import router as consent_router
    from proxyguard.api.v1.rollback import router as rollback_router

    app.include_router(health_router)
    app.include_router(authorizations_router)
    app.include_router(audit_router)
    app.include_router(rollback_router)
    app.include_router(consent_router)

    return app


app = create_app()


def run() -> None:
    """Serve ``app`` with uvicorn using the configured host and port."""
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level)
