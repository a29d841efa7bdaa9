"""FastAPI dependency injection."""

from __future__ import annotations

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from proxyguard.config import settings
from proxyguard.db.session import get_db
from proxyguard.engine.container import ProxyServices, build_services
from proxyguard.engine.strategies import UndoRegistry


def get_undo_registry(request: Request) -> UndoRegistry:
    """The undo capabilities registered on this application instance."""
    registry = getattr(request.app.state, "undo_registry", None)
    if registry is None:
        registry = UndoRegistry()
        request.app.state.undo_registry = registry
    return registry


async def get_services(
    session: AsyncSession = Depends(get_db),
    undo_registry: UndoRegistry = Depends(get_undo_registry),
) -> ProxyServices:
    """Provide the service bundle bound to the current DB session."""
    return build_services(session, undo_registry=undo_registry, settings=settings)


async def verify_api_key(x_api_key: str | None = Header(default=None)) -> str | None:
    """Validate the X-API-Key header.

    If no API keys are configured (empty string), auth is disabled (dev mode).
    """
    configured = settings.parse_api_keys()
    if not configured:
        return None  # Dev mode: no auth required

    if not x_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key. Provide X-API-Key header.",
        )
    if x_api_key not in configured:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key.",
        )
    return x_api_key


async def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """The user on whose behalf the request acts, as asserted by the host."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing user identity. Provide X-User-ID header.",
        )
    return x_user_id.strip()
