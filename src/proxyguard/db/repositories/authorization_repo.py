"""Repository for proxy authorization persistence (the authorization store)."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from proxyguard.models.authorization import ProxyAuthorization
from proxyguard.schemas.authorization import Authorization


class AuthorizationRepository:
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(
        self,
        *,
        user_id: str,
        action_class: str,
        action_type: str,
        scope: str,
        grant_method: str,
        granted_at: datetime,
        conditions: dict[str, Any] | None = None,
        expires_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ProxyAuthorization:
        row = ProxyAuthorization(
            user_id=user_id,
            action_class=action_class,
            action_type=action_type,
            scope=scope,
            grant_method=grant_method,
            conditions=conditions,
            expires_at=expires_at,
            metadata_=metadata,
            granted_at=granted_at,
            created_at=granted_at,
            updated_at=granted_at,
        )
        self._session.add(row)
        await self._session.commit()
        return row

    async def save(self, row: ProxyAuthorization) -> ProxyAuthorization:
        """Flush in-place changes (revocation, consent edits) on an existing row."""
        await self._session.commit()
        return row

    async def get(self, authorization_id: str) -> ProxyAuthorization | None:
        stmt = select(ProxyAuthorization).where(ProxyAuthorization.id == authorization_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_active(
        self, user_id: str, action_class: str, now: datetime
    ) -> list[Authorization]:
        """Grants that are neither revoked nor past their expiry at ``now``."""
        stmt = (
            select(ProxyAuthorization)
            .where(
                ProxyAuthorization.user_id == user_id,
                ProxyAuthorization.action_class == action_class,
                ProxyAuthorization.revoked_at.is_(None),
                or_(
                    ProxyAuthorization.expires_at.is_(None),
                    ProxyAuthorization.expires_at > now,
                ),
            )
            .order_by(ProxyAuthorization.granted_at)
        )
        result = await self._session.execute(stmt)
        return [Authorization.model_validate(row) for row in result.scalars().all()]

    async def list_for_user(
        self,
        user_id: str,
        *,
        include_revoked: bool = False,
        action_type: str | None = None,
    ) -> list[Authorization]:
        stmt = (
            select(ProxyAuthorization)
            .where(ProxyAuthorization.user_id == user_id)
            .order_by(ProxyAuthorization.created_at.desc())
        )
        if not include_revoked:
            stmt = stmt.where(ProxyAuthorization.revoked_at.is_(None))
        if action_type:
            stmt = stmt.where(ProxyAuthorization.action_type == action_type)
        result = await self._session.execute(stmt)
        return [Authorization.model_validate(row) for row in result.scalars().all()]

    async def list_expiring(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[Authorization]:
        """Unrevoked grants whose expiry falls inside [start, end]."""
        stmt = (
            select(ProxyAuthorization)
            .where(
                ProxyAuthorization.user_id == user_id,
                ProxyAuthorization.revoked_at.is_(None),
                ProxyAuthorization.expires_at >= start,
                ProxyAuthorization.expires_at <= end,
            )
            .order_by(ProxyAuthorization.expires_at)
        )
        result = await self._session.execute(stmt)
        return [Authorization.model_validate(row) for row in result.scalars().all()]

    async def list_expired(self, user_id: str, now: datetime) -> list[Authorization]:
        stmt = select(ProxyAuthorization).where(
            ProxyAuthorization.user_id == user_id,
            ProxyAuthorization.revoked_at.is_(None),
            ProxyAuthorization.expires_at <= now,
        )
        result = await self._session.execute(stmt)
        return [Authorization.model_validate(row) for row in result.scalars().all()]
