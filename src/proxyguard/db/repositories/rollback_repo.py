"""Repository for rollback attempts."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from proxyguard.exceptions import RollbackNotAllowed
from proxyguard.models.rollback import ProxyRollback
from proxyguard.schemas.rollback import (
    TERMINAL_STATUSES,
    Rollback,
    RollbackHistoryQuery,
    RollbackStatus,
    RollbackStrategy,
)


class RollbackRepository:
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(
        self,
        *,
        audit_entry_id: str,
        user_id: str,
        strategy: RollbackStrategy,
        rollback_data: dict[str, Any],
        expires_at: datetime,
        created_at: datetime,
    ) -> ProxyRollback:
        """Insert an in-progress rollback.

        The partial unique index on audit_entry_id rejects a second live
        rollback for the same entry; that surfaces as RollbackNotAllowed.
        """
        row = ProxyRollback(
            audit_entry_id=audit_entry_id,
            user_id=user_id,
            strategy=strategy.value,
            status=RollbackStatus.IN_PROGRESS.value,
            rollback_data=rollback_data,
            expires_at=expires_at,
            created_at=created_at,
        )
        self._session.add(row)
        try:
            await self._session.commit()
        except IntegrityError:
            await self._session.rollback()
            raise RollbackNotAllowed("Rollback already in progress") from None
        return row

    async def finish(
        self,
        row: ProxyRollback,
        status: RollbackStatus,
        *,
        completed_at: datetime | None = None,
        error_message: str | None = None,
        rollback_data: dict[str, Any] | None = None,
    ) -> Rollback:
        """Move an in-progress rollback to a terminal status."""
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"{status} is not a terminal rollback status")
        if row.status != RollbackStatus.IN_PROGRESS.value:
            raise ValueError(f"Rollback {row.id} is already {row.status}")
        row.status = status.value
        row.completed_at = completed_at
        row.error_message = error_message
        if rollback_data is not None:
            row.rollback_data = rollback_data
        await self._session.commit()
        return Rollback.model_validate(row)

    async def get(self, rollback_id: str) -> Rollback | None:
        stmt = select(ProxyRollback).where(ProxyRollback.id == rollback_id)
        result = await self._session.execute(stmt)
        row = result.scalar_one_or_none()
        return Rollback.model_validate(row) if row else None

    async def get_live_for_entry(self, audit_entry_id: str) -> Rollback | None:
        """The non-failed rollback for an entry, if any."""
        stmt = (
            select(ProxyRollback)
            .where(
                ProxyRollback.audit_entry_id == audit_entry_id,
                ProxyRollback.status != RollbackStatus.FAILED.value,
            )
            .order_by(ProxyRollback.created_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        row = result.scalar_one_or_none()
        return Rollback.model_validate(row) if row else None

    async def history(self, user_id: str, filters: RollbackHistoryQuery) -> list[Rollback]:
        stmt = (
            select(ProxyRollback)
            .where(ProxyRollback.user_id == user_id)
            .order_by(ProxyRollback.created_at.desc())
        )
        if filters.status:
            stmt = stmt.where(ProxyRollback.status == filters.status.value)
        if filters.since:
            stmt = stmt.where(ProxyRollback.created_at >= filters.since)
        if filters.until:
            stmt = stmt.where(ProxyRollback.created_at <= filters.until)

        stmt = stmt.offset(filters.offset).limit(filters.limit)
        result = await self._session.execute(stmt)
        return [Rollback.model_validate(row) for row in result.scalars().all()]
