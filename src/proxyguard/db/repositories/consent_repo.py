"""Repository for the append-only consent history ledger."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from proxyguard.models.consent_history import ConsentHistory
from proxyguard.schemas.consent import (
    ChangedBy,
    ConsentChangeType,
    ConsentHistoryEntry,
    ConsentHistoryQuery,
)


class ConsentRepository:
    def __init__(self, session: AsyncSession):
        self._session = session

    async def append(
        self,
        *,
        user_id: str,
        authorization_id: str,
        change_type: ConsentChangeType,
        timestamp: datetime,
        previous_state: dict[str, Any] | None = None,
        new_state: dict[str, Any] | None = None,
        changed_by: ChangedBy = ChangedBy.USER,
        reason: str | None = None,
    ) -> ConsentHistoryEntry:
        row = ConsentHistory(
            user_id=user_id,
            authorization_id=authorization_id,
            change_type=change_type.value,
            previous_state=previous_state,
            new_state=new_state,
            changed_by=changed_by.value,
            reason=reason,
            timestamp=timestamp,
        )
        self._session.add(row)
        await self._session.commit()
        return ConsentHistoryEntry.model_validate(row)

    async def query(self, user_id: str, filters: ConsentHistoryQuery) -> list[ConsentHistoryEntry]:
        stmt = (
            select(ConsentHistory)
            .where(ConsentHistory.user_id == user_id)
            .order_by(ConsentHistory.timestamp.desc())
        )
        if filters.change_type:
            stmt = stmt.where(ConsentHistory.change_type == filters.change_type.value)
        if filters.since:
            stmt = stmt.where(ConsentHistory.timestamp >= filters.since)
        if filters.until:
            stmt = stmt.where(ConsentHistory.timestamp <= filters.until)

        stmt = stmt.offset(filters.offset).limit(filters.limit)
        result = await self._session.execute(stmt)
        return [ConsentHistoryEntry.model_validate(row) for row in result.scalars().all()]

    async def has_change(self, authorization_id: str, change_type: ConsentChangeType) -> bool:
        stmt = (
            select(ConsentHistory.id)
            .where(
                ConsentHistory.authorization_id == authorization_id,
                ConsentHistory.change_type == change_type.value,
            )
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none() is not None
