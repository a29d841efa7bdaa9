"""Repository for proxy audit log persistence and queries.

Insert and read only; audit rows are never updated.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from proxyguard.models.audit_log import ProxyAuditLog
from proxyguard.schemas.audit import AuditEntry, AuditQuery, AuditStats, OperatingMode


class AuditRepository:
    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, row: ProxyAuditLog) -> AuditEntry:
        self._session.add(row)
        await self._session.commit()
        return AuditEntry.model_validate(row)

    async def get(self, entry_id: str) -> AuditEntry | None:
        stmt = select(ProxyAuditLog).where(ProxyAuditLog.id == entry_id)
        result = await self._session.execute(stmt)
        row = result.scalar_one_or_none()
        return AuditEntry.model_validate(row) if row else None

    async def query(self, user_id: str, filters: AuditQuery) -> list[AuditEntry]:
        """Entries for one user, most recent first."""
        stmt = (
            select(ProxyAuditLog)
            .where(ProxyAuditLog.user_id == user_id)
            .order_by(ProxyAuditLog.timestamp.desc())
        )

        if filters.action_class:
            stmt = stmt.where(ProxyAuditLog.action_class == filters.action_class)
        if filters.mode:
            stmt = stmt.where(ProxyAuditLog.mode == filters.mode.value)
        if filters.success is not None:
            stmt = stmt.where(ProxyAuditLog.success.is_(filters.success))
        if filters.since:
            stmt = stmt.where(ProxyAuditLog.timestamp >= filters.since)
        if filters.until:
            stmt = stmt.where(ProxyAuditLog.timestamp <= filters.until)

        stmt = stmt.offset(filters.offset).limit(filters.limit)
        result = await self._session.execute(stmt)
        return [AuditEntry.model_validate(row) for row in result.scalars().all()]

    async def count_successful(
        self,
        user_id: str,
        *,
        since: datetime,
        action_class: str | None = None,
        authorization_id: str | None = None,
    ) -> int:
        stmt = (
            select(func.count())
            .select_from(ProxyAuditLog)
            .where(
                ProxyAuditLog.user_id == user_id,
                ProxyAuditLog.success.is_(True),
                ProxyAuditLog.timestamp >= since,
            )
        )
        if action_class:
            stmt = stmt.where(ProxyAuditLog.action_class == action_class)
        if authorization_id:
            stmt = stmt.where(ProxyAuditLog.authorization_id == authorization_id)
        return (await self._session.execute(stmt)).scalar() or 0

    async def last_successful(self, user_id: str, authorization_id: str) -> tuple[int, datetime | None]:
        """(total successful uses, most recent use) for one authorization."""
        stmt = select(func.count(), func.max(ProxyAuditLog.timestamp)).where(
            ProxyAuditLog.user_id == user_id,
            ProxyAuditLog.authorization_id == authorization_id,
            ProxyAuditLog.success.is_(True),
        )
        total, last_used = (await self._session.execute(stmt)).one()
        return total or 0, last_used

    async def recent_failures(self, user_id: str, limit: int) -> list[AuditEntry]:
        stmt = (
            select(ProxyAuditLog)
            .where(ProxyAuditLog.user_id == user_id, ProxyAuditLog.success.is_(False))
            .order_by(ProxyAuditLog.timestamp.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [AuditEntry.model_validate(row) for row in result.scalars().all()]

    async def stats(self, user_id: str, since: datetime | None = None) -> AuditStats:
        scope = [ProxyAuditLog.user_id == user_id]
        if since is not None:
            scope.append(ProxyAuditLog.timestamp >= since)

        totals_q = select(
            func.count(),
            func.sum(case((ProxyAuditLog.success.is_(True), 1), else_=0)),
            func.avg(ProxyAuditLog.confidence),
            func.coalesce(func.sum(ProxyAuditLog.tokens_used), 0),
            func.avg(ProxyAuditLog.latency_ms),
        ).where(*scope)
        total, successful, avg_confidence, tokens, avg_latency = (
            await self._session.execute(totals_q)
        ).one()

        class_q = (
            select(ProxyAuditLog.action_class, func.count())
            .where(*scope)
            .group_by(ProxyAuditLog.action_class)
        )
        by_class = {row[0]: row[1] for row in (await self._session.execute(class_q)).all()}

        mode_q = select(ProxyAuditLog.mode, func.count()).where(*scope).group_by(ProxyAuditLog.mode)
        by_mode = {mode.value: 0 for mode in OperatingMode}
        by_mode.update({row[0]: row[1] for row in (await self._session.execute(mode_q)).all()})

        total = total or 0
        successful = successful or 0
        return AuditStats(
            total_actions=total,
            successful_actions=successful,
            failed_actions=total - successful,
            actions_by_class=by_class,
            actions_by_mode=by_mode,
            # AVG ignores NULLs, so entries without a confidence do not drag it down
            average_confidence=round(float(avg_confidence), 2) if avg_confidence is not None else 0.0,
            total_tokens_used=int(tokens or 0),
            average_latency_ms=round(float(avg_latency), 2) if avg_latency is not None else 0.0,
        )
