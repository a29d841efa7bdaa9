"""Audit service: the append-only ledger of every attempted proxy action."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from proxyguard.clock import Clock, start_of_local_day, utc_now, week_window_start
from proxyguard.config import Settings, settings as default_settings
from proxyguard.db.repositories.audit_repo import AuditRepository
from proxyguard.engine.strategies import get_rollback_strategy
from proxyguard.models.audit_log import ProxyAuditLog
from proxyguard.schemas.audit import (
    ROLLBACK_ELIGIBLE_KEY,
    AuditEntry,
    AuditQuery,
    AuditStats,
    AuthorizationUsage,
    LogProxyActionParams,
)
from proxyguard.schemas.rollback import RollbackStrategy

logger = logging.getLogger("proxyguard.audit")


def confidence_to_percent(confidence: float | None) -> int | None:
    """0.0-1.0 score -> integer percentage, rounding halves up."""
    if confidence is None:
        return None
    return int(math.floor(confidence * 100 + 0.5))


def is_rollback_eligible(action_class: str, success: bool) -> bool:
    return success and get_rollback_strategy(action_class) != RollbackStrategy.NOT_SUPPORTED


class AuditService:
    def __init__(
        self,
        session: AsyncSession,
        *,
        settings: Settings | None = None,
        clock: Clock = utc_now,
    ):
        self._repo = AuditRepository(session)
        self._settings = settings or default_settings
        self._clock = clock

    async def log_proxy_action(self, params: LogProxyActionParams) -> AuditEntry:
        """Persist one action attempt. Call exactly once per attempt."""
        now = self._clock()
        output = dict(params.output)
        output[ROLLBACK_ELIGIBLE_KEY] = is_rollback_eligible(params.action_class, params.success)

        row = ProxyAuditLog(
            user_id=params.user_id,
            authorization_id=params.authorization_id,
            action=params.action,
            action_class=params.action_class,
            mode=params.mode.value,
            persona=params.persona.value,
            input=params.input,
            output=output,
            model_used=params.model_used,
            confidence=confidence_to_percent(params.confidence),
            tokens_used=params.tokens_used,
            latency_ms=params.latency_ms,
            success=params.success,
            error=params.error,
            user_confirmed=params.user_confirmed,
            confirmed_at=now if params.user_confirmed else None,
            timestamp=now,
        )
        entry = await self._repo.add(row)
        logger.info(
            "audit_entry=%s user=%s action_class=%s mode=%s success=%s",
            entry.id,
            entry.user_id,
            entry.action_class,
            entry.mode,
            entry.success,
        )
        return entry

    async def get_audit_entry(self, entry_id: str, user_id: str | None = None) -> AuditEntry | None:
        """Look up one entry; with ``user_id`` only the owner's entry is returned."""
        entry = await self._repo.get(entry_id)
        if entry is None or (user_id is not None and entry.user_id != user_id):
            return None
        return entry

    async def get_audit_log(self, user_id: str, query: AuditQuery | None = None) -> list[AuditEntry]:
        query = query or AuditQuery()
        if query.limit is None:
            query = query.model_copy(update={"limit": self._settings.audit_default_limit})
        return await self._repo.query(user_id, query)

    async def get_audit_stats(self, user_id: str, days: int | None = None) -> AuditStats:
        since = self._clock() - timedelta(days=days) if days else None
        return await self._repo.stats(user_id, since)

    async def get_recent_failures(self, user_id: str, limit: int = 10) -> list[AuditEntry]:
        return await self._repo.recent_failures(user_id, limit)

    async def count_successful_actions(
        self, user_id: str, action_class: str, since: datetime
    ) -> int:
        return await self._repo.count_successful(user_id, since=since, action_class=action_class)

    async def get_authorization_usage(self, user_id: str, authorization_id: str) -> AuthorizationUsage:
        now = self._clock()
        total, last_used = await self._repo.last_successful(user_id, authorization_id)
        today = await self._repo.count_successful(
            user_id,
            since=start_of_local_day(now, self._settings.policy_timezone),
            authorization_id=authorization_id,
        )
        this_week = await self._repo.count_successful(
            user_id, since=week_window_start(now), authorization_id=authorization_id
        )
        return AuthorizationUsage(
            total_actions=total,
            last_used=last_used,
            actions_today=today,
            actions_this_week=this_week,
        )
