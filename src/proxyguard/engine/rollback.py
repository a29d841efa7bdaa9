"""Rollback service: eligibility checks and undo execution for audited actions.

Rollback state machine:
  pending -> in_progress -> completed | failed

``can_rollback`` and ``verify_rollback`` are read-only and report problems in
their result. ``execute_rollback`` raises for anything detected before the
rollback row exists; once the row exists, every outcome (including undo
errors and timeouts) is recorded on it and returned.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from proxyguard.clock import Clock, utc_now
from proxyguard.config import Settings, settings as default_settings
from proxyguard.db.repositories.rollback_repo import RollbackRepository
from proxyguard.engine.audit import AuditService
from proxyguard.engine.strategies import UndoRegistry, build_undo_instructions, get_rollback_strategy
from proxyguard.exceptions import (
    AccessDenied,
    AuditEntryNotFound,
    RollbackExecutionError,
    RollbackNotAllowed,
    RollbackNotFound,
)
from proxyguard.schemas.audit import AuditEntry
from proxyguard.schemas.rollback import (
    Rollback,
    RollbackEligibility,
    RollbackHistoryQuery,
    RollbackStatus,
    RollbackStrategy,
    RollbackVerification,
)

logger = logging.getLogger("proxyguard.rollback")


class RollbackService:
    def __init__(
        self,
        session: AsyncSession,
        audit: AuditService,
        undo_registry: UndoRegistry,
        *,
        settings: Settings | None = None,
        clock: Clock = utc_now,
    ):
        self._repo = RollbackRepository(session)
        self._audit = audit
        self._undo = undo_registry
        self._settings = settings or default_settings
        self._clock = clock

    @property
    def window(self) -> timedelta:
        return timedelta(hours=self._settings.rollback_window_hours)

    @staticmethod
    def get_rollback_strategy(action_class: str) -> RollbackStrategy:
        return get_rollback_strategy(action_class)

    async def can_rollback(self, audit_entry_id: str) -> RollbackEligibility:
        entry = await self._audit.get_audit_entry(audit_entry_id)
        if entry is None:
            return RollbackEligibility(can_rollback=False, reason="Audit entry not found")
        return await self._eligibility(entry)

    async def _eligibility(self, entry: AuditEntry) -> RollbackEligibility:
        if not entry.success:
            return RollbackEligibility(can_rollback=False, reason="Cannot rollback failed action")

        strategy = get_rollback_strategy(entry.action_class)
        if strategy == RollbackStrategy.NOT_SUPPORTED:
            return RollbackEligibility(
                can_rollback=False,
                strategy=strategy,
                reason=f"{entry.action_class} does not support rollback",
            )

        expires_at = entry.timestamp + self.window
        if self._clock() > expires_at:
            return RollbackEligibility(
                can_rollback=False,
                strategy=strategy,
                reason=f"Rollback window expired ({self._settings.rollback_window_hours}h window)",
                expires_at=expires_at,
            )

        existing = await self._repo.get_live_for_entry(entry.id)
        if existing is not None:
            reason = (
                "Action already rolled back"
                if existing.status == RollbackStatus.COMPLETED
                else "Rollback already in progress"
            )
            return RollbackEligibility(
                can_rollback=False, strategy=strategy, reason=reason, expires_at=expires_at
            )

        return RollbackEligibility(can_rollback=True, strategy=strategy, expires_at=expires_at)

    async def execute_rollback(
        self,
        audit_entry_id: str,
        user_id: str,
        reason: str = "",
        timeout: float | None = None,
    ) -> Rollback:
        entry = await self._audit.get_audit_entry(audit_entry_id)
        if entry is None:
            raise AuditEntryNotFound(audit_entry_id)
        if entry.user_id != user_id:
            raise AccessDenied()

        eligibility = await self._eligibility(entry)
        if not eligibility.can_rollback:
            raise RollbackNotAllowed(eligibility.reason or "not eligible")

        rollback_data: dict[str, Any] = {
            "originalInput": entry.input or {},
            "originalOutput": entry.output or {},
            "reason": reason,
        }
        row = await self._repo.create(
            audit_entry_id=entry.id,
            user_id=user_id,
            strategy=eligibility.strategy,
            rollback_data=rollback_data,
            expires_at=entry.timestamp + self.window,
            created_at=self._clock(),
        )
        logger.info(
            "rollback=%s started audit_entry=%s strategy=%s",
            row.id,
            entry.id,
            eligibility.strategy,
        )

        timeout = self._settings.rollback_timeout_seconds if timeout is None else timeout
        try:
            async with asyncio.timeout(timeout):
                undo = await self._perform(entry, eligibility.strategy, rollback_data)
        except TimeoutError:
            logger.warning("rollback=%s timed out after %ss", row.id, timeout)
            return await self._repo.finish(
                row, RollbackStatus.FAILED, error_message=f"Rollback timed out after {timeout}s"
            )
        except Exception as exc:
            logger.warning("rollback=%s failed: %s", row.id, exc, exc_info=True)
            return await self._repo.finish(
                row, RollbackStatus.FAILED, error_message=str(exc) or type(exc).__name__
            )

        result = await self._repo.finish(
            row,
            RollbackStatus.COMPLETED,
            completed_at=self._clock(),
            rollback_data={**rollback_data, "undo": undo},
        )
        logger.info("rollback=%s completed", row.id)
        return result

    async def _perform(
        self,
        entry: AuditEntry,
        strategy: RollbackStrategy,
        rollback_data: dict[str, Any],
    ) -> dict[str, Any]:
        """Run the registered undo capability; returns the instructions used."""
        if strategy == RollbackStrategy.MANUAL:
            raise RollbackExecutionError("Manual rollback requires user intervention")

        instructions = build_undo_instructions(entry.action_class, entry.input, entry.output)
        callback = self._undo.get(entry.action_class)
        if callback is None:
            raise RollbackExecutionError(
                f"No undo capability registered for {entry.action_class}"
            )
        await callback(entry.action_class, {**rollback_data, "undo": instructions})
        return instructions

    async def verify_rollback(self, rollback_id: str) -> RollbackVerification:
        rollback = await self._repo.get(rollback_id)
        if rollback is None:
            return RollbackVerification(verified=False, message="Rollback not found")
        if rollback.status != RollbackStatus.COMPLETED:
            return RollbackVerification(
                verified=False,
                message=f"Rollback status is '{rollback.status}', not completed",
            )
        return RollbackVerification(verified=True, message="Rollback completed successfully")

    async def get_rollback_history(
        self, user_id: str, query: RollbackHistoryQuery | None = None
    ) -> list[Rollback]:
        return await self._repo.history(user_id, query or RollbackHistoryQuery())

    async def get_rollback(self, rollback_id: str, user_id: str) -> Rollback:
        rollback = await self._repo.get(rollback_id)
        if rollback is None or rollback.user_id != user_id:
            raise RollbackNotFound(rollback_id)
        return rollback
