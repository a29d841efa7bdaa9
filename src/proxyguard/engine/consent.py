"""Consent service: history ledger and dashboard read model over grants."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from proxyguard.clock import Clock, ensure_utc, utc_now
from proxyguard.config import Settings, settings as default_settings
from proxyguard.db.repositories.authorization_repo import AuthorizationRepository
from proxyguard.db.repositories.consent_repo import ConsentRepository
from proxyguard.engine.audit import AuditService
from proxyguard.exceptions import AccessDenied, AuthorizationNotFound
from proxyguard.models.authorization import ProxyAuthorization
from proxyguard.schemas.authorization import ActionType, Authorization
from proxyguard.schemas.consent import (
    ChangedBy,
    ConsentChangeType,
    ConsentDashboard,
    ConsentDashboardItem,
    ConsentHistoryEntry,
    ConsentHistoryQuery,
    ConsentModification,
    ConsentStatus,
)

logger = logging.getLogger("proxyguard.consent")

EXPIRING_SOON_WINDOW = timedelta(days=7)
DASHBOARD_HISTORY_LIMIT = 10


def _isoformat(value) -> str | None:
    return value.isoformat() if value is not None else None


def _grant_state(auth: ProxyAuthorization | Authorization) -> dict[str, Any]:
    conditions = auth.conditions
    if conditions is not None and not isinstance(conditions, dict):
        conditions = conditions.model_dump(mode="json", exclude_none=True)
    return {
        "action_class": auth.action_class,
        "scope": str(auth.scope),
        "expires_at": _isoformat(auth.expires_at),
        "conditions": conditions,
    }


class ConsentService:
    def __init__(
        self,
        session: AsyncSession,
        audit: AuditService,
        *,
        settings: Settings | None = None,
        clock: Clock = utc_now,
    ):
        self._repo = ConsentRepository(session)
        self._authorizations = AuthorizationRepository(session)
        self._audit = audit
        self._settings = settings or default_settings
        self._clock = clock

    # -- ledger writes -----------------------------------------------------

    async def record_consent_grant(
        self, authorization_id: str, user_id: str, grant_method: str
    ) -> ConsentHistoryEntry:
        auth = await self._authorizations.get(authorization_id)
        if auth is None:
            raise AuthorizationNotFound(authorization_id)
        return await self._repo.append(
            user_id=user_id,
            authorization_id=authorization_id,
            change_type=ConsentChangeType.GRANTED,
            new_state={**_grant_state(auth), "grant_method": str(grant_method)},
            timestamp=self._clock(),
        )

    async def record_consent_revocation(
        self, authorization_id: str, user_id: str, reason: str | None = None
    ) -> ConsentHistoryEntry:
        auth = await self._authorizations.get(authorization_id)
        if auth is None:
            raise AuthorizationNotFound(authorization_id)
        revoked_at = auth.revoked_at or self._clock()
        return await self._repo.append(
            user_id=user_id,
            authorization_id=authorization_id,
            change_type=ConsentChangeType.REVOKED,
            previous_state=_grant_state(auth),
            new_state={"revoked_at": revoked_at.isoformat()},
            reason=reason,
            timestamp=self._clock(),
        )

    async def modify_consent(
        self, authorization_id: str, user_id: str, changes: ConsentModification
    ) -> Authorization:
        """Apply a partial update to a grant and log it as ``modified``."""
        auth = await self._authorizations.get(authorization_id)
        if auth is None:
            raise AuthorizationNotFound(authorization_id)
        if auth.user_id != user_id:
            raise AccessDenied()

        previous_state = _grant_state(auth)
        fields = changes.model_fields_set
        if "expires_at" in fields:
            auth.expires_at = ensure_utc(changes.expires_at) if changes.expires_at else None
        if "conditions" in fields:
            auth.conditions = (
                changes.conditions.model_dump(mode="json", exclude_none=True)
                if changes.conditions is not None
                else None
            )
        if "scope" in fields and changes.scope is not None:
            auth.scope = changes.scope.value
        auth.updated_at = self._clock()
        await self._authorizations.save(auth)

        await self._repo.append(
            user_id=user_id,
            authorization_id=authorization_id,
            change_type=ConsentChangeType.MODIFIED,
            previous_state=previous_state,
            new_state=_grant_state(auth),
            timestamp=self._clock(),
        )
        logger.info("authorization=%s modified fields=%s", authorization_id, sorted(fields))
        return Authorization.model_validate(auth)

    async def record_expirations(self, user_id: str) -> list[ConsentHistoryEntry]:
        """Append an ``expired`` event, once, for each grant past its expiry."""
        entries = []
        for auth in await self._authorizations.list_expired(user_id, self._clock()):
            if await self._repo.has_change(auth.id, ConsentChangeType.EXPIRED):
                continue
            entries.append(
                await self._repo.append(
                    user_id=user_id,
                    authorization_id=auth.id,
                    change_type=ConsentChangeType.EXPIRED,
                    previous_state=_grant_state(auth),
                    new_state={"expired_at": _isoformat(auth.expires_at)},
                    changed_by=ChangedBy.SYSTEM,
                    timestamp=self._clock(),
                )
            )
        return entries

    # -- read models ---------------------------------------------------------

    def determine_status(self, auth: Authorization) -> ConsentStatus:
        if auth.revoked_at is not None:
            return ConsentStatus.REVOKED
        if auth.expires_at is not None:
            now = self._clock()
            if auth.expires_at <= now:
                return ConsentStatus.EXPIRED
            if auth.expires_at <= now + EXPIRING_SOON_WINDOW:
                return ConsentStatus.EXPIRING_SOON
        return ConsentStatus.ACTIVE

    async def get_consent_dashboard(self, user_id: str) -> ConsentDashboard:
        """Summarise a user's grants.

        Grants that lapsed since the last look get their ``expired`` event
        recorded first so the history shown alongside is current.
        """
        await self.record_expirations(user_id)
        items = []
        for auth in await self._authorizations.list_for_user(user_id):
            usage = await self._audit.get_authorization_usage(user_id, auth.id)
            items.append(
                ConsentDashboardItem(
                    authorization=auth, usage=usage, status=self.determine_status(auth)
                )
            )
        history = await self._repo.query(
            user_id, ConsentHistoryQuery(limit=DASHBOARD_HISTORY_LIMIT)
        )
        return ConsentDashboard(user_id=user_id, items=items, recent_history=history)

    async def get_consent_history(
        self, user_id: str, query: ConsentHistoryQuery | None = None
    ) -> list[ConsentHistoryEntry]:
        return await self._repo.query(user_id, query or ConsentHistoryQuery())

    async def get_consent_reminders(self, user_id: str, days_ahead: int = 7) -> list[Authorization]:
        now = self._clock()
        return await self._authorizations.list_expiring(
            user_id, now, now + timedelta(days=days_ahead)
        )

    async def get_integration_consents(
        self, user_id: str, action_type: ActionType | str
    ) -> list[Authorization]:
        return await self._authorizations.list_for_user(user_id, action_type=str(action_type))
