"""Authorization service: grant, check and revoke proxy permissions.

Decision flow for ``check_authorization``:
  (user_id, action_class, confidence, metadata)
         |
  [1] load active grants (not revoked, not expired at "now")
         |
    none? ── YES ─> deny "No authorization found for this action"
         |
  [2] for each grant: ConditionEvaluator (clauses ANDed)
         |
    any grant passes? ── YES ─> allow with that grant's id and scope
         |
  [3] deny with the first grant's failing clause as the reason

Anything that is not an explicit, fully satisfied allow is a denial, and
denials are returned, never raised.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from proxyguard.clock import Clock, ensure_utc, utc_now
from proxyguard.config import Settings, settings as default_settings
from proxyguard.db.repositories.authorization_repo import AuthorizationRepository
from proxyguard.engine.audit import AuditService
from proxyguard.engine.conditions import ConditionEvaluator
from proxyguard.engine.consent import ConsentService
from proxyguard.exceptions import AccessDenied, AuthorizationNotFound
from proxyguard.schemas.authorization import (
    ActionClass,
    ActionType,
    Authorization,
    AuthorizationCheckResult,
    AuthorizationConditions,
    AuthorizationScope,
    GrantMethod,
    action_type_for,
)

logger = logging.getLogger("proxyguard.authorization")

NO_AUTHORIZATION_REASON = "No authorization found for this action"


class AuthorizationService:
    def __init__(
        self,
        session: AsyncSession,
        consent: ConsentService,
        audit: AuditService,
        *,
        settings: Settings | None = None,
        clock: Clock = utc_now,
    ):
        settings = settings or default_settings
        self._repo = AuthorizationRepository(session)
        self._consent = consent
        self._clock = clock
        self._evaluator = ConditionEvaluator(
            audit,
            policy_timezone=settings.policy_timezone,
            wrap_midnight=settings.allowed_hours_wrap_midnight,
            clock=clock,
        )

    async def grant_authorization(
        self,
        user_id: str,
        action_class: ActionClass | str,
        *,
        scope: AuthorizationScope | str,
        grant_method: GrantMethod | str = GrantMethod.EXPLICIT_CONSENT,
        action_type: ActionType | str | None = None,
        conditions: AuthorizationConditions | dict[str, Any] | None = None,
        expires_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Authorization:
        """Persist a new grant and record it in the consent ledger.

        Duplicate grants are allowed; checks OR across all of them.
        """
        action_class = ActionClass(action_class)
        if isinstance(conditions, dict):
            conditions = AuthorizationConditions.model_validate(conditions)
        if conditions is not None and conditions.is_empty():
            conditions = None

        row = await self._repo.create(
            user_id=user_id,
            action_class=action_class.value,
            action_type=ActionType(action_type or action_type_for(action_class)).value,
            scope=AuthorizationScope(scope).value,
            grant_method=GrantMethod(grant_method).value,
            conditions=(
                conditions.model_dump(mode="json", exclude_none=True) if conditions else None
            ),
            expires_at=ensure_utc(expires_at) if expires_at else None,
            metadata=metadata,
            granted_at=self._clock(),
        )
        await self._consent.record_consent_grant(row.id, user_id, row.grant_method)
        logger.info(
            "authorization=%s granted user=%s action_class=%s scope=%s",
            row.id,
            user_id,
            row.action_class,
            row.scope,
        )
        return Authorization.model_validate(row)

    async def check_authorization(
        self,
        user_id: str,
        action_class: str,
        confidence: float | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuthorizationCheckResult:
        metadata = metadata or {}
        candidates = await self._repo.list_active(user_id, str(action_class), self._clock())

        if not candidates:
            logger.info("denied user=%s action_class=%s: no authorization", user_id, action_class)
            return AuthorizationCheckResult(authorized=False, reason=NO_AUTHORIZATION_REASON)

        denial: str | None = None
        for auth in candidates:
            result = await self._evaluator.evaluate(
                auth, user_id, str(action_class), confidence, metadata
            )
            if result.passed:
                return AuthorizationCheckResult(
                    authorized=True, authorization_id=auth.id, scope=auth.scope
                )
            denial = denial or result.reason

        reason = denial or "Authorization conditions not met"
        logger.info("denied user=%s action_class=%s: %s", user_id, action_class, reason)
        return AuthorizationCheckResult(authorized=False, reason=reason)

    async def revoke_authorization(
        self, authorization_id: str, user_id: str, reason: str | None = None
    ) -> Authorization:
        row = await self._repo.get(authorization_id)
        if row is None:
            raise AuthorizationNotFound(authorization_id)
        if row.user_id != user_id:
            raise AccessDenied()
        if row.revoked_at is not None:
            return Authorization.model_validate(row)

        row.revoked_at = self._clock()
        await self._repo.save(row)
        await self._consent.record_consent_revocation(authorization_id, user_id, reason)
        logger.info("authorization=%s revoked user=%s", authorization_id, user_id)
        return Authorization.model_validate(row)

    async def get_user_authorizations(
        self, user_id: str, include_inactive: bool = False
    ) -> list[Authorization]:
        auths = await self._repo.list_for_user(user_id, include_revoked=include_inactive)
        if include_inactive:
            return auths
        now = self._clock()
        return [a for a in auths if a.is_active(now)]

    async def get_authorization(self, authorization_id: str, user_id: str) -> Authorization:
        row = await self._repo.get(authorization_id)
        if row is None or row.user_id != user_id:
            raise AuthorizationNotFound(authorization_id)
        return Authorization.model_validate(row)
