"""Wraps one proxy action attempt: check, confirm, perform, audit.

Every attempt that gets past the confirmation gate produces exactly one
audit entry, whether the check denies it, the action fails, or it succeeds.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from proxyguard.engine.audit import AuditService
from proxyguard.engine.authorization import AuthorizationService
from proxyguard.exceptions import AuthorizationDenied, ConfirmationRequired
from proxyguard.schemas.audit import AuditEntry, LogProxyActionParams, OperatingMode, Persona
from proxyguard.schemas.authorization import REQUIRES_CONFIRMATION

logger = logging.getLogger("proxyguard.guard")

PerformAction = Callable[[str, dict[str, Any]], Awaitable[dict[str, Any]]]


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class ProxyActionGuard:
    def __init__(self, authorizations: AuthorizationService, audit: AuditService):
        self._authorizations = authorizations
        self._audit = audit

    async def run(
        self,
        user_id: str,
        action_class: str,
        perform: PerformAction,
        *,
        confidence: float | None = None,
        metadata: dict[str, Any] | None = None,
        action: str | None = None,
        mode: OperatingMode = OperatingMode.PROXY,
        persona: Persona = Persona.WORK,
        model_used: str | None = None,
        requires_confirmation: bool | None = None,
        confirmed: bool = False,
    ) -> AuditEntry:
        """Run ``perform`` if authorized and return the resulting audit entry.

        Raises AuthorizationDenied (after auditing the denial) or
        ConfirmationRequired (without auditing). Exceptions from ``perform``
        are audited as failures and re-raised.
        """
        start = time.perf_counter()
        payload = dict(metadata or {})
        if requires_confirmation is None:
            requires_confirmation = action_class in REQUIRES_CONFIRMATION

        def params(**kwargs: Any) -> LogProxyActionParams:
            return LogProxyActionParams(
                user_id=user_id,
                action=action or action_class,
                action_class=action_class,
                mode=mode,
                persona=persona,
                input=payload,
                model_used=model_used,
                confidence=confidence,
                latency_ms=_elapsed_ms(start),
                **kwargs,
            )

        check = await self._authorizations.check_authorization(
            user_id, action_class, confidence, payload
        )
        if not check.authorized:
            await self._audit.log_proxy_action(
                params(output={"error": check.reason}, success=False, error=check.reason)
            )
            raise AuthorizationDenied(action_class, check.reason or "denied")

        if requires_confirmation and not confirmed:
            raise ConfirmationRequired(action_class, check.authorization_id)

        try:
            output = await perform(action_class, payload)
        except Exception as exc:
            logger.exception("action_class=%s failed for user=%s", action_class, user_id)
            await self._audit.log_proxy_action(
                params(
                    authorization_id=check.authorization_id,
                    output={"error": str(exc)},
                    success=False,
                    error=str(exc) or type(exc).__name__,
                    user_confirmed=requires_confirmation and confirmed,
                )
            )
            raise

        return await self._audit.log_proxy_action(
            params(
                authorization_id=check.authorization_id,
                output=output or {},
                success=True,
                user_confirmed=requires_confirmation and confirmed,
            )
        )
