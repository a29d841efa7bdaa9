"""Wires the services onto one database session."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from proxyguard.clock import Clock, utc_now
from proxyguard.config import Settings, settings as default_settings
from proxyguard.engine.audit import AuditService
from proxyguard.engine.authorization import AuthorizationService
from proxyguard.engine.consent import ConsentService
from proxyguard.engine.guard import ProxyActionGuard
from proxyguard.engine.rollback import RollbackService
from proxyguard.engine.strategies import UndoRegistry


@dataclass
class ProxyServices:
    audit: AuditService
    consent: ConsentService
    authorizations: AuthorizationService
    rollbacks: RollbackService
    guard: ProxyActionGuard


def build_services(
    session: AsyncSession,
    *,
    undo_registry: UndoRegistry | None = None,
    settings: Settings | None = None,
    clock: Clock = utc_now,
) -> ProxyServices:
    settings = settings or default_settings
    audit = AuditService(session, settings=settings, clock=clock)
    consent = ConsentService(session, audit, settings=settings, clock=clock)
    authorizations = AuthorizationService(
        session, consent, audit, settings=settings, clock=clock
    )
    if undo_registry is None:
        undo_registry = UndoRegistry()
    rollbacks = RollbackService(
        session, audit, undo_registry, settings=settings, clock=clock
    )
    return ProxyServices(
        audit=audit,
        consent=consent,
        authorizations=authorizations,
        rollbacks=rollbacks,
        guard=ProxyActionGuard(authorizations, audit),
    )
