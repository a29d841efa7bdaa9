"""Pydantic models for the consent ledger and dashboard."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from proxyguard.schemas.audit import AuthorizationUsage
from proxyguard.schemas.authorization import (
    Authorization,
    AuthorizationConditions,
    AuthorizationScope,
)


class ConsentChangeType(StrEnum):
    GRANTED = "granted"
    MODIFIED = "modified"
    REVOKED = "revoked"
    EXPIRED = "expired"


class ChangedBy(StrEnum):
    USER = "user"
    SYSTEM = "system"
    ADMIN = "admin"


class ConsentStatus(StrEnum):
    ACTIVE = "active"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"
    REVOKED = "revoked"


class ConsentHistoryEntry(BaseModel):
    """Read-only view of a consent history row."""

    id: str
    user_id: str
    authorization_id: str
    change_type: ConsentChangeType
    previous_state: dict[str, Any] | None
    new_state: dict[str, Any] | None
    changed_by: str | None
    reason: str | None
    timestamp: datetime

    model_config = {"from_attributes": True}


class ConsentHistoryQuery(BaseModel):
    change_type: ConsentChangeType | None = None
    since: datetime | None = None
    until: datetime | None = None
    limit: int = Field(default=50, ge=1, le=500)
    offset: int = Field(default=0, ge=0)


class ConsentModification(BaseModel):
    """Partial update of a grant. Fields left unset are not touched;
    an explicit null clears expires_at or conditions."""

    expires_at: datetime | None = None
    conditions: AuthorizationConditions | None = None
    scope: AuthorizationScope | None = None


class ConsentDashboardItem(BaseModel):
    authorization: Authorization
    usage: AuthorizationUsage
    status: ConsentStatus


class ConsentDashboard(BaseModel):
    user_id: str
    items: list[ConsentDashboardItem] = Field(default_factory=list)
    recent_history: list[ConsentHistoryEntry] = Field(default_factory=list)
