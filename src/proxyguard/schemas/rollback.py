"""Pydantic models for rollback eligibility, execution and history."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class RollbackStrategy(StrEnum):
    DIRECT_UNDO = "direct_undo"
    COMPENSATING = "compensating"
    MANUAL = "manual"
    NOT_SUPPORTED = "not_supported"


class RollbackStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({RollbackStatus.COMPLETED, RollbackStatus.FAILED})


class RollbackEligibility(BaseModel):
    can_rollback: bool
    strategy: RollbackStrategy | None = None
    reason: str | None = None
    expires_at: datetime | None = None


class Rollback(BaseModel):
    """Read-only view of a rollback row."""

    id: str
    audit_entry_id: str
    user_id: str
    strategy: RollbackStrategy
    status: RollbackStatus
    rollback_data: dict[str, Any] | None
    error_message: str | None
    completed_at: datetime | None
    expires_at: datetime
    created_at: datetime

    model_config = {"from_attributes": True}


class ExecuteRollbackRequest(BaseModel):
    """Request body for POST /v1/rollback."""

    audit_entry_id: str = Field(..., min_length=1)
    reason: str = Field(default="", max_length=1024)


class RollbackVerification(BaseModel):
    verified: bool
    message: str


class RollbackHistoryQuery(BaseModel):
    status: RollbackStatus | None = None
    since: datetime | None = None
    until: datetime | None = None
    limit: int = Field(default=50, ge=1, le=500)
    offset: int = Field(default=0, ge=0)
