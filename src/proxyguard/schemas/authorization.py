"""Pydantic models for proxy authorizations and authorization checks."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, model_validator


class ActionClass(StrEnum):
    SEND_EMAIL = "send_email"
    CREATE_CALENDAR_EVENT = "create_calendar_event"
    UPDATE_CALENDAR_EVENT = "update_calendar_event"
    DELETE_CALENDAR_EVENT = "delete_calendar_event"
    CREATE_GITHUB_ISSUE = "create_github_issue"
    UPDATE_GITHUB_ISSUE = "update_github_issue"
    POST_SLACK_MESSAGE = "post_slack_message"
    CREATE_TASK = "create_task"
    UPDATE_TASK = "update_task"


class ActionType(StrEnum):
    EMAIL = "email"
    CALENDAR = "calendar"
    GITHUB = "github"
    SLACK = "slack"
    TASK = "task"


class AuthorizationScope(StrEnum):
    SINGLE = "single"
    SESSION = "session"
    STANDING = "standing"
    CONDITIONAL = "conditional"


class GrantMethod(StrEnum):
    EXPLICIT_CONSENT = "explicit_consent"
    IMPLICIT_LEARNING = "implicit_learning"
    BULK_GRANT = "bulk_grant"


ACTION_TYPES: dict[ActionClass, ActionType] = {
    ActionClass.SEND_EMAIL: ActionType.EMAIL,
    ActionClass.CREATE_CALENDAR_EVENT: ActionType.CALENDAR,
    ActionClass.UPDATE_CALENDAR_EVENT: ActionType.CALENDAR,
    ActionClass.DELETE_CALENDAR_EVENT: ActionType.CALENDAR,
    ActionClass.CREATE_GITHUB_ISSUE: ActionType.GITHUB,
    ActionClass.UPDATE_GITHUB_ISSUE: ActionType.GITHUB,
    ActionClass.POST_SLACK_MESSAGE: ActionType.SLACK,
    ActionClass.CREATE_TASK: ActionType.TASK,
    ActionClass.UPDATE_TASK: ActionType.TASK,
}

# Actions whose side effects reach other people; callers should confirm first.
REQUIRES_CONFIRMATION: frozenset[ActionClass] = frozenset(
    {
        ActionClass.SEND_EMAIL,
        ActionClass.POST_SLACK_MESSAGE,
        ActionClass.DELETE_CALENDAR_EVENT,
    }
)


def action_type_for(action_class: ActionClass | str) -> ActionType:
    return ACTION_TYPES[ActionClass(action_class)]


class AllowedHours(BaseModel):
    """Half-open window [start, end) of local hours (0-23, end may be 24)."""

    start: int = Field(..., ge=0, le=23)
    end: int = Field(..., ge=0, le=24)


class AuthorizationConditions(BaseModel):
    """Optional policy clauses. All present clauses must pass (AND logic)."""

    require_confidence_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    max_actions_per_day: int | None = Field(default=None, ge=0)
    max_actions_per_week: int | None = Field(default=None, ge=0)
    allowed_hours: AllowedHours | None = None
    allowed_recipients: list[str] | None = None
    allowed_calendars: list[str] | None = None

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


class GrantAuthorizationRequest(BaseModel):
    """Request body for POST /v1/authorizations."""

    action_class: ActionClass
    action_type: ActionType | None = Field(
        default=None,
        description="Derived from action_class when omitted.",
    )
    scope: AuthorizationScope
    conditions: AuthorizationConditions | None = None
    grant_method: GrantMethod = GrantMethod.EXPLICIT_CONSENT
    expires_at: datetime | None = None
    metadata: dict[str, Any] | None = None


class Authorization(BaseModel):
    """Read-only view of an authorization row."""

    id: str
    user_id: str
    action_class: str
    action_type: str
    scope: AuthorizationScope
    conditions: AuthorizationConditions | None = None
    grant_method: GrantMethod
    granted_at: datetime
    expires_at: datetime | None = None
    revoked_at: datetime | None = None
    metadata: dict[str, Any] | None = Field(
        default=None, validation_alias=AliasChoices("metadata_", "metadata")
    )

    model_config = {"from_attributes": True}

    def is_active(self, now: datetime) -> bool:
        return self.revoked_at is None and (self.expires_at is None or self.expires_at > now)


class AuthorizationCheck(BaseModel):
    """Request body for POST /v1/authorizations/check."""

    action_class: str = Field(..., min_length=1, max_length=64)
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    metadata: dict[str, Any] = Field(default_factory=dict)


class AuthorizationCheckResult(BaseModel):
    authorized: bool
    authorization_id: str | None = None
    scope: AuthorizationScope | None = None
    reason: str | None = None

    @model_validator(mode="after")
    def _denials_carry_reason(self) -> AuthorizationCheckResult:
        if not self.authorized and not self.reason:
            raise ValueError("a denied check must carry a reason")
        return self


class RevokeAuthorizationRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=1024)
