"""Domain exceptions raised by the ProxyGuard services.

Authorization *denials* are never exceptions; they come back as
``AuthorizationCheckResult(authorized=False, reason=...)``. These classes cover
mutations that cannot proceed.
"""

from __future__ import annotations


class ProxyGuardError(Exception):
    """Base exception for all ProxyGuard errors."""


class AccessDenied(ProxyGuardError):
    """Raised when a user mutates a record they do not own."""

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(message)


class NotFoundError(ProxyGuardError):
    """Base for lookups that found nothing."""


class AuthorizationNotFound(NotFoundError):
    def __init__(self, authorization_id: str) -> None:
        self.authorization_id = authorization_id
        super().__init__(f"Authorization not found: {authorization_id}")


class AuditEntryNotFound(NotFoundError):
    def __init__(self, audit_entry_id: str) -> None:
        self.audit_entry_id = audit_entry_id
        super().__init__("Audit entry not found")


class RollbackNotFound(NotFoundError):
    def __init__(self, rollback_id: str) -> None:
        self.rollback_id = rollback_id
        super().__init__("Rollback not found")


class RollbackNotAllowed(ProxyGuardError):
    """Raised by execute_rollback when the entry is not eligible."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Cannot rollback: {reason}")


class RollbackExecutionError(ProxyGuardError):
    """The undo step itself could not run; recorded on the failed rollback."""


class AuthorizationDenied(ProxyGuardError):
    """Raised by the action guard when a check comes back denied."""

    def __init__(self, action_class: str, reason: str) -> None:
        self.action_class = action_class
        self.reason = reason
        super().__init__(f"Action '{action_class}' not authorized: {reason}")


class ConfirmationRequired(ProxyGuardError):
    """Raised by the action guard when the user still has to confirm."""

    def __init__(self, action_class: str, authorization_id: str | None) -> None:
        self.action_class = action_class
        self.authorization_id = authorization_id
        super().__init__(f"User confirmation required for '{action_class}'")
