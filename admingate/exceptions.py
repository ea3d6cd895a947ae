"""Exception classes for the admin authorization gate."""

from datetime import datetime, timedelta

from .types import DenyReason


class AdminGateError(Exception):
    """Base exception for all admin gate errors."""

    reason: DenyReason | None = None

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class AuthenticationError(AdminGateError):
    """Raised when a credential cannot be turned into a verified identity."""

    reason = DenyReason.TOKEN_INVALID


class TokenInvalidError(AuthenticationError):
    """Raised for malformed, forged or mismatched tokens."""

    reason = DenyReason.TOKEN_INVALID


class TokenExpiredError(AuthenticationError):
    """Raised when the token or its session has expired."""

    reason = DenyReason.TOKEN_EXPIRED


class SessionRevokedError(AuthenticationError):
    """Raised when the referenced session is missing or no longer active."""

    reason = DenyReason.SESSION_REVOKED


class IdentityNotFoundError(AuthenticationError):
    reason = DenyReason.IDENTITY_NOT_FOUND


class IpNotAllowedError(AuthenticationError):
    """Raised when the source IP is outside the identity's whitelist."""

    reason = DenyReason.IP_NOT_ALLOWED


class LockoutError(AdminGateError):
    """Raised when the identity is temporarily locked out."""

    reason = DenyReason.LOCKED

    def __init__(self, locked_until: datetime, details: dict | None = None):
        self.locked_until = locked_until
        super().__init__(f"Account locked until {locked_until.isoformat()}", details)


class RateLimitError(AdminGateError):
    """Raised when an actor has exhausted its quota for the current window."""

    reason = DenyReason.RATE_LIMITED

    def __init__(self, retry_after: timedelta, details: dict | None = None):
        self.retry_after = retry_after
        super().__init__(
            f"Rate limit exceeded, retry after {retry_after.total_seconds():.0f}s",
            details,
        )


class AuthorizationError(AdminGateError):
    """Raised when an authenticated identity may not perform an action."""

    reason = DenyReason.PERMISSION_NOT_GRANTED


class InsufficientRoleError(AuthorizationError):
    reason = DenyReason.INSUFFICIENT_ROLE


class PermissionNotGrantedError(AuthorizationError):
    reason = DenyReason.PERMISSION_NOT_GRANTED


class ScopeExceededError(AuthorizationError):
    reason = DenyReason.SCOPE_EXCEEDED


class StatusNotActiveError(AuthorizationError):
    reason = DenyReason.STATUS_NOT_ACTIVE


class AuditError(AdminGateError):
    """Raised when audit operations fail."""

    pass


class AuditWriteFailed(AuditError):
    """Raised when an audit entry could not be durably appended."""

    pass


class StoreError(AdminGateError):
    """Raised when the backing store is unreachable or times out."""

    pass


class ConfigurationError(AdminGateError):
    """Raised when gate configuration is invalid."""

    pass


AUTHORIZATION_ERRORS: dict[DenyReason, type[AuthorizationError]] = {
    DenyReason.INSUFFICIENT_ROLE: InsufficientRoleError,
    DenyReason.PERMISSION_NOT_GRANTED: PermissionNotGrantedError,
    DenyReason.SCOPE_EXCEEDED: ScopeExceededError,
    DenyReason.STATUS_NOT_ACTIVE: StatusNotActiveError,
}
