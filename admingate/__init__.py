"""
Admin authorization and audit core.

Fronts the administrative surface of a marketplace platform: every privileged
request is checked for a valid session, account lockout, rate limits and
role based permissions (including dealer sub-account delegation) before an
immutable audit entry is written.
"""

from .audit import AuditRecorder
from .exceptions import (
    AdminGateError,
    AuditError,
    AuditWriteFailed,
    AuthenticationError,
    AuthorizationError,
    ConfigurationError,
    IdentityNotFoundError,
    InsufficientRoleError,
    IpNotAllowedError,
    LockoutError,
    PermissionNotGrantedError,
    RateLimitError,
    ScopeExceededError,
    SessionRevokedError,
    StatusNotActiveError,
    StoreError,
    TokenExpiredError,
    TokenInvalidError,
)
from .factory import AdminGateFactory, BackendLoader, create_admin_gate
from .gate import AuthorizationGate
from .lockout import LockoutTracker
from .rate_limiter import RateLimiter
from .rbac import ACTION_POLICIES, ROLE_BASELINE, RbacResolver
from .session_validator import SessionValidator
from .store import AdminStore
from .tokens import JwtTokenService, TokenClaims
from .types import (
    ALL_LISTINGS,
    AccessScope,
    ActionPolicy,
    AuditLog,
    AuthSession,
    Capability,
    DealerAccountRole,
    Decision,
    DelegationInfo,
    DenyReason,
    EffectivePermissions,
    Identity,
    IdentityStatus,
    LockoutStatus,
    LoginAttempt,
    Outcome,
    RateLimitResult,
    RequestDescriptor,
    Resource,
    Role,
    RouteClass,
)
from .utils import actor_key_for, ip_matches, mask_sensitive_data

__all__ = [
    "ACTION_POLICIES",
    "ALL_LISTINGS",
    "AccessScope",
    "ActionPolicy",
    "AdminGateError",
    "AdminGateFactory",
    "AdminStore",
    "AuditError",
    "AuditLog",
    "AuditRecorder",
    "AuditWriteFailed",
    "AuthSession",
    "AuthenticationError",
    "AuthorizationError",
    "AuthorizationGate",
    "BackendLoader",
    "Capability",
    "ConfigurationError",
    "DealerAccountRole",
    "Decision",
    "DelegationInfo",
    "DenyReason",
    "EffectivePermissions",
    "Identity",
    "IdentityNotFoundError",
    "IdentityStatus",
    "InsufficientRoleError",
    "IpNotAllowedError",
    "JwtTokenService",
    "LockoutError",
    "LockoutStatus",
    "LockoutTracker",
    "LoginAttempt",
    "Outcome",
    "PermissionNotGrantedError",
    "ROLE_BASELINE",
    "RateLimitError",
    "RateLimitResult",
    "RateLimiter",
    "RbacResolver",
    "RequestDescriptor",
    "Resource",
    "Role",
    "RouteClass",
    "ScopeExceededError",
    "SessionRevokedError",
    "SessionValidator",
    "StatusNotActiveError",
    "StoreError",
    "TokenClaims",
    "TokenExpiredError",
    "TokenInvalidError",
    "actor_key_for",
    "create_admin_gate",
    "ip_matches",
    "mask_sensitive_data",
]
