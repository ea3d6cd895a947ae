"""
Core types for the admin authorization gate.

This module contains the data model shared by every component: identities,
sessions, login attempts, audit entries, request descriptors and decisions.
Records are plain dataclasses; stores hand out copies, never shared instances.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Literal

ALL_LISTINGS: Literal["all"] = "all"


class Role(Enum):
    """Platform role of an identity."""

    USER = "user"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"
    MODERATOR = "moderator"
    SUPPORT = "support"


STAFF_ROLES = frozenset({Role.ADMIN, Role.SUPER_ADMIN, Role.MODERATOR, Role.SUPPORT})


class IdentityStatus(Enum):
    """Lifecycle status of an identity. Identities are never deleted."""

    ACTIVE = "active"
    SUSPENDED = "suspended"
    BANNED = "banned"
    PENDING_VERIFICATION = "pending_verification"


class Capability(Enum):
    """Closed set of capability tags."""

    # Administrative capabilities
    USER_MANAGEMENT = "user_management"
    CONTENT_MODERATION = "content_moderation"
    FINANCIAL_ACCESS = "financial_access"
    SYSTEM_CONFIG = "system_config"
    ANALYTICS_VIEW = "analytics_view"
    AUDIT_LOG_VIEW = "audit_log_view"
    TIER_MANAGEMENT = "tier_management"
    CAPABILITY_ASSIGNMENT = "capability_assignment"
    BILLING_MANAGEMENT = "billing_management"
    SALES_MANAGEMENT = "sales_management"
    PLATFORM_SETTINGS = "platform_settings"
    SUPPORT_ACCESS = "support_access"

    # Dealer capabilities
    LISTING_MANAGEMENT = "listing_management"
    LEAD_MANAGEMENT = "lead_management"
    INVENTORY_MANAGEMENT = "inventory_management"
    PRICING_MANAGEMENT = "pricing_management"


ADMIN_CAPABILITIES = frozenset(
    {
        Capability.USER_MANAGEMENT,
        Capability.CONTENT_MODERATION,
        Capability.FINANCIAL_ACCESS,
        Capability.SYSTEM_CONFIG,
        Capability.ANALYTICS_VIEW,
        Capability.AUDIT_LOG_VIEW,
        Capability.TIER_MANAGEMENT,
        Capability.CAPABILITY_ASSIGNMENT,
        Capability.BILLING_MANAGEMENT,
        Capability.SALES_MANAGEMENT,
        Capability.PLATFORM_SETTINGS,
        Capability.SUPPORT_ACCESS,
    }
)

DEALER_CAPABILITIES = frozenset(
    {
        Capability.LISTING_MANAGEMENT,
        Capability.LEAD_MANAGEMENT,
        Capability.INVENTORY_MANAGEMENT,
        Capability.PRICING_MANAGEMENT,
    }
)


class DealerAccountRole(Enum):
    """Role of a sub-account inside a dealer organization."""

    ADMIN = "admin"
    MANAGER = "manager"
    STAFF = "staff"


class DenyReason(Enum):
    """Reason attached to every denied decision."""

    TOKEN_INVALID = "token_invalid"
    TOKEN_EXPIRED = "token_expired"
    SESSION_REVOKED = "session_revoked"
    IDENTITY_NOT_FOUND = "identity_not_found"
    IP_NOT_ALLOWED = "ip_not_allowed"
    LOCKED = "locked"
    RATE_LIMITED = "rate_limited"
    INSUFFICIENT_ROLE = "insufficient_role"
    PERMISSION_NOT_GRANTED = "permission_not_granted"
    SCOPE_EXCEEDED = "scope_exceeded"
    STATUS_NOT_ACTIVE = "status_not_active"
    TEMPORARILY_UNAVAILABLE = "temporarily_unavailable"


AUTHENTICATION_REASONS = frozenset(
    {
        DenyReason.TOKEN_INVALID,
        DenyReason.TOKEN_EXPIRED,
        DenyReason.SESSION_REVOKED,
        DenyReason.IDENTITY_NOT_FOUND,
        DenyReason.IP_NOT_ALLOWED,
    }
)

AUTHORIZATION_REASONS = frozenset(
    {
        DenyReason.INSUFFICIENT_ROLE,
        DenyReason.PERMISSION_NOT_GRANTED,
        DenyReason.SCOPE_EXCEEDED,
        DenyReason.STATUS_NOT_ACTIVE,
    }
)

STATUS_CODES: dict[DenyReason, int] = {
    **{reason: 401 for reason in AUTHENTICATION_REASONS},
    **{reason: 403 for reason in AUTHORIZATION_REASONS},
    DenyReason.LOCKED: 423,
    DenyReason.RATE_LIMITED: 429,
    DenyReason.TEMPORARILY_UNAVAILABLE: 503,
}


class Outcome(Enum):
    """Gate outcome, also recorded on audit entries."""

    ALLOW = "allow"
    DENY = "deny"


class RouteClass(Enum):
    """Named rate-limit tiers used by the action table."""

    DEFAULT = "default"
    READ = "read"
    MUTATION = "mutation"
    UNAUTHENTICATED = "unauthenticated"


@dataclass(frozen=True)
class Resource:
    """Target of a privileged action."""

    type: str
    id: str | None = None

    def __str__(self) -> str:
        return f"{self.type}:{self.id}" if self.id is not None else self.type


# Resource types whose access is governed by a scope flag
SCOPE_AREAS = ("leads", "analytics", "inventory", "pricing", "financial")

_RESOURCE_AREAS = {
    "lead": "leads",
    "analytics": "analytics",
    "inventory": "inventory",
    "pricing": "pricing",
    "financial": "financial",
    "billing": "financial",
}


@dataclass(frozen=True)
class AccessScope:
    """
    Resource scope an identity may act within.

    ``listings`` is either the ``ALL_LISTINGS`` sentinel or a frozenset of
    listing IDs. Each flag opens one non-listing resource area.
    """

    listings: frozenset[str] | Literal["all"] = frozenset()
    leads: bool = False
    analytics: bool = False
    inventory: bool = False
    pricing: bool = False
    financial: bool = False

    @classmethod
    def full(cls) -> "AccessScope":
        return cls(
            listings=ALL_LISTINGS,
            leads=True,
            analytics=True,
            inventory=True,
            pricing=True,
            financial=True,
        )

    @classmethod
    def empty(cls) -> "AccessScope":
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AccessScope":
        listings = data.get("listings", frozenset())
        if listings != ALL_LISTINGS:
            listings = frozenset(str(item) for item in listings)
        return cls(
            listings=listings,
            **{area: bool(data.get(area, False)) for area in SCOPE_AREAS},
        )

    def to_dict(self) -> dict[str, Any]:
        listings = (
            ALL_LISTINGS if self.listings == ALL_LISTINGS else sorted(self.listings)
        )
        return {
            "listings": listings,
            **{area: getattr(self, area) for area in SCOPE_AREAS},
        }

    @property
    def all_listings(self) -> bool:
        return self.listings == ALL_LISTINGS

    def intersect(self, other: "AccessScope") -> "AccessScope":
        """Return the largest scope contained in both scopes."""
        if self.all_listings:
            listings = other.listings
        elif other.all_listings:
            listings = self.listings
        else:
            listings = self.listings & other.listings

        return AccessScope(
            listings=listings,
            **{
                area: getattr(self, area) and getattr(other, area)
                for area in SCOPE_AREAS
            },
        )

    def is_subset_of(self, other: "AccessScope") -> bool:
        if not other.all_listings:
            if self.all_listings or not self.listings <= other.listings:
                return False
        return all(
            getattr(other, area) or not getattr(self, area) for area in SCOPE_AREAS
        )

    def covers(self, area: str) -> bool:
        return bool(getattr(self, area))

    def allows(self, resource: Resource) -> bool:
        """Check whether ``resource`` falls inside this scope.

        A listing without an ID refers to the listing collection and is
        allowed when any listing is in scope. Resource types with no scope
        area are not constrained by the scope.
        """
        if resource.type == "listing":
            if self.all_listings:
                return True
            if resource.id is None:
                return bool(self.listings)
            return resource.id in self.listings

        area = _RESOURCE_AREAS.get(resource.type)
        if area is None:
            return True
        return self.covers(area)


@dataclass(frozen=True)
class DelegationInfo:
    """Link from a dealer sub-account to its parent dealer account."""

    parent_dealer_id: str
    dealer_account_role: DealerAccountRole
    delegated_permissions: frozenset[Capability] = frozenset()
    access_scope: AccessScope = field(default_factory=AccessScope)


@dataclass
class Identity:
    """An authenticated principal: platform user, staff member or sub-account."""

    id: str
    email: str
    role: Role = Role.USER
    status: IdentityStatus = IdentityStatus.ACTIVE
    permissions: frozenset[Capability] = frozenset()
    login_attempts: int = 0
    locked_until: datetime | None = None
    ip_whitelist: tuple[str, ...] = ()
    session_timeout: timedelta | None = None
    access_scope: AccessScope | None = None
    delegation: DelegationInfo | None = None

    @property
    def is_active(self) -> bool:
        return self.status is IdentityStatus.ACTIVE

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


@dataclass
class AuthSession:
    """Server-side session record referenced by the ``sid`` token claim."""

    session_id: str
    user_id: str
    device_id: str
    ip_address: str
    issued_at: datetime
    expires_at: datetime
    last_activity: datetime
    is_active: bool = True
    user_agent: str = ""
    role: Role | None = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class LoginAttempt:
    """Append-only record of a single authentication attempt."""

    email: str
    ip_address: str
    success: bool
    timestamp: datetime
    failure_reason: str | None = None
    user_agent: str = ""
    id: str = ""


@dataclass(frozen=True)
class AuditLog:
    """Immutable record of a privileged action or a denied attempt."""

    id: str
    user_id: str
    user_email: str
    action: str
    resource: str
    details: dict[str, Any]
    ip_address: str
    timestamp: datetime
    session_id: str | None = None
    resource_id: str | None = None
    outcome: Outcome = Outcome.ALLOW
    signature: str | None = None


@dataclass(frozen=True)
class RequestDescriptor:
    """Normalized, transport-independent view of one privileged request."""

    credential: str | None
    source_ip: str
    action: str
    resource: Resource
    now: datetime
    user_agent: str = ""
    request_id: str | None = None


@dataclass(frozen=True)
class ActionPolicy:
    """Static requirements of a named action."""

    capability: Capability
    allowed_roles: frozenset[Role]
    route_class: RouteClass = RouteClass.DEFAULT
    scope_area: str | None = None


@dataclass(frozen=True)
class EffectivePermissions:
    """Resolved capabilities and scope of an identity.

    ``scope`` of None means the identity is not scope restricted.
    """

    capabilities: frozenset[Capability]
    scope: AccessScope | None = None
    delegated: bool = False
    dealer_account_role: DealerAccountRole | None = None

    def has(self, capability: Capability) -> bool:
        return capability in self.capabilities


@dataclass(frozen=True)
class AuthorizationResult:
    allowed: bool
    reason: DenyReason | None = None
    detail: str = ""


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a single rate limit check."""

    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime
    route_class: str
    retry_after: timedelta | None = None


@dataclass(frozen=True)
class LockoutStatus:
    locked: bool
    locked_until: datetime | None = None
    retry_after: timedelta | None = None


@dataclass(frozen=True)
class Decision:
    """Final gate decision for a request."""

    outcome: Outcome
    identity: Identity | None = None
    session: AuthSession | None = None
    reason: DenyReason | None = None
    retry_after: timedelta | None = None
    audit_id: str | None = None
    detail: str = ""

    @classmethod
    def allow(
        cls, identity: Identity, session: AuthSession, audit_id: str
    ) -> "Decision":
        return cls(
            outcome=Outcome.ALLOW, identity=identity, session=session, audit_id=audit_id
        )

    @classmethod
    def deny(
        cls,
        reason: DenyReason,
        *,
        identity: Identity | None = None,
        session: AuthSession | None = None,
        retry_after: timedelta | None = None,
        audit_id: str | None = None,
        detail: str = "",
    ) -> "Decision":
        return cls(
            outcome=Outcome.DENY,
            identity=identity,
            session=session,
            reason=reason,
            retry_after=retry_after,
            audit_id=audit_id,
            detail=detail,
        )

    @property
    def allowed(self) -> bool:
        return self.outcome is Outcome.ALLOW

    @property
    def status_code(self) -> int:
        if self.allowed:
            return 200
        return STATUS_CODES[self.reason]
