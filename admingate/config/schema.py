"""Configuration schema models using Pydantic."""

from __future__ import annotations

import re
from datetime import timedelta
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ..utils import ACTOR_KEY_STRATEGIES, parse_limit_string

SUPPORTED_ALGORITHMS = (
    "HS256",
    "HS384",
    "HS512",
    "RS256",
    "RS384",
    "RS512",
    "ES256",
    "ES384",
    "ES512",
)


class SessionConfig(BaseModel):
    """Session validation configuration."""

    secret_key: str = Field(..., description="Key used to verify token signatures")
    algorithm: str = Field("HS256", description="JWT signing algorithm")
    issuer: Optional[str] = Field(None, description="Expected token issuer")
    audience: Optional[str] = Field(None, description="Expected token audience")
    default_session_ttl: timedelta = Field(
        timedelta(hours=24), description="Lifetime of newly created sessions"
    )
    bind_device: bool = Field(
        True, description="Reject tokens whose device_id differs from the session"
    )
    bind_session_ip: bool = Field(
        False, description="Reject requests from an IP other than the session's"
    )
    max_concurrent_sessions: Optional[int] = Field(
        5, description="Active sessions per user before the oldest is revoked"
    )
    max_staff_sessions: Optional[int] = Field(
        2, description="Active sessions per staff member before the oldest is revoked"
    )
    blocked_ip_ranges: list[str] = Field(
        default_factory=list, description="Addresses and CIDR ranges always rejected"
    )
    ip_block_duration: timedelta = Field(
        timedelta(hours=1), description="Default duration of a dynamic IP block"
    )

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, v):
        if not v:
            raise ValueError("Session secret key cannot be empty")
        return v

    @field_validator("algorithm")
    @classmethod
    def validate_algorithm(cls, v):
        if v not in SUPPORTED_ALGORITHMS:
            raise ValueError(f"Unsupported JWT algorithm: {v}")
        return v

    @field_validator("default_session_ttl", "ip_block_duration")
    @classmethod
    def validate_ttl(cls, v):
        if v <= timedelta(0):
            raise ValueError("Duration must be positive")
        return v

    @field_validator("max_concurrent_sessions", "max_staff_sessions")
    @classmethod
    def validate_session_limit(cls, v):
        if v is not None and v < 1:
            raise ValueError("Session limit must be at least 1")
        return v


class LockoutConfig(BaseModel):
    """Failed login lockout policy."""

    max_failed_attempts: int = Field(
        5, description="Consecutive failures that trigger a lock"
    )
    attempt_window: timedelta = Field(
        timedelta(minutes=15), description="Rolling window failures are counted in"
    )
    lockout_duration: timedelta = Field(
        timedelta(minutes=30), description="How long a triggered lock lasts"
    )
    max_cas_retries: int = Field(
        5, description="Retries on a conflicting lock state update"
    )

    @field_validator("max_failed_attempts", "max_cas_retries")
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @field_validator("attempt_window", "lockout_duration")
    @classmethod
    def validate_duration(cls, v):
        if v <= timedelta(0):
            raise ValueError("Duration must be positive")
        return v


class RateLimitsConfig(BaseModel):
    """Fixed window rate limits per route class."""

    route_classes: Dict[str, str] = Field(
        default_factory=lambda: {
            "default": "60/min",
            "read": "300/min",
            "mutation": "60/min",
            "unauthenticated": "20/min",
        },
        description="Limit strings such as '100/min' keyed by route class",
    )
    actor_key_strategy: str = Field(
        "user", description="How authenticated actors are keyed: user, ip, user_ip"
    )
    unauthenticated_route_class: str = Field(
        "unauthenticated",
        description="Route class charged for requests that fail authentication",
    )

    @field_validator("route_classes")
    @classmethod
    def validate_route_classes(cls, v):
        for route_class, limit_str in v.items():
            try:
                parse_limit_string(limit_str)
            except ValueError as e:
                raise ValueError(f"Route class '{route_class}': {e}") from e
        if "default" not in v:
            raise ValueError("A 'default' route class is required")
        return v

    @field_validator("actor_key_strategy")
    @classmethod
    def validate_strategy(cls, v):
        if v not in ACTOR_KEY_STRATEGIES:
            raise ValueError(
                f"Actor key strategy must be one of {', '.join(ACTOR_KEY_STRATEGIES)}"
            )
        return v


class AuditSettings(BaseModel):
    """Audit recorder configuration."""

    signing_key: Optional[str] = Field(
        None, description="HMAC key for audit entry signatures"
    )
    max_details_size: int = Field(
        65536, description="Maximum serialized size of entry details in bytes"
    )
    mask_sensitive_details: bool = Field(
        True, description="Mask secrets in entry details"
    )

    @field_validator("max_details_size")
    @classmethod
    def validate_details_size(cls, v):
        if v < 256:
            raise ValueError("Maximum details size must be at least 256 bytes")
        return v


class GateConfig(BaseModel):
    """Authorization gate configuration."""

    timeout_seconds: float = Field(
        5.0, description="Deadline for a single authorization decision"
    )
    trusted_proxies: list[str] = Field(
        default_factory=list, description="Proxies whose forwarding headers are trusted"
    )

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, v):
        if v <= 0:
            raise ValueError("Timeout must be positive")
        return v


class StoreConfig(BaseModel):
    """Store backend selection."""

    backend: str = Field("memory", description="Backend name or import path")
    config: Dict[str, Any] = Field(
        default_factory=dict, description="Backend specific configuration"
    )

    @field_validator("backend")
    @classmethod
    def validate_backend_spec(cls, v):
        if not v:
            raise ValueError("Store backend cannot be empty")

        # Simple name (bundled): alphanumeric, underscores, hyphens
        # Import path (external): module.path:ClassName
        if not re.match(
            r"^([a-zA-Z_][a-zA-Z0-9_-]*|[a-zA-Z_][a-zA-Z0-9_]*(?:\.[a-zA-Z_][a-zA-Z0-9_]*)*:[a-zA-Z_][a-zA-Z0-9_]*)$",
            v,
        ):
            raise ValueError(
                "Store backend must be a simple name (e.g., 'memory') or import path (e.g., 'module.path:ClassName')"
            )
        return v


class AdminGateConfig(BaseModel):
    """Main admin gate configuration."""

    session: SessionConfig = Field(..., description="Session validation settings")
    lockout: LockoutConfig = Field(default_factory=LockoutConfig)
    rate_limits: RateLimitsConfig = Field(default_factory=RateLimitsConfig)
    audit: AuditSettings = Field(default_factory=AuditSettings)
    gate: GateConfig = Field(default_factory=GateConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)

    @model_validator(mode="after")
    def validate_unauthenticated_route_class(self):
        route_class = self.rate_limits.unauthenticated_route_class
        if route_class not in self.rate_limits.route_classes:
            raise ValueError(
                f"Unauthenticated route class '{route_class}' has no configured limit"
            )
        return self
