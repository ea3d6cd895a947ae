"""Admin gate configuration: Pydantic schema and YAML loader."""

from .loader import AdminGateConfigLoader
from .schema import (
    AdminGateConfig,
    AuditSettings,
    GateConfig,
    LockoutConfig,
    RateLimitsConfig,
    SessionConfig,
    StoreConfig,
)

__all__ = [
    "AdminGateConfig",
    "AdminGateConfigLoader",
    "AuditSettings",
    "GateConfig",
    "LockoutConfig",
    "RateLimitsConfig",
    "SessionConfig",
    "StoreConfig",
]
