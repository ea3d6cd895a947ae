"""Ommi-backed durable audit store. Requires the ``ommi`` package."""

from .audit_store import OmmiAuditStore
from .models import AuditLogModel, LoginAttemptModel, admin_gate_collection

__all__ = [
    "AuditLogModel",
    "LoginAttemptModel",
    "OmmiAuditStore",
    "admin_gate_collection",
]
