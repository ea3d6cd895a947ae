"""
Ommi models for durable admin gate records.

Audit entries and login attempts are append-only and must outlive the
process, so they are persisted through Ommi. Datetimes are stored as ISO 8601
strings and structured fields as JSON strings.
"""

from dataclasses import dataclass
from typing import Annotated

from ommi import Key, ommi_model
from ommi.models.collections import ModelCollection

admin_gate_collection = ModelCollection()


@ommi_model(collection=admin_gate_collection)
@dataclass
class AuditLogModel:
    """Audit entry storage model for Ommi."""

    entry_id: str
    user_id: str
    user_email: str
    action: str
    resource: str
    ip_address: str
    timestamp: str  # ISO format datetime
    outcome: str
    details: str = "{}"  # JSON string
    resource_id: str | None = None
    session_id: str | None = None
    signature: str | None = None
    id: Annotated[int, Key] = None  # Auto-generated primary key


@ommi_model(collection=admin_gate_collection)
@dataclass
class LoginAttemptModel:
    """Login attempt storage model for Ommi."""

    attempt_id: str
    email: str
    ip_address: str
    success: bool
    timestamp: str  # ISO format datetime
    failure_reason: str | None = None
    user_agent: str = ""
    id: Annotated[int, Key] = None  # Auto-generated primary key
