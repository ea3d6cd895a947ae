"""
Audit recording for privileged actions.

Every allowed privileged action and every denied attempt past session
validation produces exactly one immutable audit entry. Entries are appended
to the store before ``record`` returns; a failed append raises
AuditWriteFailed and is never swallowed.

When a signing key is configured each entry carries an HMAC-SHA256
signature over its canonical JSON form, which makes later modification
detectable with ``verify``.
"""

import copy
import hashlib
import hmac
import json
import logging
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any

from .config.schema import AuditSettings
from .exceptions import AuditError, AuditWriteFailed
from .store import AdminStore
from .types import AuditLog, DenyReason, Outcome, Resource
from .utils import mask_sensitive_data, secure_compare

logger = logging.getLogger(__name__)


class AuditRecorder:
    """Appends signed audit entries and queries the audit trail."""

    def __init__(self, store: AdminStore, config: AuditSettings | None = None):
        self.store = store
        self.config = config or AuditSettings()

    async def record(
        self,
        user_id: str,
        user_email: str,
        action: str,
        resource: Resource,
        ip_address: str,
        timestamp: datetime,
        details: dict[str, Any] | None = None,
        session_id: str | None = None,
        outcome: Outcome = Outcome.ALLOW,
    ) -> AuditLog:
        """
        Durably append an audit entry.

        Args:
            user_id: Acting identity
            user_email: Email of the acting identity
            action: Action name
            resource: Target of the action
            ip_address: Source address of the request
            timestamp: Instant of the action
            details: Additional structured context, masked before storage
            session_id: Session the action was performed in
            outcome: Whether the action was allowed or denied

        Returns:
            The stored entry, including its ID and signature

        Raises:
            AuditWriteFailed: If the store did not accept the entry
        """
        entry = AuditLog(
            id=str(uuid.uuid4()),
            user_id=user_id,
            user_email=user_email,
            action=action,
            resource=resource.type,
            resource_id=resource.id,
            details=self._prepare_details(details or {}),
            ip_address=ip_address,
            timestamp=timestamp,
            session_id=session_id,
            outcome=outcome,
        )
        if self.config.signing_key:
            entry = replace(entry, signature=self.sign(entry))

        try:
            await self.store.append_audit_log(entry)
        except Exception as e:
            logger.warning(f"Failed to append audit entry for action '{action}': {e}")
            raise AuditWriteFailed(
                f"Failed to write audit entry: {e}",
                {"action": action, "user_id": user_id},
            ) from e

        return entry

    async def record_denial(
        self,
        user_id: str,
        user_email: str,
        action: str,
        resource: Resource,
        ip_address: str,
        timestamp: datetime,
        reason: DenyReason,
        details: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> AuditLog:
        """Record a denied attempt; the denial reason is stored in the details."""
        return await self.record(
            user_id=user_id,
            user_email=user_email,
            action=action,
            resource=resource,
            ip_address=ip_address,
            timestamp=timestamp,
            details={**(details or {}), "reason": reason.value},
            session_id=session_id,
            outcome=Outcome.DENY,
        )

    async def query(
        self,
        user_id: str | None = None,
        action: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[AuditLog]:
        """Return matching entries in non-decreasing timestamp order."""
        entries = await self.store.query_audit_logs(
            user_id=user_id, action=action, start=start, end=end
        )
        entries = sorted(entries, key=lambda entry: entry.timestamp)
        return entries[:limit] if limit is not None else entries

    def sign(self, entry: AuditLog) -> str:
        if not self.config.signing_key:
            raise AuditError("No audit signing key configured")
        return hmac.new(
            self.config.signing_key.encode("utf-8"),
            _canonical_body(entry),
            hashlib.sha256,
        ).hexdigest()

    def verify(self, entry: AuditLog) -> bool:
        """Check an entry's signature. Unsigned entries never verify."""
        if entry.signature is None:
            return False
        return secure_compare(self.sign(entry), entry.signature)

    def _prepare_details(self, details: dict[str, Any]) -> dict[str, Any]:
        details = copy.deepcopy(details)
        if self.config.mask_sensitive_details:
            details = mask_sensitive_data(details)

        serialized = json.dumps(details, sort_keys=True, default=str)
        if len(serialized) > self.config.max_details_size:
            return {
                "_truncated": True,
                "preview": serialized[: self.config.max_details_size - 128],
            }
        return details


def _canonical_body(entry: AuditLog) -> bytes:
    body = {
        "id": entry.id,
        "user_id": entry.user_id,
        "user_email": entry.user_email,
        "action": entry.action,
        "resource": entry.resource,
        "resource_id": entry.resource_id,
        "details": entry.details,
        "ip_address": entry.ip_address,
        "timestamp": entry.timestamp.isoformat(),
        "session_id": entry.session_id,
        "outcome": entry.outcome.value,
    }
    return json.dumps(
        body, sort_keys=True, separators=(",", ":"), default=str
    ).encode("utf-8")
