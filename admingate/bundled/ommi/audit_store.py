"""
Ommi-backed store for durable audit trails.

Audit entries and login attempts are persisted through Ommi. Identities,
sessions, rate windows and lock state are served by a delegate store, which
keeps the transient, high-frequency counters out of the audit database.
"""

import json
import logging
from datetime import datetime
from typing import Any

from ommi import Ommi

from admingate.bundled.memory import MemoryAdminStore
from admingate.exceptions import StoreError
from admingate.store import AdminStore
from admingate.types import AuditLog, AuthSession, Identity, LoginAttempt, Outcome

from .models import AuditLogModel, LoginAttemptModel

logger = logging.getLogger(__name__)


class OmmiAuditStore(AdminStore):
    """AdminStore that persists audit logs and login attempts with Ommi."""

    def _validate_config(self, config: dict[str, Any]) -> None:
        if "database" not in config or config["database"] is None:
            raise ValueError("Ommi audit store requires a 'database' Ommi instance")

    def __init__(self, config: dict[str, Any]):
        """
        Initialize the Ommi audit store.

        Args:
            config: Configuration dictionary containing:
                - database: Connected Ommi instance (required)
                - delegate: AdminStore for identities, sessions and counters
                  (default: a new MemoryAdminStore)
        """
        super().__init__(config)
        self.database: Ommi = config["database"]
        self.delegate: AdminStore = config.get("delegate") or MemoryAdminStore()

    # Delegated operations

    async def get_identity(self, identity_id: str) -> Identity | None:
        return await self.delegate.get_identity(identity_id)

    async def get_identity_by_email(self, email: str) -> Identity | None:
        return await self.delegate.get_identity_by_email(email)

    async def put_identity(self, identity: Identity) -> None:
        await self.delegate.put_identity(identity)

    async def compare_and_set_lock(
        self,
        identity_id: str,
        expected_attempts: int,
        new_attempts: int,
        new_locked_until: datetime | None,
    ) -> bool:
        return await self.delegate.compare_and_set_lock(
            identity_id, expected_attempts, new_attempts, new_locked_until
        )

    async def get_session(self, session_id: str) -> AuthSession | None:
        return await self.delegate.get_session(session_id)

    async def create_session(self, session: AuthSession) -> None:
        await self.delegate.create_session(session)

    async def update_session(self, session: AuthSession) -> None:
        await self.delegate.update_session(session)

    async def list_user_sessions(self, user_id: str) -> list[AuthSession]:
        return await self.delegate.list_user_sessions(user_id)

    async def touch_session(self, session_id: str, now: datetime) -> bool:
        return await self.delegate.touch_session(session_id, now)

    async def block_ip(self, ip_address: str, blocked_until: datetime) -> None:
        await self.delegate.block_ip(ip_address, blocked_until)

    async def unblock_ip(self, ip_address: str) -> bool:
        return await self.delegate.unblock_ip(ip_address)

    async def get_ip_block(self, ip_address: str, now: datetime) -> datetime | None:
        return await self.delegate.get_ip_block(ip_address, now)

    async def conditional_increment(
        self, key: str, limit: int, window_id: int, expires_at: datetime
    ) -> tuple[bool, int]:
        return await self.delegate.conditional_increment(
            key, limit, window_id, expires_at
        )

    # Audit entries

    async def append_audit_log(self, entry: AuditLog) -> None:
        try:
            existing = await self.database.find(
                AuditLogModel.entry_id == entry.id
            ).count().or_raise()
            if existing > 0:
                raise StoreError(f"Audit entry '{entry.id}' already exists")

            result = await self.database.add(
                AuditLogModel(
                    entry_id=entry.id,
                    user_id=entry.user_id,
                    user_email=entry.user_email,
                    action=entry.action,
                    resource=entry.resource,
                    ip_address=entry.ip_address,
                    timestamp=entry.timestamp.isoformat(),
                    outcome=entry.outcome.value,
                    details=json.dumps(entry.details, default=str),
                    resource_id=entry.resource_id,
                    session_id=entry.session_id,
                    signature=entry.signature,
                )
            )
            await result.or_raise()
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"Failed to persist audit entry: {e}") from e

    async def query_audit_logs(
        self,
        user_id: str | None = None,
        action: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[AuditLog]:
        conditions = []
        if user_id is not None:
            conditions.append(AuditLogModel.user_id == user_id)
        if action is not None:
            conditions.append(AuditLogModel.action == action)

        try:
            result = await self.database.find(*(conditions or [AuditLogModel])).all()
            models = await result.or_raise()

            entries = []
            async for model in models:
                entry = _audit_log_from_model(model)
                if start is not None and entry.timestamp < start:
                    continue
                if end is not None and entry.timestamp > end:
                    continue
                entries.append(entry)
        except Exception as e:
            raise StoreError(f"Failed to query audit entries: {e}") from e

        return sorted(entries, key=lambda entry: entry.timestamp)

    # Login attempts

    async def append_login_attempt(self, attempt: LoginAttempt) -> None:
        try:
            result = await self.database.add(
                LoginAttemptModel(
                    attempt_id=attempt.id,
                    email=attempt.email.lower(),
                    ip_address=attempt.ip_address,
                    success=attempt.success,
                    timestamp=attempt.timestamp.isoformat(),
                    failure_reason=attempt.failure_reason,
                    user_agent=attempt.user_agent,
                )
            )
            await result.or_raise()
        except Exception as e:
            raise StoreError(f"Failed to persist login attempt: {e}") from e

    async def list_login_attempts(
        self, email: str, since: datetime | None = None
    ) -> list[LoginAttempt]:
        try:
            result = await self.database.find(
                LoginAttemptModel.email == email.lower()
            ).all()
            models = await result.or_raise()

            attempts = []
            async for model in models:
                attempt = LoginAttempt(
                    id=model.attempt_id,
                    email=model.email,
                    ip_address=model.ip_address,
                    success=model.success,
                    timestamp=datetime.fromisoformat(model.timestamp),
                    failure_reason=model.failure_reason,
                    user_agent=model.user_agent,
                )
                if since is None or attempt.timestamp >= since:
                    attempts.append(attempt)
        except Exception as e:
            raise StoreError(f"Failed to query login attempts: {e}") from e

        return sorted(attempts, key=lambda attempt: attempt.timestamp)


def _audit_log_from_model(model: AuditLogModel) -> AuditLog:
    return AuditLog(
        id=model.entry_id,
        user_id=model.user_id,
        user_email=model.user_email,
        action=model.action,
        resource=model.resource,
        resource_id=model.resource_id,
        details=json.loads(model.details) if model.details else {},
        ip_address=model.ip_address,
        timestamp=datetime.fromisoformat(model.timestamp),
        session_id=model.session_id,
        outcome=Outcome(model.outcome),
        signature=model.signature,
    )
