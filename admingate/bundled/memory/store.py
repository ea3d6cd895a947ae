"""Thread-safe in-memory store implementations with expiry support."""

import copy
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from threading import RLock
from typing import Any, Dict, Iterator, Optional

from admingate.exceptions import StoreError
from admingate.store import AdminStore, later_lock
from admingate.types import AuditLog, AuthSession, Identity, LoginAttempt


class TTLEntry:
    """Entry in the store with expiration tracking against an explicit clock."""

    def __init__(self, value: Any, expires_at: Optional[datetime] = None):
        """Initialize entry.

        Args:
            value: The stored value
            expires_at: Instant after which the entry is gone, None for never
        """
        self.value = value
        self.expires_at = expires_at

    def is_expired(self, now: Optional[datetime]) -> bool:
        """Check if entry has expired at ``now``."""
        if self.expires_at is None or now is None:
            return False
        return now >= self.expires_at


class MemoryStore:
    """Thread-safe in-memory key-value store with expiry support.

    This store provides:
    - Thread-safe operations using RLock
    - Expiry evaluated lazily against the caller's clock
    - Namespace support for different record types
    """

    def __init__(self):
        self._data: Dict[str, Dict[str, TTLEntry]] = defaultdict(dict)
        self._lock = RLock()

    @property
    def lock(self) -> RLock:
        """Lock guarding every namespace, for multi-step atomic updates."""
        return self._lock

    def set(
        self,
        namespace: str,
        key: str,
        value: Any,
        expires_at: Optional[datetime] = None,
    ) -> None:
        with self._lock:
            self._data[namespace][key] = TTLEntry(value, expires_at)

    def get(
        self, namespace: str, key: str, now: Optional[datetime] = None
    ) -> Optional[Any]:
        """Get a value from the store.

        Args:
            namespace: Namespace to look in
            key: Key to retrieve
            now: Clock used for expiry, None to ignore expiry

        Returns:
            Value if found and not expired, None otherwise
        """
        with self._lock:
            if namespace not in self._data:
                return None

            entry = self._data[namespace].get(key)
            if entry is None:
                return None

            if entry.is_expired(now):
                del self._data[namespace][key]
                return None

            return entry.value

    def exists(self, namespace: str, key: str) -> bool:
        with self._lock:
            return key in self._data.get(namespace, {})

    def delete(self, namespace: str, key: str) -> bool:
        with self._lock:
            if key in self._data.get(namespace, {}):
                del self._data[namespace][key]
                return True
            return False

    def values(self, namespace: str) -> Iterator[Any]:
        """Iterate over a snapshot of the values in a namespace, in insertion order."""
        with self._lock:
            snapshot = [entry.value for entry in self._data.get(namespace, {}).values()]
        return iter(snapshot)

    def purge_expired(self, now: datetime) -> int:
        """Remove expired entries from all namespaces.

        Returns:
            Number of entries removed
        """
        cleaned_count = 0
        with self._lock:
            for namespace_data in self._data.values():
                expired_keys = [
                    key for key, entry in namespace_data.items() if entry.is_expired(now)
                ]
                for key in expired_keys:
                    del namespace_data[key]
                    cleaned_count += 1
        return cleaned_count

    def size(self, namespace: str) -> int:
        with self._lock:
            return len(self._data.get(namespace, {}))


class MemoryAdminStore(AdminStore):
    """
    In-memory AdminStore for tests and single-process deployments.

    All compound operations run under the store's RLock, which makes
    conditional increments and lock compare-and-set atomic within the process.
    """

    IDENTITIES = "identities"
    SESSIONS = "sessions"
    RATE_WINDOWS = "rate_windows"
    AUDIT_LOGS = "audit_logs"
    LOGIN_ATTEMPTS = "login_attempts"
    IP_BLOCKS = "ip_blocks"

    def __init__(self, config: dict[str, Any] | None = None):
        super().__init__(config)
        self._store = MemoryStore()

    @property
    def memory(self) -> MemoryStore:
        return self._store

    async def get_identity(self, identity_id: str) -> Identity | None:
        identity = self._store.get(self.IDENTITIES, identity_id)
        return replace(identity) if identity else None

    async def get_identity_by_email(self, email: str) -> Identity | None:
        email = email.lower()
        for identity in self._store.values(self.IDENTITIES):
            if identity.email.lower() == email:
                return replace(identity)
        return None

    async def put_identity(self, identity: Identity) -> None:
        self._store.set(self.IDENTITIES, identity.id, replace(identity))

    async def compare_and_set_lock(
        self,
        identity_id: str,
        expected_attempts: int,
        new_attempts: int,
        new_locked_until: datetime | None,
    ) -> bool:
        with self._store.lock:
            identity = self._store.get(self.IDENTITIES, identity_id)
            if identity is None:
                raise StoreError(f"Identity '{identity_id}' does not exist")

            if identity.login_attempts != expected_attempts:
                return False

            locked_until = later_lock(identity.locked_until, new_locked_until)

            self._store.set(
                self.IDENTITIES,
                identity_id,
                replace(identity, login_attempts=new_attempts, locked_until=locked_until),
            )
            return True

    async def get_session(self, session_id: str) -> AuthSession | None:
        session = self._store.get(self.SESSIONS, session_id)
        return replace(session) if session else None

    async def create_session(self, session: AuthSession) -> None:
        with self._store.lock:
            if self._store.exists(self.SESSIONS, session.session_id):
                raise StoreError(f"Session '{session.session_id}' already exists")
            self._store.set(self.SESSIONS, session.session_id, replace(session))

    async def update_session(self, session: AuthSession) -> None:
        with self._store.lock:
            if not self._store.exists(self.SESSIONS, session.session_id):
                raise StoreError(f"Session '{session.session_id}' does not exist")
            self._store.set(self.SESSIONS, session.session_id, replace(session))

    async def list_user_sessions(self, user_id: str) -> list[AuthSession]:
        return [
            replace(session)
            for session in self._store.values(self.SESSIONS)
            if session.user_id == user_id
        ]

    async def touch_session(self, session_id: str, now: datetime) -> bool:
        with self._store.lock:
            session = self._store.get(self.SESSIONS, session_id)
            if session is None or not session.is_active:
                return False
            self._store.set(self.SESSIONS, session_id, replace(session, last_activity=now))
            return True

    async def block_ip(self, ip_address: str, blocked_until: datetime) -> None:
        self._store.set(self.IP_BLOCKS, ip_address, blocked_until, blocked_until)

    async def unblock_ip(self, ip_address: str) -> bool:
        return self._store.delete(self.IP_BLOCKS, ip_address)

    async def get_ip_block(self, ip_address: str, now: datetime) -> datetime | None:
        return self._store.get(self.IP_BLOCKS, ip_address, now)

    async def conditional_increment(
        self, key: str, limit: int, window_id: int, expires_at: datetime
    ) -> tuple[bool, int]:
        with self._store.lock:
            current = self._store.get(self.RATE_WINDOWS, key)
            count = current[1] if current and current[0] == window_id else 0

            if count >= limit:
                return False, count

            count += 1
            self._store.set(self.RATE_WINDOWS, key, (window_id, count), expires_at)
            return True, count

    async def append_audit_log(self, entry: AuditLog) -> None:
        with self._store.lock:
            if self._store.exists(self.AUDIT_LOGS, entry.id):
                raise StoreError(f"Audit entry '{entry.id}' already exists")
            self._store.set(self.AUDIT_LOGS, entry.id, _detached(entry))

    async def query_audit_logs(
        self,
        user_id: str | None = None,
        action: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[AuditLog]:
        entries = [
            _detached(entry)
            for entry in self._store.values(self.AUDIT_LOGS)
            if (user_id is None or entry.user_id == user_id)
            and (action is None or entry.action == action)
            and (start is None or entry.timestamp >= start)
            and (end is None or entry.timestamp <= end)
        ]
        # sorted() is stable, so entries with equal timestamps keep append order
        return sorted(entries, key=lambda entry: entry.timestamp)

    async def append_login_attempt(self, attempt: LoginAttempt) -> None:
        with self._store.lock:
            key = attempt.id or str(self._store.size(self.LOGIN_ATTEMPTS))
            if self._store.exists(self.LOGIN_ATTEMPTS, key):
                raise StoreError(f"Login attempt '{key}' already exists")
            self._store.set(self.LOGIN_ATTEMPTS, key, attempt)

    async def list_login_attempts(
        self, email: str, since: datetime | None = None
    ) -> list[LoginAttempt]:
        email = email.lower()
        attempts = [
            attempt
            for attempt in self._store.values(self.LOGIN_ATTEMPTS)
            if attempt.email.lower() == email
            and (since is None or attempt.timestamp >= since)
        ]
        return sorted(attempts, key=lambda attempt: attempt.timestamp)

    def purge_expired(self, now: datetime) -> int:
        """Drop expired rate windows and IP blocks. Correctness never depends on calling this."""
        return self._store.purge_expired(now)


def _detached(entry: AuditLog) -> AuditLog:
    """Copy an audit entry so no caller shares its details mapping."""
    return replace(entry, details=copy.deepcopy(entry.details))
