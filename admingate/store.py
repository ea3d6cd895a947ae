"""
AdminStore interface for the admin authorization gate.

The store is the only place shared state lives. Every component is stateless
apart from its configuration and a store reference, so atomicity for counters,
lock transitions and audit appends is delegated to the store operations
declared here.

Concurrency requirements:
- conditional_increment MUST be atomic per key
- compare_and_set_lock MUST be atomic per identity
- touch_session MUST NOT reactivate a session revoked concurrently
- append_audit_log MUST be durable before it returns
- Stores MUST raise StoreError for connectivity and timeout failures
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from .types import AuditLog, AuthSession, Identity, LoginAttempt


def later_lock(current: datetime | None, new: datetime | None) -> datetime | None:
    """Return the later of two lock instants, treating None as no lock."""
    if current is None:
        return new
    if new is None:
        return current
    return max(current, new)


class AdminStore(ABC):
    """
    Abstract base class for admin gate persistence.

    Implementations hand out copies of stored records; mutating a returned
    record never changes stored state without an explicit write.
    """

    def __init__(self, config: dict[str, Any] | None = None):
        """
        Initialize the store.

        Args:
            config: Backend specific configuration
        """
        self.config = (config or {}).copy()
        self._validate_config(self.config)

    def _validate_config(self, config: dict[str, Any]) -> None:
        """Validate backend configuration. Raises ValueError when invalid."""
        pass

    # Identities

    @abstractmethod
    async def get_identity(self, identity_id: str) -> Identity | None:
        """Return the identity with ``identity_id`` or None."""
        pass

    @abstractmethod
    async def get_identity_by_email(self, email: str) -> Identity | None:
        pass

    @abstractmethod
    async def put_identity(self, identity: Identity) -> None:
        """Create or replace an identity record."""
        pass

    @abstractmethod
    async def compare_and_set_lock(
        self,
        identity_id: str,
        expected_attempts: int,
        new_attempts: int,
        new_locked_until: datetime | None,
    ) -> bool:
        """
        Atomically update lockout state.

        The write succeeds only while the stored ``login_attempts`` equals
        ``expected_attempts``. ``locked_until`` only ever moves forward: the
        stored value becomes the later of the stored and the new instant
        (see ``later_lock``).

        Returns:
            True if the write was applied, False on a conflicting update
        """
        pass

    # Sessions

    @abstractmethod
    async def get_session(self, session_id: str) -> AuthSession | None:
        pass

    @abstractmethod
    async def create_session(self, session: AuthSession) -> None:
        pass

    @abstractmethod
    async def update_session(self, session: AuthSession) -> None:
        """Replace the stored session record with ``session``."""
        pass

    @abstractmethod
    async def list_user_sessions(self, user_id: str) -> list[AuthSession]:
        pass

    @abstractmethod
    async def touch_session(self, session_id: str, now: datetime) -> bool:
        """
        Atomically set ``last_activity`` of an active session to ``now``.

        Only ``last_activity`` is written, and only while the stored session
        is still active, so a concurrent revocation is never undone.

        Returns:
            True if the session was touched, False if it is missing or inactive
        """
        pass

    # IP blocks

    @abstractmethod
    async def block_ip(self, ip_address: str, blocked_until: datetime) -> None:
        """Block ``ip_address`` until ``blocked_until``, replacing any earlier block."""
        pass

    @abstractmethod
    async def unblock_ip(self, ip_address: str) -> bool:
        """Lift a block. Returns False if the address was not blocked."""
        pass

    @abstractmethod
    async def get_ip_block(self, ip_address: str, now: datetime) -> datetime | None:
        """Return the end of the block on ``ip_address`` in effect at ``now``."""
        pass

    # Rate windows

    @abstractmethod
    async def conditional_increment(
        self, key: str, limit: int, window_id: int, expires_at: datetime
    ) -> tuple[bool, int]:
        """
        Atomically increment the counter of ``key`` in ``window_id``.

        The counter is incremented only while it is below ``limit``. A counter
        stored for an older window is treated as zero.

        Returns:
            Tuple of (incremented, count after the operation)
        """
        pass

    # Audit

    @abstractmethod
    async def append_audit_log(self, entry: AuditLog) -> None:
        """
        Durably append an audit entry.

        Raises:
            StoreError: If the entry could not be written or its ID exists
        """
        pass

    @abstractmethod
    async def query_audit_logs(
        self,
        user_id: str | None = None,
        action: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[AuditLog]:
        """Return matching entries ordered by timestamp."""
        pass

    # Login attempts

    @abstractmethod
    async def append_login_attempt(self, attempt: LoginAttempt) -> None:
        pass

    @abstractmethod
    async def list_login_attempts(
        self, email: str, since: datetime | None = None
    ) -> list[LoginAttempt]:
        """Return attempts for ``email`` at or after ``since``, oldest first."""
        pass
