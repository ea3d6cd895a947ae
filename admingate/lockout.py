"""
Login attempt tracking and temporary account lockout.

Every authentication attempt is appended to the attempt log. Consecutive
failures inside the rolling attempt window lock the account for a fixed
duration. Lock state lives on the identity record and is only ever written
through the store's compare-and-set, so concurrent failures produce at most
one lock transition.
"""

import logging
import uuid
from datetime import datetime

from .config.schema import LockoutConfig
from .exceptions import LockoutError, StoreError
from .store import AdminStore
from .types import Identity, LockoutStatus, LoginAttempt

logger = logging.getLogger(__name__)


class LockoutTracker:
    """Records login attempts and enforces temporary lockout."""

    def __init__(self, store: AdminStore, config: LockoutConfig | None = None):
        self.store = store
        self.config = config or LockoutConfig()

    async def record_attempt(
        self,
        email: str,
        ip_address: str,
        success: bool,
        now: datetime,
        failure_reason: str | None = None,
        user_agent: str = "",
    ) -> LoginAttempt:
        """
        Append a login attempt and update the account's lock state.

        Args:
            email: Email the attempt was made for
            ip_address: Source address of the attempt
            success: Whether the credential check passed
            now: Instant of the attempt
            failure_reason: Short reason for failed attempts
            user_agent: Client user agent

        Returns:
            The recorded attempt

        Raises:
            StoreError: If the lock state could not be written
        """
        attempt = LoginAttempt(
            id=str(uuid.uuid4()),
            email=email,
            ip_address=ip_address,
            success=success,
            timestamp=now,
            failure_reason=None if success else failure_reason,
            user_agent=user_agent,
        )
        await self.store.append_login_attempt(attempt)

        identity = await self.store.get_identity_by_email(email)
        if identity is None:
            return attempt

        for _ in range(self.config.max_cas_retries):
            if await self._update_lock_state(identity, success, now):
                return attempt
            identity = await self.store.get_identity(identity.id)
            if identity is None:
                return attempt

        logger.warning(
            f"Gave up updating lock state for user {identity.id} after "
            f"{self.config.max_cas_retries} conflicting writes"
        )
        raise StoreError(f"Lock state for user {identity.id} is under contention")

    def check_lockout(self, identity: Identity, now: datetime) -> LockoutStatus:
        """Report whether ``identity`` is locked at ``now``. Performs no I/O."""
        if identity.locked_until is not None and identity.locked_until > now:
            return LockoutStatus(
                locked=True,
                locked_until=identity.locked_until,
                retry_after=identity.locked_until - now,
            )
        return LockoutStatus(locked=False)

    def ensure_not_locked(self, identity: Identity, now: datetime) -> None:
        """Raise LockoutError if ``identity`` is locked at ``now``."""
        status = self.check_lockout(identity, now)
        if status.locked:
            raise LockoutError(status.locked_until, {"user_id": identity.id})

    async def count_recent_failures(self, identity: Identity, now: datetime) -> int:
        """
        Count consecutive failures that still count towards a lock.

        Failures are counted inside the rolling window, after the most recent
        success and after the most recent lock expired.
        """
        lock_expired_at = (
            identity.locked_until
            if identity.locked_until is not None and identity.locked_until <= now
            else None
        )
        attempts = await self.store.list_login_attempts(
            identity.email, since=now - self.config.attempt_window
        )

        failures = 0
        for attempt in attempts:
            if attempt.timestamp > now:
                continue
            if attempt.success:
                failures = 0
            elif lock_expired_at is None or attempt.timestamp >= lock_expired_at:
                failures += 1
        return failures

    async def _update_lock_state(
        self, identity: Identity, success: bool, now: datetime
    ) -> bool:
        # An expired locked_until is kept as the boundary for failure counting
        if success:
            if identity.login_attempts == 0:
                return True
            return await self.store.compare_and_set_lock(
                identity.id,
                expected_attempts=identity.login_attempts,
                new_attempts=0,
                new_locked_until=identity.locked_until,
            )

        if self.check_lockout(identity, now).locked:
            # Failures during an active lock never extend it
            return True

        failures = await self.count_recent_failures(identity, now)
        locks = failures >= self.config.max_failed_attempts
        new_locked_until = (
            now + self.config.lockout_duration if locks else identity.locked_until
        )

        written = await self.store.compare_and_set_lock(
            identity.id,
            expected_attempts=identity.login_attempts,
            new_attempts=failures,
            new_locked_until=new_locked_until,
        )
        if written and locks:
            logger.warning(
                f"Locked user {identity.id} until {new_locked_until.isoformat()} "
                f"after {failures} failed attempts"
            )
        return written
