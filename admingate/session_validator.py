"""
Session validation for privileged requests.

Turns a bearer credential into a verified identity and its server-side
session record, and owns the session lifecycle: creation after an external
login, single revocation and revocation of every session of a user.

Security considerations:
- Expiry is evaluated against the caller's clock, never the wall clock
- Session IDs are generated with the secrets module
- Revoked sessions are never reactivated; a new login creates a new session
- IP whitelists and IP blocks are enforced even for otherwise valid credentials
- A role change invalidates every session issued under the previous role
"""

import logging
import secrets
from dataclasses import replace
from datetime import datetime, timedelta

from .config.schema import SessionConfig
from .exceptions import (
    IdentityNotFoundError,
    IpNotAllowedError,
    SessionRevokedError,
    TokenExpiredError,
    TokenInvalidError,
)
from .store import AdminStore
from .tokens import JwtTokenService
from .types import AuthSession, Identity, Role
from .utils import ip_matches

logger = logging.getLogger(__name__)


class SessionValidator:
    """Verifies credentials against stored sessions and identities."""

    def __init__(
        self,
        store: AdminStore,
        config: SessionConfig,
        token_service: JwtTokenService | None = None,
    ):
        self.store = store
        self.config = config
        self.token_service = token_service or JwtTokenService(
            {
                "secret_key": config.secret_key,
                "algorithm": config.algorithm,
                "issuer": config.issuer,
                "audience": config.audience,
            }
        )

    async def validate(
        self, credential: str | None, now: datetime, source_ip: str | None = None
    ) -> tuple[Identity, AuthSession]:
        """
        Validate a bearer credential.

        Args:
            credential: Encoded bearer token
            now: Instant of the request
            source_ip: Client address, checked against IP whitelists

        Returns:
            Tuple of (identity, session) with ``last_activity`` set to ``now``

        Raises:
            TokenInvalidError: Malformed or mismatched credential
            TokenExpiredError: Token, session or idle timeout expired
            SessionRevokedError: Session missing, inactive or issued for another role
            IdentityNotFoundError: Token subject does not exist
            IpNotAllowedError: Source IP blocked or outside the identity's whitelist
        """
        if source_ip is not None and await self.is_ip_blocked(source_ip, now):
            raise IpNotAllowedError("Source IP is blocked", {"ip_address": source_ip})

        claims = self.token_service.verify(credential or "", now)

        session = await self.store.get_session(claims.session_id)
        if session is None or not session.is_active:
            raise SessionRevokedError(
                "Session is no longer active", {"session_id": claims.session_id}
            )

        if session.user_id != claims.subject:
            raise TokenInvalidError("Token subject does not own the session")

        if session.is_expired(now):
            await self._deactivate(session)
            raise TokenExpiredError("Session has expired")

        if (
            self.config.bind_device
            and claims.device_id is not None
            and claims.device_id != session.device_id
        ):
            raise TokenInvalidError("Token device does not match the session")

        identity = await self.store.get_identity(claims.subject)
        if identity is None:
            raise IdentityNotFoundError(
                "Identity not found", {"user_id": claims.subject}
            )

        if session.role is not None and session.role is not identity.role:
            await self._deactivate(session)
            raise SessionRevokedError(
                "Role changed since the session was issued",
                {"session_id": session.session_id},
            )

        if (
            identity.session_timeout is not None
            and now - session.last_activity > identity.session_timeout
        ):
            await self._deactivate(session)
            raise TokenExpiredError("Session idle timeout exceeded")

        if identity.ip_whitelist and not ip_matches(
            source_ip or "", identity.ip_whitelist
        ):
            raise IpNotAllowedError(
                "Source IP is not whitelisted", {"ip_address": source_ip}
            )

        if (
            self.config.bind_session_ip
            and source_ip is not None
            and source_ip != session.ip_address
        ):
            raise IpNotAllowedError(
                "Source IP differs from the session", {"ip_address": source_ip}
            )

        if not await self.store.touch_session(session.session_id, now):
            raise SessionRevokedError(
                "Session is no longer active", {"session_id": session.session_id}
            )
        return identity, replace(session, last_activity=now)

    async def create_session(
        self,
        identity: Identity,
        device_id: str,
        ip_address: str,
        now: datetime,
        ttl: timedelta | None = None,
        user_agent: str = "",
    ) -> AuthSession:
        """
        Store a fresh session for an identity that completed login.

        When the identity already holds its maximum number of active sessions
        the least recently used ones are revoked to make room.
        """
        await self._enforce_session_limit(identity, now)

        session = AuthSession(
            session_id=secrets.token_urlsafe(32),
            user_id=identity.id,
            device_id=device_id,
            ip_address=ip_address,
            issued_at=now,
            expires_at=now + (ttl or self.config.default_session_ttl),
            last_activity=now,
            user_agent=user_agent,
            role=identity.role,
        )
        await self.store.create_session(session)
        logger.info(f"Created session for user {identity.id}")
        return session

    async def revoke_session(self, session_id: str) -> bool:
        """Invalidate a session. Returns False if it does not exist."""
        session = await self.store.get_session(session_id)
        if session is None:
            return False
        if session.is_active:
            await self._deactivate(session)
            logger.info(f"Revoked session for user {session.user_id}")
        return True

    async def revoke_user_sessions(self, user_id: str) -> int:
        """Invalidate every active session of a user. Returns the count revoked."""
        revoked = 0
        for session in await self.store.list_user_sessions(user_id):
            if session.is_active:
                await self._deactivate(session)
                revoked += 1
        if revoked:
            logger.info(f"Revoked {revoked} sessions for user {user_id}")
        return revoked

    async def revoke_on_role_change(
        self, user_id: str, previous_role: Role, new_role: Role
    ) -> int:
        """Invalidate every session of a user whose role changed."""
        if previous_role is new_role:
            return 0
        revoked = await self.revoke_user_sessions(user_id)
        logger.warning(
            f"Role of user {user_id} changed from {previous_role.value} to "
            f"{new_role.value}, {revoked} sessions revoked"
        )
        return revoked

    async def block_ip(
        self,
        ip_address: str,
        now: datetime,
        duration: timedelta | None = None,
        reason: str = "",
    ) -> datetime:
        """Reject every request from ``ip_address`` for ``duration``. Returns the block end."""
        blocked_until = now + (duration or self.config.ip_block_duration)
        await self.store.block_ip(ip_address, blocked_until)
        logger.warning(
            f"Blocked IP {ip_address} until {blocked_until.isoformat()}: {reason}"
        )
        return blocked_until

    async def unblock_ip(self, ip_address: str) -> bool:
        unblocked = await self.store.unblock_ip(ip_address)
        if unblocked:
            logger.info(f"Unblocked IP {ip_address}")
        return unblocked

    async def is_ip_blocked(self, ip_address: str, now: datetime) -> bool:
        """Check the configured blocked ranges and the dynamic blocks in the store."""
        if self.config.blocked_ip_ranges and ip_matches(
            ip_address, self.config.blocked_ip_ranges
        ):
            return True
        return await self.store.get_ip_block(ip_address, now) is not None

    def session_limit_for(self, identity: Identity) -> int | None:
        if identity.is_staff:
            return self.config.max_staff_sessions
        return self.config.max_concurrent_sessions

    async def _enforce_session_limit(self, identity: Identity, now: datetime) -> None:
        limit = self.session_limit_for(identity)
        if limit is None:
            return

        active = [
            session
            for session in await self.store.list_user_sessions(identity.id)
            if session.is_active and not session.is_expired(now)
        ]
        if len(active) < limit:
            return

        active.sort(key=lambda session: session.last_activity)
        for session in active[: len(active) - limit + 1]:
            await self._deactivate(session)
        logger.info(
            f"Session limit of {limit} reached for user {identity.id}, "
            f"revoked {len(active) - limit + 1} oldest sessions"
        )

    async def _deactivate(self, session: AuthSession) -> None:
        await self.store.update_session(replace(session, is_active=False))
