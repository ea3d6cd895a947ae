"""
Authorization gate for privileged requests.

The gate runs one decision per request through a fixed sequence of checks:

    session -> lockout -> rate limit -> permission -> audit

The first failing check short-circuits to a denial. Authentication failures
are not audited (the actor is unknown); they are charged to the source IP's
rate limit instead, so credential guessing is throttled. Every later denial
and every allow is audited before the decision is returned. Audit and store
failures are not decisions: they propagate to the caller.
"""

import asyncio
import logging
from typing import Any

from .audit import AuditRecorder
from .config.schema import GateConfig
from .exceptions import AuditError, AuthenticationError
from .lockout import LockoutTracker
from .rate_limiter import DEFAULT_ROUTE_CLASS, RateLimiter
from .rbac import RbacResolver
from .session_validator import SessionValidator
from .store import AdminStore
from .types import (
    AuthSession,
    Decision,
    DenyReason,
    Identity,
    Outcome,
    RequestDescriptor,
)
from .utils import actor_key_for

logger = logging.getLogger(__name__)


class AuthorizationGate:
    """Composes session, lockout, rate, permission and audit checks."""

    def __init__(
        self,
        store: AdminStore,
        sessions: SessionValidator,
        lockout: LockoutTracker,
        rate_limiter: RateLimiter,
        rbac: RbacResolver,
        audit: AuditRecorder,
        config: GateConfig | None = None,
    ):
        self.store = store
        self.sessions = sessions
        self.lockout = lockout
        self.rate_limiter = rate_limiter
        self.rbac = rbac
        self.audit = audit
        self.config = config or GateConfig()

    async def authorize(self, request: RequestDescriptor) -> Decision:
        """
        Decide a single privileged request.

        Args:
            request: Normalized request descriptor

        Returns:
            Allow decision carrying the identity, session and audit entry ID,
            or a denial with its reason

        Raises:
            AuditWriteFailed: If the audit entry could not be written
            StoreError: If the store is unavailable
        """
        now = request.now

        try:
            identity, session = await self.sessions.validate(
                request.credential, now, request.source_ip
            )
        except AuthenticationError as e:
            return await self._deny_unauthenticated(request, e)

        lock_status = self.lockout.check_lockout(identity, now)
        if lock_status.locked:
            return await self._deny(
                request,
                identity,
                session,
                DenyReason.LOCKED,
                retry_after=lock_status.retry_after,
                detail="Account is temporarily locked",
                details={"locked_until": lock_status.locked_until.isoformat()},
            )

        policy = self.rbac.policy_for(request.action)
        route_class = policy.route_class.value if policy else DEFAULT_ROUTE_CLASS
        rate = await self.rate_limiter.allow(
            self.rate_limiter.actor_key(identity.id, request.source_ip),
            now,
            route_class,
        )
        if not rate.allowed:
            return await self._deny(
                request,
                identity,
                session,
                DenyReason.RATE_LIMITED,
                retry_after=rate.retry_after,
                detail="Rate limit exceeded",
                details={"route_class": rate.route_class, "limit": rate.limit},
            )

        parent = None
        if identity.delegation is not None:
            parent = await self.store.get_identity(identity.delegation.parent_dealer_id)

        result = self.rbac.authorize(identity, request.action, request.resource, parent)
        if not result.allowed:
            return await self._deny(
                request, identity, session, result.reason, detail=result.detail
            )

        entry = await self.audit.record(
            user_id=identity.id,
            user_email=identity.email,
            action=request.action,
            resource=request.resource,
            ip_address=request.source_ip,
            timestamp=now,
            details=self._request_details(request),
            session_id=session.session_id,
        )
        logger.debug(
            f"Allowed '{request.action}' on {request.resource} for user {identity.id}"
        )
        return Decision.allow(identity, session, entry.id)

    async def authorize_within(
        self, request: RequestDescriptor, timeout: float | None = None
    ) -> Decision:
        """
        Decide a request under a deadline.

        A decision that does not complete in time is a denial with
        ``TEMPORARILY_UNAVAILABLE``, never an allow.
        """
        timeout = self.config.timeout_seconds if timeout is None else timeout
        try:
            return await asyncio.wait_for(self.authorize(request), timeout)
        except TimeoutError:
            logger.warning(
                f"Authorization of '{request.action}' exceeded {timeout}s deadline"
            )
            return Decision.deny(
                DenyReason.TEMPORARILY_UNAVAILABLE,
                detail="Authorization timed out",
            )

    async def record_outcome(
        self,
        decision: Decision,
        request: RequestDescriptor,
        details: dict[str, Any] | None = None,
        outcome: Outcome = Outcome.ALLOW,
    ) -> str:
        """
        Append a follow-up audit entry for the business outcome of a request.

        Returns:
            ID of the new audit entry

        Raises:
            AuditError: If the decision has no authenticated identity
        """
        if decision.identity is None:
            raise AuditError("Cannot record an outcome without an identity")

        entry = await self.audit.record(
            user_id=decision.identity.id,
            user_email=decision.identity.email,
            action=request.action,
            resource=request.resource,
            ip_address=request.source_ip,
            timestamp=request.now,
            details={
                **self._request_details(request),
                **(details or {}),
                "decision_audit_id": decision.audit_id,
            },
            session_id=decision.session.session_id if decision.session else None,
            outcome=outcome,
        )
        return entry.id

    async def _deny_unauthenticated(
        self, request: RequestDescriptor, error: AuthenticationError
    ) -> Decision:
        rate = await self.rate_limiter.allow(
            actor_key_for(None, request.source_ip),
            request.now,
            self.rate_limiter.config.unauthenticated_route_class,
        )
        if not rate.allowed:
            logger.info(f"Rate limited unauthenticated requests from {request.source_ip}")
            return Decision.deny(
                DenyReason.RATE_LIMITED,
                retry_after=rate.retry_after,
                detail="Rate limit exceeded",
            )

        logger.info(
            f"Denied '{request.action}' from {request.source_ip}: {error.reason.value}"
        )
        return Decision.deny(error.reason, detail=error.message)

    async def _deny(
        self,
        request: RequestDescriptor,
        identity: Identity,
        session: AuthSession,
        reason: DenyReason,
        retry_after=None,
        detail: str = "",
        details: dict[str, Any] | None = None,
    ) -> Decision:
        entry = await self.audit.record_denial(
            user_id=identity.id,
            user_email=identity.email,
            action=request.action,
            resource=request.resource,
            ip_address=request.source_ip,
            timestamp=request.now,
            reason=reason,
            details={**self._request_details(request), **(details or {})},
            session_id=session.session_id,
        )
        logger.info(
            f"Denied '{request.action}' on {request.resource} for user {identity.id}: {reason.value}"
        )
        return Decision.deny(
            reason,
            identity=identity,
            session=session,
            retry_after=retry_after,
            audit_id=entry.id,
            detail=detail,
        )

    @staticmethod
    def _request_details(request: RequestDescriptor) -> dict[str, Any]:
        details: dict[str, Any] = {}
        if request.request_id:
            details["request_id"] = request.request_id
        if request.user_agent:
            details["user_agent"] = request.user_agent
        return details
