"""Shared builders for admin gate tests."""

import asyncio
import inspect
from datetime import UTC, datetime, timedelta

import jwt

from admingate.bundled.memory import MemoryAdminStore
from admingate.config.schema import AdminGateConfig, SessionConfig
from admingate.types import (
    AccessScope,
    AuthSession,
    Capability,
    DealerAccountRole,
    DelegationInfo,
    Identity,
    RequestDescriptor,
    Resource,
    Role,
)

SECRET_KEY = "test-secret-key-must-be-long-enough-for-hs256"
NOW = datetime(2025, 1, 15, 12, 0, 0, tzinfo=UTC)


def make_token(
    sub: str,
    sid: str,
    exp: datetime | None = None,
    secret: str = SECRET_KEY,
    **claims,
) -> str:
    payload = {
        "sub": sub,
        "sid": sid,
        "iat": int(NOW.timestamp()),
        "exp": int((exp or NOW + timedelta(hours=1)).timestamp()),
        **claims,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def make_session(
    user_id: str,
    session_id: str = "sess-1",
    device_id: str = "device-1",
    ip_address: str = "10.0.0.1",
    expires_at: datetime | None = None,
    is_active: bool = True,
) -> AuthSession:
    return AuthSession(
        session_id=session_id,
        user_id=user_id,
        device_id=device_id,
        ip_address=ip_address,
        issued_at=NOW - timedelta(minutes=5),
        expires_at=expires_at or NOW + timedelta(hours=8),
        last_activity=NOW - timedelta(minutes=1),
        is_active=is_active,
    )


def make_config(**overrides) -> AdminGateConfig:
    data = {"session": {"secret_key": SECRET_KEY}, **overrides}
    return AdminGateConfig(**data)


def session_config(**overrides) -> SessionConfig:
    return SessionConfig(secret_key=SECRET_KEY, **overrides)


def admin(identity_id: str = "admin-1", role: Role = Role.ADMIN, **fields) -> Identity:
    return Identity(
        id=identity_id, email=f"{identity_id}@example.com", role=role, **fields
    )


def dealer(identity_id: str = "dealer-1", **fields) -> Identity:
    fields.setdefault(
        "permissions",
        frozenset(
            {
                Capability.LISTING_MANAGEMENT,
                Capability.LEAD_MANAGEMENT,
                Capability.INVENTORY_MANAGEMENT,
                Capability.PRICING_MANAGEMENT,
            }
        ),
    )
    return Identity(
        id=identity_id, email=f"{identity_id}@example.com", role=Role.USER, **fields
    )


def sub_account(
    identity_id: str,
    dealer_role: DealerAccountRole,
    parent_id: str = "dealer-1",
    delegated: frozenset[Capability] = frozenset(),
    scope=None,
    **fields,
) -> Identity:
    return Identity(
        id=identity_id,
        email=f"{identity_id}@example.com",
        role=Role.USER,
        delegation=DelegationInfo(
            parent_dealer_id=parent_id,
            dealer_account_role=dealer_role,
            delegated_permissions=delegated,
            access_scope=scope or AccessScope(),
        ),
        **fields,
    )


async def seed_login(
    store: MemoryAdminStore, identity: Identity, session_id: str = "sess-1", **session
) -> str:
    """Store an identity with an active session and return a bearer token for it."""
    await store.put_identity(identity)
    await store.create_session(make_session(identity.id, session_id, **session))
    return make_token(identity.id, session_id)


def descriptor(
    credential: str | None,
    action: str,
    resource: Resource | None = None,
    source_ip: str = "10.0.0.1",
    now: datetime = NOW,
    request_id: str | None = "req-1",
) -> RequestDescriptor:
    return RequestDescriptor(
        credential=credential,
        source_ip=source_ip,
        action=action,
        resource=resource or Resource("user", "user-42"),
        now=now,
        request_id=request_id,
    )


class InterleavingStore:
    """Store proxy that yields to the event loop around every async operation.

    Concurrent tasks sharing it interleave between each store call instead of
    running to completion one after another.
    """

    def __init__(self, inner):
        self.inner = inner

    def __getattr__(self, name):
        attribute = getattr(self.inner, name)
        if not inspect.iscoroutinefunction(attribute):
            return attribute

        async def interleaved(*args, **kwargs):
            await asyncio.sleep(0)
            result = await attribute(*args, **kwargs)
            await asyncio.sleep(0)
            return result

        return interleaved
