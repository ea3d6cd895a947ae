"""
Tests for the authorization gate decision pipeline.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from admingate.exceptions import AuditError, AuditWriteFailed, StoreError
from admingate.factory import create_admin_gate
from admingate.types import (
    AccessScope,
    Capability,
    DealerAccountRole,
    Decision,
    DenyReason,
    IdentityStatus,
    Outcome,
    Resource,
    Role,
)
from tests.helpers import (
    NOW,
    admin,
    dealer,
    descriptor,
    make_config,
    make_token,
    seed_login,
    sub_account,
)


def make_gate(store, **route_classes):
    limits = {"default": "60/min", "unauthenticated": "20/min", **route_classes}
    config = make_config(rate_limits={"route_classes": limits})
    return create_admin_gate(config, store=store)


class TestAuthorizationGate:
    """Test the check sequence of a single decision."""

    @pytest.mark.asyncio
    async def test_allowed_request_is_audited(self, store):
        gate = make_gate(store)
        token = await seed_login(store, admin())

        decision = await gate.authorize(descriptor(token, "user_suspend"))

        assert decision.allowed
        assert decision.status_code == 200
        assert decision.identity.id == "admin-1"
        assert decision.session.session_id == "sess-1"

        entries = await gate.audit.query()
        assert len(entries) == 1
        assert entries[0].id == decision.audit_id
        assert entries[0].outcome is Outcome.ALLOW
        assert entries[0].action == "user_suspend"
        assert entries[0].resource_id == "user-42"
        assert entries[0].details == {"request_id": "req-1"}

    @pytest.mark.asyncio
    async def test_support_cannot_view_audit_log(self, store):
        gate = make_gate(store)
        token = await seed_login(store, admin("support-1", role=Role.SUPPORT))

        decision = await gate.authorize(
            descriptor(token, "audit_log_view", Resource("audit_log"))
        )

        assert decision.reason is DenyReason.PERMISSION_NOT_GRANTED
        assert decision.status_code == 403
        entries = await gate.audit.query(user_id="support-1")
        assert len(entries) == 1
        assert entries[0].outcome is Outcome.DENY
        assert entries[0].details["reason"] == "permission_not_granted"
        assert decision.audit_id == entries[0].id

    @pytest.mark.asyncio
    async def test_invalid_token_is_not_audited(self, store):
        gate = make_gate(store)
        await seed_login(store, admin())

        decision = await gate.authorize(descriptor("garbage", "user_suspend"))

        assert decision.reason is DenyReason.TOKEN_INVALID
        assert decision.status_code == 401
        assert decision.identity is None
        assert await gate.audit.query() == []

    @pytest.mark.asyncio
    async def test_missing_credential(self, store):
        gate = make_gate(store)

        decision = await gate.authorize(descriptor(None, "user_suspend"))

        assert decision.reason is DenyReason.TOKEN_INVALID

    @pytest.mark.asyncio
    async def test_expired_token(self, store):
        gate = make_gate(store)
        await seed_login(store, admin())
        token = make_token("admin-1", "sess-1", exp=NOW - timedelta(seconds=1))

        decision = await gate.authorize(descriptor(token, "user_suspend"))

        assert decision.reason is DenyReason.TOKEN_EXPIRED

    @pytest.mark.asyncio
    async def test_unauthenticated_requests_are_rate_limited_by_ip(self, store):
        gate = make_gate(store, unauthenticated="3/min")

        decisions = [
            await gate.authorize(descriptor("garbage", "user_suspend")) for _ in range(4)
        ]

        assert [d.reason for d in decisions] == [
            DenyReason.TOKEN_INVALID,
            DenyReason.TOKEN_INVALID,
            DenyReason.TOKEN_INVALID,
            DenyReason.RATE_LIMITED,
        ]
        assert decisions[-1].retry_after == timedelta(minutes=1)
        other_ip = await gate.authorize(
            descriptor("garbage", "user_suspend", source_ip="10.0.0.2")
        )
        assert other_ip.reason is DenyReason.TOKEN_INVALID

    @pytest.mark.asyncio
    async def test_credential_flood_from_one_address(self, store):
        gate = make_gate(store, unauthenticated="100/min")

        decisions = [
            await gate.authorize(
                descriptor(
                    "forged",
                    "user_suspend",
                    source_ip="192.168.1.100",
                    now=NOW + timedelta(milliseconds=i * 100),
                )
            )
            for i in range(150)
        ]

        reasons = [decision.reason for decision in decisions]
        assert reasons[:100] == [DenyReason.TOKEN_INVALID] * 100
        assert reasons[100:] == [DenyReason.RATE_LIMITED] * 50
        assert all(d.status_code == 429 for d in decisions[100:])
        assert await gate.audit.query() == []

    @pytest.mark.asyncio
    async def test_locked_identity(self, store):
        gate = make_gate(store)
        token = await seed_login(
            store, admin(locked_until=NOW + timedelta(minutes=10), login_attempts=5)
        )

        decision = await gate.authorize(descriptor(token, "user_suspend"))

        assert decision.reason is DenyReason.LOCKED
        assert decision.status_code == 423
        assert decision.retry_after == timedelta(minutes=10)
        [entry] = await gate.audit.query()
        assert entry.details["reason"] == "locked"
        assert entry.details["locked_until"] == (NOW + timedelta(minutes=10)).isoformat()

    @pytest.mark.asyncio
    async def test_authenticated_rate_limit_uses_action_route_class(self, store):
        gate = make_gate(store, mutation="2/min", read="5/min")
        token = await seed_login(store, admin())

        mutations = [
            await gate.authorize(descriptor(token, "user_suspend")) for _ in range(3)
        ]
        read = await gate.authorize(descriptor(token, "analytics_view", Resource("analytics")))

        assert [d.allowed for d in mutations] == [True, True, False]
        assert mutations[-1].reason is DenyReason.RATE_LIMITED
        assert mutations[-1].retry_after == timedelta(minutes=1)
        assert read.allowed

        denials = [e for e in await gate.audit.query() if e.outcome is Outcome.DENY]
        assert len(denials) == 1
        assert denials[0].details["route_class"] == "mutation"

    @pytest.mark.asyncio
    async def test_suspended_identity(self, store):
        gate = make_gate(store)
        token = await seed_login(store, admin(status=IdentityStatus.SUSPENDED))

        decision = await gate.authorize(descriptor(token, "user_suspend"))

        assert decision.reason is DenyReason.STATUS_NOT_ACTIVE
        assert decision.status_code == 403
        assert len(await gate.audit.query()) == 1

    @pytest.mark.asyncio
    async def test_ip_whitelist_is_enforced(self, store):
        gate = make_gate(store)
        token = await seed_login(store, admin(ip_whitelist=("192.168.0.0/24",)))

        denied = await gate.authorize(descriptor(token, "user_suspend"))
        allowed = await gate.authorize(
            descriptor(token, "user_suspend", source_ip="192.168.0.5")
        )

        assert denied.reason is DenyReason.IP_NOT_ALLOWED
        assert denied.status_code == 401
        assert allowed.allowed
        assert len(await gate.audit.query()) == 1

    @pytest.mark.asyncio
    async def test_blocked_ip_is_denied(self, store):
        gate = make_gate(store)
        token = await seed_login(store, admin())
        await gate.sessions.block_ip(
            "10.0.0.1", NOW, timedelta(minutes=10), reason="credential stuffing"
        )

        denied = await gate.authorize(descriptor(token, "user_suspend"))
        later = await gate.authorize(
            descriptor(token, "user_suspend", now=NOW + timedelta(minutes=10))
        )

        assert denied.reason is DenyReason.IP_NOT_ALLOWED
        assert denied.status_code == 401
        assert later.allowed
        assert len(await gate.audit.query()) == 1


class TestDelegatedRequests:
    """Test sub-account requests resolved against the stored parent."""

    @pytest.mark.asyncio
    async def test_staff_scope(self, store):
        gate = make_gate(store)
        await store.put_identity(dealer(access_scope=AccessScope(listings=frozenset({"L1", "L2"}))))
        token = await seed_login(
            store,
            sub_account(
                "staff-1",
                DealerAccountRole.STAFF,
                delegated=frozenset({Capability.LISTING_MANAGEMENT}),
                scope=AccessScope(listings=frozenset({"L1"})),
            ),
        )

        inside = await gate.authorize(
            descriptor(token, "listing_update", Resource("listing", "L1"))
        )
        outside = await gate.authorize(
            descriptor(token, "listing_update", Resource("listing", "L2"))
        )

        assert inside.allowed
        assert outside.reason is DenyReason.SCOPE_EXCEEDED

    @pytest.mark.asyncio
    async def test_suspended_parent_denies_sub_account(self, store):
        gate = make_gate(store)
        await store.put_identity(dealer(status=IdentityStatus.SUSPENDED))
        token = await seed_login(
            store,
            sub_account(
                "staff-1",
                DealerAccountRole.STAFF,
                delegated=frozenset({Capability.LISTING_MANAGEMENT}),
                scope=AccessScope(listings=frozenset({"L1"})),
            ),
        )

        decision = await gate.authorize(
            descriptor(token, "listing_update", Resource("listing", "L1"))
        )

        assert decision.reason is DenyReason.STATUS_NOT_ACTIVE

    @pytest.mark.asyncio
    async def test_missing_parent_denies_sub_account(self, store):
        gate = make_gate(store)
        token = await seed_login(
            store,
            sub_account("manager-1", DealerAccountRole.MANAGER, parent_id="gone"),
        )

        decision = await gate.authorize(
            descriptor(token, "listing_view", Resource("listing", "L1"))
        )

        assert decision.reason is DenyReason.STATUS_NOT_ACTIVE


class TestGateFailures:
    """Test that infrastructure failures are never turned into decisions."""

    @pytest.mark.asyncio
    async def test_audit_failure_propagates(self, store):
        gate = make_gate(store)
        token = await seed_login(store, admin())
        store.append_audit_log = AsyncMock(side_effect=StoreError("audit store down"))

        with pytest.raises(AuditWriteFailed):
            await gate.authorize(descriptor(token, "user_suspend"))

    @pytest.mark.asyncio
    async def test_audit_failure_on_denial_propagates(self, store):
        gate = make_gate(store)
        token = await seed_login(store, admin(status=IdentityStatus.BANNED))
        store.append_audit_log = AsyncMock(side_effect=StoreError("audit store down"))

        with pytest.raises(AuditWriteFailed):
            await gate.authorize(descriptor(token, "user_suspend"))

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, store):
        gate = make_gate(store)
        token = await seed_login(store, admin())
        store.get_session = AsyncMock(side_effect=StoreError("store unreachable"))

        with pytest.raises(StoreError, match="unreachable"):
            await gate.authorize(descriptor(token, "user_suspend"))

    @pytest.mark.asyncio
    async def test_timeout_is_temporarily_unavailable(self, store):
        gate = make_gate(store)
        token = await seed_login(store, admin())

        async def slow_session(session_id):
            await asyncio.sleep(1)

        store.get_session = slow_session

        decision = await gate.authorize_within(
            descriptor(token, "user_suspend"), timeout=0.01
        )

        assert decision.reason is DenyReason.TEMPORARILY_UNAVAILABLE
        assert decision.status_code == 503
        assert not decision.allowed

    @pytest.mark.asyncio
    async def test_authorize_within_returns_decision(self, store):
        gate = make_gate(store)
        token = await seed_login(store, admin())

        decision = await gate.authorize_within(descriptor(token, "user_suspend"))

        assert decision.allowed


class TestRecordOutcome:
    """Test follow-up audit entries."""

    @pytest.mark.asyncio
    async def test_record_outcome_links_decision(self, store):
        gate = make_gate(store)
        token = await seed_login(store, admin())
        request = descriptor(token, "user_suspend")
        decision = await gate.authorize(request)

        entry_id = await gate.record_outcome(
            decision, request, {"result": "suspended"}, Outcome.ALLOW
        )

        entries = {entry.id: entry for entry in await gate.audit.query()}
        assert len(entries) == 2
        assert entries[entry_id].details == {
            "request_id": "req-1",
            "result": "suspended",
            "decision_audit_id": decision.audit_id,
        }

    @pytest.mark.asyncio
    async def test_record_outcome_requires_identity(self, store):
        gate = make_gate(store)

        with pytest.raises(AuditError):
            await gate.record_outcome(
                Decision.deny(DenyReason.TOKEN_INVALID),
                descriptor("garbage", "user_suspend"),
            )
