"""
Tests for audit recording and the audit trail.
"""

from dataclasses import replace
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from admingate.audit import AuditRecorder
from admingate.config.schema import AuditSettings
from admingate.exceptions import AuditError, AuditWriteFailed, StoreError
from admingate.types import DenyReason, Outcome, Resource
from tests.helpers import NOW

LISTING = Resource("listing", "L1")


async def record(recorder, action="listing_approve", at=NOW, user_id="admin-1", **kwargs):
    return await recorder.record(
        user_id=user_id,
        user_email=f"{user_id}@example.com",
        action=action,
        resource=LISTING,
        ip_address="10.0.0.1",
        timestamp=at,
        **kwargs,
    )


class TestAuditRecorder:
    """Test appending audit entries."""

    @pytest.mark.asyncio
    async def test_record_is_stored(self, store):
        recorder = AuditRecorder(store)

        entry = await record(recorder, details={"note": "approved"}, session_id="sess-1")

        assert entry.resource == "listing"
        assert entry.resource_id == "L1"
        assert entry.outcome is Outcome.ALLOW
        assert entry.session_id == "sess-1"
        assert await recorder.query(user_id="admin-1") == [entry]

    @pytest.mark.asyncio
    async def test_entry_ids_are_unique(self, store):
        recorder = AuditRecorder(store)

        entries = [await record(recorder) for _ in range(50)]

        assert len({entry.id for entry in entries}) == 50

    @pytest.mark.asyncio
    async def test_query_orders_by_timestamp(self, store):
        recorder = AuditRecorder(store)
        late = await record(recorder, at=NOW + timedelta(minutes=2))
        early = await record(recorder, at=NOW)
        middle = await record(recorder, at=NOW + timedelta(minutes=1))

        assert await recorder.query() == [early, middle, late]
        assert await recorder.query(limit=2) == [early, middle]

    @pytest.mark.asyncio
    async def test_query_filters(self, store):
        recorder = AuditRecorder(store)
        first = await record(recorder, action="user_suspend", at=NOW)
        await record(recorder, action="listing_approve", at=NOW + timedelta(minutes=1))
        await record(recorder, user_id="admin-2", at=NOW + timedelta(minutes=2))

        assert await recorder.query(action="user_suspend") == [first]
        assert len(await recorder.query(user_id="admin-1")) == 2
        assert len(await recorder.query(start=NOW + timedelta(minutes=1))) == 2
        assert await recorder.query(end=NOW) == [first]

    @pytest.mark.asyncio
    async def test_record_denial(self, store):
        recorder = AuditRecorder(store)

        entry = await recorder.record_denial(
            user_id="support-1",
            user_email="support-1@example.com",
            action="audit_log_view",
            resource=Resource("audit_log"),
            ip_address="10.0.0.1",
            timestamp=NOW,
            reason=DenyReason.PERMISSION_NOT_GRANTED,
            details={"request_id": "req-1"},
        )

        assert entry.outcome is Outcome.DENY
        assert entry.details == {"request_id": "req-1", "reason": "permission_not_granted"}

    @pytest.mark.asyncio
    async def test_sensitive_details_are_masked(self, store):
        recorder = AuditRecorder(store)

        entry = await record(
            recorder,
            details={"password": "hunter22", "nested": {"api_key": "abc"}, "note": "ok"},
        )

        assert entry.details == {
            "password": "hu***22",
            "nested": {"api_key": "***"},
            "note": "ok",
        }

    @pytest.mark.asyncio
    async def test_masking_can_be_disabled(self, store):
        recorder = AuditRecorder(store, AuditSettings(mask_sensitive_details=False))

        entry = await record(recorder, details={"password": "hunter22"})

        assert entry.details == {"password": "hunter22"}

    @pytest.mark.asyncio
    async def test_stored_details_cannot_be_mutated(self, store):
        recorder = AuditRecorder(store)
        details = {"note": "approved", "tags": ["a"]}

        entry = await record(recorder, details=details)
        details["note"] = "rewritten"
        details["tags"].append("b")
        entry.details["note"] = "rewritten"
        (await recorder.query())[0].details["tags"].append("c")

        stored = (await recorder.query())[0]
        assert stored.details == {"note": "approved", "tags": ["a"]}

    @pytest.mark.asyncio
    async def test_oversized_details_are_truncated(self, store):
        recorder = AuditRecorder(store, AuditSettings(max_details_size=256))

        entry = await record(recorder, details={"note": "x" * 1000})

        assert entry.details["_truncated"] is True
        assert len(entry.details["preview"]) == 128

    @pytest.mark.asyncio
    async def test_store_failure_raises_write_failed(self, store):
        store.append_audit_log = AsyncMock(side_effect=StoreError("disk full"))
        recorder = AuditRecorder(store)

        with pytest.raises(AuditWriteFailed, match="disk full"):
            await record(recorder)


class TestAuditSignatures:
    """Test tamper evidence of signed entries."""

    def setup_method(self):
        self.settings = AuditSettings(signing_key="audit-signing-key")

    @pytest.mark.asyncio
    async def test_signed_entry_verifies(self, store):
        recorder = AuditRecorder(store, self.settings)

        entry = await record(recorder, details={"note": "approved"})

        assert entry.signature is not None
        assert recorder.verify(entry)

    @pytest.mark.asyncio
    async def test_tampered_entry_fails_verification(self, store):
        recorder = AuditRecorder(store, self.settings)
        entry = await record(recorder, details={"note": "approved"})

        assert not recorder.verify(replace(entry, action="user_ban"))
        assert not recorder.verify(replace(entry, details={"note": "rejected"}))
        assert not recorder.verify(replace(entry, outcome=Outcome.DENY))

    @pytest.mark.asyncio
    async def test_other_key_fails_verification(self, store):
        entry = await record(AuditRecorder(store, self.settings))
        other = AuditRecorder(store, AuditSettings(signing_key="another-key"))

        assert not other.verify(entry)

    @pytest.mark.asyncio
    async def test_unsigned_entries(self, store):
        unsigned = await record(AuditRecorder(store))

        assert unsigned.signature is None
        assert not AuditRecorder(store, self.settings).verify(unsigned)
        with pytest.raises(AuditError):
            AuditRecorder(store).sign(unsigned)
