"""Unit tests for the in-memory and timeout-bounded record stores."""

import pytest

from src.accounts.core.errors import TransientStoreError
from src.accounts.core.storage.record_store import (
    InMemoryRecordStore,
    TimeoutRecordStore,
    _reset_store,
    apply_patch,
    get_record_store,
    with_timeout,
)
from src.accounts.entities.core.user_record import AccountClass
from src.accounts.runtime.config.config_data import ConfigData, IdentityConfig
from src.accounts.runtime.context import with_context
from tests.fixtures import FaultyStore, make_record


class TestApplyPatch:
    def test_patch_returns_updated_copy(self):
        record = make_record("r1")

        patched = apply_patch(record, {"linked_external_uid": "u1"})

        assert patched.linked_external_uid == "u1"
        assert record.linked_external_uid is None

    def test_record_id_cannot_be_patched(self):
        with pytest.raises(ValueError, match="record_id"):
            apply_patch(make_record("r1"), {"record_id": "r2"})

    def test_unknown_field_is_rejected(self):
        with pytest.raises(ValueError, match="nickname"):
            apply_patch(make_record("r1"), {"nickname": "x"})


class TestInMemoryRecordStore:
    @pytest.mark.asyncio
    async def test_create_is_create_if_absent(self, memory_store):
        assert await memory_store.create(make_record("r1", "first@x.com"))
        assert not await memory_store.create(make_record("r1", "second@x.com"))

        assert (await memory_store.get("r1")).email == "first@x.com"

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, memory_store):
        assert await memory_store.get("nope") is None

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self, memory_store):
        await memory_store.create(make_record("r1", school="north"))

        fetched = await memory_store.get("r1")
        fetched.profile["school"] = "south"

        assert (await memory_store.get("r1")).profile == {"school": "north"}

    @pytest.mark.asyncio
    async def test_query_by_field(self):
        store = InMemoryRecordStore(
            [
                make_record("r1", "a@x.com"),
                make_record("r2", "a@x.com", account_class=AccountClass.PRIVILEGED_PRECEDENCE),
                make_record("r3", "b@x.com", linked_external_uid="u3"),
            ]
        )

        assert {r.record_id for r in await store.query("email", "a@x.com")} == {"r1", "r2"}
        assert [r.record_id for r in await store.query("linked_external_uid", "u3")] == ["r3"]
        assert [
            r.record_id
            for r in await store.query("account_class", AccountClass.PRIVILEGED_PRECEDENCE)
        ] == ["r2"]

    @pytest.mark.asyncio
    async def test_query_rejects_unindexed_field(self, memory_store):
        with pytest.raises(ValueError):
            await memory_store.query("display_name", "x")

    @pytest.mark.asyncio
    async def test_conditional_set_applies_when_predicate_holds(self, memory_store):
        await memory_store.create(make_record("r1"))

        applied = await memory_store.conditional_set(
            "r1", lambda r: r.linked_external_uid is None, {"linked_external_uid": "u1"}
        )

        assert applied
        assert (await memory_store.get("r1")).linked_external_uid == "u1"

    @pytest.mark.asyncio
    async def test_conditional_set_refuses_when_predicate_fails(self, memory_store):
        await memory_store.create(make_record("r1", linked_external_uid="u1"))

        applied = await memory_store.conditional_set(
            "r1", lambda r: r.linked_external_uid is None, {"linked_external_uid": "u2"}
        )

        assert not applied
        assert (await memory_store.get("r1")).linked_external_uid == "u1"

    @pytest.mark.asyncio
    async def test_conditional_set_on_missing_record(self, memory_store):
        assert not await memory_store.conditional_set("ghost", lambda r: True, {"email": "x"})

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, memory_store):
        await memory_store.create(make_record("r1"))

        await memory_store.delete("r1")
        await memory_store.delete("r1")

        assert await memory_store.scan() == []


class TestTimeoutRecordStore:
    @pytest.mark.asyncio
    async def test_slow_call_becomes_transient_error(self, memory_store):
        slow = FaultyStore(memory_store, delay=0.5, delay_on={"scan"})
        store = TimeoutRecordStore(slow, timeout_seconds=0.05)

        with pytest.raises(TransientStoreError):
            await store.scan()

    @pytest.mark.asyncio
    async def test_slow_write_runs_to_completion(self, memory_store):
        """A write is never reported as failed while it goes on to commit."""
        slow = FaultyStore(memory_store, delay=0.2, delay_on={"create", "delete"})
        store = TimeoutRecordStore(slow, timeout_seconds=0.05)

        assert await store.create(make_record("r1")) is True
        assert await memory_store.get("r1") is not None

        await store.delete("r1")
        assert await memory_store.get("r1") is None

    @pytest.mark.asyncio
    async def test_fast_call_passes_through(self, memory_store):
        await memory_store.create(make_record("r1"))
        store = TimeoutRecordStore(memory_store, timeout_seconds=1.0)

        assert (await store.get("r1")).record_id == "r1"
        assert await store.is_available()

    def test_with_timeout_does_not_double_wrap(self, memory_store):
        wrapped = with_timeout(memory_store, 1.0)

        assert isinstance(wrapped, TimeoutRecordStore)
        assert with_timeout(wrapped, 2.0) is wrapped
        assert with_timeout(memory_store, None) is memory_store


class TestGetRecordStore:
    def test_memory_backend_is_a_singleton(self):
        """Should build the configured backend once and reuse it."""
        _reset_store()
        try:
            with with_context(ConfigData(identity=IdentityConfig(store_backend="memory"))):
                store = get_record_store()

                assert isinstance(store, InMemoryRecordStore)
                assert get_record_store() is store
        finally:
            _reset_store()
