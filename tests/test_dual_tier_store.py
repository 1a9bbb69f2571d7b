"""
Tests for the dual-tier store, its outbox and the local cache tier.
"""

import json
from datetime import timedelta

import pytest

from recurring_items.exceptions import AuthenticationRequiredError
from recurring_items.models import AuditEventType, is_placeholder_id
from recurring_items.services import DualTierStore, JsonFileCache, MemoryCache
from recurring_items.services.storage import Outbox, OutboxOp


SCOPED = "test-user/things"


class TestStoreIdentity:
    """Tests for user scoping."""

    @pytest.mark.parametrize("user_id", [None, "", "   "])
    def test_missing_user_rejected(self, cache, remote, sync_settings, user_id):
        with pytest.raises(AuthenticationRequiredError):
            DualTierStore(cache, remote, user_id, sync_settings)

    async def test_collections_are_scoped_to_user(self, store, remote, cache):
        await store.write("things", "a", {"v": 1})
        assert remote.peek(SCOPED, "a") == {"v": 1}
        assert cache.get(SCOPED, "a") == {"v": 1}
        assert cache.get("things", "a") is None


class TestReadPolicy:
    """Tests for remote-first reads with local fallback."""

    async def test_remote_value_refreshes_cache(self, store, remote, cache):
        cache.set(SCOPED, "a", {"v": "stale"})
        await remote.set(SCOPED, "a", {"v": "fresh"})

        assert await store.read("things", "a") == {"v": "fresh"}
        assert cache.get(SCOPED, "a") == {"v": "fresh"}

    async def test_remote_absent_drops_local_copy(self, store, cache):
        cache.set(SCOPED, "a", {"v": 1})
        assert await store.read("things", "a") is None
        assert cache.get(SCOPED, "a") is None

    async def test_offline_serves_local(self, store, remote):
        await store.write("things", "a", {"v": 1})
        remote.online = False
        assert await store.read("things", "a") == {"v": 1}

    async def test_offline_missing_key_is_absent(self, store, remote):
        remote.online = False
        assert await store.read("things", "nope") is None

    async def test_failing_remote_read_degrades_to_local(self, store, remote):
        await store.write("things", "a", {"v": 1})
        remote.fail_reads = True
        assert await store.read("things", "a") == {"v": 1}

    async def test_unsynced_write_not_clobbered_by_stale_remote(self, store, remote):
        await store.write("things", "a", {"v": 1})
        remote.fail_writes = True
        ack = await store.write("things", "a", {"v": 2})
        assert ack.queued is True

        assert await store.read("things", "a") == {"v": 2}
        assert remote.peek(SCOPED, "a") == {"v": 1}

    async def test_read_all_keeps_pending_keys(self, store, remote):
        await store.write("things", "a", {"v": "a"})
        await store.write("things", "b", {"v": "b"})
        remote.fail_writes = True
        await store.write("things", "c", {"v": "c"})

        merged = await store.read_all("things")
        assert set(merged) == {"a", "b", "c"}

    async def test_read_all_offline_is_local(self, store, remote):
        remote.online = False
        await store.write("things", "a", {"v": 1})
        assert await store.read_all("things") == {"a": {"v": 1}}

    async def test_permanently_offline_store(self, cache, sync_settings):
        store = DualTierStore(cache, None, "test-user", sync_settings)
        ack = await store.write("things", "a", {"v": 1})
        assert ack.remote_synced is False
        assert ack.queued is True
        assert await store.read("things", "a") == {"v": 1}
        assert await store.flush_outbox() == 0


class TestWritePolicy:
    """Tests for write-through and the outbox."""

    async def test_online_write_is_synced(self, store, remote):
        ack = await store.write("things", "a", {"v": 1})
        assert ack.remote_synced is True
        assert ack.queued is False
        assert len(store.outbox) == 0

    async def test_offline_write_is_queued_and_readable(self, store, remote):
        remote.online = False
        ack = await store.write("things", "a", {"v": 1})
        assert ack.queued is True
        assert await store.read("things", "a") == {"v": 1}
        assert len(store.outbox) == 1

    async def test_flush_replays_queued_writes(self, store, remote):
        remote.online = False
        await store.write("things", "a", {"v": 1})
        await store.write("things", "b", {"v": 2})

        remote.online = True
        assert await store.flush_outbox() == 2
        assert remote.peek(SCOPED, "a") == {"v": 1}
        assert remote.peek(SCOPED, "b") == {"v": 2}
        assert len(store.outbox) == 0

    async def test_newer_write_supersedes_queued_one(self, store, remote):
        remote.online = False
        await store.write("things", "a", {"v": 1})
        await store.write("things", "a", {"v": 2})
        assert len(store.outbox) == 1

        remote.online = True
        await store.flush_outbox()
        assert remote.peek(SCOPED, "a") == {"v": 2}

    async def test_direct_write_discards_stale_entry(self, store, remote):
        remote.fail_writes = True
        await store.write("things", "a", {"v": 1})
        remote.fail_writes = False
        ack = await store.write("things", "a", {"v": 2})
        assert ack.remote_synced is True
        assert len(store.outbox) == 0
        assert remote.peek(SCOPED, "a") == {"v": 2}

    async def test_failed_write_is_audited(self, store, remote, audit_storage):
        remote.fail_writes = True
        await store.write("things", "a", {"v": 1})
        types = [event.event_type for event in audit_storage.events]
        assert AuditEventType.REMOTE_WRITE_DEFERRED in types

    async def test_queued_delete_replayed(self, store, remote):
        await store.write("things", "a", {"v": 1})
        remote.online = False
        await store.delete("things", "a")
        assert await store.read("things", "a") is None

        remote.online = True
        await store.flush_outbox()
        assert remote.peek(SCOPED, "a") is None

    async def test_stuck_entry_is_reported_but_kept(self, store, remote, audit_storage):
        remote.fail_writes = True
        await store.write("things", "a", {"v": 1})
        for _ in range(3):
            assert await store.flush_outbox() == 0

        entry = store.outbox.pending_for(SCOPED, "a")
        assert entry is not None
        assert entry.attempts == 3
        assert any(e.event_type == AuditEventType.SYSTEM_ERROR for e in audit_storage.events)

    async def test_invalidate_drops_local_only(self, store, remote, cache):
        await store.write("things", "a", {"v": 1})
        assert store.invalidate("things", "a") is True
        assert cache.get(SCOPED, "a") is None
        assert remote.peek(SCOPED, "a") == {"v": 1}
        assert await store.read("things", "a") == {"v": 1}


class TestIdentifiers:
    """Tests for id allocation."""

    async def test_online_id_is_canonical(self, store):
        assert not is_placeholder_id(await store.new_id("things"))

    async def test_offline_id_is_placeholder(self, store, remote):
        remote.online = False
        first = await store.new_id("things")
        second = await store.new_id("things")
        assert is_placeholder_id(first)
        assert first != second


class TestOutbox:
    """Tests for the outbox schedule."""

    def test_backoff_grows_and_caps(self):
        outbox = Outbox(MemoryCache(), backoff_base_seconds=30, backoff_max_seconds=3600)
        assert outbox.backoff_for(0) == timedelta(0)
        assert outbox.backoff_for(1) == timedelta(seconds=30)
        assert outbox.backoff_for(2) == timedelta(seconds=60)
        assert outbox.backoff_for(10) == timedelta(seconds=3600)

    def test_failed_entry_waits_for_backoff(self):
        outbox = Outbox(MemoryCache(), backoff_base_seconds=30, backoff_max_seconds=3600)
        entry = outbox.enqueue(OutboxOp.SET, "c", "k", {"v": 1})
        assert [e.entry_id for e in outbox.due_entries()] == [entry.entry_id]

        failed = outbox.mark_failed(entry, "boom")
        assert failed.attempts == 1
        assert failed.last_error == "boom"
        assert outbox.due_entries() == []
        assert len(outbox) == 1

    def test_remove_ignores_superseded_entry(self):
        outbox = Outbox(MemoryCache())
        old = outbox.enqueue(OutboxOp.SET, "c", "k", {"v": 1})
        outbox.enqueue(OutboxOp.SET, "c", "k", {"v": 2})
        assert outbox.remove(old) is False
        assert outbox.pending_for("c", "k").payload == {"v": 2}

    def test_entries_are_fifo(self):
        outbox = Outbox(MemoryCache())
        outbox.enqueue(OutboxOp.SET, "c", "first", {})
        outbox.enqueue(OutboxOp.DELETE, "c", "second")
        assert [e.key for e in outbox.entries()] == ["first", "second"]


class TestJsonFileCache:
    """Tests for the file-backed local tier."""

    def test_values_persist_across_instances(self, tmp_path):
        JsonFileCache(tmp_path).set("test-user/expense_periods", "2025-03", {"period": "2025-03"})
        reopened = JsonFileCache(tmp_path)
        assert reopened.get("test-user/expense_periods", "2025-03") == {"period": "2025-03"}
        assert (tmp_path / "test-user%2Fexpense_periods.json").exists()

    def test_similar_user_ids_do_not_share_files(self, tmp_path):
        cache = JsonFileCache(tmp_path)
        cache.set("a.b@x/expense_periods", "2025-03", {"owner": "a.b@x"})
        cache.set("a.b#x/expense_periods", "2025-03", {"owner": "a.b#x"})
        cache.set("a.b_x/expense_periods", "2025-03", {"owner": "a.b_x"})

        reopened = JsonFileCache(tmp_path)
        assert reopened.get("a.b@x/expense_periods", "2025-03") == {"owner": "a.b@x"}
        assert reopened.get("a.b#x/expense_periods", "2025-03") == {"owner": "a.b#x"}
        assert reopened.get("a.b_x/expense_periods", "2025-03") == {"owner": "a.b_x"}
        assert len(list(tmp_path.glob("*.json"))) == 3

    def test_delete_and_items(self, tmp_path):
        cache = JsonFileCache(tmp_path)
        cache.set("c", "a", {"v": 1})
        cache.set("c", "b", {"v": 2})
        assert cache.delete("c", "a") is True
        assert cache.delete("c", "a") is False
        assert cache.items("c") == {"b": {"v": 2}}

    def test_corrupt_file_treated_as_empty(self, tmp_path):
        (tmp_path / "c.json").write_text("{not json", encoding="utf-8")
        cache = JsonFileCache(tmp_path)
        assert cache.items("c") == {}
        cache.set("c", "a", {"v": 1})
        assert json.loads((tmp_path / "c.json").read_text(encoding="utf-8")) == {"a": {"v": 1}}
