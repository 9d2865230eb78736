"""Tests for aikotoba.vault.store — in-process store and backend selection."""

from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest

from aikotoba.vault.errors import KeywordAlreadyExists, NotFound
from aikotoba.vault.identity import Device
from aikotoba.vault.models import AttemptKey, VaultEntry
from aikotoba.vault.store import MemoryEntryStore, load_entry_store

NOW = datetime(2026, 3, 14, 3, 0, tzinfo=UTC)


def _entry(entry_id="e1", keyword="sesame", **overrides):
    fields = {
        "id": entry_id,
        "keyword": keyword,
        "passcode": "482",
        "owner": Device("owner"),
        "created_at": NOW,
    }
    fields.update(overrides)
    return VaultEntry(**fields)


class TestMemoryEntryStore:
    def test_insert_and_lookup(self):
        store = MemoryEntryStore()
        store.insert(_entry())
        assert store.get("e1").keyword == "sesame"
        assert store.get_by_keyword("sesame").id == "e1"
        assert store.get("missing") is None
        assert store.get_by_keyword("missing") is None

    def test_duplicate_keyword(self):
        store = MemoryEntryStore()
        store.insert(_entry())
        with pytest.raises(KeywordAlreadyExists):
            store.insert(_entry("e2"))

    def test_commit_on_clean_exit(self):
        store = MemoryEntryStore()
        store.insert(_entry())
        with store.transaction("e1") as tx:
            tx.save(tx.entry.evolve(failed_count=2))
        assert store.get("e1").failed_count == 2

    def test_save_stamps_updated_at(self):
        store = MemoryEntryStore()
        store.insert(_entry(updated_at=NOW))
        before = datetime.now(UTC)
        with store.transaction("e1") as tx:
            saved = tx.save(tx.entry.evolve(body="moved"))
        assert saved.updated_at >= before
        assert store.get("e1").updated_at == saved.updated_at
        assert store.get("e1").created_at == NOW

    def test_rollback_on_exception(self):
        store = MemoryEntryStore()
        store.insert(_entry())
        key = AttemptKey("e1", Device("x"), "2026-03-14")
        with pytest.raises(RuntimeError):
            with store.transaction("e1") as tx:
                tx.save(tx.entry.evolve(failed_count=2))
                tx.reserve_attempt(key, NOW)
                raise RuntimeError("boom")
        assert store.get("e1").failed_count == 0
        assert store.attempts_for("e1") == []

    def test_cannot_save_other_entry(self):
        store = MemoryEntryStore()
        store.insert(_entry())
        with pytest.raises(ValueError):
            with store.transaction("e1") as tx:
                tx.save(_entry("e2", "other"))

    def test_transaction_unknown_entry(self):
        with pytest.raises(NotFound):
            with MemoryEntryStore().transaction("nope"):
                pass

    def test_delete_frees_keyword(self):
        store = MemoryEntryStore()
        store.insert(_entry())
        with store.transaction("e1") as tx:
            tx.delete()
        assert store.get("e1") is None
        store.insert(_entry("e2"))
        assert store.get_by_keyword("sesame").id == "e2"

    def test_list_by_owner_newest_first(self):
        store = MemoryEntryStore()
        store.insert(_entry("old", "a", created_at=NOW))
        store.insert(_entry("new", "b", created_at=NOW + timedelta(minutes=1)))
        store.insert(_entry("theirs", "c", owner=Device("someone")))
        assert [e.id for e in store.list_by_owner(Device("owner"))] == ["new", "old"]

    def test_list_expired_grace(self):
        store = MemoryEntryStore()
        store.insert(_entry("due", "a", is_hidden=True, grace_deadline=NOW))
        store.insert(_entry("later", "b", is_hidden=True, grace_deadline=NOW + timedelta(hours=1)))
        store.insert(_entry("public", "c"))
        assert store.list_expired_grace(NOW) == ["due"]

    def test_report_unknown_entry(self):
        with pytest.raises(NotFound):
            MemoryEntryStore().add_report("nope", Device("x"), NOW)


class TestLoadEntryStore:
    def test_memory(self):
        assert isinstance(load_entry_store("memory"), MemoryEntryStore)

    def test_postgres(self):
        from aikotoba.vault.dal import PostgresEntryStore

        assert isinstance(load_entry_store("postgres"), PostgresEntryStore)

    @patch.dict("os.environ", {"AIKOTOBA_STORE": "memory"})
    def test_from_env(self):
        assert isinstance(load_entry_store(), MemoryEntryStore)

    def test_unknown(self):
        with pytest.raises(ValueError):
            load_entry_store("sqlite")
