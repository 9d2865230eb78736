"""
Entry store interface and the in-process implementation.

All per-entry mutations go through :meth:`EntryStore.transaction`, which holds
an exclusive per-entry lock for the duration of the block and publishes the
block's effects (entry changes, attempt reservations) all at once on a clean
exit. An exception inside the block discards every staged change.

Usage:
    with store.transaction(entry_id) as tx:
        if tx.reserve_attempt(key, now):
            tx.save(tx.entry.evolve(failed_count=tx.entry.failed_count + 1))
"""

from __future__ import annotations

import logging
import os
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from datetime import UTC, datetime

from aikotoba.vault.errors import KeywordAlreadyExists, NotFound
from aikotoba.vault.identity import Identity
from aikotoba.vault.models import AttemptKey, AttemptOutcome, AttemptRecord, VaultEntry

logger = logging.getLogger(__name__)


class EntryTransaction(ABC):
    """Locked view of a single entry inside :meth:`EntryStore.transaction`."""

    entry: VaultEntry

    @abstractmethod
    def save(self, entry: VaultEntry) -> VaultEntry:
        """Stage ``entry`` as the new state of the locked row and return it as stored."""

    @abstractmethod
    def reserve_attempt(self, key: AttemptKey, now: datetime) -> bool:
        """Claim ``key``; False if an attempt already exists for it."""

    @abstractmethod
    def finish_attempt(self, key: AttemptKey, outcome: AttemptOutcome) -> None:
        """Set the outcome of an attempt reserved in this transaction."""

    @abstractmethod
    def delete(self) -> None:
        """Remove the entry (and its attempts) when the transaction commits."""


class EntryStore(ABC):
    @abstractmethod
    def insert(self, entry: VaultEntry) -> VaultEntry:
        """Persist a new entry. Raises KeywordAlreadyExists."""

    @abstractmethod
    def get(self, entry_id: str) -> VaultEntry | None: ...

    @abstractmethod
    def get_by_keyword(self, keyword: str) -> VaultEntry | None: ...

    @abstractmethod
    def list_by_owner(self, owner: Identity) -> list[VaultEntry]: ...

    @abstractmethod
    def list_expired_grace(self, now: datetime) -> list[str]:
        """Ids of hidden entries whose grace deadline is at or before ``now``."""

    @abstractmethod
    def add_report(self, entry_id: str, reporter: Identity, now: datetime) -> None: ...

    @abstractmethod
    def transaction(self, entry_id: str) -> AbstractContextManager[EntryTransaction]:
        """Lock ``entry_id`` and yield a transaction. Raises NotFound."""


# ─── In-process store ────────────────────────────────────────────────────


class _MemoryTransaction(EntryTransaction):
    def __init__(self, store: MemoryEntryStore, entry: VaultEntry) -> None:
        self._store = store
        self.entry = entry
        self.deleted = False
        self.attempts: dict[AttemptKey, AttemptRecord] = {}

    def save(self, entry: VaultEntry) -> VaultEntry:
        if entry.id != self.entry.id:
            raise ValueError("cannot save a different entry in this transaction")
        self.entry = entry.evolve(updated_at=datetime.now(UTC))
        return self.entry

    def reserve_attempt(self, key: AttemptKey, now: datetime) -> bool:
        if key in self.attempts or key in self._store._attempts:
            return False
        self.attempts[key] = AttemptRecord(key, AttemptOutcome.PENDING, now)
        return True

    def finish_attempt(self, key: AttemptKey, outcome: AttemptOutcome) -> None:
        record = self.attempts.get(key)
        if record is None:
            raise KeyError("attempt was not reserved in this transaction")
        self.attempts[key] = AttemptRecord(key, outcome, record.timestamp)

    def delete(self) -> None:
        self.deleted = True


class MemoryEntryStore(EntryStore):
    """Thread-safe in-process store with per-entry locks."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, VaultEntry] = {}
        self._by_keyword: dict[str, str] = {}
        self._entry_locks: dict[str, threading.Lock] = {}
        self._attempts: dict[AttemptKey, AttemptRecord] = {}
        self.reports: list[tuple[str, Identity, datetime]] = []

    def insert(self, entry: VaultEntry) -> VaultEntry:
        with self._lock:
            if entry.keyword in self._by_keyword:
                raise KeywordAlreadyExists(entry.keyword)
            self._entries[entry.id] = entry
            self._by_keyword[entry.keyword] = entry.id
            self._entry_locks[entry.id] = threading.Lock()
        return entry

    def get(self, entry_id: str) -> VaultEntry | None:
        with self._lock:
            return self._entries.get(entry_id)

    def get_by_keyword(self, keyword: str) -> VaultEntry | None:
        with self._lock:
            entry_id = self._by_keyword.get(keyword)
            return self._entries.get(entry_id) if entry_id else None

    def list_by_owner(self, owner: Identity) -> list[VaultEntry]:
        with self._lock:
            owned = [e for e in self._entries.values() if e.owner == owner]
        return sorted(owned, key=lambda e: e.created_at, reverse=True)

    def list_expired_grace(self, now: datetime) -> list[str]:
        with self._lock:
            return [
                e.id
                for e in self._entries.values()
                if e.is_hidden and e.grace_deadline is not None and e.grace_deadline <= now
            ]

    def add_report(self, entry_id: str, reporter: Identity, now: datetime) -> None:
        with self._lock:
            if entry_id not in self._entries:
                raise NotFound(entry_id)
            self.reports.append((entry_id, reporter, now))

    def attempts_for(self, entry_id: str) -> list[AttemptRecord]:
        with self._lock:
            return [r for k, r in self._attempts.items() if k.entry_id == entry_id]

    @contextmanager
    def transaction(self, entry_id: str) -> Iterator[EntryTransaction]:
        with self._lock:
            entry_lock = self._entry_locks.get(entry_id)
        if entry_lock is None:
            raise NotFound(entry_id)

        with entry_lock:
            with self._lock:
                entry = self._entries.get(entry_id)
            if entry is None:
                raise NotFound(entry_id)

            tx = _MemoryTransaction(self, entry)
            yield tx

            with self._lock:
                if tx.deleted:
                    self._entries.pop(entry_id, None)
                    self._by_keyword.pop(entry.keyword, None)
                    self._entry_locks.pop(entry_id, None)
                    for key in [k for k in self._attempts if k.entry_id == entry_id]:
                        del self._attempts[key]
                    return
                self._entries[entry_id] = tx.entry
                self._attempts.update(tx.attempts)


def load_entry_store(kind: str | None = None) -> EntryStore:
    """Select the store backend: ``postgres`` (default) or ``memory``."""
    if kind is None:
        from aikotoba.config import get_config

        kind = os.environ.get("AIKOTOBA_STORE") or get_config().vault.store

    if kind == "memory":
        logger.warning("Using the in-process entry store; data is lost on restart")
        return MemoryEntryStore()
    if kind == "postgres":
        from aikotoba.vault.dal import PostgresEntryStore

        return PostgresEntryStore()
    raise ValueError(f"Unknown entry store: {kind}")
