"""
Root-level shared test fixtures.

Services built here run on the in-process store with a recording sink and a
no-op audit hook, so nothing reaches PostgreSQL or Redis.
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from aikotoba.vault.identity import Device
from aikotoba.vault.notifications import Notifier, RecordingSink
from aikotoba.vault.service import VaultService
from aikotoba.vault.store import MemoryEntryStore
from aikotoba.vault.tiers import StaticEntitlements


@pytest.fixture
def clean_env(monkeypatch):
    """Remove env vars that leak between tests."""
    for key in [
        "AIKOTOBA_DB_HOST",
        "AIKOTOBA_DB_PORT",
        "AIKOTOBA_DB_NAME",
        "AIKOTOBA_DB_USER",
        "AIKOTOBA_DB_PASSWORD",
        "AIKOTOBA_STORE",
        "AIKOTOBA_GRACE_HOURS",
        "AIKOTOBA_ATTEMPT_TIMEZONE",
        "AIKOTOBA_ATTEMPT_THRESHOLD",
        "AIKOTOBA_NOTIFY_RETRIES",
        "AIKOTOBA_DB_POOL_MIN",
        "AIKOTOBA_DB_POOL_MAX",
        "AIKOTOBA_DB_STATEMENT_TIMEOUT_MS",
        "AIKOTOBA_API_HOST",
        "AIKOTOBA_API_PORT",
        "AIKOTOBA_STREAM_MAXLEN",
        "AIKOTOBA_CONSUMER_NAME",
        "EVENT_BUS_ENABLED",
        "REDIS_URL",
    ]:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def now():
    # 12:00 in Tokyo
    return datetime(2026, 3, 14, 3, 0, tzinfo=UTC)


@pytest.fixture
def owner():
    return Device("owner-device")


@pytest.fixture
def thief():
    return Device("thief-device")


@pytest.fixture
def store():
    return MemoryEntryStore()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def entitlements():
    return StaticEntitlements()


@pytest.fixture
def audit_calls():
    return []


@pytest.fixture
def service(store, entitlements, sink, audit_calls, now):
    def audit(operation, entry_id, actor, **details):
        audit_calls.append((operation, entry_id, actor, details))

    return VaultService(
        store,
        entitlements,
        notifier=Notifier(sink),
        audit=audit,
        clock=lambda: now,
    )


@pytest.fixture
def entry(service, owner, now):
    """A public 3-digit entry with passcode 482."""
    return service.create_entry(owner, "sesame", "the treasure is under the tree", passcode="482", now=now)
