"""
Aikotoba Vault — passcode-guarded notes that can be stolen by guessing.

Public API:
    build_service()                        → VaultService wired from config
    service.create_entry(owner, kw, body)  → VaultEntry
    service.challenge(entry_id, who, guess) → ChallengeSuccess | ChallengeFailed | ChallengeLimitExceeded
    service.resolve_grace(entry_id, ...)   → VaultEntry
    service.upgrade_length(entry_id, owner, n) → VaultEntry
    evaluate(secret, guess)                → [Hint, ...]
"""

from __future__ import annotations

from aikotoba.vault.evaluator import evaluate, hints_from_wire, hints_to_wire
from aikotoba.vault.identity import Account, Device, Identity, format_identity, parse_identity
from aikotoba.vault.models import (
    ChallengeFailed,
    ChallengeLimitExceeded,
    ChallengeSuccess,
    EntryState,
    EntryStatus,
    Hint,
    VaultEntry,
)
from aikotoba.vault.service import VaultService


def build_service(store=None, entitlements=None) -> VaultService:
    """Wire a VaultService from configuration (PostgreSQL store, Redis events)."""
    from aikotoba.config import get_config
    from aikotoba.notify.dal import get_settings
    from aikotoba.vault.ledger import AttemptLedger
    from aikotoba.vault.notifications import BusNotificationSink, NotificationSettings, Notifier
    from aikotoba.vault.store import load_entry_store

    cfg = get_config().vault
    store = store or load_entry_store()
    in_memory = cfg.store == "memory"
    if entitlements is None:
        if in_memory:
            from aikotoba.vault.tiers import StaticEntitlements

            entitlements = StaticEntitlements()
        else:
            from aikotoba.vault.dal import PostgresEntitlements

            entitlements = PostgresEntitlements()

    return VaultService(
        store,
        entitlements,
        notifier=Notifier(
            BusNotificationSink(),
            None if in_memory else get_settings,
            max_attempts=cfg.notify_retries,
            defaults=NotificationSettings(attempt_threshold=cfg.attempt_threshold),
        ),
        ledger=AttemptLedger(cfg.attempt_timezone),
        grace_period=cfg.grace_period,
    )


__all__ = [
    "Account",
    "ChallengeFailed",
    "ChallengeLimitExceeded",
    "ChallengeSuccess",
    "Device",
    "EntryState",
    "EntryStatus",
    "Hint",
    "Identity",
    "VaultEntry",
    "VaultService",
    "build_service",
    "evaluate",
    "format_identity",
    "hints_from_wire",
    "hints_to_wire",
    "parse_identity",
]
