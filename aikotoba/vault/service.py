"""
Vault service — the challenge / ownership-transfer / grace state machine.

An entry is either PUBLIC (visible, guessable) or GRACE_HIDDEN (just stolen,
hidden until the new owner sets a passcode or the grace deadline passes).

challenge():
    lock entry -> expire grace if due -> refuse hidden entries
    -> validate guess -> admit (one per challenger per day) -> evaluate
    -> on all-EXACT: owner := challenger, passcode := zeros, hide, stolen_count+1
    -> else: failed_count+1
    -> commit, then notify

Every mutation of an entry happens inside ``store.transaction(entry_id)``,
which serializes writers per entry and makes the whole step atomic.

Usage:
    service = VaultService(MemoryEntryStore(), StaticEntitlements())
    entry = service.create_entry(Device("tok"), "sesame", "hello", passcode="482")
    result = service.challenge(entry.id, Device("other"), "428")
    result.to_wire()   # "failed:◎○○"
"""

from __future__ import annotations

import hmac
import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from aikotoba.vault.errors import (
    EntryUnavailable,
    InvalidPasscode,
    NotFound,
    NotOwner,
    OwnerCannotChallenge,
    TransferConflict,
)
from aikotoba.vault.evaluator import evaluate, is_solved, validate_guess
from aikotoba.vault.identity import Identity, format_identity
from aikotoba.vault.ledger import Admission, AttemptLedger
from aikotoba.vault.models import (
    FREE_PASSCODE_LENGTH,
    ChallengeFailed,
    ChallengeLimitExceeded,
    ChallengeResult,
    ChallengeSuccess,
    EntryStatus,
    VaultEntry,
    is_digit_string,
    zero_passcode,
)
from aikotoba.vault.notifications import AttemptEvent, Notifier, RecordingSink, StolenEvent
from aikotoba.vault.store import EntryStore, EntryTransaction
from aikotoba.vault.tiers import EntitlementProvider, PasscodeTier, TierGate, available_upgrades

logger = logging.getLogger(__name__)

DEFAULT_GRACE_PERIOD = timedelta(hours=24)

_UNSET: Any = object()


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _safe_audit(operation: str, entry_id: str, actor: Identity, **details: Any) -> None:
    """Wrap audit logging so it never propagates exceptions."""
    try:
        from aikotoba.audit.logger import log_vault_mutation

        log_vault_mutation(operation, entry_id, actor=format_identity(actor), **details)
    except Exception as e:
        logger.warning("Audit call failed (non-fatal): %s", e)


def _check_passcode(passcode: str, length: int) -> str:
    if not isinstance(passcode, str) or not is_digit_string(passcode, length):
        raise InvalidPasscode(f"passcode must be exactly {length} digits")
    return passcode


def _lost_race(before: VaultEntry | None, guess: str) -> bool:
    """True if ``guess`` opened ``before`` but someone else committed first."""
    if before is None or before.is_hidden or len(guess) != len(before.passcode):
        return False
    return hmac.compare_digest(guess.encode(), before.passcode.encode())


class VaultService:
    def __init__(
        self,
        store: EntryStore,
        entitlements: EntitlementProvider,
        notifier: Notifier | None = None,
        ledger: AttemptLedger | None = None,
        grace_period: timedelta = DEFAULT_GRACE_PERIOD,
        clock: Callable[[], datetime] = _utcnow,
        audit: Callable[..., None] = _safe_audit,
    ) -> None:
        self.store = store
        self.tier_gate = TierGate(entitlements)
        self.notifier = notifier or Notifier(RecordingSink())
        self.ledger = ledger or AttemptLedger()
        self.grace_period = grace_period
        self.clock = clock
        self.audit = audit

    # ─── Grace handling ──────────────────────────────────────────────────

    @staticmethod
    def _grace_expired(entry: VaultEntry, now: datetime) -> bool:
        return entry.is_hidden and entry.grace_deadline is not None and now >= entry.grace_deadline

    def _expire_grace_if_due(self, tx: EntryTransaction, now: datetime) -> VaultEntry:
        """Auto-publish a hidden entry whose deadline has passed (keeps the zero passcode)."""
        entry = tx.entry
        if self._grace_expired(entry, now):
            entry = entry.evolve(is_hidden=False, grace_deadline=None)
            entry = tx.save(entry)
            logger.info("Grace period expired for entry %s; published with default passcode", entry.id)
        return tx.entry

    def _read(self, entry: VaultEntry | None, now: datetime) -> VaultEntry | None:
        """Return an authoritative view of ``entry``, publishing it first if its grace expired."""
        if entry is None or not self._grace_expired(entry, now):
            return entry
        with self.store.transaction(entry.id) as tx:
            return self._expire_grace_if_due(tx, now)

    # ─── Entry lifecycle ─────────────────────────────────────────────────

    def create_entry(
        self,
        owner: Identity,
        keyword: str,
        body: str,
        *,
        passcode: str | None = None,
        voice_url: str | None = None,
        image_urls: list[str] | None = None,
        now: datetime | None = None,
    ) -> VaultEntry:
        now = now or self.clock()
        if not keyword:
            raise ValueError("keyword must not be empty")
        passcode = _check_passcode(passcode, FREE_PASSCODE_LENGTH) if passcode is not None else None
        entry = VaultEntry(
            id=str(uuid.uuid4()),
            keyword=keyword,
            passcode_length=FREE_PASSCODE_LENGTH,
            passcode=passcode or zero_passcode(FREE_PASSCODE_LENGTH),
            owner=owner,
            creator=owner,
            body=body,
            voice_url=voice_url,
            image_urls=image_urls or [],
            created_at=now,
            updated_at=now,
        )
        entry = self.store.insert(entry)
        logger.info("Created entry %s", entry.id)
        self.audit("create", entry.id, owner)
        return entry

    def fetch_entry(self, keyword: str, viewer: Identity | None = None, now: datetime | None = None) -> VaultEntry:
        """Look up an entry by keyword, counting the view for non-owners."""
        now = now or self.clock()
        entry = self.store.get_by_keyword(keyword)
        if entry is None:
            raise NotFound(keyword)

        with self.store.transaction(entry.id) as tx:
            entry = self._expire_grace_if_due(tx, now)
            if entry.owned_by(viewer):
                return entry
            if entry.is_hidden:
                raise EntryUnavailable(keyword)
            entry = entry.evolve(view_count=entry.view_count + 1)
            entry = tx.save(entry)
        return entry

    def entry_status(self, keyword: str, now: datetime | None = None) -> EntryStatus:
        entry = self._read(self.store.get_by_keyword(keyword), now or self.clock())
        if entry is None:
            return EntryStatus.NOT_FOUND
        return EntryStatus.HIDDEN if entry.is_hidden else EntryStatus.AVAILABLE

    def get_owned(self, entry_id: str, owner: Identity, now: datetime | None = None) -> VaultEntry:
        entry = self._read(self.store.get(entry_id), now or self.clock())
        if entry is None:
            raise NotFound(entry_id)
        if not entry.owned_by(owner):
            raise NotOwner(entry_id)
        return entry

    def list_owned(self, owner: Identity, now: datetime | None = None) -> list[VaultEntry]:
        now = now or self.clock()
        return [self._read(e, now) for e in self.store.list_by_owner(owner)]

    def update_entry(
        self,
        entry_id: str,
        owner: Identity,
        *,
        body: str | None = None,
        voice_url: str | None = _UNSET,
        image_urls: list[str] | None = _UNSET,
        now: datetime | None = None,
    ) -> VaultEntry:
        """Owner edit of the payload. The keyword cannot change."""
        now = now or self.clock()
        changes: dict[str, Any] = {}
        if body is not None:
            changes["body"] = body
        if voice_url is not _UNSET:
            changes["voice_url"] = voice_url
        if image_urls is not _UNSET:
            changes["image_urls"] = image_urls or []

        with self.store.transaction(entry_id) as tx:
            entry = self._expire_grace_if_due(tx, now)
            if not entry.owned_by(owner):
                raise NotOwner(entry_id)
            if changes:
                entry = entry.evolve(**changes)
                entry = tx.save(entry)
        self.audit("update", entry_id, owner, fields=sorted(changes))
        return entry

    def delete_entry(self, entry_id: str, owner: Identity) -> None:
        with self.store.transaction(entry_id) as tx:
            if not tx.entry.owned_by(owner):
                raise NotOwner(entry_id)
            tx.delete()
        logger.info("Deleted entry %s", entry_id)
        self.audit("delete", entry_id, owner)

    def report_entry(self, entry_id: str, reporter: Identity, now: datetime | None = None) -> None:
        self.store.add_report(entry_id, reporter, now or self.clock())
        self.audit("report", entry_id, reporter)

    # ─── Challenge ───────────────────────────────────────────────────────

    def challenge(
        self,
        entry_id: str,
        challenger: Identity,
        guess: str,
        now: datetime | None = None,
    ) -> ChallengeResult:
        now = now or self.clock()
        event: StolenEvent | AttemptEvent | None = None
        # Unlocked read: tells a lost race apart from a guess at an already hidden entry.
        before = self.store.get(entry_id)

        with self.store.transaction(entry_id) as tx:
            entry = self._expire_grace_if_due(tx, now)
            if entry.is_hidden:
                if _lost_race(before, guess):
                    raise TransferConflict(entry_id)
                raise EntryUnavailable(entry_id)
            if entry.owned_by(challenger):
                raise OwnerCannotChallenge(entry_id)
            validate_guess(guess, entry.passcode_length)

            if self.ledger.admit(tx, entry_id, challenger, now) is Admission.DENIED:
                return ChallengeLimitExceeded()

            hints = evaluate(entry.passcode, guess)
            solved = is_solved(hints)
            self.ledger.record(tx, entry_id, challenger, now, success=solved)

            if solved:
                previous_owner = entry.owner
                entry = entry.evolve(
                    owner=challenger,
                    passcode=zero_passcode(entry.passcode_length),
                    is_hidden=True,
                    grace_deadline=now + self.grace_period,
                    stolen_count=entry.stolen_count + 1,
                )
                entry = tx.save(entry)
                event = StolenEvent(entry.id, entry.keyword, previous_owner, challenger, entry.stolen_count)
                result: ChallengeResult = ChallengeSuccess(entry)
            else:
                entry = entry.evolve(failed_count=entry.failed_count + 1)
                entry = tx.save(entry)
                event = AttemptEvent(entry.id, entry.keyword, entry.owner, challenger, entry.failed_count)
                result = ChallengeFailed(tuple(hints))

        # Committed: from here on nothing may undo the transition.
        if isinstance(event, StolenEvent):
            logger.info("Entry %s stolen (stolen_count=%d)", entry_id, event.stolen_count)
            self.audit("stolen", entry_id, challenger, stolen_count=event.stolen_count)
            self.notifier.stolen(event)
        else:
            self.notifier.failed_attempt(event)
        return result

    def resolve_grace(
        self,
        entry_id: str,
        owner: Identity | None = None,
        new_passcode: str | None = None,
        now: datetime | None = None,
    ) -> VaultEntry:
        """Leave the grace state.

        The owner may publish early by supplying a passcode. Anyone (typically
        the sweep) may publish an entry whose deadline has passed; it keeps
        the all-zero passcode.
        """
        now = now or self.clock()
        with self.store.transaction(entry_id) as tx:
            entry = tx.entry
            if not entry.is_hidden:
                return entry
            if new_passcode is not None:
                if not entry.owned_by(owner):
                    raise NotOwner(entry_id)
                _check_passcode(new_passcode, entry.passcode_length)
                entry = entry.evolve(passcode=new_passcode, is_hidden=False, grace_deadline=None)
                entry = tx.save(entry)
            elif self._grace_expired(entry, now):
                entry = self._expire_grace_if_due(tx, now)
            else:
                return entry
        self.audit("publish", entry_id, owner or entry.owner, early=new_passcode is not None)
        return entry

    def sweep_expired_grace(self, now: datetime | None = None) -> list[str]:
        """Publish every entry whose grace period ended. Returns their ids."""
        now = now or self.clock()
        published = []
        for entry_id in self.store.list_expired_grace(now):
            try:
                entry = self.resolve_grace(entry_id, now=now)
            except NotFound:
                continue
            if not entry.is_hidden:
                published.append(entry_id)
        if published:
            logger.info("Grace sweep published %d entries", len(published))
        return published

    # ─── Owner passcode & tiers ──────────────────────────────────────────

    def set_passcode(self, entry_id: str, owner: Identity, passcode: str, now: datetime | None = None) -> VaultEntry:
        """Owner passcode change; on a hidden entry this ends the grace period."""
        now = now or self.clock()
        with self.store.transaction(entry_id) as tx:
            entry = self._expire_grace_if_due(tx, now)
            if not entry.owned_by(owner):
                raise NotOwner(entry_id)
            _check_passcode(passcode, entry.passcode_length)
            entry = entry.evolve(passcode=passcode, is_hidden=False, grace_deadline=None)
            entry = tx.save(entry)
        return entry

    def upgrade_length(
        self,
        entry_id: str,
        owner: Identity,
        target_length: int,
        new_passcode: str | None = None,
        now: datetime | None = None,
    ) -> VaultEntry:
        """Apply a purchased longer passcode to an owned entry.

        Without ``new_passcode`` the passcode is cleared to the all-zero code
        of the new length until the owner sets one.
        """
        now = now or self.clock()
        with self.store.transaction(entry_id) as tx:
            entry = self._expire_grace_if_due(tx, now)
            tier = self.tier_gate.check(entry, owner, target_length)
            if new_passcode is not None:
                _check_passcode(new_passcode, target_length)
            entry = entry.evolve(
                passcode_length=target_length,
                passcode=new_passcode or zero_passcode(target_length),
            )
            entry = tx.save(entry)
        logger.info("Upgraded entry %s to %d digits", entry_id, target_length)
        self.audit("upgrade", entry_id, owner, passcode_length=target_length, product_id=tier.product_id)
        return entry

    def available_upgrades(self, entry_id: str, owner: Identity) -> list[PasscodeTier]:
        return available_upgrades(self.get_owned(entry_id, owner).passcode_length)
