"""Tests for VaultService.challenge — guessing, daily limit and ownership transfer."""

import threading
from datetime import timedelta

import pytest

from aikotoba.vault.errors import (
    EntryUnavailable,
    InvalidGuessFormat,
    NotFound,
    OwnerCannotChallenge,
    TransferConflict,
)
from aikotoba.vault.identity import Account, Device
from aikotoba.vault.models import (
    AttemptOutcome,
    ChallengeFailed,
    ChallengeLimitExceeded,
    ChallengeSuccess,
    EntryState,
    Hint,
)
from aikotoba.vault.notifications import AttemptEvent, Notifier, StolenEvent
from aikotoba.vault.service import VaultService
from aikotoba.vault.store import MemoryEntryStore
from aikotoba.vault.tiers import StaticEntitlements


class TestFailedGuess:
    def test_hints_and_counter(self, service, store, entry, thief):
        result = service.challenge(entry.id, thief, "428")
        assert isinstance(result, ChallengeFailed)
        assert result.hints == (Hint.EXACT, Hint.PARTIAL, Hint.PARTIAL)
        assert result.to_wire() == "failed:◎○○"

        stored = store.get(entry.id)
        assert stored.failed_count == 1
        assert stored.owner == entry.owner
        assert stored.passcode == "482"
        [attempt] = store.attempts_for(entry.id)
        assert attempt.outcome is AttemptOutcome.FAILURE

    def test_second_guess_same_day_limited(self, service, store, entry, thief, now):
        service.challenge(entry.id, thief, "111", now=now)
        result = service.challenge(entry.id, thief, "482", now=now + timedelta(hours=2))
        assert isinstance(result, ChallengeLimitExceeded)
        assert result.to_wire() == "limit_exceeded"

        stored = store.get(entry.id)
        assert stored.owner == entry.owner
        assert stored.failed_count == 1
        assert len(store.attempts_for(entry.id)) == 1

    def test_next_day_allowed(self, service, entry, thief, now):
        service.challenge(entry.id, thief, "111", now=now)
        result = service.challenge(entry.id, thief, "482", now=now + timedelta(days=1))
        assert isinstance(result, ChallengeSuccess)

    def test_device_and_account_are_separate_challengers(self, service, entry, now):
        service.challenge(entry.id, Device("same"), "111", now=now)
        result = service.challenge(entry.id, Account("same"), "222", now=now)
        assert isinstance(result, ChallengeFailed)


class TestRejectedGuess:
    @pytest.mark.parametrize("guess", ["48", "4821", "48a", ""])
    def test_invalid_format_consumes_no_attempt(self, service, store, entry, thief, guess):
        with pytest.raises(InvalidGuessFormat):
            service.challenge(entry.id, thief, guess)
        assert store.attempts_for(entry.id) == []
        assert store.get(entry.id).failed_count == 0
        assert isinstance(service.challenge(entry.id, thief, "123"), ChallengeFailed)

    def test_owner_cannot_challenge(self, service, store, entry, owner):
        with pytest.raises(OwnerCannotChallenge):
            service.challenge(entry.id, owner, "482")
        assert store.attempts_for(entry.id) == []

    def test_unknown_entry(self, service, thief):
        with pytest.raises(NotFound):
            service.challenge("no-such-entry", thief, "482")


class TestSuccessfulGuess:
    def test_transfer(self, service, store, entry, owner, thief, now):
        result = service.challenge(entry.id, thief, "482")
        assert isinstance(result, ChallengeSuccess)
        assert result.to_wire() == "success"

        stolen = store.get(entry.id)
        assert stolen.owner == thief
        assert stolen.creator == owner
        assert stolen.passcode == "000"
        assert stolen.passcode_length == 3
        assert stolen.state is EntryState.GRACE_HIDDEN
        assert stolen.grace_deadline == now + timedelta(hours=24)
        assert stolen.stolen_count == 1
        assert stolen.failed_count == 0
        assert result.entry == stolen
        [attempt] = store.attempts_for(entry.id)
        assert attempt.outcome is AttemptOutcome.SUCCESS

    def test_previous_owner_notified(self, service, sink, entry, owner, thief):
        service.challenge(entry.id, thief, "482")
        [event] = sink.events
        assert isinstance(event, StolenEvent)
        assert event.recipient == owner
        assert event.new_owner == thief
        assert event.event_id == f"stolen:{entry.id}:1"

    def test_audited_without_secret(self, service, audit_calls, entry, thief):
        service.challenge(entry.id, thief, "482")
        operation, entry_id, actor, details = audit_calls[-1]
        assert (operation, entry_id, actor) == ("stolen", entry.id, thief)
        assert "482" not in repr(details)

    def test_hidden_entry_is_unavailable(self, service, entry, thief):
        service.challenge(entry.id, thief, "482")
        with pytest.raises(EntryUnavailable) as exc_info:
            service.challenge(entry.id, Device("late"), "000")
        assert not isinstance(exc_info.value, TransferConflict)
        assert exc_info.value.code == "hidden"

    def test_correct_guess_that_lost_the_race(self, service, store, entry, thief, monkeypatch):
        snapshot = store.get(entry.id)
        service.challenge(entry.id, thief, "482")
        monkeypatch.setattr(store, "get", lambda _entry_id: snapshot)
        with pytest.raises(TransferConflict):
            service.challenge(entry.id, Device("runner-up"), "482")

    def test_wrong_guess_that_lost_the_race(self, service, store, entry, thief, monkeypatch):
        snapshot = store.get(entry.id)
        service.challenge(entry.id, thief, "482")
        monkeypatch.setattr(store, "get", lambda _entry_id: snapshot)
        with pytest.raises(EntryUnavailable) as exc_info:
            service.challenge(entry.id, Device("runner-up"), "111")
        assert not isinstance(exc_info.value, TransferConflict)

    def test_notification_failure_keeps_transfer(self, store, entry, thief, now):
        class BrokenSink:
            def emit(self, event):
                raise ConnectionError("push down")

        service = VaultService(
            store,
            StaticEntitlements(),
            notifier=Notifier(BrokenSink(), max_attempts=2),
            audit=lambda *a, **k: None,
            clock=lambda: now,
        )
        assert isinstance(service.challenge(entry.id, thief, "482"), ChallengeSuccess)
        assert store.get(entry.id).owner == thief


class TestAttemptNotifications:
    def test_every_third_failure_notifies_owner(self, service, sink, entry, owner, now):
        for i in range(6):
            service.challenge(entry.id, Device(f"guesser-{i}"), "111", now=now)
        events = [e for e in sink.events if isinstance(e, AttemptEvent)]
        assert [e.failed_count for e in events] == [3, 6]
        assert all(e.recipient == owner for e in events)


class TestConcurrentChallenges:
    def test_exactly_one_winner(self, now):
        store = MemoryEntryStore()
        service = VaultService(store, StaticEntitlements(), audit=lambda *a, **k: None, clock=lambda: now)
        entry = service.create_entry(Device("owner"), "race", "", passcode="913")

        n = 12
        barrier = threading.Barrier(n)
        results: list = []
        lock = threading.Lock()

        def attempt(i):
            barrier.wait()
            try:
                outcome = service.challenge(entry.id, Device(f"racer-{i}"), "913")
            except EntryUnavailable as e:
                outcome = e
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=attempt, args=(i,)) for i in range(n)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        winners = [r for r in results if isinstance(r, ChallengeSuccess)]
        assert len(winners) == 1
        assert sum(isinstance(r, EntryUnavailable) for r in results) == n - 1

        final = store.get(entry.id)
        assert final.stolen_count == 1
        assert final.owner == winners[0].entry.owner
