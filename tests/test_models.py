"""Tests for aikotoba.vault.models — entry invariants and response views."""

from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from aikotoba.vault.identity import Account, Device
from aikotoba.vault.models import (
    ChallengeFailed,
    ChallengeLimitExceeded,
    ChallengeSuccess,
    EntryState,
    Hint,
    VaultEntry,
    zero_passcode,
)

NOW = datetime(2026, 3, 14, 3, 0, tzinfo=UTC)


def _entry(**overrides):
    fields = {
        "id": "e1",
        "keyword": "sesame",
        "passcode": "482",
        "owner": Device("owner"),
        "created_at": NOW,
    }
    fields.update(overrides)
    return VaultEntry(**fields)


class TestVaultEntry:
    def test_defaults(self):
        e = _entry()
        assert e.passcode_length == 3
        assert e.state is EntryState.PUBLIC
        assert e.view_count == e.stolen_count == e.failed_count == 0
        assert e.image_urls == []

    def test_passcode_must_match_length(self):
        with pytest.raises(ValidationError):
            _entry(passcode="4821")

    def test_passcode_digits_only(self):
        with pytest.raises(ValidationError):
            _entry(passcode="48a")

    @pytest.mark.parametrize("length", [2, 11])
    def test_length_bounds(self, length):
        with pytest.raises(ValidationError):
            _entry(passcode_length=length, passcode=zero_passcode(length))

    def test_hidden_requires_deadline(self):
        with pytest.raises(ValidationError):
            _entry(is_hidden=True)
        with pytest.raises(ValidationError):
            _entry(grace_deadline=NOW)

    def test_hidden_state(self):
        e = _entry(is_hidden=True, grace_deadline=NOW + timedelta(hours=24))
        assert e.state is EntryState.GRACE_HIDDEN

    def test_frozen(self):
        e = _entry()
        with pytest.raises(ValidationError):
            e.passcode = "000"

    def test_evolve_validates(self):
        e = _entry()
        assert e.evolve(failed_count=1).failed_count == 1
        assert e.failed_count == 0
        with pytest.raises(ValidationError):
            e.evolve(passcode_length=4)

    def test_owned_by(self):
        e = _entry(owner=Account("u1"))
        assert e.owned_by(Account("u1"))
        assert not e.owned_by(Device("u1"))
        assert not e.owned_by(None)


class TestViews:
    def test_public_view_hides_passcode(self):
        view = _entry().public_view()
        assert "passcode" not in view
        assert "owner" not in view
        assert view["passcodeLength"] == 3
        assert view["keyword"] == "sesame"

    def test_owner_view(self):
        view = _entry().owner_view()
        assert view["passcode"] == "482"
        assert view["owner"] == "device:owner"
        assert view["graceDeadline"] is None


class TestChallengeResults:
    def test_wire(self):
        assert ChallengeSuccess(_entry()).to_wire() == "success"
        assert ChallengeLimitExceeded().to_wire() == "limit_exceeded"
        hints = (Hint.EXACT, Hint.PARTIAL, Hint.WRONG)
        assert ChallengeFailed(hints).to_wire() == "failed:◎○×"
