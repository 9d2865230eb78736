"""Vault data models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from aikotoba.vault.identity import Identity, format_identity

MIN_PASSCODE_LENGTH = 3
MAX_PASSCODE_LENGTH = 10
FREE_PASSCODE_LENGTH = 3


def zero_passcode(length: int) -> str:
    """The all-zero passcode a stolen or upgraded entry falls back to."""
    return "0" * length


def is_digit_string(value: str, length: int) -> bool:
    return len(value) == length and all(c in "0123456789" for c in value)


class EntryState(str, Enum):
    PUBLIC = "public"
    GRACE_HIDDEN = "grace_hidden"


class EntryStatus(str, Enum):
    NOT_FOUND = "not_found"
    HIDDEN = "hidden"
    AVAILABLE = "available"


class VaultEntry(BaseModel):
    """A keyword-addressed, passcode-guarded note.

    Instances are immutable; every transition builds a new, fully validated
    entry with :meth:`evolve`.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    keyword: str = Field(min_length=1)
    passcode_length: int = Field(default=FREE_PASSCODE_LENGTH, ge=MIN_PASSCODE_LENGTH, le=MAX_PASSCODE_LENGTH)
    passcode: str
    owner: Identity
    creator: Identity | None = None
    is_hidden: bool = False
    grace_deadline: datetime | None = None
    view_count: int = Field(default=0, ge=0)
    stolen_count: int = Field(default=0, ge=0)
    failed_count: int = Field(default=0, ge=0)
    body: str = ""
    voice_url: str | None = None
    image_urls: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime | None = None

    @model_validator(mode="after")
    def _check_invariants(self) -> VaultEntry:
        if not is_digit_string(self.passcode, self.passcode_length):
            raise ValueError("passcode must be passcode_length digits")
        if self.is_hidden != (self.grace_deadline is not None):
            raise ValueError("grace_deadline must be set exactly while the entry is hidden")
        return self

    @property
    def state(self) -> EntryState:
        return EntryState.GRACE_HIDDEN if self.is_hidden else EntryState.PUBLIC

    def owned_by(self, identity: Identity | None) -> bool:
        return identity is not None and identity == self.owner

    def evolve(self, **changes: Any) -> VaultEntry:
        """Return a validated copy with ``changes`` applied."""
        fields = dict(self)
        fields.update(changes)
        return VaultEntry(**fields)

    def public_view(self) -> dict[str, Any]:
        """Response shape for any viewer. Never includes the passcode."""
        return {
            "id": self.id,
            "keyword": self.keyword,
            "body": self.body,
            "voiceUrl": self.voice_url,
            "imageUrls": list(self.image_urls),
            "passcodeLength": self.passcode_length,
            "isHidden": self.is_hidden,
            "viewCount": self.view_count,
            "stolenCount": self.stolen_count,
            "failedCount": self.failed_count,
            "createdAt": self.created_at.isoformat(),
        }

    def owner_view(self) -> dict[str, Any]:
        """Response shape for the current owner."""
        view = self.public_view()
        view["passcode"] = self.passcode
        view["owner"] = format_identity(self.owner)
        view["graceDeadline"] = self.grace_deadline.isoformat() if self.grace_deadline else None
        return view


# ─── Hints ───────────────────────────────────────────────────────────────


class Hint(str, Enum):
    EXACT = "EXACT"
    PARTIAL = "PARTIAL"
    WRONG = "WRONG"

    @property
    def symbol(self) -> str:
        return _HINT_SYMBOLS[self]


_HINT_SYMBOLS = {Hint.EXACT: "◎", Hint.PARTIAL: "○", Hint.WRONG: "×"}
SYMBOL_TO_HINT = {symbol: hint for hint, symbol in _HINT_SYMBOLS.items()}


# ─── Attempts ────────────────────────────────────────────────────────────


class AttemptOutcome(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class AttemptKey:
    entry_id: str
    challenger: Identity
    period: str


@dataclass(frozen=True)
class AttemptRecord:
    key: AttemptKey
    outcome: AttemptOutcome
    timestamp: datetime


# ─── Challenge results ───────────────────────────────────────────────────


@dataclass(frozen=True)
class ChallengeSuccess:
    entry: VaultEntry

    def to_wire(self) -> str:
        return "success"


@dataclass(frozen=True)
class ChallengeFailed:
    hints: tuple[Hint, ...]

    def to_wire(self) -> str:
        return "failed:" + "".join(h.symbol for h in self.hints)


@dataclass(frozen=True)
class ChallengeLimitExceeded:
    def to_wire(self) -> str:
        return "limit_exceeded"


ChallengeResult = ChallengeSuccess | ChallengeFailed | ChallengeLimitExceeded
