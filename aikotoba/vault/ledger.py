"""
Attempt ledger — one evaluated guess per challenger, per entry, per day.

"Day" is the calendar day in a fixed time zone (``Asia/Tokyo`` by default),
matching the app's "try again tomorrow" message. Admission reserves the
``(entry, challenger, day)`` key inside the caller's entry transaction, so the
reservation commits or rolls back together with the rest of the challenge.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from zoneinfo import ZoneInfo

from aikotoba.vault.identity import Identity
from aikotoba.vault.models import AttemptKey, AttemptOutcome

logger = logging.getLogger(__name__)


class Admission(str, Enum):
    ALLOWED = "allowed"
    DENIED = "denied"


class AttemptLedger:
    def __init__(self, tz_name: str = "Asia/Tokyo") -> None:
        self.tz = ZoneInfo(tz_name)

    def period_for(self, now: datetime) -> str:
        if now.tzinfo is None:
            raise ValueError("attempt timestamps must be timezone-aware")
        return now.astimezone(self.tz).date().isoformat()

    def key_for(self, entry_id: str, challenger: Identity, now: datetime) -> AttemptKey:
        return AttemptKey(entry_id, challenger, self.period_for(now))

    def admit(self, tx, entry_id: str, challenger: Identity, now: datetime) -> Admission:
        """Reserve today's attempt for ``challenger``; DENIED if already used."""
        key = self.key_for(entry_id, challenger, now)
        if tx.reserve_attempt(key, now):
            return Admission.ALLOWED
        logger.info("Attempt limit reached for entry %s (period %s)", entry_id, key.period)
        return Admission.DENIED

    def record(self, tx, entry_id: str, challenger: Identity, now: datetime, success: bool) -> None:
        outcome = AttemptOutcome.SUCCESS if success else AttemptOutcome.FAILURE
        tx.finish_attempt(self.key_for(entry_id, challenger, now), outcome)
