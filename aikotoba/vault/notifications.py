"""
Notification emitter — stolen / failed-attempt signals for entry owners.

The vault only decides *whether* a committed transition should notify someone
and hands the event to a sink. Formatting, fan-out and push delivery belong to
downstream consumers (see aikotoba.events.consumers.inbox).

Events carry a deterministic ``event_id`` so a redelivered event can be
recognised and dropped by consumers.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

from aikotoba.config import get_config
from aikotoba.events.bus import publish
from aikotoba.vault.identity import Identity, format_identity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StolenEvent:
    entry_id: str
    keyword: str
    previous_owner: Identity
    new_owner: Identity
    stolen_count: int

    type = "vault.stolen"

    @property
    def event_id(self) -> str:
        return f"stolen:{self.entry_id}:{self.stolen_count}"

    @property
    def recipient(self) -> Identity:
        return self.previous_owner

    def to_payload(self) -> dict:
        return {
            "entry_id": self.entry_id,
            "keyword": self.keyword,
            "previous_owner": format_identity(self.previous_owner),
            "new_owner": format_identity(self.new_owner),
            "stolen_count": self.stolen_count,
        }


@dataclass(frozen=True)
class AttemptEvent:
    entry_id: str
    keyword: str
    owner: Identity
    challenger: Identity
    failed_count: int

    type = "vault.attempt"

    @property
    def event_id(self) -> str:
        return f"attempt:{self.entry_id}:{self.failed_count}"

    @property
    def recipient(self) -> Identity:
        return self.owner

    def to_payload(self) -> dict:
        return {
            "entry_id": self.entry_id,
            "keyword": self.keyword,
            "owner": format_identity(self.owner),
            "challenger": format_identity(self.challenger),
            "failed_count": self.failed_count,
        }


VaultEvent = StolenEvent | AttemptEvent


@dataclass(frozen=True)
class NotificationSettings:
    push_enabled: bool = True
    notify_on_stolen: bool = True
    notify_on_attempts: bool = True
    attempt_threshold: int = 3

    def __post_init__(self) -> None:
        if self.attempt_threshold < 1:
            raise ValueError("attempt_threshold must be at least 1")


class NotificationSink(Protocol):
    def emit(self, event: VaultEvent) -> bool: ...


class BusNotificationSink:
    """Publishes vault events to the ``vault`` stream of the event bus."""

    stream = "vault"

    def emit(self, event: VaultEvent) -> bool:
        if not get_config().redis.enabled:
            # Switched off on purpose; nothing to retry.
            logger.debug("Event bus disabled, dropping %s", event.event_id)
            return True
        msg_id = publish(
            self.stream,
            event.type,
            event.to_payload(),
            source="aikotoba.vault",
            event_id=event.event_id,
        )
        return msg_id is not None


@dataclass
class RecordingSink:
    """Keeps emitted events in memory (local runs, tests)."""

    events: list = field(default_factory=list)

    def emit(self, event: VaultEvent) -> bool:
        self.events.append(event)
        return True


SettingsLookup = Callable[[Identity], NotificationSettings]


class Notifier:
    def __init__(
        self,
        sink: NotificationSink,
        settings_lookup: SettingsLookup | None = None,
        max_attempts: int = 3,
        defaults: NotificationSettings | None = None,
    ) -> None:
        self.sink = sink
        self.defaults = defaults or NotificationSettings()
        self.settings_lookup = settings_lookup or (lambda _identity: self.defaults)
        self.max_attempts = max(1, max_attempts)

    def _settings(self, identity: Identity) -> NotificationSettings:
        try:
            return self.settings_lookup(identity)
        except Exception as e:
            logger.warning("Notification settings lookup failed, using defaults: %s", e)
            return self.defaults

    def stolen(self, event: StolenEvent) -> bool:
        if not self._settings(event.recipient).notify_on_stolen:
            return False
        return self._deliver(event)

    def failed_attempt(self, event: AttemptEvent) -> bool:
        """Emit when the failure count reaches a multiple of the owner's threshold."""
        settings = self._settings(event.recipient)
        if not settings.notify_on_attempts:
            return False
        if event.failed_count % settings.attempt_threshold != 0:
            return False
        return self._deliver(event)

    def _deliver(self, event: VaultEvent) -> bool:
        for attempt in range(1, self.max_attempts + 1):
            try:
                if self.sink.emit(event):
                    return True
                logger.warning("Notification %s not accepted (try %d/%d)", event.event_id, attempt, self.max_attempts)
            except Exception as e:
                logger.warning(
                    "Notification %s failed (try %d/%d): %s", event.event_id, attempt, self.max_attempts, e
                )
        logger.error("Giving up on notification %s", event.event_id)
        return False
