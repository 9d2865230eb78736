"""
Writes vault events into the recipient's in-app inbox.

The vault has already applied the owner's notification preferences before
publishing, so every event that reaches this worker gets a row.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import NamedTuple

from aikotoba.events.bus import BusEvent
from aikotoba.events.consumers.base import BaseConsumer
from aikotoba.notify.dal import add_notification
from aikotoba.vault.errors import InvalidIdentity
from aikotoba.vault.identity import Identity, parse_identity

logger = logging.getLogger(__name__)


class InboxMessage(NamedTuple):
    recipient: Identity
    title: str
    body: str


def render(event: BusEvent) -> InboxMessage | None:
    """Inbox text for ``event``; None for event types the inbox does not show."""
    p = event.payload
    keyword = p.get("keyword", "")
    if event.type == "vault.stolen":
        return InboxMessage(
            parse_identity(p["previous_owner"]),
            "Your note was stolen",
            f"Someone guessed the passcode for “{keyword}”. It belongs to them now.",
        )
    if event.type == "vault.attempt":
        return InboxMessage(
            parse_identity(p["owner"]),
            "Someone is guessing your passcode",
            f"“{keyword}” has held off {p.get('failed_count', 0)} wrong guesses so far.",
        )
    return None


AddNotification = Callable[[Identity, str, str, str], "str | None"]


class InboxConsumer(BaseConsumer):
    stream = "vault"
    group = "inbox"

    def __init__(self, name: str | None = None, add: AddNotification = add_notification) -> None:
        super().__init__(name)
        self._add = add

    def handle(self, event: BusEvent) -> None:
        try:
            message = render(event)
        except (KeyError, InvalidIdentity) as e:
            # Redelivery cannot repair the payload; acknowledge and move on.
            logger.error("Inbox cannot address %s (%s): %s", event.type, event.dedupe_key, e)
            return
        if message is None:
            logger.debug("Inbox ignores %s", event.type)
            return
        stored = self._add(message.recipient, event.dedupe_key, message.title, message.body)
        if stored:
            logger.info("Inbox %s for %s (%s)", event.type, message.recipient, event.dedupe_key)
