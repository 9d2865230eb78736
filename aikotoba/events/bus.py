"""
Redis Streams transport for vault events.

Streams live under ``aikotoba:events:<name>``; the vault writes to ``vault``
(``vault.stolen``, ``vault.attempt``) and ``aikotoba sweep`` writes a
``system.sweep`` summary to ``system``.

Every message carries an ``event_id`` chosen by the producer. It survives
redelivery, so consumers that write somewhere use it as their dedupe key.

    from aikotoba.events.bus import publish, subscribe

    publish("vault", "vault.stolen", {"entry_id": "..."}, event_id="stolen:<id>:1")
    subscribe("vault", "inbox", "inbox-0", handler=lambda ev: print(ev.type, ev.payload))
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from aikotoba.config import get_config

logger = logging.getLogger(__name__)

STREAM_PREFIX = "aikotoba:events:"
STREAMS = frozenset({"vault", "system"})

_client = None


@dataclass(frozen=True)
class BusEvent:
    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    event_id: str = ""
    source: str = "aikotoba"
    timestamp: str = ""
    message_id: str = ""

    @property
    def dedupe_key(self) -> str:
        return self.event_id or self.message_id

    def to_fields(self) -> dict[str, str]:
        return {
            "type": self.type,
            "event_id": self.event_id,
            "source": self.source,
            "timestamp": self.timestamp or datetime.now(UTC).isoformat(),
            "payload": json.dumps(self.payload, ensure_ascii=False),
        }

    @classmethod
    def from_fields(cls, message_id: str, fields: dict[str, str]) -> BusEvent:
        """Decode a stream entry; raises ValueError for entries we did not write."""
        if "type" not in fields:
            raise ValueError(f"message {message_id} has no type")
        payload = json.loads(fields.get("payload") or "{}")
        if not isinstance(payload, dict):
            raise ValueError(f"message {message_id} payload is not an object")
        return cls(
            type=fields["type"],
            payload=payload,
            event_id=fields.get("event_id", ""),
            source=fields.get("source", ""),
            timestamp=fields.get("timestamp", ""),
            message_id=message_id,
        )


def stream_key(stream: str) -> str:
    return STREAM_PREFIX + stream


def set_redis_client(client) -> None:
    """Install a client (tests pass a MagicMock)."""
    global _client
    _client = client


def reset_client() -> None:
    global _client
    _client = None


def get_client():
    """Return a live Redis client, or None if Redis cannot be reached."""
    global _client
    if _client is not None:
        return _client
    try:
        import redis

        client = redis.Redis.from_url(get_config().redis.url, decode_responses=True)
        client.ping()
    except Exception as e:
        logger.warning("Event bus: Redis unavailable: %s", e)
        return None
    _client = client
    return _client


def publish(
    stream: str,
    event_type: str,
    payload: dict[str, Any],
    *,
    event_id: str = "",
    source: str = "aikotoba",
) -> str | None:
    """Append an event to ``stream``.

    Returns the stream message id. Returns None when the bus is switched off
    (``EVENT_BUS_ENABLED=false``) or Redis rejected the write; callers that
    must know about delivery check for None rather than catching.
    """
    cfg = get_config().redis
    if not cfg.enabled:
        return None
    if stream not in STREAMS:
        logger.warning("Event bus: publishing to undeclared stream %r", stream)

    client = get_client()
    if client is None:
        return None
    event = BusEvent(type=event_type, payload=payload, event_id=event_id, source=source)
    try:
        return client.xadd(stream_key(stream), event.to_fields(), maxlen=cfg.stream_maxlen, approximate=True)
    except Exception as e:
        logger.warning("Event bus: publish of %s failed: %s", event_type, e)
        reset_client()
        return None


def _ensure_group(client, key: str, group: str) -> None:
    try:
        client.xgroup_create(key, group, id="0", mkstream=True)
    except Exception as e:
        if "BUSYGROUP" not in str(e):
            raise


def _reclaim(client, key: str, group: str, consumer: str, idle_ms: int, count: int) -> list:
    """Take over messages another worker read but never acknowledged."""
    try:
        reply = client.xautoclaim(key, group, consumer, min_idle_time=idle_ms, start_id="0-0", count=count)
    except Exception as e:
        logger.warning("Event bus: reclaim on %s failed: %s", key, e)
        return []
    return list(reply[1]) if reply else []


def _dispatch(client, key: str, group: str, entries, handler: Callable[[BusEvent], None]) -> int:
    handled = 0
    for message_id, fields in entries:
        try:
            event = BusEvent.from_fields(message_id, fields or {})
        except ValueError as e:
            # Nothing will ever decode it; ack so it stops coming back.
            logger.error("Event bus: dropping malformed message %s: %s", message_id, e)
            client.xack(key, group, message_id)
            continue
        try:
            handler(event)
        except Exception:
            logger.exception("Event bus: handler failed for %s (%s); left pending", message_id, event.type)
            continue
        client.xack(key, group, message_id)
        handled += 1
    return handled


def subscribe(
    stream: str,
    group: str,
    consumer: str,
    *,
    handler: Callable[[BusEvent], None],
    batch_size: int = 10,
    block_ms: int = 5000,
    reclaim_idle_ms: int | None = 60_000,
    max_iterations: int | None = None,
    should_continue: Callable[[], bool] | None = None,
) -> int:
    """Read ``stream`` as ``consumer`` in consumer group ``group``.

    A message is acknowledged once ``handler`` returns. If the handler raises,
    the message stays pending and is reclaimed after ``reclaim_idle_ms``.
    Returns the number of events handled.
    """
    if not get_config().redis.enabled:
        return 0
    client = get_client()
    if client is None:
        return 0

    key = stream_key(stream)
    _ensure_group(client, key, group)

    handled = 0
    iteration = 0
    while max_iterations is None or iteration < max_iterations:
        if should_continue is not None and not should_continue():
            break
        iteration += 1

        if reclaim_idle_ms:
            stale = _reclaim(client, key, group, consumer, reclaim_idle_ms, batch_size)
            handled += _dispatch(client, key, group, stale, handler)

        try:
            reply = client.xreadgroup(group, consumer, {key: ">"}, count=batch_size, block=block_ms)
        except Exception as e:
            logger.warning("Event bus: read from %s failed: %s", key, e)
            continue
        for _name, entries in reply or []:
            handled += _dispatch(client, key, group, entries, handler)
    return handled
