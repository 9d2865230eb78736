"""
Notify DAL — notification preferences and the in-app inbox.

Usage:
    from aikotoba.notify.dal import get_settings, add_notification

    settings = get_settings(Device("tok"))
    add_notification(Device("tok"), "stolen:<entry>:1", "Stolen", "...")
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from psycopg2.extras import RealDictCursor

from aikotoba.db.connection import get_connection
from aikotoba.vault.identity import Identity, format_identity
from aikotoba.vault.notifications import NotificationSettings

logger = logging.getLogger(__name__)

_SETTINGS_FIELDS = ("push_enabled", "notify_on_stolen", "notify_on_attempts", "attempt_threshold")


def _default_settings() -> NotificationSettings:
    from aikotoba.config import get_config

    return NotificationSettings(attempt_threshold=get_config().vault.attempt_threshold)


def settings_to_dict(settings: NotificationSettings) -> dict:
    return {
        "pushEnabled": settings.push_enabled,
        "notifyOnStolen": settings.notify_on_stolen,
        "notifyOnAttempts": settings.notify_on_attempts,
        "attemptThreshold": settings.attempt_threshold,
    }


def notification_to_dict(row: dict) -> dict:
    return {
        "id": str(row["id"]),
        "title": row.get("title") or "",
        "body": row.get("body") or "",
        "isRead": bool(row.get("is_read")),
        "createdAt": row["created_at"].isoformat() if row.get("created_at") else None,
    }


def get_settings(identity: Identity) -> NotificationSettings:
    """Stored preferences for ``identity``, or the defaults if none were saved."""
    with get_connection() as conn:
        cur = conn.cursor(cursor_factory=RealDictCursor)
        cur.execute(
            "SELECT push_enabled, notify_on_stolen, notify_on_attempts, attempt_threshold "
            "FROM notification_settings WHERE identity = %s",
            (format_identity(identity),),
        )
        row = cur.fetchone()
    if not row:
        return _default_settings()
    return NotificationSettings(**{k: row[k] for k in _SETTINGS_FIELDS})


def update_settings(identity: Identity, **fields: Any) -> NotificationSettings:
    """Upsert preferences. Only known, non-None fields are changed."""
    current = get_settings(identity)
    values = {k: getattr(current, k) for k in _SETTINGS_FIELDS}
    for key in _SETTINGS_FIELDS:
        if fields.get(key) is not None:
            values[key] = fields[key]
    settings = NotificationSettings(**values)

    with get_connection() as conn:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO notification_settings
                (identity, push_enabled, notify_on_stolen, notify_on_attempts, attempt_threshold)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (identity)
            DO UPDATE SET push_enabled = EXCLUDED.push_enabled,
                          notify_on_stolen = EXCLUDED.notify_on_stolen,
                          notify_on_attempts = EXCLUDED.notify_on_attempts,
                          attempt_threshold = EXCLUDED.attempt_threshold,
                          updated_at = NOW()
            """,
            (
                format_identity(identity),
                settings.push_enabled,
                settings.notify_on_stolen,
                settings.notify_on_attempts,
                settings.attempt_threshold,
            ),
        )
    return settings


def add_notification(recipient: Identity, event_id: str, title: str, body: str) -> str | None:
    """Store an inbox row. Returns its id, or None if ``event_id`` was already stored."""
    notification_id = str(uuid.uuid4())
    with get_connection() as conn:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO notifications (id, recipient, event_id, title, body)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (recipient, event_id) DO NOTHING
            RETURNING id
            """,
            (notification_id, format_identity(recipient), event_id, title, body),
        )
        row = cur.fetchone()
    if row is None:
        logger.info("Duplicate notification %s ignored", event_id)
        return None
    return notification_id


def list_notifications(recipient: Identity, limit: int = 50) -> list[dict]:
    with get_connection() as conn:
        cur = conn.cursor(cursor_factory=RealDictCursor)
        cur.execute(
            """
            SELECT id, title, body, is_read, created_at
            FROM notifications
            WHERE recipient = %s
            ORDER BY created_at DESC
            LIMIT %s
            """,
            (format_identity(recipient), limit),
        )
        return [notification_to_dict(r) for r in cur.fetchall()]


def mark_read(recipient: Identity, notification_id: str) -> bool:
    try:
        uuid.UUID(notification_id)
    except ValueError:
        return False
    with get_connection() as conn:
        cur = conn.cursor()
        cur.execute(
            "UPDATE notifications SET is_read = TRUE WHERE id = %s AND recipient = %s",
            (notification_id, format_identity(recipient)),
        )
        return cur.rowcount > 0
