"""
Audit trail for vault mutations, stored in ``audit_log``.

Recorded event types: vault.create, vault.update, vault.delete, vault.report,
vault.stolen, vault.publish and vault.upgrade. Writes are best effort: a
failing audit insert is logged and the caller carries on.

Secrets never reach the table. Detail keys naming a passcode or guess are
replaced before the insert.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from psycopg2.extras import Json

logger = logging.getLogger(__name__)

REDACTED = "[redacted]"
_SECRET_KEYS = frozenset({"passcode", "new_passcode", "guess", "secret"})

ConnectionFactory = Callable[[], AbstractContextManager]
_factory: ConnectionFactory | None = None


def set_connection_factory(factory: ConnectionFactory) -> None:
    """Route audit writes through ``factory`` (a get_connection-style context manager)."""
    global _factory
    _factory = factory


def reset_connection_factory() -> None:
    global _factory
    _factory = None


def _connection() -> AbstractContextManager:
    if _factory is not None:
        return _factory()
    from aikotoba.db.connection import get_connection

    return get_connection()


def scrub(details: dict[str, Any] | None) -> dict[str, Any] | None:
    if not details:
        return None
    return {k: (REDACTED if k.lower() in _SECRET_KEYS else v) for k, v in details.items()}


@dataclass(frozen=True)
class AuditRecord:
    id: int
    timestamp: datetime
    event_type: str
    category: str | None
    actor: str
    action: str
    details: dict | None
    target: str | None
    status: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "eventType": self.event_type,
            "category": self.category,
            "actor": self.actor,
            "action": self.action,
            "details": self.details,
            "target": self.target,
            "status": self.status,
        }


def log_event(
    event_type: str,
    action: str,
    *,
    actor: str,
    category: str | None = None,
    target: str | None = None,
    details: dict[str, Any] | None = None,
    status: str = "ok",
) -> int | None:
    """Insert one audit row and return its id (None if the insert failed)."""
    clean = scrub(details)
    try:
        with _connection() as conn:
            cur = conn.cursor()
            cur.execute(
                "INSERT INTO audit_log (event_type, category, actor, action, details, target, status) "
                "VALUES (%s, %s, %s, %s, %s, %s, %s) RETURNING id",
                (event_type, category, actor, action, Json(clean) if clean else None, target, status),
            )
            return cur.fetchone()[0]
    except Exception:
        logger.warning("Audit write for %s on %s failed", event_type, target, exc_info=True)
        return None


def log_vault_mutation(operation: str, entry_id: str, *, actor: str, **details: Any) -> int | None:
    return log_event(
        f"vault.{operation}",
        f"{operation} {entry_id}",
        actor=actor,
        category="vault",
        target=f"entry:{entry_id}",
        details=details,
    )


def query_log(
    *,
    entry_id: str | None = None,
    actor: str | None = None,
    event_type: str | None = None,
    since: datetime | None = None,
    limit: int = 50,
) -> list[AuditRecord]:
    """Newest-first audit rows matching every given filter."""
    clauses, params = [], []
    if entry_id:
        clauses.append("target = %s")
        params.append(f"entry:{entry_id}")
    if actor:
        clauses.append("actor = %s")
        params.append(actor)
    if event_type:
        clauses.append("event_type = %s")
        params.append(event_type)
    if since:
        clauses.append("timestamp >= %s")
        params.append(since)
    where = f"WHERE {' AND '.join(clauses)} " if clauses else ""
    params.append(max(1, min(limit, 500)))

    with _connection() as conn:
        cur = conn.cursor()
        cur.execute(
            "SELECT id, timestamp, event_type, category, actor, action, details, target, status "
            f"FROM audit_log {where}ORDER BY timestamp DESC, id DESC LIMIT %s",
            params,
        )
        return [AuditRecord(*row) for row in cur.fetchall()]
