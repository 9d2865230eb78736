"""
Vault DAL — PostgreSQL-backed entry store.

Uses psycopg2 through the shared pool (same pattern as aikotoba.notify.dal).
Per-entry serialization is a row lock: ``transaction()`` selects the entry
``FOR UPDATE`` and every statement of the block runs on that connection, so
the attempt reservation, counter updates and ownership transfer commit or roll
back together.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime

import psycopg2
import psycopg2.errors
import psycopg2.pool
from psycopg2.extras import Json, RealDictCursor

from aikotoba.db.connection import get_connection
from aikotoba.vault.errors import KeywordAlreadyExists, NotFound, StoreUnavailable
from aikotoba.vault.identity import Identity, format_identity, parse_identity
from aikotoba.vault.models import AttemptKey, AttemptOutcome, VaultEntry
from aikotoba.vault.store import EntryStore, EntryTransaction

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id::text AS id, keyword, passcode_length, passcode, owner, creator, is_hidden, "
    "grace_deadline, view_count, stolen_count, failed_count, body, voice_url, "
    "image_urls, created_at, updated_at"
)

_UNAVAILABLE = (
    psycopg2.OperationalError,
    psycopg2.InterfaceError,
    psycopg2.pool.PoolError,
    ConnectionError,
)


def entry_from_row(row: dict) -> VaultEntry:
    """Convert a vault_entries row (RealDictCursor) into a VaultEntry."""
    return VaultEntry(
        id=str(row["id"]),
        keyword=row["keyword"],
        passcode_length=row["passcode_length"],
        passcode=row["passcode"],
        owner=parse_identity(row["owner"]),
        creator=parse_identity(row["creator"]) if row.get("creator") else None,
        is_hidden=row["is_hidden"],
        grace_deadline=row.get("grace_deadline"),
        view_count=row.get("view_count") or 0,
        stolen_count=row.get("stolen_count") or 0,
        failed_count=row.get("failed_count") or 0,
        body=row.get("body") or "",
        voice_url=row.get("voice_url"),
        image_urls=row.get("image_urls") or [],
        created_at=row["created_at"],
        updated_at=row.get("updated_at"),
    )


def entry_to_params(entry: VaultEntry) -> dict:
    """Column values for INSERT/UPDATE of ``entry``."""
    return {
        "id": entry.id,
        "keyword": entry.keyword,
        "passcode_length": entry.passcode_length,
        "passcode": entry.passcode,
        "owner": format_identity(entry.owner),
        "creator": format_identity(entry.creator) if entry.creator else None,
        "is_hidden": entry.is_hidden,
        "grace_deadline": entry.grace_deadline,
        "view_count": entry.view_count,
        "stolen_count": entry.stolen_count,
        "failed_count": entry.failed_count,
        "body": entry.body,
        "voice_url": entry.voice_url,
        "image_urls": Json(list(entry.image_urls)),
        "created_at": entry.created_at,
        "updated_at": entry.updated_at or datetime.now(UTC),
    }


def _valid_uuid(entry_id: str) -> bool:
    try:
        uuid.UUID(str(entry_id))
    except ValueError:
        return False
    return True


@contextmanager
def _connection() -> Iterator:
    """Pooled connection whose infrastructure failures surface as StoreUnavailable."""
    try:
        with get_connection() as conn:
            yield conn
    except _UNAVAILABLE as e:
        logger.error("Entry store unavailable: %s", e)
        raise StoreUnavailable("entry store unavailable") from e


class _PostgresTransaction(EntryTransaction):
    def __init__(self, conn, entry: VaultEntry) -> None:
        self._conn = conn
        self.entry = entry

    def save(self, entry: VaultEntry) -> VaultEntry:
        if entry.id != self.entry.id:
            raise ValueError("cannot save a different entry in this transaction")
        params = entry_to_params(entry)
        params["updated_at"] = datetime.now(UTC)
        cur = self._conn.cursor()
        cur.execute(
            """
            UPDATE vault_entries
               SET passcode_length = %(passcode_length)s,
                   passcode = %(passcode)s,
                   owner = %(owner)s,
                   is_hidden = %(is_hidden)s,
                   grace_deadline = %(grace_deadline)s,
                   view_count = %(view_count)s,
                   stolen_count = %(stolen_count)s,
                   failed_count = %(failed_count)s,
                   body = %(body)s,
                   voice_url = %(voice_url)s,
                   image_urls = %(image_urls)s,
                   updated_at = %(updated_at)s
             WHERE id = %(id)s
            """,
            params,
        )
        self.entry = entry.evolve(updated_at=params["updated_at"])
        return self.entry

    def reserve_attempt(self, key: AttemptKey, now: datetime) -> bool:
        cur = self._conn.cursor()
        cur.execute(
            """
            INSERT INTO vault_attempts (entry_id, challenger, period, outcome, attempted_at)
            VALUES (%s, %s, %s, 'pending', %s)
            ON CONFLICT (entry_id, challenger, period) DO NOTHING
            RETURNING entry_id
            """,
            (key.entry_id, format_identity(key.challenger), key.period, now),
        )
        return cur.fetchone() is not None

    def finish_attempt(self, key: AttemptKey, outcome: AttemptOutcome) -> None:
        cur = self._conn.cursor()
        cur.execute(
            "UPDATE vault_attempts SET outcome = %s "
            "WHERE entry_id = %s AND challenger = %s AND period = %s",
            (outcome.value, key.entry_id, format_identity(key.challenger), key.period),
        )

    def delete(self) -> None:
        cur = self._conn.cursor()
        cur.execute("DELETE FROM vault_entries WHERE id = %s", (self.entry.id,))


class PostgresEntryStore(EntryStore):
    def insert(self, entry: VaultEntry) -> VaultEntry:
        try:
            with _connection() as conn:
                cur = conn.cursor(cursor_factory=RealDictCursor)
                cur.execute(
                    f"""
                    INSERT INTO vault_entries
                        (id, keyword, passcode_length, passcode, owner, creator, is_hidden,
                         grace_deadline, view_count, stolen_count, failed_count, body,
                         voice_url, image_urls, created_at, updated_at)
                    VALUES
                        (%(id)s, %(keyword)s, %(passcode_length)s, %(passcode)s, %(owner)s,
                         %(creator)s, %(is_hidden)s, %(grace_deadline)s, %(view_count)s,
                         %(stolen_count)s, %(failed_count)s, %(body)s, %(voice_url)s,
                         %(image_urls)s, %(created_at)s, %(updated_at)s)
                    RETURNING {_COLUMNS}
                    """,
                    entry_to_params(entry),
                )
                return entry_from_row(cur.fetchone())
        except psycopg2.errors.UniqueViolation as e:
            raise KeywordAlreadyExists(entry.keyword) from e

    def get(self, entry_id: str) -> VaultEntry | None:
        if not _valid_uuid(entry_id):
            return None
        with _connection() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            cur.execute(f"SELECT {_COLUMNS} FROM vault_entries WHERE id = %s", (entry_id,))
            row = cur.fetchone()
            return entry_from_row(row) if row else None

    def get_by_keyword(self, keyword: str) -> VaultEntry | None:
        with _connection() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            cur.execute(f"SELECT {_COLUMNS} FROM vault_entries WHERE keyword = %s", (keyword,))
            row = cur.fetchone()
            return entry_from_row(row) if row else None

    def list_by_owner(self, owner: Identity) -> list[VaultEntry]:
        with _connection() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            cur.execute(
                f"SELECT {_COLUMNS} FROM vault_entries WHERE owner = %s ORDER BY created_at DESC",
                (format_identity(owner),),
            )
            return [entry_from_row(r) for r in cur.fetchall()]

    def list_expired_grace(self, now: datetime) -> list[str]:
        with _connection() as conn:
            cur = conn.cursor()
            cur.execute(
                "SELECT id::text FROM vault_entries WHERE is_hidden AND grace_deadline <= %s",
                (now,),
            )
            return [r[0] for r in cur.fetchall()]

    def add_report(self, entry_id: str, reporter: Identity, now: datetime) -> None:
        if not _valid_uuid(entry_id):
            raise NotFound(entry_id)
        try:
            with _connection() as conn:
                cur = conn.cursor()
                cur.execute(
                    "INSERT INTO vault_reports (entry_id, reporter, created_at) VALUES (%s, %s, %s)",
                    (entry_id, format_identity(reporter), now),
                )
        except psycopg2.errors.ForeignKeyViolation as e:
            raise NotFound(entry_id) from e

    @contextmanager
    def transaction(self, entry_id: str) -> Iterator[EntryTransaction]:
        if not _valid_uuid(entry_id):
            raise NotFound(entry_id)
        with _connection() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            cur.execute(
                f"SELECT {_COLUMNS} FROM vault_entries WHERE id = %s FOR UPDATE",
                (entry_id,),
            )
            row = cur.fetchone()
            if row is None:
                raise NotFound(entry_id)
            yield _PostgresTransaction(conn, entry_from_row(row))


class PostgresEntitlements:
    """Reads grants written to ``vault_entitlements`` by purchase verification."""

    def has_entitlement(self, owner: Identity, length: int) -> bool:
        with _connection() as conn:
            cur = conn.cursor()
            cur.execute(
                "SELECT 1 FROM vault_entitlements WHERE owner = %s AND passcode_length = %s",
                (format_identity(owner), length),
            )
            return cur.fetchone() is not None
