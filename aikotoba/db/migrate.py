"""
Migration runner for the SQL files bundled in ``aikotoba/migrations``.

Each file is applied once, in version order, inside its own transaction, and
recorded in ``schema_migrations`` together with its SHA-256 checksum so that
edited-after-apply files show up as DRIFT.

Usage:
    aikotoba migrate              # apply all pending
    aikotoba migrate --status     # show applied vs pending
    aikotoba migrate --dry-run
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from psycopg2.extras import RealDictCursor

from aikotoba.db.connection import get_connection

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"

# 001_name.sql, 002b_name.sql, ...
_MIGRATION_RE = re.compile(r"^(\d+[a-z]?)_.+\.sql$")

_SCHEMA_MIGRATIONS_DDL = """
    CREATE TABLE IF NOT EXISTS schema_migrations (
        version     TEXT PRIMARY KEY,
        filename    TEXT NOT NULL,
        applied_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        checksum    TEXT
    )
"""


@dataclass(frozen=True)
class Migration:
    version: str
    path: Path

    @property
    def checksum(self) -> str:
        return hashlib.sha256(self.path.read_bytes()).hexdigest()


@dataclass(frozen=True)
class MigrationStatus:
    version: str
    filename: str
    status: str  # applied | pending | DRIFT
    applied_at: datetime | None = None


def discover(migrations_dir: Path | None = None) -> list[Migration]:
    """Return all migration files sorted by version."""
    d = migrations_dir or MIGRATIONS_DIR
    found = []
    for f in sorted(d.glob("*.sql")):
        m = _MIGRATION_RE.match(f.name)
        if m:
            found.append(Migration(m.group(1), f))
    return found


def _applied(conn) -> dict[str, dict]:
    cur = conn.cursor()
    cur.execute(_SCHEMA_MIGRATIONS_DDL)
    cur = conn.cursor(cursor_factory=RealDictCursor)
    cur.execute("SELECT version, filename, applied_at, checksum FROM schema_migrations")
    return {r["version"]: dict(r) for r in cur.fetchall()}


def status(migrations_dir: Path | None = None) -> list[MigrationStatus]:
    """Compare migration files on disk against ``schema_migrations``."""
    with get_connection() as conn:
        applied = _applied(conn)

    rows = []
    for mig in discover(migrations_dir):
        record = applied.get(mig.version)
        if record is None:
            rows.append(MigrationStatus(mig.version, mig.path.name, "pending"))
            continue
        drift = record.get("checksum") and record["checksum"] != mig.checksum
        rows.append(
            MigrationStatus(
                mig.version,
                mig.path.name,
                "DRIFT" if drift else "applied",
                record["applied_at"],
            )
        )
    return rows


def apply(dry_run: bool = False, migrations_dir: Path | None = None) -> list[str]:
    """Apply pending migrations. Returns the versions applied (or planned)."""
    with get_connection() as conn:
        applied = _applied(conn)
        conn.commit()
        pending = [m for m in discover(migrations_dir) if m.version not in applied]

        if not pending:
            logger.info("Database schema is up to date")
            return []

        done: list[str] = []
        for mig in pending:
            if dry_run:
                logger.info("[dry-run] would apply %s", mig.path.name)
                done.append(mig.version)
                continue
            cur = conn.cursor()
            try:
                cur.execute(mig.path.read_text())
                cur.execute(
                    "INSERT INTO schema_migrations (version, filename, checksum) "
                    "VALUES (%s, %s, %s) ON CONFLICT (version) DO NOTHING",
                    (mig.version, mig.path.name, mig.checksum),
                )
                conn.commit()
            except Exception:
                conn.rollback()
                logger.error("Migration %s failed", mig.path.name)
                raise
            logger.info("Applied %s", mig.path.name)
            done.append(mig.version)
        return done
