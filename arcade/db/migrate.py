"""
SQL schema migrations for the auth database.

Files in `migrations/` are named `NNN_description.sql` and applied in name order,
each in its own transaction. A sha256 of every applied file is recorded in
`schema_migrations`; editing an applied file is refused rather than re-run.
Replicas starting together serialize on a Postgres advisory lock.

Usage: python -m arcade.db.migrate [--status]
"""

from __future__ import annotations

import argparse
import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from arcade.db.config import DbConfig, load_db_config

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

ADVISORY_LOCK_KEY = 5147302219

_CREATE_LEDGER = """
CREATE TABLE IF NOT EXISTS schema_migrations (
  version text PRIMARY KEY,
  checksum text NOT NULL,
  applied_at timestamptz NOT NULL DEFAULT now()
);
"""


@dataclass(frozen=True)
class Migration:
    version: str
    checksum: str
    sql: str


def load_migrations(directory: Path = MIGRATIONS_DIR) -> List[Migration]:
    if not directory.is_dir():
        return []
    out: List[Migration] = []
    for path in sorted(directory.glob("*.sql")):
        raw = path.read_bytes()
        out.append(Migration(version=path.stem, checksum=hashlib.sha256(raw).hexdigest(), sql=raw.decode("utf-8")))
    return out


def _connect(dsn: str):
    import psycopg  # type: ignore[import-not-found]

    return psycopg.connect(dsn)


def _recorded(conn) -> Dict[str, str]:
    conn.execute(_CREATE_LEDGER)
    return {str(v): str(c) for v, c in conn.execute("SELECT version, checksum FROM schema_migrations;").fetchall()}


def _check_unchanged(m: Migration, recorded_checksum: str) -> None:
    if recorded_checksum != m.checksum:
        raise RuntimeError(
            f"Migration {m.version} was edited after being applied "
            f"(checksum mismatch: recorded={recorded_checksum[:12]} file={m.checksum[:12]})"
        )


def apply_migrations(
    *,
    dsn: str,
    migrations: Optional[Iterable[Migration]] = None,
    connect: Callable = _connect,
) -> List[str]:
    """
    Apply every migration not yet recorded.

    Returns:
        Versions applied by this call, in order (empty when up to date)

    Raises:
        RuntimeError: an already-applied file no longer matches its checksum
    """
    pending = list(migrations) if migrations is not None else load_migrations()
    applied_now: List[str] = []

    with connect(dsn) as conn:
        conn.execute("SELECT pg_advisory_lock(%s);", (ADVISORY_LOCK_KEY,))
        try:
            recorded = _recorded(conn)
            for m in pending:
                if m.version in recorded:
                    _check_unchanged(m, recorded[m.version])
                    continue
                with conn.transaction():
                    conn.execute(m.sql)
                    conn.execute(
                        "INSERT INTO schema_migrations (version, checksum) VALUES (%s, %s);",
                        (m.version, m.checksum),
                    )
                logger.info("Applied migration %s", m.version)
                applied_now.append(m.version)
        finally:
            conn.execute("SELECT pg_advisory_unlock(%s);", (ADVISORY_LOCK_KEY,))

    return applied_now


def migration_status(*, dsn: str, connect: Callable = _connect) -> List[Tuple[str, bool]]:
    """List bundled migrations as (version, applied) pairs."""
    with connect(dsn) as conn:
        recorded = _recorded(conn)
    return [(m.version, m.version in recorded) for m in load_migrations()]


def maybe_auto_migrate(cfg: Optional[DbConfig] = None) -> Tuple[bool, str]:
    """
    Apply migrations at server startup when DB_AUTO_MIGRATE is on.

    Never raises; failures are reported in the message so startup can log them.

    Returns:
        (attempted, message)
    """
    cfg = cfg or load_db_config()
    if not cfg.auto_migrate:
        return False, "DB_AUTO_MIGRATE is disabled"
    dsn = cfg.dsn
    if not dsn:
        return False, "Postgres DSN not configured"
    try:
        versions = apply_migrations(dsn=dsn)
    except Exception as e:
        return True, f"Migration failed: {e}"
    if not versions:
        return True, "No pending migrations"
    return True, f"Applied {len(versions)} migration(s): {', '.join(versions)}"


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Apply arcade auth database migrations")
    parser.add_argument("--status", action="store_true", help="Show applied/pending migrations without applying")
    args = parser.parse_args(argv)

    dsn = load_db_config().dsn
    if not dsn:
        print("Postgres not configured (set POSTGRES_DSN or POSTGRES_* env vars).")
        return 2

    if args.status:
        for version, applied in migration_status(dsn=dsn):
            print(f"{'applied' if applied else 'pending'}  {version}")
        return 0

    versions = apply_migrations(dsn=dsn)
    print(f"Applied {len(versions)} migration(s): {', '.join(versions)}" if versions else "No pending migrations.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
