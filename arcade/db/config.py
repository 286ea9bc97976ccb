from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _env_str(name: str) -> Optional[str]:
    return (os.getenv(name) or "").strip() or None


@dataclass(frozen=True)
class DbConfig:
    """
    PostgreSQL settings for accounts, sessions and synced games.

    Either `POSTGRES_DSN` or the full set of `POSTGRES_HOST/DB/USER/PASSWORD`
    enables Postgres; otherwise the server falls back to the in-process store.
    """

    auto_migrate: bool
    explicit_dsn: Optional[str]
    host: Optional[str]
    port: int
    dbname: Optional[str]
    user: Optional[str]
    password: Optional[str]

    @property
    def dsn(self) -> Optional[str]:
        if self.explicit_dsn:
            return self.explicit_dsn
        if not (self.host and self.dbname and self.user and self.password):
            return None
        # make_conninfo quotes values containing spaces or quotes.
        from psycopg.conninfo import make_conninfo  # type: ignore[import-not-found]

        return make_conninfo(
            host=self.host,
            port=self.port,
            dbname=self.dbname,
            user=self.user,
            password=self.password,
        )


def load_db_config() -> DbConfig:
    try:
        port = int(_env_str("POSTGRES_PORT") or 5432)
    except ValueError:
        port = 5432
    return DbConfig(
        auto_migrate=(_env_str("DB_AUTO_MIGRATE") or "").lower() in ("1", "true", "yes", "on"),
        explicit_dsn=_env_str("POSTGRES_DSN"),
        host=_env_str("POSTGRES_HOST"),
        port=port,
        dbname=_env_str("POSTGRES_DB"),
        user=_env_str("POSTGRES_USER"),
        password=_env_str("POSTGRES_PASSWORD"),
    )
