"""Database layer: PostgreSQL config and SQL migrations.

Postgres drivers are imported lazily inside functions so the server can run on the
in-process store without DB dependencies installed.
"""

from __future__ import annotations
