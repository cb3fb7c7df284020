# firewatch/infra/migrations_async.py
"""
Applies ``infra/sql/NNN_*.sql`` files that are not yet recorded in
``schema_migrations``.  A run is all-or-nothing: every pending file and its
bookkeeping row go in one transaction.
"""
from __future__ import annotations
from pathlib import Path

from firewatch.infra.db_async import db_conn
from firewatch.infra.logging_config import get_logger

logger = get_logger(__name__)

SQL_DIR = Path(__file__).resolve().parent / "sql"

_BOOKKEEPING_DDL = """
    CREATE TABLE IF NOT EXISTS schema_migrations (
        version    text PRIMARY KEY,
        applied_at timestamptz NOT NULL DEFAULT now()
    )
"""


def migration_files(sql_dir: Path = SQL_DIR) -> list[Path]:
    """Migration files in apply order (the numeric prefix sorts them)."""
    return sorted(p for p in sql_dir.glob("*.sql") if p.is_file())


async def apply_migrations() -> dict:
    """Returns ``{"ok": True, "applied": [filenames], "count": n}``."""
    async with db_conn(autocommit=False) as conn:
        await conn.execute(_BOOKKEEPING_DDL)
        done = {r["version"] for r in await conn.fetch("SELECT version FROM schema_migrations")}

        pending = [p for p in migration_files() if p.name not in done]
        for path in pending:
            logger.info(f"Applying migration {path.name}")
            await conn.execute(path.read_text(encoding="utf-8"))
            await conn.execute("INSERT INTO schema_migrations (version) VALUES ($1)", path.name)

    applied = [p.name for p in pending]
    logger.info(f"Migrations complete: {len(applied)} applied, {len(done)} already present")
    return {"ok": True, "applied": applied, "count": len(applied)}
