# firewatch/infra/schema_validator.py
"""
Schema version check run at service startup.

Migrations run separately (``python -m firewatch.infra.migrate``); the
service refuses to start against an unmigrated or mismatched database.
"""
from __future__ import annotations
from firewatch.config import settings
from firewatch.infra.db_async import db_conn
from firewatch.infra.logging_config import get_logger

logger = get_logger(__name__)

_TABLE_EXISTS = """
    SELECT EXISTS (
        SELECT FROM information_schema.tables
        WHERE table_schema = 'public'
        AND table_name = 'schema_migrations'
    )
"""

_HINT = "Run migrations first: python -m firewatch.infra.migrate"


async def validate_schema_version() -> dict:
    """Refuse to start unless the newest applied migration is ``expected_schema_version``."""
    async with db_conn() as conn:
        if not await conn.fetchval(_TABLE_EXISTS):
            error = f"Schema migrations table not found. {_HINT}"
            logger.critical(error)
            raise RuntimeError(error)

        latest = await conn.fetchrow(
            "SELECT version, applied_at FROM schema_migrations "
            "ORDER BY version DESC LIMIT 1"
        )

    if not latest:
        error = f"No migrations have been applied. {_HINT}"
        logger.critical(error)
        raise RuntimeError(error)

    current_version = latest["version"]
    if current_version != settings.expected_schema_version:
        error = (
            f"Schema version mismatch! "
            f"Expected: {settings.expected_schema_version}, "
            f"Found: {current_version}. {_HINT}"
        )
        logger.critical(error)
        raise RuntimeError(error)

    logger.info(f"Schema version validated: {current_version}")
    return {
        "ok": True,
        "current_version": current_version,
        "expected_version": settings.expected_schema_version,
        "error": None,
    }


async def get_schema_info() -> dict:
    """Current schema state for health checks."""
    async with db_conn() as conn:
        if not await conn.fetchval(_TABLE_EXISTS):
            return {"initialized": False, "migrations_applied": 0, "latest_version": None}

        rows = await conn.fetch(
            "SELECT version, applied_at FROM schema_migrations ORDER BY version"
        )

    latest = rows[-1]["version"] if rows else None
    return {
        "initialized": True,
        "migrations_applied": len(rows),
        "latest_version": latest,
        "expected_version": settings.expected_schema_version,
        "is_compatible": latest == settings.expected_schema_version,
    }
