# firewatch/infra/pg_incident_repo_async.py
"""
Async Postgres repository for fire incidents.

All SQL for the incident store lives here.  Column names in generated
statements come only from the domain allow-lists, never from request keys.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from firewatch.core.incidents.domain import Incident, INCIDENT_COLUMNS, MUTABLE_FIELDS
from firewatch.infra.db_async import db_conn
from firewatch.infra.logging_config import get_logger

logger = get_logger(__name__)

_SELECT = f"SELECT {', '.join(INCIDENT_COLUMNS)} FROM incidents"
_ORDER = "ORDER BY detected_at DESC, id DESC"


def _affected(status: str) -> int:
    """Row count from an asyncpg command tag such as ``DELETE 3``."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError):
        return 0


class AsyncPostgresIncidentRepository:
    """Incident persistence on the shared asyncpg pool."""

    async def insert(self, attributes: dict[str, Any], now: datetime) -> Incident:
        columns = [c for c in MUTABLE_FIELDS if c in attributes]
        values = [attributes[c] for c in columns]

        columns = ["latitude", "longitude", "detected_at", "last_update", *columns]
        values = [attributes["latitude"], attributes["longitude"], now, now, *values]
        placeholders = ", ".join(f"${i}" for i in range(1, len(values) + 1))

        async with db_conn() as conn:
            row = await conn.fetchrow(
                f"INSERT INTO incidents ({', '.join(columns)}) "
                f"VALUES ({placeholders}) "
                f"RETURNING {', '.join(INCIDENT_COLUMNS)}",
                *values,
            )
        return Incident.from_row(row)

    async def fetch(self, incident_id: int) -> Optional[Incident]:
        async with db_conn() as conn:
            row = await conn.fetchrow(f"{_SELECT} WHERE id = $1", incident_id)
        return Incident.from_row(row) if row else None

    async def fetch_all(self, status: Optional[str] = None) -> list[Incident]:
        async with db_conn() as conn:
            if status is None:
                rows = await conn.fetch(f"{_SELECT} {_ORDER}")
            else:
                rows = await conn.fetch(f"{_SELECT} WHERE status = $1 {_ORDER}", status)
        return [Incident.from_row(r) for r in rows]

    async def update(
        self,
        incident_id: int,
        changes: dict[str, Any],
        now: datetime,
    ) -> Optional[Incident]:
        """
        Single-statement update; concurrent writers are last-write-wins.
        ``last_update`` never moves backwards, so it stays at or after ``detected_at``.
        """
        updates = []
        params: list[Any] = [incident_id]
        idx = 2

        for column in MUTABLE_FIELDS:
            if column not in changes:
                continue
            updates.append(f"{column} = ${idx}")
            params.append(changes[column])
            idx += 1

        updates.append(f"last_update = GREATEST(${idx}::timestamptz, last_update)")
        params.append(now)

        async with db_conn() as conn:
            row = await conn.fetchrow(
                f"UPDATE incidents SET {', '.join(updates)} WHERE id = $1 "
                f"RETURNING {', '.join(INCIDENT_COLUMNS)}",
                *params,
            )
        return Incident.from_row(row) if row else None

    async def delete(self, incident_id: int) -> bool:
        async with db_conn() as conn:
            status = await conn.execute("DELETE FROM incidents WHERE id = $1", incident_id)
        return _affected(status) > 0

    async def delete_all(self) -> int:
        async with db_conn() as conn:
            status = await conn.execute("DELETE FROM incidents")
        removed = _affected(status)
        logger.debug(f"Deleted {removed} incident rows")
        return removed

    async def count(self, status: Optional[str] = None) -> int:
        async with db_conn() as conn:
            if status is None:
                value = await conn.fetchval("SELECT COUNT(*) FROM incidents")
            else:
                value = await conn.fetchval(
                    "SELECT COUNT(*) FROM incidents WHERE status = $1", status
                )
        return int(value or 0)
