# tests/test_incident_repo.py
"""Tests for AsyncPostgresIncidentRepository SQL generation (connection mocked)."""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from firewatch.core.incidents.domain import Incident, INCIDENT_COLUMNS, MUTABLE_FIELDS
from firewatch.infra.pg_incident_repo_async import AsyncPostgresIncidentRepository, _affected

NOW = datetime(2025, 7, 24, 12, 0, tzinfo=timezone.utc)


def _row(**overrides):
    incident = Incident(
        id=1, latitude=34.9, longitude=32.87,
        detected_at=NOW, last_update=NOW,
    )
    row = incident.to_dict()
    row.update(overrides)
    return row


def _patch_conn(conn):
    cm = MagicMock()
    cm.__aenter__ = AsyncMock(return_value=conn)
    cm.__aexit__ = AsyncMock(return_value=False)
    return patch(
        "firewatch.infra.pg_incident_repo_async.db_conn",
        MagicMock(return_value=cm),
    )


# ---------------------------------------------------------------------------
# Command tag parsing
# ---------------------------------------------------------------------------

class TestAffected:
    def test_delete_tag(self):
        assert _affected("DELETE 3") == 3

    def test_zero_rows(self):
        assert _affected("DELETE 0") == 0

    def test_garbage(self):
        assert _affected("") == 0
        assert _affected(None) == 0


# ---------------------------------------------------------------------------
# Statements
# ---------------------------------------------------------------------------

class TestInsert:
    @pytest.mark.asyncio
    async def test_stamps_both_timestamps(self):
        conn = MagicMock()
        conn.fetchrow = AsyncMock(return_value=_row(status="threat"))

        with _patch_conn(conn):
            incident = await AsyncPostgresIncidentRepository().insert(
                {"latitude": 34.9, "longitude": 32.87, "status": "threat"}, NOW
            )

        sql, *params = conn.fetchrow.call_args.args
        assert sql.startswith("INSERT INTO incidents (latitude, longitude, detected_at, last_update, status)")
        assert params == [34.9, 32.87, NOW, NOW, "threat"]
        assert "RETURNING" in sql
        assert incident.status == "threat"

    @pytest.mark.asyncio
    async def test_unknown_keys_not_written(self):
        conn = MagicMock()
        conn.fetchrow = AsyncMock(return_value=_row())

        with _patch_conn(conn):
            await AsyncPostgresIncidentRepository().insert(
                {"latitude": 0.0, "longitude": 0.0, "bogus; DROP TABLE": 1}, NOW
            )

        sql = conn.fetchrow.call_args.args[0]
        assert "bogus" not in sql


class TestUpdate:
    @pytest.mark.asyncio
    async def test_builds_set_clause_from_allow_list(self):
        conn = MagicMock()
        conn.fetchrow = AsyncMock(return_value=_row(status="controlled", firefighters=40))

        later = NOW + timedelta(minutes=5)
        with _patch_conn(conn):
            incident = await AsyncPostgresIncidentRepository().update(
                1, {"firefighters": 40, "status": "controlled"}, later
            )

        sql, *params = conn.fetchrow.call_args.args
        # Column order follows the allow-list, not the request
        status_pos = MUTABLE_FIELDS.index("status")
        ff_pos = MUTABLE_FIELDS.index("firefighters")
        assert status_pos < ff_pos
        assert "status = $2" in sql
        assert "firefighters = $3" in sql
        assert "last_update = GREATEST($4::timestamptz, last_update)" in sql
        assert params == [1, "controlled", 40, later]
        assert incident.firefighters == 40

    @pytest.mark.asyncio
    async def test_missing_row_returns_none(self):
        conn = MagicMock()
        conn.fetchrow = AsyncMock(return_value=None)

        with _patch_conn(conn):
            result = await AsyncPostgresIncidentRepository().update(99, {"status": "threat"}, NOW)

        assert result is None


class TestQueries:
    @pytest.mark.asyncio
    async def test_fetch_all_orders_newest_first(self):
        conn = MagicMock()
        conn.fetch = AsyncMock(return_value=[_row(id=2), _row(id=1)])

        with _patch_conn(conn):
            incidents = await AsyncPostgresIncidentRepository().fetch_all()

        sql = conn.fetch.call_args.args[0]
        assert sql.endswith("ORDER BY detected_at DESC, id DESC")
        assert [i.id for i in incidents] == [2, 1]

    @pytest.mark.asyncio
    async def test_fetch_all_by_status(self):
        conn = MagicMock()
        conn.fetch = AsyncMock(return_value=[])

        with _patch_conn(conn):
            await AsyncPostgresIncidentRepository().fetch_all("active")

        sql, status = conn.fetch.call_args.args
        assert "WHERE status = $1" in sql
        assert status == "active"

    @pytest.mark.asyncio
    async def test_select_lists_every_column(self):
        conn = MagicMock()
        conn.fetchrow = AsyncMock(return_value=None)

        with _patch_conn(conn):
            assert await AsyncPostgresIncidentRepository().fetch(5) is None

        sql = conn.fetchrow.call_args.args[0]
        for column in INCIDENT_COLUMNS:
            assert column in sql

    @pytest.mark.asyncio
    async def test_count_handles_null(self):
        conn = MagicMock()
        conn.fetchval = AsyncMock(return_value=None)

        with _patch_conn(conn):
            assert await AsyncPostgresIncidentRepository().count() == 0


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_existing(self):
        conn = MagicMock()
        conn.execute = AsyncMock(return_value="DELETE 1")

        with _patch_conn(conn):
            assert await AsyncPostgresIncidentRepository().delete(1) is True

    @pytest.mark.asyncio
    async def test_delete_missing(self):
        conn = MagicMock()
        conn.execute = AsyncMock(return_value="DELETE 0")

        with _patch_conn(conn):
            assert await AsyncPostgresIncidentRepository().delete(1) is False

    @pytest.mark.asyncio
    async def test_delete_all_returns_count(self):
        conn = MagicMock()
        conn.execute = AsyncMock(return_value="DELETE 3")

        with _patch_conn(conn):
            assert await AsyncPostgresIncidentRepository().delete_all() == 3

        assert conn.execute.call_args.args == ("DELETE FROM incidents",)
