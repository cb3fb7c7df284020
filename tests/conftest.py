# tests/conftest.py
"""Pytest configuration and fixtures"""
from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import asyncio  # noqa: E402

from firewatch.core.incidents.domain import Incident, MUTABLE_FIELDS  # noqa: E402
from firewatch.core.incidents.service import IncidentService  # noqa: E402
from firewatch.core.notify.channels import ChannelResult, NotificationChannel  # noqa: E402
from firewatch.core.notify.models import Destination  # noqa: E402
from firewatch.infra.metrics import get_metrics_collector  # noqa: E402


T0 = datetime(2025, 8, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic, manually advanced clock"""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class InMemoryIncidentRepository:
    """Dict-backed stand-in for AsyncPostgresIncidentRepository"""

    def __init__(self):
        self.rows: dict[int, Incident] = {}
        self._next_id = 1

    async def insert(self, attributes: dict[str, Any], now: datetime) -> Incident:
        incident = Incident(
            id=self._next_id,
            latitude=attributes["latitude"],
            longitude=attributes["longitude"],
            detected_at=now,
            last_update=now,
            **{k: v for k, v in attributes.items() if k in MUTABLE_FIELDS},
        )
        self.rows[incident.id] = incident
        self._next_id += 1
        return incident

    async def fetch(self, incident_id: int) -> Optional[Incident]:
        return self.rows.get(incident_id)

    async def fetch_all(self, status: Optional[str] = None) -> list[Incident]:
        rows = [r for r in self.rows.values() if status is None or r.status == status]
        return sorted(rows, key=lambda r: (r.detected_at, r.id), reverse=True)

    async def update(self, incident_id: int, changes: dict[str, Any], now: datetime) -> Optional[Incident]:
        incident = self.rows.get(incident_id)
        if incident is None:
            return None
        for key, value in changes.items():
            if key in MUTABLE_FIELDS:
                setattr(incident, key, value)
        incident.last_update = max(now, incident.last_update)
        return incident

    async def delete(self, incident_id: int) -> bool:
        return self.rows.pop(incident_id, None) is not None

    async def delete_all(self) -> int:
        removed = len(self.rows)
        self.rows.clear()
        return removed

    async def count(self, status: Optional[str] = None) -> int:
        return len(await self.fetch_all(status))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repo():
    return InMemoryIncidentRepository()


@pytest.fixture
def service(repo, clock):
    return IncidentService(repo, clock=clock)


@pytest.fixture(autouse=True)
def reset_metrics():
    get_metrics_collector().reset()
    yield
    get_metrics_collector().reset()


class FakeChannel(NotificationChannel):
    """Scriptable channel: succeeds, raises, or is unconfigured"""

    def __init__(self, name: str, *, configured: bool = True, error: Exception | None = None, delay: float = 0):
        self._name = name
        self._configured = configured
        self._error = error
        self._delay = delay
        self.sent: list[tuple[str, Destination]] = []

    @property
    def name(self) -> str:
        return self._name

    def is_configured(self) -> bool:
        return self._configured

    async def send(self, text: str, destination: Destination) -> ChannelResult:
        if self._delay:
            await asyncio.sleep(self._delay)
        self.sent.append((text, destination))
        if self._error is not None:
            raise self._error
        return ChannelResult(channel=self._name, message_id=f"{self._name}-1")


@pytest.fixture
def fake_channel():
    """Factory for FakeChannel instances"""
    return FakeChannel
