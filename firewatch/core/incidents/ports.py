# firewatch/core/incidents/ports.py
from __future__ import annotations
from datetime import datetime
from typing import Any, Optional, Protocol

from firewatch.core.incidents.domain import Incident


class AsyncIncidentRepository(Protocol):
    async def insert(self, attributes: dict[str, Any], now: datetime) -> Incident: ...

    async def fetch(self, incident_id: int) -> Optional[Incident]: ...

    async def fetch_all(self, status: Optional[str] = None) -> list[Incident]: ...

    async def update(self, incident_id: int, changes: dict[str, Any], now: datetime) -> Optional[Incident]:
        """
        Apply ``changes`` and set last_update to max(now, previous last_update).
        Returns None when no row has that id.
        """
        ...

    async def delete(self, incident_id: int) -> bool: ...

    async def delete_all(self) -> int: ...

    async def count(self, status: Optional[str] = None) -> int: ...
