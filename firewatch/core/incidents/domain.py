# firewatch/core/incidents/domain.py
from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from enum import Enum
from typing import Any, Optional


# ============================================================================
# ENUMERATIONS (mirrored by CHECK constraints in 001_create_incidents.sql)
# ============================================================================

class IncidentStatus(str, Enum):
    ACTIVE = "active"
    CONTROLLED = "controlled"
    THREAT = "threat"


class Intensity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SettlementRisk(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# ============================================================================
# INCIDENT
# ============================================================================

@dataclass
class Incident:
    """
    One tracked fire event.

    ``id``, ``latitude``, ``longitude`` and ``detected_at`` never change
    after creation.  ``last_update`` is refreshed on every accepted update
    and is never earlier than ``detected_at``.
    """
    id: int
    latitude: float
    longitude: float
    detected_at: datetime
    last_update: datetime

    status: str = IncidentStatus.ACTIVE.value

    # Fire description
    fire_type: str = "wildfire"
    intensity: str = Intensity.MEDIUM.value
    size_hectares: float = 0.0
    confidence: int = 50
    description: str = ""

    # Environment
    fuel_type: str = "unknown"
    terrain_type: str = "unknown"
    slope_degrees: float = 0.0
    temperature_c: float = 0.0
    humidity_percent: float = 0.0
    wind_speed_kmh: float = 0.0
    wind_direction: str = "unknown"
    wind_type: str = "unknown"

    # Response
    agency: str = "unassigned"
    response_level: int = 1
    firefighters: int = 0
    vehicles: int = 0
    aircraft: int = 0
    evacuation_status: str = "none"

    # Locality
    district: str = ""
    nearest_settlement: str = ""
    distance_to_settlement_km: float = 0.0
    risk_to_settlements: str = SettlementRisk.LOW.value

    # Provenance
    reporter_name: Optional[str] = None
    reporter_contact: Optional[str] = None

    @classmethod
    def from_row(cls, row: Any) -> "Incident":
        """Build from an asyncpg Record or any mapping with column keys."""
        return cls(**{name: row[name] for name in INCIDENT_COLUMNS})

    def to_dict(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in INCIDENT_COLUMNS}


INCIDENT_COLUMNS: tuple[str, ...] = tuple(f.name for f in fields(Incident))

# Set once at creation, never written by an update.
IMMUTABLE_FIELDS: frozenset[str] = frozenset(
    {"id", "latitude", "longitude", "detected_at", "last_update"}
)

# Columns an update may touch. Update SQL is built from this tuple only.
MUTABLE_FIELDS: tuple[str, ...] = tuple(
    name for name in INCIDENT_COLUMNS if name not in IMMUTABLE_FIELDS
)

NULLABLE_FIELDS: frozenset[str] = frozenset({"reporter_name", "reporter_contact"})

RESOURCE_FIELDS: tuple[str, ...] = ("firefighters", "vehicles", "aircraft")
