# firewatch/core/incidents/models.py
"""
Pydantic command models for the incident store.

These live *outside* the transport layer so the service can validate
payloads without depending on FastAPI.  Unknown keys are ignored at this
boundary; the update model is the explicit allow-list of mutable fields.
"""
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from firewatch.core.incidents.domain import (
    IncidentStatus,
    Intensity,
    SettlementRisk,
    MUTABLE_FIELDS,
    NULLABLE_FIELDS,
)

_TEXT = 256
_LONG_TEXT = 2000


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

class CreateIncidentRequest(BaseModel):
    """Full attribute set for a new incident; omitted optionals take defaults."""

    model_config = ConfigDict(extra="ignore", use_enum_values=True, validate_default=True)

    latitude: float = Field(..., ge=-90, le=90, description="WGS84 latitude")
    longitude: float = Field(..., ge=-180, le=180, description="WGS84 longitude")

    status: IncidentStatus = IncidentStatus.ACTIVE

    fire_type: str = Field(default="wildfire", max_length=_TEXT)
    intensity: Intensity = Intensity.MEDIUM
    size_hectares: float = Field(default=0.0, ge=0)
    confidence: int = Field(default=50, ge=0, le=100)
    description: str = Field(default="", max_length=_LONG_TEXT)

    fuel_type: str = Field(default="unknown", max_length=_TEXT)
    terrain_type: str = Field(default="unknown", max_length=_TEXT)
    slope_degrees: float = Field(default=0.0, ge=0, le=90)
    temperature_c: float = Field(default=0.0, ge=-90, le=70)
    humidity_percent: float = Field(default=0.0, ge=0, le=100)
    wind_speed_kmh: float = Field(default=0.0, ge=0)
    wind_direction: str = Field(default="unknown", max_length=32)
    wind_type: str = Field(default="unknown", max_length=_TEXT)

    agency: str = Field(default="unassigned", max_length=_TEXT)
    response_level: int = Field(default=1, ge=1, le=5)
    firefighters: int = Field(default=0, ge=0)
    vehicles: int = Field(default=0, ge=0)
    aircraft: int = Field(default=0, ge=0)
    evacuation_status: str = Field(default="none", max_length=_TEXT)

    district: str = Field(default="", max_length=_TEXT)
    nearest_settlement: str = Field(default="", max_length=_TEXT)
    distance_to_settlement_km: float = Field(default=0.0, ge=0)
    risk_to_settlements: SettlementRisk = SettlementRisk.LOW

    reporter_name: Optional[str] = Field(default=None, max_length=_TEXT)
    reporter_contact: Optional[str] = Field(default=None, max_length=_TEXT)

    def attributes(self) -> dict[str, Any]:
        return self.model_dump()


# ---------------------------------------------------------------------------
# Partial update
# ---------------------------------------------------------------------------

class UpdateIncidentRequest(BaseModel):
    """
    Partial update.  Only mutable fields are declared here, so identity,
    position and timestamps in a payload are dropped silently together
    with any unknown key.
    """

    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    status: Optional[IncidentStatus] = None

    fire_type: Optional[str] = Field(default=None, max_length=_TEXT)
    intensity: Optional[Intensity] = None
    size_hectares: Optional[float] = Field(default=None, ge=0)
    confidence: Optional[int] = Field(default=None, ge=0, le=100)
    description: Optional[str] = Field(default=None, max_length=_LONG_TEXT)

    fuel_type: Optional[str] = Field(default=None, max_length=_TEXT)
    terrain_type: Optional[str] = Field(default=None, max_length=_TEXT)
    slope_degrees: Optional[float] = Field(default=None, ge=0, le=90)
    temperature_c: Optional[float] = Field(default=None, ge=-90, le=70)
    humidity_percent: Optional[float] = Field(default=None, ge=0, le=100)
    wind_speed_kmh: Optional[float] = Field(default=None, ge=0)
    wind_direction: Optional[str] = Field(default=None, max_length=32)
    wind_type: Optional[str] = Field(default=None, max_length=_TEXT)

    agency: Optional[str] = Field(default=None, max_length=_TEXT)
    response_level: Optional[int] = Field(default=None, ge=1, le=5)
    firefighters: Optional[int] = Field(default=None, ge=0)
    vehicles: Optional[int] = Field(default=None, ge=0)
    aircraft: Optional[int] = Field(default=None, ge=0)
    evacuation_status: Optional[str] = Field(default=None, max_length=_TEXT)

    district: Optional[str] = Field(default=None, max_length=_TEXT)
    nearest_settlement: Optional[str] = Field(default=None, max_length=_TEXT)
    distance_to_settlement_km: Optional[float] = Field(default=None, ge=0)
    risk_to_settlements: Optional[SettlementRisk] = None

    reporter_name: Optional[str] = Field(default=None, max_length=_TEXT)
    reporter_contact: Optional[str] = Field(default=None, max_length=_TEXT)

    @field_validator(
        *(name for name in MUTABLE_FIELDS if name not in NULLABLE_FIELDS),
        mode="after",
    )
    @classmethod
    def not_null(cls, v: Any) -> Any:
        # Validators only run for keys present in the payload, so None here
        # means an explicit null.
        if v is None:
            raise ValueError("may not be null")
        return v

    def changes(self) -> dict[str, Any]:
        """Fields explicitly present in the payload, in allow-list order."""
        data = self.model_dump(exclude_unset=True)
        return {name: data[name] for name in MUTABLE_FIELDS if name in data}
