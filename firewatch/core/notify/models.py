# firewatch/core/notify/models.py
"""
Alert request model and the destination selector handed to channels.

A request is transient: it is validated, rendered once and fanned out,
never persisted.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

Coordinate = tuple[float, float]


def _check_point(point: list[float] | tuple[float, ...]) -> Coordinate:
    if len(point) != 2:
        raise ValueError("coordinates must be a [latitude, longitude] pair")
    lat, lng = float(point[0]), float(point[1])
    if not -90 <= lat <= 90:
        raise ValueError(f"latitude {lat} out of range [-90, 90]")
    if not -180 <= lng <= 180:
        raise ValueError(f"longitude {lng} out of range [-180, 180]")
    return lat, lng


class NotificationRequest(BaseModel):
    """Evacuation alert to fan out across all configured channels."""

    model_config = ConfigDict(extra="ignore")

    message: str = Field(..., min_length=1)
    evacuation_points: list[list[float]] = Field(default_factory=list)
    location: Optional[list[float]] = None

    # Session channel destination options
    phone_number: Optional[str] = Field(default=None, max_length=32)
    channel_id: Optional[str] = Field(default=None, max_length=128)
    channel_name: Optional[str] = Field(default=None, max_length=256)
    media_path: Optional[str] = None
    media_mime: Optional[str] = Field(default=None, max_length=128)

    @field_validator("message")
    @classmethod
    def message_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("message must not be blank")
        return v

    @field_validator("evacuation_points")
    @classmethod
    def points_in_bounds(cls, v: list[list[float]]) -> list[list[float]]:
        return [list(_check_point(p)) for p in v]

    @field_validator("location")
    @classmethod
    def location_in_bounds(cls, v: Optional[list[float]]) -> Optional[list[float]]:
        if v is None:
            return None
        return list(_check_point(v))

    def points(self) -> list[Coordinate]:
        return [(p[0], p[1]) for p in self.evacuation_points]

    def origin(self) -> Optional[Coordinate]:
        if self.location is None:
            return None
        return self.location[0], self.location[1]

    def destination(self) -> "Destination":
        return Destination(
            phone_number=self.phone_number,
            channel_id=self.channel_id,
            channel_name=self.channel_name,
            media_path=self.media_path,
            media_mime=self.media_mime,
        )


@dataclass(frozen=True)
class Destination:
    """
    Per-request destination selector.

    Channels with a fixed destination (Telegram) ignore it; the session
    channel resolves it as phone → channel id → channel name → selected
    channel → bound group.
    """
    phone_number: Optional[str] = None
    channel_id: Optional[str] = None
    channel_name: Optional[str] = None
    media_path: Optional[str] = None
    media_mime: Optional[str] = None
