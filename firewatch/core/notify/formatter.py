# firewatch/core/notify/formatter.py
"""
Channel-independent alert text.

Layout (fixed order):
    <base message>
    [origin block]            when a location was supplied
    [evacuation points block] when at least one point was supplied

Coordinates are printed with 6 decimals; map links keep the value as given.
No truncation here: channel limits are the channel's business.
"""
from __future__ import annotations

from typing import Optional, Sequence

from firewatch.core.notify.models import Coordinate

DEFAULT_MAP_LINK_BASE = "https://www.google.com/maps?q="

LOCATION_HEADER = "📍 Location:"
EVACUATION_HEADER = "📍 Safe Evacuation Points:"


def map_link(lat: float, lng: float, base_url: str = DEFAULT_MAP_LINK_BASE) -> str:
    return f"{base_url}{lat},{lng}"


def format_coordinate(lat: float, lng: float) -> str:
    return f"{lat:.6f}, {lng:.6f}"


def format_location_block(
    location: Coordinate,
    base_url: str = DEFAULT_MAP_LINK_BASE,
) -> str:
    lat, lng = location
    return f"{LOCATION_HEADER} {format_coordinate(lat, lng)}\n{map_link(lat, lng, base_url)}"


def format_evacuation_block(
    points: Sequence[Coordinate],
    base_url: str = DEFAULT_MAP_LINK_BASE,
) -> str:
    lines = [EVACUATION_HEADER]
    for i, (lat, lng) in enumerate(points, start=1):
        lines.append(f"{i}. {format_coordinate(lat, lng)}")
        lines.append(f"   {map_link(lat, lng, base_url)}")
    return "\n".join(lines)


def format_alert_message(
    message: str,
    evacuation_points: Sequence[Coordinate] = (),
    location: Optional[Coordinate] = None,
    *,
    base_url: str = DEFAULT_MAP_LINK_BASE,
) -> str:
    """
    Build the final alert text.

    Example::

        >>> print(format_alert_message("Evacuate now", [(34.67, 33.05)]))
        Evacuate now

        📍 Safe Evacuation Points:
        1. 34.670000, 33.050000
           https://www.google.com/maps?q=34.67,33.05
    """
    parts = [message]
    if location is not None:
        parts.append(format_location_block(location, base_url))
    if evacuation_points:
        parts.append(format_evacuation_block(evacuation_points, base_url))
    return "\n\n".join(parts)
