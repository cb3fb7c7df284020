# firewatch/core/incidents/geo.py
"""
GeoJSON rendering of incidents.

Coordinates are emitted as ``[longitude, latitude]`` (RFC 7946 order,
the inverse of the storage order) with full stored precision.  The three
on-site resource counters are grouped under ``resources_on_site``.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from firewatch.core.incidents.domain import Incident, INCIDENT_COLUMNS, RESOURCE_FIELDS

_GEOMETRY_FIELDS = ("latitude", "longitude")


def _json_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def incident_to_feature(incident: Incident) -> dict[str, Any]:
    """Render one incident as a GeoJSON Point feature."""
    properties: dict[str, Any] = {}
    for name in INCIDENT_COLUMNS:
        if name in _GEOMETRY_FIELDS or name in RESOURCE_FIELDS:
            continue
        properties[name] = _json_value(getattr(incident, name))

    properties["resources_on_site"] = {
        name: getattr(incident, name) for name in RESOURCE_FIELDS
    }

    return {
        "type": "Feature",
        "id": incident.id,
        "geometry": {
            "type": "Point",
            "coordinates": [incident.longitude, incident.latitude],
        },
        "properties": properties,
    }


def incidents_to_feature_collection(incidents: Iterable[Incident]) -> dict[str, Any]:
    return {
        "type": "FeatureCollection",
        "features": [incident_to_feature(i) for i in incidents],
    }
