#!/usr/bin/env python3
"""
Reset the incident store to the Cyprus sample dataset.

Clears every incident, then loads three sample fires (Troodos foothills,
Nicosia outskirts, Paphos coast).

Usage:
    python scripts/seed_incidents.py            # clear + load samples
    python scripts/seed_incidents.py --clear    # clear only
"""
import asyncio
import sys

from firewatch.core.incidents.service import IncidentService
from firewatch.infra.db_async import init_pool, close_pool
from firewatch.infra.logging_config import setup_logging, get_logger
from firewatch.infra.pg_incident_repo_async import AsyncPostgresIncidentRepository

setup_logging(level="INFO", use_json=False)
logger = get_logger(__name__)

SAMPLE_INCIDENTS = [
    {
        "latitude": 34.6857,
        "longitude": 33.0437,
        "status": "active",
        "intensity": "high",
        "size_hectares": 150.0,
        "confidence": 90,
        "description": "Large forest fire near Troodos Mountains",
        "fuel_type": "pine forest",
        "terrain_type": "mountainous",
        "slope_degrees": 25.0,
        "temperature_c": 38.0,
        "humidity_percent": 15.0,
        "wind_speed_kmh": 35.0,
        "wind_direction": "NW",
        "agency": "Cyprus Fire Service",
        "response_level": 4,
        "firefighters": 120,
        "vehicles": 30,
        "aircraft": 4,
        "evacuation_status": "in progress",
        "district": "Limassol",
        "nearest_settlement": "Platres",
        "distance_to_settlement_km": 5.2,
        "risk_to_settlements": "high",
    },
    {
        "latitude": 35.1264,
        "longitude": 33.4299,
        "status": "active",
        "intensity": "medium",
        "size_hectares": 45.0,
        "confidence": 75,
        "description": "Fire in agricultural area near Nicosia",
        "fuel_type": "agricultural",
        "terrain_type": "farmland",
        "temperature_c": 36.0,
        "humidity_percent": 20.0,
        "wind_speed_kmh": 20.0,
        "wind_direction": "W",
        "agency": "Cyprus Fire Service",
        "response_level": 2,
        "firefighters": 40,
        "vehicles": 12,
        "district": "Nicosia",
        "nearest_settlement": "Nicosia",
        "distance_to_settlement_km": 3.0,
        "risk_to_settlements": "medium",
    },
    {
        "latitude": 34.7575,
        "longitude": 32.4242,
        "status": "controlled",
        "intensity": "low",
        "size_hectares": 10.0,
        "confidence": 60,
        "description": "Small fire near Paphos, under control",
        "fuel_type": "shrubland",
        "terrain_type": "coastal",
        "temperature_c": 32.0,
        "humidity_percent": 35.0,
        "wind_speed_kmh": 10.0,
        "wind_direction": "SW",
        "agency": "Cyprus Fire Service",
        "response_level": 1,
        "firefighters": 15,
        "vehicles": 4,
        "district": "Paphos",
        "nearest_settlement": "Paphos",
        "distance_to_settlement_km": 8.0,
        "risk_to_settlements": "low",
    },
]


async def seed(service: IncidentService, *, load: bool = True) -> int:
    removed = await service.delete_all()
    logger.info(f"Cleared {removed} incident(s)")
    if not load:
        return 0

    for attributes in SAMPLE_INCIDENTS:
        incident = await service.create(attributes)
        logger.info(f"  ✓ #{incident.id} {incident.district} ({incident.status}, {incident.intensity})")
    return len(SAMPLE_INCIDENTS)


async def main() -> int:
    load = "--clear" not in sys.argv[1:]
    await init_pool()
    try:
        created = await seed(IncidentService(AsyncPostgresIncidentRepository()), load=load)
    finally:
        await close_pool()
    logger.info(f"Seed complete: {created} incident(s) loaded")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
