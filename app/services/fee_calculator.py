from datetime import datetime
from typing import NamedTuple

DAY_START_HOUR = 8
NIGHT_START_HOUR = 23


class Tariff(NamedTuple):
    day: int
    night: int


class ServiceZone(NamedTuple):
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float


def delivery_fee(at: datetime, tariff: Tariff) -> int:
    """Day tariff for local hours in [8, 23), night tariff otherwise."""
    if DAY_START_HOUR <= at.hour < NIGHT_START_HOUR:
        return tariff.day
    return tariff.night


def in_service_zone(latitude: float, longitude: float, zone: ServiceZone) -> bool:
    # Bounds are inclusive on every side.
    return (
        zone.min_lat <= latitude <= zone.max_lat
        and zone.min_lng <= longitude <= zone.max_lng
    )
