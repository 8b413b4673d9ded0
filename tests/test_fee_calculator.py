from datetime import datetime

import pytest

from app.services.fee_calculator import ServiceZone, Tariff, delivery_fee, in_service_zone

TARIFF = Tariff(day=400, night=600)
SAN_PEDRO = ServiceZone(min_lat=4.6, max_lat=5.0, min_lng=-6.8, max_lng=-6.6)


class TestDeliveryFee:
    @pytest.mark.parametrize(
        "hour, minute, expected",
        [
            (7, 59, 600),
            (8, 0, 400),
            (12, 30, 400),
            (22, 59, 400),
            (23, 0, 600),
            (0, 0, 600),
        ],
    )
    def test_day_and_night_boundaries(self, hour, minute, expected):
        at = datetime(2026, 10, 19, hour, minute)
        assert delivery_fee(at, TARIFF) == expected


class TestServiceZone:
    def test_bounds_are_inclusive(self):
        assert in_service_zone(4.6, -6.8, SAN_PEDRO)
        assert in_service_zone(5.0, -6.6, SAN_PEDRO)

    def test_city_centre_is_inside(self):
        assert in_service_zone(4.75, -6.64, SAN_PEDRO)

    @pytest.mark.parametrize(
        "latitude, longitude",
        [(4.59, -6.7), (5.01, -6.7), (4.8, -6.81), (4.8, -6.59), (5.34, -4.02)],
    )
    def test_outside_points(self, latitude, longitude):
        assert not in_service_zone(latitude, longitude, SAN_PEDRO)
