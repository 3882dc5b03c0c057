"""
Tests for the geo helpers shared by the planner, tasks and supervisor.
"""
import sys
import os
from datetime import timezone
import pytest

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from decision_engine.services.geo import haversine_distance, parse_iso, validate_id, validate_lat_lng


def test_haversine_known_distance():
    # Park Street to Downtown Crossing, roughly 200m
    distance = haversine_distance(42.35639, -71.0624, 42.355518, -71.060225)
    assert 180 < distance < 230


def test_haversine_zero_and_symmetric():
    assert haversine_distance(42.36, -71.06, 42.36, -71.06) == 0
    a = haversine_distance(42.36, -71.06, 42.40, -71.10)
    b = haversine_distance(42.40, -71.10, 42.36, -71.06)
    assert a == pytest.approx(b)


@pytest.mark.parametrize("lat,lng,valid", [
    (42.36, -71.06, True),
    (90, 180, True),
    (-90, -180, True),
    (90.1, 0, False),
    (0, -180.5, False),
    (float("nan"), 0, False),
    (None, 0, False),
    ("42.36", -71.06, False),
    (True, 0, False),
])
def test_validate_lat_lng(lat, lng, valid):
    assert validate_lat_lng(lat, lng) is valid


def test_validate_id():
    assert validate_id("place-pktrm")
    assert not validate_id("")
    assert not validate_id(None)
    assert not validate_id("x" * 256)


def test_parse_iso():
    parsed = parse_iso("2025-03-14T17:00:00Z")
    assert parsed.tzinfo is not None
    assert parsed.utcoffset().total_seconds() == 0

    assert parse_iso("2025-03-14T13:00:00-04:00").astimezone(timezone.utc).hour == 17
    assert parse_iso("2025-03-14T17:00:00").tzinfo is not None
    assert parse_iso("not a time") is None
    assert parse_iso(None) is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
