import math

import pytest

from pairsense.core.geo import (
    COMPASS_LABELS,
    GeoPoint,
    bearing_deg,
    compass_label,
    distance_km,
    format_distance_text,
    is_valid_coordinate,
    needle_angle,
    normalize_heading,
)

TOKYO = GeoPoint(lat=35.6812, lng=139.7671)
OSAKA = GeoPoint(lat=34.7025, lng=135.4959)
SYDNEY = GeoPoint(lat=-33.8688, lng=151.2093)


def test_distance_identity_and_symmetry():
    assert distance_km(TOKYO, TOKYO) == 0.0
    assert distance_km(TOKYO, OSAKA) == pytest.approx(distance_km(OSAKA, TOKYO))


def test_distance_triangle_inequality():
    ab = distance_km(TOKYO, OSAKA)
    bc = distance_km(OSAKA, SYDNEY)
    ac = distance_km(TOKYO, SYDNEY)
    assert ac <= ab + bc + 1e-9


def test_distance_tokyo_osaka_is_about_400_km():
    assert distance_km(TOKYO, OSAKA) == pytest.approx(400, abs=10)


def test_distance_between_city_centres_is_about_400_km():
    tokyo = GeoPoint(lat=35.6762, lng=139.6503)
    osaka = GeoPoint(lat=34.6937, lng=135.5023)
    assert distance_km(tokyo, osaka) == pytest.approx(400, abs=10)
    assert distance_km(osaka, tokyo) == pytest.approx(distance_km(tokyo, osaka))


def test_distance_near_antipodal_points_stays_finite():
    d = distance_km(GeoPoint(0.0, 0.0), GeoPoint(0.0, 180.0))
    assert math.isfinite(d)
    assert d == pytest.approx(math.pi * 6371.0, rel=1e-6)


def test_bearing_cardinal_directions():
    origin = GeoPoint(0.0, 0.0)
    assert bearing_deg(origin, GeoPoint(1.0, 0.0)) == pytest.approx(0.0, abs=1e-9)
    assert bearing_deg(origin, GeoPoint(0.0, 1.0)) == pytest.approx(90.0)
    assert bearing_deg(origin, GeoPoint(-1.0, 0.0)) == pytest.approx(180.0)
    assert bearing_deg(origin, GeoPoint(0.0, -1.0)) == pytest.approx(270.0)


@pytest.mark.parametrize(
    "a,b",
    [(TOKYO, OSAKA), (OSAKA, TOKYO), (TOKYO, SYDNEY), (GeoPoint(10, 10), GeoPoint(10.0, 9.999999))],
)
def test_bearing_is_in_half_open_range(a, b):
    deg = bearing_deg(a, b)
    assert 0.0 <= deg < 360.0


def test_tokyo_to_osaka_points_west_southwest():
    deg = bearing_deg(TOKYO, OSAKA)
    assert 240 < deg < 270
    assert compass_label(deg) == "W"


def test_compass_label_covers_eight_points():
    labels = [compass_label(i * 45.0) for i in range(8)]
    assert labels == list(COMPASS_LABELS)
    assert compass_label(359.0) == "N"
    assert compass_label(22.0) == "N"
    assert compass_label(23.0) == "NE"


@pytest.mark.parametrize(
    "deg,label",
    [(22.5, "NE"), (67.5, "E"), (112.5, "SE"), (157.5, "S"), (202.5, "SW"), (247.5, "W"), (292.5, "NW"), (337.5, "N")],
)
def test_compass_label_rounds_sector_boundaries_up(deg, label):
    assert compass_label(deg) == label


def test_needle_angle_with_and_without_heading():
    assert needle_angle(90.0, None) == 90.0
    assert needle_angle(90.0, 90.0) == 0.0
    assert needle_angle(10.0, 350.0) == pytest.approx(20.0)
    assert needle_angle(350.0, 10.0) == pytest.approx(340.0)


def test_normalize_heading_webkit_is_used_as_is():
    assert normalize_heading({"webkitCompassHeading": 90.0}) == 90.0
    assert normalize_heading({"webkitCompassHeading": 370.0, "alpha": 10.0}) == pytest.approx(10.0)


def test_normalize_heading_absolute_alpha_is_counter_clockwise():
    assert normalize_heading({"alpha": 90.0, "absolute": True}) == pytest.approx(270.0)
    assert normalize_heading({"alpha": 0.0, "absolute": True}) == 0.0


def test_normalize_heading_without_compass_reading():
    assert normalize_heading(None) is None
    assert normalize_heading({}) is None
    assert normalize_heading({"alpha": 90.0}) is None
    assert normalize_heading({"alpha": float("nan"), "absolute": True}) is None


@pytest.mark.parametrize(
    "km,text",
    [
        (None, ""),
        (0.01, "nearby"),
        (0.42, "420 m"),
        (0.0625, "63 m"),
        (3.456, "3.5 km"),
        (20.5, "21 km"),
        (22.5, "23 km"),
        (399.6, "400 km"),
    ],
)
def test_format_distance_text(km, text):
    assert format_distance_text(km) == text


def test_is_valid_coordinate():
    assert is_valid_coordinate(35.0, 139.0)
    assert not is_valid_coordinate(91.0, 0.0)
    assert not is_valid_coordinate(0.0, -181.0)
    assert not is_valid_coordinate("35", 139.0)
    assert not is_valid_coordinate(True, 0.0)
    assert not is_valid_coordinate(float("inf"), 0.0)
