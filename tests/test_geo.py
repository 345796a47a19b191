import math

import pytest

from fitmatch.geo import distance_km
from fitmatch.models import Coordinates

from conftest import CENTRE, north_of


POINTS = [
    Coordinates(52.3676, 4.9041),
    Coordinates(48.8566, 2.3522),
    Coordinates(-33.8688, 151.2093),
    Coordinates(0.0, 0.0),
    Coordinates(89.9, -179.9),
]


@pytest.mark.parametrize("a", POINTS)
@pytest.mark.parametrize("b", POINTS)
def test_distance_is_symmetric(a, b):
    assert distance_km(a, b) == pytest.approx(distance_km(b, a))


@pytest.mark.parametrize("point", POINTS)
def test_distance_to_self_is_zero(point):
    assert distance_km(point, point) == pytest.approx(0.0, abs=1e-9)


def test_known_distance_amsterdam_paris():
    assert distance_km(POINTS[0], POINTS[1]) == pytest.approx(430.0, rel=0.01)


def test_distance_along_meridian_matches_offset():
    assert distance_km(CENTRE, north_of(CENTRE, 3.0)) == pytest.approx(3.0, rel=1e-6)


def test_nan_propagates():
    assert math.isnan(distance_km(Coordinates(math.nan, 0.0), CENTRE))
