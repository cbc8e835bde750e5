import pytest

from triage_dispatch.eta import EtaEstimator, estimate, haversine_km
from triage_dispatch.models import Coordinates

REQUESTER = Coordinates(37.7749, -122.4194)
UNIT = Coordinates(37.7849, -122.4294)


def test_san_francisco_unit_is_clamped_to_minimum() -> None:
    result = estimate(UNIT, REQUESTER, 40)

    assert 1.3 <= result.distance_km <= 1.5
    assert result.raw_eta_minutes == 2
    assert result.eta_minutes == 5


def test_distance_is_symmetric_and_zero_for_same_point() -> None:
    assert haversine_km(UNIT, REQUESTER) == pytest.approx(haversine_km(REQUESTER, UNIT))
    assert haversine_km(REQUESTER, REQUESTER) == 0

    result = estimate(REQUESTER, REQUESTER, 40)
    assert result.distance_km == 0
    assert result.eta_minutes == 5


def test_long_trips_are_clamped_to_maximum() -> None:
    result = estimate(Coordinates(37.7749, -122.4194), Coordinates(38.5816, -121.4944), 40)

    assert result.raw_eta_minutes > 30
    assert result.eta_minutes == 30


def test_antipodal_points_stay_finite() -> None:
    distance = haversine_km(Coordinates(0, 0), Coordinates(0, 180))

    assert distance == pytest.approx(20015.1, rel=1e-3)


def test_custom_bounds_and_invalid_arguments() -> None:
    estimator = EtaEstimator(min_minutes=1, max_minutes=3)
    assert estimator.estimate(UNIT, REQUESTER, 40).eta_minutes == 2

    with pytest.raises(ValueError):
        estimator.estimate(UNIT, REQUESTER, 0)
    with pytest.raises(ValueError):
        EtaEstimator(min_minutes=10, max_minutes=5)


@pytest.mark.parametrize(
    "origin,target",
    [
        (UNIT, REQUESTER),
        (REQUESTER, Coordinates(38.5816, -121.4944)),
        (Coordinates(0, 0), Coordinates(0, 180)),
        (Coordinates(90, 0), Coordinates(-90, 0)),
        (Coordinates(89.9, 45), Coordinates(-12.5, -170.25)),
        (Coordinates(-33.8688, 151.2093), Coordinates(51.5074, -0.1278)),
        (REQUESTER, REQUESTER),
    ],
)
def test_estimate_is_symmetric(origin: Coordinates, target: Coordinates) -> None:
    assert estimate(origin, target, 40) == estimate(target, origin, 40)
