import numpy as np
import pytest

from hypolocator.geometry import (
    azimuthal_gap,
    delta_to_km,
    distance_azimuth,
    residual_density,
    residual_model,
    secondary_azimuthal_gap,
)
from hypolocator.models import Hypocenter, Station


def _hypo(lat: float, lon: float) -> Hypocenter:
    return Hypocenter(origin_time=0.0, latitude=lat, longitude=lon, depth=10.0)


def _station(lat: float, lon: float) -> Station:
    return Station("AA", "STA1", "", lat, lon, 0.0)


def test_distance_azimuth_cardinal_directions():
    hypo = _hypo(0.0, 0.0)

    # North
    delta, az = distance_azimuth(hypo, _station(1.0, 0.0))
    assert delta == pytest.approx(1.0)
    assert az == pytest.approx(0.0, abs=1e-6)

    # East
    delta, az = distance_azimuth(hypo, _station(0.0, 1.0))
    assert delta == pytest.approx(1.0)
    assert az == pytest.approx(90.0)

    # South
    _, az = distance_azimuth(hypo, _station(-1.0, 0.0))
    assert az == pytest.approx(180.0)

    # West
    _, az = distance_azimuth(hypo, _station(0.0, -1.0))
    assert az == pytest.approx(270.0)


def test_distance_azimuth_quarter_circle():
    delta, _ = distance_azimuth(_hypo(0.0, 0.0), _station(0.0, 90.0))
    assert delta == pytest.approx(90.0)
    assert delta_to_km(delta) == pytest.approx(10007.1, abs=0.1)


@pytest.mark.parametrize("station_lon", [-170.0, -45.0, 0.0, 33.3, 120.0, 180.0])
def test_south_pole_station_uses_pole_formula(station_lon):
    hypo = _hypo(30.0, 15.0)
    result = distance_azimuth(hypo, _station(-90.0, station_lon))
    assert result.azimuth == 180.0
    assert result.delta == pytest.approx(120.0)


def test_north_pole_station_is_due_north():
    delta, az = distance_azimuth(_hypo(60.0, -20.0), _station(90.0, 75.0))
    assert az == pytest.approx(0.0, abs=1e-6)
    assert delta == pytest.approx(30.0)


def test_colocated_points_have_zero_distance_and_azimuth():
    delta, az = distance_azimuth(_hypo(47.5, 19.05), _station(47.5, 19.05))
    assert delta == pytest.approx(0.0, abs=1e-6)
    assert az == 0.0


@pytest.mark.parametrize(
    "a, b",
    [
        ((47.5, 19.05), (48.2, 16.37)),
        ((-33.9, 151.2), (35.7, 139.7)),
        ((10.0, -170.0), (-5.0, 175.0)),
    ],
)
def test_distance_is_symmetric_when_roles_swap(a, b):
    forward = distance_azimuth(_hypo(*a), _station(*b))
    backward = distance_azimuth(_hypo(*b), _station(*a))
    assert forward.delta == pytest.approx(backward.delta)


def test_reverse_bearing_along_equator():
    forward = distance_azimuth(_hypo(0.0, 10.0), _station(0.0, 20.0))
    backward = distance_azimuth(_hypo(0.0, 20.0), _station(0.0, 10.0))
    assert forward.azimuth == pytest.approx(90.0)
    assert backward.azimuth == pytest.approx(270.0)
    assert (backward.azimuth - forward.azimuth) % 360.0 == pytest.approx(180.0)


def test_azimuth_is_normalized():
    for lat, lon in [(1.0, -1.0), (-1.0, -1.0), (0.5, -179.0)]:
        _, az = distance_azimuth(_hypo(0.0, 0.0), _station(lat, lon))
        assert 0.0 <= az < 360.0


@pytest.mark.parametrize("spread", [0.3, 1.0, 2.5])
def test_residual_density_is_symmetric(spread):
    for x in (0.1, 0.7, 3.0, 25.0):
        assert residual_density(1.5 + x, 1.5, spread) == pytest.approx(
            residual_density(1.5 - x, 1.5, spread)
        )


@pytest.mark.parametrize("spread", [0.5, 1.0, 4.0])
def test_residual_density_integrates_to_one(spread):
    limit = 2.0e4 * spread
    x, dx = np.linspace(-limit, limit, 4_000_001, retstep=True)
    total = float(np.sum(residual_density(x, 0.0, spread)) * dx)
    assert total == pytest.approx(1.0, abs=1e-3)


def test_residual_model_peaks_at_one():
    assert residual_model(0.4, 0.4, 1.3) == pytest.approx(1.0)
    assert residual_model(1.0, 0.0, 1.0) < 1.0
    # Cauchy tail keeps large residuals well above a pure Gaussian.
    assert residual_model(10.0, 0.0, 1.0) > 1e-3


def test_residual_density_accepts_arrays():
    values = residual_density(np.array([-1.0, 0.0, 1.0]), 0.0, 1.0)
    assert values.shape == (3,)
    assert values[1] > values[0] == pytest.approx(values[2])


def test_azimuthal_gap_single_station():
    assert azimuthal_gap([45.0]) == 360.0


def test_azimuthal_gap_evenly_distributed():
    assert azimuthal_gap([0.0, 90.0, 180.0, 270.0]) == 90.0


def test_azimuthal_gap_clustered():
    assert azimuthal_gap([10.0, 20.0, 30.0]) == pytest.approx(340.0)


def test_secondary_azimuthal_gap_three_stations():
    assert secondary_azimuthal_gap([0.0, 120.0, 240.0]) == 240.0


def test_secondary_azimuthal_gap_two_stations():
    assert secondary_azimuthal_gap([0.0, 180.0]) == 360.0
