import numpy as np
import pytest

from hypolocator.geometry import DEG2KM
from hypolocator.traveltime import TwoLayerTravelTimes


def _by_code(phases):
    return {ph.code: ph for ph in phases}


def test_direct_wave_time_for_crustal_source():
    table = TwoLayerTravelTimes()
    phases = _by_code(table.predict(12.0, 0.3, 0.0))
    x = 0.3 * DEG2KM
    assert set(phases) == {"Pg", "Sg"}
    assert phases["Pg"].time == pytest.approx(np.hypot(x, 12.0) / 6.0)
    assert phases["Sg"].time == pytest.approx(np.hypot(x, 12.0) * 1.73 / 6.0)
    assert phases["Pg"].spread == 0.8


def test_head_wave_appears_beyond_crossover():
    table = TwoLayerTravelTimes()
    near = _by_code(table.predict(12.0, 0.5, 0.0))
    far = _by_code(table.predict(12.0, 1.0, 0.0))
    assert "Pn" not in near
    assert {"Pg", "Pn", "Sg", "Sn"} <= set(far)
    cos_ic = np.sqrt(1.0 - (6.0 / 8.0) ** 2)
    expected = DEG2KM / 8.0 + (70.0 - 12.0) * cos_ic / 6.0
    assert far["Pn"].time == pytest.approx(expected)


def test_predictions_are_sorted_by_time():
    phases = TwoLayerTravelTimes().predict(12.0, 2.0, 0.0)
    times = [ph.time for ph in phases]
    assert times == sorted(times)
    assert phases[0].code == "Pn"


@pytest.mark.parametrize(
    "depth, delta, code",
    [
        (12.0, 0.3, "Pg"),
        (12.0, 0.3, "Sg"),
        (12.0, 2.0, "Pn"),
        (5.0, 3.0, "Sn"),
        (120.0, 1.5, "P"),
        (300.0, 4.0, "S"),
    ],
)
def test_derivatives_match_finite_differences(depth, delta, code):
    table = TwoLayerTravelTimes()

    def time_at(z, d):
        return _by_code(table.predict(z, d, 0.0))[code].time

    phase = _by_code(table.predict(depth, delta, 0.0))[code]
    h_deg, h_km = 1e-5, 1e-4
    dtdd = (time_at(depth, delta + h_deg) - time_at(depth, delta - h_deg)) / (2 * h_deg)
    dtdz = (time_at(depth + h_km, delta) - time_at(depth - h_km, delta)) / (2 * h_km)
    assert phase.dtdd == pytest.approx(dtdd, rel=1e-4)
    assert phase.dtdz == pytest.approx(dtdz, rel=1e-4, abs=1e-6)


def test_elevation_delays_arrivals():
    table = TwoLayerTravelTimes()
    sea_level = _by_code(table.predict(12.0, 0.3, 0.0))
    mountain = _by_code(table.predict(12.0, 0.3, 1.2))
    assert mountain["Pg"].time - sea_level["Pg"].time == pytest.approx(1.2 / 6.0)
    assert mountain["Sg"].time - sea_level["Sg"].time == pytest.approx(1.2 * 1.73 / 6.0)


def test_restricted_keeps_first_arrival_per_wave_type():
    table = TwoLayerTravelTimes()
    assert len(table.predict(12.0, 2.0, 0.0)) == 4
    restricted = table.predict(12.0, 2.0, 0.0, restricted=True)
    assert [ph.code for ph in restricted] == ["Pn", "Sn"]


def test_phase_hint_limits_wave_type():
    table = TwoLayerTravelTimes()
    codes = {ph.code for ph in table.predict(12.0, 2.0, 0.0, phase_hint="Sg")}
    assert codes == {"Sg", "Sn"}


def test_mantle_source_has_single_phase_per_type():
    phases = TwoLayerTravelTimes().predict(100.0, 1.0, 0.0)
    assert [ph.code for ph in phases] == ["P", "S"]
    r = np.hypot(DEG2KM, 100.0)
    assert phases[0].time == pytest.approx(r * (35.0 / 6.0 + 65.0 / 8.0) / 100.0)


def test_epicentral_source_has_zero_horizontal_slowness():
    pg = _by_code(TwoLayerTravelTimes().predict(10.0, 0.0, 0.0))["Pg"]
    assert pg.time == pytest.approx(10.0 / 6.0)
    assert pg.dtdd == 0.0
    assert pg.dtdz == pytest.approx(1.0 / 6.0)


def test_invalid_velocities_rejected():
    with pytest.raises(ValueError):
        TwoLayerTravelTimes(vp_crust=8.0, vp_mantle=6.0)
    with pytest.raises(ValueError):
        TwoLayerTravelTimes(moho_km=0.0)
