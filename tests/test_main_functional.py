import logging
from datetime import datetime, timezone

import main as relocator_main
from hypolocator.db import INPUT_ERROR_STATUS, PendingOrigin
from hypolocator.geometry import distance_azimuth
from hypolocator.models import AuthorType, Hypocenter, LocStatus, Station
from hypolocator.picks import Pick
from hypolocator.settings import Settings


class _DummyConn:
    pass


ORIGIN_TS = datetime(2026, 2, 27, 12, 0, tzinfo=timezone.utc)
STATIONS = {
    ("AA", "STA1", ""): Station("AA", "STA1", "", 47.80, 19.05, 0.0),
    ("AA", "STA2", ""): Station("AA", "STA2", "", 47.50, 19.50, 0.0),
    ("AA", "STA3", ""): Station("AA", "STA3", "", 47.20, 19.00, 0.0),
    ("AA", "STA4", ""): Station("AA", "STA4", "", 47.55, 18.60, 0.0),
    ("AA", "STA5", ""): Station("AA", "STA5", "", 47.75, 19.40, 0.0),
    ("AA", "STA6", ""): Station("AA", "STA6", "", 47.25, 18.75, 0.0),
}


def _synthetic_picks(settings: Settings) -> list[Pick]:
    table = settings.travel_time_table()
    truth = Hypocenter(origin_time=ORIGIN_TS.timestamp(), latitude=47.5, longitude=19.05, depth=9.0)
    picks = []
    for i, station in enumerate(STATIONS.values()):
        delta, _ = distance_azimuth(truth, station)
        phases = {ph.code: ph for ph in table.predict(truth.depth, delta, 0.0)}
        for j, code in enumerate(("Pg", "Sg")):
            picks.append(
                Pick(
                    id=str(100 + 2 * i + j),
                    station=station,
                    chan="HHZ",
                    arrival_time=truth.origin_time + phases[code].time,
                    ph_code=code,
                    author=AuthorType.LOCAL_AUTO,
                )
            )
    return picks


def test_run_cycle_relocates_pending_origin(monkeypatch) -> None:
    conn = _DummyConn()
    settings = Settings(use_bayesian_depth=False)
    logger = logging.getLogger("test.hypolocator.main")
    picks = _synthetic_picks(settings)
    origin = PendingOrigin(
        id=101,
        origin_ts=ORIGIN_TS,
        lat=47.55,
        lon=19.0,
        depth_km=15.0,
        association_key="assoc-101",
    )
    persisted = {"updates": [], "arrivals": []}

    def _fake_fetch_pending_origins(_conn, limit: int):
        assert limit == 50
        return [origin]

    def _fake_fetch_origin_picks(_conn, origin_id: int, stations):
        assert origin_id == 101
        assert stations is STATIONS
        return picks

    def _fake_update_origin(_conn, origin_id: int, result):
        persisted["updates"].append((origin_id, result))
        return True

    def _fake_replace_origin_arrivals(_conn, origin_id: int, result):
        persisted["arrivals"].append((origin_id, len(result.arrivals)))

    monkeypatch.setattr("main.fetch_pending_origins", _fake_fetch_pending_origins)
    monkeypatch.setattr("main.fetch_origin_picks", _fake_fetch_origin_picks)
    monkeypatch.setattr("main.update_origin", _fake_update_origin)
    monkeypatch.setattr("main.replace_origin_arrivals", _fake_replace_origin_arrivals)

    table = settings.travel_time_table()
    stations, metrics = relocator_main.run_cycle(conn, settings, STATIONS, table, None, logger)

    assert stations is STATIONS
    assert metrics == {"stations": 6, "origins": 1, "relocated": 1, "converged": 1, "rejected": 0}
    assert persisted["arrivals"] == [(101, 12)]
    origin_id, result = persisted["updates"][0]
    assert origin_id == 101
    assert result.status is LocStatus.CONVERGED
    assert abs(result.lat - 47.5) < 0.01
    assert abs(result.lon - 19.05) < 0.01
    assert abs(result.depth_km - 9.0) < 0.5


def test_run_cycle_marks_origin_without_picks(monkeypatch) -> None:
    settings = Settings()
    logger = logging.getLogger("test.hypolocator.main")
    origin = PendingOrigin(7, ORIGIN_TS, 47.5, 19.05, 10.0, "assoc-7")
    refreshed = {"count": 0}
    marked = []

    def _fake_fetch_stations(_conn):
        refreshed["count"] += 1
        return STATIONS

    def _fake_mark_origin(_conn, origin_id: int, locator_status: str):
        marked.append((origin_id, locator_status))
        return True

    def _unexpected(*_args):
        raise AssertionError("no location should be persisted")

    monkeypatch.setattr("main.fetch_pending_origins", lambda _conn, limit: [origin])
    monkeypatch.setattr("main.fetch_stations", _fake_fetch_stations)
    monkeypatch.setattr("main.fetch_origin_picks", lambda _conn, origin_id, stations: [])
    monkeypatch.setattr("main.mark_origin", _fake_mark_origin)
    monkeypatch.setattr("main.update_origin", _unexpected)
    monkeypatch.setattr("main.replace_origin_arrivals", _unexpected)

    stations, metrics = relocator_main.run_cycle(
        _DummyConn(), settings, {}, settings.travel_time_table(), None, logger
    )

    assert refreshed["count"] == 1
    assert stations is STATIONS
    assert marked == [(7, INPUT_ERROR_STATUS)]
    assert metrics["origins"] == 1
    assert metrics["relocated"] == 0
    assert metrics["rejected"] == 1


def test_rejected_origin_does_not_block_later_origins(monkeypatch) -> None:
    settings = Settings(use_bayesian_depth=False, batch_size=1)
    logger = logging.getLogger("test.hypolocator.main")
    picks = _synthetic_picks(settings)
    pending = [
        PendingOrigin(7, ORIGIN_TS, 47.5, 19.05, 10.0, "assoc-7"),
        PendingOrigin(8, ORIGIN_TS, 47.55, 19.0, 15.0, "assoc-8"),
    ]
    statuses = {}

    def _fake_fetch_pending_origins(_conn, limit: int):
        waiting = [origin for origin in pending if origin.id not in statuses]
        return waiting[:limit]

    def _fake_fetch_origin_picks(_conn, origin_id: int, stations):
        return [] if origin_id == 7 else picks

    def _fake_mark_origin(_conn, origin_id: int, locator_status: str):
        statuses[origin_id] = locator_status
        return True

    def _fake_update_origin(_conn, origin_id: int, result):
        statuses[origin_id] = result.status.value
        return True

    monkeypatch.setattr("main.fetch_pending_origins", _fake_fetch_pending_origins)
    monkeypatch.setattr("main.fetch_origin_picks", _fake_fetch_origin_picks)
    monkeypatch.setattr("main.mark_origin", _fake_mark_origin)
    monkeypatch.setattr("main.update_origin", _fake_update_origin)
    monkeypatch.setattr("main.replace_origin_arrivals", lambda _conn, origin_id, result: None)

    table = settings.travel_time_table()
    _, first = relocator_main.run_cycle(_DummyConn(), settings, STATIONS, table, None, logger)
    _, second = relocator_main.run_cycle(_DummyConn(), settings, STATIONS, table, None, logger)

    assert first["rejected"] == 1
    assert second["relocated"] == 1
    assert statuses == {7: INPUT_ERROR_STATUS, 8: LocStatus.CONVERGED.value}


def test_run_file_locates_hydra_event(tmp_path) -> None:
    settings = Settings(use_bayesian_depth=False)
    picks = _synthetic_picks(settings)
    lines = [f"{ORIGIN_TS.timestamp() + 0.5:.3f} 47.55 19.00 15.0 F F F 0.0 0.0 F F"]
    for pick in picks:
        st = pick.station
        lines.append(
            f"{pick.id} {st.sta} {pick.chan} {st.net} -- {st.lat:.4f} {st.lon:.4f} 0.0 0.9 "
            f"{pick.ph_code} {pick.arrival_time:.4f} T 3"
        )
    path = tmp_path / "event.hydra"
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    settings.input_file = str(path)

    result = relocator_main.run_file(
        settings, settings.travel_time_table(), None, logging.getLogger("test.hypolocator.main")
    )

    assert result.status is LocStatus.CONVERGED
    assert result.picks_used == 12
    assert abs(result.depth_km - 9.0) < 0.5
