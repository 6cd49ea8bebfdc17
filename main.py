import logging
import time

from hypolocator.db import (
    INPUT_ERROR_STATUS,
    PendingOrigin,
    connect,
    fetch_origin_picks,
    fetch_pending_origins,
    fetch_stations,
    mark_origin,
    replace_origin_arrivals,
    update_origin,
)
from hypolocator.errors import DataError, InputError
from hypolocator.event import Event
from hypolocator.geometry import delta_to_km
from hypolocator.hydra import read_hydra
from hypolocator.models import Hypocenter, LocationResult
from hypolocator.picks import Pick
from hypolocator.settings import parse_args
from hypolocator.solver import locate_event
from hypolocator.zonestats import load_depth_grid


def build_event(origin: PendingOrigin, picks: list[Pick]) -> Event:
    hypo = Hypocenter(
        origin_time=origin.origin_ts.timestamp(),
        latitude=origin.lat,
        longitude=origin.lon,
        depth=origin.depth_km,
    )
    event = Event(hypo, event_id=origin.association_key)
    for pick in picks:
        event.add_pick(pick)
    return event


def log_result(result: LocationResult, logger: logging.Logger) -> None:
    logger.info(
        "Hypocenter: status=%s provisional=%s origin_time=%.3f lat=%.4f lon=%.4f depth_km=%.2f "
        "bayes_depth=%s depth_source=%s rms=%.3f gap=%.0f",
        result.status.value,
        result.provisional,
        result.origin_time,
        result.lat,
        result.lon,
        result.depth_km,
        "n/a" if result.bayes_depth is None else f"{result.bayes_depth:.1f}",
        "n/a" if result.depth_source is None else result.depth_source.value,
        result.rms_seconds,
        result.azimuthal_gap_deg,
    )
    for arr in result.arrivals:
        logger.info(
            "Arrival: %s.%s.%s %s phase=%s residual=%.2f distance_km=%.1f azimuth=%.0f "
            "used=%s weight=%.3f importance=%.3f affinity=%.2f",
            arr.net,
            arr.sta,
            arr.loc,
            arr.chan,
            arr.phase,
            arr.residual_seconds,
            delta_to_km(arr.distance_deg),
            arr.azimuth_deg,
            "T" if arr.used else "F",
            arr.weight,
            arr.importance,
            arr.affinity,
        )


def run_file(settings, table, grid, logger: logging.Logger) -> LocationResult:
    event = read_hydra(settings.input_file)
    result = locate_event(event, table, grid, settings.locator_settings())
    log_result(result, logger)
    return result


def run_cycle(conn, settings, stations: dict, table, grid, logger: logging.Logger):
    origins = fetch_pending_origins(conn, limit=settings.batch_size)

    if origins and not stations:
        logger.info("Refreshing empty station cache")
        stations = fetch_stations(conn)

    relocated = 0
    converged = 0
    rejected = 0
    for origin in origins:
        picks = fetch_origin_picks(conn, origin.id, stations)
        event = build_event(origin, picks)
        try:
            result = locate_event(event, table, grid, settings.locator_settings())
        except InputError as exc:
            logger.warning(
                "Skipping origin: origin_id=%s association_key=%s reason=%s",
                origin.id,
                origin.association_key,
                exc,
            )
            if mark_origin(conn, origin.id, INPUT_ERROR_STATUS):
                rejected += 1
            continue
        if not update_origin(conn, origin.id, result):
            logger.warning("Origin disappeared before update: origin_id=%s", origin.id)
            continue
        replace_origin_arrivals(conn, origin.id, result)
        relocated += 1
        if not result.provisional:
            converged += 1

    logger.info(
        "Cycle complete: stations=%d origins=%d relocated=%d converged=%d rejected=%d",
        len(stations),
        len(origins),
        relocated,
        converged,
        rejected,
    )
    return stations, {
        "stations": len(stations),
        "origins": len(origins),
        "relocated": relocated,
        "converged": converged,
        "rejected": rejected,
    }


def main() -> None:
    settings = parse_args()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger = logging.getLogger("hypolocator.main")
    logger.info("Starting relocator")

    table = settings.travel_time_table()
    grid = None
    if settings.model_path is not None:
        try:
            grid = load_depth_grid(settings.model_path, settings.depth_resolution)
        except DataError:
            logger.exception("Failed to load depth statistics")
            return
    elif settings.use_bayesian_depth:
        logger.warning("No --model-path given; locating without a Bayesian depth prior")

    if settings.input_file is not None:
        try:
            run_file(settings, table, grid, logger)
        except InputError:
            logger.exception("Failed to locate %s", settings.input_file)
        return

    try:
        conn = connect(settings)
    except Exception:
        logger.exception("Failed to connect to PostgreSQL")
        return

    try:
        stations = fetch_stations(conn)
        logger.info("Loaded stations: count=%d", len(stations))
    except Exception:
        logger.exception("Failed to load stations")
        return

    try:
        while True:
            try:
                stations, _metrics = run_cycle(conn, settings, stations, table, grid, logger)
            except Exception:
                logger.exception("Relocator cycle failed")
            time.sleep(settings.poll_seconds)
    except KeyboardInterrupt:
        logger.info("Stopping relocator")


if __name__ == "__main__":
    main()
