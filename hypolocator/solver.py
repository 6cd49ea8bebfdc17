import logging
import time
from dataclasses import dataclass

import numpy as np

from .errors import InputError, NumericalError
from .event import Event
from .geometry import azimuthal_gap, residual_density, secondary_azimuthal_gap
from .models import (
    ArrivalResidual,
    DepthSource,
    LocationResult,
    LocStatus,
)
from .phases import DOWNWEIGHT
from .picks import Pick
from .traveltime import TravelTimeTable
from .zonestats import DepthGrid, interpolated_depth

logger = logging.getLogger(__name__)

# Absolute floor for residual sum of squares comparisons; noise free data
# drives the sum to rounding level.
RSS_FLOOR = 1e-10
DEFAULT_START_DEPTH = 10.0


@dataclass(frozen=True)
class LocatorSettings:
    max_iterations: int = 20
    rss_tolerance: float = 1e-4
    position_tolerance_deg: float = 1e-3
    depth_tolerance_km: float = 0.1
    max_position_step_deg: float = 1.0
    max_depth_step_km: float = 25.0
    damping: float = 1e-5
    svd_cutoff: float = 1e-4
    flag_spreads: float = 3.0
    reject_spreads: float = 20.0
    use_bayesian_depth: bool = True
    max_restarts: int = 1
    timeout_seconds: float | None = None
    max_step_halvings: int = 4


@dataclass(frozen=True)
class _Step:
    values: dict[str, float]

    def get(self, name: str) -> float:
        return self.values.get(name, 0.0)


class Locator:
    """Iterative linearized hypocenter inversion for one event.

    The locator owns no copy of the hypocenter: every move is applied to
    ``event.hypo`` and pushed to the pick groups before residuals are used.
    Callers that want to abort can inspect :attr:`state` between calls to
    :meth:`step`.
    """

    def __init__(
        self,
        event: Event,
        table: TravelTimeTable,
        grid: DepthGrid | None = None,
        settings: LocatorSettings | None = None,
    ) -> None:
        self.event = event
        self.table = table
        self.grid = grid
        self.settings = settings or LocatorSettings()
        self.state = LocStatus.INITIAL
        self.iteration = 0
        self.rss = float("inf")
        self.last_position_step = 0.0
        self.last_depth_step = 0.0
        self._increases = 0
        self._bayes_from_grid = False
        self._best: tuple[float, float, float, float] | None = None

    # State machine.

    def start(self) -> LocStatus:
        if self.state is not LocStatus.INITIAL:
            return self.state
        event = self.event
        hypo = event.hypo
        if not event.groups:
            raise InputError(f"event {event.event_id!r} has no picks")
        if not any(pick.use for pick in event.picks):
            raise InputError(f"event {event.event_id!r} has no picks requested for use")

        self._bayes_from_grid = (
            self.settings.use_bayesian_depth
            and self.grid is not None
            and not hypo.held_depth
            and hypo.depth_source is not DepthSource.ANALYST
        )
        logger.info(
            "Starting location: event_id=%s groups=%d picks=%d held_location=%s held_depth=%s "
            "bayes_from_grid=%s no_svd=%s",
            event.event_id,
            len(event.groups),
            len(event.picks),
            hypo.held_location,
            hypo.held_depth,
            self._bayes_from_grid,
            hypo.no_svd,
        )

        self.state = LocStatus.ITERATING
        self._refresh_prior()
        self.rss = self._refresh()
        self._remember_best()
        if self._degrees_of_freedom() <= 0:
            self._finish(LocStatus.FAILED)
        return self.state

    def step(self) -> LocStatus:
        if self.state is LocStatus.INITIAL:
            self.start()
        if self.state.terminal:
            return self.state

        hypo = self.event.hypo
        free = self._free_parameters()
        if self._degrees_of_freedom(free) <= 0:
            return self._finish(LocStatus.FAILED)

        self.iteration += 1
        try:
            step = self._solve(free)
        except NumericalError as exc:
            if "depth" not in free:
                logger.warning("Inversion failed: event_id=%s reason=%s", self.event.event_id, exc)
                return self._finish(LocStatus.FAILED)
            logger.warning(
                "Ill-conditioned system, retrying without depth: event_id=%s iteration=%d reason=%s",
                self.event.event_id,
                self.iteration,
                exc,
            )
            free = [name for name in free if name != "depth"]
            if self._degrees_of_freedom(free) <= 0:
                return self._finish(LocStatus.FAILED)
            try:
                step = self._solve(free)
            except NumericalError as exc2:
                logger.warning("Inversion failed: event_id=%s reason=%s", self.event.event_id, exc2)
                return self._finish(LocStatus.FAILED)

        step = self._limit_step(step)
        frozen = self._freeze()
        base = self._frozen_misfit(frozen)
        origin = (hypo.origin_time, hypo.latitude, hypo.longitude, hypo.depth)
        cos_lat = np.cos(np.radians(hypo.latitude))
        max_halvings = self.settings.max_step_halvings
        scale = 1.0
        for halving in range(max_halvings + 1):
            self._move(origin, step, scale)
            trial = self._frozen_misfit(frozen)
            if trial <= base * (1.0 + self.settings.rss_tolerance) + RSS_FLOOR:
                break
            if halving < max_halvings:
                logger.debug(
                    "Misfit increased, halving step: event_id=%s iteration=%d base=%.6g trial=%.6g scale=%.4f",
                    self.event.event_id,
                    self.iteration,
                    base,
                    trial,
                    scale,
                )
                scale *= 0.5

        self._refresh_prior()
        self.rss = self._refresh(update=False)
        self.last_position_step = float(
            scale * np.hypot(step.get("lat"), step.get("lon") * cos_lat)
        )
        self.last_depth_step = abs(hypo.depth - origin[3])

        logger.debug(
            "Iteration: event_id=%s iteration=%d rss=%.6g lat=%.5f lon=%.5f depth=%.3f "
            "position_step=%.5f depth_step=%.3f",
            self.event.event_id,
            self.iteration,
            self.rss,
            hypo.latitude,
            hypo.longitude,
            hypo.depth,
            self.last_position_step,
            self.last_depth_step,
        )
        return self._test_convergence(base, trial)

    def run(self, timeout_seconds: float | None = None) -> LocStatus:
        if timeout_seconds is None:
            timeout_seconds = self.settings.timeout_seconds
        self.start()
        deadline = None if timeout_seconds is None else time.monotonic() + timeout_seconds
        while not self.state.terminal:
            if deadline is not None and time.monotonic() > deadline:
                logger.warning(
                    "Location timed out: event_id=%s iterations=%d timeout_seconds=%.3f",
                    self.event.event_id,
                    self.iteration,
                    timeout_seconds,
                )
                self._give_up()
                break
            self.step()
        return self.state

    # Iteration pieces.

    def _refresh(self, update: bool = True) -> float:
        """Re-identify phases, classify picks and return the weighted RSS."""
        if update:
            self.event.update_picks(self.table)
        settings = self.settings
        rss = 0.0
        for pick in self.event.picks:
            if not pick.use or not pick.has_phase:
                pick.used = False
                continue
            spread = pick.spread
            density = residual_density(pick.residual, 0.0, spread)
            if density < residual_density(settings.reject_spreads * spread, 0.0, spread):
                pick.used = False
                continue
            pick.used = True
            if density < residual_density(settings.flag_spreads * spread, 0.0, spread):
                pick.weight *= DOWNWEIGHT
            rss += pick.weight * (pick.residual / pick.spread) ** 2

        if self._prior_active():
            hypo = self.event.hypo
            rss += ((hypo.depth - hypo.bayes_depth) / hypo.bayes_spread) ** 2
        return rss

    def _refresh_prior(self) -> None:
        if not self._bayes_from_grid:
            return
        hypo = self.event.hypo
        prior = interpolated_depth(self.grid, hypo.latitude, hypo.longitude)
        hypo.add_bayes(prior.depth, prior.spread, prior.source)

    def _freeze(self) -> tuple[list[tuple[Pick, float]], tuple[float, float] | None]:
        """Current weights of the used picks and the active prior."""
        weighted = [(pick, pick.weight) for pick in self.event.picks if pick.used]
        hypo = self.event.hypo
        prior = (hypo.bayes_depth, hypo.bayes_spread) if self._prior_active() else None
        return weighted, prior

    def _frozen_misfit(self, frozen) -> float:
        """Weighted RSS at the current hypocenter using frozen weights.

        Unlike :meth:`_refresh` this cannot grow just because poorly fitting
        picks regain weight as the fit improves.
        """
        weighted, prior = frozen
        misfit = 0.0
        for pick, weight in weighted:
            if pick.has_phase:
                misfit += weight * (pick.residual / pick.spread) ** 2
        if prior is not None:
            misfit += ((self.event.hypo.depth - prior[0]) / prior[1]) ** 2
        return misfit

    def _move(self, origin: tuple[float, float, float, float], step: _Step, scale: float) -> None:
        origin_time, lat, lon, depth = origin
        self.event.update_hypocenter(
            origin_time + scale * step.get("time"),
            lat + scale * step.get("lat"),
            lon + scale * step.get("lon"),
            depth + scale * step.get("depth"),
            self.table,
        )

    def _prior_active(self) -> bool:
        hypo = self.event.hypo
        return hypo.has_bayes and not hypo.held_depth

    def _free_parameters(self) -> list[str]:
        hypo = self.event.hypo
        free = ["time"]
        if not hypo.held_location:
            free += ["lat", "lon"]
        if not hypo.held_depth:
            free.append("depth")
        return free

    def _degrees_of_freedom(self, free: list[str] | None = None) -> int:
        if free is None:
            free = self._free_parameters()
        used = sum(group.used_count() for group in self.event.groups)
        return used - len(free)

    def _solve(self, free: list[str]) -> _Step:
        hypo = self.event.hypo
        cos_lat = np.cos(np.radians(hypo.latitude))
        rows: list[list[float]] = []
        rhs: list[float] = []
        row_weights: list[float] = []
        used_picks = []
        for group in self.event.groups:
            az = np.radians(group.azimuth)
            for pick in group.picks:
                if not pick.used:
                    pick.importance = 0.0
                    continue
                coefficients = {
                    "time": 1.0,
                    "lat": -pick.dtdd * np.cos(az),
                    "lon": -pick.dtdd * np.sin(az) * cos_lat,
                    "depth": pick.dtdz,
                }
                rows.append([coefficients[name] for name in free])
                rhs.append(pick.residual)
                row_weights.append(np.sqrt(pick.weight) / pick.spread)
                used_picks.append(pick)

        if "depth" in free and self._prior_active():
            rows.append([1.0 if name == "depth" else 0.0 for name in free])
            rhs.append(hypo.bayes_depth - hypo.depth)
            row_weights.append(1.0 / hypo.bayes_spread)

        weights = np.asarray(row_weights, dtype=float)
        a = np.asarray(rows, dtype=float) * weights[:, None]
        b = np.asarray(rhs, dtype=float) * weights
        norms = np.linalg.norm(a, axis=0)
        if not np.all(np.isfinite(norms)) or np.any(norms <= 0.0):
            raise NumericalError(f"degenerate design matrix column: {dict(zip(free, norms))}")
        a_scaled = a / norms

        try:
            u, s, vt = np.linalg.svd(a_scaled, full_matrices=False)
        except np.linalg.LinAlgError as exc:
            raise NumericalError(str(exc)) from exc
        if s.size == 0 or not np.isfinite(s[0]) or s[0] <= 0.0:
            raise NumericalError("design matrix has no information")

        damping = self.settings.damping
        if hypo.no_svd:
            if s[-1] < self.settings.svd_cutoff * s[0]:
                raise NumericalError(f"condition number {s[0] / s[-1]:.3g} too large")
            normal = a_scaled.T @ a_scaled + damping * np.eye(len(free))
            try:
                y = np.linalg.solve(normal, a_scaled.T @ b)
            except np.linalg.LinAlgError as exc:
                raise NumericalError(str(exc)) from exc
            keep = np.ones_like(s, dtype=bool)
        else:
            keep = s >= self.settings.svd_cutoff * s[0]
            if not np.all(keep):
                logger.debug(
                    "Truncating singular values: event_id=%s kept=%d of %d",
                    self.event.event_id,
                    int(keep.sum()),
                    s.size,
                )
            filt = np.where(keep, s / (s * s + damping), 0.0)
            y = vt.T @ (filt * (u.T @ b))

        leverage = np.where(keep, s * s / (s * s + damping), 0.0)
        importance = (u * u) @ leverage
        for pick, value in zip(used_picks, importance):
            pick.importance = float(value)

        dx = y / norms
        return _Step({name: float(value) for name, value in zip(free, dx)})

    def _limit_step(self, step: _Step) -> _Step:
        hypo = self.event.hypo
        cos_lat = np.cos(np.radians(hypo.latitude))
        epicentral = float(np.hypot(step.get("lat"), step.get("lon") * cos_lat))
        scale = 1.0
        if epicentral > self.settings.max_position_step_deg:
            scale = self.settings.max_position_step_deg / epicentral
        depth_step = abs(step.get("depth")) * scale
        if depth_step > self.settings.max_depth_step_km:
            scale *= self.settings.max_depth_step_km / depth_step
        if scale < 1.0:
            logger.debug(
                "Limiting step: event_id=%s iteration=%d scale=%.4f",
                self.event.event_id,
                self.iteration,
                scale,
            )
        return _Step({name: value * scale for name, value in step.values.items()})

    def _test_convergence(self, base: float, trial: float) -> LocStatus:
        settings = self.settings
        if trial > base * (1.0 + settings.rss_tolerance) + RSS_FLOOR:
            self._increases += 1
        else:
            self._increases = 0
            self._remember_best()

        if self._degrees_of_freedom() <= 0:
            return self._finish(LocStatus.FAILED)
        if self._increases >= 2:
            return self._finish(LocStatus.RESTART_REQUIRED)

        rss_settled = abs(base - trial) <= settings.rss_tolerance * base + RSS_FLOOR
        steps_settled = (
            self.last_position_step <= settings.position_tolerance_deg
            and self.last_depth_step <= settings.depth_tolerance_km
        )
        if rss_settled and steps_settled:
            return self._finish(LocStatus.CONVERGED)
        if self.iteration >= settings.max_iterations:
            self._give_up()
        return self.state

    def _remember_best(self) -> None:
        hypo = self.event.hypo
        self._best = (hypo.origin_time, hypo.latitude, hypo.longitude, hypo.depth)

    def _restore_best(self) -> None:
        hypo = self.event.hypo
        if self._best is None or self._best == (
            hypo.origin_time,
            hypo.latitude,
            hypo.longitude,
            hypo.depth,
        ):
            return
        logger.debug(
            "Restoring last accepted hypocenter: event_id=%s lat=%.5f lon=%.5f depth=%.3f",
            self.event.event_id,
            self._best[1],
            self._best[2],
            self._best[3],
        )
        self.event.update_hypocenter(*self._best, self.table)
        self._refresh_prior()
        self.rss = self._refresh(update=False)

    def _give_up(self) -> None:
        self._finish(LocStatus.DID_NOT_CONVERGE)

    def _finish(self, status: LocStatus) -> LocStatus:
        if status is not LocStatus.CONVERGED:
            self._restore_best()
        self.state = status
        hypo = self.event.hypo
        logger.info(
            "Location finished: event_id=%s status=%s iterations=%d rss=%.6g lat=%.5f lon=%.5f depth=%.3f",
            self.event.event_id,
            status.value,
            self.iteration,
            self.rss,
            hypo.latitude,
            hypo.longitude,
            hypo.depth,
        )
        return status


def default_start(event: Event) -> tuple[float, float, float, float]:
    """Starting hypocenter at the station with the earliest usable arrival."""
    hypo = event.hypo
    candidates = [pick for pick in event.picks if pick.use] or event.picks
    if not candidates:
        raise InputError(f"event {event.event_id!r} has no picks")
    first = min(candidates, key=lambda pick: pick.arrival_time)
    lat, lon = first.station.lat, first.station.lon
    if hypo.held_location:
        lat, lon = hypo.latitude, hypo.longitude
    depth = hypo.depth if hypo.held_depth else DEFAULT_START_DEPTH
    return first.arrival_time - 2.0, lat, lon, depth


def locate_event(
    event: Event,
    table: TravelTimeTable,
    grid: DepthGrid | None = None,
    settings: LocatorSettings | None = None,
) -> LocationResult:
    settings = settings or LocatorSettings()
    locator = Locator(event, table, grid, settings)
    status = locator.run()
    iterations = locator.iteration

    restarts = 0
    while status is LocStatus.RESTART_REQUIRED and restarts < settings.max_restarts:
        restarts += 1
        origin_time, lat, lon, depth = default_start(event)
        logger.info(
            "Restarting location: event_id=%s restart=%d lat=%.5f lon=%.5f depth=%.3f",
            event.event_id,
            restarts,
            lat,
            lon,
            depth,
        )
        event.hypo.update(origin_time, lat, lon, depth)
        locator = Locator(event, table, grid, settings)
        status = locator.run()
        iterations += locator.iteration

    return build_result(event, status, iterations)


def build_result(event: Event, status: LocStatus, iterations: int) -> LocationResult:
    hypo = event.hypo
    stats = event.station_stats()
    arrivals: list[ArrivalResidual] = []
    used_residuals: list[float] = []
    azimuths: list[float] = []
    distances: list[float] = []
    for group in event.groups:
        station = group.station
        if group.used_count() > 0:
            azimuths.append(group.azimuth)
            distances.append(group.delta)
        for pick in group.picks:
            if pick.used:
                used_residuals.append(pick.residual)
            arrivals.append(
                ArrivalResidual(
                    net=station.net,
                    sta=station.sta,
                    loc=station.loc,
                    chan=pick.chan,
                    pick_id=pick.id,
                    phase=pick.ph_code,
                    arrival_time=pick.arrival_time,
                    distance_deg=float(group.delta),
                    azimuth_deg=float(group.azimuth),
                    residual_seconds=float(pick.residual),
                    weight=float(pick.weight) if pick.used else 0.0,
                    importance=float(pick.importance) if pick.used else 0.0,
                    affinity=float(pick.affinity),
                    used=pick.used,
                )
            )

    residuals = np.asarray(used_residuals, dtype=float)
    rms = float(np.sqrt(np.mean(residuals * residuals))) if residuals.size else 0.0
    result = LocationResult(
        status=status,
        provisional=status is not LocStatus.CONVERGED,
        origin_time=hypo.origin_time,
        lat=hypo.latitude,
        lon=hypo.longitude,
        depth_km=hypo.depth,
        held_location=hypo.held_location,
        held_depth=hypo.held_depth,
        bayes_depth=hypo.bayes_depth,
        bayes_spread=hypo.bayes_spread,
        depth_source=hypo.depth_source,
        rms_seconds=rms,
        azimuthal_gap_deg=float(azimuthal_gap(azimuths)),
        secondary_gap_deg=float(secondary_azimuthal_gap(azimuths)),
        min_distance_deg=float(min(distances)) if distances else 0.0,
        n_stations=stats.n_stations,
        stations_used=stats.stations_used,
        n_picks=stats.n_picks,
        picks_used=stats.picks_used,
        iterations=iterations,
        arrivals=arrivals,
    )
    logger.info(
        "Location result: event_id=%s status=%s provisional=%s lat=%.5f lon=%.5f depth_km=%.3f "
        "rms=%.4f gap=%.1f stations=%d/%d picks=%d/%d",
        event.event_id,
        status.value,
        result.provisional,
        result.lat,
        result.lon,
        result.depth_km,
        result.rms_seconds,
        result.azimuthal_gap_deg,
        result.stations_used,
        result.n_stations,
        result.picks_used,
        result.n_picks,
    )
    return result
