import logging
from dataclasses import dataclass, field

from .geometry import distance_azimuth, residual_model
from .models import AuthorType, Hypocenter, Station
from .phases import NULLAFFINITY, match_factor, phase_group
from .traveltime import TravelTimeTable

logger = logging.getLogger(__name__)


@dataclass
class Pick:
    """One phase arrival.

    ``obs_code`` is the phase as reported and is the target of phase
    identification; ``ph_code`` is the identification against the current
    hypocenter. Everything below ``use`` is recomputed each iteration.
    ``obs_affinity`` above one multiplies the identification score of
    candidates in the observed phase group; it does not change the weight.
    """

    id: str
    station: Station
    chan: str
    arrival_time: float
    ph_code: str = ""
    obs_code: str = ""
    quality: float = 0.0
    author: AuthorType = AuthorType.UNKNOWN
    obs_affinity: float = 0.0
    use: bool = True
    used: bool = field(init=False)
    weight: float = 0.0
    importance: float = 0.0
    residual: float = 0.0
    affinity: float = NULLAFFINITY
    tt: float | None = None
    spread: float = 1.0
    dtdd: float = 0.0
    dtdz: float = 0.0

    def __post_init__(self) -> None:
        if not self.obs_code:
            self.obs_code = self.ph_code
        self.used = self.use

    @property
    def station_key(self) -> tuple[str, str, str]:
        return self.station.station_key

    @property
    def has_phase(self) -> bool:
        return self.tt is not None

    def update_travel_time(
        self,
        hypo: Hypocenter,
        delta: float,
        table: TravelTimeTable,
    ) -> None:
        """Identify the pick against the phases predicted at ``delta``."""
        hint = self.obs_code if self.author.is_human and self.obs_code else None
        candidates = table.predict(
            hypo.depth,
            delta,
            self.station.elevation_km,
            phase_hint=hint,
            restricted=hypo.restricted,
        )
        if not candidates:
            logger.debug(
                "No phases predicted: pick_id=%s station=%s.%s delta=%.3f depth=%.2f",
                self.id,
                self.station.net,
                self.station.sta,
                delta,
                hypo.depth,
            )
            self.tt = None
            self.residual = 0.0
            self.weight = 0.0
            self.affinity = NULLAFFINITY
            return

        travel_time = self.arrival_time - hypo.origin_time
        best = None
        best_score = -1.0
        best_factor = NULLAFFINITY
        boost = self.obs_affinity if self.obs_code and self.obs_affinity > NULLAFFINITY else 1.0
        for phase in candidates:
            factor = match_factor(self.obs_code, phase.code) if self.obs_code else NULLAFFINITY
            score = factor * residual_model(travel_time - phase.time, 0.0, phase.spread)
            if phase_group(phase.code) == phase_group(self.obs_code):
                score *= boost
            if score > best_score:
                best, best_score, best_factor = phase, score, factor

        self.ph_code = best.code
        self.tt = best.time
        self.spread = best.spread
        self.dtdd = best.dtdd
        self.dtdz = best.dtdz
        self.residual = travel_time - best.time
        self.affinity = best_factor
        self.weight = best_factor * residual_model(self.residual, 0.0, best.spread)


class PickGroup:
    """All picks observed at one station for one event, in input order."""

    def __init__(self, station: Station, pick: Pick | None = None) -> None:
        self.station = station
        self.picks: list[Pick] = []
        self.delta = float("nan")
        self.azimuth = float("nan")
        if pick is not None:
            self.add(pick)

    def add(self, pick: Pick) -> None:
        if pick.station_key != self.station.station_key:
            raise ValueError(
                f"pick {pick.id} belongs to {pick.station_key}, not {self.station.station_key}"
            )
        self.picks.append(pick)

    def update(self, hypo: Hypocenter, table: TravelTimeTable) -> None:
        self.delta, self.azimuth = distance_azimuth(hypo, self.station)
        for pick in self.picks:
            pick.update_travel_time(hypo, self.delta, table)

    def used_count(self) -> int:
        return sum(1 for pick in self.picks if pick.used)
