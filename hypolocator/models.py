from dataclasses import dataclass, field
from enum import Enum, IntEnum

import numpy as np

DEPTHMIN = 1.0
DEPTHMAX = 700.0


class LocStatus(str, Enum):
    INITIAL = "initial"
    ITERATING = "iterating"
    CONVERGED = "converged"
    DID_NOT_CONVERGE = "did_not_converge"
    RESTART_REQUIRED = "restart_required"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self not in (LocStatus.INITIAL, LocStatus.ITERATING)


class AuthorType(IntEnum):
    UNKNOWN = 0
    CONTRIB_AUTO = 1
    CONTRIB_HUMAN = 2
    LOCAL_AUTO = 3
    LOCAL_HUMAN = 4

    @property
    def is_human(self) -> bool:
        return self in (AuthorType.CONTRIB_HUMAN, AuthorType.LOCAL_HUMAN)

    @classmethod
    def from_code(cls, code: int) -> "AuthorType":
        try:
            return cls(code)
        except ValueError:
            return cls.UNKNOWN


class DepthSource(str, Enum):
    GRID = "grid"
    INTERPOLATED = "interpolated"
    NEAREST = "nearest"
    DEFAULT = "default"
    ANALYST = "analyst"


def _trig_cache(lat: float, lon: float) -> tuple[float, float, float, float]:
    colat = np.radians(90.0 - lat)
    lon_rad = np.radians(lon)
    return (
        float(np.sin(colat)),
        float(np.cos(colat)),
        float(np.sin(lon_rad)),
        float(np.cos(lon_rad)),
    )


def normalize_longitude(lon: float) -> float:
    lon = float(lon)
    if -180.0 <= lon <= 180.0:
        return lon
    return (lon + 180.0) % 360.0 - 180.0


@dataclass(frozen=True)
class Station:
    net: str
    sta: str
    loc: str
    lat: float
    lon: float
    elev_m: float = 0.0
    sin_lat: float = field(init=False, repr=False, compare=False)
    cos_lat: float = field(init=False, repr=False, compare=False)
    sin_lon: float = field(init=False, repr=False, compare=False)
    cos_lon: float = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        sin_lat, cos_lat, sin_lon, cos_lon = _trig_cache(self.lat, self.lon)
        object.__setattr__(self, "sin_lat", sin_lat)
        object.__setattr__(self, "cos_lat", cos_lat)
        object.__setattr__(self, "sin_lon", sin_lon)
        object.__setattr__(self, "cos_lon", cos_lon)

    @property
    def station_key(self) -> tuple[str, str, str]:
        return (self.net, self.sta, self.loc)

    @property
    def elevation_km(self) -> float:
        return self.elev_m / 1000.0


@dataclass
class Hypocenter:
    """Current location estimate. Depth is in km, origin time in epoch seconds.

    ``sin_lat``/``cos_lat`` hold the sine and cosine of the geographic
    colatitude and are refreshed by :meth:`update`.
    """

    origin_time: float
    latitude: float
    longitude: float
    depth: float
    held_location: bool = False
    held_depth: bool = False
    restricted: bool = False
    no_svd: bool = False
    bayes_depth: float | None = None
    bayes_spread: float | None = None
    depth_source: DepthSource | None = None
    sin_lat: float = field(init=False, repr=False)
    cos_lat: float = field(init=False, repr=False)
    sin_lon: float = field(init=False, repr=False)
    cos_lon: float = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.update(self.origin_time, self.latitude, self.longitude, self.depth)

    def update(self, origin_time: float, latitude: float, longitude: float, depth: float) -> None:
        self.origin_time = float(origin_time)
        self.latitude = float(min(90.0, max(-90.0, latitude)))
        self.longitude = normalize_longitude(longitude)
        self.depth = float(min(DEPTHMAX, max(DEPTHMIN, depth)))
        self.sin_lat, self.cos_lat, self.sin_lon, self.cos_lon = _trig_cache(
            self.latitude, self.longitude
        )

    def add_bayes(self, depth: float, spread: float, source: DepthSource) -> None:
        if spread <= 0:
            raise ValueError("Bayesian depth spread must be > 0")
        self.bayes_depth = float(depth)
        self.bayes_spread = float(spread)
        self.depth_source = source

    @property
    def has_bayes(self) -> bool:
        return self.bayes_depth is not None and self.bayes_spread is not None


@dataclass(frozen=True)
class BayesianDepth:
    depth: float
    spread: float
    min_depth: float
    max_depth: float
    source: DepthSource


@dataclass(frozen=True)
class ArrivalResidual:
    net: str
    sta: str
    loc: str
    chan: str
    pick_id: str
    phase: str
    arrival_time: float
    distance_deg: float
    azimuth_deg: float
    residual_seconds: float
    weight: float
    importance: float
    affinity: float
    used: bool


@dataclass(frozen=True)
class LocationResult:
    status: LocStatus
    provisional: bool
    origin_time: float
    lat: float
    lon: float
    depth_km: float
    held_location: bool
    held_depth: bool
    bayes_depth: float | None
    bayes_spread: float | None
    depth_source: DepthSource | None
    rms_seconds: float
    azimuthal_gap_deg: float
    secondary_gap_deg: float
    min_distance_deg: float
    n_stations: int
    stations_used: int
    n_picks: int
    picks_used: int
    iterations: int
    arrivals: list[ArrivalResidual]
