from dataclasses import dataclass, field
from typing import Protocol

import numpy as np

from .geometry import DEG2KM
from .phases import phase_type


@dataclass(frozen=True)
class TTPhase:
    """One predicted phase: time (s), spread (s), dT/dDelta (s/deg), dT/dz (s/km)."""

    code: str
    time: float
    spread: float
    dtdd: float
    dtdz: float


class TravelTimeTable(Protocol):
    def predict(
        self,
        depth_km: float,
        distance_deg: float,
        elevation_km: float,
        phase_hint: str | None = None,
        restricted: bool = False,
    ) -> list[TTPhase]:
        ...


def _default_spreads() -> dict[str, float]:
    return {"Pg": 0.8, "Pn": 1.0, "P": 1.0, "Sg": 1.2, "Sn": 1.5, "S": 1.5}


@dataclass(frozen=True)
class TwoLayerTravelTimes:
    """Flat crust over a mantle half-space.

    Crustal sources see a direct wave (Pg/Sg) and, beyond the crossover
    distance, a Moho head wave (Pn/Sn). Sources below the Moho get a single
    straight-path phase (P/S) whose slowness is the depth-weighted average of
    the two layers.
    """

    vp_crust: float = 6.0
    vp_mantle: float = 8.0
    vp_vs: float = 1.73
    moho_km: float = 35.0
    spreads: dict[str, float] = field(default_factory=_default_spreads)

    def __post_init__(self) -> None:
        if self.vp_crust <= 0 or self.vp_mantle <= self.vp_crust:
            raise ValueError("velocities must satisfy 0 < vp_crust < vp_mantle")
        if self.vp_vs <= 0 or self.moho_km <= 0:
            raise ValueError("vp_vs and moho_km must be > 0")

    def predict(
        self,
        depth_km: float,
        distance_deg: float,
        elevation_km: float,
        phase_hint: str | None = None,
        restricted: bool = False,
    ) -> list[TTPhase]:
        x = float(distance_deg) * DEG2KM
        z = float(depth_km)
        wanted = phase_type(phase_hint) if phase_hint else ""

        phases: list[TTPhase] = []
        for wave, factor in (("P", 1.0), ("S", self.vp_vs)):
            if wanted and wave != wanted:
                continue
            v1 = self.vp_crust / factor
            v2 = self.vp_mantle / factor
            elev_corr = elevation_km / v1
            wave_phases = self._wave_phases(wave, x, z, v1, v2, elev_corr)
            wave_phases.sort(key=lambda ph: ph.time)
            if restricted:
                wave_phases = wave_phases[:1]
            phases.extend(wave_phases)

        phases.sort(key=lambda ph: ph.time)
        return phases

    def _wave_phases(
        self,
        wave: str,
        x: float,
        z: float,
        v1: float,
        v2: float,
        elev_corr: float,
    ) -> list[TTPhase]:
        h = self.moho_km
        r = float(np.hypot(x, z))
        out: list[TTPhase] = []

        if z < h:
            if r > 0.0:
                dtdx, dtdz = x / (v1 * r), z / (v1 * r)
            else:
                dtdx, dtdz = 0.0, 0.0
            out.append(self._phase(wave + "g", r / v1 + elev_corr, dtdx, dtdz))

            cos_ic = np.sqrt(1.0 - (v1 / v2) ** 2)
            tan_ic = (v1 / v2) / cos_ic
            if x >= (2.0 * h - z) * tan_ic:
                t = x / v2 + (2.0 * h - z) * cos_ic / v1
                out.append(self._phase(wave + "n", t + elev_corr, 1.0 / v2, -cos_ic / v1))
            return out

        slowness = (h / v1 + (z - h) / v2) / z
        t = r * slowness
        dtdx = x / r * slowness
        dtdz = z / r * slowness + r * (1.0 / v2 - slowness) / z
        out.append(self._phase(wave, t + elev_corr, dtdx, dtdz))
        return out

    def _phase(self, code: str, time: float, dtdx: float, dtdz: float) -> TTPhase:
        return TTPhase(
            code=code,
            time=float(time),
            spread=self.spreads.get(code, 1.0),
            dtdd=float(dtdx * DEG2KM),
            dtdz=float(dtdz),
        )
