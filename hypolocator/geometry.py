from typing import NamedTuple

import numpy as np

DTOL = 1e-9
DEG2KM = 111.19

# Canonical travel-time residual model: a Cauchy/Gaussian mixture.
TT_RES_WIDTH = 1.001691
CAUCHY_FRACTION = 0.45
CAUCHY_WIDTH = 0.78 / TT_RES_WIDTH
GAUSS_WIDTH = 0.92 / TT_RES_WIDTH
CAUCHY_NORM = CAUCHY_FRACTION / np.pi
GAUSS_NORM = (1.0 - CAUCHY_FRACTION) / np.sqrt(2.0 * np.pi)


class DistAz(NamedTuple):
    delta: float
    azimuth: float


def distance_azimuth(hypo, station) -> DistAz:
    """Source-receiver distance and receiver azimuth in degrees.

    Both arguments carry sines and cosines of geographic colatitude
    (``sin_lat``/``cos_lat``) and longitude (``sin_lon``/``cos_lon``), so no
    trigonometric calls are needed here except the final arctangents.
    """
    # South pole.
    if station.sin_lat <= DTOL and station.cos_lat < 0.0:
        return DistAz(float(np.degrees(np.pi - np.arccos(hypo.cos_lat))), 180.0)

    cos_dlon = station.cos_lon * hypo.cos_lon + station.sin_lon * hypo.sin_lon
    cosdel = hypo.sin_lat * station.sin_lat * cos_dlon + hypo.cos_lat * station.cos_lat
    tm1 = station.sin_lat * (station.sin_lon * hypo.cos_lon - station.cos_lon * hypo.sin_lon)
    tm2 = hypo.sin_lat * station.cos_lat - hypo.cos_lat * station.sin_lat * cos_dlon
    sindel = np.sqrt(tm1 * tm1 + tm2 * tm2)

    if abs(tm1) <= DTOL and abs(tm2) <= DTOL:
        az = 0.0
    else:
        az = float(np.degrees(np.arctan2(tm1, tm2)))
        if az < 0.0:
            az += 360.0
        if az >= 360.0:
            az -= 360.0

    if sindel <= DTOL and abs(cosdel) <= DTOL:
        delta = 0.0
    else:
        delta = float(np.degrees(np.arctan2(sindel, cosdel)))
    return DistAz(delta, az)


def residual_density(residual, median: float, spread: float):
    """Probability density of a travel-time residual.

    Mixture of a Cauchy and a Gaussian kernel scaled by the phase spread.
    The mixture integrates to one for any positive spread.
    """
    gauss_spread = spread * GAUSS_WIDTH
    cauchy_spread = spread * CAUCHY_WIDTH
    gauss_var = (np.asarray(residual, dtype=float) - median) / gauss_spread
    cauchy_var = (np.asarray(residual, dtype=float) - median) / cauchy_spread
    density = GAUSS_NORM * np.exp(-0.5 * gauss_var**2) / gauss_spread + CAUCHY_NORM / (
        cauchy_spread * (1.0 + cauchy_var**2)
    )
    if density.ndim == 0:
        return float(density)
    return density


def residual_model(residual, median: float, spread: float):
    """Residual density normalized to one at the median."""
    peak = GAUSS_NORM / (spread * GAUSS_WIDTH) + CAUCHY_NORM / (spread * CAUCHY_WIDTH)
    return residual_density(residual, median, spread) / peak


def delta_to_km(delta: float) -> float:
    return delta * DEG2KM


def azimuthal_gap(station_azimuths: list[float]) -> float:
    """Calculate largest azimuthal gap."""
    if len(station_azimuths) < 2:
        return 360.0
    sorted_az = sorted(station_azimuths)
    gaps = [sorted_az[i + 1] - sorted_az[i] for i in range(len(sorted_az) - 1)]
    gaps.append(360.0 + sorted_az[0] - sorted_az[-1])
    return max(gaps)


def secondary_azimuthal_gap(station_azimuths: list[float]) -> float:
    """Largest gap left when any one station is removed."""
    if len(station_azimuths) < 3:
        return 360.0
    sorted_az = sorted(station_azimuths)
    gaps = []
    for i in range(len(sorted_az)):
        next_i = (i + 2) % len(sorted_az)
        if next_i > i:
            gap = sorted_az[next_i] - sorted_az[i]
        else:
            gap = 360.0 + sorted_az[next_i] - sorted_az[i]
        gaps.append(gap)
    return max(gaps)
