"""Bayesian depth priors from gridded earthquake depth statistics.

Two grid layouts are supported. ``ZoneStats`` stores one value per
fixed-size cell, so every latitude row has the same number of samples and the
sample points are cell centres. ``SlabGrid`` stores point samples on rows of
constant colatitude, including both poles, with the number of samples per row
shrinking towards the poles so the spacing stays roughly uniform on the
sphere.

Both layouts expose the small index arithmetic of :class:`DepthGrid`; the
lookup and interpolation below are written once against that protocol.
"""

import logging
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import numpy as np

from .errors import DataError, LoadError
from .models import DEPTHMAX, DEPTHMIN, BayesianDepth, DepthSource

logger = logging.getLogger(__name__)

DEFAULT_DEPTH = 10.0
DEFAULT_SPREAD = 15.0
DEFAULT_PRIOR = BayesianDepth(DEFAULT_DEPTH, DEFAULT_SPREAD, DEPTHMIN, DEPTHMAX, DepthSource.DEFAULT)


@dataclass(frozen=True)
class ZoneCell:
    depth: float
    spread: float
    min_depth: float
    max_depth: float


@dataclass(frozen=True)
class GridPoint:
    """Canonical coordinates of a trial point and its nearest grid indices."""

    colat: float
    lon: float
    lat_index: int
    lon_index: int


class DepthGrid(Protocol):
    spacing: float
    n_rows: int

    def row_length(self, lat_index: int) -> int:
        ...

    def lat_index(self, colat: float) -> int:
        ...

    def lon_index(self, lat_index: int, lon: float) -> int:
        ...

    def wrap_lon_index(self, lat_index: int, lon_index: int) -> int:
        ...

    def colat_of_index(self, lat_index: int) -> float:
        ...

    def lon_of_index(self, lat_index: int, lon_index: int) -> float:
        ...

    def cell(self, lat_index: int, lon_index: int) -> ZoneCell | None:
        ...


def canonical_coords(lat: float, lon: float) -> tuple[float, float]:
    """Geographic colatitude (0-180) and longitude (0-360) in degrees."""
    colat = min(180.0, max(0.0, 90.0 - float(lat)))
    lon360 = float(lon) % 360.0
    return colat, lon360


def lookup(grid: DepthGrid, lat: float, lon: float) -> GridPoint:
    colat, lon360 = canonical_coords(lat, lon)
    lat_index = grid.lat_index(colat)
    return GridPoint(colat, lon360, lat_index, grid.lon_index(lat_index, lon360))


def nearest_depth(grid: DepthGrid, lat: float, lon: float) -> BayesianDepth:
    point = lookup(grid, lat, lon)
    cell = grid.cell(point.lat_index, point.lon_index)
    if cell is None:
        return DEFAULT_PRIOR
    return _prior(cell, DepthSource.GRID)


def interpolated_depth(grid: DepthGrid, lat: float, lon: float) -> BayesianDepth:
    """Bilinear interpolation between the four samples surrounding a point.

    Falls back to the most heavily weighted valid sample if any of the four
    is missing, and to the global default if none is valid.
    """
    colat, lon360 = canonical_coords(lat, lon)
    i0, i1, ty = _bracket_rows(grid, colat)

    corners: list[tuple[int, int, float]] = []
    for i, row_weight in ((i0, 1.0 - ty), (i1, ty)):
        j0, j1, tx = _bracket_lons(grid, i, lon360)
        corners.append((i, j0, row_weight * (1.0 - tx)))
        corners.append((i, j1, row_weight * tx))

    samples = [(grid.cell(i, j), w) for i, j, w in corners]
    valid = [(cell, w) for cell, w in samples if cell is not None]
    if not valid:
        return DEFAULT_PRIOR
    if len(valid) < len(samples):
        cell, _ = max(valid, key=lambda item: item[1])
        return _prior(cell, DepthSource.NEAREST)

    total = sum(w for _, w in valid)
    return BayesianDepth(
        depth=sum(cell.depth * w for cell, w in valid) / total,
        spread=sum(cell.spread * w for cell, w in valid) / total,
        min_depth=sum(cell.min_depth * w for cell, w in valid) / total,
        max_depth=sum(cell.max_depth * w for cell, w in valid) / total,
        source=DepthSource.INTERPOLATED,
    )


def _bracket_rows(grid: DepthGrid, colat: float) -> tuple[int, int, float]:
    pos = (colat - grid.colat_of_index(0)) / grid.spacing
    i0 = int(np.floor(pos))
    if i0 < 0:
        return 0, 0, 0.0
    if i0 >= grid.n_rows - 1:
        return grid.n_rows - 1, grid.n_rows - 1, 0.0
    return i0, i0 + 1, pos - i0


def _bracket_lons(grid: DepthGrid, lat_index: int, lon: float) -> tuple[int, int, float]:
    row_spacing = 360.0 / grid.row_length(lat_index)
    pos = (lon - grid.lon_of_index(lat_index, 0)) / row_spacing
    j0 = int(np.floor(pos))
    tx = pos - j0
    return (
        grid.wrap_lon_index(lat_index, j0),
        grid.wrap_lon_index(lat_index, j0 + 1),
        tx,
    )


def _prior(cell: ZoneCell, source: DepthSource) -> BayesianDepth:
    return BayesianDepth(cell.depth, cell.spread, cell.min_depth, cell.max_depth, source)


class _GridData:
    """Read-only sample storage shared by both layouts (NaN marks no data)."""

    def __init__(
        self,
        depth: np.ndarray,
        spread: np.ndarray,
        min_depth: np.ndarray,
        max_depth: np.ndarray,
    ) -> None:
        arrays = [np.array(a, dtype=float) for a in (depth, spread, min_depth, max_depth)]
        shape = arrays[0].shape
        if len(shape) != 2 or any(a.shape != shape for a in arrays):
            raise DataError("depth grid arrays must be 2-D and share one shape")
        for a in arrays:
            a.setflags(write=False)
        self.depth, self.spread, self.min_depth, self.max_depth = arrays

    def cell(self, lat_index: int, lon_index: int) -> ZoneCell | None:
        depth = self.depth[lat_index, lon_index]
        spread = self.spread[lat_index, lon_index]
        if not (np.isfinite(depth) and np.isfinite(spread) and spread > 0.0):
            return None
        min_depth = self.min_depth[lat_index, lon_index]
        max_depth = self.max_depth[lat_index, lon_index]
        return ZoneCell(
            depth=float(depth),
            spread=float(spread),
            min_depth=float(min_depth) if np.isfinite(min_depth) else DEPTHMIN,
            max_depth=float(max_depth) if np.isfinite(max_depth) else DEPTHMAX,
        )


class ZoneStats:
    """Cell statistics on a regular colatitude/longitude mesh."""

    def __init__(self, spacing: float, depth, spread, min_depth, max_depth) -> None:
        self.spacing = float(spacing)
        self.n_rows = int(round(180.0 / self.spacing))
        self._n_lons = int(round(360.0 / self.spacing))
        self._data = _GridData(depth, spread, min_depth, max_depth)
        if self._data.depth.shape != (self.n_rows, self._n_lons):
            raise DataError(
                f"zone statistics shape {self._data.depth.shape} does not match "
                f"spacing {self.spacing} ({self.n_rows}, {self._n_lons})"
            )

    def row_length(self, lat_index: int) -> int:
        return self._n_lons

    def lat_index(self, colat: float) -> int:
        return min(self.n_rows - 1, max(0, int(colat / self.spacing)))

    def lon_index(self, lat_index: int, lon: float) -> int:
        return int(lon / self.spacing) % self._n_lons

    def wrap_lon_index(self, lat_index: int, lon_index: int) -> int:
        return lon_index % self._n_lons

    def colat_of_index(self, lat_index: int) -> float:
        return (lat_index + 0.5) * self.spacing

    def lon_of_index(self, lat_index: int, lon_index: int) -> float:
        return (lon_index + 0.5) * self.spacing

    def cell(self, lat_index: int, lon_index: int) -> ZoneCell | None:
        return self._data.cell(lat_index, lon_index)

    def nearest_depth(self, lat: float, lon: float) -> BayesianDepth:
        return nearest_depth(self, lat, lon)

    def interpolated_depth(self, lat: float, lon: float) -> BayesianDepth:
        return interpolated_depth(self, lat, lon)


class SlabGrid:
    """Point samples on colatitude rows from pole to pole.

    Row ``i`` has ``row_lengths[i]`` samples starting at longitude 0; the
    arrays are padded with NaN beyond each row's length.
    """

    def __init__(self, spacing: float, row_lengths, depth, spread, min_depth, max_depth) -> None:
        self.spacing = float(spacing)
        self.n_rows = int(round(180.0 / self.spacing)) + 1
        self._row_lengths = np.array(row_lengths, dtype=int)
        self._data = _GridData(depth, spread, min_depth, max_depth)
        if self._row_lengths.shape != (self.n_rows,) or np.any(self._row_lengths < 1):
            raise DataError(f"slab grid needs {self.n_rows} positive row lengths")
        if self._data.depth.shape != (self.n_rows, int(self._row_lengths.max())):
            raise DataError(
                f"slab grid shape {self._data.depth.shape} does not match its row lengths"
            )

    @staticmethod
    def default_row_lengths(spacing: float) -> np.ndarray:
        colats = np.arange(int(round(180.0 / spacing)) + 1) * spacing
        lengths = np.rint(360.0 * np.sin(np.radians(colats)) / spacing).astype(int)
        return np.maximum(lengths, 1)

    def row_length(self, lat_index: int) -> int:
        return int(self._row_lengths[lat_index])

    def lat_index(self, colat: float) -> int:
        return min(self.n_rows - 1, max(0, int(round(colat / self.spacing))))

    def lon_index(self, lat_index: int, lon: float) -> int:
        n = self.row_length(lat_index)
        return int(round(lon * n / 360.0)) % n

    def wrap_lon_index(self, lat_index: int, lon_index: int) -> int:
        return lon_index % self.row_length(lat_index)

    def colat_of_index(self, lat_index: int) -> float:
        return lat_index * self.spacing

    def lon_of_index(self, lat_index: int, lon_index: int) -> float:
        return lon_index * 360.0 / self.row_length(lat_index)

    def cell(self, lat_index: int, lon_index: int) -> ZoneCell | None:
        return self._data.cell(lat_index, lon_index)

    def nearest_depth(self, lat: float, lon: float) -> BayesianDepth:
        return nearest_depth(self, lat, lon)

    def interpolated_depth(self, lat: float, lon: float) -> BayesianDepth:
        return interpolated_depth(self, lat, lon)


RESOLUTIONS: dict[str, tuple[type, float | None]] = {
    "zone": (ZoneStats, None),
    "1spd": (SlabGrid, 1.0),
    "2spd": (SlabGrid, 0.5),
}


def grid_path(model_path: str | Path, resolution: str) -> Path:
    return Path(model_path) / f"depth_{resolution}.npz"


def load_depth_grid(model_path: str | Path, resolution: str = "zone") -> ZoneStats | SlabGrid:
    """Load the depth statistics for ``resolution`` from ``model_path``.

    ``model_path`` is either the ``.npz`` archive itself or the directory
    holding ``depth_<resolution>.npz``.
    """
    if resolution not in RESOLUTIONS:
        raise LoadError(f"unknown depth grid resolution: {resolution!r}")
    grid_cls, expected_spacing = RESOLUTIONS[resolution]
    path = Path(model_path)
    if path.is_dir():
        path = grid_path(path, resolution)

    try:
        with np.load(path, allow_pickle=False) as data:
            spacing = float(data["spacing"])
            arrays = [data[name] for name in ("depth", "spread", "min_depth", "max_depth")]
            row_lengths = data["row_lengths"] if grid_cls is SlabGrid else None
    except (OSError, KeyError, TypeError, ValueError, zipfile.BadZipFile) as exc:
        raise LoadError(f"unable to read depth grid {path}: {exc}") from exc

    if expected_spacing is not None and not np.isclose(spacing, expected_spacing):
        raise LoadError(
            f"depth grid {path} has spacing {spacing}, expected {expected_spacing} for {resolution}"
        )
    try:
        if grid_cls is SlabGrid:
            grid = SlabGrid(spacing, row_lengths, *arrays)
        else:
            grid = ZoneStats(spacing, *arrays)
    except DataError as exc:
        raise LoadError(f"corrupt depth grid {path}: {exc}") from exc

    logger.info(
        "Loaded depth grid: path=%s resolution=%s spacing=%.3f rows=%d",
        path,
        resolution,
        spacing,
        grid.n_rows,
    )
    return grid
