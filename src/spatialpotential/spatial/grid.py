"""
Regular grid of evaluation targets covering a mask polygon.

The lattice starts at the mask's bounding-box minimum corner (expanded by the
optional buffer) and is enumerated row-major: row 0 is the southernmost row,
col 0 the westernmost column. Identical mask + resolution + buffer always give
identical cells in identical order, so per-cell outputs can be scattered back
into a 2D array for contouring by (row, col).
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np
import shapely
from shapely.geometry.base import BaseGeometry

from spatialpotential.errors import InvalidParameter, ResourceLimitExceeded
from spatialpotential.log import get_logger
from spatialpotential.spatial.frames import ReferenceFrame
from spatialpotential.spatial.points import EvaluationTargets, GridCellTarget
from spatialpotential.spatial.raster import RasterSurface

# Lattice size (rows x cols) above which generation is refused.
DEFAULT_MAX_CELLS = 1_000_000

# Absorbs float noise when the extent is an exact multiple of the resolution.
_CEIL_EPS = 1e-9


@dataclass(frozen=True)
class Grid:
    origin_x: float
    origin_y: float
    resolution: float
    n_rows: int
    n_cols: int
    cells: EvaluationTargets

    @property
    def lattice_size(self) -> int:
        return self.n_rows * self.n_cols

    def node_xs(self) -> np.ndarray:
        return self.origin_x + (np.arange(self.n_cols) + 0.5) * self.resolution

    def node_ys(self) -> np.ndarray:
        return self.origin_y + (np.arange(self.n_rows) + 0.5) * self.resolution

    def to_raster(self, values: np.ndarray) -> RasterSurface:
        """
        Scatter one value per retained cell into the full lattice (NaN elsewhere).
        """
        vals = np.asarray(values, dtype=float)
        if vals.shape != (len(self.cells),):
            raise InvalidParameter(f"Expected {len(self.cells)} cell values, got shape {vals.shape}")
        out = np.full((self.n_rows, self.n_cols), np.nan, dtype=float)
        rows = np.array([c.row for c in self.cells.targets], dtype=int)  # type: ignore[union-attr]
        cols = np.array([c.col for c in self.cells.targets], dtype=int)  # type: ignore[union-attr]
        out[rows, cols] = vals
        return RasterSurface(xs=self.node_xs(), ys=self.node_ys(), values=out)


def generate_grid(
    mask: BaseGeometry,
    resolution: float,
    *,
    buffer: float = 0.0,
    max_cells: int = DEFAULT_MAX_CELLS,
    frame: ReferenceFrame = ReferenceFrame.PLANAR,
) -> Grid:
    log = get_logger()
    res = float(resolution)
    if not math.isfinite(res) or res <= 0:
        raise InvalidParameter(f"resolution must be a finite number > 0, got {resolution!r}")
    buf = float(buffer)
    if not math.isfinite(buf) or buf < 0:
        raise InvalidParameter(f"buffer must be a finite number >= 0, got {buffer!r}")
    if mask is None or mask.is_empty or mask.area <= 0:
        raise InvalidParameter("mask must be a non-empty polygon")

    min_x, min_y, max_x, max_y = mask.bounds
    min_x -= buf
    min_y -= buf
    max_x += buf
    max_y += buf
    n_cols = max(1, math.ceil((max_x - min_x) / res - _CEIL_EPS))
    n_rows = max(1, math.ceil((max_y - min_y) / res - _CEIL_EPS))
    # Checked before allocating anything proportional to the lattice.
    if n_rows * n_cols > max_cells:
        raise ResourceLimitExceeded(
            f"Grid of {n_rows}x{n_cols}={n_rows * n_cols} cells exceeds the limit of {max_cells}; "
            "use a coarser resolution"
        )

    xs = min_x + (np.arange(n_cols) + 0.5) * res
    ys = min_y + (np.arange(n_rows) + 0.5) * res
    xx, yy = np.meshgrid(xs, ys)
    cx = xx.ravel()
    cy = yy.ravel()

    # Boundary points count as inside.
    keep = shapely.intersects_xy(mask, cx, cy)
    if buf > 0:
        keep |= shapely.distance(mask, shapely.points(cx, cy)) <= buf

    idx = np.flatnonzero(keep)
    if idx.size == 0:
        raise InvalidParameter("No grid cell center falls inside the mask at this resolution")

    rows, cols = np.divmod(idx, n_cols)
    cells = tuple(
        GridCellTarget(id=f"r{r}c{c}", x=float(cx[i]), y=float(cy[i]), row=int(r), col=int(c), size=res)
        for i, r, c in zip(idx.tolist(), rows.tolist(), cols.tolist())
    )
    log.info(
        "Grid %dx%d at resolution %g (buffer %g): %d of %d cells kept",
        n_rows,
        n_cols,
        res,
        buf,
        len(cells),
        n_rows * n_cols,
    )
    return Grid(
        origin_x=float(min_x),
        origin_y=float(min_y),
        resolution=res,
        n_rows=int(n_rows),
        n_cols=int(n_cols),
        cells=EvaluationTargets(targets=cells, frame=frame),
    )
