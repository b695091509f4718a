"""
Regular raster of values, the input of the contouring step.

Nodes sit at `xs[j], ys[i]` with constant spacing along each axis; `values[i, j]`
is the value at that node, NaN where nothing was evaluated (outside the mask).
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd
import shapely
from shapely.geometry.base import BaseGeometry

from spatialpotential.errors import InvalidGrid

# Relative tolerance when checking that node spacing is constant.
SPACING_RTOL = 1e-6
# Slack, in cells, when locating mask boundary segments on the lattice.
_EDGE_EPS = 1e-9


def _check_axis(coords: np.ndarray, *, name: str) -> None:
    if coords.ndim != 1 or coords.size < 2:
        raise InvalidGrid(f"{name}: a raster needs at least 2 nodes along each axis")
    if not np.all(np.isfinite(coords)):
        raise InvalidGrid(f"{name}: coordinates must be finite")
    steps = np.diff(coords)
    if (steps <= 0).any():
        raise InvalidGrid(f"{name}: coordinates must be strictly increasing")
    if not np.allclose(steps, steps[0], rtol=SPACING_RTOL, atol=0.0):
        raise InvalidGrid(f"{name}: node spacing is irregular (min={steps.min():g}, max={steps.max():g})")


def _boundary_cells(xs: np.ndarray, ys: np.ndarray, mask: BaseGeometry) -> np.ndarray:
    # Conservative: every cell whose closed square may meet the mask boundary.
    dx = float(xs[1] - xs[0])
    dy = float(ys[1] - ys[0])
    marked = np.zeros((ys.size - 1, xs.size - 1), dtype=bool)
    # Segments no longer than half a cell span at most 3 cells per axis.
    lines = shapely.get_parts(shapely.segmentize(mask.boundary, 0.5 * min(dx, dy)))
    coords, part = shapely.get_coordinates(lines, return_index=True)
    if coords.shape[0] < 2:
        return marked
    same = part[:-1] == part[1:]
    p = coords[:-1][same]
    q = coords[1:][same]
    lo = np.minimum(p, q)
    hi = np.maximum(p, q)
    c_lo = np.maximum(np.floor((lo[:, 0] - xs[0]) / dx - _EDGE_EPS).astype(int), 0)
    c_hi = np.minimum(np.floor((hi[:, 0] - xs[0]) / dx + _EDGE_EPS).astype(int), xs.size - 2)
    r_lo = np.maximum(np.floor((lo[:, 1] - ys[0]) / dy - _EDGE_EPS).astype(int), 0)
    r_hi = np.minimum(np.floor((hi[:, 1] - ys[0]) / dy + _EDGE_EPS).astype(int), ys.size - 2)
    for dr in range(3):
        for dc in range(3):
            r = r_lo + dr
            c = c_lo + dc
            ok = (r <= r_hi) & (c <= c_hi)
            marked[r[ok], c[ok]] = True
    return marked


def _linear_at(tri_xy: np.ndarray, tri_vals: np.ndarray, pts: np.ndarray) -> np.ndarray:
    # Barycentric interpolation of each point inside its own triangle.
    p0 = tri_xy[:, 0]
    e1 = tri_xy[:, 1] - p0
    e2 = tri_xy[:, 2] - p0
    r = pts - p0
    det = e1[:, 0] * e2[:, 1] - e1[:, 1] * e2[:, 0]
    l1 = (r[:, 0] * e2[:, 1] - r[:, 1] * e2[:, 0]) / det
    l2 = (e1[:, 0] * r[:, 1] - e1[:, 1] * r[:, 0]) / det
    out = tri_vals[:, 0] + l1 * (tri_vals[:, 1] - tri_vals[:, 0]) + l2 * (tri_vals[:, 2] - tri_vals[:, 0])
    return np.clip(out, tri_vals.min(axis=1), tri_vals.max(axis=1))


def _masked_samples(surface: "RasterSurface", mask: BaseGeometry) -> np.ndarray:
    """
    Surface values that attain the extremes of the linear surface inside `mask`.

    Squares are split along the same SW-NE diagonal the contouring uses. Triangles of
    squares wholly inside the mask contribute their corner values. Triangles of
    squares the mask boundary crosses are clipped to the mask and contribute the
    surface evaluated at the clipped outline vertices.
    """
    xs, ys = surface.xs, surface.ys
    n_cols = xs.size
    rows, cols = np.meshgrid(np.arange(ys.size - 1), np.arange(n_cols - 1), indexing="ij")
    rows = rows.ravel()
    cols = cols.ravel()
    a = rows * n_cols + cols
    corners = np.concatenate(
        [np.stack([a, a + 1, a + n_cols + 1], axis=1), np.stack([a, a + n_cols + 1, a + n_cols], axis=1)]
    )
    cell = np.concatenate([np.arange(a.size), np.arange(a.size)])
    tri_vals = surface.values.ravel()[corners]
    finite = np.isfinite(tri_vals).all(axis=1)

    shapely.prepare(mask)
    crossed = _boundary_cells(xs, ys, mask).ravel()
    center_x = (xs[:-1] + xs[1:]) / 2.0
    center_y = (ys[:-1] + ys[1:]) / 2.0
    inside_cell = shapely.intersects_xy(mask, center_x[cols], center_y[rows]) & ~crossed

    samples = [tri_vals[finite & inside_cell[cell]].ravel()]
    edge = np.flatnonzero(finite & crossed[cell])
    if edge.size:
        node_x = np.tile(xs, ys.size)
        node_y = np.repeat(ys, n_cols)
        tri_xy = np.stack([node_x[corners[edge]], node_y[corners[edge]]], axis=-1)
        rings = np.concatenate([tri_xy, tri_xy[:, :1]], axis=1)
        clipped = shapely.intersection(shapely.polygons(rings), mask)
        keep = np.flatnonzero(shapely.area(clipped) > 0)
        pts, idx = shapely.get_coordinates(clipped[keep], return_index=True)
        which = keep[idx]
        samples.append(_linear_at(tri_xy[which], tri_vals[edge][which], pts))
    return np.concatenate(samples)


@dataclass(frozen=True)
class RasterSurface:
    xs: np.ndarray
    ys: np.ndarray
    values: np.ndarray

    def __post_init__(self) -> None:
        xs = np.asarray(self.xs, dtype=float)
        ys = np.asarray(self.ys, dtype=float)
        values = np.asarray(self.values, dtype=float)
        _check_axis(xs, name="xs")
        _check_axis(ys, name="ys")
        if values.shape != (ys.size, xs.size):
            raise InvalidGrid(f"values shape {values.shape} does not match ({ys.size}, {xs.size}) nodes")
        for name, arr in (("xs", xs), ("ys", ys), ("values", values)):
            arr = arr.copy()
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)

    @property
    def extent(self) -> tuple[float, float, float, float]:
        return float(self.xs[0]), float(self.ys[0]), float(self.xs[-1]), float(self.ys[-1])

    def value_range(self, mask: BaseGeometry | None = None) -> tuple[float, float] | None:
        """
        Min and max of the surface, NaN nodes excluded; None when nothing is finite.

        With `mask`, the range of the linearly interpolated surface over the area
        inside the mask only, which can be narrower than the node range when the
        raster extends past the mask.
        """
        if mask is None:
            samples = self.values[np.isfinite(self.values)]
        else:
            samples = _masked_samples(self, mask)
        if samples.size == 0:
            return None
        return float(samples.min()), float(samples.max())

    @classmethod
    def from_frame(
        cls,
        df: pd.DataFrame,
        *,
        value_col: str,
        x_col: str = "x",
        y_col: str = "y",
    ) -> "RasterSurface":
        """
        Rebuild a raster from a point table (one row per node).

        Missing nodes inside the bounding lattice become NaN; duplicated nodes or
        irregular spacing raise `InvalidGrid`.
        """
        missing = {x_col, y_col, value_col} - set(df.columns)
        if missing:
            raise InvalidGrid(f"Missing raster columns: {sorted(missing)}")
        x = df[x_col].to_numpy(dtype=float)
        y = df[y_col].to_numpy(dtype=float)
        xs = np.unique(x)
        ys = np.unique(y)
        _check_axis(xs, name=x_col)
        _check_axis(ys, name=y_col)

        values = np.full((ys.size, xs.size), np.nan, dtype=float)
        cols = np.searchsorted(xs, x)
        rows = np.searchsorted(ys, y)
        if len(set(zip(rows.tolist(), cols.tolist()))) != len(df):
            raise InvalidGrid("Raster table contains duplicated nodes")
        values[rows, cols] = df[value_col].to_numpy(dtype=float)
        return cls(xs=xs, ys=ys, values=values)
