"""
Coordinate reference frames understood by the engine.

The engine never reprojects. It only needs to know whether a coordinate pair is
planar (projected meters, Euclidean distances) or geographic (lon/lat degrees,
great-circle distances), and to refuse requests that mix the two.

Geographic distances use a spherical Earth (haversine):
- good to ~0.5% against the ellipsoid, which is far below the uncertainty of a
  `span` parameter chosen by hand,
- returned in meters so that `span` keeps the same unit in both frames.
"""

from __future__ import annotations

from enum import Enum

import numpy as np

from spatialpotential.errors import InvalidParameter, InvalidReferenceFrame

# Mean Earth radius in meters (spherical approximation).
EARTH_RADIUS_M = 6_371_000.0


class ReferenceFrame(str, Enum):
    PLANAR = "planar"
    GEOGRAPHIC = "geographic"


class DistanceMetric(str, Enum):
    EUCLIDEAN = "euclidean"
    GEODESIC = "geodesic"


# Each metric is only meaningful in one frame.
_METRIC_FRAME = {
    DistanceMetric.EUCLIDEAN: ReferenceFrame.PLANAR,
    DistanceMetric.GEODESIC: ReferenceFrame.GEOGRAPHIC,
}


def parse_frame(value: str | ReferenceFrame) -> ReferenceFrame:
    try:
        return ReferenceFrame(value)
    except ValueError:
        allowed = ", ".join(f.value for f in ReferenceFrame)
        raise InvalidReferenceFrame(f"Unknown reference frame {value!r} (allowed: {allowed})") from None


def parse_metric(value: str | DistanceMetric) -> DistanceMetric:
    try:
        return DistanceMetric(value)
    except ValueError:
        allowed = ", ".join(m.value for m in DistanceMetric)
        raise InvalidParameter(f"Unknown distance metric {value!r} (allowed: {allowed})") from None


def frame_for_metric(metric: DistanceMetric) -> ReferenceFrame:
    return _METRIC_FRAME[metric]


def check_coordinates(xy: np.ndarray, frame: ReferenceFrame, *, label: str) -> np.ndarray:
    """
    Validate an (n, 2) coordinate array for the given frame and return it as float64.
    """
    arr = np.asarray(xy, dtype=float)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise InvalidParameter(f"{label}: coordinates must be an (n, 2) array, got shape {arr.shape}")
    if arr.shape[0] == 0:
        raise InvalidParameter(f"{label}: at least one point is required")
    if not np.all(np.isfinite(arr)):
        raise InvalidParameter(f"{label}: coordinates contain NaN or infinite values")
    if frame is ReferenceFrame.GEOGRAPHIC:
        lon = arr[:, 0]
        lat = arr[:, 1]
        # Projected meters fed in as "geographic" land here almost immediately.
        if (lat < -90).any() or (lat > 90).any() or (lon < -180).any() or (lon > 180).any():
            raise InvalidReferenceFrame(f"{label}: geographic coordinates outside lon/lat bounds")
    return arr


def haversine_matrix_m(a_lonlat: np.ndarray, b_lonlat: np.ndarray) -> np.ndarray:
    """
    Great-circle distances in meters between every row of `a_lonlat` and every row of `b_lonlat`.
    """
    lon_a = np.deg2rad(a_lonlat[:, 0])[:, None]
    lat_a = np.deg2rad(a_lonlat[:, 1])[:, None]
    lon_b = np.deg2rad(b_lonlat[:, 0])[None, :]
    lat_b = np.deg2rad(b_lonlat[:, 1])[None, :]

    dlat = lat_b - lat_a
    dlon = lon_b - lon_a
    h = np.sin(dlat / 2.0) ** 2 + np.cos(lat_a) * np.cos(lat_b) * np.sin(dlon / 2.0) ** 2
    # Rounding can push h a hair above 1 for antipodal points.
    h = np.clip(h, 0.0, 1.0)
    return 2.0 * EARTH_RADIUS_M * np.arcsin(np.sqrt(h))
