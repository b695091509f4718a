"""
Class breaks for potential surfaces.

Breaks are always returned as a strictly increasing list of floats. When the
data would produce equal boundaries (many tied values, or a constant layer),
the later boundary is moved by the smallest representable step
(`numpy.nextafter`) instead of being dropped, so callers always get exactly the
number of classes they asked for.

Class membership follows the lower-band rule used by the contouring step: a
value equal to a boundary belongs to the class *below* that boundary, and the
first class is closed on both ends.
"""

from __future__ import annotations

import math
from typing import Iterable, Sequence

import numpy as np

from spatialpotential.errors import InvalidParameter


def _finite_values(values: Iterable[float]) -> np.ndarray:
    arr = np.asarray(list(values) if not isinstance(values, np.ndarray) else values, dtype=float).ravel()
    arr = arr[np.isfinite(arr)]
    if arr.size == 0:
        raise InvalidParameter("At least one finite value is required to compute breaks")
    return arr


def _check_k(k: int) -> int:
    if int(k) != k or k < 1:
        raise InvalidParameter(f"Number of classes must be an integer >= 1, got {k!r}")
    return int(k)


def _make_strict(b: np.ndarray) -> np.ndarray:
    b = b.astype(float).copy()
    lo, hi = b[0], b[-1]
    if lo == hi:
        # Constant layer: climb one ulp at a time from the single value.
        for i in range(1, b.size):
            b[i] = np.nextafter(b[i - 1], np.inf)
        return b
    # Forward pass pushes ties up, backward pass pulls them back under the max.
    for i in range(1, b.size - 1):
        if b[i] <= b[i - 1]:
            b[i] = np.nextafter(b[i - 1], np.inf)
    for i in range(b.size - 2, 0, -1):
        if b[i] >= b[i + 1]:
            b[i] = np.nextafter(b[i + 1], -np.inf)
    if not np.all(np.diff(b) > 0):
        raise InvalidParameter("Too many classes for the resolution of the data range")
    return b


def quantile_breaks(values: Iterable[float], k: int) -> list[float]:
    """
    `k + 1` quantile boundaries from min to max.

    Fractional ranks are linearly interpolated between order statistics
    (the usual "type 7" definition).
    """
    k = _check_k(k)
    arr = _finite_values(values)
    probs = np.linspace(0.0, 1.0, k + 1)
    b = np.quantile(arr, probs, method="linear")
    # Pin the ends exactly; interpolation can be off by an ulp.
    b[0] = arr.min()
    b[-1] = arr.max()
    return [float(x) for x in _make_strict(b)]


def equal_breaks(values: Iterable[float], k: int) -> list[float]:
    k = _check_k(k)
    arr = _finite_values(values)
    vmin = float(arr.min())
    vmax = float(arr.max())
    b = np.linspace(vmin, vmax, k + 1)
    b[0] = vmin
    b[-1] = vmax
    return [float(x) for x in _make_strict(b)]


def validate_breaks(breaks: Sequence[float]) -> list[float]:
    out = [float(b) for b in breaks]
    if len(out) < 2:
        raise InvalidParameter("At least two break values are required")
    if not all(math.isfinite(b) for b in out):
        raise InvalidParameter("Break values must be finite")
    if any(b1 <= b0 for b0, b1 in zip(out, out[1:])):
        raise InvalidParameter(f"Breaks must be strictly increasing: {out}")
    return out


def derive_comparable_breaks(base_breaks: Sequence[float], new_values: Iterable[float]) -> list[float]:
    """
    Reuse the interior boundaries of a reference classification for another layer.

    Only the first and last boundaries are replaced by the min/max of `new_values`,
    so both layers share the same thresholds and the same number of classes. An end
    that would fall inside the interior range is moved one step beyond the nearest
    interior boundary so the result stays strictly increasing.
    """
    base = validate_breaks(base_breaks)
    arr = _finite_values(new_values)
    lower = float(arr.min())
    upper = float(arr.max())
    interior = base[1:-1]
    if interior:
        if lower >= interior[0]:
            lower = float(np.nextafter(interior[0], -np.inf))
        if upper <= interior[-1]:
            upper = float(np.nextafter(interior[-1], np.inf))
    elif upper <= lower:
        upper = float(np.nextafter(lower, np.inf))
    return [lower, *interior, upper]


def classify(values: Iterable[float], breaks: Sequence[float]) -> np.ndarray:
    """
    Class index (0-based) per value; -1 for NaN or values outside the breaks.
    """
    b = np.asarray(validate_breaks(breaks), dtype=float)
    arr = np.asarray(list(values) if not isinstance(values, np.ndarray) else values, dtype=float)
    # side="left" puts a value equal to a boundary in the class below it.
    idx = np.searchsorted(b, arr, side="left") - 1
    idx = np.where(arr == b[0], 0, idx)
    out_of_range = ~np.isfinite(arr) | (arr < b[0]) | (arr > b[-1])
    return np.where(out_of_range, -1, idx).astype(int)
