"""
Distance matrix between known points (rows) and evaluation targets (columns).

This is the dominant cost of a request (O(known x targets)), notably in raster
mode at fine resolution. We therefore:
1) refuse matrices above a configurable pair count before allocating anything,
2) compute the matrix in column chunks (targets), which bounds temporary memory,
3) optionally run chunks on a thread pool; numpy/scipy release the GIL inside
   the distance kernels, and chunks are written back by position so the result
   is byte-identical whatever the worker count.

The matrix is computed once per request and shared by every stock variable and
decay family evaluated on it.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import numpy as np
import pandas as pd
from scipy.spatial.distance import cdist

from spatialpotential.errors import InvalidDistance, InvalidParameter, InvalidReferenceFrame, ResourceLimitExceeded
from spatialpotential.log import get_logger
from spatialpotential.spatial.frames import (
    DistanceMetric,
    ReferenceFrame,
    frame_for_metric,
    haversine_matrix_m,
    parse_metric,
)
from spatialpotential.spatial.points import EvaluationTargets, KnownPoints

# Default ceiling on known x target pairs (~800 MB of float64).
DEFAULT_MAX_PAIRS = 100_000_000
DEFAULT_CHUNK_SIZE = 4096


@dataclass(frozen=True)
class DistanceMatrix:
    known_ids: tuple[str, ...]
    target_ids: tuple[str, ...]
    values: np.ndarray
    metric: DistanceMetric = DistanceMetric.EUCLIDEAN

    def __post_init__(self) -> None:
        values = np.asarray(self.values, dtype=float)
        if values.shape != (len(self.known_ids), len(self.target_ids)):
            raise InvalidParameter(
                f"Distance matrix shape {values.shape} does not match "
                f"{len(self.known_ids)} known points x {len(self.target_ids)} targets"
            )
        if not np.all(np.isfinite(values)):
            raise InvalidDistance("Distance matrix contains NaN or infinite values")
        if (values < 0).any():
            raise InvalidDistance("Distance matrix contains negative distances")
        if values.flags.writeable:
            values = values.copy()
            values.setflags(write=False)
        object.__setattr__(self, "values", values)

    @property
    def shape(self) -> tuple[int, int]:
        return self.values.shape  # type: ignore[return-value]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.values, index=list(self.known_ids), columns=list(self.target_ids))


def check_frame(frame: ReferenceFrame, metric: DistanceMetric) -> None:
    if frame_for_metric(metric) != frame:
        raise InvalidReferenceFrame(
            f"Metric '{metric.value}' requires {frame_for_metric(metric).value} coordinates, got {frame.value}"
        )


def _pair_kernel(metric: DistanceMetric, known_xy: np.ndarray, target_xy: np.ndarray) -> np.ndarray:
    if metric is DistanceMetric.GEODESIC:
        return haversine_matrix_m(known_xy, target_xy)
    return cdist(known_xy, target_xy, metric="euclidean")


def build_distance_matrix(
    known: KnownPoints,
    targets: EvaluationTargets,
    *,
    metric: str | DistanceMetric = DistanceMetric.EUCLIDEAN,
    workers: int = 1,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    max_pairs: int = DEFAULT_MAX_PAIRS,
    bypass_limit: bool = False,
) -> DistanceMatrix:
    log = get_logger()
    metric = parse_metric(metric)

    # Both sides must live in the same frame, and that frame must match the metric.
    if known.frame != targets.frame:
        raise InvalidReferenceFrame(
            f"Known points are {known.frame.value} but targets are {targets.frame.value}"
        )
    check_frame(known.frame, metric)
    if workers < 1:
        raise InvalidParameter("workers must be >= 1")
    if chunk_size < 1:
        raise InvalidParameter("chunk_size must be >= 1")

    n_known = len(known)
    n_targets = len(targets)
    n_pairs = n_known * n_targets
    if not bypass_limit and n_pairs > max_pairs:
        raise ResourceLimitExceeded(
            f"Distance matrix would hold {n_pairs} pairs (limit {max_pairs}); "
            "use a coarser resolution or raise the limit"
        )

    started = time.perf_counter()
    out = np.empty((n_known, n_targets), dtype=float)
    bounds = [(start, min(start + chunk_size, n_targets)) for start in range(0, n_targets, chunk_size)]

    def run_chunk(bound: tuple[int, int]) -> None:
        start, stop = bound
        out[:, start:stop] = _pair_kernel(metric, known.xy, targets.xy[start:stop])

    if workers == 1 or len(bounds) == 1:
        for bound in bounds:
            run_chunk(bound)
    else:
        with ThreadPoolExecutor(max_workers=min(workers, len(bounds))) as executor:
            # list() re-raises the first chunk failure, aborting the whole request.
            list(executor.map(run_chunk, bounds))

    out.setflags(write=False)
    log.info(
        "Distance matrix %dx%d (%s) built in %.3fs (chunks=%d workers=%d)",
        n_known,
        n_targets,
        metric.value,
        time.perf_counter() - started,
        len(bounds),
        workers,
    )
    return DistanceMatrix(
        known_ids=tuple(known.ids),
        target_ids=tuple(targets.ids),
        values=out,
        metric=metric,
    )


def distance_matrix_from_frame(
    matrix: pd.DataFrame,
    *,
    metric: str | DistanceMetric = DistanceMetric.EUCLIDEAN,
) -> DistanceMatrix:
    """
    Wrap a caller-supplied distance table (rows = known ids, columns = target ids).

    Useful when distances come from elsewhere (road network, travel times) and should
    not be recomputed from coordinates.
    """
    values = matrix.apply(pd.to_numeric, errors="coerce").to_numpy(dtype=float)
    if np.isnan(values).any():
        raise InvalidDistance("Distance table contains missing or non-numeric values")
    return DistanceMatrix(
        known_ids=tuple(str(i) for i in matrix.index),
        target_ids=tuple(str(c) for c in matrix.columns),
        values=values,
        metric=parse_metric(metric),
    )

