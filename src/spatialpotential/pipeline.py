from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Literal

import numpy as np
import pandas as pd
import shapely
from shapely.geometry.base import BaseGeometry

from spatialpotential.classify.breaks import derive_comparable_breaks, equal_breaks, quantile_breaks, validate_breaks
from spatialpotential.data.schemas import PotentialRequest
from spatialpotential.errors import InvalidParameter
from spatialpotential.inputs.load import normalize_points_frame
from spatialpotential.inputs.validators import validate_points_table
from spatialpotential.isopleth.extract import IsoplethPolygon, extract_isopleths
from spatialpotential.log import get_logger
from spatialpotential.models.decay import DecayParams
from spatialpotential.models.interaction import compute_huff, compute_reilly
from spatialpotential.models.potential import PotentialSurface, WeightCache, compute_potentials, potential_ratio
from spatialpotential.spatial.distance import build_distance_matrix
from spatialpotential.spatial.frames import ReferenceFrame, parse_frame
from spatialpotential.spatial.grid import Grid, generate_grid
from spatialpotential.spatial.points import EvaluationTargets, KnownPoints, known_points_from_frame, point_targets_from_frame
from spatialpotential.spatial.raster import RasterSurface


@dataclass(frozen=True)
class DiscreteResult:
    table: pd.DataFrame
    breaks: list[float]
    decay: DecayParams


@dataclass(frozen=True)
class RasterResult:
    grid: Grid
    table: pd.DataFrame
    raster: RasterSurface
    isopleths: list[IsoplethPolygon]
    breaks: list[float]
    decay: DecayParams


def _checked_frame(df: pd.DataFrame, *, frame: ReferenceFrame, variables: list[str], label: str) -> pd.DataFrame:
    log = get_logger()
    df = normalize_points_frame(df)
    report = validate_points_table(df, frame=frame, variables=variables, label=label)
    for w in report.warnings:
        log.warning(w)
    if not report.ok:
        raise InvalidParameter("; ".join(report.errors))
    log.debug("%s stats: %s", label, report.stats)
    return df


def _known_points(df: pd.DataFrame, request: PotentialRequest, frame: ReferenceFrame) -> KnownPoints:
    df = _checked_frame(df, frame=frame, variables=request.variables, label="known points")
    return known_points_from_frame(df[["id", "x", "y", *request.variables]], frame=frame)


def decay_from_request(request: PotentialRequest) -> DecayParams:
    return DecayParams(family=request.family, span=request.span, beta=request.beta)


def _surface_table(surface: PotentialSurface, request: PotentialRequest) -> pd.DataFrame:
    table = surface.to_frame()
    if request.ratio is not None:
        table[request.ratio.name] = potential_ratio(
            surface.column(request.ratio.numerator),
            surface.column(request.ratio.denominator),
            scale=request.ratio.scale,
        )
    return table


def _breaks_for(values: np.ndarray, request: PotentialRequest) -> list[float]:
    finite = values[np.isfinite(values)]
    if finite.size == 0:
        raise InvalidParameter("No finite value to classify")
    if request.breaks is not None:
        if request.comparable:
            return derive_comparable_breaks(request.breaks, finite)
        return validate_breaks(request.breaks)
    if request.breaks_method == "equal":
        return equal_breaks(finite, request.nclass)
    return quantile_breaks(finite, request.nclass)


def _values_in_mask(table: pd.DataFrame, values: np.ndarray, raster: RasterSurface, mask: BaseGeometry) -> np.ndarray:
    # Buffer cells only support the contouring; classes describe the surface inside the mask.
    inside = shapely.intersects_xy(mask, table["x"].to_numpy(dtype=float), table["y"].to_numpy(dtype=float))
    sample = values[inside]
    value_range = raster.value_range(mask)
    if value_range is not None:
        sample = np.concatenate([sample, np.asarray(value_range, dtype=float)])
    return sample


def _inside_mask(targets: EvaluationTargets, mask: BaseGeometry) -> EvaluationTargets:
    keep = shapely.intersects_xy(mask, targets.xy[:, 0], targets.xy[:, 1])
    kept = tuple(t for t, k in zip(targets.targets, keep.tolist()) if k)
    if not kept:
        raise InvalidParameter("No evaluation target falls inside the mask")
    return EvaluationTargets(targets=kept, frame=targets.frame)


def run_discrete(
    known_df: pd.DataFrame,
    request: PotentialRequest,
    *,
    targets_df: pd.DataFrame | None = None,
    mask: BaseGeometry | None = None,
) -> DiscreteResult:
    """
    Potentials on explicit targets (or on the known points themselves) plus class breaks.
    """
    log = get_logger()
    started = time.perf_counter()
    frame = parse_frame(request.frame)
    decay = decay_from_request(request)
    known = _known_points(known_df, request, frame)

    if targets_df is None:
        targets = known.as_targets()
    else:
        tdf = _checked_frame(targets_df, frame=frame, variables=[], label="targets")
        targets = point_targets_from_frame(tdf, frame=frame)
    if mask is not None:
        targets = _inside_mask(targets, mask)

    distances = build_distance_matrix(
        known,
        targets,
        metric=request.metric,
        workers=request.workers,
        chunk_size=request.chunk_size,
        max_pairs=request.max_pairs,
    )
    surface = compute_potentials(
        known, targets, distances, decay, variables=request.variables, cache=WeightCache(distances)
    )
    table = _surface_table(surface, request)
    breaks = _breaks_for(table[request.classified_variable].to_numpy(dtype=float), request)

    log.info(
        "Discrete request done: %d known, %d targets, %d breaks in %.3fs",
        len(known),
        len(targets),
        len(breaks),
        time.perf_counter() - started,
    )
    return DiscreteResult(table=table, breaks=breaks, decay=decay)


def run_raster(known_df: pd.DataFrame, mask: BaseGeometry, request: PotentialRequest) -> RasterResult:
    """
    Potentials on a regular grid over the mask, then isopleth bands clipped to the mask.
    """
    log = get_logger()
    started = time.perf_counter()
    if request.resolution is None:
        raise InvalidParameter("raster mode requires a resolution")
    frame = parse_frame(request.frame)
    decay = decay_from_request(request)
    known = _known_points(known_df, request, frame)

    # Default buffer keeps every lattice square touching the mask fully evaluated.
    buffer = request.buffer if request.buffer is not None else request.resolution * math.sqrt(2.0)
    grid = generate_grid(mask, request.resolution, buffer=buffer, max_cells=request.max_cells, frame=frame)
    if grid.n_rows < 2 or grid.n_cols < 2:
        raise InvalidParameter(
            f"Grid of {grid.n_rows}x{grid.n_cols} cells cannot be contoured: the mask is narrower than two "
            f"cells at resolution {request.resolution:g}; use a finer resolution or a larger buffer"
        )

    distances = build_distance_matrix(
        known,
        grid.cells,
        metric=request.metric,
        workers=request.workers,
        chunk_size=request.chunk_size,
        max_pairs=request.max_pairs,
    )
    surface = compute_potentials(
        known, grid.cells, distances, decay, variables=request.variables, cache=WeightCache(distances)
    )
    table = _surface_table(surface, request)
    values = table[request.classified_variable].to_numpy(dtype=float)
    raster = grid.to_raster(values)

    breaks = _breaks_for(_values_in_mask(table, values, raster, mask), request)
    result = extract_isopleths(raster, breaks, mask)

    log.info(
        "Raster request done: %d cells, %d isopleth bands in %.3fs",
        len(grid.cells),
        len(result.polygons),
        time.perf_counter() - started,
    )
    return RasterResult(
        grid=grid,
        table=table,
        raster=raster,
        isopleths=result.polygons,
        breaks=result.breaks,
        decay=decay,
    )


def run_interaction(
    known_df: pd.DataFrame,
    request: PotentialRequest,
    *,
    model: Literal["huff", "reilly"],
    targets_df: pd.DataFrame | None = None,
) -> pd.DataFrame:
    """
    Huff probabilities or Reilly catchments for the first requested stock variable.
    """
    frame = parse_frame(request.frame)
    decay = decay_from_request(request)
    known = _known_points(known_df, request, frame)
    if targets_df is None:
        targets = known.as_targets()
    else:
        tdf = _checked_frame(targets_df, frame=frame, variables=[], label="targets")
        targets = point_targets_from_frame(tdf, frame=frame)
    distances = build_distance_matrix(
        known,
        targets,
        metric=request.metric,
        workers=request.workers,
        chunk_size=request.chunk_size,
        max_pairs=request.max_pairs,
    )
    variable = request.variables[0]
    if model == "huff":
        return compute_huff(known, targets, distances, decay, variable=variable)
    if model == "reilly":
        return compute_reilly(known, targets, distances, decay, variable=variable)
    raise InvalidParameter(f"Unknown interaction model: {model}")
