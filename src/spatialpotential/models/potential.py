"""
Stewart potentials: distance-weighted sums of stocks.

    potential(target) = sum over known points p of stock(p) * weight(distance(p, target))

Several stock variables are evaluated in one matrix product against the same
weight matrix, so distances and weights are computed once per request no matter
how many variables are requested.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Iterable

import numpy as np
import pandas as pd

from spatialpotential.errors import InvalidParameter
from spatialpotential.log import get_logger
from spatialpotential.models.decay import DecayParams
from spatialpotential.spatial.distance import DistanceMatrix
from spatialpotential.spatial.points import EvaluationTargets, KnownPoints


@dataclass(frozen=True)
class PotentialSurface:
    targets: EvaluationTargets
    variables: tuple[str, ...]
    values: np.ndarray
    decay: DecayParams

    def column(self, variable: str) -> np.ndarray:
        try:
            j = self.variables.index(variable)
        except ValueError:
            raise InvalidParameter(f"Variable not computed: {variable}") from None
        return self.values[:, j]

    def to_frame(self) -> pd.DataFrame:
        df = self.targets.to_frame()
        for j, var in enumerate(self.variables):
            df[var] = self.values[:, j]
        return df


@dataclass
class WeightCache:
    """
    Per-request memo of weight matrices keyed by decay parameters.

    Lives only as long as the request that created it; nothing is shared between requests.
    """

    distances: DistanceMatrix
    _weights: dict[DecayParams, np.ndarray] = field(default_factory=dict)

    def weights(self, decay: DecayParams) -> np.ndarray:
        w = self._weights.get(decay)
        if w is None:
            w = decay.weights(self.distances.values)
            w.setflags(write=False)
            self._weights[decay] = w
        return w


def check_alignment(known: KnownPoints, distances: DistanceMatrix, targets: EvaluationTargets | None) -> None:
    if tuple(known.ids) != tuple(distances.known_ids):
        raise InvalidParameter("Known point ids do not match the distance matrix rows")
    if targets is not None and tuple(targets.ids) != tuple(distances.target_ids):
        raise InvalidParameter("Target ids do not match the distance matrix columns")


def compute_potentials(
    known: KnownPoints,
    targets: EvaluationTargets,
    distances: DistanceMatrix,
    decay: DecayParams,
    *,
    variables: Iterable[str],
    cache: WeightCache | None = None,
) -> PotentialSurface:
    log = get_logger()
    variables = tuple(str(v) for v in variables)
    if not variables:
        raise InvalidParameter("At least one stock variable is required")
    check_alignment(known, distances, targets)
    if cache is not None and cache.distances is not distances:
        raise InvalidParameter("Weight cache was built for a different distance matrix")

    started = time.perf_counter()
    stocks = known.stock_matrix(list(variables))
    w = (cache or WeightCache(distances)).weights(decay)
    # (n_known, n_targets).T @ (n_known, n_vars) -> (n_targets, n_vars)
    values = w.T @ stocks
    # Non-negative by construction; clamp so no -0.0 reaches the output tables.
    values = np.maximum(values, 0.0)
    values.setflags(write=False)

    log.info(
        "Potentials for %s on %d targets (%s span=%g beta=%g) in %.3fs",
        ",".join(variables),
        len(targets),
        decay.family.value,
        decay.span,
        decay.beta,
        time.perf_counter() - started,
    )
    return PotentialSurface(targets=targets, variables=variables, values=values, decay=decay)


def potential_ratio(numerator: np.ndarray, denominator: np.ndarray, *, scale: float = 1.0) -> np.ndarray:
    """
    Ratio of two potentials (e.g. potential GDP per potential inhabitant).

    Targets with a zero denominator get NaN: there is no meaningful ratio where
    nothing is reachable.
    """
    num = np.asarray(numerator, dtype=float)
    den = np.asarray(denominator, dtype=float)
    if num.shape != den.shape:
        raise InvalidParameter("Numerator and denominator potentials differ in shape")
    out = np.full(num.shape, np.nan, dtype=float)
    ok = den > 0
    out[ok] = num[ok] * float(scale) / den[ok]
    return out
