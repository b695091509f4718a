from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd

from spatialpotential.errors import InvalidParameter
from spatialpotential.models.decay import DecayParams
from spatialpotential.models.potential import WeightCache, check_alignment
from spatialpotential.spatial.distance import DistanceMatrix
from spatialpotential.spatial.points import EvaluationTargets, KnownPoints


@dataclass(frozen=True)
class InteractionResult:
    """
    Per-target outcome of a gravity-type interaction model.

    `best_id` is the known point exerting the largest weighted stock on the target
    (Reilly catchment), `best_share` its share of the total (Huff probability of the
    most likely source) and `total` the Stewart potential itself.
    """

    target_ids: tuple[str, ...]
    best_id: tuple[str | None, ...]
    best_share: np.ndarray
    total: np.ndarray

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "id": list(self.target_ids),
                "best_id": list(self.best_id),
                "best_share": self.best_share,
                "total": self.total,
            }
        )


def _weighted_stocks(
    known: KnownPoints,
    targets: EvaluationTargets,
    distances: DistanceMatrix,
    decay: DecayParams,
    variable: str,
    cache: WeightCache | None,
) -> np.ndarray:
    check_alignment(known, distances, targets)
    if cache is not None and cache.distances is not distances:
        raise InvalidParameter("Weight cache was built for a different distance matrix")
    stock = known.stock_matrix([variable])[:, 0]
    w = (cache or WeightCache(distances)).weights(decay)
    # (n_known, n_targets): attraction of every source on every target.
    return w * stock[:, None]


def compute_interaction(
    known: KnownPoints,
    targets: EvaluationTargets,
    distances: DistanceMatrix,
    decay: DecayParams,
    *,
    variable: str,
    cache: WeightCache | None = None,
) -> InteractionResult:
    attraction = _weighted_stocks(known, targets, distances, decay, variable, cache)
    total = attraction.sum(axis=0)
    # argmax keeps the first maximum, i.e. the earliest known point on ties.
    best = np.argmax(attraction, axis=0)
    best_value = attraction[best, np.arange(attraction.shape[1])]

    share = np.zeros_like(total)
    reachable = total > 0
    share[reachable] = best_value[reachable] / total[reachable]

    ids = tuple(
        str(known.ids[j]) if reachable[i] else None for i, j in enumerate(best.tolist())
    )
    return InteractionResult(
        target_ids=tuple(targets.ids),
        best_id=ids,
        best_share=share,
        total=total,
    )


def compute_reilly(
    known: KnownPoints,
    targets: EvaluationTargets,
    distances: DistanceMatrix,
    decay: DecayParams,
    *,
    variable: str,
    cache: WeightCache | None = None,
) -> pd.DataFrame:
    """
    Catchment areas: each target is assigned to the source with the strongest pull.
    """
    res = compute_interaction(known, targets, distances, decay, variable=variable, cache=cache)
    return pd.DataFrame({"id": list(res.target_ids), "catchment": list(res.best_id)})


def compute_huff(
    known: KnownPoints,
    targets: EvaluationTargets,
    distances: DistanceMatrix,
    decay: DecayParams,
    *,
    variable: str,
    cache: WeightCache | None = None,
) -> pd.DataFrame:
    """
    Huff probabilities of the most likely source for each target (0 where nothing reaches it).
    """
    res = compute_interaction(known, targets, distances, decay, variable=variable, cache=cache)
    return pd.DataFrame(
        {"id": list(res.target_ids), "best_id": list(res.best_id), "probability": res.best_share}
    )
