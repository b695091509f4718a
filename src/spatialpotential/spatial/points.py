"""
Known source points and evaluation targets (the places where potentials are computed).

Two kinds exist and are handled identically downstream:
- `PointTarget`: an explicit location (discrete mode, e.g. the centroid of a unit).
- `GridCellTarget`: the center of a regular grid cell (raster mode).

`EvaluationTargets` is the ordered, immutable container the distance builder and
the accumulator work with. Order matters: it fixes the column order of the
distance matrix and the row order of every output table.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

import numpy as np
import pandas as pd

from spatialpotential.errors import InvalidParameter
from spatialpotential.spatial.frames import ReferenceFrame, check_coordinates


@dataclass(frozen=True)
class PointTarget:
    id: str
    x: float
    y: float


@dataclass(frozen=True)
class GridCellTarget:
    id: str
    x: float
    y: float
    row: int
    col: int
    size: float


Target = Union[PointTarget, GridCellTarget]


@dataclass(frozen=True)
class EvaluationTargets:
    targets: tuple[Target, ...]
    frame: ReferenceFrame = ReferenceFrame.PLANAR
    # Cached (n, 2) coordinate array; derived from `targets` in __post_init__.
    xy: np.ndarray = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.targets:
            raise InvalidParameter("At least one evaluation target is required")
        ids = [t.id for t in self.targets]
        if len(set(ids)) != len(ids):
            raise InvalidParameter("Evaluation target ids must be unique")
        xy = np.array([[t.x, t.y] for t in self.targets], dtype=float)
        xy = check_coordinates(xy, self.frame, label="targets")
        xy.setflags(write=False)
        object.__setattr__(self, "xy", xy)

    def __len__(self) -> int:
        return len(self.targets)

    @property
    def ids(self) -> list[str]:
        return [t.id for t in self.targets]

    @property
    def is_grid(self) -> bool:
        return all(isinstance(t, GridCellTarget) for t in self.targets)

    def to_frame(self) -> pd.DataFrame:
        df = pd.DataFrame({"id": self.ids, "x": self.xy[:, 0], "y": self.xy[:, 1]})
        if self.is_grid:
            df["row"] = [t.row for t in self.targets]  # type: ignore[union-attr]
            df["col"] = [t.col for t in self.targets]  # type: ignore[union-attr]
        return df


def point_targets_from_frame(
    df: pd.DataFrame,
    *,
    id_col: str = "id",
    x_col: str = "x",
    y_col: str = "y",
    frame: ReferenceFrame = ReferenceFrame.PLANAR,
) -> EvaluationTargets:
    missing = {id_col, x_col, y_col} - set(df.columns)
    if missing:
        raise InvalidParameter(f"Missing target columns: {sorted(missing)}")
    targets = tuple(
        PointTarget(id=str(i), x=float(x), y=float(y))
        for i, x, y in zip(df[id_col].to_numpy(), df[x_col].to_numpy(), df[y_col].to_numpy())
    )
    return EvaluationTargets(targets=targets, frame=frame)


@dataclass(frozen=True)
class KnownPoints:
    """
    Source points with their stock table.

    `stocks` is indexed by point id (same order as `ids`) and holds one column per stock
    variable. Stocks are validated lazily per variable in `stock_matrix()` so a table may
    carry unrelated columns.
    """

    ids: tuple[str, ...]
    xy: np.ndarray
    stocks: pd.DataFrame
    frame: ReferenceFrame = ReferenceFrame.PLANAR

    def __post_init__(self) -> None:
        if len(set(self.ids)) != len(self.ids):
            raise InvalidParameter("Known point ids must be unique")
        xy = check_coordinates(self.xy, self.frame, label="known points")
        if xy.shape[0] != len(self.ids):
            raise InvalidParameter("Known point ids and coordinates differ in length")
        if len(self.stocks) != len(self.ids):
            raise InvalidParameter("Known point ids and stock rows differ in length")
        xy = xy.copy()
        xy.setflags(write=False)
        object.__setattr__(self, "xy", xy)

    def __len__(self) -> int:
        return len(self.ids)

    def stock_matrix(self, variables: list[str]) -> np.ndarray:
        missing = [v for v in variables if v not in self.stocks.columns]
        if missing:
            raise InvalidParameter(f"Unknown stock variables: {missing}")
        values = self.stocks[variables].apply(pd.to_numeric, errors="coerce").to_numpy(dtype=float)
        if not np.all(np.isfinite(values)):
            raise InvalidParameter(f"Stock values must be finite numbers: {variables}")
        if (values < 0).any():
            raise InvalidParameter(f"Stock values must be >= 0: {variables}")
        return values

    def as_targets(self) -> EvaluationTargets:
        # Discrete mode where every known point is also evaluated.
        targets = tuple(
            PointTarget(id=i, x=float(x), y=float(y)) for i, (x, y) in zip(self.ids, self.xy)
        )
        return EvaluationTargets(targets=targets, frame=self.frame)


def known_points_from_frame(
    df: pd.DataFrame,
    *,
    id_col: str = "id",
    x_col: str = "x",
    y_col: str = "y",
    frame: ReferenceFrame = ReferenceFrame.PLANAR,
) -> KnownPoints:
    missing = {id_col, x_col, y_col} - set(df.columns)
    if missing:
        raise InvalidParameter(f"Missing known point columns: {sorted(missing)}")
    if df.empty:
        raise InvalidParameter("At least one known point is required")
    ids = tuple(df[id_col].astype(str).tolist())
    xy = df[[x_col, y_col]].apply(pd.to_numeric, errors="coerce").to_numpy(dtype=float)
    stocks = df.drop(columns=[id_col, x_col, y_col]).reset_index(drop=True)
    stocks.index = pd.Index(ids, name="id")
    return KnownPoints(ids=ids, xy=xy, stocks=stocks, frame=frame)
