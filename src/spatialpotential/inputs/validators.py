"""
Input table validation rules.

Checks that a known-point (or target) table is usable before any distance is
computed:
- schema checks (required columns exist),
- data quality checks (ids unique and non-empty, coordinates numeric, stocks
  non-negative),
- frame plausibility checks (geographic tables within lon/lat bounds, planar
  tables that look like lon/lat degrees).

Instead of raising immediately, we return a structured result containing:
- `errors`: must-fix issues that block the request,
- `warnings`: suspicious but not always fatal issues,
- `stats`: small summaries that are logged with the request.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

import numpy as np
import pandas as pd

from spatialpotential.spatial.frames import ReferenceFrame


@dataclass(frozen=True)
class TableValidationResult:
    errors: list[str]
    warnings: list[str]
    stats: dict[str, Any]

    @property
    def ok(self) -> bool:
        # Warnings never fail validation.
        return len(self.errors) == 0


def _require_columns(df: pd.DataFrame, required: Iterable[str], *, label: str) -> list[str]:
    return [f"{label}: missing required column '{c}'" for c in required if c not in df.columns]


def _validate_ids(df: pd.DataFrame, *, label: str) -> list[str]:
    errors: list[str] = []
    ids = df["id"].astype("string").str.strip()
    missing = ids.isna() | (ids == "")
    if missing.any():
        errors.append(f"{label}: 'id' contains empty values")
    dup = ids[~missing][ids[~missing].duplicated(keep=False)]
    if not dup.empty:
        # A few examples are enough to locate the rows.
        examples = ", ".join(sorted(set(dup.tolist()))[:5])
        errors.append(f"{label}: 'id' contains duplicates (e.g., {examples})")
    return errors


def _validate_coordinates(df: pd.DataFrame, *, frame: ReferenceFrame, label: str) -> tuple[list[str], list[str]]:
    errors: list[str] = []
    warnings: list[str] = []
    x = pd.to_numeric(df["x"], errors="coerce")
    y = pd.to_numeric(df["y"], errors="coerce")
    if x.isna().any() or y.isna().any():
        errors.append(f"{label}: invalid x/y (non-numeric or missing)")
    if not np.all(np.isfinite(x.dropna())) or not np.all(np.isfinite(y.dropna())):
        errors.append(f"{label}: x/y contain infinite values")

    if frame is ReferenceFrame.GEOGRAPHIC:
        if (y < -90).any() or (y > 90).any() or (x < -180).any() or (x > 180).any():
            errors.append(f"{label}: coordinates outside lon/lat bounds for a geographic frame")
    elif not df.empty and x.abs().max() <= 180 and y.abs().max() <= 90:
        # Projected meters almost never all fit in this box; degrees always do.
        warnings.append(f"{label}: planar coordinates all fall within lon/lat ranges; are they degrees?")
    return errors, warnings


def _validate_stocks(df: pd.DataFrame, variables: Iterable[str], *, label: str) -> tuple[list[str], dict[str, Any]]:
    errors: list[str] = []
    stats: dict[str, Any] = {}
    for var in variables:
        if var not in df.columns:
            continue
        values = pd.to_numeric(df[var], errors="coerce")
        if values.isna().any():
            errors.append(f"{label}: stock '{var}' has {int(values.isna().sum())} missing or non-numeric values")
        if (values < 0).any():
            errors.append(f"{label}: stock '{var}' has negative values")
        stats[var] = {
            "sum": float(values.sum()),
            "zeros": int((values == 0).sum()),
        }
    return errors, stats


def validate_points_table(
    df: pd.DataFrame,
    *,
    frame: ReferenceFrame = ReferenceFrame.PLANAR,
    variables: Iterable[str] = (),
    label: str = "points",
) -> TableValidationResult:
    variables = list(variables)
    errors = _require_columns(df, ["id", "x", "y", *variables], label=label)
    warnings: list[str] = []
    if errors:
        return TableValidationResult(errors=errors, warnings=warnings, stats={})
    if df.empty:
        return TableValidationResult(errors=[f"{label}: table is empty"], warnings=warnings, stats={})

    errors.extend(_validate_ids(df, label=label))
    coord_errors, coord_warnings = _validate_coordinates(df, frame=frame, label=label)
    errors.extend(coord_errors)
    warnings.extend(coord_warnings)
    stock_errors, stock_stats = _validate_stocks(df, variables, label=label)
    errors.extend(stock_errors)

    stats = {"rows": int(len(df)), "stocks": stock_stats}
    return TableValidationResult(errors=errors, warnings=warnings, stats=stats)
