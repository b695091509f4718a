from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np
import pandas as pd

SCHEMA_VERSION = "potentials-v1"


@dataclass(frozen=True)
class SchemaReport:
    ok: bool
    errors: list[str]
    warnings: list[str]
    stats: dict[str, Any]


def _require_cols(df: pd.DataFrame, required: list[str], *, label: str) -> list[str]:
    return [f"{label}: missing required column '{c}'" for c in required if c not in df.columns]


def validate_potentials_table(df: pd.DataFrame, *, value_cols: Sequence[str]) -> SchemaReport:
    errors: list[str] = []
    warnings: list[str] = []
    errors.extend(_require_cols(df, ["id", "x", "y", *value_cols], label="potentials"))
    if errors:
        return SchemaReport(ok=False, errors=errors, warnings=warnings, stats={})

    stats: dict[str, Any] = {"rows": int(len(df))}
    for col in value_cols:
        values = pd.to_numeric(df[col], errors="coerce")
        n_nan = int(values.isna().sum())
        if n_nan:
            # Ratios are NaN where the denominator potential is zero; anything else is a bug.
            warnings.append(f"potentials: {n_nan} NaN values in '{col}'")
        if (values < 0).any():
            errors.append(f"potentials: negative values in '{col}'")
        stats[col] = {
            "min": float(values.min()) if values.notna().any() else None,
            "max": float(values.max()) if values.notna().any() else None,
        }
    if df["id"].duplicated().any():
        errors.append("potentials: duplicated ids")
    return SchemaReport(ok=len(errors) == 0, errors=errors, warnings=warnings, stats=stats)


def validate_isopleths_geojson(fc: dict[str, Any], *, breaks: Sequence[float]) -> SchemaReport:
    errors: list[str] = []
    warnings: list[str] = []
    if fc.get("type") != "FeatureCollection":
        return SchemaReport(ok=False, errors=["isopleths: not a FeatureCollection"], warnings=[], stats={})

    features = fc.get("features", []) or []
    lowers: list[float] = []
    for f in features:
        props = f.get("properties", {}) or {}
        geom_type = (f.get("geometry") or {}).get("type")
        if geom_type not in {"Polygon", "MultiPolygon"}:
            errors.append(f"isopleths: unexpected geometry type {geom_type!r}")
        try:
            lower = float(props["lower"])
            upper = float(props["upper"])
        except (KeyError, TypeError, ValueError):
            errors.append("isopleths: feature without numeric lower/upper")
            continue
        if upper < lower:
            errors.append(f"isopleths: band with upper < lower ({lower} > {upper})")
        lowers.append(lower)

    if lowers and np.any(np.diff(lowers) <= 0):
        errors.append("isopleths: bands are not in increasing order")
    known = set(float(b) for b in breaks)
    if any(lo not in known for lo in lowers):
        warnings.append("isopleths: some band bounds are not in the returned breaks")

    stats = {"features": len(features), "breaks": [float(b) for b in breaks]}
    return SchemaReport(ok=len(errors) == 0, errors=errors, warnings=warnings, stats=stats)
