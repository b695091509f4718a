"""
Input loading and normalization.

Known points and explicit targets are plain CSV tables so they can be produced
by any GIS export; masks are GeoJSON. This module only reads and normalizes:
- canonical column names (`id`, `x`, `y`),
- trimmed string ids,
- a single valid (Multi)Polygon for the mask.

Range and consistency rules live in `spatialpotential.inputs.validators`, so
"load" and "validate" stay decoupled.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pandas as pd
import shapely
from shapely.geometry import shape
from shapely.geometry.base import BaseGeometry

from spatialpotential.errors import InvalidParameter

# Alternate coordinate column names found in common exports.
_X_ALIASES = ("x", "X", "COORDX", "coord_x", "easting", "lon", "lng", "longitude")
_Y_ALIASES = ("y", "Y", "COORDY", "coord_y", "northing", "lat", "latitude")


def _rename_coordinate_columns(df: pd.DataFrame) -> pd.DataFrame:
    rename: dict[str, str] = {}
    if "x" not in df.columns:
        for alias in _X_ALIASES:
            if alias in df.columns:
                rename[alias] = "x"
                break
    if "y" not in df.columns:
        for alias in _Y_ALIASES:
            if alias in df.columns:
                rename[alias] = "y"
                break
    return df.rename(columns=rename) if rename else df


def normalize_points_frame(df: pd.DataFrame, *, id_col: str = "id") -> pd.DataFrame:
    df = _rename_coordinate_columns(df.copy())
    if id_col != "id":
        if "id" in df.columns:
            raise InvalidParameter(f"Both 'id' and '{id_col}' columns present; cannot pick an id column")
        df = df.rename(columns={id_col: "id"})
    if "id" not in df.columns:
        # Row position is stable for a given file, so it makes an acceptable id.
        df.insert(0, "id", [str(i) for i in range(len(df))])
    df["id"] = df["id"].astype("string").str.strip().astype(str)
    return df


def load_points_csv(path: Path, *, id_col: str = "id") -> pd.DataFrame:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(path)
    # Keep ids as strings (leading zeros in unit codes are significant).
    df = pd.read_csv(path, dtype={id_col: str})
    return normalize_points_frame(df, id_col=id_col)


def _geometries(data: dict[str, Any]) -> list[BaseGeometry]:
    kind = data.get("type")
    if kind == "FeatureCollection":
        return [shape(f["geometry"]) for f in data.get("features", []) if f.get("geometry")]
    if kind == "Feature":
        return [shape(data["geometry"])] if data.get("geometry") else []
    return [shape(data)]


def mask_from_geojson(data: dict[str, Any]) -> BaseGeometry:
    geoms = [g for g in _geometries(data) if not g.is_empty]
    if not geoms:
        raise InvalidParameter("Mask GeoJSON contains no geometry")
    mask = shapely.union_all([shapely.make_valid(g) for g in geoms])
    # Dissolving lines/points into the mask would not change its area; keep areal parts only.
    mask = shapely.union_all([g for g in shapely.get_parts(mask) if g.area > 0])
    if mask.is_empty or mask.area <= 0:
        raise InvalidParameter("Mask must contain at least one polygon with positive area")
    return mask


def load_mask_geojson(path: Path) -> BaseGeometry:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(path)
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise InvalidParameter(f"GeoJSON must be an object: {path}")
    return mask_from_geojson(data)
