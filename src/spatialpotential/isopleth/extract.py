from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np
import pandas as pd
import shapely
from shapely.geometry import MultiPolygon, mapping
from shapely.geometry.base import BaseGeometry

from spatialpotential.classify.breaks import validate_breaks
from spatialpotential.data.schemas import IsoplethProperties
from spatialpotential.errors import InvalidParameter
from spatialpotential.isopleth.bands import band_geometries, polygonal_part
from spatialpotential.log import get_logger
from spatialpotential.spatial.raster import RasterSurface


@dataclass(frozen=True)
class IsoplethPolygon:
    lower: float
    upper: float
    center: float
    geometry: MultiPolygon


@dataclass(frozen=True)
class IsoplethResult:
    polygons: list[IsoplethPolygon]
    # Breaks actually used (clamped to the surface range), for a matching legend.
    breaks: list[float]


def clamp_breaks(breaks: Sequence[float], vmin: float, vmax: float) -> list[float]:
    """
    Restrict breaks to the surface range: interior breaks strictly inside (vmin, vmax)
    are kept, the outer bounds become vmin and vmax.
    """
    if vmax <= vmin:
        # Constant surface: a single band.
        return [vmin, float(np.nextafter(vmin, np.inf))]
    return [vmin, *[float(b) for b in breaks if vmin < b < vmax], vmax]


def extract_isopleths(
    surface: RasterSurface,
    breaks: Sequence[float],
    mask: BaseGeometry,
) -> IsoplethResult:
    """
    Classified contour polygons of `surface`, one per non-empty class interval, clipped
    to `mask`.

    Values equal to a break belong to the lower class. The first and last classes end
    at the surface minimum and maximum inside the mask, so cells evaluated outside it
    (a buffer ring) never stretch the legend. If the mask does not overlap the raster
    extent an empty result is returned rather than an error.
    """
    log = get_logger()
    requested = validate_breaks(breaks)
    if mask is None or mask.is_empty:
        raise InvalidParameter("mask must be a non-empty polygon")

    extent = shapely.box(*surface.extent)
    if mask.intersection(extent).area <= 0:
        log.info("Isopleths: mask does not overlap any evaluated cell, nothing to extract")
        return IsoplethResult(polygons=[], breaks=[])
    value_range = surface.value_range(mask)
    if value_range is None:
        log.info("Isopleths: mask does not overlap any evaluated cell, nothing to extract")
        return IsoplethResult(polygons=[], breaks=[])

    started = time.perf_counter()
    vmin, vmax = value_range
    used = clamp_breaks(requested, vmin, vmax)
    bands = band_geometries(surface, used)

    polygons: list[IsoplethPolygon] = []
    for i, geom in enumerate(bands):
        if geom.is_empty:
            continue
        clipped = polygonal_part(geom.intersection(mask))
        if clipped.is_empty or clipped.area <= 0:
            continue
        lower = used[i]
        upper = used[i + 1]
        polygons.append(
            IsoplethPolygon(
                lower=lower,
                upper=upper,
                center=lower + (upper - lower) / 2.0,
                geometry=clipped,
            )
        )

    log.info(
        "Isopleths: %d bands from %d breaks on %dx%d raster in %.3fs",
        len(polygons),
        len(used),
        surface.ys.size,
        surface.xs.size,
        time.perf_counter() - started,
    )
    return IsoplethResult(polygons=polygons, breaks=used)


def isopleths_frame(polygons: Sequence[IsoplethPolygon]) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "lower": [p.lower for p in polygons],
            "upper": [p.upper for p in polygons],
            "center": [p.center for p in polygons],
            "area": [float(p.geometry.area) for p in polygons],
            "geometry": [p.geometry.wkt for p in polygons],
        }
    )


def isopleths_geojson(polygons: Sequence[IsoplethPolygon]) -> dict[str, Any]:
    features: list[dict[str, Any]] = []
    for i, p in enumerate(polygons):
        props = IsoplethProperties(band=i, lower=p.lower, upper=p.upper, center=p.center)
        features.append(
            {
                "type": "Feature",
                "geometry": mapping(p.geometry),
                "properties": props.model_dump(),
            }
        )
    return {"type": "FeatureCollection", "features": features}
