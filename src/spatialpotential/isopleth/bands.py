"""
Filled contour bands over a regular raster.

The raster is walked square by square (marching squares). Each square between
four nodes is split along its south-west/north-east diagonal into two
triangles; inside a triangle the surface is linear, so the part of the triangle
that falls within one class interval is a convex polygon whose vertices are:

- the triangle corners whose value lies in the interval, and
- the points where the interval bounds cross a triangle edge, interpolated
  linearly between the two edge end nodes.

Walking the triangle boundary in order yields these vertices already in
counter-clockwise order. Fixing the diagonal resolves the saddle ambiguity of
plain marching squares once and for all, which is what guarantees that the
bands never overlap.

Tie-break rule: a node whose value equals a break belongs to the lower band.
Triangles that are entirely flat at a break value therefore go to the lower
band, and a band touching a triangle only along a break line contributes a
zero-area piece that is dropped (no slivers).

Assembly into rings:
1) Every edge crossing is identified by (node a, node b, level) with a < b and
   computed from the two nodes in that order, so neighbouring triangles produce
   bit-identical vertices and share the exact same vertex keys.
2) For each band, the directed edges of all pieces go into an ordered edge set;
   an edge cancels against its reverse (interior edge shared by two pieces).
3) The remaining boundary edges are stitched into closed rings through an
   explicit vertex -> outgoing edges adjacency map. Where several boundary
   edges leave the same vertex (two parts of a band touching at one point), the
   walk takes the sharpest left turn, and a ring that still comes back to one
   of its own vertices is cut there into simple rings (a hole touching its
   shell at a single point).
4) Counter-clockwise rings are shells, clockwise rings are holes; each hole is
   attached to the smallest shell covering the whole hole ring. An invalid
   assembled geometry is an error, never repaired.
"""

from __future__ import annotations

import math
from bisect import bisect_left, bisect_right
from dataclasses import dataclass, field
from typing import Hashable, Sequence

import shapely
from shapely.geometry import MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry

from spatialpotential.spatial.raster import RasterSurface

Coord = tuple[float, float]
VertexKey = Hashable


@dataclass
class _BandBoundary:
    # Ordered set of directed boundary edges (dict keeps insertion order).
    edges: dict[tuple[VertexKey, VertexKey], None] = field(default_factory=dict)

    def add_piece(self, keys: list[VertexKey]) -> None:
        n = len(keys)
        for i in range(n):
            u = keys[i]
            v = keys[(i + 1) % n]
            if (v, u) in self.edges:
                del self.edges[(v, u)]
            else:
                self.edges[(u, v)] = None


def signed_area(coords: Sequence[Coord]) -> float:
    """Shoelace area, positive for counter-clockwise rings."""
    s = 0.0
    n = len(coords)
    for i in range(n):
        x0, y0 = coords[i]
        x1, y1 = coords[(i + 1) % n]
        s += x0 * y1 - x1 * y0
    return s / 2.0


class _Vertices:
    """Coordinates of raster nodes and memoised edge crossings."""

    def __init__(self, surface: RasterSurface, levels: Sequence[float]) -> None:
        self.xs = surface.xs
        self.ys = surface.ys
        self.n_cols = surface.xs.size
        self.values = surface.values.ravel()
        self.levels = levels
        self.coords: dict[VertexKey, Coord] = {}

    def node(self, idx: int) -> int:
        if idx not in self.coords:
            row, col = divmod(idx, self.n_cols)
            self.coords[idx] = (float(self.xs[col]), float(self.ys[row]))
        return idx

    def crossing(self, a: int, b: int, level_idx: int) -> tuple[int, int, int]:
        if a > b:
            a, b = b, a
        key = (a, b, level_idx)
        if key not in self.coords:
            va = float(self.values[a])
            vb = float(self.values[b])
            t = (self.levels[level_idx] - va) / (vb - va)
            xa, ya = self.coords[self.node(a)]
            xb, yb = self.coords[self.node(b)]
            self.coords[key] = (xa + t * (xb - xa), ya + t * (yb - ya))
        return key


def _triangle_piece(
    verts: _Vertices,
    corners: tuple[int, int, int],
    vals: tuple[float, float, float],
    lo_idx: int | None,
    hi_idx: int | None,
) -> list[VertexKey]:
    levels = verts.levels
    lo = levels[lo_idx] if lo_idx is not None else -math.inf
    hi = levels[hi_idx] if hi_idx is not None else math.inf
    keys: list[VertexKey] = []
    for p, q in ((0, 1), (1, 2), (2, 0)):
        vp = vals[p]
        vq = vals[q]
        if lo <= vp <= hi:
            keys.append(verts.node(corners[p]))
        crossings: list[int] = []
        for level_idx in (lo_idx, hi_idx):
            if level_idx is None:
                continue
            level = levels[level_idx]
            if min(vp, vq) < level < max(vp, vq):
                crossings.append(level_idx)
        # Order crossings from p towards q.
        if vp > vq:
            crossings.reverse()
        for level_idx in crossings:
            keys.append(verts.crossing(corners[p], corners[q], level_idx))
    return keys


def _keep_piece(verts: _Vertices, keys: list[VertexKey]) -> bool:
    if len(set(keys)) < 3:
        return False
    return signed_area([verts.coords[k] for k in keys]) > 0.0


def _turn(prev: Coord, cur: Coord, nxt: Coord) -> float:
    ax = cur[0] - prev[0]
    ay = cur[1] - prev[1]
    bx = nxt[0] - cur[0]
    by = nxt[1] - cur[1]
    return math.atan2(ax * by - ay * bx, ax * bx + ay * by)


def stitch_rings(
    edges: Sequence[tuple[VertexKey, VertexKey]],
    coords: dict[VertexKey, Coord],
) -> list[list[VertexKey]]:
    """
    Stitch directed boundary edges into closed rings (first vertex not repeated).

    Every vertex must have as many incoming as outgoing edges, which holds for the
    boundary of any union of closed pieces.
    """
    outgoing: dict[VertexKey, list[VertexKey]] = {}
    for u, v in edges:
        outgoing.setdefault(u, []).append(v)

    used: set[tuple[VertexKey, VertexKey]] = set()
    rings: list[list[VertexKey]] = []
    for start, first in edges:
        if (start, first) in used:
            continue
        used.add((start, first))
        ring = [start]
        prev = start
        cur = first
        while cur != start:
            ring.append(cur)
            candidates = [w for w in outgoing.get(cur, []) if (cur, w) not in used]
            if not candidates:
                raise RuntimeError(f"Open contour ring at vertex {cur!r}")
            if len(candidates) == 1:
                nxt = candidates[0]
            else:
                # Sharpest left turn; ties keep the first edge in insertion order.
                nxt = max(candidates, key=lambda w: _turn(coords[prev], coords[cur], coords[w]))
            used.add((cur, nxt))
            prev = cur
            cur = nxt
        rings.extend(split_at_repeats(ring))
    return rings


def split_at_repeats(ring: list[VertexKey]) -> list[list[VertexKey]]:
    """
    Cut a closed ring that passes through the same vertex more than once into
    simple rings. Each loop between two visits of a vertex becomes its own ring.
    """
    out: list[list[VertexKey]] = []
    stack: list[VertexKey] = []
    position: dict[VertexKey, int] = {}
    for key in ring:
        k = position.get(key)
        if k is None:
            position[key] = len(stack)
            stack.append(key)
            continue
        out.append(stack[k:])
        for dropped in stack[k + 1 :]:
            del position[dropped]
        stack = stack[: k + 1]
    out.append(stack)
    return [r for r in out if len(r) >= 3]


def _drop_collinear(coords: list[Coord]) -> list[Coord]:
    # Removes vertices sitting exactly on a straight run (e.g. along the raster border).
    n = len(coords)
    if n <= 3:
        return coords
    out: list[Coord] = []
    for i in range(n):
        x0, y0 = coords[i - 1]
        x1, y1 = coords[i]
        x2, y2 = coords[(i + 1) % n]
        cross = (x1 - x0) * (y2 - y1) - (y1 - y0) * (x2 - x1)
        dot = (x1 - x0) * (x2 - x1) + (y1 - y0) * (y2 - y1)
        if cross == 0.0 and dot > 0.0:
            continue
        out.append(coords[i])
    return out if len(out) >= 3 else coords


def rings_to_geometry(rings: list[list[Coord]]) -> BaseGeometry:
    """
    Build a (Multi)Polygon from shell (CCW) and hole (CW) rings.
    """
    shells: list[tuple[Polygon, float, list[Coord]]] = []
    holes: list[list[Coord]] = []
    for ring in rings:
        area = signed_area(ring)
        if area > 0:
            shells.append((Polygon(ring), area, ring))
        elif area < 0:
            holes.append(ring)

    holes_by_shell: dict[int, list[list[Coord]]] = {}
    for hole in holes:
        # Test the whole hole ring: a single interior point may fall on an island
        # nested inside the hole.
        footprint = Polygon(hole)
        owners = [i for i, (poly, _, _) in enumerate(shells) if poly.covers(footprint)]
        if not owners:
            raise RuntimeError("Contour hole ring is not enclosed by any shell")
        owner = min(owners, key=lambda i: shells[i][1])
        holes_by_shell.setdefault(owner, []).append(hole)

    polygons = [Polygon(ring, holes_by_shell.get(i, [])) for i, (_, _, ring) in enumerate(shells)]
    geom: BaseGeometry = MultiPolygon(polygons) if polygons else MultiPolygon()
    if not geom.is_valid:
        raise RuntimeError(f"Contour band assembled into an invalid geometry: {shapely.is_valid_reason(geom)}")
    return geom


def band_geometries(surface: RasterSurface, breaks: Sequence[float]) -> list[BaseGeometry]:
    """
    One geometry per class interval `[breaks[i], breaks[i+1]]` of the raster.

    The first band takes everything up to `breaks[1]`, the last band everything above
    `breaks[-2]`; NaN nodes are not contoured. Returned geometries are in band order and
    may be empty.
    """
    # Interior boundaries only; the outer bounds are open-ended.
    levels = [float(b) for b in breaks[1:-1]]
    n_bands = len(breaks) - 1
    verts = _Vertices(surface, levels)
    boundaries = [_BandBoundary() for _ in range(n_bands)]
    values = verts.values
    n_rows = surface.ys.size
    n_cols = surface.xs.size

    for i in range(n_rows - 1):
        for j in range(n_cols - 1):
            a = i * n_cols + j
            b = a + 1
            c = a + n_cols + 1
            d = a + n_cols
            for tri in ((a, b, c), (a, c, d)):
                vals = (float(values[tri[0]]), float(values[tri[1]]), float(values[tri[2]]))
                if any(math.isnan(v) for v in vals):
                    continue
                vmin = min(vals)
                vmax = max(vals)
                if vmin == vmax:
                    # Flat triangle: lower-band rule picks exactly one band.
                    band_range = [bisect_left(levels, vmin)]
                else:
                    band_range = range(bisect_right(levels, vmin), bisect_left(levels, vmax) + 1)
                for band in band_range:
                    lo_idx = band - 1 if band > 0 else None
                    hi_idx = band if band < len(levels) else None
                    if vmin == vmax:
                        keys = [verts.node(k) for k in tri]
                    else:
                        keys = _triangle_piece(verts, tri, vals, lo_idx, hi_idx)
                    if _keep_piece(verts, keys):
                        boundaries[band].add_piece(keys)

    out: list[BaseGeometry] = []
    for boundary in boundaries:
        edges = list(boundary.edges)
        rings = stitch_rings(edges, verts.coords)
        ring_coords = [_drop_collinear([verts.coords[k] for k in ring]) for ring in rings]
        out.append(rings_to_geometry(ring_coords))
    return out


def polygonal_part(geom: BaseGeometry) -> MultiPolygon:
    """Keep only the areal components of a geometry (drops stray lines/points)."""
    if geom.is_empty:
        return MultiPolygon()
    if isinstance(geom, Polygon):
        return MultiPolygon([geom])
    if isinstance(geom, MultiPolygon):
        return geom
    parts: list[Polygon] = []
    for g in getattr(geom, "geoms", []):
        if isinstance(g, Polygon) and not g.is_empty:
            parts.append(g)
        elif isinstance(g, MultiPolygon):
            parts.extend(p for p in g.geoms if not p.is_empty)
    return MultiPolygon(parts)
