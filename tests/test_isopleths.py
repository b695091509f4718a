import itertools

import numpy as np
import pandas as pd
import pytest
import shapely
from shapely.geometry import Polygon, box

from spatialpotential.classify.breaks import quantile_breaks
from spatialpotential.errors import InvalidGrid, InvalidParameter
from spatialpotential.isopleth.bands import band_geometries, rings_to_geometry, signed_area, split_at_repeats, stitch_rings
from spatialpotential.isopleth.extract import extract_isopleths, isopleths_frame, isopleths_geojson
from spatialpotential.spatial.raster import RasterSurface


def _ramp() -> RasterSurface:
    # value == x on a 5 x 4 node lattice (extent 4 x 3)
    xs = np.arange(5, dtype=float)
    ys = np.arange(4, dtype=float)
    return RasterSurface(xs=xs, ys=ys, values=np.tile(xs, (ys.size, 1)))


def _random_surface(seed: int = 7) -> RasterSurface:
    rng = np.random.default_rng(seed)
    return RasterSurface(xs=np.arange(8.0), ys=np.arange(6.0), values=rng.random((6, 8)) * 100)


def test_ramp_bands_are_vertical_strips() -> None:
    result = extract_isopleths(_ramp(), [0, 1, 2, 3, 4], box(0, 0, 4, 3))
    assert result.breaks == [0.0, 1.0, 2.0, 3.0, 4.0]
    assert len(result.polygons) == 4
    for i, poly in enumerate(result.polygons):
        assert (poly.lower, poly.upper) == (float(i), float(i + 1))
        assert poly.center == i + 0.5
        assert poly.geometry.area == pytest.approx(3.0)
        assert poly.geometry.bounds == pytest.approx((i, 0.0, i + 1, 3.0))


def test_bands_partition_the_grid_extent() -> None:
    surface = _random_surface()
    breaks = quantile_breaks(surface.values.ravel(), 4)
    result = extract_isopleths(surface, breaks, box(0, 0, 7, 5))

    geoms = [p.geometry for p in result.polygons]
    assert all(g.is_valid for g in geoms)
    assert sum(g.area for g in geoms) == pytest.approx(35.0)
    for a, b in itertools.combinations(geoms, 2):
        assert a.intersection(b).area == pytest.approx(0.0, abs=1e-9)


def test_extraction_is_deterministic() -> None:
    surface = _random_surface(seed=11)
    breaks = quantile_breaks(surface.values.ravel(), 5)
    first = extract_isopleths(surface, breaks, box(0, 0, 7, 5))
    second = extract_isopleths(surface, breaks, box(0, 0, 7, 5))
    assert [p.geometry.wkt for p in first.polygons] == [p.geometry.wkt for p in second.polygons]
    assert first.breaks == second.breaks


def test_peak_makes_a_hole_with_opposite_winding() -> None:
    values = np.zeros((5, 5))
    values[2, 2] = 10.0
    surface = RasterSurface(xs=np.arange(5.0), ys=np.arange(5.0), values=values)
    low, high = band_geometries(surface, [0.0, 5.0, 10.0])

    assert len(low.geoms) == 1
    shell = low.geoms[0]
    assert len(shell.interiors) == 1
    assert shapely.is_ccw(shell.exterior)
    assert not shapely.is_ccw(shell.interiors[0])
    assert low.area + high.area == pytest.approx(16.0)
    assert high.within(Polygon(shell.interiors[0]).buffer(1e-9))


def test_value_on_a_break_belongs_to_the_lower_band() -> None:
    # Plateau at exactly 1.0 between x=1 and x=2.
    row = [0.0, 1.0, 1.0, 2.0]
    surface = RasterSurface(xs=np.arange(4.0), ys=np.arange(2.0), values=np.array([row, row]))
    result = extract_isopleths(surface, [0.0, 1.0, 2.0], box(0, 0, 3, 1))
    assert [p.geometry.area for p in result.polygons] == pytest.approx([2.0, 1.0])
    assert result.polygons[0].geometry.bounds == pytest.approx((0.0, 0.0, 2.0, 1.0))


def test_breaks_are_clamped_to_the_surface_range() -> None:
    result = extract_isopleths(_ramp(), [-10, 0.5, 2, 99], box(0, 0, 4, 3))
    assert result.breaks == [0.0, 0.5, 2.0, 4.0]
    assert [p.upper for p in result.polygons] == [0.5, 2.0, 4.0]


def test_bands_are_clipped_to_the_mask() -> None:
    result = extract_isopleths(_ramp(), [0, 1, 2, 3, 4], box(0, 0, 2, 3))
    assert len(result.polygons) == 2
    assert sum(p.geometry.area for p in result.polygons) == pytest.approx(6.0)


def test_nan_nodes_are_not_contoured() -> None:
    surface = _ramp()
    values = np.array(surface.values)
    values[0, 0] = np.nan
    result = extract_isopleths(RasterSurface(xs=surface.xs, ys=surface.ys, values=values), [0, 2, 4], box(0, 0, 4, 3))
    # The two triangles touching the missing node drop out.
    assert sum(p.geometry.area for p in result.polygons) == pytest.approx(11.0)


def test_range_is_taken_inside_the_mask() -> None:
    surface = _ramp()
    assert surface.value_range() == (0.0, 4.0)
    assert surface.value_range(box(0.5, 0, 2.5, 3)) == pytest.approx((0.5, 2.5))
    assert surface.value_range(Polygon([(0, 0), (3, 0), (0, 3)])) == pytest.approx((0.0, 3.0))

    result = extract_isopleths(surface, [0, 1, 2, 3, 4], box(0.5, 0, 2.5, 3))
    assert result.breaks == pytest.approx([0.5, 1.0, 2.0, 2.5])
    assert [p.upper for p in result.polygons] == pytest.approx([1.0, 2.0, 2.5])
    assert sum(p.geometry.area for p in result.polygons) == pytest.approx(6.0)


def test_mask_outside_the_grid_gives_no_polygons() -> None:
    result = extract_isopleths(_ramp(), [0, 2, 4], box(100, 100, 200, 200))
    assert result.polygons == []
    with pytest.raises(InvalidParameter):
        extract_isopleths(_ramp(), [0, 2, 4], Polygon())


def test_breaks_must_increase() -> None:
    with pytest.raises(InvalidParameter):
        extract_isopleths(_ramp(), [0, 3, 2, 4], box(0, 0, 4, 3))


def test_irregular_grid_is_rejected() -> None:
    with pytest.raises(InvalidGrid):
        RasterSurface(xs=np.array([0.0, 1.0, 3.0]), ys=np.array([0.0, 1.0]), values=np.zeros((2, 3)))

    df = pd.DataFrame({"x": [0.0, 1.0, 3.0, 0.0, 1.0, 3.0], "y": [0.0] * 3 + [1.0] * 3, "v": range(6)})
    with pytest.raises(InvalidGrid):
        RasterSurface.from_frame(df, value_col="v")


def test_raster_from_frame_fills_missing_nodes() -> None:
    df = pd.DataFrame({"x": [0.0, 1.0, 0.0], "y": [0.0, 0.0, 1.0], "v": [1.0, 2.0, 3.0]})
    surface = RasterSurface.from_frame(df, value_col="v")
    assert surface.values[0].tolist() == [1.0, 2.0]
    assert surface.values[1, 0] == 3.0
    assert np.isnan(surface.values[1, 1])


def test_stitching_splits_shapes_touching_at_one_vertex() -> None:
    squares = [[(0, 0), (1, 0), (1, 1), (0, 1)], [(1, 1), (2, 1), (2, 2), (1, 2)]]
    edges = [(sq[i], sq[(i + 1) % 4]) for sq in squares for i in range(4)]
    coords = {p: (float(p[0]), float(p[1])) for sq in squares for p in sq}

    rings = stitch_rings(edges, coords)
    assert len(rings) == 2
    assert all(len(r) == 4 for r in rings)
    assert all(signed_area([coords[k] for k in r]) > 0 for r in rings)

    geom = rings_to_geometry([[coords[k] for k in r] for r in rings])
    assert geom.is_valid
    assert geom.area == pytest.approx(2.0)


def test_crater_keeps_the_island_out_of_the_hole() -> None:
    # Low centre, high rim two nodes out, low again beyond the rim.
    idx = np.arange(9)
    ring = np.maximum.outer(np.abs(idx - 4), np.abs(idx - 4))
    values = np.where(ring == 2, 10.0, 0.0)
    surface = RasterSurface(xs=np.arange(9.0), ys=np.arange(9.0), values=values)
    low, high = band_geometries(surface, [0.0, 5.0, 10.0])

    assert low.is_valid and high.is_valid
    outer, island = sorted(low.geoms, key=lambda g: g.area, reverse=True)
    assert len(outer.interiors) == 1
    assert len(island.interiors) == 0
    assert island.within(Polygon(outer.interiors[0]))
    assert len(high.geoms) == 1 and len(high.geoms[0].interiors) == 1
    assert low.area + high.area == pytest.approx(64.0)


def test_hole_goes_to_the_shell_around_it_not_the_island_inside() -> None:
    outer = [(0.0, 0.0), (10.0, 0.0), (10.0, 10.0), (0.0, 10.0)]
    hole = [(1.0, 1.0), (1.0, 9.0), (9.0, 9.0), (9.0, 1.0)]
    island = [(4.0, 4.0), (6.0, 4.0), (6.0, 6.0), (4.0, 6.0)]

    geom = rings_to_geometry([outer, hole, island])
    assert geom.is_valid
    assert geom.area == pytest.approx(40.0)
    big, small = sorted(geom.geoms, key=lambda g: g.area, reverse=True)
    assert len(big.interiors) == 1
    assert small.area == pytest.approx(4.0)
    assert len(small.interiors) == 0


def test_ring_returning_to_a_vertex_is_cut_into_simple_rings() -> None:
    assert split_at_repeats(["a", "b", "v", "h1", "h2", "v", "c", "d"]) == [["v", "h1", "h2"], ["a", "b", "v", "c", "d"]]

    # Square with a triangular hole touching its bottom edge at (2, 0).
    shell = [(0, 0), (2, 0), (4, 0), (4, 4), (0, 4)]
    hole = [(2, 0), (1, 2), (3, 2)]
    edges = [(ring[i], ring[(i + 1) % len(ring)]) for ring in (shell, hole) for i in range(len(ring))]
    coords = {p: (float(p[0]), float(p[1])) for p in shell + hole}

    rings = stitch_rings(edges, coords)
    assert all(len(set(r)) == len(r) for r in rings)
    assert sorted(signed_area([coords[k] for k in r]) for r in rings) == pytest.approx([-2.0, 16.0])

    geom = rings_to_geometry([[coords[k] for k in r] for r in rings])
    assert geom.is_valid
    assert len(geom.geoms) == 1 and len(geom.geoms[0].interiors) == 1
    assert geom.area == pytest.approx(14.0)


def test_overlapping_shells_are_an_error() -> None:
    first = [(0.0, 0.0), (4.0, 0.0), (4.0, 4.0), (0.0, 4.0)]
    second = [(2.0, 1.0), (6.0, 1.0), (6.0, 3.0), (2.0, 3.0)]
    with pytest.raises(RuntimeError, match="invalid geometry"):
        rings_to_geometry([first, second])


def test_open_boundary_is_an_error() -> None:
    coords = {"a": (0.0, 0.0), "b": (1.0, 0.0), "c": (1.0, 1.0)}
    with pytest.raises(RuntimeError):
        stitch_rings([("a", "b"), ("b", "c")], coords)


def test_exports() -> None:
    result = extract_isopleths(_ramp(), [0, 2, 4], box(0, 0, 4, 3))
    fc = isopleths_geojson(result.polygons)
    assert fc["type"] == "FeatureCollection"
    assert [f["properties"]["band"] for f in fc["features"]] == [0, 1]
    assert fc["features"][1]["properties"] == {"band": 1, "lower": 2.0, "upper": 4.0, "center": 3.0}

    df = isopleths_frame(result.polygons)
    assert list(df.columns) == ["lower", "upper", "center", "area", "geometry"]
    assert df["area"].sum() == pytest.approx(12.0)
