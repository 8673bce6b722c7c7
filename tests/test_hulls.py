"""
Unit tests for geoworkbench.hulls (buffer, convex/concave hull, concavity suggestion).
"""

import math

import numpy as np
import pytest
from shapely.geometry import Point

from geoworkbench.errors import DegenerateGeometryError, ValidationError
from geoworkbench.hulls import buffer, concave_hull, convex_hull, suggest_concavity


def _l_shape(layer_factory):
    """Jittered 1 m grid over a 20 x 20 square with the top-right 10 x 10 quadrant removed."""
    rng = np.random.default_rng(7)
    pts = []
    for i in range(21):
        for j in range(21):
            if i > 10 and j > 10:
                continue
            dx, dy = rng.uniform(-0.15, 0.15, 2)
            pts.append(Point(i + dx, j + dy))
    return layer_factory({"n": list(range(len(pts)))}, pts)


class TestBuffer:

    def test_point_buffer_area(self, layer_factory):
        layer = layer_factory({"name": ["p"]}, [Point(500000, 0)])
        result = buffer(layer, 1, "kilometers")
        area = result.features.geometry.iloc[0].area
        assert area == pytest.approx(math.pi * 1000 ** 2, rel=0.01)
        assert result.features["name"].iloc[0] == "p"

    def test_larger_distance_covers_smaller(self, squares):
        small = buffer(squares, 1, "meters").features.geometry
        large = buffer(squares, 2, "meters").features.geometry
        for a, b in zip(small, large):
            assert b.covers(a)
            assert b.area > a.area

    def test_zero_distance_passes_through(self, squares):
        result = buffer(squares, 0)
        assert len(result) == 3
        for before, after in zip(squares.geometry, result.features.geometry):
            assert before.equals(after)
        assert not set(result.features.index) & set(squares.index)

    def test_unknown_unit(self, squares):
        with pytest.raises(ValidationError):
            buffer(squares, 1, "furlongs")

    def test_geographic_input_keeps_crs(self, layer_factory):
        layer = layer_factory({"name": ["p"]}, [Point(30.0, 40.0)], crs="EPSG:4326")
        result = buffer(layer, 1, "miles")
        assert result.features.crs == layer.crs
        assert result.features.geometry.iloc[0].contains(Point(30.0, 40.0))


class TestConvexHull:

    def test_square_of_points(self, corner_points):
        result = convex_hull(corner_points)
        hull = result.features.geometry.iloc[0]
        assert hull.area == pytest.approx(100.0)
        assert result.features["vertex_count"].iloc[0] == 5
        assert all(hull.covers(p) for p in corner_points.geometry)

    def test_collinear_points(self, layer_factory):
        layer = layer_factory({"v": [1, 2, 3]}, [Point(0, 0), Point(1, 1), Point(2, 2)])
        with pytest.raises(DegenerateGeometryError):
            convex_hull(layer)


class TestConcaveHull:

    def test_large_concavity_equals_convex_hull(self, layer_factory):
        rng = np.random.default_rng(0)
        pts = [Point(x, y) for x, y in rng.uniform(0, 100, (30, 2))]
        layer = layer_factory({"n": list(range(30))}, pts)
        concave = concave_hull(layer, 1_000_000, "meters").features.geometry.iloc[0]
        convex = convex_hull(layer).features.geometry.iloc[0]
        assert concave.area == pytest.approx(convex.area)

    def test_notch_is_carved_out(self, layer_factory):
        layer = _l_shape(layer_factory)
        concave = concave_hull(layer, 3, "meters").features.geometry.iloc[0]
        convex = convex_hull(layer).features.geometry.iloc[0]
        assert concave.area < convex.area - 20
        assert concave.area > 250
        assert convex.buffer(1e-6).covers(concave)

    def test_too_small_concavity(self, corner_points):
        with pytest.raises(DegenerateGeometryError, match="increasing the concavity"):
            concave_hull(corner_points, 0.001, "meters")

    def test_non_positive_concavity(self, corner_points):
        with pytest.raises(ValidationError):
            concave_hull(corner_points, 0)

    def test_records_concavity(self, corner_points):
        result = concave_hull(corner_points, 20, "meters")
        assert result.features["concavity"].iloc[0] == 20


class TestConcavitySuggestion:

    def test_even_spacing(self, layer_factory):
        layer = layer_factory({"v": [0, 1, 2, 3]}, [Point(x, 0) for x in (0, 10, 20, 30)])
        s = suggest_concavity(layer, "meters")
        assert s.mean == pytest.approx(10.0)
        assert s.std_dev == pytest.approx(0.0)
        assert s.suggested == pytest.approx(10.0)

    def test_mean_plus_std(self, layer_factory):
        layer = layer_factory({"v": [0, 1, 2]}, [Point(0, 0), Point(1, 0), Point(10, 0)])
        s = suggest_concavity(layer, "meters")
        nearest = np.array([1.0, 1.0, 9.0])
        assert s.mean == pytest.approx(nearest.mean())
        assert s.std_dev == pytest.approx(nearest.std())
        assert s.suggested == pytest.approx(s.mean + s.std_dev)
        assert s.step == pytest.approx(s.std_dev / 10)

    def test_unit_conversion(self, layer_factory):
        layer = layer_factory({"v": [0, 1]}, [Point(0, 0), Point(500, 0)])
        assert suggest_concavity(layer, "kilometers").mean == pytest.approx(0.5)

    def test_adjust_never_below_one_step(self, layer_factory):
        layer = layer_factory({"v": [0, 1, 2]}, [Point(0, 0), Point(1, 0), Point(10, 0)])
        s = suggest_concavity(layer, "meters")
        assert s.adjust(s.suggested, 1) == pytest.approx(s.suggested + s.step)
        assert s.adjust(s.suggested, -1000) == pytest.approx(s.step)

    def test_single_point(self, layer_factory):
        layer = layer_factory({"v": [0]}, [Point(0, 0)])
        with pytest.raises(ValidationError):
            suggest_concavity(layer)
