"""
Unit tests for geoworkbench.overlay (clip, erase, bbox extract, weighted sum).
"""

import pytest
from shapely.geometry import LineString, Point, box

from geoworkbench.errors import EmptyResultError, ValidationError
from geoworkbench.overlay import clip, erase, extract_by_bbox, weighted_sum


class TestClipErase:
    """Boolean operations against a dissolved mask."""

    def test_clip_keeps_inside_parts(self, squares, mask):
        result = clip(squares, mask)
        assert len(result) == 2
        assert sorted(result.features["name"]) == ["a", "b"]
        assert result.features.geometry.area.sum() == pytest.approx(100.0)

    def test_clip_and_erase_partition_the_input(self, squares, mask):
        clipped = clip(squares, mask).features.geometry.area.sum()
        erased = erase(squares, mask).features.geometry.area.sum()
        assert clipped + erased == pytest.approx(squares.geometry.area.sum())

    def test_erase_keeps_attributes_and_fresh_ids(self, squares, mask):
        result = erase(squares, mask)
        assert sorted(result.features["name"]) == ["a", "b", "c"]
        assert not set(result.features.index) & set(squares.index)
        assert result.features.crs == squares.crs

    def test_selection_limits_the_input(self, squares, mask):
        result = clip(squares, mask, selection=["f1"])
        assert list(result.features["name"]) == ["a"]
        assert result.total == 1

    def test_foreign_selection_uses_whole_layer(self, squares, mask):
        result = clip(squares, mask, selection=["not-in-layer"])
        assert result.total == 3

    def test_no_overlap_is_empty_result(self, layer_factory, mask):
        far = layer_factory({"name": ["far"]}, [box(100, 100, 110, 110)])
        with pytest.raises(EmptyResultError):
            clip(far, mask)

    def test_mask_without_polygons(self, squares, layer_factory):
        points = layer_factory({"v": [1]}, [Point(1, 1)])
        with pytest.raises(ValidationError):
            clip(squares, points)

    def test_lines_stay_lines(self, layer_factory, mask):
        line = layer_factory({"name": ["road"]}, [LineString([(0, 5), (20, 5)])])
        result = clip(line, mask)
        geom = result.features.geometry.iloc[0]
        assert geom.geom_type == "LineString"
        assert geom.length == pytest.approx(10.0)

    def test_empty_input(self, squares, mask):
        result = clip(squares.iloc[0:0], mask)
        assert len(result) == 0
        assert result.total == 0


class TestExtractAndWeightedSum:

    def test_extract_by_bbox(self, squares):
        result = extract_by_bbox(squares, (0, 0, 5, 10))
        assert len(result) == 1
        assert result.features.geometry.iloc[0].area == pytest.approx(50.0)

    def test_invalid_bbox(self, squares):
        with pytest.raises(ValidationError):
            extract_by_bbox(squares, (10, 0, 0, 10))

    def test_weighted_sum_uses_area_share(self, squares, mask):
        result = weighted_sum(squares, "pop", mask)
        # half of a (100) plus half of b (200)
        assert result["weighted_sum"] == pytest.approx(150.0)
        assert result["count"] == 2
        assert result["weighted_average"] == pytest.approx(150.0)

    def test_weighted_sum_missing_field(self, squares, mask):
        with pytest.raises(ValidationError):
            weighted_sum(squares, "missing", mask)
