"""
Unit tests for geoworkbench.colors and geoworkbench.classification.
"""

import itertools

import numpy as np
import pytest
from shapely.geometry import Point

from geoworkbench.classification import (
    categorize,
    class_index,
    classify_graduated,
    jenks_breaks,
    natural_sort_key,
    quantile_breaks,
    reorder_categories,
    unique_values,
)
from geoworkbench.colors import generate_ramp, hex_to_rgb, interpolate_color, ramp_for, rgb_to_hex
from geoworkbench.constants import COLOR_RAMPS, NATURAL_BREAKS, QUANTILES
from geoworkbench.errors import ValidationError


def _deviation(classes):
    """Sum of squared deviations from each class mean."""
    return sum(float(np.sum((np.asarray(c) - np.mean(c)) ** 2)) for c in classes if len(c))


class TestColorRamps:
    """Linear RGB interpolation between two hex colors."""

    def test_three_step_red_to_blue(self):
        assert generate_ramp("#ff0000", "#0000ff", 3) == ["#ff0000", "#800080", "#0000ff"]

    def test_ramp_length_and_endpoints(self):
        ramp = generate_ramp("#fee5d9", "#a50f15", 7)
        assert len(ramp) == 7
        assert ramp[0] == "#fee5d9"
        assert ramp[-1] == "#a50f15"

    @pytest.mark.parametrize("count", [1, 2, 3, 7, 12])
    def test_same_endpoints_repeat_the_color(self, count):
        assert generate_ramp("#3182bd", "#3182bd", count) == ["#3182bd"] * count

    def test_two_classes_are_the_endpoints(self):
        assert generate_ramp("#fee5d9", "#a50f15", 2) == ["#fee5d9", "#a50f15"]

    def test_single_class_returns_start(self):
        assert generate_ramp("#123456", "#abcdef", 1) == ["#123456"]
        assert generate_ramp("#123456", "#abcdef", 0) == ["#123456"]

    def test_hex_parsing_is_lenient(self):
        assert hex_to_rgb("FF8000") == (255, 128, 0)
        assert hex_to_rgb("#ff8000") == hex_to_rgb("#FF8000")
        assert hex_to_rgb("not a color") == (0, 0, 0)
        assert hex_to_rgb("") == (0, 0, 0)

    def test_rgb_to_hex_is_lower_case(self):
        assert rgb_to_hex((171, 205, 239)) == "#abcdef"

    def test_interpolation_rounds_half_up(self):
        assert interpolate_color((0, 0, 0), (1, 3, 5), 0.5) == (1, 2, 3)

    def test_named_and_custom_ramps(self):
        reds = ramp_for("reds", 4)
        assert reds[0] == COLOR_RAMPS["reds"]["start"]
        custom = ramp_for("custom", 2, {"start": "#000000", "end": "#ffffff"})
        assert custom == ["#000000", "#ffffff"]

    def test_unknown_ramp_raises(self):
        with pytest.raises(ValidationError):
            ramp_for("rainbow", 3)
        with pytest.raises(ValidationError):
            ramp_for("custom", 3)


class TestQuantileBreaks:
    """Equal-count breaks."""

    def test_one_to_ten_in_three_classes(self):
        assert quantile_breaks(list(range(1, 11)), 3) == [4, 7, 10]

    def test_last_break_is_maximum(self):
        values = [3.5, 1.0, 9.25, 4.0, 2.0, 8.0]
        assert quantile_breaks(values, 4)[-1] == 9.25

    def test_repeated_values_collapse(self):
        assert quantile_breaks([5, 5, 5, 5, 5, 5], 3) == [5]

    def test_more_classes_than_values(self):
        breaks = quantile_breaks([1, 2], 5)
        assert breaks == sorted(set(breaks))
        assert breaks[-1] == 2

    def test_invalid_class_count(self):
        with pytest.raises(ValidationError):
            quantile_breaks([1, 2, 3], 1)

    def test_empty_sample(self):
        assert quantile_breaks([], 3) == []


class TestJenksBreaks:
    """Fisher-Jenks natural breaks."""

    def test_three_obvious_groups(self):
        values = [1, 2, 3, 10, 11, 12, 20, 21, 22]
        assert jenks_breaks(values, 3) == [3, 12]

    def test_input_order_does_not_matter(self):
        values = [21, 1, 12, 3, 20, 10, 2, 22, 11]
        assert jenks_breaks(values, 3) == [3, 12]

    def test_two_groups(self):
        assert jenks_breaks([1, 1, 2, 2, 50, 51, 52], 2) == [2]

    def test_k_larger_than_sample(self):
        assert jenks_breaks([1, 2, 3], 5) == []

    def test_breaks_are_sorted_and_unique(self):
        values = [1, 1, 1, 1, 2, 2, 9, 9, 9]
        breaks = jenks_breaks(values, 4)
        assert breaks == sorted(set(breaks))

    @pytest.mark.parametrize("seed", range(8))
    def test_random_breaks_increase_within_range(self, seed):
        rng = np.random.default_rng(seed)
        values = rng.normal(50, 20, size=int(rng.integers(5, 40))).tolist()
        k = int(rng.integers(2, min(7, len(values)) + 1))
        breaks = jenks_breaks(values, k)
        assert len(breaks) == k - 1
        assert all(a < b for a, b in zip(breaks, breaks[1:]))
        assert min(values) <= breaks[0] and breaks[-1] <= max(values)

    @pytest.mark.parametrize("seed", range(6))
    def test_breaks_minimize_within_class_deviation(self, seed):
        rng = np.random.default_rng(100 + seed)
        values = sorted(rng.uniform(0, 100, size=10).tolist())
        k = 2 + seed % 3
        breaks = jenks_breaks(values, k) + [values[-1]]
        classes = [[v for v in values if lo < v <= hi] for lo, hi in zip([-np.inf] + breaks[:-1], breaks)]
        best = min(
            _deviation([values[a:b] for a, b in zip((0,) + cuts, cuts + (len(values),))])
            for cuts in itertools.combinations(range(1, len(values)), k - 1)
        )
        assert _deviation(classes) == pytest.approx(best, rel=1e-9, abs=1e-9)

    @pytest.mark.parametrize("values, k", [
        ([4, 4, 1, 1, 9], 3),
        ([5, 1, 5, 1, 3, 3], 3),
        ([2, 2, 2, 7, 7], 4),
        ([6, 6, 6, 6], 2),
        ([8, 3, 3, 8, 8, 3, 1], 5),
    ])
    def test_few_unique_values_give_natural_groups(self, values, k):
        breaks = jenks_breaks(values, k)
        assert set(breaks) <= set(values)
        assert sorted(set(breaks) | {max(values)}) == sorted(set(values))


class TestGraduatedClassification:
    """classify_graduated over a layer field."""

    @pytest.fixture
    def layer(self, layer_factory):
        values = [1, 2, 3, 10, 11, 12, 20, 21, 22, "n/a", None]
        return layer_factory({"v": values}, [Point(i, 0) for i in range(len(values))])

    def test_quantiles(self, layer):
        result = classify_graduated(layer, "v", QUANTILES, classes=3)
        assert result.breaks == [10, 20, 22]
        assert len(result.colors) == len(result.breaks)

    def test_natural_breaks_append_maximum(self, layer):
        result = classify_graduated(layer, "v", NATURAL_BREAKS, classes=3, ramp="blues")
        assert result.breaks == [3, 12, 22]
        assert result.colors[0] == COLOR_RAMPS["blues"]["start"]
        assert result.colors[-1] == COLOR_RAMPS["blues"]["end"]

    def test_natural_breaks_fall_back_to_maximum(self, layer_factory):
        layer = layer_factory({"v": [4.0, 7.0]}, [Point(0, 0), Point(1, 1)])
        result = classify_graduated(layer, "v", NATURAL_BREAKS, classes=5)
        assert result.breaks == [7.0]
        assert len(result.colors) == 1

    def test_unknown_method(self, layer):
        with pytest.raises(ValidationError):
            classify_graduated(layer, "v", "equal-interval", classes=3)

    def test_no_numeric_values(self, layer_factory):
        layer = layer_factory({"v": ["a", "b"]}, [Point(0, 0), Point(1, 1)])
        with pytest.raises(ValidationError, match="Numeric fields"):
            classify_graduated(layer, "v", QUANTILES, classes=3)

    def test_missing_field(self, layer):
        with pytest.raises(ValidationError):
            classify_graduated(layer, "missing", QUANTILES, classes=3)

    def test_class_index_uses_upper_bounds(self):
        breaks = [4, 7, 10]
        assert class_index(1, breaks) == 0
        assert class_index(4, breaks) == 0
        assert class_index(5, breaks) == 1
        assert class_index(10, breaks) == 2
        assert class_index(99, breaks) == 2


class TestCategorized:
    """Unique-value categorization and reordering."""

    def test_natural_ordering(self):
        values = ["item10", "item2", "Item1"]
        assert sorted(values, key=natural_sort_key) == ["Item1", "item2", "item10"]

    def test_accents_are_folded(self):
        values = ["Zonguldak", "Izmir", "İstanbul", "Ankara"]
        assert sorted(values, key=natural_sort_key) == ["Ankara", "İstanbul", "Izmir", "Zonguldak"]

    def test_punctuation_and_negatives_before_digits(self):
        values = ["3", "-5", "-10", "_a", "10", "2", "a", "B", "b"]
        assert sorted(values, key=natural_sort_key) == ["_a", "-5", "-10", "2", "3", "10", "a", "b", "B"]

    def test_negative_categories_sort_first(self, layer_factory):
        layer = layer_factory({"delta": [-5, 3, -10]}, [Point(i, 0) for i in range(3)])
        assert categorize(layer, "delta").values == [-5, -10, 3]

    def test_unique_values_skip_nulls(self, layer_factory):
        layer = layer_factory({"kind": ["b", "a", None, "b", "c"]}, [Point(i, 0) for i in range(5)])
        assert unique_values(layer, "kind") == ["a", "b", "c"]

    def test_integral_numbers_become_ints(self, layer_factory):
        layer = layer_factory({"code": [10.0, 2.0, 2.0]}, [Point(i, 0) for i in range(3)])
        assert unique_values(layer, "code") == [2, 10]

    def test_categorize_assigns_ramp_colors(self, layer_factory):
        layer = layer_factory({"kind": ["b", "a", "c"]}, [Point(i, 0) for i in range(3)])
        result = categorize(layer, "kind", ramp="viridis")
        assert result.values == ["a", "b", "c"]
        assert result.colors == ramp_for("viridis", 3)

    def test_reorder_recolors_in_new_order(self, layer_factory):
        layer = layer_factory({"kind": ["a", "b", "c"]}, [Point(i, 0) for i in range(3)])
        original = categorize(layer, "kind")
        moved = reorder_categories(original, 0, 2)
        assert moved.values == ["b", "c", "a"]
        assert moved.colors == original.colors
        assert original.values == ["a", "b", "c"]

    def test_reorder_out_of_range(self, layer_factory):
        layer = layer_factory({"kind": ["a", "b"]}, [Point(i, 0) for i in range(2)])
        with pytest.raises(ValidationError):
            reorder_categories(categorize(layer, "kind"), 0, 5)
