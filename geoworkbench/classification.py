# geoworkbench/classification.py
"""
Classification of attribute values into symbology classes.

Graduated symbology breaks are upper bounds: a value belongs to the first
class whose break is >= the value.  Categorized symbology keeps one color
per distinct value, in natural (locale- and number-aware) order.
"""

import re
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

import geopandas as gpd
import numpy as np
from loguru import logger
from unidecode import unidecode

from geoworkbench.colors import ramp_for
from geoworkbench.constants import CLASSIFICATION_METHODS, QUANTILES
from geoworkbench.errors import ValidationError
from geoworkbench.features import coerce_value, numeric_fields, numeric_values

_CHUNKS = re.compile(r"\d+|[^\W\d_]+|\S")
# Punctuation and symbols in collation order; anything else sorts after them by code point.
_SYMBOL_ORDER = "_-,;:!?.'\"()[]{}@*/\\&#%`^+<=>|~$"


@dataclass(frozen=True)
class GraduatedClassification:
    field: str
    method: str
    breaks: List[float]
    colors: List[str]
    ramp: str = "reds"

    @property
    def classes(self) -> int:
        return len(self.breaks)


@dataclass(frozen=True)
class CategorizedClassification:
    field: str
    categories: List[Tuple[Any, str]]
    ramp: str = "viridis"
    custom_colors: Optional[Dict[str, str]] = None

    @property
    def values(self) -> List[Any]:
        return [value for value, _ in self.categories]

    @property
    def colors(self) -> List[str]:
        return [color for _, color in self.categories]


# ---------------------------------------------------------------------------
# Breaks
# ---------------------------------------------------------------------------

def quantile_breaks(values: Sequence[float], k: int) -> List[float]:
    """
    Equal-count breaks. The last break is always the maximum; repeated values
    can collapse breaks so fewer than `k` classes may come back.
    """
    if k < 2:
        raise ValidationError(f"Quantile classification needs at least 2 classes, got {k}")
    data = sorted(float(v) for v in values)
    n = len(data)
    if n == 0:
        return []
    step = max(1, n // k)
    breaks = [data[min(i * step, n - 1)] for i in range(1, k)]
    breaks.append(data[-1])
    return sorted(set(breaks))


def jenks_matrices(data: Sequence[float], k: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Fisher-Jenks dynamic programming over sorted `data`.

    Returns (lower_class_limits, variance_combinations), both (n+1) x (k+1)
    and 1-based as in the classic formulation.
    """
    n = len(data)
    lower = np.zeros((n + 1, k + 1), dtype=np.int64)
    variance = np.zeros((n + 1, k + 1), dtype=float)
    lower[1, 1:] = 1
    variance[2:, 1:] = np.inf

    for l in range(2, n + 1):
        s = 0.0
        s2 = 0.0
        w = 0
        ssd = 0.0
        for m in range(1, l + 1):
            lower_limit = l - m + 1
            val = data[lower_limit - 1]
            w += 1
            s += val
            s2 += val * val
            ssd = s2 - (s * s) / w
            i4 = lower_limit - 1
            if i4 != 0 and k >= 2:
                candidate = ssd + variance[i4, 1:k]
                current = variance[l, 2:]
                better = current >= candidate
                variance[l, 2:] = np.where(better, candidate, current)
                lower[l, 2:] = np.where(better, lower_limit, lower[l, 2:])
        lower[l, 1] = 1
        variance[l, 1] = ssd
    return lower, variance


def jenks_breaks(values: Sequence[float], k: int) -> List[float]:
    """
    Interior natural breaks (k-1 of them, fewer if values repeat).
    The caller appends the maximum. Returns [] when k exceeds the sample size.
    """
    data = sorted(float(v) for v in values)
    n = len(data)
    if k < 2 or k > n:
        return []
    lower, _ = jenks_matrices(data, k)

    breaks: List[float] = []
    idx = n
    for j in range(k, 1, -1):
        limit = int(lower[idx, j])
        breaks.append(data[limit - 2])
        idx = limit - 1
    breaks.reverse()
    return sorted(set(breaks))


def class_index(value: float, breaks: Sequence[float]) -> int:
    """Index of the class containing value (values above the top break go to the last class)."""
    for i, upper in enumerate(breaks):
        if value <= upper:
            return i
    return max(0, len(breaks) - 1)


def classify_graduated(gdf: gpd.GeoDataFrame, field: str, method: str = QUANTILES, classes: int = 5,
                       ramp: str = "reds", ramps: Optional[Dict[str, Dict[str, str]]] = None) -> GraduatedClassification:
    if method not in CLASSIFICATION_METHODS:
        raise ValidationError(f"Unknown classification method '{method}'. Available: {list(CLASSIFICATION_METHODS)}")
    if classes < 2:
        raise ValidationError(f"At least 2 classes are required, got {classes}")
    values = sorted(numeric_values(gdf, field))
    if not values:
        raise ValidationError(f"Field '{field}' has no numeric values to classify. "
                              f"Numeric fields: {numeric_fields(gdf)}")

    if method == QUANTILES:
        breaks = quantile_breaks(values, classes)
    else:
        interior = jenks_breaks(values, classes)
        breaks = sorted(set(interior + [values[-1]])) if interior else [values[-1]]

    if len(breaks) < classes:
        logger.debug(f"{field}: {classes} classes requested, {len(breaks)} realized")
    colors = ramp_for(ramp, len(breaks), ramps=ramps)
    return GraduatedClassification(field=field, method=method, breaks=breaks, colors=colors, ramp=ramp)


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

def natural_sort_key(value: Any) -> tuple:
    """
    Locale-style key: accents folded, case ignored, digit runs compared as numbers
    (so "2" sorts before "10"). Punctuation sorts before digits and digits before
    letters, which puts "-5" ahead of "3". Lower case wins a tie ("b" before "B").
    """
    text = unidecode(str(value)).strip()
    parts = []
    for chunk in _CHUNKS.findall(text.lower()):
        if chunk.isdigit():
            parts.append((1, int(chunk), ""))
        elif chunk.isalpha():
            parts.append((2, 0, chunk))
        else:
            rank = _SYMBOL_ORDER.find(chunk)
            parts.append((0, rank if rank >= 0 else len(_SYMBOL_ORDER) + ord(chunk), ""))
    return tuple(parts), text.swapcase()


def _category_value(value: Any) -> Any:
    value = coerce_value(value)
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def unique_values(gdf: gpd.GeoDataFrame, field: str) -> List[Any]:
    if field not in gdf.columns:
        raise ValidationError(f"Field '{field}' not found")
    seen = {}
    for raw in gdf[field].tolist():
        value = _category_value(raw)
        if value is None:
            continue
        seen.setdefault(value, None)
    return sorted(seen, key=natural_sort_key)


def categorize(gdf: gpd.GeoDataFrame, field: str, ramp: str = "viridis",
               custom_colors: Optional[Dict[str, str]] = None,
               ramps: Optional[Dict[str, Dict[str, str]]] = None) -> CategorizedClassification:
    values = unique_values(gdf, field)
    if not values:
        raise ValidationError(f"Field '{field}' has no values to categorize")
    colors = ramp_for(ramp, len(values), custom_colors, ramps)
    return CategorizedClassification(field=field, categories=list(zip(values, colors)),
                                     ramp=ramp, custom_colors=custom_colors)


def recolor(classification: CategorizedClassification,
            ramps: Optional[Dict[str, Dict[str, str]]] = None) -> CategorizedClassification:
    """Regenerate the ramp across the current category order."""
    values = classification.values
    colors = ramp_for(classification.ramp, len(values), classification.custom_colors, ramps)
    return replace(classification, categories=list(zip(values, colors)))


def reorder_categories(classification: CategorizedClassification, from_index: int, to_index: int,
                       ramps: Optional[Dict[str, Dict[str, str]]] = None) -> CategorizedClassification:
    """
    Move one category to a new position and recolor the whole list, so colors
    keep following the ramp in the new order.
    """
    values = classification.values
    n = len(values)
    for name, idx in (("from_index", from_index), ("to_index", to_index)):
        if not 0 <= idx < n:
            raise ValidationError(f"{name} {idx} out of range for {n} categories")
    moved = values.pop(from_index)
    values.insert(to_index, moved)
    return recolor(replace(classification, categories=[(v, None) for v in values]), ramps)
