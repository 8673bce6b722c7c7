# geoworkbench/features.py

import math
import numbers
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Sequence, Tuple, Union

import geopandas as gpd
import pandas as pd
from shapely.geometry.base import BaseGeometry

from geoworkbench.errors import ValidationError

AttributeValue = Union[float, str, None]


@dataclass
class AnalysisResult:
    """
    Output of a vector analysis.

    Attributes:
        features: New feature collection (fresh ids unless stated otherwise).
        skipped: Ids of input features left out because they failed (or, for
            tracking, found no match).
        total: Number of input features the operation looked at.
    """
    features: gpd.GeoDataFrame
    skipped: List[Any] = field(default_factory=list)
    total: int = 0

    @property
    def partial(self) -> bool:
        return bool(self.skipped)

    def __len__(self) -> int:
        return len(self.features)


def new_id() -> str:
    return uuid.uuid4().hex


def with_fresh_ids(gdf: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """Copy of gdf indexed by newly generated ids."""
    out = gdf.copy()
    out.index = pd.Index([new_id() for _ in range(len(out))], name="id")
    return out


def build_collection(rows: List[dict], geometries: List[BaseGeometry], crs, columns: Optional[Sequence[str]] = None) -> gpd.GeoDataFrame:
    """Assemble a GeoDataFrame with fresh ids from attribute dicts and geometries."""
    ids = pd.Index([new_id() for _ in range(len(geometries))], name="id")
    df = pd.DataFrame(rows, index=ids, columns=list(columns) if columns is not None else None)
    if df.empty and columns is None:
        df = pd.DataFrame(index=ids)
    return gpd.GeoDataFrame(df, geometry=gpd.GeoSeries(list(geometries), index=ids, crs=crs), crs=crs)


def scope_to_selection(gdf: gpd.GeoDataFrame, selection: Optional[Iterable[Any]] = None) -> gpd.GeoDataFrame:
    """
    If any selected id belongs to gdf, return only those features; otherwise the whole layer.
    """
    if not selection:
        return gdf
    wanted = [fid for fid in selection if fid in gdf.index]
    if not wanted:
        return gdf
    return gdf[gdf.index.isin(wanted)]


def attribute_columns(gdf: gpd.GeoDataFrame) -> List[str]:
    geom_col = gdf.geometry.name
    return [c for c in gdf.columns if c != geom_col]


def coerce_value(value: Any) -> AttributeValue:
    """
    Map a raw attribute to Number | Text | Null.
    Booleans are text, NaN and pandas NA are null, numpy scalars are numbers.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, numbers.Number):
        number = float(value)
        return None if math.isnan(number) else number
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    return str(value)


def is_number(value: Any) -> bool:
    """True for finite real numbers (booleans excluded)."""
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return False
    return math.isfinite(float(value))


def numeric_values(gdf: gpd.GeoDataFrame, column: str) -> List[float]:
    """Finite numeric values of `column`; text, null and non-finite entries are skipped."""
    if column not in gdf.columns:
        raise ValidationError(f"Field '{column}' not found. Available: {attribute_columns(gdf)}")
    return [float(v) for v in gdf[column].tolist() if is_number(v)]


def numeric_fields(gdf: gpd.GeoDataFrame) -> List[str]:
    """Attribute columns whose first feature holds a number, sorted by name."""
    if gdf.empty:
        return []
    first = gdf.iloc[0]
    return sorted(c for c in attribute_columns(gdf) if is_number(first[c]))


def vertices(geom: Optional[BaseGeometry]) -> List[Tuple[float, float]]:
    """All (x, y) vertices of a geometry, rings and parts flattened."""
    if geom is None or geom.is_empty:
        return []
    kind = geom.geom_type
    if kind == "Point":
        return [(geom.x, geom.y)]
    if kind in ("LineString", "LinearRing"):
        return [(x, y) for x, y, *_ in geom.coords]
    if kind == "Polygon":
        pts = vertices(geom.exterior)
        for ring in geom.interiors:
            pts.extend(vertices(ring))
        return pts
    pts: List[Tuple[float, float]] = []
    for part in geom.geoms:
        pts.extend(vertices(part))
    return pts


def collection_vertices(gdf: gpd.GeoDataFrame, unique: bool = True) -> List[Tuple[float, float]]:
    pts: List[Tuple[float, float]] = []
    for geom in gdf.geometry:
        pts.extend(vertices(geom))
    if unique:
        pts = list(dict.fromkeys(pts))
    return pts
