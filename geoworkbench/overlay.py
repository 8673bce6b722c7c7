# geoworkbench/overlay.py

from typing import Any, Callable, Dict, Iterable, Optional, Tuple

import geopandas as gpd
from loguru import logger
from shapely.errors import GEOSException
from shapely.geometry import box
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union
from shapely.validation import make_valid

from geoworkbench.errors import DegenerateGeometryError, EmptyResultError, ValidationError
from geoworkbench.features import (
    AnalysisResult,
    attribute_columns,
    build_collection,
    is_number,
    scope_to_selection,
    with_fresh_ids,
)
from geoworkbench.geodesy import to_planar

_DIMENSION = {
    "Point": 0, "MultiPoint": 0,
    "LineString": 1, "MultiLineString": 1, "LinearRing": 1,
    "Polygon": 2, "MultiPolygon": 2,
}


def dissolve_mask(mask: gpd.GeoDataFrame, crs=None) -> BaseGeometry:
    """Union of all mask polygons, in `crs` when both sides have one."""
    if crs is not None and mask.crs is not None and mask.crs != crs:
        mask = mask.to_crs(crs)
    polygons = [
        make_valid(g) for g in mask.geometry
        if g is not None and not g.is_empty and g.geom_type in ("Polygon", "MultiPolygon")
    ]
    if not polygons:
        raise ValidationError("The mask layer has no polygon features")
    return unary_union(polygons)


def _same_dimension(geom: BaseGeometry, dimension: int) -> Optional[BaseGeometry]:
    """Drop lower-dimensional slivers (touching points, shared edges) from an overlay result."""
    if geom is None or geom.is_empty:
        return None
    if geom.geom_type == "GeometryCollection":
        parts = [p for p in geom.geoms if not p.is_empty and _DIMENSION.get(p.geom_type) == dimension]
        if not parts:
            return None
        return parts[0] if len(parts) == 1 else unary_union(parts)
    if _DIMENSION.get(geom.geom_type) != dimension:
        return None
    return geom


def _overlay(features: gpd.GeoDataFrame, mask_geom: BaseGeometry,
             op: Callable[[BaseGeometry, BaseGeometry], BaseGeometry], label: str) -> AnalysisResult:
    columns = attribute_columns(features)
    rows, geoms, skipped = [], [], []
    for fid, row in features.iterrows():
        geom = row.geometry
        if geom is None or geom.is_empty:
            logger.warning(f"[{label}] Skipping feature {fid}: empty geometry")
            skipped.append(fid)
            continue
        try:
            result = op(geom, mask_geom)
        except (GEOSException, ValueError) as e:
            logger.warning(f"[{label}] Skipping feature {fid}: {e}")
            skipped.append(fid)
            continue
        piece = _same_dimension(result, _DIMENSION.get(geom.geom_type, 2))
        if piece is None:
            continue
        rows.append({c: row[c] for c in columns})
        geoms.append(piece)

    if not geoms:
        if skipped and len(skipped) == len(features):
            raise DegenerateGeometryError(f"{label}: every input feature failed ({len(skipped)} skipped)")
        raise EmptyResultError(f"{label}: no output features were produced from {len(features)} input features")

    out = build_collection(rows, geoms, features.crs, columns=columns)
    logger.info(f"[{label}] {len(out)} features from {len(features)} inputs ({len(skipped)} skipped)")
    return AnalysisResult(features=out, skipped=skipped, total=len(features))


def _empty_result(features: gpd.GeoDataFrame) -> AnalysisResult:
    return AnalysisResult(features=with_fresh_ids(features.iloc[0:0]), skipped=[], total=0)


def clip(features: gpd.GeoDataFrame, mask: gpd.GeoDataFrame,
         selection: Optional[Iterable[Any]] = None) -> AnalysisResult:
    """
    Keep the parts of each feature that fall inside the dissolved mask.
    Attributes are copied onto every piece; pieces get fresh ids.
    """
    scoped = scope_to_selection(features, selection)
    if scoped.empty:
        return _empty_result(scoped)
    mask_geom = dissolve_mask(mask, scoped.crs)
    return _overlay(scoped, mask_geom, lambda g, m: g.intersection(m), "clip")


def erase(features: gpd.GeoDataFrame, mask: gpd.GeoDataFrame,
          selection: Optional[Iterable[Any]] = None) -> AnalysisResult:
    """Remove the dissolved mask from each feature (set difference)."""
    scoped = scope_to_selection(features, selection)
    if scoped.empty:
        return _empty_result(scoped)
    mask_geom = dissolve_mask(mask, scoped.crs)
    return _overlay(scoped, mask_geom, lambda g, m: g.difference(m), "erase")


def extract_by_bbox(features: gpd.GeoDataFrame, bbox: Tuple[float, float, float, float],
                    selection: Optional[Iterable[Any]] = None) -> AnalysisResult:
    """Clip features to a (minx, miny, maxx, maxy) rectangle in the layer's CRS."""
    minx, miny, maxx, maxy = bbox
    if minx >= maxx or miny >= maxy:
        raise ValidationError(f"Invalid bounding box {bbox}")
    scoped = scope_to_selection(features, selection)
    if scoped.empty:
        return _empty_result(scoped)
    return _overlay(scoped, box(minx, miny, maxx, maxy), lambda g, m: g.intersection(m), "extract")


def weighted_sum(features: gpd.GeoDataFrame, field: str, area: gpd.GeoDataFrame,
                 selection: Optional[Iterable[Any]] = None) -> Dict[str, float]:
    """
    Area-weighted sum of a numeric field over the polygons of `area`.

    Each polygon contributes value * (intersected area / own area); features
    without a numeric value or without polygon geometry are ignored.
    """
    if field not in features.columns:
        raise ValidationError(f"Field '{field}' not found")
    scoped = scope_to_selection(features, selection)
    if scoped.empty:
        return {"weighted_sum": 0.0, "weighted_average": None, "count": 0}

    mask_geom = dissolve_mask(area, scoped.crs)
    planar, _ = to_planar(scoped)
    mask_planar = gpd.GeoSeries([mask_geom], crs=scoped.crs)
    if planar.crs is not None and mask_planar.crs is not None:
        mask_planar = mask_planar.to_crs(planar.crs)
    mask_planar = mask_planar.iloc[0]

    total = 0.0
    weights = 0.0
    count = 0
    for fid, row in planar.iterrows():
        value = row[field]
        geom = row.geometry
        if not is_number(value) or geom is None or geom.geom_type not in ("Polygon", "MultiPolygon"):
            continue
        own_area = geom.area
        if own_area <= 0:
            continue
        try:
            proportion = geom.intersection(mask_planar).area / own_area
        except GEOSException as e:
            logger.warning(f"[weighted_sum] Skipping feature {fid}: {e}")
            continue
        if proportion <= 0:
            continue
        total += float(value) * proportion
        weights += proportion
        count += 1

    return {
        "weighted_sum": total,
        "weighted_average": (total / weights) if weights > 0 else None,
        "count": count,
    }
