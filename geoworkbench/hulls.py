# geoworkbench/hulls.py

import math
from typing import Any, Iterable, NamedTuple, Optional

import geopandas as gpd
import numpy as np
from loguru import logger
from scipy.spatial import KDTree
from shapely.geometry import MultiPoint, Polygon
from shapely.ops import triangulate, unary_union

from geoworkbench.errors import DegenerateGeometryError, ValidationError
from geoworkbench.features import (
    AnalysisResult,
    build_collection,
    collection_vertices,
    scope_to_selection,
    with_fresh_ids,
)
from geoworkbench.geodesy import from_meters, restore_crs, to_meters, to_planar


class ConcavitySuggestion(NamedTuple):
    """Nearest-neighbour spacing of the input points, in the requested unit."""

    mean: float
    std_dev: float
    suggested: float
    step: float
    unit: str

    def adjust(self, current: float, steps: int) -> float:
        """Move `current` by whole steps, never below one step."""
        floor = self.step if self.step > 0 else self.suggested
        return max(floor, current + steps * self.step)


def buffer(features: gpd.GeoDataFrame, distance: float, unit: str = "kilometers",
           selection: Optional[Iterable[Any]] = None, quad_segs: int = 16) -> AnalysisResult:
    """
    Grow every geometry by `distance`. A distance of zero or less passes the
    geometries through unchanged. Attributes are kept; ids are fresh.
    """
    meters = to_meters(distance, unit)
    scoped = scope_to_selection(features, selection)
    if scoped.empty or meters <= 0:
        if meters <= 0:
            logger.debug(f"[buffer] distance {distance} {unit} <= 0, geometries passed through")
        return AnalysisResult(features=with_fresh_ids(scoped), skipped=[], total=len(scoped))

    planar, original = to_planar(scoped)
    grown = planar.copy()
    grown[planar.geometry.name] = planar.geometry.buffer(meters, quad_segs)
    bad = grown.geometry.isna() | grown.geometry.is_empty
    skipped = grown.index[bad].tolist()
    for fid in skipped:
        logger.warning(f"[buffer] Skipping feature {fid}: empty geometry")
    grown = grown[~bad]
    out = with_fresh_ids(restore_crs(grown, original))
    return AnalysisResult(features=out, skipped=skipped, total=len(scoped))


def convex_hull(features: gpd.GeoDataFrame, selection: Optional[Iterable[Any]] = None) -> AnalysisResult:
    """Single polygon enclosing every vertex of the (selected) features."""
    scoped = scope_to_selection(features, selection)
    if scoped.empty:
        return AnalysisResult(features=with_fresh_ids(scoped.iloc[0:0][[scoped.geometry.name]]), total=0)
    pts = collection_vertices(scoped)
    hull = MultiPoint(pts).convex_hull if pts else None
    if hull is None or hull.geom_type != "Polygon":
        raise DegenerateGeometryError(
            f"A convex hull needs at least 3 non-collinear vertices, got {len(pts)}"
        )
    out = build_collection([{"vertex_count": len(pts)}], [hull], scoped.crs)
    return AnalysisResult(features=out, total=len(scoped))


def _longest_edge(triangle: Polygon) -> float:
    coords = list(triangle.exterior.coords)
    return max(math.dist(a, b) for a, b in zip(coords[:-1], coords[1:]))


def concave_hull(features: gpd.GeoDataFrame, concavity: float, unit: str = "kilometers",
                 selection: Optional[Iterable[Any]] = None) -> AnalysisResult:
    """
    Union of the Delaunay triangles whose edges are all no longer than `concavity`.
    Small values give tight outlines; large values approach the convex hull.
    """
    if concavity is None or concavity <= 0:
        raise ValidationError(f"Concavity must be positive, got {concavity}")
    max_edge = to_meters(concavity, unit)
    scoped = scope_to_selection(features, selection)
    if scoped.empty:
        return AnalysisResult(features=with_fresh_ids(scoped.iloc[0:0][[scoped.geometry.name]]), total=0)

    planar, original = to_planar(scoped)
    pts = collection_vertices(planar)
    if len(pts) < 3:
        raise DegenerateGeometryError(f"A concave hull needs at least 3 distinct vertices, got {len(pts)}")

    kept = [t for t in triangulate(MultiPoint(pts)) if _longest_edge(t) <= max_edge]
    if not kept:
        raise DegenerateGeometryError(
            f"No hull could be formed with a concavity of {concavity} {unit}. Try increasing the concavity."
        )
    hull = unary_union(kept)
    logger.debug(f"[concave_hull] {len(kept)} triangles kept with max edge {max_edge:.1f} m")
    out = build_collection([{"vertex_count": len(pts), "concavity": float(concavity)}], [hull], planar.crs)
    return AnalysisResult(features=restore_crs(out, original), total=len(scoped))


def suggest_concavity(features: gpd.GeoDataFrame, unit: str = "kilometers", step_divisor: float = 10.0,
                      selection: Optional[Iterable[Any]] = None) -> ConcavitySuggestion:
    """
    Starting concavity from the nearest-neighbour distance distribution:
    mean + one standard deviation, adjustable in steps of std_dev / step_divisor.
    """
    scoped = scope_to_selection(features, selection)
    planar, _ = to_planar(scoped)
    pts = collection_vertices(planar)
    if len(pts) < 2:
        raise ValidationError("At least two distinct points are needed to suggest a concavity")

    coords = np.asarray(pts, dtype=float)
    distances, _ = KDTree(coords).query(coords, k=2)
    nearest = np.array([from_meters(d, unit) for d in distances[:, 1]])
    mean = float(np.mean(nearest))
    std = float(np.std(nearest))
    return ConcavitySuggestion(mean=mean, std_dev=std, suggested=mean + std,
                               step=std / step_divisor, unit=unit)
