# geoworkbench/generalize.py

import math
from typing import Any, Iterable, List, Optional, Sequence, Tuple

import geopandas as gpd
import numpy as np
from loguru import logger
from shapely.geometry import LineString, MultiLineString, MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry

from geoworkbench.constants import BEZIER_RESOLUTION, BEZIER_SHARPNESS
from geoworkbench.errors import EmptyResultError, ValidationError
from geoworkbench.features import (
    AnalysisResult,
    build_collection,
    scope_to_selection,
    with_fresh_ids,
)
from geoworkbench.geodesy import from_meters, restore_crs, to_meters, to_planar

Coords = List[Tuple[float, float]]


# ---------------------------------------------------------------------------
# Bezier smoothing
# ---------------------------------------------------------------------------

def _dedupe(coords: Sequence[Sequence[float]]) -> Coords:
    out: Coords = []
    for c in coords:
        pt = (float(c[0]), float(c[1]))
        if not out or out[-1] != pt:
            out.append(pt)
    return out


def _bezier_points(p0, c1, c2, p1, steps: int) -> np.ndarray:
    t = np.arange(steps, dtype=float)[:, None] / steps
    u = 1.0 - t
    return (u ** 3) * p0 + 3 * (u ** 2) * t * c1 + 3 * u * (t ** 2) * c2 + (t ** 3) * p1


def _spline(coords: Coords, closed: bool, resolution: int, sharpness: float) -> Coords:
    """
    Cubic Bezier spline through every vertex. Tangents follow the neighbours
    (Catmull-Rom at sharpness 1, straight segments at sharpness 0).
    """
    pts = np.asarray(coords, dtype=float)
    n = len(pts)
    segments = n if closed else n - 1
    steps = max(1, int(round(resolution / 10.0 / segments)))

    tangents = np.empty_like(pts)
    for i in range(n):
        if closed:
            prev_pt, next_pt = pts[(i - 1) % n], pts[(i + 1) % n]
            tangents[i] = (next_pt - prev_pt) / 2.0
        elif i == 0:
            tangents[i] = pts[1] - pts[0]
        elif i == n - 1:
            tangents[i] = pts[-1] - pts[-2]
        else:
            tangents[i] = (pts[i + 1] - pts[i - 1]) / 2.0
    tangents *= sharpness

    chunks = []
    for i in range(segments):
        j = (i + 1) % n
        c1 = pts[i] + tangents[i] / 3.0
        c2 = pts[j] - tangents[j] / 3.0
        chunks.append(_bezier_points(pts[i], c1, c2, pts[j], steps))
    curve = np.vstack(chunks)
    end = pts[0] if closed else pts[-1]
    curve = np.vstack([curve, end])
    return [tuple(p) for p in curve]


def _smooth_ring(ring, resolution: int, sharpness: float) -> Optional[Coords]:
    coords = _dedupe(ring.coords)
    if len(coords) > 1 and coords[0] == coords[-1]:
        coords = coords[:-1]
    if len(coords) < 3:
        return None
    return _spline(coords, True, resolution, sharpness)


def smooth_geometry(geom: BaseGeometry, resolution: int = BEZIER_RESOLUTION,
                    sharpness: float = BEZIER_SHARPNESS) -> BaseGeometry:
    """Bezier-smooth one geometry; points and degenerate parts come back unchanged."""
    kind = geom.geom_type
    if kind == "LineString":
        coords = _dedupe(geom.coords)
        if len(coords) < 2:
            return geom
        return LineString(_spline(coords, False, resolution, sharpness))
    if kind == "Polygon":
        shell = _smooth_ring(geom.exterior, resolution, sharpness)
        if shell is None:
            return geom
        holes = [h for h in (_smooth_ring(r, resolution, sharpness) for r in geom.interiors) if h]
        smoothed = Polygon(shell, holes)
        # self-intersections from overshooting curves
        return smoothed if smoothed.is_valid else smoothed.buffer(0)
    if kind == "MultiLineString":
        return MultiLineString([smooth_geometry(g, resolution, sharpness) for g in geom.geoms])
    if kind == "MultiPolygon":
        parts = []
        for g in geom.geoms:
            s = smooth_geometry(g, resolution, sharpness)
            parts.extend(s.geoms if s.geom_type == "MultiPolygon" else [s])
        return MultiPolygon(parts)
    return geom


def bezier_smooth(features: gpd.GeoDataFrame, resolution: int = BEZIER_RESOLUTION,
                  sharpness: float = BEZIER_SHARPNESS,
                  selection: Optional[Iterable[Any]] = None) -> AnalysisResult:
    """
    Smooth lines and polygon boundaries with a Bezier spline.

    Args:
        resolution: Sampling density; each segment gets about resolution / 10 / segments points.
        sharpness: 0 keeps straight segments, 1 gives fully rounded corners.
    """
    if resolution is None or resolution <= 0:
        raise ValidationError(f"Resolution must be positive, got {resolution}")
    if sharpness is None or not 0.0 <= sharpness <= 1.0:
        raise ValidationError(f"Sharpness must be between 0 and 1, got {sharpness}")
    scoped = scope_to_selection(features, selection)
    out = scoped.copy()
    skipped = []
    geoms = []
    for fid, geom in scoped.geometry.items():
        if geom is None or geom.is_empty:
            logger.warning(f"[smooth] Skipping feature {fid}: empty geometry")
            skipped.append(fid)
            geoms.append(None)
            continue
        geoms.append(smooth_geometry(geom, resolution, sharpness))
    out[scoped.geometry.name] = gpd.GeoSeries(geoms, index=scoped.index, crs=scoped.crs)
    out = out[~out.index.isin(skipped)]
    return AnalysisResult(features=with_fresh_ids(out), skipped=skipped, total=len(scoped))


# ---------------------------------------------------------------------------
# Cross-sections
# ---------------------------------------------------------------------------

def _line_parts(geom: BaseGeometry) -> List[LineString]:
    if geom.geom_type == "LineString":
        return [geom]
    if geom.geom_type == "MultiLineString":
        return list(geom.geoms)
    return []


def _sections_along(line: LineString, interval_m: float, length_m: float) -> List[Tuple[int, float, LineString]]:
    total = line.length
    if total <= 0:
        return []
    # the trailing partial interval gets no station of its own
    count = int(math.floor(total / interval_m + 1e-9)) + 1
    eps = min(interval_m, total) * 0.01
    half = length_m / 2.0
    sections = []
    for station in range(count):
        d = min(station * interval_m, total)
        centre = line.interpolate(d)
        a = line.interpolate(max(0.0, d - eps))
        b = line.interpolate(min(total, d + eps))
        dx, dy = b.x - a.x, b.y - a.y
        norm = math.hypot(dx, dy)
        if norm == 0:
            continue
        nx, ny = -dy / norm, dx / norm
        section = LineString([
            (centre.x - nx * half, centre.y - ny * half),
            (centre.x + nx * half, centre.y + ny * half),
        ])
        sections.append((station, d, section))
    return sections


def cross_sections(features: gpd.GeoDataFrame, station_interval: float, section_length: float,
                   unit: str = "meters", selection: Optional[Iterable[Any]] = None) -> AnalysisResult:
    """
    Perpendicular sections along each line, one every `station_interval`,
    centred on the line and `section_length` long. Stations start at the
    first vertex; a final stretch shorter than the interval gets no station.
    """
    if station_interval is None or station_interval <= 0:
        raise ValidationError(f"Station interval must be positive, got {station_interval}")
    if section_length is None or section_length <= 0:
        raise ValidationError(f"Section length must be positive, got {section_length}")
    interval_m = to_meters(station_interval, unit)
    length_m = to_meters(section_length, unit)

    scoped = scope_to_selection(features, selection)
    if scoped.empty:
        return AnalysisResult(features=with_fresh_ids(scoped.iloc[0:0][[scoped.geometry.name]]), total=0)
    planar, original = to_planar(scoped)

    rows, geoms, skipped = [], [], []
    for fid, geom in planar.geometry.items():
        parts = _line_parts(geom) if geom is not None else []
        if not parts:
            logger.warning(f"[cross_sections] Skipping feature {fid}: not a line")
            skipped.append(fid)
            continue
        for part_no, part in enumerate(parts):
            for station, d, section in _sections_along(part, interval_m, length_m):
                rows.append({
                    "source_id": fid,
                    "part": part_no,
                    "station": station,
                    "chainage": from_meters(d, unit),
                })
                geoms.append(section)

    if not geoms:
        raise EmptyResultError("No cross-sections could be generated from the selected features")
    out = build_collection(rows, geoms, planar.crs, columns=["source_id", "part", "station", "chainage"])
    return AnalysisResult(features=restore_crs(out, original), skipped=skipped, total=len(scoped))
