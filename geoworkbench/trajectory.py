# geoworkbench/trajectory.py
"""Trajectory and vector-field analysis between two point layers.

Two layers observed at different times are paired point by point:

  1. displacement_vectors() links each source point to its nearest target
     point and derives distance, bearing and speed from the two timestamps.

  2. cluster_vectors() groups the resulting vectors with DBSCAN, using a
     radius derived from the nearest-neighbour spacing of their centroids.

  3. coherence_scores() compares each vector with the circular mean bearing
     and mean magnitude of its cluster (or of all vectors) and labels it
     Coherent, Moderate, Outlier or Isolated.

track_features() is the one-to-one variant of step 1: every feature is used
at most once and candidates can be filtered by a numeric attribute.

Clustering and coherence never write into the input layer.  They return
id -> label mappings; label_features() builds an annotated copy on demand.
"""

import math
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import geopandas as gpd
import numpy as np
import pandas as pd
from loguru import logger
from scipy.spatial import KDTree
from shapely.geometry import LineString

from geoworkbench.constants import (
    CLUSTER_MULTIPLIER_RANGE,
    COHERENT,
    COHERENT_SIGMA,
    ISOLATED,
    MODERATE,
    OUTLIER,
    OUTLIER_SIGMA,
)
from geoworkbench.errors import EmptyResultError, MissingMetadataError, ValidationError
from geoworkbench.features import AnalysisResult, build_collection, is_number, scope_to_selection
from geoworkbench.geodesy import (
    WGS84,
    GeodeticPoint,
    ProjectedPoint,
    haversine_km_many,
    initial_bearing,
    restore_crs,
    to_geodetic,
    to_planar,
)

VECTOR_COLUMNS = ["source_id", "target_id", "distance", "bearing", "speed"]
TRACK_COLUMNS = ["t1_id", "t2_id", "distance", "bearing", "speed", "attribute_change", "score"]

_TOL = 1e-9


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def elapsed_hours(start_time: Any, end_time: Any) -> float:
    """Hours between two layer timestamps; both are required."""
    missing = [name for name, value in (("first layer", start_time), ("second layer", end_time))
               if value is None or (isinstance(value, str) and not value.strip())]
    if missing:
        raise MissingMetadataError(
            f"A timestamp is required on both layers to compute speed; missing on the {' and '.join(missing)}"
        )
    try:
        start = pd.Timestamp(start_time)
        end = pd.Timestamp(end_time)
        hours = (end - start).total_seconds() / 3600.0
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid timestamp: {e}")
    if not hours > 0:
        raise ValidationError("The second timestamp must be later than the first")
    return hours


def _point_table(gdf: gpd.GeoDataFrame) -> Tuple[List[Any], np.ndarray, np.ndarray]:
    """(ids, lons, lats) of a lon/lat layer; non-point geometries use their centroid."""
    ids, lons, lats = [], [], []
    for fid, geom in gdf.geometry.items():
        if geom is None or geom.is_empty:
            continue
        pt = geom if geom.geom_type == "Point" else geom.centroid
        ids.append(fid)
        lons.append(pt.x)
        lats.append(pt.y)
    return ids, np.asarray(lons, dtype=float), np.asarray(lats, dtype=float)


# ---------------------------------------------------------------------------
# Displacement vectors
# ---------------------------------------------------------------------------

def displacement_vectors(source: gpd.GeoDataFrame, target: gpd.GeoDataFrame, search_radius_km: float,
                         start_time: Any, end_time: Any,
                         selection: Optional[Iterable[Any]] = None) -> AnalysisResult:
    """
    Link every source point to its nearest target point within `search_radius_km`.

    Output lines carry distance (km, great-circle), bearing (degrees from north)
    and speed (km/h over the time between the two timestamps).
    """
    hours = elapsed_hours(start_time, end_time)
    if search_radius_km is None or search_radius_km <= 0:
        raise ValidationError(f"Search radius must be positive, got {search_radius_km}")

    scoped = scope_to_selection(source, selection)
    src_ids, src_lon, src_lat = _point_table(to_geodetic(scoped))
    tgt_ids, tgt_lon, tgt_lat = _point_table(to_geodetic(target))
    if not tgt_ids:
        raise ValidationError("The target layer has no points")
    if not src_ids:
        return AnalysisResult(features=build_collection([], [], WGS84, columns=VECTOR_COLUMNS), total=0)

    rows, geoms, unmatched = [], [], []
    for fid, lon, lat in zip(src_ids, src_lon, src_lat):
        origin = GeodeticPoint(float(lon), float(lat))
        distances = haversine_km_many(origin, tgt_lon, tgt_lat)
        j = int(np.argmin(distances))
        distance = float(distances[j])
        if distance > search_radius_km:
            unmatched.append(fid)
            continue
        dest = GeodeticPoint(float(tgt_lon[j]), float(tgt_lat[j]))
        rows.append({
            "source_id": fid,
            "target_id": tgt_ids[j],
            "distance": distance,
            "bearing": initial_bearing(origin, dest),
            "speed": distance / hours,
        })
        geoms.append(LineString([origin, dest]))

    if not geoms:
        raise EmptyResultError(f"No target point lies within {search_radius_km} km of any source point")
    out = build_collection(rows, geoms, WGS84, columns=VECTOR_COLUMNS)
    logger.info(f"[vectors] {len(out)} vectors from {len(src_ids)} source points ({len(unmatched)} without a match)")
    return AnalysisResult(features=restore_crs(out, scoped.crs), skipped=unmatched, total=len(src_ids))


# ---------------------------------------------------------------------------
# DBSCAN
# ---------------------------------------------------------------------------

@dataclass
class ClusterResult:
    """Cluster number per vector id; None marks isolated (noise) vectors."""

    labels: Dict[Any, Optional[int]]
    epsilon: float
    nn_mean: float
    nn_std: float

    @property
    def cluster_count(self) -> int:
        return len({c for c in self.labels.values() if c is not None})

    @property
    def isolated(self) -> List[Any]:
        return [fid for fid, c in self.labels.items() if c is None]


def dbscan(coords: np.ndarray, epsilon: float, min_points: int = 2) -> List[Optional[int]]:
    """
    Density clustering of planar coordinates.

    A point is a core point when at least `min_points` points (itself included)
    lie within `epsilon`. Clusters grow from core points in input order and are
    numbered from 0; border points join the first cluster that reaches them.
    """
    n = len(coords)
    noise = -1
    labels = [None] * n
    visited = [False] * n
    if n == 0:
        return []
    tree = KDTree(coords)
    cluster = -1
    for i in range(n):
        if visited[i]:
            continue
        visited[i] = True
        neighbours = sorted(tree.query_ball_point(coords[i], epsilon))
        if len(neighbours) < min_points:
            labels[i] = noise
            continue
        cluster += 1
        labels[i] = cluster
        queue = deque(neighbours)
        while queue:
            j = queue.popleft()
            if labels[j] == noise:
                labels[j] = cluster
            if visited[j]:
                continue
            visited[j] = True
            labels[j] = cluster
            reach = sorted(tree.query_ball_point(coords[j], epsilon))
            if len(reach) >= min_points:
                queue.extend(reach)
    return [None if label == noise else label for label in labels]


def cluster_vectors(vectors: gpd.GeoDataFrame, multiplier: float = 1.0, min_points: int = 2,
                    selection: Optional[Iterable[Any]] = None) -> ClusterResult:
    """
    DBSCAN over vector centroids with
    epsilon = mean nearest-neighbour distance + multiplier * its standard deviation.
    """
    low, high = CLUSTER_MULTIPLIER_RANGE
    if multiplier is None or not low <= multiplier <= high:
        raise ValidationError(f"Multiplier must be between {low} and {high}, got {multiplier}")
    if min_points < 1:
        raise ValidationError(f"min_points must be at least 1, got {min_points}")

    scoped = scope_to_selection(vectors, selection)
    scoped = scoped[~(scoped.geometry.isna() | scoped.geometry.is_empty)]
    if len(scoped) < 2:
        raise ValidationError("Clustering needs at least two vectors")
    planar, _ = to_planar(scoped)
    points = [ProjectedPoint(c.x, c.y) for c in planar.geometry.centroid]
    coords = np.asarray(points, dtype=float)

    distances, _ = KDTree(coords).query(coords, k=2)
    nearest = distances[:, 1]
    nn_mean = float(np.mean(nearest))
    nn_std = float(np.std(nearest))
    epsilon = nn_mean + multiplier * nn_std

    labels = dbscan(coords, epsilon, min_points)
    result = ClusterResult(labels=dict(zip(planar.index, labels)), epsilon=epsilon,
                           nn_mean=nn_mean, nn_std=nn_std)
    logger.info(f"[cluster] {result.cluster_count} clusters, {len(result.isolated)} isolated, epsilon={epsilon:.2f} m")
    return result


# ---------------------------------------------------------------------------
# Coherence
# ---------------------------------------------------------------------------

@dataclass
class VectorLabel:
    cluster: Optional[int]
    coherence: str
    bearing_deviation: Optional[float] = None
    magnitude_deviation: Optional[float] = None


@dataclass
class CoherenceResult:
    labels: Dict[Any, VectorLabel]
    groups: pd.DataFrame
    skipped: List[Any] = field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        out: Dict[str, int] = {}
        for label in self.labels.values():
            out[label.coherence] = out.get(label.coherence, 0) + 1
        return out


def circular_stats(bearings: Iterable[float]) -> Tuple[float, float]:
    """
    Circular mean and circular standard deviation of angles in degrees.
    The mean comes from the averaged unit vectors; std = sqrt(-2 ln R).
    """
    radians = np.radians(np.asarray(list(bearings), dtype=float))
    if radians.size == 0:
        raise ValidationError("No bearings to summarise")
    s = float(np.mean(np.sin(radians)))
    c = float(np.mean(np.cos(radians)))
    r = min(1.0, math.hypot(s, c))
    mean = (math.degrees(math.atan2(s, c)) + 360.0) % 360.0
    if r <= _TOL:
        return mean, math.inf
    return mean, math.degrees(math.sqrt(-2.0 * math.log(r)))


def angular_difference(a: float, b: float) -> float:
    """Smallest absolute difference between two bearings (0-180)."""
    diff = abs(a - b) % 360.0
    return 360.0 - diff if diff > 180.0 else diff


def _in_sigmas(deviation: float, std: float) -> float:
    if std == math.inf:
        return 0.0
    if std <= _TOL:
        return 0.0 if deviation <= _TOL else math.inf
    return deviation / std


def _tier(bearing_sigmas: float, magnitude_sigmas: float) -> str:
    worst = max(bearing_sigmas, magnitude_sigmas)
    if worst <= COHERENT_SIGMA + _TOL:
        return COHERENT
    if worst > OUTLIER_SIGMA + _TOL:
        return OUTLIER
    return MODERATE


def coherence_scores(vectors: gpd.GeoDataFrame, magnitude_field: str = "speed",
                     clusters: Optional[Union[ClusterResult, Mapping[Any, Optional[int]]]] = None,
                     bearing_field: str = "bearing") -> CoherenceResult:
    """
    Label each vector against the mean direction and magnitude of its group.

    Groups are clusters when `clusters` is given (isolated vectors are labelled
    Isolated and excluded from the statistics), otherwise all vectors form one
    group. A vector is Coherent when both its bearing and magnitude lie within
    one standard deviation of the group mean, an Outlier when either is more
    than two away, and Moderate otherwise.
    """
    for column in (bearing_field, magnitude_field):
        if column not in vectors.columns:
            raise ValidationError(f"Field '{column}' not found on the vector layer")
    cluster_map = clusters.labels if isinstance(clusters, ClusterResult) else clusters

    labels: Dict[Any, VectorLabel] = {}
    skipped: List[Any] = []
    members: Dict[Any, List[Tuple[Any, float, float]]] = {}
    for fid, row in vectors.iterrows():
        bearing, magnitude = row[bearing_field], row[magnitude_field]
        if not (is_number(bearing) and is_number(magnitude)):
            logger.warning(f"[coherence] Skipping vector {fid}: missing {bearing_field} or {magnitude_field}")
            skipped.append(fid)
            continue
        if cluster_map is not None:
            cluster = cluster_map.get(fid)
            if cluster is None:
                labels[fid] = VectorLabel(cluster=None, coherence=ISOLATED)
                continue
            key = cluster
        else:
            key = "all"
        members.setdefault(key, []).append((fid, float(bearing) % 360.0, float(magnitude)))

    group_rows = []
    for key, items in members.items():
        mean_bearing, bearing_std = circular_stats(b for _, b, _ in items)
        magnitudes = np.asarray([m for _, _, m in items])
        mean_mag = float(np.mean(magnitudes))
        mag_std = float(np.std(magnitudes))
        group_rows.append({
            "group": key,
            "count": len(items),
            "mean_bearing": mean_bearing,
            "bearing_std": bearing_std,
            "mean_magnitude": mean_mag,
            "magnitude_std": mag_std,
        })
        for fid, bearing, magnitude in items:
            b_sig = _in_sigmas(angular_difference(bearing, mean_bearing), bearing_std)
            m_sig = _in_sigmas(abs(magnitude - mean_mag), mag_std)
            labels[fid] = VectorLabel(
                cluster=key if cluster_map is not None else None,
                coherence=_tier(b_sig, m_sig),
                bearing_deviation=b_sig,
                magnitude_deviation=m_sig,
            )

    groups = pd.DataFrame(group_rows, columns=["group", "count", "mean_bearing", "bearing_std",
                                               "mean_magnitude", "magnitude_std"])
    return CoherenceResult(labels=labels, groups=groups, skipped=skipped)


def label_features(vectors: gpd.GeoDataFrame,
                   labels: Union[CoherenceResult, Mapping[Any, VectorLabel]]) -> gpd.GeoDataFrame:
    """Copy of `vectors` with cluster_id and coherence columns."""
    mapping = labels.labels if isinstance(labels, CoherenceResult) else labels
    out = vectors.copy()
    out["cluster_id"] = [mapping[fid].cluster if fid in mapping else None for fid in out.index]
    out["coherence"] = [mapping[fid].coherence if fid in mapping else None for fid in out.index]
    return out


# ---------------------------------------------------------------------------
# Feature tracking
# ---------------------------------------------------------------------------

def _relative_difference(a: float, b: float) -> float:
    scale = max(abs(a), abs(b))
    return 0.0 if scale == 0 else abs(b - a) / scale


def track_features(t1: gpd.GeoDataFrame, t2: gpd.GeoDataFrame, max_distance_km: float,
                   start_time: Any, end_time: Any, attribute: Optional[str] = None,
                   tolerance: Optional[float] = None, attribute_weight: float = 0.5,
                   selection: Optional[Iterable[Any]] = None) -> AnalysisResult:
    """
    Pair features of two time steps one-to-one.

    Candidates are t2 features within `max_distance_km`. With an attribute,
    candidates whose relative difference exceeds `tolerance` are dropped and
    the rest are scored by distance / max_distance + attribute_weight * relative
    difference. Pairs are accepted greedily from the lowest score; ties go to
    the shorter distance, then to input order.
    """
    hours = elapsed_hours(start_time, end_time)
    if max_distance_km is None or max_distance_km <= 0:
        raise ValidationError(f"Maximum distance must be positive, got {max_distance_km}")
    if attribute_weight < 0:
        raise ValidationError("attribute_weight cannot be negative")
    if tolerance is not None and tolerance < 0:
        raise ValidationError("tolerance cannot be negative")
    if attribute is not None:
        for name, layer in (("first", t1), ("second", t2)):
            if attribute not in layer.columns:
                raise ValidationError(f"Field '{attribute}' not found on the {name} layer")

    scoped = scope_to_selection(t1, selection)
    ids1, lon1, lat1 = _point_table(to_geodetic(scoped))
    ids2, lon2, lat2 = _point_table(to_geodetic(t2))
    if not ids1:
        return AnalysisResult(features=build_collection([], [], WGS84, columns=TRACK_COLUMNS), total=0)
    if not ids2:
        raise ValidationError("The second layer has no features to track to")

    candidates = []
    for i, fid in enumerate(ids1):
        origin = GeodeticPoint(float(lon1[i]), float(lat1[i]))
        distances = haversine_km_many(origin, lon2, lat2)
        for j in np.nonzero(distances <= max_distance_km)[0]:
            change = None
            relative = 0.0
            if attribute is not None:
                a1, a2 = scoped.at[fid, attribute], t2.at[ids2[j], attribute]
                if not (is_number(a1) and is_number(a2)):
                    continue
                relative = _relative_difference(float(a1), float(a2))
                if tolerance is not None and relative > tolerance + _TOL:
                    continue
                change = float(a2) - float(a1)
            score = float(distances[j]) / max_distance_km + attribute_weight * relative
            candidates.append((score, float(distances[j]), i, int(j), change))

    candidates.sort(key=lambda c: (c[0], c[1], c[2], c[3]))
    used1, used2 = set(), set()
    rows, geoms = [], []
    for score, distance, i, j, change in candidates:
        if i in used1 or j in used2:
            continue
        used1.add(i)
        used2.add(j)
        a = GeodeticPoint(float(lon1[i]), float(lat1[i]))
        b = GeodeticPoint(float(lon2[j]), float(lat2[j]))
        rows.append({
            "t1_id": ids1[i],
            "t2_id": ids2[j],
            "distance": distance,
            "bearing": initial_bearing(a, b),
            "speed": distance / hours,
            "attribute_change": change,
            "score": score,
        })
        geoms.append(LineString([a, b]))

    untracked = [ids1[i] for i in range(len(ids1)) if i not in used1]
    if not geoms:
        raise EmptyResultError(f"No feature could be tracked within {max_distance_km} km")
    out = build_collection(rows, geoms, WGS84, columns=TRACK_COLUMNS)
    logger.info(f"[track] {len(out)} tracks, {len(untracked)} features without a match")
    return AnalysisResult(features=restore_crs(out, scoped.crs), skipped=untracked, total=len(ids1))
