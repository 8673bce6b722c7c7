# geoworkbench/geodesy.py
"""Coordinate conventions shared by the engines.

Planar operations (areas, buffers, hulls, cross-sections) run in a projected,
meters-based CRS.  Great-circle operations (vectors, tracking) run on lon/lat.

Convention:
    - A GeoDataFrame with a geographic CRS is projected to its estimated UTM
      zone for planar work and converted back afterwards.
    - A GeoDataFrame without a CRS is taken as already planar (meters) for
      planar work and as lon/lat (EPSG:4326) for great-circle work.
    - Bearing 0 = North, clockwise in degrees.
"""

from __future__ import annotations

import math
from typing import NamedTuple, Optional, Tuple

import geopandas as gpd
import numpy as np

from geoworkbench.constants import EARTH_RADIUS_KM, UNIT_METERS
from geoworkbench.errors import ValidationError

WGS84 = "EPSG:4326"


class GeodeticPoint(NamedTuple):
    """Longitude/latitude in degrees (WGS84)."""

    lon: float
    lat: float


class ProjectedPoint(NamedTuple):
    """Planar coordinates in meters."""

    x: float
    y: float


def unit_factor(unit: str) -> float:
    """Meters per one `unit`."""
    try:
        return UNIT_METERS[unit]
    except KeyError:
        raise ValidationError(f"Unknown unit '{unit}'. Available: {list(UNIT_METERS)}")


def to_meters(value: float, unit: str) -> float:
    return float(value) * unit_factor(unit)


def from_meters(value: float, unit: str) -> float:
    return float(value) / unit_factor(unit)


# ---------------------------------------------------------------------------
# Great-circle math
# ---------------------------------------------------------------------------

def haversine_km(a: GeodeticPoint, b: GeodeticPoint) -> float:
    """Great-circle distance between two points in kilometers."""
    lat1, lat2 = math.radians(a.lat), math.radians(b.lat)
    dlat = lat2 - lat1
    dlon = math.radians(b.lon - a.lon)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


def haversine_km_many(origin: GeodeticPoint, lons: np.ndarray, lats: np.ndarray) -> np.ndarray:
    """Vectorised haversine from one origin to many points."""
    lat1 = math.radians(origin.lat)
    lat2 = np.radians(lats)
    dlat = lat2 - lat1
    dlon = np.radians(lons - origin.lon)
    h = np.sin(dlat / 2) ** 2 + math.cos(lat1) * np.cos(lat2) * np.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * np.arcsin(np.minimum(1.0, np.sqrt(h)))


def initial_bearing(a: GeodeticPoint, b: GeodeticPoint) -> float:
    """Initial bearing from a to b in degrees, normalised to [0, 360)."""
    lat1, lat2 = math.radians(a.lat), math.radians(b.lat)
    dlon = math.radians(b.lon - a.lon)
    y = math.sin(dlon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlon)
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


def destination_point(origin: GeodeticPoint, distance_km: float, bearing: float) -> GeodeticPoint:
    """Point reached travelling `distance_km` from origin along `bearing`."""
    delta = distance_km / EARTH_RADIUS_KM
    theta = math.radians(bearing)
    lat1 = math.radians(origin.lat)
    lon1 = math.radians(origin.lon)
    lat2 = math.asin(math.sin(lat1) * math.cos(delta) + math.cos(lat1) * math.sin(delta) * math.cos(theta))
    lon2 = lon1 + math.atan2(
        math.sin(theta) * math.sin(delta) * math.cos(lat1),
        math.cos(delta) - math.sin(lat1) * math.sin(lat2),
    )
    return GeodeticPoint(lon=(math.degrees(lon2) + 540.0) % 360.0 - 180.0, lat=math.degrees(lat2))


# ---------------------------------------------------------------------------
# CRS handling
# ---------------------------------------------------------------------------

def to_planar(gdf: gpd.GeoDataFrame) -> Tuple[gpd.GeoDataFrame, Optional[object]]:
    """Return (planar copy, original CRS) for meters-based processing."""
    original = gdf.crs
    if original is None or not original.is_geographic or gdf.empty:
        return gdf.copy(), original
    return gdf.to_crs(gdf.estimate_utm_crs()), original


def restore_crs(gdf: gpd.GeoDataFrame, original) -> gpd.GeoDataFrame:
    if original is None or gdf.crs is None or gdf.crs == original:
        return gdf
    return gdf.to_crs(original)


def to_geodetic(gdf: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """Copy of gdf in lon/lat; a missing CRS is read as lon/lat already."""
    if gdf.crs is None:
        return gdf.set_crs(WGS84)
    if gdf.crs.to_epsg() == 4326:
        return gdf.copy()
    return gdf.to_crs(WGS84)
