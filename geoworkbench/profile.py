# geoworkbench/profile.py

import asyncio
from typing import Any, Dict, Iterable, NamedTuple, Optional, Sequence, Tuple

import geopandas as gpd
import numpy as np
import pandas as pd
from loguru import logger
from scipy.stats import linregress, pearsonr
from shapely.geometry import LineString

from geoworkbench.errors import RemoteSamplingError, ValidationError
from geoworkbench.features import is_number, numeric_values, scope_to_selection
from geoworkbench.geodesy import WGS84, GeodeticPoint, to_planar
from geoworkbench.sampling import PointSampler

PROFILE_COLUMNS = ["station", "distance", "lon", "lat"]


class Correlation(NamedTuple):
    r: float
    p_value: float
    slope: float
    intercept: float
    r_squared: float
    n: int


def sample_line(line: LineString, stations: int, crs=WGS84) -> pd.DataFrame:
    """
    `stations` evenly spaced points along a line, both ends included.
    Distances are metres along the line; lon/lat are returned for sampling.
    """
    if stations is None or stations < 2:
        raise ValidationError(f"A profile needs at least 2 stations, got {stations}")
    if line is None or line.is_empty or line.geom_type != "LineString":
        raise ValidationError("A profile needs a single line geometry")

    planar, _ = to_planar(gpd.GeoDataFrame(geometry=[line], crs=crs))
    path = planar.geometry.iloc[0]
    total = path.length
    distances = np.linspace(0.0, total, stations)
    points = gpd.GeoSeries([path.interpolate(d) for d in distances], crs=planar.crs)
    lonlat = points.to_crs(WGS84) if planar.crs is not None else points
    return pd.DataFrame({
        "station": np.arange(stations),
        "distance": distances,
        "lon": lonlat.x.to_numpy(),
        "lat": lonlat.y.to_numpy(),
    }, columns=PROFILE_COLUMNS)


def describe(values: Iterable[Any]) -> Dict[str, float]:
    """count, sum, mean, median, min, max and population stdev of the numeric values."""
    data = np.asarray([float(v) for v in values if is_number(v)], dtype=float)
    if data.size == 0:
        raise ValidationError("No numeric values to describe")
    return {
        "count": int(data.size),
        "sum": float(data.sum()),
        "mean": float(data.mean()),
        "median": float(np.median(data)),
        "min": float(data.min()),
        "max": float(data.max()),
        "std": float(data.std()),
    }


def field_statistics(gdf: gpd.GeoDataFrame, field: str,
                     selection: Optional[Iterable[Any]] = None) -> Dict[str, float]:
    return describe(numeric_values(scope_to_selection(gdf, selection), field))


def correlate(x: Sequence[Any], y: Sequence[Any]) -> Correlation:
    """Pearson correlation and least-squares line over pairs where both values are numeric."""
    if len(x) != len(y):
        raise ValidationError("Both series must have the same length")
    pairs = [(float(a), float(b)) for a, b in zip(x, y) if is_number(a) and is_number(b)]
    if len(pairs) < 3:
        raise ValidationError(f"Correlation needs at least 3 paired values, got {len(pairs)}")
    xs = np.array([p[0] for p in pairs])
    ys = np.array([p[1] for p in pairs])
    if np.ptp(xs) == 0 or np.ptp(ys) == 0:
        raise ValidationError("Correlation is undefined for a constant series")
    r, p_value = pearsonr(xs, ys)
    fit = linregress(xs, ys)
    return Correlation(r=float(r), p_value=float(p_value), slope=float(fit.slope),
                       intercept=float(fit.intercept), r_squared=float(r) ** 2, n=len(pairs))


async def _sample(sampler: PointSampler, points, dataset_id: str, band: str):
    try:
        values = await sampler.sample_values(points, dataset_id, band)
    except RemoteSamplingError:
        raise
    except Exception as e:
        raise RemoteSamplingError(f"Sampling {dataset_id}/{band} failed: {e}") from e
    if values is None or len(values) != len(points):
        got = "nothing" if values is None else f"{len(values)} values"
        raise RemoteSamplingError(f"Sampler returned {got} for {len(points)} points")
    return [float(v) if is_number(v) else None for v in values]


async def elevation_profile(line: LineString, stations: int, sampler: PointSampler,
                            dataset_id: str, band: str, crs=WGS84) -> pd.DataFrame:
    """Raster values along a line: columns station, distance, lon, lat, value."""
    profile = sample_line(line, stations, crs=crs)
    points = [GeodeticPoint(lon, lat) for lon, lat in zip(profile["lon"], profile["lat"])]
    profile["value"] = await _sample(sampler, points, dataset_id, band)
    logger.debug(f"[profile] {stations} stations sampled from {dataset_id}/{band}")
    return profile


async def compare_profiles(line: LineString, stations: int, sampler: PointSampler,
                           first: Tuple[str, str], second: Tuple[str, str],
                           crs=WGS84) -> Tuple[pd.DataFrame, Correlation]:
    """
    Sample two (dataset, band) pairs along the same line and correlate them.
    The profile frame carries `value_a` and `value_b`.
    """
    profile = sample_line(line, stations, crs=crs)
    points = [GeodeticPoint(lon, lat) for lon, lat in zip(profile["lon"], profile["lat"])]
    values_a, values_b = await asyncio.gather(
        _sample(sampler, points, *first),
        _sample(sampler, points, *second),
    )
    profile["value_a"] = values_a
    profile["value_b"] = values_b
    return profile, correlate(values_a, values_b)
