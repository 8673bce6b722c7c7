"""
Pytest configuration and shared fixtures for geoworkbench tests.

Layers are small in-memory GeoDataFrames: planar fixtures use a UTM CRS
(meters), lon/lat fixtures use EPSG:4326.
"""

import sys
from pathlib import Path

import geopandas as gpd
import pytest
from shapely.geometry import LineString, Point, box

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent

# Add project root to sys.path for geoworkbench imports
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from geoworkbench.config import WorkbenchConfig  # noqa: E402
from geoworkbench.geodesy import GeodeticPoint  # noqa: E402

UTM = "EPSG:32633"
WGS84 = "EPSG:4326"


def make_layer(rows, geometries, crs=UTM, ids=None):
    """GeoDataFrame with string ids f1, f2, ... unless ids are given."""
    ids = ids or [f"f{i + 1}" for i in range(len(geometries))]
    gdf = gpd.GeoDataFrame(rows, geometry=geometries, crs=crs, index=ids)
    gdf.index.name = "id"
    return gdf


class FakeSampler:
    """Point sampler returning a value derived from each point, per band."""

    def __init__(self, fail: bool = False, short: bool = False):
        self.fail = fail
        self.short = short
        self.calls = []

    async def sample_values(self, points, dataset_id, band):
        self.calls.append((dataset_id, band, len(points)))
        if self.fail:
            raise RuntimeError("remote service unavailable")
        values = [float(i) if band != "b" else 2.0 * i + 1.0 for i, _ in enumerate(points)]
        return values[:-1] if self.short else values


@pytest.fixture
def project_root():
    """Returns the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def config():
    return WorkbenchConfig()


@pytest.fixture
def squares():
    """Two adjacent 10 x 10 squares plus one detached square."""
    return make_layer(
        {"name": ["a", "b", "c"], "group": ["x", "x", "y"], "pop": [100.0, 200.0, 300.0]},
        [box(0, 0, 10, 10), box(10, 0, 20, 10), box(50, 50, 60, 60)],
    )


@pytest.fixture
def mask():
    """Square covering the right half of the first square and the left half of the second."""
    return make_layer({"label": ["mask"]}, [box(5, 0, 15, 10)], ids=["m1"])


@pytest.fixture
def corner_points():
    return make_layer(
        {"value": [1.0, 2.0, 3.0, 4.0, 5.0]},
        [Point(0, 0), Point(10, 0), Point(10, 10), Point(0, 10), Point(5, 5)],
    )


@pytest.fixture
def straight_line():
    return make_layer({"name": ["river"]}, [LineString([(0, 0), (100, 0)])], ids=["l1"])


@pytest.fixture
def origin():
    return GeodeticPoint(30.0, 40.0)


@pytest.fixture
def timestamps():
    return "2024-05-01T10:00:00", "2024-05-01T11:00:00"


@pytest.fixture
def fake_sampler():
    return FakeSampler()


@pytest.fixture
def layer_factory():
    return make_layer


@pytest.fixture
def sampler_factory():
    return FakeSampler
