"""
Pytest configuration and shared fixtures.

This module provides common fixtures used across test modules.
"""

import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
from shapely.geometry import Point, box


# UTM zone 18N (meters); covers New York City
TEST_CRS = "EPSG:32618"


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    from siting_atlas.paths import get_project_root
    return get_project_root()


@pytest.fixture(scope="session")
def params_config():
    """Load the params.yml configuration."""
    from siting_atlas.io_utils import read_yaml
    from siting_atlas.paths import paths
    return read_yaml(paths.params_yml)


@pytest.fixture
def square_universe():
    """A 10 x 10 square universe at the origin."""
    from siting_atlas.region import Universe
    return Universe(geometry=box(0, 0, 10, 10), crs=TEST_CRS)


@pytest.fixture
def city_universe():
    """A 2 km square universe in lower Manhattan, for reprojection tests."""
    from siting_atlas.region import Universe
    return Universe(geometry=box(583000, 4506000, 585000, 4508000), crs=TEST_CRS)


def make_points(coords, values=None, names=None, crs=TEST_CRS):
    """Build a normalized point-feature frame."""
    n = len(coords)
    return gpd.GeoDataFrame(
        {
            "name": pd.Series(names or [f"p{i}" for i in range(n)], dtype=object),
            "value": pd.Series(values if values is not None else [np.nan] * n, dtype="float64"),
        },
        geometry=[Point(x, y) for x, y in coords],
        crs=crs,
    )


def make_categories(polygons, categories, crs=TEST_CRS):
    """Build a normalized category-polygon frame."""
    return gpd.GeoDataFrame(
        {"category": pd.Series(categories, dtype=object)},
        geometry=list(polygons),
        crs=crs,
    )


@pytest.fixture
def zoning_frame():
    """Four 5 x 5 quadrants of the square universe with zoning codes."""
    return make_categories(
        [box(0, 0, 5, 5), box(5, 0, 10, 5), box(0, 5, 5, 10), box(5, 5, 10, 10)],
        ["MX-1", "R6", "M1-1", None],
    )


# =============================================================================
# Routing service doubles
# =============================================================================

class StubIsochroneService:
    """
    In-process routing service.

    Returns `reachable` (a polygon in `crs`) reprojected to WGS84, the way
    the live service answers. Records every call.
    """

    def __init__(self, reachable=None, crs=TEST_CRS, location=(40.7128, -74.0060), error=None):
        self.reachable = reachable
        self.crs = crs
        self.location = location
        self.error = error
        self.calls = []

    def geocode(self, query):
        self.calls.append(("geocode", query))
        if self.error:
            raise self.error
        return self.location

    def isochrone(self, lat, lon, profile, max_distance_m):
        self.calls.append(("isochrone", lat, lon, profile, max_distance_m))
        if self.error:
            raise self.error
        return gpd.GeoSeries([self.reachable], crs=self.crs).to_crs("EPSG:4326").iloc[0]


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class FakeSession:
    """
    Replays a scripted sequence of responses or exceptions.

    Each call to request() consumes the next item; exceptions are raised.
    """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def isochrone_payload(coords):
    """openrouteservice-style FeatureCollection with one polygon ring."""
    return {
        "type": "FeatureCollection",
        "features": [{
            "type": "Feature",
            "properties": {"group_index": 0, "value": 800.0},
            "geometry": {"type": "Polygon", "coordinates": [coords]},
        }],
    }


# Markers for test categorization
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "smoke: mark test as smoke test (quick sanity checks)"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (reads files, runs the full pipeline)"
    )
