"""
Tests for siting_atlas.isochrone module.

Tests cover:
- openrouteservice request shape and response parsing
- Timeout/retry policy: one retry on transient failure, none on permanent
- Memoization in memory and on disk
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
import requests
from shapely.geometry import box

from conftest import FakeResponse, FakeSession, isochrone_payload
from siting_atlas.errors import ServiceError
from siting_atlas.isochrone import (
    CachedIsochroneService,
    OpenRouteServiceClient,
    normalize_profile,
)


RING = [[-74.01, 40.70], [-74.00, 40.70], [-74.00, 40.71], [-74.01, 40.71], [-74.01, 40.70]]

GEOCODE_PAYLOAD = {
    "type": "FeatureCollection",
    "features": [{
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": [-74.0059, 40.7127]},
        "properties": {"label": "City Hall, New York, NY, USA"},
    }],
}


def make_client(*responses):
    session = FakeSession(*responses)
    client = OpenRouteServiceClient("test-key", base_url="https://ors.test/", timeout=5, session=session)
    return client, session


class TestOpenRouteServiceClient:
    """Tests for OpenRouteServiceClient requests and parsing."""

    def test_isochrone_request(self):
        client, session = make_client(FakeResponse(200, isochrone_payload(RING)))
        client.isochrone(40.705, -74.005, "walking", 800.0)

        method, url, kwargs = session.requests[0]
        assert method == "POST"
        assert url == "https://ors.test/v2/isochrones/foot-walking"
        assert kwargs["timeout"] == 5
        assert kwargs["json"] == {
            "locations": [[-74.005, 40.705]],
            "range": [800.0],
            "range_type": "distance",
        }
        assert kwargs["headers"]["Authorization"] == "test-key"

    def test_isochrone_geometry(self):
        client, _ = make_client(FakeResponse(200, isochrone_payload(RING)))
        geom = client.isochrone(40.705, -74.005, "foot-walking", 800.0)
        assert geom.geom_type == "Polygon"
        assert geom.bounds == pytest.approx((-74.01, 40.70, -74.00, 40.71))

    def test_geocode(self):
        client, session = make_client(FakeResponse(200, GEOCODE_PAYLOAD))
        lat, lon = client.geocode("City Hall, New York")
        assert (lat, lon) == (40.7127, -74.0059)

        method, url, kwargs = session.requests[0]
        assert method == "GET"
        assert url == "https://ors.test/geocode/search"
        assert kwargs["params"]["text"] == "City Hall, New York"

    def test_geocode_no_match(self):
        client, _ = make_client(FakeResponse(200, {"features": []}))
        with pytest.raises(ServiceError, match="No geocoding match"):
            client.geocode("Atlantis")

    @pytest.mark.parametrize("feature", [
        {"type": "Feature", "properties": {}},
        {"type": "Feature", "geometry": {"type": "Point", "coordinates": []}},
        {"type": "Feature", "geometry": {"type": "Point", "coordinates": ["east", "north"]}},
    ])
    def test_geocode_unreadable_point(self, feature):
        client, _ = make_client(FakeResponse(200, {"features": [feature]}))
        with pytest.raises(ServiceError, match="no readable point") as excinfo:
            client.geocode("City Hall")
        assert not excinfo.value.transient

    def test_missing_api_key(self):
        client = OpenRouteServiceClient(None, session=FakeSession())
        with pytest.raises(ServiceError, match="API key"):
            client.isochrone(40.7, -74.0, "walking", 800)

    def test_profile_aliases(self):
        assert normalize_profile("walking") == "foot-walking"
        assert normalize_profile("Driving") == "driving-car"
        assert normalize_profile("wheelchair") == "wheelchair"


class TestRetryPolicy:
    """A transient failure is retried exactly once; permanent ones never."""

    def test_retries_once_on_server_error(self):
        client, session = make_client(
            FakeResponse(503, text="unavailable"),
            FakeResponse(200, isochrone_payload(RING)),
        )
        geom = client.isochrone(40.705, -74.005, "walking", 800)
        assert not geom.is_empty
        assert len(session.requests) == 2

    def test_retries_once_on_timeout(self):
        client, session = make_client(
            requests.exceptions.Timeout("read timed out"),
            FakeResponse(200, isochrone_payload(RING)),
        )
        client.isochrone(40.705, -74.005, "walking", 800)
        assert len(session.requests) == 2

    def test_gives_up_after_second_transient_failure(self):
        client, session = make_client(
            requests.exceptions.ConnectionError("refused"),
            FakeResponse(429, text="rate limited"),
            FakeResponse(200, isochrone_payload(RING)),
        )
        with pytest.raises(ServiceError) as excinfo:
            client.isochrone(40.705, -74.005, "walking", 800)
        assert excinfo.value.transient
        assert len(session.requests) == 2

    def test_no_retry_on_client_error(self):
        client, session = make_client(
            FakeResponse(400, text="invalid range"),
            FakeResponse(200, isochrone_payload(RING)),
        )
        with pytest.raises(ServiceError, match="HTTP 400") as excinfo:
            client.isochrone(40.705, -74.005, "walking", 800)
        assert not excinfo.value.transient
        assert len(session.requests) == 1

    def test_no_retry_on_invalid_geometry(self):
        bowtie = [[0, 0], [1, 1], [1, 0], [0, 1], [0, 0]]
        client, session = make_client(
            FakeResponse(200, isochrone_payload(bowtie)),
            FakeResponse(200, isochrone_payload(RING)),
        )
        with pytest.raises(ServiceError, match="not a valid polygon"):
            client.isochrone(40.705, -74.005, "walking", 800)
        assert len(session.requests) == 1

    def test_no_retry_on_invalid_json(self):
        client, session = make_client(FakeResponse(200, None), FakeResponse(200, isochrone_payload(RING)))
        with pytest.raises(ServiceError, match="invalid JSON"):
            client.isochrone(40.705, -74.005, "walking", 800)
        assert len(session.requests) == 1

    def test_empty_feature_collection(self):
        client, _ = make_client(FakeResponse(200, {"type": "FeatureCollection", "features": []}))
        with pytest.raises(ServiceError, match="no features"):
            client.isochrone(40.705, -74.005, "walking", 800)


class CountingService:
    """Routing double that counts calls."""

    def __init__(self):
        self.isochrone_calls = 0
        self.geocode_calls = 0

    def geocode(self, query):
        self.geocode_calls += 1
        return (40.7127, -74.0059)

    def isochrone(self, lat, lon, profile, max_distance_m):
        self.isochrone_calls += 1
        return box(lon - 0.01, lat - 0.01, lon + 0.01, lat + 0.01)


class TestCachedIsochroneService:
    """Tests for memoization."""

    def test_identical_requests_hit_memory(self):
        inner = CountingService()
        service = CachedIsochroneService(inner)
        first = service.isochrone(40.7, -74.0, "walking", 800)
        second = service.isochrone(40.7, -74.0, "walking", 800)
        assert inner.isochrone_calls == 1
        assert first.equals(second)

    def test_profile_alias_shares_entry(self):
        inner = CountingService()
        service = CachedIsochroneService(inner)
        service.isochrone(40.7, -74.0, "walking", 800)
        service.isochrone(40.7, -74.0, "foot-walking", 800)
        assert inner.isochrone_calls == 1

    def test_different_parameters_miss(self):
        inner = CountingService()
        service = CachedIsochroneService(inner)
        service.isochrone(40.7, -74.0, "walking", 800)
        service.isochrone(40.7, -74.0, "walking", 1600)
        assert inner.isochrone_calls == 2

    def test_geocode_cached(self):
        inner = CountingService()
        service = CachedIsochroneService(inner)
        assert service.geocode("City Hall") == service.geocode("City Hall") == (40.7127, -74.0059)
        assert inner.geocode_calls == 1

    def test_disk_cache_survives_new_instance(self, tmp_path):
        inner = CountingService()
        first = CachedIsochroneService(inner, cache_dir=tmp_path)
        geom = first.isochrone(40.7, -74.0, "walking", 800)
        assert len(list(tmp_path.glob("*.json"))) == 1

        second = CachedIsochroneService(inner, cache_dir=tmp_path)
        cached = second.isochrone(40.7, -74.0, "walking", 800)
        assert inner.isochrone_calls == 1
        assert cached.equals(geom)

    def test_corrupt_disk_entry_is_a_miss(self, tmp_path):
        inner = CountingService()
        CachedIsochroneService(inner, cache_dir=tmp_path).isochrone(40.7, -74.0, "walking", 800)
        (entry,) = tmp_path.glob("*.json")
        entry.write_text("{truncated")

        geom = CachedIsochroneService(inner, cache_dir=tmp_path).isochrone(40.7, -74.0, "walking", 800)
        assert not geom.is_empty
        assert inner.isochrone_calls == 2

    def test_errors_not_cached(self):
        class FlakyService(CountingService):
            def isochrone(self, lat, lon, profile, max_distance_m):
                self.isochrone_calls += 1
                if self.isochrone_calls == 1:
                    raise ServiceError("HTTP 503", transient=True)
                return super().isochrone(lat, lon, profile, max_distance_m)

        inner = FlakyService()
        service = CachedIsochroneService(inner)
        with pytest.raises(ServiceError):
            service.isochrone(40.7, -74.0, "walking", 800)
        assert not service.isochrone(40.7, -74.0, "walking", 800).is_empty


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
