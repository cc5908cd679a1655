"""
Routing and geocoding collaborator.

The isochrone rule is the only part of the pipeline that leaves the
machine. Everything it needs goes through the IsochroneService protocol,
so tests and offline runs can supply stubbed geometry.

OpenRouteServiceClient talks to the openrouteservice REST API:
    GET  /geocode/search?text=...          -> (lat, lon)
    POST /v2/isochrones/{profile}          -> reachable polygon (EPSG:4326)

Requests time out after `timeout` seconds and are retried once when the
failure is transient (connection error, timeout, HTTP 429 or 5xx). HTTP 4xx
responses and unusable geometry are permanent and raised immediately.

CachedIsochroneService memoizes results by a digest of the request
parameters, in memory and optionally as JSON files on disk.
"""

import logging
import threading
from pathlib import Path
from typing import Any, Protocol

import requests
from shapely.geometry import mapping, shape
from shapely.geometry.base import BaseGeometry

from siting_atlas.errors import ServiceError
from siting_atlas.geometry_utils import as_polygonal
from siting_atlas.hashing import hash_dict
from siting_atlas.io_utils import atomic_write_json, read_json

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openrouteservice.org"
DEFAULT_TIMEOUT = 30.0
MAX_ATTEMPTS = 2  # one retry on transient failure

PROFILE_ALIASES = {
    "walking": "foot-walking",
    "foot": "foot-walking",
    "driving": "driving-car",
    "car": "driving-car",
    "cycling": "cycling-regular",
    "bike": "cycling-regular",
}


def normalize_profile(profile: str) -> str:
    """Map a friendly travel profile name to the service's profile id."""
    return PROFILE_ALIASES.get(profile.lower(), profile)


class IsochroneService(Protocol):
    """Reachable-area and geocoding lookups. Coordinates are WGS84."""

    def geocode(self, query: str) -> tuple[float, float]:
        """Return (lat, lon) for a place query."""
        ...

    def isochrone(
        self, lat: float, lon: float, profile: str, max_distance_m: float
    ) -> BaseGeometry:
        """Return the polygon reachable within `max_distance_m` meters."""
        ...


# =============================================================================
# openrouteservice client
# =============================================================================

class OpenRouteServiceClient:
    """Client for the openrouteservice geocoding and isochrone APIs."""

    def __init__(
        self,
        api_key: str | None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        session: Any = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        # requests module or a requests.Session; both expose .request()
        self.http = session if session is not None else requests

    def _request_once(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self.base_url}{path}"
        try:
            response = self.http.request(method, url, timeout=self.timeout, **kwargs)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise ServiceError(f"{method} {path} failed: {e}", transient=True) from e
        except requests.exceptions.RequestException as e:
            raise ServiceError(f"{method} {path} failed: {e}") from e

        status = response.status_code
        if status == 429 or status >= 500:
            raise ServiceError(f"{method} {path} returned HTTP {status}", transient=True)
        if status >= 400:
            raise ServiceError(f"{method} {path} returned HTTP {status}: {response.text[:200]}")

        try:
            return response.json()
        except ValueError as e:
            raise ServiceError(f"{method} {path} returned invalid JSON") from e

    def _request(self, method: str, path: str, **kwargs) -> dict:
        """Send a request, retrying once on transient failure."""
        if not self.api_key:
            raise ServiceError("No routing service API key configured")

        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                return self._request_once(method, path, **kwargs)
            except ServiceError as e:
                if not e.transient or attempt == MAX_ATTEMPTS:
                    raise
                logger.warning(f"Transient routing failure (attempt {attempt}), retrying: {e}")

    def geocode(self, query: str) -> tuple[float, float]:
        data = self._request(
            "GET", "/geocode/search",
            params={"api_key": self.api_key, "text": query, "size": 1},
        )
        features = data.get("features") or []
        if not features:
            raise ServiceError(f"No geocoding match for '{query}'")
        try:
            lon, lat = (float(c) for c in features[0]["geometry"]["coordinates"][:2])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ServiceError(f"Geocoding response for '{query}' has no readable point: {e!r}") from e
        logger.info(f"Geocoded '{query}' to ({lat:.6f}, {lon:.6f})")
        return lat, lon

    def isochrone(
        self, lat: float, lon: float, profile: str, max_distance_m: float
    ) -> BaseGeometry:
        profile = normalize_profile(profile)
        data = self._request(
            "POST", f"/v2/isochrones/{profile}",
            json={
                "locations": [[lon, lat]],
                "range": [max_distance_m],
                "range_type": "distance",
            },
            headers={"Authorization": self.api_key},
        )
        features = data.get("features") or []
        if not features:
            raise ServiceError("Isochrone response contained no features")
        try:
            geom = shape(features[0]["geometry"])
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ServiceError(f"Isochrone response geometry is unreadable: {e}") from e

        polygon = as_polygonal(geom)
        if polygon.is_empty or not polygon.is_valid:
            raise ServiceError(f"Isochrone response geometry is not a valid polygon ({geom.geom_type})")
        return polygon


# =============================================================================
# Memoization
# =============================================================================

class CachedIsochroneService:
    """
    Memoizing wrapper around an IsochroneService.

    Identical requests return the identical geometry without calling the
    wrapped service again. With a cache_dir, results also persist across
    runs as one JSON file per request digest.
    """

    def __init__(self, inner: IsochroneService, cache_dir: Path | str | None = None):
        self.inner = inner
        self.cache_dir = Path(cache_dir) if cache_dir else None
        self._memo: dict[str, Any] = {}
        self._lock = threading.Lock()

    def _cache_path(self, key: str) -> Path | None:
        return self.cache_dir / f"{key}.json" if self.cache_dir else None

    def _lookup(self, key: str) -> Any:
        with self._lock:
            if key in self._memo:
                return self._memo[key]
        path = self._cache_path(key)
        if path is not None and path.exists():
            try:
                value = read_json(path)["value"]
            except (ValueError, KeyError, TypeError) as e:
                logger.warning(f"Ignoring unreadable routing cache entry {path.name}: {e!r}")
                return None
            with self._lock:
                self._memo[key] = value
            logger.debug(f"Routing cache hit on disk: {path.name}")
            return value
        return None

    def _store(self, key: str, request: dict, value: Any) -> None:
        with self._lock:
            self._memo[key] = value
        path = self._cache_path(key)
        if path is not None:
            atomic_write_json(path, {"request": request, "value": value})

    def geocode(self, query: str) -> tuple[float, float]:
        request = {"op": "geocode", "query": query}
        key = hash_dict(request)
        cached = self._lookup(key)
        if cached is not None:
            return tuple(cached)
        lat, lon = self.inner.geocode(query)
        self._store(key, request, [lat, lon])
        return lat, lon

    def isochrone(
        self, lat: float, lon: float, profile: str, max_distance_m: float
    ) -> BaseGeometry:
        request = {
            "op": "isochrone",
            "lat": round(float(lat), 7),
            "lon": round(float(lon), 7),
            "profile": normalize_profile(profile),
            "max_distance_m": round(float(max_distance_m), 3),
        }
        key = hash_dict(request)
        cached = self._lookup(key)
        if cached is not None:
            return shape(cached)
        geom = self.inner.isochrone(lat, lon, profile, max_distance_m)
        self._store(key, request, mapping(geom))
        return geom
