"""
Exclusion rules and their evaluators.

A rule is an immutable, named criterion. Each kind maps to one geometric
operation:

    proximity_buffer        union of disks around qualifying points
    category_exclusion      union of polygons whose category is not allowed
    isochrone_complement    universe minus the area reachable from a point
    attribute_incompatible  universe minus a manually curated feature list

Every evaluated exclusion is clipped to the universe as its last step.
Evaluators raise DataError for missing inputs, ServiceError for routing
failures and UnevaluatedRule when a criterion cannot be computed.
"""

import logging
from dataclasses import dataclass, fields
from typing import Any, Callable, ClassVar, Mapping

import geopandas as gpd
from shapely.geometry.base import BaseGeometry

from siting_atlas.config import crs_linear_unit, parse_distance
from siting_atlas.errors import ConfigError, DataError, ServiceError, UnevaluatedRule
from siting_atlas.geometry_utils import as_polygonal, clip, empty_polygon, repair
from siting_atlas.isochrone import IsochroneService
from siting_atlas.qa import check_contained
from siting_atlas.region import Universe

logger = logging.getLogger(__name__)

WGS84 = "EPSG:4326"

# Dataset name -> loaded frame, or the DataError raised while loading it
Features = Mapping[str, "gpd.GeoDataFrame | DataError | None"]


# =============================================================================
# Rule kinds
# =============================================================================

@dataclass(frozen=True)
class ProximityBuffer:
    """Exclude land within `distance` of qualifying point features.

    When `attribute_above` is set, only points whose value exceeds it
    qualify. Points with an unknown value still qualify.
    """
    name: str
    dataset: str
    distance: float
    attribute_above: float | None = None

    kind: ClassVar[str] = "proximity_buffer"
    dataset_schema: ClassVar[str] = "point_features"

    def __post_init__(self):
        if self.distance < 0:
            raise ConfigError(f"Rule '{self.name}': distance must be non-negative")

    def parameters(self) -> dict[str, Any]:
        return {
            "dataset": self.dataset,
            "distance": self.distance,
            "attribute_above": self.attribute_above,
        }


@dataclass(frozen=True)
class CategoryExclusion:
    """Exclude polygons whose category is not in `allowed`.

    Polygons with a missing or unrecognized category are excluded.
    """
    name: str
    dataset: str
    allowed: tuple[str, ...]

    kind: ClassVar[str] = "category_exclusion"
    dataset_schema: ClassVar[str] = "category_polygons"

    def parameters(self) -> dict[str, Any]:
        return {"dataset": self.dataset, "allowed": sorted(self.allowed)}


@dataclass(frozen=True)
class IsochroneComplement:
    """Exclude land farther than `max_distance` of travel from a reference point.

    The point is given either as lat/lon (WGS84) or as a geocoding query.
    `max_distance` is in CRS units.
    """
    name: str
    profile: str
    max_distance: float
    lat: float | None = None
    lon: float | None = None
    query: str | None = None

    kind: ClassVar[str] = "isochrone_complement"
    dataset_schema: ClassVar[str | None] = None

    def __post_init__(self):
        has_point = self.lat is not None and self.lon is not None
        if has_point == bool(self.query):
            raise ConfigError(
                f"Rule '{self.name}': give either lat/lon or query for the reference point"
            )
        if self.max_distance <= 0:
            raise ConfigError(f"Rule '{self.name}': max_distance must be positive")

    def parameters(self) -> dict[str, Any]:
        return {
            "profile": self.profile,
            "max_distance": self.max_distance,
            "lat": self.lat,
            "lon": self.lon,
            "query": self.query,
        }


@dataclass(frozen=True)
class AttributeIncompatible:
    """A criterion that needs a manually curated feature list.

    Land not covered by the curated features (buffered by `buffer`) is
    excluded. Without a curated list the rule is unevaluated.
    """
    name: str
    description: str = ""
    dataset: str | None = None
    buffer: float = 0.0

    kind: ClassVar[str] = "attribute_incompatible"
    dataset_schema: ClassVar[str] = "curated_features"

    def parameters(self) -> dict[str, Any]:
        return {"description": self.description, "dataset": self.dataset, "buffer": self.buffer}


Rule = ProximityBuffer | CategoryExclusion | IsochroneComplement | AttributeIncompatible

RULE_KINDS: dict[str, type] = {
    cls.kind: cls
    for cls in (ProximityBuffer, CategoryExclusion, IsochroneComplement, AttributeIncompatible)
}


# =============================================================================
# Evaluators
# =============================================================================

def _require_dataset(features: Features, dataset: str, rule_name: str) -> gpd.GeoDataFrame:
    gdf = features.get(dataset)
    if isinstance(gdf, DataError):
        raise gdf
    if gdf is None:
        raise DataError(f"Rule '{rule_name}' needs dataset '{dataset}', which is not loaded")
    if len(gdf) == 0:
        raise DataError(f"Rule '{rule_name}': dataset '{dataset}' is empty")
    return gdf


def _evaluate_proximity(rule: ProximityBuffer, universe: Universe,
                        features: Features, service) -> BaseGeometry:
    points = _require_dataset(features, rule.dataset, rule.name)

    if rule.attribute_above is not None:
        if "value" not in points.columns or points["value"].isna().all():
            raise DataError(
                f"Rule '{rule.name}' filters on attribute_above but dataset '{rule.dataset}' "
                f"has no attribute values (set attribute_column)"
            )
        values = points["value"]
        points = points[values.isna() | (values > rule.attribute_above)]
        logger.info(f"{rule.name}: {len(points)} features qualify (value > {rule.attribute_above})")

    if rule.distance == 0 or len(points) == 0:
        return empty_polygon()

    return points.geometry.buffer(rule.distance).union_all()


def _evaluate_category(rule: CategoryExclusion, universe: Universe,
                       features: Features, service) -> BaseGeometry:
    polygons = _require_dataset(features, rule.dataset, rule.name)
    if "category" not in polygons.columns:
        raise DataError(f"Rule '{rule.name}': dataset '{rule.dataset}' has no categories")

    category = polygons["category"]
    excluded = polygons[category.isna() | ~category.isin(set(rule.allowed))]

    unknown = int(category.isna().sum())
    if unknown:
        logger.warning(f"{rule.name}: {unknown} polygons without a category treated as excluded")

    if len(excluded) == 0:
        return empty_polygon()
    return excluded.geometry.union_all()


def _evaluate_isochrone(rule: IsochroneComplement, universe: Universe,
                        features: Features, service: IsochroneService | None) -> BaseGeometry:
    if service is None:
        raise ServiceError(f"Rule '{rule.name}' needs a routing service, none configured")

    if rule.query:
        lat, lon = service.geocode(rule.query)
    else:
        lat, lon = rule.lat, rule.lon

    _, meters_per_unit = crs_linear_unit(universe.crs)
    reachable = service.isochrone(lat, lon, rule.profile, rule.max_distance * meters_per_unit)

    projected = gpd.GeoSeries([reachable], crs=WGS84).to_crs(universe.crs).iloc[0]
    return universe.geometry.difference(repair(projected))


def _evaluate_attribute(rule: AttributeIncompatible, universe: Universe,
                        features: Features, service) -> BaseGeometry:
    what = rule.description or rule.name
    curated = features.get(rule.dataset) if rule.dataset else None
    if isinstance(curated, DataError):
        raise UnevaluatedRule(f"{what}: curated list unavailable ({curated})")
    if curated is None or len(curated) == 0:
        raise UnevaluatedRule(f"{what}: no curated feature list available")

    shapes = curated.geometry
    if rule.buffer > 0:
        shapes = shapes.buffer(rule.buffer)
    compatible = as_polygonal(shapes.union_all())
    if compatible.is_empty:
        raise UnevaluatedRule(f"{what}: curated features are not areas; set buffer")
    return universe.geometry.difference(compatible)


EVALUATORS: dict[type, Callable[..., BaseGeometry]] = {
    ProximityBuffer: _evaluate_proximity,
    CategoryExclusion: _evaluate_category,
    IsochroneComplement: _evaluate_isochrone,
    AttributeIncompatible: _evaluate_attribute,
}


def evaluate(
    rule: Rule,
    universe: Universe,
    features: Features | None = None,
    service: IsochroneService | None = None,
) -> BaseGeometry:
    """
    Compute the exclusion geometry of one rule.

    Args:
        rule: Rule to evaluate.
        universe: Admissible region.
        features: Loaded datasets by name (see siting_atlas.pipeline.load_features).
        service: Routing collaborator, required by isochrone rules.

    Returns:
        Valid Polygon/MultiPolygon contained in the universe (possibly empty).

    Raises:
        DataError: A required dataset is missing or empty.
        ServiceError: The routing service call failed.
        UnevaluatedRule: The criterion cannot be computed from available data.
    """
    evaluator = EVALUATORS.get(type(rule))
    if evaluator is None:
        raise ConfigError(f"No evaluator for rule type {type(rule).__name__}")

    raw = evaluator(rule, universe, features or {}, service)
    exclusion = clip(repair(raw), universe.geometry)
    check_contained(exclusion, universe.geometry, name=rule.name, logger=logger)
    return exclusion


# =============================================================================
# Construction from configuration
# =============================================================================

def _optional_float(value: Any, label: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{label} must be a number, got {value!r}")
    return float(value)


def _build_params(cls: type, params: dict[str, Any], crs: str) -> dict[str, Any]:
    if cls is ProximityBuffer:
        return {
            "dataset": params["dataset"],
            "distance": parse_distance(params["distance"], crs),
            "attribute_above": _optional_float(params.get("attribute_above"), "attribute_above"),
        }
    if cls is CategoryExclusion:
        allowed = params["allowed"]
        if isinstance(allowed, str) or not isinstance(allowed, (list, tuple, set)):
            raise ConfigError(f"'allowed' must be a list of categories, got {allowed!r}")
        return {
            "dataset": params["dataset"],
            "allowed": tuple(sorted(str(c).strip() for c in allowed)),
        }
    if cls is IsochroneComplement:
        return {
            "profile": params.get("profile", "foot-walking"),
            "max_distance": parse_distance(params["max_distance"], crs),
            "lat": _optional_float(params.get("lat"), "lat"),
            "lon": _optional_float(params.get("lon"), "lon"),
            "query": params.get("query"),
        }
    return {
        "description": params.get("description", ""),
        "dataset": params.get("dataset"),
        "buffer": parse_distance(params.get("buffer", 0), crs),
    }


def build_rule(entry: dict[str, Any], crs: str) -> Rule:
    """
    Build a rule from one `rules:` entry of params.yml.

    Raises:
        ConfigError: Unknown kind, missing or unexpected parameters.
    """
    if not isinstance(entry, dict):
        raise ConfigError(f"Rule entry must be a mapping, got {entry!r}")

    params = dict(entry)
    name = params.pop("name", None)
    kind = params.pop("kind", None)
    if not name:
        raise ConfigError(f"Rule entry has no name: {entry!r}")
    if kind not in RULE_KINDS:
        raise ConfigError(f"Rule '{name}': unknown kind {kind!r}. Known: {sorted(RULE_KINDS)}")

    cls = RULE_KINDS[kind]
    known = {f.name for f in fields(cls)} - {"name"}
    unexpected = sorted(set(params) - known)
    if unexpected:
        raise ConfigError(f"Rule '{name}': unexpected parameters {unexpected}")

    try:
        return cls(name=str(name), **_build_params(cls, params, crs))
    except KeyError as e:
        raise ConfigError(f"Rule '{name}' is missing parameter {e}") from e
