"""
Siting pipeline: universe -> rule evaluation -> composition.

Each rule is evaluated in isolation. A failing rule is recorded as
unevaluated (with the error type) and the run continues, unless
`require_all_rules` is set, or the failure is a ServiceError and
`on_service_error` is "abort". Outcomes are always reported in rule
declaration order, also when rules run on a thread pool.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Sequence

import geopandas as gpd
from shapely.geometry.base import BaseGeometry

from siting_atlas.compositor import CompositionResult, EligibleArea, accumulate, compose
from siting_atlas.config import PipelineConfig
from siting_atlas.errors import ConfigError, DataError, ServiceError, UnevaluatedRule
from siting_atlas.isochrone import (
    CachedIsochroneService,
    IsochroneService,
    OpenRouteServiceClient,
)
from siting_atlas.logging_utils import get_run_id, log_rule_outcome, log_step_end, log_step_start
from siting_atlas.region import (
    Universe,
    load_category_polygons,
    load_curated_features,
    load_point_features,
    load_universe,
)
from siting_atlas.rules import IsochroneComplement, Rule, evaluate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuleOutcome:
    """Result of evaluating one rule."""
    rule: Rule
    status: str  # "evaluated" or "unevaluated"
    exclusion: BaseGeometry | None = None
    reason: str | None = None
    error_type: str | None = None

    @property
    def name(self) -> str:
        return self.rule.name

    @property
    def kind(self) -> str:
        return self.rule.kind

    @property
    def evaluated(self) -> bool:
        return self.status == "evaluated"

    @property
    def exclusion_area(self) -> float | None:
        return self.exclusion.area if self.exclusion is not None else None


@dataclass
class PipelineResult:
    """Everything a report renderer needs from one run."""
    run_id: str
    universe: Universe
    outcomes: list[RuleOutcome]
    result: CompositionResult

    @property
    def evaluated(self) -> list[RuleOutcome]:
        return [o for o in self.outcomes if o.evaluated]

    @property
    def unevaluated(self) -> list[RuleOutcome]:
        return [o for o in self.outcomes if not o.evaluated]

    @property
    def total_eligible_area(self) -> float:
        return self.result.area

    @property
    def is_viable(self) -> bool:
        return isinstance(self.result, EligibleArea)

    def layers(self) -> list[tuple[str, BaseGeometry]]:
        """Eligible geometry after each evaluated rule, in declaration order."""
        evaluated = self.evaluated
        steps = accumulate(self.universe.geometry, [o.exclusion for o in evaluated])
        return [(o.name, layer) for o, layer in zip(evaluated, steps)]


# =============================================================================
# Inputs
# =============================================================================

def load_features(config: PipelineConfig, universe: Universe) -> dict[str, Any]:
    """
    Load every dataset referenced by a configured rule.

    A dataset that fails to load maps to its DataError, so the failure is
    attributed to the rules that need it rather than aborting the run.

    Returns:
        Dict of dataset name -> normalized GeoDataFrame or DataError.
    """
    features: dict[str, Any] = {}

    for rule in config.rules:
        name = getattr(rule, "dataset", None)
        if not name or name in features:
            continue

        dataset = config.datasets.get(name)
        try:
            if dataset is None:
                raise DataError(f"Dataset '{name}' is not configured")
            if rule.dataset_schema == "point_features":
                gdf = load_point_features(dataset.path, universe,
                                          dataset.name_column, dataset.attribute_column)
            elif rule.dataset_schema == "category_polygons":
                if not dataset.category_column:
                    raise DataError(f"Dataset '{name}' has no category_column configured")
                gdf = load_category_polygons(dataset.path, universe, dataset.category_column)
            else:
                gdf = load_curated_features(dataset.path, universe, dataset.name_column)
        except DataError as e:
            logger.warning(f"Dataset '{name}' unavailable: {e}")
            features[name] = e
            continue

        logger.info(f"Loaded dataset '{name}': {len(gdf)} features")
        features[name] = gdf

    return features


def build_service(config: PipelineConfig) -> IsochroneService:
    """Create the cached openrouteservice client described by the config."""
    iso = config.isochrone
    client = OpenRouteServiceClient(
        api_key=iso.api_key,
        base_url=iso.base_url,
        timeout=iso.timeout,
    )
    return CachedIsochroneService(client, cache_dir=iso.cache_dir)


# =============================================================================
# Evaluation
# =============================================================================

def evaluate_rule(
    rule: Rule,
    universe: Universe,
    features: dict[str, Any],
    service: IsochroneService | None = None,
    on_service_error: str = "skip",
    require_all_rules: bool = False,
) -> RuleOutcome:
    """
    Evaluate one rule, turning isolated failures into unevaluated outcomes.

    Raises:
        ServiceError: When on_service_error is "abort" or require_all_rules is set.
        DataError, UnevaluatedRule: When require_all_rules is set.
    """
    try:
        exclusion = evaluate(rule, universe, features, service)
    except UnevaluatedRule as e:
        if require_all_rules:
            raise
        outcome = RuleOutcome(rule=rule, status="unevaluated", reason=e.reason)
    except ServiceError as e:
        if require_all_rules or on_service_error == "abort":
            raise
        outcome = RuleOutcome(rule=rule, status="unevaluated",
                              reason=f"Routing service failed: {e}", error_type="ServiceError")
    except DataError as e:
        if require_all_rules:
            raise
        outcome = RuleOutcome(rule=rule, status="unevaluated",
                              reason=str(e), error_type="DataError")
    else:
        outcome = RuleOutcome(rule=rule, status="evaluated", exclusion=exclusion)

    log_rule_outcome(logger, outcome.name, outcome.kind, outcome.status,
                     area=outcome.exclusion_area, reason=outcome.reason,
                     error_type=outcome.error_type)
    return outcome


def evaluate_rules(
    rules: Sequence[Rule],
    universe: Universe,
    features: dict[str, Any] | None = None,
    service: IsochroneService | None = None,
    on_service_error: str = "skip",
    require_all_rules: bool = False,
    max_workers: int = 1,
) -> list[RuleOutcome]:
    """Evaluate rules, returning outcomes in declaration order."""
    features = features or {}
    kwargs = dict(service=service, on_service_error=on_service_error,
                  require_all_rules=require_all_rules)

    if max_workers <= 1 or len(rules) <= 1:
        return [evaluate_rule(rule, universe, features, **kwargs) for rule in rules]

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = [pool.submit(evaluate_rule, rule, universe, features, **kwargs)
                   for rule in rules]
        return [future.result() for future in futures]


def run_pipeline(
    config: PipelineConfig,
    universe: Universe | None = None,
    features: dict[str, Any] | None = None,
    service: IsochroneService | None = None,
    run_id: str | None = None,
) -> PipelineResult:
    """
    Run the full siting analysis described by `config`.

    Args:
        config: Pipeline configuration with rules.
        universe: Pre-loaded universe; loaded from config.boundary if omitted.
        features: Pre-loaded datasets; loaded from config.datasets if omitted.
        service: Routing collaborator; built from config.isochrone when an
            isochrone rule is configured and none is given.
        run_id: Identifier recorded in the result (defaults to the logging run ID).

    Returns:
        PipelineResult with per-rule outcomes and the composed result.
    """
    log_step_start(logger, "run_pipeline", rules=len(config.rules))

    if universe is None:
        if config.boundary is None:
            raise ConfigError("No boundary dataset configured")
        universe = load_universe(config.boundary, config.crs)

    if features is None:
        features = load_features(config, universe)

    if service is None and any(isinstance(r, IsochroneComplement) for r in config.rules):
        service = build_service(config)

    outcomes = evaluate_rules(
        config.rules,
        universe,
        features,
        service=service,
        on_service_error=config.on_service_error,
        require_all_rules=config.require_all_rules,
        max_workers=config.max_workers,
    )

    result = compose(
        universe.geometry,
        [o.exclusion for o in outcomes if o.evaluated],
        min_area=config.min_eligible_area,
    )

    pipeline_result = PipelineResult(
        run_id=run_id or get_run_id(),
        universe=universe,
        outcomes=outcomes,
        result=result,
    )

    log_step_end(
        logger, "run_pipeline",
        evaluated=len(pipeline_result.evaluated),
        unevaluated=len(pipeline_result.unevaluated),
        eligible_area=pipeline_result.total_eligible_area,
        viable=pipeline_result.is_viable,
    )
    return pipeline_result


def exclusions_frame(result: PipelineResult) -> gpd.GeoDataFrame:
    """Evaluated exclusions as a GeoDataFrame, one row per rule."""
    evaluated = result.evaluated
    return gpd.GeoDataFrame(
        {
            "rule": [o.name for o in evaluated],
            "kind": [o.kind for o in evaluated],
            "area": [o.exclusion_area for o in evaluated],
        },
        geometry=[o.exclusion for o in evaluated],
        crs=result.universe.crs,
    )
