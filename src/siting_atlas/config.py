"""
Pipeline configuration.

Reads configs/params.yml into a PipelineConfig. All distances the rules
use are expressed in the linear unit of the target CRS; the config accepts
plain numbers (already in CRS units) or strings with a unit suffix such as
"0.5 mi", "200 ft" or "800 m", converted here once.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pyproj import CRS
from pyproj.exceptions import CRSError

from siting_atlas.errors import ConfigError
from siting_atlas.io_utils import read_yaml
from siting_atlas.paths import paths, resolve_path


DEFAULT_CRS = "EPSG:2263"  # NY State Plane Long Island (US survey feet)

# Meters per unit
UNIT_FACTORS = {
    "m": 1.0,
    "meter": 1.0,
    "meters": 1.0,
    "km": 1000.0,
    "ft": 0.3048,
    "feet": 0.3048,
    "us-ft": 1200.0 / 3937.0,
    "mi": 1609.344,
    "mile": 1609.344,
    "miles": 1609.344,
}

SERVICE_ERROR_POLICIES = ("skip", "abort")

_DISTANCE_PATTERN = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*([A-Za-z\-]+)?\s*$")


# =============================================================================
# Units
# =============================================================================

def crs_linear_unit(crs: str | CRS) -> tuple[str, float]:
    """
    Return the (unit name, meters per unit) of a projected CRS.

    Raises:
        ConfigError: If the CRS is unknown or not projected with linear units.
    """
    try:
        crs = CRS.from_user_input(crs)
    except CRSError as e:
        raise ConfigError(f"Unknown CRS: {crs}") from e

    if not crs.is_projected:
        raise ConfigError(
            f"CRS {crs.to_string()} is not projected; distances need linear units"
        )

    axis = crs.axis_info[0]
    return axis.unit_name, float(axis.unit_conversion_factor)


def parse_distance(value: Any, crs: str | CRS) -> float:
    """
    Convert a configured distance into the linear unit of `crs`.

    Args:
        value: Number (already in CRS units) or string like "0.5 mi".
        crs: Target projected CRS.

    Returns:
        Non-negative distance in CRS units.
    """
    if isinstance(value, bool):
        raise ConfigError(f"Invalid distance: {value!r}")

    if isinstance(value, (int, float)):
        distance = float(value)
    elif isinstance(value, str):
        match = _DISTANCE_PATTERN.match(value)
        if match is None:
            raise ConfigError(f"Invalid distance: {value!r}")
        number, unit = match.groups()
        distance = float(number)
        if unit is not None:
            unit = unit.lower()
            if unit not in UNIT_FACTORS:
                raise ConfigError(
                    f"Unknown distance unit '{unit}'. Known: {sorted(UNIT_FACTORS)}"
                )
            _, meters_per_crs_unit = crs_linear_unit(crs)
            distance = distance * UNIT_FACTORS[unit] / meters_per_crs_unit
    else:
        raise ConfigError(f"Invalid distance: {value!r}")

    if distance < 0:
        raise ConfigError(f"Distance must be non-negative, got {value!r}")
    return distance


# =============================================================================
# Config objects
# =============================================================================

@dataclass(frozen=True)
class DatasetConfig:
    """Location and column mapping of one input dataset."""
    name: str
    path: Path
    name_column: str | None = None
    attribute_column: str | None = None
    category_column: str | None = None


@dataclass(frozen=True)
class IsochroneConfig:
    """Routing service settings."""
    base_url: str = "https://api.openrouteservice.org"
    api_key_env: str = "ORS_API_KEY"
    timeout: float = 30.0
    cache_dir: Path | None = None

    @property
    def api_key(self) -> str | None:
        return os.environ.get(self.api_key_env)


@dataclass
class PipelineConfig:
    """Parameters for one siting run."""
    crs: str = DEFAULT_CRS
    boundary: Path | None = None
    min_eligible_area: float = 0.0
    on_service_error: str = "skip"
    require_all_rules: bool = False
    max_workers: int = 1
    isochrone: IsochroneConfig = field(default_factory=IsochroneConfig)
    datasets: dict[str, DatasetConfig] = field(default_factory=dict)
    rules: list = field(default_factory=list)

    def __post_init__(self):
        if self.on_service_error not in SERVICE_ERROR_POLICIES:
            raise ConfigError(
                f"on_service_error must be one of {SERVICE_ERROR_POLICIES}, "
                f"got {self.on_service_error!r}"
            )
        if self.min_eligible_area < 0:
            raise ConfigError("min_eligible_area must be non-negative")
        if self.max_workers < 1:
            raise ConfigError("max_workers must be at least 1")
        crs_linear_unit(self.crs)

    @property
    def linear_unit(self) -> str:
        return crs_linear_unit(self.crs)[0]


def _number(section: dict[str, Any], key: str, default: float, cast: type = float) -> Any:
    value = section.get(key, default)
    if isinstance(value, bool):
        raise ConfigError(f"'{key}' must be a number, got {value!r}")
    try:
        return cast(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"'{key}' must be a number, got {value!r}") from e


def _parse_datasets(raw: dict[str, Any] | None) -> dict[str, DatasetConfig]:
    datasets = {}
    for name, entry in (raw or {}).items():
        if not isinstance(entry, dict) or "path" not in entry:
            raise ConfigError(f"Dataset '{name}' needs a 'path'")
        datasets[name] = DatasetConfig(
            name=name,
            path=resolve_path(entry["path"]),
            name_column=entry.get("name_column"),
            attribute_column=entry.get("attribute_column"),
            category_column=entry.get("category_column"),
        )
    return datasets


def parse_config(params: dict[str, Any]) -> PipelineConfig:
    """
    Build a PipelineConfig from a parsed params mapping.

    Args:
        params: Mapping as loaded from params.yml.

    Returns:
        PipelineConfig with rule declarations converted to rule objects.

    Raises:
        ConfigError: If any section is malformed.
    """
    # rules imports parse_distance from this module
    from siting_atlas.rules import build_rule

    if not isinstance(params, dict):
        raise ConfigError("params must be a mapping")

    crs = params.get("crs", DEFAULT_CRS)

    iso_raw = params.get("isochrone") or {}
    cache_dir = iso_raw.get("cache_dir")
    isochrone = IsochroneConfig(
        base_url=iso_raw.get("base_url", IsochroneConfig.base_url),
        api_key_env=iso_raw.get("api_key_env", IsochroneConfig.api_key_env),
        timeout=_number(iso_raw, "timeout", IsochroneConfig.timeout),
        cache_dir=resolve_path(cache_dir) if cache_dir else paths.isochrone_cache,
    )

    rule_entries = params.get("rules") or []
    if not isinstance(rule_entries, list):
        raise ConfigError("'rules' must be a list")
    rules = [build_rule(entry, crs) for entry in rule_entries]

    names = [r.name for r in rules]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ConfigError(f"Duplicate rule names: {duplicates}")

    boundary = params.get("boundary")

    return PipelineConfig(
        crs=crs,
        boundary=resolve_path(boundary) if boundary else None,
        min_eligible_area=_number(params, "min_eligible_area", 0.0),
        on_service_error=params.get("on_service_error", "skip"),
        require_all_rules=bool(params.get("require_all_rules", False)),
        max_workers=_number(params, "max_workers", 1, int),
        isochrone=isochrone,
        datasets=_parse_datasets(params.get("datasets")),
        rules=rules,
    )


def load_config(config_path: Path | str | None = None) -> PipelineConfig:
    """Load and parse params.yml (defaults to configs/params.yml)."""
    config_path = Path(config_path) if config_path else paths.params_yml
    try:
        params = read_yaml(config_path)
    except (FileNotFoundError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read {config_path}: {e}") from e
    return parse_config(params)
