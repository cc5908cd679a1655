"""
Geometry QA checks.

Checks return a QAResult (truthy when passed) and, given a logger, emit a
qa_check event. They never raise: callers decide whether a failure is
fatal. Loaders drop or repair what fails; rule evaluation only reports it.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import geopandas as gpd
from shapely.geometry.base import BaseGeometry

from siting_atlas.errors import ConfigError
from siting_atlas.config import crs_linear_unit
from siting_atlas.logging_utils import log_qa_check


# Area (in squared CRS units) a rule may spill outside the universe from
# floating-point noise at clipped edges before containment fails.
CONTAINMENT_TOLERANCE = 1e-6


@dataclass
class QAResult:
    check_name: str
    passed: bool
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return self.passed


def _report(
    check_name: str,
    passed: bool,
    message: str,
    logger: logging.Logger | None,
    **details: Any,
) -> QAResult:
    result = QAResult(check_name, passed, message, details)
    if logger:
        log_qa_check(logger, check_name, passed, message, **details)
    return result


def check_linear_crs(gdf: gpd.GeoDataFrame, logger: logging.Logger | None = None) -> QAResult:
    """Pass when `gdf` has a projected CRS whose axis unit is linear."""
    if gdf.crs is None:
        return _report("crs_linear", False, "GeoDataFrame has no CRS defined", logger, crs=None)

    crs = gdf.crs.to_string()
    try:
        unit, _ = crs_linear_unit(gdf.crs)
    except ConfigError as e:
        return _report("crs_linear", False, str(e), logger, crs=crs)
    return _report("crs_linear", True, f"CRS {crs} uses {unit}", logger, crs=crs, unit=unit)


def check_no_empty_geoms(gdf: gpd.GeoDataFrame, logger: logging.Logger | None = None) -> QAResult:
    """Pass when no geometry is null or empty."""
    null_count = int(gdf.geometry.isna().sum())
    empty_count = int(gdf.geometry.is_empty.sum())
    passed = null_count == 0 and empty_count == 0
    message = (
        f"All {len(gdf)} geometries are present" if passed
        else f"Found {empty_count} empty and {null_count} null geometries"
    )
    return _report("no_empty_geoms", passed, message, logger,
                   total=len(gdf), empty=empty_count, null=null_count)


def check_valid_geoms(gdf: gpd.GeoDataFrame, logger: logging.Logger | None = None) -> QAResult:
    """Pass when every non-null geometry is topologically valid."""
    invalid_count = int((~gdf.geometry.dropna().is_valid).sum())
    passed = invalid_count == 0
    message = (
        f"All {len(gdf)} geometries are topologically valid" if passed
        else f"Found {invalid_count} invalid geometries"
    )
    return _report("valid_geoms", passed, message, logger, total=len(gdf), invalid=invalid_count)


def check_contained(
    geometry: BaseGeometry,
    universe: BaseGeometry,
    name: str = "exclusion",
    tolerance: float = CONTAINMENT_TOLERANCE,
    logger: logging.Logger | None = None,
) -> QAResult:
    """
    Pass when `geometry` lies within `universe`.

    Up to `tolerance` square CRS units outside the universe are accepted.
    """
    outside = 0.0 if geometry.is_empty else geometry.difference(universe).area
    passed = outside <= tolerance
    message = (
        f"{name} lies within the universe" if passed
        else f"{name} extends {outside:,.3f} sq units outside the universe"
    )
    return _report("contained_in_universe", passed, message, logger,
                   name=name, outside_area=outside)
