"""
Versioned structured export.

The export is the only artifact handed to report renderers:

    {
      "schema_version": "1.0",
      "run_id", "created_at", "crs", "linear_unit",
      "universe": {"geometry", "area"},
      "rules": [{"name", "kind", "status", "exclusion", "exclusion_area",
                 "reason", "error_type", "parameters"}, ...],
      "result": {"status", "geometry", "reason"},
      "total_eligible_area"
    }

Geometries are GeoJSON objects in the run CRS. Writing then reading an
export reproduces the eligible geometry exactly.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import geopandas as gpd
from shapely.geometry import mapping, shape
from shapely.geometry.base import BaseGeometry

from siting_atlas.compositor import CompositionResult, EligibleArea, NoViableSites
from siting_atlas.geometry_utils import as_polygonal, empty_polygon
from siting_atlas.hashing import write_metadata_sidecar
from siting_atlas.io_utils import atomic_write_geojson, atomic_write_json, read_json
from siting_atlas.logging_utils import log_output_written
from siting_atlas.paths import paths
from siting_atlas.pipeline import PipelineResult, exclusions_frame
from siting_atlas.schemas import EXPORT_SCHEMA_VERSION, validate_export

logger = logging.getLogger(__name__)

EXPORT_FILENAME = "siting_export.json"


def geometry_to_geojson(geom: BaseGeometry) -> dict[str, Any]:
    """GeoJSON dict with lists instead of tuples, ready for json.dump."""
    return json.loads(json.dumps(mapping(geom)))


def geometry_from_geojson(data: dict[str, Any]) -> BaseGeometry:
    if not data.get("coordinates"):
        return empty_polygon()
    return as_polygonal(shape(data))


def build_export(result: PipelineResult, created_at: str | None = None) -> dict[str, Any]:
    """
    Build the export document for a pipeline run.

    Raises:
        SchemaValidationError: If the document does not match the schema.
    """
    universe = result.universe

    rules = []
    for outcome in result.outcomes:
        rules.append({
            "name": outcome.name,
            "kind": outcome.kind,
            "status": outcome.status,
            "exclusion": geometry_to_geojson(outcome.exclusion) if outcome.evaluated else None,
            "exclusion_area": outcome.exclusion_area,
            "reason": outcome.reason,
            "error_type": outcome.error_type,
            "parameters": outcome.rule.parameters(),
        })

    composed = result.result
    if isinstance(composed, EligibleArea):
        result_block = {
            "status": "eligible",
            "geometry": geometry_to_geojson(composed.geometry),
            "reason": None,
        }
    else:
        result_block = {"status": "no_viable_sites", "geometry": None, "reason": composed.reason}

    data = {
        "schema_version": EXPORT_SCHEMA_VERSION,
        "run_id": result.run_id,
        "created_at": created_at or datetime.now(timezone.utc).isoformat(),
        "crs": universe.crs,
        "linear_unit": universe.linear_unit,
        "universe": {
            "geometry": geometry_to_geojson(universe.geometry),
            "area": universe.area,
        },
        "rules": rules,
        "result": result_block,
        "total_eligible_area": result.total_eligible_area,
    }

    validate_export(data)
    return data


def write_export(
    result: PipelineResult,
    output_path: Path | str | None = None,
    input_files: list[Path | str] | None = None,
    config_files: list[Path | str] | None = None,
) -> Path:
    """
    Write the export JSON and its metadata sidecar.

    Args:
        result: Pipeline result to export.
        output_path: Destination; defaults to data/final/siting_export.json.
        input_files: Dataset files to hash into the sidecar.
        config_files: Config files to hash into the sidecar.

    Returns:
        Path to the written export.
    """
    output_path = Path(output_path) if output_path else paths.data_final / EXPORT_FILENAME
    data = build_export(result)

    atomic_write_json(output_path, data)
    log_output_written(logger, output_path, feature_count=len(data["rules"]))

    write_metadata_sidecar(
        output_path,
        result.run_id,
        input_files=input_files,
        config_files=config_files,
        parameters={
            "crs": data["crs"],
            "rules": [r["name"] for r in data["rules"]],
            "evaluated": [o.name for o in result.evaluated],
            "unevaluated": [o.name for o in result.unevaluated],
            "result_status": data["result"]["status"],
        },
    )
    return output_path


def read_export(path: Path | str) -> dict[str, Any]:
    """Read and validate an export document."""
    data = read_json(path)
    validate_export(data)
    return data


def result_from_export(data: dict[str, Any]) -> CompositionResult:
    """Rebuild the EligibleArea or NoViableSites recorded in an export."""
    block = data["result"]
    if block["status"] == "eligible":
        return EligibleArea(geometry=geometry_from_geojson(block["geometry"]))
    return NoViableSites(reason=block["reason"] or "No viable sites")


def exclusions_from_export(data: dict[str, Any]) -> list[tuple[str, BaseGeometry | None]]:
    """(rule name, exclusion or None) pairs in declaration order."""
    return [
        (rule["name"], geometry_from_geojson(rule["exclusion"]) if rule["exclusion"] else None)
        for rule in data["rules"]
    ]


def write_layers(result: PipelineResult, output_dir: Path | str | None = None) -> list[Path]:
    """
    Write universe, exclusions, eligible area and step layers as GeoJSON.

    Returns:
        Paths of the written layer files.
    """
    output_dir = Path(output_dir) if output_dir else paths.reports_layers
    crs = result.universe.crs
    written = []

    universe_path = atomic_write_geojson(output_dir / "universe.geojson", result.universe.to_frame())
    written.append(universe_path)

    exclusions = exclusions_frame(result)
    if len(exclusions):
        written.append(atomic_write_geojson(output_dir / "exclusions.geojson", exclusions))

    steps = result.layers()
    if steps:
        steps_gdf = gpd.GeoDataFrame(
            {
                "step": list(range(1, len(steps) + 1)),
                "after_rule": [name for name, _ in steps],
                "area": [geom.area for _, geom in steps],
            },
            geometry=[geom for _, geom in steps],
            crs=crs,
        )
        written.append(atomic_write_geojson(output_dir / "eligible_steps.geojson", steps_gdf))

    if isinstance(result.result, EligibleArea):
        eligible = gpd.GeoDataFrame(
            {"area": [result.result.area]}, geometry=[result.result.geometry], crs=crs
        )
        written.append(atomic_write_geojson(output_dir / "eligible.geojson", eligible))

    for path in written:
        log_output_written(logger, path)
    return written
