"""
Schema validation for normalized inputs and the structured export.

Input datasets are normalized to canonical columns before any rule sees
them, and the export handed to the report renderer is validated on write
and on read. Schema drift is a hard failure.
"""

from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from siting_atlas.errors import SitingError


EXPORT_SCHEMA_VERSION = "1.0"

RULE_STATUSES = ("evaluated", "unevaluated")
RESULT_STATUSES = ("eligible", "no_viable_sites")


class SchemaValidationError(SitingError):
    """Raised when data does not conform to expected schema."""
    pass


@dataclass
class ColumnSpec:
    """Specification for a single column."""
    name: str
    dtype: str  # pandas dtype string (e.g., "float64", "object", "geometry")
    required: bool = True
    nullable: bool = False
    description: str = ""


@dataclass
class TableSchema:
    """Schema definition for a table."""
    name: str
    description: str
    columns: list[ColumnSpec]

    def required_columns(self) -> list[str]:
        """Get list of required column names."""
        return [c.name for c in self.columns if c.required]

    def all_columns(self) -> list[str]:
        """Get list of all column names."""
        return [c.name for c in self.columns]


# =============================================================================
# Schema definitions for normalized inputs
# =============================================================================

SCHEMA_POINT_FEATURES = TableSchema(
    name="point_features",
    description="Named point locations with an optional numeric attribute",
    columns=[
        ColumnSpec("name", "object", required=True, nullable=True,
                   description="Facility or landmark name"),
        ColumnSpec("value", "float64", required=True, nullable=True,
                   description="Numeric attribute used for filtering (e.g., capacity)"),
        ColumnSpec("geometry", "geometry", required=True, nullable=False,
                   description="Point geometry"),
    ]
)

SCHEMA_CATEGORY_POLYGONS = TableSchema(
    name="category_polygons",
    description="Zoned or typed polygons",
    columns=[
        ColumnSpec("category", "object", required=True, nullable=True,
                   description="Category code (e.g., zoning district); null means unrecognized"),
        ColumnSpec("geometry", "geometry", required=True, nullable=False,
                   description="Polygon geometry"),
    ]
)

SCHEMA_CURATED_FEATURES = TableSchema(
    name="curated_features",
    description="Manually curated features (e.g., active listings)",
    columns=[
        ColumnSpec("name", "object", required=False, nullable=True,
                   description="Label for the curated feature"),
        ColumnSpec("geometry", "geometry", required=True, nullable=False,
                   description="Feature geometry"),
    ]
)

SCHEMA_REGISTRY: dict[str, TableSchema] = {
    "point_features": SCHEMA_POINT_FEATURES,
    "category_polygons": SCHEMA_CATEGORY_POLYGONS,
    "curated_features": SCHEMA_CURATED_FEATURES,
}


def get_schema(name: str) -> TableSchema:
    """
    Get a schema by name from the registry.

    Raises:
        ValueError: If schema not found.
    """
    if name not in SCHEMA_REGISTRY:
        raise ValueError(f"Unknown schema: {name}. Available: {list(SCHEMA_REGISTRY.keys())}")
    return SCHEMA_REGISTRY[name]


def _dtype_compatible(expected: str, actual: str) -> bool:
    if expected == "object":
        return actual in ("object", "string", "str", "category")
    if expected == "float64":
        return actual in ("float64", "float32", "Float64", "int64", "int32", "Int64")
    return expected == actual


def validate_schema(
    df: pd.DataFrame,
    schema: TableSchema | str,
    strict: bool = False,
) -> list[str]:
    """
    Validate a DataFrame against a schema.

    Args:
        df: DataFrame to validate.
        schema: TableSchema object or schema name from registry.
        strict: If True, fail on extra columns not in schema.

    Returns:
        List of validation error messages (empty if valid).

    Raises:
        SchemaValidationError: If validation fails.
    """
    if isinstance(schema, str):
        schema = get_schema(schema)

    errors = []

    for col in schema.columns:
        if col.required and col.name not in df.columns:
            errors.append(f"Missing required column: {col.name}")

    if strict:
        extra_cols = set(df.columns) - set(schema.all_columns())
        if extra_cols:
            errors.append(f"Unexpected columns: {sorted(extra_cols)}")

    for col in schema.columns:
        if col.name not in df.columns:
            continue

        series = df[col.name]

        if not col.nullable and series.isna().any():
            null_count = series.isna().sum()
            errors.append(f"Column '{col.name}' has {null_count} null values but is not nullable")

        # Geometry columns are checked by the QA module
        if col.dtype != "geometry":
            actual_dtype = str(series.dtype)
            if not _dtype_compatible(col.dtype, actual_dtype):
                errors.append(f"Column '{col.name}' has dtype '{actual_dtype}', expected '{col.dtype}'")

    if errors:
        error_msg = f"Schema validation failed for '{schema.name}':\n" + "\n".join(f"  - {e}" for e in errors)
        raise SchemaValidationError(error_msg)

    return errors


# =============================================================================
# Export schema
# =============================================================================

@dataclass
class FieldSpec:
    """Specification for one field of a JSON record."""
    name: str
    types: tuple
    nullable: bool = False
    children: list["FieldSpec"] = field(default_factory=list)


_NUMBER = (int, float)

UNIVERSE_FIELDS = [
    FieldSpec("geometry", (dict,)),
    FieldSpec("area", _NUMBER),
]

RULE_FIELDS = [
    FieldSpec("name", (str,)),
    FieldSpec("kind", (str,)),
    FieldSpec("status", (str,)),
    FieldSpec("exclusion", (dict,), nullable=True),
    FieldSpec("exclusion_area", _NUMBER, nullable=True),
    FieldSpec("reason", (str,), nullable=True),
    FieldSpec("error_type", (str,), nullable=True),
    FieldSpec("parameters", (dict,)),
]

RESULT_FIELDS = [
    FieldSpec("status", (str,)),
    FieldSpec("geometry", (dict,), nullable=True),
    FieldSpec("reason", (str,), nullable=True),
]

EXPORT_FIELDS = [
    FieldSpec("schema_version", (str,)),
    FieldSpec("run_id", (str,)),
    FieldSpec("created_at", (str,)),
    FieldSpec("crs", (str,)),
    FieldSpec("linear_unit", (str,)),
    FieldSpec("universe", (dict,), children=UNIVERSE_FIELDS),
    FieldSpec("rules", (list,), children=RULE_FIELDS),
    FieldSpec("result", (dict,), children=RESULT_FIELDS),
    FieldSpec("total_eligible_area", _NUMBER),
]


def _check_fields(record: Any, fields: list[FieldSpec], where: str, errors: list[str]) -> None:
    if not isinstance(record, dict):
        errors.append(f"{where}: expected object, got {type(record).__name__}")
        return

    for spec in fields:
        path = f"{where}.{spec.name}"
        if spec.name not in record:
            errors.append(f"Missing required field: {path}")
            continue

        value = record[spec.name]
        if value is None:
            if not spec.nullable:
                errors.append(f"Field '{path}' is null but is not nullable")
            continue

        if isinstance(value, bool) or not isinstance(value, spec.types):
            errors.append(f"Field '{path}' has type '{type(value).__name__}'")
            continue

        if spec.children:
            if isinstance(value, list):
                for i, item in enumerate(value):
                    _check_fields(item, spec.children, f"{path}[{i}]", errors)
            else:
                _check_fields(value, spec.children, path, errors)


def validate_export(data: dict[str, Any]) -> list[str]:
    """
    Validate a structured export against the versioned export schema.

    Args:
        data: Parsed export document.

    Returns:
        Empty list when valid.

    Raises:
        SchemaValidationError: On missing fields, wrong types, unknown
            statuses, or an unsupported schema_version.
    """
    errors: list[str] = []
    _check_fields(data, EXPORT_FIELDS, "export", errors)

    if not errors:
        if data["schema_version"] != EXPORT_SCHEMA_VERSION:
            errors.append(
                f"Unsupported schema_version '{data['schema_version']}', "
                f"expected '{EXPORT_SCHEMA_VERSION}'"
            )
        for i, rule in enumerate(data["rules"]):
            if rule["status"] not in RULE_STATUSES:
                errors.append(f"export.rules[{i}].status '{rule['status']}' not in {RULE_STATUSES}")
            elif rule["status"] == "evaluated" and rule["exclusion"] is None:
                errors.append(f"export.rules[{i}] is evaluated but has no exclusion")
            elif rule["status"] == "unevaluated" and rule["reason"] is None:
                errors.append(f"export.rules[{i}] is unevaluated but has no reason")
        status = data["result"]["status"]
        if status not in RESULT_STATUSES:
            errors.append(f"export.result.status '{status}' not in {RESULT_STATUSES}")
        elif status == "eligible" and data["result"]["geometry"] is None:
            errors.append("export.result is eligible but has no geometry")

    if errors:
        error_msg = "Export validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        raise SchemaValidationError(error_msg)

    return errors
