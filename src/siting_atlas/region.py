"""
Universe and input dataset loading.

Every dataset is reprojected into the single linear-unit CRS chosen for
the run, so that buffer distances and areas downstream share one unit.
Loaders normalize columns to the canonical schemas in siting_atlas.schemas.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

import geopandas as gpd
import pandas as pd
from shapely.geometry import MultiPolygon, Point, Polygon

from siting_atlas.config import DEFAULT_CRS, crs_linear_unit
from siting_atlas.errors import DataError
from siting_atlas.geometry_utils import repair
from siting_atlas.logging_utils import log_step_end, log_step_start
from siting_atlas.qa import check_linear_crs, check_no_empty_geoms, check_valid_geoms
from siting_atlas.schemas import (
    SCHEMA_CATEGORY_POLYGONS,
    SCHEMA_CURATED_FEATURES,
    SCHEMA_POINT_FEATURES,
    validate_schema,
)

logger = logging.getLogger(__name__)

POLYGON_TYPES = ("Polygon", "MultiPolygon")

Source = str | Path | gpd.GeoDataFrame


@dataclass(frozen=True)
class Universe:
    """The admissible region: one valid polygonal geometry in a linear-unit CRS."""
    geometry: Polygon | MultiPolygon
    crs: str

    @property
    def area(self) -> float:
        return self.geometry.area

    @property
    def linear_unit(self) -> str:
        return crs_linear_unit(self.crs)[0]

    def to_frame(self) -> gpd.GeoDataFrame:
        return gpd.GeoDataFrame({"layer": ["universe"]}, geometry=[self.geometry], crs=self.crs)


@dataclass(frozen=True)
class PointFeature:
    """A named point location with an optional numeric attribute."""
    name: str
    x: float
    y: float
    value: float | None = None

    @property
    def geometry(self) -> Point:
        return Point(self.x, self.y)


# =============================================================================
# Reading
# =============================================================================

def _read_source(source: Source, label: str) -> gpd.GeoDataFrame:
    """Read a dataset from a path or pass a GeoDataFrame through."""
    if isinstance(source, gpd.GeoDataFrame):
        gdf = source.copy()
    else:
        path = Path(source)
        if not path.exists():
            raise DataError(f"{label} dataset not found: {path}")
        try:
            gdf = gpd.read_file(path)
        except Exception as e:
            raise DataError(f"Could not read {label} dataset {path}: {e}") from e
        logger.info(f"Read {len(gdf)} {label} features from {path}")

    if len(gdf) == 0:
        raise DataError(f"{label} dataset is empty")
    if gdf.crs is None:
        raise DataError(f"{label} dataset has no CRS defined")

    return gdf


def _project(gdf: gpd.GeoDataFrame, crs: str, label: str) -> gpd.GeoDataFrame:
    crs_linear_unit(crs)
    if gdf.crs != crs:
        logger.info(f"Reprojecting {label} from {gdf.crs.to_string()} to {crs}")
        gdf = gdf.to_crs(crs)
    return gdf


def _drop_missing(gdf: gpd.GeoDataFrame, label: str) -> gpd.GeoDataFrame:
    if not check_no_empty_geoms(gdf):
        mask = gdf.geometry.notna() & ~gdf.geometry.is_empty
        logger.warning(f"Dropping {int((~mask).sum())} null/empty {label} geometries")
        gdf = gdf[mask]
    if len(gdf) == 0:
        raise DataError(f"{label} dataset has no usable geometry")
    return gdf


def _polygons_only(gdf: gpd.GeoDataFrame, label: str) -> gpd.GeoDataFrame:
    """Repair invalid polygons and drop non-polygonal rows."""
    gdf = _drop_missing(gdf, label)

    if not check_valid_geoms(gdf):
        logger.warning(f"Repairing invalid {label} geometries")
        repaired = gpd.GeoSeries(gdf.geometry.apply(repair), index=gdf.index, crs=gdf.crs)
        gdf = gdf.copy()
        gdf[gdf.geometry.name] = repaired

    polygonal = gdf.geometry.geom_type.isin(POLYGON_TYPES) & ~gdf.geometry.is_empty
    if not polygonal.all():
        logger.warning(
            f"Ignoring {int((~polygonal).sum())} non-polygon {label} features: "
            f"{sorted(gdf.geometry[~polygonal].geom_type.unique())}"
        )
        gdf = gdf[polygonal]
    if len(gdf) == 0:
        raise DataError(f"{label} dataset contains no polygon geometry")
    return gdf


# =============================================================================
# Loaders
# =============================================================================

def load_universe(source: Source, crs: str = DEFAULT_CRS) -> Universe:
    """
    Load the admissible region and dissolve it into one geometry.

    Args:
        source: Path to a boundary dataset, or a GeoDataFrame.
        crs: Target projected CRS with linear units.

    Returns:
        Universe in `crs`.

    Raises:
        DataError: If the source is missing, empty, or has no valid polygon.
    """
    log_step_start(logger, "load_universe", crs=crs)

    gdf = _read_source(source, "boundary")
    gdf = _polygons_only(gdf, "boundary")
    gdf = _project(gdf, crs, "boundary")
    check_linear_crs(gdf, logger)

    geometry = repair(gdf.geometry.union_all())
    if geometry.is_empty or geometry.area <= 0:
        raise DataError("boundary dataset dissolves to an empty geometry")

    universe = Universe(geometry=geometry, crs=crs)
    log_step_end(logger, "load_universe", area=universe.area,
                 parts=len(getattr(geometry, "geoms", [geometry])))
    return universe


def load_point_features(
    source: Source,
    universe: Universe,
    name_column: str | None = None,
    attribute_column: str | None = None,
) -> gpd.GeoDataFrame:
    """
    Load point features normalized to (name, value, geometry).

    Multi-point rows are exploded; non-point rows are ignored.

    Raises:
        DataError: If the source is missing or has no point geometry.
    """
    gdf = _read_source(source, "point")
    gdf = _drop_missing(gdf, "point")
    gdf = gdf.explode(index_parts=False).reset_index(drop=True)
    is_point = gdf.geometry.geom_type == "Point"
    if not is_point.all():
        logger.warning(f"Ignoring {int((~is_point).sum())} non-point features")
        gdf = gdf[is_point]
    if len(gdf) == 0:
        raise DataError("point dataset contains no point geometry")

    for column in (name_column, attribute_column):
        if column is not None and column not in gdf.columns:
            raise DataError(f"point dataset has no column '{column}'")

    gdf = _project(gdf, universe.crs, "point").reset_index(drop=True)

    normalized = gpd.GeoDataFrame(
        {
            "name": gdf[name_column].astype(object) if name_column else [None] * len(gdf),
            "value": (
                pd.to_numeric(gdf[attribute_column], errors="coerce").astype("float64")
                if attribute_column else [float("nan")] * len(gdf)
            ),
        },
        geometry=gdf.geometry.values,
        crs=universe.crs,
    )

    validate_schema(normalized, SCHEMA_POINT_FEATURES)
    return normalized


def load_category_polygons(
    source: Source,
    universe: Universe,
    category_column: str,
) -> gpd.GeoDataFrame:
    """
    Load categorized polygons normalized to (category, geometry).

    Blank or missing categories are normalized to None.

    Raises:
        DataError: If the source is missing, has no polygons, or lacks the column.
    """
    gdf = _read_source(source, "category")
    if category_column not in gdf.columns:
        raise DataError(f"category dataset has no column '{category_column}'")
    gdf = _polygons_only(gdf, "category")
    gdf = _project(gdf, universe.crs, "category")

    def normalize(value):
        if value is None or pd.isna(value):
            return None
        text = str(value).strip()
        return text or None

    normalized = gpd.GeoDataFrame(
        {"category": gdf[category_column].map(normalize).astype(object).values},
        geometry=gdf.geometry.values,
        crs=universe.crs,
    )

    validate_schema(normalized, SCHEMA_CATEGORY_POLYGONS)
    return normalized


def load_curated_features(
    source: Source,
    universe: Universe,
    name_column: str | None = None,
) -> gpd.GeoDataFrame:
    """
    Load a manually curated feature list (e.g., active listings).

    Points are kept as-is; rules that need areas buffer or match them.
    """
    gdf = _read_source(source, "curated")
    gdf = _drop_missing(gdf, "curated")
    gdf = _project(gdf, universe.crs, "curated")

    normalized = gpd.GeoDataFrame(
        {"name": gdf[name_column].astype(object).values if name_column else [None] * len(gdf)},
        geometry=gdf.geometry.values,
        crs=universe.crs,
    )
    validate_schema(normalized, SCHEMA_CURATED_FEATURES)
    return normalized


def features_from_points(points: Iterable[PointFeature], crs: str) -> gpd.GeoDataFrame:
    """Build a normalized point-feature frame from PointFeature objects."""
    points = list(points)
    gdf = gpd.GeoDataFrame(
        {
            "name": pd.Series([p.name for p in points], dtype=object),
            "value": pd.Series(
                [float("nan") if p.value is None else float(p.value) for p in points],
                dtype="float64",
            ),
        },
        geometry=[p.geometry for p in points],
        crs=crs,
    )
    validate_schema(gdf, SCHEMA_POINT_FEATURES)
    return gdf
