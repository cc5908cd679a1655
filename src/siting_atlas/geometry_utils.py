"""
Shared shapely helpers for polygonal set operations.

Overlay results between polygons can degenerate into lines or points where
shapes only touch; everything downstream works on areas, so results are
reduced to their polygonal part.
"""

from shapely import make_valid
from shapely.geometry import GeometryCollection, MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union


def empty_polygon() -> Polygon:
    """Return an empty polygon."""
    return Polygon()


def as_polygonal(geom: BaseGeometry | None) -> Polygon | MultiPolygon:
    """
    Reduce a geometry to its Polygon/MultiPolygon part.

    Args:
        geom: Any shapely geometry, or None.

    Returns:
        Polygon or MultiPolygon; an empty Polygon when nothing areal remains.
    """
    if geom is None or geom.is_empty:
        return empty_polygon()
    if isinstance(geom, (Polygon, MultiPolygon)):
        return geom
    if isinstance(geom, GeometryCollection):
        parts = [as_polygonal(g) for g in geom.geoms]
        parts = [p for p in parts if not p.is_empty]
        if not parts:
            return empty_polygon()
        return as_polygonal(unary_union(parts))
    return empty_polygon()


def repair(geom: BaseGeometry) -> Polygon | MultiPolygon:
    """Make a geometry valid and keep its polygonal part."""
    if not geom.is_valid:
        geom = make_valid(geom)
    return as_polygonal(geom)


def clip(geom: BaseGeometry, universe: BaseGeometry) -> Polygon | MultiPolygon:
    """Intersect `geom` with `universe`, keeping only the polygonal part."""
    if geom.is_empty:
        return empty_polygon()
    return as_polygonal(geom.intersection(universe))


def polygon_parts(geom: BaseGeometry) -> list[Polygon]:
    """List the individual polygons of a Polygon/MultiPolygon."""
    geom = as_polygonal(geom)
    if geom.is_empty:
        return []
    if isinstance(geom, Polygon):
        return [geom]
    return list(geom.geoms)
