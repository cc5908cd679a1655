"""
Exclusion compositor.

Folds rule exclusions out of the universe by geometric difference.
Exclusions are applied in a canonical order (sorted by WKB) so the
resulting geometry does not depend on the order rules were declared in.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Sequence

import numpy as np
from shapely.geometry import MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry

from siting_atlas.geometry_utils import as_polygonal, polygon_parts

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EligibleArea:
    """Universe minus every evaluated exclusion."""
    geometry: Polygon | MultiPolygon

    @property
    def area(self) -> float:
        return self.geometry.area

    @property
    def parts(self) -> list[Polygon]:
        return polygon_parts(self.geometry)


@dataclass(frozen=True)
class NoViableSites:
    """Composition left nothing usable.

    `residual` keeps whatever sub-threshold slivers remained, for display.
    """
    reason: str
    residual: Polygon | MultiPolygon = field(default_factory=Polygon)

    @property
    def area(self) -> float:
        return 0.0


CompositionResult = EligibleArea | NoViableSites


def canonical_order(exclusions: Iterable[BaseGeometry]) -> list[BaseGeometry]:
    """Sort exclusions by WKB so every permutation folds identically."""
    return sorted((as_polygonal(g) for g in exclusions), key=lambda g: g.wkb)


def _subtract(eligible: BaseGeometry, exclusion: BaseGeometry) -> Polygon | MultiPolygon:
    if exclusion.is_empty or eligible.is_empty:
        return as_polygonal(eligible)
    return as_polygonal(eligible.difference(exclusion))


def accumulate(
    universe: BaseGeometry,
    exclusions: Sequence[BaseGeometry],
) -> Iterator[Polygon | MultiPolygon]:
    """
    Yield the eligible geometry after each exclusion, in the given order.

    Intended for step-by-step maps. The last layer equals compose()'s
    geometry up to geometric equality.
    """
    eligible = as_polygonal(universe)
    for exclusion in exclusions:
        eligible = _subtract(eligible, as_polygonal(exclusion))
        yield eligible


def compose(
    universe: BaseGeometry,
    exclusions: Iterable[BaseGeometry],
    min_area: float = 0.0,
) -> CompositionResult:
    """
    Subtract exclusions from the universe.

    Args:
        universe: Admissible region geometry.
        exclusions: Exclusion geometries, in any order.
        min_area: Parts smaller than this (squared CRS units) are slivers.

    Returns:
        EligibleArea, or NoViableSites when nothing remains or every
        remaining part is a sliver.
    """
    eligible = as_polygonal(universe)
    ordered = canonical_order(exclusions)
    for exclusion in ordered:
        eligible = _subtract(eligible, exclusion)

    logger.info(f"Composed {len(ordered)} exclusions: {eligible.area:,.1f} sq units remain")

    if eligible.is_empty or eligible.area == 0:
        return NoViableSites(reason="Exclusions cover the entire universe")

    parts = polygon_parts(eligible)
    part_areas = np.array([p.area for p in parts])
    if not (part_areas >= min_area).any():
        largest = float(part_areas.max())
        return NoViableSites(
            reason=(
                f"All {len(parts)} remaining parts are below the minimum area "
                f"{min_area:,.1f} (largest {largest:,.1f})"
            ),
            residual=eligible,
        )

    return EligibleArea(geometry=eligible)
