"""
Tests for siting_atlas.compositor module.

Tests cover:
- Order independence of composition
- NoViableSites for full coverage and sliver-only results
- Multi-part results
- accumulate() intermediate layers
"""

import itertools
import math
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
from shapely.geometry import Point, Polygon, box

from siting_atlas.compositor import (
    EligibleArea,
    NoViableSites,
    accumulate,
    canonical_order,
    compose,
)


UNIVERSE = box(0, 0, 10, 10)


@pytest.fixture
def overlapping_exclusions():
    return [
        Point(2, 2).buffer(2.5),
        box(4, 0, 6, 10),
        Point(8, 8).buffer(1.5),
        box(0, 7, 3, 10),
    ]


class TestOrderIndependence:
    """compose() gives the same geometry for any exclusion order."""

    def test_all_permutations_equal(self, overlapping_exclusions):
        results = [compose(UNIVERSE, list(p)) for p in itertools.permutations(overlapping_exclusions)]
        reference = results[0].geometry
        for result in results[1:]:
            assert isinstance(result, EligibleArea)
            assert result.geometry.equals(reference)
            assert result.area == reference.area

    def test_canonical_order_is_deterministic(self, overlapping_exclusions):
        forward = canonical_order(overlapping_exclusions)
        backward = canonical_order(reversed(overlapping_exclusions))
        assert [g.wkb for g in forward] == [g.wkb for g in backward]


class TestCompose:
    """Tests for compose()."""

    def test_no_exclusions_returns_universe(self):
        result = compose(UNIVERSE, [])
        assert isinstance(result, EligibleArea)
        assert result.geometry.equals(UNIVERSE)

    def test_quarter_disk(self):
        """A unit disk at the corner removes a quarter of its area."""
        exclusion = Point(0, 0).buffer(1).intersection(UNIVERSE)
        result = compose(UNIVERSE, [exclusion])
        assert result.area == pytest.approx(100 - math.pi / 4, abs=0.01)

    def test_full_coverage_is_no_viable_sites(self):
        result = compose(UNIVERSE, [Point(5, 5).buffer(8).intersection(UNIVERSE)])
        assert isinstance(result, NoViableSites)
        assert result.area == 0.0
        assert "entire universe" in result.reason

    def test_two_halves_cover_universe(self):
        result = compose(UNIVERSE, [box(0, 0, 5, 10), box(5, 0, 10, 10)])
        assert isinstance(result, NoViableSites)

    def test_corner_slivers_below_minimum(self):
        """A radius-6 disk leaves four corner slivers of ~1.2 each."""
        exclusion = Point(5, 5).buffer(6).intersection(UNIVERSE)

        without_threshold = compose(UNIVERSE, [exclusion])
        assert isinstance(without_threshold, EligibleArea)
        assert len(without_threshold.parts) == 4

        result = compose(UNIVERSE, [exclusion], min_area=2.0)
        assert isinstance(result, NoViableSites)
        assert "below the minimum area" in result.reason
        assert result.residual.area == pytest.approx(without_threshold.area)

    def test_slivers_kept_when_one_part_is_viable(self):
        """Small parts do not disqualify a result that has a viable part."""
        result = compose(UNIVERSE, [box(0, 1, 10, 9), box(0, 9, 9.5, 10)], min_area=5.0)
        assert isinstance(result, EligibleArea)
        assert result.area == pytest.approx(10.5)
        assert len(result.parts) == 2

    def test_fragmented_result(self):
        """A strip through the middle splits the universe into two parts."""
        result = compose(UNIVERSE, [box(4, 0, 6, 10)])
        assert isinstance(result, EligibleArea)
        assert result.geometry.geom_type == "MultiPolygon"
        assert len(result.parts) == 2
        assert result.area == pytest.approx(80.0)

    def test_empty_exclusions_ignored(self):
        result = compose(UNIVERSE, [Polygon(), box(0, 0, 5, 5)])
        assert result.area == pytest.approx(75.0)

    def test_result_inside_universe(self, overlapping_exclusions):
        result = compose(UNIVERSE, overlapping_exclusions)
        assert result.geometry.difference(UNIVERSE).area <= 1e-9


class TestAccumulate:
    """Tests for accumulate()."""

    def test_one_layer_per_exclusion(self, overlapping_exclusions):
        layers = list(accumulate(UNIVERSE, overlapping_exclusions))
        assert len(layers) == len(overlapping_exclusions)

    def test_area_never_grows(self, overlapping_exclusions):
        areas = [layer.area for layer in accumulate(UNIVERSE, overlapping_exclusions)]
        assert all(a >= b for a, b in zip(areas, areas[1:]))

    def test_last_layer_matches_compose(self, overlapping_exclusions):
        last = list(accumulate(UNIVERSE, overlapping_exclusions))[-1]
        composed = compose(UNIVERSE, overlapping_exclusions)
        assert last.symmetric_difference(composed.geometry).area < 1e-9


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
