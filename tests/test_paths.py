"""
Tests for siting_atlas.paths module.

Tests cover:
- Root discovery via the .project-root marker and SITING_ATLAS_ROOT
- Resolution of relative dataset paths from params.yml
- Canonical input and output locations
"""

import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest

from siting_atlas.paths import ensure_dir, get_path, get_project_root, paths, resolve_path


class TestGetProjectRoot:
    """Tests for get_project_root()."""

    def test_root_holds_marker_and_configs(self):
        root = get_project_root()
        assert root.is_absolute()
        assert (root / ".project-root").exists()
        assert (root / "configs" / "params.yml").exists()

    def test_cached(self):
        assert get_project_root() is get_project_root()

    def test_environment_override(self, tmp_path, monkeypatch):
        """SITING_ATLAS_ROOT takes precedence over the marker search."""
        monkeypatch.setenv("SITING_ATLAS_ROOT", str(tmp_path))
        get_project_root.cache_clear()
        try:
            assert get_project_root() == tmp_path.resolve()
            assert paths.params_yml == tmp_path.resolve() / "configs" / "params.yml"
        finally:
            monkeypatch.delenv("SITING_ATLAS_ROOT")
            get_project_root.cache_clear()


class TestResolvePath:
    """Dataset paths in params.yml resolve against the root."""

    def test_relative_dataset_path(self):
        resolved = resolve_path("data/raw/zoning/zoning_districts.geojson")
        assert resolved == get_project_root() / "data" / "raw" / "zoning" / "zoning_districts.geojson"

    def test_absolute_path_unchanged(self, tmp_path):
        assert resolve_path(tmp_path / "boundary.geojson") == tmp_path / "boundary.geojson"

    def test_home_expanded(self):
        assert resolve_path("~/boundary.geojson") == Path.home() / "boundary.geojson"

    def test_get_path_joins_parts(self):
        assert get_path("data", "final") == get_project_root() / "data" / "final"


class TestCanonicalLocations:
    """Where a run reads and writes."""

    def test_inputs(self):
        root = get_project_root()
        assert paths.params_yml == root / "configs" / "params.yml"
        assert paths.data_raw == root / "data" / "raw"
        assert paths.isochrone_cache == root / "data" / "cache" / "isochrones"

    def test_outputs(self):
        root = get_project_root()
        assert paths.data_final == root / "data" / "final"
        assert paths.logs == root / "logs"
        assert paths.reports_layers == paths.reports / "layers"


class TestEnsureDir:
    """Tests for ensure_dir()."""

    def test_creates_nested_layer_directory(self, tmp_path):
        layers = tmp_path / "reports" / "layers"
        assert ensure_dir(layers) == layers
        assert layers.is_dir()

    def test_existing_directory_and_string_input(self, tmp_path):
        result = ensure_dir(str(tmp_path))
        assert isinstance(result, Path)
        assert result == tmp_path


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
