"""
Shelter Siting Atlas

Overlays public geospatial datasets (city boundary, school and childcare
locations, zoning districts, walking-distance isochrones) to show where a
set of site-selection criteria leaves land eligible within a city.

Core modules:
    - paths: Canonical root and path resolution
    - logging_utils: JSONL structured logging
    - io_utils: Atomic writes and I/O helpers
    - config: Pipeline parameters and rule declarations
    - region: Universe and input dataset loading
    - rules: Exclusion rule kinds and their evaluators
    - isochrone: Routing/geocoding service client and cache
    - compositor: Folding exclusions into the eligible area
    - pipeline: End-to-end run with per-rule isolation
    - export: Versioned structured export for report rendering
    - summary: Markdown run summary
"""

__version__ = "0.1.0"
__author__ = "Shelter Siting Atlas Team"
