#!/usr/bin/env python3
"""
run_siting_analysis.py

Compose the configured exclusion rules over the city boundary and export
the eligible area for shelter siting.

This script:
1. Loads configs/params.yml (CRS, datasets, rules, failure policy)
2. Loads the boundary as the universe and every dataset a rule needs
3. Evaluates each rule in isolation (unevaluated rules are recorded, not dropped)
4. Composes the evaluated exclusions into the eligible area
5. Writes the structured export, GeoJSON layers and a Markdown summary

Inputs:
    - configs/params.yml
    - datasets referenced under `boundary` and `datasets:`
    - openrouteservice API key in $ORS_API_KEY (isochrone rules only)

Outputs:
    - data/final/siting_export.json (+ _metadata.json sidecar)
    - reports/layers/*.geojson
    - reports/siting_summary.md
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import argparse

from siting_atlas.config import load_config
from siting_atlas.export import EXPORT_FILENAME, write_export, write_layers
from siting_atlas.io_utils import clean_tmp_files
from siting_atlas.logging_utils import (
    attach_package_logging, get_logger, get_run_id, log_qa_check
)
from siting_atlas.paths import paths
from siting_atlas.pipeline import run_pipeline
from siting_atlas.summary import SUMMARY_FILENAME, write_summary


SCRIPT_NAME = "run_siting_analysis"


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Shelter siting exclusion analysis")
    parser.add_argument("--config", type=Path, default=None,
                        help="params.yml to use (default: configs/params.yml)")
    parser.add_argument("--output-dir", type=Path, default=None,
                        help="write export, layers and summary here instead of data/final and reports/")
    parser.add_argument("--no-layers", action="store_true",
                        help="skip writing GeoJSON layers")
    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    run_id = get_run_id()
    logger = get_logger(SCRIPT_NAME, run_id)
    attach_package_logging(logger)

    logger.info("=" * 60)
    logger.info(f"Starting {SCRIPT_NAME}")
    logger.info(f"Run ID: {run_id}")
    logger.info("=" * 60)

    try:
        config_path = args.config or paths.params_yml
        config = load_config(config_path)
        logger.info(f"Loaded {len(config.rules)} rules from {config_path}")

        result = run_pipeline(config, run_id=run_id)

        if args.output_dir:
            export_path = args.output_dir / EXPORT_FILENAME
            layers_dir = args.output_dir / "layers"
            summary_path = args.output_dir / SUMMARY_FILENAME
        else:
            export_path = paths.data_final / EXPORT_FILENAME
            layers_dir = paths.reports_layers
            summary_path = paths.reports / SUMMARY_FILENAME

        input_files = [config.boundary] + [d.path for d in config.datasets.values()]
        write_export(
            result,
            export_path,
            input_files=input_files,
            config_files=[config_path],
        )

        if not args.no_layers:
            write_layers(result, layers_dir)
        write_summary(result, summary_path)

        log_qa_check(logger, "all_rules_evaluated", not result.unevaluated,
                     f"{len(result.unevaluated)} unevaluated rules")

        for directory in (export_path.parent, layers_dir, summary_path.parent):
            clean_tmp_files(directory)

        logger.info("=" * 60)
        logger.info(f"✅ {SCRIPT_NAME} completed successfully")
        for outcome in result.outcomes:
            if outcome.evaluated:
                logger.info(f"   {outcome.name}: excludes {outcome.exclusion_area:,.1f}")
            else:
                logger.info(f"   {outcome.name}: UNEVALUATED ({outcome.reason})")
        if result.is_viable:
            logger.info(f"   Eligible area: {result.total_eligible_area:,.1f} sq {result.universe.linear_unit}")
        else:
            logger.info(f"   No viable sites: {result.result.reason}")
        logger.info("=" * 60)

        return 0

    except Exception as e:
        logger.exception(f"Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
