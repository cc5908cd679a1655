"""
Markdown run summary.

Lists every rule with its status, so skipped criteria are visible next to
the resulting area rather than silently treated as satisfied.
"""

import logging
from pathlib import Path

from siting_atlas.compositor import EligibleArea
from siting_atlas.io_utils import atomic_write_text
from siting_atlas.logging_utils import log_output_written
from siting_atlas.paths import paths
from siting_atlas.pipeline import PipelineResult

logger = logging.getLogger(__name__)

SUMMARY_FILENAME = "siting_summary.md"


def _pct(part: float, whole: float) -> str:
    return f"{100.0 * part / whole:.1f}%" if whole > 0 else "N/A"


def render_summary(result: PipelineResult) -> str:
    """Render the run summary as Markdown text."""
    universe = result.universe
    unit = universe.linear_unit
    total = universe.area

    lines = [
        "# Shelter Siting Summary",
        "",
        f"- **Run ID:** {result.run_id}",
        f"- **CRS:** {universe.crs} ({unit})",
        f"- **Universe area:** {total:,.1f} sq {unit}",
        f"- **Rules evaluated:** {len(result.evaluated)} of {len(result.outcomes)}",
        "",
        "## Rules",
        "",
        "| Rule | Kind | Status | Excluded area | Share of universe | Notes |",
        "|------|------|--------|---------------|-------------------|-------|",
    ]

    for outcome in result.outcomes:
        if outcome.evaluated:
            area = f"{outcome.exclusion_area:,.1f}"
            share = _pct(outcome.exclusion_area, total)
            notes = ""
        else:
            area = "-"
            share = "-"
            notes = outcome.reason or ""
            if outcome.error_type:
                notes = f"{outcome.error_type}: {notes}"
        lines.append(
            f"| {outcome.name} | {outcome.kind} | {outcome.status} | {area} | {share} | {notes} |"
        )

    lines.extend(["", "## Result", ""])

    composed = result.result
    if isinstance(composed, EligibleArea):
        lines.extend([
            f"- **Eligible area:** {composed.area:,.1f} sq {unit} ({_pct(composed.area, total)} of universe)",
            f"- **Disconnected parts:** {len(composed.parts)}",
        ])
    else:
        lines.extend([
            "- **No viable sites.**",
            f"- {composed.reason}",
        ])

    if result.unevaluated:
        lines.extend([
            "",
            "## Unevaluated Criteria",
            "",
            "These criteria were not applied. The eligible area above does not "
            "account for them.",
            "",
        ])
        for outcome in result.unevaluated:
            lines.append(f"- **{outcome.name}**: {outcome.reason}")

    return "\n".join(lines) + "\n"


def write_summary(result: PipelineResult, output_path: Path | str | None = None) -> Path:
    """Write the Markdown summary (defaults to reports/siting_summary.md)."""
    output_path = Path(output_path) if output_path else paths.reports / SUMMARY_FILENAME
    atomic_write_text(output_path, render_summary(result))
    log_output_written(logger, output_path)
    return output_path
