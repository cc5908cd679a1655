"""
Console entry point.

    siting-atlas-run [--config PATH] [--output-dir DIR] [--no-layers]

Runs scripts/run_siting_analysis.py from the project checkout in a fresh
interpreter, passing the resolved root through SITING_ATLAS_ROOT so the
script finds the same configs/ and data/ as this process.
"""

import os
import subprocess
import sys

from siting_atlas.paths import ROOT_ENV_VAR, get_project_root


SCRIPT = "run_siting_analysis.py"


def run_siting_analysis(argv: list[str] | None = None) -> int:
    """Run the siting analysis script and return its exit code."""
    root = get_project_root()
    script_path = root / "scripts" / SCRIPT
    if not script_path.exists():
        print(f"Error: Script not found: {script_path}", file=sys.stderr)
        return 1

    argv = sys.argv[1:] if argv is None else argv
    env = {**os.environ, ROOT_ENV_VAR: str(root)}
    result = subprocess.run([sys.executable, str(script_path), *argv], cwd=root, env=env)
    return result.returncode


if __name__ == "__main__":
    sys.exit(run_siting_analysis())
