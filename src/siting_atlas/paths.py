"""
Project root discovery and canonical locations.

The repository root is the nearest ancestor holding a `.project-root`
marker. Set SITING_ATLAS_ROOT to point an installed package at a checkout
elsewhere. Relative paths in configs/params.yml resolve against the root,
never against the working directory.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Union

MARKER = ".project-root"
ROOT_ENV_VAR = "SITING_ATLAS_ROOT"


@lru_cache(maxsize=None)
def get_project_root() -> Path:
    """
    Return the project root directory.

    Raises:
        FileNotFoundError: If no ancestor of this module holds the marker
            and SITING_ATLAS_ROOT is unset.
    """
    override = os.environ.get(ROOT_ENV_VAR)
    if override:
        return Path(override).resolve()

    here = Path(__file__).resolve().parent
    for candidate in (here, *here.parents):
        if (candidate / MARKER).exists():
            return candidate

    raise FileNotFoundError(
        f"Could not find {MARKER} above {here}. "
        f"Run from a Shelter Siting Atlas checkout or set {ROOT_ENV_VAR}."
    )


def get_path(*parts: str) -> Path:
    """
    Join `parts` onto the project root.

    Example:
        >>> get_path("data", "raw", "zoning.geojson")
        PosixPath('/path/to/project/data/raw/zoning.geojson')
    """
    return get_project_root().joinpath(*parts)


def resolve_path(path: Union[str, Path]) -> Path:
    """Return `path` unchanged if absolute, otherwise relative to the project root."""
    p = Path(path).expanduser()
    return p if p.is_absolute() else get_project_root() / p


def ensure_dir(path: Union[str, Path]) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


class Paths:
    """
    Where a run reads and writes.

    configs/params.yml     run parameters
    data/raw/              boundary and rule datasets
    data/cache/isochrones  routing responses keyed by request digest
    data/final/            siting_export.json and its metadata sidecar
    logs/                  one JSONL file per run
    reports/               siting_summary.md, layers/*.geojson
    """

    @property
    def root(self) -> Path:
        return get_project_root()

    @property
    def configs(self) -> Path:
        return get_path("configs")

    @property
    def params_yml(self) -> Path:
        return get_path("configs", "params.yml")

    @property
    def data_raw(self) -> Path:
        return get_path("data", "raw")

    @property
    def isochrone_cache(self) -> Path:
        return get_path("data", "cache", "isochrones")

    @property
    def data_final(self) -> Path:
        return get_path("data", "final")

    @property
    def logs(self) -> Path:
        return get_path("logs")

    @property
    def reports(self) -> Path:
        return get_path("reports")

    @property
    def reports_layers(self) -> Path:
        return get_path("reports", "layers")


paths = Paths()
