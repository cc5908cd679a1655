"""
Atomic output writes and input readers.

Every artifact (export, sidecar, layers, summary, routing cache entry) is
written to a sibling `.tmp` file and moved into place, so a crashed run
never leaves a half-written export behind. Leftover `.tmp` files mean a
write failed and are removed by `clean_tmp_files`.
"""

import json
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

import geopandas as gpd
import yaml

from siting_atlas.paths import ensure_dir


TMP_SUFFIX = ".tmp"


@contextmanager
def atomic_target(target_path: Path | str) -> Iterator[Path]:
    """
    Yield a temporary path next to `target_path`; move it into place on success.

    If the body raises, the temporary file is removed and `target_path`
    is left untouched.
    """
    target_path = Path(target_path)
    ensure_dir(target_path.parent)

    # Same directory keeps the rename on one filesystem
    fd, name = tempfile.mkstemp(suffix=TMP_SUFFIX, prefix=f"{target_path.stem}_",
                                dir=target_path.parent)
    os.close(fd)
    temp_path = Path(name)

    try:
        yield temp_path
        temp_path.replace(target_path)
    finally:
        if temp_path.exists():
            temp_path.unlink()


def atomic_write_json(target_path: Path | str, data: Any, indent: int = 2) -> Path:
    """Write `data` as UTF-8 JSON. Non-JSON values (paths, timestamps) are stringified."""
    with atomic_target(target_path) as temp_path:
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=indent, default=str)
    return Path(target_path)


def atomic_write_text(target_path: Path | str, content: str) -> Path:
    with atomic_target(target_path) as temp_path:
        temp_path.write_text(content, encoding="utf-8")
    return Path(target_path)


def atomic_write_geojson(target_path: Path | str, gdf: gpd.GeoDataFrame) -> Path:
    """
    Write a layer as GeoJSON in the frame's own CRS.

    Layers stay in the analysis CRS so areas read back from them match
    the export; GDAL records the CRS in the file.
    """
    with atomic_target(target_path) as temp_path:
        # Let GDAL create the file itself
        temp_path.unlink()
        gdf.to_file(temp_path, driver="GeoJSON")
    return Path(target_path)


# =============================================================================
# Readers
# =============================================================================

def read_json(file_path: Path | str) -> Any:
    """
    Read a JSON document.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file is not valid JSON.
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"JSON file not found: {file_path}")
    with open(file_path, "r", encoding="utf-8") as f:
        return json.load(f)


def read_yaml(file_path: Path | str) -> dict[str, Any]:
    """
    Read a YAML mapping such as configs/params.yml.

    An empty file reads as an empty mapping.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"YAML file not found: {file_path}")
    with open(file_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def clean_tmp_files(directory: Path | str) -> list[Path]:
    """Remove `.tmp` leftovers of failed writes from `directory`; return what was removed."""
    directory = Path(directory)
    if not directory.exists():
        return []

    removed = sorted(directory.glob(f"*{TMP_SUFFIX}"))
    for tmp_file in removed:
        tmp_file.unlink()
    return removed
