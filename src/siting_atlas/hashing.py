"""
Content digests and export provenance.

Digests serve two purposes:
- cache keys for memoized routing requests (identical parameters must map
  to the identical key across runs and processes)
- the metadata sidecar written next to every export: which datasets and
  config produced it, with which code and library versions
"""

import hashlib
import json
import subprocess
import sys
from datetime import datetime, timezone
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Any

import yaml

from siting_atlas.io_utils import atomic_write_json
from siting_atlas.paths import get_project_root


# Distributions recorded in every sidecar (index names, not import names)
PROVENANCE_PACKAGES = ("geopandas", "shapely", "pyproj", "pandas", "numpy", "requests", "pyyaml")

CHUNK_SIZE = 1 << 16


def hash_file(file_path: Path | str) -> str:
    """
    SHA-256 of a file's bytes.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Cannot hash non-existent file: {file_path}")

    hasher = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def hash_dict(data: dict) -> str:
    """
    SHA-256 of a mapping's canonical JSON form.

    Keys are sorted and separators fixed, so two mappings with equal
    content always give the same digest regardless of insertion order.
    """
    content = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def hash_config(config_path: Path | str) -> str:
    """
    Digest of a params file's parsed content.

    Comments, key order and whitespace do not change the digest; other
    file types fall back to their raw bytes.
    """
    config_path = Path(config_path)
    if config_path.suffix not in (".yml", ".yaml"):
        return hash_file(config_path)

    with open(config_path, "r", encoding="utf-8") as f:
        return hash_dict(yaml.safe_load(f) or {})


def get_git_commit() -> str | None:
    """Short commit of the working tree, or None outside a git checkout."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--short=8", "HEAD"],
            capture_output=True,
            text=True,
            cwd=get_project_root(),
            timeout=5,
        )
    except (subprocess.TimeoutExpired, FileNotFoundError):
        return None
    return result.stdout.strip() if result.returncode == 0 else None


def get_library_versions() -> dict[str, str]:
    versions = {"python": sys.version.split()[0]}
    for package in PROVENANCE_PACKAGES:
        try:
            versions[package] = version(package)
        except PackageNotFoundError:
            versions[package] = "not installed"
    return versions


def _hash_existing(files: list[Path | str] | None, hasher) -> dict[str, str]:
    # Keyed by full path: two datasets may share a file name
    digests = {}
    for f in files or []:
        f = Path(f)
        if f.exists():
            digests[str(f)] = hasher(f)
    return digests


def create_metadata_sidecar(
    output_path: Path | str,
    run_id: str,
    input_files: list[Path | str] | None = None,
    config_files: list[Path | str] | None = None,
    parameters: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Build provenance metadata for an output file.

    Args:
        output_path: The written output (hashed if it exists).
        run_id: Run identifier shared with the log file.
        input_files: Dataset files the output was derived from.
        config_files: Params files used for the run.
        parameters: Run parameters worth recording (CRS, rule outcomes).

    Returns:
        Metadata dictionary ready to be written as JSON.
    """
    output_path = Path(output_path)

    metadata = {
        "output_file": output_path.name,
        "run_id": run_id,
        "created_at": datetime.now(timezone.utc).isoformat(),
        "git_commit": get_git_commit(),
        "library_versions": get_library_versions(),
        "input_file_hashes": _hash_existing(input_files, hash_file),
        "config_hashes": _hash_existing(config_files, hash_config),
        "parameters": parameters or {},
    }
    if output_path.exists():
        metadata["output_hash"] = hash_file(output_path)
    return metadata


def write_metadata_sidecar(
    output_path: Path | str,
    run_id: str,
    input_files: list[Path | str] | None = None,
    config_files: list[Path | str] | None = None,
    parameters: dict[str, Any] | None = None,
) -> Path:
    """Write `<stem>_metadata.json` next to `output_path` and return its path."""
    output_path = Path(output_path)
    metadata = create_metadata_sidecar(output_path, run_id, input_files, config_files, parameters)
    sidecar_path = output_path.parent / f"{output_path.stem}_metadata.json"
    return atomic_write_json(sidecar_path, metadata)
