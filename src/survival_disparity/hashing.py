"""
Hashing and provenance metadata for outputs.

Each output gets a sidecar JSON with the run id, input file hashes, a
digest of the analysis configuration, the git commit, and the versions
of the statistical stack that produced it.
"""

import hashlib
import json
import subprocess
import sys
from datetime import datetime, timezone
from importlib import metadata as importlib_metadata
from pathlib import Path
from typing import Any

from survival_disparity.paths import get_project_root


# Distribution names, as installed
TRACKED_LIBRARIES = [
    "numpy",
    "pandas",
    "scipy",
    "scikit-learn",
    "pymc",
    "bambi",
    "arviz",
    "pyarrow",
    "matplotlib",
]


def hash_file(file_path: Path | str, algorithm: str = "sha256") -> str:
    """
    Compute the hash of a file.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Cannot hash non-existent file: {file_path}")

    hasher = hashlib.new(algorithm)
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def hash_dict(data: dict, algorithm: str = "sha256") -> str:
    """Hash a dictionary via its JSON serialization with sorted keys."""
    content = json.dumps(data, sort_keys=True, default=str)
    hasher = hashlib.new(algorithm)
    hasher.update(content.encode("utf-8"))
    return hasher.hexdigest()


def get_git_commit() -> str | None:
    """Short commit hash, or None outside a git checkout."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--short=8", "HEAD"],
            capture_output=True,
            text=True,
            cwd=get_project_root(),
            timeout=5
        )
        if result.returncode == 0:
            return result.stdout.strip()
    except (subprocess.TimeoutExpired, FileNotFoundError):
        pass
    return None


def get_library_versions() -> dict[str, str]:
    """Installed versions of the tracked libraries."""
    versions = {"python": sys.version.split()[0]}
    for lib in TRACKED_LIBRARIES:
        try:
            versions[lib] = importlib_metadata.version(lib)
        except importlib_metadata.PackageNotFoundError:
            versions[lib] = "not installed"
    return versions


def create_metadata_sidecar(
    output_path: Path | str,
    run_id: str,
    input_files: list[Path | str] | None = None,
    config: dict[str, Any] | None = None,
    row_count: int | None = None,
    extra: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build the metadata dictionary for one output file."""
    output_path = Path(output_path)

    metadata = {
        "output_file": output_path.name,
        "output_path": str(output_path),
        "run_id": run_id,
        "created_at": datetime.now(timezone.utc).isoformat(),
        "git_commit": get_git_commit(),
        "library_versions": get_library_versions(),
    }

    if input_files:
        metadata["input_file_hashes"] = {
            Path(f).name: hash_file(f) for f in input_files if Path(f).exists()
        }
    if config is not None:
        metadata["config_hash"] = hash_dict(config)
        metadata["config"] = config
    if row_count is not None:
        metadata["row_count"] = row_count
    if output_path.exists():
        metadata["output_hash"] = hash_file(output_path)
    if extra:
        metadata["extra"] = extra

    return metadata


def write_metadata_sidecar(
    output_path: Path | str,
    run_id: str,
    input_files: list[Path | str] | None = None,
    config: dict[str, Any] | None = None,
    row_count: int | None = None,
    extra: dict[str, Any] | None = None,
) -> Path:
    """
    Write <stem>_metadata.json next to an output.

    Returns:
        Path to the written metadata file.
    """
    output_path = Path(output_path)
    metadata = create_metadata_sidecar(output_path, run_id, input_files, config,
                                       row_count, extra)
    sidecar_path = output_path.parent / f"{output_path.stem}_metadata.json"

    # Imported here to avoid a circular import
    from survival_disparity.io_utils import atomic_write_json
    atomic_write_json(sidecar_path, metadata)
    return sidecar_path
