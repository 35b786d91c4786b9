"""
Canonical root detection and path resolution.

All scripts resolve inputs and outputs through survival_disparity.paths.
The .project-root file marks the repository root.
"""

from pathlib import Path
from typing import Union

# Cached project root
_PROJECT_ROOT: Path | None = None


def get_project_root() -> Path:
    """
    Find and return the project root directory.

    Searches upward from this file's location for the .project-root marker.
    Result is cached.

    Returns:
        Path to the project root directory.

    Raises:
        FileNotFoundError: If .project-root marker is not found.
    """
    global _PROJECT_ROOT

    if _PROJECT_ROOT is not None:
        return _PROJECT_ROOT

    current = Path(__file__).resolve().parent

    for _ in range(10):
        if (current / ".project-root").exists():
            _PROJECT_ROOT = current
            return _PROJECT_ROOT

        parent = current.parent
        if parent == current:
            break
        current = parent

    raise FileNotFoundError(
        "Could not find .project-root marker. "
        "Run from within the survival disparity repository."
    )


def get_path(*parts: str) -> Path:
    """
    Resolve a path relative to the project root.

    Example:
        >>> get_path("outputs", "tables")
        PosixPath('/path/to/project/outputs/tables')
    """
    return get_project_root() / Path(*parts)


def resolve_input_path(path: Union[str, Path]) -> Path:
    """Resolve a configured input path; relative paths are taken from the project root."""
    p = Path(path)
    if not p.is_absolute():
        p = get_project_root() / p
    return p


# =============================================================================
# Canonical path constants
# =============================================================================

class Paths:
    """
    Canonical path constants for the project.

    All paths are resolved relative to the project root.
    """

    @property
    def root(self) -> Path:
        """Project root directory."""
        return get_project_root()

    # -------------------------------------------------------------------------
    # Config
    # -------------------------------------------------------------------------
    @property
    def configs(self) -> Path:
        return get_path("configs")

    @property
    def params_yml(self) -> Path:
        return get_path("configs", "params.yml")

    # -------------------------------------------------------------------------
    # Data
    # -------------------------------------------------------------------------
    @property
    def data_raw(self) -> Path:
        return get_path("data", "raw")

    @property
    def simulated_cohort(self) -> Path:
        return self.data_raw / "simulated_cohort.parquet"

    # -------------------------------------------------------------------------
    # Outputs
    # -------------------------------------------------------------------------
    @property
    def outputs(self) -> Path:
        return get_path("outputs")

    @property
    def outputs_models(self) -> Path:
        return get_path("outputs", "models")

    @property
    def outputs_tables(self) -> Path:
        return get_path("outputs", "tables")

    @property
    def outputs_figures(self) -> Path:
        return get_path("outputs", "figures")

    # -------------------------------------------------------------------------
    # Logs
    # -------------------------------------------------------------------------
    @property
    def logs(self) -> Path:
        return get_path("logs")


# Singleton instance for convenience
paths = Paths()


def ensure_dir(path: Union[str, Path]) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path to ensure exists.

    Returns:
        The Path object for the directory.
    """
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p
