"""
Atomic writes and I/O helpers.

Outputs are written to a temp file in the target directory and renamed
into place, so a failed run never leaves a half-written artifact.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, TYPE_CHECKING

if TYPE_CHECKING:
    import arviz as az
    import pandas as pd
    from matplotlib.figure import Figure

from survival_disparity.paths import ensure_dir


def atomic_write(
    target_path: Path | str,
    write_func: Callable,
    *args,
    **kwargs
) -> Path:
    """
    Write to a file atomically using a temporary file and rename.

    Args:
        target_path: Final destination path.
        write_func: Called as write_func(temp_path, *args, **kwargs).

    Returns:
        The target path.

    Raises:
        Exception: Re-raises any exception from write_func after cleanup.
    """
    target_path = Path(target_path)
    ensure_dir(target_path.parent)

    # Same directory keeps the rename on one filesystem; the suffix is
    # preserved for writers that infer the format from the extension.
    temp_fd, temp_path = tempfile.mkstemp(
        suffix=f".tmp{target_path.suffix}",
        prefix=f"{target_path.stem}_",
        dir=target_path.parent
    )
    temp_path = Path(temp_path)

    try:
        os.close(temp_fd)
        write_func(temp_path, *args, **kwargs)
        temp_path.replace(target_path)
        return target_path

    except Exception:
        if temp_path.exists():
            temp_path.unlink()
        raise


def atomic_write_json(target_path: Path | str, data: Any, indent: int = 2) -> Path:
    """Write JSON data to a file atomically."""
    def write_json(temp_path: Path, data: Any, indent: int):
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=indent, default=str)

    return atomic_write(target_path, write_json, data, indent)


def atomic_write_parquet(
    target_path: Path | str,
    df: "pd.DataFrame",
    **kwargs
) -> Path:
    """
    Write a DataFrame to Parquet atomically.

    Args:
        target_path: Destination file path.
        df: DataFrame to write.
        **kwargs: Passed to pyarrow.parquet.write_table.
    """
    import pyarrow as pa
    import pyarrow.parquet as pq

    def write_parquet(temp_path: Path, df: "pd.DataFrame", **kwargs):
        table = pa.Table.from_pandas(df, preserve_index=False)
        pq.write_table(table, temp_path, **kwargs)

    return atomic_write(target_path, write_parquet, df, **kwargs)


def atomic_write_csv(target_path: Path | str, df: "pd.DataFrame") -> Path:
    """Write a DataFrame to CSV atomically (no index column)."""
    def write_csv(temp_path: Path, df: "pd.DataFrame"):
        df.to_csv(temp_path, index=False)

    return atomic_write(target_path, write_csv, df)


def atomic_write_netcdf(target_path: Path | str, idata: "az.InferenceData") -> Path:
    """Write an ArviZ InferenceData object to NetCDF atomically."""
    def write_netcdf(temp_path: Path, idata):
        idata.to_netcdf(str(temp_path))

    return atomic_write(target_path, write_netcdf, idata)


def atomic_write_figure(target_path: Path | str, fig: "Figure", dpi: int = 300) -> Path:
    """Save a matplotlib figure atomically."""
    def write_figure(temp_path: Path, fig, dpi: int):
        fig.savefig(temp_path, dpi=dpi, bbox_inches="tight", facecolor="white",
                    format=Path(target_path).suffix.lstrip(".") or "png")

    return atomic_write(target_path, write_figure, fig, dpi)


# =============================================================================
# Read utilities
# =============================================================================

def read_table(file_path: Path | str) -> "pd.DataFrame":
    """
    Read a Parquet or CSV file into a DataFrame, dispatching on suffix.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the suffix is not .parquet or .csv.
    """
    import pandas as pd

    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Input table not found: {file_path}")

    suffix = file_path.suffix.lower()
    if suffix == ".parquet":
        return pd.read_parquet(file_path)
    if suffix == ".csv":
        return pd.read_csv(file_path)
    raise ValueError(f"Unsupported input format '{suffix}' for {file_path}; use .parquet or .csv")


def read_json(file_path: Path | str) -> Any:
    """Read a JSON file."""
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"JSON file not found: {file_path}")
    with open(file_path, "r", encoding="utf-8") as f:
        return json.load(f)


def read_yaml(file_path: Path | str) -> Any:
    """
    Read a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    import yaml

    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"YAML file not found: {file_path}")
    with open(file_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f)


def read_netcdf(file_path: Path | str) -> "az.InferenceData":
    """Read a NetCDF posterior written by atomic_write_netcdf."""
    import arviz as az

    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"NetCDF file not found: {file_path}")
    return az.from_netcdf(str(file_path))
