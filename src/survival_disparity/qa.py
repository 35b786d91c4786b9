"""
Quality assurance checks for the disparity pipeline.

This module provides QA checks for:
- Completeness of imputed tables
- Row-count preservation
- City-level policy constancy
- Required race levels
- Factor-level consistency across imputations
- Paired posterior draws
- Credible-interval ordering
"""

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np
import pandas as pd

from survival_disparity.logging_utils import log_qa_check


@dataclass
class QAResult:
    """Result of a QA check."""
    check_name: str
    passed: bool
    message: str
    details: dict[str, Any] | None = None

    def __bool__(self) -> bool:
        return self.passed


def _report(result: QAResult, logger: logging.Logger | None) -> QAResult:
    if logger:
        log_qa_check(logger, result.check_name, result.passed, result.message,
                     **(result.details or {}))
    return result


def raise_on_failures(results: list[QAResult]) -> None:
    """
    Raise if any check failed.

    Raises:
        ValueError: Listing every failed check.
    """
    failed = [r for r in results if not r.passed]
    if failed:
        messages = [f"{r.check_name}: {r.message}" for r in failed]
        raise ValueError("QA checks failed:\n" + "\n".join(messages))


# =============================================================================
# Completeness checks
# =============================================================================

def check_no_nulls(
    df: pd.DataFrame,
    columns: list[str] | None = None,
    logger: logging.Logger | None = None,
) -> QAResult:
    """
    Check that the given columns (default: all) have no null values.
    """
    check_name = "no_nulls"
    columns = list(df.columns) if columns is None else columns

    missing_cols = [c for c in columns if c not in df.columns]
    if missing_cols:
        return _report(QAResult(
            check_name=check_name,
            passed=False,
            message=f"Columns not found: {missing_cols}",
            details={"missing_columns": missing_cols}
        ), logger)

    null_counts = {c: int(df[c].isna().sum()) for c in columns}
    cols_with_nulls = {k: v for k, v in null_counts.items() if v > 0}

    if not cols_with_nulls:
        result = QAResult(
            check_name=check_name,
            passed=True,
            message=f"No null values in {len(columns)} checked columns",
        )
    else:
        result = QAResult(
            check_name=check_name,
            passed=False,
            message=f"Found {sum(cols_with_nulls.values())} null values",
            details={"columns_with_nulls": cols_with_nulls}
        )
    return _report(result, logger)


def check_row_count(
    df: pd.DataFrame,
    expected: int,
    logger: logging.Logger | None = None,
) -> QAResult:
    """Check that a derived table kept the input row count."""
    actual = len(df)
    return _report(QAResult(
        check_name="row_count",
        passed=actual == expected,
        message=f"{actual} rows (expected {expected})",
        details={"actual": actual, "expected": expected}
    ), logger)


# =============================================================================
# Structural checks
# =============================================================================

def check_policy_constant_within_city(
    df: pd.DataFrame,
    city_column: str = "city_id",
    policy_column: str = "policy_index",
    logger: logging.Logger | None = None,
) -> QAResult:
    """
    Check that every city carries exactly one policy-index value.
    """
    check_name = "policy_constant_within_city"
    n_values = df.groupby(city_column, observed=True)[policy_column].nunique(dropna=False)
    offenders = n_values[n_values > 1]

    if offenders.empty:
        result = QAResult(
            check_name=check_name,
            passed=True,
            message=f"Policy index constant within all {len(n_values)} cities",
            details={"n_cities": int(len(n_values))}
        )
    else:
        result = QAResult(
            check_name=check_name,
            passed=False,
            message=f"{len(offenders)} cities have more than one policy value",
            details={"cities": [str(c) for c in offenders.index[:10]]}
        )
    return _report(result, logger)


def check_required_levels(
    df: pd.DataFrame,
    column: str,
    required: list[str],
    logger: logging.Logger | None = None,
) -> QAResult:
    """Check that a categorical column contains every required level."""
    observed = set(df[column].dropna().astype(str).unique())
    missing = [lvl for lvl in required if lvl not in observed]
    return _report(QAResult(
        check_name=f"required_levels_{column}",
        passed=not missing,
        message=(f"All required levels present: {required}" if not missing
                 else f"Missing required levels: {missing}"),
        details={"observed": sorted(observed), "required": list(required)}
    ), logger)


def check_consistent_factor_levels(
    tables: list[pd.DataFrame],
    columns: list[str],
    logger: logging.Logger | None = None,
) -> QAResult:
    """
    Check that every table carries identical categories for each column.
    """
    check_name = "consistent_factor_levels"
    mismatched = {}
    for col in columns:
        level_sets = []
        for df in tables:
            dtype = df[col].dtype
            level_sets.append(
                tuple(dtype.categories) if isinstance(dtype, pd.CategoricalDtype) else None
            )
        if None in level_sets or len(set(level_sets)) > 1:
            mismatched[col] = [list(s) if s is not None else None for s in level_sets]

    if not mismatched:
        result = QAResult(
            check_name=check_name,
            passed=True,
            message=f"{len(columns)} categorical columns consistent across {len(tables)} tables",
        )
    else:
        result = QAResult(
            check_name=check_name,
            passed=False,
            message=f"Level sets differ for {sorted(mismatched)}",
            details={"mismatched": mismatched}
        )
    return _report(result, logger)


# =============================================================================
# Posterior checks
# =============================================================================

def check_paired_draws(
    draws: pd.DataFrame,
    races: list[str],
    logger: logging.Logger | None = None,
) -> QAResult:
    """
    Check that each grid row has the same draw indices for every race.
    """
    check_name = "paired_draws"
    per_race = {
        race: draws.loc[draws["race"].astype(str) == race].groupby("row")["draw"].apply(
            lambda s: tuple(sorted(s))
        )
        for race in races
    }
    base = per_race[races[0]]
    unpaired_rows = set()
    for race in races[1:]:
        other = per_race[race]
        rows = base.index.union(other.index)
        for row in rows:
            if base.get(row) != other.get(row):
                unpaired_rows.add(int(row))

    draw_counts = {race: int(s.map(len).min()) if len(s) else 0 for race, s in per_race.items()}
    result = QAResult(
        check_name=check_name,
        passed=not unpaired_rows,
        message=("Draws paired for every grid row" if not unpaired_rows
                 else f"{len(unpaired_rows)} grid rows have unpaired draws"),
        details={"min_draws_per_race": draw_counts,
                 "unpaired_rows": sorted(unpaired_rows)[:10]}
    )
    return _report(result, logger)


def check_interval_ordering(
    summary: pd.DataFrame,
    logger: logging.Logger | None = None,
) -> QAResult:
    """Check lower <= mean_diff <= upper for every policy value."""
    bad = summary[~((summary["lower"] <= summary["mean_diff"])
                    & (summary["mean_diff"] <= summary["upper"]))]
    return _report(QAResult(
        check_name="interval_ordering",
        passed=bad.empty,
        message=(f"Interval ordered for all {len(summary)} grid values" if bad.empty
                 else f"{len(bad)} grid values violate lower <= mean <= upper"),
        details={"violations": bad["policy_index"].astype(float).round(6).tolist()[:10]}
    ), logger)


# =============================================================================
# Aggregate runners
# =============================================================================

def run_imputation_qa_checks(
    original: pd.DataFrame,
    completed: list[pd.DataFrame],
    categorical_columns: list[str],
    logger: logging.Logger | None = None,
    fail_on_error: bool = True,
    city_column: str = "city_id",
    policy_column: str = "policy_index",
) -> list[QAResult]:
    """
    Run the post-conditions every imputed dataset set must satisfy.

    Raises:
        ValueError: If fail_on_error and any check fails.
    """
    results = []
    for df in completed:
        results.append(check_row_count(df, len(original), logger))
        results.append(check_no_nulls(df, logger=logger))
        results.append(check_policy_constant_within_city(df, city_column, policy_column, logger))
    results.append(check_consistent_factor_levels(completed, categorical_columns, logger))

    # Cities must keep the policy value they had before imputation.
    before = original.groupby(city_column, observed=True)[policy_column].first()
    for k, df in enumerate(completed, start=1):
        after = df.groupby(city_column, observed=True)[policy_column].first()
        aligned = after.reindex(before.index)
        same = np.allclose(aligned.to_numpy(dtype=float), before.to_numpy(dtype=float))
        results.append(_report(QAResult(
            check_name="policy_unchanged_by_imputation",
            passed=bool(same),
            message=f"Imputation {k}: city policy values " + ("unchanged" if same else "changed"),
        ), logger))

    if fail_on_error:
        raise_on_failures(results)

    return results
