"""
Multiple imputation by chained equations.

Each completed dataset is produced by scikit-learn's IterativeImputer with
posterior sampling, so the m draws differ and carry imputation
uncertainty into the pooled model. Categorical columns are imputed on
their level codes, bounded to the valid code range and rounded back to a
level; numeric columns are bounded to their observed range.
"""

import logging
from typing import Protocol

import numpy as np
import pandas as pd
from sklearn.experimental import enable_iterative_imputer  # noqa: F401
from sklearn.impute import IterativeImputer

from survival_disparity.config import ImputationConfig
from survival_disparity.logging_utils import log_event, log_step_start, log_step_end
from survival_disparity.qa import run_imputation_qa_checks
from survival_disparity.schemas import normalize_factor_levels


class ImputationError(Exception):
    """Raised when a column cannot be imputed."""
    pass


class Imputer(Protocol):
    """Produces one completed copy of a table."""

    def complete(
        self,
        df: pd.DataFrame,
        factor_levels: dict[str, list[str]],
        seed: int,
    ) -> pd.DataFrame:
        ...


class ChainedEquationsImputer:
    """
    IterativeImputer over level-coded categoricals and numeric columns.

    Columns listed in `exclude` (row id, city key) are carried through
    untouched and are not used as predictors; the city-level policy index
    stands in for city membership.
    """

    def __init__(
        self,
        config: ImputationConfig,
        exclude: tuple[str, ...] = ("id", "city_id"),
        logger: logging.Logger | None = None,
    ):
        self.config = config
        self.exclude = exclude
        self.logger = logger
        self.last_n_iter: int | None = None

    def _encode(self, df: pd.DataFrame, factor_levels: dict[str, list[str]]) -> pd.DataFrame:
        encoded = {}
        for col in df.columns:
            if col in factor_levels:
                codes = pd.Categorical(df[col], categories=factor_levels[col]).codes
                encoded[col] = np.where(codes < 0, np.nan, codes).astype(float)
            else:
                encoded[col] = pd.to_numeric(df[col], errors="raise").astype(float)
        return pd.DataFrame(encoded, index=df.index)

    def complete(
        self,
        df: pd.DataFrame,
        factor_levels: dict[str, list[str]],
        seed: int,
    ) -> pd.DataFrame:
        """
        Return one completed copy of df.

        Raises:
            ImputationError: If a column has no observed values.
        """
        columns = [c for c in df.columns if c not in self.exclude]
        encoded = self._encode(df[columns], factor_levels)

        empty = [c for c in columns if encoded[c].isna().all()]
        if empty:
            raise ImputationError(f"Columns with no observed values cannot be imputed: {empty}")

        if not encoded.isna().any().any():
            self.last_n_iter = 0
            return df.copy()

        # Bounds apply only to columns being imputed. A column with a single
        # observed value is filled with it directly.
        min_value = np.full(len(columns), -np.inf)
        max_value = np.full(len(columns), np.inf)
        for i, col in enumerate(columns):
            if not encoded[col].isna().any():
                continue
            if col in factor_levels:
                lo, hi = 0.0, float(len(factor_levels[col]) - 1)
            else:
                lo, hi = encoded[col].min(), encoded[col].max()
            if lo >= hi:
                encoded[col] = encoded[col].fillna(encoded[col].dropna().iloc[0])
                continue
            min_value[i], max_value[i] = lo, hi

        if not encoded.isna().any().any():
            self.last_n_iter = 0
            return self._decode(df, encoded, columns, factor_levels)

        imputer = IterativeImputer(
            max_iter=self.config.max_iter,
            tol=self.config.tol,
            sample_posterior=self.config.sample_posterior,
            min_value=min_value,
            max_value=max_value,
            skip_complete=True,
            random_state=seed,
        )
        filled = pd.DataFrame(imputer.fit_transform(encoded), columns=columns, index=df.index)
        self.last_n_iter = int(imputer.n_iter_)

        if self.logger and imputer.n_iter_ >= self.config.max_iter:
            log_event(self.logger, logging.WARNING,
                      f"Chained equations hit max_iter={self.config.max_iter} without "
                      f"meeting tol={self.config.tol} (seed {seed})",
                      "imputation_not_converged", seed=seed, n_iter=int(imputer.n_iter_))

        return self._decode(df, filled, columns, factor_levels)

    @staticmethod
    def _decode(
        df: pd.DataFrame,
        filled: pd.DataFrame,
        columns: list[str],
        factor_levels: dict[str, list[str]],
    ) -> pd.DataFrame:
        """Write imputed values back into the missing cells of df."""
        out = df.copy()
        for col in columns:
            missing = df[col].isna()
            if not missing.any():
                continue
            if col in factor_levels:
                codes = np.clip(np.rint(filled.loc[missing, col]), 0,
                                len(factor_levels[col]) - 1).astype(int)
                levels = np.asarray(factor_levels[col], dtype=object)
                values = out[col].astype(object)
                values.loc[missing] = levels[codes.to_numpy()]
                out[col] = values
            else:
                out.loc[missing, col] = filled.loc[missing, col]
        return out


def impute_records(
    records: pd.DataFrame,
    config: ImputationConfig,
    factor_levels: dict[str, list[str]],
    seed: int,
    imputer: Imputer | None = None,
    logger: logging.Logger | None = None,
    group: str = "city_id",
    moderator: str = "policy_index",
    exclude: tuple[str, ...] = ("id", "city_id"),
) -> list[pd.DataFrame]:
    """
    Produce config.m completed tables from records.

    Draw k (0-based) is seeded with seed + k. Every completed table is
    normalized to factor_levels and the set is checked for row counts,
    completeness, city policy constancy and level consistency.

    Args:
        group: City column; policy must stay constant within it.
        moderator: City-level policy column.
        exclude: Columns the default imputer carries through untouched.

    Returns:
        Ordered list of completed DataFrames.

    Raises:
        ImputationError: From the imputer.
        ValueError: If a post-imputation QA check fails.
    """
    if imputer is None:
        imputer = ChainedEquationsImputer(config, exclude=exclude, logger=logger)

    if logger:
        missing = records.isna().sum()
        log_step_start(logger, "impute_records", m=config.m,
                       missing=missing[missing > 0].to_dict())

    completed = []
    for k in range(config.m):
        filled = imputer.complete(records, factor_levels, seed + k)
        completed.append(normalize_factor_levels(filled, factor_levels))
        if logger:
            log_event(logger, logging.INFO, f"Imputation {k + 1}/{config.m} complete",
                      "imputation_summary", imputation=k + 1, seed=seed + k,
                      n_iter=getattr(imputer, "last_n_iter", None))

    run_imputation_qa_checks(records, completed, list(factor_levels), logger,
                             city_column=group, policy_column=moderator)

    if logger:
        log_step_end(logger, "impute_records", m=len(completed))

    return completed
