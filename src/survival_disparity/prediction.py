"""
Counterfactual posterior predictions over a policy grid.

The grid holds the covariates at fixed reference values and varies only
the policy index. It is duplicated once per race label and predicted in a
single call, so every race shares the same posterior draws. Predictions
are conditional on the reference profile, not marginal over the cohort.
"""

import logging

import numpy as np
import pandas as pd

from survival_disparity.config import GridConfig, ModelConfig
from survival_disparity.logging_utils import log_step_start, log_step_end
from survival_disparity.model import PooledFit, Sampler
from survival_disparity.schemas import (
    SCHEMA_PREDICTION_DRAWS,
    normalize_factor_levels,
    validate_schema,
)


def policy_grid_values(grid: GridConfig) -> np.ndarray:
    """
    Inclusive policy sequence start..stop by step, rounded to kill
    floating-point drift (0.3, 0.31, ..., 0.9).
    """
    n_steps = int(np.floor((grid.policy_stop - grid.policy_start) / grid.policy_step + 1e-9))
    values = grid.policy_start + grid.policy_step * np.arange(n_steps + 1)
    return np.round(values, 10)


def build_prediction_grid(
    grid: GridConfig,
    model_config: ModelConfig,
) -> pd.DataFrame:
    """
    One row per policy value with covariates at their reference values.

    Returns:
        DataFrame with row, policy_index and one column per covariate.
    """
    policy = policy_grid_values(grid)
    base = pd.DataFrame({"row": np.arange(len(policy)), model_config.moderator: policy})
    for col in model_config.covariates:
        base[col] = grid.reference[col]
    return base


def counterfactual_frame(
    base_grid: pd.DataFrame,
    races: list[str],
    model_config: ModelConfig,
    factor_levels: dict[str, list[str]],
) -> pd.DataFrame:
    """
    Stack one copy of the grid per race label on the fitted level schema.

    The group column is set to a known level so the design can be built;
    group-level intercepts are excluded at prediction time.
    """
    unknown = [r for r in races if r not in factor_levels[model_config.exposure]]
    if unknown:
        raise ValueError(f"Race labels not in the fitted levels: {unknown}")

    frames = [base_grid.assign(**{model_config.exposure: race}) for race in races]
    stacked = pd.concat(frames, ignore_index=True)
    stacked[model_config.group] = factor_levels[model_config.group][0]
    return normalize_factor_levels(stacked, factor_levels)


def predict_counterfactual_draws(
    sampler: Sampler,
    fit: PooledFit,
    base_grid: pd.DataFrame,
    races: list[str],
    model_config: ModelConfig,
    logger: logging.Logger | None = None,
) -> pd.DataFrame:
    """
    Posterior expected survival for every draw, grid row and race.

    Returns:
        Long DataFrame with draw, row, policy_index, race, epred.
    """
    if logger:
        log_step_start(logger, "predict_counterfactual_draws",
                       n_grid_rows=len(base_grid), races=races)

    newdata = counterfactual_frame(base_grid, races, model_config, fit.factor_levels)
    epred = np.asarray(sampler.predict(fit, newdata), dtype=float)

    n_draws = epred.shape[0]
    if epred.shape != (n_draws, len(newdata)):
        raise ValueError(
            f"Sampler returned predictions of shape {epred.shape}, "
            f"expected (n_draws, {len(newdata)})"
        )

    draws = pd.DataFrame({
        "draw": np.repeat(np.arange(n_draws), len(newdata)),
        "row": np.tile(newdata["row"].to_numpy(), n_draws),
        "policy_index": np.tile(newdata[model_config.moderator].to_numpy(dtype=float), n_draws),
        "race": np.tile(newdata[model_config.exposure].astype(str).to_numpy(), n_draws),
        "epred": epred.reshape(-1),
    })
    validate_schema(draws, SCHEMA_PREDICTION_DRAWS)

    if logger:
        log_step_end(logger, "predict_counterfactual_draws",
                     n_draws=n_draws, n_rows=len(draws))
    return draws
