"""
Posterior disparity between two counterfactual race assignments.

Differences are taken within a draw: the focal and reference predictions
for a grid row are matched on (draw, row) before subtracting, which keeps
the correlation induced by shared coefficient draws.
"""

import logging

import pandas as pd

from survival_disparity.logging_utils import log_step_start, log_step_end
from survival_disparity.qa import check_interval_ordering, check_paired_draws, raise_on_failures
from survival_disparity.schemas import SCHEMA_DISPARITY_SUMMARY, validate_schema


def pred_column(race: str) -> str:
    return f"{race.lower()}_pred"


def pair_draws(
    draws: pd.DataFrame,
    focal: str,
    reference: str,
    logger: logging.Logger | None = None,
) -> pd.DataFrame:
    """
    Wide table of paired predictions with their difference.

    Returns:
        DataFrame with draw, row, policy_index, <focal>_pred,
        <reference>_pred and diff (focal minus reference).

    Raises:
        ValueError: If any (draw, row) lacks a prediction for either race.
    """
    raise_on_failures([check_paired_draws(draws, [focal, reference], logger)])

    keys = ["draw", "row", "policy_index"]
    race = draws["race"].astype(str)
    focal_draws = draws.loc[race == focal, keys + ["epred"]].rename(
        columns={"epred": pred_column(focal)})
    reference_draws = draws.loc[race == reference, keys + ["epred"]].rename(
        columns={"epred": pred_column(reference)})

    paired = focal_draws.merge(reference_draws, on=keys, how="inner", validate="one_to_one")
    paired["diff"] = paired[pred_column(focal)] - paired[pred_column(reference)]
    return paired.sort_values(["row", "draw"]).reset_index(drop=True)


def summarize_disparity(
    paired: pd.DataFrame,
    credible_mass: float = 0.95,
    logger: logging.Logger | None = None,
) -> pd.DataFrame:
    """
    Posterior mean and equal-tailed credible interval of diff per policy value.

    Returns:
        DataFrame with policy_index, mean_diff, lower, upper.
    """
    if logger:
        log_step_start(logger, "summarize_disparity", credible_mass=credible_mass)

    alpha = (1.0 - credible_mass) / 2.0
    grouped = paired.groupby("policy_index")["diff"]
    summary = pd.DataFrame({
        "mean_diff": grouped.mean(),
        "lower": grouped.quantile(alpha),
        "upper": grouped.quantile(1.0 - alpha),
    }).reset_index()

    validate_schema(summary, SCHEMA_DISPARITY_SUMMARY)
    raise_on_failures([check_interval_ordering(summary, logger)])

    if logger:
        log_step_end(logger, "summarize_disparity", n_grid_values=len(summary))
    return summary
