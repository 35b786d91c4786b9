#!/usr/bin/env python3
"""
01_estimate_disparity.py

Estimate the Black-White disparity in predicted 2-year survival across
the city policy index.

Pipeline Step: 01

This script:
1. Loads person records from data.input_path (or simulates them)
2. Imputes missing covariates m times by chained equations
3. Fits a Bayesian hierarchical logistic model to each imputation and
   pools the posteriors
4. Predicts counterfactual survival for both race labels over the grid
5. Summarizes the paired posterior differences
6. Writes the posterior, summary, figure, effects table and diagnostics

Inputs:
    - configs/params.yml
    - data.input_path, when set

Outputs:
    - outputs/models/model_black_white_survival.nc
    - outputs/models/sampler_diagnostics.json
    - outputs/tables/disparity_black_white_over_policy.parquet (+ .csv)
    - outputs/tables/table2_posterior_effects.csv
    - outputs/figures/plot_black_white_disparity.png
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from survival_disparity.config import load_config
from survival_disparity.logging_utils import get_logger
from survival_disparity.pipeline import run_analysis


SCRIPT_NAME = "01_estimate_disparity"


def main() -> int:
    logger = get_logger(SCRIPT_NAME)

    try:
        config = load_config()
        result = run_analysis(config, logger=logger)

        logger.info("=" * 60)
        logger.info(f"{SCRIPT_NAME} completed successfully")
        logger.info(f"   Imputations: {len(result.completed)}  "
                    f"Pooled draws: {result.fit.n_draws:,}")
        logger.info("POSTERIOR FIXED EFFECTS:")
        for row in result.effects.itertuples(index=False):
            logger.info(f"   {row.term}: {row.est:.3f} [{row.lci:.3f}, {row.uci:.3f}]")
        logger.info("=" * 60)
        return 0

    except Exception as e:
        logger.exception(f"Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
