#!/usr/bin/env python3
"""
00_simulate_cohort.py

Simulate the demonstration person-level cohort.

Pipeline Step: 00

This script:
1. Loads simulation parameters from configs/params.yml
2. Simulates city-clustered person records with covariate missingness
3. Validates the records against the person-record schema
4. Writes the cohort so it can be set as data.input_path

Inputs:
    - configs/params.yml

Outputs:
    - data/raw/simulated_cohort.parquet
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from survival_disparity.config import load_config
from survival_disparity.hashing import write_metadata_sidecar
from survival_disparity.intake import prepare_person_records
from survival_disparity.io_utils import atomic_write_parquet
from survival_disparity.logging_utils import (
    get_logger, log_step_start, log_step_end, log_output_written, get_run_id
)
from survival_disparity.paths import paths
from survival_disparity.simulate import simulate_cohort


SCRIPT_NAME = "00_simulate_cohort"


def main() -> int:
    logger = get_logger(SCRIPT_NAME)
    run_id = get_run_id()

    try:
        config = load_config()

        log_step_start(logger, "simulate_cohort",
                       n_individuals=config.simulation.n_individuals,
                       n_cities=config.simulation.n_cities)
        cohort = simulate_cohort(config.simulation, config.random_seed)
        prepare_person_records(cohort, config.model, config.contrast, logger)
        log_step_end(logger, "simulate_cohort", n_rows=len(cohort))

        output_path = atomic_write_parquet(paths.simulated_cohort, cohort)
        log_output_written(logger, output_path, row_count=len(cohort))
        write_metadata_sidecar(
            output_path,
            run_id,
            config={"random_seed": config.random_seed,
                    "simulation": config.to_dict()["simulation"]},
            row_count=len(cohort),
        )

        logger.info("=" * 60)
        logger.info(f"{SCRIPT_NAME} completed successfully")
        logger.info(f"   Rows: {len(cohort):,}  Cities: {cohort['city_id'].nunique()}")
        logger.info(f"   Missing: {cohort.isna().sum()[cohort.isna().sum() > 0].to_dict()}")
        logger.info("=" * 60)
        return 0

    except Exception as e:
        logger.exception(f"Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
