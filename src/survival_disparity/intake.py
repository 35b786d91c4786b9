"""
Person-record intake.

Reads the configured input table (or takes an in-memory frame), validates
it against the person-record schema for the configured columns and the city/policy invariant, and
returns it with categorical columns on a fixed level schema.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import pandas as pd

from survival_disparity.config import ContrastConfig, ModelConfig
from survival_disparity.io_utils import read_table
from survival_disparity.logging_utils import log_step_start, log_step_end
from survival_disparity.qa import (
    check_policy_constant_within_city,
    check_required_levels,
    raise_on_failures,
)
from survival_disparity.schemas import (
    SchemaValidationError,
    infer_factor_levels,
    normalize_factor_levels,
    person_records_schema,
    validate_schema,
)


@dataclass(frozen=True)
class PersonRecords:
    """Validated person records plus the level schema derived from them."""
    data: pd.DataFrame
    factor_levels: dict[str, list[str]]
    group: str = "city_id"

    @property
    def categorical_columns(self) -> list[str]:
        return list(self.factor_levels)

    @property
    def n_cities(self) -> int:
        return int(self.data[self.group].nunique())


def categorical_columns(model_config: ModelConfig) -> list[str]:
    """Categorical columns of the analysis table, in model order."""
    cols = [model_config.exposure]
    cols += [c for c in model_config.covariates if c in model_config.factor_levels]
    cols.append(model_config.group)
    return cols


def prepare_person_records(
    df: pd.DataFrame,
    model_config: ModelConfig,
    contrast: ContrastConfig,
    logger: logging.Logger | None = None,
    id_column: str = "id",
) -> PersonRecords:
    """
    Validate raw person records and put categoricals on a fixed schema.

    Raises:
        SchemaValidationError: Missing columns, wrong types, nulls in
            non-nullable columns, or a non-binary outcome.
        ValueError: A city with more than one policy value, or a
            contrasted race level absent from the data.
    """
    if logger:
        log_step_start(logger, "prepare_person_records", n_rows=len(df))

    validate_schema(df, person_records_schema(model_config, id_column))

    outcome = model_config.outcome
    outcome_values = set(pd.unique(df[outcome]))
    if not outcome_values <= {0, 1}:
        raise SchemaValidationError(
            f"Outcome '{outcome}' must be binary 0/1, found {sorted(outcome_values)}"
        )

    required_race = [contrast.focal, contrast.reference]
    raise_on_failures([
        check_policy_constant_within_city(df, model_config.group,
                                          model_config.moderator, logger),
        check_required_levels(df, model_config.exposure, required_race, logger),
    ])

    cat_cols = categorical_columns(model_config)
    factor_levels = infer_factor_levels(df, cat_cols, model_config.factor_levels)

    data = normalize_factor_levels(df, factor_levels)
    data[outcome] = data[outcome].astype(np.int64)
    data[model_config.moderator] = data[model_config.moderator].astype(float)
    for col in model_config.covariates:
        if col not in factor_levels:
            data[col] = data[col].astype(float)
    data = data.reset_index(drop=True)

    if logger:
        logger.info(
            f"Person records: {len(data):,} rows, {data[model_config.group].nunique()} cities, "
            f"missing values per column: {data.isna().sum()[data.isna().sum() > 0].to_dict()}"
        )
        log_step_end(logger, "prepare_person_records", n_rows=len(data))

    return PersonRecords(data=data, factor_levels=factor_levels, group=model_config.group)


def load_person_records(
    input_path: Path | str,
    model_config: ModelConfig,
    contrast: ContrastConfig,
    logger: logging.Logger | None = None,
    id_column: str = "id",
) -> PersonRecords:
    """Read a .parquet/.csv person table and validate it."""
    if logger:
        logger.info(f"Reading person records from {input_path}")
    return prepare_person_records(read_table(input_path), model_config, contrast, logger,
                                  id_column)
