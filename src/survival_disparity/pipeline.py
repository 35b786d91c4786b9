"""
End-to-end disparity analysis.

Stages run in order and the first failure stops the run:

1. intake      - validated person records (input file or simulated cohort)
2. imputation  - m completed tables on one factor-level schema
3. model       - pooled Bayesian hierarchical logistic posterior
4. prediction  - counterfactual draws over the policy grid
5. disparity   - paired differences and their posterior summary
6. outputs     - posterior, summary, figure, effects table, diagnostics
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

import matplotlib.pyplot as plt
import pandas as pd

from survival_disparity.config import AnalysisConfig
from survival_disparity.disparity import pair_draws, summarize_disparity
from survival_disparity.hashing import write_metadata_sidecar
from survival_disparity.imputation import ChainedEquationsImputer, Imputer, impute_records
from survival_disparity.intake import PersonRecords, load_person_records, prepare_person_records
from survival_disparity.io_utils import (
    atomic_write_csv,
    atomic_write_figure,
    atomic_write_json,
    atomic_write_netcdf,
    atomic_write_parquet,
)
from survival_disparity.logging_utils import get_run_id, log_event, log_output_written
from survival_disparity.model import (
    BambiSampler,
    PooledFit,
    Sampler,
    build_formula,
    posterior_effects_table,
)
from survival_disparity.paths import paths, resolve_input_path
from survival_disparity.plotting import plot_disparity_curve
from survival_disparity.prediction import build_prediction_grid, predict_counterfactual_draws
from survival_disparity.schemas import (
    SCHEMA_DISPARITY_SUMMARY,
    SCHEMA_POSTERIOR_EFFECTS,
    validate_schema,
)
from survival_disparity.simulate import simulate_cohort


@dataclass
class AnalysisResult:
    """Everything one run produced, in stage order."""
    records: PersonRecords
    completed: list[pd.DataFrame]
    fit: PooledFit
    grid: pd.DataFrame
    draws: pd.DataFrame
    paired: pd.DataFrame
    summary: pd.DataFrame
    effects: pd.DataFrame
    input_path: Path | None = None
    outputs: dict[str, Path] = field(default_factory=dict)


def obtain_person_records(
    config: AnalysisConfig,
    logger: logging.Logger | None = None,
) -> tuple[PersonRecords, Path | None]:
    """
    Load data.input_path if configured, otherwise simulate a cohort.

    Returns:
        (validated records, resolved input path or None when simulated)
    """
    if config.data.input_path:
        input_path = resolve_input_path(config.data.input_path)
        records = load_person_records(input_path, config.model, config.contrast, logger,
                                      config.data.id_column)
        return records, input_path

    if logger:
        logger.warning("No data.input_path configured; using the simulated demonstration cohort")
    raw = simulate_cohort(config.simulation, config.random_seed)
    return prepare_person_records(raw, config.model, config.contrast, logger,
                                  config.data.id_column), None


def estimate_disparity(
    records: PersonRecords,
    config: AnalysisConfig,
    sampler: Sampler | None = None,
    imputer: Imputer | None = None,
    logger: logging.Logger | None = None,
) -> AnalysisResult:
    """
    Run imputation, model fit, prediction and summarization in memory.

    The sampler and imputer default to the bambi and IterativeImputer
    backends; tests inject deterministic stand-ins.
    """
    seed = config.random_seed
    model = config.model
    exclude = (config.data.id_column, model.group)
    if imputer is None:
        imputer = ChainedEquationsImputer(config.imputation, exclude=exclude, logger=logger)
    if sampler is None:
        sampler = BambiSampler(config.sampler, config.priors, model.group, seed, logger)

    completed = impute_records(records.data, config.imputation, records.factor_levels,
                               seed, imputer, logger, group=model.group,
                               moderator=model.moderator, exclude=exclude)

    constant_moderator = records.data[model.moderator].nunique() <= 1
    if constant_moderator and logger:
        log_event(logger, logging.WARNING,
                  f"{model.moderator} takes a single value; dropping it and its "
                  f"interaction from the model", "constant_moderator_dropped",
                  moderator=model.moderator, n_cities=records.n_cities)
    formula = build_formula(model, records.factor_levels, constant_moderator)
    if logger:
        logger.info(f"Model formula: {formula}")
    fit = sampler.fit(completed, formula, records.factor_levels)

    races = [config.contrast.focal, config.contrast.reference]
    grid = build_prediction_grid(config.grid, model)
    draws = predict_counterfactual_draws(sampler, fit, grid, races, model, logger)

    paired = pair_draws(draws, config.contrast.focal, config.contrast.reference, logger)
    summary = summarize_disparity(paired, config.contrast.credible_mass, logger)
    effects = posterior_effects_table(fit, config.contrast.credible_mass)

    return AnalysisResult(
        records=records,
        completed=completed,
        fit=fit,
        grid=grid,
        draws=draws,
        paired=paired,
        summary=summary,
        effects=effects,
    )


def write_outputs(
    result: AnalysisResult,
    config: AnalysisConfig,
    output_root: Path | None = None,
    logger: logging.Logger | None = None,
) -> dict[str, Path]:
    """
    Persist the run's terminal artifacts, each with a metadata sidecar.

    Layout under output_root (default: outputs/):
        models/   pooled posterior (NetCDF), sampler diagnostics (JSON)
        tables/   disparity summary (Parquet + CSV), posterior effects (CSV)
        figures/  disparity curve (PNG)
    """
    if output_root is None:
        models_dir, tables_dir, figures_dir = (
            paths.outputs_models, paths.outputs_tables, paths.outputs_figures)
    else:
        output_root = Path(output_root)
        models_dir, tables_dir, figures_dir = (
            output_root / "models", output_root / "tables", output_root / "figures")

    # Validate every table before anything touches disk.
    validate_schema(result.summary, SCHEMA_DISPARITY_SUMMARY)
    validate_schema(result.effects, SCHEMA_POSTERIOR_EFFECTS)

    names = config.outputs
    run_id = get_run_id()
    cfg = config.to_dict()
    inputs = [result.input_path] if result.input_path else None
    written: dict[str, Path] = {}

    def record(key: str, path: Path, row_count: int | None = None,
               sidecar: bool = True, **extra):
        if sidecar:
            write_metadata_sidecar(path, run_id, input_files=inputs, config=cfg,
                                   row_count=row_count, extra=extra or None)
        if logger:
            log_output_written(logger, path, row_count)
        written[key] = path

    if result.fit.idata is not None:
        record("model", atomic_write_netcdf(models_dir / names.model_file, result.fit.idata),
               formula=result.fit.formula, n_draws=result.fit.n_draws)

    diagnostics = [d.to_dict() for d in result.fit.diagnostics]
    record("diagnostics", atomic_write_json(models_dir / names.diagnostics_file, diagnostics))

    summary_path = tables_dir / names.summary_file
    record("summary", atomic_write_parquet(summary_path, result.summary), len(result.summary))
    # CSV copy shares the Parquet file's stem and sidecar.
    record("summary_csv", atomic_write_csv(summary_path.with_suffix(".csv"), result.summary),
           len(result.summary), sidecar=False)

    record("effects", atomic_write_csv(tables_dir / names.effects_file, result.effects),
           len(result.effects))

    fig = plot_disparity_curve(result.summary, config.contrast.focal, config.contrast.reference)
    try:
        record("figure", atomic_write_figure(figures_dir / names.figure_file, fig))
    finally:
        plt.close(fig)

    result.outputs.update(written)
    return written


def run_analysis(
    config: AnalysisConfig,
    output_root: Path | None = None,
    sampler: Sampler | None = None,
    imputer: Imputer | None = None,
    logger: logging.Logger | None = None,
) -> AnalysisResult:
    """Intake, estimate and write outputs."""
    records, input_path = obtain_person_records(config, logger)
    result = estimate_disparity(records, config, sampler, imputer, logger)
    result.input_path = input_path
    write_outputs(result, config, output_root, logger)

    if logger:
        unconverged = [d.imputation for d in result.fit.diagnostics if not d.ok]
        if unconverged:
            logger.warning(f"Sampler diagnostics flagged imputations {unconverged}; "
                           f"see {result.outputs.get('diagnostics')}")
        logger.info("Disparity summary (first/last grid values):\n"
                    + result.summary.iloc[[0, -1]].to_string(index=False))
    return result
