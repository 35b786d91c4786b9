"""
Schema validation and factor-level normalization.

Person records are validated on intake and every tabular output is
validated before it is written. Schema drift is a hard failure.

normalize_factor_levels() is the single place where categorical columns
receive their level sets. Every completed imputation and every prediction
grid passes through it, so all tables handed to the model share identical
categories.
"""

from dataclasses import dataclass

import pandas as pd
from pandas.api import types as ptypes

from survival_disparity.config import ModelConfig


class SchemaValidationError(Exception):
    """Raised when data does not conform to expected schema."""
    pass


@dataclass
class ColumnSpec:
    """Specification for a single column."""
    name: str
    dtype: str  # "numeric", "integer", "float64", "categorical", "object"
    required: bool = True
    nullable: bool = False
    description: str = ""


@dataclass
class TableSchema:
    """Schema definition for a table."""
    name: str
    description: str
    columns: list[ColumnSpec]

    def required_columns(self) -> list[str]:
        return [c.name for c in self.columns if c.required]

    def all_columns(self) -> list[str]:
        return [c.name for c in self.columns]


# =============================================================================
# Schema definitions
# =============================================================================

def person_records_schema(model_config: ModelConfig, id_column: str = "id") -> TableSchema:
    """
    Person-record schema for the configured column names.

    Covariates with declared levels are categorical, the rest numeric;
    all covariates may be missing.
    """
    columns = [
        ColumnSpec(id_column, "integer", required=False, nullable=False,
                   description="Person identifier"),
        ColumnSpec(model_config.outcome, "numeric", required=True, nullable=False,
                   description="Binary outcome (0/1)"),
        ColumnSpec(model_config.exposure, "categorical", required=True, nullable=False,
                   description="Race; must include the contrasted levels"),
    ]
    for col in model_config.covariates:
        kind = "categorical" if col in model_config.factor_levels else "numeric"
        columns.append(ColumnSpec(col, kind, required=True, nullable=True,
                                  description="Covariate"))
    columns += [
        ColumnSpec(model_config.group, "categorical", required=True, nullable=False,
                   description="City identifier (random-intercept group)"),
        ColumnSpec(model_config.moderator, "numeric", required=True, nullable=False,
                   description="City-level policy index, constant within city"),
    ]
    return TableSchema(
        name="person_records",
        description="One row per individual with city-level policy index broadcast",
        columns=columns,
    )


SCHEMA_PERSON_RECORDS = person_records_schema(ModelConfig())

SCHEMA_PREDICTION_DRAWS = TableSchema(
    name="prediction_draws",
    description="Posterior expected survival per draw, grid row and race",
    columns=[
        ColumnSpec("draw", "integer", description="Pooled posterior draw index"),
        ColumnSpec("row", "integer", description="Grid covariate profile"),
        ColumnSpec("policy_index", "numeric", description="Policy index value"),
        ColumnSpec("race", "categorical", description="Counterfactual race label"),
        ColumnSpec("epred", "float64", description="Expected survival probability"),
    ]
)

SCHEMA_DISPARITY_SUMMARY = TableSchema(
    name="disparity_summary",
    description="Posterior disparity (focal minus reference) per policy value",
    columns=[
        ColumnSpec("policy_index", "numeric", description="Policy index value"),
        ColumnSpec("mean_diff", "float64", description="Posterior mean difference"),
        ColumnSpec("lower", "float64", description="Lower credible bound"),
        ColumnSpec("upper", "float64", description="Upper credible bound"),
    ]
)

SCHEMA_POSTERIOR_EFFECTS = TableSchema(
    name="posterior_effects",
    description="Pooled fixed-effect estimates",
    columns=[
        ColumnSpec("term", "object", description="Model term"),
        ColumnSpec("est", "float64", description="Posterior mean"),
        ColumnSpec("est_error", "float64", required=False, description="Posterior SD"),
        ColumnSpec("lci", "float64", description="Lower 95% credible bound"),
        ColumnSpec("uci", "float64", description="Upper 95% credible bound"),
    ]
)

SCHEMA_REGISTRY: dict[str, TableSchema] = {
    "person_records": SCHEMA_PERSON_RECORDS,
    "prediction_draws": SCHEMA_PREDICTION_DRAWS,
    "disparity_summary": SCHEMA_DISPARITY_SUMMARY,
    "posterior_effects": SCHEMA_POSTERIOR_EFFECTS,
}


# =============================================================================
# Validation
# =============================================================================

def _dtype_compatible(series: pd.Series, expected: str) -> bool:
    if expected == "numeric":
        return ptypes.is_numeric_dtype(series) and not ptypes.is_bool_dtype(series)
    if expected == "integer":
        return ptypes.is_integer_dtype(series)
    if expected == "float64":
        return ptypes.is_float_dtype(series)
    if expected in ("categorical", "object"):
        return (isinstance(series.dtype, pd.CategoricalDtype)
                or ptypes.is_object_dtype(series)
                or ptypes.is_string_dtype(series))
    return str(series.dtype) == expected


def validate_schema(
    df: pd.DataFrame,
    schema: TableSchema | str,
    strict: bool = False,
) -> list[str]:
    """
    Validate a DataFrame against a schema.

    Args:
        df: DataFrame to validate.
        schema: TableSchema object or schema name from registry.
        strict: If True, fail on extra columns not in schema.

    Returns:
        Empty list when valid.

    Raises:
        SchemaValidationError: If validation fails.
    """
    if isinstance(schema, str):
        schema = get_schema(schema)

    errors = []

    for col in schema.columns:
        if col.required and col.name not in df.columns:
            errors.append(f"Missing required column: {col.name}")

    if strict:
        extra_cols = set(df.columns) - set(schema.all_columns())
        if extra_cols:
            errors.append(f"Unexpected columns: {sorted(extra_cols)}")

    for col in schema.columns:
        if col.name not in df.columns:
            continue

        series = df[col.name]

        if not col.nullable and series.isna().any():
            errors.append(
                f"Column '{col.name}' has {series.isna().sum()} null values but is not nullable"
            )

        if not _dtype_compatible(series, col.dtype):
            errors.append(f"Column '{col.name}' has dtype '{series.dtype}', expected '{col.dtype}'")

    if errors:
        error_msg = f"Schema validation failed for '{schema.name}':\n" + "\n".join(f"  - {e}" for e in errors)
        raise SchemaValidationError(error_msg)

    return errors


def get_schema(name: str) -> TableSchema:
    """
    Get a schema by name from the registry.

    Raises:
        ValueError: If schema not found.
    """
    if name not in SCHEMA_REGISTRY:
        raise ValueError(f"Unknown schema: {name}. Available: {list(SCHEMA_REGISTRY.keys())}")
    return SCHEMA_REGISTRY[name]


# =============================================================================
# Factor levels
# =============================================================================

def infer_factor_levels(
    df: pd.DataFrame,
    columns: list[str],
    declared: dict[str, list[str]] | None = None,
) -> dict[str, list[str]]:
    """
    Determine the level set for each categorical column.

    Declared levels come first, in declared order; build_formula() pins
    the first as the reference category; observed levels not declared are appended in
    sorted order. Declared levels absent from the data are dropped so no
    column carries an empty level into the model.
    """
    declared = declared or {}
    levels = {}
    for col in columns:
        observed = set(df[col].dropna().astype(str).unique())
        ordered = [lvl for lvl in declared.get(col, []) if lvl in observed]
        ordered += sorted(observed - set(ordered))
        levels[col] = ordered
    return levels


def normalize_factor_levels(
    df: pd.DataFrame,
    factor_levels: dict[str, list[str]],
) -> pd.DataFrame:
    """
    Coerce categorical columns to a fixed level schema.

    Values outside the declared levels are a hard failure rather than
    being silently turned into missing values.

    Returns:
        A copy of df with each listed column as an unordered Categorical.

    Raises:
        SchemaValidationError: If a column is missing or holds unknown values.
    """
    out = df.copy()
    errors = []
    for col, levels in factor_levels.items():
        if col not in out.columns:
            errors.append(f"Missing categorical column: {col}")
            continue
        values = out[col].astype("object").where(out[col].notna(), None)
        values = values.map(lambda v: v if v is None else str(v))
        unknown = set(values.dropna()) - set(levels)
        if unknown:
            errors.append(f"Column '{col}' has values outside {levels}: {sorted(unknown)}")
            continue
        out[col] = pd.Categorical(values, categories=levels)

    if errors:
        raise SchemaValidationError(
            "Factor level normalization failed:\n" + "\n".join(f"  - {e}" for e in errors)
        )
    return out
