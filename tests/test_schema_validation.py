"""
Tests for survival_disparity.schemas module.

Tests cover:
- Schema registry completeness
- Validation catches missing columns, wrong types and nulls
- Factor-level inference and normalization
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import numpy as np
import pandas as pd
import pytest

from survival_disparity.config import ModelConfig
from survival_disparity.schemas import (
    SCHEMA_DISPARITY_SUMMARY,
    SCHEMA_PERSON_RECORDS,
    SCHEMA_REGISTRY,
    ColumnSpec,
    SchemaValidationError,
    TableSchema,
    get_schema,
    infer_factor_levels,
    normalize_factor_levels,
    person_records_schema,
    validate_schema,
)


class TestSchemaRegistry:
    """Tests for schema registry completeness."""

    def test_registry_has_required_schemas(self):
        for name in ("person_records", "prediction_draws", "disparity_summary", "posterior_effects"):
            assert name in SCHEMA_REGISTRY, f"Missing schema: {name}"

    def test_get_schema_raises_on_unknown(self):
        with pytest.raises(ValueError, match="Unknown schema"):
            get_schema("nonexistent_schema")


class TestPersonRecordsSchema:
    """Tests for validating person records."""

    def test_valid_records_pass(self, sample_records_df):
        assert validate_schema(sample_records_df, SCHEMA_PERSON_RECORDS) == []

    def test_accepts_schema_by_name(self, sample_records_df):
        assert validate_schema(sample_records_df, "person_records") == []

    def test_id_is_optional(self, sample_records_df):
        assert validate_schema(sample_records_df.drop(columns=["id"]), SCHEMA_PERSON_RECORDS) == []

    def test_missing_city_fails(self, sample_records_df):
        df = sample_records_df.drop(columns=["city_id"])
        with pytest.raises(SchemaValidationError, match="Missing required column.*city_id"):
            validate_schema(df, SCHEMA_PERSON_RECORDS)

    def test_nullable_covariates_pass(self, sample_records_df):
        df = sample_records_df.copy()
        df.loc[0, ["age", "sex", "insured", "married"]] = [np.nan, None, None, None]
        assert validate_schema(df, SCHEMA_PERSON_RECORDS) == []

    def test_missing_outcome_value_fails(self, sample_records_df):
        df = sample_records_df.copy()
        df["survived_2y"] = df["survived_2y"].astype(float)
        df.loc[0, "survived_2y"] = np.nan
        with pytest.raises(SchemaValidationError, match="survived_2y.*null values"):
            validate_schema(df, SCHEMA_PERSON_RECORDS)

    def test_missing_race_fails(self, sample_records_df):
        df = sample_records_df.copy()
        df.loc[2, "race"] = None
        with pytest.raises(SchemaValidationError, match="race.*null values"):
            validate_schema(df, SCHEMA_PERSON_RECORDS)

    def test_string_policy_fails(self, sample_records_df):
        df = sample_records_df.copy()
        df["policy_index"] = df["policy_index"].astype(str)
        with pytest.raises(SchemaValidationError, match="policy_index.*dtype"):
            validate_schema(df, SCHEMA_PERSON_RECORDS)

    def test_integer_age_accepted(self, sample_records_df):
        df = sample_records_df.copy()
        df["age"] = df["age"].fillna(60).astype(int)
        assert validate_schema(df, SCHEMA_PERSON_RECORDS) == []

    def test_built_from_model_config(self):
        schema = person_records_schema(ModelConfig(covariates=("age", "bmi"), group="county"),
                                       id_column="pid")
        specs = {c.name: c for c in schema.columns}
        assert list(specs) == ["pid", "survived_2y", "race", "age", "bmi", "county",
                               "policy_index"]
        assert specs["bmi"].dtype == "numeric" and specs["bmi"].nullable
        assert specs["county"].dtype == "categorical" and not specs["county"].nullable
        assert not specs["pid"].required

    def test_declared_levels_make_covariate_categorical(self):
        config = ModelConfig(covariates=("smoker",), factor_levels={"race": ["Black", "White"],
                                                                     "smoker": ["No", "Yes"]})
        specs = {c.name: c for c in person_records_schema(config).columns}
        assert specs["smoker"].dtype == "categorical"


class TestDisparitySummarySchema:

    def test_strict_rejects_extra_columns(self):
        df = pd.DataFrame({"policy_index": [0.3], "mean_diff": [-0.1],
                           "lower": [-0.2], "upper": [0.0], "extra": [1]})
        with pytest.raises(SchemaValidationError, match="Unexpected columns"):
            validate_schema(df, SCHEMA_DISPARITY_SUMMARY, strict=True)


class TestFactorLevels:
    """Tests for infer_factor_levels() and normalize_factor_levels()."""

    def test_declared_order_first(self, sample_records_df):
        levels = infer_factor_levels(sample_records_df, ["sex", "insured"],
                                     {"sex": ["Male", "Female"], "insured": ["Yes", "No"]})
        assert levels == {"sex": ["Male", "Female"], "insured": ["Yes", "No"]}

    def test_undeclared_levels_sorted_after_declared(self):
        df = pd.DataFrame({"race": ["White", "Asian", "Black", "Other"]})
        levels = infer_factor_levels(df, ["race"], {"race": ["Black", "White"]})
        assert levels["race"] == ["Black", "White", "Asian", "Other"]

    def test_declared_but_unobserved_dropped(self):
        df = pd.DataFrame({"married": ["Yes", "Yes"]})
        assert infer_factor_levels(df, ["married"], {"married": ["Yes", "No"]}) == {"married": ["Yes"]}

    def test_normalize_sets_categories(self, sample_records_df):
        levels = {"sex": ["Male", "Female"], "city_id": ["City1", "City2", "City3"]}
        out = normalize_factor_levels(sample_records_df, levels)
        assert list(out["sex"].cat.categories) == ["Male", "Female"]
        assert list(out["city_id"].cat.categories) == ["City1", "City2", "City3"]

    def test_normalize_keeps_missing(self, sample_records_df):
        out = normalize_factor_levels(sample_records_df, {"sex": ["Male", "Female"]})
        assert out["sex"].isna().sum() == sample_records_df["sex"].isna().sum()

    def test_normalize_does_not_mutate_input(self, sample_records_df):
        before = sample_records_df.copy()
        normalize_factor_levels(sample_records_df, {"sex": ["Male", "Female"]})
        pd.testing.assert_frame_equal(sample_records_df, before)

    def test_same_levels_regardless_of_observed_values(self):
        """Tables with different observed subsets end up on one schema."""
        a = pd.DataFrame({"insured": ["Yes", "Yes"]})
        b = pd.DataFrame({"insured": ["No", "Yes"]})
        levels = {"insured": ["Yes", "No"]}
        cats_a = normalize_factor_levels(a, levels)["insured"].cat.categories
        cats_b = normalize_factor_levels(b, levels)["insured"].cat.categories
        assert list(cats_a) == list(cats_b) == ["Yes", "No"]

    def test_unknown_value_fails(self, sample_records_df):
        with pytest.raises(SchemaValidationError, match="outside"):
            normalize_factor_levels(sample_records_df, {"sex": ["Male"]})

    def test_missing_column_fails(self, sample_records_df):
        with pytest.raises(SchemaValidationError, match="Missing categorical column"):
            normalize_factor_levels(sample_records_df, {"education": ["HS"]})


class TestTableSchema:
    """Tests for TableSchema dataclass."""

    def test_required_columns(self):
        schema = TableSchema(
            name="test",
            description="Test schema",
            columns=[
                ColumnSpec("required_col", "object", required=True),
                ColumnSpec("optional_col", "object", required=False),
            ]
        )
        assert schema.required_columns() == ["required_col"]
        assert schema.all_columns() == ["required_col", "optional_col"]

    def test_column_spec_defaults(self):
        spec = ColumnSpec(name="test", dtype="object")
        assert spec.required is True
        assert spec.nullable is False
        assert spec.description == ""


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
