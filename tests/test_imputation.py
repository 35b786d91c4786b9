"""
Tests for survival_disparity.imputation.

Tests cover:
- Completed tables keep row count and have no missing values
- Observed values and city policy values are untouched
- Every completed table carries identical factor levels
- Seeds are seed + k and the m draws differ
- Columns with no observed values are rejected
- Single-city cohorts and single-valued columns
- Configured column names and excluded columns
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import numpy as np
import pandas as pd
import pytest

from survival_disparity.config import ContrastConfig, ImputationConfig, ModelConfig, SimulationConfig
from survival_disparity.imputation import ChainedEquationsImputer, ImputationError, impute_records
from survival_disparity.intake import prepare_person_records
from survival_disparity.simulate import simulate_cohort


@pytest.fixture
def records(sample_records_df):
    return prepare_person_records(sample_records_df, ModelConfig(), ContrastConfig())


@pytest.fixture
def simulated_records():
    df = simulate_cohort(SimulationConfig(n_individuals=400, n_cities=6, missing_rate=0.1), seed=3)
    return prepare_person_records(df, ModelConfig(), ContrastConfig())


class ModeImputer:
    """Fills categoricals with their first level and numerics with the seed."""

    def __init__(self):
        self.seeds = []

    def complete(self, df, factor_levels, seed):
        self.seeds.append(seed)
        out = df.copy()
        for col in out.columns:
            if col in factor_levels:
                out[col] = out[col].astype(object).where(out[col].notna(), factor_levels[col][0])
            elif out[col].isna().any():
                out[col] = out[col].fillna(float(seed))
        return out


class TestChainedEquationsImputer:

    def test_fills_all_missing(self, simulated_records):
        imputer = ChainedEquationsImputer(ImputationConfig(max_iter=5))
        out = imputer.complete(simulated_records.data, simulated_records.factor_levels, seed=1)
        assert len(out) == len(simulated_records.data)
        assert not out.isna().any().any()

    def test_observed_values_unchanged(self, simulated_records):
        data = simulated_records.data
        out = ChainedEquationsImputer(ImputationConfig(max_iter=5)).complete(
            data, simulated_records.factor_levels, seed=1)
        for col in ("age", "sex", "insured", "married"):
            observed = data[col].notna()
            assert (out.loc[observed, col].astype(str) == data.loc[observed, col].astype(str)).all()

    def test_imputed_categories_are_valid_levels(self, simulated_records):
        levels = simulated_records.factor_levels
        out = ChainedEquationsImputer(ImputationConfig(max_iter=5)).complete(
            simulated_records.data, levels, seed=2)
        for col in ("sex", "insured", "married"):
            assert set(out[col].astype(str)) <= set(levels[col])

    def test_imputed_age_within_observed_range(self, simulated_records):
        data = simulated_records.data
        out = ChainedEquationsImputer(ImputationConfig(max_iter=5)).complete(
            data, simulated_records.factor_levels, seed=2)
        assert out["age"].between(data["age"].min(), data["age"].max()).all()

    def test_city_and_policy_untouched(self, simulated_records):
        data = simulated_records.data
        out = ChainedEquationsImputer(ImputationConfig(max_iter=5)).complete(
            data, simulated_records.factor_levels, seed=2)
        pd.testing.assert_series_equal(out["policy_index"], data["policy_index"])
        assert (out["city_id"].astype(str) == data["city_id"].astype(str)).all()

    def test_same_seed_reproducible(self, simulated_records):
        imputer = ChainedEquationsImputer(ImputationConfig(max_iter=5))
        a = imputer.complete(simulated_records.data, simulated_records.factor_levels, seed=9)
        b = imputer.complete(simulated_records.data, simulated_records.factor_levels, seed=9)
        pd.testing.assert_frame_equal(a, b)

    def test_complete_data_returned_as_copy(self, records):
        data = records.data.dropna().reset_index(drop=True)
        imputer = ChainedEquationsImputer(ImputationConfig())
        out = imputer.complete(data, records.factor_levels, seed=1)
        pd.testing.assert_frame_equal(out, data)
        assert out is not data
        assert imputer.last_n_iter == 0

    def test_all_missing_column_rejected(self, records):
        data = records.data.copy()
        data["age"] = np.nan
        with pytest.raises(ImputationError, match="age"):
            ChainedEquationsImputer(ImputationConfig()).complete(data, records.factor_levels, seed=1)

    def test_single_city_cohort(self):
        df = simulate_cohort(SimulationConfig(n_individuals=200, n_cities=1, missing_rate=0.1),
                             seed=4)
        records = prepare_person_records(df, ModelConfig(), ContrastConfig())
        out = ChainedEquationsImputer(ImputationConfig(max_iter=5)).complete(
            records.data, records.factor_levels, seed=1)
        assert not out.isna().any().any()
        assert out["policy_index"].nunique() == 1

    def test_single_observed_value_fills_column(self, records):
        data = records.data.copy()
        data["age"] = np.nan
        data.loc[0, "age"] = 61.0
        out = ChainedEquationsImputer(ImputationConfig()).complete(data, records.factor_levels, seed=1)
        assert (out["age"] == 61.0).all()

    def test_single_level_categorical(self, sample_records_df):
        df = sample_records_df.copy()
        df["insured"] = df["insured"].where(df["insured"].isna(), "Yes")
        records = prepare_person_records(df, ModelConfig(), ContrastConfig())
        assert records.factor_levels["insured"] == ["Yes"]
        out = ChainedEquationsImputer(ImputationConfig()).complete(
            records.data, records.factor_levels, seed=1)
        assert (out["insured"].astype(str) == "Yes").all()
        assert not out.isna().any().any()


class TestImputeRecords:

    def test_returns_m_complete_tables(self, simulated_records):
        completed = impute_records(simulated_records.data, ImputationConfig(m=3, max_iter=5),
                                   simulated_records.factor_levels, seed=100)
        assert len(completed) == 3
        for df in completed:
            assert len(df) == len(simulated_records.data)
            assert not df.isna().any().any()

    def test_identical_levels_across_tables(self, simulated_records):
        levels = simulated_records.factor_levels
        completed = impute_records(simulated_records.data, ImputationConfig(m=3, max_iter=5),
                                   levels, seed=100)
        for col, expected in levels.items():
            for df in completed:
                assert list(df[col].cat.categories) == expected

    def test_draws_differ(self, simulated_records):
        completed = impute_records(simulated_records.data, ImputationConfig(m=2, max_iter=5),
                                   simulated_records.factor_levels, seed=100)
        missing_age = simulated_records.data["age"].isna()
        assert not np.allclose(completed[0].loc[missing_age, "age"],
                               completed[1].loc[missing_age, "age"])

    def test_seeds_offset_by_index(self, records):
        imputer = ModeImputer()
        impute_records(records.data, ImputationConfig(m=4), records.factor_levels,
                       seed=50, imputer=imputer)
        assert imputer.seeds == [50, 51, 52, 53]

    def test_custom_imputer_output_normalized(self, records):
        completed = impute_records(records.data, ImputationConfig(m=1), records.factor_levels,
                                   seed=1, imputer=ModeImputer())
        assert isinstance(completed[0]["sex"].dtype, pd.CategoricalDtype)
        assert list(completed[0]["sex"].cat.categories) == ["Male", "Female"]

    def test_incomplete_imputer_fails_qa(self, records):
        class NoOpImputer:
            def complete(self, df, factor_levels, seed):
                return df.copy()

        with pytest.raises(ValueError, match="no_nulls"):
            impute_records(records.data, ImputationConfig(m=1), records.factor_levels,
                           seed=1, imputer=NoOpImputer())

    def test_exclude_reaches_default_imputer(self, records):
        data = records.data.assign(source="registry")
        completed = impute_records(data, ImputationConfig(m=1, max_iter=5), records.factor_levels,
                                   seed=1, exclude=("id", "city_id", "source"))
        assert (completed[0]["source"] == "registry").all()
        assert not completed[0].isna().any().any()

    def test_configured_column_names(self):
        df = simulate_cohort(SimulationConfig(n_individuals=300, n_cities=5, missing_rate=0.1),
                             seed=9)
        df = df.rename(columns={"id": "pid", "city_id": "county", "policy_index": "policy"})
        model = ModelConfig(group="county", moderator="policy")
        records = prepare_person_records(df, model, ContrastConfig(), id_column="pid")

        completed = impute_records(records.data, ImputationConfig(m=2, max_iter=5),
                                   records.factor_levels, seed=1, group="county",
                                   moderator="policy", exclude=("pid", "county"))
        assert len(completed) == 2
        for out in completed:
            assert not out.isna().any().any()
            pd.testing.assert_series_equal(out["pid"], records.data["pid"])
            assert (out.groupby("county", observed=True)["policy"].nunique() == 1).all()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
