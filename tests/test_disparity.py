"""
Tests for survival_disparity.disparity.

Tests cover:
- Pairing of focal/reference predictions within a draw
- Posterior summary ordering and width
- Known-answer scenarios with the logistic stub sampler
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import numpy as np
import pandas as pd
import pytest

from survival_disparity.config import ContrastConfig, GridConfig, ModelConfig
from survival_disparity.disparity import pair_draws, pred_column, summarize_disparity
from survival_disparity.intake import prepare_person_records
from survival_disparity.model import build_formula
from survival_disparity.prediction import build_prediction_grid, predict_counterfactual_draws


def _disparity_curve(sampler, sample_records_df):
    records = prepare_person_records(sample_records_df, ModelConfig(), ContrastConfig())
    fit = sampler.fit([records.data], build_formula(ModelConfig()), records.factor_levels)
    grid = build_prediction_grid(GridConfig(), ModelConfig())
    draws = predict_counterfactual_draws(sampler, fit, grid, ["Black", "White"], ModelConfig())
    return summarize_disparity(pair_draws(draws, "Black", "White"))


@pytest.fixture
def toy_draws():
    rows = []
    for draw in range(4):
        for row, policy in enumerate([0.3, 0.6]):
            rows.append({"draw": draw, "row": row, "policy_index": policy,
                         "race": "Black", "epred": 0.4 + 0.01 * draw})
            rows.append({"draw": draw, "row": row, "policy_index": policy,
                         "race": "White", "epred": 0.5 + 0.02 * draw})
    return pd.DataFrame(rows)


class TestPairDraws:

    def test_pred_column_names(self):
        assert pred_column("Black") == "black_pred"
        assert pred_column("White") == "white_pred"

    def test_diff_within_draw(self, toy_draws):
        paired = pair_draws(toy_draws, "Black", "White")
        assert len(paired) == 8
        assert list(paired.columns) == ["draw", "row", "policy_index", "black_pred",
                                        "white_pred", "diff"]
        expected = (0.4 + 0.01 * paired["draw"]) - (0.5 + 0.02 * paired["draw"])
        assert np.allclose(paired["diff"], expected)

    def test_sorted_by_row_then_draw(self, toy_draws):
        paired = pair_draws(toy_draws.sample(frac=1, random_state=0), "Black", "White")
        assert paired["row"].tolist() == [0] * 4 + [1] * 4
        assert paired["draw"].tolist() == [0, 1, 2, 3] * 2

    def test_missing_partner_raises(self, toy_draws):
        drop = toy_draws[(toy_draws["race"] == "White") & (toy_draws["draw"] == 2)].index
        with pytest.raises(ValueError, match="paired_draws"):
            pair_draws(toy_draws.drop(index=drop), "Black", "White")


class TestSummarizeDisparity:

    def test_one_row_per_policy_value(self, toy_draws):
        summary = summarize_disparity(pair_draws(toy_draws, "Black", "White"))
        assert summary["policy_index"].tolist() == [0.3, 0.6]
        assert list(summary.columns) == ["policy_index", "mean_diff", "lower", "upper"]

    def test_mean_and_bounds(self, toy_draws):
        summary = summarize_disparity(pair_draws(toy_draws, "Black", "White"))
        diffs = np.array([-0.1 - 0.01 * d for d in range(4)])
        assert summary["mean_diff"].iloc[0] == pytest.approx(diffs.mean())
        assert summary["lower"].iloc[0] == pytest.approx(np.quantile(diffs, 0.025))
        assert summary["upper"].iloc[0] == pytest.approx(np.quantile(diffs, 0.975))

    def test_interval_ordered(self, toy_draws):
        summary = summarize_disparity(pair_draws(toy_draws, "Black", "White"))
        assert (summary["lower"] <= summary["mean_diff"]).all()
        assert (summary["mean_diff"] <= summary["upper"]).all()

    def test_narrower_mass_gives_narrower_interval(self, toy_draws):
        paired = pair_draws(toy_draws, "Black", "White")
        wide = summarize_disparity(paired, credible_mass=0.95)
        narrow = summarize_disparity(paired, credible_mass=0.5)
        assert ((narrow["upper"] - narrow["lower"]) <= (wide["upper"] - wide["lower"])).all()


class TestKnownScenarios:
    """Disparity curves under known coefficients."""

    def test_no_interaction_gives_flat_negative_disparity(self, stub_sampler, sample_records_df):
        summary = _disparity_curve(stub_sampler, sample_records_df)
        assert len(summary) == 61
        assert (summary["mean_diff"] < 0).all()
        assert summary["mean_diff"].max() - summary["mean_diff"].min() < 0.02

    def test_positive_interaction_shrinks_disparity(self, make_stub_sampler, sample_records_df):
        sampler = make_stub_sampler(coefficients={"black:policy_index": 0.6})
        summary = _disparity_curve(sampler, sample_records_df).set_index("policy_index")
        assert abs(summary.loc[0.9, "mean_diff"]) < abs(summary.loc[0.3, "mean_diff"])

    def test_zero_race_effect_gives_interval_covering_zero(self, make_stub_sampler,
                                                           sample_records_df):
        sampler = make_stub_sampler(coefficients={"black": 0.0, "black:policy_index": 0.0},
                                    noise=0.2)
        summary = _disparity_curve(sampler, sample_records_df)
        assert ((summary["lower"] < 0) & (summary["upper"] > 0)).all()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
