"""
Pytest configuration and shared fixtures.

LogisticStubSampler stands in for the bambi backend: it returns posterior
draws scattered around known coefficients and predicts with the inverse
logit, so orchestration tests run in milliseconds and have known answers.
"""

import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import numpy as np
import pandas as pd
import pytest
from scipy.special import expit

from survival_disparity.config import AnalysisConfig, ImputationConfig, SimulationConfig
from survival_disparity.model import PooledFit, SamplerDiagnostics


TRUE_COEFFICIENTS = {
    "Intercept": -0.5,
    "black": -0.6,
    "policy_index": 0.8,
    "black:policy_index": 0.0,
}


class LogisticStubSampler:
    """
    Deterministic sampler with a known data-generating model.

    logit p = Intercept + black * B + policy_index * P + black:policy_index * B * P
    where B = 1 for the Black race label.
    """

    def __init__(self, coefficients=None, n_draws=400, noise=0.05, seed=7):
        self.coefficients = {**TRUE_COEFFICIENTS, **(coefficients or {})}
        self.n_draws = n_draws
        self.noise = noise
        self.seed = seed
        self.fitted_datasets = None

    def fit(self, datasets, formula, factor_levels):
        self.fitted_datasets = datasets
        rng = np.random.default_rng(self.seed)
        draws = pd.DataFrame({
            term: value + self.noise * rng.standard_normal(self.n_draws)
            for term, value in self.coefficients.items()
        })
        diagnostics = [
            SamplerDiagnostics(imputation=k + 1, n_chains=2, n_draws=self.n_draws // 2,
                               divergences=0, max_rhat=1.0, min_ess_bulk=1000.0,
                               min_bfmi=1.0)
            for k in range(len(datasets))
        ]
        return PooledFit(formula=formula, coefficient_draws=draws,
                         factor_levels=factor_levels, diagnostics=diagnostics)

    def predict(self, fit, newdata):
        d = fit.coefficient_draws
        black = (newdata["race"].astype(str) == "Black").to_numpy(dtype=float)
        policy = newdata["policy_index"].to_numpy(dtype=float)
        eta = (d["Intercept"].to_numpy()[:, None]
               + np.outer(d["black"], black)
               + np.outer(d["policy_index"], policy)
               + np.outer(d["black:policy_index"], black * policy))
        return expit(eta)


@pytest.fixture
def stub_sampler():
    return LogisticStubSampler()


@pytest.fixture
def make_stub_sampler():
    """Factory for stub samplers with overridden coefficients."""
    return LogisticStubSampler


@pytest.fixture
def small_config():
    """Default config with a small cohort and two imputations."""
    return AnalysisConfig(
        simulation=SimulationConfig(n_individuals=300, n_cities=8),
        imputation=ImputationConfig(m=2, max_iter=5),
    )


@pytest.fixture
def sample_records_df():
    """Hand-written person records with a few missing covariates."""
    return pd.DataFrame({
        "id": [1, 2, 3, 4, 5, 6, 7, 8],
        "city_id": ["City1", "City1", "City2", "City2", "City3", "City3", "City1", "City2"],
        "race": ["Black", "White", "Black", "White", "White", "Black", "White", "Black"],
        "age": [60.0, np.nan, 70.0, 55.0, 66.0, 72.0, 58.0, np.nan],
        "sex": ["Male", "Female", None, "Male", "Female", "Male", "Female", "Male"],
        "insured": ["Yes", "No", "Yes", None, "Yes", "Yes", "No", "Yes"],
        "married": ["Yes", "Yes", "No", "No", None, "Yes", "No", "Yes"],
        "policy_index": [0.4, 0.4, 0.7, 0.7, 0.85, 0.85, 0.4, 0.7],
        "survived_2y": [0, 1, 1, 1, 0, 0, 1, 1],
    })


# Markers for test categorization
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "smoke: mark test as smoke test (quick end-to-end sanity checks)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow (runs real MCMC sampling)"
    )
