"""
Demonstration cohort simulator.

Generates person-level records clustered in cities, with a city-level
policy index, MCAR missingness in the covariates, and a survival outcome
drawn from a known logistic model. Used when no input table is configured
and as a test fixture.
"""

import numpy as np
import pandas as pd
from scipy.special import expit

from survival_disparity.config import SimulationConfig


def _draw_labels(rng: np.random.Generator, probs: dict[str, float], n: int) -> np.ndarray:
    labels = list(probs)
    p = np.asarray([probs[k] for k in labels], dtype=float)
    return rng.choice(labels, size=n, p=p / p.sum())


def simulate_cohort(config: SimulationConfig, seed: int) -> pd.DataFrame:
    """
    Simulate a person-level cohort.

    Each city gets one policy value drawn uniformly from
    [policy_min, policy_max] and rounded to 2 decimals. Survival follows

        logit P(survived) = intercept + black_effect * Black
                            + policy_effect * policy
                            + interaction_effect * Black * policy

    Age, sex, insured and married are each set missing independently with
    probability missing_rate.

    Args:
        config: Simulation parameters.
        seed: Seed for numpy's default Generator.

    Returns:
        DataFrame with id, city_id, race, age, sex, insured, married,
        policy_index, survived_2y.
    """
    rng = np.random.default_rng(seed)
    n = config.n_individuals

    city_ids = [f"City{i}" for i in range(1, config.n_cities + 1)]
    city_policy = pd.DataFrame({
        "city_id": city_ids,
        "policy_index": np.round(rng.uniform(config.policy_min, config.policy_max,
                                             size=config.n_cities), 2),
    })

    df = pd.DataFrame({
        "id": np.arange(1, n + 1),
        "city_id": rng.choice(city_ids, size=n),
        "race": _draw_labels(rng, config.race_probs, n),
        "age": np.round(rng.normal(config.age_mean, config.age_sd, size=n)),
        "sex": _draw_labels(rng, config.sex_probs, n),
        "insured": _draw_labels(rng, config.insured_probs, n),
        "married": _draw_labels(rng, config.married_probs, n),
    })
    df = df.merge(city_policy, on="city_id", how="left")

    black = (df["race"] == "Black").to_numpy(dtype=float)
    policy = df["policy_index"].to_numpy()
    linpred = (config.intercept
               + config.black_effect * black
               + config.policy_effect * policy
               + config.interaction_effect * black * policy)
    df["survived_2y"] = rng.binomial(1, expit(linpred))

    df["age"] = df["age"].mask(rng.uniform(size=n) < config.missing_rate)
    for col in ("sex", "insured", "married"):
        df[col] = df[col].astype(object).mask(rng.uniform(size=n) < config.missing_rate)

    return df[["id", "city_id", "race", "age", "sex", "insured", "married",
               "policy_index", "survived_2y"]]
