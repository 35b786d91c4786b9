"""
Bayesian hierarchical logistic regression over multiply-imputed data.

One bambi model (Bernoulli family, logit link, random intercept per city)
is fit to each completed dataset. The per-imputation posteriors are pooled
by stacking their chains, so every imputation contributes its draws to a
single posterior. Sampler diagnostics are computed per imputation with
ArviZ and surfaced, never suppressed.

The sampling engine sits behind the Sampler protocol; orchestration and
prediction code only need fit() and predict().
"""

import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Protocol

import numpy as np
import pandas as pd

from survival_disparity.config import ModelConfig, PriorConfig, SamplerConfig
from survival_disparity.logging_utils import (
    log_sampler_diagnostics, log_step_start, log_step_end,
)


class ConvergenceError(RuntimeError):
    """Raised in strict mode when a fit fails its sampler diagnostics."""
    pass


# =============================================================================
# Diagnostics
# =============================================================================

@dataclass
class SamplerDiagnostics:
    """MCMC diagnostics for the fit to one imputed dataset."""
    imputation: int
    n_chains: int
    n_draws: int
    divergences: int
    max_rhat: float
    min_ess_bulk: float
    min_bfmi: float
    rhat_threshold: float = 1.05
    ess_threshold: float = 400.0
    bfmi_threshold: float = 0.3

    def problems(self) -> list[str]:
        """Human-readable list of failed diagnostics (empty when clean)."""
        out = []
        if self.divergences > 0:
            out.append(f"{self.divergences} divergent transitions")
        if np.isfinite(self.max_rhat) and self.max_rhat > self.rhat_threshold:
            out.append(f"max R-hat {self.max_rhat:.3f} > {self.rhat_threshold}")
        if np.isfinite(self.min_ess_bulk) and self.min_ess_bulk < self.ess_threshold:
            out.append(f"min bulk ESS {self.min_ess_bulk:.0f} < {self.ess_threshold:.0f}")
        if np.isfinite(self.min_bfmi) and self.min_bfmi < self.bfmi_threshold:
            out.append(f"min E-BFMI {self.min_bfmi:.2f} < {self.bfmi_threshold}")
        return out

    @property
    def ok(self) -> bool:
        return not self.problems()

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["problems"] = self.problems()
        return d


def _finite_extreme(values: list[float], reducer) -> float:
    arr = np.asarray(values, dtype=float)
    arr = arr[np.isfinite(arr)]
    return float(reducer(arr)) if arr.size else float("nan")


def summarize_sampler_diagnostics(
    idata: Any,
    imputation: int,
    config: SamplerConfig,
) -> SamplerDiagnostics:
    """
    Compute divergences, R-hat, bulk ESS and E-BFMI for one InferenceData.

    R-hat is undefined for a single chain and is reported as NaN.
    """
    import arviz as az

    posterior = idata.posterior
    n_chains = int(posterior.sizes["chain"])

    rhat = az.rhat(idata)
    ess = az.ess(idata, method="bulk")
    max_rhat = _finite_extreme([float(rhat[v].max()) for v in rhat.data_vars], np.max)
    min_ess = _finite_extreme([float(ess[v].min()) for v in ess.data_vars], np.min)

    sample_stats = getattr(idata, "sample_stats", None)
    divergences = 0
    min_bfmi = float("nan")
    if sample_stats is not None:
        if "diverging" in sample_stats:
            divergences = int(sample_stats["diverging"].sum().values)
        if "energy" in sample_stats:
            min_bfmi = _finite_extreme(list(az.bfmi(idata)), np.min)

    return SamplerDiagnostics(
        imputation=imputation,
        n_chains=n_chains,
        n_draws=int(posterior.sizes["draw"]),
        divergences=divergences,
        max_rhat=max_rhat,
        min_ess_bulk=min_ess,
        min_bfmi=min_bfmi,
        rhat_threshold=config.rhat_threshold,
        ess_threshold=config.ess_threshold,
        bfmi_threshold=config.bfmi_threshold,
    )


def enforce_convergence(diagnostics: list[SamplerDiagnostics], config: SamplerConfig) -> None:
    """
    Raise ConvergenceError in strict mode if any imputation's fit failed.
    """
    if not config.strict_convergence:
        return
    failed = [d for d in diagnostics if not d.ok]
    if failed:
        lines = [f"imputation {d.imputation}: " + "; ".join(d.problems()) for d in failed]
        raise ConvergenceError("Sampler diagnostics failed:\n" + "\n".join(lines))


# =============================================================================
# Fitted model
# =============================================================================

@dataclass
class PooledFit:
    """
    Pooled posterior across imputations.

    coefficient_draws has one row per pooled draw and one column per
    fixed-effect term. idata and model hold the backend objects the
    sampler needs for prediction and serialization.
    """
    formula: str
    coefficient_draws: pd.DataFrame
    factor_levels: dict[str, list[str]]
    diagnostics: list[SamplerDiagnostics] = field(default_factory=list)
    idata: Any = None
    model: Any = None

    @property
    def n_draws(self) -> int:
        return len(self.coefficient_draws)

    @property
    def n_imputations(self) -> int:
        return len(self.diagnostics)


class Sampler(Protocol):
    """Fits the pooled model and produces posterior expected outcomes."""

    def fit(
        self,
        datasets: list[pd.DataFrame],
        formula: str,
        factor_levels: dict[str, list[str]],
    ) -> PooledFit:
        ...

    def predict(self, fit: PooledFit, newdata: pd.DataFrame) -> np.ndarray:
        """
        Expected outcome probability per pooled draw and newdata row,
        shape (n_draws, len(newdata)), with group-level intercepts excluded.
        """
        ...


# =============================================================================
# Formula and priors
# =============================================================================

def build_formula(
    config: ModelConfig,
    factor_levels: dict[str, list[str]] | None = None,
    constant_moderator: bool = False,
) -> str:
    """
    Outcome on exposure x moderator, covariates, and a random intercept.

    With factor_levels, the exposure and categorical covariates are wrapped
    in C(..., levels=[...]) so the first level is the reference category
    whatever the data's sort order. With constant_moderator the moderator
    and its interaction are dropped; a moderator with one value is
    collinear with the intercept.

    >>> build_formula(ModelConfig())
    'survived_2y ~ race * policy_index + age + sex + insured + married + (1 | city_id)'
    """
    levels = factor_levels or {}

    def term(col: str) -> str:
        if col in levels:
            return f"C({col}, levels={list(levels[col])!r})"
        return col

    exposure = term(config.exposure)
    lead = exposure if constant_moderator else f"{exposure} * {config.moderator}"
    rhs = [lead, *(term(c) for c in config.covariates), f"(1 | {config.group})"]
    return f"{config.outcome} ~ " + " + ".join(rhs)


def build_priors(priors: PriorConfig, group: str) -> dict[str, Any]:
    """bambi priors: Normal on intercept and slopes, Exponential on the city SD."""
    import bambi as bmb

    return {
        "Intercept": bmb.Prior("Normal", mu=priors.intercept_mu, sigma=priors.intercept_sigma),
        "common": bmb.Prior("Normal", mu=priors.coefficient_mu, sigma=priors.coefficient_sigma),
        f"1|{group}": bmb.Prior(
            "Normal", mu=0, sigma=bmb.Prior("Exponential", lam=priors.group_sd_rate)
        ),
    }


# =============================================================================
# Posterior helpers
# =============================================================================

def pool_posteriors(idatas: list[Any]) -> Any:
    """
    Stack per-imputation posteriors along the chain dimension.

    Chains are renumbered 0..(m * chains - 1). Only posterior and
    sample_stats are kept; the observed data differ between imputations.
    """
    import arviz as az
    import xarray as xr

    groups = {}
    for group in ("posterior", "sample_stats"):
        parts = [getattr(idata, group) for idata in idatas if hasattr(idata, group)]
        if len(parts) != len(idatas):
            continue
        pooled = xr.concat(parts, dim="chain", combine_attrs="drop_conflicts")
        groups[group] = pooled.assign_coords(chain=np.arange(pooled.sizes["chain"]))
    return az.InferenceData(**groups)


_LEVELS_WRAPPER = re.compile(r"C\((\w+),[^)]*\)")


def clean_term_name(name: str) -> str:
    """
    Strip C(col, levels=[...]) wrappers from a term name.

    >>> clean_term_name("C(race, levels=['Black', 'White']):policy_index")
    'race:policy_index'
    """
    return _LEVELS_WRAPPER.sub(r"\1", name)


def posterior_to_frame(posterior: Any, skip: tuple[str, ...] = ("|",)) -> pd.DataFrame:
    """
    Flatten an xarray posterior into one column per scalar parameter.

    Draws are stacked chain-major. Variables with one extra dimension
    (e.g. categorical levels) become `name[level]` columns, with level
    wrappers stripped from the name. Variables whose name contains any
    token in `skip` are dropped.
    """
    stacked = posterior.stack(__sample__=("chain", "draw"))
    columns = {}
    for name, var in stacked.data_vars.items():
        if any(token in name for token in skip):
            continue
        label = clean_term_name(name)
        extra_dims = [d for d in var.dims if d != "__sample__"]
        if not extra_dims:
            columns[label] = var.values
        elif len(extra_dims) == 1:
            dim = extra_dims[0]
            for level in var[dim].values:
                columns[f"{label}[{level}]"] = var.sel({dim: level}).transpose("__sample__").values
        else:
            raise ValueError(f"Cannot flatten posterior variable '{name}' with dims {var.dims}")
    return pd.DataFrame(columns)


def posterior_effects_table(fit: PooledFit, credible_mass: float = 0.95) -> pd.DataFrame:
    """
    Pooled fixed-effect summary: mean, SD and equal-tailed credible bounds.

    Returns:
        DataFrame with term, est, est_error, lci, uci.
    """
    alpha = (1.0 - credible_mass) / 2.0
    draws = fit.coefficient_draws
    return pd.DataFrame({
        "term": list(draws.columns),
        "est": draws.mean().to_numpy(),
        "est_error": draws.std(ddof=1).to_numpy(),
        "lci": draws.quantile(alpha).to_numpy(),
        "uci": draws.quantile(1.0 - alpha).to_numpy(),
    })


# =============================================================================
# bambi backend
# =============================================================================

class BambiSampler:
    """
    Fits one bambi model per imputed dataset and pools the posteriors.

    Each imputation k (0-based) is sampled with seed + k. Draws per chain
    are iterations - warmup.
    """

    def __init__(
        self,
        config: SamplerConfig,
        priors: PriorConfig,
        group: str,
        seed: int,
        logger: logging.Logger | None = None,
    ):
        self.config = config
        self.priors = priors
        self.group = group
        self.seed = seed
        self.logger = logger

    def build_model(self, data: pd.DataFrame, formula: str) -> Any:
        import bambi as bmb

        return bmb.Model(
            formula,
            data,
            family="bernoulli",
            priors=build_priors(self.priors, self.group),
        )

    def fit(
        self,
        datasets: list[pd.DataFrame],
        formula: str,
        factor_levels: dict[str, list[str]],
    ) -> PooledFit:
        if self.logger:
            log_step_start(self.logger, "fit_pooled_model", formula=formula,
                           m=len(datasets), chains=self.config.chains,
                           draws=self.config.draws, warmup=self.config.warmup)

        models, idatas, diagnostics = [], [], []
        for k, data in enumerate(datasets):
            if self.logger:
                self.logger.info(f"Sampling imputation {k + 1}/{len(datasets)}")
            model = self.build_model(data, formula)
            idata = model.fit(
                draws=self.config.draws,
                tune=self.config.warmup,
                chains=self.config.chains,
                cores=self.config.cores,
                random_seed=self.seed + k,
                target_accept=self.config.adapt_delta,
                progressbar=False,
            )
            diag = summarize_sampler_diagnostics(idata, k + 1, self.config)
            if self.logger:
                log_sampler_diagnostics(self.logger, diag)
            models.append(model)
            idatas.append(idata)
            diagnostics.append(diag)

        enforce_convergence(diagnostics, self.config)

        pooled = pool_posteriors(idatas)
        draws = posterior_to_frame(pooled.posterior, skip=("|",))

        if self.logger:
            log_step_end(self.logger, "fit_pooled_model", n_draws=len(draws),
                         terms=list(draws.columns))

        # Every dataset shares the formula and level schema, so the first
        # model's design applies to the pooled draws.
        return PooledFit(
            formula=formula,
            coefficient_draws=draws,
            factor_levels=factor_levels,
            diagnostics=diagnostics,
            idata=pooled,
            model=models[0],
        )

    def predict(self, fit: PooledFit, newdata: pd.DataFrame) -> np.ndarray:
        pred = fit.model.predict(
            fit.idata,
            kind="response_params",
            data=newdata,
            inplace=False,
            include_group_specific=False,
        )
        param = fit.model.family.likelihood.parent
        values = pred.posterior[param].stack(__sample__=("chain", "draw"))
        return values.transpose("__sample__", ...).values
