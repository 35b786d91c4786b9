"""
Typed analysis configuration.

configs/params.yml is parsed once into frozen dataclasses and handed to
each stage explicitly. Nothing in the package seeds a global RNG; every
stage derives its randomness from AnalysisConfig.random_seed.
"""

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

from survival_disparity.io_utils import read_yaml
from survival_disparity.paths import paths


@dataclass(frozen=True)
class DataConfig:
    """Where person records come from. input_path=None means simulate."""
    input_path: str | None = None
    id_column: str = "id"


@dataclass(frozen=True)
class SimulationConfig:
    n_individuals: int = 1000
    n_cities: int = 16
    race_probs: dict[str, float] = field(default_factory=lambda: {"Black": 0.4, "White": 0.6})
    age_mean: float = 65.0
    age_sd: float = 10.0
    sex_probs: dict[str, float] = field(default_factory=lambda: {"Male": 0.5, "Female": 0.5})
    insured_probs: dict[str, float] = field(default_factory=lambda: {"Yes": 0.85, "No": 0.15})
    married_probs: dict[str, float] = field(default_factory=lambda: {"Yes": 0.6, "No": 0.4})
    policy_min: float = 0.3
    policy_max: float = 0.9
    missing_rate: float = 0.05
    intercept: float = -0.5
    black_effect: float = -0.6
    policy_effect: float = 0.8
    interaction_effect: float = 0.0


@dataclass(frozen=True)
class ImputationConfig:
    m: int = 5
    max_iter: int = 10
    tol: float = 1e-3
    sample_posterior: bool = True


@dataclass(frozen=True)
class ModelConfig:
    outcome: str = "survived_2y"
    exposure: str = "race"
    moderator: str = "policy_index"
    covariates: tuple[str, ...] = ("age", "sex", "insured", "married")
    group: str = "city_id"
    factor_levels: dict[str, list[str]] = field(default_factory=lambda: {
        "race": ["Black", "White"],
        "sex": ["Male", "Female"],
        "insured": ["Yes", "No"],
        "married": ["Yes", "No"],
    })


@dataclass(frozen=True)
class PriorConfig:
    """Normal priors on the intercept and coefficients, Exponential on the city SD."""
    intercept_mu: float = 0.0
    intercept_sigma: float = 1.5
    coefficient_mu: float = 0.0
    coefficient_sigma: float = 1.5
    group_sd_rate: float = 1.0


@dataclass(frozen=True)
class SamplerConfig:
    chains: int = 2
    cores: int = 2
    iterations: int = 2000
    warmup: int = 500
    adapt_delta: float = 0.95
    strict_convergence: bool = False
    rhat_threshold: float = 1.05
    ess_threshold: float = 400.0
    bfmi_threshold: float = 0.3

    @property
    def draws(self) -> int:
        """Post-warmup draws per chain."""
        return self.iterations - self.warmup


@dataclass(frozen=True)
class GridConfig:
    policy_start: float = 0.3
    policy_stop: float = 0.9
    policy_step: float = 0.01
    reference: dict[str, Any] = field(default_factory=lambda: {
        "age": 65,
        "sex": "Male",
        "insured": "Yes",
        "married": "Yes",
    })


@dataclass(frozen=True)
class ContrastConfig:
    """The disparity is focal minus reference."""
    focal: str = "Black"
    reference: str = "White"
    credible_mass: float = 0.95


@dataclass(frozen=True)
class OutputConfig:
    model_file: str = "model_black_white_survival.nc"
    diagnostics_file: str = "sampler_diagnostics.json"
    summary_file: str = "disparity_black_white_over_policy.parquet"
    figure_file: str = "plot_black_white_disparity.png"
    effects_file: str = "table2_posterior_effects.csv"


@dataclass(frozen=True)
class AnalysisConfig:
    random_seed: int = 2025
    data: DataConfig = field(default_factory=DataConfig)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    imputation: ImputationConfig = field(default_factory=ImputationConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    priors: PriorConfig = field(default_factory=PriorConfig)
    sampler: SamplerConfig = field(default_factory=SamplerConfig)
    grid: GridConfig = field(default_factory=GridConfig)
    contrast: ContrastConfig = field(default_factory=ContrastConfig)
    outputs: OutputConfig = field(default_factory=OutputConfig)

    def __post_init__(self):
        validate_config(self)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


_SECTIONS = {
    "data": DataConfig,
    "simulation": SimulationConfig,
    "imputation": ImputationConfig,
    "model": ModelConfig,
    "priors": PriorConfig,
    "sampler": SamplerConfig,
    "grid": GridConfig,
    "contrast": ContrastConfig,
    "outputs": OutputConfig,
}


def _build_section(cls, values: dict[str, Any] | None, section: str):
    values = dict(values or {})
    known = {f.name for f in fields(cls)}
    unknown = set(values) - known
    if unknown:
        raise ValueError(f"Unknown keys in '{section}' config: {sorted(unknown)}")
    if cls is ModelConfig and "covariates" in values:
        values["covariates"] = tuple(values["covariates"])
    return cls(**values)


def config_from_dict(raw: dict[str, Any]) -> AnalysisConfig:
    """
    Build an AnalysisConfig from a parsed params.yml mapping.

    Missing sections fall back to defaults; unknown sections or keys raise
    ValueError so typos never silently revert a setting.
    """
    raw = dict(raw or {})
    unknown = set(raw) - set(_SECTIONS) - {"random_seed"}
    if unknown:
        raise ValueError(f"Unknown config sections: {sorted(unknown)}")

    kwargs: dict[str, Any] = {
        name: _build_section(cls, raw.get(name), name)
        for name, cls in _SECTIONS.items()
    }
    if "random_seed" in raw:
        kwargs["random_seed"] = int(raw["random_seed"])
    return AnalysisConfig(**kwargs)


def load_config(config_path: Path | str | None = None) -> AnalysisConfig:
    """Load configs/params.yml (or the given file) into an AnalysisConfig."""
    return config_from_dict(read_yaml(config_path or paths.params_yml))


def validate_config(config: AnalysisConfig) -> None:
    """
    Check cross-field constraints.

    Raises:
        ValueError: Listing every violated constraint.
    """
    errors = []

    if config.imputation.m < 1:
        errors.append("imputation.m must be >= 1")
    if config.imputation.max_iter < 1:
        errors.append("imputation.max_iter must be >= 1")

    sampler = config.sampler
    if sampler.chains < 1:
        errors.append("sampler.chains must be >= 1")
    if sampler.cores < 1:
        errors.append("sampler.cores must be >= 1")
    if sampler.warmup < 0:
        errors.append("sampler.warmup must be >= 0")
    if sampler.iterations <= sampler.warmup:
        errors.append("sampler.iterations must exceed sampler.warmup")
    if not 0.0 < sampler.adapt_delta < 1.0:
        errors.append("sampler.adapt_delta must lie in (0, 1)")

    grid = config.grid
    if grid.policy_step <= 0:
        errors.append("grid.policy_step must be > 0")
    if grid.policy_start > grid.policy_stop:
        errors.append("grid.policy_start must be <= grid.policy_stop")
    missing_reference = [c for c in config.model.covariates if c not in grid.reference]
    if missing_reference:
        errors.append(f"grid.reference is missing covariates: {missing_reference}")

    contrast = config.contrast
    if contrast.focal == contrast.reference:
        errors.append("contrast.focal and contrast.reference must differ")
    if not 0.0 < contrast.credible_mass < 1.0:
        errors.append("contrast.credible_mass must lie in (0, 1)")

    if not 0.0 <= config.simulation.missing_rate < 1.0:
        errors.append("simulation.missing_rate must lie in [0, 1)")
    if config.simulation.n_cities < 1:
        errors.append("simulation.n_cities must be >= 1")

    if errors:
        raise ValueError("Invalid analysis config:\n" + "\n".join(f"  - {e}" for e in errors))
