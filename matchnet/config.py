"""TOML-based configuration for matchup network analysis."""

import tomllib
from dataclasses import dataclass, field, fields, replace
from typing import List, Optional
from pathlib import Path

from .data import ConfigurationError


@dataclass
class DataConfig:
    matches_path: str = "data/matches.csv"
    covariates_path: str = "data/team_stats.csv"
    sheet: Optional[str] = None
    date_column: str = "date"
    team_column: str = "team"
    opponent_column: str = "opponent"
    margin_column: str = "margin"
    covariate_team_column: str = "team"
    covariate_columns: List[str] = field(default_factory=list)
    output_dir: str = "output"


@dataclass
class ModelConfig:
    latent_dim: int = 2
    dyad_covariate: str = "sum"  # "sum" or "product"
    meeting: int = 1
    mask_unplayed: bool = False
    standardize: bool = True


@dataclass
class PriorConfig:
    intercept_scale: float = 10.0
    # Inverse-gamma (shape, rate) pairs
    variance_shape: float = 2.0
    variance_rate: float = 1.0
    embedding_shape: float = 2.0
    embedding_rate: float = 1.0
    weight_shape: float = 2.0
    weight_rate: float = 1.0


@dataclass
class SamplerConfig:
    chains: int = 4
    warmup: int = 500
    draws: int = 1000
    thin: int = 1
    step_size: float = 0.05
    leapfrog_steps: int = 20
    target_accept: float = 0.75
    map_steps: int = 300
    map_lr: float = 0.05
    seed: int = 42


@dataclass
class DiagnosticsConfig:
    rhat_threshold: float = 1.1
    min_ess: float = 100.0


@dataclass
class AnalysisConfig:
    threshold: float = 0.5
    n_clusters: int = 3


DYAD_COVARIATES = ("sum", "product")


def _coerce(section: str, key: str, default, value):
    """Check a TOML value against the type of the field default."""
    if default is None:
        return value
    if isinstance(default, bool) or isinstance(value, bool):
        ok = isinstance(value, bool) and isinstance(default, bool)
    elif isinstance(default, float) and isinstance(value, int):
        # TOML writes 10 and 10.0 differently
        return float(value)
    else:
        ok = isinstance(value, type(default))
        if ok and isinstance(default, list):
            ok = all(isinstance(v, str) for v in value)
    if not ok:
        raise ConfigurationError(
            f"[{section}] {key} must be {type(default).__name__}, got {type(value).__name__} {value!r}"
        )
    return value


def _merge(current, values: dict, section: str):
    """Return ``current`` with keys from a TOML table applied."""
    known = {f.name for f in fields(current)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ValueError(f"Unknown key(s) in [{section}]: {', '.join(unknown)}")
    checked = {k: _coerce(section, k, getattr(current, k), v) for k, v in values.items()}
    return replace(current, **checked)


@dataclass
class Config:
    data: DataConfig = field(default_factory=DataConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    priors: PriorConfig = field(default_factory=PriorConfig)
    sampler: SamplerConfig = field(default_factory=SamplerConfig)
    diagnostics: DiagnosticsConfig = field(default_factory=DiagnosticsConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Load configuration from a TOML file.

        Each section ([data], [model], [priors], [sampler], [diagnostics],
        [analysis]) is optional; missing keys keep their defaults.
        """
        with open(path, "rb") as f:
            raw = tomllib.load(f)

        config = cls()
        sections = {f.name for f in fields(config)}
        unknown = [k for k in raw if k not in sections]
        if unknown:
            raise ValueError(
                f"Unknown section(s) {', '.join(unknown)}. "
                f"Available: {', '.join(sorted(sections))}"
            )

        for name, values in raw.items():
            if not isinstance(values, dict):
                raise ValueError(f"[{name}] must be a table")
            setattr(config, name, _merge(getattr(config, name), values, name))

        config.validate()
        return config

    @classmethod
    def default(cls) -> "Config":
        """Return default configuration matching config.toml."""
        return cls()

    def validate(self):
        """Reject values that would make the model or sampler meaningless."""
        errors = []
        if self.model.latent_dim < 1:
            errors.append("model.latent_dim must be >= 1")
        if self.model.meeting < 1:
            errors.append("model.meeting must be >= 1")
        if self.model.dyad_covariate not in DYAD_COVARIATES:
            errors.append(f"model.dyad_covariate must be one of {', '.join(DYAD_COVARIATES)}")
        for f in fields(self.priors):
            if getattr(self.priors, f.name) <= 0:
                errors.append(f"priors.{f.name} must be positive")
        s = self.sampler
        if s.chains < 1:
            errors.append("sampler.chains must be >= 1")
        if s.draws < 1:
            errors.append("sampler.draws must be >= 1")
        if s.warmup < 0:
            errors.append("sampler.warmup must be >= 0")
        if s.thin < 1:
            errors.append("sampler.thin must be >= 1")
        if s.leapfrog_steps < 1:
            errors.append("sampler.leapfrog_steps must be >= 1")
        if s.step_size <= 0:
            errors.append("sampler.step_size must be positive")
        if not 0 < s.target_accept < 1:
            errors.append("sampler.target_accept must be in (0, 1)")
        if not 0 <= self.analysis.threshold <= 1:
            errors.append("analysis.threshold must be in [0, 1]")
        if self.analysis.n_clusters < 1:
            errors.append("analysis.n_clusters must be >= 1")
        if errors:
            raise ConfigurationError("Invalid configuration: " + "; ".join(errors))
