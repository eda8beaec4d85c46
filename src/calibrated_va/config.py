"""
Configuration management for VA calibration.

This module provides centralized configuration using Pydantic for validation
and YAML for human-readable config files. The prior is a tagged variant keyed
on ``method``: each shrinkage strategy carries only the hyperparameters it uses.
"""

from pathlib import Path
from typing import Optional, List, Literal, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator
import yaml
import logging

logger = logging.getLogger(__name__)


class MShrinkPrior(BaseModel):
    """Misclassification-matrix shrinkage toward the identity (no-error) matrix."""
    method: Literal["mshrink"] = "mshrink"
    alpha: float = Field(default=5.0, gt=0, description="Diagonal concentration pulling M toward identity")
    beta: Optional[float] = Field(
        default=None,
        gt=0,
        description="Rate of the Gamma(alpha, beta) hyperprior on diagonal weights; fixed weights if unset"
    )
    tau: Optional[List[float]] = Field(default=None, description="Fixed per-cause diagonal weights (overrides alpha)")
    delta: float = Field(default=1.0, gt=0, description="Off-diagonal Dirichlet pseudo-count")
    gamma_init: float = Field(default=1.0, gt=0, description="Initial diagonal weight when the hyperprior is used")
    gamma_step: float = Field(default=0.5, gt=0, description="Log-scale Metropolis proposal scale for diagonal weights")

    @field_validator('tau')
    @classmethod
    def validate_tau(cls, v):
        if v is None:
            return v
        if len(v) == 0:
            raise ValueError("tau must contain one weight per cause")
        if any(t <= 0 for t in v):
            raise ValueError("tau weights must all be > 0")
        return v

    @property
    def learns_gamma(self) -> bool:
        return self.beta is not None and self.tau is None

    @property
    def shrinkage_value(self) -> float:
        return self.alpha

    def with_shrinkage(self, value: float) -> "MShrinkPrior":
        return self.model_copy(update={"alpha": float(value)})

    @classmethod
    def default_shrinkage(cls) -> float:
        return cls.model_fields["alpha"].default


class PShrinkPrior(BaseModel):
    """Direct CSMF shrinkage toward the raw predicted CSMF."""
    model_config = ConfigDict(populate_by_name=True)

    method: Literal["pshrink"] = "pshrink"
    lambda_: float = Field(default=1.0, gt=0, alias="lambda", description="CSMF shrinkage strength (1 = none)")
    delta: float = Field(default=1.0, gt=0, description="Uniform Dirichlet pseudo-count on every cell of M")

    @property
    def shrinkage_value(self) -> float:
        return self.lambda_

    def with_shrinkage(self, value: float) -> "PShrinkPrior":
        return self.model_copy(update={"lambda_": float(value)})

    @classmethod
    def default_shrinkage(cls) -> float:
        return cls.model_fields["lambda_"].default


Prior = Union[MShrinkPrior, PShrinkPrior]


class SamplerConfig(BaseModel):
    """Configuration for the Gibbs sampler and chain driver."""
    epsilon: float = Field(default=0.001, gt=0, description="CSMF Dirichlet prior strength")
    ndraws: int = Field(default=10000, gt=0, description="Gibbs iterations per chain")
    nchains: int = Field(default=3, gt=0, description="Number of independent chains")
    burnin: int = Field(default=1000, ge=0, description="Iterations dropped at extraction time")
    thin: int = Field(default=10, ge=1, description="Keep every thin-th iteration after burn-in")
    seed: int = Field(default=123, ge=0, description="Top-level seed from which chain seeds are spawned")
    n_workers: int = Field(default=1, ge=1, description="Chains run concurrently when > 1")
    executor: Literal["process", "thread"] = Field(default="process", description="Worker pool type")
    include_calibration_in_csmf: bool = Field(
        default=False,
        description=(
            "Count gold-standard causes of the calibration set in the CSMF update; when off, "
            "target records that all share one prediction keep the CSMF at that cause"
        )
    )
    sum_tolerance: float = Field(default=1e-3, gt=0, description="Max deviation of a probability row sum from 1")
    renormalize_epsilon: float = Field(default=1e-8, ge=0, description="Deviation above which rows are renormalized")

    @field_validator('burnin')
    @classmethod
    def validate_burnin(cls, v, info):
        if 'ndraws' in info.data and v >= info.data['ndraws']:
            raise ValueError("burnin must be < ndraws")
        return v


class TuningConfig(BaseModel):
    """Configuration for WAIC-based shrinkage selection."""
    method: Literal["mshrink", "pshrink"] = Field(default="pshrink", description="Which shrinkage strength to tune")
    grid: Optional[List[float]] = Field(default=None, description="Candidate shrinkage values")
    rhat_threshold: float = Field(default=1.1, gt=1, description="R-hat above which a candidate is flagged")
    pointwise_variance_threshold: float = Field(
        default=0.4,
        gt=0,
        description="Posterior variance of a pointwise log-likelihood above which WAIC is flagged"
    )

    @field_validator('grid')
    @classmethod
    def validate_grid(cls, v):
        if v is None:
            return v
        if len(v) == 0:
            raise ValueError("grid must contain at least one value")
        if any(g <= 0 for g in v):
            raise ValueError("grid values must all be > 0")
        return v

    def resolved_grid(self) -> List[float]:
        if self.grid is not None:
            return list(self.grid)
        if self.method == "pshrink":
            return [0.1, 1.0, 10.0, 100.0]
        return [1.0, 5.0, 25.0, 100.0]


class DataPathsConfig(BaseModel):
    """Configuration for data paths used by the command line entry point."""
    va_unlabeled: List[str] = Field(description="Prediction CSV(s) for the target set, one per algorithm")
    va_labeled: List[str] = Field(description="Prediction CSV(s) for the calibration set, one per algorithm")
    gold_standard: str = Field(description="CSV with gold-standard causes for the calibration set")
    prediction_column: str = Field(default="cause", description="Column holding categorical predictions")
    gold_standard_column: str = Field(default="cause", description="Column holding gold-standard causes")
    output_dir: str = Field(default="outputs", description="Output directory path")

    @field_validator('va_labeled')
    @classmethod
    def validate_matching_sources(cls, v, info):
        if 'va_unlabeled' in info.data and len(v) != len(info.data['va_unlabeled']):
            raise ValueError("va_labeled and va_unlabeled must list the same number of algorithms")
        return v


class CalibrationConfig(BaseModel):
    """Complete calibration configuration."""
    causes: List[str] = Field(min_length=2, description="Ordered cause labels")
    sampler: SamplerConfig = Field(default_factory=SamplerConfig)
    prior: Prior = Field(default_factory=MShrinkPrior, discriminator="method")
    tuning: Optional[TuningConfig] = Field(default=None, description="Run a shrinkage grid search when set")
    data_paths: Optional[DataPathsConfig] = Field(default=None, description="Input and output locations")

    @field_validator('causes')
    @classmethod
    def validate_causes(cls, v):
        if len(set(v)) != len(v):
            raise ValueError("causes must be unique")
        return v

    def to_hamilton_inputs(self) -> dict:
        """
        Convert config to flat dictionary for Hamilton inputs.

        Returns:
            Dictionary with all config values as Hamilton input parameters
        """
        inputs = {}

        inputs['causes'] = list(self.causes)
        inputs['prior'] = self.prior

        # Sampler parameters
        inputs['epsilon'] = self.sampler.epsilon
        inputs['ndraws'] = self.sampler.ndraws
        inputs['nchains'] = self.sampler.nchains
        inputs['burnin'] = self.sampler.burnin
        inputs['thin'] = self.sampler.thin
        inputs['seed'] = self.sampler.seed
        inputs['n_workers'] = self.sampler.n_workers
        inputs['executor'] = self.sampler.executor
        inputs['include_calibration_in_csmf'] = self.sampler.include_calibration_in_csmf
        inputs['sum_tolerance'] = self.sampler.sum_tolerance
        inputs['renormalize_epsilon'] = self.sampler.renormalize_epsilon

        # Tuning parameters
        tuning = self.tuning if self.tuning is not None else TuningConfig(method=self.prior.method)
        inputs['tuning_method'] = tuning.method
        inputs['tuning_grid'] = tuning.resolved_grid()
        inputs['rhat_threshold'] = tuning.rhat_threshold
        inputs['pointwise_variance_threshold'] = tuning.pointwise_variance_threshold

        if self.data_paths:
            inputs['output_dir'] = self.data_paths.output_dir

        return inputs


def load_config(config_path: Optional[Path] = None) -> CalibrationConfig:
    """
    Load calibration configuration from YAML file.

    Args:
        config_path: Path to YAML config file. If None, uses config/default.yaml

    Returns:
        Validated CalibrationConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config validation fails
    """
    if config_path is None:
        # Default to config/default.yaml in project root
        project_root = Path(__file__).parent.parent.parent
        config_path = project_root / "config" / "default.yaml"

    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    logger.info(f"Loading configuration from: {config_path}")

    with open(config_path, 'r') as f:
        config_dict = yaml.safe_load(f)

    try:
        config = CalibrationConfig(**config_dict)
        logger.info("Configuration loaded and validated successfully")
        return config
    except Exception as e:
        logger.error(f"Configuration validation failed: {e}")
        raise ValueError(f"Invalid configuration: {e}") from e
