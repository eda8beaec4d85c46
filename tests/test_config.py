"""
Tests for configuration management module.

This module tests the Pydantic configuration system including
YAML loading, validation, and conversion to Hamilton inputs.
"""

import pytest
from pathlib import Path
import tempfile
import yaml
from pydantic import ValidationError

from calibrated_va.config import (
    load_config,
    CalibrationConfig,
    MShrinkPrior,
    PShrinkPrior,
    SamplerConfig,
    TuningConfig,
    DataPathsConfig,
)

CONFIG_DIR = Path(__file__).parent.parent / "config"


class TestConfigLoading:
    """Test configuration loading from YAML files."""

    def test_load_default_config(self):
        """Test loading the default configuration file."""
        config = load_config(CONFIG_DIR / "default.yaml")

        assert isinstance(config, CalibrationConfig)
        assert isinstance(config.prior, MShrinkPrior)
        assert config.prior.alpha == 5.0
        assert config.sampler.ndraws == 10000
        assert config.sampler.burnin == 1000
        assert config.sampler.thin == 10
        assert config.tuning.method == "mshrink"

    def test_load_default_config_without_path(self):
        """Test that load_config() falls back to config/default.yaml."""
        config = load_config()
        assert config.causes == load_config(CONFIG_DIR / "default.yaml").causes

    def test_load_test_config(self):
        """Test loading the test configuration file."""
        config = load_config(CONFIG_DIR / "test.yaml")

        assert isinstance(config.prior, PShrinkPrior)
        assert config.prior.lambda_ == 1.0
        assert config.causes == ["A", "B", "C"]
        assert config.sampler.ndraws == 200
        assert config.tuning is None

    def test_load_nonexistent_config(self):
        """Test that loading a nonexistent config raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_config(CONFIG_DIR / "nonexistent.yaml")

    def test_load_invalid_config(self):
        """Test that loading an invalid config raises ValueError."""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            # burn-in longer than the chain
            yaml.dump({
                'causes': ['A', 'B'],
                'sampler': {'ndraws': 100, 'burnin': 500},
            }, f)
            temp_path = f.name

        try:
            with pytest.raises(ValueError, match="Invalid configuration"):
                load_config(Path(temp_path))
        finally:
            Path(temp_path).unlink()

    def test_load_unknown_prior_method(self):
        """Test that an unknown prior method is rejected."""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            yaml.dump({'causes': ['A', 'B'], 'prior': {'method': 'qshrink'}}, f)
            temp_path = f.name

        try:
            with pytest.raises(ValueError, match="Invalid configuration"):
                load_config(Path(temp_path))
        finally:
            Path(temp_path).unlink()


class TestPydanticModels:
    """Test Pydantic model validation."""

    def test_mshrink_defaults(self):
        prior = MShrinkPrior()
        assert prior.method == "mshrink"
        assert prior.alpha == 5.0
        assert prior.delta == 1.0
        assert prior.beta is None
        assert not prior.learns_gamma

    def test_mshrink_invalid_alpha(self):
        with pytest.raises(ValidationError):
            MShrinkPrior(alpha=-1.0)
        with pytest.raises(ValidationError):
            MShrinkPrior(alpha=0.0)

    def test_mshrink_tau_validation(self):
        with pytest.raises(ValidationError):
            MShrinkPrior(tau=[1.0, 0.0])
        with pytest.raises(ValidationError):
            MShrinkPrior(tau=[])

    def test_mshrink_hyperprior(self):
        assert MShrinkPrior(beta=2.0).learns_gamma
        # fixed per-cause weights win over the hyperprior
        assert not MShrinkPrior(beta=2.0, tau=[1.0, 2.0]).learns_gamma

    def test_pshrink_lambda_alias(self):
        assert PShrinkPrior(**{"lambda": 10.0}).lambda_ == 10.0
        assert PShrinkPrior(lambda_=10.0).lambda_ == 10.0
        with pytest.raises(ValidationError):
            PShrinkPrior(lambda_=0.0)

    def test_with_shrinkage_returns_copy(self):
        prior = MShrinkPrior(alpha=5.0, delta=2.0)
        stronger = prior.with_shrinkage(100)

        assert stronger.alpha == 100.0
        assert stronger.delta == 2.0
        assert prior.alpha == 5.0

        p = PShrinkPrior().with_shrinkage(10)
        assert p.shrinkage_value == 10.0

    def test_default_shrinkage(self):
        assert MShrinkPrior.default_shrinkage() == 5.0
        assert PShrinkPrior.default_shrinkage() == 1.0

    def test_sampler_config_burnin_validation(self):
        with pytest.raises(ValidationError):
            SamplerConfig(ndraws=100, burnin=100)
        config = SamplerConfig(ndraws=100, burnin=99)
        assert config.burnin == 99

    def test_sampler_config_invalid_values(self):
        with pytest.raises(ValidationError):
            SamplerConfig(thin=0)
        with pytest.raises(ValidationError):
            SamplerConfig(epsilon=0.0)
        with pytest.raises(ValidationError):
            SamplerConfig(executor="cluster")

    def test_tuning_config_grid(self):
        assert TuningConfig(method="pshrink").resolved_grid() == [0.1, 1.0, 10.0, 100.0]
        assert TuningConfig(method="mshrink").resolved_grid() == [1.0, 5.0, 25.0, 100.0]
        assert TuningConfig(grid=[2.0, 3.0]).resolved_grid() == [2.0, 3.0]
        with pytest.raises(ValidationError):
            TuningConfig(grid=[])
        with pytest.raises(ValidationError):
            TuningConfig(grid=[1.0, -1.0])

    def test_data_paths_source_count(self):
        with pytest.raises(ValidationError):
            DataPathsConfig(va_unlabeled=["a.csv", "b.csv"], va_labeled=["c.csv"], gold_standard="g.csv")

    def test_causes_validation(self):
        with pytest.raises(ValidationError):
            CalibrationConfig(causes=["A"])
        with pytest.raises(ValidationError):
            CalibrationConfig(causes=["A", "B", "A"])

    def test_prior_discriminator(self):
        config = CalibrationConfig(causes=["A", "B"], prior={"method": "pshrink", "lambda": 5.0})
        assert isinstance(config.prior, PShrinkPrior)
        assert config.prior.lambda_ == 5.0

        config = CalibrationConfig(causes=["A", "B"], prior={"method": "mshrink", "alpha": 25.0})
        assert isinstance(config.prior, MShrinkPrior)
        assert config.prior.alpha == 25.0


class TestHamiltonInputs:
    """Test conversion of config to Hamilton inputs."""

    def test_to_hamilton_inputs(self):
        config = load_config(CONFIG_DIR / "test.yaml")
        inputs = config.to_hamilton_inputs()

        assert inputs['causes'] == ["A", "B", "C"]
        assert inputs['prior'] is config.prior
        assert inputs['ndraws'] == 200
        assert inputs['nchains'] == 2
        assert inputs['burnin'] == 50
        assert inputs['thin'] == 5
        assert inputs['seed'] == 7
        assert inputs['executor'] == "thread"
        assert inputs['output_dir'] == "test_outputs"

    def test_tuning_defaults_follow_prior(self):
        config = CalibrationConfig(causes=["A", "B"], prior=PShrinkPrior())
        inputs = config.to_hamilton_inputs()

        assert inputs['tuning_method'] == "pshrink"
        assert inputs['tuning_grid'] == [0.1, 1.0, 10.0, 100.0]
        assert inputs['rhat_threshold'] == 1.1
        assert inputs['pointwise_variance_threshold'] == 0.4
        assert 'output_dir' not in inputs
