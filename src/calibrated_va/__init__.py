"""
Calibrated VA

Bayesian calibration of verbal-autopsy cause predictions: corrects
algorithm misclassification with a gold-standard calibration set and
estimates population cause-specific mortality fractions.
"""

# Suppress upstream warnings on import
from .utils.warning_suppression import suppress_upstream_warnings
suppress_upstream_warnings()

from .config import (
    CalibrationConfig,
    MShrinkPrior,
    PShrinkPrior,
    SamplerConfig,
    TuningConfig,
    load_config,
)
from .exceptions import ConvergenceWarning, InvalidInput, NumericDegeneracy, SamplingInterrupted
from .sampler import ChainResult, calibva_sampler
from .ensemble import ensemble_lite_sampler
from .chains import extract_csmf, pool_chains, run_chains
from .waic import calibrated_waic, compute_waic, uncalibrated_waic
from .tuning import TuningResult, tune_calibva
from .summaries import individual_cause_probabilities, misclassification_summary, summarize_csmf

__version__ = "0.1.0"
