"""
Hamilton processors for the VA calibration pipeline

This module contains the processing functions that turn prediction
records into calibrated CSMF estimates using Hamilton's function-based
approach. Each function is a node; its parameters name the inputs or
upstream nodes it depends on.
"""

from hamilton.function_modifiers import check_output
from typing import Any
import pandas as pd
import logging

from .chains import pool_chains, run_chains_from_config
from .config import MShrinkPrior, PShrinkPrior, SamplerConfig, TuningConfig
from .inputs import CalibrationData, check_prior_matches, prepare_calibration_data
from .schemas import CsmfSamplesSchema, CsmfSummarySchema, WaicTableSchema
from .summaries import misclassification_summary, summarize_csmf
from .tuning import TuningResult, tune_calibva
from .waic import calibrated_waic, uncalibrated_waic

logger = logging.getLogger(__name__)

# ============================================================================
# INPUT PREPARATION
# ============================================================================

def calibration_data(
    va_unlabeled_sources: list,
    va_labeled_sources: list,
    gold_standard: pd.Series,
    causes: list,
    sum_tolerance: float,
    renormalize_epsilon: float,
) -> CalibrationData:
    """
    Validate prediction records once for every downstream node.

    Args:
        va_unlabeled_sources: Target-set predictions, one entry per algorithm
        va_labeled_sources: Calibration-set predictions, one entry per algorithm
        gold_standard: True cause per calibration individual
        causes: Ordered cause labels

    Returns:
        Read-only CalibrationData
    """
    logger.info(f"Preparing calibration data for {len(va_unlabeled_sources)} algorithm(s)")
    return prepare_calibration_data(
        va_unlabeled_sources, va_labeled_sources, gold_standard, causes,
        sum_tolerance=sum_tolerance, renormalize_epsilon=renormalize_epsilon,
    )


def sampler_config(
    epsilon: float,
    ndraws: int,
    nchains: int,
    burnin: int,
    thin: int,
    seed: int,
    n_workers: int,
    executor: str,
    include_calibration_in_csmf: bool,
    sum_tolerance: float,
    renormalize_epsilon: float,
) -> SamplerConfig:
    """Reassemble the flat sampler inputs into a validated SamplerConfig."""
    return SamplerConfig(
        epsilon=epsilon,
        ndraws=ndraws,
        nchains=nchains,
        burnin=burnin,
        thin=thin,
        seed=seed,
        n_workers=n_workers,
        executor=executor,
        include_calibration_in_csmf=include_calibration_in_csmf,
        sum_tolerance=sum_tolerance,
        renormalize_epsilon=renormalize_epsilon,
    )

# ============================================================================
# SAMPLING
# ============================================================================

def calibration_chains(calibration_data: CalibrationData, prior: Any, sampler_config: SamplerConfig) -> list:
    """
    Run independent Gibbs chains with the configured prior.

    Returns:
        List of ChainResult, one per chain
    """
    check_prior_matches(prior, calibration_data.causes)
    return run_chains_from_config(calibration_data, prior, sampler_config)

# ============================================================================
# SUMMARIES
# ============================================================================

@check_output(schema=CsmfSamplesSchema.to_schema(), importance="fail")
def csmf_samples(calibration_chains: list, burnin: int, thin: int) -> pd.DataFrame:
    """Pooled post-burn-in, thinned CSMF draws with one column per cause."""
    pooled = pool_chains(calibration_chains, burnin=burnin, thin=thin)
    return pd.DataFrame(pooled["p"], columns=list(calibration_chains[0].causes))


@check_output(schema=CsmfSummarySchema.to_schema(), importance="fail")
def csmf_summary(calibration_chains: list, burnin: int, thin: int) -> pd.DataFrame:
    """Posterior mean and 95% credible interval of the CSMF per cause."""
    summary = summarize_csmf(calibration_chains, burnin=burnin, thin=thin)
    logger.info(f"CSMF summary computed for {len(summary)} causes")
    return summary


def misclassification_matrix(calibration_chains: list, burnin: int, thin: int) -> pd.DataFrame:
    """Posterior mean misclassification matrix of the first algorithm."""
    return misclassification_summary(calibration_chains, burnin=burnin, thin=thin)


def calibrated_waic_result(calibration_chains: list, burnin: int, thin: int) -> dict:
    """WAIC of the calibrated model."""
    return calibrated_waic(calibration_chains, burnin=burnin, thin=thin).to_dict()


def baseline_waic(
    calibration_data: CalibrationData,
    calibrated_waic_result: dict,
    epsilon: float,
    seed: int,
) -> dict:
    """WAIC of the uncalibrated model, using as many draws as the calibrated one."""
    return uncalibrated_waic(
        calibration_data, epsilon, calibrated_waic_result["n_samples"], seed=seed
    ).to_dict()

# ============================================================================
# MODEL SELECTION
# ============================================================================

def tuning_result(
    va_unlabeled_sources: list,
    va_labeled_sources: list,
    gold_standard: pd.Series,
    causes: list,
    prior: Any,
    sampler_config: SamplerConfig,
    tuning_method: str,
    tuning_grid: list,
    rhat_threshold: float,
    pointwise_variance_threshold: float,
) -> TuningResult:
    """
    Grid search over the shrinkage strength of the tuning method.

    The configured prior supplies the other hyperparameters when it uses the
    same method; otherwise that method's defaults are used.
    """
    if prior.method == tuning_method:
        base_prior = prior
    else:
        base_prior = MShrinkPrior() if tuning_method == "mshrink" else PShrinkPrior()
    tuning = TuningConfig(
        method=tuning_method,
        grid=tuning_grid,
        rhat_threshold=rhat_threshold,
        pointwise_variance_threshold=pointwise_variance_threshold,
    )
    ensemble = len(va_unlabeled_sources) > 1
    return tune_calibva(
        va_unlabeled_sources if ensemble else va_unlabeled_sources[0],
        va_labeled_sources if ensemble else va_labeled_sources[0],
        gold_standard,
        causes,
        method=tuning_method,
        base_prior=base_prior,
        sampler_config=sampler_config,
        tuning_config=tuning,
        ensemble=ensemble,
    )


@check_output(schema=WaicTableSchema.to_schema(), importance="fail")
def waic_table(tuning_result: TuningResult) -> pd.DataFrame:
    """WAIC per candidate shrinkage value."""
    return tuning_result.waic_table
