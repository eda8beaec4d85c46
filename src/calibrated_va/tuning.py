"""
Shrinkage selection by WAIC.

Candidates are either run here (one set of chains per grid value, every
candidate using the same seed) or supplied as precomputed chain lists so a
grid search can be parallelized outside this process. A candidate whose
chains look poorly mixed is flagged with a ConvergenceWarning but still
takes part in the comparison.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence
import logging
import warnings

import numpy as np
import pandas as pd

from .chains import pool_chains, run_chains_from_config
from .config import MShrinkPrior, PShrinkPrior, Prior, SamplerConfig, TuningConfig
from .diagnostics import convergence_issues, csmf_rhat
from .exceptions import ConvergenceWarning, InvalidInput
from .inputs import CalibrationData, prepare_calibration_data
from .sampler import ChainResult
from .schemas import WaicTableSchema
from .waic import WaicResult, compute_waic, uncalibrated_waic

logger = logging.getLogger(__name__)

# WAIC values closer than this count as a tie
WAIC_TIE_TOLERANCE = 1e-9

PRIOR_BY_METHOD = {"mshrink": MShrinkPrior, "pshrink": PShrinkPrior}


@dataclass
class TuningResult:
    """
    Outcome of a shrinkage grid search.

    Attributes:
        best_model: Chains of the selected candidate
        best_value: Selected alpha (mshrink) or lambda (pshrink)
        method: Which shrinkage strength was tuned
        waic_table: One row per candidate (value, waic, lppd, p_waic, rhat_max, converged, issues)
        uncalibrated_waic: WAIC of the model that takes predictions at face value
        warnings: Convergence issues keyed by candidate value
    """
    best_model: List[ChainResult]
    best_value: float
    method: str
    waic_table: pd.DataFrame
    uncalibrated_waic: WaicResult
    warnings: Dict[float, List[str]] = field(default_factory=dict)


def select_best(values: Sequence[float], waics: Sequence[float], default: float) -> int:
    """
    Index of the minimum WAIC; ties go to the value closest to the default.
    """
    waics = np.asarray(waics, dtype=float)
    values = np.asarray(values, dtype=float)
    finite = np.isfinite(waics)
    if not finite.any():
        logger.warning("No candidate has a finite WAIC; falling back to the value closest to the default")
        candidates = np.arange(len(values))
    else:
        best = np.min(waics[finite])
        candidates = np.flatnonzero(finite & (np.abs(waics - best) <= WAIC_TIE_TOLERANCE))
    distance = np.abs(values[candidates] - default)
    return int(candidates[int(np.argmin(distance))])


def _resolve_prior(method: str, base_prior: Optional[Prior]) -> Prior:
    if method not in PRIOR_BY_METHOD:
        raise InvalidInput(f"method must be one of {sorted(PRIOR_BY_METHOD)}, got {method!r}")
    if base_prior is None:
        return PRIOR_BY_METHOD[method]()
    if base_prior.method != method:
        raise InvalidInput(f"base_prior uses {base_prior.method} but tuning method is {method}")
    return base_prior


def _candidates_from_samples(samples_list: Sequence[Sequence[ChainResult]], method: str, data: CalibrationData):
    candidates = []
    seen = set()
    for i, chains in enumerate(samples_list):
        if isinstance(chains, ChainResult):
            chains = [chains]
        chains = list(chains)
        if not chains:
            raise InvalidInput(f"samples_list[{i}] contains no chains")
        value = chains[0].shrinkage_value
        for chain in chains:
            if chain.prior.method != method:
                raise InvalidInput(f"samples_list[{i}] was run with {chain.prior.method}, expected {method}")
            if chain.shrinkage_value != value:
                raise InvalidInput(f"samples_list[{i}] mixes chains with different shrinkage values")
            if chain.causes != data.causes:
                raise InvalidInput(f"samples_list[{i}] was run with a different cause set")
            if chain.z.shape[1] != data.n_unlabeled:
                raise InvalidInput(f"samples_list[{i}] does not match the unlabeled data ({chain.z.shape[1]} rows)")
        if value in seen:
            raise InvalidInput(f"samples_list has more than one entry for value {value}")
        seen.add(value)
        candidates.append((float(value), chains))
    return candidates


def tune_calibva(
    va_unlabeled,
    va_labeled,
    gold_standard,
    causes: Sequence[str],
    grid: Optional[Sequence[float]] = None,
    samples_list: Optional[Sequence[Sequence[ChainResult]]] = None,
    method: Optional[str] = None,
    base_prior: Optional[Prior] = None,
    sampler_config: Optional[SamplerConfig] = None,
    tuning_config: Optional[TuningConfig] = None,
    ensemble: bool = False,
    should_stop: Optional[Callable[[], bool]] = None,
) -> TuningResult:
    """
    Choose the shrinkage strength with the lowest WAIC.

    Args:
        va_unlabeled: Target-set predictions (list per algorithm when ensemble=True)
        va_labeled: Calibration-set predictions (list per algorithm when ensemble=True)
        gold_standard: True cause of each calibration individual
        causes: Ordered cause labels
        grid: Candidate alpha (mshrink) or lambda (pshrink) values to run
        samples_list: Precomputed chain lists, one per candidate, used instead of grid
        method: "mshrink" or "pshrink" (defaults to tuning_config.method)
        base_prior: Prior whose other hyperparameters are kept fixed
        sampler_config: Chain settings, including burn-in, thinning and seed
        tuning_config: Convergence thresholds and default grid

    Returns:
        TuningResult with the winning chains, the WAIC table and the
        uncalibrated baseline WAIC
    """
    sampler_config = sampler_config if sampler_config is not None else SamplerConfig()
    if tuning_config is None:
        tuning_config = TuningConfig(method=method or (base_prior.method if base_prior is not None else "pshrink"))
    method = method or tuning_config.method
    base_prior = _resolve_prior(method, base_prior)

    if grid is not None and samples_list is not None:
        raise InvalidInput("pass either grid or samples_list, not both")

    if ensemble:
        if not isinstance(va_unlabeled, (list, tuple)) or not isinstance(va_labeled, (list, tuple)):
            raise InvalidInput("ensemble tuning needs lists of prediction records, one per algorithm")
        unl_list, lab_list = list(va_unlabeled), list(va_labeled)
    else:
        unl_list, lab_list = [va_unlabeled], [va_labeled]
    data = prepare_calibration_data(
        unl_list, lab_list, gold_standard, causes,
        sum_tolerance=sampler_config.sum_tolerance,
        renormalize_epsilon=sampler_config.renormalize_epsilon,
    )

    burnin, thin = sampler_config.burnin, sampler_config.thin

    if samples_list is not None:
        candidates = _candidates_from_samples(samples_list, method, data)
        logger.info(f"Tuning {method} over {len(candidates)} precomputed candidates")
    else:
        values = list(grid) if grid is not None else tuning_config.resolved_grid()
        if len(values) == 0:
            raise InvalidInput("grid is empty")
        if any(v <= 0 for v in values):
            raise InvalidInput(f"grid values must be > 0, got {values}")
        if len(set(values)) != len(values):
            raise InvalidInput(f"grid contains duplicate values: {values}")
        if isinstance(base_prior, MShrinkPrior) and base_prior.tau is not None:
            raise InvalidInput("cannot tune alpha while tau fixes the diagonal weights; unset tau")
        candidates = []
        for value in values:
            logger.info(f"Tuning {method}: running chains for value {value}")
            prior = base_prior.with_shrinkage(value)
            candidates.append((float(value), run_chains_from_config(data, prior, sampler_config, should_stop)))

    rows = []
    flagged: Dict[float, List[str]] = {}
    n_pooled = None
    for value, chains in candidates:
        pooled = pool_chains(chains, burnin=burnin, thin=thin)
        n_pooled = n_pooled or pooled["log_lik"].shape[0]
        result = compute_waic(pooled["log_lik"])
        rhat_max = float("nan")
        if len(chains) >= 2:
            rhat = csmf_rhat(chains, burnin, thin)
            if np.any(np.isfinite(rhat)):
                rhat_max = float(np.nanmax(rhat))
        issues = convergence_issues(
            chains, burnin, thin, result.waic, result.pointwise_variance_max,
            rhat_threshold=tuning_config.rhat_threshold,
            pointwise_variance_threshold=tuning_config.pointwise_variance_threshold,
        )
        if issues:
            flagged[value] = issues
            message = f"{method}={value}: " + "; ".join(issues)
            logger.warning(f"Convergence warning for {message}")
            warnings.warn(message, ConvergenceWarning, stacklevel=2)
        logger.info(f"{method}={value}: WAIC {result.waic:.3f} (lppd {result.lppd:.3f}, p_waic {result.p_waic:.3f})")
        rows.append({
            "value": value,
            "waic": result.waic,
            "lppd": result.lppd,
            "p_waic": result.p_waic,
            "rhat_max": rhat_max,
            "converged": not issues,
            "issues": "; ".join(issues),
        })

    waic_table = WaicTableSchema.validate(pd.DataFrame(rows))

    best_idx = select_best(
        waic_table["value"].to_numpy(),
        waic_table["waic"].to_numpy(),
        PRIOR_BY_METHOD[method].default_shrinkage(),
    )
    best_value, best_chains = candidates[best_idx]
    logger.info(f"Selected {method}={best_value} with WAIC {waic_table['waic'].iloc[best_idx]:.3f}")

    baseline = uncalibrated_waic(data, sampler_config.epsilon, n_pooled, seed=sampler_config.seed)

    return TuningResult(
        best_model=best_chains,
        best_value=best_value,
        method=method,
        waic_table=waic_table,
        uncalibrated_waic=baseline,
        warnings=flagged,
    )
