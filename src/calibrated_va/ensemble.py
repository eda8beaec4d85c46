"""
Independent ensemble sampler.

Each of K algorithms gets its own misclassification matrix M_k. Every
individual has one true cause shared by all algorithms, and the algorithms
are treated as conditionally independent given that cause:

    P(z_j = c) ∝ p[c] * prod_k sum_d M_k[c, d] * q_jk[d]

M_k is updated from algorithm k's (true, predicted) pairs only; the CSMF
update is the same as for a single algorithm.
"""

from typing import Callable, List, Optional, Sequence
import logging

import numpy as np

from .config import MShrinkPrior, Prior
from .exceptions import InvalidInput, SamplingInterrupted
from .inputs import (
    CalibrationData,
    DEFAULT_RENORMALIZE_EPSILON,
    DEFAULT_SUM_TOLERANCE,
    check_prior_matches,
    prepare_calibration_data,
)
from .sampler import (
    ChainResult,
    TINY,
    check_run_arguments,
    draw_dirichlet_rows,
    initial_csmf,
    initial_gamma,
    log_source_likelihood,
    make_rng,
    misclassification_counts,
    misclassification_prior,
    pointwise_log_likelihood,
    sample_prepared,
    sample_true_causes,
    update_csmf,
    update_gamma,
)

logger = logging.getLogger(__name__)


def ensemble_log_likelihood(va_unlabeled: np.ndarray, M: np.ndarray) -> np.ndarray:
    """
    Sum of per-source log-likelihoods.

    Args:
        va_unlabeled: (K, N, C) prediction rows
        M: (K, C, C) misclassification matrices

    Returns:
        (N, C) array of log prod_k P(q_jk | true cause c)
    """
    total = np.zeros((va_unlabeled.shape[1], M.shape[-1]))
    for k in range(va_unlabeled.shape[0]):
        total += log_source_likelihood(va_unlabeled[k], M[k])
    return total


def run_ensemble_chain(
    data: CalibrationData,
    prior: Prior,
    epsilon: float,
    ndraws: int,
    rng: np.random.Generator,
    include_calibration_in_csmf: bool = False,
    should_stop: Optional[Callable[[], bool]] = None,
) -> dict:
    """Run the ensemble Gibbs chain on prepared data and return draw arrays."""
    n_sources = data.n_sources
    n_causes = data.n_causes
    gs = data.gold_standard
    anchor = data.predicted_csmf()
    gs_counts = np.bincount(gs, minlength=n_causes).astype(float)
    learn_gamma = isinstance(prior, MShrinkPrior) and prior.learns_gamma

    start_gamma = initial_gamma(prior, n_causes)
    gammas = [None if start_gamma is None else start_gamma.copy() for _ in range(n_sources)]
    M = np.empty((n_sources, n_causes, n_causes))
    for k in range(n_sources):
        rows = misclassification_prior(prior, n_causes, gammas[k])
        M[k] = rows / rows.sum(axis=1, keepdims=True)
    p = initial_csmf(anchor)

    p_draws = np.empty((ndraws, n_causes))
    M_draws = np.empty((ndraws, n_sources, n_causes, n_causes))
    z_draws = np.empty((ndraws, data.n_unlabeled), dtype=np.int64)
    ll_draws = np.empty((ndraws, data.n_unlabeled))
    gamma_draws = np.empty((ndraws, n_sources, n_causes)) if learn_gamma else None

    for t in range(ndraws):
        if should_stop is not None and should_stop():
            raise SamplingInterrupted(f"sampling stopped before iteration {t} of {ndraws}")

        # 1. shared latent true causes
        log_lik_by_cause = ensemble_log_likelihood(data.va_unlabeled, M)
        z = sample_true_causes(np.log(np.maximum(p, TINY))[None, :] + log_lik_by_cause, rng)

        # 2. one matrix per source
        M = M.copy()
        for k in range(n_sources):
            counts = misclassification_counts(data.va_labeled[k], gs, data.va_unlabeled[k], z, n_causes)
            M[k] = draw_dirichlet_rows(misclassification_prior(prior, n_causes, gammas[k]) + counts, rng)
            if learn_gamma:
                gammas[k] = update_gamma(gammas[k], M[k], prior, rng)

        # 3. CSMF
        cause_counts = np.bincount(z, minlength=n_causes).astype(float)
        if include_calibration_in_csmf:
            cause_counts = cause_counts + gs_counts
        p = update_csmf(prior, cause_counts, epsilon, anchor, rng)

        p_draws[t] = p
        M_draws[t] = M
        z_draws[t] = z
        ll_draws[t] = pointwise_log_likelihood(p, ensemble_log_likelihood(data.va_unlabeled, M))
        if learn_gamma:
            gamma_draws[t] = np.stack(gammas)

    return {"p": p_draws, "M": M_draws, "z": z_draws, "log_lik": ll_draws, "gamma": gamma_draws}


def ensemble_lite_sampler(
    va_unlabeled_list: List,
    va_labeled_list: List,
    gold_standard,
    causes: Sequence[str],
    prior: Optional[Prior] = None,
    epsilon: float = 0.001,
    ndraws: int = 10000,
    seed: Optional[int] = None,
    rng: Optional[np.random.Generator] = None,
    include_calibration_in_csmf: bool = False,
    should_stop: Optional[Callable[[], bool]] = None,
    sum_tolerance: float = DEFAULT_SUM_TOLERANCE,
    renormalize_epsilon: float = DEFAULT_RENORMALIZE_EPSILON,
    chain_id: int = 0,
) -> ChainResult:
    """
    Calibrate several algorithms jointly and return a single Gibbs chain.

    Args:
        va_unlabeled_list: One target-set prediction record per algorithm
        va_labeled_list: One calibration-set prediction record per algorithm,
            rows aligned with gold_standard
        gold_standard: True cause of each calibration individual
        causes: Ordered cause labels
        prior: MShrinkPrior or PShrinkPrior applied to every algorithm

    Returns:
        ChainResult whose M has one matrix per algorithm

    Raises:
        InvalidInput: If the lists are empty, differ in length, or any source
            is malformed or has a different row count
    """
    if isinstance(va_unlabeled_list, (str, bytes)) or not isinstance(va_unlabeled_list, (list, tuple)):
        raise InvalidInput("va_unlabeled_list must be a list with one prediction record per algorithm")
    if isinstance(va_labeled_list, (str, bytes)) or not isinstance(va_labeled_list, (list, tuple)):
        raise InvalidInput("va_labeled_list must be a list with one prediction record per algorithm")

    prior = prior if prior is not None else MShrinkPrior()
    check_run_arguments(ndraws, epsilon)
    data = prepare_calibration_data(
        list(va_unlabeled_list), list(va_labeled_list), gold_standard, causes,
        sum_tolerance=sum_tolerance, renormalize_epsilon=renormalize_epsilon,
    )
    check_prior_matches(prior, data.causes)
    return sample_prepared(
        data, prior, epsilon, ndraws, make_rng(seed, rng),
        include_calibration_in_csmf=include_calibration_in_csmf,
        should_stop=should_stop, seed=seed, chain_id=chain_id,
    )
