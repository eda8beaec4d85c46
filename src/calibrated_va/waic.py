"""
WAIC for calibrated and uncalibrated models.

Each unlabeled record is one observation. With ll[s, j] the log-likelihood
of record j under posterior draw s:

    lppd   = sum_j log( mean_s exp(ll[s, j]) )
    p_waic = sum_j var_s( ll[s, j] )
    WAIC   = -2 * (lppd - p_waic)
"""

from dataclasses import dataclass, asdict
from typing import Optional, Sequence
import logging

import numpy as np
from scipy.special import logsumexp

from .chains import pool_chains
from .exceptions import InvalidInput
from .inputs import CalibrationData
from .sampler import ChainResult, TINY, draw_dirichlet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WaicResult:
    waic: float
    lppd: float
    p_waic: float
    pointwise_variance_max: float
    n_samples: int
    n_observations: int

    def to_dict(self) -> dict:
        return asdict(self)


def compute_waic(log_lik: np.ndarray) -> WaicResult:
    """
    WAIC from an (S, N) matrix of pointwise log-likelihoods.

    Args:
        log_lik: array (S, N), rows are posterior draws

    Returns:
        WaicResult
    """
    log_lik = np.asarray(log_lik, dtype=float)
    if log_lik.ndim != 2:
        raise InvalidInput(f"log_lik must have shape (S, N), got {log_lik.shape}")
    n_samples, n_obs = log_lik.shape
    if n_samples < 1:
        raise InvalidInput("log_lik has no posterior draws")

    if n_obs == 0:
        return WaicResult(0.0, 0.0, 0.0, 0.0, n_samples, 0)

    lppd_pointwise = logsumexp(log_lik, axis=0) - np.log(n_samples)
    var_pointwise = np.var(log_lik, axis=0, ddof=0)
    lppd = float(np.sum(lppd_pointwise))
    p_waic = float(np.sum(var_pointwise))
    return WaicResult(
        waic=-2.0 * (lppd - p_waic),
        lppd=lppd,
        p_waic=p_waic,
        pointwise_variance_max=float(np.max(var_pointwise)),
        n_samples=n_samples,
        n_observations=n_obs,
    )


def calibrated_waic(chains: Sequence[ChainResult], burnin: int = 0, thin: int = 1) -> WaicResult:
    """WAIC of the calibrated model from pooled post-burn-in, thinned draws."""
    pooled = pool_chains(chains, burnin=burnin, thin=thin)
    return compute_waic(pooled["log_lik"])


def uncalibrated_log_likelihood(
    data: CalibrationData,
    epsilon: float,
    n_samples: int,
    seed: Optional[int] = None,
) -> np.ndarray:
    """
    Pointwise log-likelihood draws of the model that trusts predictions as-is.

    M is the identity for every source, so P(q_jk | c) = q_jk[c], and
    p ~ Dirichlet(epsilon + raw predicted cause counts).
    """
    if n_samples < 1:
        raise InvalidInput(f"n_samples must be >= 1, got {n_samples}")
    rng = np.random.default_rng(seed)
    counts = data.va_unlabeled.sum(axis=1).mean(axis=0)
    log_lik_by_cause = np.log(np.maximum(data.va_unlabeled, TINY)).sum(axis=0)

    out = np.empty((n_samples, data.n_unlabeled))
    for s in range(n_samples):
        p = draw_dirichlet(epsilon + counts, rng)
        out[s] = logsumexp(np.log(np.maximum(p, TINY))[None, :] + log_lik_by_cause, axis=1)
    return out


def uncalibrated_waic(
    data: CalibrationData,
    epsilon: float,
    n_samples: int,
    seed: Optional[int] = None,
) -> WaicResult:
    """WAIC of the uncalibrated baseline, deterministic for a given seed."""
    result = compute_waic(uncalibrated_log_likelihood(data, epsilon, n_samples, seed))
    logger.info(f"Uncalibrated baseline WAIC: {result.waic:.3f}")
    return result
