"""
Convergence diagnostics for calibration chains.
"""

from typing import List, Sequence
import logging

import numpy as np

from .chains import kept_indices
from .sampler import ChainResult

logger = logging.getLogger(__name__)


def gelman_rubin(draws: np.ndarray) -> np.ndarray:
    """
    Gelman-Rubin R-hat for every parameter.

    R-hat < 1.01 indicates excellent convergence, < 1.1 is typically
    acceptable, > 1.1 suggests the chains have not mixed.

    Args:
        draws: array (n_chains, n_samples, ...) of MCMC draws

    Returns:
        R-hat per parameter (flattened trailing dimensions). Parameters that
        are constant across all draws get 1.0.
    """
    draws = np.asarray(draws, dtype=float)
    n_chains, n_samples = draws.shape[:2]
    draws = draws.reshape(n_chains, n_samples, -1)
    if n_chains < 2 or n_samples < 2:
        return np.full(draws.shape[2], np.nan)

    chain_means = draws.mean(axis=1)
    chain_vars = draws.var(axis=1, ddof=1)

    # Between- and within-chain variance
    B = n_samples * chain_means.var(axis=0, ddof=1)
    W = chain_vars.mean(axis=0)
    var_hat = (n_samples - 1) / n_samples * W + B / n_samples

    rhat = np.ones_like(W)
    positive = W > 0
    rhat[positive] = np.sqrt(var_hat[positive] / W[positive])
    return rhat


def csmf_rhat(chains: Sequence[ChainResult], burnin: int = 0, thin: int = 1) -> np.ndarray:
    """R-hat of each CSMF component across chains (trimmed to a common length)."""
    kept: List[np.ndarray] = [chain.p[kept_indices(chain.ndraws, burnin, thin)] for chain in chains]
    n_common = min(k.shape[0] for k in kept)
    return gelman_rubin(np.stack([k[:n_common] for k in kept]))


def convergence_issues(
    chains: Sequence[ChainResult],
    burnin: int,
    thin: int,
    waic: float,
    pointwise_variance_max: float,
    rhat_threshold: float = 1.1,
    pointwise_variance_threshold: float = 0.4,
) -> List[str]:
    """
    Reasons to distrust a set of chains; an empty list means none were found.
    """
    issues: List[str] = []
    if len(chains) >= 2:
        rhat = csmf_rhat(chains, burnin, thin)
        rhat_max = float(np.nanmax(rhat)) if np.any(np.isfinite(rhat)) else float("nan")
        if np.isfinite(rhat_max) and rhat_max > rhat_threshold:
            issues.append(f"max CSMF R-hat {rhat_max:.3f} exceeds {rhat_threshold}")
    if not np.isfinite(waic):
        issues.append("WAIC is not finite")
    if pointwise_variance_max > pointwise_variance_threshold:
        issues.append(
            f"pointwise log-likelihood variance {pointwise_variance_max:.3f} "
            f"exceeds {pointwise_variance_threshold}"
        )
    return issues
