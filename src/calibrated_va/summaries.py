"""
Posterior summaries of calibration chains.
"""

from typing import Sequence, Union
import logging

import numpy as np
import pandas as pd

from .chains import pool_chains
from .exceptions import InvalidInput
from .sampler import ChainResult
from .schemas import CsmfSummarySchema

logger = logging.getLogger(__name__)

Chains = Union[ChainResult, Sequence[ChainResult]]


def summarize_csmf(chains: Chains, burnin: int = 0, thin: int = 1, interval: float = 0.95) -> pd.DataFrame:
    """
    Per-cause posterior mean and equal-tailed credible interval of the CSMF.

    Args:
        chains: One ChainResult or several (draws are pooled)
        burnin: Draws dropped from the start of every chain
        thin: Keep every thin-th draw after burn-in
        interval: Credible mass, 0.95 gives the 2.5% and 97.5% quantiles

    Returns:
        DataFrame with columns cause, mean, lower, upper
    """
    if not 0 < interval < 1:
        raise InvalidInput(f"interval must be in (0, 1), got {interval}")
    pooled = pool_chains(chains, burnin=burnin, thin=thin)
    p = pooled["p"]
    causes = chains.causes if isinstance(chains, ChainResult) else chains[0].causes
    tail = (1.0 - interval) / 2.0

    summary = pd.DataFrame({
        "cause": list(causes),
        "mean": p.mean(axis=0),
        "lower": np.quantile(p, tail, axis=0),
        "upper": np.quantile(p, 1.0 - tail, axis=0),
    })
    return CsmfSummarySchema.validate(summary)


def misclassification_summary(chains: Chains, burnin: int = 0, thin: int = 1, source: int = 0) -> pd.DataFrame:
    """
    Posterior mean misclassification matrix of one prediction source.

    Returns:
        DataFrame indexed by true cause with one column per predicted cause
    """
    pooled = pool_chains(chains, burnin=burnin, thin=thin)
    M = pooled["M"]
    if not 0 <= source < M.shape[1]:
        raise InvalidInput(f"source must be in [0, {M.shape[1] - 1}], got {source}")
    causes = list(chains.causes if isinstance(chains, ChainResult) else chains[0].causes)
    df = pd.DataFrame(M[:, source].mean(axis=0), index=causes, columns=causes)
    df.index.name = "true_cause"
    df.columns.name = "predicted_cause"
    return df


def individual_cause_probabilities(chains: Chains, burnin: int = 0, thin: int = 1) -> pd.DataFrame:
    """
    Posterior probability of each true cause for every unlabeled individual.

    Computed as the frequency of each sampled z value across kept draws.
    """
    pooled = pool_chains(chains, burnin=burnin, thin=thin)
    z = pooled["z"]
    causes = list(chains.causes if isinstance(chains, ChainResult) else chains[0].causes)
    n_draws, n_unlabeled = z.shape
    freq = np.zeros((n_unlabeled, len(causes)))
    for c in range(len(causes)):
        freq[:, c] = (z == c).sum(axis=0)
    return pd.DataFrame(freq / max(n_draws, 1), columns=causes)
