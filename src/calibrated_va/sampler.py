"""
Gibbs sampler for calibrating VA predictions with a gold-standard set.

The chain alternates three full-conditional updates:

  1. latent true cause z_j of each unlabeled individual
       P(z_j = c) ∝ p[c] * sum_d M[c, d] * q_j[d]
  2. misclassification matrix M, row by row
       M[r, :] ~ Dirichlet(prior_r + counts_r)
     where counts_r sums the prediction rows of every individual whose
     (gold-standard or sampled) true cause is r
  3. CSMF p ~ Dirichlet(epsilon + n_z), optionally blended with the raw
     predicted CSMF under the pshrink strategy

Categorical predictions are one-hot rows q_j, so step 1 reduces to
p[c] * M[c, pred_j] for them.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, Tuple
import logging

import numpy as np
from scipy.special import gammaln, logsumexp

from .config import MShrinkPrior, PShrinkPrior, Prior
from .exceptions import InvalidInput, NumericDegeneracy, SamplingInterrupted
from .inputs import (
    CalibrationData,
    DEFAULT_RENORMALIZE_EPSILON,
    DEFAULT_SUM_TOLERANCE,
    check_prior_matches,
    prepare_calibration_data,
)

logger = logging.getLogger(__name__)

# Smallest positive double; floors probabilities before taking logs
TINY = np.finfo(float).tiny


@dataclass
class ChainResult:
    """
    One chain's posterior draws, stored as arrays indexed by iteration.

    Attributes:
        causes: Ordered cause labels
        prior: Prior the chain was run with
        epsilon: CSMF Dirichlet prior strength
        p: (S, C) CSMF draws
        M: (S, K, C, C) misclassification matrices, one per source
        z: (S, N_U) sampled true-cause indices of the unlabeled set
        log_lik: (S, N_U) pointwise log-likelihood of each unlabeled record
        gamma: (S, K, C) diagonal weights when learned, else None
        seed: Seed the chain's generator was built from (an int or a spawned
            SeedSequence); np.random.default_rng(seed) replays the chain
        chain_id: Position of the chain within a run
    """
    causes: Tuple[str, ...]
    prior: Prior
    epsilon: float
    p: np.ndarray
    M: np.ndarray
    z: np.ndarray
    log_lik: np.ndarray
    gamma: Optional[np.ndarray] = None
    seed: Any = None
    chain_id: int = 0

    @property
    def ndraws(self) -> int:
        return int(self.p.shape[0])

    @property
    def n_sources(self) -> int:
        return int(self.M.shape[1])

    @property
    def log_lik_total(self) -> np.ndarray:
        return self.log_lik.sum(axis=1)

    @property
    def shrinkage_value(self) -> float:
        return self.prior.shrinkage_value


# ============================================================================
# PRIMITIVES (shared with the ensemble sampler)
# ============================================================================

def draw_dirichlet(alpha: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """Draw from Dirichlet(alpha); a non-positive parameter is an accounting bug."""
    alpha = np.asarray(alpha, dtype=float)
    if not np.all(np.isfinite(alpha)) or np.any(alpha <= 0):
        raise NumericDegeneracy(f"Dirichlet parameters must be finite and > 0, got {alpha}")
    draw = rng.dirichlet(alpha)
    # Tiny concentrations can round every component to zero
    total = draw.sum()
    if not np.isfinite(total) or total <= 0:
        draw = np.zeros_like(alpha)
        draw[int(np.argmax(alpha))] = 1.0
        return draw
    return draw / total


def draw_dirichlet_rows(alpha: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """Draw each row of a matrix from its own Dirichlet."""
    return np.vstack([draw_dirichlet(row, rng) for row in alpha])


def initial_gamma(prior: Prior, n_causes: int) -> Optional[np.ndarray]:
    """Diagonal weights at the start of a chain (None under pshrink)."""
    if isinstance(prior, MShrinkPrior):
        if prior.tau is not None:
            return np.asarray(prior.tau, dtype=float)
        if prior.learns_gamma:
            return np.full(n_causes, prior.gamma_init, dtype=float)
        return np.full(n_causes, prior.alpha, dtype=float)
    if isinstance(prior, PShrinkPrior):
        return None
    raise TypeError(f"Unknown prior variant: {type(prior).__name__}")


def misclassification_prior(prior: Prior, n_causes: int, gamma: Optional[np.ndarray]) -> np.ndarray:
    """Pseudo-count matrix for the rows of M."""
    base = np.full((n_causes, n_causes), prior.delta, dtype=float)
    if isinstance(prior, MShrinkPrior):
        base[np.diag_indices(n_causes)] += gamma
    return base


def misclassification_counts(
    va_labeled: np.ndarray,
    gold_standard: np.ndarray,
    va_unlabeled: np.ndarray,
    z: np.ndarray,
    n_causes: int,
) -> np.ndarray:
    """(true, predicted) counts from labeled rows and the current unlabeled assignment."""
    counts = np.zeros((n_causes, n_causes), dtype=float)
    np.add.at(counts, gold_standard, va_labeled)
    if z.shape[0] > 0:
        np.add.at(counts, z, va_unlabeled)
    return counts


def log_source_likelihood(va: np.ndarray, M: np.ndarray) -> np.ndarray:
    """log P(prediction_j | true cause c, M) as an (N, C) matrix."""
    return np.log(np.maximum(va @ M.T, TINY))


def sample_true_causes(log_weights: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """Draw one category per row from unnormalized log weights."""
    n, c = log_weights.shape
    if n == 0:
        return np.zeros(0, dtype=np.int64)
    shifted = log_weights - log_weights.max(axis=1, keepdims=True)
    weights = np.exp(shifted)
    cum = np.cumsum(weights, axis=1)
    u = rng.random(n) * cum[:, -1]
    z = (cum < u[:, None]).sum(axis=1)
    return np.minimum(z, c - 1).astype(np.int64)


def update_gamma(
    gamma: np.ndarray,
    M: np.ndarray,
    prior: MShrinkPrior,
    rng: np.random.Generator,
) -> np.ndarray:
    """
    Random-walk Metropolis update of the diagonal weights on the log scale.

    Target for gamma_r: Gamma(alpha, beta) prior times the Dirichlet density
    of row M[r] with parameters delta + gamma_r * e_r.
    """
    n_causes = M.shape[0]
    log_diag = np.log(np.maximum(np.diag(M), TINY))

    def log_target(g):
        return (
            (prior.alpha - 1.0) * np.log(g) - prior.beta * g
            + gammaln(n_causes * prior.delta + g) - gammaln(prior.delta + g)
            + g * log_diag
        )

    proposal = gamma * np.exp(prior.gamma_step * rng.standard_normal(n_causes))
    log_ratio = log_target(proposal) - log_target(gamma) + np.log(proposal) - np.log(gamma)
    accept = np.log(rng.random(n_causes)) < log_ratio
    return np.where(accept, proposal, gamma)


def update_csmf(
    prior: Prior,
    cause_counts: np.ndarray,
    epsilon: float,
    anchor: np.ndarray,
    rng: np.random.Generator,
) -> np.ndarray:
    """Draw p given the current true-cause counts."""
    p_emp = draw_dirichlet(epsilon + cause_counts, rng)
    if isinstance(prior, MShrinkPrior):
        return p_emp
    if isinstance(prior, PShrinkPrior):
        weight = 1.0 - 1.0 / max(prior.lambda_, 1.0)
        p = weight * anchor + (1.0 - weight) * p_emp
        return p / p.sum()
    raise TypeError(f"Unknown prior variant: {type(prior).__name__}")


def pointwise_log_likelihood(p: np.ndarray, log_lik_by_cause: np.ndarray) -> np.ndarray:
    """log sum_c p[c] P(record_j | c), one value per unlabeled record."""
    if log_lik_by_cause.shape[0] == 0:
        return np.zeros(0, dtype=float)
    return logsumexp(np.log(np.maximum(p, TINY))[None, :] + log_lik_by_cause, axis=1)


def initial_csmf(anchor: np.ndarray) -> np.ndarray:
    n_causes = anchor.shape[0]
    p0 = 0.5 * anchor + 0.5 / n_causes
    return p0 / p0.sum()


def check_run_arguments(ndraws: int, epsilon: float) -> None:
    if not isinstance(ndraws, (int, np.integer)) or isinstance(ndraws, bool) or ndraws <= 0:
        raise InvalidInput(f"ndraws must be a positive integer, got {ndraws!r}")
    if not np.isfinite(epsilon) or epsilon <= 0:
        raise InvalidInput(f"epsilon must be > 0, got {epsilon!r}")


def make_rng(seed, rng: Optional[np.random.Generator]) -> np.random.Generator:
    if rng is not None:
        return rng
    return np.random.default_rng(seed)


# ============================================================================
# SINGLE-SOURCE SAMPLER
# ============================================================================

def run_gibbs_chain(
    data: CalibrationData,
    prior: Prior,
    epsilon: float,
    ndraws: int,
    rng: np.random.Generator,
    include_calibration_in_csmf: bool = False,
    should_stop: Optional[Callable[[], bool]] = None,
) -> dict:
    """
    Run the single-source Gibbs chain on prepared data.

    Returns:
        dict of draw arrays (p, M, z, log_lik, gamma)
    """
    if data.n_sources != 1:
        raise InvalidInput(f"single-source sampler got {data.n_sources} sources; use the ensemble sampler")

    n_causes = data.n_causes
    va_unl = data.va_unlabeled[0]
    va_lab = data.va_labeled[0]
    gs = data.gold_standard
    anchor = data.predicted_csmf()
    gs_counts = np.bincount(gs, minlength=n_causes).astype(float)
    learn_gamma = isinstance(prior, MShrinkPrior) and prior.learns_gamma

    gamma = initial_gamma(prior, n_causes)
    M = misclassification_prior(prior, n_causes, gamma)
    M = M / M.sum(axis=1, keepdims=True)
    p = initial_csmf(anchor)

    p_draws = np.empty((ndraws, n_causes))
    M_draws = np.empty((ndraws, 1, n_causes, n_causes))
    z_draws = np.empty((ndraws, data.n_unlabeled), dtype=np.int64)
    ll_draws = np.empty((ndraws, data.n_unlabeled))
    gamma_draws = np.empty((ndraws, 1, n_causes)) if learn_gamma else None

    for t in range(ndraws):
        if should_stop is not None and should_stop():
            raise SamplingInterrupted(f"sampling stopped before iteration {t} of {ndraws}")

        # 1. latent true causes
        log_lik_by_cause = log_source_likelihood(va_unl, M)
        z = sample_true_causes(np.log(np.maximum(p, TINY))[None, :] + log_lik_by_cause, rng)

        # 2. misclassification matrix
        counts = misclassification_counts(va_lab, gs, va_unl, z, n_causes)
        M = draw_dirichlet_rows(misclassification_prior(prior, n_causes, gamma) + counts, rng)
        if learn_gamma:
            gamma = update_gamma(gamma, M, prior, rng)

        # 3. CSMF
        cause_counts = np.bincount(z, minlength=n_causes).astype(float)
        if include_calibration_in_csmf:
            cause_counts = cause_counts + gs_counts
        p = update_csmf(prior, cause_counts, epsilon, anchor, rng)

        p_draws[t] = p
        M_draws[t, 0] = M
        z_draws[t] = z
        ll_draws[t] = pointwise_log_likelihood(p, log_source_likelihood(va_unl, M))
        if learn_gamma:
            gamma_draws[t, 0] = gamma

        if ndraws >= 10 and (t + 1) % (ndraws // 10) == 0:
            logger.debug(f"Gibbs iteration {t + 1}/{ndraws}")

    return {"p": p_draws, "M": M_draws, "z": z_draws, "log_lik": ll_draws, "gamma": gamma_draws}


def calibva_sampler(
    va_unlabeled,
    va_labeled,
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
    Calibrate one algorithm's predictions and return a single Gibbs chain.

    Args:
        va_unlabeled: Predictions for the target set (labels, matrix or DataFrame)
        va_labeled: Predictions for the calibration set
        gold_standard: True cause of each calibration individual
        causes: Ordered cause labels
        prior: MShrinkPrior or PShrinkPrior (default MShrinkPrior())
        epsilon: CSMF Dirichlet prior strength
        ndraws: Number of Gibbs iterations to store
        seed: Seed for a fresh generator (ignored when rng is given)
        rng: Generator owned by this chain
        include_calibration_in_csmf: Count gold-standard causes in the p update
        should_stop: Polled once per sweep; returning True aborts the chain

    Returns:
        ChainResult with ndraws draws

    Raises:
        InvalidInput: If any input is malformed (checked before sampling)
        SamplingInterrupted: If should_stop requested a stop
    """
    prior = prior if prior is not None else MShrinkPrior()
    check_run_arguments(ndraws, epsilon)
    data = prepare_calibration_data(
        [va_unlabeled], [va_labeled], gold_standard, causes,
        sum_tolerance=sum_tolerance, renormalize_epsilon=renormalize_epsilon,
    )
    check_prior_matches(prior, data.causes)
    return sample_prepared(
        data, prior, epsilon, ndraws, make_rng(seed, rng),
        include_calibration_in_csmf=include_calibration_in_csmf,
        should_stop=should_stop, seed=seed, chain_id=chain_id,
    )


def sample_prepared(
    data: CalibrationData,
    prior: Prior,
    epsilon: float,
    ndraws: int,
    rng: np.random.Generator,
    include_calibration_in_csmf: bool = False,
    should_stop: Optional[Callable[[], bool]] = None,
    seed: Any = None,
    chain_id: int = 0,
) -> ChainResult:
    """Run the sampler matching the number of sources in already-validated data."""
    logger.info(
        f"Chain {chain_id}: {prior.method} sampler, {data.n_sources} source(s), "
        f"{data.n_unlabeled} unlabeled, {data.n_labeled} labeled, {ndraws} draws"
    )
    if data.n_sources == 1:
        draws = run_gibbs_chain(
            data, prior, epsilon, ndraws, rng,
            include_calibration_in_csmf=include_calibration_in_csmf, should_stop=should_stop,
        )
    else:
        from .ensemble import run_ensemble_chain
        draws = run_ensemble_chain(
            data, prior, epsilon, ndraws, rng,
            include_calibration_in_csmf=include_calibration_in_csmf, should_stop=should_stop,
        )
    logger.info(f"Chain {chain_id}: finished {ndraws} draws")
    return ChainResult(
        causes=data.causes,
        prior=prior,
        epsilon=epsilon,
        seed=seed,
        chain_id=chain_id,
        **draws,
    )
