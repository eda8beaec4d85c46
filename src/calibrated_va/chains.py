"""
Chain driver: independent chains, burn-in/thinning and pooling.

Chains share only read-only inputs. Each chain gets its own generator,
spawned deterministically from a top-level seed, so a chain's draws depend
only on its seed and never on how many workers ran or in which order the
chains finished.
"""

from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, Sequence
import logging

import numpy as np
import pandas as pd

from .config import MShrinkPrior, Prior, SamplerConfig
from .exceptions import InvalidInput
from .inputs import (
    CalibrationData,
    DEFAULT_RENORMALIZE_EPSILON,
    DEFAULT_SUM_TOLERANCE,
    check_prior_matches,
    prepare_calibration_data,
)
from .sampler import ChainResult, check_run_arguments, sample_prepared

logger = logging.getLogger(__name__)


def chain_seeds(nchains: int, seed: Optional[int] = None, seeds: Optional[Sequence[int]] = None) -> List:
    """
    Seeds for each chain.

    Args:
        nchains: Number of chains
        seed: Top-level seed; child sequences are spawned from it
        seeds: Explicit per-chain seeds (takes precedence over seed)

    Returns:
        List of objects accepted by np.random.default_rng
    """
    if seeds is not None:
        if len(seeds) != nchains:
            raise InvalidInput(f"got {len(seeds)} seeds for {nchains} chains")
        return list(seeds)
    root = np.random.SeedSequence(seed)
    if seed is None:
        logger.info(f"No seed given; chains spawned from entropy {root.entropy}")
    return root.spawn(nchains)


def _run_single_chain(args):
    """Run one chain; module-level so it can be shipped to a worker process."""
    data, prior, epsilon, ndraws, chain_seed, include_calibration_in_csmf, should_stop, chain_id = args
    rng = np.random.default_rng(chain_seed)
    return sample_prepared(
        data, prior, epsilon, ndraws, rng,
        include_calibration_in_csmf=include_calibration_in_csmf,
        should_stop=should_stop,
        seed=chain_seed,
        chain_id=chain_id,
    )


def run_prepared_chains(
    data: CalibrationData,
    prior: Prior,
    nchains: int,
    epsilon: float,
    ndraws: int,
    seed: Optional[int] = None,
    seeds: Optional[Sequence[int]] = None,
    n_workers: int = 1,
    executor: str = "process",
    include_calibration_in_csmf: bool = False,
    should_stop: Optional[Callable[[], bool]] = None,
) -> List[ChainResult]:
    """Run nchains independent chains on validated data; results are in chain order."""
    if not isinstance(nchains, (int, np.integer)) or nchains <= 0:
        raise InvalidInput(f"nchains must be a positive integer, got {nchains!r}")
    if n_workers < 1:
        raise InvalidInput(f"n_workers must be >= 1, got {n_workers}")
    check_run_arguments(ndraws, epsilon)

    child_seeds = chain_seeds(nchains, seed, seeds)
    task_args = [
        (data, prior, epsilon, ndraws, child_seeds[i], include_calibration_in_csmf, should_stop, i)
        for i in range(nchains)
    ]

    if n_workers == 1 or nchains == 1:
        return [_run_single_chain(args) for args in task_args]

    use_threads = executor == "thread"
    if should_stop is not None and not use_threads:
        logger.info("Stop callback given; running chains in threads instead of processes")
        use_threads = True

    pool_cls = ThreadPoolExecutor if use_threads else ProcessPoolExecutor
    max_workers = min(n_workers, nchains)
    logger.info(f"Running {nchains} chains on {max_workers} {'thread' if use_threads else 'process'} workers")
    with pool_cls(max_workers=max_workers) as pool:
        results = list(pool.map(_run_single_chain, task_args))
    return results


def run_chains(
    nchains: int,
    va_unlabeled,
    va_labeled,
    gold_standard,
    causes: Sequence[str],
    prior: Optional[Prior] = None,
    epsilon: float = 0.001,
    ndraws: int = 10000,
    seed: Optional[int] = None,
    seeds: Optional[Sequence[int]] = None,
    n_workers: int = 1,
    executor: str = "process",
    include_calibration_in_csmf: bool = False,
    should_stop: Optional[Callable[[], bool]] = None,
    ensemble: bool = False,
    sum_tolerance: float = DEFAULT_SUM_TOLERANCE,
    renormalize_epsilon: float = DEFAULT_RENORMALIZE_EPSILON,
) -> List[ChainResult]:
    """
    Run independent calibration chains.

    Args:
        nchains: Number of chains
        va_unlabeled: Target-set predictions (a list of them when ensemble=True)
        va_labeled: Calibration-set predictions (a list of them when ensemble=True)
        gold_standard: True cause of each calibration individual
        causes: Ordered cause labels
        prior: MShrinkPrior or PShrinkPrior
        seed: Top-level seed; per-chain generators are spawned from it
        seeds: Explicit per-chain seeds
        n_workers: Chains run concurrently when > 1
        executor: "process" or "thread" worker pool
        ensemble: Treat va_unlabeled/va_labeled as lists of algorithms

    Returns:
        One ChainResult per chain, in chain order
    """
    prior = prior if prior is not None else MShrinkPrior()
    if ensemble:
        if not isinstance(va_unlabeled, (list, tuple)) or not isinstance(va_labeled, (list, tuple)):
            raise InvalidInput("ensemble runs need lists of prediction records, one per algorithm")
        unl_list, lab_list = list(va_unlabeled), list(va_labeled)
    else:
        unl_list, lab_list = [va_unlabeled], [va_labeled]

    data = prepare_calibration_data(
        unl_list, lab_list, gold_standard, causes,
        sum_tolerance=sum_tolerance, renormalize_epsilon=renormalize_epsilon,
    )
    check_prior_matches(prior, data.causes)
    return run_prepared_chains(
        data, prior, nchains, epsilon, ndraws,
        seed=seed, seeds=seeds, n_workers=n_workers, executor=executor,
        include_calibration_in_csmf=include_calibration_in_csmf, should_stop=should_stop,
    )


def run_chains_from_config(
    data: CalibrationData,
    prior: Prior,
    sampler_config: SamplerConfig,
    should_stop: Optional[Callable[[], bool]] = None,
) -> List[ChainResult]:
    """Run chains with settings taken from a SamplerConfig."""
    check_prior_matches(prior, data.causes)
    return run_prepared_chains(
        data, prior,
        nchains=sampler_config.nchains,
        epsilon=sampler_config.epsilon,
        ndraws=sampler_config.ndraws,
        seed=sampler_config.seed,
        n_workers=sampler_config.n_workers,
        executor=sampler_config.executor,
        include_calibration_in_csmf=sampler_config.include_calibration_in_csmf,
        should_stop=should_stop,
    )


def kept_indices(ndraws: int, burnin: int, thin: int) -> np.ndarray:
    """Iteration positions burnin, burnin + thin, ... below ndraws."""
    if isinstance(burnin, bool) or not isinstance(burnin, (int, np.integer)) or burnin < 0:
        raise InvalidInput(f"burnin must be a non-negative integer, got {burnin!r}")
    if isinstance(thin, bool) or not isinstance(thin, (int, np.integer)) or thin < 1:
        raise InvalidInput(f"thin must be an integer >= 1, got {thin!r}")
    if burnin >= ndraws:
        raise InvalidInput(f"burnin ({burnin}) must be smaller than ndraws ({ndraws})")
    return np.arange(burnin, ndraws, thin)


def extract_csmf(chain: ChainResult, burnin: int = 0, thin: int = 1) -> pd.DataFrame:
    """
    Post-burn-in, thinned CSMF draws of one chain.

    Args:
        chain: ChainResult
        burnin: Number of leading draws to drop
        thin: Keep every thin-th remaining draw

    Returns:
        DataFrame indexed by iteration with one column per cause; the chain
        itself is not modified
    """
    idx = kept_indices(chain.ndraws, burnin, thin)
    df = pd.DataFrame(chain.p[idx], columns=list(chain.causes), index=idx)
    df.index.name = "iteration"
    return df


def pool_chains(chains: Sequence[ChainResult], burnin: int = 0, thin: int = 1) -> Dict[str, np.ndarray]:
    """
    Stack the kept draws of several chains.

    Returns:
        dict with p (S, C), M (S, K, C, C), z (S, N_U) and log_lik (S, N_U)
    """
    if isinstance(chains, ChainResult):
        chains = [chains]
    if len(chains) == 0:
        raise InvalidInput("no chains to pool")
    causes = chains[0].causes
    for chain in chains[1:]:
        if chain.causes != causes:
            raise InvalidInput("chains were run with different cause sets")

    pooled = {"p": [], "M": [], "z": [], "log_lik": []}
    for chain in chains:
        idx = kept_indices(chain.ndraws, burnin, thin)
        pooled["p"].append(chain.p[idx])
        pooled["M"].append(chain.M[idx])
        pooled["z"].append(chain.z[idx])
        pooled["log_lik"].append(chain.log_lik[idx])
    return {key: np.concatenate(value, axis=0) for key, value in pooled.items()}
