"""
Synthetic VA Prediction Generation

This module simulates calibration and target datasets from a known CSMF
and known algorithm misclassification matrices. It is used to check that
the sampler recovers the truth and to build small reproducible examples.
"""

from typing import Dict, List, Optional, Sequence, Union
import logging

import numpy as np
import pandas as pd

from .exceptions import InvalidInput
from .inputs import validate_causes

logger = logging.getLogger(__name__)


def _check_simplex(vec: np.ndarray, name: str, n_causes: int) -> np.ndarray:
    vec = np.asarray(vec, dtype=float)
    if vec.shape != (n_causes,):
        raise InvalidInput(f"{name} must have length {n_causes}, got shape {vec.shape}")
    if np.any(vec < 0) or abs(vec.sum() - 1.0) > 1e-6:
        raise InvalidInput(f"{name} must be a probability vector")
    return vec / vec.sum()


def _check_matrix(M: np.ndarray, n_causes: int, k: int) -> np.ndarray:
    M = np.asarray(M, dtype=float)
    if M.shape != (n_causes, n_causes):
        raise InvalidInput(f"misclassification[{k}] must be {n_causes}x{n_causes}, got {M.shape}")
    if np.any(M < 0) or np.any(np.abs(M.sum(axis=1) - 1.0) > 1e-6):
        raise InvalidInput(f"misclassification[{k}] rows must be probability vectors")
    return M / M.sum(axis=1, keepdims=True)


def misclassify(true_idx: np.ndarray, M: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """Draw a predicted cause for every true cause index from the rows of M."""
    cum = np.cumsum(M[true_idx], axis=1)
    u = rng.random(true_idx.shape[0])[:, None]
    return np.minimum((cum < u).sum(axis=1), M.shape[0] - 1)


def simulate_va_data(
    causes: Sequence[str],
    csmf: Sequence[float],
    misclassification: Union[np.ndarray, List[np.ndarray]],
    n_unlabeled: int,
    n_labeled: int,
    calibration_csmf: Optional[Sequence[float]] = None,
    seed: Optional[int] = None,
) -> Dict[str, object]:
    """
    Simulate categorical predictions for a target and a calibration set.

    Args:
        causes: Ordered cause labels
        csmf: True CSMF of the target population
        misclassification: One (C, C) matrix, or a list of them for an ensemble
        n_unlabeled: Size of the target set
        n_labeled: Size of the calibration set
        calibration_csmf: Cause distribution of the calibration set
            (uniform if not given)
        seed: Seed for the generator

    Returns:
        dict with va_unlabeled and va_labeled (a Series, or a list of Series
        when several matrices are given), gold_standard and true_unlabeled
    """
    causes = validate_causes(causes)
    n_causes = len(causes)
    csmf = _check_simplex(csmf, "csmf", n_causes)
    if calibration_csmf is None:
        calibration_csmf = np.full(n_causes, 1.0 / n_causes)
    calibration_csmf = _check_simplex(calibration_csmf, "calibration_csmf", n_causes)

    ensemble = isinstance(misclassification, (list, tuple))
    matrices = [_check_matrix(M, n_causes, k) for k, M in enumerate(misclassification if ensemble else [misclassification])]

    rng = np.random.default_rng(seed)
    labels = np.asarray(causes, dtype=object)

    true_unl = rng.choice(n_causes, size=n_unlabeled, p=csmf)
    true_lab = rng.choice(n_causes, size=n_labeled, p=calibration_csmf)

    va_unlabeled = []
    va_labeled = []
    for M in matrices:
        va_unlabeled.append(pd.Series(labels[misclassify(true_unl, M, rng)], name="cause"))
        va_labeled.append(pd.Series(labels[misclassify(true_lab, M, rng)], name="cause"))

    logger.info(
        f"Simulated {n_unlabeled} target and {n_labeled} calibration deaths "
        f"for {len(matrices)} algorithm(s) over {n_causes} causes"
    )

    return {
        "va_unlabeled": va_unlabeled if ensemble else va_unlabeled[0],
        "va_labeled": va_labeled if ensemble else va_labeled[0],
        "gold_standard": pd.Series(labels[true_lab], name="cause"),
        "true_unlabeled": pd.Series(labels[true_unl], name="cause"),
    }


def symmetric_misclassification(n_causes: int, accuracy: float) -> np.ndarray:
    """Matrix with `accuracy` on the diagonal and the rest spread evenly."""
    if not 0 <= accuracy <= 1:
        raise InvalidInput(f"accuracy must be in [0, 1], got {accuracy}")
    off = (1.0 - accuracy) / (n_causes - 1)
    M = np.full((n_causes, n_causes), off)
    np.fill_diagonal(M, accuracy)
    return M
