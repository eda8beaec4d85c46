"""
Validation and conversion of VA inputs.

Cause sets, prediction records and gold-standard labels arrive from the
CCVA algorithms as labels, probability matrices or DataFrames. Everything
is validated once here and converted to read-only float arrays so that
chains can share the inputs without copying or mutating them.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple
import logging

import numpy as np
import pandas as pd

from .exceptions import InvalidInput

logger = logging.getLogger(__name__)

DEFAULT_SUM_TOLERANCE = 1e-3
DEFAULT_RENORMALIZE_EPSILON = 1e-8


@dataclass(frozen=True)
class CalibrationData:
    """
    Prepared sampler inputs.

    Attributes:
        causes: Ordered cause labels (index i <-> parameter i)
        va_unlabeled: array (K, N_U, C) of prediction rows for the target set
        va_labeled: array (K, N_L, C) of prediction rows for the calibration set
        gold_standard: int array (N_L,) of true-cause indices
    """
    causes: Tuple[str, ...]
    va_unlabeled: np.ndarray
    va_labeled: np.ndarray
    gold_standard: np.ndarray

    @property
    def n_causes(self) -> int:
        return len(self.causes)

    @property
    def n_sources(self) -> int:
        return int(self.va_unlabeled.shape[0])

    @property
    def n_unlabeled(self) -> int:
        return int(self.va_unlabeled.shape[1])

    @property
    def n_labeled(self) -> int:
        return int(self.va_labeled.shape[1])

    def predicted_csmf(self) -> np.ndarray:
        """Raw (uncalibrated) CSMF of the target set, averaged over sources."""
        if self.n_unlabeled == 0:
            return np.full(self.n_causes, 1.0 / self.n_causes)
        return self.va_unlabeled.mean(axis=(0, 1))


def validate_causes(causes: Sequence[str]) -> Tuple[str, ...]:
    """Check that the cause set is an ordered, unique sequence of at least two labels."""
    if causes is None or isinstance(causes, str):
        raise InvalidInput("causes must be a sequence of cause labels")
    causes = tuple(str(c) for c in causes)
    if len(causes) == 0:
        raise InvalidInput("causes is empty")
    if len(causes) < 2:
        raise InvalidInput(f"causes must contain at least 2 labels, got {len(causes)}")
    seen = set()
    for c in causes:
        if c in seen:
            raise InvalidInput(f"causes contains duplicate label '{c}'")
        seen.add(c)
    return causes


def _labels_to_indices(labels: Sequence, causes: Tuple[str, ...], name: str) -> np.ndarray:
    index = {c: i for i, c in enumerate(causes)}
    out = np.empty(len(labels), dtype=np.int64)
    for row, label in enumerate(labels):
        if pd.isna(label) or str(label) not in index:
            raise InvalidInput(f"{name}: row {row} has cause '{label}' which is not in the cause set")
        out[row] = index[str(label)]
    return out


def _is_label_vector(predictions) -> bool:
    if isinstance(predictions, pd.Series):
        return True
    if isinstance(predictions, pd.DataFrame):
        return False
    arr = np.asarray(predictions, dtype=object)
    return arr.ndim == 1


def prepare_predictions(
    predictions,
    causes: Tuple[str, ...],
    name: str,
    sum_tolerance: float = DEFAULT_SUM_TOLERANCE,
    renormalize_epsilon: float = DEFAULT_RENORMALIZE_EPSILON,
) -> np.ndarray:
    """
    Convert one algorithm's predictions to an (N, C) probability matrix.

    Categorical predictions become one-hot rows. Probability rows whose sum
    is off by more than ``renormalize_epsilon`` are renormalized; rows off by
    more than ``sum_tolerance`` are rejected.

    Args:
        predictions: labels (sequence or Series), 2-D array in cause order,
            or DataFrame whose columns are the cause labels
        causes: Validated cause set
        name: Argument name used in error messages

    Returns:
        float array of shape (N, C)
    """
    n_causes = len(causes)

    if predictions is None:
        raise InvalidInput(f"{name} is missing")

    if _is_label_vector(predictions):
        labels = list(predictions)
        idx = _labels_to_indices(labels, causes, name)
        onehot = np.zeros((len(idx), n_causes), dtype=float)
        onehot[np.arange(len(idx)), idx] = 1.0
        return onehot

    if isinstance(predictions, pd.DataFrame):
        missing = [c for c in causes if c not in predictions.columns]
        if missing:
            raise InvalidInput(f"{name}: columns missing for causes {missing}")
        extra = [c for c in predictions.columns if c not in causes]
        if extra:
            raise InvalidInput(f"{name}: columns {extra} are not in the cause set")
        matrix = predictions[list(causes)].to_numpy(dtype=float)
    else:
        try:
            matrix = np.asarray(predictions, dtype=float)
        except (TypeError, ValueError) as e:
            raise InvalidInput(f"{name}: could not convert predictions to a numeric matrix: {e}") from e

    if matrix.ndim != 2 or matrix.shape[1] != n_causes:
        raise InvalidInput(f"{name}: expected a matrix with {n_causes} columns, got shape {matrix.shape}")

    matrix = matrix.copy()
    bad_entries = ~np.isfinite(matrix) | (matrix < 0)
    if bad_entries.any():
        row = int(np.argwhere(bad_entries)[0, 0])
        raise InvalidInput(f"{name}: row {row} has negative or non-finite probabilities")

    sums = matrix.sum(axis=1)
    deviation = np.abs(sums - 1.0)
    too_far = deviation > sum_tolerance
    if too_far.any():
        row = int(np.flatnonzero(too_far)[0])
        raise InvalidInput(
            f"{name}: row {row} sums to {sums[row]:.6g}, outside tolerance {sum_tolerance} of 1"
        )
    renorm = deviation > renormalize_epsilon
    if renorm.any():
        logger.debug(f"{name}: renormalizing {int(renorm.sum())} probability rows")
        matrix[renorm] = matrix[renorm] / sums[renorm, None]
    return matrix


def prepare_gold_standard(gold_standard, causes: Tuple[str, ...]) -> np.ndarray:
    """Map gold-standard labels to cause indices."""
    if gold_standard is None:
        raise InvalidInput("gold_standard is missing")
    if isinstance(gold_standard, pd.DataFrame):
        if gold_standard.shape[1] != 1:
            raise InvalidInput("gold_standard DataFrame must have exactly one column")
        gold_standard = gold_standard.iloc[:, 0]
    return _labels_to_indices(list(gold_standard), causes, "gold_standard")


def _freeze(arr: np.ndarray) -> np.ndarray:
    arr = np.ascontiguousarray(arr)
    arr.setflags(write=False)
    return arr


def prepare_calibration_data(
    va_unlabeled_list: List,
    va_labeled_list: List,
    gold_standard,
    causes: Sequence[str],
    sum_tolerance: float = DEFAULT_SUM_TOLERANCE,
    renormalize_epsilon: float = DEFAULT_RENORMALIZE_EPSILON,
) -> CalibrationData:
    """
    Validate and stack inputs for K prediction sources.

    Args:
        va_unlabeled_list: one prediction record per source for the target set
        va_labeled_list: one prediction record per source for the calibration set
        gold_standard: true cause per calibration individual
        causes: ordered cause labels

    Returns:
        Read-only CalibrationData

    Raises:
        InvalidInput: on any malformed argument, before sampling starts
    """
    causes = validate_causes(causes)

    if len(va_unlabeled_list) == 0:
        raise InvalidInput("at least one prediction source is required")
    if len(va_unlabeled_list) != len(va_labeled_list):
        raise InvalidInput(
            f"va_unlabeled has {len(va_unlabeled_list)} sources but va_labeled has {len(va_labeled_list)}"
        )

    unlabeled: List[np.ndarray] = []
    labeled: List[np.ndarray] = []
    for k, (unl, lab) in enumerate(zip(va_unlabeled_list, va_labeled_list)):
        suffix = f"[{k}]" if len(va_unlabeled_list) > 1 else ""
        unlabeled.append(prepare_predictions(unl, causes, f"va_unlabeled{suffix}", sum_tolerance, renormalize_epsilon))
        labeled.append(prepare_predictions(lab, causes, f"va_labeled{suffix}", sum_tolerance, renormalize_epsilon))

    n_unl = {u.shape[0] for u in unlabeled}
    if len(n_unl) != 1:
        raise InvalidInput(f"va_unlabeled sources have mismatched row counts: {[u.shape[0] for u in unlabeled]}")
    n_lab = {l.shape[0] for l in labeled}
    if len(n_lab) != 1:
        raise InvalidInput(f"va_labeled sources have mismatched row counts: {[l.shape[0] for l in labeled]}")

    gs = prepare_gold_standard(gold_standard, causes)
    n_labeled = labeled[0].shape[0]
    if n_labeled == 0:
        raise InvalidInput("calibration set has zero individuals")
    if gs.shape[0] != n_labeled:
        raise InvalidInput(f"gold_standard has {gs.shape[0]} labels but va_labeled has {n_labeled} rows")

    data = CalibrationData(
        causes=causes,
        va_unlabeled=_freeze(np.stack(unlabeled)),
        va_labeled=_freeze(np.stack(labeled)),
        gold_standard=_freeze(gs),
    )
    logger.debug(
        f"Prepared calibration data: {data.n_sources} source(s), {data.n_causes} causes, "
        f"{data.n_unlabeled} unlabeled, {data.n_labeled} labeled"
    )
    return data


def check_prior_matches(prior, causes: Tuple[str, ...]) -> None:
    """Reject a per-cause prior vector whose length does not match the cause set."""
    tau: Optional[List[float]] = getattr(prior, "tau", None)
    if tau is not None and len(tau) != len(causes):
        raise InvalidInput(f"tau has {len(tau)} weights but there are {len(causes)} causes")
