"""
Shared fixtures for the calibration tests.
"""

import pytest
import numpy as np
import pandas as pd
from pathlib import Path

from calibrated_va.config import load_config
from calibrated_va.synthetic_data_generation import simulate_va_data, symmetric_misclassification

CONFIG_DIR = Path(__file__).parent.parent / "config"


@pytest.fixture(scope="session")
def test_config():
    """Load test configuration from test.yaml"""
    return load_config(CONFIG_DIR / "test.yaml")


@pytest.fixture
def causes():
    return ["A", "B", "C"]


@pytest.fixture
def simulated(causes):
    """Small simulated dataset from a 70%-accurate algorithm."""
    return simulate_va_data(
        causes,
        csmf=[0.5, 0.3, 0.2],
        misclassification=symmetric_misclassification(3, 0.7),
        n_unlabeled=60,
        n_labeled=45,
        seed=2024,
    )


@pytest.fixture
def all_predicted_a():
    """
    Every individual is predicted "A"; the calibration set shows that
    3 of 10 "A" predictions were really B and 2 were really C.
    """
    return {
        "va_unlabeled": pd.Series(["A"] * 100),
        "va_labeled": pd.Series(["A"] * 10),
        "gold_standard": pd.Series(["A"] * 5 + ["B"] * 3 + ["C"] * 2),
    }


def assert_simplex_rows(arr, tol=1e-9):
    arr = np.asarray(arr)
    assert np.all(arr >= 0)
    np.testing.assert_allclose(arr.sum(axis=-1), 1.0, atol=tol)
