"""
Tests for the single-source Gibbs sampler.
"""

import pytest
import numpy as np
import pandas as pd

from calibrated_va.config import MShrinkPrior, PShrinkPrior
from calibrated_va.exceptions import InvalidInput, NumericDegeneracy, SamplingInterrupted
from calibrated_va.sampler import (
    ChainResult,
    calibva_sampler,
    draw_dirichlet,
    misclassification_counts,
    misclassification_prior,
    sample_true_causes,
    update_csmf,
)

from conftest import assert_simplex_rows


def posterior_mean_csmf(result, burnin):
    return result.p[burnin:].mean(axis=0)


class TestSamplerOutput:
    """Test shapes and invariants of a chain."""

    def test_shapes(self, simulated, causes):
        result = calibva_sampler(
            simulated["va_unlabeled"], simulated["va_labeled"], simulated["gold_standard"],
            causes, ndraws=40, seed=1,
        )

        assert isinstance(result, ChainResult)
        assert result.ndraws == 40
        assert result.n_sources == 1
        assert result.causes == ("A", "B", "C")
        assert result.p.shape == (40, 3)
        assert result.M.shape == (40, 1, 3, 3)
        assert result.z.shape == (40, 60)
        assert result.log_lik.shape == (40, 60)
        assert result.gamma is None
        assert result.seed == 1

    @pytest.mark.parametrize("prior", [
        MShrinkPrior(),
        MShrinkPrior(alpha=0.001),
        MShrinkPrior(beta=1.0),
        MShrinkPrior(tau=[1.0, 10.0, 100.0]),
        PShrinkPrior(),
        PShrinkPrior(lambda_=50.0),
    ])
    def test_simplex_invariants(self, simulated, causes, prior):
        result = calibva_sampler(
            simulated["va_unlabeled"], simulated["va_labeled"], simulated["gold_standard"],
            causes, prior=prior, ndraws=30, seed=5,
        )

        assert_simplex_rows(result.p)
        assert_simplex_rows(result.M)
        assert result.z.min() >= 0
        assert result.z.max() < len(causes)
        assert np.all(np.isfinite(result.log_lik))
        assert np.all(result.log_lik <= 1e-12)

    def test_learned_diagonal_weights(self, simulated, causes):
        result = calibva_sampler(
            simulated["va_unlabeled"], simulated["va_labeled"], simulated["gold_standard"],
            causes, prior=MShrinkPrior(alpha=2.0, beta=0.5), ndraws=30, seed=5,
        )
        assert result.gamma.shape == (30, 1, 3)
        assert np.all(result.gamma > 0)

    def test_probability_inputs(self, causes):
        rng = np.random.default_rng(0)
        va_unlabeled = pd.DataFrame(rng.dirichlet(np.ones(3), size=20), columns=causes)
        va_labeled = pd.DataFrame(rng.dirichlet(np.ones(3), size=15), columns=causes)
        gold = pd.Series(rng.choice(causes, size=15))

        result = calibva_sampler(va_unlabeled, va_labeled, gold, causes, ndraws=20, seed=3)
        assert_simplex_rows(result.p)
        assert_simplex_rows(result.M)

    def test_single_individual_per_cause(self, causes):
        result = calibva_sampler(causes, causes, causes, causes, ndraws=25, seed=9)
        assert_simplex_rows(result.p)
        assert_simplex_rows(result.M)
        assert result.z.shape == (25, 3)

    def test_empty_unlabeled_set(self, causes):
        result = calibva_sampler([], ["A", "B"], ["A", "B"], causes, ndraws=10, seed=9)
        assert result.z.shape == (10, 0)
        assert_simplex_rows(result.p)

    def test_include_calibration_in_csmf(self, simulated, causes):
        result = calibva_sampler(
            simulated["va_unlabeled"], simulated["va_labeled"], simulated["gold_standard"],
            causes, ndraws=20, seed=1, include_calibration_in_csmf=True,
        )
        assert_simplex_rows(result.p)


class TestDeterminism:
    """Test that a chain is reproducible from its seed."""

    def test_same_seed_same_draws(self, simulated, causes):
        args = (simulated["va_unlabeled"], simulated["va_labeled"], simulated["gold_standard"], causes)
        first = calibva_sampler(*args, ndraws=30, seed=42)
        second = calibva_sampler(*args, ndraws=30, seed=42)

        np.testing.assert_array_equal(first.p, second.p)
        np.testing.assert_array_equal(first.M, second.M)
        np.testing.assert_array_equal(first.z, second.z)
        np.testing.assert_array_equal(first.log_lik, second.log_lik)

    def test_rng_argument_matches_seed(self, simulated, causes):
        args = (simulated["va_unlabeled"], simulated["va_labeled"], simulated["gold_standard"], causes)
        from_seed = calibva_sampler(*args, ndraws=20, seed=42)
        from_rng = calibva_sampler(*args, ndraws=20, rng=np.random.default_rng(42))
        np.testing.assert_array_equal(from_seed.p, from_rng.p)

    def test_different_seed_different_draws(self, simulated, causes):
        args = (simulated["va_unlabeled"], simulated["va_labeled"], simulated["gold_standard"], causes)
        first = calibva_sampler(*args, ndraws=20, seed=1)
        second = calibva_sampler(*args, ndraws=20, seed=2)
        assert not np.array_equal(first.p, second.p)


class TestShrinkage:
    """Test that stronger shrinkage pulls the CSMF toward the raw predictions."""

    def test_mshrink_alpha_reduces_shift_from_raw_prediction(self, all_predicted_a, causes):
        # calibration deaths count toward p so the CSMF stays identified
        p_a = {}
        for alpha in [0.001, 5.0, 500.0]:
            result = calibva_sampler(
                all_predicted_a["va_unlabeled"], all_predicted_a["va_labeled"],
                all_predicted_a["gold_standard"], causes,
                prior=MShrinkPrior(alpha=alpha), ndraws=3000, seed=17,
                include_calibration_in_csmf=True,
            )
            p_a[alpha] = posterior_mean_csmf(result, burnin=500)[0]

        # B/C misclassification share pulls mass away from "A"
        assert p_a[0.001] < 0.95
        assert p_a[0.001] < p_a[5.0] < p_a[500.0]

    @pytest.mark.parametrize("alpha", [0.001, 5.0, 500.0])
    def test_single_prediction_stays_put_without_calibration_counts(self, all_predicted_a, causes, alpha):
        result = calibva_sampler(
            all_predicted_a["va_unlabeled"], all_predicted_a["va_labeled"],
            all_predicted_a["gold_standard"], causes,
            prior=MShrinkPrior(alpha=alpha), ndraws=1000, seed=3,
        )
        assert posterior_mean_csmf(result, burnin=200)[0] > 0.99

    def test_pshrink_lambda_moves_toward_raw_prediction(self, all_predicted_a, causes):
        anchor = np.array([1.0, 0.0, 0.0])
        distance = {}
        for lam in [1.0, 10.0, 100.0]:
            result = calibva_sampler(
                all_predicted_a["va_unlabeled"], all_predicted_a["va_labeled"],
                all_predicted_a["gold_standard"], causes,
                prior=PShrinkPrior(lambda_=lam), ndraws=1500, seed=17,
                include_calibration_in_csmf=True,
            )
            distance[lam] = np.abs(posterior_mean_csmf(result, burnin=300) - anchor).sum()

        assert distance[1.0] > distance[10.0] > distance[100.0]
        assert distance[100.0] < 0.02

    def test_pshrink_lambda_below_one_is_no_shrinkage(self, simulated, causes):
        args = (simulated["va_unlabeled"], simulated["va_labeled"], simulated["gold_standard"], causes)
        low = calibva_sampler(*args, prior=PShrinkPrior(lambda_=0.1), ndraws=20, seed=4)
        one = calibva_sampler(*args, prior=PShrinkPrior(lambda_=1.0), ndraws=20, seed=4)
        np.testing.assert_array_equal(low.p, one.p)


class TestPrimitives:
    """Test the building blocks of a Gibbs sweep."""

    def test_draw_dirichlet_rejects_non_positive(self):
        rng = np.random.default_rng(0)
        with pytest.raises(NumericDegeneracy):
            draw_dirichlet(np.array([1.0, 0.0, 2.0]), rng)
        with pytest.raises(NumericDegeneracy):
            draw_dirichlet(np.array([1.0, -1.0]), rng)
        with pytest.raises(NumericDegeneracy):
            draw_dirichlet(np.array([1.0, np.nan]), rng)

    def test_draw_dirichlet_tiny_concentration(self):
        rng = np.random.default_rng(0)
        for _ in range(50):
            draw = draw_dirichlet(np.array([1e-3, 1e-3, 1e-3]), rng)
            assert abs(draw.sum() - 1.0) < 1e-9

    def test_misclassification_prior(self):
        gamma = np.array([2.0, 3.0])
        base = misclassification_prior(MShrinkPrior(delta=0.5), 2, gamma)
        np.testing.assert_allclose(base, [[2.5, 0.5], [0.5, 3.5]])

        flat = misclassification_prior(PShrinkPrior(delta=0.5), 2, None)
        np.testing.assert_allclose(flat, np.full((2, 2), 0.5))

    def test_misclassification_counts(self):
        va_labeled = np.array([[1.0, 0.0], [1.0, 0.0], [0.0, 1.0]])
        gold = np.array([0, 1, 1])
        va_unlabeled = np.array([[0.25, 0.75]])
        z = np.array([0])

        counts = misclassification_counts(va_labeled, gold, va_unlabeled, z, 2)
        np.testing.assert_allclose(counts, [[1.25, 0.75], [1.0, 1.0]])

    def test_sample_true_causes_follows_weights(self):
        rng = np.random.default_rng(0)
        log_weights = np.log(np.array([[1.0, 1e-300, 1e-300]] * 5 + [[1e-300, 1e-300, 1.0]] * 5))
        z = sample_true_causes(log_weights, rng)
        assert z.tolist() == [0] * 5 + [2] * 5

    def test_update_csmf_pshrink_blend(self):
        rng = np.random.default_rng(0)
        anchor = np.array([0.2, 0.3, 0.5])
        p = update_csmf(PShrinkPrior(lambda_=1e9), np.array([10.0, 0.0, 0.0]), 0.001, anchor, rng)
        np.testing.assert_allclose(p, anchor, atol=1e-8)
        assert abs(p.sum() - 1.0) < 1e-12


class TestErrors:
    """Test error handling before and during sampling."""

    def test_should_stop_interrupts(self, simulated, causes):
        calls = {"n": 0}

        def should_stop():
            calls["n"] += 1
            return calls["n"] > 3

        with pytest.raises(SamplingInterrupted):
            calibva_sampler(
                simulated["va_unlabeled"], simulated["va_labeled"], simulated["gold_standard"],
                causes, ndraws=100, seed=1, should_stop=should_stop,
            )
        assert calls["n"] == 4

    @pytest.mark.parametrize("kwargs", [
        {"ndraws": 0},
        {"ndraws": -5},
        {"ndraws": 2.5},
        {"epsilon": 0.0},
        {"epsilon": -1.0},
    ])
    def test_invalid_run_arguments(self, simulated, causes, kwargs):
        with pytest.raises(InvalidInput):
            calibva_sampler(
                simulated["va_unlabeled"], simulated["va_labeled"], simulated["gold_standard"],
                causes, seed=1, **kwargs,
            )

    def test_unknown_gold_standard_label(self, causes):
        with pytest.raises(InvalidInput, match="gold_standard"):
            calibva_sampler(["A"], ["A", "B"], ["A", "Z"], causes, ndraws=5)

    def test_tau_length_mismatch(self, simulated, causes):
        with pytest.raises(InvalidInput, match="tau"):
            calibva_sampler(
                simulated["va_unlabeled"], simulated["va_labeled"], simulated["gold_standard"],
                causes, prior=MShrinkPrior(tau=[1.0, 2.0]), ndraws=5,
            )
