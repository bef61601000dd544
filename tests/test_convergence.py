"""
Tests for the convergence statistics in convergence.py.

Run: uv run pytest tests/test_convergence.py -v
"""

import numpy as np
import pytest

from bnmix.convergence import has_converged, log_likelihood, squared_difference
from bnmix.errors import NumericDegeneracy

# ── squared_difference() ────────────────────────────────────────────────────


class TestSquaredDifference:
    """Sum of squared element-wise responsibility changes."""

    def test_identical_is_zero(self) -> None:
        rng = np.random.default_rng(1)
        resp = rng.dirichlet(np.ones(3), size=20)
        assert squared_difference(resp, resp.copy()) == 0.0

    def test_different_is_positive(self) -> None:
        a = np.array([[0.5, 0.5], [1.0, 0.0]])
        b = np.array([[0.5, 0.5], [0.9, 0.1]])
        assert squared_difference(a, b) > 0

    def test_value(self) -> None:
        a = np.array([[1.0, 0.0]])
        b = np.array([[0.0, 1.0]])
        assert squared_difference(a, b) == pytest.approx(2.0)

    def test_symmetric(self) -> None:
        rng = np.random.default_rng(2)
        a = rng.dirichlet(np.ones(4), size=10)
        b = rng.dirichlet(np.ones(4), size=10)
        assert squared_difference(a, b) == pytest.approx(squared_difference(b, a))

    def test_shape_mismatch_raises(self) -> None:
        with pytest.raises(ValueError):
            squared_difference(np.zeros((2, 3)), np.zeros((3, 2)))


# ── log_likelihood() ────────────────────────────────────────────────────────


class TestLogLikelihood:
    """Stabilised mixture log-likelihood."""

    def test_matches_naive_formula(self) -> None:
        rng = np.random.default_rng(3)
        scores = rng.uniform(-10.0, 0.0, size=(30, 3))
        tau = rng.dirichlet(np.ones(3))
        naive = float(np.sum(np.log(np.sum(np.exp(scores) * tau, axis=1))))
        assert log_likelihood(scores, tau) == pytest.approx(naive, rel=1e-12)

    def test_finite_where_naive_underflows(self) -> None:
        scores = np.array([[-2000.0, -2001.0], [-3000.0, -2999.0]])
        tau = np.array([0.5, 0.5])
        with np.errstate(divide="ignore"):
            naive = float(np.sum(np.log(np.sum(np.exp(scores) * tau, axis=1))))
        assert naive == -np.inf
        assert np.isfinite(log_likelihood(scores, tau))

    def test_single_cluster_is_sum_of_scores(self) -> None:
        scores = np.array([[-1.5], [-2.5], [-4.0]])
        assert log_likelihood(scores, np.array([1.0])) == pytest.approx(-8.0)

    def test_better_scores_increase_likelihood(self) -> None:
        tau = np.array([0.5, 0.5])
        low = log_likelihood(np.array([[-3.0, -3.0]]), tau)
        high = log_likelihood(np.array([[-1.0, -3.0]]), tau)
        assert high > low

    def test_minus_inf_row_raises(self) -> None:
        with pytest.raises(NumericDegeneracy):
            log_likelihood(np.array([[-np.inf, -np.inf]]), np.array([0.5, 0.5]))


class TestHasConverged:
    def test_below_epsilon(self) -> None:
        assert has_converged(1e-8, 1e-6)

    def test_equal_is_not_converged(self) -> None:
        assert not has_converged(1e-6, 1e-6)
