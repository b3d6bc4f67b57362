"""Tests for the Fox-Glynn uniformization engine."""

import numpy as np
import pytest
from scipy.stats import poisson

from gsmp.errors import UniformizationError
from gsmp.foxglynn import fox_glynn


class TestFoxGlynnWeights:

    @pytest.mark.parametrize("qt", [0.05, 1.0, 7.5, 250.0, 5000.0, 1e5])
    @pytest.mark.parametrize("epsilon", [1e-4, 1e-8, 1e-12])
    def test_mass_and_finiteness(self, qt, epsilon):
        """Total ≥ 1-ε, and no weight is negative, NaN or infinite."""
        fg = fox_glynn(qt, epsilon)
        assert fg.total_weight >= 1.0 - epsilon, \
            f"qt={qt}, eps={epsilon}: total {fg.total_weight}"
        assert np.all(np.isfinite(fg.weights))
        assert np.all(fg.weights >= 0)
        assert 0 <= fg.left <= fg.right
        assert len(fg.weights) == fg.right - fg.left + 1

    def test_zero_rate_is_identity(self):
        fg = fox_glynn(0.0, 1e-6)
        assert (fg.left, fg.right) == (0, 0)
        np.testing.assert_array_equal(fg.weights, [1.0])
        assert fg.total_weight == 1.0

    def test_weights_match_poisson_pmf(self):
        fg = fox_glynn(42.0, 1e-10)
        n = np.arange(fg.left, fg.right + 1)
        np.testing.assert_allclose(fg.weights, poisson.pmf(n, 42.0), rtol=1e-9)

    def test_window_contains_mode(self):
        fg = fox_glynn(1234.5, 1e-8)
        assert fg.left <= 1234 <= fg.right

    def test_huge_rate_does_not_overflow(self):
        fg = fox_glynn(1e7, 1e-6)
        assert np.all(np.isfinite(fg.weights))
        assert fg.total_weight >= 1.0 - 1e-6

    @pytest.mark.parametrize("qt", [-1.0, np.inf, np.nan])
    def test_invalid_rate_raises(self, qt):
        with pytest.raises(UniformizationError):
            fox_glynn(qt, 1e-6)

    def test_invalid_epsilon_raises(self):
        with pytest.raises(UniformizationError):
            fox_glynn(10.0, 0.0)

    def test_iteration_budget_exhausted(self):
        with pytest.raises(UniformizationError, match="did not converge"):
            fox_glynn(10.0, 1e-6, max_iterations=0)


class TestFoxGlynnVectors:

    def test_dense_is_normalized(self):
        fg = fox_glynn(30.0, 1e-8)
        dense = fg.dense()
        assert len(dense) == fg.right + 1
        assert np.all(dense[:fg.left] == 0.0)
        assert dense.sum() == pytest.approx(1.0, abs=1e-12)

    def test_time_weights_sum_to_mission_time(self):
        """Σ_n P(N > n)/q = E[N]/q = t."""
        q, t = 2.0, 3.0
        fg = fox_glynn(q * t, 1e-10)
        assert fg.time_weights(q).sum() == pytest.approx(t, rel=1e-8)

    def test_time_weights_non_increasing(self):
        tw = fox_glynn(15.0, 1e-8).time_weights(1.5)
        assert np.all(np.diff(tw) <= 1e-15)
        assert tw[0] <= 1.0 / 1.5
