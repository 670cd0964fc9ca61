"""
Tests for the two-component binomial mixture likelihood.
"""

import numpy as np
import pytest
from hypothesis import given, settings, strategies as st
from scipy import stats
from scipy.optimize import approx_fprime

from nrseq.exceptions import ValidationError
from nrseq.likelihood import MixtureLikelihood, expit, logit

probabilities = st.floats(min_value=1e-4, max_value=0.999)


def _brute_force_nll(k, n, w, p_high, p_low, f):
    mix = f * stats.binom.pmf(k, n, p_high) + (1 - f) * stats.binom.pmf(k, n, p_low)
    return -np.sum(w * np.log(mix))


class TestMixtureLikelihood:
    """Test likelihood values, symmetry and numerical stability."""

    def setup_method(self):
        self.k = np.array([0, 0, 1, 2, 3, 0, 5])
        self.n = np.array([0, 20, 20, 25, 30, 15, 40])
        self.w = np.array([4, 120, 30, 12, 6, 80, 2])
        self.likelihood = MixtureLikelihood(self.k, self.n, self.w)

    def test_matches_direct_formula(self):
        value = self.likelihood.nll(0.05, 0.002, 0.3)
        expected = _brute_force_nll(self.k, self.n, self.w, 0.05, 0.002, 0.3)
        assert value == pytest.approx(expected, rel=1e-10)

    @given(p_high=probabilities, p_low=probabilities, f=st.floats(min_value=1e-3, max_value=0.999))
    @settings(max_examples=100, deadline=None)
    def test_label_flip_invariance(self, p_high, p_low, f):
        forward = self.likelihood.nll(p_high, p_low, f)
        flipped = self.likelihood.nll(p_low, p_high, 1.0 - f)
        assert forward == pytest.approx(flipped, rel=1e-9, abs=1e-9)

    def test_transformed_scale_matches_native(self):
        theta = logit([0.04, 0.003, 0.6])
        value, _ = self.likelihood.value_and_grad(theta)
        assert value == pytest.approx(self.likelihood.nll(0.04, 0.003, 0.6), rel=1e-10)

    def test_analytic_gradient(self):
        theta = np.array([-2.5, -5.0, 0.3])
        _, grad = self.likelihood.value_and_grad(theta)
        numeric = approx_fprime(theta, self.likelihood.value, 1e-6)
        np.testing.assert_allclose(grad, numeric, rtol=1e-4, atol=1e-3)

    @given(theta=st.lists(st.floats(min_value=-60, max_value=60), min_size=3, max_size=3))
    @settings(max_examples=100, deadline=None)
    def test_extreme_parameters_stay_finite(self, theta):
        value, grad = self.likelihood.value_and_grad(np.array(theta))
        assert np.isfinite(value)
        assert np.all(np.isfinite(grad))

    def test_boundary_native_parameters_stay_finite(self):
        assert np.isfinite(self.likelihood.nll(1.0, 0.0, 0.0))
        assert np.isfinite(self.likelihood.nll(1.0, 1.0, 1.0))

    def test_zero_site_reads_carry_no_information(self):
        without = MixtureLikelihood(self.k[1:], self.n[1:], self.w[1:])
        assert without.nll(0.05, 0.002, 0.4) == pytest.approx(self.likelihood.nll(0.05, 0.002, 0.4))

    def test_informative_reads_exclude_zero_site_rows(self):
        assert self.likelihood.n_reads == 254
        assert self.likelihood.n_informative_reads == 250
        assert self.likelihood.rate_fixed(0.05, 0.002).n_informative_reads == 250

    def test_zero_multiplicity_rows_dropped(self):
        likelihood = MixtureLikelihood([0, 1], [10, 10], [0, 3])
        assert likelihood.n_reads == 3
        assert len(likelihood.mutation_count) == 1

    def test_empty_likelihood(self):
        likelihood = MixtureLikelihood([], [], [])
        assert likelihood.n_reads == 0
        assert likelihood.nll(0.05, 0.002, 0.5) == 0.0

    def test_invalid_inputs(self):
        with pytest.raises(ValidationError):
            MixtureLikelihood([3], [2], [1])
        with pytest.raises(ValidationError):
            MixtureLikelihood([0], [2], [-1])
        with pytest.raises(ValidationError):
            MixtureLikelihood([0, 1], [2], [1])


class TestRateFixedLikelihood:
    """Test the mode with externally supplied mutation rates."""

    def setup_method(self):
        self.base = MixtureLikelihood([0, 1, 2, 4], [25, 25, 30, 30], [60, 20, 10, 5])
        self.fixed = self.base.rate_fixed(0.05, 0.002)

    def test_matches_unconstrained_mode(self):
        for f in (0.1, 0.5, 0.9):
            assert self.fixed.nll(f) == pytest.approx(self.base.nll(0.05, 0.002, f), rel=1e-12)

    def test_transformed_value(self):
        value, _ = self.fixed.value_and_grad(logit([0.35]))
        assert value == pytest.approx(self.base.nll(0.05, 0.002, 0.35), rel=1e-10)

    def test_gradient(self):
        theta = np.array([0.7])
        _, grad = self.fixed.value_and_grad(theta)
        numeric = approx_fprime(theta, self.fixed.value, 1e-6)
        np.testing.assert_allclose(grad, numeric, rtol=1e-4, atol=1e-4)

    def test_only_fraction_new_is_free(self):
        assert self.fixed.p_high == 0.05
        assert self.fixed.p_low == 0.002
        assert self.fixed.n_reads == 95


def test_logit_expit_inverse():
    p = np.array([1e-6, 0.002, 0.5, 0.95])
    np.testing.assert_allclose(expit(logit(p)), p, rtol=1e-9)
