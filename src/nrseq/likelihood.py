"""
Two-component binomial mixture likelihood for aggregated NR-seq reads.

For observations ``(k, n, w)`` (mutation count, mutable-site count,
multiplicity) the negative log-likelihood is

    NLL(p_high, p_low, f) = -sum w * log(f * Binom(k; n, p_high)
                                         + (1 - f) * Binom(k; n, p_low))

The latent new/old membership of a read is marginalised inside the sum.
Optimisation happens on the logit scale so the native parameters always stay
in the open interval (0, 1); ``value_and_grad`` methods return the objective
together with its analytic gradient on that scale.
"""

from __future__ import annotations

from typing import Tuple

import numpy as np
import pandas as pd
from scipy import special, stats

from .exceptions import ValidationError

PROB_EPS = 1e-12
# Stand-in for log(0) when a mixture probability underflows
LOG_FLOOR = float(np.log(np.finfo(np.float64).tiny))


def clamp_probability(p):
    """Clamp probabilities into ``[PROB_EPS, 1 - PROB_EPS]``."""
    return np.clip(p, PROB_EPS, 1.0 - PROB_EPS)


def logit(p):
    return special.logit(clamp_probability(np.asarray(p, dtype=np.float64)))


def expit(theta):
    return special.expit(np.asarray(theta, dtype=np.float64))


def _stable_terms(log_a: np.ndarray, log_b: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Per-observation mixture log-likelihoods and high-component responsibilities."""
    terms = np.logaddexp(log_a, log_b)
    degenerate = ~np.isfinite(terms)
    if np.any(degenerate):
        terms = np.where(degenerate, LOG_FLOOR, terms)
    with np.errstate(invalid="ignore", over="ignore"):
        responsibility = np.exp(log_a - terms)
    responsibility = np.where(degenerate | ~np.isfinite(responsibility), 0.0, responsibility)
    return terms, np.clip(responsibility, 0.0, 1.0)


class MixtureLikelihood:
    """Negative log-likelihood of a two-component binomial mixture.

    Args:
        mutation_count: Mutations observed per (distinct) observation
        site_count: Mutable sites per observation
        multiplicity: Number of reads sharing the (mutation, site) pair
    """

    def __init__(self, mutation_count, site_count, multiplicity):
        k = np.asarray(mutation_count, dtype=np.int64)
        n = np.asarray(site_count, dtype=np.int64)
        w = np.asarray(multiplicity, dtype=np.float64)

        if not (k.shape == n.shape == w.shape) or k.ndim != 1:
            raise ValidationError("mutation_count, site_count and multiplicity must be 1-D arrays of equal length")
        if np.any(n < 0) or np.any(k < 0):
            raise ValidationError("counts must be non-negative")
        if np.any(k > n):
            raise ValidationError("mutation_count cannot exceed site_count")
        if np.any(w < 0) or not np.all(np.isfinite(w)):
            raise ValidationError("multiplicity must be finite and non-negative")

        keep = w > 0
        self.mutation_count = k[keep]
        self.site_count = n[keep]
        self.multiplicity = w[keep]

    @classmethod
    def from_frame(cls, frame: pd.DataFrame) -> "MixtureLikelihood":
        return cls(frame["mutation_count"], frame["site_count"], frame["multiplicity"])

    @property
    def n_reads(self) -> int:
        return int(self.multiplicity.sum())

    @property
    def n_informative_reads(self) -> int:
        """Reads with at least one mutable site; zero-site reads leave the NLL flat."""
        return int(self.multiplicity[self.site_count > 0].sum())

    def component_logpmf(self, p: float) -> np.ndarray:
        """``log Binom(k; n, p)`` for every observation."""
        return stats.binom.logpmf(self.mutation_count, self.site_count, clamp_probability(p))

    def _weighted_nll(self, terms: np.ndarray) -> float:
        return float(-np.dot(self.multiplicity, terms))

    def nll(self, p_high: float, p_low: float, fraction_new: float) -> float:
        """NLL at native-scale parameters."""
        f = float(clamp_probability(fraction_new))
        terms, _ = _stable_terms(
            np.log(f) + self.component_logpmf(p_high),
            np.log1p(-f) + self.component_logpmf(p_low),
        )
        return self._weighted_nll(terms)

    def value_and_grad(self, theta: np.ndarray) -> Tuple[float, np.ndarray]:
        """Unconstrained mode: ``theta = logit([p_high, p_low, f])``."""
        theta = np.asarray(theta, dtype=np.float64)
        p_high, p_low = expit(theta[0]), expit(theta[1])
        f = expit(theta[2])

        terms, resp = _stable_terms(
            special.log_expit(theta[2]) + self.component_logpmf(p_high),
            special.log_expit(-theta[2]) + self.component_logpmf(p_low),
        )
        k, n, w = self.mutation_count, self.site_count, self.multiplicity
        # d log Binom(k; n, expit(t)) / dt == k - n * p
        grad = -np.array(
            [
                np.dot(w, resp * (k - n * p_high)),
                np.dot(w, (1.0 - resp) * (k - n * p_low)),
                np.dot(w, resp - f),
            ]
        )
        return self._weighted_nll(terms), grad

    def value(self, theta: np.ndarray) -> float:
        return self.value_and_grad(theta)[0]

    def rate_fixed(self, p_high: float, p_low: float) -> "RateFixedLikelihood":
        """Rate-fixed mode with externally supplied mutation rates."""
        return RateFixedLikelihood(self, p_high, p_low)


class RateFixedLikelihood:
    """Mixture NLL with both mutation rates held fixed; only ``f`` is free."""

    def __init__(self, base: MixtureLikelihood, p_high: float, p_low: float):
        self.base = base
        self.p_high = float(p_high)
        self.p_low = float(p_low)
        # Component densities do not depend on f
        self._logpmf_high = base.component_logpmf(self.p_high)
        self._logpmf_low = base.component_logpmf(self.p_low)

    @property
    def n_reads(self) -> int:
        return self.base.n_reads

    @property
    def n_informative_reads(self) -> int:
        return self.base.n_informative_reads

    def nll(self, fraction_new: float) -> float:
        f = float(clamp_probability(fraction_new))
        terms, _ = _stable_terms(np.log(f) + self._logpmf_high, np.log1p(-f) + self._logpmf_low)
        return self.base._weighted_nll(terms)

    def value_and_grad(self, theta: np.ndarray) -> Tuple[float, np.ndarray]:
        """``theta = [logit(f)]``."""
        t = float(np.asarray(theta, dtype=np.float64).reshape(-1)[0])
        terms, resp = _stable_terms(
            special.log_expit(t) + self._logpmf_high,
            special.log_expit(-t) + self._logpmf_low,
        )
        grad = -np.array([np.dot(self.base.multiplicity, resp - expit(t))])
        return self.base._weighted_nll(terms), grad

    def value(self, theta: np.ndarray) -> float:
        return self.value_and_grad(theta)[0]
