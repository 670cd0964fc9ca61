"""
Tests for kinetic estimates and accuracy summaries.
"""

import numpy as np
import pandas as pd
import pytest

from nrseq.enums import FitStatus
from nrseq.exceptions import ValidationError
from nrseq.metrics import (
    accuracy_summary,
    add_kinetic_estimates,
    compare_to_truth,
    coverage_stratified_error,
    kdeg_from_fraction_new,
)


def _fits(values, statuses=None):
    statuses = statuses or [FitStatus.CONVERGED.value] * len(values)
    return pd.DataFrame(
        {
            "feature_id": [f"f{i}" for i in range(len(values))],
            "fraction_new_hat": values,
            "converged": [s == FitStatus.CONVERGED.value for s in statuses],
            "status": statuses,
            "n_reads": [10 * (i + 1) for i in range(len(values))],
        }
    )


def _truth(values):
    return pd.DataFrame(
        {
            "feature_id": [f"f{i}" for i in range(len(values))],
            "fraction_new_truth": values,
            "allocated_read_count": [10 * (i + 1) for i in range(len(values))],
        }
    )


class TestKinetics:
    """Test conversion from fraction new to degradation rate."""

    def test_inverts_fraction_new(self):
        kdeg = np.array([0.01, 0.2, 1.5])
        fraction_new = 1 - np.exp(-kdeg * 3.0)
        np.testing.assert_allclose(kdeg_from_fraction_new(fraction_new, 3.0), kdeg, rtol=1e-10)

    def test_boundary_values_are_nan(self):
        result = kdeg_from_fraction_new([0.0, 1.0, np.nan, 0.5], 1.0)
        assert np.isnan(result[:3]).all()
        assert result[3] == pytest.approx(np.log(2.0))

    def test_label_time_must_be_positive(self):
        with pytest.raises(ValidationError):
            kdeg_from_fraction_new([0.5], 0.0)

    def test_add_kinetic_estimates(self):
        fits = add_kinetic_estimates(_fits([0.5, np.nan]), label_time=2.0)
        assert fits.loc[0, "kdeg_hat"] == pytest.approx(np.log(2.0) / 2.0)
        assert fits.loc[0, "log_kdeg_hat"] == pytest.approx(np.log(np.log(2.0) / 2.0))
        assert np.isnan(fits.loc[1, "kdeg_hat"])


class TestAccuracy:
    """Test comparison against ground truth."""

    def test_compare_to_truth(self):
        comparison = compare_to_truth(_fits([0.3, 0.6]), _truth([0.25, 0.7]))
        np.testing.assert_allclose(comparison["fraction_new_error"], [0.05, -0.1])

    def test_summary(self):
        truth = _truth([0.1, 0.3, 0.5, 0.7, 0.9])
        fits = _fits(
            [0.12, 0.28, 0.55, 0.69, np.nan],
            statuses=["converged"] * 4 + [FitStatus.INSUFFICIENT_DATA.value],
        )
        summary = accuracy_summary(compare_to_truth(fits, truth))

        assert summary["n_features"] == 5
        assert summary["n_fitted"] == 4
        assert summary["n_converged"] == 4
        errors = np.array([0.02, -0.02, 0.05, -0.01])
        assert summary["bias"] == pytest.approx(errors.mean())
        assert summary["rmse"] == pytest.approx(np.sqrt(np.mean(errors ** 2)))
        assert summary["mae"] == pytest.approx(np.abs(errors).mean())
        assert summary["spearman_r"] == pytest.approx(1.0)
        assert summary["pearson_r"] > 0.99

    def test_summary_without_converged_rows(self):
        fits = _fits([np.nan], statuses=[FitStatus.INSUFFICIENT_DATA.value])
        summary = accuracy_summary(compare_to_truth(fits, _truth([0.4])))
        assert summary["n_converged"] == 0
        assert np.isnan(summary["rmse"])

    def test_coverage_bins(self):
        values = np.linspace(0.1, 0.9, 20)
        comparison = compare_to_truth(_fits(values + 0.01), _truth(values))
        table = coverage_stratified_error(comparison, n_bins=4)

        assert len(table) == 4
        assert table["n_features"].tolist() == [5, 5, 5, 5]
        assert table["mean_error"].to_numpy() == pytest.approx([0.01] * 4)
        assert table.iloc[0]["min_reads"] == 10

    def test_invalid_bins(self):
        with pytest.raises(ValidationError):
            coverage_stratified_error(compare_to_truth(_fits([0.5]), _truth([0.5])), n_bins=0)
