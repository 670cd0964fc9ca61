"""Kinetic estimates and accuracy metrics against simulated ground truth."""

from __future__ import annotations

from typing import Any, Dict

import numpy as np
import pandas as pd
from scipy import stats

from .enums import FitStatus
from .exceptions import ValidationError


def kdeg_from_fraction_new(fraction_new, label_time: float) -> np.ndarray:
    """Invert ``f = 1 - exp(-kdeg * t)``; NaN where ``f`` is outside (0, 1)."""
    if not label_time > 0:
        raise ValidationError("label_time must be positive")
    f = np.asarray(fraction_new, dtype=np.float64)
    valid = (f > 0) & (f < 1)
    with np.errstate(invalid="ignore", divide="ignore"):
        kdeg = -np.log1p(-f) / label_time
    return np.where(valid, kdeg, np.nan)


def add_kinetic_estimates(fits: pd.DataFrame, label_time: float) -> pd.DataFrame:
    """Add ``kdeg_hat`` and ``log_kdeg_hat`` columns to a fit table."""
    kdeg = kdeg_from_fraction_new(fits["fraction_new_hat"], label_time)
    with np.errstate(invalid="ignore", divide="ignore"):
        log_kdeg = np.log(kdeg)
    return fits.assign(kdeg_hat=kdeg, log_kdeg_hat=log_kdeg)


def compare_to_truth(fits: pd.DataFrame, truth: pd.DataFrame) -> pd.DataFrame:
    """Join fits onto the truth table and add ``fraction_new_error``."""
    comparison = truth.merge(fits, on="feature_id", how="left", validate="one_to_one")
    comparison["fraction_new_error"] = (
        comparison["fraction_new_hat"] - comparison["fraction_new_truth"]
    )
    return comparison


def accuracy_summary(comparison: pd.DataFrame) -> Dict[str, Any]:
    """Summarise estimation error over converged features."""
    status = comparison["status"]
    fitted = comparison[status.notna() & (status != FitStatus.INSUFFICIENT_DATA.value)]
    converged = comparison[comparison["converged"].fillna(False).astype(bool)]
    errors = converged["fraction_new_error"].to_numpy(dtype=np.float64)

    summary: Dict[str, Any] = {
        "n_features": int(len(comparison)),
        "n_fitted": int(len(fitted)),
        "n_converged": int(len(converged)),
        "bias": np.nan,
        "rmse": np.nan,
        "mae": np.nan,
        "pearson_r": np.nan,
        "spearman_r": np.nan,
    }
    if errors.size == 0:
        return summary

    summary["bias"] = float(np.mean(errors))
    summary["rmse"] = float(np.sqrt(np.mean(errors ** 2)))
    summary["mae"] = float(np.mean(np.abs(errors)))
    if errors.size >= 3:
        truth = converged["fraction_new_truth"].to_numpy(dtype=np.float64)
        estimate = converged["fraction_new_hat"].to_numpy(dtype=np.float64)
        if np.ptp(truth) > 0 and np.ptp(estimate) > 0:
            summary["pearson_r"] = float(stats.pearsonr(truth, estimate)[0])
            summary["spearman_r"] = float(stats.spearmanr(truth, estimate)[0])
    return summary


def coverage_stratified_error(comparison: pd.DataFrame, n_bins: int = 10) -> pd.DataFrame:
    """Error statistics per read-coverage quantile bin.

    Bin 0 holds the lowest-coverage features. Features without an estimate
    are counted in ``n_features`` but excluded from the error statistics.
    """
    if n_bins < 1:
        raise ValidationError("n_bins must be positive")
    coverage_col = "allocated_read_count" if "allocated_read_count" in comparison else "n_reads"

    ranks = comparison[coverage_col].rank(method="first")
    bins = pd.qcut(ranks, q=min(n_bins, len(comparison)), labels=False)
    frame = comparison.assign(coverage_bin=bins)

    def _compute(group: pd.DataFrame) -> pd.Series:
        errors = group["fraction_new_error"].dropna()
        return pd.Series(
            {
                "n_features": len(group),
                "n_estimated": len(errors),
                "min_reads": group[coverage_col].min(),
                "max_reads": group[coverage_col].max(),
                "mean_error": errors.mean() if len(errors) else np.nan,
                "error_variance": errors.var(ddof=1) if len(errors) > 1 else np.nan,
            }
        )

    rows = [
        _compute(group).rename(coverage_bin)
        for coverage_bin, group in frame.groupby("coverage_bin", sort=True)
    ]
    result = pd.DataFrame(rows)
    result.index.name = "coverage_bin"
    return result.reset_index()
