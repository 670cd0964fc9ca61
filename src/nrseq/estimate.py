"""Fraction-new estimation by maximum likelihood.

Two strategies are available:

* ``unpooled``: every feature gets its own ``(p_high, p_low, f)`` fit.
* ``pooled``: stage 1 fits shared mutation rates on the reads of all
  features together; stage 2 fits only ``f`` per feature with those rates
  held fixed.

Per-feature fits are independent and can run in a process pool. The
mixture is symmetric under swapping the two components, so every fit is
relabelled so that ``p_high_hat >= p_low_hat``.
"""

from __future__ import annotations

import logging
import multiprocessing as mp
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import asdict, dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from scipy.optimize import minimize

from .config import FitConfig, PipelineConfig
from .enums import FitStatus, Strategy
from .exceptions import EstimationError, InsufficientDataError, ValidationError
from .likelihood import MixtureLikelihood, RateFixedLikelihood, expit, logit
from .logging_config import time_it
from .schemas import FIT_RESULT_SCHEMA, OBSERVATION_SCHEMA

logger = logging.getLogger(__name__)

GRADIENT_METHODS = ("L-BFGS-B", "TNC", "SLSQP")

FeatureData = Tuple[np.ndarray, np.ndarray, np.ndarray]


@dataclass(frozen=True)
class PooledRates:
    """Stage-1 mutation rates shared by every stage-2 fit."""
    p_high: float
    p_low: float
    converged: bool
    neg_log_likelihood: float
    n_reads: int


@dataclass(frozen=True)
class FeatureFit:
    """Fit outcome for one feature."""
    feature_id: str
    p_high_hat: float
    p_low_hat: float
    fraction_new_hat: float
    converged: bool
    status: str
    n_reads: int
    neg_log_likelihood: float
    n_iterations: int
    strategy: str

    @classmethod
    def without_estimate(
        cls,
        feature_id: str,
        strategy: str,
        status: str = FitStatus.INSUFFICIENT_DATA.value,
        n_reads: int = 0,
    ) -> "FeatureFit":
        return cls(
            feature_id=feature_id,
            p_high_hat=np.nan,
            p_low_hat=np.nan,
            fraction_new_hat=np.nan,
            converged=False,
            status=status,
            n_reads=n_reads,
            neg_log_likelihood=np.nan,
            n_iterations=0,
            strategy=strategy,
        )


def resolve_label_switch(p1: float, p2: float, fraction_new: float) -> Tuple[float, float, float]:
    """Order the components so the first rate is the larger one.

    ``(p1, p2, f)`` and ``(p2, p1, 1 - f)`` have identical likelihood; the
    returned triple is always ``(max rate, min rate, weight of max rate)``.
    """
    if p1 < p2:
        return p2, p1, 1.0 - fraction_new
    return p1, p2, fraction_new


def _optimizer_options(config: FitConfig) -> Dict[str, int]:
    method = config.method
    if method == "L-BFGS-B":
        return {"maxiter": config.max_iterations, "maxfun": config.max_function_evaluations}
    if method == "TNC":
        return {"maxfun": config.max_function_evaluations}
    if method == "SLSQP":
        return {"maxiter": config.max_iterations}
    return {"maxiter": config.max_iterations, "maxfev": config.max_function_evaluations}


def _minimize(
    objective: Union[MixtureLikelihood, RateFixedLikelihood],
    x0: np.ndarray,
    config: FitConfig,
):
    bounds = [tuple(config.logit_bounds)] * len(x0)
    options = _optimizer_options(config)
    if config.method in GRADIENT_METHODS:
        result = minimize(
            objective.value_and_grad, x0, jac=True,
            method=config.method, bounds=bounds, options=options,
        )
    else:
        result = minimize(objective.value, x0, method=config.method, bounds=bounds, options=options)

    if not np.isfinite(result.fun):
        raise EstimationError(
            f"{config.method} returned a non-finite objective",
            {"x": np.asarray(result.x).tolist(), "message": str(result.message)},
        )
    return result


def _iterations(result) -> int:
    return int(result.get("nit", result.get("nfev", 0)))


def _require_information(likelihood: Union[MixtureLikelihood, RateFixedLikelihood]) -> None:
    if likelihood.n_informative_reads == 0:
        raise InsufficientDataError(
            "cannot fit a feature without reads covering a mutable site",
            {"n_reads": likelihood.n_reads},
        )


def fit_unconstrained(
    likelihood: MixtureLikelihood,
    config: FitConfig,
) -> Tuple[float, float, float, bool, float, int]:
    """Fit all three mixture parameters.

    Returns:
        ``(p_high, p_low, fraction_new, converged, nll, n_iterations)`` after
        label-switch resolution

    Raises:
        InsufficientDataError: If no read covers a mutable site
        EstimationError: If the optimizer ends on a non-finite objective
    """
    _require_information(likelihood)

    x0 = logit([config.initial_p_high, config.initial_p_low, config.initial_fraction_new])
    result = _minimize(likelihood, x0, config)
    p1, p2, f = (float(v) for v in expit(result.x))
    p_high, p_low, f = resolve_label_switch(p1, p2, f)
    converged = bool(result.success) and bool(np.all(np.isfinite(result.x)))
    return p_high, p_low, f, converged, float(result.fun), _iterations(result)


def fit_rate_fixed(
    likelihood: RateFixedLikelihood,
    config: FitConfig,
) -> Tuple[float, bool, float, int]:
    """Fit ``f`` alone with both mutation rates fixed.

    Returns:
        ``(fraction_new, converged, nll, n_iterations)``
    """
    _require_information(likelihood)

    x0 = logit([config.initial_fraction_new])
    result = _minimize(likelihood, x0, config)
    f = float(expit(result.x[0]))
    converged = bool(result.success) and bool(np.isfinite(result.x[0]))
    return f, converged, float(result.fun), _iterations(result)


def _status(converged: bool) -> str:
    return FitStatus.CONVERGED.value if converged else FitStatus.NOT_CONVERGED.value


def _fit_unpooled_task(args) -> FeatureFit:
    """Worker: unconstrained fit of one feature."""
    feature_id, (k, n, w), config = args
    try:
        likelihood = MixtureLikelihood(k, n, w)
        p_high, p_low, f, converged, nll, nit = fit_unconstrained(likelihood, config)
    except InsufficientDataError:
        return FeatureFit.without_estimate(feature_id, Strategy.UNPOOLED.value, n_reads=int(np.sum(w)))
    except EstimationError as exc:
        logger.warning(f"Fit failed for {feature_id}: {exc}")
        return FeatureFit.without_estimate(
            feature_id, Strategy.UNPOOLED.value, FitStatus.NOT_CONVERGED.value, n_reads=int(np.sum(w))
        )

    return FeatureFit(
        feature_id=feature_id,
        p_high_hat=p_high,
        p_low_hat=p_low,
        fraction_new_hat=f,
        converged=converged,
        status=_status(converged),
        n_reads=likelihood.n_reads,
        neg_log_likelihood=nll,
        n_iterations=nit,
        strategy=Strategy.UNPOOLED.value,
    )


def _fit_rate_fixed_task(args) -> FeatureFit:
    """Worker: stage-2 fit of one feature against fixed pooled rates."""
    feature_id, (k, n, w), pooled, config = args
    try:
        likelihood = MixtureLikelihood(k, n, w).rate_fixed(pooled.p_high, pooled.p_low)
        f, converged, nll, nit = fit_rate_fixed(likelihood, config)
    except InsufficientDataError:
        return FeatureFit.without_estimate(feature_id, Strategy.POOLED.value, n_reads=int(np.sum(w)))
    except EstimationError as exc:
        logger.warning(f"Fit failed for {feature_id}: {exc}")
        return FeatureFit.without_estimate(
            feature_id, Strategy.POOLED.value, FitStatus.NOT_CONVERGED.value, n_reads=int(np.sum(w))
        )

    # A stage-2 fit is only as trustworthy as the rates it conditions on
    converged = converged and pooled.converged
    return FeatureFit(
        feature_id=feature_id,
        p_high_hat=pooled.p_high,
        p_low_hat=pooled.p_low,
        fraction_new_hat=f,
        converged=converged,
        status=_status(converged),
        n_reads=likelihood.n_reads,
        neg_log_likelihood=nll,
        n_iterations=nit,
        strategy=Strategy.POOLED.value,
    )


def _run_tasks(worker: Callable, tasks: List[tuple], n_jobs: int) -> List[FeatureFit]:
    """Run per-feature tasks, returning results in submission order."""
    n_jobs = mp.cpu_count() if n_jobs == -1 else n_jobs

    if n_jobs == 1 or len(tasks) <= 1:
        return [worker(task) for task in tasks]

    results: List[Optional[FeatureFit]] = [None] * len(tasks)
    with ProcessPoolExecutor(max_workers=n_jobs) as executor:
        future_to_index = {executor.submit(worker, task): i for i, task in enumerate(tasks)}
        for future in as_completed(future_to_index):
            results[future_to_index[future]] = future.result()
    return results


def _split_by_feature(
    observations: pd.DataFrame,
    feature_ids: Optional[Sequence[str]],
) -> Tuple[List[str], Dict[str, FeatureData]]:
    OBSERVATION_SCHEMA.validate(observations)

    per_feature: Dict[str, FeatureData] = {}
    for feature_id, frame in observations.groupby("feature_id", sort=True):
        per_feature[feature_id] = (
            frame["mutation_count"].to_numpy(dtype=np.int64),
            frame["site_count"].to_numpy(dtype=np.int64),
            frame["multiplicity"].to_numpy(dtype=np.int64),
        )

    if feature_ids is None:
        return list(per_feature), per_feature

    feature_ids = list(feature_ids)
    unknown = set(per_feature) - set(feature_ids)
    if unknown:
        msg = f"observations reference {len(unknown)} features missing from feature_ids"
        raise ValidationError(msg, {"unknown": sorted(unknown)[:10]})
    return feature_ids, per_feature


_EMPTY: FeatureData = (
    np.empty(0, dtype=np.int64),
    np.empty(0, dtype=np.int64),
    np.empty(0, dtype=np.int64),
)


def _results_frame(fits: List[FeatureFit]) -> pd.DataFrame:
    frame = pd.DataFrame([asdict(fit) for fit in fits], columns=FIT_RESULT_SCHEMA.columns)
    frame = frame.astype({"n_reads": np.int64, "n_iterations": np.int64, "converged": bool})
    FIT_RESULT_SCHEMA.validate(frame)
    return frame


def _log_summary(frame: pd.DataFrame, strategy: str) -> None:
    counts = frame["status"].value_counts()
    n_not_converged = int(counts.get(FitStatus.NOT_CONVERGED.value, 0))
    n_insufficient = int(counts.get(FitStatus.INSUFFICIENT_DATA.value, 0))
    logger.info(
        f"{strategy} fit: {int(counts.get(FitStatus.CONVERGED.value, 0))} converged, "
        f"{n_not_converged} not converged, {n_insufficient} with insufficient data"
    )
    if n_not_converged:
        logger.warning(f"{n_not_converged} features did not converge within the optimizer budget")


def fit_unpooled(
    observations: pd.DataFrame,
    config: FitConfig,
    feature_ids: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """Fit ``(p_high, p_low, f)`` independently for every feature."""
    ids, per_feature = _split_by_feature(observations, feature_ids)
    tasks = [(fid, per_feature.get(fid, _EMPTY), config) for fid in ids]
    frame = _results_frame(_run_tasks(_fit_unpooled_task, tasks, config.n_jobs))
    _log_summary(frame, Strategy.UNPOOLED.value)
    return frame


def fit_pooled_rates(observations: pd.DataFrame, config: FitConfig) -> PooledRates:
    """Stage 1: one unconstrained fit over the reads of every feature.

    Raises:
        InsufficientDataError: If no read of any feature covers a mutable site
    """
    OBSERVATION_SCHEMA.validate(observations)
    pooled = (
        observations.groupby(["mutation_count", "site_count"], sort=True)["multiplicity"]
        .sum()
        .reset_index()
    )
    likelihood = MixtureLikelihood.from_frame(pooled)
    p_high, p_low, _, converged, nll, nit = fit_unconstrained(likelihood, config)

    logger.info(
        f"Pooled rates from {likelihood.n_reads:,} reads: "
        f"p_high={p_high:.5g}, p_low={p_low:.5g} ({nit} iterations)"
    )
    if not converged:
        logger.warning("Stage-1 pooled fit did not converge; stage-2 fits will be flagged")
    return PooledRates(
        p_high=p_high,
        p_low=p_low,
        converged=converged,
        neg_log_likelihood=nll,
        n_reads=likelihood.n_reads,
    )


def fit_pooled(
    observations: pd.DataFrame,
    config: FitConfig,
    feature_ids: Optional[Sequence[str]] = None,
    pooled_rates: Optional[PooledRates] = None,
) -> pd.DataFrame:
    """Two-stage fit: shared mutation rates, then ``f`` per feature.

    Args:
        observations: Aggregated observation table
        config: Estimator configuration
        feature_ids: Every feature to report, including ones without reads
        pooled_rates: Precomputed stage-1 rates; fitted when omitted
    """
    ids, per_feature = _split_by_feature(observations, feature_ids)

    if pooled_rates is None:
        try:
            pooled_rates = fit_pooled_rates(observations, config)
        except InsufficientDataError:
            logger.warning("No informative reads available for the pooled fit")
            fits = [
                FeatureFit.without_estimate(
                    fid, Strategy.POOLED.value, n_reads=int(per_feature.get(fid, _EMPTY)[2].sum())
                )
                for fid in ids
            ]
            frame = _results_frame(fits)
            _log_summary(frame, Strategy.POOLED.value)
            return frame

    tasks = [(fid, per_feature.get(fid, _EMPTY), pooled_rates, config) for fid in ids]
    frame = _results_frame(_run_tasks(_fit_rate_fixed_task, tasks, config.n_jobs))
    _log_summary(frame, Strategy.POOLED.value)
    return frame


@time_it("fraction-new estimation")
def fit_fraction_new(
    observations: pd.DataFrame,
    config: Union[FitConfig, PipelineConfig, None] = None,
    feature_ids: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """Estimate the fraction of new reads for every feature.

    Args:
        observations: Table with feature_id, mutation_count, site_count,
            multiplicity
        config: Estimator configuration (or a pipeline configuration whose
            ``fit`` section is used); defaults to ``FitConfig()``
        feature_ids: Features to report. Pass the truth table's ids so that
            features without reads are reported as ``insufficient_data``.

    Returns:
        One row per feature with p_high_hat, p_low_hat, fraction_new_hat,
        converged, status, n_reads, neg_log_likelihood, n_iterations and
        strategy
    """
    if config is None:
        config = FitConfig()
    elif isinstance(config, PipelineConfig):
        config = config.fit
    config.validate()

    if config.strategy == Strategy.POOLED:
        return fit_pooled(observations, config, feature_ids)
    return fit_unpooled(observations, config, feature_ids)
