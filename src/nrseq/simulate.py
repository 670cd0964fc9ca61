"""Simulation of NR-seq read data with known kinetic ground truth.

The generator works in three steps:

1. per-feature kinetic and compositional parameters are sampled
   (``sample_features``),
2. a fixed read budget is split across features in proportion to their
   steady-state relative abundance (``allocate_reads``),
3. every read gets a mutable-site count, a latent new/old label and a
   mutation count from three chained binomial draws (``generate_reads``).

Reads are folded into (feature, mutation count, site count, multiplicity)
observations by ``aggregate_reads``; ``simulate_dataset`` runs the whole
chain and drops the per-read table once it has been aggregated.
"""

from __future__ import annotations

import logging
from typing import List, NamedTuple, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .config import PipelineConfig, SimulationConfig
from .exceptions import InvalidConfigurationError, ValidationError
from .logging_config import time_it
from .schemas import OBSERVATION_SCHEMA, READ_SCHEMA, TRUTH_SCHEMA

logger = logging.getLogger(__name__)

OBSERVATION_COLUMNS = ["feature_id", "mutation_count", "site_count", "multiplicity"]


class SimulationResult(NamedTuple):
    observations: pd.DataFrame
    truth: pd.DataFrame


def feature_ids_for(count: int) -> List[str]:
    """Zero-padded identifiers ``feature_00001`` ... for ``count`` features."""
    width = max(5, len(str(count)))
    return [f"feature_{i:0{width}d}" for i in range(1, count + 1)]


def build_features(
    kdeg: Sequence[float],
    ksyn: Sequence[float],
    mutable_site_fraction: Union[float, Sequence[float]],
    label_time: float,
    feature_ids: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """Build a truth table from explicit per-feature parameters.

    Args:
        kdeg: Degradation rate constants (positive)
        ksyn: Synthesis rate constants (positive)
        mutable_site_fraction: Probability a read position is mutable, scalar
            or one value per feature
        label_time: Duration of the labeling period (positive)
        feature_ids: Optional identifiers, generated when omitted

    Returns:
        DataFrame with one row per feature and the derived abundance and
        fraction-new columns
    """
    kdeg = np.asarray(kdeg, dtype=np.float64)
    ksyn = np.asarray(ksyn, dtype=np.float64)
    n_features = kdeg.size
    site_fraction = np.broadcast_to(
        np.asarray(mutable_site_fraction, dtype=np.float64), (n_features,)
    ).copy()

    if ksyn.size != n_features:
        raise InvalidConfigurationError("kdeg and ksyn must have the same length")
    if n_features == 0:
        raise InvalidConfigurationError("at least one feature is required")
    if not np.all(np.isfinite(kdeg)) or np.any(kdeg <= 0):
        raise InvalidConfigurationError("kdeg must be finite and positive")
    if not np.all(np.isfinite(ksyn)) or np.any(ksyn <= 0):
        raise InvalidConfigurationError("ksyn must be finite and positive")
    if np.any((site_fraction < 0) | (site_fraction > 1)):
        raise InvalidConfigurationError("mutable_site_fraction must lie in [0, 1]")
    if not label_time > 0:
        raise InvalidConfigurationError("label_time must be positive")

    if feature_ids is None:
        feature_ids = feature_ids_for(n_features)
    elif len(feature_ids) != n_features:
        raise InvalidConfigurationError("feature_ids must match the number of features")

    abundance = ksyn / kdeg
    truth = pd.DataFrame(
        {
            "feature_id": list(feature_ids),
            "kdeg": kdeg,
            "ksyn": ksyn,
            "steady_state_abundance": abundance,
            "relative_abundance": abundance / abundance.sum(),
            "mutable_site_fraction": site_fraction,
            # 1 - exp(-x) without cancellation for small kdeg * t
            "fraction_new_truth": -np.expm1(-kdeg * label_time),
        }
    )
    TRUTH_SCHEMA.validate(truth)
    return truth


def sample_features(config: SimulationConfig, rng: np.random.Generator) -> pd.DataFrame:
    """Draw ``config.feature_count`` independent features.

    ``kdeg`` and ``ksyn`` are log-normal, the mutable-site fraction is Beta
    distributed. Hyperparameters are validated before any draw.
    """
    config.validate()
    n = config.feature_count

    kdeg = rng.lognormal(mean=config.kdeg_log_mean, sigma=config.kdeg_log_sd, size=n)
    ksyn = rng.lognormal(mean=config.ksyn_log_mean, sigma=config.ksyn_log_sd, size=n)
    site_fraction = rng.beta(config.site_fraction_alpha, config.site_fraction_beta, size=n)

    return build_features(kdeg, ksyn, site_fraction, config.label_time)


def allocate_reads(
    features: Union[pd.DataFrame, Sequence[float]],
    total_reads: int,
    rng: np.random.Generator,
) -> np.ndarray:
    """Split ``total_reads`` across features with one multinomial draw.

    Args:
        features: Truth table (its ``relative_abundance`` column is used) or
            the relative abundances themselves
        total_reads: Read budget, distributed exactly
        rng: Seeded random number generator

    Returns:
        Integer read count per feature, summing to ``total_reads``
    """
    if isinstance(features, pd.DataFrame):
        weights = features["relative_abundance"].to_numpy(dtype=np.float64)
    else:
        weights = np.asarray(features, dtype=np.float64)

    if total_reads < 0:
        raise InvalidConfigurationError("total_reads must be non-negative")
    if weights.size == 0 or not np.all(np.isfinite(weights)) or np.any(weights < 0):
        raise InvalidConfigurationError("relative abundances must be finite and non-negative")
    total_weight = weights.sum()
    if total_weight <= 0:
        raise InvalidConfigurationError("relative abundances must not all be zero")

    # Renormalise so round-off cannot push the probabilities past 1
    probabilities = weights / total_weight
    counts = rng.multinomial(int(total_reads), probabilities)

    n_empty = int(np.sum(counts == 0))
    if n_empty:
        logger.debug(f"{n_empty} features received no reads")
    return counts.astype(np.int64)


def generate_reads(
    features: pd.DataFrame,
    read_counts: Sequence[int],
    read_length: int,
    p_high: float,
    p_low: float,
    rng: np.random.Generator,
) -> pd.DataFrame:
    """Generate per-read observations for every feature at once.

    Each read draws ``site_count ~ Binomial(read_length, mutable_site_fraction)``,
    ``is_new ~ Binomial(1, fraction_new_truth)`` and
    ``mutation_count ~ Binomial(site_count, p_high if is_new else p_low)``.
    The draws are made on whole arrays, one entry per read.

    Returns:
        DataFrame with columns feature_id, site_count, is_new, mutation_count
    """
    counts = np.asarray(read_counts, dtype=np.int64)
    if counts.shape != (len(features),):
        raise ValidationError("read_counts must have one entry per feature")
    if np.any(counts < 0):
        raise ValidationError("read_counts must be non-negative")
    if read_length < 1:
        raise InvalidConfigurationError("read_length must be positive")
    if not (0.0 < p_low < 1.0 and 0.0 < p_high < 1.0):
        raise InvalidConfigurationError("p_high and p_low must lie in (0, 1)")

    feature_index = np.repeat(np.arange(len(features)), counts)
    site_fraction = features["mutable_site_fraction"].to_numpy(dtype=np.float64)
    fraction_new = features["fraction_new_truth"].to_numpy(dtype=np.float64)

    site_count = rng.binomial(read_length, site_fraction[feature_index])
    is_new = rng.binomial(1, fraction_new[feature_index]).astype(bool)
    mutation_rate = np.where(is_new, p_high, p_low)
    # Zero-site reads draw Binomial(0, p) == 0
    mutation_count = rng.binomial(site_count, mutation_rate)

    reads = pd.DataFrame(
        {
            "feature_id": features["feature_id"].to_numpy()[feature_index],
            "site_count": site_count.astype(np.int64),
            "is_new": is_new,
            "mutation_count": mutation_count.astype(np.int64),
        }
    )
    READ_SCHEMA.validate(reads)
    return reads


def aggregate_reads(reads: pd.DataFrame) -> pd.DataFrame:
    """Collapse reads to (feature, mutation_count, site_count) multiplicities."""
    if reads.empty:
        return pd.DataFrame(
            {
                "feature_id": pd.Series([], dtype=object),
                "mutation_count": pd.Series([], dtype=np.int64),
                "site_count": pd.Series([], dtype=np.int64),
                "multiplicity": pd.Series([], dtype=np.int64),
            }
        )

    observations = (
        reads.groupby(["feature_id", "mutation_count", "site_count"], sort=True)
        .size()
        .reset_index(name="multiplicity")
    )
    observations["multiplicity"] = observations["multiplicity"].astype(np.int64)
    return observations[OBSERVATION_COLUMNS]


def simulate_from_features(
    truth: pd.DataFrame,
    config: SimulationConfig,
    rng: np.random.Generator,
) -> SimulationResult:
    """Allocate, generate and aggregate reads for a given truth table."""
    config.validate()
    read_counts = allocate_reads(truth, config.total_reads, rng)
    reads = generate_reads(
        truth, read_counts, config.read_length, config.p_high, config.p_low, rng
    )
    observations = aggregate_reads(reads)
    n_reads = len(reads)
    del reads

    truth = truth.assign(allocated_read_count=read_counts)
    OBSERVATION_SCHEMA.validate(observations)
    logger.info(
        f"Simulated {n_reads:,} reads over {len(truth)} features "
        f"({len(observations):,} distinct observations)"
    )
    return SimulationResult(observations=observations, truth=truth)


@time_it("NR-seq simulation")
def simulate_dataset(
    config: Union[SimulationConfig, PipelineConfig],
    rng: np.random.Generator,
) -> SimulationResult:
    """Run the full simulator: sample features, allocate reads, generate, aggregate.

    Args:
        config: Simulation configuration, or a pipeline configuration whose
            ``simulation`` section is used
        rng: Seeded random number generator

    Returns:
        ``SimulationResult`` with the observation table and the truth table
        (including ``allocated_read_count``)

    Raises:
        InvalidConfigurationError: If the configuration is out of domain.
            Raised before any random draw.
    """
    if isinstance(config, PipelineConfig):
        config = config.simulation
    config.validate()

    truth = sample_features(config, rng)
    return simulate_from_features(truth, config, rng)
