"""
Test configuration and fixtures for nrseq tests.
"""

import logging
import shutil
import tempfile
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from nrseq.config import FitConfig, SimulationConfig
from nrseq.simulate import aggregate_reads, build_features, generate_reads, simulate_dataset


@pytest.fixture
def seed():
    """Fixed random seed for reproducible tests."""
    return 42


@pytest.fixture
def rng(seed):
    """Seeded generator."""
    return np.random.default_rng(seed)


@pytest.fixture
def temp_dir():
    """Temporary directory for test outputs."""
    temp_dir = tempfile.mkdtemp()
    yield Path(temp_dir)
    shutil.rmtree(temp_dir)


@pytest.fixture
def project_root():
    return Path(__file__).parent.parent


@pytest.fixture
def small_sim_config():
    """Small simulation that runs in well under a second."""
    return SimulationConfig(feature_count=20, total_reads=20000, read_length=100)


@pytest.fixture
def small_dataset(small_sim_config, seed):
    return simulate_dataset(small_sim_config, np.random.default_rng(seed))


@pytest.fixture
def fit_config():
    return FitConfig()


@pytest.fixture
def two_feature_truth():
    """One feature with f = 0.5 and one with f = 0.2 at label_time 2."""
    label_time = 2.0
    kdeg = [np.log(2.0) / label_time, -np.log(0.8) / label_time]
    return build_features(kdeg, [10.0, 10.0], 0.25, label_time)


def make_observations(truth, read_counts, seed=7, read_length=200, p_high=0.05, p_low=0.002):
    """Generate and aggregate reads for explicit per-feature read counts."""
    rng = np.random.default_rng(seed)
    reads = generate_reads(truth, read_counts, read_length, p_high, p_low, rng)
    return aggregate_reads(reads)


def expand_observations(observations: pd.DataFrame) -> pd.DataFrame:
    """Expand aggregated rows back to one row per read."""
    repeats = observations["multiplicity"].to_numpy()
    return observations.loc[observations.index.repeat(repeats), ["feature_id", "mutation_count", "site_count"]]


@pytest.fixture
def observations_for():
    """Factory fixture wrapping ``make_observations``."""
    return make_observations


@pytest.fixture
def expand():
    """Factory fixture wrapping ``expand_observations``."""
    return expand_observations


@pytest.fixture
def restore_nrseq_logger():
    """Undo handler and propagation changes made by ``setup_logging``."""
    logger = logging.getLogger("nrseq")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield logger
    for handler in logger.handlers:
        if handler not in handlers:
            handler.close()
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate
