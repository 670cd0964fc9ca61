"""nrseq: NR-seq read simulator and fraction-new mixture-model estimator."""

from __future__ import annotations

__version__ = "0.1.0"

# Simulation
from .simulate import (
    SimulationResult,
    build_features,
    sample_features,
    allocate_reads,
    generate_reads,
    aggregate_reads,
    simulate_dataset,
    simulate_from_features,
)

# Estimation
from .likelihood import MixtureLikelihood
from .estimate import (
    PooledRates,
    fit_fraction_new,
    fit_pooled,
    fit_pooled_rates,
    fit_unpooled,
    resolve_label_switch,
)
from .metrics import (
    accuracy_summary,
    add_kinetic_estimates,
    compare_to_truth,
    coverage_stratified_error,
    kdeg_from_fraction_new,
)

# Experiment runs
from .pipeline import ExperimentResult, run_experiment

# Configuration and determinism
from .config import FitConfig, PipelineConfig, SimulationConfig, load_config, dump_config
from .enums import FitStatus, Strategy
from .rng import choose_rng

__all__ = [
    "__version__",
    # Simulation
    "SimulationResult",
    "build_features",
    "sample_features",
    "allocate_reads",
    "generate_reads",
    "aggregate_reads",
    "simulate_dataset",
    "simulate_from_features",
    # Estimation
    "MixtureLikelihood",
    "PooledRates",
    "fit_fraction_new",
    "fit_pooled",
    "fit_pooled_rates",
    "fit_unpooled",
    "resolve_label_switch",
    # Evaluation
    "accuracy_summary",
    "add_kinetic_estimates",
    "compare_to_truth",
    "coverage_stratified_error",
    "kdeg_from_fraction_new",
    # Experiment runs
    "ExperimentResult",
    "run_experiment",
    # Configuration
    "FitConfig",
    "PipelineConfig",
    "SimulationConfig",
    "load_config",
    "dump_config",
    "FitStatus",
    "Strategy",
    "choose_rng",
]
