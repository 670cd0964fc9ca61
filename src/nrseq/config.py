"""Configuration management for NR-seq simulation and fitting."""

from __future__ import annotations

import hashlib
import json
import numpy as np
import yaml
from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import Any, Dict, Tuple

from .config_validator import ConfigValidator
from .exceptions import InvalidConfigurationError


def _to_builtin(value: Any) -> Any:
    """Replace numpy scalars with plain Python values, recursively."""
    if isinstance(value, dict):
        return {key: _to_builtin(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(_to_builtin(item) for item in value)
    if isinstance(value, np.generic):
        return value.item()
    return value


def _raise_on_errors(errors: list[str], section: str) -> None:
    if errors:
        msg = f"invalid {section} configuration: " + "; ".join(errors)
        raise InvalidConfigurationError(msg, {"errors": list(errors)})


@dataclass
class SimulationConfig:
    """Configuration for the read simulator.

    Rate constants are drawn log-normally: ``log(kdeg) ~ N(kdeg_log_mean,
    kdeg_log_sd)`` and likewise for ``ksyn``. The fraction of mutable sites
    per read is drawn from ``Beta(site_fraction_alpha, site_fraction_beta)``.
    """
    feature_count: int = 500
    total_reads: int = 2_000_000
    read_length: int = 200
    label_time: float = 2.0
    p_high: float = 0.05
    p_low: float = 0.002
    kdeg_log_mean: float = -1.9
    kdeg_log_sd: float = 0.7
    ksyn_log_mean: float = 2.3
    ksyn_log_sd: float = 0.7
    site_fraction_alpha: float = 25.0
    site_fraction_beta: float = 75.0

    def validate(self) -> None:
        """Raise ``InvalidConfigurationError`` listing every problem found."""
        validator = ConfigValidator()
        validator._validate_simulation_config(asdict(self))
        _raise_on_errors(validator.errors, "simulation")


@dataclass
class FitConfig:
    """Configuration for the mixture-model estimator."""
    strategy: str = "unpooled"
    initial_p_high: float = 0.05
    initial_p_low: float = 0.002
    initial_fraction_new: float = 0.5
    logit_bounds: Tuple[float, float] = (-10.0, 10.0)
    max_iterations: int = 1000
    max_function_evaluations: int = 15000
    method: str = "L-BFGS-B"
    n_jobs: int = 1

    def __post_init__(self) -> None:
        # YAML hands sequences back as lists
        self.logit_bounds = tuple(self.logit_bounds)

    def validate(self) -> None:
        """Raise ``InvalidConfigurationError`` listing every problem found."""
        validator = ConfigValidator()
        validator._validate_fit_config(asdict(self))
        _raise_on_errors(validator.errors, "fit")


@dataclass
class PipelineConfig:
    """Main run configuration."""
    run_id: str
    seed: int
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    fit: FitConfig = field(default_factory=FitConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to a dictionary of plain Python values."""
        return _to_builtin(asdict(self))

    def config_hash(self) -> str:
        """Compute deterministic hash of configuration."""
        config_str = json.dumps(self.to_dict(), sort_keys=True)
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    def validate(self) -> None:
        validator = ConfigValidator()
        is_valid, errors, _ = validator.validate_config(self.to_dict())
        if not is_valid:
            _raise_on_errors(errors, "pipeline")


def config_from_dict(data: Dict[str, Any]) -> PipelineConfig:
    """Build a ``PipelineConfig`` from a plain mapping."""
    try:
        return PipelineConfig(
            run_id=data['run_id'],
            seed=data['seed'],
            simulation=SimulationConfig(**data.get('simulation', {})),
            fit=FitConfig(**data.get('fit', {})),
        )
    except (KeyError, TypeError) as exc:
        raise InvalidConfigurationError(f"malformed configuration: {exc}") from exc


def load_config(path: str | Path) -> PipelineConfig:
    """Load configuration from YAML file."""
    with open(path, 'r') as f:
        data = yaml.safe_load(f)

    if not isinstance(data, dict):
        raise InvalidConfigurationError("Configuration file must contain a dictionary")
    return config_from_dict(data)


def dump_config(config: PipelineConfig, path: str | Path) -> None:
    """Save configuration to YAML file."""
    payload = config.to_dict()
    payload['fit']['logit_bounds'] = list(payload['fit']['logit_bounds'])
    with open(path, 'w') as f:
        yaml.safe_dump(payload, f, default_flow_style=False, sort_keys=False)
