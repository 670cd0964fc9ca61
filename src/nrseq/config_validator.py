"""
Configuration validation for NR-seq runs.

Provides validation of configuration parameters with detailed error
reporting, so that malformed hyperparameters fail before any sampling.
"""

from typing import Dict, Any, List, Tuple
import logging
import math
import numbers
from pathlib import Path

from .enums import Strategy
from .exceptions import ConfigurationError

BOUNDED_METHODS = ("L-BFGS-B", "TNC", "SLSQP", "Powell", "Nelder-Mead")


def _is_int(value: Any) -> bool:
    return isinstance(value, numbers.Integral) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, numbers.Real)
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


class ConfigValidator:
    """Validate configuration parameters for simulation and fitting."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self.errors = []
        self.warnings = []

    def validate_config(self, config: Dict[str, Any]) -> Tuple[bool, List[str], List[str]]:
        """Validate complete configuration.

        Args:
            config: Configuration dictionary to validate

        Returns:
            Tuple of (is_valid, errors, warnings)
        """
        self.errors = []
        self.warnings = []

        required_keys = ['run_id', 'seed']
        for key in required_keys:
            if key not in config:
                self.errors.append(f"Missing required configuration key: {key}")

        if 'simulation' in config:
            self._validate_simulation_config(config['simulation'])

        if 'fit' in config:
            self._validate_fit_config(config['fit'])

        self._validate_general_config(config)

        for warning in self.warnings:
            self.logger.warning(warning)

        is_valid = len(self.errors) == 0
        return is_valid, self.errors, self.warnings

    def _validate_positive_int(self, section: Dict[str, Any], prefix: str, key: str) -> None:
        if key not in section:
            return
        value = section[key]
        if not _is_int(value):
            self.errors.append(f"{prefix}.{key} must be an integer")
        elif value < 1:
            self.errors.append(f"{prefix}.{key} must be positive")

    def _validate_probability(self, section: Dict[str, Any], prefix: str, key: str) -> None:
        if key not in section:
            return
        value = section[key]
        if not _is_number(value):
            self.errors.append(f"{prefix}.{key} must be numeric")
        elif not 0.0 < value < 1.0:
            self.errors.append(f"{prefix}.{key} must be strictly between 0.0 and 1.0")

    def _validate_simulation_config(self, sim_config: Dict[str, Any]) -> None:
        """Validate simulation configuration."""
        if not isinstance(sim_config, dict):
            self.errors.append("simulation must be a mapping")
            return

        for key in ['feature_count', 'total_reads', 'read_length']:
            self._validate_positive_int(sim_config, 'simulation', key)

        if 'label_time' in sim_config:
            label_time = sim_config['label_time']
            if not _is_number(label_time):
                self.errors.append("simulation.label_time must be numeric")
            elif label_time <= 0:
                self.errors.append("simulation.label_time must be positive")

        for key in ['p_high', 'p_low']:
            self._validate_probability(sim_config, 'simulation', key)

        p_high = sim_config.get('p_high')
        p_low = sim_config.get('p_low')
        if _is_number(p_high) and _is_number(p_low) and p_high <= p_low:
            self.warnings.append(
                f"simulation.p_high ({p_high}) should exceed simulation.p_low ({p_low})"
            )

        # Log-normal locations may be any real; scales must be positive
        for rate in ['kdeg', 'ksyn']:
            mean_key = f"{rate}_log_mean"
            sd_key = f"{rate}_log_sd"
            if mean_key in sim_config and not _is_number(sim_config[mean_key]):
                self.errors.append(f"simulation.{mean_key} must be numeric")
            if sd_key in sim_config:
                sd = sim_config[sd_key]
                if not _is_number(sd):
                    self.errors.append(f"simulation.{sd_key} must be numeric")
                elif sd <= 0:
                    self.errors.append(f"simulation.{sd_key} must be positive")

        for key in ['site_fraction_alpha', 'site_fraction_beta']:
            if key in sim_config:
                shape = sim_config[key]
                if not _is_number(shape):
                    self.errors.append(f"simulation.{key} must be numeric")
                elif shape <= 0:
                    self.errors.append(f"simulation.{key} must be positive")

        total_reads = sim_config.get('total_reads')
        feature_count = sim_config.get('feature_count')
        if _is_int(total_reads) and _is_int(feature_count) and feature_count > 0:
            if total_reads < 10 * feature_count:
                self.warnings.append(
                    f"simulation.total_reads ({total_reads}) gives fewer than 10 reads per feature on average"
                )

    def _validate_fit_config(self, fit_config: Dict[str, Any]) -> None:
        """Validate estimator configuration."""
        if not isinstance(fit_config, dict):
            self.errors.append("fit must be a mapping")
            return

        if 'strategy' in fit_config:
            strategy = fit_config['strategy']
            if strategy not in [s.value for s in Strategy]:
                self.errors.append("fit.strategy must be 'unpooled' or 'pooled'")

        for key in ['initial_p_high', 'initial_p_low', 'initial_fraction_new']:
            self._validate_probability(fit_config, 'fit', key)

        init_high = fit_config.get('initial_p_high')
        init_low = fit_config.get('initial_p_low')
        if _is_number(init_high) and _is_number(init_low) and init_high <= init_low:
            self.warnings.append("fit.initial_p_high should exceed fit.initial_p_low")

        if 'logit_bounds' in fit_config:
            bounds = fit_config['logit_bounds']
            if not isinstance(bounds, (list, tuple)) or len(bounds) != 2:
                self.errors.append("fit.logit_bounds must be a pair (lower, upper)")
            elif not all(_is_number(b) for b in bounds):
                self.errors.append("fit.logit_bounds must be numeric")
            elif bounds[0] >= bounds[1]:
                self.errors.append("fit.logit_bounds lower bound must be below upper bound")
            else:
                lower, upper = bounds
                for key in ['initial_p_high', 'initial_p_low', 'initial_fraction_new']:
                    value = fit_config.get(key)
                    if _is_number(value) and 0.0 < value < 1.0:
                        theta = math.log(value / (1.0 - value))
                        if not lower <= theta <= upper:
                            self.errors.append(f"fit.{key} lies outside fit.logit_bounds on the logit scale")

        for key in ['max_iterations', 'max_function_evaluations']:
            self._validate_positive_int(fit_config, 'fit', key)

        if 'method' in fit_config and fit_config['method'] not in BOUNDED_METHODS:
            self.errors.append(f"fit.method must be one of {', '.join(BOUNDED_METHODS)}")

        if 'n_jobs' in fit_config:
            n_jobs = fit_config['n_jobs']
            if not _is_int(n_jobs):
                self.errors.append("fit.n_jobs must be an integer")
            elif n_jobs == 0 or n_jobs < -1:
                self.errors.append("fit.n_jobs must be -1 or a positive integer")

    def _validate_general_config(self, config: Dict[str, Any]) -> None:
        """Validate general configuration parameters."""
        if 'run_id' in config:
            run_id = config['run_id']
            if not isinstance(run_id, str):
                self.errors.append("run_id must be a string")
            elif not run_id.strip():
                self.errors.append("run_id cannot be empty")
            elif not run_id.replace('_', '').replace('-', '').isalnum():
                self.warnings.append("run_id should contain only alphanumeric characters, dashes, and underscores")

        if 'seed' in config:
            seed = config['seed']
            if not _is_int(seed):
                self.errors.append("seed must be an integer")
            elif seed < 0:
                self.errors.append("seed must be non-negative")


def validate_config_file(config_path: Path) -> Tuple[bool, List[str], List[str]]:
    """Validate a configuration file.

    Args:
        config_path: Path to configuration YAML file

    Returns:
        Tuple of (is_valid, errors, warnings)

    Raises:
        ConfigurationError: If file cannot be read or parsed
    """
    import yaml

    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in configuration file: {e}") from e
    except (IOError, OSError) as e:
        raise ConfigurationError(f"Cannot read configuration file: {e}") from e

    if not isinstance(config, dict):
        raise ConfigurationError("Configuration file must contain a dictionary")

    validator = ConfigValidator()
    return validator.validate_config(config)
