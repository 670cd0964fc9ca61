"""
Custom exceptions for the nrseq simulation and inference core.

This module provides specific exception types so that configuration
problems can be told apart from per-feature statistical issues.
"""


class NRSeqError(Exception):
    """Base exception for nrseq errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.details = details or {}


class ValidationError(NRSeqError):
    """Raised when input validation fails."""
    pass


class ConfigurationError(NRSeqError):
    """Raised when configuration is invalid."""
    pass


class InvalidConfigurationError(ConfigurationError):
    """Raised when hyperparameters are malformed or out of domain."""
    pass


class StatisticalError(NRSeqError):
    """Raised when statistical estimation fails."""
    pass


class InsufficientDataError(StatisticalError):
    """Raised when a feature has no reads to fit."""
    pass


class EstimationError(StatisticalError):
    """Raised when an optimizer returns a non-finite objective."""
    pass
