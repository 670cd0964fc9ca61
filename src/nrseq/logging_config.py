"""
Logging configuration for nrseq.

Provides console/file logging setup and timing helpers used around the
simulation and fitting entry points.
"""

import functools
import logging
import time
from pathlib import Path
from typing import Callable, Optional, Union
import sys

LOGGER_NAME = "nrseq"


class PerformanceLogger:
    """Context manager for performance monitoring."""

    def __init__(self, logger: logging.Logger, operation: str):
        self.logger = logger
        self.operation = operation
        self.start_time: Optional[float] = None
        self.duration: Optional[float] = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        self.logger.info(f"Starting {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            self.duration = time.perf_counter() - self.start_time
            if exc_type is None:
                self.logger.info(f"Completed {self.operation} in {self.duration:.3f}s")
            else:
                self.logger.error(f"Failed {self.operation} after {self.duration:.3f}s: {exc_val}")
        return False


def time_it(operation: str = None):
    """Decorator for automatic performance logging."""
    def decorator(func: Callable) -> Callable:
        op_name = operation or f"{func.__module__}.{func.__name__}"

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            logger = logging.getLogger(func.__module__)
            with PerformanceLogger(logger, op_name):
                return func(*args, **kwargs)
        return wrapper
    return decorator


DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _handler(handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    level: Union[str, int] = "INFO",
    log_file: Optional[Path] = None,
    console_output: bool = True,
    format_string: Optional[str] = None
) -> logging.Logger:
    """Attach console and/or file handlers to the ``nrseq`` logger.

    Existing handlers are replaced, so repeated calls do not duplicate
    output. Unknown level names fall back to INFO.

    Args:
        level: Level name (DEBUG, INFO, ...) or numeric level
        log_file: Optional path to a log file; parent directories are created
        console_output: Whether to log to stdout
        format_string: Custom format string

    Returns:
        The configured ``nrseq`` logger
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    formatter = logging.Formatter(format_string or DEFAULT_FORMAT)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()

    if console_output:
        logger.addHandler(_handler(logging.StreamHandler(sys.stdout), level, formatter))
    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.addHandler(
            _handler(logging.FileHandler(log_file, encoding='utf-8'), level, formatter)
        )

    # Records are handled here; do not pass them on to the root logger
    logger.propagate = False
    return logger


def log_system_info(logger: logging.Logger) -> None:
    """Log interpreter and numerical stack versions alongside a run."""
    import platform

    import numpy
    import pandas
    import polars
    import scipy

    logger.info(f"Platform: {platform.platform()}, Python {platform.python_version()}")
    logger.info(
        f"NumPy {numpy.__version__}, pandas {pandas.__version__}, "
        f"SciPy {scipy.__version__}, polars {polars.__version__}"
    )
