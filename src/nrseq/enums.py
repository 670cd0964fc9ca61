"""Enumerations for constrained string values used by the estimator.

``StrEnum`` members compare equal to their string values, so result tables
can store plain strings while code keeps the type safety:

    >>> from nrseq.enums import FitStatus
    >>> FitStatus.CONVERGED == "converged"
    True
"""

from enum import StrEnum


class FitStatus(StrEnum):
    """Outcome of a per-feature fit.

    Attributes:
        CONVERGED: Optimizer met its stopping criterion
        NOT_CONVERGED: Optimizer exhausted its budget or ended on a non-finite objective
        INSUFFICIENT_DATA: No read of the feature covers a mutable site; not fit
    """

    CONVERGED = "converged"
    NOT_CONVERGED = "not_converged"
    INSUFFICIENT_DATA = "insufficient_data"


class Strategy(StrEnum):
    """Estimation strategy.

    Attributes:
        UNPOOLED: Fit mutation rates and fraction new for every feature
        POOLED: Share mutation rates across features, fit only fraction new
    """

    UNPOOLED = "unpooled"
    POOLED = "pooled"
