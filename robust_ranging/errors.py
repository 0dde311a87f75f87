"""
Exception types raised by the robust ranging estimators.

Every error derives from ``RobustEstimationError`` so callers can catch the
whole family, and also from the builtin exception that best describes it
(``ValueError`` for bad inputs, ``RuntimeError`` for state problems).
"""


class RobustEstimationError(Exception):
    """Base class of all robust ranging estimation errors."""


class InvalidConfigurationError(RobustEstimationError, ValueError):
    """Sources, fingerprint, quality scores or settings are invalid."""


class LockedError(RobustEstimationError, RuntimeError):
    """The estimator is running and cannot be modified or re-entered."""


class NotReadyError(RobustEstimationError, RuntimeError):
    """``estimate()`` was called before sources and fingerprint were set."""


class GeometricDegeneracyError(RobustEstimationError, ValueError):
    """Source geometry is rank deficient (collinear in 2D, coplanar in 3D)."""


class InsufficientConsensusError(RobustEstimationError, RuntimeError):
    """No candidate model reached the minimum acceptable consensus."""
