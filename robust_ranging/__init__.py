"""Robust position estimation from ranging readings.

This package estimates the position of a device from distances to radio
sources (beacons, access points, UWB anchors) with known positions, while
rejecting corrupted distances:
- lateration: Linear and Gauss-Newton lateration solver
- estimators: RANSAC, LMedS, MSAC, PROSAC and PROMedS sampling strategies
- position: 2D/3D estimator facade, listeners and quality scores
"""

from robust_ranging.config import (
    DEFAULT_ROBUST_METHOD,
    RobustEstimatorConfig,
)
from robust_ranging.errors import (
    GeometricDegeneracyError,
    InsufficientConsensusError,
    InvalidConfigurationError,
    LockedError,
    NotReadyError,
    RobustEstimationError,
)
from robust_ranging.lateration import LaterationResult, LaterationSolver
from robust_ranging.position import (
    PositionEstimatorListener,
    RobustRangingPositionEstimator,
    RobustRangingPositionEstimator2D,
    RobustRangingPositionEstimator3D,
    create_robust_ranging_estimator,
)
from robust_ranging.types import (
    EstimatorState,
    LocatedSource,
    PositionEstimate,
    RangingFingerprint,
    RangingReading,
    RobustMethod,
)

__version__ = "0.1.0"

__all__ = [
    # Types
    "RobustMethod",
    "EstimatorState",
    "LocatedSource",
    "RangingReading",
    "RangingFingerprint",
    "PositionEstimate",
    # Configuration
    "RobustEstimatorConfig",
    "DEFAULT_ROBUST_METHOD",
    # Errors
    "RobustEstimationError",
    "InvalidConfigurationError",
    "LockedError",
    "NotReadyError",
    "GeometricDegeneracyError",
    "InsufficientConsensusError",
    # Solver
    "LaterationSolver",
    "LaterationResult",
    # Estimators
    "PositionEstimatorListener",
    "RobustRangingPositionEstimator",
    "RobustRangingPositionEstimator2D",
    "RobustRangingPositionEstimator3D",
    "create_robust_ranging_estimator",
]
