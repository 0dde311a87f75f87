"""
Robust ranging position estimation facade.

Submodules:
    estimator: 2D/3D robust position estimators and their lifecycle
    listener: Estimation event callbacks
    quality: Source/reading matching and quality-score combination
    factory: Construction by dimension and method
"""

from robust_ranging.position.estimator import (
    RobustRangingPositionEstimator,
    RobustRangingPositionEstimator2D,
    RobustRangingPositionEstimator3D,
)
from robust_ranging.position.factory import (
    create_robust_ranging_estimator,
    estimator_class,
)
from robust_ranging.position.listener import PositionEstimatorListener
from robust_ranging.position.quality import (
    build_matched_set,
    combine_quality_scores,
    effective_distance_std,
    progressive_order,
    validate_quality_scores,
)

__all__ = [
    "RobustRangingPositionEstimator",
    "RobustRangingPositionEstimator2D",
    "RobustRangingPositionEstimator3D",
    "create_robust_ranging_estimator",
    "estimator_class",
    "PositionEstimatorListener",
    "build_matched_set",
    "combine_quality_scores",
    "effective_distance_std",
    "progressive_order",
    "validate_quality_scores",
]
