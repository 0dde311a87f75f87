"""Construction of robust ranging position estimators by dimension."""

from typing import Type

from robust_ranging.config import DEFAULT_ROBUST_METHOD
from robust_ranging.errors import InvalidConfigurationError
from robust_ranging.position.estimator import (
    RobustRangingPositionEstimator,
    RobustRangingPositionEstimator2D,
    RobustRangingPositionEstimator3D,
)
from robust_ranging.types import RobustMethod

ESTIMATORS = {
    2: RobustRangingPositionEstimator2D,
    3: RobustRangingPositionEstimator3D,
}


def estimator_class(dimension: int) -> Type[RobustRangingPositionEstimator]:
    """Estimator class handling ``dimension``."""
    try:
        return ESTIMATORS[dimension]
    except KeyError:
        raise InvalidConfigurationError(
            f"dimension must be 2 or 3, got {dimension}"
        ) from None


def create_robust_ranging_estimator(
    dimension: int = 2,
    method: RobustMethod = DEFAULT_ROBUST_METHOD,
    **kwargs,
) -> RobustRangingPositionEstimator:
    """
    Create a robust ranging position estimator.

    Args:
        dimension: 2 or 3.
        method: Robust method. Defaults to PROMedS.
        **kwargs: Forwarded to the estimator constructor (sources,
            fingerprint, quality scores, listener, config, seed).

    Returns:
        RobustRangingPositionEstimator2D or RobustRangingPositionEstimator3D.

    Raises:
        InvalidConfigurationError: If the dimension is not 2 or 3, or the
            keyword arguments are invalid.

    Example:
        >>> estimator = create_robust_ranging_estimator(3, RobustMethod.MSAC)
        >>> estimator.min_required_sources
        4
    """
    return estimator_class(dimension)(method=method, **kwargs)
