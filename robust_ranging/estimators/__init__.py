"""
Robust sampling strategies for ranging positioning.

Available strategies:
    - RANSAC: Random sample consensus (inlier count, fixed threshold)
    - LMedS: Least median of squares (no threshold)
    - MSAC: M-estimator sample consensus (truncated quadratic cost)
    - PROSAC: Progressive sample consensus (quality-ordered sampling)
    - PROMedS: Progressive least median of squares
"""

from robust_ranging.config import RobustEstimatorConfig
from robust_ranging.estimators.base import Candidate, RobustStrategy, ransac_iterations
from robust_ranging.estimators.lmeds import LMedSStrategy
from robust_ranging.estimators.msac import MSACStrategy
from robust_ranging.estimators.promeds import PROMedSStrategy
from robust_ranging.estimators.prosac import PROSACStrategy, ProgressiveSampling
from robust_ranging.estimators.ransac import RANSACStrategy
from robust_ranging.estimators.sampler import RobustSampler, SamplerResult
from robust_ranging.types import RobustMethod

STRATEGIES = {
    RobustMethod.RANSAC: RANSACStrategy,
    RobustMethod.LMEDS: LMedSStrategy,
    RobustMethod.MSAC: MSACStrategy,
    RobustMethod.PROSAC: PROSACStrategy,
    RobustMethod.PROMEDS: PROMedSStrategy,
}


def create_strategy(
    method: RobustMethod, config: RobustEstimatorConfig, subset_size: int
) -> RobustStrategy:
    """Instantiate the strategy implementing ``method``."""
    return STRATEGIES[RobustMethod(method)](config, subset_size)


__all__ = [
    "Candidate",
    "RobustStrategy",
    "ransac_iterations",
    "RANSACStrategy",
    "LMedSStrategy",
    "MSACStrategy",
    "PROSACStrategy",
    "PROMedSStrategy",
    "ProgressiveSampling",
    "RobustSampler",
    "SamplerResult",
    "STRATEGIES",
    "create_strategy",
]
