"""
PROMedS (Progressive Least Median of Squares) strategy.

Combines the quality-ordered progressive sampling of PROSAC with the
threshold-free median scoring of LMedS.
"""

from robust_ranging.estimators.lmeds import LMedSStrategy
from robust_ranging.estimators.prosac import ProgressiveSampling
from robust_ranging.types import RobustMethod


class PROMedSStrategy(ProgressiveSampling, LMedSStrategy):
    """Progressive sampling with median squared residual scoring."""

    method = RobustMethod.PROMEDS
