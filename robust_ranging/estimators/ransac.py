"""
RANSAC (Random Sample Consensus) strategy.

Each iteration fits a position to a uniformly drawn subset and counts the
readings whose distance residual is within a fixed threshold. The candidate
with most inliers wins, and the iteration budget shrinks as better inlier
ratios are found.

Reference:
    M. A. Fischler and R. C. Bolles, "Random Sample Consensus: A Paradigm for
    Model Fitting with Applications to Image Analysis and Automated
    Cartography", Communications of the ACM, 1981.
"""

from typing import Tuple

import numpy as np

from robust_ranging.estimators.base import RobustStrategy
from robust_ranging.types import RobustMethod


class RANSACStrategy(RobustStrategy):
    """Inlier-count scoring with a fixed distance threshold."""

    method = RobustMethod.RANSAC

    @property
    def threshold(self) -> float:
        return self.config.threshold

    def score(self, residuals: np.ndarray) -> Tuple[float, np.ndarray]:
        inliers = residuals <= self.threshold
        return float(np.count_nonzero(inliers)), inliers
