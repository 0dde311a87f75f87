"""
MSAC (M-estimator Sample Consensus) strategy.

Sampling and stopping are those of RANSAC, but instead of counting inliers
every reading contributes a truncated quadratic cost:

    cost_i = min(r_i², t²)

so inliers are ranked by how well they fit and outliers add a constant
penalty. This makes the result less sensitive to the choice of threshold.

Reference:
    P. H. S. Torr and A. Zisserman, "MLESAC: A New Robust Estimator with
    Application to Estimating Image Geometry", CVIU, 2000.
"""

from typing import Tuple

import numpy as np

from robust_ranging.estimators.ransac import RANSACStrategy
from robust_ranging.types import RobustMethod


class MSACStrategy(RANSACStrategy):
    """Truncated quadratic cost scoring; score is the negated total cost."""

    method = RobustMethod.MSAC

    def score(self, residuals: np.ndarray) -> Tuple[float, np.ndarray]:
        threshold_sq = self.threshold**2
        sq = residuals**2
        inliers = sq <= threshold_sq
        cost = np.sum(np.where(inliers, sq, threshold_sq))
        return -float(cost), inliers
