"""
LMedS (Least Median of Squares) strategy.

Candidates are ranked by the median of their squared residuals over the
whole matched set, so no inlier threshold is needed: the estimate tolerates
up to half of the readings being outliers. Inliers are derived afterwards
from a robust scale estimate of the winning residuals (Rousseeuw):

    σ = 1.4826 · (1 + 5 / (n - k)) · √median(r²)
    inlier  ⇔  r ≤ max(2.5 σ, √stop_threshold)

Reference:
    P. J. Rousseeuw, "Least Median of Squares Regression", Journal of the
    American Statistical Association, 1984.
"""

from typing import Optional, Tuple

import numpy as np

from robust_ranging.estimators.base import Candidate, RobustStrategy, ransac_iterations
from robust_ranging.types import RobustMethod

# Consistency factor of the MAD for Gaussian data
MAD_TO_SIGMA = 1.4826

# Inlier cut in units of the robust scale
INLIER_FACTOR = 2.5

# Median scoring only vouches for half of the readings
MAX_BUDGET_INLIER_RATIO = 0.5


class LMedSStrategy(RobustStrategy):
    """Median squared residual scoring with early stop on a small median."""

    method = RobustMethod.LMEDS

    @property
    def stop_threshold(self) -> float:
        return self.config.stop_threshold

    def robust_scale(self, median_sq: float) -> float:
        """Robust standard deviation of the residuals."""
        dof = self.n_items - self.subset_size
        correction = 1.0 + 5.0 / dof if dof > 0 else 1.0
        return MAD_TO_SIGMA * correction * np.sqrt(median_sq)

    def score(self, residuals: np.ndarray) -> Tuple[float, np.ndarray]:
        median_sq = float(np.median(residuals**2))
        if not np.isfinite(median_sq):
            return -np.inf, np.zeros(residuals.shape[0], dtype=bool)

        cut = max(INLIER_FACTOR * self.robust_scale(median_sq), np.sqrt(self.stop_threshold))
        inliers = residuals <= cut
        return -median_sq, inliers

    def remaining_budget(self, best: Candidate, current: int) -> int:
        """Budget from the inlier ratio, capped at the 50% breakdown point."""
        ratio = min(best.n_inliers / self.n_items, MAX_BUDGET_INLIER_RATIO)
        needed = ransac_iterations(
            ratio, self.subset_size, self.config.confidence, self.config.max_iterations
        )
        return min(current, needed)

    def should_stop(self, best: Candidate) -> bool:
        return -best.score <= self.stop_threshold

    def is_acceptable(self, best: Optional[Candidate]) -> bool:
        return best is not None and np.isfinite(best.score)
