"""
Base classes for robust sampling strategies.

A strategy decides how preliminary subsets are drawn, how a candidate model
is scored against every reading, which of two candidates is better and how
many iterations remain. The iteration loop itself lives in
``robust_ranging.estimators.sampler.RobustSampler`` and is shared by all
strategies.
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from robust_ranging.config import RobustEstimatorConfig
from robust_ranging.types import RobustMethod


@dataclass
class Candidate:
    """One position hypothesis fit from a preliminary subset.

    Attributes:
        position: Position fit from the subset, shape (d,).
        subset: Sorted matched-set indices the position was fit from.
        residuals: Absolute distance residuals over the whole matched set.
        score: Scalar quality; larger is better for every strategy.
        inliers: Inlier mask over the matched set.
        iteration: 1-based iteration that produced this candidate.
    """

    position: np.ndarray
    subset: Tuple[int, ...]
    residuals: np.ndarray
    score: float
    inliers: np.ndarray
    iteration: int

    @property
    def n_inliers(self) -> int:
        return int(np.count_nonzero(self.inliers))


def ransac_iterations(
    inlier_ratio: float, subset_size: int, confidence: float, max_iterations: int
) -> int:
    """
    Number of iterations needed to draw one outlier-free subset.

        N = log(1 - confidence) / log(1 - w^k)

    Args:
        inlier_ratio: Fraction w of inliers in the matched set.
        subset_size: Subset size k.
        confidence: Desired probability of drawing an outlier-free subset.
        max_iterations: Upper bound returned when w^k vanishes.

    Returns:
        Iteration count clamped to [1, max_iterations].
    """
    if inlier_ratio >= 1.0:
        return 1
    p_good = inlier_ratio**subset_size
    if p_good <= 0.0:
        return max_iterations
    denominator = math.log(1.0 - p_good)
    if denominator >= 0.0:
        return max_iterations
    n = math.ceil(math.log(1.0 - confidence) / denominator)
    return int(min(max(n, 1), max_iterations))


class RobustStrategy(ABC):
    """
    Abstract robust sampling strategy.

    Subclasses implement ``score``; the defaults below give uniform random
    sampling with a RANSAC-style adaptive iteration budget.
    """

    method: RobustMethod

    def __init__(self, config: RobustEstimatorConfig, subset_size: int):
        self.config = config
        self.subset_size = subset_size
        self.n_items = 0

    def prepare(self, n_items: int, quality_order: Optional[np.ndarray] = None) -> None:
        """
        Reset per-run state before the first iteration.

        Args:
            n_items: Size of the matched set.
            quality_order: Matched-set indices sorted by decreasing quality.
                Ignored by non-progressive strategies.
        """
        self.n_items = n_items

    def select_subset(self, rng: np.random.Generator, iteration: int) -> np.ndarray:
        """Draw a sorted preliminary subset uniformly without replacement."""
        subset = rng.choice(self.n_items, size=self.subset_size, replace=False)
        return np.sort(subset)

    @abstractmethod
    def score(self, residuals: np.ndarray) -> Tuple[float, np.ndarray]:
        """
        Score a candidate from its residuals over the whole matched set.

        Args:
            residuals: Absolute distance residuals, shape (n,).

        Returns:
            Tuple of (score, inlier_mask). Larger scores are better.
        """
        pass

    def is_better(self, candidate: Candidate, best: Optional[Candidate]) -> bool:
        """Compare by score; equal scores prefer the lexicographically earlier subset."""
        if best is None:
            return True
        if candidate.score != best.score:
            return candidate.score > best.score
        return candidate.subset < best.subset

    def initial_budget(self) -> int:
        """Iteration budget fixed before the loop starts."""
        max_iterations = self.config.max_iterations
        if self.config.max_outlier_ratio is None:
            return max_iterations
        return ransac_iterations(
            1.0 - self.config.max_outlier_ratio,
            self.subset_size,
            self.config.confidence,
            max_iterations,
        )

    def remaining_budget(self, best: Candidate, current: int) -> int:
        """New iteration budget after ``best`` improved; never increases."""
        needed = ransac_iterations(
            best.n_inliers / self.n_items,
            self.subset_size,
            self.config.confidence,
            self.config.max_iterations,
        )
        return min(current, needed)

    def should_stop(self, best: Candidate) -> bool:
        """Early-termination test evaluated after each improvement."""
        return False

    def is_acceptable(self, best: Optional[Candidate]) -> bool:
        """Whether the best candidate reached the minimum consensus."""
        return best is not None and best.n_inliers >= self.subset_size

    def refinement_inliers(self, best: Candidate) -> np.ndarray:
        """Inlier mask used for the final refinement fit."""
        return best.inliers
