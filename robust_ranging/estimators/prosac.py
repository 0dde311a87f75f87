"""
PROSAC (Progressive Sample Consensus) strategy.

Readings are sorted once by decreasing quality score. Subsets are drawn from
a growing prefix of that order, so readings believed to be reliable are
tried first; once the prefix covers the whole set, sampling becomes uniform
as in RANSAC. Scoring is the RANSAC inlier count.

The prefix grows following the growth function of Chum and Matas:

    T_n      = T_N · C(n, m) / C(N, m)
    T_{n+1}  = T_n · (n + 1) / (n + 1 - m)
    T'_{n+1} = T'_n + ⌈T_{n+1} - T_n⌉

with T_N the maximum number of iterations, m the subset size and N the
matched set size. While t ≤ T'_n the subset is the n-th reading plus m - 1
readings drawn from the first n - 1, so the first subset is exactly the m
best readings.

Reference:
    O. Chum and J. Matas, "Matching with PROSAC - Progressive Sample
    Consensus", CVPR, 2005.
"""

import math
from typing import Optional

import numpy as np
from scipy.special import comb

from robust_ranging.estimators.ransac import RANSACStrategy
from robust_ranging.types import RobustMethod


class ProgressiveSampling:
    """Mixin replacing uniform subset selection with PROSAC sampling."""

    subset_size: int
    n_items: int

    def prepare(self, n_items: int, quality_order: Optional[np.ndarray] = None) -> None:
        super().prepare(n_items, quality_order)
        if quality_order is None:
            quality_order = np.arange(n_items)
        self.order = np.asarray(quality_order, dtype=int)

        m = self.subset_size
        self._n = m
        self._t_n = self.config.max_iterations * comb(m, m) / comb(n_items, m)
        self._t_prime = 1

    @property
    def prefix_size(self) -> int:
        """Number of top-quality readings currently eligible for sampling."""
        return self._n

    def select_subset(self, rng: np.random.Generator, iteration: int) -> np.ndarray:
        m = self.subset_size
        if iteration > self._t_prime and self._n < self.n_items:
            t_next = self._t_n * (self._n + 1) / (self._n + 1 - m)
            self._t_prime += max(1, math.ceil(t_next - self._t_n))
            self._t_n = t_next
            self._n += 1

        if self._t_prime < iteration:
            ranks = rng.choice(self._n, size=m, replace=False)
        else:
            ranks = np.append(
                rng.choice(self._n - 1, size=m - 1, replace=False), self._n - 1
            )
        return np.sort(self.order[ranks])


class PROSACStrategy(ProgressiveSampling, RANSACStrategy):
    """Progressive sampling with RANSAC inlier-count scoring."""

    method = RobustMethod.PROSAC
