"""
Configuration of the robust ranging position estimators.

Defaults follow the values used by indoor ranging positioning in practice:
99% confidence, at most 5000 sampling iterations, 10 cm inlier threshold for
consensus methods and 1e-4 m² stop threshold for median-based methods.
"""

from dataclasses import dataclass, replace
from typing import Literal, Optional

import numpy as np

from robust_ranging.errors import InvalidConfigurationError
from robust_ranging.types import RobustMethod

DEFAULT_CONFIDENCE = 0.99
DEFAULT_MAX_ITERATIONS = 5000
DEFAULT_THRESHOLD = 0.1
DEFAULT_STOP_THRESHOLD = 1e-4
DEFAULT_PROGRESS_DELTA = 0.05
FALLBACK_DISTANCE_STANDARD_DEVIATION = 1e-3
DEFAULT_ROBUST_METHOD = RobustMethod.PROMEDS

QualityCombination = Literal["product", "sum"]


@dataclass(frozen=True, eq=False)
class RobustEstimatorConfig:
    """
    Settings shared by all robust ranging estimators.

    Attributes:
        confidence: Probability in (0, 1) that the returned model is
            outlier-free; drives the adaptive iteration budget.
        max_iterations: Hard upper bound on sampling iterations.
        threshold: Inlier distance threshold in meters (RANSAC, MSAC, PROSAC).
        stop_threshold: Median squared residual in m² below which
            LMedS/PROMedS stop early.
        max_outlier_ratio: Optional prior on the outlier fraction in [0, 1).
            When given, the initial budget is the number of iterations needed
            for that ratio instead of ``max_iterations``.
        progress_delta: Minimum progress change between progress callbacks.
        preliminary_subset_size: Size of each sampled subset. None means the
            minimum, d + 1.
        refine_result: Re-fit over the inliers of the best candidate.
        keep_covariance: Compute the position covariance of the refined fit.
        use_linear_solver: Start each fit from the closed-form solution.
        refine_preliminary_solutions: Gauss-Newton refine each candidate fit.
        initial_position: Optional starting point for every fit.
        use_source_position_covariance: Inflate distance uncertainties with
            source position covariances when available.
        fallback_distance_std: Standard deviation used for readings without
            one, in meters.
        quality_combination: How source and reading quality scores combine.
    """

    confidence: float = DEFAULT_CONFIDENCE
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    threshold: float = DEFAULT_THRESHOLD
    stop_threshold: float = DEFAULT_STOP_THRESHOLD
    max_outlier_ratio: Optional[float] = None
    progress_delta: float = DEFAULT_PROGRESS_DELTA
    preliminary_subset_size: Optional[int] = None
    refine_result: bool = True
    keep_covariance: bool = True
    use_linear_solver: bool = True
    refine_preliminary_solutions: bool = True
    initial_position: Optional[np.ndarray] = None
    use_source_position_covariance: bool = True
    fallback_distance_std: float = FALLBACK_DISTANCE_STANDARD_DEVIATION
    quality_combination: QualityCombination = "product"

    def __post_init__(self) -> None:
        if not 0.0 < self.confidence < 1.0:
            raise InvalidConfigurationError(
                f"confidence must be in (0, 1), got {self.confidence}"
            )
        if int(self.max_iterations) != self.max_iterations or self.max_iterations < 1:
            raise InvalidConfigurationError(
                f"max_iterations must be a positive integer, got {self.max_iterations}"
            )
        if self.threshold <= 0.0:
            raise InvalidConfigurationError(
                f"threshold must be positive, got {self.threshold}"
            )
        if self.stop_threshold <= 0.0:
            raise InvalidConfigurationError(
                f"stop_threshold must be positive, got {self.stop_threshold}"
            )
        if self.max_outlier_ratio is not None and not 0.0 <= self.max_outlier_ratio < 1.0:
            raise InvalidConfigurationError(
                f"max_outlier_ratio must be in [0, 1), got {self.max_outlier_ratio}"
            )
        if not 0.0 <= self.progress_delta <= 1.0:
            raise InvalidConfigurationError(
                f"progress_delta must be in [0, 1], got {self.progress_delta}"
            )
        if self.preliminary_subset_size is not None and self.preliminary_subset_size < 3:
            raise InvalidConfigurationError(
                f"preliminary_subset_size must be >= 3, got {self.preliminary_subset_size}"
            )
        if not self.use_linear_solver and self.initial_position is None:
            raise InvalidConfigurationError(
                "initial_position is required when use_linear_solver is False"
            )
        if not self.use_linear_solver and not self.refine_preliminary_solutions:
            raise InvalidConfigurationError(
                "refine_preliminary_solutions must be enabled when use_linear_solver is False"
            )
        if self.fallback_distance_std <= 0.0:
            raise InvalidConfigurationError(
                f"fallback_distance_std must be positive, got {self.fallback_distance_std}"
            )
        if self.quality_combination not in ("product", "sum"):
            raise InvalidConfigurationError(
                f"quality_combination must be 'product' or 'sum', "
                f"got {self.quality_combination!r}"
            )
        if self.initial_position is not None:
            object.__setattr__(
                self, "initial_position", np.asarray(self.initial_position, dtype=float)
            )

    def replace(self, **changes) -> "RobustEstimatorConfig":
        """Return a copy with the given fields changed (validated again)."""
        return replace(self, **changes)
