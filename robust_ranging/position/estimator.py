"""
Robust ranging position estimators for 2D and 3D.

The estimator pairs located sources with the readings of a fingerprint,
then runs a robust sampling strategy (RANSAC, LMedS, MSAC, PROSAC or
PROMedS) over a lateration solver to recover the device position while
rejecting corrupted distances.

Lifecycle:
    UNCONFIGURED --configure--> READY --estimate()--> RUNNING --> READY

Configuration changes and nested ``estimate()`` calls raise ``LockedError``
while running. Failed estimations leave the estimator READY.
"""

import logging
import warnings
from typing import Optional, Sequence

import numpy as np

from robust_ranging.config import DEFAULT_ROBUST_METHOD, RobustEstimatorConfig
from robust_ranging.errors import (
    InvalidConfigurationError,
    LockedError,
    NotReadyError,
)
from robust_ranging.estimators import RobustSampler, create_strategy
from robust_ranging.lateration import LaterationSolver
from robust_ranging.position.listener import PositionEstimatorListener
from robust_ranging.position.quality import build_matched_set, progressive_order
from robust_ranging.types import (
    EstimatorState,
    LocatedSource,
    MatchedSet,
    PositionEstimate,
    RangingFingerprint,
    RobustMethod,
)

logger = logging.getLogger(__name__)


class RobustRangingPositionEstimator:
    """
    Robust position estimator from ranging readings.

    Use ``RobustRangingPositionEstimator2D`` or
    ``RobustRangingPositionEstimator3D``; this base class holds the shared
    configuration and the estimation lifecycle.

    Attributes:
        DIMENSION: Spatial dimension handled by the subclass.

    Example:
        >>> sources = [LocatedSource("a", [0, 0]), LocatedSource("b", [10, 0]),
        ...            LocatedSource("c", [0, 10]), LocatedSource("d", [10, 10])]
        >>> readings = [RangingReading("a", 5.0), RangingReading("b", 8.062),
        ...             RangingReading("c", 6.708), RangingReading("d", 100.0)]
        >>> estimator = RobustRangingPositionEstimator2D(
        ...     method=RobustMethod.RANSAC, sources=sources,
        ...     fingerprint=RangingFingerprint(readings), seed=0)
        >>> result = estimator.estimate()
        >>> result.outlier_ids
        ['d']
    """

    DIMENSION: Optional[int] = None

    def __init__(
        self,
        method: RobustMethod = DEFAULT_ROBUST_METHOD,
        sources: Optional[Sequence[LocatedSource]] = None,
        fingerprint: Optional[RangingFingerprint] = None,
        source_quality_scores: Optional[Sequence[float]] = None,
        reading_quality_scores: Optional[Sequence[float]] = None,
        listener: Optional[PositionEstimatorListener] = None,
        config: Optional[RobustEstimatorConfig] = None,
        seed: Optional[int] = None,
    ):
        if self.DIMENSION not in (2, 3):
            raise TypeError(
                "Instantiate RobustRangingPositionEstimator2D or "
                "RobustRangingPositionEstimator3D"
            )
        self._method = RobustMethod(method)
        self._config = self._check_config(config or RobustEstimatorConfig())
        self._seed = seed
        self._listener = listener
        self._state = EstimatorState.UNCONFIGURED

        self._sources: Optional[list] = None
        self._fingerprint: Optional[RangingFingerprint] = None
        self._source_quality_scores = source_quality_scores
        self._reading_quality_scores = reading_quality_scores
        self._matched_set: Optional[MatchedSet] = None
        self._quality_order: Optional[np.ndarray] = None
        self._last_estimate: Optional[PositionEstimate] = None

        if sources is not None:
            self._sources = self._check_sources(sources)
        if fingerprint is not None:
            self._fingerprint = fingerprint
        self._rebuild()

    # ------------------------------------------------------------------
    # Read-only properties
    # ------------------------------------------------------------------

    @property
    def method(self) -> RobustMethod:
        return self._method

    @property
    def dimension(self) -> int:
        return self.DIMENSION

    @property
    def min_required_sources(self) -> int:
        """Minimum matched readings: one more than the spatial dimension."""
        return self.DIMENSION + 1

    @property
    def preliminary_subset_size(self) -> int:
        """Number of readings per sampled subset."""
        size = self._config.preliminary_subset_size
        return self.min_required_sources if size is None else size

    @property
    def state(self) -> EstimatorState:
        return self._state

    @property
    def is_locked(self) -> bool:
        return self._state is EstimatorState.RUNNING

    @property
    def is_ready(self) -> bool:
        return self._state is EstimatorState.READY

    @property
    def matched_set(self) -> Optional[MatchedSet]:
        return self._matched_set

    @property
    def quality_order(self) -> Optional[np.ndarray]:
        """Matched-set indices by decreasing combined quality score."""
        return self._quality_order

    @property
    def last_estimate(self) -> Optional[PositionEstimate]:
        """Result of the most recent successful ``estimate()`` call."""
        return self._last_estimate

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def sources(self) -> Optional[list]:
        return self._sources

    @sources.setter
    def sources(self, sources: Sequence[LocatedSource]) -> None:
        self._check_unlocked()
        self._commit(sources=self._check_sources(sources))

    @property
    def fingerprint(self) -> Optional[RangingFingerprint]:
        return self._fingerprint

    @fingerprint.setter
    def fingerprint(self, fingerprint: RangingFingerprint) -> None:
        self._check_unlocked()
        if fingerprint is None:
            raise InvalidConfigurationError("fingerprint must be provided")
        self._commit(fingerprint=fingerprint)

    @property
    def source_quality_scores(self) -> Optional[Sequence[float]]:
        return self._source_quality_scores

    @source_quality_scores.setter
    def source_quality_scores(self, scores: Optional[Sequence[float]]) -> None:
        self._check_unlocked()
        self._commit(source_quality_scores=scores)

    @property
    def reading_quality_scores(self) -> Optional[Sequence[float]]:
        return self._reading_quality_scores

    @reading_quality_scores.setter
    def reading_quality_scores(self, scores: Optional[Sequence[float]]) -> None:
        self._check_unlocked()
        self._commit(reading_quality_scores=scores)

    @property
    def listener(self) -> Optional[PositionEstimatorListener]:
        return self._listener

    @listener.setter
    def listener(self, listener: Optional[PositionEstimatorListener]) -> None:
        self._check_unlocked()
        self._listener = listener

    @property
    def config(self) -> RobustEstimatorConfig:
        return self._config

    @config.setter
    def config(self, config: RobustEstimatorConfig) -> None:
        self._check_unlocked()
        self._commit(config=self._check_config(config))

    @property
    def seed(self) -> Optional[int]:
        return self._seed

    @seed.setter
    def seed(self, seed: Optional[int]) -> None:
        self._check_unlocked()
        self._seed = seed

    def configure(
        self,
        sources: Sequence[LocatedSource],
        fingerprint: RangingFingerprint,
        source_quality_scores: Optional[Sequence[float]] = None,
        reading_quality_scores: Optional[Sequence[float]] = None,
        listener: Optional[PositionEstimatorListener] = None,
    ) -> None:
        """
        Set sources, fingerprint, quality scores and listener at once.

        Nothing changes if validation fails.

        Raises:
            LockedError: If an estimation is running.
            InvalidConfigurationError: If sources or fingerprint are missing,
                the matched set is smaller than ``min_required_sources``, or
                quality score lengths do not match.
        """
        self._check_unlocked()
        if fingerprint is None:
            raise InvalidConfigurationError("fingerprint must be provided")
        self._commit(
            sources=self._check_sources(sources),
            fingerprint=fingerprint,
            source_quality_scores=source_quality_scores,
            reading_quality_scores=reading_quality_scores,
            require_ready=True,
        )
        self._listener = listener

    # ------------------------------------------------------------------
    # Estimation
    # ------------------------------------------------------------------

    def estimate(self) -> PositionEstimate:
        """
        Estimate the position robustly.

        Returns:
            PositionEstimate with the final position, inlier mask, residuals
            and (if kept) covariance.

        Raises:
            LockedError: If called while an estimation is running.
            NotReadyError: If sources and fingerprint are not configured.
            InsufficientConsensusError: If no candidate reached consensus.
        """
        if self.is_locked:
            raise LockedError("Estimator is running")
        if not self.is_ready:
            raise NotReadyError(
                "Sources and fingerprint with at least "
                f"{self.min_required_sources} matched readings are required"
            )

        self._state = EstimatorState.RUNNING
        try:
            if self._listener is not None:
                self._listener.on_estimate_start(self)

            config = self._config
            strategy = create_strategy(self._method, config, self.preliminary_subset_size)
            solver = LaterationSolver(
                use_linear_solver=config.use_linear_solver,
                refine=config.refine_preliminary_solutions,
            )
            sampler = RobustSampler(
                strategy,
                solver,
                config,
                rng=np.random.default_rng(self._seed),
                on_iteration=self._notify_iteration,
                on_progress=self._notify_progress,
            )
            result = sampler.run(self._matched_set, self._quality_order)
        finally:
            try:
                if self._listener is not None:
                    self._listener.on_estimate_end(self)
            finally:
                self._state = EstimatorState.READY

        logger.debug(
            "%s estimate %s after %d iterations, %d/%d inliers",
            self._method.name, result.position, result.iterations,
            int(np.count_nonzero(result.inliers)), len(self._matched_set),
        )
        self._last_estimate = PositionEstimate(
            position=result.position,
            inliers=result.inliers,
            residuals=result.residuals,
            covariance=result.covariance,
            iterations=result.iterations,
            n_inliers=int(np.count_nonzero(result.inliers)),
            best_iteration=result.best.iteration,
            method=self._method,
            source_ids=self._matched_set.source_ids,
            refined=result.refined,
        )
        return self._last_estimate

    def _notify_iteration(self, iteration: int) -> Optional[bool]:
        if self._listener is None:
            return None
        return self._listener.on_estimate_next_iteration(self, iteration)

    def _notify_progress(self, progress: float) -> None:
        if self._listener is not None:
            self._listener.on_estimate_progress_change(self, progress)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_unlocked(self) -> None:
        if self.is_locked:
            raise LockedError("Estimator is running and cannot be modified")

    def _check_sources(self, sources: Sequence[LocatedSource]) -> list:
        if sources is None:
            raise InvalidConfigurationError("sources must be provided")
        sources = list(sources)
        if len(sources) < self.min_required_sources:
            raise InvalidConfigurationError(
                f"{self.DIMENSION}D estimation requires at least "
                f"{self.min_required_sources} sources, got {len(sources)}"
            )
        return sources

    def _check_config(self, config: RobustEstimatorConfig) -> RobustEstimatorConfig:
        size = config.preliminary_subset_size
        if size is not None and size < self.min_required_sources:
            raise InvalidConfigurationError(
                f"preliminary_subset_size must be >= {self.min_required_sources}, "
                f"got {size}"
            )
        if config.initial_position is not None and config.initial_position.shape != (
            self.DIMENSION,
        ):
            raise InvalidConfigurationError(
                f"initial_position must have shape ({self.DIMENSION},), "
                f"got {config.initial_position.shape}"
            )
        return config

    _UNSET = object()

    def _commit(
        self,
        sources=_UNSET,
        fingerprint=_UNSET,
        source_quality_scores=_UNSET,
        reading_quality_scores=_UNSET,
        config=_UNSET,
        require_ready: bool = False,
    ) -> None:
        """Apply changes atomically: rebuild first, assign only on success."""
        previous = (
            self._sources,
            self._fingerprint,
            self._source_quality_scores,
            self._reading_quality_scores,
            self._config,
        )
        if sources is not self._UNSET:
            self._sources = sources
        if fingerprint is not self._UNSET:
            self._fingerprint = fingerprint
        if source_quality_scores is not self._UNSET:
            self._source_quality_scores = source_quality_scores
        if reading_quality_scores is not self._UNSET:
            self._reading_quality_scores = reading_quality_scores
        if config is not self._UNSET:
            self._config = config

        try:
            self._rebuild(require_ready=require_ready)
        except InvalidConfigurationError:
            (
                self._sources,
                self._fingerprint,
                self._source_quality_scores,
                self._reading_quality_scores,
                self._config,
            ) = previous
            self._rebuild()
            raise

    def _rebuild(self, require_ready: bool = False) -> None:
        """Rebuild the matched set and quality order from the configuration."""
        if self._sources is None or self._fingerprint is None:
            if require_ready:
                raise InvalidConfigurationError("sources and fingerprint must be provided")
            self._matched_set = None
            self._quality_order = None
            self._state = EstimatorState.UNCONFIGURED
            return

        config = self._config
        matched_set = build_matched_set(
            self._sources,
            self._fingerprint,
            self.DIMENSION,
            source_quality_scores=self._source_quality_scores,
            reading_quality_scores=self._reading_quality_scores,
            use_source_position_covariance=config.use_source_position_covariance,
            fallback_distance_std=config.fallback_distance_std,
            combination=config.quality_combination,
        )
        if len(matched_set) < self.preliminary_subset_size:
            raise InvalidConfigurationError(
                f"Only {len(matched_set)} readings match a known source, "
                f"at least {self.preliminary_subset_size} required"
            )

        if self._method.is_progressive and matched_set.quality_scores is None:
            warnings.warn(
                f"{self._method.name} configured without quality scores; "
                "sampling falls back to uniform quality order.",
                UserWarning,
                stacklevel=3,
            )

        self._matched_set = matched_set
        self._quality_order = progressive_order(matched_set.quality_scores, len(matched_set))
        self._state = EstimatorState.READY


class RobustRangingPositionEstimator2D(RobustRangingPositionEstimator):
    """Robust ranging position estimator in 2D (at least 3 sources)."""

    DIMENSION = 2


class RobustRangingPositionEstimator3D(RobustRangingPositionEstimator):
    """Robust ranging position estimator in 3D (at least 4 sources)."""

    DIMENSION = 3
