"""Type definitions and data structures for robust ranging positioning.

This module defines the containers exchanged with the robust position
estimators: located radio sources, ranging readings and fingerprints on the
input side, and the position estimate on the output side.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Hashable, List, Optional, Sequence, Tuple

import numpy as np

from robust_ranging.errors import InvalidConfigurationError


class RobustMethod(Enum):
    """Robust estimation strategies available for ranging positioning.

    Attributes:
        RANSAC: Random sample consensus with a fixed inlier threshold.
        LMEDS: Least median of squares.
        MSAC: M-estimator sample consensus (truncated quadratic cost).
        PROSAC: Progressive sample consensus driven by quality scores.
        PROMEDS: Progressive least median of squares.
    """

    RANSAC = "ransac"
    LMEDS = "lmeds"
    MSAC = "msac"
    PROSAC = "prosac"
    PROMEDS = "promeds"

    @property
    def is_progressive(self) -> bool:
        """True for methods that sample in quality-score order."""
        return self in (RobustMethod.PROSAC, RobustMethod.PROMEDS)


class EstimatorState(Enum):
    """Lifecycle of a robust position estimator.

    ``LOCKED`` is an alias of ``RUNNING``: an estimator rejects configuration
    changes exactly while an estimation is in progress.
    """

    UNCONFIGURED = "unconfigured"
    READY = "ready"
    RUNNING = "running"
    LOCKED = "running"


@dataclass(frozen=True, eq=False)
class LocatedSource:
    """
    Radio source (beacon, access point, UWB anchor) with a known position.

    Attributes:
        identifier: Hashable identity used to match readings to this source.
        position: Source coordinates, shape (d,) with d = 2 or 3.
        position_covariance: Optional uncertainty of the position, shape (d, d).
    """

    identifier: Hashable
    position: np.ndarray
    position_covariance: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        position = np.asarray(self.position, dtype=float)
        if position.ndim != 1 or position.shape[0] not in (2, 3):
            raise InvalidConfigurationError(
                f"Source position must have shape (2,) or (3,), got {position.shape}"
            )
        if not np.all(np.isfinite(position)):
            raise InvalidConfigurationError(
                f"Source {self.identifier!r} position is not finite: {position}"
            )
        object.__setattr__(self, "position", position)

        if self.position_covariance is not None:
            cov = np.asarray(self.position_covariance, dtype=float)
            d = position.shape[0]
            if cov.shape != (d, d):
                raise InvalidConfigurationError(
                    f"Position covariance must have shape ({d}, {d}), got {cov.shape}"
                )
            object.__setattr__(self, "position_covariance", cov)

    @property
    def dimension(self) -> int:
        """Number of spatial dimensions of the source position."""
        return self.position.shape[0]


@dataclass(frozen=True)
class RangingReading:
    """
    Measured distance from the unknown location to one radio source.

    Attributes:
        source_id: Identifier of the ``LocatedSource`` this reading refers to.
        distance: Measured distance in meters (non-negative).
        distance_std: Optional standard deviation of the distance in meters.
            When absent (or zero) the estimator falls back to its configured
            default.
    """

    source_id: Hashable
    distance: float
    distance_std: Optional[float] = None

    def __post_init__(self) -> None:
        distance = float(self.distance)
        if not np.isfinite(distance) or distance < 0.0:
            raise InvalidConfigurationError(
                f"Distance must be finite and non-negative, got {self.distance}"
            )
        object.__setattr__(self, "distance", distance)

        if self.distance_std is not None:
            std = float(self.distance_std)
            if not np.isfinite(std) or std < 0.0:
                raise InvalidConfigurationError(
                    f"Distance standard deviation must be non-negative, "
                    f"got {self.distance_std}"
                )
            object.__setattr__(self, "distance_std", std)


@dataclass
class RangingFingerprint:
    """Ranging readings captured at one unknown location.

    No two readings may reference the same source.
    """

    readings: List[RangingReading] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.readings = list(self.readings)
        seen = set()
        for reading in self.readings:
            if not isinstance(reading, RangingReading):
                raise InvalidConfigurationError(
                    f"Fingerprint readings must be RangingReading, got {type(reading)}"
                )
            if reading.source_id in seen:
                raise InvalidConfigurationError(
                    f"Duplicate reading for source {reading.source_id!r}"
                )
            seen.add(reading.source_id)

    def __len__(self) -> int:
        return len(self.readings)


@dataclass
class MatchedSet:
    """
    Sources paired with their readings, as consumed by the robust sampler.

    Attributes:
        positions: Source positions, shape (k, d).
        distances: Measured distances, shape (k,).
        distance_stds: Effective distance standard deviations, shape (k,).
        quality_scores: Combined quality score per pair, shape (k,), or None.
        source_indices: Index of each pair's source in the sources list.
        reading_indices: Index of each pair's reading in the fingerprint.
        source_ids: Identifier of each pair's source.
    """

    positions: np.ndarray
    distances: np.ndarray
    distance_stds: np.ndarray
    quality_scores: Optional[np.ndarray]
    source_indices: Tuple[int, ...]
    reading_indices: Tuple[int, ...]
    source_ids: Tuple[Hashable, ...]

    def __len__(self) -> int:
        return self.distances.shape[0]

    @property
    def dimension(self) -> int:
        return self.positions.shape[1]


@dataclass
class PositionEstimate:
    """Result of one robust position estimation.

    Attributes:
        position: Estimated position, shape (d,).
        inliers: Inlier mask over the matched set, shape (k,).
        residuals: Absolute distance residuals |‖p - x_i‖ - d_i|, shape (k,).
        covariance: Position covariance (d × d), or None when not kept.
        iterations: Number of sampling iterations performed.
        n_inliers: Number of inliers of the final model.
        best_iteration: 1-based iteration that produced the winning candidate.
        method: Robust method used.
        source_ids: Identifier of the source behind each matched pair.
        refined: True when the position comes from the refinement fit.
    """

    position: np.ndarray
    inliers: np.ndarray
    residuals: np.ndarray
    covariance: Optional[np.ndarray]
    iterations: int
    n_inliers: int
    best_iteration: int
    method: RobustMethod
    source_ids: Sequence[Hashable]
    refined: bool = True

    @property
    def outlier_ids(self) -> List[Hashable]:
        """Identifiers of the sources whose readings were rejected."""
        return [sid for sid, ok in zip(self.source_ids, self.inliers) if not ok]
