"""
Matching of sources to readings and quality-score plumbing.

The robust estimators work on a matched set: every fingerprint reading whose
source is known, paired with that source. This module builds the matched set
(positions, distances, effective distance uncertainties) and combines the
optional per-source and per-reading quality scores into one score per pair.
"""

from typing import Optional, Sequence

import numpy as np

from robust_ranging.errors import InvalidConfigurationError
from robust_ranging.types import LocatedSource, MatchedSet, RangingFingerprint


def validate_quality_scores(
    scores: Optional[Sequence[float]], expected_length: int, name: str
) -> Optional[np.ndarray]:
    """
    Check a quality score vector and convert it to an array.

    Args:
        scores: Scores or None.
        expected_length: Required length.
        name: Vector name for error messages.

    Returns:
        Float array of shape (expected_length,), or None.

    Raises:
        InvalidConfigurationError: On length mismatch, or on negative or
            non-finite scores.
    """
    if scores is None:
        return None
    scores = np.asarray(scores, dtype=float)
    if scores.ndim != 1 or scores.shape[0] != expected_length:
        raise InvalidConfigurationError(
            f"{name} must have length {expected_length}, got shape {scores.shape}"
        )
    if not np.all(np.isfinite(scores)) or np.any(scores < 0):
        raise InvalidConfigurationError(f"{name} must be finite and non-negative")
    return scores


def effective_distance_std(
    source: LocatedSource,
    distance_std: Optional[float],
    use_source_position_covariance: bool,
    fallback_distance_std: float,
) -> float:
    """
    Distance standard deviation of one reading.

    Readings without a standard deviation (or with zero) use the fallback.
    When enabled and available, the source position covariance inflates it:

        σ = sqrt(σ_reading² + trace(Σ_source) / d)
    """
    std = distance_std if distance_std else fallback_distance_std
    if use_source_position_covariance and source.position_covariance is not None:
        cov = source.position_covariance
        std = float(np.sqrt(std**2 + max(np.trace(cov), 0.0) / cov.shape[0]))
    return std


def combine_quality_scores(
    source_scores: Optional[np.ndarray],
    reading_scores: Optional[np.ndarray],
    source_indices: Sequence[int],
    reading_indices: Sequence[int],
    combination: str = "product",
) -> Optional[np.ndarray]:
    """
    Combine per-source and per-reading scores into one score per pair.

    A missing vector counts as all ones. Returns None when both are missing.
    """
    if source_scores is None and reading_scores is None:
        return None

    n = len(source_indices)
    s = np.ones(n) if source_scores is None else source_scores[list(source_indices)]
    r = np.ones(n) if reading_scores is None else reading_scores[list(reading_indices)]
    if combination == "sum":
        return s + r
    return s * r


def progressive_order(quality_scores: Optional[np.ndarray], n_items: int) -> np.ndarray:
    """
    Matched-set indices sorted by decreasing quality score.

    The sort is stable: equal scores keep matched-set order, so without
    scores the order is the identity.
    """
    if quality_scores is None:
        return np.arange(n_items)
    return np.argsort(-quality_scores, kind="stable")


def build_matched_set(
    sources: Sequence[LocatedSource],
    fingerprint: RangingFingerprint,
    dimension: int,
    source_quality_scores: Optional[Sequence[float]] = None,
    reading_quality_scores: Optional[Sequence[float]] = None,
    use_source_position_covariance: bool = True,
    fallback_distance_std: float = 1e-3,
    combination: str = "product",
) -> MatchedSet:
    """
    Pair fingerprint readings with located sources by identity.

    Pairs follow fingerprint reading order; readings of unknown sources are
    skipped.

    Args:
        sources: Located sources.
        fingerprint: Ranging fingerprint.
        dimension: Expected spatial dimension of every source.
        source_quality_scores: Optional scores indexed like ``sources``.
        reading_quality_scores: Optional scores indexed like the readings.
        use_source_position_covariance: Inflate σ with source covariances.
        fallback_distance_std: σ for readings that do not carry one.
        combination: "product" or "sum" of the two score vectors.

    Returns:
        MatchedSet ready for robust sampling.

    Raises:
        InvalidConfigurationError: If inputs are missing or inconsistent.

    Example:
        >>> sources = [LocatedSource("a", [0, 0]), LocatedSource("b", [10, 0]),
        ...            LocatedSource("c", [0, 10])]
        >>> fp = RangingFingerprint([RangingReading("a", 5.0),
        ...                          RangingReading("b", 8.06),
        ...                          RangingReading("c", 6.71)])
        >>> ms = build_matched_set(sources, fp, dimension=2)
        >>> len(ms)
        3
    """
    if sources is None:
        raise InvalidConfigurationError("sources must be provided")
    if fingerprint is None:
        raise InvalidConfigurationError("fingerprint must be provided")

    sources = list(sources)
    index_by_id = {}
    for i, source in enumerate(sources):
        if source.dimension != dimension:
            raise InvalidConfigurationError(
                f"Source {source.identifier!r} is {source.dimension}D, "
                f"expected {dimension}D"
            )
        if source.identifier in index_by_id:
            raise InvalidConfigurationError(
                f"Duplicate source identifier {source.identifier!r}"
            )
        index_by_id[source.identifier] = i

    source_scores = validate_quality_scores(
        source_quality_scores, len(sources), "source_quality_scores"
    )
    reading_scores = validate_quality_scores(
        reading_quality_scores, len(fingerprint.readings), "reading_quality_scores"
    )

    source_indices = []
    reading_indices = []
    stds = []
    for j, reading in enumerate(fingerprint.readings):
        i = index_by_id.get(reading.source_id)
        if i is None:
            continue
        source_indices.append(i)
        reading_indices.append(j)
        stds.append(
            effective_distance_std(
                sources[i],
                reading.distance_std,
                use_source_position_covariance,
                fallback_distance_std,
            )
        )

    if source_indices:
        positions = np.array([sources[i].position for i in source_indices])
        distances = np.array([fingerprint.readings[j].distance for j in reading_indices])
    else:
        positions = np.zeros((0, dimension))
        distances = np.zeros(0)

    return MatchedSet(
        positions=positions,
        distances=distances,
        distance_stds=np.array(stds, dtype=float),
        quality_scores=combine_quality_scores(
            source_scores, reading_scores, source_indices, reading_indices, combination
        ),
        source_indices=tuple(source_indices),
        reading_indices=tuple(reading_indices),
        source_ids=tuple(sources[i].identifier for i in source_indices),
    )
