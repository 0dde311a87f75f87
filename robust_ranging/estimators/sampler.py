"""
Generic robust sampling loop shared by every strategy.

Per run:
    1. Validate the matched set size against the subset size.
    2. Fix a finite iteration budget before the loop.
    3. Iterate: draw a subset, fit it with the lateration solver, score the
       candidate against every reading, keep the best, shrink the budget.
    4. Stop on budget exhaustion, strategy early stop, or listener request.
    5. Re-fit over the winning inliers, weighted by distance uncertainty
       and quality scores.
    6. Fail if no candidate reached the strategy's minimum consensus.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from robust_ranging.config import RobustEstimatorConfig
from robust_ranging.errors import (
    GeometricDegeneracyError,
    InsufficientConsensusError,
    InvalidConfigurationError,
)
from robust_ranging.estimators.base import Candidate, RobustStrategy
from robust_ranging.lateration import LaterationSolver, distance_residuals
from robust_ranging.types import MatchedSet

logger = logging.getLogger(__name__)

# Floor on normalised quality weights, keeps the refinement well posed
MIN_QUALITY_WEIGHT = 1e-10


@dataclass
class SamplerResult:
    """Outcome of one robust sampling run.

    Attributes:
        best: Winning candidate of the sampling phase.
        position: Final position (refined when refinement succeeded).
        inliers: Inlier mask used for the final position.
        residuals: Absolute residuals of the final position over the set.
        covariance: Covariance of the refined position, or None.
        iterations: Iterations performed.
        n_failed: Subsets rejected as geometrically degenerate.
        refined: Whether ``position`` comes from the refinement fit.
    """

    best: Candidate
    position: np.ndarray
    inliers: np.ndarray
    residuals: np.ndarray
    covariance: Optional[np.ndarray]
    iterations: int
    n_failed: int
    refined: bool


def quality_weights(quality_scores: Optional[np.ndarray]) -> Optional[np.ndarray]:
    """Normalise quality scores to (0, 1] refinement weights."""
    if quality_scores is None:
        return None
    top = np.max(quality_scores)
    if top <= 0.0:
        return None
    return np.maximum(quality_scores / top, MIN_QUALITY_WEIGHT)


class RobustSampler:
    """
    Drive a robust strategy over a matched set.

    Attributes:
        strategy: Sampling/scoring policy.
        solver: Lateration solver used for subset and refinement fits.
        config: Estimator configuration.
        rng: Random generator used for subset draws.
        on_iteration: Called with the 1-based iteration number after every
            iteration; a truthy return value stops sampling.
        on_progress: Called with progress in [0, 1] whenever it advanced by
            at least ``config.progress_delta``.
    """

    def __init__(
        self,
        strategy: RobustStrategy,
        solver: LaterationSolver,
        config: RobustEstimatorConfig,
        rng: np.random.Generator,
        on_iteration: Optional[Callable[[int], Optional[bool]]] = None,
        on_progress: Optional[Callable[[float], None]] = None,
    ):
        self.strategy = strategy
        self.solver = solver
        self.config = config
        self.rng = rng
        self.on_iteration = on_iteration
        self.on_progress = on_progress
        self.refinement_solver = LaterationSolver(
            refine=True, max_iter=solver.max_iter, tol=solver.tol
        )

    def run(
        self, matched_set: MatchedSet, quality_order: Optional[np.ndarray] = None
    ) -> SamplerResult:
        """
        Run sampling and refinement.

        Args:
            matched_set: Sources paired with readings.
            quality_order: Matched-set indices by decreasing quality, used by
                progressive strategies.

        Returns:
            SamplerResult with the final position and diagnostics.

        Raises:
            InvalidConfigurationError: If the matched set is too small.
            InsufficientConsensusError: If no candidate is acceptable.
        """
        n_items = len(matched_set)
        subset_size = self.strategy.subset_size
        if n_items < subset_size:
            raise InvalidConfigurationError(
                f"Matched set has {n_items} readings, at least {subset_size} required"
            )

        self.strategy.prepare(n_items, quality_order)
        budget = self.strategy.initial_budget()
        logger.debug(
            "%s: %d readings, subset size %d, initial budget %d",
            self.strategy.method.name, n_items, subset_size, budget,
        )

        best: Optional[Candidate] = None
        n_failed = 0
        iteration = 0
        last_progress = 0.0

        while iteration < budget:
            iteration += 1
            subset = self.strategy.select_subset(self.rng, iteration)
            candidate = self._fit_candidate(matched_set, subset, iteration)

            if candidate is None:
                n_failed += 1
            elif self.strategy.is_better(candidate, best):
                best = candidate
                budget = self.strategy.remaining_budget(best, budget)
                logger.debug(
                    "iteration %d: new best subset %s, score %.6g, %d inliers, budget %d",
                    iteration, best.subset, best.score, best.n_inliers, budget,
                )
                if self.strategy.should_stop(best):
                    break

            if self.on_iteration is not None and self.on_iteration(iteration):
                logger.debug("iteration %d: stop requested by listener", iteration)
                break

            if self.on_progress is not None:
                progress = min(iteration / budget, 1.0)
                if progress - last_progress >= self.config.progress_delta:
                    last_progress = progress
                    self.on_progress(progress)

        if not self.strategy.is_acceptable(best):
            raise InsufficientConsensusError(
                f"{self.strategy.method.name} found no acceptable model after "
                f"{iteration} iterations ({n_failed} degenerate subsets)"
            )

        return self._refine(matched_set, best, iteration, n_failed)

    def _fit_candidate(
        self, matched_set: MatchedSet, subset: np.ndarray, iteration: int
    ) -> Optional[Candidate]:
        try:
            fit = self.solver.solve(
                matched_set.positions[subset],
                matched_set.distances[subset],
                initial_position=(
                    None if self.solver.use_linear_solver else self.config.initial_position
                ),
            )
        except GeometricDegeneracyError as e:
            logger.debug("iteration %d: subset %s rejected: %s", iteration, subset, e)
            return None

        residuals = distance_residuals(
            fit.position, matched_set.positions, matched_set.distances
        )
        score, inliers = self.strategy.score(residuals)
        return Candidate(
            position=fit.position,
            subset=tuple(int(i) for i in subset),
            residuals=residuals,
            score=score,
            inliers=inliers,
            iteration=iteration,
        )

    def _refine(
        self,
        matched_set: MatchedSet,
        best: Candidate,
        iterations: int,
        n_failed: int,
    ) -> SamplerResult:
        inliers = self.strategy.refinement_inliers(best)
        position = best.position
        covariance = None
        refined = False

        if self.config.refine_result:
            idx = np.flatnonzero(inliers)
            weights = quality_weights(matched_set.quality_scores)
            try:
                fit = self.refinement_solver.solve(
                    matched_set.positions[idx],
                    matched_set.distances[idx],
                    distance_stds=matched_set.distance_stds[idx],
                    weights=None if weights is None else weights[idx],
                    initial_position=best.position,
                    return_covariance=self.config.keep_covariance,
                )
            except (GeometricDegeneracyError, InvalidConfigurationError) as e:
                logger.warning(
                    "Refinement over %d inliers failed, keeping unrefined estimate: %s",
                    idx.shape[0], e,
                )
            else:
                position = fit.position
                covariance = fit.covariance
                refined = True

        residuals = distance_residuals(
            position, matched_set.positions, matched_set.distances
        )
        return SamplerResult(
            best=best,
            position=position,
            inliers=inliers,
            residuals=residuals,
            covariance=covariance,
            iterations=iterations,
            n_failed=n_failed,
            refined=refined,
        )
