"""
Lateration (multilateration) solver for range-based positioning.

This module computes the position that best explains a set of distance
measurements to sources with known positions:

    p̂ = argmin Σ w_i · ((‖p - x_i‖ - d_i) / σ_i)²

The solve runs in two stages:
    1. Closed-form linear solution from squared range differences against a
       reference source (Fang-style linearisation, generalised to 2D and 3D).
    2. Weighted Gauss-Newton refinement of the nonlinear cost above.

The linear stage needs k ≥ d + 1 sources; this is why the robust estimators
use subsets of d + 1 readings. Rank-deficient geometries (collinear sources
in 2D, coplanar sources in 3D) raise ``GeometricDegeneracyError`` instead of
returning an arbitrary point.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from robust_ranging.errors import GeometricDegeneracyError, InvalidConfigurationError

# Relative smallest singular value below which a geometry is degenerate
DEGENERACY_TOLERANCE = 1e-9

DEFAULT_MAX_ITER = 20
DEFAULT_TOL = 1e-9


@dataclass
class LaterationResult:
    """Result container for a lateration solve.

    Attributes:
        position: Estimated position, shape (d,).
        covariance: Position covariance (d × d), or None.
        iterations: Number of Gauss-Newton iterations performed.
        residuals: Signed distance residuals d_i - ‖p - x_i‖, shape (k,).
        cost: Final weighted cost Σ w_i (r_i / σ_i)².
        converged: Whether the refinement converged within tolerance.
    """

    position: np.ndarray
    covariance: Optional[np.ndarray]
    iterations: int
    residuals: np.ndarray
    cost: float
    converged: bool


def distance_residuals(
    position: np.ndarray, positions: np.ndarray, distances: np.ndarray
) -> np.ndarray:
    """
    Absolute distance residuals of a candidate position.

    Args:
        position: Candidate position, shape (d,).
        positions: Source positions, shape (k, d).
        distances: Measured distances, shape (k,).

    Returns:
        |‖p - x_i‖ - d_i| for every source, shape (k,).
    """
    predicted = np.linalg.norm(positions - position, axis=1)
    return np.abs(predicted - distances)


def check_geometry(positions: np.ndarray, ref_idx: int = 0) -> float:
    """
    Verify that source positions span the full space.

    Args:
        positions: Source positions, shape (k, d).
        ref_idx: Index of the reference source used for differencing.

    Returns:
        Relative smallest singular value of the differenced geometry.

    Raises:
        GeometricDegeneracyError: If the sources are collinear (2D) or
            coplanar (3D) within ``DEGENERACY_TOLERANCE``.
    """
    diffs = np.delete(positions, ref_idx, axis=0) - positions[ref_idx]
    singular_values = np.linalg.svd(diffs, compute_uv=False)
    dim = positions.shape[1]

    if singular_values.shape[0] < dim or singular_values[0] <= 0.0:
        raise GeometricDegeneracyError(
            f"Source geometry is rank deficient: {positions.shape[0]} sources "
            f"do not span {dim}D space"
        )

    ratio = singular_values[dim - 1] / singular_values[0]
    if ratio < DEGENERACY_TOLERANCE:
        shape = "collinear" if dim == 2 else "coplanar"
        raise GeometricDegeneracyError(
            f"Sources are {shape} (relative singular value {ratio:.3e})"
        )
    return ratio


def lateration_linear_solve(
    positions: np.ndarray,
    distances: np.ndarray,
    ref_idx: int = 0,
) -> Tuple[np.ndarray, float]:
    """
    Closed-form lateration from squared range differences.

    Subtracting the reference equation ‖p - x_ref‖² = d_ref² from every
    other ‖p - x_i‖² = d_i² removes the quadratic term:

        -2 (x_i - x_ref)ᵀ p = d_i² - d_ref² - (‖x_i‖² - ‖x_ref‖²)

    which is solved in the least-squares sense.

    Args:
        positions: Source positions, shape (k, d) with k ≥ d + 1.
        distances: Measured distances, shape (k,).
        ref_idx: Index of the reference source. Defaults to 0.

    Returns:
        position: Linear position estimate, shape (d,).
        residual: Residual norm of the linear system.

    Raises:
        InvalidConfigurationError: If fewer than d + 1 sources are given.
        GeometricDegeneracyError: If the geometry is rank deficient.

    Example:
        >>> positions = np.array([[0, 0], [10, 0], [0, 10]], dtype=float)
        >>> distances = np.linalg.norm(positions - np.array([3.0, 4.0]), axis=1)
        >>> pos, _ = lateration_linear_solve(positions, distances)
        >>> # pos ≈ [3, 4]
    """
    positions = np.asarray(positions, dtype=float)
    distances = np.asarray(distances, dtype=float)
    n_sources, dim = positions.shape

    if n_sources < dim + 1:
        raise InvalidConfigurationError(
            f"Linear lateration requires at least {dim + 1} sources, got {n_sources}"
        )
    if distances.shape[0] != n_sources:
        raise InvalidConfigurationError(
            f"Expected {n_sources} distances, got {distances.shape[0]}"
        )

    check_geometry(positions, ref_idx)

    x_ref = positions[ref_idx]
    d_ref = distances[ref_idx]
    others = np.delete(np.arange(n_sources), ref_idx)

    H = -2.0 * (positions[others] - x_ref)
    y = (
        distances[others] ** 2
        - d_ref**2
        - (np.sum(positions[others] ** 2, axis=1) - np.sum(x_ref**2))
    )

    try:
        position, _, _, _ = np.linalg.lstsq(H, y, rcond=None)
    except np.linalg.LinAlgError as e:
        raise GeometricDegeneracyError(f"Linear lateration failed: {e}")

    residual = float(np.linalg.norm(H @ position - y))
    return position, residual


class LaterationSolver:
    """
    Weighted lateration solver.

    Pure and stateless across calls: one instance may be shared by every
    candidate fit of a robust estimation.

    Attributes:
        use_linear_solver: Use the closed-form solution as starting point.
        refine: Run Gauss-Newton refinement after the starting point.
        max_iter: Maximum Gauss-Newton iterations.
        tol: Convergence tolerance on the step norm, in meters.
    """

    def __init__(
        self,
        use_linear_solver: bool = True,
        refine: bool = True,
        max_iter: int = DEFAULT_MAX_ITER,
        tol: float = DEFAULT_TOL,
    ):
        if not use_linear_solver and not refine:
            raise InvalidConfigurationError(
                "At least one of use_linear_solver or refine must be enabled"
            )
        if max_iter < 1:
            raise InvalidConfigurationError(f"max_iter must be >= 1, got {max_iter}")
        self.use_linear_solver = use_linear_solver
        self.refine = refine
        self.max_iter = max_iter
        self.tol = tol

    def solve(
        self,
        positions: np.ndarray,
        distances: np.ndarray,
        distance_stds: Optional[np.ndarray] = None,
        weights: Optional[np.ndarray] = None,
        initial_position: Optional[np.ndarray] = None,
        return_covariance: bool = False,
    ) -> LaterationResult:
        """
        Solve for the position minimising the weighted range residuals.

        Args:
            positions: Source positions, shape (k, d) with k ≥ d + 1.
            distances: Measured distances, shape (k,).
            distance_stds: Distance standard deviations σ_i, shape (k,).
                Defaults to ones.
            weights: Non-negative quality weights w_i, shape (k,).
                Defaults to ones.
            initial_position: Starting point for the refinement. Required
                when the linear solver is disabled; otherwise it replaces the
                linear solution when given.
            return_covariance: Compute (JᵀWJ)⁻¹ at the final position.

        Returns:
            LaterationResult with the estimate and diagnostics.

        Raises:
            InvalidConfigurationError: On inconsistent input shapes.
            GeometricDegeneracyError: On rank-deficient source geometry.
        """
        positions = np.asarray(positions, dtype=float)
        distances = np.asarray(distances, dtype=float)
        n_sources, dim = positions.shape

        if n_sources < dim + 1:
            raise InvalidConfigurationError(
                f"Lateration requires at least {dim + 1} sources, got {n_sources}"
            )
        if distances.shape != (n_sources,):
            raise InvalidConfigurationError(
                f"Expected {n_sources} distances, got shape {distances.shape}"
            )

        sigmas = (
            np.ones(n_sources)
            if distance_stds is None
            else np.asarray(distance_stds, dtype=float)
        )
        w = np.ones(n_sources) if weights is None else np.asarray(weights, dtype=float)
        if sigmas.shape != (n_sources,) or w.shape != (n_sources,):
            raise InvalidConfigurationError(
                f"distance_stds and weights must have shape ({n_sources},)"
            )
        if np.any(sigmas <= 0):
            raise InvalidConfigurationError("Distance standard deviations must be positive")
        if np.any(w < 0):
            raise InvalidConfigurationError("Weights must be non-negative")

        # Diagonal of W = w_i / σ_i²
        W_diag = w / sigmas**2

        if initial_position is not None:
            check_geometry(positions)
            position = np.asarray(initial_position, dtype=float).copy()
            if position.shape != (dim,):
                raise InvalidConfigurationError(
                    f"initial_position must have shape ({dim},), got {position.shape}"
                )
        elif self.use_linear_solver:
            position, _ = lateration_linear_solve(positions, distances)
        else:
            raise InvalidConfigurationError(
                "initial_position is required when the linear solver is disabled"
            )

        iterations = 0
        converged = not self.refine
        if self.refine:
            position, iterations, converged = self._gauss_newton(
                positions, distances, W_diag, position
            )

        predicted = np.linalg.norm(positions - position, axis=1)
        residuals = distances - predicted
        cost = float(np.sum(W_diag * residuals**2))

        covariance = None
        if return_covariance:
            H = self._jacobian(positions, position, predicted)
            HtWH = H.T @ (W_diag[:, None] * H)
            try:
                covariance = np.linalg.inv(HtWH)
            except np.linalg.LinAlgError:
                covariance = np.linalg.pinv(HtWH)

        return LaterationResult(
            position=position,
            covariance=covariance,
            iterations=iterations,
            residuals=residuals,
            cost=cost,
            converged=converged,
        )

    @staticmethod
    def _jacobian(
        positions: np.ndarray, position: np.ndarray, predicted: np.ndarray
    ) -> np.ndarray:
        # H[i, :] = (p - x_i) / ‖p - x_i‖
        H = np.zeros_like(positions)
        valid = predicted > 1e-10
        H[valid] = (position - positions[valid]) / predicted[valid, None]
        return H

    def _gauss_newton(
        self,
        positions: np.ndarray,
        distances: np.ndarray,
        W_diag: np.ndarray,
        position: np.ndarray,
    ) -> Tuple[np.ndarray, int, bool]:
        """Weighted Gauss-Newton: (HᵀWH) Δp = HᵀW r, p ← p + Δp."""
        predicted = np.linalg.norm(positions - position, axis=1)
        residuals = distances - predicted
        cost = np.sum(W_diag * residuals**2)

        converged = False
        iteration = 0
        for iteration in range(1, self.max_iter + 1):
            H = self._jacobian(positions, position, predicted)
            HtW = H.T * W_diag
            try:
                delta = np.linalg.solve(HtW @ H, HtW @ residuals)
            except np.linalg.LinAlgError as e:
                raise GeometricDegeneracyError(
                    f"Singular normal equations during refinement: {e}"
                )

            candidate = position + delta
            predicted_new = np.linalg.norm(positions - candidate, axis=1)
            residuals_new = distances - predicted_new
            cost_new = np.sum(W_diag * residuals_new**2)

            # Reject steps that increase the cost
            if cost_new > cost:
                break

            position = candidate
            predicted = predicted_new
            residuals = residuals_new
            cost = cost_new

            if np.linalg.norm(delta) < self.tol:
                converged = True
                break

        return position, iteration, converged
