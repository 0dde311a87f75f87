"""
Robust Ranging Positioning Example.

This script demonstrates robust position estimation from ranging readings
when some distances are corrupted (e.g., by non-line-of-sight propagation).

Compares:
    - Plain weighted lateration over all readings
    - RANSAC, LMedS, MSAC: uniform random sampling
    - PROSAC, PROMedS: sampling ordered by reading quality scores

Usage:
    python examples/example_robust_ranging.py
    python examples/example_robust_ranging.py --dimension 3 --outliers 3
    python examples/example_robust_ranging.py --method prosac --no-plot
"""

import argparse
import logging

import matplotlib.pyplot as plt
import numpy as np
from tqdm import tqdm

from robust_ranging import (
    InsufficientConsensusError,
    LaterationSolver,
    LocatedSource,
    PositionEstimatorListener,
    RangingFingerprint,
    RangingReading,
    RobustEstimatorConfig,
    RobustMethod,
    create_robust_ranging_estimator,
)

logger = logging.getLogger(__name__)


class ProgressLogger(PositionEstimatorListener):
    """Logs estimation progress at debug level."""

    def on_estimate_progress_change(self, estimator, progress):
        logger.debug("%s progress %.0f%%", estimator.method.name, 100 * progress)


def simulate_scene(dimension, n_sources, n_outliers, noise_std, rng):
    """
    Simulate sources around a device with some NLOS-corrupted distances.

    Returns:
        Tuple of (sources, fingerprint, quality_scores, true_position,
        outlier_mask).
    """
    true_position = rng.uniform(5.0, 15.0, size=dimension)
    positions = rng.uniform(0.0, 20.0, size=(n_sources, dimension))

    distances = np.linalg.norm(positions - true_position, axis=1)
    distances = np.maximum(distances + rng.normal(0.0, noise_std, size=n_sources), 0.0)

    # NLOS bias is always positive
    outlier_mask = np.zeros(n_sources, dtype=bool)
    outlier_mask[rng.choice(n_sources, size=n_outliers, replace=False)] = True
    distances[outlier_mask] += rng.uniform(3.0, 15.0, size=n_outliers)

    # Quality score: lower for corrupted readings, with some confusion
    quality = np.where(outlier_mask, 0.3, 0.8) + rng.uniform(-0.2, 0.2, size=n_sources)

    sources = [LocatedSource(f"AP{i}", p) for i, p in enumerate(positions)]
    fingerprint = RangingFingerprint(
        [
            RangingReading(s.identifier, d, distance_std=noise_std)
            for s, d in zip(sources, distances)
        ]
    )
    return sources, fingerprint, quality, true_position, outlier_mask


def example_non_robust(sources, fingerprint, true_position):
    """Example 1: Plain weighted lateration over every reading."""
    print("=" * 70)
    print("Example 1: Non-Robust Lateration (all readings)")
    print("=" * 70)

    positions = np.array([s.position for s in sources])
    distances = np.array([r.distance for r in fingerprint.readings])
    result = LaterationSolver().solve(positions, distances)

    error = np.linalg.norm(result.position - true_position)
    print(f"\nEstimated position: {result.position}")
    print(f"Position error: {error:.3f} m")
    print(f"Converged: {result.converged}, iterations: {result.iterations}")
    return result.position


def example_robust(methods, dimension, sources, fingerprint, quality, true_position,
                   outlier_mask, seed):
    """Example 2: Robust estimators on the same scene."""
    print("\n" + "=" * 70)
    print("Example 2: Robust Estimation")
    print("=" * 70)

    config = RobustEstimatorConfig(threshold=0.5)
    truth_ids = {s.identifier for s, bad in zip(sources, outlier_mask) if bad}
    print(f"\nCorrupted readings: {sorted(truth_ids)}")
    print(f"\n{'Method':<10} {'Error [m]':>10} {'Iter':>6} {'Best':>6} {'Inliers':>8}  Rejected")
    print("-" * 70)

    estimates = {}
    for method in methods:
        estimator = create_robust_ranging_estimator(
            dimension,
            method,
            sources=sources,
            fingerprint=fingerprint,
            reading_quality_scores=quality if method.is_progressive else None,
            listener=ProgressLogger(),
            config=config,
            seed=seed,
        )
        try:
            result = estimator.estimate()
        except InsufficientConsensusError as e:
            print(f"{method.name:<10} failed: {e}")
            continue
        estimates[method] = result

        error = np.linalg.norm(result.position - true_position)
        print(
            f"{method.name:<10} {error:>10.3f} {result.iterations:>6d} "
            f"{result.best_iteration:>6d} {result.n_inliers:>8d}  "
            f"{sorted(result.outlier_ids)}"
        )

    return estimates


def example_monte_carlo(methods, dimension, n_sources, n_outliers, noise_std,
                        n_trials, seed):
    """Example 3: Mean position error over random scenes."""
    print("\n" + "=" * 70)
    print(f"Example 3: Monte Carlo Comparison ({n_trials} trials)")
    print("=" * 70)

    rng = np.random.default_rng(seed)
    config = RobustEstimatorConfig(threshold=0.5)
    errors = {method: [] for method in methods}
    failures = {method: 0 for method in methods}

    for trial in tqdm(range(n_trials), desc="Simulating scenes", unit="trial"):
        sources, fingerprint, quality, true_position, _ = simulate_scene(
            dimension, n_sources, n_outliers, noise_std, rng
        )
        for method in methods:
            estimator = create_robust_ranging_estimator(
                dimension,
                method,
                sources=sources,
                fingerprint=fingerprint,
                reading_quality_scores=quality if method.is_progressive else None,
                config=config,
                seed=trial,
            )
            try:
                result = estimator.estimate()
            except InsufficientConsensusError:
                failures[method] += 1
                continue
            errors[method].append(np.linalg.norm(result.position - true_position))

    print(f"\n{'Method':<10} {'Mean [m]':>10} {'Median [m]':>11} {'Failures':>9}")
    print("-" * 45)
    for method in methods:
        err = np.array(errors[method])
        mean = err.mean() if err.size else np.nan
        median = np.median(err) if err.size else np.nan
        print(f"{method.name:<10} {mean:>10.3f} {median:>11.3f} {failures[method]:>9d}")

    return errors


def plot_results(sources, true_position, non_robust, estimates, outlier_mask):
    """Plot sources, truth and estimates (2D only)."""
    positions = np.array([s.position for s in sources])

    fig, ax = plt.subplots(figsize=(8, 8))
    ax.scatter(*positions[~outlier_mask].T, marker="^", s=120, c="tab:blue",
               label="Sources (LOS)")
    ax.scatter(*positions[outlier_mask].T, marker="^", s=120, c="tab:red",
               label="Sources (NLOS)")
    ax.scatter(*true_position, marker="*", s=300, c="k", label="True position")
    ax.scatter(*non_robust, marker="x", s=150, c="tab:gray", label="Non-robust")

    markers = ["o", "s", "D", "v", "P"]
    for marker, (method, result) in zip(markers, estimates.items()):
        ax.scatter(*result.position, marker=marker, s=80, facecolors="none",
                   edgecolors="tab:green", label=method.name)

    ax.set_xlabel("x [m]")
    ax.set_ylabel("y [m]")
    ax.set_title("Robust Ranging Positioning")
    ax.set_aspect("equal")
    ax.grid(True, alpha=0.3)
    ax.legend(loc="best")
    plt.tight_layout()
    plt.show()


def main():
    parser = argparse.ArgumentParser(
        description="Robust ranging positioning with RANSAC/LMedS/MSAC/PROSAC/PROMedS",
    )
    parser.add_argument(
        "--method",
        choices=[m.value for m in RobustMethod],
        default=None,
        help="Run a single method (default: compare all)",
    )
    parser.add_argument("--dimension", type=int, choices=[2, 3], default=2)
    parser.add_argument("--sources", type=int, default=10, help="Number of sources")
    parser.add_argument("--outliers", type=int, default=3, help="Corrupted readings")
    parser.add_argument("--noise", type=float, default=0.1, help="Distance noise std [m]")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    parser.add_argument("--trials", type=int, default=50, help="Monte Carlo trials (0 to skip)")
    parser.add_argument("--no-plot", action="store_true", help="Skip the figure")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.outliers >= args.sources:
        parser.error("--outliers must be smaller than --sources")

    rng = np.random.default_rng(args.seed)
    sources, fingerprint, quality, true_position, outlier_mask = simulate_scene(
        args.dimension, args.sources, args.outliers, args.noise, rng
    )
    print(f"True position: {true_position}\n")

    methods = list(RobustMethod) if args.method is None else [RobustMethod(args.method)]

    non_robust = example_non_robust(sources, fingerprint, true_position)
    estimates = example_robust(
        methods, args.dimension, sources, fingerprint, quality, true_position,
        outlier_mask, args.seed,
    )

    if args.trials > 0:
        example_monte_carlo(
            methods, args.dimension, args.sources, args.outliers, args.noise,
            args.trials, args.seed,
        )

    if not args.no_plot and args.dimension == 2:
        plot_results(sources, true_position, non_robust, estimates, outlier_mask)


if __name__ == "__main__":
    main()
