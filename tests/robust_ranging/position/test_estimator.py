"""
Unit tests for the robust ranging position estimators.

Tests the configuration lifecycle, locking, listener events and the
position accuracy of every robust method in 2D and 3D.
"""

import warnings

import numpy as np
import pytest
from numpy.testing import assert_allclose

from robust_ranging.config import RobustEstimatorConfig
from robust_ranging.errors import (
    InsufficientConsensusError,
    InvalidConfigurationError,
    LockedError,
    NotReadyError,
)
from robust_ranging.position import (
    PositionEstimatorListener,
    RobustRangingPositionEstimator,
    RobustRangingPositionEstimator2D,
    RobustRangingPositionEstimator3D,
)
from robust_ranging.types import (
    EstimatorState,
    LocatedSource,
    RangingFingerprint,
    RangingReading,
    RobustMethod,
)

TRUE_2D = np.array([3.0, 4.0])
TRUE_3D = np.array([2.0, 3.0, 4.0])

ALL_METHODS = list(RobustMethod)


def make_sources(positions):
    return [LocatedSource(f"s{i}", p) for i, p in enumerate(positions)]


def make_fingerprint(sources, true_position, offsets=None):
    offsets = np.zeros(len(sources)) if offsets is None else offsets
    return RangingFingerprint(
        [
            RangingReading(s.identifier, np.linalg.norm(s.position - true_position) + o)
            for s, o in zip(sources, offsets)
        ]
    )


@pytest.fixture
def square_sources():
    return make_sources([[0, 0], [10, 0], [0, 10], [10, 10]])


@pytest.fixture
def outlier_fingerprint(square_sources):
    """Exact distances to (3, 4) except s3, which reads 100 m."""
    readings = make_fingerprint(square_sources, TRUE_2D).readings
    readings[3] = RangingReading("s3", 100.0)
    return RangingFingerprint(readings)


def make_estimator(method, sources, fingerprint, scores=None, **kwargs):
    """2D estimator; progressive methods get scores to avoid the advisory warning."""
    if scores is None and method.is_progressive:
        scores = np.ones(len(sources))
    return RobustRangingPositionEstimator2D(
        method=method,
        sources=sources,
        fingerprint=fingerprint,
        source_quality_scores=scores,
        **kwargs,
    )


class RecordingListener(PositionEstimatorListener):
    """Records events and whether the estimator was locked during them."""

    def __init__(self, stop_at=None):
        self.events = []
        self.progress = []
        self.locked = []
        self.stop_at = stop_at

    def on_estimate_start(self, estimator):
        self.events.append("start")
        self.locked.append(estimator.is_locked)

    def on_estimate_end(self, estimator):
        self.events.append("end")
        self.locked.append(estimator.is_locked)

    def on_estimate_next_iteration(self, estimator, iteration):
        self.events.append(iteration)
        return self.stop_at is not None and iteration >= self.stop_at

    def on_estimate_progress_change(self, estimator, progress):
        self.progress.append(progress)


class TestConstruction:
    def test_min_required_sources(self):
        assert RobustRangingPositionEstimator2D().min_required_sources == 3
        assert RobustRangingPositionEstimator3D().min_required_sources == 4

    def test_base_class_is_abstract(self):
        with pytest.raises(TypeError):
            RobustRangingPositionEstimator()

    def test_defaults(self):
        estimator = RobustRangingPositionEstimator2D()

        assert estimator.method is RobustMethod.PROMEDS
        assert estimator.dimension == 2
        assert estimator.state is EstimatorState.UNCONFIGURED
        assert not estimator.is_ready
        assert not estimator.is_locked
        assert estimator.preliminary_subset_size == 3
        assert estimator.last_estimate is None

    def test_ready_after_construction(self, square_sources, outlier_fingerprint):
        estimator = make_estimator(
            RobustMethod.RANSAC, square_sources, outlier_fingerprint
        )

        assert estimator.is_ready
        assert estimator.state is EstimatorState.READY
        assert len(estimator.matched_set) == 4

    def test_too_few_sources(self):
        sources = make_sources([[0, 0], [10, 0]])
        with pytest.raises(InvalidConfigurationError, match="at least 3 sources"):
            RobustRangingPositionEstimator2D(
                method=RobustMethod.RANSAC,
                sources=sources,
                fingerprint=make_fingerprint(sources, TRUE_2D),
            )

    def test_too_few_matched_readings(self, square_sources):
        fingerprint = make_fingerprint(square_sources[:2], TRUE_2D)
        with pytest.raises(InvalidConfigurationError, match="match a known source"):
            make_estimator(RobustMethod.RANSAC, square_sources, fingerprint)

    def test_dimension_mismatch(self):
        sources = make_sources([[0, 0, 0], [10, 0, 0], [0, 10, 0], [0, 0, 10]])
        with pytest.raises(InvalidConfigurationError, match="expected 2D"):
            RobustRangingPositionEstimator2D(
                method=RobustMethod.RANSAC,
                sources=sources,
                fingerprint=make_fingerprint(sources, TRUE_3D),
            )

    def test_subset_size_below_minimum(self):
        config = RobustEstimatorConfig(preliminary_subset_size=3)
        with pytest.raises(InvalidConfigurationError, match="preliminary_subset_size"):
            RobustRangingPositionEstimator3D(config=config)

    def test_progressive_without_scores_warns(self, square_sources, outlier_fingerprint):
        with pytest.warns(UserWarning, match="uniform quality order"):
            RobustRangingPositionEstimator2D(
                method=RobustMethod.PROSAC,
                sources=square_sources,
                fingerprint=outlier_fingerprint,
            )

    def test_non_progressive_without_scores_is_silent(
        self, square_sources, outlier_fingerprint
    ):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            make_estimator(RobustMethod.MSAC, square_sources, outlier_fingerprint)


class TestConfiguration:
    def test_estimate_before_configure(self):
        with pytest.raises(NotReadyError):
            RobustRangingPositionEstimator2D(method=RobustMethod.RANSAC).estimate()

    def test_configure(self, square_sources, outlier_fingerprint):
        estimator = RobustRangingPositionEstimator2D(method=RobustMethod.LMEDS)
        listener = RecordingListener()

        estimator.configure(square_sources, outlier_fingerprint, listener=listener)

        assert estimator.is_ready
        assert estimator.listener is listener
        assert estimator.matched_set.source_ids == ("s0", "s1", "s2", "s3")

    def test_configure_requires_fingerprint(self, square_sources):
        estimator = RobustRangingPositionEstimator2D(method=RobustMethod.LMEDS)
        with pytest.raises(InvalidConfigurationError, match="fingerprint"):
            estimator.configure(square_sources, None)

    def test_setters_build_matched_set(self, square_sources, outlier_fingerprint):
        estimator = RobustRangingPositionEstimator2D(method=RobustMethod.MSAC)
        estimator.sources = square_sources
        assert not estimator.is_ready

        estimator.fingerprint = outlier_fingerprint
        assert estimator.is_ready

    def test_failed_change_is_rolled_back(self, square_sources, outlier_fingerprint):
        estimator = make_estimator(
            RobustMethod.RANSAC, square_sources, outlier_fingerprint
        )

        with pytest.raises(InvalidConfigurationError):
            estimator.source_quality_scores = [1.0, 2.0]

        assert estimator.source_quality_scores is None
        assert estimator.is_ready
        assert len(estimator.matched_set) == 4

    def test_failed_configure_keeps_previous_state(
        self, square_sources, outlier_fingerprint
    ):
        estimator = make_estimator(
            RobustMethod.RANSAC, square_sources, outlier_fingerprint
        )
        too_few = make_fingerprint(square_sources[:2], TRUE_2D)

        with pytest.raises(InvalidConfigurationError):
            estimator.configure(square_sources, too_few)

        assert estimator.fingerprint is outlier_fingerprint
        assert estimator.is_ready

    def test_unknown_sources_are_ignored(self, square_sources, outlier_fingerprint):
        readings = outlier_fingerprint.readings + [RangingReading("elsewhere", 3.0)]
        estimator = make_estimator(
            RobustMethod.RANSAC, square_sources, RangingFingerprint(readings), seed=0
        )

        result = estimator.estimate()

        assert len(estimator.matched_set) == 4
        assert_allclose(result.position, TRUE_2D, atol=1e-3)

    def test_quality_order(self, square_sources, outlier_fingerprint):
        estimator = make_estimator(
            RobustMethod.PROSAC,
            square_sources,
            outlier_fingerprint,
            scores=[0.5, 0.9, 0.7, 0.1],
        )
        assert list(estimator.quality_order) == [1, 2, 0, 3]


class TestAccuracy:
    @pytest.mark.parametrize("method", ALL_METHODS)
    def test_exact_recovery_minimal_set(self, method):
        sources = make_sources([[0, 0], [10, 0], [0, 10]])
        estimator = make_estimator(
            method, sources, make_fingerprint(sources, TRUE_2D), seed=0
        )

        result = estimator.estimate()

        assert_allclose(result.position, TRUE_2D, atol=1e-6)
        assert result.n_inliers == 3
        assert result.method is method

    @pytest.mark.parametrize("method", ALL_METHODS)
    def test_outlier_rejection(self, method, square_sources, outlier_fingerprint):
        estimator = make_estimator(
            method,
            square_sources,
            outlier_fingerprint,
            scores=[1.0, 0.9, 0.8, 0.1],
            seed=0,
        )

        result = estimator.estimate()

        assert_allclose(result.position, TRUE_2D, atol=1e-3)
        assert list(result.inliers) == [True, True, True, False]
        assert result.outlier_ids == ["s3"]
        assert result.n_inliers == 3
        assert result.covariance.shape == (2, 2)

    @pytest.mark.parametrize("method", [RobustMethod.PROSAC, RobustMethod.PROMEDS])
    def test_progressive_methods_try_best_readings_first(
        self, method, square_sources, outlier_fingerprint
    ):
        """With the outlier ranked last, the first subset is already clean."""
        estimator = make_estimator(
            method,
            square_sources,
            outlier_fingerprint,
            scores=[1.0, 0.9, 0.8, 0.1],
            seed=0,
        )

        assert estimator.estimate().best_iteration == 1

    def test_ransac_needs_more_draws_on_average(
        self, square_sources, outlier_fingerprint
    ):
        best_iterations = [
            make_estimator(
                RobustMethod.RANSAC, square_sources, outlier_fingerprint, seed=seed
            )
            .estimate()
            .best_iteration
            for seed in range(20)
        ]
        assert np.mean(best_iterations) > 1.0

    @pytest.mark.parametrize("method", ALL_METHODS)
    def test_3d_outlier_rejection(self, method):
        sources = make_sources(
            [[0, 0, 0], [10, 0, 0], [0, 10, 0], [0, 0, 10], [10, 10, 10]]
        )
        fingerprint = make_fingerprint(sources, TRUE_3D, offsets=[0, 0, 0, 0, 50.0])
        estimator = RobustRangingPositionEstimator3D(
            method=method,
            sources=sources,
            fingerprint=fingerprint,
            reading_quality_scores=[1.0, 1.0, 1.0, 1.0, 0.2],
            seed=0,
        )

        result = estimator.estimate()

        assert_allclose(result.position, TRUE_3D, atol=1e-3)
        assert result.outlier_ids == ["s4"]
        assert result.covariance.shape == (3, 3)

    def test_noisy_readings(self):
        angles = np.deg2rad(np.arange(0, 360, 45) + 10.0)
        ring = TRUE_2D + 10.0 * np.column_stack([np.cos(angles), np.sin(angles)])
        sources = make_sources(ring)
        offsets = np.array([0.01, -0.01, 12.0, 0.005, -0.01, -4.0, 0.01, -0.005])
        estimator = RobustRangingPositionEstimator2D(
            method=RobustMethod.MSAC,
            sources=sources,
            fingerprint=make_fingerprint(sources, TRUE_2D, offsets),
            config=RobustEstimatorConfig(threshold=0.3),
            seed=1,
        )

        result = estimator.estimate()

        assert np.linalg.norm(result.position - TRUE_2D) < 0.1
        assert set(result.outlier_ids) == {"s2", "s5"}

    def test_source_position_covariance_widens_result(self, square_sources):
        fingerprint = make_fingerprint(square_sources, TRUE_2D)
        uncertain = [
            LocatedSource(s.identifier, s.position, position_covariance=np.eye(2))
            for s in square_sources
        ]

        exact = make_estimator(RobustMethod.RANSAC, square_sources, fingerprint, seed=0)
        widened = make_estimator(RobustMethod.RANSAC, uncertain, fingerprint, seed=0)

        assert np.trace(widened.estimate().covariance) > np.trace(
            exact.estimate().covariance
        )


class TestEstimateLifecycle:
    def test_round_trip_is_stable(self, square_sources, outlier_fingerprint):
        estimator = make_estimator(
            RobustMethod.RANSAC, square_sources, outlier_fingerprint, seed=3
        )

        first = estimator.estimate()
        second = estimator.estimate()

        assert_allclose(first.position, second.position)
        assert first.iterations == second.iterations
        assert first.best_iteration == second.best_iteration
        assert estimator.last_estimate is second

    def test_listener_events(self, square_sources, outlier_fingerprint):
        listener = RecordingListener()
        estimator = make_estimator(
            RobustMethod.RANSAC,
            square_sources,
            outlier_fingerprint,
            listener=listener,
            seed=0,
        )

        result = estimator.estimate()

        assert listener.events[0] == "start"
        assert listener.events[-1] == "end"
        assert listener.events[1:-1] == list(range(1, result.iterations + 1))
        assert all(listener.locked)
        assert listener.progress[-1] == pytest.approx(1.0)
        assert estimator.state is EstimatorState.READY

    def test_listener_stops_early(self):
        rng = np.random.default_rng(0)
        sources = make_sources(rng.uniform(0, 20, size=(6, 2)))
        fingerprint = make_fingerprint(
            sources, TRUE_2D, offsets=[0.05, -0.04, 0.06, -0.05, 0.04, -0.06]
        )
        listener = RecordingListener(stop_at=2)
        estimator = RobustRangingPositionEstimator2D(
            method=RobustMethod.LMEDS,
            sources=sources,
            fingerprint=fingerprint,
            listener=listener,
            config=RobustEstimatorConfig(stop_threshold=1e-12),
            seed=0,
        )

        result = estimator.estimate()

        assert result.iterations == 2
        assert listener.events == ["start", 1, 2, "end"]

    def test_nested_estimate_is_rejected(self, square_sources, outlier_fingerprint):
        errors = []

        class NestedListener(PositionEstimatorListener):
            def on_estimate_start(self, estimator):
                try:
                    estimator.estimate()
                except LockedError as e:
                    errors.append(e)

        estimator = make_estimator(
            RobustMethod.LMEDS,
            square_sources,
            outlier_fingerprint,
            listener=NestedListener(),
            seed=0,
        )
        estimator.estimate()

        assert len(errors) == 1

    def test_changes_rejected_while_running(self, square_sources, outlier_fingerprint):
        rejected = []

        class MutatingListener(PositionEstimatorListener):
            def on_estimate_next_iteration(self, estimator, iteration):
                if iteration > 1:
                    return None
                changes = {
                    "sources": square_sources,
                    "fingerprint": outlier_fingerprint,
                    "source_quality_scores": None,
                    "reading_quality_scores": None,
                    "listener": None,
                    "config": RobustEstimatorConfig(),
                    "seed": 1,
                }
                for name, value in changes.items():
                    try:
                        setattr(estimator, name, value)
                    except LockedError:
                        rejected.append(name)
                try:
                    estimator.configure(square_sources, outlier_fingerprint)
                except LockedError:
                    rejected.append("configure")
                return None

        listener = MutatingListener()
        estimator = make_estimator(
            RobustMethod.RANSAC,
            square_sources,
            outlier_fingerprint,
            listener=listener,
            seed=0,
        )
        estimator.estimate()

        assert rejected == [
            "sources",
            "fingerprint",
            "source_quality_scores",
            "reading_quality_scores",
            "listener",
            "config",
            "seed",
            "configure",
        ]
        assert estimator.listener is listener
        assert estimator.seed == 0

        # Unlocked again afterwards
        estimator.seed = 1
        assert estimator.seed == 1

    def test_degenerate_geometry_fails_and_unlocks(self):
        sources = make_sources([[0, 0], [5, 0], [10, 0]])
        listener = RecordingListener()
        estimator = RobustRangingPositionEstimator2D(
            method=RobustMethod.RANSAC,
            sources=sources,
            fingerprint=make_fingerprint(sources, TRUE_2D),
            listener=listener,
            config=RobustEstimatorConfig(max_iterations=20),
        )

        with pytest.raises(InsufficientConsensusError):
            estimator.estimate()

        assert listener.events[-1] == "end"
        assert estimator.state is EstimatorState.READY
        assert estimator.last_estimate is None
