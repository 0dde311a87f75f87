"""Unit tests for ranging data types."""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from robust_ranging.errors import InvalidConfigurationError, RobustEstimationError
from robust_ranging.types import (
    EstimatorState,
    LocatedSource,
    PositionEstimate,
    RangingFingerprint,
    RangingReading,
    RobustMethod,
)


class TestLocatedSource:
    def test_position_converted_to_array(self):
        source = LocatedSource("ap1", [1, 2])

        assert isinstance(source.position, np.ndarray)
        assert source.position.dtype == float
        assert source.dimension == 2

    def test_3d_with_covariance(self):
        source = LocatedSource("ap1", [1, 2, 3], position_covariance=np.eye(3) * 0.01)
        assert source.dimension == 3
        assert source.position_covariance.shape == (3, 3)

    def test_invalid_dimension(self):
        with pytest.raises(InvalidConfigurationError, match="shape"):
            LocatedSource("ap1", [1, 2, 3, 4])

    def test_non_finite_position(self):
        with pytest.raises(InvalidConfigurationError, match="not finite"):
            LocatedSource("ap1", [np.nan, 0.0])

    def test_covariance_shape_mismatch(self):
        with pytest.raises(InvalidConfigurationError, match="covariance"):
            LocatedSource("ap1", [0, 0], position_covariance=np.eye(3))


class TestRangingReading:
    def test_valid(self):
        reading = RangingReading("ap1", 5, distance_std=0.2)
        assert reading.distance == 5.0
        assert reading.distance_std == 0.2

    def test_zero_distance_allowed(self):
        assert RangingReading("ap1", 0.0).distance == 0.0

    @pytest.mark.parametrize("distance", [-1.0, np.inf, np.nan])
    def test_invalid_distance(self, distance):
        with pytest.raises(InvalidConfigurationError, match="non-negative"):
            RangingReading("ap1", distance)

    def test_negative_std(self):
        with pytest.raises(InvalidConfigurationError):
            RangingReading("ap1", 1.0, distance_std=-0.1)

    def test_errors_are_value_errors(self):
        """Input errors can be caught as ValueError or as the family base."""
        with pytest.raises(ValueError):
            RangingReading("ap1", -1.0)
        with pytest.raises(RobustEstimationError):
            RangingReading("ap1", -1.0)


class TestRangingFingerprint:
    def test_length(self):
        fp = RangingFingerprint([RangingReading("a", 1.0), RangingReading("b", 2.0)])
        assert len(fp) == 2

    def test_duplicate_source(self):
        with pytest.raises(InvalidConfigurationError, match="Duplicate"):
            RangingFingerprint([RangingReading("a", 1.0), RangingReading("a", 2.0)])

    def test_rejects_other_types(self):
        with pytest.raises(InvalidConfigurationError):
            RangingFingerprint([("a", 1.0)])


class TestEnums:
    def test_progressive_methods(self):
        assert RobustMethod.PROSAC.is_progressive
        assert RobustMethod.PROMEDS.is_progressive
        assert not RobustMethod.RANSAC.is_progressive
        assert not RobustMethod.LMEDS.is_progressive
        assert not RobustMethod.MSAC.is_progressive

    def test_method_from_string(self):
        assert RobustMethod("prosac") is RobustMethod.PROSAC

    def test_locked_is_running(self):
        assert EstimatorState.LOCKED is EstimatorState.RUNNING


class TestPositionEstimate:
    def test_outlier_ids(self):
        estimate = PositionEstimate(
            position=np.array([3.0, 4.0]),
            inliers=np.array([True, False, True]),
            residuals=np.array([0.0, 9.0, 0.0]),
            covariance=None,
            iterations=5,
            n_inliers=2,
            best_iteration=1,
            method=RobustMethod.RANSAC,
            source_ids=("a", "b", "c"),
        )

        assert estimate.outlier_ids == ["b"]
        assert_allclose(estimate.position, [3.0, 4.0])
