"""Observer interface for robust position estimation events."""

from typing import Optional


class PositionEstimatorListener:
    """
    Receives events from a robust position estimator.

    All methods are no-ops; subclass and override the ones of interest.
    Callbacks run synchronously inside ``estimate()``, while the estimator
    is locked, so they must not reconfigure it.
    """

    def on_estimate_start(self, estimator) -> None:
        """Called when estimation starts."""

    def on_estimate_end(self, estimator) -> None:
        """Called when estimation ends, successfully or not."""

    def on_estimate_next_iteration(self, estimator, iteration: int) -> Optional[bool]:
        """
        Called after every sampling iteration.

        Args:
            estimator: Estimator raising the event.
            iteration: 1-based iteration number.

        Returns:
            True to stop sampling early and refine the best model so far.
        """
        return None

    def on_estimate_progress_change(self, estimator, progress: float) -> None:
        """Called when progress in [0, 1] advances by the configured delta."""
