"""Threshold-based status classification."""

from numbers import Real

from core.dto.curriculum import Status
from core.errors import ValidationError


class StatusClassifier:
    """Maps a percent, a learner threshold and a blocked flag to a Status.

    Rules, in order: blocked wins; 0 is ``started``; below threshold is
    ``progress``; anything else is ``completed``. Status is always derived
    on read, never stored.
    """

    @staticmethod
    def validate_threshold(threshold) -> int:
        """Return the threshold as an int or raise ValidationError."""
        if isinstance(threshold, bool) or not isinstance(threshold, Real):
            raise ValidationError(f"Threshold must be a number, got {threshold!r}")
        if not 0 <= threshold <= 100:
            raise ValidationError(f"Threshold must be within [0, 100], got {threshold}")
        if threshold != int(threshold):
            raise ValidationError(f"Threshold must be a whole number, got {threshold}")
        return int(threshold)

    @staticmethod
    def classify(percent: float, threshold: int, blocked: bool = False) -> Status:
        if blocked:
            return Status.BLOCKED
        if percent == 0:
            return Status.STARTED
        if percent < threshold:
            return Status.PROGRESS
        return Status.COMPLETED
