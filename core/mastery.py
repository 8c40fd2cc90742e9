"""Smoothed mastery from repeated percentage observations.

Recent observations dominate, but a single noisy attempt should not swing
the displayed mastery wildly. The final value is ceil-rounded so the learner
is never under-credited by rounding.

Usage:
    from core.mastery import MasteryCalculator

    calc = MasteryCalculator()          # alpha = 0.7
    calc.calculate([0, 100])            # -> 70
    calc.from_observations(observations)
"""

import math
from numbers import Real
from typing import Iterable, List, Sequence

from core.dto.practice import MasteryObservation
from core.errors import ValidationError

DEFAULT_ALPHA = 0.7


class MasteryCalculator:
    """Exponential moving average over ordered percentage samples.

    ``ema[0] = clamp(p[0])``, ``ema[i] = ema[i-1] * (1 - alpha) + clamp(p[i]) * alpha``
    and the result is ``min(100, ceil(ema[-1]))``; an empty sequence gives 0.
    """

    def __init__(self, alpha: float = DEFAULT_ALPHA):
        """Initialize with a smoothing factor.

        Args:
            alpha: Weight of the newest observation, in (0, 1]

        Raises:
            ValidationError: If alpha is outside (0, 1]
        """
        if isinstance(alpha, bool) or not isinstance(alpha, Real) or math.isnan(alpha):
            raise ValidationError(f"Smoothing factor must be a number, got {alpha!r}")
        if not 0 < alpha <= 1:
            raise ValidationError(f"Smoothing factor must be in (0, 1], got {alpha}")
        self.alpha = float(alpha)

    # ==================== STATIC METHODS (Pure Calculations) ====================

    @staticmethod
    def clamp_percent(value: float) -> float:
        """Clamp a percentage to [0, 100]."""
        return max(0.0, min(100.0, float(value)))

    @staticmethod
    def validate_percent(value, field: str = "percent") -> float:
        """Check a percentage at a write boundary.

        Args:
            value: Candidate percentage
            field: Name used in the error message

        Returns:
            The value as a float

        Raises:
            ValidationError: If value is not a finite number in [0, 100]
        """
        if isinstance(value, bool) or not isinstance(value, Real):
            raise ValidationError(f"{field} must be a number, got {value!r}")
        if math.isnan(value) or math.isinf(value):
            raise ValidationError(f"{field} must be finite, got {value}")
        if not 0 <= value <= 100:
            raise ValidationError(f"{field} must be within [0, 100], got {value}")
        return float(value)

    @staticmethod
    def order_observations(
        observations: Iterable[MasteryObservation],
    ) -> List[MasteryObservation]:
        """Sort observations by timestamp, breaking ties by insertion order."""
        return sorted(observations, key=lambda o: (o.recorded_at, o.sequence))

    # ==================== INSTANCE METHODS ====================

    def smooth(self, percents: Sequence[float]) -> float:
        """Return the raw (unrounded) EMA of a sequence, or 0.0 when empty."""
        ema = None
        for value in percents:
            p = self.clamp_percent(value)
            if ema is None:
                ema = p
            else:
                ema = ema * (1 - self.alpha) + p * self.alpha
        return 0.0 if ema is None else ema

    def calculate(self, percents: Sequence[float]) -> int:
        """Smoothed mastery of an already ordered sequence, in [0, 100]."""
        if not percents:
            return 0
        return min(100, math.ceil(self.smooth(percents)))

    def from_observations(self, observations: Iterable[MasteryObservation]) -> int:
        """Smoothed mastery of observations in any order."""
        ordered = self.order_observations(observations)
        return self.calculate([o.percent for o in ordered])
