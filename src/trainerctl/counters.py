"""
Speed and cadence from rolling wheel and crank revolution counters.
"""

import logging
from typing import Optional

from .core import SPEED_MAX_KMH
from .decoder import CounterSample
from .errors import ImplausibleSample

logger = logging.getLogger(__name__)

EVENT_TIME_WRAP = 65536
TICKS_PER_SECOND = 1024.0


def time_delta(prior: int, current: int) -> int:
    """Difference of two 16-bit event times, assuming at most one wrap."""
    delta = current - prior
    if delta < 0:
        delta += EVENT_TIME_WRAP
    return delta


class _CounterStream:
    """Keeps the last sample of one counter stream."""

    def __init__(self) -> None:
        self._prior: Optional[CounterSample] = None

    @property
    def prior(self) -> Optional[CounterSample]:
        return self._prior

    def reset(self) -> None:
        self._prior = None

    def _swap(self, sample: CounterSample) -> Optional[CounterSample]:
        prior, self._prior = self._prior, sample
        return prior


class WheelCounter(_CounterStream):
    """Converts wheel revolution samples into speed in km/h."""

    MIN_WINDOW_S = 0.1
    MAX_WINDOW_S = 5.0

    def __init__(self, circumference_m: float) -> None:
        super().__init__()
        self.circumference_m = circumference_m

    def update(self, sample: CounterSample) -> Optional[float]:
        """Store ``sample`` and return the speed since the previous one.

        Returns:
            Speed in km/h, or None for the first sample of a session

        Raises:
            ImplausibleSample: If the time window or resulting speed is out of
                bounds. The sample is still kept as the new prior.
        """
        prior = self._swap(sample)
        if prior is None:
            logger.debug(f"First wheel sample: {sample}")
            return None

        rev_delta = sample.revolutions - prior.revolutions
        seconds = time_delta(prior.event_time, sample.event_time) / TICKS_PER_SECOND

        if not self.MIN_WINDOW_S <= seconds <= self.MAX_WINDOW_S:
            raise ImplausibleSample(f"Wheel time window {seconds:.3f}s out of range")

        if rev_delta <= 0:
            return 0.0

        speed = rev_delta * self.circumference_m / seconds * 3.6
        if not 0.0 <= speed < SPEED_MAX_KMH:
            raise ImplausibleSample(f"Wheel speed {speed:.1f} km/h out of range")

        logger.debug(f"Wheel: revs={rev_delta}, dt={seconds:.3f}s, speed={speed:.2f} km/h")
        return speed


class CrankCounter(_CounterStream):
    """Converts crank revolution samples into cadence in RPM."""

    def update(self, sample: CounterSample) -> Optional[float]:
        """Store ``sample`` and return the cadence since the previous one.

        Raises:
            ImplausibleSample: If no time elapsed between the two samples
        """
        prior = self._swap(sample)
        if prior is None:
            logger.debug(f"First crank sample: {sample}")
            return None

        rev_delta = sample.revolutions - prior.revolutions
        ticks = time_delta(prior.event_time, sample.event_time)

        if ticks <= 0:
            raise ImplausibleSample("Crank event time did not advance")

        if rev_delta <= 0:
            return 0.0

        return rev_delta * TICKS_PER_SECOND * 60 / ticks
