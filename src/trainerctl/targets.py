"""
Target engine: what the trainer should be asked to do right now.

Both workout kinds map a position (elapsed seconds or traveled distance) to a
target without keeping any state.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .core import RESISTANCE_MAX, RESISTANCE_MIN
from .schedule import IntervalSchedule, ScheduleKind
from .track import Track

GradientCurve = Callable[[float], int]


class TargetKind(Enum):
    RESISTANCE = "resistance"
    POWER = "power"


@dataclass(frozen=True)
class Target:
    """A resistance percentage or a power in watts."""

    kind: TargetKind
    value: int

    @property
    def power_watts(self) -> int:
        """Power to command on the wire for this target."""
        if self.kind is TargetKind.POWER:
            return self.value
        return resistance_to_power(self.value)

    def __str__(self) -> str:
        unit = "%" if self.kind is TargetKind.RESISTANCE else " W"
        return f"{self.value}{unit}"


def _clamp_resistance(value: float) -> int:
    return min(max(int(value), RESISTANCE_MIN), RESISTANCE_MAX)


def resistance_from_gradient(gradient: float) -> int:
    """Resistance percentage for a road gradient in percent.

    Descents below -2% get a floor of 5%, gentle descents ramp linearly from
    5% to 15%, and climbs add a quadratic term so steep grades compound.
    """
    if gradient < -2.0:
        resistance = 5.0
    elif gradient < 0.0:
        resistance = 15 + gradient * 5
    else:
        resistance = 25 + gradient * 8.0 + gradient * gradient * 0.5
    return _clamp_resistance(resistance)


# (upper gradient bound, resistance) buckets of the stepped curve
_STEPS = ((0.0, 10), (2.0, 25), (4.0, 40), (6.0, 55), (8.0, 70))


def stepped_resistance_from_gradient(gradient: float) -> int:
    """Legacy six-bucket gradient curve."""
    for bound, resistance in _STEPS:
        if gradient < bound:
            return resistance
    return 85


GRADIENT_CURVES = {
    "polynomial": resistance_from_gradient,
    "stepped": stepped_resistance_from_gradient,
}


def resistance_to_power(resistance_pct: float) -> int:
    """Map a resistance percentage to target power (0% = 28 W, 100% = 456 W)."""
    return int(20 + math.exp(resistance_pct / 25.0) * 8)


class IntervalWorkout:
    """Time-based workout driven by an interval schedule."""

    def __init__(self, schedule: IntervalSchedule) -> None:
        self.schedule = schedule
        self.target_kind = (
            TargetKind.POWER
            if schedule.kind is ScheduleKind.POWER
            else TargetKind.RESISTANCE
        )

    @property
    def name(self) -> str:
        return f"{len(self.schedule.intervals)}-interval {self.schedule.kind.value} workout"

    def target_at(self, elapsed_s: float, distance_m: float) -> Optional[Target]:
        interval = self.schedule.current_interval(elapsed_s)
        if interval is None:
            return None
        return Target(self.target_kind, interval.value)


class TrackWorkout:
    """Distance-based workout following a track's elevation profile."""

    def __init__(self, track: Track, curve: GradientCurve = resistance_from_gradient) -> None:
        self.track = track
        self.curve = curve

    @property
    def name(self) -> str:
        return self.track.name

    def target_at(self, elapsed_s: float, distance_m: float) -> Optional[Target]:
        if distance_m >= self.track.total_distance:
            return None
        gradient = self.track.gradient_at(distance_m)
        return Target(TargetKind.RESISTANCE, self.curve(gradient))
