"""
Interval schedules for time-based workouts.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional, Sequence, Tuple, Union

from .core import POWER_MAX, POWER_MIN, RESISTANCE_MAX, RESISTANCE_MIN
from .errors import ScheduleInvalid

logger = logging.getLogger(__name__)


class ScheduleKind(Enum):
    """What the interval values mean."""

    RESISTANCE = "resistance"
    POWER = "power"

    @property
    def value_range(self) -> Tuple[int, int]:
        if self is ScheduleKind.RESISTANCE:
            return RESISTANCE_MIN, RESISTANCE_MAX
        return POWER_MIN, POWER_MAX

    @property
    def unit(self) -> str:
        return "%" if self is ScheduleKind.RESISTANCE else "W"


@dataclass(frozen=True)
class Interval:
    """One block of a schedule: hold ``value`` for ``duration_s`` seconds."""

    duration_s: int
    value: int


class IntervalSchedule:
    """An ordered, validated list of intervals.

    The sum of the interval durations must equal ``total_duration_s``;
    mismatches are rejected, never corrected.
    """

    def __init__(
        self,
        kind: ScheduleKind,
        intervals: Sequence[Interval],
        total_duration_s: int,
    ) -> None:
        if not intervals:
            raise ScheduleInvalid("Schedule has no intervals")

        low, high = kind.value_range
        for index, interval in enumerate(intervals):
            if interval.duration_s < 0:
                raise ScheduleInvalid(
                    f"Interval {index + 1} has negative duration {interval.duration_s}s"
                )
            if not low <= interval.value <= high:
                raise ScheduleInvalid(
                    f"Interval {index + 1} {kind.value} {interval.value}{kind.unit} "
                    f"outside [{low}, {high}]"
                )

        total = sum(interval.duration_s for interval in intervals)
        if total != total_duration_s:
            raise ScheduleInvalid(
                f"Interval durations sum to {total}s, declared total is {total_duration_s}s"
            )

        self.kind = kind
        self.intervals = tuple(intervals)
        self.total_duration_s = total_duration_s

    @classmethod
    def from_tuples(
        cls,
        kind: Union[ScheduleKind, str],
        pairs: Iterable[Sequence[int]],
        total_duration_s: int,
    ) -> "IntervalSchedule":
        """Build a schedule from ``(duration_s, value)`` pairs."""
        try:
            kind = ScheduleKind(kind)
            intervals = [Interval(int(duration), int(value)) for duration, value in pairs]
            total = int(total_duration_s)
        except (TypeError, ValueError) as e:
            raise ScheduleInvalid(f"Malformed schedule: {e}") from e
        return cls(kind, intervals, total)

    def current_interval(self, elapsed_s: float) -> Optional[Interval]:
        """Interval active at ``elapsed_s``, or None once the schedule is done."""
        accumulated = 0
        for interval in self.intervals:
            accumulated += interval.duration_s
            if elapsed_s < accumulated:
                return interval
        return None

    def remaining_s(self, elapsed_s: float) -> float:
        return max(self.total_duration_s - elapsed_s, 0)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "total_duration_s": self.total_duration_s,
            "intervals": [[i.duration_s, i.value] for i in self.intervals],
        }

    def __repr__(self) -> str:
        return (
            f"IntervalSchedule(kind={self.kind.value}, intervals={len(self.intervals)}, "
            f"total={self.total_duration_s}s)"
        )


def load_schedule(path: Union[str, Path]) -> IntervalSchedule:
    """Read a schedule from a JSON file.

    Expected layout::

        {"kind": "resistance", "total_duration_s": 600,
         "intervals": [[300, 20], [300, 50]]}

    Raises:
        ScheduleInvalid: If the file is not a valid schedule
    """
    try:
        with open(path, "r") as f:
            data = json.load(f)
        schedule = IntervalSchedule.from_tuples(
            data["kind"], data["intervals"], data["total_duration_s"]
        )
    except (KeyError, TypeError, json.JSONDecodeError) as e:
        raise ScheduleInvalid(f"Malformed schedule file {path}: {e}") from e

    logger.info(f"Loaded schedule from {path}: {schedule}")
    return schedule
