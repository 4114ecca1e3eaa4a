"""
In-memory recording of a workout and its summary.
"""

from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class WorkoutDataPoint:
    """Session values captured on one tick."""

    elapsed_s: int
    power: int
    speed: float
    cadence: int
    heart_rate: int
    target: Optional[int]
    distance_m: float


@dataclass(frozen=True)
class WorkoutSummary:
    name: str
    duration_s: int
    total_distance_m: float
    average_power: float
    max_power: int
    average_speed: float
    max_speed: float
    average_cadence: float
    average_heart_rate: float


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class WorkoutRecorder:
    """Collects one data point per tick for the active workout."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self.points: List[WorkoutDataPoint] = []

    def record(self, point: WorkoutDataPoint) -> None:
        self.points.append(point)

    def summary(self) -> WorkoutSummary:
        points = self.points
        powers = [p.power for p in points]
        speeds = [p.speed for p in points]
        # Zero heart rate means no strap, keep it out of the average
        heart_rates = [p.heart_rate for p in points if p.heart_rate > 0]
        return WorkoutSummary(
            name=self.name,
            duration_s=points[-1].elapsed_s if points else 0,
            total_distance_m=points[-1].distance_m if points else 0.0,
            average_power=_mean(powers),
            max_power=max(powers, default=0),
            average_speed=_mean(speeds),
            max_speed=max(speeds, default=0.0),
            average_cadence=_mean([p.cadence for p in points]),
            average_heart_rate=_mean(heart_rates),
        )
