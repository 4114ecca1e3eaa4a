"""
Telemetry hub: the single mutable state of a connected session.

Notifications are decoded and conditioned synchronously as they arrive; a
periodic tick advances elapsed time and distance and asks the target engine
what the trainer should do next. Front ends read :meth:`TelemetryHub.snapshot`
or subscribe to updates.
"""

import logging
from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Union

from .conditioning import PowerSmoother, estimate_speed_from_power
from .config import TrainerConfig
from .core import SPEED_MAX_KMH
from .counters import CrankCounter, WheelCounter
from .decoder import CharacteristicKind, TelemetryFrame, decode_frame
from .errors import ImplausibleSample, MalformedFrame
from .history import WorkoutDataPoint, WorkoutRecorder, WorkoutSummary
from .targets import IntervalWorkout, Target, TrackWorkout
from .track import TrackPoint

logger = logging.getLogger(__name__)

Workout = Union[IntervalWorkout, TrackWorkout]
Listener = Callable[["SessionState"], None]


@dataclass
class SessionState:
    """Current values of a session, as shown to the rider."""

    power: int = 0
    cadence: int = 0
    speed: float = 0.0
    heart_rate: int = 0
    distance_m: float = 0.0
    elapsed_s: float = 0.0
    speed_estimated: bool = False
    target: Optional[Target] = None
    gradient: Optional[float] = None
    position: Optional[TrackPoint] = None
    workout_name: Optional[str] = None
    workout_active: bool = False
    workout_complete: bool = False
    paused: bool = False


class TelemetryHub:
    """Composes decoding, counters and smoothing into one session state."""

    def __init__(self, config: Optional[TrainerConfig] = None) -> None:
        self.config = config or TrainerConfig()
        self.state = SessionState()
        self.workout: Optional[Workout] = None
        self._wheel = WheelCounter(self.config.wheel_circumference_m)
        self._crank = CrankCounter()
        self._power = PowerSmoother(self.config.smoothing_alpha)
        self._recorder: Optional[WorkoutRecorder] = None
        self._speed_reported = False
        self._listeners: List[Listener] = []

    # ========== Observers ==========

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with a state snapshot after every update.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def snapshot(self) -> SessionState:
        return replace(self.state)

    def _publish(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Session listener error: {e}")

    # ========== Telemetry ==========

    def handle_notification(self, kind: CharacteristicKind, payload: bytes) -> Optional[TelemetryFrame]:
        """Decode and apply one notification.

        Malformed payloads are logged and dropped without touching the state.

        Returns:
            The decoded frame, or None if it was dropped
        """
        try:
            frame = decode_frame(kind, payload)
        except MalformedFrame as e:
            logger.warning(f"Dropped frame: {e}")
            return None
        self.apply_frame(frame)
        return frame

    def apply_frame(self, frame: TelemetryFrame) -> None:
        state = self.state

        if frame.speed_kmh is not None:
            state.speed = frame.speed_kmh
            state.speed_estimated = False
            self._speed_reported = True

        if frame.cadence_rpm is not None:
            state.cadence = int(frame.cadence_rpm)

        if frame.heart_rate_bpm is not None:
            state.heart_rate = frame.heart_rate_bpm

        if frame.power_watts is not None:
            state.power = int(self._power.update(frame.power_watts))

        if frame.wheel is not None:
            self._speed_reported = True
            try:
                speed = self._wheel.update(frame.wheel)
            except ImplausibleSample as e:
                logger.debug(f"Ignored wheel sample: {e}")
            else:
                if speed is not None:
                    state.speed = speed
                    state.speed_estimated = False

        if frame.crank is not None:
            try:
                cadence = self._crank.update(frame.crank)
            except ImplausibleSample as e:
                logger.debug(f"Ignored crank sample: {e}")
            else:
                if cadence is not None:
                    state.cadence = int(cadence)

        if (
            not self._speed_reported
            and self.config.estimate_speed_from_power
            and frame.power_watts is not None
        ):
            state.speed = estimate_speed_from_power(state.power)
            state.speed_estimated = True

        self._publish()

    # ========== Workout ==========

    def start_workout(self, workout: Workout) -> Optional[Target]:
        """Begin ``workout`` from zero and return its first target."""
        state = self.state
        self.workout = workout
        self._recorder = WorkoutRecorder(workout.name)
        state.elapsed_s = 0.0
        state.distance_m = 0.0
        state.workout_name = workout.name
        state.workout_active = True
        state.workout_complete = False
        state.paused = False
        self._update_track_position()
        state.target = workout.target_at(0.0, 0.0)
        logger.info(f"Started workout {workout.name!r}, first target {state.target}")
        self._publish()
        return state.target

    def pause(self) -> None:
        if self.workout is not None:
            self.state.paused = True
            logger.info(f"Workout paused at {self.state.elapsed_s:.0f}s")
            self._publish()

    def resume(self) -> None:
        if self.workout is not None:
            self.state.paused = False
            logger.info(f"Workout resumed at {self.state.elapsed_s:.0f}s")
            self._publish()

    def stop_workout(self) -> Optional[WorkoutSummary]:
        """End the active workout and summarize it."""
        if self.workout is None:
            return None
        summary = self._recorder.summary() if self._recorder else None
        self.workout = None
        self._recorder = None
        state = self.state
        state.workout_active = False
        state.paused = False
        state.target = None
        state.gradient = None
        state.position = None
        logger.info(f"Stopped workout at {state.elapsed_s:.0f}s, {state.distance_m:.0f}m")
        self._publish()
        return summary

    def tick(self, dt: float = 1.0) -> Optional[Target]:
        """Advance the active workout by ``dt`` seconds.

        Returns:
            Target the trainer should hold now, or None when there is no
            running workout or it has just completed
        """
        workout = self.workout
        state = self.state
        if workout is None or state.paused or state.workout_complete:
            return None

        state.elapsed_s += dt
        speed = state.speed if 0 < state.speed < SPEED_MAX_KMH else 0.0
        state.distance_m += speed / 3.6 * dt
        if isinstance(workout, TrackWorkout):
            state.distance_m = min(state.distance_m, workout.track.total_distance)
        self._update_track_position()

        target = workout.target_at(state.elapsed_s, state.distance_m)
        state.target = target
        if target is None:
            state.workout_complete = True
            logger.info(f"Workout {workout.name!r} complete")

        if self._recorder is not None:
            self._recorder.record(
                WorkoutDataPoint(
                    elapsed_s=int(state.elapsed_s),
                    power=state.power,
                    speed=state.speed,
                    cadence=state.cadence,
                    heart_rate=state.heart_rate,
                    target=target.value if target else None,
                    distance_m=state.distance_m,
                )
            )

        self._publish()
        return target

    def _update_track_position(self) -> None:
        workout = self.workout
        if isinstance(workout, TrackWorkout):
            self.state.position = workout.track.position_at(self.state.distance_m)
            self.state.gradient = workout.track.gradient_at(self.state.distance_m)
        else:
            self.state.position = None
            self.state.gradient = None

    # ========== Lifecycle ==========

    def reset(self) -> None:
        """Discard all per-session state, e.g. on disconnect."""
        self._wheel.reset()
        self._crank.reset()
        self._power.reset()
        self.workout = None
        self._recorder = None
        self._speed_reported = False
        self.state = SessionState()
        self._publish()
