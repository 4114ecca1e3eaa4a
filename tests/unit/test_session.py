"""Tests for the telemetry hub and workout recording."""

import struct

import pytest

from trainerctl.config import TrainerConfig
from trainerctl.decoder import CharacteristicKind, CounterSample, TelemetryFrame
from trainerctl.history import WorkoutDataPoint, WorkoutRecorder
from trainerctl.schedule import IntervalSchedule
from trainerctl.session import TelemetryHub
from trainerctl.targets import IntervalWorkout, Target, TargetKind, TrackWorkout
from trainerctl.track import Track, TrackPoint


def _interval_workout() -> IntervalWorkout:
    return IntervalWorkout(IntervalSchedule.from_tuples("resistance", [(2, 20), (2, 50)], 4))


def _short_track() -> Track:
    points = [TrackPoint(lat=45.0 + i * 0.0001, lon=6.0, elevation=100.0 + i) for i in range(3)]
    return Track.from_points("short", points)


def test_indoor_bike_data_notification_updates_state():
    hub = TelemetryHub()
    payload = struct.pack("<HHHH", 0x0044, 3000, 176, 200)

    frame = hub.handle_notification(CharacteristicKind.INDOOR_BIKE_DATA, payload)

    assert frame.power_watts == 200
    state = hub.snapshot()
    assert state.speed == pytest.approx(30.0)
    assert state.cadence == 88
    assert state.power == 30  # first smoothed value from zero
    assert state.speed_estimated is False


def test_malformed_notification_is_dropped():
    hub = TelemetryHub()
    updates = []
    hub.subscribe(updates.append)

    assert hub.handle_notification(CharacteristicKind.CYCLING_POWER_MEASUREMENT, b"\x00") is None
    assert hub.snapshot().power == 0
    assert updates == []


def test_wheel_and_crank_counters_feed_state():
    hub = TelemetryHub(TrainerConfig(wheel_circumference_m=2.0))
    hub.apply_frame(TelemetryFrame(wheel=CounterSample(100, 0), crank=CounterSample(10, 0)))
    hub.apply_frame(TelemetryFrame(wheel=CounterSample(105, 1024), crank=CounterSample(11, 512)))

    state = hub.snapshot()
    assert state.speed == pytest.approx(36.0)
    assert state.cadence == 120


def test_implausible_wheel_sample_keeps_previous_speed():
    hub = TelemetryHub(TrainerConfig(wheel_circumference_m=2.0))
    hub.apply_frame(TelemetryFrame(wheel=CounterSample(100, 0)))
    hub.apply_frame(TelemetryFrame(wheel=CounterSample(105, 1024)))
    hub.apply_frame(TelemetryFrame(wheel=CounterSample(106, 1034)))

    assert hub.snapshot().speed == pytest.approx(36.0)


def test_speed_estimate_only_when_enabled_and_unreported():
    hub = TelemetryHub(TrainerConfig(estimate_speed_from_power=True))
    hub.apply_frame(TelemetryFrame(power_watts=200))
    state = hub.snapshot()
    assert state.speed > 0
    assert state.speed_estimated is True

    hub.apply_frame(TelemetryFrame(speed_kmh=25.0))
    hub.apply_frame(TelemetryFrame(power_watts=200))
    assert hub.snapshot().speed == 25.0
    assert hub.snapshot().speed_estimated is False

    plain = TelemetryHub()
    plain.apply_frame(TelemetryFrame(power_watts=200))
    assert plain.snapshot().speed == 0.0


def test_interval_workout_ticks_to_completion():
    hub = TelemetryHub()
    first = hub.start_workout(_interval_workout())
    assert first == Target(TargetKind.RESISTANCE, 20)

    targets = [hub.tick(1.0) for _ in range(4)]
    assert targets == [
        Target(TargetKind.RESISTANCE, 20),
        Target(TargetKind.RESISTANCE, 50),
        Target(TargetKind.RESISTANCE, 50),
        None,
    ]
    state = hub.snapshot()
    assert state.workout_complete is True
    assert state.elapsed_s == 4.0

    # Completed workouts no longer advance
    assert hub.tick(1.0) is None
    assert hub.snapshot().elapsed_s == 4.0


def test_paused_workout_does_not_advance():
    hub = TelemetryHub()
    hub.start_workout(_interval_workout())
    hub.pause()
    assert hub.tick() is None
    assert hub.snapshot().elapsed_s == 0.0

    hub.resume()
    hub.tick()
    assert hub.snapshot().elapsed_s == 1.0


def test_distance_integrates_speed():
    hub = TelemetryHub()
    hub.start_workout(_interval_workout())
    hub.apply_frame(TelemetryFrame(speed_kmh=36.0))
    hub.tick(1.0)
    hub.tick(1.0)
    assert hub.snapshot().distance_m == pytest.approx(20.0)


def test_track_workout_distance_is_clamped():
    track = _short_track()
    hub = TelemetryHub()
    first = hub.start_workout(TrackWorkout(track))
    assert first is not None
    assert hub.snapshot().gradient is not None

    hub.apply_frame(TelemetryFrame(speed_kmh=90.0))
    for _ in range(5):
        hub.tick(1.0)

    state = hub.snapshot()
    assert state.distance_m == pytest.approx(track.total_distance)
    assert state.workout_complete is True
    assert state.position is track.points[-1]


def test_stop_workout_returns_summary():
    hub = TelemetryHub()
    hub.start_workout(_interval_workout())
    hub.apply_frame(TelemetryFrame(speed_kmh=36.0, power_watts=200, heart_rate_bpm=130))
    hub.tick()
    hub.tick()

    summary = hub.stop_workout()
    assert summary.name == _interval_workout().name
    assert summary.duration_s == 2
    assert summary.total_distance_m == pytest.approx(20.0)
    assert summary.average_heart_rate == 130

    state = hub.snapshot()
    assert state.workout_active is False
    assert state.target is None
    assert hub.stop_workout() is None


def test_listeners_get_snapshots_and_errors_are_contained():
    hub = TelemetryHub()
    seen = []

    def broken(state):
        raise RuntimeError("display gone")

    hub.subscribe(broken)
    unsubscribe = hub.subscribe(seen.append)

    hub.apply_frame(TelemetryFrame(heart_rate_bpm=140))
    assert seen[-1].heart_rate == 140
    assert seen[-1] is not hub.state

    unsubscribe()
    hub.apply_frame(TelemetryFrame(heart_rate_bpm=150))
    assert len(seen) == 1


def test_reset_clears_session():
    hub = TelemetryHub()
    hub.start_workout(_interval_workout())
    hub.apply_frame(TelemetryFrame(power_watts=250, crank=CounterSample(5, 100)))
    hub.tick()

    hub.reset()
    state = hub.snapshot()
    assert state.power == 0
    assert state.elapsed_s == 0.0
    assert state.workout_active is False
    assert hub.workout is None
    # Counter history is gone, so the next crank sample is a first sample
    hub.apply_frame(TelemetryFrame(crank=CounterSample(6, 1124)))
    assert hub.snapshot().cadence == 0


def test_recorder_summary_ignores_missing_heart_rate():
    recorder = WorkoutRecorder("ride")
    for second, hr in enumerate([0, 120, 140]):
        recorder.record(
            WorkoutDataPoint(
                elapsed_s=second + 1,
                power=100 * (second + 1),
                speed=30.0,
                cadence=90,
                heart_rate=hr,
                target=None,
                distance_m=8.0 * (second + 1),
            )
        )
    summary = recorder.summary()
    assert summary.average_heart_rate == 130
    assert summary.max_power == 300
    assert summary.average_power == 200
    assert summary.duration_s == 3

    assert WorkoutRecorder("empty").summary().duration_s == 0
