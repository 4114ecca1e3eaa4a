"""Tests for counter differencing and signal conditioning."""

import pytest

from trainerctl.conditioning import PowerSmoother, estimate_speed_from_power
from trainerctl.counters import CrankCounter, WheelCounter, time_delta
from trainerctl.decoder import CounterSample
from trainerctl.errors import ImplausibleSample


def test_time_delta_wraps_once():
    assert time_delta(65000, 500) == 1036
    assert time_delta(1000, 2024) == 1024
    assert time_delta(500, 500) == 0


def test_first_sample_gives_no_reading():
    assert WheelCounter(2.105).update(CounterSample(100, 1000)) is None
    assert CrankCounter().update(CounterSample(10, 1000)) is None


@pytest.mark.parametrize(
    "revs,ticks",
    [(1, 103), (3, 1024), (5, 2048), (2, 5120), (0, 2048)],
)
def test_wheel_speed_formula(revs, ticks):
    circumference = 2.105
    counter = WheelCounter(circumference)
    counter.update(CounterSample(1000, 60000))
    speed = counter.update(CounterSample(1000 + revs, (60000 + ticks) % 65536))

    expected = revs * circumference / (ticks / 1024) * 3.6
    assert speed >= 0
    assert speed == pytest.approx(expected)


def test_wheel_no_movement_is_exactly_zero():
    counter = WheelCounter(2.105)
    counter.update(CounterSample(500, 0))
    assert counter.update(CounterSample(500, 1024)) == 0.0
    # Counter going backwards also means stopped
    assert counter.update(CounterSample(490, 2048)) == 0.0


def test_wheel_window_out_of_range_keeps_new_sample():
    counter = WheelCounter(2.105)
    counter.update(CounterSample(100, 0))

    with pytest.raises(ImplausibleSample):
        counter.update(CounterSample(101, 50))  # under 0.1 s
    assert counter.prior == CounterSample(101, 50)

    with pytest.raises(ImplausibleSample):
        counter.update(CounterSample(110, 50 + 6 * 1024))  # over 5 s

    # Next sample is measured against the stored one
    speed = counter.update(CounterSample(111, 50 + 7 * 1024))
    assert speed == pytest.approx(2.105 * 3.6)


def test_wheel_speed_over_limit_is_rejected():
    counter = WheelCounter(2.105)
    counter.update(CounterSample(0, 0))
    with pytest.raises(ImplausibleSample):
        counter.update(CounterSample(20, 1024))  # 151 km/h


def test_small_circumference_speed():
    counter = WheelCounter(0.28)
    counter.update(CounterSample(0, 0))
    assert counter.update(CounterSample(30, 1024)) == pytest.approx(30.24)


def test_crank_cadence():
    counter = CrankCounter()
    counter.update(CounterSample(1000, 20000))
    assert counter.update(CounterSample(1002, 21024)) == pytest.approx(120.0)


def test_crank_cadence_across_time_wrap():
    counter = CrankCounter()
    counter.update(CounterSample(10, 65000))
    cadence = counter.update(CounterSample(12, 500))
    assert cadence == pytest.approx(2 * 1024 * 60 / 1036)


def test_crank_no_revolutions_is_zero():
    counter = CrankCounter()
    counter.update(CounterSample(1000, 20000))
    assert counter.update(CounterSample(1000, 21024)) == 0.0


def test_crank_repeated_event_time_is_implausible():
    counter = CrankCounter()
    counter.update(CounterSample(1000, 20000))
    with pytest.raises(ImplausibleSample):
        counter.update(CounterSample(1000, 20000))


def test_reset_forgets_prior():
    counter = CrankCounter()
    counter.update(CounterSample(1000, 20000))
    counter.reset()
    assert counter.prior is None
    assert counter.update(CounterSample(1002, 21024)) is None


def test_power_smoother():
    smoother = PowerSmoother(0.85)
    assert smoother.update(200) == pytest.approx(30.0)
    assert smoother.update(200) == pytest.approx(0.85 * 30 + 0.15 * 200)


def test_power_smoother_ignores_dropout_near_zero():
    smoother = PowerSmoother(0.85)
    assert smoother.update(0) == 0.0
    assert smoother.update(1) == 0.0

    smoother.update(100)
    value = smoother.value
    # Above 1 W the filter decays toward the zero reading
    assert smoother.update(0) == pytest.approx(0.85 * value)


def test_speed_estimate_is_monotonic():
    assert estimate_speed_from_power(0) == 0.0
    assert estimate_speed_from_power(-5) == 0.0
    speeds = [estimate_speed_from_power(w) for w in (50, 100, 200, 400)]
    assert speeds == sorted(speeds)
    assert 25 < estimate_speed_from_power(200) < 40
