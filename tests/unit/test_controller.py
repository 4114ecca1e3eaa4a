"""Controller tests against an in-memory stand-in for the BLE client."""

import asyncio
import struct
from types import SimpleNamespace

import pytest
from bleak.exc import BleakError
from pyftms import ResultCode

from trainerctl.config import TrainerConfig
from trainerctl.control import encode_request_control, encode_set_target_power
from trainerctl.controller import (
    ConnectionState,
    TrainerController,
    is_trainer_advertisement,
)
from trainerctl.core import CYCLING_POWER_SERVICE_UUID, FTMS_CONTROL_POINT_UUID, INDOOR_BIKE_DATA_UUID
from trainerctl.schedule import IntervalSchedule
from trainerctl.targets import GRADIENT_CURVES, IntervalWorkout, Target, TargetKind, resistance_to_power
from trainerctl.track import Track, TrackPoint


class FakeClient:
    """Records control point writes; optionally fails them."""

    address = "AA:BB:CC:DD:EE:FF"

    def __init__(self, fail_writes: bool = False) -> None:
        self.is_connected = True
        self.fail_writes = fail_writes
        self.writes = []

    async def write_gatt_char(self, uuid, data, response=False):
        assert uuid == FTMS_CONTROL_POINT_UUID
        assert response is True
        if self.fail_writes:
            raise BleakError("write failed")
        self.writes.append(bytes(data))

    async def disconnect(self):
        self.is_connected = False
        return True


def _connected(config=None, **client_kwargs):
    controller = TrainerController(config)
    client = FakeClient(**client_kwargs)
    controller._client = client
    controller._has_control_point = True
    controller._state = ConnectionState.CONNECTED
    return controller, client


def test_advertisement_filter():
    assert is_trainer_advertisement(None, [CYCLING_POWER_SERVICE_UUID.upper()])
    assert is_trainer_advertisement("KICKR CORE 1234", [])
    assert is_trainer_advertisement("Wahoo HEADWIND", [])
    assert not is_trainer_advertisement("Pixel 7", ["0000180f-0000-1000-8000-00805f9b34fb"])
    assert not is_trainer_advertisement(None, [])


@pytest.mark.asyncio
async def test_commands_without_connection_fail():
    controller = TrainerController()
    assert await controller.set_target_power(200) == ResultCode.FAILED
    assert await controller.set_resistance(40) == ResultCode.FAILED
    assert await controller.start_workout(
        IntervalWorkout(IntervalSchedule.from_tuples("power", [(10, 100)], 10))
    ) == ResultCode.FAILED


@pytest.mark.asyncio
async def test_out_of_range_values_are_rejected():
    controller, client = _connected()
    assert await controller.set_target_power(0) == ResultCode.INVALID_PARAMETER
    assert await controller.set_target_power(1500) == ResultCode.INVALID_PARAMETER
    assert await controller.set_resistance(101) == ResultCode.INVALID_PARAMETER
    assert client.writes == []


@pytest.mark.asyncio
async def test_set_target_power_requests_control_first():
    controller, client = _connected()

    assert await controller.set_target_power(200) == ResultCode.SUCCESS
    assert client.writes == [encode_request_control(), encode_set_target_power(200)]
    assert not controller.sequencer.busy


@pytest.mark.asyncio
async def test_set_resistance_sends_mapped_power():
    controller, client = _connected()

    assert await controller.set_resistance(40) == ResultCode.SUCCESS
    assert client.writes[-1] == encode_set_target_power(resistance_to_power(40))


@pytest.mark.asyncio
async def test_failed_write_reports_failure_and_frees_sequencer():
    controller, client = _connected(fail_writes=True)

    assert await controller.set_target_power(200) == ResultCode.FAILED
    assert not controller.sequencer.busy
    assert controller.sequencer.pending is None


@pytest.mark.asyncio
async def test_missing_control_point_is_not_supported():
    controller, client = _connected()
    controller._has_control_point = False
    assert await controller.set_target_power(200) == ResultCode.NOT_SUPPORTED


@pytest.mark.asyncio
async def test_apply_target_remembers_last_target():
    controller, client = _connected()
    target = Target(TargetKind.POWER, 180)

    assert await controller.apply_target(target) == ResultCode.SUCCESS
    assert controller._last_target == target


@pytest.mark.asyncio
async def test_workout_runs_to_completion():
    config = TrainerConfig(tick_interval_s=0.01)
    controller, client = _connected(config)
    done = asyncio.Event()
    summaries = []

    def on_complete(summary):
        summaries.append(summary)
        done.set()

    controller.set_on_workout_complete(on_complete)
    schedule = IntervalSchedule.from_tuples("resistance", [(1, 20)], 1)

    assert await controller.start_workout(IntervalWorkout(schedule)) == ResultCode.SUCCESS
    assert controller.workout_active
    await asyncio.wait_for(done.wait(), timeout=5)

    assert not controller.workout_active
    assert summaries[0].duration_s >= 0
    targets = [w for w in client.writes if w[0] == 0x05]
    # First target once, then release to 0% on completion
    assert targets == [
        encode_set_target_power(resistance_to_power(20)),
        encode_set_target_power(resistance_to_power(0)),
    ]


@pytest.mark.asyncio
async def test_stop_workout_returns_summary():
    config = TrainerConfig(tick_interval_s=10)
    controller, client = _connected(config)
    schedule = IntervalSchedule.from_tuples("power", [(60, 150)], 60)

    await controller.start_workout(IntervalWorkout(schedule))
    summary = await controller.stop_workout()

    assert summary is not None
    assert not controller.workout_active
    assert controller._tick_task is None
    assert client.writes[-1] == encode_set_target_power(resistance_to_power(0))
    await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_disconnect_resets_session():
    controller, client = _connected()
    states = []
    controller.set_on_state_change(states.append)
    controller.hub.state.power = 250
    generation = controller.sequencer.generation

    await controller.disconnect()

    assert not client.is_connected
    assert controller.is_connected is False
    assert controller.hub.snapshot().power == 0
    assert controller.sequencer.generation == generation + 1
    assert states == [ConnectionState.DISCONNECTED]


@pytest.mark.asyncio
async def test_device_initiated_disconnect_calls_back():
    controller, client = _connected()
    called = []
    controller.set_on_disconnect(lambda: called.append(True))

    controller._on_device_disconnect(client)

    assert called == [True]
    assert controller.connection_state is ConnectionState.DISCONNECTED
    # Stale callbacks from an older client are ignored
    controller._on_device_disconnect(client)
    assert called == [True]


@pytest.mark.asyncio
async def test_notifications_reach_the_hub():
    controller, client = _connected()
    sender = SimpleNamespace(uuid=INDOOR_BIKE_DATA_UUID.upper())

    controller._on_notification(sender, bytearray(struct.pack("<HH", 0x0000, 2500)))
    assert controller.get_status()["speed"] == pytest.approx(25.0)

    controller._on_notification(SimpleNamespace(uuid="00002a19-0000-1000-8000-00805f9b34fb"), bytearray(b"\x50"))
    assert controller.get_status()["speed"] == pytest.approx(25.0)


def test_address_cache(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path))
    controller = TrainerController()

    assert controller._load_cached_address() is None
    controller._save_cached_address("11:22:33:44:55:66")
    assert controller._load_cached_address() == "11:22:33:44:55:66"
    assert (tmp_path / "trainerctl" / "device_address.json").exists()

    controller.clear_address_cache()
    assert controller._load_cached_address() is None


class GatedClient(FakeClient):
    """Holds every write until the gate opens."""

    def __init__(self, fail_writes: bool = False) -> None:
        super().__init__(fail_writes)
        self.gate = asyncio.Event()
        self.gate.set()

    async def write_gatt_char(self, uuid, data, response=False):
        await self.gate.wait()
        await super().write_gatt_char(uuid, data, response)


def _gated(config=None, **client_kwargs):
    controller, _ = _connected(config)
    client = GatedClient(**client_kwargs)
    controller._client = client
    return controller, client


@pytest.mark.asyncio
async def test_stop_during_blocked_write_still_releases_resistance():
    controller, client = _gated(TrainerConfig(tick_interval_s=0.01))
    schedule = IntervalSchedule.from_tuples("resistance", [(1, 20), (59, 80)], 60)

    assert await controller.start_workout(IntervalWorkout(schedule)) == ResultCode.SUCCESS
    client.gate.clear()

    async def handshake_started():
        while not controller.sequencer.busy:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(handshake_started(), timeout=5)
    client.gate.set()
    await controller.stop_workout()

    targets = [w for w in client.writes if w[0] == 0x05]
    assert targets[0] == encode_set_target_power(resistance_to_power(20))
    assert targets[-1] == encode_set_target_power(resistance_to_power(0))
    assert not controller.sequencer.busy
    assert controller.sequencer.pending is None


@pytest.mark.asyncio
async def test_queued_target_reports_failure_of_the_handshake():
    controller, client = _gated(fail_writes=True)
    client.gate.clear()

    first = asyncio.create_task(controller.set_target_power(100))
    await asyncio.sleep(0)
    assert controller.sequencer.busy

    second = asyncio.create_task(controller.apply_target(Target(TargetKind.POWER, 250)))
    await asyncio.sleep(0)
    client.gate.set()

    assert await first == ResultCode.FAILED
    assert await second == ResultCode.FAILED
    assert controller._last_target is None
    assert client.writes == []
    assert not controller.sequencer.busy


@pytest.mark.asyncio
async def test_queued_target_succeeds_once_written():
    controller, client = _gated()
    client.gate.clear()

    first = asyncio.create_task(controller.set_target_power(100))
    await asyncio.sleep(0)
    second = asyncio.create_task(controller.apply_target(Target(TargetKind.POWER, 250)))
    await asyncio.sleep(0)
    client.gate.set()

    assert await second == ResultCode.SUCCESS
    # Replaced before the grant, so never written
    assert await first == ResultCode.FAILED
    assert controller._last_target == Target(TargetKind.POWER, 250)
    assert client.writes == [encode_request_control(), encode_set_target_power(250)]


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_drop_the_handshake():
    controller, client = _gated()
    client.gate.clear()

    caller = asyncio.create_task(controller.set_target_power(150))
    await asyncio.sleep(0)
    caller.cancel()
    with pytest.raises(asyncio.CancelledError):
        await caller

    client.gate.set()
    assert await controller.set_target_power(180) == ResultCode.SUCCESS
    assert client.writes == [encode_request_control(), encode_set_target_power(180)]


@pytest.mark.asyncio
async def test_tick_error_finishes_the_workout(monkeypatch):
    controller, client = _connected(TrainerConfig(tick_interval_s=0.01))
    done = asyncio.Event()
    controller.set_on_workout_complete(lambda summary: done.set())

    def broken_tick(dt=1.0):
        raise RuntimeError("tick failed")

    monkeypatch.setattr(controller.hub, "tick", broken_tick)
    schedule = IntervalSchedule.from_tuples("power", [(60, 150)], 60)
    await controller.start_workout(IntervalWorkout(schedule))

    await asyncio.wait_for(done.wait(), timeout=5)
    assert not controller.workout_active
    assert client.writes[-1] == encode_set_target_power(resistance_to_power(0))


def test_track_workout_uses_configured_curve():
    controller = TrainerController(TrainerConfig(gradient_curve="stepped"))
    track = Track.from_points("flat", [TrackPoint(45.0, 6.0, 100.0), TrackPoint(45.001, 6.0, 100.0)])
    assert controller.track_workout(track).curve is GRADIENT_CURVES["stepped"]
