"""
Async BLE link to a smart trainer.

This module owns the bleak client: it finds and connects to the trainer,
feeds notifications into the telemetry hub, runs the one-second workout tick
and pushes targets through the control point handshake.
"""

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncGenerator, Callable, Iterable, List, Optional

from bleak import BleakClient, BleakScanner
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.exc import BleakError
from pyftms import ResultCode

from .config import TrainerConfig, get_cache_file
from .control import (
    CommandSequencer,
    SequencerState,
    encode_set_target_power,
    encode_set_wheel_circumference,
    encode_start_resume,
    parse_control_response,
)
from .core import (
    FTMS_CONTROL_POINT_UUID,
    POWER_MAX,
    POWER_MIN,
    RESISTANCE_MAX,
    RESISTANCE_MIN,
    TRAINER_NAME_HINTS,
    TRAINER_SERVICE_UUIDS,
)
from .decoder import CharacteristicKind
from .errors import LinkUnavailable, WriteNotAcknowledged
from .history import WorkoutSummary
from .session import SessionState, TelemetryHub, Workout
from .targets import GRADIENT_CURVES, Target, TargetKind, TrackWorkout, resistance_to_power
from .track import Track

logger = logging.getLogger(__name__)

_LINK_ERRORS = (BleakError, OSError, asyncio.TimeoutError)


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass(frozen=True)
class ScannedDevice:
    name: str
    address: str
    rssi: int


def is_trainer_advertisement(name: Optional[str], service_uuids: Iterable[str]) -> bool:
    """Whether an advertisement looks like a trainer or heart rate strap."""
    if any(uuid.lower() in TRAINER_SERVICE_UUIDS for uuid in service_uuids):
        return True
    upper = (name or "").upper()
    return any(hint in upper for hint in TRAINER_NAME_HINTS)


class TrainerController:
    """Manages connection, telemetry and control of a BLE smart trainer."""

    RESISTANCE_MIN = RESISTANCE_MIN
    RESISTANCE_MAX = RESISTANCE_MAX
    POWER_MIN = POWER_MIN
    POWER_MAX = POWER_MAX

    def __init__(self, config: Optional[TrainerConfig] = None) -> None:
        """Initialize controller with no device connection."""
        self.config = config or TrainerConfig()
        self.hub = TelemetryHub(self.config)
        self.sequencer = CommandSequencer()
        self._client: Optional[BleakClient] = None
        self._device: Any = None
        self._state = ConnectionState.DISCONNECTED
        self._has_control_point = False
        self._tick_task: Optional[asyncio.Task] = None
        self._drain_task: Optional[asyncio.Task] = None
        # Callers waiting on the pending command and on the one being written
        self._queued: Optional[asyncio.Future] = None
        self._inflight: Optional[asyncio.Future] = None
        self._last_target: Optional[Target] = None
        self._update_queue: asyncio.Queue = asyncio.Queue(maxsize=10)

        # Callbacks
        self._on_state_change: Optional[Callable] = None
        self._on_disconnect: Optional[Callable] = None
        self._on_workout_complete: Optional[Callable] = None

        self.hub.subscribe(self._queue_update)

    @property
    def is_connected(self) -> bool:
        """Check if currently connected to device."""
        return self._client is not None and self._client.is_connected

    @property
    def connection_state(self) -> ConnectionState:
        return self._state

    @property
    def device_name(self) -> str:
        if self._client is None:
            return "Device"
        return getattr(self._device, "name", None) or self._client.address

    @property
    def has_control_point(self) -> bool:
        return self._has_control_point

    def set_on_state_change(self, callback: Callable) -> None:
        """Set callback called with the new ConnectionState."""
        self._on_state_change = callback

    def set_on_disconnect(self, callback: Callable) -> None:
        """Set callback for disconnect events."""
        self._on_disconnect = callback

    def set_on_workout_complete(self, callback: Callable) -> None:
        """Set callback called with the WorkoutSummary when a workout ends."""
        self._on_workout_complete = callback

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        logger.debug(f"Connection state: {self._state.value} -> {state.value}")
        self._state = state
        if self._on_state_change:
            try:
                self._on_state_change(state)
            except Exception as e:
                logger.error(f"State callback error: {e}")

    # ========== Address cache ==========

    def _load_cached_address(self) -> Optional[str]:
        """Load cached device address from file."""
        try:
            cache_file = get_cache_file()
            if cache_file.exists():
                with open(cache_file, "r") as f:
                    return json.load(f).get("address")
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load cached address: {e}")
        return None

    def _save_cached_address(self, address: str) -> None:
        try:
            with open(get_cache_file(), "w") as f:
                json.dump({"address": address}, f, indent=2)
            logger.info(f"Cached device address: {address}")
        except OSError as e:
            logger.warning(f"Failed to save cached address: {e}")

    def clear_address_cache(self) -> None:
        """Clear the cached device address, forcing a scan next time."""
        try:
            cache_file = get_cache_file()
            if cache_file.exists():
                cache_file.unlink()
                logger.info("Cleared cached device address")
        except OSError as e:
            logger.warning(f"Failed to clear cached address: {e}")

    # ========== Discovery and connection ==========

    async def scan(self) -> List[ScannedDevice]:
        """Scan for trainer candidates, strongest signal first."""
        logger.info("Scanning for trainers...")
        found = await BleakScanner.discover(
            timeout=self.config.scan_timeout_s, return_adv=True
        )
        devices = []
        for device, adv in found.values():
            name = device.name or adv.local_name
            if is_trainer_advertisement(name, adv.service_uuids):
                devices.append(ScannedDevice(name or "Unknown", device.address, adv.rssi))
        devices.sort(key=lambda d: d.rssi, reverse=True)
        return devices

    async def discover(self) -> bool:
        """Find the nearest trainer and remember it for :meth:`connect`.

        Returns:
            True if a device was found, False otherwise
        """
        try:
            devices = await self.scan()
        except _LINK_ERRORS as e:
            logger.error(f"Discovery failed: {e}")
            return False

        if not devices:
            logger.warning("No trainers found")
            return False

        best = devices[0]
        logger.info(f"Found trainer: {best.name} ({best.address}, RSSI {best.rssi})")
        self._device = best
        return True

    async def connect(self, address: Optional[str] = None) -> bool:
        """Connect to a trainer.

        Uses ``address`` if given, then the cached address, then scanning.

        Returns:
            True if connected successfully, False otherwise
        """
        if self.is_connected:
            logger.warning("Already connected")
            return True

        if address:
            return await self._connect_address(address)

        cached_address = self._load_cached_address()
        if cached_address:
            logger.info(f"Trying cached address: {cached_address}")
            if await self._connect_address(cached_address):
                return True

        logger.info("Scanning for device...")
        if not await self.discover():
            logger.error("Device discovery failed")
            return False
        return await self._connect_address(self._device.address)

    async def _connect_address(self, address: str) -> bool:
        self._set_state(ConnectionState.CONNECTING)
        client = BleakClient(
            address,
            disconnected_callback=self._on_device_disconnect,
            timeout=self.config.connect_timeout_s,
        )
        try:
            logger.info(f"Connecting to {address}...")
            await client.connect()
            self._client = client
            await self._start_notifications(client)
        except _LINK_ERRORS as e:
            logger.error(f"Connection to {address} failed: {e}")
            self._client = None
            self._has_control_point = False
            if client.is_connected:
                try:
                    await client.disconnect()
                except _LINK_ERRORS as disconnect_error:
                    logger.warning(f"Cleanup disconnect failed: {disconnect_error}")
            self._set_state(ConnectionState.ERROR)
            return False

        if self._device is None or getattr(self._device, "address", None) != address:
            self._device = ScannedDevice(address, address, 0)
        self._set_state(ConnectionState.CONNECTED)
        logger.info(f"Connected to {self.device_name}")
        self._save_cached_address(address)
        await self._send_setup()
        return True

    async def _start_notifications(self, client: BleakClient) -> None:
        available = {str(char.uuid).lower() for service in client.services for char in service.characteristics}

        kinds = [kind for kind in CharacteristicKind if kind.value in available]
        if CharacteristicKind.INDOOR_BIKE_DATA in kinds:
            # Trainers that expose FTMS stream the same values on both services
            for redundant in (CharacteristicKind.CYCLING_POWER_MEASUREMENT, CharacteristicKind.CSC_MEASUREMENT):
                if redundant in kinds:
                    logger.debug(f"Skipping {redundant.name}, using Indoor Bike Data")
                    kinds.remove(redundant)

        for kind in kinds:
            await client.start_notify(kind.value, self._on_notification)
            logger.info(f"Enabled {kind.name} notifications")

        self._has_control_point = FTMS_CONTROL_POINT_UUID in available
        if self._has_control_point:
            await client.start_notify(FTMS_CONTROL_POINT_UUID, self._on_control_response)
            logger.info("Enabled control point indications")
        else:
            logger.warning("FTMS control point not found - target control unavailable")

    async def _send_setup(self) -> None:
        """Send wheel circumference and start/resume once per connection."""
        if not self._has_control_point:
            return
        for name, command in (
            ("set wheel circumference", encode_set_wheel_circumference(self.config.wheel_circumference_m)),
            ("start/resume", encode_start_resume()),
        ):
            try:
                await self._write_control_point(command)
                logger.info(f"Sent {name} ({command.hex(' ')})")
            except (WriteNotAcknowledged, LinkUnavailable) as e:
                logger.error(f"Setup command {name} failed: {e}")

    async def disconnect(self) -> None:
        """Disconnect from device and discard the session."""
        if self._client is None:
            return

        client = self._client
        self._reset_session()
        try:
            logger.info("Disconnecting...")
            await client.disconnect()
            logger.info("Disconnected")
        except _LINK_ERRORS as e:
            logger.error(f"Disconnect failed: {e}")
        self._set_state(ConnectionState.DISCONNECTED)

    def _reset_session(self) -> None:
        self._detach_tick()
        self._abort_commands()
        self.hub.reset()
        self._client = None
        self._has_control_point = False
        self._last_target = None

    def _on_device_disconnect(self, client: BleakClient) -> None:
        """Handle a disconnect initiated by the device or the link."""
        if self._client is None or client is not self._client:
            return
        logger.warning("Device disconnected")
        self._reset_session()
        self._set_state(ConnectionState.DISCONNECTED)
        if self._on_disconnect:
            try:
                self._on_disconnect()
            except Exception as e:
                logger.error(f"Disconnect callback error: {e}")

    # ========== Notifications ==========

    def _on_notification(self, sender: BleakGATTCharacteristic, data: bytearray) -> None:
        """Route a notification to the hub. Runs on the event loop, must not block."""
        kind = CharacteristicKind.from_uuid(str(sender.uuid))
        if kind is None:
            logger.debug(f"Notification from unknown characteristic {sender.uuid}")
            return
        self.hub.handle_notification(kind, bytes(data))

    def _on_control_response(self, sender: BleakGATTCharacteristic, data: bytearray) -> None:
        response = parse_control_response(bytes(data))
        if response is None:
            logger.debug(f"Unexpected control point data: {bytes(data).hex(' ')}")
            return
        name = response.result.name if response.result else f"0x{response.raw_result:02X}"
        if response.succeeded:
            logger.debug(f"Control point opcode 0x{response.request_opcode:02X}: {name}")
        else:
            logger.warning(f"Control point opcode 0x{response.request_opcode:02X}: {name}")

    def _queue_update(self, state: SessionState) -> None:
        try:
            self._update_queue.put_nowait(state)
        except asyncio.QueueFull:
            # Drop if backed up - live display can skip a frame
            pass

    async def get_updates(self) -> AsyncGenerator[SessionState, None]:
        """Async generator that yields session snapshots as they change."""
        while True:
            try:
                yield await asyncio.wait_for(self._update_queue.get(), timeout=0.5)
            except asyncio.TimeoutError:
                # Continue - device may be idle
                continue

    # ========== Commands ==========

    def _require_client(self) -> BleakClient:
        if not self.is_connected or self._client is None:
            raise LinkUnavailable("Not connected")
        return self._client

    async def _write_control_point(self, data: bytes) -> None:
        client = self._require_client()
        try:
            await client.write_gatt_char(FTMS_CONTROL_POINT_UUID, data, response=True)
        except _LINK_ERRORS as e:
            raise WriteNotAcknowledged(f"Write {data.hex(' ')} failed: {e}") from e

    async def _submit(self, command: bytes) -> ResultCode:
        """Send ``command`` through the request-control handshake."""
        try:
            self._require_client()
        except LinkUnavailable as e:
            logger.error(f"Command dropped: {e}")
            return ResultCode.FAILED

        if not self._has_control_point:
            logger.error("Trainer has no FTMS control point")
            return ResultCode.NOT_SUPPORTED

        waiter = asyncio.get_running_loop().create_future()
        if self._queued is not None:
            logger.info("Pending command replaced before it was written")
            _resolve(self._queued, ResultCode.FAILED)
        self._queued = waiter

        data = self.sequencer.submit(command)
        if data is not None:
            self._drain_task = asyncio.create_task(self._drain(data))

        # Cancelling the caller only abandons the wait; the drain keeps going
        return await waiter

    async def _drain(self, data: Optional[bytes]) -> None:
        """Perform every write the sequencer hands out, one at a time."""
        generation = self.sequencer.generation
        while data is not None:
            writing_target = self.sequencer.state is SequencerState.AWAIT_TARGET_ACK
            try:
                await self._write_control_point(data)
                ok = True
            except (WriteNotAcknowledged, LinkUnavailable) as e:
                logger.error(f"Control point write failed: {e}")
                ok = False

            if generation != self.sequencer.generation:
                return

            if writing_target:
                _resolve(self._inflight, ResultCode.SUCCESS if ok else ResultCode.FAILED)
                self._inflight = None
            if not ok:
                # The sequencer drops the pending command on failure
                _resolve(self._queued, ResultCode.FAILED)
                self._queued = None

            data = self.sequencer.on_write_complete(ok, generation)
            if data is not None and self.sequencer.state is SequencerState.AWAIT_TARGET_ACK:
                self._inflight, self._queued = self._queued, None

    def _abort_commands(self) -> None:
        """Stop the drain and fail every waiting caller."""
        if self._drain_task is not None and not self._drain_task.done():
            self._drain_task.cancel()
        self._drain_task = None
        self.sequencer.reset()
        for waiter in (self._queued, self._inflight):
            _resolve(waiter, ResultCode.FAILED)
        self._queued = self._inflight = None

    async def set_target_power(self, watts: int) -> ResultCode:
        """Ask the trainer to hold ``watts``.

        Returns:
            ResultCode enum indicating success or failure
        """
        if not self.POWER_MIN <= watts <= self.POWER_MAX:
            logger.error(f"Power {watts} out of range [{self.POWER_MIN}, {self.POWER_MAX}]")
            return ResultCode.INVALID_PARAMETER

        result = await self._submit(encode_set_target_power(watts))
        logger.info(f"Set target power to {watts} W: {result.name}")
        return result

    async def set_resistance(self, resistance_pct: int) -> ResultCode:
        """Ask the trainer for a resistance percentage (sent as target power).

        Returns:
            ResultCode enum indicating success or failure
        """
        if not self.RESISTANCE_MIN <= resistance_pct <= self.RESISTANCE_MAX:
            logger.error(
                f"Resistance {resistance_pct} out of range "
                f"[{self.RESISTANCE_MIN}, {self.RESISTANCE_MAX}]"
            )
            return ResultCode.INVALID_PARAMETER

        watts = resistance_to_power(resistance_pct)
        result = await self._submit(encode_set_target_power(watts))
        logger.info(f"Set resistance to {resistance_pct}% ({watts} W): {result.name}")
        return result

    async def apply_target(self, target: Target) -> ResultCode:
        if target.kind is TargetKind.POWER:
            result = await self.set_target_power(target.value)
        else:
            result = await self.set_resistance(target.value)
        if result == ResultCode.SUCCESS:
            self._last_target = target
        return result

    # ========== Workouts ==========

    def track_workout(self, track: Track) -> TrackWorkout:
        """Wrap ``track`` with the configured gradient curve."""
        return TrackWorkout(track, GRADIENT_CURVES[self.config.gradient_curve])

    @property
    def workout_active(self) -> bool:
        return self.hub.workout is not None

    async def start_workout(self, workout: Workout) -> ResultCode:
        """Start ``workout`` and command its first target.

        Returns:
            ResultCode enum indicating success or failure
        """
        if not self.is_connected:
            logger.error("Not connected")
            return ResultCode.FAILED

        if self.workout_active:
            await self.stop_workout()

        self._last_target = None
        target = self.hub.start_workout(workout)
        result = await self.apply_target(target) if target else ResultCode.SUCCESS
        self._tick_task = asyncio.create_task(self._tick_loop())
        return result

    def pause_workout(self) -> None:
        self.hub.pause()

    def resume_workout(self) -> None:
        self.hub.resume()

    async def stop_workout(self) -> Optional[WorkoutSummary]:
        """Stop the active workout and release the resistance."""
        await self._cancel_tick()
        summary = self.hub.stop_workout()
        if summary is not None and self.is_connected:
            await self.set_resistance(0)
        self._last_target = None
        return summary

    def _detach_tick(self) -> Optional[asyncio.Task]:
        """Cancel the tick task unless it is the caller, and return it."""
        task = self._tick_task
        self._tick_task = None
        if task is None or task.done() or task is asyncio.current_task():
            return None
        task.cancel()
        return task

    async def _cancel_tick(self) -> None:
        task = self._detach_tick()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _tick_loop(self) -> None:
        """Advance the workout once per tick and follow its target."""
        interval = self.config.tick_interval_s
        try:
            while True:
                await asyncio.sleep(interval)
                target = self.hub.tick(interval)
                if self.hub.state.workout_complete:
                    await self._finish_workout()
                    return
                if target is not None and target != self._last_target:
                    await self.apply_target(target)
        except Exception as e:
            logger.error(f"Workout tick error: {e}")
            await self._finish_workout()

    async def _finish_workout(self) -> None:
        self._tick_task = None
        summary = await self.stop_workout()
        logger.info("Workout finished")
        if self._on_workout_complete and summary is not None:
            try:
                self._on_workout_complete(summary)
            except Exception as e:
                logger.error(f"Workout complete callback error: {e}")

    # ========== Status ==========

    def get_status(self) -> dict:
        """Get current session values without waiting for an update."""
        state = self.hub.snapshot()
        return {
            "status": self._state.name,
            "power": state.power,
            "cadence": state.cadence,
            "speed": state.speed,
            "heart_rate": state.heart_rate,
            "distance": state.distance_m,
            "time": state.elapsed_s,
            "target": str(state.target) if state.target else "-",
            "gradient": state.gradient,
            "workout": state.workout_name if state.workout_active else None,
            "paused": state.paused,
        }


def _resolve(waiter: Optional[asyncio.Future], result: ResultCode) -> None:
    if waiter is not None and not waiter.done():
        waiter.set_result(result)
