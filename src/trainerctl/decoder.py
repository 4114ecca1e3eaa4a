"""
Decoders for trainer notification payloads.

Each characteristic starts with a flags field that selects which optional
fields follow. Fields are little-endian, in a fixed order and of a fixed
width. All functions here are pure: the same bytes always give the same frame.
"""

import logging
import struct
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from .core import (
    CSC_MEASUREMENT_UUID,
    CYCLING_POWER_MEASUREMENT_UUID,
    HEART_RATE_MEASUREMENT_UUID,
    INDOOR_BIKE_DATA_UUID,
)
from .errors import MalformedFrame

logger = logging.getLogger(__name__)


class CharacteristicKind(Enum):
    """Notifying characteristics the decoder understands."""

    INDOOR_BIKE_DATA = INDOOR_BIKE_DATA_UUID
    CYCLING_POWER_MEASUREMENT = CYCLING_POWER_MEASUREMENT_UUID
    HEART_RATE_MEASUREMENT = HEART_RATE_MEASUREMENT_UUID
    CSC_MEASUREMENT = CSC_MEASUREMENT_UUID

    @classmethod
    def from_uuid(cls, uuid: str) -> Optional["CharacteristicKind"]:
        try:
            return cls(uuid.lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class CounterSample:
    """One reading of a rolling revolution counter.

    ``event_time`` is the 16-bit wrapping time of the last event in 1/1024 s.
    """

    revolutions: int
    event_time: int


@dataclass(frozen=True)
class TelemetryFrame:
    """Values carried by one notification, already scaled to real units."""

    power_watts: Optional[int] = None
    cadence_rpm: Optional[float] = None
    speed_kmh: Optional[float] = None
    heart_rate_bpm: Optional[int] = None
    average_speed_kmh: Optional[float] = None
    average_cadence_rpm: Optional[float] = None
    total_distance_m: Optional[int] = None
    resistance_level: Optional[int] = None
    average_power_watts: Optional[int] = None
    wheel: Optional[CounterSample] = None
    crank: Optional[CounterSample] = None


# Fixed prefix length per characteristic (flags plus mandatory fields)
PREFIX_SIZE = {
    CharacteristicKind.INDOOR_BIKE_DATA: 2,
    CharacteristicKind.CYCLING_POWER_MEASUREMENT: 4,
    CharacteristicKind.HEART_RATE_MEASUREMENT: 2,
    CharacteristicKind.CSC_MEASUREMENT: 1,
}


class _Reader:
    """Cursor over a payload that reports fields which do not fit."""

    def __init__(self, payload: bytes, offset: int, kind: CharacteristicKind):
        self._payload = payload
        self._offset = offset
        self._kind = kind
        self.truncated = False

    def read(self, fmt: str, name: str) -> Optional[tuple]:
        if self.truncated:
            return None
        size = struct.calcsize(fmt)
        remaining = len(self._payload) - self._offset
        if size > remaining:
            # Later offsets are undefined once a field is missing
            logger.warning(
                f"{self._kind.name}: {name} flagged but only {remaining} of "
                f"{size} bytes left, treating it and later fields as absent"
            )
            self.truncated = True
            return None
        values = struct.unpack_from(fmt, self._payload, self._offset)
        self._offset += size
        return values

    def read_one(self, fmt: str, name: str) -> Optional[int]:
        values = self.read(fmt, name)
        return values[0] if values is not None else None

    def read_uint24(self, name: str) -> Optional[int]:
        values = self.read("<BH", name)
        if values is None:
            return None
        return values[0] | (values[1] << 8)


def _require_prefix(kind: CharacteristicKind, payload: bytes) -> None:
    size = PREFIX_SIZE[kind]
    if len(payload) < size:
        raise MalformedFrame(
            f"{kind.name} payload has {len(payload)} bytes, expected at least {size}"
        )


def _scaled(raw: Optional[int], scale: float) -> Optional[float]:
    return raw * scale if raw is not None else None


def decode_indoor_bike_data(payload: bytes) -> TelemetryFrame:
    """Decode an FTMS Indoor Bike Data notification (0x2AD2).

    Bit 0 is "more data": instantaneous speed is present only when it is
    clear. Speed is in 0.01 km/h and cadence in 0.5 rpm units.
    """
    kind = CharacteristicKind.INDOOR_BIKE_DATA
    _require_prefix(kind, payload)
    (flags,) = struct.unpack_from("<H", payload, 0)
    reader = _Reader(payload, 2, kind)

    speed = avg_speed = cadence = avg_cadence = None
    distance = resistance = power = avg_power = heart_rate = None

    if not flags & 0x0001:
        speed = _scaled(reader.read_one("<H", "speed"), 0.01)
    if flags & 0x0002:
        avg_speed = _scaled(reader.read_one("<H", "average speed"), 0.01)
    if flags & 0x0004:
        cadence = _scaled(reader.read_one("<H", "cadence"), 0.5)
    if flags & 0x0008:
        avg_cadence = _scaled(reader.read_one("<H", "average cadence"), 0.5)
    if flags & 0x0010:
        distance = reader.read_uint24("total distance")
    if flags & 0x0020:
        resistance = reader.read_one("<H", "resistance level")
    if flags & 0x0040:
        power = reader.read_one("<H", "power")
    if flags & 0x0080:
        avg_power = reader.read_one("<H", "average power")
    if flags & 0x0100:
        # Expended energy: total u16, per hour u16, per minute u8
        reader.read("<HHB", "expended energy")
    if flags & 0x0200:
        heart_rate = reader.read_one("<B", "heart rate")

    return TelemetryFrame(
        power_watts=power,
        cadence_rpm=cadence,
        speed_kmh=speed,
        heart_rate_bpm=heart_rate,
        average_speed_kmh=avg_speed,
        average_cadence_rpm=avg_cadence,
        total_distance_m=distance,
        resistance_level=resistance,
        average_power_watts=avg_power,
    )


def decode_cycling_power_measurement(payload: bytes) -> TelemetryFrame:
    """Decode a Cycling Power Measurement notification (0x2A63).

    Instantaneous power (signed 16-bit watts) is always present. Wheel and
    crank revolution data are returned as raw counter samples.
    """
    kind = CharacteristicKind.CYCLING_POWER_MEASUREMENT
    _require_prefix(kind, payload)
    flags, power = struct.unpack_from("<Hh", payload, 0)
    reader = _Reader(payload, 4, kind)

    if flags & 0x0001:
        reader.read("<B", "pedal power balance")
    if flags & 0x0004:
        reader.read("<H", "accumulated torque")

    wheel = crank = None
    if flags & 0x0010:
        values = reader.read("<IH", "wheel revolution data")
        if values is not None:
            wheel = CounterSample(revolutions=values[0], event_time=values[1])
    if flags & 0x0020:
        values = reader.read("<HH", "crank revolution data")
        if values is not None:
            crank = CounterSample(revolutions=values[0], event_time=values[1])

    return TelemetryFrame(power_watts=power, wheel=wheel, crank=crank)


def decode_heart_rate_measurement(payload: bytes) -> TelemetryFrame:
    """Decode a Heart Rate Measurement notification (0x2A37).

    Flag bit 0 selects an 8-bit or a 16-bit heart rate value.
    """
    kind = CharacteristicKind.HEART_RATE_MEASUREMENT
    _require_prefix(kind, payload)
    flags = payload[0]
    reader = _Reader(payload, 1, kind)

    if flags & 0x01:
        heart_rate = reader.read_one("<H", "16-bit heart rate")
    else:
        heart_rate = reader.read_one("<B", "8-bit heart rate")

    return TelemetryFrame(heart_rate_bpm=heart_rate)


def decode_csc_measurement(payload: bytes) -> TelemetryFrame:
    """Decode a CSC Measurement notification (0x2A5B)."""
    kind = CharacteristicKind.CSC_MEASUREMENT
    _require_prefix(kind, payload)
    flags = payload[0]
    reader = _Reader(payload, 1, kind)

    wheel = crank = None
    if flags & 0x01:
        values = reader.read("<IH", "wheel revolution data")
        if values is not None:
            wheel = CounterSample(revolutions=values[0], event_time=values[1])
    if flags & 0x02:
        values = reader.read("<HH", "crank revolution data")
        if values is not None:
            crank = CounterSample(revolutions=values[0], event_time=values[1])

    return TelemetryFrame(wheel=wheel, crank=crank)


_DECODERS: Dict[CharacteristicKind, Callable[[bytes], TelemetryFrame]] = {
    CharacteristicKind.INDOOR_BIKE_DATA: decode_indoor_bike_data,
    CharacteristicKind.CYCLING_POWER_MEASUREMENT: decode_cycling_power_measurement,
    CharacteristicKind.HEART_RATE_MEASUREMENT: decode_heart_rate_measurement,
    CharacteristicKind.CSC_MEASUREMENT: decode_csc_measurement,
}


def decode_frame(kind: CharacteristicKind, payload: bytes) -> TelemetryFrame:
    """Decode ``payload`` received on the characteristic ``kind``.

    Args:
        kind: Which characteristic sent the notification
        payload: Raw notification bytes

    Returns:
        TelemetryFrame with the fields present in the payload

    Raises:
        MalformedFrame: If the payload is shorter than the fixed prefix
    """
    return _DECODERS[kind](bytes(payload))
