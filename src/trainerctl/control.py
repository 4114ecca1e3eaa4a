"""
FTMS control point commands and the request-control handshake.

The trainer only accepts a target after control has been requested, and the
link can carry one write at a time. :class:`CommandSequencer` turns "set
target" into that two-step exchange while keeping a single pending slot.
"""

import logging
import struct
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pyftms import ResultCode

logger = logging.getLogger(__name__)

OP_REQUEST_CONTROL = 0x00
OP_SET_TARGET_POWER = 0x05
OP_START_RESUME = 0x07
OP_SET_WHEEL_CIRCUMFERENCE = 0x13
OP_RESPONSE_CODE = 0x80


def encode_request_control() -> bytes:
    return bytes([OP_REQUEST_CONTROL])


def encode_set_target_power(watts: int) -> bytes:
    """Set Target Power: opcode followed by a signed 16-bit watt value."""
    return struct.pack("<Bh", OP_SET_TARGET_POWER, int(watts))


def encode_start_resume() -> bytes:
    return bytes([OP_START_RESUME])


def encode_set_wheel_circumference(circumference_m: float) -> bytes:
    """Set Wheel Circumference: opcode followed by u16 in 0.1 mm units."""
    return struct.pack("<BH", OP_SET_WHEEL_CIRCUMFERENCE, round(circumference_m * 10000))


@dataclass(frozen=True)
class ControlResponse:
    """Indication sent back by the control point after a command."""

    request_opcode: int
    result: Optional[ResultCode]
    raw_result: int

    @property
    def succeeded(self) -> bool:
        return self.result == ResultCode.SUCCESS


def parse_control_response(payload: bytes) -> Optional[ControlResponse]:
    """Decode a ``0x80 <opcode> <result>`` control point indication.

    Returns:
        ControlResponse, or None if the payload is not a response
    """
    if len(payload) < 3 or payload[0] != OP_RESPONSE_CODE:
        return None
    try:
        result: Optional[ResultCode] = ResultCode(payload[2])
    except ValueError:
        result = None
    return ControlResponse(request_opcode=payload[1], result=result, raw_result=payload[2])


class SequencerState(Enum):
    IDLE = "idle"
    AWAIT_CONTROL_GRANT = "await_control_grant"
    AWAIT_TARGET_ACK = "await_target_ack"


class CommandSequencer:
    """Single-slot state machine for control point writes.

    The caller performs the writes. Every payload returned by :meth:`submit`
    or :meth:`on_write_complete` must be written, and its outcome reported
    back with :meth:`on_write_complete` together with the generation that was
    current when the write started.
    """

    def __init__(self) -> None:
        self.state = SequencerState.IDLE
        self.pending: Optional[bytes] = None
        self.generation = 0

    @property
    def busy(self) -> bool:
        return self.state is not SequencerState.IDLE

    def submit(self, command: bytes) -> Optional[bytes]:
        """Queue ``command`` as the pending target.

        Returns:
            The request-control payload to write now, or None if a handshake
            is already in progress and will pick up the new command
        """
        replaced = self.pending is not None
        self.pending = bytes(command)
        if self.busy:
            logger.debug(
                f"Handshake in progress ({self.state.value}), "
                f"{'replaced' if replaced else 'queued'} pending command"
            )
            return None
        self.state = SequencerState.AWAIT_CONTROL_GRANT
        return encode_request_control()

    def on_write_complete(self, success: bool, generation: Optional[int] = None) -> Optional[bytes]:
        """Advance after a write finished.

        Args:
            success: Whether the peripheral confirmed the write
            generation: ``self.generation`` at the time the write started

        Returns:
            The next payload to write, or None when the sequencer is idle
        """
        if generation is not None and generation != self.generation:
            logger.debug("Ignoring write completion from a previous connection")
            return None

        if self.state is SequencerState.IDLE:
            logger.debug("Write completion with no handshake in progress")
            return None

        if not success:
            # No retry: the pending target is dropped and must be re-issued
            logger.warning(f"Control point write failed in {self.state.value}, discarding pending command")
            self.state = SequencerState.IDLE
            self.pending = None
            return None

        if self.state is SequencerState.AWAIT_CONTROL_GRANT:
            command, self.pending = self.pending, None
            if command is None:
                self.state = SequencerState.IDLE
                return None
            self.state = SequencerState.AWAIT_TARGET_ACK
            return command

        # Target acknowledged; restart if another command arrived meanwhile
        if self.pending is not None:
            self.state = SequencerState.AWAIT_CONTROL_GRANT
            return encode_request_control()
        self.state = SequencerState.IDLE
        return None

    def reset(self) -> None:
        """Forget everything, e.g. on disconnect."""
        self.state = SequencerState.IDLE
        self.pending = None
        self.generation += 1
