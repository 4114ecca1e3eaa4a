"""
Exception taxonomy for telemetry decoding, workout schedules and the BLE link.
"""


class TrainerError(Exception):
    """Base class for all trainerctl errors."""


class MalformedFrame(TrainerError):
    """Notification payload is shorter than the fixed prefix for its kind."""


class ImplausibleSample(TrainerError):
    """Counter delta or derived value is outside physical bounds."""


class ScheduleInvalid(TrainerError, ValueError):
    """Interval schedule or track cannot be used as a workout."""


class LinkUnavailable(TrainerError):
    """No connected peripheral to send a command to."""


class WriteNotAcknowledged(TrainerError):
    """A control point write failed before it was confirmed."""
