"""
TrainerCtl - BLE Smart Trainer Control Library

A Python library for reading telemetry from BLE smart trainers and driving
them through interval and GPX route workouts.
"""

__version__ = "0.1.0"
__author__ = "OpenCode"
__description__ = (
    "CLI and REPL interface for driving BLE smart trainers through workouts"
)

from .controller import TrainerController
from .display import DisplayManager
from .session import SessionState, TelemetryHub

__all__ = ["TrainerController", "DisplayManager", "SessionState", "TelemetryHub"]
