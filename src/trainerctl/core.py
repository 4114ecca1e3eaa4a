"""
Core constants for BLE trainer telemetry and control.
"""

# Standard Bluetooth SIG service UUIDs
CYCLING_POWER_SERVICE_UUID = "00001818-0000-1000-8000-00805f9b34fb"
FTMS_SERVICE_UUID = "00001826-0000-1000-8000-00805f9b34fb"
CSC_SERVICE_UUID = "00001816-0000-1000-8000-00805f9b34fb"
HEART_RATE_SERVICE_UUID = "0000180d-0000-1000-8000-00805f9b34fb"

# Characteristic UUIDs
CYCLING_POWER_MEASUREMENT_UUID = "00002a63-0000-1000-8000-00805f9b34fb"
INDOOR_BIKE_DATA_UUID = "00002ad2-0000-1000-8000-00805f9b34fb"
FTMS_CONTROL_POINT_UUID = "00002ad9-0000-1000-8000-00805f9b34fb"
CSC_MEASUREMENT_UUID = "00002a5b-0000-1000-8000-00805f9b34fb"
HEART_RATE_MEASUREMENT_UUID = "00002a37-0000-1000-8000-00805f9b34fb"

# Services that mark an advertisement as a trainer candidate
TRAINER_SERVICE_UUIDS = frozenset(
    {
        CYCLING_POWER_SERVICE_UUID,
        FTMS_SERVICE_UUID,
        CSC_SERVICE_UUID,
        HEART_RATE_SERVICE_UUID,
    }
)

# Name fragments of known trainers (matched case-insensitively)
TRAINER_NAME_HINTS = ("KICKR", "WAHOO", "TACX", "ELITE", "SARIS")

# Target limits
RESISTANCE_MIN = 0
RESISTANCE_MAX = 100
POWER_MIN = 1
POWER_MAX = 1000

# Telemetry plausibility
SPEED_MAX_KMH = 100.0

# Application metadata
__version__ = "0.1.0"
__author__ = "OpenCode"
__description__ = (
    "CLI and REPL interface for driving BLE smart trainers through workouts"
)
