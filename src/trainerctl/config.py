"""
User configuration and per-user file locations.

Settings are read from ``config.json`` in the platform config directory and
can be overridden from the command line.
"""

import json
import logging
import os
import platform
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Optional

from .targets import GRADIENT_CURVES

logger = logging.getLogger(__name__)

APP_NAME = "trainerctl"


@dataclass(frozen=True)
class TrainerConfig:
    """Tunable settings for a trainer session."""

    # 700c road wheel; also sent to the trainer at connection setup
    wheel_circumference_m: float = 2.105
    smoothing_alpha: float = 0.85
    gradient_curve: str = "polynomial"
    estimate_speed_from_power: bool = False
    tick_interval_s: float = 1.0
    scan_timeout_s: float = 10.0
    connect_timeout_s: float = 10.0

    def __post_init__(self) -> None:
        if self.wheel_circumference_m <= 0:
            raise ValueError(
                f"wheel_circumference_m must be positive, got {self.wheel_circumference_m}"
            )
        if not 0.0 <= self.smoothing_alpha < 1.0:
            raise ValueError(
                f"smoothing_alpha must be in [0, 1), got {self.smoothing_alpha}"
            )
        if self.gradient_curve not in GRADIENT_CURVES:
            raise ValueError(
                f"gradient_curve must be one of {sorted(GRADIENT_CURVES)}, got {self.gradient_curve!r}"
            )
        if self.tick_interval_s <= 0:
            raise ValueError(
                f"tick_interval_s must be positive, got {self.tick_interval_s}"
            )

    def with_overrides(self, **overrides: Any) -> "TrainerConfig":
        """Return a copy with the non-None overrides applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self

    def to_dict(self) -> dict:
        return asdict(self)


def _user_dir(kind: str) -> Path:
    """Get the per-user directory for ``kind`` ("cache" or "config").

    Follows XDG on Linux/Unix and the usual locations on macOS and Windows.
    """
    xdg_var = "XDG_CACHE_HOME" if kind == "cache" else "XDG_CONFIG_HOME"
    base = os.environ.get(xdg_var)
    if base:
        path = Path(base) / APP_NAME
    else:
        system = platform.system()
        if system == "Darwin":  # macOS
            if kind == "cache":
                path = Path.home() / "Library" / "Caches" / APP_NAME
            else:
                path = Path.home() / "Library" / "Application Support" / APP_NAME
        elif system == "Windows":
            local_appdata = os.environ.get("LOCALAPPDATA")
            if local_appdata:
                path = Path(local_appdata) / APP_NAME
            else:
                appdata = os.environ.get(
                    "APPDATA", str(Path.home() / "AppData" / "Roaming")
                )
                path = Path(appdata) / APP_NAME
        else:  # Linux/Unix fallback
            dot_dir = ".cache" if kind == "cache" else ".config"
            path = Path.home() / dot_dir / APP_NAME

    path.mkdir(parents=True, exist_ok=True)
    return path


def get_cache_file() -> Path:
    """Location of the cached device address."""
    return _user_dir("cache") / "device_address.json"


def get_config_file() -> Path:
    """Default location of the user configuration file."""
    return _user_dir("config") / "config.json"


def load_config(path: Optional[Path] = None) -> TrainerConfig:
    """Load configuration from JSON, falling back to defaults.

    Args:
        path: Config file to read (defaults to the per-user config file)

    Returns:
        TrainerConfig with file values applied

    Raises:
        ValueError: If the file holds invalid values
    """
    config_file = path or get_config_file()
    if not config_file.exists():
        logger.debug(f"No config file at {config_file}, using defaults")
        return TrainerConfig()

    with open(config_file, "r") as f:
        data = json.load(f)

    if not isinstance(data, dict):
        raise ValueError(f"Config file {config_file} must contain a JSON object")

    known = {f.name for f in fields(TrainerConfig)}
    for key in sorted(set(data) - known):
        logger.warning(f"Ignoring unknown config key: {key}")

    config = TrainerConfig(**{k: v for k, v in data.items() if k in known})
    logger.info(f"Loaded config from {config_file}")
    return config
