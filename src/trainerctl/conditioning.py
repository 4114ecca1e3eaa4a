"""
Signal conditioning for power and a fallback speed estimate.
"""

# Half of air density (1.225 kg/m^3) times a typical hoods CdA of 0.4 m^2
_DRAG_FACTOR = 0.5 * 1.225 * 0.4


class PowerSmoother:
    """Exponential smoothing of instantaneous power."""

    def __init__(self, alpha: float = 0.85) -> None:
        self.alpha = alpha
        self.value = 0.0

    def update(self, raw: float) -> float:
        """Fold ``raw`` into the filtered value and return it.

        Near-zero readings are ignored while the filter is already below 1 W.
        """
        if raw <= 1 and self.value < 1:
            return self.value
        self.value = self.alpha * self.value + (1 - self.alpha) * raw
        return self.value

    def reset(self) -> None:
        self.value = 0.0


def estimate_speed_from_power(watts: float) -> float:
    """Rough flat-road speed in km/h for a rider holding ``watts``.

    This is an approximation, not a measurement: it assumes all power goes
    into aerodynamic drag on a flat road with no wind, so speed grows with the
    cube root of power. Use it only when the trainer reports no speed.
    """
    if watts <= 0:
        return 0.0
    return (watts / _DRAG_FACTOR) ** (1.0 / 3.0) * 3.6
