"""
src/weather.py

Wind model for the fire grid.

Wind is uniform over the grid and drifts slightly every tick.
"""

import numpy as np
from typing import Tuple
from constants import (
    WIND_SPEED_MS, WIND_DIRECTION_DEG, MAX_WIND_SPEED_MS,
    WIND_SPEED_DRIFT_SCALE, WIND_DIRECTION_DRIFT_SCALE, clamp
)


class WindModel:
    """
    Wind affecting fire spread direction and rate.

    Direction uses grid coordinates: 0° points toward increasing column,
    90° toward increasing row.

    Attributes:
        speed_ms: Wind speed (m/s), within [0, max_speed_ms]
        direction_deg: Direction (degrees), within [0, 360)
        max_speed_ms: Upper speed bound
    """

    def __init__(self, speed_ms: float = WIND_SPEED_MS,
                 direction_deg: float = WIND_DIRECTION_DEG,
                 max_speed_ms: float = MAX_WIND_SPEED_MS):
        self.max_speed_ms = max_speed_ms
        self.speed_ms = clamp(speed_ms, 0.0, max_speed_ms)
        self.direction_deg = direction_deg % 360.0

    def set_speed(self, speed_ms: float) -> float:
        """Set speed, clamped to [0, max]. Returns the applied value."""
        self.speed_ms = clamp(speed_ms, 0.0, self.max_speed_ms)
        return self.speed_ms

    def set_direction(self, direction_deg: float) -> float:
        """Set direction, wrapped to [0, 360). Returns the applied value."""
        self.direction_deg = direction_deg % 360.0
        return self.direction_deg

    def drift(self, elapsed_s: float, rng: np.random.RandomState) -> None:
        """
        Apply small random variations to speed and direction.

        Args:
            elapsed_s: Tick duration (seconds)
            rng: Random source
        """
        self.set_speed(self.speed_ms + (rng.rand() - 0.5) * WIND_SPEED_DRIFT_SCALE * elapsed_s)
        self.set_direction(
            self.direction_deg + (rng.rand() - 0.5) * WIND_DIRECTION_DRIFT_SCALE * elapsed_s
        )

    def as_tuple(self) -> Tuple[float, float]:
        """(speed_ms, direction_deg)"""
        return self.speed_ms, self.direction_deg

    def restore(self, speed_ms: float, direction_deg: float) -> None:
        """Restore exact values from a snapshot."""
        self.speed_ms = speed_ms
        self.direction_deg = direction_deg

    def to_dict(self) -> dict:
        return {
            "speed_ms": self.speed_ms,
            "direction_deg": self.direction_deg,
            "max_speed_ms": self.max_speed_ms,
        }
