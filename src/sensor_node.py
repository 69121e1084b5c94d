"""
src/sensor_node.py

Environmental Sensor Node

Field sensor logic for a single node. Integrates:
- Duty-cycled energy budget (slaves only sense while awake)
- Smoothed temperature / CO2 readings with fire influence
- Threshold + cooldown gated alert transmission
- Range predicate for peer relays
"""

from dataclasses import dataclass
from typing import Optional, Tuple
import logging

import numpy as np

from constants import (
    NodeKind, EnergyState,
    SENSOR_INITIAL_TEMPERATURE_C, AMBIENT_CO2_PPM,
    TEMPERATURE_THRESHOLD_C, CO2_THRESHOLD_PPM, TRANSMISSION_COOLDOWN_S,
    MASTER_DETECTION_RADIUS_CELLS, SLAVE_DETECTION_RADIUS_CELLS,
    ACTIVATION_INTERVAL_S, ACTIVE_TIME_S,
    FIRE_TEMPERATURE_GAIN_C, FIRE_CO2_GAIN_PPM,
    READING_SMOOTHING, TEMPERATURE_JITTER_C, CO2_JITTER_PPM,
    LORA_RANGE_KM, cell_distance
)
from energy_model import DutyCycle, DutyCycleState
from alert_transport import AlertChannel, AlertMessage

logger = logging.getLogger(__name__)

# ============================================================================
# NODE SETTINGS AND STATE
# ============================================================================

@dataclass(frozen=True)
class SensorSettings:
    """Thresholds and energy cycle shared by the nodes of a simulation."""
    temperature_threshold_c: float = TEMPERATURE_THRESHOLD_C
    co2_threshold_ppm: float = CO2_THRESHOLD_PPM
    transmission_cooldown_s: float = TRANSMISSION_COOLDOWN_S
    activation_interval_s: float = ACTIVATION_INTERVAL_S
    active_time_s: float = ACTIVE_TIME_S
    ambient_co2_ppm: float = AMBIENT_CO2_PPM
    lora_range_km: float = LORA_RANGE_KM

    def __post_init__(self):
        if not self.lora_range_km > 0:
            raise ValueError(f"Radio range must be positive, got {self.lora_range_km}")
        if self.transmission_cooldown_s < 0:
            raise ValueError(f"Cooldown must be >= 0, got {self.transmission_cooldown_s}")

    @classmethod
    def from_config(cls, sensor_config) -> "SensorSettings":
        return cls(
            temperature_threshold_c=sensor_config.temperature_threshold_c,
            co2_threshold_ppm=sensor_config.co2_threshold_ppm,
            transmission_cooldown_s=sensor_config.transmission_cooldown_s,
            activation_interval_s=sensor_config.activation_interval_s,
            active_time_s=sensor_config.active_time_s,
            ambient_co2_ppm=sensor_config.ambient_co2_ppm,
            lora_range_km=sensor_config.lora_range_km,
        )


@dataclass(frozen=True)
class SensorNodeState:
    """Immutable copy of a node, used by history snapshots."""
    node_id: str
    kind: NodeKind
    row: int
    col: int
    detection_radius: float
    settings: SensorSettings
    duty_cycle: DutyCycleState
    temperature: float
    co2_level: float
    last_transmission_time: float
    transmissions: int


def default_detection_radius(kind: NodeKind) -> float:
    """Detection radius (cells) for a node kind."""
    if kind == NodeKind.MASTER:
        return MASTER_DETECTION_RADIUS_CELLS
    return SLAVE_DETECTION_RADIUS_CELLS


def in_range(a: Tuple[int, int], b: Tuple[int, int], cell_size_km: float,
             range_km: float = LORA_RANGE_KM) -> bool:
    """
    Check whether two grid positions are within radio range.

    Args:
        a, b: (row, col) positions
        cell_size_km: Real size of one cell (km)
        range_km: Radio range (km)
    """
    return cell_distance(a[0], a[1], b[0], b[1]) * cell_size_km <= range_km


# ============================================================================
# SENSOR NODE
# ============================================================================

class SensorNode:
    """
    Fire detection sensor placed on the grid.

    Masters are always powered and sense every tick. Slaves run the same
    duty cycle but only sense and report while ACTIVE.

    Attributes:
        node_id: Stable identity (UUID string)
        kind: MASTER or SLAVE
        row, col: Fixed grid position
        detection_radius: Sensing radius (cells)
        duty_cycle: Energy state machine
        temperature: Smoothed temperature reading (°C)
        co2_level: Smoothed CO2 reading (ppm)
        last_transmission_time: Simulation time of the last alert (s)
    """

    def __init__(self, node_id: str, kind: NodeKind, row: int, col: int,
                 detection_radius: Optional[float] = None,
                 settings: Optional[SensorSettings] = None,
                 channel: Optional[AlertChannel] = None,
                 rng: Optional[np.random.RandomState] = None):
        """
        Initialize sensor node.

        Args:
            node_id: Unique node UUID
            kind: MASTER or SLAVE
            row, col: Grid position
            detection_radius: Sensing radius in cells (defaults per kind)
            settings: Thresholds and energy cycle
            channel: Alert channel to publish on
            rng: Random source for reading jitter
        """
        self.node_id = str(node_id)
        self.kind = NodeKind(kind)
        self.row = row
        self.col = col
        self.detection_radius = (
            detection_radius if detection_radius is not None
            else default_detection_radius(self.kind)
        )
        if not self.detection_radius > 0:
            raise ValueError(f"Detection radius must be positive, got {self.detection_radius}")
        self.settings = settings or SensorSettings()
        self.channel = channel
        self.rng = rng if rng is not None else np.random.RandomState()

        self.duty_cycle = DutyCycle(
            self.settings.activation_interval_s, self.settings.active_time_s
        )

        self.temperature = SENSOR_INITIAL_TEMPERATURE_C
        self.co2_level = self.settings.ambient_co2_ppm
        self.last_transmission_time = 0.0
        self.transmissions = 0

    @property
    def position(self) -> Tuple[int, int]:
        return self.row, self.col

    @property
    def energy_state(self) -> EnergyState:
        return self.duty_cycle.energy_state

    def update(self, elapsed_s: float) -> None:
        """
        Advance the energy cycle.

        Args:
            elapsed_s: Tick duration (seconds)
        """
        if self.duty_cycle.advance(elapsed_s):
            logger.debug(f"Node {self.node_id} is now {self.energy_state.name}")

    def detect_and_report(self, fire_mask: np.ndarray, ambient_temperature: float,
                          simulation_time: float,
                          cell_size_km: float) -> Optional[AlertMessage]:
        """
        Sense fire in range and send an alert when thresholds are exceeded.

        1. Dormant slaves skip the tick entirely
        2. Readings regress toward ambient, with jitter
        3. The first burning cell found in row-major scan order within
           range raises the readings by its proximity
        4. Threshold + cooldown gate the transmission

        Args:
            fire_mask: Boolean (row, col) array of burning cells
            ambient_temperature: Ambient temperature (°C)
            simulation_time: Current simulation time (s)
            cell_size_km: Real size of one cell (km)

        Returns:
            The AlertMessage sent, or None
        """
        if self.kind == NodeKind.SLAVE and not self.duty_cycle.is_active:
            return None

        self._update_readings(ambient_temperature)
        fire_detected = self._sense_fire(fire_mask, cell_size_km)

        if not self._should_transmit(simulation_time):
            return None

        message = AlertMessage(
            sender_id=self.node_id,
            row=self.row,
            col=self.col,
            temperature=self.temperature,
            co2_level=self.co2_level,
            fire_detected=fire_detected,
        )
        self.last_transmission_time = simulation_time
        self.transmissions += 1

        logger.info(
            f"Alert sent by {self.node_id} | Temp: {self.temperature:.1f}°C | "
            f"CO2: {self.co2_level:.0f} ppm"
        )
        if self.channel is not None:
            self.channel.publish(message)
        return message

    def in_range_of(self, other: "SensorNode", cell_size_km: float) -> bool:
        """Radio range check against another node, using this node's range."""
        return in_range(self.position, other.position, cell_size_km, self.settings.lora_range_km)

    # ========================================================================
    # SENSING
    # ========================================================================

    def _update_readings(self, ambient_temperature: float) -> None:
        """Slow regression toward ambient conditions, plus noise."""
        keep = READING_SMOOTHING
        self.temperature = self.temperature * keep + ambient_temperature * (1.0 - keep)
        self.co2_level = self.co2_level * keep + self.settings.ambient_co2_ppm * (1.0 - keep)

        self.temperature += (self.rng.rand() - 0.5) * TEMPERATURE_JITTER_C
        self.co2_level += (self.rng.rand() - 0.5) * CO2_JITTER_PPM

    def _sense_fire(self, fire_mask: np.ndarray, cell_size_km: float) -> bool:
        """
        Apply the influence of the first burning cell in range.

        The scan stops at the first hit in row-major order, which is not
        necessarily the nearest fire.
        """
        height, width = fire_mask.shape
        radius_cells = int(self.detection_radius)
        actual_radius = self.detection_radius * cell_size_km
        if actual_radius <= 0:
            return False

        for r in range(max(0, self.row - radius_cells), min(height - 1, self.row + radius_cells) + 1):
            for c in range(max(0, self.col - radius_cells), min(width - 1, self.col + radius_cells) + 1):
                if not fire_mask[r, c]:
                    continue
                distance = cell_distance(self.row, self.col, r, c) * cell_size_km
                if distance <= actual_radius:
                    influence = 1.0 - distance / actual_radius
                    self.temperature += FIRE_TEMPERATURE_GAIN_C * influence
                    self.co2_level += FIRE_CO2_GAIN_PPM * influence
                    return True
        return False

    def _should_transmit(self, simulation_time: float) -> bool:
        over_threshold = (
            self.temperature > self.settings.temperature_threshold_c
            or self.co2_level > self.settings.co2_threshold_ppm
        )
        cooled_down = (
            simulation_time - self.last_transmission_time > self.settings.transmission_cooldown_s
        )
        return over_threshold and cooled_down

    # ========================================================================
    # SNAPSHOT SUPPORT
    # ========================================================================

    def get_state(self) -> SensorNodeState:
        return SensorNodeState(
            node_id=self.node_id,
            kind=self.kind,
            row=self.row,
            col=self.col,
            detection_radius=self.detection_radius,
            settings=self.settings,
            duty_cycle=self.duty_cycle.get_state(),
            temperature=self.temperature,
            co2_level=self.co2_level,
            last_transmission_time=self.last_transmission_time,
            transmissions=self.transmissions,
        )

    @classmethod
    def from_state(cls, state: SensorNodeState,
                   channel: Optional[AlertChannel] = None,
                   rng: Optional[np.random.RandomState] = None) -> "SensorNode":
        """Rebuild a live node from a snapshot."""
        node = cls(
            node_id=state.node_id,
            kind=state.kind,
            row=state.row,
            col=state.col,
            detection_radius=state.detection_radius,
            settings=state.settings,
            channel=channel,
            rng=rng,
        )
        node.duty_cycle.restore(state.duty_cycle)
        node.temperature = state.temperature
        node.co2_level = state.co2_level
        node.last_transmission_time = state.last_transmission_time
        node.transmissions = state.transmissions
        return node

    def export_telemetry(self) -> dict:
        """Node state for renderers and the API."""
        return {
            "uuid": self.node_id,
            "kind": self.kind.name,
            "row": self.row,
            "col": self.col,
            "detection_radius": self.detection_radius,
            "energy_state": self.energy_state.name,
            "temperature": self.temperature,
            "co2_level": self.co2_level,
            "last_transmission_time": self.last_transmission_time,
            "transmissions": self.transmissions,
        }
