"""
src/energy_model.py

Duty-Cycle Energy Management for Sensor Nodes

Models the power budget of a field sensor:
- Long dormant period between wake-ups
- Short active window after each wake-up
- State snapshot for telemetry and history
"""

from dataclasses import dataclass
from constants import EnergyState, ACTIVATION_INTERVAL_S, ACTIVE_TIME_S
import logging

logger = logging.getLogger(__name__)

# ============================================================================
# ENERGY STATE
# ============================================================================

@dataclass(frozen=True)
class DutyCycleState:
    """Duty cycle snapshot."""
    energy_state: EnergyState
    duty_timer_s: float         # Time spent dormant since last wake-up
    active_remaining_s: float   # Time left in the current active window
    activations: int            # Wake-ups so far


# ============================================================================
# DUTY CYCLE MODEL
# ============================================================================

class DutyCycle:
    """
    Dormant/Active energy state machine.

    DORMANT --(duty_timer >= activation_interval)--> ACTIVE
    ACTIVE  --(active_remaining <= 0)--------------> DORMANT

    The duty timer accumulates only while dormant and is reset on
    waking up.

    Attributes:
        activation_interval_s: Dormant time before waking
        active_time_s: Length of each active window
    """

    def __init__(self, activation_interval_s: float = ACTIVATION_INTERVAL_S,
                 active_time_s: float = ACTIVE_TIME_S):
        """
        Initialize a dormant duty cycle.

        Args:
            activation_interval_s: Dormant period (seconds)
            active_time_s: Active window (seconds)
        """
        self.activation_interval_s = activation_interval_s
        self.active_time_s = active_time_s

        self.energy_state = EnergyState.DORMANT
        self.duty_timer_s = 0.0
        self.active_remaining_s = 0.0
        self.activations = 0

    @property
    def is_active(self) -> bool:
        return self.energy_state == EnergyState.ACTIVE

    def advance(self, elapsed_s: float) -> bool:
        """
        Advance the cycle by one tick.

        Args:
            elapsed_s: Tick duration (seconds)

        Returns:
            True if the energy state changed
        """
        if self.energy_state == EnergyState.ACTIVE:
            self.active_remaining_s -= elapsed_s
            if self.active_remaining_s <= 0:
                self.energy_state = EnergyState.DORMANT
                self.active_remaining_s = 0.0
                return True
            return False

        self.duty_timer_s += elapsed_s
        if self.duty_timer_s >= self.activation_interval_s:
            self.energy_state = EnergyState.ACTIVE
            self.duty_timer_s = 0.0
            self.active_remaining_s = self.active_time_s
            self.activations += 1
            return True
        return False

    def get_state(self) -> DutyCycleState:
        return DutyCycleState(
            energy_state=self.energy_state,
            duty_timer_s=self.duty_timer_s,
            active_remaining_s=self.active_remaining_s,
            activations=self.activations,
        )

    def restore(self, state: DutyCycleState) -> None:
        """Restore exact values from a snapshot."""
        self.energy_state = state.energy_state
        self.duty_timer_s = state.duty_timer_s
        self.active_remaining_s = state.active_remaining_s
        self.activations = state.activations

    def export_telemetry(self) -> dict:
        return {
            "energy_state": self.energy_state.name,
            "duty_timer_s": self.duty_timer_s,
            "active_remaining_s": self.active_remaining_s,
            "activations": self.activations,
        }
