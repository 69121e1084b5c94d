"""
src/constants.py

Global constants and configuration defaults for AlertFire-Sim.
"""

import math
from enum import IntEnum, Enum

# ============================================================================
# SIMULATION TIMING
# ============================================================================

SIM_STEP_TIME_S = 0.5               # Seconds advanced by one manual step
SIM_FRAME_INTERVAL_S = 0.05         # Wall-clock frame period of the run loop

# ============================================================================
# GRID
# ============================================================================

GRID_WIDTH = 20                     # cells
GRID_HEIGHT = 20
CELL_SIZE_PX = 30                   # Renderer cell size
CELL_SIZE_KM = 0.1                  # Real-world size of one cell (100 m)

DEFAULT_CELL_HUMIDITY = 50.0        # percent
FOREST_HUMIDITY_MIN = 30.0          # Random forest humidity range (percent)
FOREST_HUMIDITY_SPAN = 40.0
INITIAL_FOREST_DENSITY = 0.6

MANUAL_IGNITION_INTENSITY = 0.5

# ============================================================================
# WEATHER
# ============================================================================

WIND_SPEED_MS = 2.0
WIND_DIRECTION_DEG = 45.0           # 0 = toward +column, 90 = toward +row
MAX_WIND_SPEED_MS = 10.0
HUMIDITY_PERCENT = 50.0

WIND_SPEED_DRIFT_SCALE = 1.0        # m/s per second of drift amplitude
WIND_DIRECTION_DRIFT_SCALE = 10.0   # degrees per second of drift amplitude

AMBIENT_TEMPERATURE_MIN_C = 20.0
AMBIENT_TEMPERATURE_SPAN_C = 5.0

# ============================================================================
# FIRE PROPAGATION
# ============================================================================

PROPAGATION_REACH_LIMIT = 1.5       # Max cell distance for any ignition

BURN_TIME_MIN_S = 8.0
BURN_TIME_MAX_S = 15.0

# ============================================================================
# SENSOR NODES
# ============================================================================

SENSOR_INITIAL_TEMPERATURE_C = 25.0
AMBIENT_CO2_PPM = 400.0

TEMPERATURE_THRESHOLD_C = 60.0
CO2_THRESHOLD_PPM = 1500.0
TRANSMISSION_COOLDOWN_S = 5.0

MASTER_DETECTION_RADIUS_CELLS = 10.0
SLAVE_DETECTION_RADIUS_CELLS = 5.0

ACTIVATION_INTERVAL_S = 600.0       # Dormant period before waking
ACTIVE_TIME_S = 5.0                 # Awake window

FIRE_TEMPERATURE_GAIN_C = 50.0      # At full proximity influence
FIRE_CO2_GAIN_PPM = 1500.0

READING_SMOOTHING = 0.9             # Weight kept from the previous reading
TEMPERATURE_JITTER_C = 0.5
CO2_JITTER_PPM = 10.0

LORA_RANGE_KM = 1.0

# Registered device identities, handed out in order per node kind
MASTER_NODE_UUIDS = (
    "c0e855b8-a65f-4bc4-bc1d-d5f4d592fa1b",
    "1d8f2306-4c27-41b0-8921-607b313749a9",
    "3c6e07ae-4ce1-4c24-bf67-a7da01a09b05",
)
SLAVE_NODE_UUIDS = (
    "bc005016-1edf-4a47-a3b9-74de75ab7e97",
    "49e0d82b-a259-4c2a-9aff-36d933d31db3",
    "1b48a1a0-5229-433f-b83e-213ec81acc5f",
    "a5f29634-b400-4724-a791-9b4a0d05b13b",
)

# ============================================================================
# HISTORY
# ============================================================================

HISTORY_CAPACITY = 20
HISTORY_KEEP_RECENT = 10

# ============================================================================
# ALERT TRANSPORT
# ============================================================================

BACKEND_URL = "http://localhost:5000/api/receive-alert"
TRANSPORT_TIMEOUT_S = 5.0
TRANSPORT_MAX_WORKERS = 4
ALERT_SOURCE_TAG = "simulated"

# ============================================================================
# ENUMS
# ============================================================================

class CellState(IntEnum):
    """State of a grid cell."""
    EMPTY = 0
    TREE = 1
    BURNING = 2
    BURNT = 3

class NodeKind(IntEnum):
    """Sensor node role."""
    MASTER = 0          # Always powered
    SLAVE = 1           # Duty-cycled

class EnergyState(IntEnum):
    """Sensor node power state."""
    DORMANT = 0
    ACTIVE = 1

class StrategyKind(Enum):
    """Fire propagation model variant."""
    SLOW = "SLOW"
    FAST = "FAST"

# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================

def clamp(value: float, min_val: float, max_val: float) -> float:
    """Clamp value between min and max."""
    return max(min_val, min(max_val, value))

def cell_distance(row1: int, col1: int, row2: int, col2: int) -> float:
    """Euclidean distance between two cells, in cells."""
    return math.sqrt((row2 - row1)**2 + (col2 - col1)**2)

def bearing_deg(row1: int, col1: int, row2: int, col2: int) -> float:
    """Grid bearing from cell 1 to cell 2 (0 = +column, 90 = +row)."""
    return math.degrees(math.atan2(row2 - row1, col2 - col1))

def angular_difference(a_deg: float, b_deg: float) -> float:
    """Smallest difference between two headings, in [0, 180]."""
    diff = abs(a_deg - b_deg) % 360.0
    if diff > 180.0:
        diff = 360.0 - diff
    return diff

def parse_enum(enum_cls, value):
    """
    Resolve an enum member from a member, its name or its value.

    Raises:
        ValueError: If the value names no member
    """
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls[value.strip().upper()]
        except KeyError:
            pass
    try:
        return enum_cls(value)
    except ValueError:
        raise ValueError(f"Unknown {enum_cls.__name__}: {value!r}") from None
