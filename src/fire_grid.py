"""
src/fire_grid.py

Forest Grid and Cell State Machine

Models the landscape the fire burns through:
- 2D cellular grid of forest cells
- Per-cell state machine (Empty <-> Tree -> Burning -> Burnt)
- Burn duration and intensity bookkeeping
- Value-level export/restore for history snapshots
"""

import numpy as np
from dataclasses import dataclass
from typing import Dict, Iterator, Tuple
from constants import (
    CellState, DEFAULT_CELL_HUMIDITY, FOREST_HUMIDITY_MIN, FOREST_HUMIDITY_SPAN,
    MANUAL_IGNITION_INTENSITY, clamp, parse_enum
)
import logging

logger = logging.getLogger(__name__)


class SimulationInvariantError(ValueError):
    """
    Raised when a caller breaks a core invariant.

    Distinct from rejected user actions, which are reported as status values.
    """


# ============================================================================
# FOREST CELL
# ============================================================================

@dataclass(frozen=True)
class CellRecord:
    """Immutable copy of a cell's mutable fields."""
    state: CellState
    fire_intensity: float
    humidity: float
    burning_time: float


@dataclass
class Cell:
    """State of a single forest cell."""
    row: int                        # Grid row
    col: int                        # Grid column
    state: CellState = CellState.EMPTY
    fire_intensity: float = 0.0     # 0.0 to 1.0, nonzero only while burning
    humidity: float = DEFAULT_CELL_HUMIDITY
    burning_time: float = 0.0       # Seconds spent burning

    def is_burning(self) -> bool:
        return self.state == CellState.BURNING

    def set_state(self, state: CellState) -> None:
        """Set state, keeping intensity at zero outside BURNING."""
        self.state = state
        if state != CellState.BURNING:
            self.fire_intensity = 0.0

    def advance_burn(self, elapsed_s: float, growth_rate: float,
                     burn_threshold_s: float) -> bool:
        """
        Accumulate burn time and grow intensity.

        Args:
            elapsed_s: Tick duration (seconds)
            growth_rate: Intensity gained per second
            burn_threshold_s: Burn time after which the cell is burnt

        Returns:
            True if the cell burnt out during this call
        """
        if self.state != CellState.BURNING:
            return False

        self.burning_time += elapsed_s
        self.fire_intensity = min(1.0, self.fire_intensity + growth_rate * elapsed_s)

        if self.burning_time > burn_threshold_s:
            self.set_state(CellState.BURNT)
            return True
        return False

    def to_record(self) -> CellRecord:
        return CellRecord(self.state, self.fire_intensity, self.humidity, self.burning_time)

    def copy_state_from(self, record: CellRecord) -> None:
        """Overwrite mutable fields from a record (position is kept)."""
        self.state = record.state
        self.fire_intensity = record.fire_intensity
        self.humidity = record.humidity
        self.burning_time = record.burning_time


# ============================================================================
# FOREST GRID
# ============================================================================

class ForestGrid:
    """
    Rectangular forest grid.

    The grid shape is fixed for its lifetime; cells are created once and
    only their state is rewritten afterwards.

    Attributes:
        width: Number of columns
        height: Number of rows
        cells: 2D numpy array (row, col) of Cell objects
    """

    def __init__(self, width: int, height: int,
                 base_humidity: float = DEFAULT_CELL_HUMIDITY):
        """
        Initialize an empty grid.

        Args:
            width: Grid width (cells)
            height: Grid height (cells)
            base_humidity: Humidity of cells not planted by the forest generator
        """
        if width <= 0 or height <= 0:
            raise SimulationInvariantError(
                f"Grid dimensions must be positive, got {width}x{height}"
            )
        self.width = width
        self.height = height
        self.base_humidity = clamp(base_humidity, 0.0, 100.0)

        self.cells = np.empty((height, width), dtype=object)
        for row in range(height):
            for col in range(width):
                self.cells[row, col] = Cell(row=row, col=col, humidity=self.base_humidity)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.height, self.width

    def in_bounds(self, row: int, col: int) -> bool:
        """Check if coordinates are in bounds."""
        return 0 <= row < self.height and 0 <= col < self.width

    def cell(self, row: int, col: int) -> Cell:
        """
        Get cell by grid coordinates.

        Raises:
            SimulationInvariantError: If coordinates are outside the grid
        """
        if not self.in_bounds(row, col):
            raise SimulationInvariantError(
                f"Cell ({row}, {col}) outside {self.height}x{self.width} grid"
            )
        return self.cells[row, col]

    def iter_cells(self) -> Iterator[Cell]:
        """Iterate cells in row-major order."""
        for row in range(self.height):
            for col in range(self.width):
                yield self.cells[row, col]

    # ========================================================================
    # STATE CHANGES
    # ========================================================================

    def set_state(self, row: int, col: int, state) -> Cell:
        """
        Externally set a cell's state.

        An external reset to EMPTY or TREE also clears burn time.
        """
        try:
            state = parse_enum(CellState, state)
        except ValueError as e:
            raise SimulationInvariantError(str(e)) from None
        cell = self.cell(row, col)
        cell.set_state(state)
        if state in (CellState.EMPTY, CellState.TREE):
            cell.burning_time = 0.0
        return cell

    def ignite(self, row: int, col: int,
               intensity: float = MANUAL_IGNITION_INTENSITY) -> bool:
        """
        Ignite a tree cell.

        Args:
            row, col: Grid coordinates
            intensity: Initial fire intensity (0-1)

        Returns:
            True if the cell was a tree and is now burning
        """
        cell = self.cell(row, col)
        if cell.state != CellState.TREE:
            return False

        cell.set_state(CellState.BURNING)
        cell.fire_intensity = clamp(intensity, 0.0, 1.0)
        cell.burning_time = 0.0
        return True

    def clear(self) -> None:
        """Reset every cell to an empty cell with the base humidity."""
        empty = CellRecord(CellState.EMPTY, 0.0, self.base_humidity, 0.0)
        for cell in self.iter_cells():
            cell.copy_state_from(empty)

    def generate_random_forest(self, density: float, rng: np.random.RandomState) -> int:
        """
        Fill the grid with trees at the given density.

        Each tree gets a random humidity between 30% and 70%.

        Args:
            density: Probability that a cell holds a tree (0-1)
            rng: Random source

        Returns:
            Number of trees planted
        """
        if not 0.0 <= density <= 1.0:
            raise SimulationInvariantError(f"Forest density must be in [0, 1], got {density}")

        self.clear()
        planted = 0
        for cell in self.iter_cells():
            if rng.rand() < density:
                cell.set_state(CellState.TREE)
                cell.humidity = FOREST_HUMIDITY_MIN + rng.rand() * FOREST_HUMIDITY_SPAN
                planted += 1

        logger.info(f"Generated forest: {planted} trees (density={density:.2f})")
        return planted

    # ========================================================================
    # QUERIES
    # ========================================================================

    def burning_mask(self) -> np.ndarray:
        """Boolean (row, col) array, True where a cell is burning."""
        mask = np.zeros((self.height, self.width), dtype=bool)
        for cell in self.iter_cells():
            if cell.state == CellState.BURNING:
                mask[cell.row, cell.col] = True
        return mask

    def count_by_state(self) -> Dict[CellState, int]:
        """Count cells in each state."""
        counts = {state: 0 for state in CellState}
        for cell in self.iter_cells():
            counts[cell.state] += 1
        return counts

    def state_matrix(self) -> np.ndarray:
        """Integer (row, col) array of cell state values."""
        states = np.zeros((self.height, self.width), dtype=np.int8)
        for cell in self.iter_cells():
            states[cell.row, cell.col] = int(cell.state)
        return states

    # ========================================================================
    # SNAPSHOT SUPPORT
    # ========================================================================

    def export_state(self) -> Tuple[CellRecord, ...]:
        """Row-major immutable copy of every cell's state."""
        return tuple(cell.to_record() for cell in self.iter_cells())

    def restore_state(self, records: Tuple[CellRecord, ...]) -> None:
        """
        Rewrite every cell from a same-shape export.

        Raises:
            SimulationInvariantError: If the record count does not match
        """
        if len(records) != self.width * self.height:
            raise SimulationInvariantError(
                f"Snapshot holds {len(records)} cells, grid has {self.width * self.height}"
            )
        for cell, record in zip(self.iter_cells(), records):
            cell.copy_state_from(record)
