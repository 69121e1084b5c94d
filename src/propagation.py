"""
src/propagation.py

Fire Propagation Strategies (Slow / Fast)

Probability-weighted cellular spread:
- Distance-attenuated base ignition probability
- Wind alignment bonus along the wind bearing
- Humidity penalty from the target tree
- Simultaneous evaluation against the pre-tick grid
"""

import math
import numpy as np
from dataclasses import dataclass
from typing import Callable, List, Optional, Set, Tuple
from constants import (
    CellState, StrategyKind, PROPAGATION_REACH_LIMIT,
    clamp, cell_distance, bearing_deg, angular_difference
)
from fire_grid import Cell, ForestGrid
import logging

logger = logging.getLogger(__name__)

# ============================================================================
# STRATEGY PARAMETERS
# ============================================================================

@dataclass(frozen=True)
class PropagationParams:
    """Constant table for one propagation variant."""
    base_probability: float
    wind_factor: float
    humidity_factor: float
    burn_time_s: float          # Burn duration before a cell is burnt
    check_radius: float         # Neighbor scan radius (cells)
    ignition_multiplier: float  # Scales the probability before sampling
    initial_intensity: float    # Intensity of a freshly ignited cell
    growth_rate: float          # Intensity gained per second of burning
    reach_limit: float = PROPAGATION_REACH_LIMIT


SLOW_PARAMS = PropagationParams(
    base_probability=0.30, wind_factor=0.05, humidity_factor=0.20,
    burn_time_s=15.0, check_radius=1.0, ignition_multiplier=0.8,
    initial_intensity=0.2, growth_rate=0.05,
)

FAST_PARAMS = PropagationParams(
    base_probability=0.75, wind_factor=0.15, humidity_factor=0.10,
    burn_time_s=8.0, check_radius=2.0, ignition_multiplier=1.5,
    initial_intensity=0.6, growth_rate=0.10,
)

_PARAMS_BY_KIND = {
    StrategyKind.SLOW: SLOW_PARAMS,
    StrategyKind.FAST: FAST_PARAMS,
}


def _neighbor_offsets(check_radius: float) -> List[Tuple[int, int, float]]:
    """Row-major (dr, dc, distance) offsets within the check radius."""
    span = int(math.floor(check_radius))
    offsets = []
    for dr in range(-span, span + 1):
        for dc in range(-span, span + 1):
            if dr == 0 and dc == 0:
                continue
            dist = math.sqrt(dr**2 + dc**2)
            if dist <= check_radius:
                offsets.append((dr, dc, dist))
    return offsets


# ============================================================================
# PROPAGATION STRATEGY
# ============================================================================

class PropagationStrategy:
    """
    Fire propagation model, one of the closed set {SLOW, FAST}.

    The variant only selects a constant table; the spread algorithm is
    shared. Strategies hold no simulation state and take the random
    source as an argument.

    Attributes:
        kind: Variant tag
        params: Constant table
        burn_time_fn: Optional humidity -> burn time override
    """

    def __init__(self, kind: StrategyKind,
                 burn_time_fn: Optional[Callable[[float], float]] = None):
        """
        Initialize strategy.

        Args:
            kind: SLOW or FAST
            burn_time_fn: When set, burn threshold per cell is
                burn_time_fn(cell.humidity) instead of the table value
        """
        if kind not in _PARAMS_BY_KIND:
            raise ValueError(f"Unsupported strategy kind: {kind!r}")
        self.kind = kind
        self.params = _PARAMS_BY_KIND[kind]
        self.burn_time_fn = burn_time_fn
        self._offsets = _neighbor_offsets(self.params.check_radius)

    @property
    def name(self) -> str:
        return self.kind.value

    def __repr__(self) -> str:
        return f"PropagationStrategy({self.kind.value})"

    def ignition_probability(self, source: Cell, target: Cell,
                             wind_speed: float, wind_direction: float) -> float:
        """
        Probability that a burning source ignites a target this tick.

        Args:
            source: Burning cell
            target: Candidate cell
            wind_speed: Wind speed (m/s)
            wind_direction: Wind direction (degrees)

        Returns:
            Probability in [0, 1]; 0 for non-tree targets or targets
            beyond the reach limit
        """
        if target.state != CellState.TREE:
            return 0.0

        distance = cell_distance(source.row, source.col, target.row, target.col)
        if distance == 0.0 or distance > self.params.reach_limit:
            return 0.0

        probability = self.params.base_probability / distance

        if wind_speed > 0:
            bearing = bearing_deg(source.row, source.col, target.row, target.col)
            wind_alignment = 1.0 - angular_difference(wind_direction, bearing) / 180.0
            probability += self.params.wind_factor * wind_speed * wind_alignment

        probability -= self.params.humidity_factor * (target.humidity / 100.0)

        return clamp(probability, 0.0, 1.0)

    def select_ignitions(self, grid: ForestGrid, wind_speed: float,
                         wind_direction: float,
                         rng: np.random.RandomState) -> Set[Tuple[int, int]]:
        """
        Sample the cells that catch fire this tick.

        All burning cells are evaluated against the current grid before
        anything changes, so a cell ignited this tick cannot spread until
        the next one.

        Returns:
            Set of (row, col) positions to ignite
        """
        ignitions: Set[Tuple[int, int]] = set()
        multiplier = self.params.ignition_multiplier

        for source in grid.iter_cells():
            if source.state != CellState.BURNING:
                continue

            for dr, dc, _ in self._offsets:
                nr, nc = source.row + dr, source.col + dc
                if not grid.in_bounds(nr, nc):
                    continue

                target = grid.cells[nr, nc]
                prob = self.ignition_probability(source, target, wind_speed, wind_direction)
                if rng.rand() < prob * multiplier:
                    ignitions.add((nr, nc))

        return ignitions

    def advance(self, grid: ForestGrid, elapsed_s: float, wind_speed: float,
                wind_direction: float, rng: np.random.RandomState) -> Tuple[int, int]:
        """
        Advance the fire by one tick, mutating the grid in place.

        Newly ignited cells are updated in the same call and therefore
        already accrue elapsed_s of burning.

        Returns:
            (newly_ignited, newly_burnt) tuple
        """
        ignitions = self.select_ignitions(grid, wind_speed, wind_direction, rng)

        newly_ignited = 0
        for row, col in sorted(ignitions):
            cell = grid.cells[row, col]
            if cell.state == CellState.TREE:
                cell.set_state(CellState.BURNING)
                cell.fire_intensity = self.params.initial_intensity
                cell.burning_time = 0.0
                newly_ignited += 1

        newly_burnt = 0
        for cell in grid.iter_cells():
            if cell.state != CellState.BURNING:
                continue
            if cell.advance_burn(elapsed_s, self.params.growth_rate, self.burn_threshold(cell)):
                newly_burnt += 1
                logger.debug(f"Cell ({cell.row}, {cell.col}) burnt out")

        if newly_ignited:
            logger.debug(f"{self.name}: {newly_ignited} cells ignited, {newly_burnt} burnt out")
        return newly_ignited, newly_burnt

    def burn_threshold(self, cell: Cell) -> float:
        """Burn time after which the cell becomes burnt."""
        if self.burn_time_fn is not None:
            return self.burn_time_fn(cell.humidity)
        return self.params.burn_time_s


# ============================================================================
# FACTORY
# ============================================================================

def create_strategy(name, burn_time_fn: Optional[Callable[[float], float]] = None
                    ) -> PropagationStrategy:
    """
    Create a propagation strategy by name.

    Args:
        name: "FAST" or "SLOW" (case-insensitive), or a StrategyKind
        burn_time_fn: Optional humidity-scaled burn time

    Returns:
        Strategy instance; unknown names fall back to SLOW
    """
    if isinstance(name, StrategyKind):
        return PropagationStrategy(name, burn_time_fn)

    try:
        kind = StrategyKind(str(name).strip().upper())
    except ValueError:
        logger.warning(f"Unknown propagation strategy {name!r}, using SLOW")
        kind = StrategyKind.SLOW
    return PropagationStrategy(kind, burn_time_fn)
