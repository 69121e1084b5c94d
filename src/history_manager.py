"""
src/history_manager.py

Bounded undo history of full simulation state.

Snapshots are immutable value records (cells, node states, wind, time),
so nothing in the history aliases live simulation objects.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple
import logging

from constants import HISTORY_CAPACITY, HISTORY_KEEP_RECENT
from fire_grid import CellRecord
from sensor_node import SensorNodeState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HistorySnapshot:
    """Complete pre-tick simulation state."""
    width: int
    height: int
    cells: Tuple[CellRecord, ...]           # Row-major
    nodes: Tuple[SensorNodeState, ...]
    wind_speed_ms: float
    wind_direction_deg: float
    simulation_time: float
    tick_count: int = 0


class HistoryManager:
    """
    Stack of HistorySnapshot with a capacity cap.

    When a push finds the stack full, only the most recent entries are
    kept (relative order preserved) before the new snapshot is added.

    Attributes:
        capacity: Stack size that triggers eviction
        keep_recent: Entries kept by an eviction
    """

    def __init__(self, capacity: int = HISTORY_CAPACITY,
                 keep_recent: int = HISTORY_KEEP_RECENT):
        if capacity < 1 or not 0 <= keep_recent < capacity:
            raise ValueError(
                f"Invalid history bounds: capacity={capacity}, keep_recent={keep_recent}"
            )
        self.capacity = capacity
        self.keep_recent = keep_recent
        self._stack: List[HistorySnapshot] = []
        self.evictions = 0

    def push(self, snapshot: HistorySnapshot) -> None:
        """Push a snapshot, evicting the oldest entries when full."""
        if len(self._stack) >= self.capacity:
            dropped = len(self._stack) - self.keep_recent
            self._stack = self._stack[-self.keep_recent:] if self.keep_recent else []
            self.evictions += 1
            logger.debug(f"History full, dropped {dropped} oldest snapshots")
        self._stack.append(snapshot)

    def go_back(self) -> Optional[HistorySnapshot]:
        """
        Discard the current top and return the new top.

        Returns:
            Snapshot to restore, or None when there is no earlier state
            (stack size <= 1, stack unchanged)
        """
        if len(self._stack) <= 1:
            return None
        self._stack.pop()
        return self._stack[-1]

    def peek(self) -> Optional[HistorySnapshot]:
        return self._stack[-1] if self._stack else None

    def clear(self) -> None:
        self._stack.clear()

    @property
    def size(self) -> int:
        return len(self._stack)

    def __len__(self) -> int:
        return len(self._stack)
