"""
src/metrics_collector.py

Simulation Metrics Aggregation for AlertFire-Sim

Collects and aggregates:
- Per-tick fire statistics (cell counts, ignitions, burn-outs)
- Sensor network statistics (active nodes, alerts sent)
- Per-node alert counts
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional
from collections import deque
import logging

logger = logging.getLogger(__name__)

# ============================================================================
# METRICS STRUCTURES
# ============================================================================

@dataclass
class TickMetrics:
    """Statistics for one simulation tick."""
    tick: int
    simulation_time: float

    # Fire state
    tree_cells: int
    burning_cells: int
    burnt_cells: int
    newly_ignited: int
    newly_burnt: int

    # Sensor network
    num_nodes: int
    num_active_nodes: int
    alerts_sent: int

    # Environment
    wind_speed_ms: float
    wind_direction_deg: float
    ambient_temperature_c: float

    @property
    def burnt_fraction(self) -> float:
        """Share of vegetation (tree + burning + burnt) already burnt."""
        vegetation = self.tree_cells + self.burning_cells + self.burnt_cells
        if vegetation == 0:
            return 0.0
        return self.burnt_cells / vegetation


@dataclass
class AlertTotals:
    """Running alert totals."""
    total_alerts: int = 0
    fire_alerts: int = 0
    alerts_by_node: Dict[str, int] = field(default_factory=dict)


# ============================================================================
# METRICS COLLECTOR
# ============================================================================

class MetricsCollector:
    """
    Collects and aggregates simulation metrics.

    Maintains:
    - Bounded history of per-tick metrics
    - Latest tick snapshot
    - Alert totals per node
    """

    def __init__(self, history_length: int = 1000):
        """
        Initialize metrics collector.

        Args:
            history_length: Max tick snapshots to keep in history
        """
        self.history_length = history_length
        self.tick_history: deque = deque(maxlen=history_length)
        self.current_metrics: Optional[TickMetrics] = None
        self.alerts = AlertTotals()

    def record_tick(self, metrics: TickMetrics) -> None:
        """Record metrics for a completed tick."""
        self.current_metrics = metrics
        self.tick_history.append(metrics)

    def record_alert(self, sender_id: str, fire_detected: bool) -> None:
        """Count an alert published by a node."""
        self.alerts.total_alerts += 1
        if fire_detected:
            self.alerts.fire_alerts += 1
        self.alerts.alerts_by_node[sender_id] = self.alerts.alerts_by_node.get(sender_id, 0) + 1

    def get_history(self) -> List[TickMetrics]:
        return list(self.tick_history)

    def get_latest(self) -> Optional[TickMetrics]:
        return self.current_metrics

    def rewind(self, tick: int) -> None:
        """Drop tick records newer than tick (after an undo). Alert totals are kept."""
        while self.tick_history and self.tick_history[-1].tick > tick:
            self.tick_history.pop()
        self.current_metrics = self.tick_history[-1] if self.tick_history else None

    def reset(self) -> None:
        """Drop all recorded metrics."""
        self.tick_history.clear()
        self.current_metrics = None
        self.alerts = AlertTotals()

    def export_summary(self) -> dict:
        """
        Export metrics summary for external consumption.

        Returns:
            Dictionary with aggregated metrics (empty before the first tick)
        """
        if not self.current_metrics:
            return {}

        metrics = self.current_metrics
        peak_burning = max(m.burning_cells for m in self.tick_history)

        return {
            "tick": metrics.tick,
            "simulation_time": metrics.simulation_time,
            "cells": {
                "tree": metrics.tree_cells,
                "burning": metrics.burning_cells,
                "burnt": metrics.burnt_cells,
            },
            "burnt_fraction": metrics.burnt_fraction,
            "peak_burning_cells": peak_burning,
            "num_nodes": metrics.num_nodes,
            "num_active_nodes": metrics.num_active_nodes,
            "wind_speed_ms": metrics.wind_speed_ms,
            "wind_direction_deg": metrics.wind_direction_deg,
            "ambient_temperature_c": metrics.ambient_temperature_c,
            "alerts": {
                "total": self.alerts.total_alerts,
                "fire_detected": self.alerts.fire_alerts,
                "by_node": dict(self.alerts.alerts_by_node),
            },
        }
