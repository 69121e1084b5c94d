"""
src/simulation_controller.py

Simulation Orchestrator for AlertFire-Sim

Owns the live simulation state and runs one tick at a time:
1. Snapshot the pre-tick state (pushed to the history once the tick succeeds)
2. Advance simulation time
3. Propagate fire (Slow / Fast strategy)
4. Sensor nodes update their duty cycle, then detect and report
5. Wind drift
6. Record tick metrics

User intents (ignite, place node, wind, step, start/stop, reset, go back)
never raise for invalid actions: they return an ActionResult carrying a
human-readable status. Invariant violations (negative dt, out-of-range
indices, unknown enum values) raise SimulationInvariantError.
"""

import math
import time
import uuid
import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np

from constants import (
    CellState, NodeKind, EnergyState, StrategyKind,
    MASTER_NODE_UUIDS, SLAVE_NODE_UUIDS, MANUAL_IGNITION_INTENSITY, parse_enum
)
from config import AlertFireConfig
from fire_grid import ForestGrid, SimulationInvariantError
from weather import WindModel
from propagation import PropagationStrategy
from sensor_node import SensorNode, SensorSettings
from alert_transport import AlertChannel, AlertMessage
from history_manager import HistoryManager, HistorySnapshot
from metrics_collector import MetricsCollector, TickMetrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionResult:
    """Outcome of a user intent."""
    ok: bool
    message: str

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict:
        return {"ok": self.ok, "status": self.message}


def _finite(value, name: str) -> float:
    """float(value), raising SimulationInvariantError for NaN or infinity."""
    value = float(value)
    if not math.isfinite(value):
        raise SimulationInvariantError(f"{name} must be finite, got {value}")
    return value


# ============================================================================
# SIMULATION CONTROLLER
# ============================================================================

class SimulationController:
    """
    Main simulation state holder and tick orchestrator.

    All ticks and user intents are serialized by one re-entrant lock, so
    each is all-or-nothing with respect to the others, including ticks
    driven by the background run loop.

    Attributes:
        config: Simulation configuration
        grid: Forest grid
        wind: Wind model
        strategy: Active propagation strategy
        nodes: Placed sensor nodes, in placement order
        channel: Alert channel the nodes publish on
        history: Undo history
        metrics: Per-tick metrics
        simulation_time: Simulated seconds since the last reset
    """

    def __init__(self, config: Optional[AlertFireConfig] = None,
                 alert_channel: Optional[AlertChannel] = None,
                 seed: Optional[int] = None):
        """
        Initialize controller with a random forest at the configured density.

        Args:
            config: Configuration (defaults when None)
            alert_channel: Channel for node alerts (a private one when None)
            seed: Random seed, overriding simulation.random_seed
        """
        self.config = config or AlertFireConfig()
        self.config.validate()
        sim_cfg = self.config.simulation
        weather_cfg = self.config.weather

        if seed is None:
            seed = sim_cfg.random_seed
        self.rng = np.random.RandomState(seed)

        self.grid = ForestGrid(sim_cfg.grid_width, sim_cfg.grid_height, weather_cfg.humidity_percent)
        self.wind = WindModel(
            weather_cfg.initial_wind_speed_ms,
            weather_cfg.initial_wind_direction_deg,
            weather_cfg.max_wind_speed_ms,
        )
        self.strategy = self._build_strategy(parse_enum(StrategyKind, self.config.propagation.strategy))
        self.sensor_settings = SensorSettings.from_config(self.config.sensors)

        self.channel = alert_channel or AlertChannel()
        self.channel.subscribe(self._on_alert)

        self.nodes: List[SensorNode] = []
        self.history = HistoryManager(self.config.history.capacity, self.config.history.keep_recent)
        self.metrics = MetricsCollector()
        self._recent_alerts: deque = deque(maxlen=self.config.frontend.max_recent_alerts)
        self._uuid_pools = self._fresh_uuid_pools()

        self.simulation_time = 0.0
        self.tick_count = 0
        self.last_ambient_temperature = weather_cfg.ambient_temperature_min_c

        self.running = False
        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self.grid.generate_random_forest(sim_cfg.initial_forest_density, self.rng)
        self.history.push(self.snapshot())

        logger.info(
            f"Simulation initialized: {sim_cfg.grid_width}x{sim_cfg.grid_height} grid, "
            f"strategy={self.strategy.name}"
        )

    def _build_strategy(self, kind: StrategyKind) -> PropagationStrategy:
        prop_cfg = self.config.propagation
        burn_time_fn = prop_cfg.calculate_burn_time if prop_cfg.humidity_scaled_burn_time else None
        return PropagationStrategy(kind, burn_time_fn)

    @staticmethod
    def _fresh_uuid_pools() -> Dict[NodeKind, List[str]]:
        return {
            NodeKind.MASTER: list(MASTER_NODE_UUIDS),
            NodeKind.SLAVE: list(SLAVE_NODE_UUIDS),
        }

    def _allocate_node_id(self, kind: NodeKind) -> str:
        """Next registered UUID for the kind, or a random one once exhausted."""
        pool = self._uuid_pools[kind]
        if pool:
            return pool.pop(0)
        node_id = str(uuid.uuid4())
        logger.warning(f"No registered {kind.name} UUIDs left, using {node_id}")
        return node_id

    # ========================================================================
    # TICK
    # ========================================================================

    def update(self, elapsed_s: float) -> None:
        """
        Run one simulation tick.

        A tick that raises part way is rolled back to the pre-tick state
        (grid, nodes, wind, time and random state) before re-raising.

        Args:
            elapsed_s: Simulated seconds for this tick

        Raises:
            SimulationInvariantError: If elapsed_s is negative or not finite
        """
        elapsed_s = _finite(elapsed_s, "Elapsed time")
        if elapsed_s < 0:
            raise SimulationInvariantError(f"Elapsed time must be >= 0, got {elapsed_s}")

        with self._lock:
            snapshot = self.snapshot()
            rng_state = self.rng.get_state()
            ambient_before = self.last_ambient_temperature
            try:
                counts = self._tick(elapsed_s)
            except Exception:
                self.restore(snapshot)
                self.rng.set_state(rng_state)
                self.last_ambient_temperature = ambient_before
                logger.error(f"Tick at t={snapshot.simulation_time:.2f}s failed, state rolled back")
                raise
            self.history.push(snapshot)
            self._record_metrics(*counts)

    def _tick(self, elapsed_s: float) -> Tuple[int, int, int]:
        """Apply one tick to live state. Returns (ignited, burnt, alerts sent)."""
        self.simulation_time += elapsed_s

        wind_speed, wind_direction = self.wind.as_tuple()
        newly_ignited, newly_burnt = self.strategy.advance(
            self.grid, elapsed_s, wind_speed, wind_direction, self.rng
        )

        weather_cfg = self.config.weather
        ambient = weather_cfg.ambient_temperature_min_c + self.rng.rand() * weather_cfg.ambient_temperature_span_c
        self.last_ambient_temperature = ambient

        fire_mask = self.grid.burning_mask()
        cell_size_km = self.config.simulation.cell_size_km
        alerts_sent = 0
        for node in self.nodes:
            node.update(elapsed_s)
            message = node.detect_and_report(fire_mask, ambient, self.simulation_time, cell_size_km)
            if message is not None:
                alerts_sent += 1

        self.wind.drift(elapsed_s, self.rng)
        self.tick_count += 1
        return newly_ignited, newly_burnt, alerts_sent

    def _record_metrics(self, newly_ignited: int, newly_burnt: int, alerts_sent: int) -> None:
        counts = self.grid.count_by_state()
        self.metrics.record_tick(TickMetrics(
            tick=self.tick_count,
            simulation_time=self.simulation_time,
            tree_cells=counts[CellState.TREE],
            burning_cells=counts[CellState.BURNING],
            burnt_cells=counts[CellState.BURNT],
            newly_ignited=newly_ignited,
            newly_burnt=newly_burnt,
            num_nodes=len(self.nodes),
            num_active_nodes=sum(1 for n in self.nodes if n.energy_state == EnergyState.ACTIVE),
            alerts_sent=alerts_sent,
            wind_speed_ms=self.wind.speed_ms,
            wind_direction_deg=self.wind.direction_deg,
            ambient_temperature_c=self.last_ambient_temperature,
        ))

    def _on_alert(self, message: AlertMessage) -> None:
        """Alert channel subscriber: keep recent alerts and count them."""
        with self._lock:
            entry = message.to_dict()
            entry["simulation_time"] = self.simulation_time
            self._recent_alerts.append(entry)
            self.metrics.record_alert(message.sender_id, message.fire_detected)

        if message.fire_detected and self.config.logging.log_alerts:
            logger.info(
                f"Fire alert from {message.sender_id} at ({message.row}, {message.col}) | "
                f"Temp: {message.temperature:.1f}°C | CO2: {message.co2_level:.0f} ppm"
            )

    # ========================================================================
    # SNAPSHOT / RESTORE
    # ========================================================================

    def snapshot(self) -> HistorySnapshot:
        """Immutable copy of grid, nodes, wind and simulation time."""
        with self._lock:
            return HistorySnapshot(
                width=self.grid.width,
                height=self.grid.height,
                cells=self.grid.export_state(),
                nodes=tuple(node.get_state() for node in self.nodes),
                wind_speed_ms=self.wind.speed_ms,
                wind_direction_deg=self.wind.direction_deg,
                simulation_time=self.simulation_time,
                tick_count=self.tick_count,
            )

    def restore(self, snapshot: HistorySnapshot) -> None:
        """
        Rewrite live state from a snapshot.

        Raises:
            SimulationInvariantError: If the snapshot grid shape differs
        """
        with self._lock:
            if (snapshot.width, snapshot.height) != (self.grid.width, self.grid.height):
                raise SimulationInvariantError(
                    f"Snapshot grid {snapshot.width}x{snapshot.height} does not match "
                    f"{self.grid.width}x{self.grid.height}"
                )
            self.grid.restore_state(snapshot.cells)
            self.nodes = [
                SensorNode.from_state(state, channel=self.channel, rng=self.rng)
                for state in snapshot.nodes
            ]
            self.wind.restore(snapshot.wind_speed_ms, snapshot.wind_direction_deg)
            self.simulation_time = snapshot.simulation_time
            self.tick_count = snapshot.tick_count

    # ========================================================================
    # USER INTENTS
    # ========================================================================

    def set_cell_state(self, row: int, col: int, state) -> ActionResult:
        """
        Set a cell's state from the UI.

        EMPTY and TREE are always accepted (external reset). BURNING follows
        the manual ignition rules. BURNT cannot be set directly.
        """
        try:
            state = parse_enum(CellState, state)
        except ValueError as e:
            raise SimulationInvariantError(str(e)) from None

        if state == CellState.BURNING:
            return self.ignite_cell(row, col)
        if state == CellState.BURNT:
            self.grid.cell(row, col)
            logger.warning(f"Rejected direct BURNT state at ({row}, {col})")
            return ActionResult(False, "Cells can only become burnt by burning out")

        with self._lock:
            self.grid.set_state(row, col, state)
        return ActionResult(True, f"Cell ({row}, {col}) set to {state.name}")

    def ignite_cell(self, row: int, col: int) -> ActionResult:
        """Manually ignite a tree cell."""
        with self._lock:
            if not self.grid.ignite(row, col, MANUAL_IGNITION_INTENSITY):
                state = self.grid.cell(row, col).state
                logger.info(f"Ignition rejected at ({row}, {col}): cell is {state.name}")
                return ActionResult(False, f"Cannot ignite ({row}, {col}): cell is {state.name}, not a tree")

        logger.info(f"Fire ignited at ({row}, {col})")
        return ActionResult(True, f"Fire ignited at ({row}, {col})")

    def place_sensor_node(self, row: int, col: int, kind) -> ActionResult:
        """
        Place a sensor node on a free cell.

        Args:
            row, col: Grid position
            kind: NodeKind, or "MASTER" / "SLAVE"
        """
        try:
            kind = parse_enum(NodeKind, kind)
        except ValueError as e:
            raise SimulationInvariantError(str(e)) from None

        with self._lock:
            self.grid.cell(row, col)
            if any(node.position == (row, col) for node in self.nodes):
                logger.info(f"Node placement rejected at ({row}, {col}): occupied")
                return ActionResult(False, f"A sensor node already exists at ({row}, {col})")

            sensors_cfg = self.config.sensors
            radius = (
                sensors_cfg.master_detection_radius_cells if kind == NodeKind.MASTER
                else sensors_cfg.slave_detection_radius_cells
            )
            node = SensorNode(
                node_id=self._allocate_node_id(kind),
                kind=kind,
                row=row,
                col=col,
                detection_radius=radius,
                settings=self.sensor_settings,
                channel=self.channel,
                rng=self.rng,
            )
            self.nodes.append(node)

        logger.info(f"Placed {kind.name} node {node.node_id} at ({row}, {col})")
        return ActionResult(True, f"{kind.name.capitalize()} node placed at ({row}, {col})")

    def set_wind_speed(self, speed_ms: float) -> ActionResult:
        """Set wind speed, clamped to [0, max]."""
        with self._lock:
            applied = self.wind.set_speed(_finite(speed_ms, "Wind speed"))
        return ActionResult(True, f"Wind speed set to {applied:.1f} m/s")

    def set_wind_direction(self, direction_deg: float) -> ActionResult:
        """Set wind direction, wrapped to [0, 360)."""
        with self._lock:
            applied = self.wind.set_direction(_finite(direction_deg, "Wind direction"))
        return ActionResult(True, f"Wind direction set to {applied:.1f}°")

    def set_strategy(self, name) -> ActionResult:
        """Switch the propagation strategy ("SLOW" or "FAST")."""
        try:
            kind = parse_enum(StrategyKind, name)
        except ValueError:
            logger.warning(f"Unknown propagation strategy requested: {name!r}")
            return ActionResult(False, f"Unknown strategy: {name}")

        with self._lock:
            self.strategy = self._build_strategy(kind)
        logger.info(f"Propagation strategy set to {kind.value}")
        return ActionResult(True, f"Strategy set to {kind.value}")

    def step(self, elapsed_s: Optional[float] = None) -> ActionResult:
        """
        Run a single manual tick.

        Args:
            elapsed_s: Tick duration, defaults to simulation.step_time_s
        """
        if elapsed_s is None:
            elapsed_s = self.config.simulation.step_time_s

        with self._lock:
            if self.running:
                return ActionResult(False, "Cannot step while the simulation is running")
            self.update(elapsed_s)
            sim_time = self.simulation_time
        return ActionResult(True, f"Stepped {elapsed_s:.2f}s (t={sim_time:.1f}s)")

    def start(self) -> ActionResult:
        """Start the wall-clock run loop on a background thread."""
        with self._lock:
            if self.running:
                return ActionResult(False, "Simulation is already running")
            self.running = True
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run_loop, name="sim-loop", daemon=True)
            self._thread.start()

        logger.info("Simulation started")
        return ActionResult(True, "Simulation started")

    def stop(self) -> ActionResult:
        """Stop the run loop."""
        if not self._halt():
            return ActionResult(False, "Simulation is not running")
        logger.info(f"Simulation stopped at t={self.simulation_time:.1f}s")
        return ActionResult(True, "Simulation stopped")

    def _halt(self) -> bool:
        with self._lock:
            if not self.running:
                return False
            self.running = False
            self._stop_event.set()
            thread, self._thread = self._thread, None

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2.0)
        return True

    def _run_loop(self) -> None:
        """Tick with the wall-clock time elapsed since the previous frame."""
        frame_interval = self.config.simulation.frame_interval_s
        last = time.monotonic()

        while not self._stop_event.wait(frame_interval):
            now = time.monotonic()
            elapsed, last = now - last, now
            with self._lock:
                if not self.running:
                    break
                try:
                    self.update(elapsed)
                except Exception as e:
                    logger.error(f"Simulation loop error: {e}", exc_info=True)
                    self.running = False
                    self._stop_event.set()
                    break

    def reset(self, density: Optional[float] = None) -> ActionResult:
        """
        Reset the simulation.

        Stops the run loop and removes all nodes. With a density the forest
        is regenerated, otherwise the grid is emptied. History restarts
        from the new state.

        Raises:
            SimulationInvariantError: If density is outside [0, 1]
        """
        if density is not None and not 0.0 <= density <= 1.0:
            raise SimulationInvariantError(f"Forest density must be in [0, 1], got {density}")

        self._halt()
        with self._lock:
            if density is None:
                self.grid.clear()
            else:
                self.grid.generate_random_forest(density, self.rng)

            weather_cfg = self.config.weather
            self.wind.set_speed(weather_cfg.initial_wind_speed_ms)
            self.wind.set_direction(weather_cfg.initial_wind_direction_deg)

            self.nodes = []
            self._uuid_pools = self._fresh_uuid_pools()
            self.simulation_time = 0.0
            self.tick_count = 0
            self.metrics.reset()
            self._recent_alerts.clear()

            self.history.clear()
            self.history.push(self.snapshot())

        logger.info("Simulation reset")
        if density is None:
            return ActionResult(True, "Simulation reset (empty grid)")
        return ActionResult(True, f"Simulation reset (forest density {density:.2f})")

    def go_back(self) -> ActionResult:
        """Restore the previous snapshot from the history."""
        with self._lock:
            snapshot = self.history.go_back()
            if snapshot is None:
                return ActionResult(False, "No history available")
            self.restore(snapshot)
            self.metrics.rewind(snapshot.tick_count)

        logger.info(f"Went back to t={snapshot.simulation_time:.1f}s")
        return ActionResult(True, f"Restored state at t={snapshot.simulation_time:.1f}s")

    def close(self) -> None:
        """Stop the run loop and detach from the alert channel."""
        self._halt()
        self.channel.unsubscribe(self._on_alert)

    # ========================================================================
    # READ ACCESSORS
    # ========================================================================

    @property
    def dimensions(self) -> Tuple[int, int]:
        """(width, height) in cells."""
        return self.grid.width, self.grid.height

    def get_cell(self, row: int, col: int) -> dict:
        with self._lock:
            cell = self.grid.cell(row, col)
            return {
                "row": cell.row,
                "col": cell.col,
                "state": cell.state.name,
                "fire_intensity": cell.fire_intensity,
                "humidity": cell.humidity,
                "burning_time": cell.burning_time,
            }

    def get_nodes(self) -> List[dict]:
        with self._lock:
            return [node.export_telemetry() for node in self.nodes]

    def get_wind(self) -> dict:
        with self._lock:
            return self.wind.to_dict()

    def get_fire_state(self) -> dict:
        """Cell counts and burning cell positions."""
        with self._lock:
            counts = self.grid.count_by_state()
            burning = [
                {"row": c.row, "col": c.col, "intensity": c.fire_intensity}
                for c in self.grid.iter_cells() if c.state == CellState.BURNING
            ]
        return {
            "counts": {state.name: n for state, n in counts.items()},
            "burning_cells": burning,
        }

    def get_metrics(self) -> dict:
        with self._lock:
            summary = self.metrics.export_summary()
            summary["history_size"] = self.history.size
            return summary

    def recent_alerts(self, limit: Optional[int] = None) -> List[dict]:
        """Most recent alerts, oldest first."""
        with self._lock:
            alerts = list(self._recent_alerts)
        if limit is not None:
            alerts = alerts[-limit:] if limit > 0 else []
        return alerts

    def export_state_dict(self) -> dict:
        """Complete state for renderers (REST and websocket)."""
        with self._lock:
            intensity = np.zeros(self.grid.shape)
            for cell in self.grid.iter_cells():
                intensity[cell.row, cell.col] = cell.fire_intensity

            return {
                "simulation_time": self.simulation_time,
                "tick": self.tick_count,
                "running": self.running,
                "strategy": self.strategy.name,
                "grid": {
                    "width": self.grid.width,
                    "height": self.grid.height,
                    "cell_size_px": self.config.simulation.cell_size_px,
                    "cell_size_km": self.config.simulation.cell_size_km,
                    "states": self.grid.state_matrix().tolist(),
                    "intensity": intensity.tolist(),
                },
                "wind": self.wind.to_dict(),
                "nodes": [node.export_telemetry() for node in self.nodes],
                "history_size": self.history.size,
            }
