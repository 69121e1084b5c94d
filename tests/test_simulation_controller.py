"""
tests/test_simulation_controller.py

Test simulation orchestration and user intents.

Validates:
- User intents report status instead of raising
- Invariant violations fail fast
- Snapshot/restore round trip and go_back
- Run loop start/stop
- End-to-end fire detection and alert cooldown
"""

import pytest
import sys
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from config import AlertFireConfig
from constants import CellState, NodeKind, MASTER_NODE_UUIDS, SLAVE_NODE_UUIDS
from fire_grid import SimulationInvariantError
from simulation_controller import SimulationController, ActionResult


@pytest.fixture
def controller():
    """Seeded controller with the default 20x20 forest."""
    ctrl = SimulationController(seed=42)
    yield ctrl
    ctrl.close()


@pytest.fixture
def empty_controller(controller):
    """Controller with an empty grid."""
    controller.reset()
    return controller


def first_tree(ctrl):
    return next(c for c in ctrl.grid.iter_cells() if c.state == CellState.TREE)


class TestInitialization:
    """Test initial controller state."""

    def test_defaults(self, controller):
        assert controller.dimensions == (20, 20)
        assert controller.strategy.name == "SLOW"
        assert controller.simulation_time == 0.0
        assert controller.history.size == 1
        counts = controller.grid.count_by_state()
        assert counts[CellState.TREE] > 0
        assert counts[CellState.BURNING] == 0

    def test_config_applied(self):
        config = AlertFireConfig()
        config.simulation.grid_width = 12
        config.simulation.grid_height = 7
        config.propagation.strategy = "FAST"
        ctrl = SimulationController(config=config, seed=1)

        assert ctrl.dimensions == (12, 7)
        assert ctrl.strategy.name == "FAST"
        ctrl.close()


class TestUserIntents:
    """Test status-reporting user actions."""

    def test_action_result_str(self):
        assert str(ActionResult(True, "done")) == "done"
        assert ActionResult(False, "nope").to_dict() == {"ok": False, "status": "nope"}

    def test_ignite_tree(self, controller):
        cell = first_tree(controller)
        result = controller.ignite_cell(cell.row, cell.col)

        assert result.ok
        assert cell.state == CellState.BURNING
        assert cell.fire_intensity == pytest.approx(0.5)

    def test_ignite_non_tree_reported(self, empty_controller):
        result = empty_controller.ignite_cell(3, 3)

        assert not result.ok
        assert "not a tree" in str(result)
        assert empty_controller.grid.cell(3, 3).state == CellState.EMPTY

    def test_set_cell_state(self, empty_controller):
        ctrl = empty_controller
        assert ctrl.set_cell_state(2, 2, "TREE").ok
        assert ctrl.grid.cell(2, 2).state == CellState.TREE

        assert ctrl.set_cell_state(2, 2, CellState.BURNING).ok
        assert ctrl.grid.cell(2, 2).state == CellState.BURNING

        result = ctrl.set_cell_state(2, 3, "BURNT")
        assert not result.ok
        assert ctrl.grid.cell(2, 3).state == CellState.EMPTY

        assert ctrl.set_cell_state(2, 2, "EMPTY").ok
        assert ctrl.grid.cell(2, 2).fire_intensity == 0.0

    def test_place_sensor_nodes(self, empty_controller):
        ctrl = empty_controller
        assert ctrl.place_sensor_node(1, 1, NodeKind.MASTER).ok
        assert ctrl.place_sensor_node(1, 2, "slave").ok

        nodes = ctrl.get_nodes()
        assert [n["uuid"] for n in nodes] == [MASTER_NODE_UUIDS[0], SLAVE_NODE_UUIDS[0]]
        assert nodes[0]["detection_radius"] == 10.0
        assert nodes[1]["detection_radius"] == 5.0

    def test_place_on_occupied_cell(self, empty_controller):
        ctrl = empty_controller
        ctrl.place_sensor_node(4, 4, "MASTER")
        result = ctrl.place_sensor_node(4, 4, "SLAVE")

        assert not result.ok
        assert "already exists" in str(result)
        assert len(ctrl.nodes) == 1

    def test_uuid_pool_exhaustion(self, empty_controller):
        ctrl = empty_controller
        for col in range(4):
            ctrl.place_sensor_node(0, col, "MASTER")

        ids = [n.node_id for n in ctrl.nodes]
        assert ids[:3] == list(MASTER_NODE_UUIDS)
        assert ids[3] not in MASTER_NODE_UUIDS
        assert len(set(ids)) == 4

    def test_wind_settings(self, controller):
        assert controller.set_wind_speed(50.0).ok
        assert controller.wind.speed_ms == 10.0
        controller.set_wind_speed(-3.0)
        assert controller.wind.speed_ms == 0.0

        controller.set_wind_direction(370.0)
        assert controller.wind.direction_deg == pytest.approx(10.0)

    def test_set_strategy(self, controller):
        assert controller.set_strategy("fast").ok
        assert controller.strategy.name == "FAST"

        result = controller.set_strategy("medium")
        assert not result.ok
        assert controller.strategy.name == "FAST"


class TestInvariants:
    """Invariant violations raise instead of reporting."""

    def test_out_of_range_indices(self, controller):
        with pytest.raises(SimulationInvariantError):
            controller.ignite_cell(20, 0)
        with pytest.raises(SimulationInvariantError):
            controller.place_sensor_node(-1, 3, "MASTER")
        with pytest.raises(SimulationInvariantError):
            controller.set_cell_state(0, 25, "TREE")

    def test_unknown_node_kind(self, controller):
        with pytest.raises(SimulationInvariantError):
            controller.place_sensor_node(1, 1, "RELAY")

    def test_negative_dt_leaves_state_untouched(self, controller):
        before = controller.snapshot()
        with pytest.raises(SimulationInvariantError):
            controller.update(-0.5)

        assert controller.snapshot() == before
        assert controller.history.size == 1

    def test_invalid_reset_density(self, controller):
        with pytest.raises(SimulationInvariantError):
            controller.reset(density=1.2)
        with pytest.raises(SimulationInvariantError):
            controller.reset(density=float("nan"))

    def test_non_finite_inputs_rejected(self, controller):
        """NaN or infinite dt and wind values never reach the state."""
        before = controller.snapshot()
        for bad in (float("nan"), float("inf"), float("-inf")):
            with pytest.raises(SimulationInvariantError):
                controller.step(bad)
            with pytest.raises(SimulationInvariantError):
                controller.set_wind_speed(bad)
            with pytest.raises(SimulationInvariantError):
                controller.set_wind_direction(bad)

        assert controller.snapshot() == before
        assert controller.history.size == 1

    def test_zero_detection_radius_rejected(self):
        config = AlertFireConfig()
        config.sensors.master_detection_radius_cells = 0
        with pytest.raises(ValueError):
            SimulationController(config=config, seed=1)

        config = AlertFireConfig()
        config.simulation.cell_size_km = 0.0
        with pytest.raises(ValueError):
            SimulationController(config=config, seed=1)


def burning_scene(seed: int) -> SimulationController:
    """Empty grid with one burning tree watched by a master node, one tick in."""
    ctrl = SimulationController(seed=seed)
    ctrl.reset()
    ctrl.set_cell_state(10, 5, "TREE")
    ctrl.set_cell_state(10, 6, "TREE")
    ctrl.ignite_cell(10, 5)
    ctrl.place_sensor_node(10, 5, "MASTER")
    ctrl.step()
    return ctrl


class TestTickRollback:
    """A tick that fails part way leaves no trace."""

    def test_failed_tick_restores_state(self, monkeypatch):
        ctrl = burning_scene(seed=8)
        before = ctrl.snapshot()
        history_size = ctrl.history.size

        def broken_drift(elapsed_s, rng):
            raise RuntimeError("wind drift failed")

        monkeypatch.setattr(ctrl.wind, "drift", broken_drift)
        with pytest.raises(RuntimeError):
            ctrl.step()

        assert ctrl.snapshot() == before
        assert ctrl.history.size == history_size
        assert ctrl.tick_count == 1
        assert ctrl.get_metrics()["tick"] == 1
        assert ctrl.grid.cell(10, 5).burning_time == pytest.approx(0.5)
        ctrl.close()

    def test_failed_tick_keeps_random_sequence(self, monkeypatch):
        """After a rollback the next ticks match a run that never failed."""
        failed = burning_scene(seed=8)
        clean = burning_scene(seed=8)

        monkeypatch.setattr(failed.wind, "drift", lambda elapsed_s, rng: 1 / 0)
        with pytest.raises(ZeroDivisionError):
            failed.step()
        monkeypatch.undo()

        for _ in range(4):
            failed.step()
            clean.step()

        assert failed.snapshot() == clean.snapshot()
        failed.close()
        clean.close()


class TestTick:
    """Test single ticks and the run loop."""

    def test_pure_forest_never_self_ignites(self, controller):
        """Slow, density 0.6, calm wind: no fire appears from nothing."""
        controller.set_wind_speed(0.0)
        controller.reset(density=0.6)
        controller.set_wind_speed(0.0)

        assert controller.step(0.5).ok
        assert controller.grid.count_by_state()[CellState.BURNING] == 0
        assert controller.simulation_time == pytest.approx(0.5)

    def test_step_uses_configured_time(self, controller):
        controller.step()
        controller.step()
        assert controller.simulation_time == pytest.approx(1.0)
        assert controller.tick_count == 2

    def test_intensity_only_while_burning(self, controller):
        controller.set_strategy("FAST")
        cell = first_tree(controller)
        controller.ignite_cell(cell.row, cell.col)

        for _ in range(40):
            controller.step()
            for c in controller.grid.iter_cells():
                if c.state != CellState.BURNING:
                    assert c.fire_intensity == 0.0

    def test_metrics_recorded(self, controller):
        controller.step()
        metrics = controller.get_metrics()
        assert metrics["tick"] == 1
        assert metrics["simulation_time"] == pytest.approx(0.5)
        assert metrics["history_size"] == 2

    def test_run_loop(self, controller):
        assert controller.start().ok
        assert not controller.start().ok
        assert not controller.step().ok

        time.sleep(0.3)
        assert controller.stop().ok
        assert not controller.running
        assert controller.tick_count > 0
        assert controller.simulation_time > 0.0

        assert not controller.stop().ok
        assert controller.step().ok


class TestHistory:
    """Test snapshot, restore and go_back."""

    def test_snapshot_restore_round_trip(self, controller):
        controller.place_sensor_node(3, 3, "MASTER")
        cell = first_tree(controller)
        controller.ignite_cell(cell.row, cell.col)
        for _ in range(5):
            controller.step()

        snapshot = controller.snapshot()
        controller.restore(snapshot)
        assert controller.snapshot() == snapshot

        for _ in range(5):
            controller.step()
        assert controller.snapshot() != snapshot

        controller.restore(snapshot)
        assert controller.snapshot() == snapshot

    def test_restored_nodes_do_not_alias(self, empty_controller):
        ctrl = empty_controller
        ctrl.place_sensor_node(3, 3, "MASTER")
        snapshot = ctrl.snapshot()

        ctrl.nodes[0].temperature = 99.0
        assert snapshot.nodes[0].temperature == 25.0

        ctrl.restore(snapshot)
        ctrl.nodes[0].temperature = 77.0
        assert snapshot.nodes[0].temperature == 25.0

    def test_go_back(self, empty_controller):
        ctrl = empty_controller
        ctrl.set_cell_state(5, 5, "TREE")
        ctrl.set_cell_state(5, 6, "TREE")
        ctrl.ignite_cell(5, 5)

        ctrl.step()
        after_first = ctrl.snapshot()
        ctrl.step()
        ctrl.step()

        result = ctrl.go_back()
        assert result.ok
        assert ctrl.snapshot() == after_first
        assert ctrl.simulation_time == pytest.approx(0.5)

    def test_go_back_rewinds_tick_and_metrics(self, empty_controller):
        ctrl = empty_controller
        for _ in range(3):
            ctrl.step()
        assert ctrl.get_metrics()["tick"] == 3

        assert ctrl.go_back().ok
        assert ctrl.tick_count == 1
        assert ctrl.export_state_dict()["tick"] == 1
        assert ctrl.get_metrics()["tick"] == 1
        assert ctrl.get_metrics()["simulation_time"] == pytest.approx(ctrl.simulation_time)

    def test_go_back_until_unavailable(self, empty_controller):
        ctrl = empty_controller
        for _ in range(3):
            ctrl.step()

        while ctrl.go_back().ok:
            pass

        assert ctrl.history.size == 1
        result = ctrl.go_back()
        assert not result.ok
        assert "No history" in str(result)

    def test_history_bounded(self, controller):
        for _ in range(45):
            controller.step()
        assert controller.history.size <= 20

    def test_reset_restarts_history(self, controller):
        controller.place_sensor_node(1, 1, "MASTER")
        for _ in range(3):
            controller.step()

        assert controller.reset().ok
        assert controller.nodes == []
        assert controller.simulation_time == 0.0
        assert controller.history.size == 1
        assert controller.grid.count_by_state()[CellState.EMPTY] == 400

        controller.place_sensor_node(2, 2, "MASTER")
        assert controller.nodes[0].node_id == MASTER_NODE_UUIDS[0]


class TestSensorEndToEnd:
    """Fire detection through the whole tick."""

    def test_master_detects_fire(self, empty_controller):
        """
        Master at (5, 5), radius 10 cells of 0.1 km, fire at (10, 5).

        Thresholds are crossed within a few ticks; alerts then follow the
        5 s cooldown, one per window.
        """
        ctrl = empty_controller
        alert_times = []
        ctrl.channel.subscribe(lambda message: alert_times.append(ctrl.simulation_time))

        ctrl.set_cell_state(10, 5, "TREE")
        assert ctrl.ignite_cell(10, 5).ok
        assert ctrl.place_sensor_node(5, 5, "MASTER").ok

        for _ in range(40):
            ctrl.step(0.5)

        assert len(alert_times) >= 2
        assert alert_times[0] == pytest.approx(5.5)
        gaps = [b - a for a, b in zip(alert_times, alert_times[1:])]
        assert all(gap > 5.0 for gap in gaps)
        # No window is skipped while readings stay above threshold
        assert all(gap <= 5.0 + 0.5 + 1e-9 for gap in gaps)

        alerts = ctrl.recent_alerts()
        assert len(alerts) == len(alert_times)
        assert alerts[0]["fire_detected"] is True
        assert alerts[0]["uuid"] == MASTER_NODE_UUIDS[0]
        assert ctrl.get_metrics()["alerts"]["total"] == len(alert_times)

    def test_dormant_slave_silent(self, empty_controller):
        """A slave next to a fire stays silent while dormant."""
        ctrl = empty_controller
        ctrl.set_cell_state(10, 5, "TREE")
        ctrl.ignite_cell(10, 5)
        ctrl.place_sensor_node(9, 5, "SLAVE")

        for _ in range(20):
            ctrl.step(0.5)

        assert ctrl.recent_alerts() == []
        assert ctrl.nodes[0].temperature == 25.0

    def test_export_state_dict(self, controller):
        controller.place_sensor_node(0, 0, "MASTER")
        state = controller.export_state_dict()

        assert state["grid"]["width"] == 20
        assert len(state["grid"]["states"]) == 20
        assert len(state["grid"]["states"][0]) == 20
        assert state["nodes"][0]["kind"] == "MASTER"
        assert set(state["wind"]) == {"speed_ms", "direction_deg", "max_speed_ms"}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
