"""
src/api_server.py

REST API Server for AlertFire-Sim

Provides HTTP endpoints for:
- Simulation control (start, stop, step, reset, go back)
- Cell editing and fire ignition
- Sensor node placement
- Wind and strategy settings
- State, alert and metrics queries
"""

from flask import Flask, jsonify, request
from flask_cors import CORS
import logging
from typing import Any, Dict, Optional
from datetime import datetime, timezone

from fire_grid import SimulationInvariantError

logger = logging.getLogger(__name__)


def _require(data: Dict[str, Any], *keys: str) -> list:
    """Fetch required body fields, ValueError naming the missing ones."""
    missing = [k for k in keys if data.get(k) is None]
    if missing:
        raise ValueError(f"Missing {', '.join(missing)}")
    return [data[k] for k in keys]


def _action_response(result):
    """200 for an accepted action, 409 for a rejected one."""
    return jsonify(result.to_dict()), (200 if result.ok else 409)

# ============================================================================
# FLASK APP SETUP
# ============================================================================

class SimulationAPIServer:
    """
    REST API server for simulation control.

    Endpoints (under base_path, default /api/v1):
    - GET  /health
    - GET  /simulation/state
    - POST /simulation/start | stop | step | reset | back
    - POST /simulation/strategy
    - GET  /grid/cell/<row>/<col>
    - POST /grid/cell
    - POST /fire/ignite
    - GET  /fire/state
    - GET  /nodes
    - POST /nodes
    - GET  /wind
    - POST /wind
    - GET  /alerts
    - GET  /metrics

    Invariant violations and malformed input return 400; rejected
    actions return 409 with their status message.
    """

    def __init__(self, host: str = "0.0.0.0", port: int = 8080,
                 simulation_engine=None, base_path: str = "/api/v1"):
        """
        Initialize API server.

        Args:
            host: Server host
            port: Server port
            simulation_engine: SimulationController instance
            base_path: URL prefix for all endpoints
        """
        self.host = host
        self.port = port
        self.simulation_engine = simulation_engine
        self.base_path = base_path.rstrip('/')

        self.app = Flask(__name__)
        CORS(self.app)

        self._register_routes()
        self._register_error_handlers()

        logger.info(f"API server initialized: {host}:{port}{self.base_path}")

    def _register_error_handlers(self) -> None:
        @self.app.errorhandler(SimulationInvariantError)
        def invariant_error(e):
            logger.warning(f"Invalid request: {e}")
            return jsonify({"error": str(e)}), 400

    def _register_routes(self) -> None:
        """Register all API endpoints."""
        base = self.base_path

        def engine_or_error():
            if not self.simulation_engine:
                return jsonify({"error": "No simulation engine"}), 500
            return None

        def body() -> dict:
            return request.get_json(silent=True) or {}

        @self.app.route(f'{base}/health', methods=['GET'])
        def health():
            """Health check."""
            return jsonify({
                "status": "healthy",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "version": "1.0.0"
            }), 200

        # --------------------------------------------------------------
        # Simulation control
        # --------------------------------------------------------------

        @self.app.route(f'{base}/simulation/state', methods=['GET'])
        def get_sim_state():
            """Get simulation state."""
            error = engine_or_error()
            if error:
                return error
            return jsonify(self.simulation_engine.export_state_dict()), 200

        @self.app.route(f'{base}/simulation/start', methods=['POST'])
        def start_sim():
            error = engine_or_error()
            if error:
                return error
            return _action_response(self.simulation_engine.start())

        @self.app.route(f'{base}/simulation/stop', methods=['POST'])
        def stop_sim():
            error = engine_or_error()
            if error:
                return error
            return _action_response(self.simulation_engine.stop())

        @self.app.route(f'{base}/simulation/step', methods=['POST'])
        def step_sim():
            """Run one manual tick (optional body: {"dt": seconds})."""
            error = engine_or_error()
            if error:
                return error
            dt = body().get("dt")
            try:
                dt = float(dt) if dt is not None else None
            except (TypeError, ValueError):
                return jsonify({"error": f"Invalid dt: {dt!r}"}), 400
            return _action_response(self.simulation_engine.step(dt))

        @self.app.route(f'{base}/simulation/reset', methods=['POST'])
        def reset_sim():
            """Reset (optional body: {"density": 0..1})."""
            error = engine_or_error()
            if error:
                return error
            density = body().get("density")
            try:
                density = float(density) if density is not None else None
            except (TypeError, ValueError):
                return jsonify({"error": f"Invalid density: {density!r}"}), 400
            return _action_response(self.simulation_engine.reset(density))

        @self.app.route(f'{base}/simulation/back', methods=['POST'])
        def go_back():
            error = engine_or_error()
            if error:
                return error
            return _action_response(self.simulation_engine.go_back())

        @self.app.route(f'{base}/simulation/strategy', methods=['POST'])
        def set_strategy():
            error = engine_or_error()
            if error:
                return error
            try:
                (name,) = _require(body(), "strategy")
            except ValueError as e:
                return jsonify({"error": str(e)}), 400
            return _action_response(self.simulation_engine.set_strategy(name))

        # --------------------------------------------------------------
        # Grid and fire
        # --------------------------------------------------------------

        @self.app.route(f'{base}/grid/cell/<int:row>/<int:col>', methods=['GET'])
        def get_cell(row: int, col: int):
            error = engine_or_error()
            if error:
                return error
            return jsonify(self.simulation_engine.get_cell(row, col)), 200

        @self.app.route(f'{base}/grid/cell', methods=['POST'])
        def set_cell():
            """Set cell state ({"row", "col", "state"})."""
            error = engine_or_error()
            if error:
                return error
            try:
                row, col, state = _require(body(), "row", "col", "state")
                row, col = int(row), int(col)
            except (TypeError, ValueError) as e:
                return jsonify({"error": str(e)}), 400
            return _action_response(self.simulation_engine.set_cell_state(row, col, state))

        @self.app.route(f'{base}/fire/ignite', methods=['POST'])
        def ignite_fire():
            """Ignite a tree cell ({"row", "col"})."""
            error = engine_or_error()
            if error:
                return error
            try:
                row, col = (int(v) for v in _require(body(), "row", "col"))
            except (TypeError, ValueError) as e:
                return jsonify({"error": str(e)}), 400
            return _action_response(self.simulation_engine.ignite_cell(row, col))

        @self.app.route(f'{base}/fire/state', methods=['GET'])
        def get_fire_state():
            error = engine_or_error()
            if error:
                return error
            return jsonify(self.simulation_engine.get_fire_state()), 200

        # --------------------------------------------------------------
        # Sensor nodes
        # --------------------------------------------------------------

        @self.app.route(f'{base}/nodes', methods=['GET'])
        def get_nodes():
            error = engine_or_error()
            if error:
                return error
            return jsonify({"nodes": self.simulation_engine.get_nodes()}), 200

        @self.app.route(f'{base}/nodes', methods=['POST'])
        def place_node():
            """Place a node ({"row", "col", "kind": "MASTER"|"SLAVE"})."""
            error = engine_or_error()
            if error:
                return error
            try:
                row, col, kind = _require(body(), "row", "col", "kind")
                row, col = int(row), int(col)
            except (TypeError, ValueError) as e:
                return jsonify({"error": str(e)}), 400
            return _action_response(self.simulation_engine.place_sensor_node(row, col, kind))

        # --------------------------------------------------------------
        # Wind
        # --------------------------------------------------------------

        @self.app.route(f'{base}/wind', methods=['GET'])
        def get_wind():
            error = engine_or_error()
            if error:
                return error
            return jsonify(self.simulation_engine.get_wind()), 200

        @self.app.route(f'{base}/wind', methods=['POST'])
        def set_wind():
            """Set wind ({"speed"} and/or {"direction"})."""
            error = engine_or_error()
            if error:
                return error
            data = body()
            if data.get("speed") is None and data.get("direction") is None:
                return jsonify({"error": "Missing speed or direction"}), 400

            messages = []
            try:
                if data.get("speed") is not None:
                    messages.append(str(self.simulation_engine.set_wind_speed(float(data["speed"]))))
                if data.get("direction") is not None:
                    messages.append(str(self.simulation_engine.set_wind_direction(float(data["direction"]))))
            except (TypeError, ValueError) as e:
                return jsonify({"error": str(e)}), 400

            return jsonify({
                "ok": True,
                "status": "; ".join(messages),
                "wind": self.simulation_engine.get_wind(),
            }), 200

        # --------------------------------------------------------------
        # Alerts and metrics
        # --------------------------------------------------------------

        @self.app.route(f'{base}/alerts', methods=['GET'])
        def get_alerts():
            error = engine_or_error()
            if error:
                return error
            limit: Optional[int] = request.args.get("limit", type=int)
            return jsonify({"alerts": self.simulation_engine.recent_alerts(limit)}), 200

        @self.app.route(f'{base}/metrics', methods=['GET'])
        def get_metrics():
            """Get aggregated metrics."""
            error = engine_or_error()
            if error:
                return error
            try:
                return jsonify(self.simulation_engine.get_metrics()), 200
            except Exception as e:
                logger.error(f"Error getting metrics: {e}")
                return jsonify({"error": str(e)}), 500

    def run(self, debug: bool = False) -> None:
        """
        Start API server.

        Args:
            debug: Enable Flask debug mode
        """
        logger.info(f"Starting API server on {self.host}:{self.port}")
        self.app.run(host=self.host, port=self.port, debug=debug, threaded=True)

    def get_app(self):
        """Get Flask app (for testing/deployment)."""
        return self.app
