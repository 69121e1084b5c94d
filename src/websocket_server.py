"""
src/websocket_server.py

WebSocket Server for Real-Time Simulation Streaming

Streams simulation state and sensor alerts to connected frontend clients
and accepts user commands (ignite, place node, wind, step, ...).

Messages from clients:
- {"type": "subscribe"}                      -> state_update reply
- {"type": "command", "payload": {...}}      -> command_result reply

Messages to clients:
- state_update (periodic and on request)
- alert (every alert published on the attached channel)
- command_result / error
"""

import asyncio
import json
import logging
from typing import Optional, Set
import websockets
from datetime import datetime, timezone

from fire_grid import SimulationInvariantError

logger = logging.getLogger(__name__)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()

# ============================================================================
# WEBSOCKET SERVER
# ============================================================================

class SimulationWebSocketServer:
    """
    WebSocket server for real-time state streaming.

    Manages:
    - Client connections
    - Periodic state broadcasts
    - Alert forwarding from the alert channel
    - Command dispatch to the simulation controller
    """

    def __init__(self, host: str = "0.0.0.0", port: int = 8081,
                 simulation_engine=None, broadcast_interval_s: float = 0.5):
        """
        Initialize WebSocket server.

        Args:
            host: Server host
            port: Server port
            simulation_engine: SimulationController instance
            broadcast_interval_s: Period of state broadcasts
        """
        self.host = host
        self.port = port
        self.simulation_engine = simulation_engine
        self.broadcast_interval_s = broadcast_interval_s

        self.clients: Set = set()
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self._channel = None

        logger.info(f"WebSocket server initialized: {host}:{port}")

    # ========================================================================
    # ALERT FORWARDING
    # ========================================================================

    def attach(self, channel) -> None:
        """Forward alerts published on the channel to all clients."""
        channel.subscribe(self._on_alert)
        self._channel = channel

    def detach(self) -> None:
        if self._channel is not None:
            self._channel.unsubscribe(self._on_alert)
            self._channel = None

    def _on_alert(self, message) -> None:
        """Channel subscriber, called from the simulation thread."""
        if self.loop is None or not self.clients:
            return
        asyncio.run_coroutine_threadsafe(self.broadcast_alert(message.to_dict()), self.loop)

    async def broadcast_alert(self, alert: dict) -> None:
        await self._broadcast({
            "type": "alert",
            "timestamp": _timestamp(),
            "alert": alert,
        })

    # ========================================================================
    # CLIENT HANDLING
    # ========================================================================

    async def handle_client(self, websocket, path: Optional[str] = None) -> None:
        """
        Handle new client connection.

        Args:
            websocket: Client WebSocket connection
            path: Connection path (older websockets releases only)
        """
        self.clients.add(websocket)
        logger.info(f"Client connected: {websocket.remote_address}")

        try:
            async for message in websocket:
                await self.handle_message(websocket, message)
        except websockets.exceptions.ConnectionClosed:
            logger.info(f"Client disconnected: {websocket.remote_address}")
        finally:
            self.clients.discard(websocket)

    async def handle_message(self, websocket, message: str) -> None:
        """
        Handle incoming message from client.

        Args:
            websocket: Client connection
            message: JSON message payload
        """
        try:
            data = json.loads(message)
        except json.JSONDecodeError as e:
            logger.warning(f"Malformed client message: {e}")
            await websocket.send(json.dumps({"type": "error", "message": "Invalid JSON"}))
            return

        msg_type = data.get("type")
        if msg_type == "subscribe":
            await self.send_state(websocket)
        elif msg_type == "command":
            result = await self.handle_command(data.get("payload") or {})
            await websocket.send(json.dumps({"type": "command_result", **result}))
        else:
            logger.warning(f"Unknown message type: {msg_type}")
            await websocket.send(json.dumps({
                "type": "error",
                "message": f"Unknown message type: {msg_type}"
            }))

    def _state_message(self) -> dict:
        return {
            "type": "state_update",
            "timestamp": _timestamp(),
            "state": self.simulation_engine.export_state_dict(),
        }

    async def send_state(self, websocket) -> None:
        """
        Send current simulation state to client.

        Args:
            websocket: Client connection
        """
        if not self.simulation_engine:
            await websocket.send(json.dumps({
                "type": "error",
                "message": "No simulation engine"
            }))
            return

        message = await asyncio.get_running_loop().run_in_executor(None, self._state_message)
        await websocket.send(json.dumps(message))

    async def broadcast_state(self) -> None:
        """Broadcast current state to all connected clients."""
        if not self.clients or not self.simulation_engine:
            return
        message = await asyncio.get_running_loop().run_in_executor(None, self._state_message)
        await self._broadcast(message)

    async def _broadcast(self, message: dict) -> None:
        payload = json.dumps(message)
        disconnected = set()
        for client in list(self.clients):
            try:
                await client.send(payload)
            except websockets.exceptions.ConnectionClosed:
                disconnected.add(client)

        for client in disconnected:
            self.clients.discard(client)

    # ========================================================================
    # COMMANDS
    # ========================================================================

    async def handle_command(self, payload: dict) -> dict:
        """
        Run a client command on a worker thread.

        Controller calls can wait on the simulation lock or join the
        run-loop thread.
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._dispatch_command, payload)

    def _dispatch_command(self, payload: dict) -> dict:
        """
        Dispatch a client command to the simulation controller.

        Args:
            payload: {"type": <command>, ...arguments}

        Returns:
            {"ok": bool, "status": str}
        """
        if not self.simulation_engine:
            return {"ok": False, "status": "No simulation engine"}

        engine = self.simulation_engine
        cmd_type = payload.get("type")

        try:
            if cmd_type == "ignite":
                result = engine.ignite_cell(int(payload["row"]), int(payload["col"]))
            elif cmd_type == "set_cell":
                result = engine.set_cell_state(int(payload["row"]), int(payload["col"]), payload["state"])
            elif cmd_type == "place_node":
                result = engine.place_sensor_node(int(payload["row"]), int(payload["col"]), payload["kind"])
            elif cmd_type == "set_wind":
                statuses = []
                if payload.get("speed") is not None:
                    statuses.append(str(engine.set_wind_speed(float(payload["speed"]))))
                if payload.get("direction") is not None:
                    statuses.append(str(engine.set_wind_direction(float(payload["direction"]))))
                return {"ok": bool(statuses), "status": "; ".join(statuses) or "Missing speed or direction"}
            elif cmd_type == "set_strategy":
                result = engine.set_strategy(payload["strategy"])
            elif cmd_type == "step":
                dt = payload.get("dt")
                result = engine.step(float(dt) if dt is not None else None)
            elif cmd_type == "start":
                result = engine.start()
            elif cmd_type == "stop":
                result = engine.stop()
            elif cmd_type == "reset":
                density = payload.get("density")
                result = engine.reset(float(density) if density is not None else None)
            elif cmd_type == "go_back":
                result = engine.go_back()
            else:
                logger.warning(f"Unknown command type: {cmd_type}")
                return {"ok": False, "status": f"Unknown command: {cmd_type}"}
        except KeyError as e:
            return {"ok": False, "status": f"Missing argument: {e.args[0]}"}
        except (SimulationInvariantError, TypeError, ValueError) as e:
            logger.warning(f"Invalid command {cmd_type}: {e}")
            return {"ok": False, "status": str(e)}

        return result.to_dict()

    # ========================================================================
    # SERVER LOOP
    # ========================================================================

    async def _broadcast_loop(self) -> None:
        while True:
            await asyncio.sleep(self.broadcast_interval_s)
            await self.broadcast_state()

    async def run(self) -> None:
        """
        Start WebSocket server.

        Should be run in async context (e.g., with asyncio.run()).
        """
        self.loop = asyncio.get_running_loop()
        logger.info(f"Starting WebSocket server on {self.host}:{self.port}")

        async with websockets.serve(self.handle_client, self.host, self.port):
            logger.info("WebSocket server running")
            await self._broadcast_loop()


# ============================================================================
# INTEGRATION WITH MAIN SIMULATION
# ============================================================================

def run_websocket_server(host: str = "0.0.0.0", port: int = 8081,
                         simulation_engine=None, channel=None) -> None:
    """
    Run WebSocket server in its own event loop (blocking).

    Args:
        host: Server host
        port: Server port
        simulation_engine: SimulationController instance
        channel: Alert channel to forward alerts from
    """
    server = SimulationWebSocketServer(host, port, simulation_engine)
    if channel is not None:
        server.attach(channel)
    asyncio.run(server.run())
