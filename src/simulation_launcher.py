"""
src/simulation_launcher.py

Master Launch Script for AlertFire-Sim

ARCHITECTURE:
1. Parse command-line arguments (--config, --strategy, --seed, ...)
2. Load configuration and configure logging
3. Create the alert channel, HTTP alert transport and simulation controller
4. Place the initial sensor nodes and fire (optional)
5. Start the REST API and WebSocket servers in background threads
6. Run the simulation: a fixed number of manual steps, or the
   wall-clock loop until interrupted
"""

import argparse
import signal
import sys
import time
import logging
import threading
from typing import List, Optional, Tuple

from config import AlertFireConfig, initialize_config, override_config
from constants import NodeKind
from alert_transport import AlertChannel, HttpAlertTransport
from simulation_controller import SimulationController
from api_server import SimulationAPIServer
from websocket_server import run_websocket_server

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure root logging (console, plus an optional file)."""
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        handlers=handlers,
        force=True,
    )


def parse_position(text: str) -> Tuple[int, int]:
    """Parse "row,col" into a tuple (argparse type)."""
    try:
        row, col = (int(v) for v in text.split(","))
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected ROW,COL, got {text!r}") from None
    return row, col

# ============================================================================
# SIMULATION LAUNCHER
# ============================================================================

class SimulationLauncher:
    """
    Wires the simulation together and owns its lifecycle.

    Orchestrates:
    1. Alert channel + HTTP transport
    2. Simulation controller
    3. REST API / WebSocket servers
    4. Run loop and shutdown
    """

    def __init__(self, config: AlertFireConfig, seed: Optional[int] = None):
        """
        Initialize launcher.

        Args:
            config: Loaded configuration
            seed: Optional random seed override
        """
        self.config = config
        self.seed = seed

        self.channel: Optional[AlertChannel] = None
        self.transport: Optional[HttpAlertTransport] = None
        self.controller: Optional[SimulationController] = None
        self.api_server: Optional[SimulationAPIServer] = None
        self.running = False

    def initialize_simulation(self) -> bool:
        """
        Create channel, transport and controller.

        Returns:
            True if successful
        """
        try:
            self.channel = AlertChannel()

            if self.config.transport.enabled:
                self.transport = HttpAlertTransport.from_config(self.config.transport)
                self.transport.attach(self.channel)
            else:
                logger.info("Alert transport disabled")

            self.controller = SimulationController(
                config=self.config,
                alert_channel=self.channel,
                seed=self.seed,
            )
            return True

        except Exception as e:
            logger.error(f"Simulation initialization failed: {e}", exc_info=True)
            return False

    def place_nodes(self, masters: List[Tuple[int, int]], slaves: List[Tuple[int, int]]) -> None:
        for row, col in masters:
            logger.info(self.controller.place_sensor_node(row, col, NodeKind.MASTER))
        for row, col in slaves:
            logger.info(self.controller.place_sensor_node(row, col, NodeKind.SLAVE))

    def ignite(self, positions: List[Tuple[int, int]]) -> None:
        for row, col in positions:
            logger.info(self.controller.ignite_cell(row, col))

    def start_servers(self) -> None:
        """Start REST API and WebSocket servers in daemon threads."""
        frontend = self.config.frontend

        try:
            self.api_server = SimulationAPIServer(
                host=frontend.web_server_host,
                port=frontend.web_server_port,
                simulation_engine=self.controller,
                base_path=frontend.api_base_path,
            )
            api_thread = threading.Thread(target=self.api_server.run, name="api-server", daemon=True)
            api_thread.start()
            logger.info("API server started in background thread")
        except Exception as e:
            logger.warning(f"Failed to start API server: {e}")

        ws_thread = threading.Thread(
            target=run_websocket_server,
            kwargs={
                "host": frontend.web_server_host,
                "port": frontend.websocket_port,
                "simulation_engine": self.controller,
                "channel": self.channel,
            },
            name="ws-server",
            daemon=True,
        )
        ws_thread.start()
        logger.info("WebSocket server started in background thread")

    def run_steps(self, steps: int) -> None:
        """Run a fixed number of manual ticks."""
        for i in range(steps):
            self.controller.step()
            if (i + 1) % 100 == 0:
                fire = self.controller.get_fire_state()["counts"]
                logger.info(
                    f"Step {i + 1}/{steps}, t={self.controller.simulation_time:.1f}s, "
                    f"burning={fire['BURNING']}, burnt={fire['BURNT']}"
                )
        logger.info(f"Finished {steps} steps: {self.controller.get_metrics()}")

    def run(self, max_duration_s: float = 3600) -> None:
        """
        Run the wall-clock loop until the duration elapses or interrupted.

        Args:
            max_duration_s: Maximum wall-clock duration
        """
        self.running = True
        start_time = time.time()
        logger.info(self.controller.start())

        try:
            while self.running and self.controller.running:
                if time.time() - start_time > max_duration_s:
                    logger.info(f"Simulation timeout after {max_duration_s:.0f}s")
                    break
                time.sleep(1.0)
        except KeyboardInterrupt:
            logger.info("Simulation interrupted by user")
        finally:
            self.shutdown()

    def shutdown(self) -> None:
        """Shutdown all subsystems."""
        if self.controller is None:
            return
        logger.info("Shutting down simulation...")
        self.running = False

        self.controller.close()
        if self.transport is not None:
            self.transport.shutdown(wait=True)
            logger.info(f"Alert transport totals: {self.transport.get_metrics()}")
        if self.channel is not None:
            self.channel.close()

        self.controller = None
        logger.info("Shutdown complete")

    def signal_handler(self, signum, frame) -> None:
        """Handle SIGINT/SIGTERM."""
        logger.info(f"Received signal {signum}")
        self.shutdown()
        sys.exit(0)


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

def main():
    """Parse arguments and launch the simulation."""
    parser = argparse.ArgumentParser(
        description="Run the AlertFire wildfire sensor simulation"
    )
    parser.add_argument("--config", type=str, default=None,
                        help="Path to simulation_params.yaml")
    parser.add_argument("--strategy", choices=["SLOW", "FAST"], default=None,
                        help="Fire propagation strategy")
    parser.add_argument("--seed", type=int, default=None,
                        help="Random seed")
    parser.add_argument("--master", type=parse_position, action="append", default=[],
                        help="Place a master node at ROW,COL (repeatable)")
    parser.add_argument("--slave", type=parse_position, action="append", default=[],
                        help="Place a slave node at ROW,COL (repeatable)")
    parser.add_argument("--ignite", type=parse_position, action="append", default=[],
                        help="Ignite the cell at ROW,COL (repeatable)")
    parser.add_argument("--steps", type=int, default=None,
                        help="Run this many manual steps and exit")
    parser.add_argument("--duration", type=float, default=3600,
                        help="Wall-clock duration of the run loop (seconds)")
    parser.add_argument("--no-servers", action="store_true",
                        help="Do not start the API / WebSocket servers")
    parser.add_argument("--no-transport", action="store_true",
                        help="Do not send alerts to the backend")

    args = parser.parse_args()

    config = initialize_config(args.config)
    if args.strategy:
        override_config("propagation.strategy", args.strategy)
    if args.no_transport:
        override_config("transport.enabled", False)

    configure_logging(config.logging.log_level, config.logging.log_file)

    launcher = SimulationLauncher(config, seed=args.seed)

    signal.signal(signal.SIGINT, launcher.signal_handler)
    signal.signal(signal.SIGTERM, launcher.signal_handler)

    if not launcher.initialize_simulation():
        logger.error("Failed to initialize simulation")
        sys.exit(1)

    launcher.place_nodes(args.master, args.slave)
    launcher.ignite(args.ignite)

    if args.steps is not None:
        try:
            launcher.run_steps(args.steps)
        finally:
            launcher.shutdown()
        return

    if not args.no_servers:
        launcher.start_servers()

    launcher.run(max_duration_s=args.duration)


if __name__ == "__main__":
    main()
