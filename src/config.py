"""
src/config.py

Configuration loader for AlertFire-Sim.
Loads YAML simulation parameters and merges with runtime overrides.
"""

import os
import yaml
from pathlib import Path
from typing import Any, Dict, Optional
from dataclasses import dataclass, field, fields, is_dataclass
import logging

from constants import (
    GRID_WIDTH, GRID_HEIGHT, CELL_SIZE_PX, CELL_SIZE_KM,
    SIM_STEP_TIME_S, SIM_FRAME_INTERVAL_S, INITIAL_FOREST_DENSITY,
    WIND_SPEED_MS, WIND_DIRECTION_DEG, MAX_WIND_SPEED_MS, HUMIDITY_PERCENT,
    AMBIENT_TEMPERATURE_MIN_C, AMBIENT_TEMPERATURE_SPAN_C,
    BURN_TIME_MIN_S, BURN_TIME_MAX_S,
    TEMPERATURE_THRESHOLD_C, CO2_THRESHOLD_PPM, TRANSMISSION_COOLDOWN_S,
    MASTER_DETECTION_RADIUS_CELLS, SLAVE_DETECTION_RADIUS_CELLS,
    ACTIVATION_INTERVAL_S, ACTIVE_TIME_S, LORA_RANGE_KM, AMBIENT_CO2_PPM,
    HISTORY_CAPACITY, HISTORY_KEEP_RECENT,
    BACKEND_URL, TRANSPORT_TIMEOUT_S, TRANSPORT_MAX_WORKERS,
)

logger = logging.getLogger(__name__)

# ============================================================================
# DATA CLASSES FOR TYPE-SAFE CONFIG
# ============================================================================

@dataclass
class SimulationConfig:
    """Top-level simulation configuration."""
    name: str = "AlertFire Wildfire Sensor Simulation"
    version: str = "1.0.0"
    grid_width: int = GRID_WIDTH
    grid_height: int = GRID_HEIGHT
    cell_size_px: float = CELL_SIZE_PX
    cell_size_km: float = CELL_SIZE_KM
    step_time_s: float = SIM_STEP_TIME_S
    frame_interval_s: float = SIM_FRAME_INTERVAL_S
    random_seed: Optional[int] = None
    initial_forest_density: float = INITIAL_FOREST_DENSITY

@dataclass
class WeatherConfig:
    """Wind and ambient conditions."""
    initial_wind_speed_ms: float = WIND_SPEED_MS
    initial_wind_direction_deg: float = WIND_DIRECTION_DEG
    max_wind_speed_ms: float = MAX_WIND_SPEED_MS
    humidity_percent: float = HUMIDITY_PERCENT
    ambient_temperature_min_c: float = AMBIENT_TEMPERATURE_MIN_C
    ambient_temperature_span_c: float = AMBIENT_TEMPERATURE_SPAN_C

@dataclass
class PropagationConfig:
    """Fire propagation parameters."""
    strategy: str = "SLOW"
    burn_time_min_s: float = BURN_TIME_MIN_S
    burn_time_max_s: float = BURN_TIME_MAX_S
    humidity_scaled_burn_time: bool = False

    def calculate_burn_time(self, humidity: float) -> float:
        """
        Burn duration for a tree of given humidity.

        Wetter trees burn longer, linearly between the min and max times.

        Args:
            humidity: Tree humidity (0-100)

        Returns:
            Burn time in seconds
        """
        humidity_factor = humidity / 100.0
        return self.burn_time_min_s + (self.burn_time_max_s - self.burn_time_min_s) * humidity_factor

@dataclass
class SensorConfig:
    """Sensor node thresholds and energy cycle."""
    temperature_threshold_c: float = TEMPERATURE_THRESHOLD_C
    co2_threshold_ppm: float = CO2_THRESHOLD_PPM
    transmission_cooldown_s: float = TRANSMISSION_COOLDOWN_S
    master_detection_radius_cells: float = MASTER_DETECTION_RADIUS_CELLS
    slave_detection_radius_cells: float = SLAVE_DETECTION_RADIUS_CELLS
    activation_interval_s: float = ACTIVATION_INTERVAL_S
    active_time_s: float = ACTIVE_TIME_S
    lora_range_km: float = LORA_RANGE_KM
    ambient_co2_ppm: float = AMBIENT_CO2_PPM

@dataclass
class HistoryConfig:
    """Undo history bounds."""
    capacity: int = HISTORY_CAPACITY
    keep_recent: int = HISTORY_KEEP_RECENT

@dataclass
class TransportConfig:
    """Outbound alert sink."""
    enabled: bool = True
    backend_url: str = BACKEND_URL
    timeout_s: float = TRANSPORT_TIMEOUT_S
    max_workers: int = TRANSPORT_MAX_WORKERS

@dataclass
class LoggingConfig:
    """Logging configuration."""
    log_level: str = "INFO"
    log_file: Optional[str] = None
    log_alerts: bool = True

@dataclass
class FrontendConfig:
    """Frontend server configuration."""
    web_server_host: str = "0.0.0.0"
    web_server_port: int = 8080
    api_base_path: str = "/api/v1"
    websocket_port: int = 8081
    max_recent_alerts: int = 50

@dataclass
class AlertFireConfig:
    """Master configuration object."""
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    weather: WeatherConfig = field(default_factory=WeatherConfig)
    propagation: PropagationConfig = field(default_factory=PropagationConfig)
    sensors: SensorConfig = field(default_factory=SensorConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    frontend: FrontendConfig = field(default_factory=FrontendConfig)

    def validate(self) -> None:
        """
        Check values the simulation divides by or scales with.

        Raises:
            ValueError: If a size, radius or range is not positive
        """
        positive = {
            "simulation.cell_size_km": self.simulation.cell_size_km,
            "simulation.step_time_s": self.simulation.step_time_s,
            "sensors.master_detection_radius_cells": self.sensors.master_detection_radius_cells,
            "sensors.slave_detection_radius_cells": self.sensors.slave_detection_radius_cells,
            "sensors.activation_interval_s": self.sensors.activation_interval_s,
            "sensors.lora_range_km": self.sensors.lora_range_km,
        }
        for key, value in positive.items():
            if not value > 0:
                raise ValueError(f"{key} must be positive, got {value}")

_SECTIONS = {
    "simulation": SimulationConfig,
    "weather": WeatherConfig,
    "propagation": PropagationConfig,
    "sensors": SensorConfig,
    "history": HistoryConfig,
    "transport": TransportConfig,
    "logging": LoggingConfig,
    "frontend": FrontendConfig,
}

# ============================================================================
# CONFIGURATION LOADER
# ============================================================================

CONFIG_ENV_VAR = "ALERTFIRE_CONFIG"
DEFAULT_CONFIG_NAME = "simulation_params.yaml"


def find_config_file() -> str:
    """
    Locate the YAML parameters file.

    Search order: $ALERTFIRE_CONFIG, <repo>/config/, ./config/
    """
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return env_path

    for base in (Path(__file__).resolve().parent.parent, Path.cwd()):
        path = base / "config" / DEFAULT_CONFIG_NAME
        if path.exists():
            logger.info(f"Using config file: {path}")
            return str(path)

    raise FileNotFoundError(
        f"No {DEFAULT_CONFIG_NAME} found in ./config/ and {CONFIG_ENV_VAR} is not set"
    )


class ConfigLoader:
    """Reads simulation_params.yaml into an AlertFireConfig."""

    def __init__(self, config_file: Optional[str] = None):
        """
        Load a configuration file.

        Args:
            config_file: YAML path (located with find_config_file() when None)
        """
        self.config_file = config_file or find_config_file()
        self.config: AlertFireConfig = self._parse_config(self._read_yaml(self.config_file))

    @staticmethod
    def _read_yaml(path: str) -> Dict[str, Any]:
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            raise FileNotFoundError(f"Config file not found: {path}") from None

        if not data:
            raise ValueError(f"Config file is empty: {path}")
        if not isinstance(data, dict):
            raise ValueError(f"Config file must hold a mapping of sections: {path}")
        return data

    @staticmethod
    def _parse_config(data: Dict[str, Any]) -> AlertFireConfig:
        """Build typed sections; missing sections and keys keep their defaults."""
        config = AlertFireConfig()

        for section, section_cls in _SECTIONS.items():
            if section not in data:
                continue
            try:
                setattr(config, section, section_cls(**(data[section] or {})))
            except TypeError as e:
                raise ValueError(f"Invalid '{section}' section: {e}") from e

        unknown = set(data) - set(_SECTIONS)
        if unknown:
            logger.warning(f"Ignoring unknown config sections: {sorted(unknown)}")

        config.validate()
        return config

    def get_config(self) -> AlertFireConfig:
        return self.config

    def override_param(self, key_path: str, value: Any) -> None:
        """
        Override one parameter, e.g. override_param("propagation.strategy", "FAST").

        Raises:
            AttributeError: If the section or parameter does not exist
        """
        section_name, _, param = key_path.partition('.')
        section = getattr(self.config, section_name, None)
        if section is None or not param or not hasattr(section, param):
            raise AttributeError(f"Unknown config parameter: {key_path}")

        setattr(section, param, value)
        logger.info(f"Config override: {key_path} = {value}")

    def to_dict(self) -> Dict[str, Any]:
        """Plain dictionary form (for serialization)."""
        return config_to_dict(self.config)


def config_to_dict(obj: Any) -> Any:
    """Recursively convert config dataclasses to plain dictionaries."""
    if is_dataclass(obj):
        return {f.name: config_to_dict(getattr(obj, f.name)) for f in fields(obj)}
    if isinstance(obj, list):
        return [config_to_dict(v) for v in obj]
    return obj

# ============================================================================
# PROCESS-WIDE CONFIG
# ============================================================================

_loader: Optional[ConfigLoader] = None


def _active_loader() -> ConfigLoader:
    global _loader
    if _loader is None:
        _loader = ConfigLoader()
    return _loader


def initialize_config(config_file: Optional[str] = None) -> AlertFireConfig:
    """Load the process-wide configuration (replacing any earlier one)."""
    global _loader
    _loader = ConfigLoader(config_file)
    return _loader.get_config()


def get_config() -> AlertFireConfig:
    """Process-wide configuration, loaded from the default file on first use."""
    return _active_loader().get_config()


def override_config(key_path: str, value: Any) -> None:
    """Override a parameter of the process-wide configuration."""
    _active_loader().override_param(key_path, value)
