"""Application configuration using pydantic-settings.

Settings come from environment variables (and ``.env``); an optional YAML
file can supply the same options, with ``${VAR_NAME}`` values substituted
from the environment.
"""

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ais_relay.ais.fields import AnglePolicy
from ais_relay.ais.messages import EncoderOptions

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Exception raised when configuration loading fails."""

    pass


class Settings(BaseSettings):
    """Relay settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "AIS to NMEA 0183 Relay"
    log_level: str = "INFO"

    # Listeners
    tcp_host: str = "0.0.0.0"
    tcp_port: int = Field(default=10113, ge=1, le=65535)
    websocket_host: str = "0.0.0.0"
    websocket_port: int = Field(default=10114, ge=0, le=65535)  # 0 disables

    # Scheduling (seconds)
    update_interval: float = Field(default=15, gt=0)
    tcp_resend_interval: float = Field(default=60, ge=0)  # 0 disables

    # Filtering
    skip_without_callsign: bool = False
    skip_stale_data: bool = True
    stale_data_threshold_minutes: float = Field(default=60, ge=0)
    stale_data_shipname_add_time: float = Field(default=0, ge=0)  # 0 disables
    min_alarm_sog: float = Field(default=0.2, ge=0)
    max_minutes_sog_to_zero: float = Field(default=0, ge=0)  # 0 disables

    # Unit heuristics for angles without unit metadata
    class_a_angle_policy: AnglePolicy = AnglePolicy.MAGNITUDE
    class_b_angle_policy: AnglePolicy = AnglePolicy.MAGNITUDE

    # UDP forwarding (VesselFinder)
    vessel_finder_enabled: bool = False
    vessel_finder_host: str = "ais.vesselfinder.com"
    vessel_finder_port: int = Field(default=5500, ge=1, le=65535)
    vessel_finder_update_rate: float = Field(default=60, gt=0)

    # Debugging
    log_mmsi: str = ""
    log_debug_details: bool = False
    log_debug_stale: bool = False
    log_debug_json: bool = False
    log_debug_ais: bool = False
    log_debug_sog: bool = False

    # Primary vessel source
    api_root: str = "http://localhost:3000/signalk/v1/api"
    request_timeout: float = Field(default=15, gt=0)

    # Cloud vessel source (AISFleet)
    cloud_vessels_enabled: bool = False
    cloud_api_url: str = "https://aisfleet.com/api/vessels/nearby"
    cloud_vessels_update_interval: float = Field(default=60, gt=0)
    cloud_vessels_radius: float = Field(default=10, gt=0)  # nautical miles
    cloud_vessels_timeout: float = Field(default=15, gt=0)

    @property
    def encoder_options(self) -> EncoderOptions:
        return EncoderOptions(
            min_alarm_sog=self.min_alarm_sog,
            class_a_angle_policy=self.class_a_angle_policy,
            class_b_angle_policy=self.class_b_angle_policy,
        )


def _substitute_env_vars(value: Any) -> Any:
    """Substitute environment variables in string values.

    Supports ${VAR_NAME} syntax.
    """
    if isinstance(value, str) and value.startswith("${") and value.endswith("}"):
        return os.getenv(value[2:-1], "")
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(v) for v in value]
    return value


def load_settings(config_file: Optional[str] = None) -> Settings:
    """Load settings, overlaying values from a YAML file when given.

    Raises:
        ConfigError: If the file cannot be read or is not a YAML mapping
    """
    if not config_file:
        return Settings()

    config_path = Path(config_file)
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_file}")

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_file} must contain a mapping")

    logger.info(f"Loaded configuration from {config_file}")
    return Settings(**_substitute_env_vars(data))


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
