"""Configuration loader for tello-driver."""

from __future__ import annotations

import os
from configparser import ConfigParser
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Mapping, Optional

from . import constants
from .core.models import RetryPolicy
from .telemetry import DEFAULT_REQUIRED_FIELDS


@dataclass(slots=True)
class DroneConfig:
    host: str = constants.DEFAULT_TELLO_HOST
    command_port: int = constants.DEFAULT_COMMAND_PORT
    local_command_port: int = constants.DEFAULT_LOCAL_COMMAND_PORT
    state_port: int = constants.DEFAULT_STATE_PORT
    bind_host: str = ""
    video_enabled: bool = False
    video_port: int = constants.DEFAULT_VIDEO_PORT
    query_info_on_connect: bool = True


@dataclass(slots=True)
class CommandConfig:
    max_attempts: int = 20
    delay_seconds: float = 0.5
    receive_timeout_seconds: float = 0.5
    discard_stale_responses: bool = True

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(max_attempts=self.max_attempts, delay=self.delay_seconds)


@dataclass(slots=True)
class HandshakeConfig:
    max_attempts: int = 10
    interval_seconds: float = 1.0

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts, delay=self.interval_seconds
        )


@dataclass(slots=True)
class TelemetryConfig:
    required_fields: List[str] = field(
        default_factory=lambda: list(DEFAULT_REQUIRED_FIELDS)
    )
    stale_after_seconds: float = 2.0


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = None
    log_network: bool = False


@dataclass(slots=True)
class HealthConfig:
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 0


@dataclass(slots=True)
class TelloConfig:
    drone: DroneConfig
    commands: CommandConfig
    handshake: HandshakeConfig
    telemetry: TelemetryConfig
    logging: LoggingConfig
    health: HealthConfig
    raw: ConfigParser
    path: Path


def _parse_list(value: str, *, default: Iterable[str]) -> List[str]:
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


def split_host_port(value: str) -> tuple[str, Optional[int]]:
    """Split ``host[:port]``; a port that is not a valid UDP port is an error."""

    if ":" not in value:
        return value, None
    host, port = value.rsplit(":", 1)
    if not port.isdigit() or not 0 < int(port) < 65536:
        raise ValueError(f"Invalid port {port!r} in drone address {value!r}")
    return host, int(port)


def load_config(
    path: Optional[Path] = None, *, environ: Optional[Mapping[str, str]] = None
) -> TelloConfig:
    """Load configuration from disk, applying defaults where necessary."""

    config_path = path or constants.DEFAULT_CONFIG_PATH
    env = os.environ if environ is None else environ

    parser = ConfigParser()
    parser.read_dict(
        {
            "drone": {
                "host": constants.DEFAULT_TELLO_HOST,
                "command_port": str(constants.DEFAULT_COMMAND_PORT),
                "local_command_port": str(constants.DEFAULT_LOCAL_COMMAND_PORT),
                "state_port": str(constants.DEFAULT_STATE_PORT),
                "bind_host": "",
                "video_enabled": "false",
                "video_port": str(constants.DEFAULT_VIDEO_PORT),
                "query_info_on_connect": "true",
            },
            "commands": {
                "max_attempts": "20",
                "delay_seconds": "0.5",
                "receive_timeout_seconds": "0.5",
                "discard_stale_responses": "true",
            },
            "handshake": {
                "max_attempts": "10",
                "interval_seconds": "1.0",
            },
            "telemetry": {
                "required_fields": ",".join(DEFAULT_REQUIRED_FIELDS),
                "stale_after_seconds": "2.0",
            },
            "logging": {
                "level": "INFO",
                "path": "",
                "log_network": "false",
            },
            "health": {
                "enabled": "false",
                "host": "127.0.0.1",
                "port": "0",
            },
        }
    )

    if config_path.exists():
        parser.read(config_path)

    host_value = parser.get("drone", "host")
    command_port_value = parser.getint(
        "drone", "command_port", fallback=constants.DEFAULT_COMMAND_PORT
    )

    host_value, address_port = split_host_port(host_value)
    if address_port is not None:
        command_port_value = address_port
        parser.set("drone", "host", host_value)
        parser.set("drone", "command_port", str(address_port))

    drone = DroneConfig(
        host=host_value,
        command_port=command_port_value,
        local_command_port=max(
            0,
            parser.getint(
                "drone",
                "local_command_port",
                fallback=constants.DEFAULT_LOCAL_COMMAND_PORT,
            ),
        ),
        state_port=max(
            0,
            parser.getint(
                "drone", "state_port", fallback=constants.DEFAULT_STATE_PORT
            ),
        ),
        bind_host=parser.get("drone", "bind_host", fallback=""),
        video_enabled=parser.getboolean("drone", "video_enabled", fallback=False),
        video_port=parser.getint(
            "drone", "video_port", fallback=constants.DEFAULT_VIDEO_PORT
        ),
        query_info_on_connect=parser.getboolean(
            "drone", "query_info_on_connect", fallback=True
        ),
    )

    command_defaults = CommandConfig()
    commands = CommandConfig(
        max_attempts=max(
            1,
            parser.getint(
                "commands", "max_attempts", fallback=command_defaults.max_attempts
            ),
        ),
        delay_seconds=max(
            0.0,
            parser.getfloat(
                "commands", "delay_seconds", fallback=command_defaults.delay_seconds
            ),
        ),
        receive_timeout_seconds=max(
            0.01,
            parser.getfloat(
                "commands",
                "receive_timeout_seconds",
                fallback=command_defaults.receive_timeout_seconds,
            ),
        ),
        discard_stale_responses=parser.getboolean(
            "commands", "discard_stale_responses", fallback=True
        ),
    )

    handshake_defaults = HandshakeConfig()
    handshake = HandshakeConfig(
        max_attempts=max(
            1,
            parser.getint(
                "handshake",
                "max_attempts",
                fallback=handshake_defaults.max_attempts,
            ),
        ),
        interval_seconds=max(
            0.0,
            parser.getfloat(
                "handshake",
                "interval_seconds",
                fallback=handshake_defaults.interval_seconds,
            ),
        ),
    )

    telemetry = TelemetryConfig(
        required_fields=_parse_list(
            parser.get("telemetry", "required_fields", fallback=""),
            default=DEFAULT_REQUIRED_FIELDS,
        ),
        stale_after_seconds=max(
            0.0, parser.getfloat("telemetry", "stale_after_seconds", fallback=2.0)
        ),
    )

    # The environment wins over the file so a one-off debug run needs no edit.
    level_value = env.get(constants.LOG_LEVEL_ENV_VAR) or parser.get(
        "logging", "level", fallback="INFO"
    )
    log_path_value = parser.get("logging", "path", fallback="").strip()
    logging_config = LoggingConfig(
        level=level_value.upper(),
        path=Path(log_path_value).expanduser() if log_path_value else None,
        log_network=parser.getboolean("logging", "log_network", fallback=False),
    )

    health = HealthConfig(
        enabled=parser.getboolean("health", "enabled", fallback=False),
        host=parser.get("health", "host", fallback="127.0.0.1"),
        port=parser.getint("health", "port", fallback=0),
    )

    return TelloConfig(
        drone=drone,
        commands=commands,
        handshake=handshake,
        telemetry=telemetry,
        logging=logging_config,
        health=health,
        raw=parser,
        path=config_path,
    )


def save_config(config: TelloConfig) -> None:
    """Persist the current configuration to disk."""

    config_path = config.path
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as stream:
        config.raw.write(stream)
