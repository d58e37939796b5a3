"""Constants used across the tello-driver package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "tello-driver"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / APP_NAME / DEFAULT_CONFIG_FILENAME

DEFAULT_LOG_PATH = Path.home() / ".config" / APP_NAME / f"{APP_NAME}.log"
LOG_LEVEL_ENV_VAR = "TELLO_LOG_LEVEL"

# Fixed by the Tello firmware.
DEFAULT_TELLO_HOST = "192.168.10.1"
DEFAULT_COMMAND_PORT = 8889
DEFAULT_STATE_PORT = 8890
DEFAULT_VIDEO_PORT = 11111

DEFAULT_LOCAL_COMMAND_PORT = 9000

HANDSHAKE_COMMAND = "command"

RESPONSE_BUFFER_SIZE = 1024
STATE_BUFFER_SIZE = 2048
VIDEO_BUFFER_SIZE = 2048
