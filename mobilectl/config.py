"""Server configuration, user config file and CLI tool locations."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path


logger = logging.getLogger("mobilectl.config")

CONFIG_DIR = Path.home() / ".mobilectl"
USER_CONFIG_FILE = CONFIG_DIR / "config.json"

DEFAULT_SERVER_PORT = 9200
DEFAULT_WDA_HOST = "localhost"
DEFAULT_WDA_PORT = 8100


@dataclass
class ServerConfig:
    """Configuration for the mobilectl HTTP server."""

    host: str = "127.0.0.1"
    port: int = DEFAULT_SERVER_PORT


def read_user_config() -> dict:
    """Read user config from ~/.mobilectl/config.json. Returns {} if missing or invalid."""
    if not USER_CONFIG_FILE.exists():
        return {}
    try:
        return json.loads(USER_CONFIG_FILE.read_text())
    except Exception as e:
        logger.warning("Failed to read config file %s: %s", USER_CONFIG_FILE, e)
        return {}


def get_adb_path() -> str:
    """Return the adb executable, preferring $ANDROID_HOME/platform-tools."""
    android_home = os.environ.get("ANDROID_HOME")
    if android_home:
        return str(Path(android_home) / "platform-tools" / "adb")
    return "adb"


def get_go_ios_path() -> str:
    """Return the go-ios executable ($GO_IOS_PATH, else `ios` on PATH)."""
    return os.environ.get("GO_IOS_PATH") or "ios"


def get_wda_endpoint() -> tuple[str, int]:
    """Return the (host, port) WebDriverAgent is forwarded to."""
    config = read_user_config()
    host = config.get("wda_host") or DEFAULT_WDA_HOST
    try:
        port = int(config.get("wda_port", DEFAULT_WDA_PORT))
    except (TypeError, ValueError):
        logger.warning("Invalid wda_port in %s, using %d", USER_CONFIG_FILE, DEFAULT_WDA_PORT)
        port = DEFAULT_WDA_PORT
    return host, port


def get_recordings_dir() -> Path:
    """Directory where finished screen recordings are written on the host."""
    value = read_user_config().get("recordings_dir")
    path = Path(value).expanduser() if value else Path(tempfile.gettempdir())
    path.mkdir(parents=True, exist_ok=True)
    return path
