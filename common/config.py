"""
Runtime settings, read from the environment (and a .env file if present).

    RELAY_HOST              address to bind / dial (default 127.0.0.1)
    RELAY_PORT              TCP port (default 12345)
    RELAY_LOG_LEVEL         logging level name (default INFO)
    RELAY_CONNECT_TIMEOUT   seconds allowed for a client dial (default 5)
    RELAY_STOP_TIMEOUT      seconds stop() waits for handler threads (default 2)
"""

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 12345
DEFAULT_CONNECT_TIMEOUT = 5.0
DEFAULT_STOP_TIMEOUT = 2.0

LOG_FORMAT = "[%(asctime)s] %(levelname)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class Settings:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_level: str = "INFO"
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    stop_timeout: float = DEFAULT_STOP_TIMEOUT


def load_settings(dotenv_path=None) -> Settings:
    ''' Build Settings from the process environment after loading .env (existing variables win) '''
    load_dotenv(dotenv_path)
    try:
        return Settings(
            host=os.getenv("RELAY_HOST", DEFAULT_HOST),
            port=int(os.getenv("RELAY_PORT", str(DEFAULT_PORT))),
            log_level=os.getenv("RELAY_LOG_LEVEL", "INFO").upper(),
            connect_timeout=float(os.getenv("RELAY_CONNECT_TIMEOUT", str(DEFAULT_CONNECT_TIMEOUT))),
            stop_timeout=float(os.getenv("RELAY_STOP_TIMEOUT", str(DEFAULT_STOP_TIMEOUT))),
        )
    except ValueError as e:
        raise ValueError(f"invalid relay setting: {e}") from e


def configure_logging(level="INFO") -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
