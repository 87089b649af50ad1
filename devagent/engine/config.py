"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via DEVAGENT_* env vars.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .models import DEFAULT_TOKENS_LIMIT

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = "~/.devagent"
DB_FILENAME = "devagent.db"


@dataclass
class EngineConfig:
    """Session engine configuration."""

    # Storage. db_path defaults to <data_dir>/devagent.db
    data_dir: str = DEFAULT_DATA_DIR
    db_path: str | None = None

    # Per-session in-memory state
    cache_capacity: int = 100
    recent_tools_limit: int = 50
    tokens_limit: int = DEFAULT_TOKENS_LIMIT

    # Sessions with an attached agent process
    max_running_sessions: int = 10
    # Pending payloads per viewer before it is disconnected
    subscriber_queue_size: int = 1000
    # Grace period between terminate and kill when stopping an agent
    stop_timeout_seconds: float = 5.0

    # Logging
    log_level: str = "INFO"

    def resolved_data_dir(self) -> Path:
        return Path(self.data_dir).expanduser()

    def resolved_db_path(self) -> Path:
        if self.db_path:
            return Path(self.db_path).expanduser()
        return self.resolved_data_dir() / DB_FILENAME

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load configuration from DEVAGENT_* environment variables."""
        overrides = {
            k: v for k, v in os.environ.items() if k.startswith("DEVAGENT_")
        }
        if overrides:
            logger.info(
                "EngineConfig.from_env: DEVAGENT_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(overrides.items())),
            )
        else:
            logger.debug("EngineConfig.from_env: no DEVAGENT_* env vars set, using defaults")

        config = cls(
            data_dir=os.getenv("DEVAGENT_DATA_DIR", cls.data_dir),
            db_path=os.getenv("DEVAGENT_DB_PATH") or None,
            cache_capacity=int(os.getenv(
                "DEVAGENT_CACHE_CAPACITY", str(cls.cache_capacity)
            )),
            recent_tools_limit=int(os.getenv(
                "DEVAGENT_RECENT_TOOLS_LIMIT", str(cls.recent_tools_limit)
            )),
            tokens_limit=int(os.getenv(
                "DEVAGENT_TOKENS_LIMIT", str(cls.tokens_limit)
            )),
            max_running_sessions=int(os.getenv(
                "DEVAGENT_MAX_RUNNING_SESSIONS", str(cls.max_running_sessions)
            )),
            subscriber_queue_size=int(os.getenv(
                "DEVAGENT_SUBSCRIBER_QUEUE_SIZE", str(cls.subscriber_queue_size)
            )),
            stop_timeout_seconds=float(os.getenv(
                "DEVAGENT_STOP_TIMEOUT", str(cls.stop_timeout_seconds)
            )),
            log_level=os.getenv("DEVAGENT_LOG_LEVEL", cls.log_level),
        )
        logger.info(
            "EngineConfig.from_env: db=%s cache=%d max_running=%d log_level=%s",
            config.resolved_db_path(), config.cache_capacity,
            config.max_running_sessions, config.log_level,
        )
        return config


@dataclass
class ServerConfig:
    """HTTP/WebSocket listener settings."""
    host: str = "127.0.0.1"
    port: int = 3001

    @classmethod
    def from_env(cls) -> ServerConfig:
        return cls(
            host=os.getenv("DEVAGENT_HOST", cls.host),
            port=int(os.getenv("DEVAGENT_PORT", str(cls.port))),
        )
