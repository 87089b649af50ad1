"""devagent: command-line entry point.

Runs the HTTP + WebSocket server, or lists persisted sessions.

Usage:
    devagent [--host HOST] [--port PORT] [--config PATH]
    devagent --list
"""
from __future__ import annotations

import asyncio
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from devagent.adapters.base import AdapterRegistry
from devagent.adapters.subprocess_adapter import SubprocessAdapterFactory
from devagent.engine.engine import SessionEngine
from devagent.engine.yaml_config import DevAgentConfig, discover_config_path, load_config
from devagent.shared.services.event_store import EventStore

logger = logging.getLogger(__name__)

LOG_FILENAME = "devagent-server.log"


def configure_logging(log_level: str, log_dir: Path) -> Path:
    """Root logger to a rotating file plus stderr."""
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILENAME

    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )
    file_handler = RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    root.addHandler(stream_handler)
    return log_file


def build_adapters(config: DevAgentConfig) -> AdapterRegistry:
    adapters = AdapterRegistry()
    for agent in config.agents.values():
        adapters.register(SubprocessAdapterFactory(
            agent.name,
            agent.command,
            env=agent.env,
            stop_timeout=config.engine.stop_timeout_seconds,
        ))
    return adapters


def build_engine(config: DevAgentConfig) -> SessionEngine:
    store = EventStore(config.engine.resolved_db_path())
    return SessionEngine(store, build_adapters(config), config.engine)


def _print_sessions(store: EventStore) -> None:
    sessions = store.list_sessions()
    if not sessions:
        print("No saved sessions.")
        return
    for s in sessions:
        print(
            f"  {s.id}  {s.name:<24} {s.status.value:<8} "
            f"events={s.event_count} tokens={s.tokens_used}/{s.tokens_limit}"
        )


def main(argv: list[str] | None = None) -> None:
    import argparse

    parser = argparse.ArgumentParser(
        prog="devagent",
        description="devagent: event-stream backend for coding-agent session viewers",
    )
    parser.add_argument(
        "--host", default=None,
        help="Interface to bind (default 127.0.0.1)",
    )
    parser.add_argument(
        "--port", type=int, default=None,
        help="Port to listen on (default 3001)",
    )
    parser.add_argument(
        "--config", metavar="PATH",
        help="YAML config file (default ./devagent.yaml when present)",
    )
    parser.add_argument(
        "--list", action="store_true",
        help="List persisted sessions and exit",
    )
    args = parser.parse_args(argv)

    config_path = discover_config_path(args.config)
    config = load_config(config_path)

    if args.list:
        _print_sessions(EventStore(config.engine.resolved_db_path()))
        sys.exit(0)

    host = args.host or config.server.host
    port = args.port if args.port is not None else config.server.port

    log_file = configure_logging(
        config.engine.log_level, config.engine.resolved_data_dir() / "logs",
    )
    logger.info(
        "Starting devagent server host=%s port=%s config=%s db=%s log=%s",
        host, port, config_path or "<none>",
        config.engine.resolved_db_path(), log_file,
    )

    from devagent.server.server import DevAgentServer

    server = DevAgentServer(build_engine(config), host=host, port=port)
    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        pass
    sys.exit(0)


if __name__ == "__main__":
    main()
