"""YAML configuration loader.

Loads a single YAML file layered on top of the DEVAGENT_* env vars.
When no YAML is provided, env vars and built-in defaults apply.

Example YAML:
    engine:
      data_dir: ~/.devagent
      cache_capacity: 100
      max_running_sessions: 4

    server:
      host: 127.0.0.1
      port: 3001

    agents:
      claude-code:
        command: [claude, --output-format, stream-json, --verbose]
      replay-file:
        command: "python scripts/emit_jsonl.py"
        env:
          PYTHONUNBUFFERED: "1"

Agent commands must write events in the normalized JSONL form, or plain
text. Native formats such as Claude's ``stream-json`` records are not
translated: put a converter in front of the CLI and configure that as
the command. The adapter logs a warning when an agent writes JSON but
no events.
"""
from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .config import EngineConfig, ServerConfig
from .models import DEFAULT_AGENT_TYPE

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME = "devagent.yaml"


@dataclass
class AgentConfig:
    """How to launch one agent type as a subprocess."""
    name: str
    command: list[str]
    env: dict[str, str] = field(default_factory=dict)


def default_agents() -> dict[str, AgentConfig]:
    return {
        DEFAULT_AGENT_TYPE: AgentConfig(
            name=DEFAULT_AGENT_TYPE,
            command=["claude", "--output-format", "stream-json", "--verbose"],
        ),
    }


@dataclass
class DevAgentConfig:
    """Complete parsed configuration."""
    engine: EngineConfig
    server: ServerConfig
    agents: dict[str, AgentConfig]


def _parse_command(name: str, raw: Any) -> list[str]:
    if isinstance(raw, str):
        command = shlex.split(raw)
    elif isinstance(raw, list):
        command = [str(part) for part in raw]
    else:
        raise ValueError(f"agents.{name}.command must be a list or string")
    if not command:
        raise ValueError(f"agents.{name}.command is empty")
    return command


def _apply_section(target: Any, section: dict[str, Any], label: str) -> None:
    """Overlay known keys of ``section`` onto a config dataclass, coercing types."""
    known = {f.name: f for f in fields(target)}
    for key, value in section.items():
        if key not in known:
            logger.warning("Unknown %s config key ignored key=%s", label, key)
            continue
        current = getattr(target, key)
        if value is None or isinstance(current, str) or current is None:
            setattr(target, key, value if value is None else str(value))
        elif isinstance(current, bool):
            setattr(target, key, bool(value))
        elif isinstance(current, int):
            setattr(target, key, int(value))
        elif isinstance(current, float):
            setattr(target, key, float(value))
        else:
            setattr(target, key, value)


def load_yaml_config(path: str | Path) -> DevAgentConfig:
    """Load and parse a YAML config file.

    Precedence (highest wins): YAML sections, DEVAGENT_* env vars,
    built-in defaults. Agents listed under ``agents:`` are merged over
    the built-in ``claude-code`` agent.
    """
    path = Path(path)
    logger.info(
        "load_yaml_config: loading config from %s (exists=%s)",
        path, path.exists(),
    )
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error(
            "load_yaml_config: config file not found at %s (absolute path: %s)",
            path, path.absolute(),
        )
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise

    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top level must be a mapping")

    top_sections = sorted(raw.keys())
    logger.info(
        "Parsed YAML config %s sections=%s",
        path.name, ",".join(top_sections) if top_sections else "(empty)",
    )

    # ── Engine / server ────────────────────────────────────────
    engine = EngineConfig.from_env()
    _apply_section(engine, raw.get("engine") or {}, "engine")
    server = ServerConfig.from_env()
    _apply_section(server, raw.get("server") or {}, "server")

    # ── Agents ─────────────────────────────────────────────────
    agents = default_agents()
    for name, cfg in (raw.get("agents") or {}).items():
        cfg = cfg or {}
        if not isinstance(cfg, dict):
            raise ValueError(f"agents.{name} must be a mapping")
        env = {str(k): str(v) for k, v in (cfg.get("env") or {}).items()}
        agents[name] = AgentConfig(
            name=name,
            command=_parse_command(name, cfg.get("command")),
            env=env,
        )
    logger.info("Configured agents: %s", ", ".join(sorted(agents)))

    return DevAgentConfig(engine=engine, server=server, agents=agents)


def discover_config_path(explicit: str | None = None) -> Path | None:
    """``--config`` wins; otherwise ``./devagent.yaml`` when it exists."""
    if explicit:
        return Path(explicit)
    candidate = Path.cwd() / DEFAULT_CONFIG_FILENAME
    if candidate.is_file():
        logger.info("Auto-discovered config: %s", candidate)
        return candidate
    return None


def load_config(path: str | Path | None = None) -> DevAgentConfig:
    """YAML config when ``path`` is given, else env vars and defaults."""
    if path is not None:
        return load_yaml_config(path)
    return DevAgentConfig(
        engine=EngineConfig.from_env(),
        server=ServerConfig.from_env(),
        agents=default_agents(),
    )
