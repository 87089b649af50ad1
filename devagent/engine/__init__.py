"""Session event-stream engine: lifecycle, context folding and fan-out."""
from .models import (
    Session,
    SessionStatus,
    SessionSummary,
    TokenBreakdown,
    TokenInfo,
    ToolStatus,
)
from .config import EngineConfig, ServerConfig
from .errors import (
    AdapterError,
    AdapterNotAvailableError,
    EngineError,
    InvalidSessionStateError,
    SessionLimitError,
    SessionNotFoundError,
)

__all__ = [
    # Core engine (lazy import to avoid circular deps)
    "SessionEngine",
    "SessionRegistry",
    "Subscription",
    "ContextAggregate",
    "RecentEventCache",
    # Models
    "Session",
    "SessionStatus",
    "SessionSummary",
    "TokenBreakdown",
    "TokenInfo",
    "ToolStatus",
    # Config
    "EngineConfig",
    "ServerConfig",
    # YAML config (lazy import)
    "DevAgentConfig",
    "load_yaml_config",
    # Errors
    "AdapterError",
    "AdapterNotAvailableError",
    "EngineError",
    "InvalidSessionStateError",
    "SessionLimitError",
    "SessionNotFoundError",
]


def __getattr__(name: str):
    if name == "SessionEngine":
        from .engine import SessionEngine
        return SessionEngine
    if name == "SessionRegistry":
        from .registry import SessionRegistry
        return SessionRegistry
    if name == "Subscription":
        from .broadcast import Subscription
        return Subscription
    if name == "ContextAggregate":
        from .context import ContextAggregate
        return ContextAggregate
    if name == "RecentEventCache":
        from .ring_buffer import RecentEventCache
        return RecentEventCache
    if name == "DevAgentConfig":
        from .yaml_config import DevAgentConfig
        return DevAgentConfig
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
