"""devagent: session event-stream backend for visualizing coding-agent runs."""

__version__ = "0.1.0"
