"""tool-proxy: tool registry and execution proxy for AI assistants."""

__version__ = "0.1.0"
