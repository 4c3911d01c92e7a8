"""ACP session bridge: exposes a coding-assistant controller over the Agent Client Protocol."""

__version__ = "0.1.0"
