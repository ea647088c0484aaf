"""Chat logs, model-list sorting and key-driven interface state for a system-monitoring terminal UI."""

__version__ = "1.0.0"