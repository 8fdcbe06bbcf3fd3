"""Agent Client Protocol bridge for the Autohand coding agent CLI."""

__version__ = "0.1.0"
