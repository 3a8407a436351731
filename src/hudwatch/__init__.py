"""Client-side supervision and session-state reconciliation for the hudwatch agent."""

__version__ = "0.3.0"

__all__ = ["__version__"]
