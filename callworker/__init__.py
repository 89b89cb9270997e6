"""Single-worker call job coordinator."""

__version__ = "1.0.0"
