"""Concrete host adapters for the capability interfaces used by the core."""
