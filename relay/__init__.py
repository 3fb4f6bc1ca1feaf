"""Queue-to-store relay service."""

__version__ = "1.0.0"
