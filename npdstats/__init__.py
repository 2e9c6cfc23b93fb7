"""Node system statistics collectors, their configuration and in-memory metrics."""

__version__ = "0.1.0"