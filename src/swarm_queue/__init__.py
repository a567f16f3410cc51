"""File-backed work queue for CLI agent worker swarms."""

__version__ = "0.1.0"
