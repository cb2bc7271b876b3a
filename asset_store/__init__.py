"""Content-addressed asset store."""

__version__ = "0.1.0"
