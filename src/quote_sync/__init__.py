"""Local-first quote synchronization engine."""

__version__ = "0.3.0"
