"""Multi-provider payment orchestration service."""

__version__ = "1.0.0"
