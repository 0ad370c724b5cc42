"""Utility modules."""

from evscout.utils.logging import setup_logging, RefreshMetricsLogger

__all__ = [
    "setup_logging",
    "RefreshMetricsLogger",
]
