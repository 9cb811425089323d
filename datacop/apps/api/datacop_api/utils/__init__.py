"""Utility functions and helpers."""

from datacop_api.utils.clock import utcnow
from datacop_api.utils.logging import JSONFormatter, configure_json_logging

__all__ = [
    "JSONFormatter",
    "configure_json_logging",
    "utcnow",
]
