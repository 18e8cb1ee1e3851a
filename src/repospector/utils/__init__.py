"""Utility modules for repospector."""

from .logging import setup_logging
from .timestamps import age_in_days, parse_timestamp

__all__ = ["age_in_days", "parse_timestamp", "setup_logging"]
