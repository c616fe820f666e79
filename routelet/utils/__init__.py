"""
Routelet Utils Package
======================

Environment access and logging.
"""

from __future__ import annotations

from routelet.utils.env import Env
from routelet.utils.logger import (
    Logger,
    LogLevel,
    configure_logging,
    get_logger,
    parse_level,
)

__all__ = [
    "Env",
    "Logger",
    "LogLevel",
    "configure_logging",
    "get_logger",
    "parse_level",
]
