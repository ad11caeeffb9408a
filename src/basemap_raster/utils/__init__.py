"""
Utilities

Configuration loading and logging setup.
"""

from .config import Config, RootBounds
from .logging_config import configure_logging

__all__ = [
    "Config",
    "RootBounds",
    "configure_logging"
]
