"""Core configuration and logging."""

from mcpdx.core.config import PatternStoreConfig
from mcpdx.core.logging import configure_logging, get_logger

__all__ = ["PatternStoreConfig", "configure_logging", "get_logger"]
