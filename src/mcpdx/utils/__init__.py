"""Shared utilities for mcpdx.

Contains cross-cutting utilities used by multiple modules.
"""

from mcpdx.utils.time import MS_PER_DAY, utc_now, utc_now_ms

__all__ = ["MS_PER_DAY", "utc_now", "utc_now_ms"]
