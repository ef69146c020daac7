"""Time utilities for mcpdx.

Persisted timestamps are integer milliseconds since the Unix epoch so that
rows written by older pattern stores stay comparable.
"""

from datetime import UTC, datetime

MS_PER_DAY = 24 * 60 * 60 * 1000


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


def utc_now_ms() -> int:
    """Return current UTC time as epoch milliseconds."""
    return int(utc_now().timestamp() * 1000)

