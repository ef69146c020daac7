"""Shared test helpers for mcpdx tests."""

from typing import Any

from mcpdx.learning.store import ResolutionPattern

TEST_KEY = "a" * 64
OTHER_KEY = "b" * 64


def make_pattern(
    pattern_id: str = "p-1",
    signature: str = "connection refused on tools/list",
    **overrides: Any,
) -> ResolutionPattern:
    """Build a pattern with a small automated solution."""
    values: dict[str, Any] = {
        "id": pattern_id,
        "problem_type": "connection",
        "problem_signature": signature,
        "solution": {
            "id": f"sol-{pattern_id}",
            "type": "automated",
            "description": "Restart the server with a longer timeout",
            "steps": ["stop server", "raise timeout", "start server"],
        },
    }
    values.update(overrides)
    return ResolutionPattern(**values)
