"""Exception hierarchy for the resolution pattern store.

All store-specific exceptions inherit from PatternStoreError so callers can
catch broadly or narrowly. SQLite errors are not wrapped: they propagate from
aiosqlite unchanged.
"""

from __future__ import annotations


class PatternStoreError(Exception):
    """Base exception for all pattern store errors."""


class CipherError(PatternStoreError):
    """Base class for failures while decrypting a stored payload."""


class EnvelopeFormatError(CipherError):
    """The ciphertext envelope is not ``nonce:tag:ciphertext`` hex.

    Usually means the payload was never encrypted (legacy row) or was truncated.
    """


class AuthenticationError(CipherError):
    """GCM tag verification failed.

    The ciphertext was tampered with or corrupted, or it was written with a
    different key.
    """


class KeyConfigurationError(PatternStoreError):
    """The encryption key is malformed, or missing where one is required."""


class PatternNotFoundError(PatternStoreError, LookupError):
    """An operation targeted a pattern id that does not exist."""

    def __init__(self, pattern_id: str) -> None:
        super().__init__(f"Pattern not found: {pattern_id}")
        self.pattern_id = pattern_id


class InvalidQueryError(PatternStoreError, ValueError):
    """Retrieval options or query arguments are invalid (e.g. unknown sort key)."""


class InvalidFeedbackError(PatternStoreError, ValueError):
    """A feedback entry failed validation (e.g. rating out of range)."""


class InvalidPatternError(PatternStoreError, ValueError):
    """A pattern carries impossible values (negative counters, confidence outside [0, 1])."""


__all__ = [
    "AuthenticationError",
    "CipherError",
    "EnvelopeFormatError",
    "InvalidFeedbackError",
    "InvalidPatternError",
    "InvalidQueryError",
    "KeyConfigurationError",
    "PatternNotFoundError",
    "PatternStoreError",
]
