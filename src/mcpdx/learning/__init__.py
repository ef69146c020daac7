"""Learning module: anonymization, encryption and the resolution pattern store."""

from mcpdx.learning.anonymizer import anonymize_text, anonymize_value, hash_identifier
from mcpdx.learning.cipher import EphemeralKey, PatternCipher
from mcpdx.learning.errors import (
    AuthenticationError,
    CipherError,
    EnvelopeFormatError,
    InvalidFeedbackError,
    InvalidPatternError,
    InvalidQueryError,
    KeyConfigurationError,
    PatternNotFoundError,
    PatternStoreError,
)
from mcpdx.learning.store import (
    CommonIssuePattern,
    FeedbackEntry,
    PatternStatistics,
    PatternStore,
    ResolutionPattern,
    RetrievalOptions,
    SortKey,
    SQLitePatternStore,
    get_pattern_store,
)

__all__ = [
    # Anonymization
    "anonymize_text",
    "anonymize_value",
    "hash_identifier",
    # Encryption
    "EphemeralKey",
    "PatternCipher",
    # Store
    "PatternStore",
    "SQLitePatternStore",
    "get_pattern_store",
    "CommonIssuePattern",
    "FeedbackEntry",
    "PatternStatistics",
    "ResolutionPattern",
    "RetrievalOptions",
    "SortKey",
    # Errors
    "PatternStoreError",
    "CipherError",
    "EnvelopeFormatError",
    "AuthenticationError",
    "KeyConfigurationError",
    "PatternNotFoundError",
    "InvalidQueryError",
    "InvalidFeedbackError",
    "InvalidPatternError",
]
