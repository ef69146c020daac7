"""Resolution pattern store with modular mixins.

This package provides the SQLitePatternStore class, composed from mixins that
each handle one concern:
- PatternMixin: save/load/delete, outcome counters, ranked retrieval, pruning
- FeedbackMixin: feedback ledger and confidence re-blending
- CommonIssueMixin: recurring-signature aggregation
- SimilarityMixin: Jaccard signature matching
- StatisticsMixin: corpus summary

The base class (PatternStoreBase) provides:
- aiosqlite connection management and lazy schema creation
- Anonymize + encrypt on write, tagged decode with legacy fallback on read

Usage:
    from mcpdx.learning.store import SQLitePatternStore

    store = SQLitePatternStore()  # ~/.mcpdx/patterns.db, key from environment
    store = SQLitePatternStore(Path("/tmp/patterns.db"), encryption_key="ab" * 32)
"""

import threading

from mcpdx.core.config import PatternStoreConfig
from mcpdx.learning.store.base import PatternStoreBase, WhereBuilder
from mcpdx.learning.store.common_issues import CommonIssueMixin
from mcpdx.learning.store.feedback import FeedbackMixin
from mcpdx.learning.store.interface import PatternStore
from mcpdx.learning.store.models import (
    CommonIssuePattern,
    Decoded,
    DecodeResult,
    FeedbackEntry,
    LegacyPlaintext,
    PatternStatistics,
    ResolutionPattern,
    RetrievalOptions,
    SortKey,
    StoredFeedback,
    Unrecoverable,
    derive_pattern_id,
)
from mcpdx.learning.store.patterns import PatternMixin
from mcpdx.learning.store.similarity import SimilarityMixin, jaccard_similarity
from mcpdx.learning.store.statistics import StatisticsMixin


class SQLitePatternStore(
    PatternMixin,
    FeedbackMixin,
    CommonIssueMixin,
    SimilarityMixin,
    StatisticsMixin,
    PatternStoreBase,
    PatternStore,
):
    """SQLite-backed pattern store combining all mixins.

    Every signature and solution is anonymized before it is written, and
    solution payloads are encrypted with AES-256-GCM. Rows that cannot be
    decrypted (wrong key, pre-encryption data, corruption) are still returned,
    with their stored counters and a placeholder solution.

    Example:
        >>> store = SQLitePatternStore(tmp_path / "patterns.db", encryption_key=key)
        >>> await store.save(pattern)
        >>> await store.update_success(pattern.id, resolution_time_ms=1200)
        >>> best = await store.retrieve_by_rank(RetrievalOptions(limit=5))
    """

    pass


_pattern_store: SQLitePatternStore | None = None
_pattern_store_lock = threading.Lock()


def get_pattern_store(config: PatternStoreConfig | None = None) -> SQLitePatternStore:
    """Get or create the process-wide pattern store.

    A new store is built when none exists yet or ``config`` points at a
    different database.

    Args:
        config: Store settings. Defaults to ``PatternStoreConfig.from_env()``
            on first call.
    """
    global _pattern_store

    with _pattern_store_lock:
        if _pattern_store is None or (
            config is not None and _pattern_store.db_path != config.db_path
        ):
            _pattern_store = SQLitePatternStore(config=config or PatternStoreConfig.from_env())

    return _pattern_store


__all__ = [
    # Main class
    "SQLitePatternStore",
    "PatternStore",
    "PatternStoreBase",
    # Singleton accessor
    "get_pattern_store",
    # Mixins
    "PatternMixin",
    "FeedbackMixin",
    "CommonIssueMixin",
    "SimilarityMixin",
    "StatisticsMixin",
    # Models
    "CommonIssuePattern",
    "FeedbackEntry",
    "PatternStatistics",
    "ResolutionPattern",
    "RetrievalOptions",
    "SortKey",
    "StoredFeedback",
    # Decode results
    "Decoded",
    "DecodeResult",
    "LegacyPlaintext",
    "Unrecoverable",
    # Helpers
    "WhereBuilder",
    "derive_pattern_id",
    "jaccard_similarity",
]
