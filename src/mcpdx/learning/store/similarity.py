"""Signature similarity matching for SQLitePatternStore.

Similarity is Jaccard over lowercase whitespace-separated tokens. Matching is
a full scan of the corpus, which is fine at the sizes one user accumulates.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from mcpdx.core.config import PatternStoreConfig
from mcpdx.core.logging import DxLogger
from mcpdx.learning.anonymizer import anonymize_text
from mcpdx.learning.errors import InvalidQueryError
from mcpdx.learning.store.models import ResolutionPattern


def tokenize(text: str) -> set[str]:
    return set(text.lower().split())


def jaccard_similarity(a: str, b: str) -> float:
    """Return |A ∩ B| / |A ∪ B| over the token sets of ``a`` and ``b``.

    Two texts with no tokens at all have similarity 0.
    """
    tokens_a, tokens_b = tokenize(a), tokenize(b)
    union = tokens_a | tokens_b
    if not union:
        return 0.0
    return len(tokens_a & tokens_b) / len(union)


class SimilarityMixin:
    """Mixin providing ``find_similar``.

    Requires the composed class to provide ``load_all`` and ``config``.
    """

    _logger: DxLogger
    config: PatternStoreConfig
    load_all: Callable[[], Awaitable[list[ResolutionPattern]]]

    async def find_similar(
        self, signature: str, threshold: float | None = None
    ) -> list[ResolutionPattern]:
        """Return patterns whose signature resembles ``signature``, closest first.

        The query is anonymized first so it compares like-for-like with the
        stored (anonymized) signatures.

        Args:
            signature: Raw problem signature.
            threshold: Minimum similarity in [0, 1]. Defaults to
                ``config.similarity_threshold``.

        Raises:
            InvalidQueryError: If ``threshold`` is outside [0, 1].
        """
        if threshold is None:
            threshold = self.config.similarity_threshold
        if not 0.0 <= threshold <= 1.0:
            raise InvalidQueryError(f"threshold must be within [0, 1], got {threshold}")

        query = anonymize_text(signature)
        scored: list[tuple[float, ResolutionPattern]] = []
        for pattern in await self.load_all():
            score = jaccard_similarity(query, pattern.problem_signature)
            if score >= threshold:
                scored.append((score, pattern))

        scored.sort(key=lambda item: item[0], reverse=True)
        self._logger.debug(
            "similar_patterns_found",
            matches=len(scored),
            threshold=threshold,
        )
        return [pattern for _, pattern in scored]
