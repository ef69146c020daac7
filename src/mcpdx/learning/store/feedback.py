"""Feedback ledger mixin for SQLitePatternStore.

Feedback is append-only. Once a pattern has at least ``MIN_RECENT_FEEDBACK``
entries inside the rolling window, each new entry re-blends its confidence::

    confidence = success_rate * SUCCESS_WEIGHT + (avg_rating / MAX_RATING) * RATING_WEIGHT

``success_rate`` comes from the pattern's outcome counters (0 when it has
none) and ``avg_rating`` from the recent entries only.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from typing import Any

import aiosqlite

from mcpdx.core.logging import DxLogger
from mcpdx.learning.anonymizer import hash_identifier
from mcpdx.learning.errors import PatternNotFoundError
from mcpdx.learning.store.base import _json_loads
from mcpdx.learning.store.models import MAX_RATING, FeedbackEntry, StoredFeedback
from mcpdx.utils.time import MS_PER_DAY, utc_now_ms

MIN_RECENT_FEEDBACK = 3
FEEDBACK_WINDOW_DAYS = 30
SUCCESS_WEIGHT = 0.7
RATING_WEIGHT = 0.3


def blended_confidence(success_count: int, failure_count: int, avg_rating: float) -> float:
    """Blend outcome success rate with the average user rating, within [0, 1].

    Ledgers written before ratings were validated may average above
    ``MAX_RATING``.
    """
    total = success_count + failure_count
    success_rate = success_count / total if total else 0.0
    blended = success_rate * SUCCESS_WEIGHT + (avg_rating / MAX_RATING) * RATING_WEIGHT
    return min(max(blended, 0.0), 1.0)


class FeedbackMixin:
    """Mixin providing the feedback ledger.

    Requires the composed class to provide ``_connect`` and
    ``_ensure_initialized``.
    """

    _logger: DxLogger
    _connect: Callable[[], AbstractAsyncContextManager[aiosqlite.Connection]]
    _ensure_initialized: Callable[[], Any]

    async def add_feedback(self, pattern_id: str, feedback: FeedbackEntry) -> None:
        """Record feedback for a pattern and re-blend its confidence.

        The user id is stored only as a hash. Comments are stored as given.

        Raises:
            PatternNotFoundError: If the pattern does not exist. Nothing is
                written in that case.
        """
        await self._ensure_initialized()
        now = utc_now_ms()
        window_start = now - FEEDBACK_WINDOW_DAYS * MS_PER_DAY

        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT success_count, failure_count FROM patterns WHERE id = ?",
                (pattern_id,),
            )
            counters = await cursor.fetchone()
            if counters is None:
                raise PatternNotFoundError(pattern_id)

            await db.execute(
                """
                INSERT INTO feedback (
                    pattern_id, timestamp, user_id_hash, rating,
                    successful, comments, context
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    pattern_id,
                    feedback.timestamp,
                    hash_identifier(feedback.user_id) if feedback.user_id else None,
                    feedback.rating,
                    1 if feedback.successful else 0,
                    feedback.comments,
                    json.dumps(feedback.context),
                ),
            )

            cursor = await db.execute(
                """
                SELECT COUNT(*) AS recent, AVG(rating) AS avg_rating
                FROM feedback
                WHERE pattern_id = ? AND timestamp > ?
                """,
                (pattern_id, window_start),
            )
            recent = await cursor.fetchone()

            new_confidence: float | None = None
            if recent is not None and recent["recent"] >= MIN_RECENT_FEEDBACK:
                new_confidence = blended_confidence(
                    counters["success_count"] or 0,
                    counters["failure_count"] or 0,
                    recent["avg_rating"],
                )
                await db.execute(
                    "UPDATE patterns SET confidence = ?, updated_at = ? WHERE id = ?",
                    (new_confidence, now, pattern_id),
                )

        self._logger.debug(
            "pattern_feedback_recorded",
            pattern_id=pattern_id,
            rating=feedback.rating,
            confidence=new_confidence,
        )

    async def get_feedback(self, pattern_id: str) -> list[StoredFeedback]:
        """Return every feedback entry for a pattern, newest first."""
        await self._ensure_initialized()
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT * FROM feedback WHERE pattern_id = ? ORDER BY timestamp DESC, id DESC",
                (pattern_id,),
            )
            rows = await cursor.fetchall()

        return [
            StoredFeedback(
                id=row["id"],
                pattern_id=row["pattern_id"],
                timestamp=row["timestamp"],
                user_id_hash=row["user_id_hash"],
                rating=row["rating"],
                successful=bool(row["successful"]),
                comments=row["comments"],
                context=_json_loads(row["context"], {}),
            )
            for row in rows
        ]
