"""Corpus statistics mixin for SQLitePatternStore."""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from typing import Any

import aiosqlite

from mcpdx.core.logging import DxLogger
from mcpdx.learning.store.models import PatternStatistics, ResolutionPattern

RECENT_PATTERN_LIMIT = 10


class StatisticsMixin:
    """Mixin providing ``get_statistics``.

    Requires the composed class to provide ``_connect``,
    ``_ensure_initialized`` and ``_row_to_pattern``.
    """

    _logger: DxLogger
    _connect: Callable[[], AbstractAsyncContextManager[aiosqlite.Connection]]
    _ensure_initialized: Callable[[], Any]
    _row_to_pattern: Callable[[aiosqlite.Row], ResolutionPattern]

    async def get_statistics(self) -> PatternStatistics:
        """Summarize the corpus.

        Returns zeroed statistics when no patterns are stored.
        """
        await self._ensure_initialized()
        async with self._connect() as db:
            cursor = await db.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    SUM(success_count) AS successes,
                    SUM(failure_count) AS failures,
                    AVG(confidence) AS avg_confidence
                FROM patterns
                """
            )
            totals = await cursor.fetchone()
            if totals is None or not totals["total"]:
                return PatternStatistics()

            cursor = await db.execute(
                "SELECT * FROM patterns ORDER BY success_count DESC, confidence DESC LIMIT 1"
            )
            best = await cursor.fetchone()

            cursor = await db.execute(
                "SELECT * FROM patterns ORDER BY last_used DESC LIMIT ?",
                (RECENT_PATTERN_LIMIT,),
            )
            recent = await cursor.fetchall()

            cursor = await db.execute(
                "SELECT problem_type, COUNT(*) AS n FROM patterns GROUP BY problem_type"
            )
            by_type = await cursor.fetchall()

        return PatternStatistics(
            total_patterns=totals["total"],
            total_successes=totals["successes"] or 0,
            total_failures=totals["failures"] or 0,
            average_confidence=totals["avg_confidence"] or 0.0,
            most_successful_pattern=self._row_to_pattern(best) if best else None,
            recently_used_patterns=[self._row_to_pattern(row) for row in recent],
            patterns_by_type={row["problem_type"]: row["n"] for row in by_type},
        )
