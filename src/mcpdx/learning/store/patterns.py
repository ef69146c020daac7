"""Pattern CRUD, outcome tracking and ranked retrieval mixin for SQLitePatternStore.

Provides:
- save / load / load_all / delete
- update_success / update_failure: counter, running-average and confidence updates
- retrieve_by_rank: filtered, ordered and capped retrieval
- prune_older_than: age-based eviction

Confidence after an outcome is Laplace-smoothed toward success::

    success:  (successes + 1) / (successes + failures + 1)
    failure:  successes / (successes + failures + 1)

where the counts are the values before the update. Both updates are a single
UPDATE statement so concurrent outcomes on the same pattern never lose a
count.
"""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from typing import Any

import aiosqlite

from mcpdx.core.logging import DxLogger
from mcpdx.learning.errors import InvalidQueryError, PatternNotFoundError
from mcpdx.learning.store.base import WhereBuilder
from mcpdx.learning.store.models import (
    ResolutionPattern,
    RetrievalOptions,
    SortKey,
)
from mcpdx.utils.time import utc_now_ms

# NULL success rates (no outcomes yet) sort after every real rate under DESC.
_ORDER_BY: dict[SortKey, str] = {
    SortKey.CONFIDENCE: "confidence DESC",
    SortKey.SUCCESS_RATE: (
        "CAST(success_count AS REAL) / NULLIF(success_count + failure_count, 0) DESC"
    ),
    SortKey.RECENT_USE: "last_used DESC",
    SortKey.TOTAL_USES: "(success_count + failure_count) DESC",
}


class PatternMixin:
    """Mixin providing pattern persistence and outcome tracking.

    Requires the composed class to provide ``_connect``, ``_ensure_initialized``,
    ``_encode_pattern`` and ``_row_to_pattern`` (see ``PatternStoreBase``).
    """

    _logger: DxLogger
    _connect: Callable[[], AbstractAsyncContextManager[aiosqlite.Connection]]
    _ensure_initialized: Callable[[], Any]
    _encode_pattern: Callable[[ResolutionPattern], tuple[str, str]]
    _row_to_pattern: Callable[[aiosqlite.Row], ResolutionPattern]

    async def save(self, pattern: ResolutionPattern) -> None:
        """Insert or overwrite a pattern.

        An overwrite keeps the original ``created_at`` and the pattern's
        feedback ledger; every other column is replaced and ``updated_at`` is
        bumped.
        """
        await self._ensure_initialized()
        signature, envelope = self._encode_pattern(pattern)
        now = utc_now_ms()

        async with self._connect() as db:
            await db.execute(
                """
                INSERT INTO patterns (
                    id, problem_type, problem_signature, solution_data,
                    success_count, failure_count, average_resolution_time,
                    last_used, confidence, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    problem_type = excluded.problem_type,
                    problem_signature = excluded.problem_signature,
                    solution_data = excluded.solution_data,
                    success_count = excluded.success_count,
                    failure_count = excluded.failure_count,
                    average_resolution_time = excluded.average_resolution_time,
                    last_used = excluded.last_used,
                    confidence = excluded.confidence,
                    updated_at = excluded.updated_at
                """,
                (
                    pattern.id,
                    pattern.problem_type,
                    signature,
                    envelope,
                    pattern.success_count,
                    pattern.failure_count,
                    pattern.average_resolution_time,
                    pattern.last_used or now,
                    pattern.confidence,
                    now,
                    now,
                ),
            )

        self._logger.debug(
            "pattern_saved",
            pattern_id=pattern.id,
            problem_type=pattern.problem_type,
        )

    async def load(self, pattern_id: str) -> ResolutionPattern | None:
        await self._ensure_initialized()
        async with self._connect() as db:
            cursor = await db.execute("SELECT * FROM patterns WHERE id = ?", (pattern_id,))
            row = await cursor.fetchone()
        return self._row_to_pattern(row) if row else None

    async def load_all(self) -> list[ResolutionPattern]:
        await self._ensure_initialized()
        async with self._connect() as db:
            cursor = await db.execute("SELECT * FROM patterns ORDER BY created_at, id")
            rows = await cursor.fetchall()
        return [self._row_to_pattern(row) for row in rows]

    async def delete(self, pattern_id: str) -> bool:
        """Delete a pattern and its feedback.

        Returns:
            True if a pattern was deleted, False if none had that id.
        """
        await self._ensure_initialized()
        async with self._connect() as db:
            cursor = await db.execute("DELETE FROM patterns WHERE id = ?", (pattern_id,))
            deleted = cursor.rowcount > 0
        if deleted:
            self._logger.debug("pattern_deleted", pattern_id=pattern_id)
        return deleted

    async def update_success(self, pattern_id: str, resolution_time_ms: float) -> None:
        """Record a success and fold ``resolution_time_ms`` into the average.

        Args:
            pattern_id: Pattern that resolved the problem.
            resolution_time_ms: How long the resolution took.

        Raises:
            InvalidQueryError: If ``resolution_time_ms`` is negative.
            PatternNotFoundError: If the pattern does not exist.
        """
        if resolution_time_ms < 0:
            raise InvalidQueryError("resolution_time_ms must be >= 0")

        await self._ensure_initialized()
        now = utc_now_ms()
        async with self._connect() as db:
            # Right-hand sides see the pre-update column values
            cursor = await db.execute(
                """
                UPDATE patterns SET
                    average_resolution_time =
                        (average_resolution_time * success_count + ?) / (success_count + 1),
                    confidence =
                        CAST(success_count + 1 AS REAL) / (success_count + failure_count + 1),
                    success_count = success_count + 1,
                    last_used = ?,
                    updated_at = ?
                WHERE id = ?
                """,
                (float(resolution_time_ms), now, now, pattern_id),
            )
            if cursor.rowcount == 0:
                raise PatternNotFoundError(pattern_id)

        self._logger.debug(
            "pattern_success_recorded",
            pattern_id=pattern_id,
            resolution_time_ms=resolution_time_ms,
        )

    async def update_failure(self, pattern_id: str) -> None:
        """Record a failure.

        Raises:
            PatternNotFoundError: If the pattern does not exist.
        """
        await self._ensure_initialized()
        now = utc_now_ms()
        async with self._connect() as db:
            cursor = await db.execute(
                """
                UPDATE patterns SET
                    confidence =
                        CAST(success_count AS REAL) / (success_count + failure_count + 1),
                    failure_count = failure_count + 1,
                    last_used = ?,
                    updated_at = ?
                WHERE id = ?
                """,
                (now, now, pattern_id),
            )
            if cursor.rowcount == 0:
                raise PatternNotFoundError(pattern_id)

        self._logger.debug("pattern_failure_recorded", pattern_id=pattern_id)

    async def retrieve_by_rank(
        self, options: RetrievalOptions | None = None
    ) -> list[ResolutionPattern]:
        """Return patterns passing the filters, best first.

        Args:
            options: Filters, sort key and limit. Defaults select everything
                ordered by confidence.
        """
        options = options or RetrievalOptions()
        wb = WhereBuilder()
        if options.min_confidence > 0:
            wb.add("confidence >= ?", options.min_confidence)
        if options.min_success_count > 0:
            wb.add("success_count >= ?", options.min_success_count)
        if options.max_age_ms is not None:
            wb.add("last_used >= ?", utc_now_ms() - options.max_age_ms)
        where_sql, params = wb.build()

        query = (
            f"SELECT * FROM patterns WHERE {where_sql} "
            f"ORDER BY {_ORDER_BY[SortKey(options.sort_by)]}, id"
        )
        if options.limit is not None:
            query += " LIMIT ?"
            params = (*params, options.limit)

        await self._ensure_initialized()
        async with self._connect() as db:
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()
        return [self._row_to_pattern(row) for row in rows]

    async def prune_older_than(self, max_age_ms: int) -> int:
        """Delete patterns whose ``last_used`` is older than ``max_age_ms``.

        Feedback of deleted patterns goes with them.

        Raises:
            InvalidQueryError: If ``max_age_ms`` is negative.
        """
        if max_age_ms < 0:
            raise InvalidQueryError("max_age_ms must be >= 0")

        await self._ensure_initialized()
        cutoff = utc_now_ms() - max_age_ms
        async with self._connect() as db:
            cursor = await db.execute("DELETE FROM patterns WHERE last_used < ?", (cutoff,))
            deleted = cursor.rowcount

        self._logger.info("patterns_pruned", deleted=deleted, cutoff=cutoff)
        return deleted

