"""Common-issue aggregation mixin for SQLitePatternStore.

Tracks how often an anonymized problem signature recurs, the contexts it was
seen in and the solutions linked to it.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from typing import Any

import aiosqlite

from mcpdx.core.logging import DxLogger
from mcpdx.learning.anonymizer import anonymize_text
from mcpdx.learning.store.base import _json_loads
from mcpdx.learning.store.models import CommonIssuePattern
from mcpdx.utils.time import utc_now_ms


def _row_to_issue(row: aiosqlite.Row) -> CommonIssuePattern:
    return CommonIssuePattern(
        signature=row["signature"],
        occurrences=row["occurrences"],
        solutions=_json_loads(row["solutions"], []),
        contexts=_json_loads(row["contexts"], []),
        first_seen=row["first_seen"],
        last_seen=row["last_seen"],
    )


class CommonIssueMixin:
    """Mixin providing the common-issue aggregator.

    Requires the composed class to provide ``_connect`` and
    ``_ensure_initialized``.
    """

    _logger: DxLogger
    _connect: Callable[[], AbstractAsyncContextManager[aiosqlite.Connection]]
    _ensure_initialized: Callable[[], Any]

    async def save_common_issue(self, issue: CommonIssuePattern) -> None:
        """Insert or overwrite an issue, keyed by its anonymized signature."""
        await self._ensure_initialized()
        async with self._connect() as db:
            await db.execute(
                """
                INSERT INTO common_issues (
                    signature, occurrences, solutions, contexts, first_seen, last_seen
                ) VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(signature) DO UPDATE SET
                    occurrences = excluded.occurrences,
                    solutions = excluded.solutions,
                    contexts = excluded.contexts,
                    first_seen = excluded.first_seen,
                    last_seen = excluded.last_seen
                """,
                (
                    anonymize_text(issue.signature),
                    issue.occurrences,
                    json.dumps(issue.solutions),
                    json.dumps(issue.contexts),
                    issue.first_seen,
                    issue.last_seen,
                ),
            )

    async def load_common_issues(self) -> list[CommonIssuePattern]:
        await self._ensure_initialized()
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT * FROM common_issues ORDER BY occurrences DESC, last_seen DESC"
            )
            rows = await cursor.fetchall()
        return [_row_to_issue(row) for row in rows]

    async def update_common_issue(
        self, signature: str, context: str | None = None, solution_id: str | None = None
    ) -> None:
        """Count another occurrence of ``signature``.

        The first occurrence creates the issue. Contexts and solution ids are
        appended only if not already recorded.

        Args:
            signature: Raw problem signature; anonymized before use as the key.
            context: Free-form context label (e.g. server type).
            solution_id: Id of a pattern that addressed this occurrence.
        """
        await self._ensure_initialized()
        key = anonymize_text(signature)
        now = utc_now_ms()

        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT * FROM common_issues WHERE signature = ?", (key,)
            )
            row = await cursor.fetchone()

            if row is None:
                await db.execute(
                    """
                    INSERT INTO common_issues (
                        signature, occurrences, solutions, contexts, first_seen, last_seen
                    ) VALUES (?, 1, ?, ?, ?, ?)
                    """,
                    (
                        key,
                        json.dumps([solution_id] if solution_id else []),
                        json.dumps([context] if context else []),
                        now,
                        now,
                    ),
                )
                occurrences = 1
            else:
                issue = _row_to_issue(row)
                if context and context not in issue.contexts:
                    issue.contexts.append(context)
                if solution_id and solution_id not in issue.solutions:
                    issue.solutions.append(solution_id)
                occurrences = issue.occurrences + 1
                await db.execute(
                    """
                    UPDATE common_issues
                    SET occurrences = occurrences + 1, solutions = ?, contexts = ?, last_seen = ?
                    WHERE signature = ?
                    """,
                    (json.dumps(issue.solutions), json.dumps(issue.contexts), now, key),
                )

        self._logger.debug("common_issue_recorded", occurrences=occurrences)
