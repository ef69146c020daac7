"""Tests for the feedback ledger."""

from __future__ import annotations

import aiosqlite
import pytest

from mcpdx.learning.anonymizer import hash_identifier
from mcpdx.learning.errors import InvalidFeedbackError, PatternNotFoundError
from mcpdx.learning.store import FeedbackEntry, SQLitePatternStore
from mcpdx.learning.store.feedback import (
    FEEDBACK_WINDOW_DAYS,
    MIN_RECENT_FEEDBACK,
    blended_confidence,
)
from mcpdx.utils.time import MS_PER_DAY, utc_now_ms
from tests.helpers import make_pattern


def _entry(rating: int, *, age_days: float = 0, **kwargs: object) -> FeedbackEntry:
    timestamp = utc_now_ms() - int(age_days * MS_PER_DAY)
    return FeedbackEntry(timestamp=timestamp, rating=rating, successful=True, **kwargs)  # type: ignore[arg-type]


class TestFeedbackEntry:
    """Construction-time validation."""

    @pytest.mark.parametrize("rating", [0, 6, -1])
    def test_out_of_range_rating_rejected(self, rating: int) -> None:
        with pytest.raises(InvalidFeedbackError):
            FeedbackEntry(timestamp=0, rating=rating, successful=True)

    def test_dict_round_trip(self) -> None:
        entry = FeedbackEntry(
            timestamp=123, rating=4, successful=False, user_id="u", comments="ok",
            context={"server": "stdio"},
        )
        assert FeedbackEntry.from_dict(entry.to_dict()) == entry


class TestBlendedConfidence:
    """The 70/30 blend of success rate and rating."""

    def test_blend(self) -> None:
        # 3/4 successes, average rating 4
        assert blended_confidence(3, 1, 4.0) == pytest.approx(0.75 * 0.7 + 0.8 * 0.3)

    def test_no_outcomes_uses_zero_success_rate(self) -> None:
        assert blended_confidence(0, 0, 5.0) == pytest.approx(0.3)

    def test_clamped_for_out_of_range_ledger(self) -> None:
        # Average rating above the scale, from rows written without validation
        assert blended_confidence(4, 0, 99.0) == 1.0
        assert blended_confidence(0, 2, -5.0) == 0.0


class TestAddFeedback:
    """Ledger writes and confidence re-blending."""

    async def test_below_threshold_leaves_confidence(self, store: SQLitePatternStore) -> None:
        await store.save(make_pattern(confidence=0.42))

        for _ in range(MIN_RECENT_FEEDBACK - 1):
            await store.add_feedback("p-1", _entry(5))

        loaded = await store.load("p-1")
        assert loaded is not None
        assert loaded.confidence == pytest.approx(0.42)

    async def test_threshold_reblends_confidence(self, store: SQLitePatternStore) -> None:
        await store.save(make_pattern())
        await store.update_success("p-1", 100)
        await store.update_success("p-1", 100)
        await store.update_success("p-1", 100)
        await store.update_failure("p-1")

        for rating in (5, 4, 3):
            await store.add_feedback("p-1", _entry(rating))

        loaded = await store.load("p-1")
        assert loaded is not None
        assert loaded.confidence == pytest.approx(0.75 * 0.7 + (4.0 / 5) * 0.3)

    async def test_threshold_without_outcomes(self, store: SQLitePatternStore) -> None:
        await store.save(make_pattern(confidence=0.9))

        for _ in range(3):
            await store.add_feedback("p-1", _entry(5))

        loaded = await store.load("p-1")
        assert loaded is not None
        assert loaded.confidence == pytest.approx(0.3)

    async def test_old_feedback_not_counted(self, store: SQLitePatternStore) -> None:
        await store.save(make_pattern(confidence=0.42))

        await store.add_feedback("p-1", _entry(1, age_days=FEEDBACK_WINDOW_DAYS + 5))
        await store.add_feedback("p-1", _entry(1, age_days=FEEDBACK_WINDOW_DAYS + 1))
        await store.add_feedback("p-1", _entry(5))

        loaded = await store.load("p-1")
        assert loaded is not None
        assert loaded.confidence == pytest.approx(0.42)

    async def test_user_id_hashed_and_comments_kept(self, store: SQLitePatternStore) -> None:
        await store.save(make_pattern())
        await store.add_feedback(
            "p-1",
            _entry(4, user_id="alice", comments="worked after restart", context={"k": 1}),
        )

        [stored] = await store.get_feedback("p-1")

        assert stored.user_id_hash == hash_identifier("alice")
        assert stored.user_id_hash != "alice"
        assert stored.comments == "worked after restart"
        assert stored.context == {"k": 1}
        assert stored.rating == 4
        assert stored.successful is True

    async def test_anonymous_feedback(self, store: SQLitePatternStore) -> None:
        await store.save(make_pattern())
        await store.add_feedback("p-1", _entry(3))
        [stored] = await store.get_feedback("p-1")
        assert stored.user_id_hash is None

    async def test_get_feedback_newest_first(self, store: SQLitePatternStore) -> None:
        await store.save(make_pattern())
        await store.add_feedback("p-1", _entry(1, age_days=2))
        await store.add_feedback("p-1", _entry(5))
        await store.add_feedback("p-1", _entry(3, age_days=1))

        ratings = [f.rating for f in await store.get_feedback("p-1")]

        assert ratings == [5, 3, 1]

    async def test_missing_pattern_raises_without_writing(
        self, store: SQLitePatternStore
    ) -> None:
        with pytest.raises(PatternNotFoundError):
            await store.add_feedback("missing", _entry(5))
        assert await store.get_feedback("missing") == []

    async def test_delete_cascades_feedback(self, store: SQLitePatternStore) -> None:
        await store.save(make_pattern())
        await store.add_feedback("p-1", _entry(4))
        await store.delete("p-1")
        assert await store.get_feedback("p-1") == []

    async def test_unvalidated_ledger_ratings_keep_confidence_in_range(
        self, store: SQLitePatternStore
    ) -> None:
        await store.save(make_pattern(success_count=4))
        async with aiosqlite.connect(store.db_path) as db:
            await db.executemany(
                "INSERT INTO feedback (pattern_id, timestamp, rating, successful) "
                "VALUES ('p-1', ?, 9, 1)",
                [(utc_now_ms(),), (utc_now_ms(),)],
            )
            await db.commit()

        await store.add_feedback("p-1", _entry(5))

        loaded = await store.load("p-1")
        assert loaded is not None
        assert loaded.confidence == 1.0
