"""Data models for the resolution pattern store.

Dataclasses for the records kept in SQLite, the options accepted by ranked
retrieval, and the tagged result of decoding a stored payload.

Timestamps are epoch milliseconds throughout.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from mcpdx.learning.errors import (
    InvalidFeedbackError,
    InvalidPatternError,
    InvalidQueryError,
)

MIN_RATING = 1
MAX_RATING = 5

UNREADABLE_DESCRIPTION = "Legacy pattern could not be decrypted"


@dataclass
class FeedbackEntry:
    """A single piece of user feedback on a pattern.

    ``user_id`` is hashed before it reaches the feedback ledger and is never
    written into a pattern payload, so loaded patterns carry ``None``.
    ``comments`` is stored as given; callers must scrub it themselves.
    """

    timestamp: int
    rating: int
    successful: bool
    user_id: str | None = None
    comments: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not MIN_RATING <= self.rating <= MAX_RATING:
            raise InvalidFeedbackError(
                f"rating must be between {MIN_RATING} and {MAX_RATING}, got {self.rating}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "userId": self.user_id,
            "rating": self.rating,
            "successful": self.successful,
            "comments": self.comments,
            "context": self.context,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FeedbackEntry:
        return cls(
            timestamp=int(data.get("timestamp", 0)),
            rating=int(data.get("rating", MIN_RATING)),
            successful=bool(data.get("successful", False)),
            user_id=data.get("userId"),
            comments=data.get("comments"),
            context=data.get("context") or {},
        )


@dataclass
class StoredFeedback:
    """A feedback row as read back from the ledger."""

    id: int
    pattern_id: str
    timestamp: int
    user_id_hash: str | None
    rating: int
    successful: bool
    comments: str | None
    context: dict[str, Any]


@dataclass
class ResolutionPattern:
    """A learned problem → solution pair with its outcome statistics.

    ``confidence`` is owned by the store: it is recomputed from the counters
    (and recent feedback) on every outcome. Values set here are only used as
    the initial row on first save.
    """

    id: str
    problem_type: str
    problem_signature: str
    solution: dict[str, Any]
    success_count: int = 0
    failure_count: int = 0
    average_resolution_time: float = 0.0
    last_used: int = 0
    confidence: float = 0.0
    user_feedback: list[FeedbackEntry] = field(default_factory=list)
    created_at: int | None = None
    updated_at: int | None = None

    def __post_init__(self) -> None:
        if self.success_count < 0 or self.failure_count < 0:
            raise InvalidPatternError(f"Pattern {self.id}: counters must be non-negative")
        if not 0.0 <= self.confidence <= 1.0:
            raise InvalidPatternError(
                f"Pattern {self.id}: confidence must be within [0, 1], got {self.confidence}"
            )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase payload that is encrypted at rest."""
        return {
            "id": self.id,
            "problemType": self.problem_type,
            "problemSignature": self.problem_signature,
            "solution": self.solution,
            "successCount": self.success_count,
            "failureCount": self.failure_count,
            "averageResolutionTime": self.average_resolution_time,
            "lastUsed": self.last_used,
            "userFeedback": [entry.to_dict() for entry in self.user_feedback],
            "confidence": self.confidence,
        }


def derive_pattern_id(signature: str, source: str) -> str:
    """Stable pattern id for a signature observed by a given diagnostic source."""
    return hashlib.sha256(f"{signature}:{source}".encode()).hexdigest()[:24]


def unreadable_solution(pattern_id: str) -> dict[str, Any]:
    """Placeholder solution for a row whose payload cannot be recovered."""
    return {
        "id": f"legacy-{pattern_id}",
        "type": "manual",
        "confidence": 0,
        "description": UNREADABLE_DESCRIPTION,
        "userFriendlyDescription": UNREADABLE_DESCRIPTION,
        "steps": [],
        "codeChanges": [],
        "configChanges": [],
        "testingStrategy": {
            "type": "manual",
            "tests": [],
            "coverage": 0,
            "automated": False,
        },
        "rollbackPlan": {
            "steps": [],
            "automated": False,
            "backupRequired": False,
            "riskLevel": "low",
        },
    }


@dataclass
class CommonIssuePattern:
    """Aggregated record of a recurring (anonymized) problem signature."""

    signature: str
    occurrences: int
    solutions: list[str] = field(default_factory=list)
    contexts: list[str] = field(default_factory=list)
    first_seen: int = 0
    last_seen: int = 0


class SortKey(str, Enum):
    """Orderings supported by ranked retrieval."""

    CONFIDENCE = "confidence"
    SUCCESS_RATE = "successRate"
    RECENT_USE = "recentUse"
    TOTAL_USES = "totalUses"


@dataclass
class RetrievalOptions:
    """Filters, ordering and cap for ``retrieve_by_rank``.

    The defaults select every pattern ordered by confidence.

    Raises:
        InvalidQueryError: Unknown sort key or negative bounds.
    """

    min_confidence: float = 0.0
    min_success_count: int = 0
    max_age_ms: int | None = None
    sort_by: SortKey | str = SortKey.CONFIDENCE
    limit: int | None = None

    def __post_init__(self) -> None:
        try:
            self.sort_by = SortKey(self.sort_by)
        except ValueError as e:
            valid = ", ".join(key.value for key in SortKey)
            raise InvalidQueryError(
                f"Unknown sort key {self.sort_by!r}; expected one of: {valid}"
            ) from e
        if self.min_confidence < 0:
            raise InvalidQueryError("min_confidence must be >= 0")
        if self.min_success_count < 0:
            raise InvalidQueryError("min_success_count must be >= 0")
        if self.max_age_ms is not None and self.max_age_ms < 0:
            raise InvalidQueryError("max_age_ms must be >= 0")
        if self.limit is not None and self.limit < 1:
            raise InvalidQueryError("limit must be a positive integer")


@dataclass
class PatternStatistics:
    """Corpus-wide summary of the pattern store."""

    total_patterns: int = 0
    total_successes: int = 0
    total_failures: int = 0
    average_confidence: float = 0.0
    most_successful_pattern: ResolutionPattern | None = None
    recently_used_patterns: list[ResolutionPattern] = field(default_factory=list)
    patterns_by_type: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalPatterns": self.total_patterns,
            "totalSuccesses": self.total_successes,
            "totalFailures": self.total_failures,
            "averageConfidence": self.average_confidence,
            "mostSuccessfulPattern": self.most_successful_pattern.to_dict()
            if self.most_successful_pattern
            else None,
            "recentlyUsedPatterns": [p.to_dict() for p in self.recently_used_patterns],
            "patternsByType": dict(self.patterns_by_type),
        }


@dataclass(frozen=True)
class Decoded:
    """Payload decrypted and parsed successfully."""

    payload: dict[str, Any]


@dataclass(frozen=True)
class LegacyPlaintext:
    """Payload was not a valid envelope but parsed as plaintext JSON."""

    payload: dict[str, Any]


@dataclass(frozen=True)
class Unrecoverable:
    """Payload could be neither decrypted nor parsed."""

    reason: str


DecodeResult = Decoded | LegacyPlaintext | Unrecoverable


__all__ = [
    "CommonIssuePattern",
    "DecodeResult",
    "Decoded",
    "FeedbackEntry",
    "LegacyPlaintext",
    "MAX_RATING",
    "MIN_RATING",
    "PatternStatistics",
    "ResolutionPattern",
    "RetrievalOptions",
    "SortKey",
    "StoredFeedback",
    "UNREADABLE_DESCRIPTION",
    "Unrecoverable",
    "derive_pattern_id",
    "unreadable_solution",
]
