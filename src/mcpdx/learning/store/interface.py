"""Abstract base for resolution pattern stores."""

from abc import ABC, abstractmethod

from mcpdx.learning.store.models import (
    CommonIssuePattern,
    FeedbackEntry,
    PatternStatistics,
    ResolutionPattern,
    RetrievalOptions,
)


class PatternStore(ABC):
    """Abstract base class for pattern storage backends.

    Implementations persist learned problem → solution patterns, their
    outcome counters and feedback, and aggregated common issues.
    """

    @abstractmethod
    async def save(self, pattern: ResolutionPattern) -> None:
        """Insert or overwrite a pattern by id.

        Args:
            pattern: Pattern to persist. Its signature and solution are
                anonymized before anything is written.
        """
        ...

    @abstractmethod
    async def load(self, pattern_id: str) -> ResolutionPattern | None:
        """Load a pattern by id.

        Returns:
            The pattern, or None if no row has that id. A row whose payload
            cannot be decrypted is returned with a placeholder solution.
        """
        ...

    @abstractmethod
    async def load_all(self) -> list[ResolutionPattern]:
        """Load every stored pattern."""
        ...

    @abstractmethod
    async def update_success(self, pattern_id: str, resolution_time_ms: float) -> None:
        """Record a successful application of a pattern.

        Raises:
            PatternNotFoundError: If the pattern does not exist.
        """
        ...

    @abstractmethod
    async def update_failure(self, pattern_id: str) -> None:
        """Record a failed application of a pattern.

        Raises:
            PatternNotFoundError: If the pattern does not exist.
        """
        ...

    @abstractmethod
    async def add_feedback(self, pattern_id: str, feedback: FeedbackEntry) -> None:
        """Append feedback and re-blend confidence when enough is recent.

        Raises:
            PatternNotFoundError: If the pattern does not exist.
        """
        ...

    @abstractmethod
    async def save_common_issue(self, issue: CommonIssuePattern) -> None:
        """Insert or overwrite a common issue by signature."""
        ...

    @abstractmethod
    async def load_common_issues(self) -> list[CommonIssuePattern]:
        """Load common issues, most frequent first."""
        ...

    @abstractmethod
    async def update_common_issue(
        self, signature: str, context: str | None = None, solution_id: str | None = None
    ) -> None:
        """Record another occurrence of a common issue, creating it if new."""
        ...

    @abstractmethod
    async def retrieve_by_rank(
        self, options: RetrievalOptions | None = None
    ) -> list[ResolutionPattern]:
        """Return patterns filtered and ordered according to ``options``."""
        ...

    @abstractmethod
    async def get_statistics(self) -> PatternStatistics:
        """Summarize the stored corpus."""
        ...

    @abstractmethod
    async def find_similar(
        self, signature: str, threshold: float | None = None
    ) -> list[ResolutionPattern]:
        """Return patterns whose signature is similar to ``signature``."""
        ...

    @abstractmethod
    async def prune_older_than(self, max_age_ms: int) -> int:
        """Delete patterns not used within ``max_age_ms``.

        Returns:
            Number of patterns deleted.
        """
        ...
