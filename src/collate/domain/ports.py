"""
Ports (interfaces) for the card store and the clock.

These define the contract that infrastructure adapters must implement.
Application services depend on these abstractions, not concrete implementations.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone

from .models import Card, CardStats, RatingEvent, StudyScope


class CardStore(ABC):
    """
    Port for reading the card pool and persisting study results.

    Implementations:
        - YamlCardStore: A local YAML document.
        - HttpCardStore: A hosted document API over HTTP.
    """

    @abstractmethod
    async def fetch_pool(self, scope: StudyScope) -> list[Card]:
        """
        Fetch every card within the given scope.

        Raises:
            CardStoreError: If the store cannot be read.
        """
        pass

    @abstractmethod
    async def persist_rating_update(self, card_id: str, stats: CardStats) -> bool:
        """
        Persist updated study statistics for a card.

        Returns:
            True on success, False if the store rejected the write.
        """
        pass

    @abstractmethod
    async def append_rating_event(self, event: RatingEvent) -> bool:
        """
        Append a rating event to the history log.

        Returns:
            True on success, False if the store rejected the write.
        """
        pass

    @abstractmethod
    async def fetch_rating_events(self, scope: StudyScope) -> list[RatingEvent]:
        """
        Fetch rating history for cards within the given scope, oldest first.
        """
        pass

    @abstractmethod
    async def is_responsive(self) -> bool:
        """Check if the store can currently be reached."""
        pass

    async def aclose(self) -> None:
        """Release connections held by the store. No-op by default."""
        return None


class Clock(ABC):
    """Source of the current time, injected so date math is testable."""

    @abstractmethod
    def now(self) -> datetime:
        pass


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)
