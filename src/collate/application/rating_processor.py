"""
Rating processor: applies a single rating to a card's study statistics.

Pure apart from the injected clock; persistence is left to the caller.
"""

from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import timedelta

from ulid import ULID

from collate.domain.constants import (
    MASTERY_STREAK,
    MAX_RATING,
    MIN_RATING,
    REVIEW_INTERVAL_DAYS,
)
from collate.domain.errors import CardNotFoundError, InvalidRatingError
from collate.domain.models import Card, CardStats, RatingEvent
from collate.domain.ports import Clock, SystemClock


@dataclass(frozen=True)
class RatingUpdate:
    """
    Result of processing a rating.

    `stats` is what must be persisted for the card; `event` is what must be
    appended to the rating history.
    """

    card_id: str
    previous: CardStats
    stats: CardStats
    event: RatingEvent
    newly_mastered: bool


def validate_rating(rating: object) -> int:
    # bool is an int subclass, but True is not a rating
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise InvalidRatingError(rating)
    if not MIN_RATING <= rating <= MAX_RATING:
        raise InvalidRatingError(rating)
    return rating


def review_interval(rating: int) -> timedelta:
    """Fixed schedule lookup: days until the card is due again."""
    return timedelta(days=REVIEW_INTERVAL_DAYS[validate_rating(rating)])


class RatingProcessor:
    """
    Computes updated statistics and a history event for each rating.

    Stateless and side-effect free.
    """

    def __init__(self, clock: Clock | None = None):
        self._clock = clock or SystemClock()

    def process(
        self,
        card: Card,
        rating: int,
        *,
        time_spent_ms: int = 0,
        session_id: str = "",
    ) -> RatingUpdate:
        """
        Apply `rating` to `card`'s statistics without mutating the card.
        """
        rating = validate_rating(rating)
        now = self._clock.now()
        prior = card.stats

        consecutive_fives = prior.consecutive_fives + 1 if rating == MAX_RATING else 0
        newly_mastered = not prior.mastered and consecutive_fives >= MASTERY_STREAK

        rating_count = prior.rating_count + 1
        prior_average = prior.average_rating or 0.0
        average = (prior_average * prior.rating_count + rating) / rating_count

        stats = replace(
            prior,
            latest_rating=rating,
            rating_count=rating_count,
            consecutive_fives=consecutive_fives,
            average_rating=average,
            mastered=prior.mastered or newly_mastered,
            mastered_at=now if newly_mastered else prior.mastered_at,
            next_review_at=now + review_interval(rating),
        )

        event = RatingEvent(
            id=str(ULID()),
            card_id=card.id,
            rating=rating,
            timestamp=now,
            time_spent_ms=max(0, int(time_spent_ms)),
            session_id=session_id,
            file_id=card.file_id,
            file_name=card.file_name,
            course_id=card.course_id,
            deck_id=card.deck_id,
        )

        return RatingUpdate(
            card_id=card.id,
            previous=prior,
            stats=stats,
            event=event,
            newly_mastered=newly_mastered,
        )

    def process_by_id(
        self,
        cards: Mapping[str, Card],
        card_id: str,
        rating: int,
        *,
        time_spent_ms: int = 0,
        session_id: str = "",
    ) -> RatingUpdate:
        """
        Look up `card_id` and process the rating.

        Raises:
            CardNotFoundError: If the card is not in `cards`. Nothing is computed.
        """
        card = cards.get(card_id)
        if card is None:
            raise CardNotFoundError(card_id)
        return self.process(
            card, rating, time_spent_ms=time_spent_ms, session_id=session_id
        )
