"""
Mastery calculator for aggregate progress over a set of cards.

This is a pure computation module with no I/O.
"""

import math
from collections.abc import Iterable

from collate.domain.constants import (
    MASTERY_HIGH_THRESHOLD,
    MASTERY_MEDIUM_THRESHOLD,
    MAX_RATING,
    MIN_RATING,
)
from collate.domain.models import Card, MasteryResult, MasteryTier


def round_half_up(value: float) -> int:
    """Round .5 upwards, unlike Python's round() which rounds to even."""
    return math.floor(value + 0.5)


def rating_to_percentage(average_rating: float) -> int:
    """
    Rescale a mean rating from [1, 5] to a 0-100 percentage.
    """
    span = MAX_RATING - MIN_RATING
    return round_half_up((average_rating - MIN_RATING) / span * 100)


def mastery_tier(percentage: int) -> MasteryTier:
    if percentage >= MASTERY_HIGH_THRESHOLD:
        return "high"
    if percentage >= MASTERY_MEDIUM_THRESHOLD:
        return "medium"
    return "low"


def calculate_mastery(cards: Iterable[Card]) -> MasteryResult:
    """
    Compute the aggregate mastery of a set of cards.

    Only studied cards (rating_count > 0) contribute. With no studied cards
    the result is 0% in the low tier; use `studied_count` to tell "no data"
    apart from genuinely low mastery.
    """
    averages = [
        card.stats.average_rating or 0.0 for card in cards if card.stats.rating_count > 0
    ]
    if not averages:
        return MasteryResult(percentage=0, tier="low", studied_count=0)

    mean_of_averages = sum(averages) / len(averages)
    percentage = rating_to_percentage(mean_of_averages)
    return MasteryResult(
        percentage=percentage,
        tier=mastery_tier(percentage),
        studied_count=len(averages),
    )
