"""
Session summarizer: turns the ratings collected in a session into a report.

This is a pure computation module with no I/O.
"""

from collections.abc import Iterable

from collate.domain.constants import MAX_RATING, MIN_RATING
from collate.domain.models import FileBreakdown, RatingEvent, SessionSummary


def summarize(
    events: Iterable[RatingEvent],
    *,
    total_cards: int,
    cards_studied: int,
    cards_mastered: int,
    cards_requeued: int,
    time_spent_ms: int,
) -> SessionSummary:
    """
    Build a SessionSummary from the session's rating events and counters.

    The file breakdown counts rating events, so a requeued card rated twice
    contributes two entries to its file's count.
    """
    events = list(events)
    ratings = [e.rating for e in events]

    average = sum(ratings) / len(ratings) if ratings else 0.0
    distribution = {
        value: sum(1 for r in ratings if r == value)
        for value in range(MIN_RATING, MAX_RATING + 1)
    }

    return SessionSummary(
        total_cards=total_cards,
        cards_studied=cards_studied,
        cards_mastered=cards_mastered,
        cards_requeued=cards_requeued,
        average_rating=average,
        time_spent_ms=time_spent_ms,
        rating_distribution=distribution,
        file_breakdown=_file_breakdown(events),
    )


def _file_breakdown(events: list[RatingEvent]) -> list[FileBreakdown]:
    # dicts keep insertion order, so groups come out in first-seen order
    groups: dict[str | None, list[RatingEvent]] = {}
    for event in events:
        groups.setdefault(event.file_id, []).append(event)

    breakdown = []
    for file_id, group in groups.items():
        total = sum(e.rating for e in group)
        breakdown.append(
            FileBreakdown(
                source_id=file_id,
                source_name=group[0].file_name,
                card_count=len(group),
                average_rating=total / len(group),
            )
        )
    return breakdown
