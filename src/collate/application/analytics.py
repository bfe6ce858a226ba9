"""
Learning analytics derived from rating history and card statistics.

This is a pure computation module with no I/O. Every function takes an
explicit `today` so results do not depend on the wall clock.
"""

import math
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta

from collate.application.mastery import rating_to_percentage, round_half_up
from collate.domain.constants import (
    HEATMAP_MAX_INTENSITY,
    HEATMAP_WEEKS,
    MASTERY_HISTORY_DAYS,
    UNCATEGORIZED_TOPIC,
    WEAK_RATING_THRESHOLD,
)
from collate.domain.models import Card, Course, RatingEvent


@dataclass(frozen=True)
class MasteryPoint:
    day: date
    mastery: int | None  # None until the first rating
    ratings_to_date: int


@dataclass(frozen=True)
class HeatmapDay:
    day: date
    count: int
    intensity: int  # 0 (no activity) to HEATMAP_MAX_INTENSITY


@dataclass(frozen=True)
class TopicStats:
    """
    Per-course weakness report.
    """

    id: str
    name: str
    emoji: str | None
    total: int
    studied: int
    weak: int
    average_rating: float
    weak_percentage: int
    mastery_percentage: int


def mastery_over_time(
    events: Iterable[RatingEvent],
    today: date,
    days: int = MASTERY_HISTORY_DAYS,
) -> list[MasteryPoint]:
    """
    Cumulative mastery for each of the last `days` days, oldest first.

    Only ratings inside the window contribute, matching the history chart.
    """
    start = today - timedelta(days=days - 1)
    by_day: dict[date, list[int]] = {}
    for event in events:
        by_day.setdefault(event.timestamp.date(), []).append(event.rating)

    points = []
    total = 0
    count = 0
    for offset in range(days):
        day = start + timedelta(days=offset)
        day_ratings = by_day.get(day, [])
        total += sum(day_ratings)
        count += len(day_ratings)
        mastery = rating_to_percentage(total / count) if count else None
        points.append(MasteryPoint(day=day, mastery=mastery, ratings_to_date=count))
    return points


def study_streak(events: Iterable[RatingEvent], today: date) -> int:
    """
    Number of consecutive days with at least one rating.

    The streak must end today or yesterday, otherwise it is broken (0).
    """
    active_days = {event.timestamp.date() for event in events}
    if not active_days:
        return 0

    latest = max(active_days)
    if latest not in (today, today - timedelta(days=1)):
        return 0

    streak = 0
    day = latest
    while day in active_days:
        streak += 1
        day -= timedelta(days=1)
    return streak


def activity_heatmap(
    events: Iterable[RatingEvent],
    today: date,
    weeks: int = HEATMAP_WEEKS,
) -> list[list[HeatmapDay]]:
    """
    Daily rating counts for the last `weeks` weeks, grouped into weeks that
    end on Saturday (the final week ends today).
    """
    start = today - timedelta(days=weeks * 7 - 1)
    counts = Counter(event.timestamp.date() for event in events)
    window = [start + timedelta(days=i) for i in range(weeks * 7)]
    max_count = max([counts[d] for d in window] + [1])

    grid: list[list[HeatmapDay]] = []
    week: list[HeatmapDay] = []
    for index, day in enumerate(window):
        count = counts[day]
        intensity = math.ceil(count / max_count * HEATMAP_MAX_INTENSITY) if count else 0
        week.append(HeatmapDay(day=day, count=count, intensity=intensity))
        # date.weekday(): Monday=0 .. Saturday=5
        if day.weekday() == 5 or index == len(window) - 1:
            grid.append(week)
            week = []
    return grid


def weak_topics(cards: Iterable[Card], courses: Iterable[Course]) -> list[TopicStats]:
    """
    Weakness per course, plus an "uncategorized" bucket for cards without one.

    Cards belonging to unknown courses are ignored. Topics without cards are
    dropped. Sorted by weak percentage, weakest first.
    """
    topics: dict[str, dict] = {
        course.id: _empty_topic(course.name, course.emoji) for course in courses
    }
    topics[UNCATEGORIZED_TOPIC] = _empty_topic("Uncategorized", None)

    for card in cards:
        topic = topics.get(card.course_id or UNCATEGORIZED_TOPIC)
        if topic is None:
            continue
        topic["total"] += 1
        if card.stats.rating_count > 0:
            topic["studied"] += 1
            topic["rating_sum"] += card.stats.average_rating or 0.0
        rating = card.stats.latest_rating
        if rating is not None and rating <= WEAK_RATING_THRESHOLD:
            topic["weak"] += 1

    results = []
    for topic_id, topic in topics.items():
        if topic["total"] == 0:
            continue
        studied = topic["studied"]
        average = topic["rating_sum"] / studied if studied else 0.0
        results.append(
            TopicStats(
                id=topic_id,
                name=topic["name"],
                emoji=topic["emoji"],
                total=topic["total"],
                studied=studied,
                weak=topic["weak"],
                average_rating=average,
                weak_percentage=round_half_up(topic["weak"] / topic["total"] * 100),
                mastery_percentage=rating_to_percentage(average) if studied else 0,
            )
        )

    results.sort(key=lambda t: t.weak_percentage, reverse=True)
    return results


def courses_from_cards(cards: Iterable[Card]) -> list[Course]:
    """Distinct courses referenced by cards, using their denormalized names."""
    seen: dict[str, Course] = {}
    for card in cards:
        if card.course_id and card.course_id not in seen:
            seen[card.course_id] = Course(id=card.course_id, name=card.course_name or card.course_id)
    return list(seen.values())


def _empty_topic(name: str, emoji: str | None) -> dict:
    return {"name": name, "emoji": emoji, "total": 0, "studied": 0, "weak": 0, "rating_sum": 0.0}
