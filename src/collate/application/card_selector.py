"""
Card selector for building study queues.

Builds ordered study queues by:
1. Excluding mastered cards
2. Ordering by mode (shuffled, or prioritized into due/weak/unseen/rest groups)
3. Truncating to the requested limit
"""

import logging
import random
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from collate.application.shuffle import shuffle
from collate.domain.constants import CARD_LIMIT_PRESETS, WEAK_RATING_THRESHOLD
from collate.domain.models import Card, StudyMode

logger = logging.getLogger(__name__)


@dataclass
class SmartPartition:
    """Disjoint priority groups used by smart mode, highest priority first."""

    due: list[Card] = field(default_factory=list)  # next_review_at reached
    weak: list[Card] = field(default_factory=list)  # latest rating <= 2
    unseen: list[Card] = field(default_factory=list)  # never rated
    rest: list[Card] = field(default_factory=list)

    def groups(self) -> list[list[Card]]:
        return [self.due, self.weak, self.unseen, self.rest]


@dataclass(frozen=True)
class PoolPreview:
    """Counts shown before a session starts."""

    total: int
    mastered: int
    unmastered: int
    needs_review: int  # weak: latest rating <= 2
    never_studied: int
    due_for_review: int


def select_cards(
    pool: Iterable[Card],
    mode: StudyMode = "smart",
    limit: int | None = None,
    *,
    now: datetime,
    rng: random.Random | None = None,
) -> list[Card]:
    """
    Build the seed of a study queue from a card pool.

    Args:
        pool: Candidate cards, already narrowed to the study scope.
        mode: "all" shuffles everything, "smart" prioritizes due/weak/unseen.
        limit: Maximum queue size, or None for no limit.
        now: Reference time for due checks.
        rng: Random source for shuffling.

    Returns:
        Ordered list of cards. Empty means there is nothing to study.
    """
    if mode not in ("smart", "all"):
        raise ValueError(f"Unknown study mode: {mode!r}")
    if limit is not None and limit < 1:
        raise ValueError(f"Card limit must be positive, got {limit}")

    rng = rng or random.Random()
    eligible = [card for card in pool if not card.stats.mastered]

    if mode == "all":
        ordered = shuffle(eligible, rng)
    else:
        partition = partition_smart(eligible, now)
        ordered = []
        for group in partition.groups():
            ordered.extend(shuffle(group, rng))

    if limit is not None and len(ordered) > limit:
        ordered = ordered[:limit]

    logger.debug(
        f"Selected {len(ordered)} of {len(eligible)} eligible cards (mode={mode}, limit={limit})"
    )
    return ordered


def partition_smart(cards: Iterable[Card], now: datetime) -> SmartPartition:
    """
    Split non-mastered cards into the four smart-mode priority groups.

    Each card lands in exactly one group, the first whose condition it meets.
    Mastered cards are skipped.
    """
    partition = SmartPartition()

    for card in cards:
        if card.stats.mastered:
            continue
        if _is_due(card, now):
            partition.due.append(card)
        elif _is_weak(card):
            partition.weak.append(card)
        elif card.stats.latest_rating is None:
            partition.unseen.append(card)
        else:
            partition.rest.append(card)

    return partition


def preview_pool(pool: Iterable[Card], now: datetime) -> PoolPreview:
    """
    Summarize a pool before studying. Only non-mastered cards count towards
    the review, unseen and due figures.
    """
    cards = list(pool)
    mastered = sum(1 for c in cards if c.stats.mastered)
    active = [c for c in cards if not c.stats.mastered]

    return PoolPreview(
        total=len(cards),
        mastered=mastered,
        unmastered=len(cards) - mastered,
        needs_review=sum(1 for c in active if _is_weak(c)),
        never_studied=sum(1 for c in active if c.stats.latest_rating is None),
        due_for_review=sum(1 for c in active if _is_due(c, now)),
    )


def available_limits(preview: PoolPreview) -> list[int | None]:
    """
    Preset limits that fit the pool, followed by None ("no limit").
    """
    limits: list[int | None] = [n for n in CARD_LIMIT_PRESETS if n <= preview.unmastered]
    limits.append(None)
    return limits


def _is_due(card: Card, now: datetime) -> bool:
    due_at = card.stats.next_review_at
    return due_at is not None and due_at <= now


def _is_weak(card: Card) -> bool:
    rating = card.stats.latest_rating
    return rating is not None and rating <= WEAK_RATING_THRESHOLD
