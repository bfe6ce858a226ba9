"""
Domain models for cards, ratings and study sessions.

These are pure data structures with no I/O or external dependencies.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

CardType = Literal["qa", "definition", "true_false", "fill_blank"]
CardSource = Literal["ai_generated", "manual"]
StudyMode = Literal["smart", "all"]
ScopeKind = Literal["all", "course", "deck", "file"]
MasteryTier = Literal["low", "medium", "high"]
SessionState = Literal["studying", "complete"]


@dataclass(frozen=True)
class CardStats:
    """
    Study statistics owned by the scheduling engine.

    Attributes:
        latest_rating: Last rating given (1-5), None if never rated.
        rating_count: Total number of ratings ever recorded.
        consecutive_fives: Length of the most recent unbroken run of 5s.
        average_rating: Running mean of every rating, None if never rated.
        mastered: True once consecutive_fives reached the mastery streak.
        mastered_at: When mastery was achieved.
        next_review_at: When the card is next due.
    """

    latest_rating: int | None = None
    rating_count: int = 0
    consecutive_fives: int = 0
    average_rating: float | None = None
    mastered: bool = False
    mastered_at: datetime | None = None
    next_review_at: datetime | None = None

    @property
    def studied(self) -> bool:
        return self.rating_count > 0


@dataclass
class Card:
    """
    A studyable flashcard.

    Provenance fields (file/course/deck) are opaque display data supplied by
    the card store; the engine only copies them onto rating events.
    """

    id: str
    question: str
    answer: str
    card_type: CardType = "qa"
    source: CardSource = "ai_generated"

    file_id: str | None = None
    file_name: str | None = None
    course_id: str | None = None
    course_name: str | None = None
    deck_id: str | None = None

    is_edited: bool = False
    original_question: str | None = None
    original_answer: str | None = None
    created_at: datetime | None = None

    stats: CardStats = field(default_factory=CardStats)


@dataclass(frozen=True)
class RatingEvent:
    """
    Immutable record of a single rating action.

    Attributes:
        id: Unique event id (ULID).
        card_id: The card that was rated.
        rating: Rating given (1-5).
        timestamp: Wall-clock time of the rating.
        time_spent_ms: Time spent viewing the card before rating.
        session_id: Session the rating belongs to.
    """

    id: str
    card_id: str
    rating: int
    timestamp: datetime
    time_spent_ms: int
    session_id: str
    file_id: str | None = None
    file_name: str | None = None
    course_id: str | None = None
    deck_id: str | None = None


@dataclass(frozen=True)
class StudyScope:
    """The slice of the card pool a session draws from."""

    kind: ScopeKind = "all"
    id: str | None = None

    def __post_init__(self):
        if self.kind != "all" and not self.id:
            raise ValueError(f"Scope '{self.kind}' requires an id")

    def contains(self, card: Card) -> bool:
        if self.kind == "all":
            return True
        if self.kind == "course":
            return card.course_id == self.id
        if self.kind == "deck":
            return card.deck_id == self.id
        return card.file_id == self.id


@dataclass(frozen=True)
class StudyPlan:
    """How to build a study queue: ordering mode and optional size limit."""

    mode: StudyMode = "smart"
    limit: int | None = None  # None means no limit

    def __post_init__(self):
        if self.limit is not None and self.limit < 1:
            raise ValueError(f"Card limit must be positive, got {self.limit}")


@dataclass(frozen=True)
class MasteryResult:
    percentage: int
    tier: MasteryTier
    studied_count: int  # 0 means "no data", callers display that separately


@dataclass(frozen=True)
class FileBreakdown:
    source_id: str | None
    source_name: str | None
    card_count: int  # rating events, not distinct cards
    average_rating: float


@dataclass(frozen=True)
class SessionSummary:
    """Snapshot of a finished (or abandoned) study session."""

    total_cards: int
    cards_studied: int
    cards_mastered: int
    cards_requeued: int
    average_rating: float
    time_spent_ms: int
    rating_distribution: dict[int, int]
    file_breakdown: list[FileBreakdown] = field(default_factory=list)

    @property
    def total_ratings(self) -> int:
        return sum(self.rating_distribution.values())


@dataclass(frozen=True)
class Course:
    """Display data for a course, used by topic analytics."""

    id: str
    name: str
    emoji: str | None = None
