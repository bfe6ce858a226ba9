# Domain Package
from .errors import (
    CardNotFoundError,
    CardStoreError,
    CollateError,
    InvalidRatingError,
    NothingToStudy,
    PersistenceError,
)
from .models import (
    Card,
    CardStats,
    Course,
    FileBreakdown,
    MasteryResult,
    RatingEvent,
    SessionSummary,
    StudyPlan,
    StudyScope,
)
from .ports import CardStore, Clock, SystemClock

__all__ = [
    "Card",
    "CardStats",
    "Course",
    "FileBreakdown",
    "MasteryResult",
    "RatingEvent",
    "SessionSummary",
    "StudyPlan",
    "StudyScope",
    "CardStore",
    "Clock",
    "SystemClock",
    "CollateError",
    "InvalidRatingError",
    "CardNotFoundError",
    "NothingToStudy",
    "PersistenceError",
    "CardStoreError",
]
