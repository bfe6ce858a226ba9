# Application Package
from .card_selector import PoolPreview, SmartPartition, partition_smart, preview_pool, select_cards
from .mastery import calculate_mastery
from .rating_processor import RatingProcessor, RatingUpdate
from .session_engine import RequeuePolicy, SessionSnapshot, StudySession
from .study_service import SessionSettings, StudyService
from .summarizer import summarize

__all__ = [
    "calculate_mastery",
    "select_cards",
    "partition_smart",
    "preview_pool",
    "PoolPreview",
    "SmartPartition",
    "RatingProcessor",
    "RatingUpdate",
    "RequeuePolicy",
    "SessionSnapshot",
    "StudySession",
    "SessionSettings",
    "StudyService",
    "summarize",
]
