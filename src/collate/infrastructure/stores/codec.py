"""
Conversion between domain objects and plain dict records.

Shared by the YAML and HTTP stores. Records use snake_case keys and ISO 8601
timestamps.
"""

import logging
from dataclasses import asdict, fields
from datetime import datetime, timezone
from typing import Any

from collate.domain.errors import CardStoreError
from collate.domain.models import Card, CardStats, RatingEvent

logger = logging.getLogger(__name__)

_CARD_TYPES = {"qa", "definition", "true_false", "fill_blank"}
_CARD_SOURCES = {"ai_generated", "manual"}
_STATS_FIELDS = {f.name for f in fields(CardStats)}


def parse_timestamp(value: Any) -> datetime | None:
    """Accept datetimes (as produced by YAML) or ISO strings; naive means UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value)
        except ValueError as e:
            raise CardStoreError(f"Invalid timestamp: {value!r}") from e
    else:
        raise CardStoreError(f"Invalid timestamp: {value!r}")
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def format_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def stats_to_dict(stats: CardStats) -> dict[str, Any]:
    data = asdict(stats)
    for key in ("mastered_at", "next_review_at"):
        data[key] = format_timestamp(data[key])
    return data


def stats_from_dict(data: dict[str, Any] | None) -> CardStats:
    data = data or {}
    latest = data.get("latest_rating")
    average = data.get("average_rating")
    return CardStats(
        latest_rating=int(latest) if latest is not None else None,
        rating_count=int(data.get("rating_count") or 0),
        consecutive_fives=int(data.get("consecutive_fives") or 0),
        average_rating=float(average) if average is not None else None,
        mastered=bool(data.get("mastered", False)),
        mastered_at=parse_timestamp(data.get("mastered_at")),
        next_review_at=parse_timestamp(data.get("next_review_at")),
    )


def card_to_dict(card: Card) -> dict[str, Any]:
    data = asdict(card)
    data["created_at"] = format_timestamp(card.created_at)
    data["stats"] = stats_to_dict(card.stats)
    return data


def card_from_dict(data: dict[str, Any]) -> Card:
    """
    Build a Card from a record.

    Statistics may be nested under "stats" or stored flat on the record.

    Raises:
        CardStoreError: If required fields are missing or invalid.
    """
    if not isinstance(data, dict):
        raise CardStoreError(f"Card record must be a mapping, got {type(data).__name__}")

    card_id = data.get("id")
    if not card_id:
        raise CardStoreError("Card record is missing 'id'")

    card_type = data.get("card_type", "qa")
    if card_type not in _CARD_TYPES:
        raise CardStoreError(f"Card {card_id}: unknown card_type {card_type!r}")
    source = data.get("source", "ai_generated")
    if source not in _CARD_SOURCES:
        raise CardStoreError(f"Card {card_id}: unknown source {source!r}")

    stats_data = data.get("stats")
    if stats_data is None:
        stats_data = {k: v for k, v in data.items() if k in _STATS_FIELDS}
    try:
        stats = stats_from_dict(stats_data)
    except (TypeError, ValueError) as e:
        raise CardStoreError(f"Card {card_id}: invalid stats: {e}") from e

    return Card(
        id=str(card_id),
        question=str(data.get("question", "")),
        answer=str(data.get("answer", "")),
        card_type=card_type,
        source=source,
        file_id=data.get("file_id"),
        file_name=data.get("file_name"),
        course_id=data.get("course_id"),
        course_name=data.get("course_name"),
        deck_id=data.get("deck_id"),
        is_edited=bool(data.get("is_edited", False)),
        original_question=data.get("original_question"),
        original_answer=data.get("original_answer"),
        created_at=parse_timestamp(data.get("created_at")),
        stats=stats,
    )


def cards_from_records(records: Any) -> list[Card]:
    """Decode a list of card records, skipping (and logging) malformed ones."""
    if records is None:
        return []
    if not isinstance(records, list):
        raise CardStoreError("'cards' must be a list")

    cards = []
    for record in records:
        try:
            cards.append(card_from_dict(record))
        except CardStoreError as e:
            logger.warning(f"Skipping malformed card record: {e}")
    return cards


def event_to_dict(event: RatingEvent) -> dict[str, Any]:
    data = asdict(event)
    data["timestamp"] = format_timestamp(event.timestamp)
    return data


def event_from_dict(data: dict[str, Any]) -> RatingEvent:
    try:
        timestamp = parse_timestamp(data["timestamp"])
        if timestamp is None:
            raise CardStoreError("Rating record is missing 'timestamp'")
        return RatingEvent(
            id=str(data["id"]),
            card_id=str(data["card_id"]),
            rating=int(data["rating"]),
            timestamp=timestamp,
            time_spent_ms=int(data.get("time_spent_ms") or 0),
            session_id=str(data.get("session_id", "")),
            file_id=data.get("file_id"),
            file_name=data.get("file_name"),
            course_id=data.get("course_id"),
            deck_id=data.get("deck_id"),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise CardStoreError(f"Malformed rating record: {e}") from e


def events_from_records(records: Any) -> list[RatingEvent]:
    if records is None:
        return []
    if not isinstance(records, list):
        raise CardStoreError("'ratings' must be a list")

    events = []
    for record in records:
        try:
            events.append(event_from_dict(record))
        except CardStoreError as e:
            logger.warning(f"Skipping malformed rating record: {e}")
    events.sort(key=lambda e: e.timestamp)
    return events
