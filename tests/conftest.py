import random
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from collate.domain.models import Card, CardStats
from collate.domain.ports import CardStore, Clock

NOW = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)


class FixedClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


def _make_card(
    card_id: str = "c1",
    *,
    file_id: str | None = "f1",
    file_name: str | None = "Lecture 1.pdf",
    course_id: str | None = None,
    course_name: str | None = None,
    deck_id: str | None = None,
    **stats,
) -> Card:
    return Card(
        id=card_id,
        question=f"Question {card_id}?",
        answer=f"Answer {card_id}",
        file_id=file_id,
        file_name=file_name,
        course_id=course_id,
        course_name=course_name,
        deck_id=deck_id,
        stats=CardStats(**stats),
    )


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def make_card():
    """Factory for cards; keyword arguments other than provenance go to CardStats."""
    return _make_card


@pytest.fixture
def store():
    """CardStore double whose writes succeed unless told otherwise."""
    mock = AsyncMock(spec=CardStore)
    mock.persist_rating_update.return_value = True
    mock.append_rating_event.return_value = True
    mock.fetch_pool.return_value = []
    mock.fetch_rating_events.return_value = []
    mock.is_responsive.return_value = True
    return mock


@pytest.fixture
def mock_home(tmp_path, monkeypatch):
    """Mocks Path.home() to point to a temp dir."""
    home = tmp_path / "home"
    home.mkdir()

    # Mocking HOME to a temp directory to isolate config files
    monkeypatch.setenv("HOME", str(home))
    return home
