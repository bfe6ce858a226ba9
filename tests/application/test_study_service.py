import random
from datetime import timedelta

import pytest

from collate.application.session_engine import RequeuePolicy
from collate.application.study_service import SessionSettings, StudyService
from collate.domain.models import StudyPlan, StudyScope


@pytest.fixture
def service(store, clock):
    return StudyService(
        store,
        clock=clock,
        rng=random.Random(0),
        settings=SessionSettings(pacing_delay=0, requeue_policy=RequeuePolicy(min_remaining=5)),
    )


@pytest.mark.asyncio
async def test_start_session_uses_pool_size_as_total(service, store, make_card):
    store.fetch_pool.return_value = [
        make_card("a"),
        make_card("b", mastered=True),
        make_card("c"),
    ]
    scope = StudyScope("course", "bio")

    session = await service.start_session(scope, StudyPlan(mode="all"))

    store.fetch_pool.assert_awaited_once_with(scope)
    assert sorted(c.id for c in session.queue) == ["a", "c"]
    assert session.total_cards == 3
    assert session.pacing_delay == 0
    assert session.requeue_policy.min_remaining == 5
    assert session.store is store


@pytest.mark.asyncio
async def test_start_session_applies_limit(service, store, make_card):
    store.fetch_pool.return_value = [make_card(str(i)) for i in range(30)]

    session = await service.start_session(StudyScope(), StudyPlan(limit=10))

    assert len(session.queue) == 10


@pytest.mark.asyncio
async def test_start_session_prioritizes_in_smart_mode(service, store, make_card, clock):
    store.fetch_pool.return_value = [
        make_card("new"),
        make_card("weak", latest_rating=1, rating_count=1, next_review_at=clock.now() + timedelta(days=1)),
    ]

    session = await service.start_session(StudyScope())

    assert [c.id for c in session.queue] == ["weak", "new"]


@pytest.mark.asyncio
async def test_nothing_to_study_returns_none(service, store, make_card):
    store.fetch_pool.return_value = [make_card("a", mastered=True)]
    assert await service.start_session(StudyScope()) is None

    store.fetch_pool.return_value = []
    assert await service.start_session(StudyScope()) is None


@pytest.mark.asyncio
async def test_preview_and_mastery(service, store, make_card):
    store.fetch_pool.return_value = [
        make_card("a", latest_rating=5, rating_count=1, average_rating=5.0),
        make_card("b", latest_rating=3, rating_count=1, average_rating=3.0),
        make_card("c"),
    ]

    preview = await service.preview(StudyScope())
    mastery = await service.mastery(StudyScope())

    assert preview.total == 3
    assert preview.never_studied == 1
    assert mastery.percentage == 75
    assert mastery.studied_count == 2


@pytest.mark.asyncio
async def test_history_delegates_to_store(service, store):
    store.fetch_rating_events.return_value = ["sentinel"]
    scope = StudyScope("file", "f1")

    assert await service.history(scope) == ["sentinel"]
    store.fetch_rating_events.assert_awaited_once_with(scope)


@pytest.mark.asyncio
async def test_store_health_and_close_delegate_to_store(service, store):
    store.is_responsive.return_value = False

    assert await service.is_store_responsive() is False
    await service.aclose()

    store.is_responsive.assert_awaited_once()
    store.aclose.assert_awaited_once()
