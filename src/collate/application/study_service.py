"""
Study Service — Application layer orchestrator.

Coordinates fetching cards from the store, selecting a queue and opening
study sessions.
"""

import logging
import random
from dataclasses import dataclass

from collate.application.card_selector import PoolPreview, preview_pool, select_cards
from collate.application.mastery import calculate_mastery
from collate.application.rating_processor import RatingProcessor
from collate.application.session_engine import RequeuePolicy, StudySession
from collate.domain.constants import PACING_DELAY
from collate.domain.models import MasteryResult, RatingEvent, StudyPlan, StudyScope
from collate.domain.ports import CardStore, Clock, SystemClock

logger = logging.getLogger(__name__)


@dataclass
class SessionSettings:
    pacing_delay: float = PACING_DELAY
    requeue_policy: RequeuePolicy | None = None


class StudyService:
    """
    Application service for previewing pools and starting sessions.

    Follows Dependency Inversion: depends on the CardStore abstraction,
    not concrete adapter implementations.
    """

    def __init__(
        self,
        store: CardStore,
        clock: Clock | None = None,
        rng: random.Random | None = None,
        settings: SessionSettings | None = None,
    ):
        """
        Args:
            store: The card store (port).
            clock: Time source; system clock if not provided.
            rng: Random source shared by selection and requeue jitter.
            settings: Session pacing and requeue configuration.
        """
        self._store = store
        self._clock = clock or SystemClock()
        self._rng = rng or random.Random()
        self._settings = settings or SessionSettings()

    async def preview(self, scope: StudyScope) -> PoolPreview:
        pool = await self._store.fetch_pool(scope)
        return preview_pool(pool, self._clock.now())

    async def mastery(self, scope: StudyScope) -> MasteryResult:
        pool = await self._store.fetch_pool(scope)
        return calculate_mastery(pool)

    async def history(self, scope: StudyScope) -> list[RatingEvent]:
        return await self._store.fetch_rating_events(scope)

    async def is_store_responsive(self) -> bool:
        return await self._store.is_responsive()

    async def aclose(self) -> None:
        """Close the underlying card store."""
        await self._store.aclose()

    async def start_session(
        self, scope: StudyScope, plan: StudyPlan | None = None
    ) -> StudySession | None:
        """
        Select cards for `scope` and open a session over them.

        Returns:
            The new session, or None when there is nothing to study.
        """
        plan = plan or StudyPlan()
        pool = await self._store.fetch_pool(scope)
        queue = select_cards(
            pool, plan.mode, plan.limit, now=self._clock.now(), rng=self._rng
        )

        if not queue:
            logger.info(f"Nothing to study in scope {scope.kind}:{scope.id} ({len(pool)} cards)")
            return None

        session = StudySession(
            queue,
            self._store,
            processor=RatingProcessor(self._clock),
            clock=self._clock,
            rng=self._rng,
            pacing_delay=self._settings.pacing_delay,
            requeue_policy=self._settings.requeue_policy,
            total_cards=len(pool),
        )
        logger.info(
            f"[{session.session_id}] Started {plan.mode} session with "
            f"{len(queue)} of {len(pool)} cards"
        )
        return session
