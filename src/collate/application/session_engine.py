"""
Session engine: an explicit state machine driving one study session.

The presentation layer sends intents (flip, rate, next, previous, end,
restart) and reads `snapshot()` back. Ratings are persisted through the
CardStore before they are applied in memory, so a failed write never leaves
the session ahead of the store.
"""

import asyncio
import logging
import math
import random
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from ulid import ULID

from collate.application.rating_processor import (
    RatingProcessor,
    RatingUpdate,
    validate_rating,
)
from collate.application.summarizer import summarize
from collate.domain.constants import (
    PACING_DELAY,
    REQUEUE_BASE_FRACTION,
    REQUEUE_JITTER_FRACTION,
    REQUEUE_MIN_REMAINING,
    REQUEUE_RATING_THRESHOLD,
)
from collate.domain.errors import CardNotFoundError, NothingToStudy, PersistenceError
from collate.domain.models import Card, RatingEvent, SessionState, SessionSummary
from collate.domain.ports import CardStore, Clock, SystemClock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequeuePolicy:
    """
    Where a poorly rated card is reinserted into the queue.

    With more than `min_remaining` cards left, the repeat lands in the back
    part of the remaining queue (base offset plus random jitter); otherwise it
    is appended.
    """

    min_remaining: int = REQUEUE_MIN_REMAINING
    base_fraction: float = REQUEUE_BASE_FRACTION
    jitter_fraction: float = REQUEUE_JITTER_FRACTION
    rating_threshold: int = REQUEUE_RATING_THRESHOLD

    def should_requeue(self, rating: int) -> bool:
        return rating <= self.rating_threshold

    def insert_position(self, queue_length: int, position: int, rng: random.Random) -> int:
        remaining = queue_length - position - 1
        if remaining <= self.min_remaining:
            return queue_length

        base = math.floor(remaining * self.base_fraction)
        jitter_span = math.floor(remaining * self.jitter_fraction)
        jitter = rng.randrange(jitter_span) if jitter_span > 0 else 0
        return min(position + 1 + base + jitter, queue_length)


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of a session for rendering."""

    session_id: str
    state: SessionState
    position: int
    queue_length: int
    flipped: bool
    awaiting_rating: bool
    current_card: Card | None
    cards_studied: int
    cards_mastered: int
    cards_requeued: int
    ratings_collected: int
    elapsed_ms: int


class StudySession:
    """
    Owns the live study queue for one session.

    Only one rating may be in flight at a time: `rate` checks and sets the
    guard before its first await, and navigation is refused until the rating
    has been persisted and the pacing delay has elapsed.
    """

    def __init__(
        self,
        cards: Sequence[Card],
        store: CardStore,
        *,
        processor: RatingProcessor | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
        pacing_delay: float = PACING_DELAY,
        requeue_policy: RequeuePolicy | None = None,
        total_cards: int | None = None,
        session_id: str | None = None,
        on_complete: Callable[[SessionSummary], None] | None = None,
    ):
        """
        Args:
            cards: Seed queue, usually the output of select_cards().
            store: Card store used to persist ratings.
            processor: Rating processor; defaults to one sharing `clock`.
            clock: Time source for card timers and summaries.
            rng: Random source for requeue jitter.
            pacing_delay: Seconds to wait after a rating before advancing.
            requeue_policy: Reinsertion rule for low ratings.
            total_cards: Size of the pool the queue was drawn from.
            session_id: Explicit id; a ULID is generated otherwise.
            on_complete: Called with the summary when the session completes.

        Raises:
            NothingToStudy: If `cards` is empty.
        """
        if not cards:
            raise NothingToStudy("No eligible cards to study")

        self.store = store
        self._clock = clock or SystemClock()
        self._processor = processor or RatingProcessor(self._clock)
        self._rng = rng or random.Random()
        self.pacing_delay = pacing_delay
        self.requeue_policy = requeue_policy or RequeuePolicy()
        self.on_complete = on_complete

        self._seed = list(cards)
        self.total_cards = total_cards if total_cards is not None else len(self._seed)

        self._idle = asyncio.Event()
        self._idle.set()
        self._reset(session_id)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _reset(self, session_id: str | None = None) -> None:
        now = self._clock.now()
        self.session_id = session_id or str(ULID())
        self.queue: list[Card] = list(self._seed)
        self.position = 0
        self.flipped = False
        self.awaiting_rating = False
        self.state: SessionState = "studying"
        self.summary: SessionSummary | None = None

        self.started_at: datetime = now
        self.current_card_started_at: datetime = now
        self.ratings: list[RatingEvent] = []
        self._studied_ids: set[str] = set()
        self.cards_studied = 0
        self.cards_mastered = 0
        self.cards_requeued = 0

    @property
    def is_complete(self) -> bool:
        return self.state == "complete"

    @property
    def current_card(self) -> Card | None:
        if self.is_complete or not self.queue:
            return None
        return self.queue[self.position]

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.session_id,
            state=self.state,
            position=self.position,
            queue_length=len(self.queue),
            flipped=self.flipped,
            awaiting_rating=self.awaiting_rating,
            current_card=self.current_card,
            cards_studied=self.cards_studied,
            cards_mastered=self.cards_mastered,
            cards_requeued=self.cards_requeued,
            ratings_collected=len(self.ratings),
            elapsed_ms=self._elapsed_ms(self.started_at),
        )

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    def flip(self) -> bool:
        """Reveal the answer. Idempotent."""
        if self.is_complete:
            return False
        self.flipped = True
        return True

    def next(self) -> bool:
        """Move to the next card, completing the session after the last one."""
        if not self._can_navigate("next"):
            return False
        self._advance()
        return True

    def previous(self) -> bool:
        """Move to the previous card, wrapping around to the last one."""
        if not self._can_navigate("previous"):
            return False
        self.position = self.position - 1 if self.position > 0 else len(self.queue) - 1
        self._enter_card()
        return True

    async def rate(self, rating: int, card_id: str | None = None) -> RatingUpdate | None:
        """
        Rate the current card.

        Args:
            rating: Integer rating 1-5.
            card_id: Optional id the caller believes is current; a mismatch
                raises CardNotFoundError and the rating is dropped.

        Returns:
            The applied RatingUpdate, or None if the rating was ignored because
            the card is not flipped, another rating is in flight, or the
            session is complete.

        Raises:
            InvalidRatingError: Rating outside 1-5. No state changes.
            PersistenceError: The store rejected the write. The session stays
                on the same flipped card so the rating can be retried.
        """
        rating = validate_rating(rating)

        if self.is_complete:
            logger.debug(f"[{self.session_id}] Ignoring rating: session complete")
            return None
        if not self.flipped:
            logger.debug(f"[{self.session_id}] Ignoring rating: card not flipped")
            return None
        if self.awaiting_rating:
            logger.debug(f"[{self.session_id}] Ignoring rating: another rating in flight")
            return None

        card = self.queue[self.position]
        if card_id is not None and card_id != card.id:
            raise CardNotFoundError(card_id)

        self.awaiting_rating = True
        self._idle.clear()
        try:
            update = self._processor.process(
                card,
                rating,
                time_spent_ms=self._elapsed_ms(self.current_card_started_at),
                session_id=self.session_id,
            )
            await self._persist(update)
            self._apply(card, update)

            await asyncio.sleep(self.pacing_delay)
            self.flipped = False
            self._advance()
            return update
        finally:
            self.awaiting_rating = False
            self._idle.set()

    async def end(self) -> SessionSummary:
        """
        End the session, waiting for any in-flight rating to be persisted.

        Safe to call at any time and more than once.
        """
        await self._idle.wait()
        if not self.is_complete:
            self._complete()
        assert self.summary is not None
        return self.summary

    def restart(self) -> bool:
        """
        Study the same cards again under a new session id.

        Cards mastered during the previous run are dropped from the queue.

        Raises:
            NothingToStudy: If every seed card is now mastered.
        """
        if self.awaiting_rating:
            return False
        remaining = [card for card in self._seed if not card.stats.mastered]
        if not remaining:
            raise NothingToStudy("Every card in this session is mastered")
        self._seed = remaining
        self._reset()
        logger.info(f"[{self.session_id}] Restarted with {len(self.queue)} cards")
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _can_navigate(self, intent: str) -> bool:
        if self.is_complete:
            return False
        if self.awaiting_rating:
            logger.debug(f"[{self.session_id}] Ignoring {intent}: rating in flight")
            return False
        return True

    def _advance(self) -> None:
        if self.position >= len(self.queue) - 1:
            self._complete()
            return
        self.position += 1
        self._enter_card()

    def _enter_card(self) -> None:
        self.flipped = False
        self.current_card_started_at = self._clock.now()

    async def _persist(self, update: RatingUpdate) -> None:
        try:
            await self._write(update)
        except asyncio.CancelledError:
            # The statistics write may have landed without its event
            card_id = update.card_id
            logger.warning(f"[{self.session_id}] Rating for card {card_id} cancelled mid-write")
            await asyncio.shield(
                self._store_call(self.store.persist_rating_update, card_id, update.previous)
            )
            raise

    async def _write(self, update: RatingUpdate) -> None:
        card_id = update.card_id

        if not await self._store_call(self.store.persist_rating_update, card_id, update.stats):
            logger.error(f"[{self.session_id}] Failed to save rating for card {card_id}")
            raise PersistenceError(f"Failed to save rating for card {card_id}", card_id)

        if await self._store_call(self.store.append_rating_event, update.event):
            return

        # Statistics were written but the history was not: put the old ones back.
        logger.error(f"[{self.session_id}] Failed to log rating event for card {card_id}")
        if await self._store_call(self.store.persist_rating_update, card_id, update.previous):
            logger.warning(f"[{self.session_id}] Restored previous statistics for {card_id}")
            raise PersistenceError(f"Failed to record rating for card {card_id}", card_id)

        raise PersistenceError(
            f"Failed to record rating for card {card_id} and could not restore its "
            f"previous statistics; stored statistics are ahead of the rating history",
            card_id,
        )

    async def _store_call(self, action, *args) -> bool:
        try:
            return bool(await action(*args))
        except Exception as e:
            logger.error(f"Card store call {action.__name__} raised: {e}", exc_info=True)
            return False

    def _apply(self, card: Card, update: RatingUpdate) -> None:
        # Duplicates in the queue share this object, so they see the new stats too
        card.stats = update.stats
        self.ratings.append(update.event)

        if card.id not in self._studied_ids:
            self._studied_ids.add(card.id)
            self.cards_studied += 1

        if update.newly_mastered:
            self.cards_mastered += 1
            logger.info(f"[{self.session_id}] Card {card.id} mastered")

        if self.requeue_policy.should_requeue(update.event.rating):
            index = self.requeue_policy.insert_position(len(self.queue), self.position, self._rng)
            self.queue.insert(index, card)
            self.cards_requeued += 1
            logger.debug(f"[{self.session_id}] Requeued card {card.id} at {index}")

    def _complete(self) -> None:
        self.summary = summarize(
            self.ratings,
            total_cards=self.total_cards,
            cards_studied=self.cards_studied,
            cards_mastered=self.cards_mastered,
            cards_requeued=self.cards_requeued,
            time_spent_ms=self._elapsed_ms(self.started_at),
        )
        self.state = "complete"
        self.flipped = False
        logger.info(
            f"[{self.session_id}] Session complete: {self.cards_studied} studied, "
            f"{len(self.ratings)} ratings, {self.cards_mastered} mastered"
        )
        if self.on_complete:
            self.on_complete(self.summary)

    def _elapsed_ms(self, since: datetime) -> int:
        return max(0, (self._clock.now() - since) // timedelta(milliseconds=1))
