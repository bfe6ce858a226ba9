import logging
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel

from collate.application.session_engine import SessionSnapshot, StudySession
from collate.application.study_service import StudyService
from collate.consts import VERSION
from collate.domain.constants import SESSION_IDLE_TTL
from collate.domain.errors import (
    CardNotFoundError,
    CardStoreError,
    InvalidRatingError,
    NothingToStudy,
    PersistenceError,
)
from collate.domain.models import Card, ScopeKind, SessionSummary, StudyPlan, StudyScope

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("collate.server")


class SessionRegistry:
    """
    Live sessions keyed by session id. Each session owns its own queue.

    Sessions left untouched for `idle_ttl` seconds are dropped the next time a
    session is added. Ratings are persisted as they happen, so nothing stored
    is lost.
    """

    def __init__(self, idle_ttl: float = SESSION_IDLE_TTL, clock=time.monotonic):
        self._sessions: dict[str, StudySession] = {}
        self._last_seen: dict[str, float] = {}
        self._idle_ttl = idle_ttl
        self._clock = clock

    def add(self, session: StudySession) -> None:
        self.evict_idle()
        self._sessions[session.session_id] = session
        self._last_seen[session.session_id] = self._clock()

    def get(self, session_id: str) -> StudySession:
        session = self._sessions.get(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
        self._last_seen[session_id] = self._clock()
        return session

    def rekey(self, old_id: str, session: StudySession) -> None:
        self.remove(old_id)
        self.add(session)

    def remove(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._last_seen.pop(session_id, None)

    def evict_idle(self) -> int:
        cutoff = self._clock() - self._idle_ttl
        stale = [
            sid
            for sid, seen in self._last_seen.items()
            if seen < cutoff and not self._sessions[sid].awaiting_rating
        ]
        for sid in stale:
            self.remove(sid)
        if stale:
            logger.info(f"Dropped {len(stale)} idle sessions")
        return len(stale)

    def __len__(self) -> int:
        return len(self._sessions)


@asynccontextmanager
async def lifespan(app: FastAPI):
    from collate.application.config import resolve_config
    from collate.application.factory import get_study_service

    # Startup
    logger.info(f"Collate Server v{VERSION} starting up...")
    if not hasattr(app.state, "service"):
        app.state.service = get_study_service(resolve_config())
    app.state.sessions = SessionRegistry()
    yield
    # Shutdown
    await app.state.service.aclose()
    logger.info(f"Collate Server shutting down ({len(app.state.sessions)} open sessions)...")


app = FastAPI(
    title="Collate Server",
    description="Study session API for the Collate flashcard app.",
    version=VERSION,
    lifespan=lifespan,
)


def get_service(request: Request) -> StudyService:
    return request.app.state.service


def get_sessions(request: Request) -> SessionRegistry:
    return request.app.state.sessions


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float
    store_responsive: bool


class CardView(BaseModel):
    id: str
    question: str
    answer: str | None  # hidden until flipped
    card_type: str
    file_id: str | None = None
    file_name: str | None = None
    course_id: str | None = None
    course_name: str | None = None
    latest_rating: int | None = None
    mastered: bool = False


class SessionResponse(BaseModel):
    session_id: str
    state: str
    position: int
    queue_length: int
    flipped: bool
    awaiting_rating: bool
    card: CardView | None
    cards_studied: int
    cards_mastered: int
    cards_requeued: int
    ratings_collected: int
    elapsed_ms: int
    accepted: bool = True


class RatingBucket(BaseModel):
    rating: int
    count: int


class FileBreakdownView(BaseModel):
    file_id: str | None
    file_name: str | None
    card_count: int
    average_rating: float


class SummaryResponse(BaseModel):
    total_cards: int
    cards_studied: int
    cards_mastered: int
    cards_requeued: int
    average_rating: float
    mastery_percentage: int
    time_spent_ms: int
    rating_distribution: list[RatingBucket]
    file_breakdown: list[FileBreakdownView]


class PreviewResponse(BaseModel):
    total: int
    mastered: int
    unmastered: int
    needs_review: int
    never_studied: int
    due_for_review: int
    limits: list[int | None]


class MasteryResponse(BaseModel):
    percentage: int
    tier: str
    studied_count: int


class StartSessionRequest(BaseModel):
    scope: ScopeKind = "all"
    id: str | None = None
    mode: str = "smart"
    limit: int | None = None


class RateRequest(BaseModel):
    rating: int
    card_id: str | None = None


def _card_view(card: Card | None, flipped: bool) -> CardView | None:
    if card is None:
        return None
    return CardView(
        id=card.id,
        question=card.question,
        answer=card.answer if flipped else None,
        card_type=card.card_type,
        file_id=card.file_id,
        file_name=card.file_name,
        course_id=card.course_id,
        course_name=card.course_name,
        latest_rating=card.stats.latest_rating,
        mastered=card.stats.mastered,
    )


def _session_response(snapshot: SessionSnapshot, accepted: bool = True) -> SessionResponse:
    return SessionResponse(
        session_id=snapshot.session_id,
        state=snapshot.state,
        position=snapshot.position,
        queue_length=snapshot.queue_length,
        flipped=snapshot.flipped,
        awaiting_rating=snapshot.awaiting_rating,
        card=_card_view(snapshot.current_card, snapshot.flipped),
        cards_studied=snapshot.cards_studied,
        cards_mastered=snapshot.cards_mastered,
        cards_requeued=snapshot.cards_requeued,
        ratings_collected=snapshot.ratings_collected,
        elapsed_ms=snapshot.elapsed_ms,
        accepted=accepted,
    )


def _summary_response(summary: SessionSummary) -> SummaryResponse:
    from collate.application.mastery import rating_to_percentage

    return SummaryResponse(
        total_cards=summary.total_cards,
        cards_studied=summary.cards_studied,
        cards_mastered=summary.cards_mastered,
        cards_requeued=summary.cards_requeued,
        average_rating=summary.average_rating,
        mastery_percentage=rating_to_percentage(summary.average_rating)
        if summary.average_rating
        else 0,
        time_spent_ms=summary.time_spent_ms,
        rating_distribution=[
            RatingBucket(rating=r, count=c) for r, c in summary.rating_distribution.items()
        ],
        file_breakdown=[
            FileBreakdownView(
                file_id=f.source_id,
                file_name=f.source_name,
                card_count=f.card_count,
                average_rating=f.average_rating,
            )
            for f in summary.file_breakdown
        ],
    )


def _scope(kind: ScopeKind, scope_id: str | None) -> StudyScope:
    try:
        return StudyScope(kind=kind, id=scope_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


def _require_active(session: StudySession) -> None:
    if session.is_complete:
        raise HTTPException(status_code=409, detail="Session is complete")


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

start_time = time.time()


@app.get("/health", response_model=HealthResponse)
async def health_check(service: StudyService = Depends(get_service)):
    """
    Simple health check to verify server is reachable.
    """
    return HealthResponse(
        status="ok",
        version=VERSION,
        uptime_seconds=time.time() - start_time,
        store_responsive=await service.is_store_responsive(),
    )


@app.get("/version")
async def get_version():
    return {"version": VERSION}


@app.get("/preview", response_model=PreviewResponse)
async def preview(
    scope: ScopeKind = "all",
    id: str | None = None,
    service: StudyService = Depends(get_service),
):
    from collate.application.card_selector import available_limits

    try:
        result = await service.preview(_scope(scope, id))
    except CardStoreError as e:
        logger.error(f"Preview failed: {e}", exc_info=True)
        raise HTTPException(status_code=502, detail=str(e)) from e
    return PreviewResponse(
        total=result.total,
        mastered=result.mastered,
        unmastered=result.unmastered,
        needs_review=result.needs_review,
        never_studied=result.never_studied,
        due_for_review=result.due_for_review,
        limits=available_limits(result),
    )


@app.get("/mastery", response_model=MasteryResponse)
async def mastery(
    scope: ScopeKind = "all",
    id: str | None = None,
    service: StudyService = Depends(get_service),
):
    try:
        result = await service.mastery(_scope(scope, id))
    except CardStoreError as e:
        logger.error(f"Mastery lookup failed: {e}", exc_info=True)
        raise HTTPException(status_code=502, detail=str(e)) from e
    return MasteryResponse(
        percentage=result.percentage, tier=result.tier, studied_count=result.studied_count
    )


@app.post("/sessions", response_model=SessionResponse, status_code=201)
async def start_session(
    req: StartSessionRequest,
    service: StudyService = Depends(get_service),
    sessions: SessionRegistry = Depends(get_sessions),
):
    """
    Select cards and open a new study session.
    """
    logger.info(f"Session requested via API: {req}")
    try:
        plan = StudyPlan(mode=req.mode, limit=req.limit)
        if plan.mode not in ("smart", "all"):
            raise ValueError(f"Unknown study mode: {plan.mode!r}")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    try:
        session = await service.start_session(_scope(req.scope, req.id), plan)
    except CardStoreError as e:
        logger.error(f"Session start failed: {e}", exc_info=True)
        raise HTTPException(status_code=502, detail=str(e)) from e

    if session is None:
        raise HTTPException(status_code=404, detail="Nothing to study")

    sessions.add(session)
    return _session_response(session.snapshot())


@app.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    return _session_response(sessions.get(session_id).snapshot())


@app.post("/sessions/{session_id}/flip", response_model=SessionResponse)
async def flip(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    session = sessions.get(session_id)
    _require_active(session)
    accepted = session.flip()
    return _session_response(session.snapshot(), accepted=accepted)


@app.post("/sessions/{session_id}/next", response_model=SessionResponse)
async def next_card(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    session = sessions.get(session_id)
    _require_active(session)
    accepted = session.next()
    return _session_response(session.snapshot(), accepted=accepted)


@app.post("/sessions/{session_id}/previous", response_model=SessionResponse)
async def previous_card(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    session = sessions.get(session_id)
    _require_active(session)
    accepted = session.previous()
    return _session_response(session.snapshot(), accepted=accepted)


@app.post("/sessions/{session_id}/rate", response_model=SessionResponse)
async def rate(
    session_id: str, req: RateRequest, sessions: SessionRegistry = Depends(get_sessions)
):
    """
    Rate the current card. A rating that arrives while another is being
    processed, or before the card is flipped, is ignored (accepted=false).
    """
    session = sessions.get(session_id)
    _require_active(session)
    try:
        update = await session.rate(req.rating, card_id=req.card_id)
    except InvalidRatingError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except CardNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except PersistenceError as e:
        logger.error(f"Rating failed for session {session_id}: {e}")
        raise HTTPException(status_code=502, detail=str(e)) from e
    return _session_response(session.snapshot(), accepted=update is not None)


@app.post("/sessions/{session_id}/end", response_model=SummaryResponse)
async def end_session(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    session = sessions.get(session_id)
    summary = await session.end()
    return _summary_response(summary)


@app.post("/sessions/{session_id}/restart", response_model=SessionResponse)
async def restart_session(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    session = sessions.get(session_id)
    try:
        restarted = session.restart()
    except NothingToStudy as e:
        raise HTTPException(status_code=404, detail=f"Nothing to study: {e}") from e
    if restarted:
        sessions.rekey(session_id, session)
    return _session_response(session.snapshot(), accepted=restarted)


@app.delete("/sessions/{session_id}", status_code=204)
async def close_session(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    """Close a session, ending it first so no rating is left unpersisted."""
    session = sessions.get(session_id)
    await session.end()
    sessions.remove(session_id)
