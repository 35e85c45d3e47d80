"""
Watch sessions and view counting.

A user has one watch session row. Streaming a video starts (or resumes) the
session for that video; bytes delivered are added to it. A view is counted
once the session has streamed and been open for at least
`watch_percentage_required` of the video's size and duration, and at most once
per session (view_id).

Concurrency: get-or-start and view registration lock the user's row
(SELECT ... FOR UPDATE); byte accounting is a single atomic UPDATE.
"""
import enum
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.ids import IdGenerator
from app.models.user import User
from app.models.video import Video
from app.models.view import View
from app.models.watch import WatchSession

logger = logging.getLogger(__name__)

ALREADY_WATCHED = -1


class SessionOutcome(enum.Enum):
    FOUND_SAME_VIDEO = "found_same_video"
    RESET_DIFFERENT_VIDEO = "reset_different_video"
    CREATED = "created"


@dataclass(frozen=True)
class WatchConditions:
    remaining_bytes: int
    remaining_time_ms: int


@dataclass(frozen=True)
class ViewRegistered:
    view_id: int


@dataclass(frozen=True)
class DuplicateView:
    view_id: int


@dataclass(frozen=True)
class TimeNotPassed:
    remaining_time_ms: int


@dataclass(frozen=True)
class NotStreamedEnough:
    remaining_bytes: int


ViewResult = ViewRegistered | DuplicateView | TimeNotPassed | NotStreamedEnough


def calculate_watch_conditions(
    bytes_streamed: int,
    elapsed_ms: int,
    size_bytes: int,
    duration_secs: int,
    threshold: float,
) -> WatchConditions:
    min_bytes = math.ceil(size_bytes * threshold)
    min_time_ms = math.ceil(duration_secs * 1000 * threshold)
    return WatchConditions(
        remaining_bytes=max(0, min_bytes - bytes_streamed),
        remaining_time_ms=max(0, min_time_ms - elapsed_ms),
    )


class ViewLedger:
    """Durable record of counted views, unique on view_id."""

    def __init__(self, db: Session):
        self._db = db

    def has_view(self, view_id: int) -> bool:
        return self._db.query(View.view_id).filter(View.view_id == view_id).first() is not None

    def add(self, view_id: int, video_id: int, user_id: int) -> None:
        """Insert the view; IntegrityError if this view_id was already counted. Caller commits."""
        self._db.add(View(view_id=view_id, video_id=video_id, user_id=user_id))
        self._db.flush()

    def count(self, video_id: int) -> int:
        return self._db.query(func.count(View.view_id)).filter(View.video_id == video_id).scalar() or 0

    def counts(self, video_ids: list[int]) -> dict[int, int]:
        if not video_ids:
            return {}
        rows = (
            self._db.query(View.video_id, func.count(View.view_id))
            .filter(View.video_id.in_(video_ids))
            .group_by(View.video_id)
            .all()
        )
        return {video_id: n for video_id, n in rows}


class WatchIntegrityEngine:
    def __init__(
        self,
        db: Session,
        ids: IdGenerator,
        threshold: float = 0.6,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._db = db
        self._ids = ids
        self._threshold = threshold
        self._clock = clock
        self.ledger = ViewLedger(db)

    # ---------- Sessions ----------

    def _locked_session(self, user_id: int) -> WatchSession | None:
        return (
            self._db.query(WatchSession)
            .filter(WatchSession.user_id == user_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def _reset(self, session: WatchSession, video_id: int) -> None:
        session.video_id = video_id
        session.view_id = self._ids.new_id()
        session.started_at = self._clock()
        session.bytes_streamed = 0

    def _get_or_start_locked(self, user: User, video: Video) -> tuple[WatchSession, SessionOutcome]:
        """Same as get_or_start but leaves the row locked in the open transaction."""
        for attempt in range(2):
            session = self._locked_session(user.id)
            if session is not None:
                if session.video_id == video.id:
                    return session, SessionOutcome.FOUND_SAME_VIDEO
                self._reset(session, video.id)
                self._db.flush()
                return session, SessionOutcome.RESET_DIFFERENT_VIDEO

            session = WatchSession(user_id=user.id)
            self._reset(session, video.id)
            self._db.add(session)
            try:
                self._db.flush()
            except IntegrityError:
                # A concurrent request created the row first; start over and use theirs
                self._db.rollback()
                if attempt:
                    raise
                continue
            return session, SessionOutcome.CREATED

    def get_or_start(self, user: User, video: Video) -> tuple[WatchSession, SessionOutcome]:
        try:
            session, outcome = self._get_or_start_locked(user, video)
            self._db.commit()
        except Exception:
            self._db.rollback()
            raise
        if outcome is not SessionOutcome.FOUND_SAME_VIDEO:
            logger.info("Watch session %s for user %s on video %s (%s)", session.view_id, user.id, video.id, outcome.value)
        return session, outcome

    def session_or_none(self, user: User) -> WatchSession | None:
        return self._db.query(WatchSession).filter(WatchSession.user_id == user.id).first()

    def record_streamed_bytes(self, session: WatchSession, n: int) -> bool:
        """
        Add n delivered bytes to the session. Returns False (and adds nothing) if the
        user has since switched to another session.
        """
        return add_streamed_bytes(self._db, session.user_id, session.view_id, n, self._clock())

    # ---------- Threshold ----------

    def remaining(self, session: WatchSession, video: Video) -> WatchConditions:
        elapsed = self._clock() - session.started_at
        elapsed_ms = int(elapsed.total_seconds() * 1000)
        return calculate_watch_conditions(
            bytes_streamed=session.bytes_streamed or 0,
            elapsed_ms=elapsed_ms,
            size_bytes=video.size_bytes or 0,
            duration_secs=video.duration_secs or 0,
            threshold=self._threshold,
        )

    def try_register_view(self, user: User, video: Video) -> ViewResult:
        view_id = None
        try:
            session, _ = self._get_or_start_locked(user, video)
            view_id = session.view_id
            result = self._evaluate(user, video, session)
            self._db.commit()
        except IntegrityError:
            self._db.rollback()
            if view_id is None:
                raise
            # Lost the race against a concurrent poll for the same session
            return DuplicateView(view_id)
        except Exception:
            self._db.rollback()
            raise
        if isinstance(result, ViewRegistered):
            logger.info("View %s counted for video %s", result.view_id, video.id)
        return result

    def _evaluate(self, user: User, video: Video, session: WatchSession) -> ViewResult:
        if self.ledger.has_view(session.view_id):
            return DuplicateView(session.view_id)
        conditions = self.remaining(session, video)
        if conditions.remaining_time_ms > 0:
            return TimeNotPassed(conditions.remaining_time_ms)
        if conditions.remaining_bytes > 0:
            return NotStreamedEnough(conditions.remaining_bytes)
        self.ledger.add(session.view_id, video.id, user.id)
        return ViewRegistered(session.view_id)

    def required_watch_time_ms(self, user: User, video: Video) -> int:
        """
        Read-only: remaining watch time for the user's session on this video, or
        ALREADY_WATCHED (-1) if its view has been counted. Without a session on this
        video, the full required time is returned and nothing is created.
        """
        session = self.session_or_none(user)
        if session is None or session.video_id != video.id:
            return calculate_watch_conditions(0, 0, 0, video.duration_secs or 0, self._threshold).remaining_time_ms
        if self.ledger.has_view(session.view_id):
            return ALREADY_WATCHED
        return self.remaining(session, video).remaining_time_ms


def add_streamed_bytes(db: Session, user_id: int, view_id: int, n: int, now: datetime | None = None) -> bool:
    """
    Atomically add n delivered bytes to the user's session, but only while it is
    still the session identified by view_id. Commits. Returns False if nothing was updated.
    """
    if n <= 0:
        return True
    try:
        result = db.execute(
            update(WatchSession)
            .where(WatchSession.user_id == user_id, WatchSession.view_id == view_id)
            .values(bytes_streamed=WatchSession.bytes_streamed + n, updated_at=now or datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        updated = result.rowcount > 0
        db.commit()
    except Exception:
        db.rollback()
        raise
    return updated
