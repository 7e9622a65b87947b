"""Service for storing a learner's position in a word list."""
import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from vocadrill.exceptions import NoContentAvailable, NotOwner, SessionNotFound
from vocadrill.models.models import PracticeSession
from vocadrill.models.practice_models import RunState
from vocadrill.monitoring import error_count, sessions_created
from vocadrill.services.content_service import ContentProvider, DatabaseContentProvider

logger = logging.getLogger(__name__)


class SessionStore:
    """Service for creating, loading, pausing and resuming practice sessions."""

    def __init__(self, db: Session, content: Optional[ContentProvider] = None):
        """Initialize the store with a database session."""
        self.db = db
        self.content = content or DatabaseContentProvider(db)

    def find_session(self, learner_id: int, list_id: int) -> Optional[PracticeSession]:
        """Get the learner's session for a list, if any."""
        return (
            self.db.query(PracticeSession)
            .filter(
                PracticeSession.learner_id == learner_id,
                PracticeSession.list_id == list_id,
            )
            .first()
        )

    def get_or_create(self, learner_id: int, list_id: int) -> PracticeSession:
        """Return the learner's session for a list, creating it on first use."""
        session = self.find_session(learner_id, list_id)
        if session:
            return session

        if not self.content.list_exists(list_id):
            raise NoContentAvailable(list_id)

        session = PracticeSession(
            learner_id=learner_id,
            list_id=list_id,
            phase=1,
            battery_number=1,
            run_state=RunState.ACTIVE,
        )
        self.db.add(session)
        try:
            self.db.commit()
        except IntegrityError:
            # A concurrent request created the session first
            self.db.rollback()
            session = self.find_session(learner_id, list_id)
            if session is None:
                raise
            logger.info(f"Session for learner {learner_id} and list {list_id} was created concurrently")
            return session

        self.db.refresh(session)
        sessions_created.inc()
        logger.info(f"Created session {session.id} for learner {learner_id} and list {list_id}")
        return session

    def get_session(self, session_id: int) -> Optional[PracticeSession]:
        """Get a session by id."""
        return (
            self.db.query(PracticeSession)
            .filter(PracticeSession.id == session_id)
            .populate_existing()
            .first()
        )

    def get_owned_session(self, learner_id: int, session_id: int) -> PracticeSession:
        """Get a session, failing closed unless it belongs to the learner."""
        session = self.get_session(session_id)
        if session is None:
            error_count.labels(error_type="session_not_found").inc()
            raise SessionNotFound(session_id)
        if session.learner_id != learner_id:
            error_count.labels(error_type="not_owner").inc()
            logger.warning(f"Learner {learner_id} requested session {session_id} owned by another learner")
            raise NotOwner(session_id)
        return session

    def pause(self, session: PracticeSession) -> PracticeSession:
        """Pause an active session; phase, battery and statuses are untouched."""
        return self._set_run_state(session, RunState.ACTIVE, RunState.PAUSED)

    def resume(self, session: PracticeSession) -> PracticeSession:
        """Resume a paused session exactly where it stopped."""
        return self._set_run_state(session, RunState.PAUSED, RunState.ACTIVE)

    def _set_run_state(
        self, session: PracticeSession, expected: RunState, new_state: RunState
    ) -> PracticeSession:
        if session.run_state == new_state:
            logger.debug(f"Session {session.id} is already {new_state.value}")
            return session
        if session.run_state != expected:
            logger.info(f"Session {session.id} is {session.run_state.value}, not changing to {new_state.value}")
            return session
        session.run_state = new_state
        self.db.commit()
        self.db.refresh(session)
        logger.info(f"Session {session.id} is now {new_state.value}")
        return session
