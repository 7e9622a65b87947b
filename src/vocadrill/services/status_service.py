"""Service for per-word mastery status and the attempt log."""
import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from vocadrill.models.base import utcnow
from vocadrill.models.models import WordAttempt, WordPhaseStatus
from vocadrill.models.practice_models import Evaluation, WordStatus

logger = logging.getLogger(__name__)


class StatusService:
    """Service for recording attempts and tracking word mastery.

    Writes only flush; the caller owns the transaction so that attempt
    numbering and the status upsert commit or roll back together.
    """

    def __init__(self, db: Session):
        """Initialize the service with a database session."""
        self.db = db

    def get_status_rows(
        self, learner_id: int, word_ids: List[int], phase: int
    ) -> Dict[int, WordPhaseStatus]:
        """Get stored status rows for the given words, keyed by word id."""
        if not word_ids:
            return {}
        rows = (
            self.db.query(WordPhaseStatus)
            .filter(
                WordPhaseStatus.learner_id == learner_id,
                WordPhaseStatus.phase == phase,
                WordPhaseStatus.word_id.in_(word_ids),
            )
            .all()
        )
        return {row.word_id: row for row in rows}

    def get_statuses(
        self, learner_id: int, word_ids: List[int], phase: int
    ) -> Dict[int, WordStatus]:
        """Get the status of each word; words never attempted are Unseen."""
        rows = self.get_status_rows(learner_id, word_ids, phase)
        return {
            word_id: rows[word_id].status if word_id in rows else WordStatus.UNSEEN
            for word_id in word_ids
        }

    def get_status(self, learner_id: int, word_id: int, phase: int) -> Optional[WordPhaseStatus]:
        return (
            self.db.query(WordPhaseStatus)
            .filter(
                WordPhaseStatus.learner_id == learner_id,
                WordPhaseStatus.word_id == word_id,
                WordPhaseStatus.phase == phase,
            )
            .populate_existing()
            .first()
        )

    def next_attempt_number(
        self, session_id: int, word_id: int, phase: int, battery_number: int
    ) -> int:
        """Attempt numbers start at 1 per (session, word, phase, battery)."""
        count = (
            self.db.query(func.count(WordAttempt.id))
            .filter(
                WordAttempt.session_id == session_id,
                WordAttempt.word_id == word_id,
                WordAttempt.phase == phase,
                WordAttempt.battery_number == battery_number,
            )
            .scalar()
        )
        return (count or 0) + 1

    def find_submission(self, session_id: int, submission_id: str) -> Optional[WordAttempt]:
        """Find an attempt by its client idempotency key."""
        return (
            self.db.query(WordAttempt)
            .filter(
                WordAttempt.session_id == session_id,
                WordAttempt.submission_id == submission_id,
            )
            .first()
        )

    def last_attempt(self, session_id: int) -> Optional[WordAttempt]:
        """Most recent attempt of the session."""
        return (
            self.db.query(WordAttempt)
            .filter(WordAttempt.session_id == session_id)
            .order_by(WordAttempt.id.desc())
            .first()
        )

    def record_attempt(
        self,
        session_id: int,
        learner_id: int,
        word_id: int,
        phase: int,
        battery_number: int,
        evaluation: Evaluation,
        response_time_ms: Optional[int] = None,
        submission_id: Optional[str] = None,
    ) -> Tuple[WordAttempt, WordPhaseStatus]:
        """Append an attempt and upsert the word's status for the phase.

        A concurrent writer taking the same attempt number or inserting the
        same status row first surfaces as an IntegrityError on flush.
        """
        now = utcnow()
        attempt = WordAttempt(
            session_id=session_id,
            word_id=word_id,
            phase=phase,
            battery_number=battery_number,
            attempt_number=self.next_attempt_number(session_id, word_id, phase, battery_number),
            is_correct=evaluation.correct,
            response_given=evaluation.response,
            displayed_response=evaluation.displayed,
            autocorrect_used=evaluation.autocorrect_used,
            response_time_ms=response_time_ms,
            submission_id=submission_id,
            attempted_at=now,
        )
        self.db.add(attempt)
        self.db.flush()

        status = self._upsert_status(learner_id, word_id, phase, evaluation.correct, now)
        logger.debug(
            f"Recorded attempt {attempt.attempt_number} for word {word_id} "
            f"(session {session_id}, phase {phase}, battery {battery_number}): "
            f"correct={evaluation.correct}, autocorrect={evaluation.autocorrect_used}"
        )
        return attempt, status

    def _upsert_status(
        self, learner_id: int, word_id: int, phase: int, correct: bool, at: datetime
    ) -> WordPhaseStatus:
        status = WordStatus.CORRECT if correct else WordStatus.NEEDS_REVISION
        updated = (
            self.db.query(WordPhaseStatus)
            .filter(
                WordPhaseStatus.learner_id == learner_id,
                WordPhaseStatus.word_id == word_id,
                WordPhaseStatus.phase == phase,
            )
            .update(
                {
                    WordPhaseStatus.status: status,
                    WordPhaseStatus.total_attempts: WordPhaseStatus.total_attempts + 1,
                    WordPhaseStatus.last_attempt_at: at,
                    WordPhaseStatus.updated_at: at,
                },
                synchronize_session=False,
            )
        )
        if not updated:
            # first_attempt_correct is only ever written here
            self.db.add(
                WordPhaseStatus(
                    learner_id=learner_id,
                    word_id=word_id,
                    phase=phase,
                    status=status,
                    first_attempt_correct=correct,
                    total_attempts=1,
                    last_attempt_at=at,
                )
            )
            self.db.flush()
        return self.get_status(learner_id, word_id, phase)
