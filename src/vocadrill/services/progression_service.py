"""Round, battery and phase progression for practice sessions."""
import logging
import random
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from vocadrill.config import FINAL_PHASE, settings
from vocadrill.exceptions import ConcurrentUpdateError, SessionNotActive, UnexpectedAttempt
from vocadrill.models.base import utcnow
from vocadrill.models.models import Battery, PracticeSession, WordAttempt
from vocadrill.models.practice_models import (
    BatteryState,
    Evaluation,
    MasteryGate,
    Phase,
    Progression,
    RoundKind,
    RoundState,
    RunState,
    WordStatus,
)
from vocadrill.monitoring import (
    attempts,
    autocorrections,
    duplicate_attempts,
    error_count,
    perfect_scores,
    phase_advances,
    sessions_completed,
)
from vocadrill.services.battery_service import BatteryComposer
from vocadrill.services.content_service import ContentProvider, DatabaseContentProvider
from vocadrill.services.evaluation import Answer, evaluate_answer
from vocadrill.services.status_service import StatusService

logger = logging.getLogger(__name__)


@dataclass
class AttemptResult:
    """Outcome of a submitted answer."""
    accepted: bool  # False when the submission replayed an already recorded attempt
    attempt_number: int
    correct: bool
    autocorrect_used: bool
    displayed_response: str
    updated_status: WordStatus
    round_state: RoundState
    session: PracticeSession
    progression: Progression = Progression.NONE

    @property
    def perfect_score_signal(self) -> bool:
        return self.round_state.round_kind == RoundKind.PERFECT_SCORE_HOLD

    @property
    def next_word_id(self) -> Optional[int]:
        return self.round_state.expected_word()


def advance_round(state: RoundState, word_id: int, evaluation: Evaluation, phase: int) -> RoundState:
    """Return the round state after an answer to the expected word.

    FirstRound walks the battery once, collecting incorrect words in answer
    order; RepeatRound pops the head of that FIFO and re-appends it to the tail
    while it is still answered incorrectly.
    """
    expected = state.expected_word()
    if expected is None or expected != word_id:
        raise UnexpectedAttempt(f"Expected word {expected}, got {word_id}")

    if state.round_kind == RoundKind.FIRST_ROUND:
        queue = list(state.queue)
        if not evaluation.correct:
            queue.append(word_id)
        flawless = state.flawless and evaluation.correct and not evaluation.autocorrect_used
        cursor = state.cursor + 1
        if cursor < len(state.order):
            return state.copy(cursor=cursor, queue=queue, flawless=flawless)
        if queue:
            return state.copy(round_kind=RoundKind.REPEAT_ROUND, cursor=cursor, queue=queue, flawless=flawless)
        if flawless and phase == Phase.TYPED:
            return state.copy(round_kind=RoundKind.PERFECT_SCORE_HOLD, cursor=cursor, queue=[], flawless=True)
        return state.copy(round_kind=RoundKind.BATTERY_COMPLETE, cursor=cursor, queue=[], flawless=flawless)

    # RepeatRound
    queue = list(state.queue[1:])
    if not evaluation.correct:
        queue.append(word_id)
    if queue:
        return state.copy(queue=queue)
    return state.copy(round_kind=RoundKind.BATTERY_COMPLETE, queue=[])


class ProgressionController:
    """Drives a session through rounds, batteries and phases.

    All round/queue state lives on the battery row and is returned with every
    call, so a controller can be rebuilt from the database at any time.
    """

    def __init__(
        self,
        db: Session,
        content: Optional[ContentProvider] = None,
        status_service: Optional[StatusService] = None,
        composer: Optional[BatteryComposer] = None,
        mastery_gate: Optional[MasteryGate] = None,
        rng: Optional[random.Random] = None,
        write_retries: Optional[int] = None,
    ):
        """Initialize the controller with a database session."""
        self.db = db
        self.content = content or DatabaseContentProvider(db)
        self.status_service = status_service or StatusService(db)
        self.composer = composer or BatteryComposer(db, self.content, self.status_service, rng=rng)
        self.mastery_gate = mastery_gate or MasteryGate(settings.practice.mastery_gate)
        self.write_retries = write_retries or settings.practice.write_retries

    def submit_attempt(
        self,
        session: PracticeSession,
        word_id: int,
        phase: int,
        battery_number: int,
        answer: Answer,
        response_time_ms: Optional[int] = None,
        submission_id: Optional[str] = None,
    ) -> AttemptResult:
        """Evaluate and record an answer, then move the round forward.

        Numbering, status upsert and the round/session update commit as one
        unit; a write conflict rolls the unit back and it is retried.
        """
        for attempt_try in range(1, self.write_retries + 1):
            try:
                result = self._submit_once(
                    session, word_id, phase, battery_number, answer, response_time_ms, submission_id
                )
                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                error_count.labels(error_type="write_conflict").inc()
                logger.warning(
                    f"Write conflict recording word {word_id} for session {session.id} "
                    f"(try {attempt_try}/{self.write_retries}): {e.orig}"
                )
                if attempt_try == self.write_retries:
                    raise ConcurrentUpdateError(
                        f"Could not record attempt for word {word_id} in session {session.id}"
                    ) from e
                continue
            except SQLAlchemyError:
                self.db.rollback()
                error_count.labels(error_type="database").inc()
                raise
            except Exception:
                self.db.rollback()
                raise
            self._count_result(phase, result)
            return result

    def _count_result(self, phase: int, result: AttemptResult) -> None:
        if not result.accepted:
            duplicate_attempts.inc()
            return
        attempts.labels(phase=str(phase), correct=str(result.correct).lower()).inc()
        if result.autocorrect_used:
            autocorrections.inc()
        if result.perfect_score_signal:
            perfect_scores.inc()
        self._count_progression(phase, result.progression)

    def _count_progression(self, phase: int, progression: Progression) -> None:
        if progression == Progression.PHASE_ADVANCED:
            phase_advances.labels(from_phase=str(phase)).inc()
        elif progression == Progression.SESSION_COMPLETED:
            sessions_completed.inc()

    def _submit_once(
        self,
        session: PracticeSession,
        word_id: int,
        phase: int,
        battery_number: int,
        answer: Answer,
        response_time_ms: Optional[int],
        submission_id: Optional[str],
    ) -> AttemptResult:
        if submission_id:
            previous = self.status_service.find_submission(session.id, submission_id)
            if previous:
                logger.info(f"Submission {submission_id} of session {session.id} was already recorded")
                return self._replay(session, previous)

        words = self.content.get_words([word_id])
        word = words.get(word_id)
        if word is None:
            raise UnexpectedAttempt(f"Word {word_id} does not exist")

        evaluation = evaluate_answer(word, phase, answer)

        battery = None
        if session.run_state == RunState.ACTIVE and (phase, battery_number) == (session.phase, session.battery_number):
            battery = self.composer.get_current_battery(session, lock=True)
        state = battery.round_state if battery else None

        last = self.status_service.last_attempt(session.id)
        redelivered = last is not None and (
            last.word_id, last.phase, last.battery_number, last.response_given
        ) == (word_id, phase, battery_number, evaluation.response)

        if state is None or state.expected_word() != word_id:
            # Not the word this round is waiting for: a redelivered attempt
            # replays the stored result, anything else is rejected
            if redelivered:
                logger.info(f"Replaying attempt {last.attempt_number} of word {word_id} for session {session.id}")
                return self._replay(session, last)
            if session.run_state != RunState.ACTIVE:
                raise SessionNotActive(session.id, session.run_state.value)
            raise UnexpectedAttempt(
                f"Session {session.id} expects word {state.expected_word() if state else None} "
                f"in phase {session.phase}, battery {session.battery_number}; got word {word_id} "
                f"in phase {phase}, battery {battery_number}"
            )

        if redelivered and not submission_id:
            # A single requeued word is expected again right after a wrong
            # answer; only a fresh submission id marks a repeat as new
            logger.info(f"Replaying attempt {last.attempt_number} of word {word_id} for session {session.id}")
            return self._replay(session, last)

        attempt, status = self.status_service.record_attempt(
            session_id=session.id,
            learner_id=session.learner_id,
            word_id=word_id,
            phase=phase,
            battery_number=battery_number,
            evaluation=evaluation,
            response_time_ms=response_time_ms,
            submission_id=submission_id,
        )

        new_state = advance_round(state, word_id, evaluation, phase)
        battery.round_state = new_state
        progression = Progression.NONE

        if new_state.is_finished:
            self._complete_battery(battery)
            if new_state.round_kind == RoundKind.PERFECT_SCORE_HOLD:
                logger.info(
                    f"Perfect score on battery {battery.battery_number} of session {session.id}, "
                    f"waiting for acknowledgement"
                )
                progression = Progression.PERFECT_SCORE_HOLD
            else:
                progression = self._advance(session, battery)
        elif new_state.round_kind != state.round_kind:
            logger.info(
                f"Battery {battery.battery_number} of session {session.id} enters repeat round "
                f"with queue {new_state.queue}"
            )

        return AttemptResult(
            accepted=True,
            attempt_number=attempt.attempt_number,
            correct=evaluation.correct,
            autocorrect_used=evaluation.autocorrect_used,
            displayed_response=evaluation.displayed,
            updated_status=status.status,
            round_state=new_state,
            session=session,
            progression=progression,
        )

    def _replay(self, session: PracticeSession, attempt: WordAttempt) -> AttemptResult:
        status = self.status_service.get_status(session.learner_id, attempt.word_id, attempt.phase)
        battery = self.composer.get_battery(session.id, attempt.battery_number, attempt.phase)
        return AttemptResult(
            accepted=False,
            attempt_number=attempt.attempt_number,
            correct=attempt.is_correct,
            autocorrect_used=attempt.autocorrect_used,
            displayed_response=attempt.displayed_response or attempt.response_given,
            updated_status=status.status if status else WordStatus.UNSEEN,
            round_state=battery.round_state if battery else RoundState.first_round([]),
            session=session,
        )

    def _complete_battery(self, battery: Battery) -> None:
        battery.state = BatteryState.COMPLETED
        battery.completed_at = utcnow()

    def progress(self, session: PracticeSession) -> Progression:
        """Apply any pending BatteryComplete transition for the session.

        Safe to call repeatedly: once the session has moved past a battery
        there is nothing left to apply and the call is a no-op.
        """
        try:
            battery = self.composer.get_current_battery(session, lock=True)
            if battery is None or battery.round_state.round_kind != RoundKind.BATTERY_COMPLETE:
                self.db.rollback()
                return Progression.NONE
            phase = session.phase
            progression = self._advance(session, battery)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            error_count.labels(error_type="database").inc()
            raise
        self._count_progression(phase, progression)
        return progression

    def acknowledge_completion(self, session: PracticeSession) -> Progression:
        """Release a perfect-score hold and apply the deferred progression."""
        try:
            battery = self.composer.get_current_battery(session, lock=True)
            if battery is None or battery.round_state.round_kind != RoundKind.PERFECT_SCORE_HOLD:
                self.db.rollback()
                logger.debug(f"Session {session.id} has no perfect-score hold to acknowledge")
                return Progression.NONE
            battery.round_state = battery.round_state.copy(round_kind=RoundKind.BATTERY_COMPLETE)
            phase = session.phase
            progression = self._advance(session, battery)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            error_count.labels(error_type="database").inc()
            raise
        logger.info(f"Perfect score acknowledged for session {session.id}: {progression.value}")
        self._count_progression(phase, progression)
        return progression

    def _advance(self, session: PracticeSession, battery: Battery) -> Progression:
        """BatteryComplete evaluation; writes nothing unless the session still sits on this battery."""
        if session.run_state == RunState.COMPLETED:
            return Progression.NONE
        if (session.phase, session.battery_number) != (battery.phase, battery.battery_number):
            return Progression.NONE
        if battery.round_state.round_kind != RoundKind.BATTERY_COMPLETE:
            return Progression.NONE

        if not self.is_phase_mastered(session.learner_id, session.list_id, session.phase):
            session.battery_number += 1
            logger.info(
                f"Session {session.id} moves to battery {session.battery_number} of phase {session.phase}"
            )
            return Progression.NEXT_BATTERY

        if session.phase < FINAL_PHASE:
            session.phase += 1
            session.battery_number = 1
            logger.info(f"Session {session.id} advanced to phase {session.phase}")
            return Progression.PHASE_ADVANCED

        session.run_state = RunState.COMPLETED
        session.completed_at = utcnow()
        logger.info(f"Session {session.id} completed all phases")
        return Progression.SESSION_COMPLETED

    def is_phase_mastered(self, learner_id: int, list_id: int, phase: int) -> bool:
        """Check the mastery gate for a phase of a list."""
        word_ids: List[int] = [word.id for word in self.content.get_active_words(list_id)]
        if not word_ids:
            return False
        if self.mastery_gate == MasteryGate.ENTIRE_LIST:
            statuses = self.status_service.get_statuses(learner_id, word_ids, phase)
            return all(status == WordStatus.CORRECT for status in statuses.values())
        rows = self.status_service.get_status_rows(learner_id, word_ids, phase)
        return bool(rows) and all(row.status == WordStatus.CORRECT for row in rows.values())
