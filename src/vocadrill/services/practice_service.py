"""Practice engine facade used by the presentation layer."""
import logging
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from vocadrill.config import settings
from vocadrill.models.models import Battery, PracticeSession, Word
from vocadrill.models.practice_models import (
    MasteryGate,
    PhaseProgress,
    Progression,
    RoundState,
    RunState,
    WordStatus,
)
from vocadrill.monitoring import request_duration
from vocadrill.services.battery_service import BatteryComposer
from vocadrill.services.content_service import ContentProvider, DatabaseContentProvider
from vocadrill.services.evaluation import Answer
from vocadrill.services.exercise_service import Exercise, ExerciseBuilder
from vocadrill.services.progression_service import AttemptResult, ProgressionController
from vocadrill.services.session_service import SessionStore
from vocadrill.services.status_service import StatusService

logger = logging.getLogger(__name__)


@dataclass
class BatteryView:
    """Current battery of a session with everything needed to drill it."""
    session: PracticeSession
    battery: Optional[Battery]
    words: List[Word] = field(default_factory=list)
    statuses: Dict[int, WordStatus] = field(default_factory=dict)
    round_state: Optional[RoundState] = None
    exercises: Dict[int, Exercise] = field(default_factory=dict)

    @property
    def next_word_id(self) -> Optional[int]:
        return self.round_state.expected_word() if self.round_state else None


@dataclass
class ProgressView:
    """Per-phase status counts of a session's list."""
    session: PracticeSession
    phases: List[PhaseProgress]


class PracticeService:
    """Entry point for every learner-facing practice operation.

    Every call takes the learner id resolved by the identity collaborator and
    fails closed when the session belongs to someone else.
    """

    def __init__(
        self,
        db: Session,
        content: Optional[ContentProvider] = None,
        rng: Optional[random.Random] = None,
        mastery_gate: Optional[MasteryGate] = None,
    ):
        """Initialize the service with a database session."""
        self.db = db
        self.content = content or DatabaseContentProvider(db)
        self.rng = rng or random.Random(settings.practice.seed)
        self.sessions = SessionStore(db, self.content)
        self.status_service = StatusService(db)
        self.composer = BatteryComposer(db, self.content, self.status_service, rng=self.rng)
        self.controller = ProgressionController(
            db,
            content=self.content,
            status_service=self.status_service,
            composer=self.composer,
            mastery_gate=mastery_gate,
        )
        self.exercises = ExerciseBuilder(self.content, rng=self.rng)

    def get_or_create_session(self, learner_id: int, list_id: int) -> PracticeSession:
        """Get the learner's session for a list, creating it on first practice."""
        with request_duration.labels(operation="get_or_create_session").time():
            return self.sessions.get_or_create(learner_id, list_id)

    def get_current_battery(self, learner_id: int, session_id: int) -> BatteryView:
        """Get (composing if needed) the battery the session is working on."""
        with request_duration.labels(operation="get_current_battery").time():
            session = self.sessions.get_owned_session(learner_id, session_id)
            if session.run_state == RunState.COMPLETED:
                return BatteryView(session=session, battery=None)

            battery = self.composer.get_or_compose(session)
            words_by_id = self.content.get_words(battery.word_ids)
            words = [words_by_id[word_id] for word_id in battery.word_ids if word_id in words_by_id]
            return BatteryView(
                session=session,
                battery=battery,
                words=words,
                statuses=self.status_service.get_statuses(learner_id, battery.word_ids, battery.phase),
                round_state=battery.round_state,
                exercises=self.exercises.build_all(words, battery.phase, session.list_id),
            )

    def submit_attempt(
        self,
        learner_id: int,
        session_id: int,
        word_id: int,
        phase: int,
        battery_number: int,
        answer: Answer,
        response_time_ms: Optional[int] = None,
        submission_id: Optional[str] = None,
    ) -> AttemptResult:
        """Score and record an answer for the word the round expects."""
        with request_duration.labels(operation="submit_attempt").time():
            session = self.sessions.get_owned_session(learner_id, session_id)
            return self.controller.submit_attempt(
                session,
                word_id,
                phase,
                battery_number,
                answer,
                response_time_ms=response_time_ms,
                submission_id=submission_id,
            )

    def pause_session(self, learner_id: int, session_id: int) -> PracticeSession:
        with request_duration.labels(operation="pause_session").time():
            session = self.sessions.get_owned_session(learner_id, session_id)
            return self.sessions.pause(session)

    def resume_session(self, learner_id: int, session_id: int) -> PracticeSession:
        with request_duration.labels(operation="resume_session").time():
            session = self.sessions.get_owned_session(learner_id, session_id)
            return self.sessions.resume(session)

    def acknowledge_completion(self, learner_id: int, session_id: int) -> Progression:
        """Release a perfect-score hold; a no-op when none is pending."""
        with request_duration.labels(operation="acknowledge_completion").time():
            session = self.sessions.get_owned_session(learner_id, session_id)
            return self.controller.acknowledge_completion(session)

    def advance(self, learner_id: int, session_id: int) -> Progression:
        """Re-apply a pending battery completion, e.g. after a crash."""
        with request_duration.labels(operation="advance").time():
            session = self.sessions.get_owned_session(learner_id, session_id)
            return self.controller.progress(session)

    def get_progress(self, learner_id: int, session_id: int) -> ProgressView:
        """Count Correct / NeedsRevision / Unseen list words for each phase."""
        with request_duration.labels(operation="get_progress").time():
            session = self.sessions.get_owned_session(learner_id, session_id)
            word_ids = [word.id for word in self.content.get_active_words(session.list_id)]
            phases = []
            for phase in (1, 2, 3):
                progress = PhaseProgress(phase=phase)
                for status in self.status_service.get_statuses(learner_id, word_ids, phase).values():
                    if status == WordStatus.CORRECT:
                        progress.correct += 1
                    elif status == WordStatus.NEEDS_REVISION:
                        progress.needs_revision += 1
                    else:
                        progress.unseen += 1
                phases.append(progress)
            return ProgressView(session=session, phases=phases)
