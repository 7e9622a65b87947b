"""Service for composing and loading batteries."""
import logging
import random
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from vocadrill.config import settings
from vocadrill.exceptions import NoContentAvailable
from vocadrill.models.models import Battery, PracticeSession, Word, WordPhaseStatus
from vocadrill.models.practice_models import STATUS_PRIORITY, RoundState, WordStatus
from vocadrill.monitoring import batteries_composed, error_count
from vocadrill.services.content_service import ContentProvider, DatabaseContentProvider
from vocadrill.services.status_service import StatusService

logger = logging.getLogger(__name__)


class BatteryComposer:
    """Builds the next bounded drill set for a session.

    Words that need revision come first, then unseen words, then words
    already correct; within a status, words with more attempts come first and
    remaining ties follow a shuffle drawn from the injected random generator.
    """

    def __init__(
        self,
        db: Session,
        content: Optional[ContentProvider] = None,
        status_service: Optional[StatusService] = None,
        rng: Optional[random.Random] = None,
        battery_size: Optional[int] = None,
    ):
        """Initialize the composer with a database session."""
        self.db = db
        self.content = content or DatabaseContentProvider(db)
        self.status_service = status_service or StatusService(db)
        self.rng = rng or random.Random(settings.practice.seed)
        self.battery_size = battery_size or settings.practice.battery_size

    def get_battery(
        self, session_id: int, battery_number: int, phase: int, lock: bool = False
    ) -> Optional[Battery]:
        """Get the battery stored for a session position."""
        query = self.db.query(Battery).filter(
            Battery.session_id == session_id,
            Battery.battery_number == battery_number,
            Battery.phase == phase,
        )
        if lock:
            query = query.with_for_update()
        return query.populate_existing().first()

    def get_current_battery(self, session: PracticeSession, lock: bool = False) -> Optional[Battery]:
        """Get the battery for the session's current phase and battery number."""
        return self.get_battery(session.id, session.battery_number, session.phase, lock=lock)

    def get_or_compose(self, session: PracticeSession) -> Battery:
        """Return the current battery, composing it on first request."""
        battery = self.get_current_battery(session)
        if battery:
            return battery
        try:
            return self.compose(session)
        except IntegrityError:
            # Another request composed the same battery first
            self.db.rollback()
            logger.info(
                f"Battery {session.battery_number} (phase {session.phase}) of session "
                f"{session.id} was composed concurrently, loading it"
            )
            battery = self.get_current_battery(session)
            if battery is None:
                raise
            return battery

    def rank_words(self, words: List[Word], rows: dict) -> List[Word]:
        """Order words by revision priority; ties follow a seeded shuffle."""
        shuffled = list(words)
        self.rng.shuffle(shuffled)

        def priority(word: Word):
            row: Optional[WordPhaseStatus] = rows.get(word.id)
            status = row.status if row else WordStatus.UNSEEN
            total_attempts = row.total_attempts if row else 0
            return STATUS_PRIORITY[status], -total_attempts

        # sorted() is stable, so the shuffle decides the order within ties
        return sorted(shuffled, key=priority)

    def compose(self, session: PracticeSession) -> Battery:
        """Create and persist the battery for the session's current position."""
        logger.info(
            f"Composing battery {session.battery_number} for session {session.id} "
            f"(learner {session.learner_id}, list {session.list_id}, phase {session.phase})"
        )
        words = self.content.get_active_words(session.list_id)
        if not words:
            error_count.labels(error_type="no_content").inc()
            raise NoContentAvailable(session.list_id)

        rows = self.status_service.get_status_rows(
            session.learner_id, [word.id for word in words], session.phase
        )
        ranked = self.rank_words(words, rows)
        word_ids = [word.id for word in ranked[: self.battery_size]]
        logger.debug(f"Selected words: {word_ids}")

        # Multiple-choice phases need enough options, so small pools borrow
        # words from earlier batteries of the same phase
        if len(word_ids) < self.battery_size and session.battery_number > 1:
            backfill = self._previous_battery_words(session, exclude=word_ids)
            word_ids.extend(backfill[: self.battery_size - len(word_ids)])
            logger.debug(f"Words after backfill: {word_ids}")

        battery = Battery(
            session_id=session.id,
            battery_number=session.battery_number,
            phase=session.phase,
            word_ids=word_ids,
            round_data=RoundState.first_round(word_ids).to_dict(),
        )
        self.db.add(battery)
        self.db.commit()
        self.db.refresh(battery)

        batteries_composed.labels(phase=str(session.phase)).inc()
        logger.info(
            f"Created battery {battery.battery_number} for phase {battery.phase} "
            f"with {len(word_ids)} words"
        )
        return battery

    def _previous_battery_words(self, session: PracticeSession, exclude: List[int]) -> List[int]:
        """Distinct word ids of earlier batteries in the same phase, oldest first."""
        previous = (
            self.db.query(Battery)
            .filter(
                Battery.session_id == session.id,
                Battery.phase == session.phase,
                Battery.battery_number < session.battery_number,
            )
            .order_by(Battery.battery_number)
            .all()
        )
        seen = set(exclude)
        word_ids = []
        for battery in previous:
            for word_id in battery.word_ids:
                if word_id not in seen:
                    seen.add(word_id)
                    word_ids.append(word_id)
        return word_ids
