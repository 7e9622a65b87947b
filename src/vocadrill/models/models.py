"""Database models for the practice engine."""
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from vocadrill.models.base import Base, TimestampMixin
from vocadrill.models.practice_models import (
    BatteryState,
    RoundState,
    RunState,
    WordStatus,
)


def _enum_column(enum_cls, **kwargs) -> Column:
    """Enum column stored by value as a plain string."""
    return Column(
        Enum(
            enum_cls,
            values_callable=lambda members: [member.value for member in members],
            native_enum=False,
            validate_strings=True,
            length=32,
        ),
        **kwargs,
    )


class WordList(Base, TimestampMixin):
    """Word list owned by the content collaborator."""

    __tablename__ = "word_lists"

    id = Column(Integer, primary_key=True)
    title = Column(String, nullable=False)
    theme = Column(String)

    # Relationships
    words = relationship("Word", back_populates="word_list")


class Word(Base, TimestampMixin):
    """Word model."""

    __tablename__ = "words"

    id = Column(Integer, primary_key=True)
    list_id = Column(Integer, ForeignKey("word_lists.id"), nullable=False, index=True)
    base_form = Column(String, nullable=False)
    definition = Column(Text, nullable=False)
    example_sentence = Column(Text)  # target form wrapped in asterisks, e.g. "The *cat* sat."
    is_active = Column(Boolean, default=True, nullable=False)

    # Relationships
    word_list = relationship("WordList", back_populates="words")


class PracticeSession(Base, TimestampMixin):
    """A learner's position within one word list."""

    __tablename__ = "practice_sessions"
    __table_args__ = (
        UniqueConstraint("learner_id", "list_id", name="uq_session_learner_list"),
    )

    id = Column(Integer, primary_key=True)
    learner_id = Column(Integer, nullable=False, index=True)
    list_id = Column(Integer, ForeignKey("word_lists.id"), nullable=False)
    phase = Column(Integer, default=1, nullable=False)
    battery_number = Column(Integer, default=1, nullable=False)
    run_state = _enum_column(RunState, default=RunState.ACTIVE, nullable=False)
    completed_at = Column(DateTime(timezone=True))

    # Relationships
    batteries = relationship("Battery", back_populates="session")
    attempts = relationship("WordAttempt", back_populates="session")

    def __repr__(self) -> str:
        return (
            f"<PracticeSession id={self.id} learner={self.learner_id} list={self.list_id} "
            f"phase={self.phase} battery={self.battery_number} state={self.run_state}>"
        )


class Battery(Base, TimestampMixin):
    """A bounded drill set for one (battery_number, phase) of a session."""

    __tablename__ = "batteries"
    __table_args__ = (
        UniqueConstraint("session_id", "battery_number", "phase", name="uq_battery_position"),
    )

    id = Column(Integer, primary_key=True)
    session_id = Column(Integer, ForeignKey("practice_sessions.id"), nullable=False, index=True)
    battery_number = Column(Integer, nullable=False)
    phase = Column(Integer, nullable=False)
    word_ids = Column(JSON, nullable=False)
    state = _enum_column(BatteryState, default=BatteryState.ACTIVE, nullable=False)
    round_data = Column(JSON, nullable=False)
    completed_at = Column(DateTime(timezone=True))

    # Relationships
    session = relationship("PracticeSession", back_populates="batteries")

    @property
    def round_state(self) -> RoundState:
        return RoundState.from_dict(self.round_data)

    @round_state.setter
    def round_state(self, value: RoundState) -> None:
        # JSON columns only detect reassignment, never in-place mutation
        self.round_data = value.to_dict()

    def __repr__(self) -> str:
        return (
            f"<Battery id={self.id} session={self.session_id} number={self.battery_number} "
            f"phase={self.phase} words={self.word_ids} state={self.state}>"
        )


class WordAttempt(Base, TimestampMixin):
    """Immutable record of one answer attempt."""

    __tablename__ = "word_attempts"
    __table_args__ = (
        UniqueConstraint(
            "session_id", "word_id", "phase", "battery_number", "attempt_number",
            name="uq_attempt_number",
        ),
        UniqueConstraint("session_id", "submission_id", name="uq_attempt_submission"),
    )

    id = Column(Integer, primary_key=True)
    session_id = Column(Integer, ForeignKey("practice_sessions.id"), nullable=False, index=True)
    word_id = Column(Integer, ForeignKey("words.id"), nullable=False)
    phase = Column(Integer, nullable=False)
    battery_number = Column(Integer, nullable=False)
    attempt_number = Column(Integer, nullable=False)
    is_correct = Column(Boolean, nullable=False)
    response_given = Column(Text, nullable=False)
    displayed_response = Column(Text)
    autocorrect_used = Column(Boolean, default=False, nullable=False)
    response_time_ms = Column(Integer)
    submission_id = Column(String(64))  # optional client idempotency key
    attempted_at = Column(DateTime(timezone=True), nullable=False)

    # Relationships
    session = relationship("PracticeSession", back_populates="attempts")


class WordPhaseStatus(Base, TimestampMixin):
    """Mastery status of a word for a learner in one phase."""

    __tablename__ = "word_phase_statuses"
    __table_args__ = (
        UniqueConstraint("learner_id", "word_id", "phase", name="uq_status_learner_word_phase"),
    )

    id = Column(Integer, primary_key=True)
    learner_id = Column(Integer, nullable=False, index=True)
    word_id = Column(Integer, ForeignKey("words.id"), nullable=False)
    phase = Column(Integer, nullable=False)
    status = _enum_column(WordStatus, default=WordStatus.UNSEEN, nullable=False)
    first_attempt_correct = Column(Boolean)
    total_attempts = Column(Integer, default=0, nullable=False)
    last_attempt_at = Column(DateTime(timezone=True))
