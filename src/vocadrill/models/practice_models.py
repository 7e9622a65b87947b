"""Models for practice-related data structures."""
from dataclasses import dataclass, field, replace
from enum import Enum, IntEnum
from typing import List, Dict, Any, Optional


class Phase(IntEnum):
    """Drill modes a word list passes through in sequence."""
    CONTEXT = 1  # choose the definition for a word shown in context
    CLOZE = 2  # choose the form that fills the blank
    TYPED = 3  # type the form that fills the blank


class WordStatus(Enum):
    """Per-word, per-phase mastery marker."""
    UNSEEN = "unseen"
    CORRECT = "correct"
    NEEDS_REVISION = "needs_revision"


class RunState(Enum):
    """Run state of a practice session."""
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class BatteryState(Enum):
    """Lifecycle of a battery."""
    ACTIVE = "active"
    COMPLETED = "completed"


class RoundKind(Enum):
    """Where a battery is in its round-by-round flow."""
    FIRST_ROUND = "first_round"
    REPEAT_ROUND = "repeat_round"
    BATTERY_COMPLETE = "battery_complete"
    PERFECT_SCORE_HOLD = "perfect_score_hold"


class Progression(Enum):
    """What a completed battery led to."""
    NONE = "none"  # nothing to do, or already done
    NEXT_BATTERY = "next_battery"
    PHASE_ADVANCED = "phase_advanced"
    SESSION_COMPLETED = "session_completed"
    PERFECT_SCORE_HOLD = "perfect_score_hold"


class MasteryGate(Enum):
    """Which words must be Correct before a phase is considered mastered."""
    ENTIRE_LIST = "entire_list"
    ENCOUNTERED = "encountered"


# Composer ordering: NeedsRevision first, then Unseen, then Correct
STATUS_PRIORITY: Dict[WordStatus, int] = {
    WordStatus.NEEDS_REVISION: 0,
    WordStatus.UNSEEN: 1,
    WordStatus.CORRECT: 2,
}


@dataclass
class RoundState:
    """Serializable round/queue position of a battery.

    `order` is the FirstRound presentation order and `cursor` the index of the
    next FirstRound word. During FirstRound `queue` collects the words answered
    incorrectly; during RepeatRound it is the FIFO of words still in play.
    `flawless` stays True while every answer was correct without autocorrection.
    """
    round_kind: RoundKind
    order: List[int]
    cursor: int = 0
    queue: List[int] = field(default_factory=list)
    flawless: bool = True

    @classmethod
    def first_round(cls, word_ids: List[int]) -> "RoundState":
        """Fresh state for a battery that has not been answered yet."""
        return cls(round_kind=RoundKind.FIRST_ROUND, order=list(word_ids))

    def expected_word(self) -> Optional[int]:
        """The word the learner should be presented next, if any."""
        if self.round_kind == RoundKind.FIRST_ROUND:
            return self.order[self.cursor] if self.cursor < len(self.order) else None
        if self.round_kind == RoundKind.REPEAT_ROUND:
            return self.queue[0] if self.queue else None
        return None

    @property
    def is_finished(self) -> bool:
        return self.round_kind in (RoundKind.BATTERY_COMPLETE, RoundKind.PERFECT_SCORE_HOLD)

    def copy(self, **changes: Any) -> "RoundState":
        return replace(self, **{"order": list(self.order), "queue": list(self.queue), **changes})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "round_kind": self.round_kind.value,
            "order": list(self.order),
            "cursor": self.cursor,
            "queue": list(self.queue),
            "flawless": self.flawless,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RoundState":
        return cls(
            round_kind=RoundKind(data["round_kind"]),
            order=[int(word_id) for word_id in data.get("order", [])],
            cursor=int(data.get("cursor", 0)),
            queue=[int(word_id) for word_id in data.get("queue", [])],
            flawless=bool(data.get("flawless", True)),
        )


@dataclass
class Evaluation:
    """Outcome of scoring a single answer."""
    correct: bool
    response: str
    displayed: str
    autocorrect_used: bool = False


@dataclass
class PhaseProgress:
    """Status counts of a list's words for one phase."""
    phase: int
    correct: int = 0
    needs_revision: int = 0
    unseen: int = 0

    @property
    def total(self) -> int:
        return self.correct + self.needs_revision + self.unseen
