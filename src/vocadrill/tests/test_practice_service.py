"""End-to-end tests for the practice service."""
import random
from typing import Dict
from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from conftest import correct_answer, list_words, wrong_answer
from vocadrill.exceptions import (
    ConcurrentUpdateError,
    NotOwner,
    SessionNotActive,
    SessionNotFound,
    UnexpectedAttempt,
)
from vocadrill.models.models import Battery, PracticeSession, Word, WordAttempt, WordPhaseStatus
from vocadrill.models.practice_models import Progression, RoundKind, RunState, WordStatus
from vocadrill.services.practice_service import PracticeService


@pytest.fixture
def service(db: Session, rng: random.Random) -> PracticeService:
    return PracticeService(db, rng=rng)


def _words_by_id(db: Session, word_list) -> Dict[int, Word]:
    return {word.id: word for word in list_words(db, word_list)}


def _answer_next(service, learner_id, session_id, words, correct=True, **kwargs):
    view = service.get_current_battery(learner_id, session_id)
    word_id = view.next_word_id
    phase = view.battery.phase
    word = words[word_id]
    answer = correct_answer(word, phase) if correct else wrong_answer(word, phase)
    return service.submit_attempt(
        learner_id, session_id, word_id, phase, view.battery.battery_number, answer, **kwargs
    )


def _clear_phase(service, learner_id, session_id, words):
    """Answer every presented word correctly until the phase changes."""
    start_phase = service.get_current_battery(learner_id, session_id).session.phase
    result = None
    for _ in range(100):
        result = _answer_next(service, learner_id, session_id, words)
        if result.progression in (Progression.PHASE_ADVANCED, Progression.SESSION_COMPLETED, Progression.PERFECT_SCORE_HOLD):
            return result
    raise AssertionError(f"Phase {start_phase} did not finish")


def test_get_or_create_session_is_unique(db, service, make_word_list, learner_id) -> None:
    word_list = make_word_list(3)

    first = service.get_or_create_session(learner_id, word_list.id)
    second = service.get_or_create_session(learner_id, word_list.id)

    assert first.id == second.id
    assert (first.phase, first.battery_number, first.run_state) == (1, 1, RunState.ACTIVE)
    assert db.query(PracticeSession).count() == 1


def test_end_to_end_single_mistake_advances_phase(db, service, make_word_list, learner_id) -> None:
    word_list = make_word_list(5)
    words = _words_by_id(db, word_list)
    session = service.get_or_create_session(learner_id, word_list.id)
    view = service.get_current_battery(learner_id, session.id)
    order = list(view.round_state.order)
    assert sorted(order) == sorted(words)
    word3 = order[2]

    for position, word_id in enumerate(order):
        answer_correctly = position != 2
        word = words[word_id]
        result = service.submit_attempt(
            learner_id, session.id, word_id, 1, 1,
            correct_answer(word, 1) if answer_correctly else wrong_answer(word, 1),
        )
        assert result.accepted
        assert result.attempt_number == 1

    assert result.round_state.round_kind == RoundKind.REPEAT_ROUND
    assert result.round_state.queue == [word3]
    assert result.next_word_id == word3
    assert result.progression == Progression.NONE

    result = service.submit_attempt(learner_id, session.id, word3, 1, 1, correct_answer(words[word3], 1))

    assert result.attempt_number == 2
    assert result.updated_status == WordStatus.CORRECT
    assert result.progression == Progression.PHASE_ADVANCED
    db.refresh(session)
    assert (session.phase, session.battery_number) == (2, 1)

    status = db.query(WordPhaseStatus).filter_by(learner_id=learner_id, word_id=word3, phase=1).one()
    assert status.total_attempts == 2
    assert status.first_attempt_correct is False
    assert status.status == WordStatus.CORRECT


def test_next_battery_when_list_not_mastered(db, service, make_word_list, learner_id) -> None:
    word_list = make_word_list(7)
    words = _words_by_id(db, word_list)
    session = service.get_or_create_session(learner_id, word_list.id)

    for _ in range(5):
        result = _answer_next(service, learner_id, session.id, words)

    assert result.progression == Progression.NEXT_BATTERY
    db.refresh(session)
    assert (session.phase, session.battery_number) == (1, 2)

    view = service.get_current_battery(learner_id, session.id)
    # The two unseen words lead, Correct words fill the rest
    assert len(view.battery.word_ids) == 5
    assert view.statuses[view.battery.word_ids[0]] == WordStatus.UNSEEN
    assert view.statuses[view.battery.word_ids[1]] == WordStatus.UNSEEN


def test_progression_is_idempotent(db, service, make_word_list, learner_id) -> None:
    word_list = make_word_list(2)
    words = _words_by_id(db, word_list)
    session = service.get_or_create_session(learner_id, word_list.id)

    result = _clear_phase(service, learner_id, session.id, words)
    assert result.progression == Progression.PHASE_ADVANCED

    assert service.advance(learner_id, session.id) == Progression.NONE
    assert service.advance(learner_id, session.id) == Progression.NONE
    assert service.acknowledge_completion(learner_id, session.id) == Progression.NONE
    db.refresh(session)
    assert session.phase == 2


def test_perfect_score_holds_until_acknowledged(db, service, make_word_list, learner_id) -> None:
    word_list = make_word_list(4)
    words = _words_by_id(db, word_list)
    session = service.get_or_create_session(learner_id, word_list.id)
    _clear_phase(service, learner_id, session.id, words)
    _clear_phase(service, learner_id, session.id, words)
    db.refresh(session)
    assert session.phase == 3

    signals = []
    for _ in range(4):
        result = _answer_next(service, learner_id, session.id, words)
        signals.append(result.perfect_score_signal)

    assert signals == [False, False, False, True]
    assert result.progression == Progression.PERFECT_SCORE_HOLD
    db.refresh(session)
    assert session.run_state == RunState.ACTIVE
    assert session.completed_at is None

    assert service.advance(learner_id, session.id) == Progression.NONE
    db.refresh(session)
    assert session.run_state == RunState.ACTIVE

    assert service.acknowledge_completion(learner_id, session.id) == Progression.SESSION_COMPLETED
    db.refresh(session)
    assert session.run_state == RunState.COMPLETED
    assert session.completed_at is not None

    assert service.acknowledge_completion(learner_id, session.id) == Progression.NONE
    assert service.get_current_battery(learner_id, session.id).battery is None


def test_autocorrected_final_phase_completes_without_hold(db, service, make_word_list, learner_id) -> None:
    word_list = make_word_list(1)
    words = _words_by_id(db, word_list)
    session = service.get_or_create_session(learner_id, word_list.id)
    _clear_phase(service, learner_id, session.id, words)
    _clear_phase(service, learner_id, session.id, words)

    view = service.get_current_battery(learner_id, session.id)
    word = words[view.next_word_id]
    typo = list(word.base_form[:-1]) + ["#"]
    result = service.submit_attempt(learner_id, session.id, word.id, 3, 1, typo)
    assert result.correct is False
    assert result.autocorrect_used is True
    assert result.displayed_response == word.base_form
    assert result.updated_status == WordStatus.NEEDS_REVISION

    result = service.submit_attempt(learner_id, session.id, word.id, 3, 1, word.base_form)
    assert result.perfect_score_signal is False
    assert result.progression == Progression.SESSION_COMPLETED


def test_duplicate_submission_is_not_double_counted(db, service, make_word_list, learner_id) -> None:
    word_list = make_word_list(3)
    words = _words_by_id(db, word_list)
    session = service.get_or_create_session(learner_id, word_list.id)
    view = service.get_current_battery(learner_id, session.id)
    word = words[view.next_word_id]

    first = service.submit_attempt(learner_id, session.id, word.id, 1, 1, wrong_answer(word, 1))
    retry = service.submit_attempt(learner_id, session.id, word.id, 1, 1, wrong_answer(word, 1))

    assert first.accepted is True
    assert retry.accepted is False
    assert retry.attempt_number == first.attempt_number
    assert db.query(WordAttempt).count() == 1
    status = db.query(WordPhaseStatus).filter_by(word_id=word.id).one()
    assert status.total_attempts == 1


def test_submission_id_replays(db, service, make_word_list, learner_id) -> None:
    word_list = make_word_list(3)
    words = _words_by_id(db, word_list)
    session = service.get_or_create_session(learner_id, word_list.id)
    view = service.get_current_battery(learner_id, session.id)
    word = words[view.next_word_id]

    first = service.submit_attempt(learner_id, session.id, word.id, 1, 1, correct_answer(word, 1), submission_id="abc")
    _answer_next(service, learner_id, session.id, words)
    retry = service.submit_attempt(learner_id, session.id, word.id, 1, 1, correct_answer(word, 1), submission_id="abc")

    assert retry.accepted is False
    assert retry.attempt_number == first.attempt_number
    assert db.query(WordAttempt).count() == 2


def test_unexpected_word_is_rejected(db, service, make_word_list, learner_id) -> None:
    word_list = make_word_list(3)
    words = _words_by_id(db, word_list)
    session = service.get_or_create_session(learner_id, word_list.id)
    view = service.get_current_battery(learner_id, session.id)
    other = next(word_id for word_id in view.battery.word_ids if word_id != view.next_word_id)

    with pytest.raises(UnexpectedAttempt):
        service.submit_attempt(learner_id, session.id, other, 1, 1, correct_answer(words[other], 1))
    with pytest.raises(UnexpectedAttempt):
        service.submit_attempt(learner_id, session.id, view.next_word_id, 2, 1, "anything")
    assert db.query(WordAttempt).count() == 0


def test_pause_and_resume_keep_position(db, service, make_word_list, learner_id) -> None:
    word_list = make_word_list(4)
    words = _words_by_id(db, word_list)
    session = service.get_or_create_session(learner_id, word_list.id)
    _answer_next(service, learner_id, session.id, words, correct=False)
    before = service.get_current_battery(learner_id, session.id)
    next_word = before.next_word_id

    paused = service.pause_session(learner_id, session.id)
    assert paused.run_state == RunState.PAUSED
    with pytest.raises(SessionNotActive):
        service.submit_attempt(learner_id, session.id, next_word, 1, 1, correct_answer(words[next_word], 1))

    resumed = service.resume_session(learner_id, session.id)
    assert resumed.run_state == RunState.ACTIVE
    after = service.get_current_battery(learner_id, session.id)
    assert after.battery.id == before.battery.id
    assert after.round_state == before.round_state
    assert (resumed.phase, resumed.battery_number) == (1, 1)
    assert db.query(Battery).count() == 1


def test_other_learner_is_rejected(db, service, make_word_list, learner_id) -> None:
    word_list = make_word_list(3)
    session = service.get_or_create_session(learner_id, word_list.id)
    intruder = learner_id + 1

    with pytest.raises(NotOwner) as not_owner:
        service.get_current_battery(intruder, session.id)
    with pytest.raises(NotOwner):
        service.pause_session(intruder, session.id)
    with pytest.raises(SessionNotFound):
        service.get_current_battery(learner_id, session.id + 100)

    assert str(not_owner.value) == str(SessionNotFound(session.id))

    db.refresh(session)
    assert session.run_state == RunState.ACTIVE
    assert db.query(Battery).count() == 0


def test_progress_summary(db, service, make_word_list, learner_id) -> None:
    word_list = make_word_list(6)
    words = _words_by_id(db, word_list)
    session = service.get_or_create_session(learner_id, word_list.id)
    _answer_next(service, learner_id, session.id, words)
    _answer_next(service, learner_id, session.id, words, correct=False)

    progress = service.get_progress(learner_id, session.id)

    phase_one = progress.phases[0]
    assert (phase_one.correct, phase_one.needs_revision, phase_one.unseen) == (1, 1, 4)
    assert progress.phases[1].unseen == 6
    assert progress.phases[2].total == 6


def test_exercises_offer_options(db, service, make_word_list, learner_id) -> None:
    word_list = make_word_list(6)
    words = _words_by_id(db, word_list)
    session = service.get_or_create_session(learner_id, word_list.id)

    view = service.get_current_battery(learner_id, session.id)

    for word_id, exercise in view.exercises.items():
        word = words[word_id]
        assert len(exercise.options) == 5
        assert word.definition in exercise.options
        assert word.base_form.upper() in exercise.prompt


def _single_word_repeat_round(service, learner_id, session_id, words):
    """Leave the first word of the battery alone in the repeat queue."""
    view = service.get_current_battery(learner_id, session_id)
    first, second = view.round_state.order
    service.submit_attempt(learner_id, session_id, first, 1, 1, wrong_answer(words[first], 1))
    result = service.submit_attempt(learner_id, session_id, second, 1, 1, correct_answer(words[second], 1))
    assert result.round_state.queue == [first]
    return words[first]


def test_retry_of_requeued_word_is_not_double_counted(db, service, make_word_list, learner_id) -> None:
    word_list = make_word_list(2)
    words = _words_by_id(db, word_list)
    session = service.get_or_create_session(learner_id, word_list.id)
    word = _single_word_repeat_round(service, learner_id, session.id, words)

    first = service.submit_attempt(learner_id, session.id, word.id, 1, 1, wrong_answer(word, 1))
    retry = service.submit_attempt(learner_id, session.id, word.id, 1, 1, wrong_answer(word, 1))

    assert first.accepted is True
    assert first.attempt_number == 2
    assert retry.accepted is False
    assert retry.attempt_number == 2
    assert retry.round_state.queue == [word.id]
    status = db.query(WordPhaseStatus).filter_by(learner_id=learner_id, word_id=word.id, phase=1).one()
    assert status.total_attempts == 2
    assert db.query(WordAttempt).filter_by(word_id=word.id).count() == 2


def test_new_submission_id_counts_repeated_answer(db, service, make_word_list, learner_id) -> None:
    word_list = make_word_list(2)
    words = _words_by_id(db, word_list)
    session = service.get_or_create_session(learner_id, word_list.id)
    word = _single_word_repeat_round(service, learner_id, session.id, words)

    service.submit_attempt(learner_id, session.id, word.id, 1, 1, wrong_answer(word, 1), submission_id="first")
    again = service.submit_attempt(learner_id, session.id, word.id, 1, 1, wrong_answer(word, 1), submission_id="second")

    assert again.accepted is True
    assert again.attempt_number == 3
    status = db.query(WordPhaseStatus).filter_by(learner_id=learner_id, word_id=word.id, phase=1).one()
    assert status.total_attempts == 3


def test_write_conflict_is_retried(db, service, make_word_list, learner_id) -> None:
    """A unique-constraint violation rolls back and the whole unit runs again."""
    word_list = make_word_list(3)
    words = _words_by_id(db, word_list)
    session = service.get_or_create_session(learner_id, word_list.id)
    view = service.get_current_battery(learner_id, session.id)
    word = words[view.next_word_id]

    conflict = IntegrityError("INSERT INTO word_attempts", {}, Exception("UNIQUE constraint failed"))
    with patch.object(service.status_service, "next_attempt_number", side_effect=[conflict, 1]):
        result = service.submit_attempt(learner_id, session.id, word.id, 1, 1, correct_answer(word, 1))

    assert result.accepted is True
    assert result.attempt_number == 1
    assert db.query(WordAttempt).count() == 1
    status = db.query(WordPhaseStatus).filter_by(learner_id=learner_id, word_id=word.id, phase=1).one()
    assert status.total_attempts == 1
    assert service.get_current_battery(learner_id, session.id).round_state.cursor == 1


def test_persistent_write_conflict_raises(db, service, make_word_list, learner_id) -> None:
    word_list = make_word_list(3)
    words = _words_by_id(db, word_list)
    session = service.get_or_create_session(learner_id, word_list.id)
    view = service.get_current_battery(learner_id, session.id)
    word = words[view.next_word_id]

    conflict = IntegrityError("INSERT INTO word_attempts", {}, Exception("UNIQUE constraint failed"))
    with patch.object(service.status_service, "next_attempt_number", side_effect=conflict) as numbering:
        with pytest.raises(ConcurrentUpdateError):
            service.submit_attempt(learner_id, session.id, word.id, 1, 1, correct_answer(word, 1))

    assert numbering.call_count == service.controller.write_retries
    assert db.query(WordAttempt).count() == 0
    assert db.query(WordPhaseStatus).count() == 0
    assert service.get_current_battery(learner_id, session.id).round_state.cursor == 0
