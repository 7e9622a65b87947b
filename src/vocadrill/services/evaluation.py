"""Scoring rules for each drill phase."""
import logging
from typing import Sequence, Union

from vocadrill.exceptions import InvalidAnswer
from vocadrill.models.models import Word
from vocadrill.models.practice_models import Evaluation, Phase
from vocadrill.services.autocorrect import autocorrect

logger = logging.getLogger(__name__)

Answer = Union[str, Sequence[str]]


def evaluate_answer(word: Word, phase: int, answer: Answer) -> Evaluation:
    """Score an answer for a word in the given phase.

    Phase 1 expects the chosen definition, phase 2 the chosen form. Phase 3
    expects the raw keystrokes (a string or a sequence of keys); they are
    replayed through autocorrection and only an uncorrected, complete answer
    scores as correct.
    """
    if phase in (Phase.CONTEXT, Phase.CLOZE):
        if not isinstance(answer, str):
            raise InvalidAnswer(f"Phase {phase} expects the chosen option as text")
        target = word.definition if phase == Phase.CONTEXT else word.base_form
        return Evaluation(correct=answer == target, response=answer, displayed=answer)

    if phase == Phase.TYPED:
        if isinstance(answer, str):
            keystrokes = list(answer)
        elif isinstance(answer, (list, tuple)) and all(isinstance(key, str) for key in answer):
            keystrokes = list(answer)
        else:
            raise InvalidAnswer("Phase 3 expects keystrokes as text or a list of keys")
        typed = autocorrect(word.base_form, keystrokes)
        if typed.autocorrected:
            logger.debug(f"Autocorrected '{typed.original}' to '{typed.displayed}' for word {word.id}")
        return Evaluation(
            correct=typed.is_correct(word.base_form),
            response=typed.original,
            displayed=typed.displayed,
            autocorrect_used=typed.autocorrected,
        )

    raise InvalidAnswer(f"Unknown phase {phase}")
