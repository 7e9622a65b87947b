"""Builds the per-word exercise shown for each drill phase."""
import logging
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from vocadrill.config import settings
from vocadrill.models.models import Word
from vocadrill.models.practice_models import Phase
from vocadrill.services.content_service import (
    ContentProvider,
    cloze_sentence,
    highlight_sentence,
)

logger = logging.getLogger(__name__)


@dataclass
class Exercise:
    """What the presentation layer shows for one word."""
    word_id: int
    phase: int
    prompt: str
    options: List[str] = field(default_factory=list)
    answer_length: Optional[int] = None


class ExerciseBuilder:
    """Builds prompts and answer options for the words of a battery."""

    def __init__(
        self,
        content: ContentProvider,
        rng: Optional[random.Random] = None,
        option_count: Optional[int] = None,
    ):
        self.content = content
        self.rng = rng or random.Random(settings.practice.seed)
        self.option_count = option_count or settings.practice.option_count

    def build_all(self, battery_words: List[Word], phase: int, list_id: int) -> Dict[int, Exercise]:
        """Exercises for every battery word, keyed by word id."""
        list_words = self.content.get_active_words(list_id) if phase != Phase.TYPED else []
        return {word.id: self.build(word, phase, battery_words, list_words) for word in battery_words}

    def build(
        self, word: Word, phase: int, battery_words: List[Word], list_words: List[Word]
    ) -> Exercise:
        if phase == Phase.CONTEXT:
            return Exercise(
                word_id=word.id,
                phase=phase,
                prompt=highlight_sentence(word.example_sentence, word.base_form),
                options=self._options(word.definition, [w.definition for w in battery_words + list_words]),
            )
        if phase == Phase.CLOZE:
            return Exercise(
                word_id=word.id,
                phase=phase,
                prompt=cloze_sentence(word.example_sentence, word.base_form),
                options=self._options(word.base_form, [w.base_form for w in battery_words + list_words]),
            )
        return Exercise(
            word_id=word.id,
            phase=phase,
            prompt=cloze_sentence(word.example_sentence, word.base_form),
            answer_length=len(word.base_form),
        )

    def _options(self, correct: str, candidates: List[str]) -> List[str]:
        # Battery words come first in candidates, so they are preferred as distractors
        options = [correct]
        for candidate in candidates:
            if len(options) >= self.option_count:
                break
            if candidate and candidate not in options:
                options.append(candidate)
        if len(options) < 2:
            logger.warning(f"Only one option available for '{correct}'")
        self.rng.shuffle(options)
        return options
