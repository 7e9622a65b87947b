"""Read-only access to word lists owned by the content collaborator."""
import logging
import re
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from vocadrill.models.models import Word, WordList

logger = logging.getLogger(__name__)

MARKER_PATTERN = re.compile(r"\*([^*]+)\*")
BLANK = "_____"


class ContentProvider(ABC):
    """Source of the active words of a word list."""

    @abstractmethod
    def list_exists(self, list_id: int) -> bool:
        """Return True if the list exists."""
        raise NotImplementedError

    @abstractmethod
    def get_active_words(self, list_id: int) -> List[Word]:
        """Return all active words of the list."""
        raise NotImplementedError

    @abstractmethod
    def get_words(self, word_ids: List[int]) -> Dict[int, Word]:
        """Return the requested words keyed by id."""
        raise NotImplementedError


class DatabaseContentProvider(ContentProvider):
    """Content provider reading the words and word_lists tables."""

    def __init__(self, db: Session):
        """Initialize the provider with a database session."""
        self.db = db

    def list_exists(self, list_id: int) -> bool:
        return self.db.query(WordList.id).filter(WordList.id == list_id).first() is not None

    def get_active_words(self, list_id: int) -> List[Word]:
        return (
            self.db.query(Word)
            .filter(Word.list_id == list_id, Word.is_active == True)  # noqa: E712
            .order_by(Word.id)
            .all()
        )

    def get_words(self, word_ids: List[int]) -> Dict[int, Word]:
        if not word_ids:
            return {}
        words = self.db.query(Word).filter(Word.id.in_(word_ids)).all()
        return {word.id: word for word in words}


def _find_form(sentence: str, form: str) -> Optional[re.Match]:
    marked = MARKER_PATTERN.search(sentence)
    if marked:
        return marked
    # Unmarked sentences: fall back to the first case-insensitive occurrence
    return re.search(re.escape(form), sentence, flags=re.IGNORECASE) if form else None


def highlight_sentence(sentence: Optional[str], form: str) -> str:
    """Render the example sentence with the target form in upper case."""
    if not sentence:
        return form
    match = _find_form(sentence, form)
    if not match:
        return sentence
    found = match.group(1) if match.re is MARKER_PATTERN else match.group(0)
    return sentence[:match.start()] + found.upper() + sentence[match.end():]


def cloze_sentence(sentence: Optional[str], form: str) -> str:
    """Render the example sentence with the target form blanked out."""
    if not sentence:
        return BLANK
    match = _find_form(sentence, form)
    if not match:
        logger.warning(f"Form '{form}' not found in example sentence: {sentence}")
        return f"{sentence} ({BLANK})"
    return sentence[:match.start()] + BLANK + sentence[match.end():]


def strip_markers(sentence: Optional[str]) -> str:
    """Remove the asterisk markers from an example sentence."""
    if not sentence:
        return ""
    return MARKER_PATTERN.sub(r"\1", sentence)
