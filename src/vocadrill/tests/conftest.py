"""Test configuration."""
import os
import random
from typing import Callable, Generator, List

import pytest
from faker import Faker
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

# Set test environment before any imports
os.environ["ENV"] = "test"

# Import after environment setup
from vocadrill.models.base import init_db  # noqa: E402
from vocadrill.models.models import Word, WordList  # noqa: E402

fake = Faker()


@pytest.fixture
def db(tmp_path) -> Generator[Session, None, None]:
    """Create a fresh database for each test."""
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(bind=engine)
    db = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()


@pytest.fixture
def rng() -> random.Random:
    """Seeded random generator for reproducible batteries."""
    return random.Random(1234)


@pytest.fixture
def learner_id() -> int:
    return fake.random_int(min=1, max=10_000)


@pytest.fixture
def make_word_list(db: Session) -> Callable[[int], WordList]:
    """Factory creating a word list with the given number of active words."""

    def _make(size: int) -> WordList:
        word_list = WordList(title=fake.sentence(nb_words=3), theme=fake.word())
        db.add(word_list)
        db.flush()
        for index in range(size):
            form = f"{fake.word()}{index}"
            db.add(
                Word(
                    list_id=word_list.id,
                    base_form=form,
                    definition=f"definition {index} of {form}",
                    example_sentence=f"We saw the *{form}* yesterday.",
                    is_active=True,
                )
            )
        db.commit()
        db.refresh(word_list)
        return word_list

    return _make


def list_words(db: Session, word_list: WordList) -> List[Word]:
    return db.query(Word).filter(Word.list_id == word_list.id).order_by(Word.id).all()


def correct_answer(word: Word, phase: int) -> str:
    """The answer that scores as correct for a word in a phase."""
    return word.definition if phase == 1 else word.base_form


def wrong_answer(word: Word, phase: int) -> str:
    if phase == 1:
        return "not the definition"
    return word.base_form + "x"
