import os
import tempfile
from pathlib import Path

import pytest

# Point the app at a throwaway SQLite file before `quizbuilder` is imported.
_DB_FILE = Path(tempfile.gettempdir()) / f"quizbuilder-test-{os.getpid()}.db"
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_FILE}"
os.environ["ENV"] = "dev"
os.environ["JWT_SECRET"] = "quizbuilder-test-secret-with-enough-length-for-hs256"

from sqlmodel import Session  # noqa: E402

from quizbuilder import models  # noqa: E402
from quizbuilder.auth import create_access_token  # noqa: E402
from quizbuilder.database import create_db_and_tables, drop_db_and_tables, engine  # noqa: E402


@pytest.fixture(autouse=True)
def reset_db():
    """Give every test empty tables."""
    drop_db_and_tables()
    create_db_and_tables()
    yield


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    from quizbuilder import main
    main._attempt_rate_limiter.reset()
    yield


@pytest.fixture
def session():
    with Session(engine) as s:
        yield s


@pytest.fixture
def category_id(session):
    c = models.Category(name="Science")
    session.add(c)
    session.commit()
    session.refresh(c)
    return c.id


def auth_headers(user_id: str = "creator-1", **claims) -> dict:
    return {'Authorization': f'Bearer {create_access_token(user_id, **claims)}'}


@pytest.fixture
def creator_headers():
    return auth_headers("creator-1", email="creator@example.com")


@pytest.fixture
def other_headers():
    return auth_headers("creator-2")


def quiz_payload(category_id, status="published", **overrides):
    """Quiz with one single choice, one multiple choice and one long answer question."""
    payload = {
        'title': 'Planets',
        'description': 'How well do you know the solar system?',
        'category_id': category_id,
        'is_active': True,
        'status': status,
        'questions': [
            {
                'question_text': 'Largest planet?',
                'question_type': 'single_choice',
                'points': 10,
                'answers': [
                    {'answer_text': 'Jupiter', 'is_correct': True},
                    {'answer_text': 'Mars', 'is_correct': False},
                ],
            },
            {
                'question_text': 'Which are gas giants?',
                'question_type': 'multiple_choice',
                'points': 10,
                'answers': [
                    {'answer_text': 'Saturn', 'is_correct': True},
                    {'answer_text': 'Jupiter', 'is_correct': True},
                    {'answer_text': 'Venus', 'is_correct': False},
                ],
            },
            {
                'question_text': 'Describe a black hole.',
                'question_type': 'long_answer',
                'points': 5,
                'reference_answer': 'A region of spacetime nothing escapes from.',
            },
        ],
    }
    payload.update(overrides)
    return payload
