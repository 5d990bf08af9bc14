"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Authoring tables (quizzes, questions, answers) cascade from their quiz;
attempt tables (quiz_attempts, quiz_responses) are written once per
submission by the scoring flow.
"""

import enum
from typing import Optional
from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import Column, JSON
from datetime import datetime, timezone
from typing import List


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuestionType(str, enum.Enum):
    single_choice = "single_choice"
    multiple_choice = "multiple_choice"
    long_answer = "long_answer"

    @property
    def is_choice(self) -> bool:
        return self is not QuestionType.long_answer


class QuizStatus(str, enum.Enum):
    draft = "draft"
    published = "published"


class AttemptStatus(str, enum.Enum):
    completed = "completed"


class Category(SQLModel, table=True):
    """A quiz category shown on the landing page."""
    __tablename__ = "quiz_categories"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)


class Quiz(SQLModel, table=True):
    """A quiz owned by a creator.

    Fields:
    - `creator_id`: subject of the identity token that created the quiz
    - `status`: `draft` quizzes are only visible in the builder
    - `is_active`: inactive quizzes are hidden from respondents even when published
    - `total_attempts`: counter bumped in the same transaction as each submission
    """
    __tablename__ = "quizzes"

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: str
    category_id: Optional[int] = Field(default=None, foreign_key="quiz_categories.id", index=True)
    thumbnail_url: Optional[str] = None
    is_active: bool = True
    status: QuizStatus = Field(default=QuizStatus.draft, index=True)
    creator_id: str = Field(index=True)
    total_attempts: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    questions: List["Question"] = Relationship(
        back_populates="quiz",
        sa_relationship_kwargs={"cascade": "all, delete-orphan", "order_by": "Question.order_number"},
    )
    attempts: List["QuizAttempt"] = Relationship(
        back_populates="quiz",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


class Question(SQLModel, table=True):
    """A question belonging to a quiz.

    Choice questions own their `answers`; long answer questions keep an
    optional `reference_answer` used for manual grading only.
    """
    __tablename__ = "questions"

    id: Optional[int] = Field(default=None, primary_key=True)
    quiz_id: Optional[int] = Field(default=None, foreign_key="quizzes.id", index=True)
    question_text: str
    question_type: QuestionType = QuestionType.single_choice
    question_image_url: Optional[str] = None
    order_number: int = 1
    points: int = 1
    reference_answer: Optional[str] = None
    quiz: Optional[Quiz] = Relationship(back_populates="questions")
    answers: List["Answer"] = Relationship(
        back_populates="question",
        sa_relationship_kwargs={"cascade": "all, delete-orphan", "order_by": "Answer.order_number"},
    )


class Answer(SQLModel, table=True):
    """Possible answer for a choice `Question`.

    `is_correct` marks whether this answer is considered correct.
    """
    __tablename__ = "answers"

    id: Optional[int] = Field(default=None, primary_key=True)
    question_id: Optional[int] = Field(default=None, foreign_key="questions.id", index=True)
    answer_text: str
    answer_image_url: Optional[str] = None
    is_correct: bool = False
    order_number: int = 1
    question: Optional[Question] = Relationship(back_populates="answers")


class QuizAttempt(SQLModel, table=True):
    """One respondent's pass through a quiz with its stored score."""
    __tablename__ = "quiz_attempts"

    id: Optional[int] = Field(default=None, primary_key=True)
    quiz_id: int = Field(foreign_key="quizzes.id", index=True)
    user_id: Optional[str] = Field(default=None, index=True)
    user_full_name: str
    status: AttemptStatus = AttemptStatus.completed
    score: Optional[int] = None
    time_spent_seconds: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    quiz: Optional[Quiz] = Relationship(back_populates="attempts")
    responses: List["QuizResponse"] = Relationship(
        back_populates="attempt",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


class QuizResponse(SQLModel, table=True):
    """A single stored answer row inside a `QuizAttempt`.

    `question_id` and `answer_id` are plain references so past attempts
    survive later edits of the quiz.
    """
    __tablename__ = "quiz_responses"

    id: Optional[int] = Field(default=None, primary_key=True)
    attempt_id: Optional[int] = Field(default=None, foreign_key="quiz_attempts.id", index=True)
    question_id: int = Field(index=True)
    answer_id: Optional[int] = None
    text_response: Optional[str] = None
    is_correct: bool = False
    points_earned: int = 0
    attempt: Optional[QuizAttempt] = Relationship(back_populates="responses")


class QuizPreview(SQLModel, table=True):
    """Snapshot of an unsaved quiz form kept for the builder preview page."""
    __tablename__ = "quiz_previews"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    quiz_data: dict = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=_utcnow)
