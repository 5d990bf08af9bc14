"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (categories,
quizzes, attempts, previews). Repositories return SQLModel objects and
perform commits/refreshes where appropriate. Writes that span several
tables (a quiz with its questions, an attempt with its responses) are
committed once so a failure leaves nothing half-written.
"""

from typing import List, Optional
from sqlmodel import Session, select, col, or_
from sqlalchemy import func, update
from . import models


def _published(stmt):
    return stmt.where(
        models.Quiz.status == models.QuizStatus.published,
        models.Quiz.is_active == True,  # noqa: E712
    )


class CategoryRepository:
    """Read access to quiz categories."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, category: models.Category) -> models.Category:
        """Persist a new category and return the managed instance."""
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def get(self, category_id: int) -> Optional[models.Category]:
        return self.session.get(models.Category, category_id)

    def get_by_name(self, name: str) -> Optional[models.Category]:
        stmt = select(models.Category).where(models.Category.name == name)
        return self.session.exec(stmt).first()

    def list_all(self) -> List[models.Category]:
        """Return every category ordered by name."""
        return self.session.exec(select(models.Category).order_by(models.Category.name)).all()


class QuizRepository:
    """CRUD operations for `Quiz` aggregates (quiz, questions, answers)."""
    def __init__(self, session: Session):
        self.session = session

    def save(self, quiz: models.Quiz) -> models.Quiz:
        """Insert or update a quiz together with its question tree in one commit."""
        self.session.add(quiz)
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(quiz)
        return quiz

    def get(self, quiz_id: int) -> Optional[models.Quiz]:
        """Fetch a quiz by id regardless of status."""
        return self.session.get(models.Quiz, quiz_id)

    def get_owned(self, quiz_id: int, creator_id: str) -> Optional[models.Quiz]:
        """Fetch a quiz only if `creator_id` owns it."""
        quiz = self.get(quiz_id)
        if quiz is None or quiz.creator_id != creator_id:
            return None
        return quiz

    def get_published(self, quiz_id: int) -> Optional[models.Quiz]:
        """Fetch a quiz only if respondents may take it."""
        stmt = _published(select(models.Quiz).where(models.Quiz.id == quiz_id))
        return self.session.exec(stmt).first()

    def list_by_creator(self, creator_id: str) -> List[models.Quiz]:
        stmt = select(models.Quiz).where(models.Quiz.creator_id == creator_id).order_by(
            col(models.Quiz.created_at).desc(), col(models.Quiz.id).desc()
        )
        return self.session.exec(stmt).all()

    def list_published(self, search: Optional[str] = None, category_id: Optional[int] = None,
                       limit: Optional[int] = None) -> List[models.Quiz]:
        """Return published, active quizzes newest first.

        `search` matches title or description case-insensitively.
        """
        stmt = _published(select(models.Quiz))
        if category_id is not None:
            stmt = stmt.where(models.Quiz.category_id == category_id)
        if search and search.strip():
            pattern = f"%{search.strip().lower()}%"
            stmt = stmt.where(or_(
                func.lower(models.Quiz.title).like(pattern),
                func.lower(models.Quiz.description).like(pattern),
            ))
        stmt = stmt.order_by(col(models.Quiz.created_at).desc(), col(models.Quiz.id).desc())
        if limit:
            stmt = stmt.limit(limit)
        return self.session.exec(stmt).all()

    def list_popular(self) -> List[models.Quiz]:
        """Published, active quizzes ordered by attempt count."""
        stmt = _published(select(models.Quiz)).order_by(
            col(models.Quiz.total_attempts).desc(), col(models.Quiz.id).asc()
        )
        return self.session.exec(stmt).all()

    def delete(self, quiz: models.Quiz) -> None:
        """Delete a quiz; questions, answers, attempts and responses cascade."""
        self.session.delete(quiz)
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def get_question(self, question_id: int) -> Optional[models.Question]:
        return self.session.get(models.Question, question_id)


class AttemptRepository:
    """Persist attempts together with their response rows."""
    def __init__(self, session: Session):
        self.session = session

    def create_with_responses(self, attempt: models.QuizAttempt,
                              responses: List[models.QuizResponse], score: int) -> models.QuizAttempt:
        """Store an attempt, its responses, its score and the quiz counter atomically.

        The attempt is flushed to obtain its id, responses are attached,
        the score is set and everything is committed once. Any error
        rolls the whole unit back, so no incomplete attempt survives.
        """
        try:
            self.session.add(attempt)
            self.session.flush()
            for r in responses:
                r.attempt_id = attempt.id
                self.session.add(r)
            attempt.score = score
            self.session.exec(
                update(models.Quiz)
                .where(models.Quiz.id == attempt.quiz_id)
                .values(total_attempts=models.Quiz.total_attempts + 1)
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(attempt)
        return attempt

    def get(self, attempt_id: int) -> Optional[models.QuizAttempt]:
        return self.session.get(models.QuizAttempt, attempt_id)

    def list_responses(self, attempt_id: int) -> List[models.QuizResponse]:
        stmt = select(models.QuizResponse).where(models.QuizResponse.attempt_id == attempt_id).order_by(
            models.QuizResponse.id
        )
        return self.session.exec(stmt).all()

    def list_completed_for_quiz(self, quiz_id: int) -> List[models.QuizAttempt]:
        """Completed attempts of a quiz, newest first."""
        stmt = select(models.QuizAttempt).where(
            models.QuizAttempt.quiz_id == quiz_id,
            models.QuizAttempt.status == models.AttemptStatus.completed,
        ).order_by(col(models.QuizAttempt.created_at).desc(), col(models.QuizAttempt.id).desc())
        return self.session.exec(stmt).all()

    def list_recent_for_user(self, user_id: str, limit: int = 3) -> List[models.QuizAttempt]:
        stmt = select(models.QuizAttempt).where(
            models.QuizAttempt.user_id == user_id,
            models.QuizAttempt.status == models.AttemptStatus.completed,
        ).order_by(col(models.QuizAttempt.created_at).desc(), col(models.QuizAttempt.id).desc()).limit(limit)
        return self.session.exec(stmt).all()


class PreviewRepository:
    """Store builder preview snapshots per user."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, preview: models.QuizPreview) -> models.QuizPreview:
        self.session.add(preview)
        self.session.commit()
        self.session.refresh(preview)
        return preview

    def get_owned(self, preview_id: int, user_id: str) -> Optional[models.QuizPreview]:
        stmt = select(models.QuizPreview).where(
            models.QuizPreview.id == preview_id,
            models.QuizPreview.user_id == user_id,
        )
        return self.session.exec(stmt).first()

    def delete(self, preview: models.QuizPreview) -> None:
        self.session.delete(preview)
        self.session.commit()
