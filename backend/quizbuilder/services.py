"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories
and the pure helpers in `utils`. Services perform validation, execute
domain logic and persist aggregates via repositories. They raise the
domain errors below; controllers translate them to HTTP responses.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional
from sqlmodel import Session
from . import models, repositories
from .auth import SessionContext
from .schemas import AttemptIn, QuizIn
from .utils import ordering
from .utils.scoring import SubmissionError, grade_submission, index_submissions, reconstruct_attempt
from .utils.validation import validate_quiz

logger = logging.getLogger("quizbuilder.services")

__all__ = [
    "NotFoundError", "AuthoringValidationError", "SubmissionError",
    "CategoryService", "QuizService", "AttemptService", "StatsService", "PreviewService",
]


class NotFoundError(LookupError):
    """The requested object does not exist or is not visible to the caller."""


class AuthoringValidationError(ValueError):
    """A quiz definition failed the authoring checks.

    `errors` is the per-field list produced by `validate_quiz`.
    """
    def __init__(self, errors: List[dict]):
        super().__init__(f"{len(errors)} validation error(s)")
        self.errors = errors


def quiz_summary(quiz: models.Quiz) -> dict:
    """Card-sized representation used in listings."""
    return {
        'id': quiz.id,
        'title': quiz.title,
        'description': quiz.description,
        'category_id': quiz.category_id,
        'thumbnail_url': quiz.thumbnail_url,
        'is_active': quiz.is_active,
        'status': quiz.status.value,
        'created_at': quiz.created_at.isoformat(),
        'question_count': len(quiz.questions),
        'total_attempts': quiz.total_attempts,
    }


def quiz_detail(quiz: models.Quiz, include_solutions: bool) -> dict:
    """Full quiz tree. Correct flags and reference answers only when `include_solutions`."""
    out = quiz_summary(quiz)
    questions = []
    for q in ordering.sort_by_order(quiz.questions):
        qd = {
            'id': q.id,
            'question_text': q.question_text,
            'question_type': q.question_type.value,
            'question_image_url': q.question_image_url,
            'order_number': q.order_number,
            'points': q.points,
            'answers': [],
        }
        for a in ordering.sort_by_order(q.answers):
            ad = {
                'id': a.id,
                'answer_text': a.answer_text,
                'answer_image_url': a.answer_image_url,
                'order_number': a.order_number,
            }
            if include_solutions:
                ad['is_correct'] = a.is_correct
            qd['answers'].append(ad)
        if include_solutions:
            qd['reference_answer'] = q.reference_answer
        questions.append(qd)
    out['questions'] = questions
    return out


class CategoryService:
    """Category listings for the landing and category pages."""
    def __init__(self, session: Session):
        self.session = session
        self.category_repo = repositories.CategoryRepository(session)
        self.quiz_repo = repositories.QuizRepository(session)

    def list_categories(self) -> List[dict]:
        return [{'id': c.id, 'name': c.name} for c in self.category_repo.list_all()]

    def popular(self, max_categories: int = 4, per_category: int = 4) -> List[dict]:
        """Categories with published quizzes, each with its most attempted quizzes.

        Categories without any published quiz are skipped.
        """
        quizzes = self.quiz_repo.list_popular()
        out = []
        for c in self.category_repo.list_all():
            picked = [q for q in quizzes if q.category_id == c.id][:per_category]
            if picked:
                out.append({'id': c.id, 'name': c.name, 'quizzes': [quiz_summary(q) for q in picked]})
            if len(out) >= max_categories:
                break
        return out

    def quizzes_for_category(self, category_id: int) -> dict:
        category = self.category_repo.get(category_id)
        if not category:
            raise NotFoundError(f"category not found: {category_id}")
        quizzes = self.quiz_repo.list_published(category_id=category_id)
        return {'id': category.id, 'name': category.name, 'quizzes': [quiz_summary(q) for q in quizzes]}


class QuizService:
    """Create, edit, reorder and delete quizzes for their creator."""
    def __init__(self, session: Session):
        self.session = session
        self.quiz_repo = repositories.QuizRepository(session)
        self.category_repo = repositories.CategoryRepository(session)

    def _validate(self, payload: QuizIn):
        category_exists = payload.category_id is not None and self.category_repo.get(payload.category_id) is not None
        errors = validate_quiz(payload, category_exists=category_exists)
        if errors:
            raise AuthoringValidationError(errors)

    @staticmethod
    def _reuse(existing: dict, item_id: Optional[int], factory):
        # Each stored row is claimed at most once; unknown or repeated ids get a new row.
        row = existing.pop(item_id, None) if item_id is not None else None
        return row if row is not None else factory()

    def _build_questions(self, payload: QuizIn,
                         current: Optional[List[models.Question]] = None) -> List[models.Question]:
        """Turn payload questions into rows with dense order numbers.

        Client order numbers only decide the relative order; the stored
        numbers are always re-derived as 1..n. Questions and answers whose
        `id` matches a row in `current` update that row in place, so
        attempts recorded against them still line up on review and in
        stats. Rows left unclaimed are deleted with the old tree.
        """
        stored_questions = {q.id: q for q in current or []}
        questions = []
        for qin in ordering.sort_by_order(payload.questions):
            q = self._reuse(stored_questions, qin.id, models.Question)
            stored_answers = {a.id: a for a in q.answers}
            q.question_text = qin.question_text.strip()
            q.question_type = qin.question_type
            q.question_image_url = qin.question_image_url or None
            q.points = qin.points
            q.reference_answer = (
                (qin.reference_answer or None) if qin.question_type == models.QuestionType.long_answer else None
            )
            answers = []
            if qin.question_type.is_choice:
                for ain in ordering.sort_by_order(qin.answers):
                    a = self._reuse(stored_answers, ain.id, models.Answer)
                    a.answer_text = ain.answer_text.strip()
                    a.answer_image_url = ain.answer_image_url or None
                    a.is_correct = ain.is_correct
                    answers.append(a)
            q.answers = ordering.renumber(answers)
            questions.append(q)
        return ordering.renumber(questions)

    def create(self, session_ctx: SessionContext, payload: QuizIn) -> models.Quiz:
        """Validate and store a new quiz (draft or published)."""
        self._validate(payload)
        quiz = models.Quiz(
            title=payload.title.strip(),
            description=payload.description.strip(),
            category_id=payload.category_id,
            thumbnail_url=payload.thumbnail_url or None,
            is_active=payload.is_active,
            status=payload.status,
            creator_id=session_ctx.user_id,
        )
        quiz.questions = self._build_questions(payload)
        quiz = self.quiz_repo.save(quiz)
        logger.info("quiz_created id=%s creator=%s status=%s questions=%d",
                    quiz.id, quiz.creator_id, quiz.status.value, len(quiz.questions))
        return quiz

    def get_owned(self, session_ctx: SessionContext, quiz_id: int) -> models.Quiz:
        quiz = self.quiz_repo.get_owned(quiz_id, session_ctx.user_id)
        if not quiz:
            raise NotFoundError(f"quiz not found: {quiz_id}")
        return quiz

    def list_owned(self, session_ctx: SessionContext) -> List[models.Quiz]:
        return self.quiz_repo.list_by_creator(session_ctx.user_id)

    def update(self, session_ctx: SessionContext, quiz_id: int, payload: QuizIn) -> models.Quiz:
        """Replace a quiz definition.

        Questions and answers sent back with their `id` keep their rows;
        new ones are inserted and missing ones deleted. A question whose
        id is dropped shows as unanswered when older attempts are reviewed
        and restarts its per-question stats; stored scores never change.
        """
        quiz = self.get_owned(session_ctx, quiz_id)
        self._validate(payload)
        quiz.title = payload.title.strip()
        quiz.description = payload.description.strip()
        quiz.category_id = payload.category_id
        quiz.thumbnail_url = payload.thumbnail_url or None
        quiz.is_active = payload.is_active
        quiz.status = payload.status
        quiz.updated_at = datetime.now(timezone.utc)
        quiz.questions = self._build_questions(payload, current=list(quiz.questions))
        quiz = self.quiz_repo.save(quiz)
        logger.info("quiz_updated id=%s status=%s questions=%d", quiz.id, quiz.status.value, len(quiz.questions))
        return quiz

    def delete(self, session_ctx: SessionContext, quiz_id: int) -> None:
        quiz = self.get_owned(session_ctx, quiz_id)
        self.quiz_repo.delete(quiz)
        logger.info("quiz_deleted id=%s creator=%s", quiz_id, session_ctx.user_id)

    def reorder_questions(self, session_ctx: SessionContext, quiz_id: int, question_ids: List[int]) -> models.Quiz:
        quiz = self.get_owned(session_ctx, quiz_id)
        quiz.questions = ordering.apply_id_order(quiz.questions, question_ids)
        return self.quiz_repo.save(quiz)

    def reorder_answers(self, session_ctx: SessionContext, question_id: int, answer_ids: List[int]) -> models.Question:
        question = self.quiz_repo.get_question(question_id)
        if not question or not question.quiz or question.quiz.creator_id != session_ctx.user_id:
            raise NotFoundError(f"question not found: {question_id}")
        question.answers = ordering.apply_id_order(question.answers, answer_ids)
        self.quiz_repo.save(question.quiz)
        return question

    def get_published(self, quiz_id: int) -> models.Quiz:
        quiz = self.quiz_repo.get_published(quiz_id)
        if not quiz:
            raise NotFoundError(f"quiz not found: {quiz_id}")
        return quiz

    def list_published(self, search: Optional[str] = None, category_id: Optional[int] = None) -> List[models.Quiz]:
        return self.quiz_repo.list_published(search=search, category_id=category_id)


class AttemptService:
    """Grade submissions and rebuild stored attempts for review."""
    def __init__(self, session: Session):
        self.session = session
        self.quiz_repo = repositories.QuizRepository(session)
        self.attempt_repo = repositories.AttemptRepository(session)

    def submit(self, quiz_id: int, payload: AttemptIn, session_ctx: Optional[SessionContext] = None) -> dict:
        """Grade `payload` against a published quiz and store the attempt.

        Returns `{'attempt_id', 'score'}`. Raises `NotFoundError` when the
        quiz cannot be taken and `SubmissionError` when the answers do not
        fit the quiz; nothing is written in either case.
        """
        quiz = self.quiz_repo.get_published(quiz_id)
        if not quiz:
            raise NotFoundError(f"quiz not found: {quiz_id}")
        name = payload.user_full_name.strip()
        if not name:
            raise SubmissionError("user_full_name is required")
        graded = grade_submission(quiz, index_submissions(payload.answers))

        now = datetime.now(timezone.utc)
        attempt = models.QuizAttempt(
            quiz_id=quiz.id,
            user_id=session_ctx.user_id if session_ctx else None,
            user_full_name=name,
            status=models.AttemptStatus.completed,
            time_spent_seconds=payload.time_spent_seconds,
            created_at=now,
            completed_at=now,
        )
        rows = [
            models.QuizResponse(
                question_id=r.question_id,
                answer_id=r.answer_id,
                text_response=r.text_response,
                is_correct=r.is_correct,
                points_earned=r.points_earned,
            )
            for r in graded.responses
        ]
        try:
            created = self.attempt_repo.create_with_responses(attempt, rows, graded.score)
        except Exception:
            logger.exception("attempt_store_failed quiz=%s responses=%d", quiz.id, len(rows))
            raise
        logger.info("attempt_submitted quiz=%s attempt=%s score=%s earned=%s/%s",
                    quiz.id, created.id, created.score, graded.earned_points, graded.total_points)
        return {'attempt_id': created.id, 'score': created.score}

    def review(self, quiz_id: int, attempt_id: int, session_ctx: Optional[SessionContext] = None) -> dict:
        """Per-question review of a stored attempt.

        The score shown is the stored score; per-question correctness is
        re-derived from the response rows for highlighting. An attempt
        linked to a user is only visible to that user and to the quiz
        creator; anonymous attempts are reachable by anyone holding the link.
        """
        quiz = self.quiz_repo.get(quiz_id)
        attempt = self.attempt_repo.get(attempt_id)
        if not quiz or not attempt or attempt.quiz_id != quiz.id:
            raise NotFoundError(f"attempt not found: {attempt_id}")
        if attempt.user_id is not None:
            viewer = session_ctx.user_id if session_ctx else None
            if viewer not in (attempt.user_id, quiz.creator_id):
                raise NotFoundError(f"attempt not found: {attempt_id}")
        reviews = reconstruct_attempt(quiz, self.attempt_repo.list_responses(attempt.id))
        return {
            'attempt_id': attempt.id,
            'quiz_id': quiz.id,
            'quiz_title': quiz.title,
            'user_full_name': attempt.user_full_name,
            'score': attempt.score,
            'created_at': attempt.created_at.isoformat(),
            'questions': [
                {
                    'question_id': r.question_id,
                    'question_type': r.question_type.value,
                    'points': r.points,
                    'answered': r.answered,
                    'is_correct': r.is_correct,
                    'points_earned': r.points_earned,
                    'answer_id': r.answer_id,
                    'answer_ids': r.answer_ids,
                    'text_response': r.text_response,
                    'correct_answer_ids': r.correct_answer_ids,
                }
                for r in reviews
            ],
        }

    def recent_for_user(self, session_ctx: SessionContext, limit: int = 3) -> List[dict]:
        out = []
        for a in self.attempt_repo.list_recent_for_user(session_ctx.user_id, limit=limit):
            quiz = self.quiz_repo.get(a.quiz_id)
            out.append({
                'attempt_id': a.id,
                'score': a.score,
                'created_at': a.created_at.isoformat(),
                'quiz': quiz_summary(quiz) if quiz else None,
            })
        return out


class StatsService:
    """Aggregate statistics over a quiz's attempts for its creator."""
    def __init__(self, session: Session):
        self.session = session
        self.quiz_repo = repositories.QuizRepository(session)
        self.attempt_repo = repositories.AttemptRepository(session)

    def quiz_stats(self, session_ctx: SessionContext, quiz_id: int) -> dict:
        quiz = self.quiz_repo.get_owned(quiz_id, session_ctx.user_id)
        if not quiz:
            raise NotFoundError(f"quiz not found: {quiz_id}")
        attempts = self.attempt_repo.list_completed_for_quiz(quiz.id)
        scores = [a.score for a in attempts if a.score is not None]
        # question id -> [answered, correct]
        tally = {q.id: [0, 0] for q in quiz.questions}
        for a in attempts:
            for r in reconstruct_attempt(quiz, self.attempt_repo.list_responses(a.id)):
                if r.answered:
                    tally[r.question_id][0] += 1
                    if r.is_correct:
                        tally[r.question_id][1] += 1
        questions = []
        for q in ordering.sort_by_order(quiz.questions):
            answered, correct = tally[q.id]
            auto_graded = q.question_type.is_choice
            questions.append({
                'question_id': q.id,
                'order_number': q.order_number,
                'question_text': q.question_text,
                'question_type': q.question_type.value,
                'answered': answered,
                'correct': correct if auto_graded else None,
                'correct_rate': round(correct / answered * 100, 1) if auto_graded and answered else None,
            })
        return {
            'quiz_id': quiz.id,
            'title': quiz.title,
            'total_attempts': len(attempts),
            'average_score': round(sum(scores) / len(scores), 1) if scores else None,
            'attempts': [
                {
                    'attempt_id': a.id,
                    'user_full_name': a.user_full_name,
                    'score': a.score,
                    'created_at': a.created_at.isoformat(),
                }
                for a in attempts
            ],
            'questions': questions,
        }


class PreviewService:
    """Keep unsaved builder state so the preview page can render it."""
    def __init__(self, session: Session):
        self.session = session
        self.preview_repo = repositories.PreviewRepository(session)

    def store(self, session_ctx: SessionContext, payload: QuizIn) -> models.QuizPreview:
        preview = models.QuizPreview(user_id=session_ctx.user_id, quiz_data=payload.model_dump(mode="json"))
        return self.preview_repo.create(preview)

    def load(self, session_ctx: SessionContext, preview_id: int) -> dict:
        preview = self.preview_repo.get_owned(preview_id, session_ctx.user_id)
        if not preview:
            raise NotFoundError(f"preview not found: {preview_id}")
        return preview.quiz_data

    def discard(self, session_ctx: SessionContext, preview_id: int) -> None:
        preview = self.preview_repo.get_owned(preview_id, session_ctx.user_id)
        if not preview:
            raise NotFoundError(f"preview not found: {preview_id}")
        self.preview_repo.delete(preview)
