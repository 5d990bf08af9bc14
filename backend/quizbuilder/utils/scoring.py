"""Quiz grading and result reconstruction.

The functions here are pure: they work on a quiz object graph (a quiz
with `questions`, each with `answers`) and never touch the database.
`grade_submission` produces the response rows and score stored when a
respondent submits; `reconstruct_attempt` rebuilds the per-question view
from those stored rows and re-derives correctness with the same rules.

Grading rules:
- single choice: correct iff the chosen answer is flagged correct.
- multiple choice: correct iff the chosen set equals the correct set;
  no partial credit.
- long answer: never correct automatically (manual grading).
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Mapping, Optional, Sequence, Set

from ..models import QuestionType


class SubmissionError(ValueError):
    """Submitted answers do not fit the quiz they were submitted for."""


@dataclass
class GradedResponse:
    question_id: int
    answer_id: Optional[int] = None
    text_response: Optional[str] = None
    is_correct: bool = False
    points_earned: int = 0


@dataclass
class GradedQuestion:
    question_id: int
    question_type: QuestionType
    points: int
    is_correct: bool
    points_earned: int
    responses: List[GradedResponse] = field(default_factory=list)


@dataclass
class GradedSubmission:
    questions: List[GradedQuestion]
    earned_points: int
    total_points: int
    score: int

    @property
    def responses(self) -> List[GradedResponse]:
        return [r for q in self.questions for r in q.responses]


@dataclass
class QuestionReview:
    """Per-question view of a stored attempt."""
    question_id: int
    question_type: QuestionType
    points: int
    answered: bool
    is_correct: bool
    points_earned: int
    answer_id: Optional[int] = None
    answer_ids: List[int] = field(default_factory=list)
    text_response: Optional[str] = None
    correct_answer_ids: List[int] = field(default_factory=list)


def compute_score(earned_points: int, total_points: int) -> int:
    """Return `round(earned / total * 100)` rounding halves up.

    A quiz without points yields 0 rather than a division error.
    """
    if total_points <= 0:
        return 0
    ratio = Decimal(earned_points) * 100 / Decimal(total_points)
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def ordered_questions(quiz) -> list:
    return sorted(quiz.questions, key=lambda q: q.order_number)


def correct_answer_ids(question) -> Set[int]:
    return {a.id for a in question.answers if a.is_correct}


def _answer_ids(question) -> Set[int]:
    return {a.id for a in question.answers}


def _grade_single(question, submitted) -> GradedQuestion:
    if submitted.answer_id not in _answer_ids(question):
        raise SubmissionError(f"answer {submitted.answer_id} does not belong to question {question.id}")
    is_correct = submitted.answer_id in correct_answer_ids(question)
    earned = question.points if is_correct else 0
    row = GradedResponse(
        question_id=question.id,
        answer_id=submitted.answer_id,
        is_correct=is_correct,
        points_earned=earned,
    )
    return GradedQuestion(question.id, QuestionType.single_choice, question.points, is_correct, earned, [row])


def _grade_multiple(question, submitted) -> GradedQuestion:
    # duplicates collapse, first occurrence keeps its position
    selected = list(OrderedDict.fromkeys(submitted.answer_ids))
    unknown = [a for a in selected if a not in _answer_ids(question)]
    if unknown:
        raise SubmissionError(f"answers {unknown} do not belong to question {question.id}")
    correct = correct_answer_ids(question)
    fully_correct = set(selected) == correct
    earned = question.points if fully_correct else 0
    rows = [
        GradedResponse(
            question_id=question.id,
            answer_id=answer_id,
            is_correct=answer_id in correct,
            points_earned=earned,
        )
        for answer_id in selected
    ]
    return GradedQuestion(question.id, QuestionType.multiple_choice, question.points, fully_correct, earned, rows)


def _grade_long(question, submitted) -> GradedQuestion:
    row = GradedResponse(question_id=question.id, text_response=submitted.text)
    return GradedQuestion(question.id, QuestionType.long_answer, question.points, False, 0, [row])


_GRADERS = {
    QuestionType.single_choice: _grade_single,
    QuestionType.multiple_choice: _grade_multiple,
    QuestionType.long_answer: _grade_long,
}


def index_submissions(answers: Sequence) -> Dict[int, object]:
    """Map question id to its submitted answer, rejecting duplicates."""
    out: Dict[int, object] = {}
    for item in answers:
        if item.question_id in out:
            raise SubmissionError(f"question {item.question_id} answered more than once")
        out[item.question_id] = item
    return out


def grade_submission(quiz, submitted: Mapping[int, object]) -> GradedSubmission:
    """Grade every question of `quiz` against `submitted`.

    `submitted` maps question id to a tagged answer (see
    `schemas.SubmittedAnswer`). Every question must be answered and the
    tag must match the question type; extra question ids are rejected.
    """
    questions = ordered_questions(quiz)
    known = {q.id for q in questions}
    extra = sorted(set(submitted) - known)
    if extra:
        raise SubmissionError(f"questions {extra} are not part of this quiz")
    missing = [q.id for q in questions if q.id not in submitted]
    if missing:
        raise SubmissionError(f"questions {missing} have no answer")

    graded = []
    for q in questions:
        item = submitted[q.id]
        qtype = QuestionType(q.question_type)
        if item.question_type != qtype:
            raise SubmissionError(f"question {q.id} expects a {qtype.value} answer, got {item.question_type}")
        graded.append(_GRADERS[qtype](q, item))

    total = sum(q.points for q in questions)
    earned = sum(g.points_earned for g in graded)
    return GradedSubmission(graded, earned, total, compute_score(earned, total))


def reconstruct_attempt(quiz, responses: Sequence) -> List[QuestionReview]:
    """Rebuild the per-question view of an attempt from its stored rows.

    Rows are grouped by `question_id`. Correctness is re-derived with the
    grading rules so the review can highlight right and wrong answers;
    the attempt's stored score is never recomputed here.
    """
    grouped: Dict[int, list] = {}
    for row in responses:
        grouped.setdefault(row.question_id, []).append(row)

    out = []
    for q in ordered_questions(quiz):
        rows = grouped.get(q.id, [])
        qtype = QuestionType(q.question_type)
        correct = correct_answer_ids(q)
        review = QuestionReview(
            question_id=q.id,
            question_type=qtype,
            points=q.points,
            answered=bool(rows),
            is_correct=False,
            points_earned=0,
            correct_answer_ids=sorted(correct),
        )
        if qtype == QuestionType.long_answer:
            review.text_response = rows[0].text_response if rows else None
        elif qtype == QuestionType.single_choice:
            review.answer_id = rows[0].answer_id if rows else None
            review.is_correct = review.answer_id is not None and review.answer_id in correct
        else:
            review.answer_ids = [r.answer_id for r in rows if r.answer_id is not None]
            review.is_correct = bool(rows) and set(review.answer_ids) == correct
        review.points_earned = q.points if review.is_correct else 0
        out.append(review)
    return out
