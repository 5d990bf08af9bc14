"""Authoring checks for quiz definitions.

`validate_quiz` never raises: it collects every problem as a
`{'field': ..., 'error': ...}` item so the builder form can flag each
offending input at once. Field paths use the payload shape, e.g.
`questions[2].answers[0].answer_text`.
"""

from typing import List

from ..models import QuestionType, QuizStatus


def _blank(value) -> bool:
    return value is None or not str(value).strip()


def validate_quiz(payload, category_exists: bool = True) -> List[dict]:
    """Return the list of violations for a `schemas.QuizIn` payload.

    Correct-answer flags are only enforced when the quiz is being
    published; drafts may be saved before the creator marks answers.
    """
    errors = []

    def err(field: str, message: str):
        errors.append({"field": field, "error": message})

    if _blank(payload.title):
        err("title", "title is required")
    if _blank(payload.description):
        err("description", "description is required")
    if payload.category_id is None:
        err("category_id", "category is required")
    elif not category_exists:
        err("category_id", "category not found")

    publishing = payload.status == QuizStatus.published
    if publishing and not payload.questions:
        err("questions", "a published quiz needs at least one question")

    for qi, q in enumerate(payload.questions):
        prefix = f"questions[{qi}]"
        if _blank(q.question_text):
            err(f"{prefix}.question_text", "question text is required")
        if q.points < 0:
            err(f"{prefix}.points", "points must be zero or greater")

        if q.question_type == QuestionType.long_answer:
            if q.answers:
                err(f"{prefix}.answers", "long answer questions take a reference answer, not options")
            continue

        if not q.answers:
            err(f"{prefix}.answers", "at least one answer option is required")
            continue
        for ai, a in enumerate(q.answers):
            if _blank(a.answer_text):
                err(f"{prefix}.answers[{ai}].answer_text", "answer text is required")

        if publishing:
            n_correct = sum(1 for a in q.answers if a.is_correct)
            if q.question_type == QuestionType.single_choice and n_correct != 1:
                err(f"{prefix}.answers", "mark exactly one correct answer")
            elif q.question_type == QuestionType.multiple_choice and n_correct < 1:
                err(f"{prefix}.answers", "mark at least one correct answer")
    return errors
