"""Pydantic request schemas used by the API.

Schemas keep API input shapes stable. Authoring payloads are permissive
on purpose (empty strings are accepted here) so that the authoring
validator can report every violation per field in a single response.
"""

from pydantic import BaseModel, Field
from typing import Annotated, List, Literal, Optional, Union
from .models import QuestionType, QuizStatus


class AnswerIn(BaseModel):
    """An answer option of a choice question.

    `id` is set when editing an existing option so its row is kept.
    """
    id: Optional[int] = None
    answer_text: str = ""
    answer_image_url: Optional[str] = None
    is_correct: bool = False
    order_number: Optional[int] = None


class QuestionIn(BaseModel):
    """A question as submitted by the quiz builder form."""
    id: Optional[int] = None
    question_text: str = ""
    question_type: QuestionType = QuestionType.single_choice
    question_image_url: Optional[str] = None
    order_number: Optional[int] = None
    points: int = 1
    answers: List[AnswerIn] = Field(default_factory=list)
    reference_answer: Optional[str] = None


class QuizIn(BaseModel):
    """Full quiz definition used for create, update and preview."""
    title: str = ""
    description: str = ""
    category_id: Optional[int] = None
    thumbnail_url: Optional[str] = None
    is_active: bool = True
    status: QuizStatus = QuizStatus.draft
    questions: List[QuestionIn] = Field(default_factory=list)


class ReorderIn(BaseModel):
    """New order of question ids for a quiz."""
    question_ids: List[int]


class AnswerReorderIn(BaseModel):
    """New order of answer ids for a question."""
    answer_ids: List[int]


class SingleChoiceSubmission(BaseModel):
    question_type: Literal["single_choice"]
    question_id: int
    answer_id: int


class MultipleChoiceSubmission(BaseModel):
    question_type: Literal["multiple_choice"]
    question_id: int
    answer_ids: List[int] = Field(min_length=1)


class LongAnswerSubmission(BaseModel):
    question_type: Literal["long_answer"]
    question_id: int
    text: str = ""


SubmittedAnswer = Annotated[
    Union[SingleChoiceSubmission, MultipleChoiceSubmission, LongAnswerSubmission],
    Field(discriminator="question_type"),
]


class AttemptIn(BaseModel):
    """Request model for submitting an attempt.

    `answers` holds one tagged item per question of the quiz.
    """
    user_full_name: str = Field(min_length=1, max_length=200)
    time_spent_seconds: int = Field(default=0, ge=0)
    answers: List[SubmittedAnswer]
