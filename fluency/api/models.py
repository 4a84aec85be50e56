from __future__ import annotations

from pydantic import BaseModel, Field

from fluency.core.models import AnswerType, LearningMode, QuestionKind
from fluency.question import Question


class UserDataPayload(BaseModel):
    data: str


class QuestionOut(BaseModel):
    id: str
    fact_id: str
    fact_set_id: str
    text: str
    generation_mode: LearningMode
    learning_mode: LearningMode
    kind: QuestionKind

    # Seconds; None means untimed.
    time_to_answer: float | None = None
    # Multiple-choice options; empty for free entry.
    choices: list[int] = Field(default_factory=list)

    @classmethod
    def from_question(cls, q: Question) -> "QuestionOut":
        return cls(
            id=q.id,
            fact_id=q.fact_id,
            fact_set_id=q.fact_set_id,
            text=q.text,
            generation_mode=q.generation_mode,
            learning_mode=q.learning_mode,
            kind=q.kind,
            time_to_answer=q.time_to_answer,
            choices=list(q.choices),
        )


class QuestionBlockResponse(BaseModel):
    questions: list[QuestionOut] = Field(default_factory=list)


class AnswerRequest(BaseModel):
    question_id: str = Field(..., min_length=1)
    answer: int
    response_time_ms: float = Field(0.0, ge=0.0)


class AnswerResponse(BaseModel):
    question_id: str
    is_correct: bool
    correct_answer: int
    answer_type: AnswerType
    # Wrong grounding answer: the question is still open and should be asked again.
    retry: bool = False


class ModeRequest(BaseModel):
    # None restores tier-driven modes.
    mode: LearningMode | None = None
