from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from uuid import uuid4

from fluency.core.models import AnswerType, LearningMode, QuestionKind
from fluency.facts import Fact


def new_question_id() -> str:
    return uuid4().hex


@dataclass(slots=True)
class Question:
    """A single-use prompt for one fact.

    `time_to_answer` is seconds (None = untimed). It may only grow, and only
    before `time_started` is stamped.
    """

    fact_id: str
    fact_set_id: str
    text: str
    correct_answer: int
    generation_mode: LearningMode
    learning_mode: LearningMode
    kind: QuestionKind = QuestionKind.standard
    time_to_answer: float | None = None
    time_started: datetime | None = None
    time_ended: datetime | None = None
    # Multiple-choice options including the answer; empty for free entry.
    choices: tuple[int, ...] = ()
    id: str = field(default_factory=new_question_id)

    @classmethod
    def for_fact(
        cls,
        fact: Fact,
        *,
        generation_mode: LearningMode,
        learning_mode: LearningMode,
        time_to_answer: float | None,
    ) -> "Question":
        return cls(
            fact_id=fact.id,
            fact_set_id=fact.fact_set_id,
            text=fact.text,
            correct_answer=fact.answer,
            generation_mode=generation_mode,
            learning_mode=learning_mode,
            kind=fact.kind,
            time_to_answer=time_to_answer,
        )

    @property
    def is_timed(self) -> bool:
        return self.time_to_answer is not None

    def extend_time_to_answer(self, seconds: float) -> bool:
        if self.time_started is not None or self.time_to_answer is None or seconds <= 0:
            return False
        self.time_to_answer += seconds
        return True


@dataclass(frozen=True, slots=True)
class UserAnswerSubmission:
    answer_type: AnswerType
    answer: int | None = None
    response_time_ms: float = 0.0

    @classmethod
    def from_answer(cls, *, answer: int, correct_answer: int, response_time_ms: float) -> "UserAnswerSubmission":
        answer_type = AnswerType.correct if answer == correct_answer else AnswerType.incorrect
        return cls(answer_type=answer_type, answer=answer, response_time_ms=max(0.0, response_time_ms))

    @classmethod
    def from_timed_out(cls, *, response_time_ms: float = 0.0) -> "UserAnswerSubmission":
        return cls(answer_type=AnswerType.timed_out, response_time_ms=max(0.0, response_time_ms))

    @classmethod
    def from_skipped(cls) -> "UserAnswerSubmission":
        return cls(answer_type=AnswerType.skipped)

    @property
    def response_time_seconds(self) -> float:
        return self.response_time_ms / 1000.0


@dataclass(frozen=True, slots=True)
class SubmitAnswerResult:
    found: bool
    is_correct: bool = False
    correct_answer: int | None = None
    answer_type: AnswerType | None = None
    # Set by the provider when the result is held until the presenter finishes.
    deferred: bool = False
    # The question stays live and should be asked again (wrong grounding answer).
    retry: bool = False

    @classmethod
    def not_found(cls) -> "SubmitAnswerResult":
        return cls(found=False)
