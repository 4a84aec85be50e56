from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator

# Bump when the persisted StudentState shape changes and register a migration.
STATE_VERSION = 3


class MasteryTier(StrEnum):
    new = "new"
    learning = "learning"
    practicing = "practicing"
    mastered = "mastered"

    @property
    def rank(self) -> int:
        return TIER_ORDER.index(self)


TIER_ORDER: tuple[MasteryTier, ...] = tuple(MasteryTier)


class LearningMode(StrEnum):
    # Evaluative, no hinting.
    assessment = "assessment"
    # Untimed, explanatory.
    grounding = "grounding"
    # Timed drilling.
    practice = "practice"


class AnswerType(StrEnum):
    correct = "correct"
    incorrect = "incorrect"
    timed_out = "timed_out"
    skipped = "skipped"


class QuestionKind(StrEnum):
    standard = "standard"
    tutorial = "tutorial"


def _as_utc(value: datetime | None) -> datetime | None:
    # Blobs written by older clients may carry naive timestamps; those are UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class FactProgressionState(BaseModel):
    mastery_tier: MasteryTier = MasteryTier.new
    consecutive_correct: int = Field(0, ge=0)

    # Both are None until the fact is first practiced.
    last_practiced_at: datetime | None = None
    next_eligible_at: datetime | None = None

    times_correct: int = Field(0, ge=0)
    times_incorrect: int = Field(0, ge=0)
    average_response_ms: float = Field(0.0, ge=0.0)

    @field_validator("last_practiced_at", "next_eligible_at")
    @classmethod
    def _utc(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)


class AnswerRecord(BaseModel):
    fact_id: str
    fact_set_id: str
    answer_type: AnswerType
    # Tier the fact was in when answered.
    tier: MasteryTier
    answered_at: datetime

    @field_validator("answered_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return _as_utc(v)


class SessionCounters(BaseModel):
    questions_generated: int = 0
    questions_answered: int = 0
    correct: int = 0
    incorrect: int = 0
    timed_out: int = 0
    skipped: int = 0
    grounding_retries: int = 0

    # Correct answers in a row across all facts; drives coverage bulk promotion.
    correct_run: int = 0


class StudentState(BaseModel):
    version: int = STATE_VERSION
    facts: dict[str, FactProgressionState] = Field(default_factory=dict)

    # None means "follow the fact's mastery tier".
    mode: LearningMode | None = None

    session: SessionCounters = Field(default_factory=SessionCounters)

    # Most recent scored answers, oldest first. Bounded by EngineConfig.answer_history_limit.
    answer_history: list[AnswerRecord] = Field(default_factory=list)

    def recent_answers(self, count: int) -> list[AnswerRecord]:
        if count <= 0:
            return []
        return self.answer_history[-count:]
