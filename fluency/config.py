from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from fluency.core.models import TIER_ORDER, LearningMode, MasteryTier, QuestionKind

CONFIG_PATH_ENV = "FLUENCY_CONFIG_PATH"


class SpacingConfig(BaseModel):
    """Review spacing.

    After a correct answer the fact waits
    `base * tier_multiplier * growth ** (streak - 1)` seconds, capped at `max`.
    After a miss (streak 0) it waits `retry` seconds.
    """

    base_interval_seconds: float = Field(30.0, gt=0)
    growth_factor: float = Field(2.0, ge=1.0)
    max_interval_seconds: float = Field(7 * 24 * 3600.0, gt=0)
    retry_interval_seconds: float = Field(10.0, ge=0)
    tier_multipliers: dict[MasteryTier, float] = Field(
        default_factory=lambda: {
            MasteryTier.new: 1.0,
            MasteryTier.learning: 1.0,
            MasteryTier.practicing: 2.0,
            MasteryTier.mastered: 4.0,
        }
    )

    @model_validator(mode="after")
    def _check_intervals(self) -> "SpacingConfig":
        if self.max_interval_seconds < self.base_interval_seconds:
            raise ValueError("max_interval_seconds must be >= base_interval_seconds")
        if self.retry_interval_seconds > self.base_interval_seconds:
            raise ValueError("retry_interval_seconds must be <= base_interval_seconds")

        previous = 1.0
        for tier in TIER_ORDER:
            mult = self.tier_multipliers.get(tier, 1.0)
            if mult < previous:
                raise ValueError("tier_multipliers must be >= 1 and non-decreasing with tier")
            previous = mult
        return self

    def interval_for(self, *, streak: int, tier: MasteryTier) -> timedelta:
        if streak <= 0:
            return timedelta(seconds=self.retry_interval_seconds)
        mult = self.tier_multipliers.get(tier, 1.0)
        try:
            seconds = self.base_interval_seconds * mult * self.growth_factor ** (streak - 1)
        except OverflowError:
            seconds = self.max_interval_seconds
        return timedelta(seconds=min(seconds, self.max_interval_seconds))


class PromotionConfig(BaseModel):
    # Streak needed to leave a tier. Mastered has no entry: there is nothing above it.
    thresholds: dict[MasteryTier, int] = Field(
        default_factory=lambda: {
            MasteryTier.new: 1,
            MasteryTier.learning: 3,
            MasteryTier.practicing: 5,
        }
    )
    # Tiers at or below the floor are never demoted.
    demotion_floor: MasteryTier = MasteryTier.new

    @field_validator("thresholds")
    @classmethod
    def _positive_thresholds(cls, v: dict[MasteryTier, int]) -> dict[MasteryTier, int]:
        if any(n < 1 for n in v.values()):
            raise ValueError("promotion thresholds must be >= 1")
        return v

    def threshold_for(self, tier: MasteryTier) -> int | None:
        if tier is MasteryTier.mastered:
            return None
        return self.thresholds.get(tier, 1)


class BulkPromotionConfig(BaseModel):
    enabled: bool = False
    min_consecutive_correct: int = Field(5, ge=1)
    # Share of a fact set's facts at the tier that must have been practiced.
    min_coverage: float = Field(0.8, gt=0.0, le=1.0)


class DifficultyLevel(BaseModel):
    name: str = Field(..., min_length=1)
    # Recent accuracy (0..1) needed to be placed at this level.
    min_accuracy: float = Field(0.0, ge=0.0, le=1.0)
    promotion: PromotionConfig = Field(default_factory=PromotionConfig)
    bulk_promotion: BulkPromotionConfig = Field(default_factory=BulkPromotionConfig)


def _default_difficulty_levels() -> list[DifficultyLevel]:
    return [
        DifficultyLevel(
            name="hard",
            min_accuracy=0.9,
            promotion=PromotionConfig(
                thresholds={MasteryTier.new: 1, MasteryTier.learning: 2, MasteryTier.practicing: 3}
            ),
            bulk_promotion=BulkPromotionConfig(enabled=True, min_consecutive_correct=5, min_coverage=0.25),
        ),
        DifficultyLevel(name="medium", min_accuracy=0.7),
        DifficultyLevel(
            name="easy",
            min_accuracy=0.0,
            promotion=PromotionConfig(
                thresholds={MasteryTier.new: 2, MasteryTier.learning: 4, MasteryTier.practicing: 6}
            ),
        ),
    ]


class DynamicDifficultyConfig(BaseModel):
    """Accuracy-driven difficulty.

    When enabled, the level whose `min_accuracy` is the highest one met by the recent
    answers supplies the promotion rules instead of the top-level ones.
    """

    enabled: bool = False
    recent_answer_window: int = Field(10, ge=1)
    min_answers_for_change: int = Field(5, ge=1)
    levels: list[DifficultyLevel] = Field(default_factory=_default_difficulty_levels)

    @model_validator(mode="after")
    def _check_levels(self) -> "DynamicDifficultyConfig":
        if not self.levels:
            raise ValueError("at least one difficulty level is required")
        names = [lvl.name for lvl in self.levels]
        if len(set(names)) != len(names):
            raise ValueError("difficulty level names must be unique")
        if self.min_answers_for_change > self.recent_answer_window:
            raise ValueError("min_answers_for_change must be <= recent_answer_window")
        return self


class DistractorConfig(BaseModel):
    """Multiple-choice answer options built from common arithmetic mistakes."""

    enabled: bool = True
    choices: int = Field(4, ge=2, le=8)
    max_per_strategy: int = Field(2, ge=1)
    min_value: int = 0
    max_value: int = 144
    # Half-width of the window random fallback distractors are drawn from.
    fallback_range: int = Field(5, ge=1)
    strategy_weights: dict[str, float] = Field(
        default_factory=lambda: {
            "factor_variation": 0.4,
            "arithmetic_error": 0.3,
            "table_confusion": 0.2,
        }
    )

    @model_validator(mode="after")
    def _check_bounds(self) -> "DistractorConfig":
        if self.max_value <= self.min_value:
            raise ValueError("max_value must be > min_value")
        if any(w < 0 for w in self.strategy_weights.values()):
            raise ValueError("strategy weights must be >= 0")
        return self


class FactSetSpec(BaseModel):
    id: str = Field(..., min_length=1)
    operation: Literal["multiply", "add"] = "multiply"
    factor: int = Field(..., ge=0, le=100)
    max_operand: int = Field(10, ge=0, le=100)
    kind: QuestionKind = QuestionKind.standard


def _default_fact_sets() -> list[FactSetSpec]:
    return [
        FactSetSpec(id="x2", factor=2),
        FactSetSpec(id="x5", factor=5),
        FactSetSpec(id="x10", factor=10),
    ]


class EngineConfig(BaseModel):
    block_size: int = Field(5, ge=1, le=100)
    state_key: str = Field("fluency_state", min_length=1)

    spacing: SpacingConfig = Field(default_factory=SpacingConfig)
    promotion: PromotionConfig = Field(default_factory=PromotionConfig)
    bulk_promotion: BulkPromotionConfig = Field(default_factory=BulkPromotionConfig)
    difficulty: DynamicDifficultyConfig = Field(default_factory=DynamicDifficultyConfig)
    distractors: DistractorConfig = Field(default_factory=DistractorConfig)

    # A wrong answer to a grounding question is retried without scoring it.
    grounding_retry: bool = True
    answer_history_limit: int = Field(200, ge=0)

    # Learning mode a question takes when the learner has no explicit mode set.
    tier_learning_modes: dict[MasteryTier, LearningMode] = Field(
        default_factory=lambda: {
            MasteryTier.new: LearningMode.assessment,
            MasteryTier.learning: LearningMode.grounding,
            MasteryTier.practicing: LearningMode.practice,
            MasteryTier.mastered: LearningMode.practice,
        }
    )
    # Seconds allotted per generation mode; None means untimed.
    answer_timers: dict[LearningMode, float | None] = Field(
        default_factory=lambda: {
            LearningMode.assessment: 10.0,
            LearningMode.grounding: None,
            LearningMode.practice: 6.0,
        }
    )

    # Break between two presented questions (0 disables the cooldown gate).
    min_question_interval_seconds: float = Field(0.0, ge=0)

    fact_sets: list[FactSetSpec] = Field(default_factory=_default_fact_sets)

    @model_validator(mode="after")
    def _check_history(self) -> "EngineConfig":
        if self.difficulty.enabled and self.answer_history_limit < self.difficulty.recent_answer_window:
            raise ValueError("answer_history_limit must cover difficulty.recent_answer_window")
        return self

    def learning_mode_for(self, tier: MasteryTier) -> LearningMode:
        return self.tier_learning_modes.get(tier, LearningMode.practice)

    def timer_for(self, mode: LearningMode) -> float | None:
        return self.answer_timers.get(mode)


def load_engine_config(path: str | Path | None = None) -> EngineConfig:
    """Load engine configuration from JSON.

    Falls back to `FLUENCY_CONFIG_PATH`, then to built-in defaults.
    """

    if path is None:
        env_path = os.environ.get(CONFIG_PATH_ENV)
        if not env_path:
            return EngineConfig()
        path = env_path

    p = Path(path)
    try:
        raw = p.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ValueError(f"Engine config not found: {p}") from e
    return EngineConfig.model_validate_json(raw)
