from __future__ import annotations

from datetime import UTC, datetime

import pytest

from fluency.config import DifficultyLevel, DynamicDifficultyConfig, EngineConfig
from fluency.core.models import AnswerRecord, AnswerType, MasteryTier
from fluency.difficulty import DifficultyManager

_TS = datetime(2024, 1, 1, tzinfo=UTC)


def _answers(*correct: bool) -> list[AnswerRecord]:
    return [
        AnswerRecord(
            fact_id="3x1",
            fact_set_id="x3",
            answer_type=AnswerType.correct if ok else AnswerType.incorrect,
            tier=MasteryTier.learning,
            answered_at=_TS,
        )
        for ok in correct
    ]


def test_starts_at_lowest_level() -> None:
    manager = DifficultyManager(DynamicDifficultyConfig(enabled=True))
    assert manager.current.name == "easy"


def test_needs_minimum_answers_before_changing() -> None:
    manager = DifficultyManager(DynamicDifficultyConfig(enabled=True))

    assert manager.update(_answers(True, True, True, True)) is False
    assert manager.current.name == "easy"


@pytest.mark.parametrize(
    "pattern,expected",
    [
        ([True] * 10, "hard"),
        ([True] * 9 + [False], "hard"),
        ([True] * 8 + [False] * 2, "medium"),
        ([True] * 7 + [False] * 3, "medium"),
        ([True] * 6 + [False] * 4, "easy"),
    ],
)
def test_level_follows_accuracy_thresholds(pattern: list[bool], expected: str) -> None:
    manager = DifficultyManager(DynamicDifficultyConfig(enabled=True))
    manager.update(_answers(*pattern))
    assert manager.current.name == expected


def test_update_reports_changes_and_reset_returns_to_lowest() -> None:
    manager = DifficultyManager(DynamicDifficultyConfig(enabled=True))

    assert manager.update(_answers(*[True] * 5)) is True
    assert manager.update(_answers(*[True] * 5)) is False
    assert manager.current.name == "hard"
    assert manager.current.promotion.threshold_for(MasteryTier.learning) == 2

    manager.reset()
    assert manager.current.name == "easy"


def test_config_validation() -> None:
    with pytest.raises(ValueError):
        DynamicDifficultyConfig(levels=[])
    with pytest.raises(ValueError):
        DynamicDifficultyConfig(levels=[DifficultyLevel(name="a"), DifficultyLevel(name="a", min_accuracy=0.5)])
    with pytest.raises(ValueError):
        DynamicDifficultyConfig(recent_answer_window=3, min_answers_for_change=5)
    with pytest.raises(ValueError):
        EngineConfig(difficulty=DynamicDifficultyConfig(enabled=True), answer_history_limit=5)
