from __future__ import annotations

import logging
from collections.abc import Sequence

from fluency.config import DifficultyLevel, DynamicDifficultyConfig
from fluency.core.models import AnswerRecord, AnswerType

logger = logging.getLogger(__name__)


class DifficultyManager:
    """Tracks the learner's difficulty level from recent accuracy.

    Starts at the level with the lowest `min_accuracy`. `update()` moves to the most
    demanding level whose threshold the recent answers meet, once at least
    `min_answers_for_change` answers are available.
    """

    def __init__(self, config: DynamicDifficultyConfig):
        self.config = config
        self._levels = sorted(config.levels, key=lambda lvl: lvl.min_accuracy)
        self._current = self._levels[0]

    @property
    def current(self) -> DifficultyLevel:
        return self._current

    def reset(self) -> None:
        self._current = self._levels[0]

    def update(self, recent: Sequence[AnswerRecord]) -> bool:
        """Re-evaluate the level. Returns True when it changed."""

        if len(recent) < self.config.min_answers_for_change:
            return False

        correct = sum(1 for r in recent if r.answer_type is AnswerType.correct)
        accuracy = correct / len(recent)
        reached = [lvl for lvl in self._levels if accuracy >= lvl.min_accuracy]
        if not reached or reached[-1].name == self._current.name:
            return False

        logger.info("Difficulty %s -> %s (accuracy %.2f)", self._current.name, reached[-1].name, accuracy)
        self._current = reached[-1]
        return True
