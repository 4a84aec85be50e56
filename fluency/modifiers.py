from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol

from fluency.question import Question


class QuestionModifier(Protocol):
    def modify_question(self, question: Question) -> None:  # pragma: no cover
        ...


class AudioPaddingModifier:
    """Adds the spoken prompt's duration to the answer timer.

    `durations` maps fact id -> clip length in seconds. With no durations configured
    this is a no-op.
    """

    def __init__(self, durations: Mapping[str, float] | None = None, *, padding_seconds: float = 0.0):
        self.durations = dict(durations or {})
        self.padding_seconds = padding_seconds

    def modify_question(self, question: Question) -> None:
        duration = self.durations.get(question.fact_id)
        if duration is None or duration <= 0:
            return
        question.extend_time_to_answer(duration + self.padding_seconds)


class ExtraTimeModifier:
    """Flat accessibility extension for every timed question."""

    def __init__(self, seconds: float):
        if seconds < 0:
            raise ValueError("seconds must be >= 0")
        self.seconds = seconds

    def modify_question(self, question: Question) -> None:
        question.extend_time_to_answer(self.seconds)


class QuestionModifierPipeline:
    def __init__(self) -> None:
        self._modifiers: list[QuestionModifier] = []

    def register_modifier(self, modifier: QuestionModifier) -> None:
        if any(m is modifier for m in self._modifiers):
            return
        self._modifiers.append(modifier)

    def unregister_modifier(self, modifier: QuestionModifier) -> bool:
        before = len(self._modifiers)
        self._modifiers = [m for m in self._modifiers if m is not modifier]
        return len(self._modifiers) != before

    def modify_question(self, question: Question) -> Question:
        for modifier in self._modifiers:
            modifier.modify_question(question)
        return question

    def __len__(self) -> int:
        return len(self._modifiers)
