from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Protocol

from fluency.core.clock import TimeProvider

logger = logging.getLogger(__name__)


class QuestionGenerationGate(Protocol):
    gate_identifier: str

    def can_generate_question(self) -> bool:  # pragma: no cover
        ...


class FlagGate:
    """Manually toggled gate (tutorial running, game paused, ...)."""

    def __init__(self, gate_identifier: str, *, open: bool = True):
        self.gate_identifier = gate_identifier
        self.is_open = open

    def open(self) -> None:
        self.is_open = True

    def close(self) -> None:
        self.is_open = False

    def can_generate_question(self) -> bool:
        return self.is_open


class PredicateGate:
    def __init__(self, gate_identifier: str, predicate: Callable[[], bool]):
        self.gate_identifier = gate_identifier
        self.predicate = predicate

    def can_generate_question(self) -> bool:
        return bool(self.predicate())


class CooldownGate:
    """Break between questions: blocks until `min_interval_seconds` after the last question ended."""

    gate_identifier = "cooldown"

    def __init__(self, *, clock: TimeProvider, min_interval_seconds: float):
        if min_interval_seconds < 0:
            raise ValueError("min_interval_seconds must be >= 0")
        self.clock = clock
        self.min_interval = timedelta(seconds=min_interval_seconds)
        self.last_question_ended_at: datetime | None = None

    def mark_question_ended(self) -> None:
        self.last_question_ended_at = self.clock.utc_now()

    def can_generate_question(self) -> bool:
        if self.last_question_ended_at is None:
            return True
        return self.clock.utc_now() >= self.last_question_ended_at + self.min_interval


class GenerationGateRegistry:
    """Logical AND over registered gates. No gates means generation is allowed."""

    def __init__(self) -> None:
        self._gates: list[QuestionGenerationGate] = []

    def register_gate(self, gate: QuestionGenerationGate) -> None:
        if any(g is gate for g in self._gates):
            return
        self._gates.append(gate)

    def unregister_gate(self, gate: QuestionGenerationGate) -> bool:
        before = len(self._gates)
        self._gates = [g for g in self._gates if g is not gate]
        return len(self._gates) != before

    def blocking_gate(self) -> str | None:
        for gate in self._gates:
            if not gate.can_generate_question():
                return gate.gate_identifier
        return None

    def can_generate(self) -> bool:
        blocker = self.blocking_gate()
        if blocker is not None:
            logger.debug("Question generation blocked by gate %s", blocker)
            return False
        return True

    def __len__(self) -> int:
        return len(self._gates)
