from __future__ import annotations

import logging
import random
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence

from fluency.config import DistractorConfig
from fluency.facts import Fact

logger = logging.getLogger(__name__)

# Digits learners commonly misread for one another.
_LOOKALIKE_DIGITS = {6: 9, 9: 6, 1: 7, 7: 1, 3: 8, 8: 3}


def _combine(operation: str, left: int, right: int) -> int:
    return left * right if operation == "multiply" else left + right


class DistractorStrategy(ABC):
    """Proposes wrong answers for a fact, most plausible first.

    Candidates may repeat or include the correct answer; the generator filters them.
    """

    name: str

    @abstractmethod
    def candidates(self, fact: Fact, *, max_factor: int) -> list[int]:  # pragma: no cover
        raise NotImplementedError


class FactorVariationStrategy(DistractorStrategy):
    """Neighbouring rows and columns of the table (3x4 -> 3x3, 3x5, 2x4, ...)."""

    name = "factor_variation"

    def candidates(self, fact: Fact, *, max_factor: int) -> list[int]:
        out: list[int] = []
        for delta in (-1, 1, -2, 2):
            right = fact.right + delta
            if 0 <= right <= max_factor:
                out.append(_combine(fact.operation, fact.left, right))
            left = fact.left + delta
            if 0 <= left <= max_factor:
                out.append(_combine(fact.operation, left, fact.right))

        if fact.operation == "multiply":
            if fact.left * 2 <= max_factor:
                out.append(fact.left * 2 * fact.right)
            if fact.right % 2 == 0 and fact.right > 0:
                out.append(fact.left * (fact.right // 2))
        return out


class ArithmeticErrorStrategy(DistractorStrategy):
    """Wrong operation, digit concatenation, misread digits and off-by-one slips."""

    name = "arithmetic_error"

    def candidates(self, fact: Fact, *, max_factor: int) -> list[int]:
        a, b = fact.left, fact.right
        other = "add" if fact.operation == "multiply" else "multiply"
        out = [_combine(other, a, b)]

        if a < 10 and b < 10:
            out.extend([a * 10 + b, b * 10 + a])

        if a in _LOOKALIKE_DIGITS:
            out.append(_combine(fact.operation, _LOOKALIKE_DIGITS[a], b))
        if b in _LOOKALIKE_DIGITS:
            out.append(_combine(fact.operation, a, _LOOKALIKE_DIGITS[b]))

        answer = fact.answer
        out.extend([answer + 1, answer - 1, answer + 10, answer - 10])
        return out


class TableConfusionStrategy(DistractorStrategy):
    """Other products of the table close to the answer, squares and diagonal neighbours."""

    name = "table_confusion"

    def candidates(self, fact: Fact, *, max_factor: int) -> list[int]:
        answer = fact.answer
        table = {
            _combine(fact.operation, x, y)
            for x in range(1, max_factor + 1)
            for y in range(1, max_factor + 1)
        }
        nearby = sorted((v for v in table if 0 < abs(v - answer) <= 10), key=lambda v: (abs(v - answer), v))
        out = nearby[:4]

        if fact.operation == "multiply":
            a, b = fact.left, fact.right
            out.extend([a * a, b * b])
            if a > 1 and b > 1:
                out.append((a - 1) * (b - 1))
            if a < max_factor and b < max_factor:
                out.append((a + 1) * (b + 1))
        return out


def default_strategies() -> list[DistractorStrategy]:
    return [FactorVariationStrategy(), ArithmeticErrorStrategy(), TableConfusionStrategy()]


class DistractorGenerator:
    """Builds shuffled multiple-choice options: the answer plus `choices - 1` distractors.

    Each strategy contributes a share of the distractors proportional to its weight
    (capped at `max_per_strategy`); any shortfall is filled with random values near the
    answer. Options are unique and within `[min_value, max_value]`; the upper bound
    stretches to include answers beyond it.
    """

    def __init__(
        self,
        config: DistractorConfig | None = None,
        *,
        rng: random.Random | None = None,
        strategies: Sequence[DistractorStrategy] | None = None,
        max_factor: int = 12,
    ):
        self.config = config or DistractorConfig()
        self.rng = rng or random.Random()
        self.strategies = list(strategies) if strategies is not None else default_strategies()
        self.max_factor = max_factor

    def _quota(self, strategy: DistractorStrategy, needed: int) -> int:
        weights = self.config.strategy_weights
        total = sum(weights.get(s.name, 0.0) for s in self.strategies)
        weight = weights.get(strategy.name, 0.0)
        if total <= 0 or weight <= 0:
            return 0
        return min(round(weight / total * needed), self.config.max_per_strategy)

    def _valid(self, values: Iterable[int], used: set[int], upper: int) -> list[int]:
        out: list[int] = []
        for v in values:
            if self.config.min_value <= v <= upper and v not in used and v not in out:
                out.append(v)
        return out

    def _fallback(self, answer: int, used: set[int], upper: int) -> int | None:
        lo = max(self.config.min_value, answer - self.config.fallback_range)
        hi = min(upper, answer + self.config.fallback_range)
        pool = [v for v in range(lo, hi + 1) if v not in used]
        if not pool:
            return None
        return self.rng.choice(pool)

    def answer_options(self, fact: Fact) -> tuple[int, ...]:
        needed = self.config.choices - 1
        used = {fact.answer}
        picked: list[int] = []
        max_factor = max(self.max_factor, fact.left, fact.right)
        upper = max(self.config.max_value, fact.answer)

        for strategy in self.strategies:
            quota = self._quota(strategy, needed)
            if quota <= 0:
                continue
            for value in self._valid(strategy.candidates(fact, max_factor=max_factor), used, upper)[:quota]:
                picked.append(value)
                used.add(value)

        self.rng.shuffle(picked)
        picked = picked[:needed]
        while len(picked) < needed:
            value = self._fallback(fact.answer, used, upper)
            if value is None:
                logger.debug("Only %d distractors available for %s", len(picked), fact.id)
                break
            picked.append(value)
            used.add(value)

        options = [fact.answer, *picked]
        self.rng.shuffle(options)
        return tuple(options)
