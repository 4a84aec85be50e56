from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from fluency.config import FactSetSpec
from fluency.core.models import QuestionKind

OPERATOR_SYMBOLS = {"multiply": "×", "add": "+"}
OPERATOR_IDS = {"multiply": "x", "add": "+"}


@dataclass(frozen=True, slots=True)
class Fact:
    """One atomic fact, e.g. `3x4` in the x4 table."""

    id: str
    fact_set_id: str
    left: int
    right: int
    operation: str
    answer: int
    kind: QuestionKind = QuestionKind.standard

    @property
    def text(self) -> str:
        symbol = OPERATOR_SYMBOLS.get(self.operation, self.operation)
        return f"{self.left} {symbol} {self.right} = ?"


@dataclass(frozen=True, slots=True)
class FactSet:
    id: str
    facts: tuple[Fact, ...]

    @property
    def fact_ids(self) -> tuple[str, ...]:
        return tuple(f.id for f in self.facts)

    def __len__(self) -> int:
        return len(self.facts)


def _apply(operation: str, left: int, right: int) -> int:
    if operation == "multiply":
        return left * right
    if operation == "add":
        return left + right
    raise ValueError(f"Unsupported operation: {operation}")


def build_fact_set(spec: FactSetSpec) -> FactSet:
    """Build a times/plus table: `factor (op) 0..max_operand`."""

    op_id = OPERATOR_IDS[spec.operation]
    facts = tuple(
        Fact(
            id=f"{spec.factor}{op_id}{n}",
            fact_set_id=spec.id,
            left=spec.factor,
            right=n,
            operation=spec.operation,
            answer=_apply(spec.operation, spec.factor, n),
            kind=spec.kind,
        )
        for n in range(spec.max_operand + 1)
    )
    return FactSet(id=spec.id, facts=facts)


class FactCatalog:
    """All facts the engine may ask about, in stable insertion order.

    Fact ids are global: the same pair may not appear in two sets.
    """

    def __init__(self, fact_sets: Iterable[FactSet]):
        self._sets: dict[str, FactSet] = {}
        self._facts: dict[str, Fact] = {}
        for fs in fact_sets:
            if fs.id in self._sets:
                raise ValueError(f"Duplicate fact set id: {fs.id}")
            self._sets[fs.id] = fs
            for fact in fs.facts:
                if fact.id in self._facts:
                    raise ValueError(f"Duplicate fact id: {fact.id}")
                self._facts[fact.id] = fact

    @classmethod
    def from_specs(cls, specs: Iterable[FactSetSpec]) -> "FactCatalog":
        return cls(build_fact_set(s) for s in specs)

    @property
    def by_id(self) -> dict[str, Fact]:
        return self._facts

    @property
    def fact_sets(self) -> tuple[FactSet, ...]:
        return tuple(self._sets.values())

    def get(self, fact_id: str) -> Fact | None:
        return self._facts.get(fact_id)

    def fact_set(self, fact_set_id: str) -> FactSet | None:
        return self._sets.get(fact_set_id)

    def facts_in_set(self, fact_set_id: str) -> tuple[Fact, ...]:
        fs = self._sets.get(fact_set_id)
        return fs.facts if fs is not None else ()

    def next_fact_set_id(self, fact_set_id: str) -> str | None:
        ids = list(self._sets)
        if fact_set_id not in self._sets:
            return None
        i = ids.index(fact_set_id)
        return ids[i + 1] if i + 1 < len(ids) else None

    def __iter__(self) -> Iterator[Fact]:
        return iter(self._facts.values())

    def __len__(self) -> int:
        return len(self._facts)

    def __contains__(self, fact_id: object) -> bool:
        return fact_id in self._facts
