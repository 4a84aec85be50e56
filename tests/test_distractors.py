from __future__ import annotations

import random

import pytest

from fluency.config import DistractorConfig
from fluency.distractors import (
    ArithmeticErrorStrategy,
    DistractorGenerator,
    FactorVariationStrategy,
    TableConfusionStrategy,
)
from fluency.facts import Fact


def _fact(left: int, right: int, operation: str = "multiply") -> Fact:
    answer = left * right if operation == "multiply" else left + right
    return Fact(id=f"{left}x{right}", fact_set_id=f"x{left}", left=left, right=right, operation=operation, answer=answer)


def test_factor_variation_uses_neighbouring_rows_and_columns() -> None:
    values = FactorVariationStrategy().candidates(_fact(3, 4), max_factor=12)

    assert values[:4] == [9, 8, 15, 16]
    assert 24 in values
    assert 6 in values


def test_arithmetic_error_covers_common_slips() -> None:
    values = ArithmeticErrorStrategy().candidates(_fact(6, 7), max_factor=12)

    assert values[0] == 13
    assert {67, 76}.issubset(values)
    assert 63 in values  # 6 misread as 9
    assert 6 in values  # 7 misread as 1
    assert {41, 43, 52, 32}.issubset(values)


def test_table_confusion_prefers_nearby_products() -> None:
    values = TableConfusionStrategy().candidates(_fact(7, 8), max_factor=12)

    assert values[0] == 55
    assert all(v != 56 for v in values[:4])
    assert {49, 64, 42, 72}.issubset(values)


@pytest.mark.parametrize("left,right", [(0, 0), (1, 0), (3, 4), (12, 12), (9, 7)])
def test_options_are_unique_in_range_and_include_the_answer(left: int, right: int) -> None:
    gen = DistractorGenerator(rng=random.Random(1))
    fact = _fact(left, right)

    options = gen.answer_options(fact)

    assert len(options) == 4
    assert len(set(options)) == 4
    assert fact.answer in options
    assert all(0 <= v <= 144 for v in options)


def test_options_are_reproducible_for_a_seed() -> None:
    fact = _fact(6, 8)
    first = DistractorGenerator(rng=random.Random(42)).answer_options(fact)
    second = DistractorGenerator(rng=random.Random(42)).answer_options(fact)

    assert first == second


def test_choice_count_and_strategy_cap_follow_config() -> None:
    config = DistractorConfig(choices=6, max_per_strategy=1, strategy_weights={"factor_variation": 1.0})
    gen = DistractorGenerator(config, rng=random.Random(0), strategies=[FactorVariationStrategy()])
    fact = _fact(5, 5)

    options = gen.answer_options(fact)

    assert len(options) == 6
    near = [v for v in options if v != 25 and abs(v - 25) <= config.fallback_range]
    # One strategy value (20); the rest are random neighbours of the answer.
    assert 20 in options
    assert len(near) == 5


def test_answers_above_the_value_cap_still_get_options() -> None:
    gen = DistractorGenerator(DistractorConfig(max_value=15), rng=random.Random(3))
    fact = _fact(10, 10, operation="add")

    options = gen.answer_options(fact)

    assert 20 in options
    assert len(set(options)) == 4
    assert all(v <= 20 for v in options)


def test_config_rejects_inverted_bounds_and_negative_weights() -> None:
    with pytest.raises(ValueError):
        DistractorConfig(min_value=10, max_value=10)
    with pytest.raises(ValueError):
        DistractorConfig(strategy_weights={"factor_variation": -1.0})
    with pytest.raises(ValueError):
        DistractorConfig(choices=1)
