from __future__ import annotations

from fluency.config import FactSetSpec
from fluency.core.models import FactProgressionState, MasteryTier, StudentState
from fluency.facts import FactCatalog
from fluency.progress import summarize_progress


def _catalog() -> FactCatalog:
    return FactCatalog.from_specs(
        [
            FactSetSpec(id="x2", factor=2, max_operand=3),
            FactSetSpec(id="x5", factor=5, max_operand=1),
        ]
    )


def test_summary_for_fresh_state() -> None:
    summary = summarize_progress(StudentState(), _catalog())

    x2, x5 = summary.fact_sets
    assert x2.fact_set_id == "x2"
    assert x2.total_facts == 4
    assert x2.tier_counts[MasteryTier.new] == 4
    assert x2.dominant_tier == MasteryTier.new
    assert x2.progress_percent == 0.0
    assert x2.completed is False
    assert x5.total_facts == 2
    assert summary.accuracy_percent == 0.0


def test_summary_counts_tiers_progress_and_accuracy() -> None:
    state = StudentState(
        facts={
            "2x0": FactProgressionState(mastery_tier=MasteryTier.mastered, times_correct=6, times_incorrect=1),
            "2x1": FactProgressionState(mastery_tier=MasteryTier.practicing, times_correct=3, times_incorrect=0),
            "2x2": FactProgressionState(mastery_tier=MasteryTier.learning, times_correct=1, times_incorrect=1),
            "5x0": FactProgressionState(mastery_tier=MasteryTier.mastered, times_correct=4),
            "5x1": FactProgressionState(mastery_tier=MasteryTier.mastered, times_correct=4),
        }
    )

    summary = summarize_progress(state, _catalog())

    x2, x5 = summary.fact_sets
    assert x2.tier_counts == {
        MasteryTier.new: 1,
        MasteryTier.learning: 1,
        MasteryTier.practicing: 1,
        MasteryTier.mastered: 1,
    }
    assert x2.dominant_tier == MasteryTier.new
    assert x2.progress_percent == 50.0
    assert x5.completed is True
    assert x5.dominant_tier == MasteryTier.mastered
    assert x5.progress_percent == 100.0

    assert summary.total_correct == 18
    assert summary.total_incorrect == 2
    assert summary.accuracy_percent == 90.0
