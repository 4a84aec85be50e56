from __future__ import annotations

from pydantic import BaseModel, Field

from fluency.core.models import TIER_ORDER, MasteryTier, StudentState
from fluency.facts import FactCatalog


class FactSetProgress(BaseModel):
    fact_set_id: str
    total_facts: int
    tier_counts: dict[MasteryTier, int]
    # Least advanced tier any fact of the set is in.
    dominant_tier: MasteryTier | None
    progress_percent: float = Field(..., ge=0.0, le=100.0)
    completed: bool


class ProgressSummary(BaseModel):
    fact_sets: list[FactSetProgress]
    total_correct: int
    total_incorrect: int
    accuracy_percent: float = Field(..., ge=0.0, le=100.0)


def _tier_weight(tier: MasteryTier) -> float:
    return tier.rank / (len(TIER_ORDER) - 1)


def summarize_progress(state: StudentState, catalog: FactCatalog) -> ProgressSummary:
    """Per-set tier breakdown plus overall accuracy.

    Facts without stored progress count as `new`. Progress is weighted by tier
    (new = 0%, mastered = 100%).
    """

    sets: list[FactSetProgress] = []
    for fact_set in catalog.fact_sets:
        counts = {tier: 0 for tier in TIER_ORDER}
        weight = 0.0
        for fact in fact_set.facts:
            progress = state.facts.get(fact.id)
            tier = progress.mastery_tier if progress is not None else MasteryTier.new
            counts[tier] += 1
            weight += _tier_weight(tier)

        total = len(fact_set)
        present = [t for t in TIER_ORDER if counts[t] > 0]
        sets.append(
            FactSetProgress(
                fact_set_id=fact_set.id,
                total_facts=total,
                tier_counts=counts,
                dominant_tier=present[0] if present else None,
                progress_percent=round(weight / total * 100.0, 2) if total else 0.0,
                completed=total > 0 and counts[MasteryTier.mastered] == total,
            )
        )

    total_correct = sum(p.times_correct for p in state.facts.values())
    total_incorrect = sum(p.times_incorrect for p in state.facts.values())
    answered = total_correct + total_incorrect
    return ProgressSummary(
        fact_sets=sets,
        total_correct=total_correct,
        total_incorrect=total_incorrect,
        accuracy_percent=round(total_correct / answered * 100.0, 2) if answered else 0.0,
    )
