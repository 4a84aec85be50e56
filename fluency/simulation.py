from __future__ import annotations

import random
from collections import Counter
from dataclasses import dataclass
from datetime import datetime

from fluency.config import EngineConfig
from fluency.core.clock import ManualTimeProvider
from fluency.engine import FluencyEngine, build_engine
from fluency.handlers import QuestionHandler
from fluency.progress import ProgressSummary, summarize_progress


@dataclass(frozen=True, slots=True)
class SimulationResult:
    answered: int
    correct: int
    # Wrong grounding answers that were asked again.
    retries: int
    elapsed_seconds: float
    event_counts: dict[str, int]
    summary: ProgressSummary


def _next_due(engine: FluencyEngine) -> datetime | None:
    now = engine.clock.utc_now()
    upcoming = [
        p.next_eligible_at
        for p in engine.store.state.facts.values()
        if p.next_eligible_at is not None and p.next_eligible_at > now
    ]
    return min(upcoming) if upcoming else None


def simulate_learner(
    *,
    questions: int = 200,
    accuracy: float = 0.8,
    think_time_ms: tuple[float, float] = (800.0, 4000.0),
    pause_seconds: float = 2.0,
    seed: int = 0,
    config: EngineConfig | None = None,
) -> SimulationResult:
    """Run an engine against a simulated learner on a manual clock.

    The learner answers correctly with probability `accuracy`. A question handed back
    for a retry is answered again before moving on. When nothing is due, the clock
    jumps straight to the next eligible fact. `seed` drives both the learner and the
    multiple-choice options.
    """

    if not 0.0 <= accuracy <= 1.0:
        raise ValueError("accuracy must be between 0 and 1")
    if questions < 0:
        raise ValueError("questions must be >= 0")

    clock = ManualTimeProvider()
    started = clock.utc_now()
    engine = build_engine(config=config, clock=clock, load=False, seed=seed)
    engine.chain.register(QuestionHandler(handler_identifier="simulated", presenter=lambda q: True))

    counts: Counter[str] = Counter()
    engine.bus.subscribe_all(lambda e: counts.update([e.event_name]))

    rng = random.Random(seed)
    answered = 0
    correct = 0
    retries = 0
    while answered < questions:
        active = engine.provider.active
        question = active.question if active is not None else engine.provider.tick()
        if question is None:
            if engine.cooldown is not None and not engine.cooldown.can_generate_question():
                clock.advance(engine.cooldown.min_interval)
                continue
            due = _next_due(engine)
            if due is None:
                break
            clock.set(due)
            continue

        response_ms = rng.uniform(*think_time_ms)
        clock.advance(response_ms / 1000.0)
        is_correct = rng.random() < accuracy
        answer = question.correct_answer if is_correct else question.correct_answer + 1
        result = engine.provider.report_answer(question.id, answer, response_ms)
        retries += int(result.retry)

        answered += 1
        correct += int(is_correct)
        clock.advance(pause_seconds)

    return SimulationResult(
        answered=answered,
        correct=correct,
        retries=retries,
        elapsed_seconds=(clock.utc_now() - started).total_seconds(),
        event_counts=dict(counts),
        summary=summarize_progress(engine.scheduler.get_state(), engine.catalog),
    )
