from __future__ import annotations

import logging
import random
from dataclasses import dataclass

from fluency.config import EngineConfig
from fluency.core.clock import SystemTimeProvider, TimeProvider
from fluency.core.events import EventBus
from fluency.distractors import DistractorGenerator
from fluency.fact_store import FactStore
from fluency.facts import FactCatalog
from fluency.gates import CooldownGate, GenerationGateRegistry
from fluency.handlers import QuestionHandlerChain
from fluency.modifiers import QuestionModifierPipeline
from fluency.provider import GameLoopControl, QuestionProvider
from fluency.scheduler import Scheduler
from fluency.storage import InMemoryStorageAdapter, StorageAdapter

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class FluencyEngine:
    """Everything one learner's session needs, wired together."""

    config: EngineConfig
    clock: TimeProvider
    bus: EventBus
    catalog: FactCatalog
    store: FactStore
    gates: GenerationGateRegistry
    modifiers: QuestionModifierPipeline
    scheduler: Scheduler
    chain: QuestionHandlerChain
    provider: QuestionProvider
    cooldown: CooldownGate | None = None
    distractors: DistractorGenerator | None = None


def build_engine(
    *,
    storage: StorageAdapter | None = None,
    config: EngineConfig | None = None,
    clock: TimeProvider | None = None,
    bus: EventBus | None = None,
    game_loop: GameLoopControl | None = None,
    load: bool = True,
    seed: int | None = None,
) -> FluencyEngine:
    """Construct and wire an engine. With `load=True` the stored state is loaded first.

    `seed` makes multiple-choice options reproducible.
    """

    config = config or EngineConfig()
    clock = clock or SystemTimeProvider()
    bus = bus if bus is not None else EventBus()
    catalog = FactCatalog.from_specs(config.fact_sets)
    store = FactStore(
        storage=storage if storage is not None else InMemoryStorageAdapter(),
        key=config.state_key,
    )

    gates = GenerationGateRegistry()
    cooldown = None
    if config.min_question_interval_seconds > 0:
        cooldown = CooldownGate(clock=clock, min_interval_seconds=config.min_question_interval_seconds)
        gates.register_gate(cooldown)

    modifiers = QuestionModifierPipeline()
    distractors = None
    if config.distractors.enabled:
        distractors = DistractorGenerator(config.distractors, rng=random.Random(seed))

    scheduler = Scheduler(
        store=store,
        catalog=catalog,
        clock=clock,
        bus=bus,
        gates=gates,
        modifiers=modifiers,
        config=config,
        distractors=distractors,
    )
    if load:
        loaded = scheduler.load_state()
        logger.debug("Engine state %s", "loaded" if loaded else "initialized fresh")

    chain = QuestionHandlerChain()
    provider = QuestionProvider(
        scheduler=scheduler,
        chain=chain,
        clock=clock,
        bus=bus,
        game_loop=game_loop,
        cooldown=cooldown,
    )
    return FluencyEngine(
        config=config,
        clock=clock,
        bus=bus,
        catalog=catalog,
        store=store,
        gates=gates,
        modifiers=modifiers,
        scheduler=scheduler,
        chain=chain,
        provider=provider,
        cooldown=cooldown,
        distractors=distractors,
    )
