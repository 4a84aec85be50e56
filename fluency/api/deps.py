from __future__ import annotations

import logging
import re
from collections import OrderedDict
from collections.abc import Generator

import redis

from fluency.config import EngineConfig
from fluency.core.clock import TimeProvider
from fluency.engine import FluencyEngine, build_engine
from fluency.infra.redis_client import create_redis
from fluency.storage import RedisStorageAdapter
from fluency.streams import attach_stream_analytics

logger = logging.getLogger(__name__)

_LEARNER_ID_RE = re.compile(r"^[A-Za-z0-9_.-]{1,128}$")

DEFAULT_MAX_ENGINES = 1000


def get_redis() -> Generator[redis.Redis, None, None]:
    client = create_redis()
    try:
        yield client
    finally:
        try:
            client.close()
        except redis.RedisError:
            # Closing a client that never connected can fail on some versions.
            pass


def validate_learner_id(learner_id: str) -> str:
    if not _LEARNER_ID_RE.match(learner_id):
        raise ValueError("learner_id must be 1-128 characters of letters, digits, '.', '_' or '-'")
    return learner_id


class EngineRegistry:
    """One engine per learner, built on first use and backed by Redis.

    At most `max_engines` are kept in memory; the least recently used one is dropped
    first. Its state lives on in Redis and is reloaded on the next request.
    """

    def __init__(
        self,
        *,
        r: redis.Redis,
        config: EngineConfig | None = None,
        clock: TimeProvider | None = None,
        max_engines: int = DEFAULT_MAX_ENGINES,
    ):
        if max_engines < 1:
            raise ValueError("max_engines must be >= 1")
        self.r = r
        self.config = config or EngineConfig()
        self.clock = clock
        self.max_engines = max_engines
        self._engines: OrderedDict[str, FluencyEngine] = OrderedDict()

    def engine_for(self, learner_id: str) -> FluencyEngine:
        validate_learner_id(learner_id)
        engine = self._engines.get(learner_id)
        if engine is not None:
            self._engines.move_to_end(learner_id)
        else:
            engine = build_engine(
                storage=RedisStorageAdapter(r=self.r, learner_id=learner_id),
                config=self.config,
                clock=self.clock,
            )
            attach_stream_analytics(bus=engine.bus, r=self.r, learner_id=learner_id)
            self._engines[learner_id] = engine
            logger.info("Engine created for learner %s", learner_id)
            while len(self._engines) > self.max_engines:
                evicted, _ = self._engines.popitem(last=False)
                logger.info("Engine evicted for learner %s", evicted)
        return engine

    def __contains__(self, learner_id: object) -> bool:
        return learner_id in self._engines

    def __len__(self) -> int:
        return len(self._engines)


_ENGINES: EngineRegistry | None = None


def init_engines(*, config: EngineConfig | None = None, r: redis.Redis | None = None) -> EngineRegistry:
    """Create the process-wide engine registry once.

    Safe to call multiple times; subsequent calls return the existing registry.
    """

    global _ENGINES
    if _ENGINES is None:
        _ENGINES = EngineRegistry(r=r or create_redis(), config=config)
    return _ENGINES


def reset_engines_for_tests() -> None:
    global _ENGINES
    _ENGINES = None


def get_engines() -> EngineRegistry:
    if _ENGINES is None:
        raise RuntimeError("Engines not initialized. Call init_engines() at startup.")
    return _ENGINES
