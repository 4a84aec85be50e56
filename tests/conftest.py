from __future__ import annotations

import os
from collections.abc import Callable, Generator
from pathlib import Path

import pytest

from fluency.config import EngineConfig, FactSetSpec
from fluency.core.clock import ManualTimeProvider
from fluency.engine import FluencyEngine, build_engine


@pytest.fixture(scope="session", autouse=True)
def _load_dotenv_for_tests() -> None:
    """Load repo .env for local runs.

    In CI we don't auto-load `.env` unless explicitly opted in with
    FLUENCY_LOAD_DOTENV_FOR_TESTS=1.
    """

    if os.environ.get("CI") and os.environ.get("FLUENCY_LOAD_DOTENV_FOR_TESTS") != "1":
        return

    env_path = Path(__file__).resolve().parents[1] / ".env"
    if env_path.exists():
        from dotenv import load_dotenv

        load_dotenv(dotenv_path=env_path, override=False)


@pytest.fixture()
def clock() -> ManualTimeProvider:
    return ManualTimeProvider()


def _small_config(**overrides: object) -> EngineConfig:
    data: dict[str, object] = {"fact_sets": [FactSetSpec(id="x3", factor=3, max_operand=2)]}
    data.update(overrides)
    return EngineConfig.model_validate(data)


@pytest.fixture()
def make_config() -> Callable[..., EngineConfig]:
    """One x3 table with facts 3x0..3x2 unless overridden."""

    return _small_config


@pytest.fixture()
def make_engine(clock: ManualTimeProvider) -> Callable[..., FluencyEngine]:
    def _make(config: EngineConfig | None = None, **kwargs: object) -> FluencyEngine:
        return build_engine(
            storage=kwargs.pop("storage", None),  # type: ignore[arg-type]
            config=config if config is not None else _small_config(),
            clock=clock,
            bus=kwargs.pop("bus", None),  # type: ignore[arg-type]
            **kwargs,  # type: ignore[arg-type]
        )

    return _make


@pytest.fixture()
def client_and_redis():
    """FastAPI TestClient wired to fakeredis and a manual clock."""

    import fakeredis
    from fastapi.testclient import TestClient

    from fluency.api.deps import EngineRegistry, get_engines, get_redis, reset_engines_for_tests
    from fluency.main import app

    r = fakeredis.FakeRedis(decode_responses=True)
    engines = EngineRegistry(r=r, config=EngineConfig(), clock=ManualTimeProvider())

    def _override() -> Generator[fakeredis.FakeRedis, None, None]:
        yield r

    app.dependency_overrides[get_redis] = _override
    app.dependency_overrides[get_engines] = lambda: engines
    with TestClient(app) as c:
        yield c, r, engines
    app.dependency_overrides.clear()
    reset_engines_for_tests()
