from __future__ import annotations

import pytest

from fluency.infra.redis_client import get_redis_url


def test_redis_url_prefers_fluency_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("FLUENCY_REDIS_URL", raising=False)
    monkeypatch.delenv("REDIS_URL", raising=False)
    assert get_redis_url() == "redis://localhost:6379/0"

    monkeypatch.setenv("REDIS_URL", "redis://cache:6379/1")
    assert get_redis_url() == "redis://cache:6379/1"

    monkeypatch.setenv("FLUENCY_REDIS_URL", "redis://fluency:6379/2")
    assert get_redis_url() == "redis://fluency:6379/2"
