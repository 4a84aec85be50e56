from __future__ import annotations

import json

import fakeredis
import httpx
import redis

from fluency.core.models import StudentState
from fluency.fact_store import FactStore
from fluency.storage import HttpStorageAdapter, RedisStorageAdapter


class _BrokenRedis:
    def get(self, key: str) -> str:
        raise redis.ConnectionError("connection refused")

    def set(self, key: str, value: str) -> bool:
        raise redis.ConnectionError("connection refused")

    def delete(self, key: str) -> int:
        raise redis.ConnectionError("connection refused")


def test_redis_adapter_round_trip_and_key_layout() -> None:
    r = fakeredis.FakeRedis(decode_responses=True)
    adapter = RedisStorageAdapter(r=r, learner_id="alice")

    assert adapter.load("fluency_state") is None
    assert adapter.save("fluency_state", '{"version": 2}') is True
    assert adapter.load("fluency_state") == '{"version": 2}'
    assert r.get("fluency:state:alice:fluency_state") == '{"version": 2}'

    assert adapter.delete("fluency_state") is True
    assert adapter.delete("fluency_state") is False


def test_redis_adapter_handles_bytes_clients() -> None:
    r = fakeredis.FakeRedis()
    adapter = RedisStorageAdapter(r=r, learner_id="bob")
    adapter.save("k", "blob")

    assert adapter.load("k") == "blob"


def test_redis_adapter_swallows_backend_errors() -> None:
    adapter = RedisStorageAdapter(r=_BrokenRedis(), learner_id="alice")  # type: ignore[arg-type]

    assert adapter.load("k") is None
    assert adapter.save("k", "v") is False
    assert adapter.delete("k") is False


def test_http_adapter_load_and_save() -> None:
    stored: dict[str, str] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.startswith("/user-data/alice/")
        key = request.url.path.rsplit("/", 1)[-1]
        if request.method == "PUT":
            stored[key] = json.loads(request.content)["data"]
            return httpx.Response(200, json={"data": stored[key]})
        if key not in stored:
            return httpx.Response(404, json={"detail": "User data not found"})
        return httpx.Response(200, json={"data": stored[key]})

    client = httpx.Client(transport=httpx.MockTransport(handler))
    adapter = HttpStorageAdapter(base_url="http://store.local/", learner_id="alice", client=client)

    assert adapter.load("fluency_state") is None
    assert adapter.save("fluency_state", "blob-1") is True
    assert adapter.load("fluency_state") == "blob-1"


def test_http_adapter_reports_failures() -> None:
    def server_error(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    failing = HttpStorageAdapter(
        base_url="http://store.local",
        learner_id="alice",
        client=httpx.Client(transport=httpx.MockTransport(server_error)),
    )
    assert failing.load("k") is None
    assert failing.save("k", "v") is False

    offline = HttpStorageAdapter(
        base_url="http://store.local",
        learner_id="alice",
        client=httpx.Client(transport=httpx.MockTransport(unreachable)),
    )
    assert offline.load("k") is None
    assert offline.save("k", "v") is False


def test_http_adapter_against_user_data_api(client_and_redis) -> None:
    client, r, _ = client_and_redis
    adapter = HttpStorageAdapter(base_url="http://testserver", learner_id="alice", client=client)

    assert adapter.load("fluency_state") is None
    assert adapter.save("fluency_state", '{"version": 2}') is True
    assert adapter.load("fluency_state") == '{"version": 2}'
    assert r.get("fluency:state:alice:fluency_state") == '{"version": 2}'


def test_redis_adapter_rejects_undecodable_blob() -> None:
    r = fakeredis.FakeRedis()
    r.set("fluency:state:bob:fluency_state", b"\xff\xfe{")
    adapter = RedisStorageAdapter(r=r, learner_id="bob")

    assert adapter.load("fluency_state") is None

    store = FactStore(storage=adapter)
    assert store.load_state() is False
    assert store.snapshot() == StudentState()


def test_http_adapter_ignores_non_object_bodies() -> None:
    bodies = iter([["x"], "blob", {"data": 7}, {"data": "ok"}])

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=next(bodies))

    adapter = HttpStorageAdapter(
        base_url="http://store.local",
        learner_id="alice",
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )

    assert adapter.load("k") is None
    assert adapter.load("k") is None
    assert adapter.load("k") is None
    assert adapter.load("k") == "ok"
