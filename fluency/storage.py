from __future__ import annotations

import logging
from typing import Protocol

import httpx
import redis

logger = logging.getLogger(__name__)

STATE_KEY_PREFIX = "fluency:state:"  # + {learner_id}:{key}


class StorageAdapter(Protocol):
    """Opaque blob store used by FactStore.

    Implementations never raise for backend failures: `load` returns None and
    `save` returns False.
    """

    def load(self, key: str) -> str | None:  # pragma: no cover
        ...

    def save(self, key: str, blob: str) -> bool:  # pragma: no cover
        ...


class InMemoryStorageAdapter:
    def __init__(self) -> None:
        self.blobs: dict[str, str] = {}

    def load(self, key: str) -> str | None:
        return self.blobs.get(key)

    def save(self, key: str, blob: str) -> bool:
        self.blobs[key] = blob
        return True


class RedisStorageAdapter:
    def __init__(self, *, r: redis.Redis, learner_id: str, prefix: str = STATE_KEY_PREFIX):
        self.r = r
        self.learner_id = learner_id
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{self.learner_id}:{key}"

    def load(self, key: str) -> str | None:
        try:
            raw = self.r.get(self._key(key))
        except redis.RedisError as e:
            logger.warning("Failed to load %s for learner %s: %s", key, self.learner_id, e)
            return None
        if raw is None:
            return None
        if not isinstance(raw, bytes):
            return str(raw)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            logger.warning("Stored %s for learner %s is not UTF-8: %s", key, self.learner_id, e)
            return None

    def save(self, key: str, blob: str) -> bool:
        try:
            self.r.set(self._key(key), blob)
        except redis.RedisError as e:
            logger.warning("Failed to save %s for learner %s: %s", key, self.learner_id, e)
            return False
        return True

    def delete(self, key: str) -> bool:
        try:
            return bool(self.r.delete(self._key(key)))
        except redis.RedisError as e:
            logger.warning("Failed to delete %s for learner %s: %s", key, self.learner_id, e)
            return False


class HttpStorageAdapter:
    """Talks to a remote user-data service (`/user-data/{learner_id}/{key}`).

    Bodies are JSON: `{"data": "<blob>"}`.
    """

    def __init__(self, *, base_url: str, learner_id: str, client: httpx.Client | None = None):
        self.base_url = base_url.rstrip("/")
        self.learner_id = learner_id
        self.client = client or httpx.Client(timeout=10.0)

    def _url(self, key: str) -> str:
        return f"{self.base_url}/user-data/{self.learner_id}/{key}"

    def load(self, key: str) -> str | None:
        try:
            resp = self.client.get(self._url(key))
            if resp.status_code == 404:
                return None
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Failed to load %s for learner %s: %s", key, self.learner_id, e)
            return None
        if not isinstance(body, dict):
            logger.warning("Unexpected user-data body for %s, learner %s", key, self.learner_id)
            return None
        data = body.get("data")
        return data if isinstance(data, str) else None

    def save(self, key: str, blob: str) -> bool:
        try:
            resp = self.client.put(self._url(key), json={"data": blob})
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Failed to save %s for learner %s: %s", key, self.learner_id, e)
            return False
        return True
