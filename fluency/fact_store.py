from __future__ import annotations

import asyncio
import json
import logging
import threading
from collections.abc import Iterable
from concurrent.futures import Future, ThreadPoolExecutor, wait

from pydantic import ValidationError

from fluency.core.models import FactProgressionState, StudentState
from fluency.migrations import MigrationsRegistry, default_registry
from fluency.storage import StorageAdapter

logger = logging.getLogger(__name__)

DEFAULT_STATE_KEY = "fluency_state"


class FactStore:
    """Owns the learner's StudentState and its persistence.

    Contract:
      - `get()` lazily creates a default (new tier) entry; nothing is written until a save.
      - `load_state()` never raises: a missing, corrupt or unmigratable blob yields a fresh state.
      - `save_state_later()` never blocks the caller and coalesces bursts of writes; the
        last state always wins. Without a running event loop the write goes to a
        single background thread.
    """

    def __init__(
        self,
        *,
        storage: StorageAdapter,
        key: str = DEFAULT_STATE_KEY,
        migrations: MigrationsRegistry | None = None,
    ):
        self.storage = storage
        self.key = key
        self.migrations = migrations or default_registry()
        self._state = StudentState()
        self._dirty = False
        self._pending: asyncio.Task[None] | None = None

        self._lock = threading.Lock()
        self._queued_blob: str | None = None
        self._draining = False
        self._executor: ThreadPoolExecutor | None = None
        self._thread_future: Future[None] | None = None

    @property
    def state(self) -> StudentState:
        return self._state

    def get(self, fact_id: str) -> FactProgressionState:
        return self._state.facts.setdefault(fact_id, FactProgressionState())

    def peek(self, fact_id: str) -> FactProgressionState | None:
        return self._state.facts.get(fact_id)

    def set(self, fact_id: str, progress: FactProgressionState) -> None:
        self._state.facts[fact_id] = progress

    def snapshot(self) -> StudentState:
        return self._state.model_copy(deep=True)

    def restore(self, state: StudentState) -> None:
        self._state = state.model_copy(deep=True)

    def prune(self, known_fact_ids: Iterable[str]) -> list[str]:
        known = set(known_fact_ids)
        dropped = [fid for fid in self._state.facts if fid not in known]
        for fid in dropped:
            del self._state.facts[fid]
        if dropped:
            logger.info("Pruned %d unknown facts from state", len(dropped))
        return dropped

    def save_state(self) -> bool:
        return self.storage.save(self.key, self._state.model_dump_json())

    def load_state(self) -> bool:
        """Load from storage. Returns True when a stored state was applied."""

        raw = self.storage.load(self.key)
        if raw is None:
            self._state = StudentState()
            return False

        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Stored state under %s is not valid JSON; starting fresh", self.key)
            self._state = StudentState()
            return False
        if not isinstance(data, dict):
            logger.warning("Stored state under %s is not an object; starting fresh", self.key)
            self._state = StudentState()
            return False

        try:
            migrated = self.migrations.migrate_to_latest(data)
        except (ValueError, TypeError, AttributeError, OverflowError) as e:
            logger.warning("Stored state under %s could not be migrated (%s); starting fresh", self.key, e)
            self._state = StudentState()
            return False
        if migrated is None:
            self._state = StudentState()
            return False

        try:
            self._state = StudentState.model_validate(migrated)
        except ValidationError as e:
            logger.warning("Stored state under %s failed validation (%s); starting fresh", self.key, e)
            self._state = StudentState()
            return False
        return True

    def save_state_later(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._save_in_thread(self._state.model_dump_json())
            return

        self._dirty = True
        if self._pending is None or self._pending.done():
            self._pending = loop.create_task(self._flush())

    async def _flush(self) -> None:
        while self._dirty:
            self._dirty = False
            blob = self._state.model_dump_json()
            ok = await asyncio.to_thread(self.storage.save, self.key, blob)
            if not ok:
                logger.warning("Background save of %s failed", self.key)

    async def wait_for_pending_saves(self) -> None:
        if self._pending is not None:
            await self._pending

    def _save_in_thread(self, blob: str) -> None:
        with self._lock:
            self._queued_blob = blob
            if self._draining:
                return
            self._draining = True
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="fluency-save")
            self._thread_future = self._executor.submit(self._drain)

    def _drain(self) -> None:
        while True:
            with self._lock:
                blob = self._queued_blob
                self._queued_blob = None
                if blob is None:
                    self._draining = False
                    return
            try:
                ok = self.storage.save(self.key, blob)
            except Exception:
                logger.exception("Background save of %s raised", self.key)
                continue
            if not ok:
                logger.warning("Background save of %s failed", self.key)

    def wait_for_background_saves(self, timeout: float | None = None) -> bool:
        """Block until queued thread saves are written. Returns False on timeout."""

        future = self._thread_future
        if future is None:
            return True
        done, _ = wait([future], timeout=timeout)
        return bool(done)
