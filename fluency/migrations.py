from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from fluency.core.models import STATE_VERSION

logger = logging.getLogger(__name__)

StateDict = dict[str, Any]


@dataclass(frozen=True, slots=True)
class StateMigration:
    from_version: int
    to_version: int
    apply: Callable[[StateDict], StateDict]


class MigrationsRegistry:
    """Stepwise upgrades for persisted StudentState blobs.

    Each migration moves a decoded blob exactly one version forward. Blobs written before
    versioning existed (the legacy SDK shape) have no `version` field and count as version 1.
    """

    def __init__(self, latest_version: int = STATE_VERSION):
        self.latest_version = latest_version
        self._by_from: dict[int, StateMigration] = {}

    def register(self, migration: StateMigration) -> None:
        if migration.to_version != migration.from_version + 1:
            raise ValueError("Migrations must advance exactly one version")
        if migration.from_version in self._by_from:
            raise ValueError(f"Migration from version {migration.from_version} already registered")
        self._by_from[migration.from_version] = migration

    def path(self, from_version: int) -> list[StateMigration] | None:
        """Migrations needed to reach the latest version, or None if the chain is broken."""

        steps: list[StateMigration] = []
        v = from_version
        while v < self.latest_version:
            step = self._by_from.get(v)
            if step is None:
                return None
            steps.append(step)
            v = step.to_version
        return steps

    def migrate_to_latest(self, data: StateDict) -> StateDict | None:
        version = data.get("version", 1)
        if not isinstance(version, int) or version > self.latest_version or version < 1:
            logger.warning("Unsupported state version %r; starting fresh", version)
            return None

        steps = self.path(version)
        if steps is None:
            logger.warning("No migration path from state version %s; starting fresh", version)
            return None

        for step in steps:
            data = step.apply(data)
            data["version"] = step.to_version
            logger.info("Migrated state v%s -> v%s", step.from_version, step.to_version)
        return data


_LEGACY_MODES = {
    "learning": None,
    "placement": "assessment",
    "reinforcement": "practice",
}


def _as_number(value: Any) -> float:
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"Expected a number, got {value!r}")
    return max(0.0, float(value))


def _v1_to_v2(data: StateDict) -> StateDict:
    learned = data.get("learnedFacts")
    if learned is None:
        learned = {}
    if not isinstance(learned, dict):
        raise ValueError("learnedFacts must be an object")

    facts: dict[str, Any] = {}
    for fact_id, legacy in learned.items():
        if not isinstance(legacy, dict):
            continue
        times_correct = int(_as_number(legacy.get("timesCorrect")))
        times_incorrect = int(_as_number(legacy.get("timesIncorrect")))

        last_seen = legacy.get("lastSeen")
        last_practiced_at = None
        if isinstance(last_seen, (int, float)) and not isinstance(last_seen, bool) and last_seen > 0:
            try:
                last_practiced_at = datetime.fromtimestamp(last_seen / 1000.0, tz=UTC).isoformat()
            except (OverflowError, OSError, ValueError):
                logger.debug("Dropping out-of-range lastSeen %r for %s", last_seen, fact_id)

        facts[str(fact_id)] = {
            "mastery_tier": "learning" if times_correct > 0 else "new",
            "consecutive_correct": 0,
            "last_practiced_at": last_practiced_at,
            "next_eligible_at": last_practiced_at,
            "times_correct": times_correct,
            "times_incorrect": times_incorrect,
            "average_response_ms": _as_number(legacy.get("averageResponseTime")),
        }

    return {
        "version": 2,
        "facts": facts,
        "mode": _LEGACY_MODES.get(str(data.get("mode") or "learning")),
        "session": {},
    }


def _v2_to_v3(data: StateDict) -> StateDict:
    history = data.get("answer_history")
    if not isinstance(history, list):
        history = []
    return {**data, "answer_history": history}


def default_registry() -> MigrationsRegistry:
    registry = MigrationsRegistry()
    registry.register(StateMigration(from_version=1, to_version=2, apply=_v1_to_v2))
    registry.register(StateMigration(from_version=2, to_version=3, apply=_v2_to_v3))
    return registry
