from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, cast

import redis

from fluency.core.events import EngineEvent, EventBus

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AnalyticsStream:
    learner_id: str

    @property
    def key(self) -> str:
        return f"analytics:{self.learner_id}"


def _encode_fields(event_name: str, data: Mapping[str, Any]) -> dict[str, str]:
    fields = {"type": event_name}
    for k, v in data.items():
        # Streams only carry flat string fields.
        fields[str(k)] = ",".join(str(x) for x in v) if isinstance(v, (list, tuple)) else str(v)
    return fields


def publish_event(*, r: redis.Redis, stream: AnalyticsStream, event: EngineEvent) -> str | None:
    """Append an engine event to the learner's analytics stream. Fire-and-forget."""

    try:
        stream_id = r.xadd(stream.key, _encode_fields(event.event_name, event.to_analytics_data()))
    except redis.RedisError as e:
        logger.warning("Failed to publish %s to %s: %s", event.event_name, stream.key, e)
        return None
    return cast(str, stream_id)


def attach_stream_analytics(*, bus: EventBus, r: redis.Redis, learner_id: str) -> AnalyticsStream:
    stream = AnalyticsStream(learner_id=learner_id)

    def _forward(event: EngineEvent) -> None:
        publish_event(r=r, stream=stream, event=event)

    bus.subscribe_all(_forward)
    return stream
