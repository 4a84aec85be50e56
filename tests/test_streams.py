from __future__ import annotations

from datetime import UTC, datetime

import fakeredis
import redis

from fluency.core.events import BulkPromotionInfo, EventBus, IndividualFactProgressionInfo
from fluency.core.models import MasteryTier
from fluency.streams import AnalyticsStream, attach_stream_analytics, publish_event

TS = datetime(2025, 1, 1, tzinfo=UTC)


class _BrokenRedis:
    def xadd(self, key: str, fields: dict[str, str]) -> str:
        raise redis.ConnectionError("connection refused")


def test_bus_events_are_forwarded_to_learner_stream() -> None:
    r = fakeredis.FakeRedis(decode_responses=True)
    bus = EventBus()
    stream = attach_stream_analytics(bus=bus, r=r, learner_id="alice")

    bus.publish(
        IndividualFactProgressionInfo(
            fact_id="3x4", fact_set_id="x3", from_tier=MasteryTier.new, to_tier=MasteryTier.learning, streak=1, ts=TS
        )
    )
    bus.publish(BulkPromotionInfo(fact_ids=("3x1", "3x2"), to_tier=MasteryTier.practicing, ts=TS))

    assert stream.key == "analytics:alice"
    entries = r.xrange(stream.key)
    assert len(entries) == 2
    _, first = entries[0]
    assert first["type"] == "individual_fact_progression"
    assert first["fact_id"] == "3x4"
    assert first["to_tier"] == "learning"
    _, second = entries[1]
    assert second["type"] == "bulk_promotion"
    assert second["fact_ids"] == "3x1,3x2"
    assert second["promoted_facts_count"] == "2"


def test_publish_failure_is_not_raised() -> None:
    event = BulkPromotionInfo(fact_ids=("3x1",), to_tier=MasteryTier.learning, ts=TS)

    assert publish_event(r=_BrokenRedis(), stream=AnalyticsStream(learner_id="bob"), event=event) is None  # type: ignore[arg-type]
