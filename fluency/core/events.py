from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, TypeVar

from fluency.core.models import AnswerType, LearningMode, MasteryTier

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class IndividualFactProgressionInfo:
    event_name: ClassVar[str] = "individual_fact_progression"

    fact_id: str
    fact_set_id: str
    from_tier: MasteryTier
    to_tier: MasteryTier
    streak: int
    ts: datetime

    def to_analytics_data(self) -> dict[str, Any]:
        return {
            "fact_id": self.fact_id,
            "fact_set_id": self.fact_set_id,
            "from_tier": self.from_tier.value,
            "to_tier": self.to_tier.value,
            "streak": self.streak,
            "timestamp": int(self.ts.timestamp()),
        }


@dataclass(frozen=True, slots=True)
class BulkPromotionInfo:
    """A cohort of facts promoted together in one evaluation pass."""

    event_name: ClassVar[str] = "bulk_promotion"

    fact_ids: tuple[str, ...]
    to_tier: MasteryTier
    ts: datetime

    def to_analytics_data(self) -> dict[str, Any]:
        return {
            "fact_ids": list(self.fact_ids),
            "promoted_facts_count": len(self.fact_ids),
            "to_tier": self.to_tier.value,
            "timestamp": int(self.ts.timestamp()),
        }


@dataclass(frozen=True, slots=True)
class FactSetReviewReadyInfo:
    """Every fact of a set has reached the practicing tier or above."""

    event_name: ClassVar[str] = "fact_set_review_ready"

    fact_set_id: str
    # Following set in catalog order; None for the last set.
    next_fact_set_id: str | None
    total_answer_count: int
    fact_count: int
    ts: datetime

    def to_analytics_data(self) -> dict[str, Any]:
        return {
            "fact_set_id": self.fact_set_id,
            "next_fact_set_id": self.next_fact_set_id or "",
            "total_answer_count": self.total_answer_count,
            "total_facts_count": self.fact_count,
            "timestamp": int(self.ts.timestamp()),
        }


@dataclass(frozen=True, slots=True)
class FactSetCompletedInfo:
    event_name: ClassVar[str] = "fact_set_completion"

    fact_set_id: str
    fact_count: int
    ts: datetime

    def to_analytics_data(self) -> dict[str, Any]:
        return {
            "completed_fact_set_id": self.fact_set_id,
            "total_facts_count": self.fact_count,
            "timestamp": int(self.ts.timestamp()),
        }


@dataclass(frozen=True, slots=True)
class QuestionDisplayedEvent:
    event_name: ClassVar[str] = "question_displayed"

    question_id: str
    fact_id: str
    generation_mode: LearningMode
    learning_mode: LearningMode
    handler_identifier: str
    ts: datetime

    def to_analytics_data(self) -> dict[str, Any]:
        return {
            "question_id": self.question_id,
            "fact_id": self.fact_id,
            "generation_mode": self.generation_mode.value,
            "learning_mode": self.learning_mode.value,
            "handler_identifier": self.handler_identifier,
            "timestamp": int(self.ts.timestamp()),
        }


@dataclass(frozen=True, slots=True)
class QuestionAnsweredEvent:
    event_name: ClassVar[str] = "question_answered"

    question_id: str
    fact_id: str
    answer_type: AnswerType
    response_time_seconds: float
    generation_mode: LearningMode
    learning_mode: LearningMode
    handler_identifier: str
    ts: datetime

    def to_analytics_data(self) -> dict[str, Any]:
        return {
            "question_id": self.question_id,
            "fact_id": self.fact_id,
            "answer_type": self.answer_type.value,
            "response_time_seconds": round(self.response_time_seconds, 3),
            "generation_mode": self.generation_mode.value,
            "learning_mode": self.learning_mode.value,
            "handler_identifier": self.handler_identifier,
            "timestamp": int(self.ts.timestamp()),
        }


EngineEvent = (
    IndividualFactProgressionInfo
    | BulkPromotionInfo
    | FactSetReviewReadyInfo
    | FactSetCompletedInfo
    | QuestionDisplayedEvent
    | QuestionAnsweredEvent
)

E = TypeVar("E")
Subscriber = Callable[[Any], None]


class EventBus:
    """In-process publish/subscribe for engine events.

    Contract:
      - `subscribe(event_type, callback)` receives only that payload type;
        `subscribe_all(callback)` receives everything.
      - delivery is synchronous and in registration order.
      - a failing subscriber is logged and skipped; publishers never see its error.
    """

    def __init__(self) -> None:
        self._subscribers: list[tuple[type | None, Subscriber]] = []

    def subscribe(self, event_type: type[E], callback: Callable[[E], None]) -> None:
        self._subscribers.append((event_type, callback))

    def subscribe_all(self, callback: Subscriber) -> None:
        self._subscribers.append((None, callback))

    def unsubscribe(self, callback: Subscriber, event_type: type | None = None) -> bool:
        before = len(self._subscribers)
        self._subscribers = [
            (t, cb)
            for t, cb in self._subscribers
            if not (cb == callback and (event_type is None or t is event_type))
        ]
        return len(self._subscribers) != before

    def publish(self, event: EngineEvent) -> None:
        for event_type, callback in list(self._subscribers):
            if event_type is not None and not isinstance(event, event_type):
                continue
            try:
                callback(event)
            except Exception:
                logger.exception("Event subscriber failed for %s", event.event_name)

    def __len__(self) -> int:
        return len(self._subscribers)
