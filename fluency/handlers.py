from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Flag, auto
from typing import Protocol

from fluency.core.models import LearningMode, QuestionKind
from fluency.question import Question

logger = logging.getLogger(__name__)

# Shows the question to the player. Returns False if it could not be shown.
Presenter = Callable[[Question], bool]


class QuestionHandlerFlags(Flag):
    NONE = 0
    IS_ENABLED = auto()
    PAUSE_THE_GAME = auto()
    DISABLE_PAUSE_COUNTDOWN = auto()
    WORKS_DURING_FINISHED_GAME = auto()
    PROCESS_RESULT_AFTER_PRESENTATION = auto()


@dataclass(frozen=True, slots=True)
class QuestionHandlerResult:
    success: bool
    question_id: str
    reason: str | None = None

    @classmethod
    def ok(cls, question: Question) -> "QuestionHandlerResult":
        return cls(success=True, question_id=question.id)

    @classmethod
    def error(cls, question: Question, reason: str) -> "QuestionHandlerResult":
        return cls(success=False, question_id=question.id, reason=reason)


class HandlerRejected(ValueError):
    """Raised by a HandlerCheck; the message becomes the result's reason."""


class HandlerCheck(ABC):
    """A small, composable eligibility unit for a handler."""

    @abstractmethod
    def validate(self, *, handler: "QuestionHandler", question: Question) -> None:
        raise NotImplementedError


@dataclass(frozen=True, slots=True)
class EnabledCheck(HandlerCheck):
    def validate(self, *, handler: "QuestionHandler", question: Question) -> None:
        if not handler.has_flag(QuestionHandlerFlags.IS_ENABLED):
            raise HandlerRejected("Handler is not enabled")


@dataclass(frozen=True, slots=True)
class BusyCheck(HandlerCheck):
    def validate(self, *, handler: "QuestionHandler", question: Question) -> None:
        if handler.current_question is not None:
            raise HandlerRejected("A question is already being handled")


@dataclass(frozen=True, slots=True)
class LearningModeCheck(HandlerCheck):
    accepted_modes: frozenset[LearningMode]

    def validate(self, *, handler: "QuestionHandler", question: Question) -> None:
        if question.learning_mode not in self.accepted_modes:
            accepted = ",".join(sorted(m.value for m in self.accepted_modes))
            raise HandlerRejected(
                f"Handler accepts {accepted} mode but question is {question.learning_mode.value} mode"
            )


@dataclass(frozen=True, slots=True)
class QuestionKindCheck(HandlerCheck):
    accepted_kinds: frozenset[QuestionKind]

    def validate(self, *, handler: "QuestionHandler", question: Question) -> None:
        if question.kind not in self.accepted_kinds:
            raise HandlerRejected(f"Handler does not accept {question.kind.value} questions")


@dataclass(frozen=True, slots=True)
class FinishedGameCheck(HandlerCheck):
    is_game_finished: Callable[[], bool]

    def validate(self, *, handler: "QuestionHandler", question: Question) -> None:
        if self.is_game_finished() and not handler.has_flag(QuestionHandlerFlags.WORKS_DURING_FINISHED_GAME):
            raise HandlerRejected("Game is finished and handler doesn't work during finished game")


@dataclass(frozen=True, slots=True)
class PredicateCheck(HandlerCheck):
    predicate: Callable[[], bool]
    reason: str

    def validate(self, *, handler: "QuestionHandler", question: Question) -> None:
        if not self.predicate():
            raise HandlerRejected(self.reason)


class TokenCounter:
    """Consumable budget (revives, powerup spawns)."""

    def __init__(self, tokens: int = 0):
        if tokens < 0:
            raise ValueError("tokens must be >= 0")
        self.tokens = tokens

    @property
    def available(self) -> bool:
        return self.tokens > 0

    def grant(self, n: int = 1) -> None:
        if n < 0:
            raise ValueError("n must be >= 0")
        self.tokens += n

    def consume(self) -> bool:
        if self.tokens <= 0:
            return False
        self.tokens -= 1
        return True


@dataclass(frozen=True, slots=True)
class TokenCheck(HandlerCheck):
    counter: TokenCounter
    label: str = "token"

    def validate(self, *, handler: "QuestionHandler", question: Question) -> None:
        if not self.counter.available:
            raise HandlerRejected(f"No {self.label} available")


class QuestionGameplayHandler(Protocol):
    handler_identifier: str
    flags: QuestionHandlerFlags

    def has_flag(self, flag: QuestionHandlerFlags) -> bool:  # pragma: no cover
        ...

    def can_handle_question_now(self, question: Question) -> QuestionHandlerResult:  # pragma: no cover
        ...

    def handle_question(self, question: Question) -> bool:  # pragma: no cover
        ...

    def release(self, question_id: str) -> None:  # pragma: no cover
        ...


@dataclass
class QuestionHandler:
    """A context that can present questions (gameplay obstacle, revive screen, ...).

    Eligibility is `EnabledCheck`, `BusyCheck` and then `checks`, in order.
    If `token` is set, one token is consumed each time a question is taken.
    """

    handler_identifier: str
    presenter: Presenter
    flags: QuestionHandlerFlags = QuestionHandlerFlags.IS_ENABLED
    checks: tuple[HandlerCheck, ...] = ()
    token: TokenCounter | None = None
    current_question: Question | None = field(default=None, init=False)

    def has_flag(self, flag: QuestionHandlerFlags) -> bool:
        return flag in self.flags

    def set_enabled(self, enabled: bool) -> None:
        if enabled:
            self.flags |= QuestionHandlerFlags.IS_ENABLED
        else:
            self.flags &= ~QuestionHandlerFlags.IS_ENABLED

    def can_handle_question_now(self, question: Question) -> QuestionHandlerResult:
        try:
            for check in (EnabledCheck(), BusyCheck(), *self.checks):
                check.validate(handler=self, question=question)
        except ValueError as e:
            return QuestionHandlerResult.error(question, str(e))
        return QuestionHandlerResult.ok(question)

    def handle_question(self, question: Question) -> bool:
        if self.current_question is not None:
            return False
        self.current_question = question
        try:
            shown = bool(self.presenter(question))
        except Exception:
            logger.exception("Presenter for %s failed on question %s", self.handler_identifier, question.id)
            shown = False
        if not shown:
            self.current_question = None
            return False
        if self.token is not None:
            self.token.consume()
        return True

    def release(self, question_id: str) -> None:
        if self.current_question is not None and self.current_question.id == question_id:
            self.current_question = None


_STANDARD_ONLY = QuestionKindCheck(accepted_kinds=frozenset({QuestionKind.standard}))


def _finished_check(is_game_finished: Callable[[], bool] | None) -> tuple[HandlerCheck, ...]:
    return (FinishedGameCheck(is_game_finished=is_game_finished),) if is_game_finished is not None else ()


def gameplay_handler(
    presenter: Presenter,
    *,
    accepted_modes: Iterable[LearningMode] = (LearningMode.assessment, LearningMode.practice),
    is_game_finished: Callable[[], bool] | None = None,
) -> QuestionHandler:
    """In-run questions (answer obstacles). The game keeps running."""

    return QuestionHandler(
        handler_identifier="gameplay",
        presenter=presenter,
        flags=QuestionHandlerFlags.IS_ENABLED,
        checks=(
            LearningModeCheck(accepted_modes=frozenset(accepted_modes)),
            _STANDARD_ONLY,
            *_finished_check(is_game_finished),
        ),
    )


def revive_handler(
    presenter: Presenter,
    *,
    revives: TokenCounter,
    is_game_finished: Callable[[], bool] | None = None,
) -> QuestionHandler:
    """Answer to continue after a crash. Needs a revive token; pauses without countdown."""

    return QuestionHandler(
        handler_identifier="revive",
        presenter=presenter,
        flags=(
            QuestionHandlerFlags.IS_ENABLED
            | QuestionHandlerFlags.PAUSE_THE_GAME
            | QuestionHandlerFlags.DISABLE_PAUSE_COUNTDOWN
            | QuestionHandlerFlags.WORKS_DURING_FINISHED_GAME
        ),
        checks=(
            LearningModeCheck(accepted_modes=frozenset(LearningMode)),
            _STANDARD_ONLY,
            TokenCheck(counter=revives, label="revive"),
            *_finished_check(is_game_finished),
        ),
        token=revives,
    )


def tutorial_handler(presenter: Presenter) -> QuestionHandler:
    """Guided questions. Only takes tutorial-kind questions and shows feedback before scoring."""

    return QuestionHandler(
        handler_identifier="tutorial",
        presenter=presenter,
        flags=(
            QuestionHandlerFlags.IS_ENABLED
            | QuestionHandlerFlags.PAUSE_THE_GAME
            | QuestionHandlerFlags.PROCESS_RESULT_AFTER_PRESENTATION
        ),
        checks=(QuestionKindCheck(accepted_kinds=frozenset({QuestionKind.tutorial})),),
    )


def powerup_handler(
    presenter: Presenter,
    *,
    consumables: TokenCounter,
    is_track_moving: Callable[[], bool] | None = None,
) -> QuestionHandler:
    """Question attached to a spawned powerup. Needs a consumable to spawn."""

    checks: list[HandlerCheck] = [
        LearningModeCheck(accepted_modes=frozenset({LearningMode.practice})),
        _STANDARD_ONLY,
        TokenCheck(counter=consumables, label="consumable"),
    ]
    if is_track_moving is not None:
        checks.append(PredicateCheck(predicate=is_track_moving, reason="Track is not moving"))
    return QuestionHandler(
        handler_identifier="powerup",
        presenter=presenter,
        flags=QuestionHandlerFlags.IS_ENABLED | QuestionHandlerFlags.PAUSE_THE_GAME,
        checks=tuple(checks),
        token=consumables,
    )


class QuestionHandlerChain:
    """Ordered arbitration: the first handler whose checks pass owns the question.

    If that handler then fails to present it, the question is discarded; later
    handlers are not consulted.
    """

    def __init__(self) -> None:
        self._handlers: list[QuestionGameplayHandler] = []

    @property
    def handlers(self) -> tuple[QuestionGameplayHandler, ...]:
        return tuple(self._handlers)

    def register(self, handler: QuestionGameplayHandler) -> None:
        if any(h is handler for h in self._handlers):
            return
        self._handlers.append(handler)

    def unregister(self, handler: QuestionGameplayHandler) -> bool:
        before = len(self._handlers)
        self._handlers = [h for h in self._handlers if h is not handler]
        return len(self._handlers) != before

    def offer(self, question: Question, *, started_at: datetime) -> QuestionGameplayHandler | None:
        for handler in self._handlers:
            result = handler.can_handle_question_now(question)
            if not result.success:
                logger.debug("Handler %s rejected %s: %s", handler.handler_identifier, question.id, result.reason)
                continue

            question.time_started = started_at
            if handler.handle_question(question):
                return handler
            question.time_started = None
            logger.debug("Handler %s failed to present %s; discarding", handler.handler_identifier, question.id)
            return None

        logger.debug("No handler accepted question %s; discarding", question.id)
        return None
