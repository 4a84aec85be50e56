from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import timedelta
from typing import Protocol

from fluency.core.clock import TimeProvider
from fluency.core.events import EventBus, QuestionAnsweredEvent, QuestionDisplayedEvent
from fluency.core.models import AnswerType
from fluency.gates import CooldownGate
from fluency.handlers import QuestionGameplayHandler, QuestionHandlerChain, QuestionHandlerFlags
from fluency.question import Question, SubmitAnswerResult, UserAnswerSubmission
from fluency.scheduler import Scheduler

logger = logging.getLogger(__name__)


class GameLoopControl(Protocol):
    def pause(self, *, with_countdown: bool) -> None:  # pragma: no cover
        ...

    def resume(self) -> None:  # pragma: no cover
        ...


@dataclass(slots=True)
class ActiveQuestion:
    question: Question
    handler: QuestionGameplayHandler
    # Answer held back until the handler finishes its feedback presentation.
    pending: UserAnswerSubmission | None = None


class QuestionProvider:
    """Drives one question at a time from the scheduler to a handler and back.

    Contract:
      - `tick()` presents at most one question, and only when none is active.
      - a timed question that outlives its timer is submitted as timed out on the next tick.
      - handlers flagged PROCESS_RESULT_AFTER_PRESENTATION get their answer scored only
        after `finish_presentation()`.
      - a result with `retry=True` keeps the question active with a fresh timer.
    """

    def __init__(
        self,
        *,
        scheduler: Scheduler,
        chain: QuestionHandlerChain,
        clock: TimeProvider,
        bus: EventBus,
        game_loop: GameLoopControl | None = None,
        cooldown: CooldownGate | None = None,
    ):
        self.scheduler = scheduler
        self.chain = chain
        self.clock = clock
        self.bus = bus
        self.game_loop = game_loop
        self.cooldown = cooldown

        self.active: ActiveQuestion | None = None
        self._queue: deque[Question] = deque()
        self._paused = False

    def tick(self) -> Question | None:
        if self.active is not None:
            self._time_out_if_due()
            return None

        if not self.scheduler.gates.can_generate():
            return None

        question = self._next_question()
        if question is None:
            return None

        now = self.clock.utc_now()
        handler = self.chain.offer(question, started_at=now)
        if handler is None:
            return None

        self.active = ActiveQuestion(question=question, handler=handler)
        if self.game_loop is not None and handler.has_flag(QuestionHandlerFlags.PAUSE_THE_GAME):
            with_countdown = not handler.has_flag(QuestionHandlerFlags.DISABLE_PAUSE_COUNTDOWN)
            self.game_loop.pause(with_countdown=with_countdown)
            self._paused = True

        self.bus.publish(
            QuestionDisplayedEvent(
                question_id=question.id,
                fact_id=question.fact_id,
                generation_mode=question.generation_mode,
                learning_mode=question.learning_mode,
                handler_identifier=handler.handler_identifier,
                ts=now,
            )
        )
        return question

    def _next_question(self) -> Question | None:
        while True:
            if not self._queue:
                self._queue.extend(self.scheduler.get_next_question_block())
                if not self._queue:
                    return None
            question = self._queue.popleft()
            if self.scheduler.is_live(question.id):
                return question

    def _time_out_if_due(self) -> None:
        active = self.active
        if active is None or active.pending is not None:
            return
        question = active.question
        if question.time_to_answer is None or question.time_started is None:
            return
        deadline = question.time_started + timedelta(seconds=question.time_to_answer)
        if self.clock.utc_now() >= deadline:
            logger.debug("Question %s timed out", question.id)
            self.report_answer(
                question.id,
                answer_type=AnswerType.timed_out,
                response_time_ms=question.time_to_answer * 1000.0,
            )

    def report_answer(
        self,
        question_id: str,
        answer: int | None = None,
        response_time_ms: float = 0.0,
        *,
        answer_type: AnswerType | None = None,
    ) -> SubmitAnswerResult:
        active = self.active
        if active is None or active.question.id != question_id or active.pending is not None:
            return SubmitAnswerResult.not_found()
        question = active.question

        if answer_type is None:
            if answer is None:
                raise ValueError("answer or answer_type is required")
            submission = UserAnswerSubmission.from_answer(
                answer=answer,
                correct_answer=question.correct_answer,
                response_time_ms=response_time_ms,
            )
        elif answer_type is AnswerType.timed_out:
            submission = UserAnswerSubmission.from_timed_out(response_time_ms=response_time_ms)
        elif answer_type is AnswerType.skipped:
            submission = UserAnswerSubmission.from_skipped()
        else:
            submission = UserAnswerSubmission(answer_type=answer_type, answer=answer, response_time_ms=response_time_ms)

        if active.handler.has_flag(QuestionHandlerFlags.PROCESS_RESULT_AFTER_PRESENTATION):
            active.pending = submission
            if question.time_ended is None:
                question.time_ended = self.clock.utc_now()
            return SubmitAnswerResult(
                found=True,
                is_correct=submission.answer_type is AnswerType.correct,
                correct_answer=question.correct_answer,
                answer_type=submission.answer_type,
                deferred=True,
            )
        return self._complete(active, submission)

    def finish_presentation(self, question_id: str) -> SubmitAnswerResult:
        active = self.active
        if active is None or active.question.id != question_id or active.pending is None:
            return SubmitAnswerResult.not_found()
        return self._complete(active, active.pending)

    def expire(self, question_id: str) -> bool:
        """Release an unanswered question without scoring it; it is offered again next tick."""

        active = self.active
        if active is None or active.question.id != question_id or active.pending is not None:
            return False
        active.question.time_started = None
        self._release(active)
        self._queue.appendleft(active.question)
        return True

    def interrupt(self) -> SubmitAnswerResult | None:
        """Game state changed under the active question: score it as skipped."""

        active = self.active
        if active is None:
            return None
        if active.pending is not None:
            return self._complete(active, active.pending)
        return self.report_answer(active.question.id, answer_type=AnswerType.skipped)

    def _complete(self, active: ActiveQuestion, submission: UserAnswerSubmission) -> SubmitAnswerResult:
        question = active.question
        result = self.scheduler.submit(question.id, submission)
        if result.retry:
            active.pending = None
            question.time_ended = None
            question.time_started = self.clock.utc_now()
        else:
            self._release(active)
            if self.cooldown is not None:
                self.cooldown.mark_question_ended()

        if result.found:
            self.bus.publish(
                QuestionAnsweredEvent(
                    question_id=question.id,
                    fact_id=question.fact_id,
                    answer_type=submission.answer_type,
                    response_time_seconds=submission.response_time_seconds,
                    generation_mode=question.generation_mode,
                    learning_mode=question.learning_mode,
                    handler_identifier=active.handler.handler_identifier,
                    ts=self.clock.utc_now(),
                )
            )
        return result

    def _release(self, active: ActiveQuestion) -> None:
        active.handler.release(active.question.id)
        self.active = None
        if self._paused and self.game_loop is not None:
            self.game_loop.resume()
        self._paused = False
