from __future__ import annotations

from fluency.core.events import QuestionAnsweredEvent, QuestionDisplayedEvent
from fluency.core.models import AnswerType, LearningMode
from fluency.gates import FlagGate
from fluency.handlers import QuestionHandler, QuestionHandlerFlags


class FakeGameLoop:
    def __init__(self) -> None:
        self.calls: list[tuple[str, bool | None]] = []

    def pause(self, *, with_countdown: bool) -> None:
        self.calls.append(("pause", with_countdown))

    def resume(self) -> None:
        self.calls.append(("resume", None))


def _accept_all(identifier: str = "screen", flags: QuestionHandlerFlags = QuestionHandlerFlags.IS_ENABLED) -> QuestionHandler:
    return QuestionHandler(handler_identifier=identifier, presenter=lambda q: True, flags=flags)


def test_tick_presents_one_question_at_a_time(make_engine, clock) -> None:
    engine = make_engine()
    handler = _accept_all()
    engine.chain.register(handler)
    events: list = []
    engine.bus.subscribe_all(events.append)

    q = engine.provider.tick()

    assert q is not None
    assert q.time_started == clock.utc_now()
    assert handler.current_question is q
    assert engine.provider.tick() is None
    displayed = [e for e in events if isinstance(e, QuestionDisplayedEvent)]
    assert len(displayed) == 1
    assert displayed[0].handler_identifier == "screen"
    assert displayed[0].question_id == q.id


def test_report_answer_scores_and_releases(make_engine, clock) -> None:
    engine = make_engine()
    handler = _accept_all()
    engine.chain.register(handler)
    events: list = []
    engine.bus.subscribe(QuestionAnsweredEvent, events.append)

    q = engine.provider.tick()
    clock.advance(2)
    result = engine.provider.report_answer(q.id, q.correct_answer, 2000)

    assert result.found and result.is_correct and not result.deferred
    assert handler.current_question is None
    assert engine.provider.active is None
    assert engine.store.get(q.fact_id).consecutive_correct == 1
    assert len(events) == 1
    assert events[0].answer_type == AnswerType.correct
    assert events[0].response_time_seconds == 2.0
    assert events[0].handler_identifier == "screen"

    nxt = engine.provider.tick()
    assert nxt is not None and nxt.id != q.id


def test_report_answer_for_other_question_is_not_found(make_engine) -> None:
    engine = make_engine()
    engine.chain.register(_accept_all())
    engine.provider.tick()

    assert engine.provider.report_answer("other", 3).found is False


def test_pausing_handler_pauses_and_resumes_game_loop(make_engine) -> None:
    loop = FakeGameLoop()
    engine = make_engine(game_loop=loop)
    engine.chain.register(
        _accept_all(
            "revive",
            QuestionHandlerFlags.IS_ENABLED
            | QuestionHandlerFlags.PAUSE_THE_GAME
            | QuestionHandlerFlags.DISABLE_PAUSE_COUNTDOWN,
        )
    )

    q = engine.provider.tick()
    assert loop.calls == [("pause", False)]

    engine.provider.report_answer(q.id, q.correct_answer + 1, 900)
    assert loop.calls == [("pause", False), ("resume", None)]


def test_result_is_held_until_presentation_finishes(make_engine) -> None:
    engine = make_engine()
    engine.chain.register(
        _accept_all("tutorial", QuestionHandlerFlags.IS_ENABLED | QuestionHandlerFlags.PROCESS_RESULT_AFTER_PRESENTATION)
    )

    q = engine.provider.tick()
    held = engine.provider.report_answer(q.id, q.correct_answer, 1000)

    assert held.deferred is True and held.is_correct is True
    assert engine.store.get(q.fact_id).times_correct == 0
    assert engine.provider.tick() is None
    assert engine.provider.report_answer(q.id, q.correct_answer, 1000).found is False

    done = engine.provider.finish_presentation(q.id)

    assert done.found and not done.deferred
    assert engine.store.get(q.fact_id).times_correct == 1
    assert engine.provider.finish_presentation(q.id).found is False


def test_timed_question_times_out_on_tick(make_engine, clock) -> None:
    engine = make_engine()
    engine.chain.register(_accept_all())
    engine.scheduler.set_mode(LearningMode.practice)
    events: list = []
    engine.bus.subscribe(QuestionAnsweredEvent, events.append)

    q = engine.provider.tick()
    assert q.time_to_answer == 6.0

    clock.advance(5)
    assert engine.provider.tick() is None
    assert engine.provider.active is not None

    clock.advance(1)
    engine.provider.tick()

    assert engine.provider.active is None
    assert engine.store.get(q.fact_id).times_incorrect == 1
    assert events[0].answer_type == AnswerType.timed_out


def test_expire_requeues_question_without_scoring(make_engine) -> None:
    engine = make_engine()
    engine.chain.register(_accept_all())

    q = engine.provider.tick()
    assert engine.provider.expire(q.id) is True
    assert q.time_started is None
    assert engine.store.peek(q.fact_id) is None

    again = engine.provider.tick()
    assert again is q


def test_interrupt_scores_active_question_as_skipped(make_engine) -> None:
    engine = make_engine()
    engine.chain.register(_accept_all())

    assert engine.provider.interrupt() is None
    q = engine.provider.tick()
    result = engine.provider.interrupt()

    assert result is not None and result.answer_type == AnswerType.skipped
    assert engine.store.get(q.fact_id).consecutive_correct == 0
    assert engine.provider.active is None


def test_closed_gate_blocks_tick(make_engine) -> None:
    engine = make_engine()
    engine.chain.register(_accept_all())
    gate = FlagGate("pause", open=False)
    engine.gates.register_gate(gate)

    assert engine.provider.tick() is None
    gate.open()
    assert engine.provider.tick() is not None


def test_cooldown_between_questions(make_engine, make_config, clock) -> None:
    engine = make_engine(make_config(min_question_interval_seconds=5))
    engine.chain.register(_accept_all())

    q = engine.provider.tick()
    engine.provider.report_answer(q.id, q.correct_answer, 500)

    assert engine.provider.tick() is None
    assert engine.gates.blocking_gate() == "cooldown"
    clock.advance(5)
    assert engine.provider.tick() is not None


def test_unpresented_question_is_discarded(make_engine) -> None:
    engine = make_engine()
    engine.chain.register(QuestionHandler(handler_identifier="offscreen", presenter=lambda q: False))

    assert engine.provider.tick() is None
    assert engine.provider.active is None


def test_deferred_result_keeps_the_time_the_answer_was_given(make_engine, clock) -> None:
    engine = make_engine()
    engine.chain.register(
        _accept_all("tutorial", QuestionHandlerFlags.IS_ENABLED | QuestionHandlerFlags.PROCESS_RESULT_AFTER_PRESENTATION)
    )

    q = engine.provider.tick()
    clock.advance(2)
    answered_at = clock.utc_now()
    engine.provider.report_answer(q.id, q.correct_answer, 2000)
    clock.advance(3)
    engine.provider.finish_presentation(q.id)

    assert q.time_ended == answered_at


def test_wrong_grounding_answer_keeps_question_active(make_engine, clock) -> None:
    loop = FakeGameLoop()
    engine = make_engine(game_loop=loop)
    handler = _accept_all("screen", QuestionHandlerFlags.IS_ENABLED | QuestionHandlerFlags.PAUSE_THE_GAME)
    engine.chain.register(handler)
    engine.scheduler.set_mode(LearningMode.grounding)
    events: list = []
    engine.bus.subscribe(QuestionAnsweredEvent, events.append)

    q = engine.provider.tick()
    assert q.generation_mode == LearningMode.grounding
    clock.advance(4)
    retry = engine.provider.report_answer(q.id, q.correct_answer + 1, 4000)

    assert retry.found and retry.retry and not retry.is_correct
    assert engine.provider.active is not None and engine.provider.active.question is q
    assert handler.current_question is q
    assert q.time_started == clock.utc_now()
    assert q.time_ended is None
    assert loop.calls == [("pause", True)]
    assert engine.provider.tick() is None
    assert engine.store.get(q.fact_id).times_incorrect == 0

    done = engine.provider.report_answer(q.id, q.correct_answer, 1500)

    assert done.found and done.is_correct and not done.retry
    assert engine.provider.active is None
    assert loop.calls == [("pause", True), ("resume", None)]
    assert [e.answer_type for e in events] == [AnswerType.incorrect, AnswerType.correct]
    assert engine.store.get(q.fact_id).times_correct == 1
