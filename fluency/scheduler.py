from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from fluency.config import BulkPromotionConfig, EngineConfig, PromotionConfig
from fluency.core.clock import TimeProvider
from fluency.core.events import (
    BulkPromotionInfo,
    EngineEvent,
    EventBus,
    FactSetCompletedInfo,
    FactSetReviewReadyInfo,
    IndividualFactProgressionInfo,
)
from fluency.core.models import (
    AnswerRecord,
    AnswerType,
    FactProgressionState,
    LearningMode,
    MasteryTier,
    StudentState,
)
from fluency.difficulty import DifficultyManager
from fluency.distractors import DistractorGenerator
from fluency.fact_store import FactStore
from fluency.facts import Fact, FactCatalog
from fluency.fsm import MasteryFSM
from fluency.gates import GenerationGateRegistry
from fluency.modifiers import QuestionModifierPipeline
from fluency.question import Question, SubmitAnswerResult, UserAnswerSubmission

logger = logging.getLogger(__name__)

_NEVER = datetime.min.replace(tzinfo=UTC)


@dataclass(frozen=True, slots=True)
class TierChange:
    fact: Fact
    from_tier: MasteryTier
    to_tier: MasteryTier
    streak: int


class Scheduler:
    """Selects facts, builds questions and evaluates answers.

    Contract:
      - `get_next_question_block()` never raises and never blocks. Each call supersedes
        every question handed out by the previous call.
      - `submit*()` on an unknown or superseded question id returns `found=False` and
        mutates nothing.
      - every state change is followed by a background save.
    """

    def __init__(
        self,
        *,
        store: FactStore,
        catalog: FactCatalog,
        clock: TimeProvider,
        bus: EventBus,
        gates: GenerationGateRegistry | None = None,
        modifiers: QuestionModifierPipeline | None = None,
        config: EngineConfig | None = None,
        distractors: DistractorGenerator | None = None,
    ):
        self.store = store
        self.catalog = catalog
        self.clock = clock
        self.bus = bus
        self.gates = gates if gates is not None else GenerationGateRegistry()
        self.modifiers = modifiers if modifiers is not None else QuestionModifierPipeline()
        self.config = config or EngineConfig()
        self.distractors = distractors
        self.difficulty = DifficultyManager(self.config.difficulty)

        self._live: dict[str, Question] = {}
        self._block_seq = 0

    def spacing_interval(self, progress: FactProgressionState) -> timedelta:
        return self.config.spacing.interval_for(
            streak=progress.consecutive_correct,
            tier=progress.mastery_tier,
        )

    def promotion_rules(self) -> tuple[PromotionConfig, BulkPromotionConfig]:
        if self.config.difficulty.enabled:
            level = self.difficulty.current
            return level.promotion, level.bulk_promotion
        return self.config.promotion, self.config.bulk_promotion

    def _tier_of(self, fact_id: str) -> MasteryTier:
        progress = self.store.peek(fact_id)
        return progress.mastery_tier if progress is not None else MasteryTier.new

    def _rank_key(self, fact: Fact) -> tuple[datetime, int, str]:
        progress = self.store.peek(fact.id)
        if progress is None:
            return (_NEVER, MasteryTier.new.rank, fact.id)
        return (progress.next_eligible_at or _NEVER, progress.mastery_tier.rank, fact.id)

    def eligible_facts(self) -> list[Fact]:
        """Facts due now, most overdue first, then lowest tier, then fact id."""

        now = self.clock.utc_now()
        due = []
        for fact in self.catalog:
            progress = self.store.peek(fact.id)
            if progress is None or progress.next_eligible_at is None or progress.next_eligible_at <= now:
                due.append(fact)
        due.sort(key=self._rank_key)
        return due

    def generation_mode_for(self, learning_mode: LearningMode) -> LearningMode:
        return self.store.state.mode or learning_mode

    def _build_question(self, fact: Fact) -> Question:
        learning_mode = self.config.learning_mode_for(self._tier_of(fact.id))
        generation_mode = self.generation_mode_for(learning_mode)
        question = Question.for_fact(
            fact,
            generation_mode=generation_mode,
            learning_mode=learning_mode,
            time_to_answer=self.config.timer_for(generation_mode),
        )
        if self.distractors is not None:
            question.choices = self.distractors.answer_options(fact)
        return self.modifiers.modify_question(question)

    def get_next_question_block(self, limit: int | None = None) -> Iterator[Question]:
        self._block_seq += 1
        self._live.clear()

        if not self.gates.can_generate():
            return iter(())

        size = self.config.block_size if limit is None else max(0, min(limit, self.config.block_size))
        facts = self.eligible_facts()[:size]
        logger.debug("Question block %d: %d eligible facts selected", self._block_seq, len(facts))
        return self._iter_block(self._block_seq, facts)

    def _iter_block(self, seq: int, facts: list[Fact]) -> Iterator[Question]:
        for fact in facts:
            # A newer block supersedes this one; stop issuing.
            if seq != self._block_seq:
                return
            question = self._build_question(fact)
            self._live[question.id] = question
            self.store.state.session.questions_generated += 1
            yield question

    def is_live(self, question_id: str) -> bool:
        return question_id in self._live

    def live_question(self, question_id: str) -> Question | None:
        return self._live.get(question_id)

    def submit_answer(self, question_id: str, answer: int, response_time_ms: float) -> SubmitAnswerResult:
        question = self._live.get(question_id)
        if question is None:
            return SubmitAnswerResult.not_found()
        submission = UserAnswerSubmission.from_answer(
            answer=answer,
            correct_answer=question.correct_answer,
            response_time_ms=response_time_ms,
        )
        return self.submit(question_id, submission)

    def submit(self, question_id: str, submission: UserAnswerSubmission) -> SubmitAnswerResult:
        return self.submit_batch([(question_id, submission)])[0]

    def submit_batch(self, items: Sequence[tuple[str, UserAnswerSubmission]]) -> list[SubmitAnswerResult]:
        """Evaluate submissions as one pass.

        Promotions to the same tier within a pass are reported as one BulkPromotionInfo.
        A wrong answer to a grounding question is not scored: the question stays live and
        the result carries `retry=True`.
        """

        now = self.clock.utc_now()
        results: list[SubmitAnswerResult] = []
        promotions: list[TierChange] = []
        demotions: list[TierChange] = []

        for question_id, submission in items:
            question = self._live.get(question_id)
            if question is None:
                logger.debug("Submission for unknown or expired question %s", question_id)
                results.append(SubmitAnswerResult.not_found())
                continue

            if self._should_retry(question, submission):
                self.store.state.session.grounding_retries += 1
                results.append(
                    SubmitAnswerResult(
                        found=True,
                        correct_answer=question.correct_answer,
                        answer_type=submission.answer_type,
                        retry=True,
                    )
                )
                continue

            del self._live[question_id]
            if question.time_ended is None:
                question.time_ended = now
            fact = self.catalog.get(question.fact_id)
            if fact is None:
                results.append(SubmitAnswerResult.not_found())
                continue

            change = self._apply(fact, submission, now)
            if change is not None:
                if change.to_tier.rank > change.from_tier.rank:
                    promotions.append(change)
                else:
                    demotions.append(change)

            if submission.answer_type is AnswerType.correct:
                promotions.extend(self._coverage_promotions(fact, now, already={c.fact.id for c in promotions}))

            results.append(
                SubmitAnswerResult(
                    found=True,
                    is_correct=submission.answer_type is AnswerType.correct,
                    correct_answer=question.correct_answer,
                    answer_type=submission.answer_type,
                )
            )

        if any(r.found for r in results):
            for event in self._progression_events(promotions, demotions, now):
                self.bus.publish(event)
            self.store.save_state_later()
        return results

    def _should_retry(self, question: Question, submission: UserAnswerSubmission) -> bool:
        return (
            self.config.grounding_retry
            and question.generation_mode is LearningMode.grounding
            and submission.answer_type is AnswerType.incorrect
        )

    def _record_answer(self, fact: Fact, answer_type: AnswerType, tier: MasteryTier, now: datetime) -> None:
        limit = self.config.answer_history_limit
        if limit <= 0:
            return
        history = self.store.state.answer_history
        history.append(
            AnswerRecord(
                fact_id=fact.id,
                fact_set_id=fact.fact_set_id,
                answer_type=answer_type,
                tier=tier,
                answered_at=now,
            )
        )
        if len(history) > limit:
            del history[: len(history) - limit]
        if self.config.difficulty.enabled:
            self.difficulty.update(self.store.state.recent_answers(self.config.difficulty.recent_answer_window))

    def _refresh_difficulty(self) -> None:
        self.difficulty.reset()
        if self.config.difficulty.enabled:
            self.difficulty.update(self.store.state.recent_answers(self.config.difficulty.recent_answer_window))

    def _apply(self, fact: Fact, submission: UserAnswerSubmission, now: datetime) -> TierChange | None:
        progress = self.store.get(fact.id)
        session = self.store.state.session
        session.questions_answered += 1

        if submission.answer_type is AnswerType.skipped:
            session.skipped += 1
            progress.next_eligible_at = now + timedelta(seconds=self.config.spacing.retry_interval_seconds)
            return None

        fsm = MasteryFSM(progress)
        from_tier = fsm.tier
        self._record_answer(fact, submission.answer_type, from_tier, now)
        promotion, _ = self.promotion_rules()
        answered = progress.times_correct + progress.times_incorrect
        progress.average_response_ms = (
            progress.average_response_ms * answered + submission.response_time_ms
        ) / (answered + 1)
        progress.last_practiced_at = now

        if submission.answer_type is AnswerType.correct:
            session.correct += 1
            session.correct_run += 1
            progress.times_correct += 1
            progress.consecutive_correct += 1
            progress.next_eligible_at = now + self.spacing_interval(progress)

            threshold = promotion.threshold_for(from_tier)
            if threshold is None or progress.consecutive_correct < threshold or not fsm.try_promote():
                return None
        else:
            if submission.answer_type is AnswerType.timed_out:
                session.timed_out += 1
            else:
                session.incorrect += 1
            session.correct_run = 0
            progress.times_incorrect += 1
            progress.consecutive_correct = 0
            progress.next_eligible_at = now + timedelta(seconds=self.config.spacing.retry_interval_seconds)

            if not fsm.try_demote(floor=promotion.demotion_floor):
                return None

        logger.debug("Fact %s: %s -> %s (streak %d)", fact.id, from_tier, fsm.tier, progress.consecutive_correct)
        return TierChange(fact=fact, from_tier=from_tier, to_tier=fsm.tier, streak=progress.consecutive_correct)

    def _coverage_promotions(self, fact: Fact, now: datetime, *, already: set[str]) -> list[TierChange]:
        _, bulk = self.promotion_rules()
        session = self.store.state.session
        if not bulk.enabled or session.correct_run < bulk.min_consecutive_correct:
            return []

        tier = self._tier_of(fact.id)
        if tier is MasteryTier.mastered:
            return []

        cohort = [f for f in self.catalog.facts_in_set(fact.fact_set_id) if self._tier_of(f.id) is tier]
        if len(cohort) < 2:
            return []
        practiced = [f for f in cohort if (p := self.store.peek(f.id)) is not None and p.last_practiced_at is not None]
        if len(practiced) / len(cohort) < bulk.min_coverage:
            return []

        changes: list[TierChange] = []
        for member in cohort:
            if member.id in already:
                continue
            progress = self.store.get(member.id)
            fsm = MasteryFSM(progress)
            if not fsm.try_promote():
                continue
            if progress.last_practiced_at is not None:
                spaced = progress.last_practiced_at + self.spacing_interval(progress)
                if progress.next_eligible_at is None or spaced > progress.next_eligible_at:
                    progress.next_eligible_at = spaced
            changes.append(TierChange(fact=member, from_tier=tier, to_tier=fsm.tier, streak=progress.consecutive_correct))

        if changes:
            session.correct_run = 0
            logger.info("Bulk promoted %d facts of %s to %s", len(changes), fact.fact_set_id, changes[0].to_tier)
        return changes

    def _progression_events(
        self,
        promotions: list[TierChange],
        demotions: list[TierChange],
        now: datetime,
    ) -> list[EngineEvent]:
        events: list[EngineEvent] = []

        by_tier: dict[MasteryTier, list[TierChange]] = {}
        for change in promotions:
            by_tier.setdefault(change.to_tier, []).append(change)
        for to_tier, changes in by_tier.items():
            if len(changes) > 1:
                events.append(BulkPromotionInfo(fact_ids=tuple(c.fact.id for c in changes), to_tier=to_tier, ts=now))
            else:
                events.append(self._individual(changes[0], now))

        events.extend(self._individual(c, now) for c in demotions)

        review_sets = {c.fact.fact_set_id for c in promotions if c.to_tier is MasteryTier.practicing}
        for fact_set_id in sorted(review_sets):
            facts = self.catalog.facts_in_set(fact_set_id)
            if facts and all(self._tier_of(f.id).rank >= MasteryTier.practicing.rank for f in facts):
                events.append(self._review_ready(fact_set_id, facts, now))

        completed_sets = {c.fact.fact_set_id for c in promotions if c.to_tier is MasteryTier.mastered}
        for fact_set_id in sorted(completed_sets):
            facts = self.catalog.facts_in_set(fact_set_id)
            if facts and all(self._tier_of(f.id) is MasteryTier.mastered for f in facts):
                events.append(FactSetCompletedInfo(fact_set_id=fact_set_id, fact_count=len(facts), ts=now))
        return events

    def _review_ready(self, fact_set_id: str, facts: Sequence[Fact], now: datetime) -> FactSetReviewReadyInfo:
        answered = 0
        for f in facts:
            p = self.store.peek(f.id)
            if p is not None:
                answered += p.times_correct + p.times_incorrect
        return FactSetReviewReadyInfo(
            fact_set_id=fact_set_id,
            next_fact_set_id=self.catalog.next_fact_set_id(fact_set_id),
            total_answer_count=answered,
            fact_count=len(facts),
            ts=now,
        )

    @staticmethod
    def _individual(change: TierChange, now: datetime) -> IndividualFactProgressionInfo:
        return IndividualFactProgressionInfo(
            fact_id=change.fact.id,
            fact_set_id=change.fact.fact_set_id,
            from_tier=change.from_tier,
            to_tier=change.to_tier,
            streak=change.streak,
            ts=now,
        )

    def get_state(self) -> StudentState:
        return self.store.snapshot()

    def set_state(self, state: StudentState) -> None:
        self.store.restore(state)
        self._live.clear()
        self._refresh_difficulty()
        self.store.save_state_later()

    def load_state(self) -> bool:
        loaded = self.store.load_state()
        self.store.prune(f.id for f in self.catalog)
        self._refresh_difficulty()
        return loaded

    def reset(self) -> None:
        self.store.restore(StudentState(facts={f.id: FactProgressionState() for f in self.catalog}))
        self._live.clear()
        self._refresh_difficulty()
        self.store.save_state_later()

    def set_mode(self, mode: LearningMode | None) -> None:
        self.store.state.mode = mode
        self.store.save_state_later()
