from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from fluency.core.models import FactProgressionState, MasteryTier


class MasteryFSM(StateMachine):
    """FSM wrapper around a fact's FactProgressionState.

    Tiers only move one step at a time:
      new -> learning -> practicing -> mastered (promote)
      mastered -> practicing -> learning -> new (demote)
    Thresholds and the demotion floor are decided by the scheduler; the FSM only guards steps.
    """

    new = State(MasteryTier.new.value, value=MasteryTier.new.value, initial=True)
    learning = State(MasteryTier.learning.value, value=MasteryTier.learning.value)
    practicing = State(MasteryTier.practicing.value, value=MasteryTier.practicing.value)
    mastered = State(MasteryTier.mastered.value, value=MasteryTier.mastered.value)

    promote = new.to(learning) | learning.to(practicing) | practicing.to(mastered)
    demote = learning.to(new) | practicing.to(learning) | mastered.to(practicing)

    def __init__(self, progress: FactProgressionState):
        self.progress = progress
        super().__init__(start_value=progress.mastery_tier.value)

    @property
    def tier(self) -> MasteryTier:
        return MasteryTier(str(self.current_state.value))

    def try_promote(self) -> bool:
        if self.tier is MasteryTier.mastered:
            return False
        try:
            self.promote()
        except TransitionNotAllowed:
            return False
        self.sync_tier_to_model()
        return True

    def try_demote(self, *, floor: MasteryTier = MasteryTier.new) -> bool:
        if self.tier.rank <= floor.rank:
            return False
        try:
            self.demote()
        except TransitionNotAllowed:
            return False
        self.sync_tier_to_model()
        return True

    def sync_tier_to_model(self) -> None:
        self.progress.mastery_tier = self.tier
