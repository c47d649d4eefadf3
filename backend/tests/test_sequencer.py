"""Tests for the step list and navigation state machine."""

import pytest

from openshop.middleware.exceptions import IllegalTransitionError
from openshop.schemas.catalog import DerivedStoreConfig
from openshop.services.sequencer import (
    CANDIDATE_STEPS,
    StepContext,
    StepSequencer,
    effective_steps,
)

PARTNERED = StepContext(config=DerivedStoreConfig(
    store_type="producer", can_produce=True, needs_partnerships=True, partnership_type="processor",
))
PLAIN = StepContext()


def keys(steps):
    return [step.key for step in steps]


@pytest.mark.unit
class TestEffectiveSteps:
    def test_plain_store_has_five_steps(self):
        assert keys(effective_steps(PLAIN)) == [
            "basics", "location", "policies", "branding", "review",
        ]

    def test_partnership_step_inserted_in_fixed_position(self):
        with_step = keys(effective_steps(PARTNERED))
        assert with_step == keys(CANDIDATE_STEPS)
        assert with_step.index("partnership") == 2
        # Other steps keep their relative order
        assert [k for k in with_step if k != "partnership"] == keys(effective_steps(PLAIN))

    def test_edit_mode_with_established_partnerships_shows_step(self):
        ctx = StepContext(edit_mode=True, has_established_partnerships=True)
        assert "partnership" in keys(effective_steps(ctx))

    def test_established_partnerships_ignored_outside_edit_mode(self):
        ctx = StepContext(edit_mode=False, has_established_partnerships=True)
        assert "partnership" not in keys(effective_steps(ctx))


@pytest.mark.unit
class TestTransitions:
    def test_advance_and_retreat(self):
        seq = StepSequencer(PLAIN)
        assert seq.current.key == "basics"
        assert seq.advance() == 1
        assert seq.current.key == "location"
        assert seq.retreat() == 0

    def test_retreat_from_first_step_is_illegal(self):
        with pytest.raises(IllegalTransitionError):
            StepSequencer(PLAIN).retreat()

    def test_advance_past_last_step_is_illegal(self):
        seq = StepSequencer(PLAIN, index=4)
        assert seq.is_last
        with pytest.raises(IllegalTransitionError):
            seq.advance()

    def test_jump_back_only(self):
        seq = StepSequencer(PLAIN, index=3)
        assert seq.jump_to(1) == 1
        with pytest.raises(IllegalTransitionError):
            seq.jump_to(1)  # not strictly behind the current step
        with pytest.raises(IllegalTransitionError):
            seq.jump_to(3)

    def test_negative_jump_is_illegal(self):
        seq = StepSequencer(PLAIN, index=2)
        with pytest.raises(IllegalTransitionError):
            seq.jump_to(-1)

    def test_no_moves_after_submission(self):
        seq = StepSequencer(PLAIN, index=4)
        seq.mark_submitted()
        with pytest.raises(IllegalTransitionError):
            seq.retreat()
        with pytest.raises(IllegalTransitionError):
            seq.jump_to(0)

    def test_initial_index_is_clamped(self):
        assert StepSequencer(PLAIN, index=42).index == 4


@pytest.mark.unit
class TestRecompute:
    def test_partnership_step_removed_while_on_it(self):
        seq = StepSequencer(PARTNERED, index=2)
        assert seq.current.key == "partnership"
        index = seq.recompute(PLAIN)
        assert index == 2
        assert seq.current.key == "policies"
        assert len(seq.steps) == 5

    def test_later_step_keeps_identity_when_list_shrinks(self):
        seq = StepSequencer(PARTNERED, index=4)
        assert seq.current.key == "branding"
        seq.recompute(PLAIN)
        assert seq.current.key == "branding"
        assert seq.index == 3

    def test_later_step_keeps_identity_when_list_grows(self):
        seq = StepSequencer(PLAIN, index=2)
        assert seq.current.key == "policies"
        seq.recompute(PARTNERED)
        assert seq.current.key == "policies"
        assert seq.index == 3

    def test_earlier_step_unaffected(self):
        seq = StepSequencer(PLAIN, index=1)
        seq.recompute(PARTNERED)
        assert seq.current.key == "location"
        assert seq.index == 1

    def test_index_always_valid(self):
        for ctx_from, ctx_to in [(PLAIN, PARTNERED), (PARTNERED, PLAIN)]:
            for start in range(len(effective_steps(ctx_from))):
                seq = StepSequencer(ctx_from, index=start)
                seq.recompute(ctx_to)
                assert 0 <= seq.index < len(seq.steps)
