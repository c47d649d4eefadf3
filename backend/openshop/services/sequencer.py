"""Wizard step list and the position state machine over it.

The candidate steps are fixed; each carries a visibility predicate and
the effective list is whatever passes the filter for the current
context.  Only the Partnership step is conditional today.

Transitions:
  advance()    → next effective step (caller validates/saves first)
  retreat()    → previous step, no validation
  jump_to(i)   → only back to an already-visited index
  recompute()  → re-filter after a config change, keeping the index valid
After mark_submitted() every transition is refused.
"""

from dataclasses import dataclass, field
from typing import Callable

from openshop.middleware.exceptions import IllegalTransitionError
from openshop.schemas.catalog import DerivedStoreConfig


@dataclass(frozen=True)
class StepContext:
    config: DerivedStoreConfig = field(default_factory=DerivedStoreConfig)
    edit_mode: bool = False
    has_established_partnerships: bool = False


@dataclass(frozen=True)
class StepDescriptor:
    key: str
    title: str
    is_visible: Callable[[StepContext], bool] = lambda ctx: True


def _partnership_visible(ctx: StepContext) -> bool:
    if ctx.config.needs_partnerships:
        return True
    return ctx.edit_mode and ctx.has_established_partnerships


CANDIDATE_STEPS: tuple[StepDescriptor, ...] = (
    StepDescriptor("basics", "Store Basics"),
    StepDescriptor("location", "Location & Logistics"),
    StepDescriptor("partnership", "Partnerships", _partnership_visible),
    StepDescriptor("policies", "Policies & Hours"),
    StepDescriptor("branding", "Branding"),
    StepDescriptor("review", "Review & Submit"),
)

_CANDIDATE_POSITION = {step.key: pos for pos, step in enumerate(CANDIDATE_STEPS)}


def effective_steps(ctx: StepContext) -> list[StepDescriptor]:
    return [step for step in CANDIDATE_STEPS if step.is_visible(ctx)]


def clamp_index(
    old_steps: list[StepDescriptor],
    old_index: int,
    new_steps: list[StepDescriptor],
) -> int:
    """Map a position in the old list onto the new one.

    A step that survives keeps its identity.  A step that disappeared
    lands on whichever visible step now occupies its slot, i.e. the next
    candidate after it (or the last step if nothing follows).
    """
    last = len(new_steps) - 1
    if not old_steps:
        return max(0, min(old_index, last))

    old_index = max(0, min(old_index, len(old_steps) - 1))
    current_key = old_steps[old_index].key
    new_keys = [step.key for step in new_steps]
    if current_key in new_keys:
        return new_keys.index(current_key)

    removed_at = _CANDIDATE_POSITION[current_key]
    before = sum(1 for step in new_steps if _CANDIDATE_POSITION[step.key] < removed_at)
    return min(before, last)


class StepSequencer:
    def __init__(self, context: StepContext | None = None, index: int = 0):
        self._context = context or StepContext()
        self._steps = effective_steps(self._context)
        self._index = max(0, min(index, len(self._steps) - 1))
        self._submitted = False

    @property
    def context(self) -> StepContext:
        return self._context

    @property
    def steps(self) -> list[StepDescriptor]:
        return list(self._steps)

    @property
    def index(self) -> int:
        return self._index

    @property
    def current(self) -> StepDescriptor:
        return self._steps[self._index]

    @property
    def is_last(self) -> bool:
        return self._index == len(self._steps) - 1

    @property
    def submitted(self) -> bool:
        return self._submitted

    def recompute(self, context: StepContext) -> int:
        new_steps = effective_steps(context)
        self._index = clamp_index(self._steps, self._index, new_steps)
        self._steps = new_steps
        self._context = context
        return self._index

    def _check_open(self) -> None:
        if self._submitted:
            raise IllegalTransitionError("Store has already been submitted")

    def advance(self) -> int:
        self._check_open()
        if self.is_last:
            raise IllegalTransitionError("Already on the last step; submit instead")
        self._index += 1
        return self._index

    def retreat(self) -> int:
        self._check_open()
        if self._index == 0:
            raise IllegalTransitionError("Already on the first step")
        self._index -= 1
        return self._index

    def jump_to(self, index: int) -> int:
        self._check_open()
        if index < 0 or index >= self._index:
            raise IllegalTransitionError(
                f"Cannot jump from step {self._index + 1} to step {index + 1}; "
                "only completed steps can be revisited"
            )
        self._index = index
        return self._index

    def mark_submitted(self) -> None:
        self._submitted = True
