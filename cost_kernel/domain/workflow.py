"""
Canonical workflow types and the certification state machine
(``cost_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for document state machines, plus the one workflow the
kernel runs: the certification lifecycle.  Each transition names the guards
that must pass before any mutation; the certification service evaluates
them in order.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* At most one transition per (action, from_state).
"""

from __future__ import annotations

from dataclasses import dataclass

from cost_kernel.domain.dtos import CertificationStatus


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition -- the owning service does.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow.

    ``guards`` are evaluated in declaration order; the first failure aborts
    the transition before anything is written.
    """
    from_state: str
    to_state: str
    action: str
    guards: tuple[Guard, ...] = ()


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle.

    Contract: frozen; ``transitions`` reference only states in ``states``.
    ``terminal_states`` are states with no outgoing transitions.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(f"initial state {self.initial_state!r} not in states")
        seen: set[tuple[str, str]] = set()
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"transition {t.action} references unknown state "
                    f"({t.from_state} -> {t.to_state})"
                )
            key = (t.action, t.from_state)
            if key in seen:
                raise ValueError(f"duplicate transition {t.action} from {t.from_state}")
            seen.add(key)

    def find(self, action: str, from_state: str) -> Transition | None:
        for t in self.transitions:
            if t.action == action and t.from_state == from_state:
                return t
        return None

    def actions_from(self, state: str) -> tuple[str, ...]:
        return tuple(t.action for t in self.transitions if t.from_state == state)


# ---------------------------------------------------------------------------
# Certification lifecycle
# ---------------------------------------------------------------------------

EDITABLE = Guard("editable", "certification is DRAFT or REJECTED")
HAS_LINES = Guard("has_lines", "certification has at least one line")
LINE_INVARIANTS = Guard("line_invariants", "every line satisfies the progress invariant chain")
SUBMITTED = Guard("submitted", "certification is SUBMITTED")
BASELINES_CURRENT = Guard(
    "baselines_current", "every line was computed against the current approved baseline"
)
PERIOD_IN_ORDER = Guard(
    "period_in_order", "period is not earlier than any baseline period it builds on"
)
NOT_SEALED = Guard("not_sealed", "certification is neither APPROVED nor VOID")
COMMENT_PRESENT = Guard("comment_present", "a non-blank rejection comment is given")
APPROVED = Guard("approved", "certification is APPROVED")
NOT_SUPERSEDED = Guard(
    "not_superseded", "no later approval has built on any of the certification's lines"
)

_S = CertificationStatus

CERTIFICATION_WORKFLOW = Workflow(
    name="certification",
    description="Progress certification lifecycle",
    initial_state=_S.DRAFT.value,
    states=tuple(s.value for s in _S),
    transitions=(
        Transition(_S.DRAFT.value, _S.SUBMITTED.value, "submit",
                   guards=(EDITABLE, HAS_LINES, LINE_INVARIANTS)),
        Transition(_S.REJECTED.value, _S.SUBMITTED.value, "submit",
                   guards=(EDITABLE, HAS_LINES, LINE_INVARIANTS)),
        Transition(_S.SUBMITTED.value, _S.APPROVED.value, "approve",
                   guards=(SUBMITTED, LINE_INVARIANTS, BASELINES_CURRENT, PERIOD_IN_ORDER)),
        Transition(_S.DRAFT.value, _S.REJECTED.value, "reject",
                   guards=(NOT_SEALED, COMMENT_PRESENT)),
        Transition(_S.SUBMITTED.value, _S.REJECTED.value, "reject",
                   guards=(NOT_SEALED, COMMENT_PRESENT)),
        Transition(_S.APPROVED.value, _S.VOID.value, "void",
                   guards=(APPROVED, NOT_SUPERSEDED)),
    ),
    terminal_states=(_S.VOID.value,),
)
