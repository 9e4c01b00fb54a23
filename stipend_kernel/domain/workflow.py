"""
Workflow state machines (``stipend_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for role-gated state machines and the two concrete
machines the kernel runs: the stipend request approval chain and the
negative earnings cap request.  A transition is looked up by
``(current_state, action, role)``; anything not in the table is rejected.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  Services call
``resolve_transition`` before touching any row, so a rejected action has
no side effects.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from stipend_kernel.domain.roles import Role
from stipend_kernel.exceptions import InvalidStateTransitionError


@dataclass(frozen=True)
class Guard:
    """A condition that must hold before a transition fires (descriptive only)."""

    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition, gated to one role.

    ``posts_entry=True`` marks transitions that write ledger entries.
    """

    from_state: str
    to_state: str
    action: str
    role: Role
    guard: Guard | None = None
    posts_entry: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a request lifecycle."""

    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(f"{self.name}: initial state {self.initial_state!r} not in states")
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(f"{self.name}: transition {t.action} references unknown state")
            if t.from_state in self.terminal_states and t.to_state != t.from_state:
                raise ValueError(f"{self.name}: terminal state {t.from_state!r} has an exit")

    def find(self, current_state: str, action: str, role: Role) -> Transition | None:
        for t in self.transitions:
            if t.from_state == current_state and t.action == action and t.role == role:
                return t
        return None

    def gate_role(self, state: str, action: str) -> Role | None:
        """Role that may perform ``action`` from ``state``, if any."""
        for t in self.transitions:
            if t.from_state == state and t.action == action:
                return t.role
        return None


def resolve_transition(
    workflow: Workflow,
    entity_id: str,
    current_state: str,
    action: str,
    role: Role,
) -> Transition:
    """Look up a transition or raise InvalidStateTransitionError."""
    transition = workflow.find(current_state, action, role)
    if transition is None:
        raise InvalidStateTransitionError(
            entity_type=workflow.name,
            entity_id=entity_id,
            current_state=current_state,
            action=action,
            role=role.value,
        )
    return transition


# =========================================================================
# Stipend request
# =========================================================================


class RequestStatus(str, Enum):
    PENDING_PSM = "pending_psm"
    PENDING_LEAD_PSM = "pending_lead_psm"
    PENDING_FINANCE = "pending_finance"
    APPROVED = "approved"
    REJECTED = "rejected"


class RequestType(str, Enum):
    ONE_TIME = "one_time"
    RECURRING = "recurring"


class StipendCategory(str, Enum):
    LEASE_STIPEND = "lease_stipend"
    STAFF_COST_REIMBURSEMENT = "staff_cost_reimbursement"
    MARKETING = "marketing"
    EQUIPMENT = "equipment"
    TRAINING = "training"
    OTHER = "other"


class RequestAction:
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL_PERIOD = "cancel_period"
    MARK_PERIOD_PAID = "mark_period_paid"


PENDING_REQUEST_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.PENDING_PSM,
    RequestStatus.PENDING_LEAD_PSM,
    RequestStatus.PENDING_FINANCE,
})

_S = RequestStatus
_A = RequestAction

_HAS_REASON = Guard("has_reason", "Rejection reason is not blank")
_FUNDS_AVAILABLE = Guard(
    "funds_available",
    "Total commitment does not exceed the practice's live available balance",
)
_PERIOD_COMMITTED = Guard("period_committed", "Period is currently committed")
_PERIOD_LIVE = Guard("period_live", "Period is committed or paid")

STIPEND_REQUEST_WORKFLOW = Workflow(
    name="stipend_request",
    description="Three-gate approval chain; final approval commits funds",
    initial_state=_S.PENDING_PSM.value,
    states=tuple(s.value for s in RequestStatus),
    transitions=(
        Transition(_S.PENDING_PSM.value, _S.PENDING_LEAD_PSM.value, _A.APPROVE, Role.PSM),
        Transition(_S.PENDING_LEAD_PSM.value, _S.PENDING_FINANCE.value, _A.APPROVE, Role.LEAD_PSM),
        Transition(
            _S.PENDING_FINANCE.value, _S.APPROVED.value, _A.APPROVE, Role.FINANCE,
            guard=_FUNDS_AVAILABLE, posts_entry=True,
        ),
        Transition(_S.PENDING_PSM.value, _S.REJECTED.value, _A.REJECT, Role.PSM, guard=_HAS_REASON),
        Transition(_S.PENDING_LEAD_PSM.value, _S.REJECTED.value, _A.REJECT, Role.LEAD_PSM, guard=_HAS_REASON),
        Transition(_S.PENDING_FINANCE.value, _S.REJECTED.value, _A.REJECT, Role.FINANCE, guard=_HAS_REASON),
        Transition(
            _S.APPROVED.value, _S.APPROVED.value, _A.CANCEL_PERIOD, Role.FINANCE,
            guard=_PERIOD_LIVE, posts_entry=True,
        ),
        Transition(
            _S.APPROVED.value, _S.APPROVED.value, _A.MARK_PERIOD_PAID, Role.FINANCE,
            guard=_PERIOD_COMMITTED, posts_entry=True,
        ),
    ),
    terminal_states=(_S.APPROVED.value, _S.REJECTED.value),
)


# =========================================================================
# Negative earnings cap request
# =========================================================================


class NegativeEarningsStatus(str, Enum):
    PENDING_FINANCE = "pending_finance"
    APPROVED = "approved"
    REJECTED = "rejected"


NEGATIVE_EARNINGS_WORKFLOW = Workflow(
    name="negative_earnings_cap_request",
    description="Single Finance gate; never touches the stipend ledger",
    initial_state=NegativeEarningsStatus.PENDING_FINANCE.value,
    states=tuple(s.value for s in NegativeEarningsStatus),
    transitions=(
        Transition(
            NegativeEarningsStatus.PENDING_FINANCE.value,
            NegativeEarningsStatus.APPROVED.value,
            _A.APPROVE,
            Role.FINANCE,
        ),
        Transition(
            NegativeEarningsStatus.PENDING_FINANCE.value,
            NegativeEarningsStatus.REJECTED.value,
            _A.REJECT,
            Role.FINANCE,
            guard=_HAS_REASON,
        ),
    ),
    terminal_states=(
        NegativeEarningsStatus.APPROVED.value,
        NegativeEarningsStatus.REJECTED.value,
    ),
)
