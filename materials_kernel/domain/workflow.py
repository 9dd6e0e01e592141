"""
Request workflow graphs (``materials_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects and the transition tables for the three request
families.  Each family is a tagged variant (``RequestFamily``) with an
explicit, exhaustive transition table; every caller goes through the same
two functions:

* ``can_transition(role, family, from_state, action)`` -- capability check.
* ``resolve_transition(family, from_state, action, role, context)`` --
  returns the single transition that fires, or raises
  ``IllegalTransitionError``.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
* A (state, action) pair with several targets is disambiguated by guards;
  at most one guard may hold for a given context.

Graphs
------
standard::

    pending_ho --forward--> forwarded_to_md --approve--> md_approved
        |                        \\--reject--> md_rejected
        \\--reject--> ho_rejected

production_direct::

    pending_warehouse --dispatch[all_lines_available]--> dispatched
    pending_warehouse --dispatch[any_line_short]--> stock_shortage
    stock_shortage    --dispatch[...]--> dispatched | stock_shortage
    dispatched --acknowledge_receipt--> received

distributor::

    Pending --approve--> Approved --dispatch[fully_dispatched]--> Dispatched
    Approved --dispatch[partially_dispatched]--> Approved
    Pending --reject--> Rejected
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

from materials_kernel.domain.identity import Role
from materials_kernel.exceptions import IllegalTransitionError


class RequestFamily(str, Enum):
    """The three request families sharing one request shape."""

    STANDARD = "standard"
    PRODUCTION_DIRECT = "production_direct"
    DISTRIBUTOR = "distributor"


class StandardStatus(str, Enum):
    PENDING_HO = "pending_ho"
    FORWARDED_TO_MD = "forwarded_to_md"
    MD_APPROVED = "md_approved"
    MD_REJECTED = "md_rejected"
    HO_REJECTED = "ho_rejected"


class ProductionStatus(str, Enum):
    PENDING_WAREHOUSE = "pending_warehouse"
    DISPATCHED = "dispatched"
    STOCK_SHORTAGE = "stock_shortage"
    RECEIVED = "received"


class DistributorStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    DISPATCHED = "Dispatched"
    REJECTED = "Rejected"


class Action(str, Enum):
    """User-facing actions that drive a request through its graph."""

    SUBMIT = "submit"
    FORWARD = "forward"
    APPROVE = "approve"
    REJECT = "reject"
    DISPATCH = "dispatch"
    ACKNOWLEDGE_RECEIPT = "acknowledge_receipt"


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition -- ``evaluate_guard`` does,
    against the context the orchestrator supplies.
    """

    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow.

    ``posts_movements=True`` marks transitions whose side effect writes to
    the stock ledger (dispatch, receipt).  Rejections never do.
    """

    from_state: str
    to_state: str
    action: str
    roles: frozenset[Role]
    guard: Guard | None = None
    posts_movements: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for one request family."""

    name: str
    family: RequestFamily
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...]
    submit_roles: frozenset[Role]

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"{self.name}: initial state {self.initial_state!r} not in states"
            )
        for t in self.transitions:
            for state in (t.from_state, t.to_state):
                if state not in self.states:
                    raise ValueError(f"{self.name}: unknown state {state!r}")
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"{self.name}: terminal state {t.from_state!r} has an "
                    f"outgoing '{t.action}' transition"
                )

    def transitions_from(self, state: str, action: str) -> tuple[Transition, ...]:
        return tuple(
            t for t in self.transitions
            if t.from_state == state and t.action == action
        )

    def actions_from(self, state: str) -> frozenset[str]:
        return frozenset(t.action for t in self.transitions if t.from_state == state)

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------

ALL_LINES_AVAILABLE = Guard(
    "all_lines_available",
    "Every line of the request clears the availability check",
)
ANY_LINE_SHORT = Guard(
    "any_line_short",
    "At least one line of the request is short of stock",
)
FULLY_DISPATCHED = Guard(
    "fully_dispatched",
    "Cumulative dispatched quantity equals approved quantity on every line",
)
PARTIALLY_DISPATCHED = Guard(
    "partially_dispatched",
    "At least one line still has an undispatched approved quantity",
)


def _has_no_shortages(context: Mapping[str, Any]) -> bool:
    return "shortages" in context and not context["shortages"]


def _has_shortages(context: Mapping[str, Any]) -> bool:
    return bool(context.get("shortages"))


def _nothing_remaining(context: Mapping[str, Any]) -> bool:
    remaining = context.get("remaining")
    if remaining is None:
        return False
    return all(Decimal(v) == 0 for v in remaining.values())


def _something_remaining(context: Mapping[str, Any]) -> bool:
    remaining = context.get("remaining")
    if remaining is None:
        return False
    return any(Decimal(v) > 0 for v in remaining.values())


_GUARD_EVALUATORS: dict[str, Callable[[Mapping[str, Any]], bool]] = {
    ALL_LINES_AVAILABLE.name: _has_no_shortages,
    ANY_LINE_SHORT.name: _has_shortages,
    FULLY_DISPATCHED.name: _nothing_remaining,
    PARTIALLY_DISPATCHED.name: _something_remaining,
}


def evaluate_guard(guard: Guard, context: Mapping[str, Any]) -> bool:
    """Evaluate a guard against a transition context.

    Missing context keys make a guard fail closed.
    """
    evaluator = _GUARD_EVALUATORS.get(guard.name)
    if evaluator is None:
        raise ValueError(f"No evaluator registered for guard {guard.name!r}")
    return evaluator(context)


# ---------------------------------------------------------------------------
# Transition tables
# ---------------------------------------------------------------------------

_HO = frozenset({Role.HEAD_OF_OPERATIONS})
_MD = frozenset({Role.MAIN_DIRECTOR})
_WAREHOUSE = frozenset({Role.WAREHOUSE_STAFF})
_PRODUCTION = frozenset({Role.PRODUCTION_MANAGER})
_APPROVERS = frozenset({Role.HEAD_OF_OPERATIONS, Role.MAIN_DIRECTOR})
_FG_STORE = frozenset({Role.FINISHED_GOODS_STORE_MANAGER})

STANDARD_WORKFLOW = Workflow(
    name="standard_material_request",
    family=RequestFamily.STANDARD,
    description="Raw/packing material request approved by HO then MD",
    initial_state=StandardStatus.PENDING_HO.value,
    states=tuple(s.value for s in StandardStatus),
    transitions=(
        Transition(
            StandardStatus.PENDING_HO.value,
            StandardStatus.FORWARDED_TO_MD.value,
            Action.FORWARD.value,
            _HO,
        ),
        Transition(
            StandardStatus.PENDING_HO.value,
            StandardStatus.HO_REJECTED.value,
            Action.REJECT.value,
            _HO,
        ),
        Transition(
            StandardStatus.FORWARDED_TO_MD.value,
            StandardStatus.MD_APPROVED.value,
            Action.APPROVE.value,
            _MD,
        ),
        Transition(
            StandardStatus.FORWARDED_TO_MD.value,
            StandardStatus.MD_REJECTED.value,
            Action.REJECT.value,
            _MD,
        ),
    ),
    terminal_states=(
        StandardStatus.MD_APPROVED.value,
        StandardStatus.MD_REJECTED.value,
        StandardStatus.HO_REJECTED.value,
    ),
    submit_roles=frozenset({Role.WAREHOUSE_STAFF, Role.PACKING_AREA_MANAGER}),
)

_dispatch_sources = (
    ProductionStatus.PENDING_WAREHOUSE.value,
    ProductionStatus.STOCK_SHORTAGE.value,
)

PRODUCTION_DIRECT_WORKFLOW = Workflow(
    name="production_direct_request",
    family=RequestFamily.PRODUCTION_DIRECT,
    description="Production request filled straight from the warehouse",
    initial_state=ProductionStatus.PENDING_WAREHOUSE.value,
    states=tuple(s.value for s in ProductionStatus),
    transitions=tuple(
        t
        for source in _dispatch_sources
        for t in (
            Transition(
                source,
                ProductionStatus.DISPATCHED.value,
                Action.DISPATCH.value,
                _WAREHOUSE,
                guard=ALL_LINES_AVAILABLE,
                posts_movements=True,
            ),
            Transition(
                source,
                ProductionStatus.STOCK_SHORTAGE.value,
                Action.DISPATCH.value,
                _WAREHOUSE,
                guard=ANY_LINE_SHORT,
            ),
        )
    )
    + (
        Transition(
            ProductionStatus.DISPATCHED.value,
            ProductionStatus.RECEIVED.value,
            Action.ACKNOWLEDGE_RECEIPT.value,
            _PRODUCTION,
            posts_movements=True,
        ),
    ),
    terminal_states=(ProductionStatus.RECEIVED.value,),
    submit_roles=_PRODUCTION,
)

DISTRIBUTOR_WORKFLOW = Workflow(
    name="distributor_request",
    family=RequestFamily.DISTRIBUTOR,
    description="Sales request from a distributor, direct rep or direct shop",
    initial_state=DistributorStatus.PENDING.value,
    states=tuple(s.value for s in DistributorStatus),
    transitions=(
        Transition(
            DistributorStatus.PENDING.value,
            DistributorStatus.APPROVED.value,
            Action.APPROVE.value,
            _APPROVERS,
        ),
        Transition(
            DistributorStatus.PENDING.value,
            DistributorStatus.REJECTED.value,
            Action.REJECT.value,
            _APPROVERS,
        ),
        Transition(
            DistributorStatus.APPROVED.value,
            DistributorStatus.DISPATCHED.value,
            Action.DISPATCH.value,
            _FG_STORE,
            guard=FULLY_DISPATCHED,
            posts_movements=True,
        ),
        Transition(
            DistributorStatus.APPROVED.value,
            DistributorStatus.APPROVED.value,
            Action.DISPATCH.value,
            _FG_STORE,
            guard=PARTIALLY_DISPATCHED,
            posts_movements=True,
        ),
    ),
    terminal_states=(
        DistributorStatus.DISPATCHED.value,
        DistributorStatus.REJECTED.value,
    ),
    submit_roles=frozenset({
        Role.DISTRIBUTOR_REPRESENTATIVE,
        Role.DIRECT_REPRESENTATIVE,
        Role.DIRECT_SHOP,
    }),
)

WORKFLOWS: dict[RequestFamily, Workflow] = {
    RequestFamily.STANDARD: STANDARD_WORKFLOW,
    RequestFamily.PRODUCTION_DIRECT: PRODUCTION_DIRECT_WORKFLOW,
    RequestFamily.DISTRIBUTOR: DISTRIBUTOR_WORKFLOW,
}


def workflow_for(family: RequestFamily | str) -> Workflow:
    return WORKFLOWS[RequestFamily(family)]


def _coerce_role(role: Role | str) -> Role | None:
    try:
        return Role(role)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# The single validation path shared by every caller
# ---------------------------------------------------------------------------


def can_transition(
    role: Role | str,
    family: RequestFamily | str,
    from_state: str,
    action: str,
) -> bool:
    """Capability check: may ``role`` take ``action`` from ``from_state``?

    Guards are not evaluated; this answers "should the button be offered",
    not "will it succeed".
    """
    coerced = _coerce_role(role)
    if coerced is None:
        return False
    return any(
        coerced in t.roles
        for t in workflow_for(family).transitions_from(from_state, action)
    )


def resolve_transition(
    family: RequestFamily | str,
    from_state: str,
    action: str,
    role: Role | str,
    context: Mapping[str, Any] | None = None,
    request_id: str | None = None,
) -> Transition:
    """Return the transition that fires, or raise ``IllegalTransitionError``.

    Resolution order: the (state, action) pair must exist, the role must be
    one of the edge's roles, then the first edge whose guard holds wins.
    """
    workflow = workflow_for(family)
    family_value = workflow.family.value
    role_value = role.value if isinstance(role, Role) else str(role)

    candidates = workflow.transitions_from(from_state, action)
    if not candidates:
        reason = (
            f"'{from_state}' is terminal"
            if workflow.is_terminal(from_state)
            else "no such transition"
        )
        raise IllegalTransitionError(
            family_value, from_state, action, role_value, request_id, reason
        )

    coerced = _coerce_role(role)
    permitted = [t for t in candidates if coerced is not None and coerced in t.roles]
    if not permitted:
        raise IllegalTransitionError(
            family_value, from_state, action, role_value, request_id,
            "role not permitted for this transition",
        )

    ctx = context or {}
    for transition in permitted:
        if transition.guard is None or evaluate_guard(transition.guard, ctx):
            return transition

    guards = ", ".join(t.guard.name for t in permitted if t.guard is not None)
    raise IllegalTransitionError(
        family_value, from_state, action, role_value, request_id,
        f"guard not satisfied: {guards}",
    )


def resolve_submission(family: RequestFamily | str, role: Role | str) -> str:
    """Check the submitter's role and return the family's initial state."""
    workflow = workflow_for(family)
    coerced = _coerce_role(role)
    if coerced is None or coerced not in workflow.submit_roles:
        raise IllegalTransitionError(
            workflow.family.value,
            None,
            Action.SUBMIT.value,
            role.value if isinstance(role, Role) else str(role),
            reason="role may not submit this request family",
        )
    return workflow.initial_state


def validate_path(family: RequestFamily | str, statuses: Sequence[str]) -> bool:
    """True when ``statuses`` is a walk through the family's graph.

    The first status must be the initial state; every consecutive pair must
    be joined by a declared transition.
    """
    workflow = workflow_for(family)
    if not statuses or statuses[0] != workflow.initial_state:
        return False
    edges = {(t.from_state, t.to_state) for t in workflow.transitions}
    return all(
        (prev, nxt) in edges for prev, nxt in zip(statuses, statuses[1:])
    )
