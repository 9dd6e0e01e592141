"""
Kernel Invariants Contract.

These invariants are structural law. They are enforced by the ledger,
the request state machine and the ORM immutability listeners. No
configuration value may switch them off.

This module exists solely to declare these invariants explicitly. The
enforcement is distributed across StockLedgerService, RequestStateMachine,
the allocator and db/immutability.py.
"""

from enum import Enum, unique


@unique
class KernelInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel.

    Each value names one structural guarantee that the kernel provides
    unconditionally.
    """

    LEDGER_REPRODUCIBILITY = "ledger_reproducibility"
    """A cached balance always equals a replay of the movements for its
    material and location. Enforced by StockLedgerService writing the
    movement and the balance in one transaction."""

    APPEND_ONLY_LEDGER = "append_only_ledger"
    """Stock movements and workflow records are never updated or deleted.
    Enforced by ORM listeners (materials_kernel.db.immutability)."""

    TRANSITION_LEGALITY = "transition_legality"
    """A request status only changes along an edge of its family's
    workflow graph, by an actor holding one of the edge's roles.
    Enforced by materials_kernel.domain.workflow.resolve_transition."""

    ALL_OR_NOTHING_DISPATCH = "all_or_nothing_dispatch"
    """A dispatch posts every line or none. Enforced by the allocator
    checking availability for all lines before the first posting."""

    SPLIT_CONSERVATION = "split_conservation"
    """The children of a split sum to the parent quantity within the
    configured tolerance."""

    IDEMPOTENT_RECEIPT = "idempotent_receipt"
    """A dispatch is received at most once. Enforced by the dispatch
    status check and unique movement idempotency keys."""


# All invariants as a frozenset for programmatic checks.
ALL_KERNEL_INVARIANTS: frozenset[KernelInvariant] = frozenset(KernelInvariant)

# The kernel package may not import from these packages.
# This is enforced by tests/architecture/test_kernel_boundary.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "materials_services",
    "materials_config",
)
