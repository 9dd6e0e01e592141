"""
Values -- Immutable domain value objects for the stock ledger and allocator.

Responsibility:
    Quantity normalization, movement direction, movement metadata and the
    result values returned by the ledger and allocator (movement results,
    availability, shortage reports, split allocations).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Quantities are Decimal, never float.  ``to_quantity`` converts
      ints/strings/floats through ``str`` so 0.1 stays 0.1.
    - A posted quantity is strictly positive after rounding to nine decimal
      places (InvalidQuantityError otherwise).

Failure modes:
    - InvalidQuantityError from ``to_quantity`` / ``positive_quantity``.
    - ValueError on an unknown direction token.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Context, Decimal, InvalidOperation
from enum import Enum
from typing import Any
from uuid import UUID

from materials_kernel.domain.identity import Actor
from materials_kernel.exceptions import InvalidQuantityError

ZERO = Decimal("0")

# Storage scale of every quantity column: Numeric(38, 9).
QUANTUM = Decimal("0.000000001")
_STORAGE = Context(prec=38)


class MovementDirection(str, Enum):
    """Which way stock moves.  Quantity is always positive."""

    IN = "in"
    OUT = "out"


def to_quantity(value: Any, field_name: str = "quantity") -> Decimal:
    """Convert a caller-supplied quantity to a finite Decimal."""
    if isinstance(value, bool):
        raise InvalidQuantityError(value, field_name)
    try:
        quantity = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidQuantityError(value, field_name) from None
    if not quantity.is_finite():
        raise InvalidQuantityError(value, field_name)
    return quantity


def positive_quantity(value: Any, field_name: str = "quantity") -> Decimal:
    """``to_quantity`` rounded to storage scale; rejects zero and negatives.

    A value that rounds to zero at nine decimal places (``0.0000000004``)
    is rejected rather than posted as a zero movement.
    """
    quantity = to_quantity(value, field_name)
    try:
        quantity = quantity.quantize(QUANTUM, context=_STORAGE)
    except InvalidOperation:
        raise InvalidQuantityError(value, field_name) from None
    if quantity <= ZERO:
        raise InvalidQuantityError(value, field_name)
    return quantity


@dataclass(frozen=True)
class MovementMeta:
    """Optional context attached to a stock movement.

    ``location`` defaults to the material's home location.  When
    ``idempotency_key`` is set, a second posting with the same key is
    rejected as a duplicate.
    """

    location: str | None = None
    reason: str = ""
    request_id: UUID | None = None
    dispatch_id: UUID | None = None
    batch_number: str | None = None
    idempotency_key: str | None = None
    actor: Actor | None = None


@dataclass(frozen=True)
class NegativeBalance:
    """An out movement larger than the balance; the excess was clamped."""

    material_id: UUID
    location: str
    balance_before: Decimal
    requested: Decimal
    clamped_quantity: Decimal


@dataclass(frozen=True)
class MovementResult:
    """Outcome of a successful posting."""

    movement_id: UUID
    material_id: UUID
    location: str
    direction: MovementDirection
    quantity: Decimal
    balance_before: Decimal
    balance_after: Decimal
    seq: int
    negative_balance: NegativeBalance | None = None
    below_reorder_level: bool = False

    @property
    def was_clamped(self) -> bool:
        return self.negative_balance is not None


@dataclass(frozen=True)
class MovementFilter:
    """Filters for ledger history queries."""

    direction: MovementDirection | None = None
    location: str | None = None
    request_id: UUID | None = None
    dispatch_id: UUID | None = None
    since: datetime | None = None
    until: datetime | None = None
    page_size: int = 100

    def __post_init__(self) -> None:
        if self.page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {self.page_size}")


@dataclass(frozen=True)
class Availability:
    """Result of an availability check; a pure read."""

    material_id: UUID
    location: str
    requested: Decimal
    current_balance: Decimal
    shortfall: Decimal

    @property
    def available(self) -> bool:
        return self.shortfall == ZERO


@dataclass(frozen=True)
class LineShortage:
    """One short line of a dispatch attempt."""

    line_no: int
    material_id: UUID
    requested: Decimal
    current_balance: Decimal
    shortfall: Decimal


@dataclass(frozen=True)
class ShortageReport:
    """All-or-nothing dispatch refused: at least one line is short.

    Not an exception: it is a valid outcome that parks a production
    request in ``stock_shortage`` until stock is replenished.
    """

    request_id: UUID
    checked_at: datetime
    shortages: tuple[LineShortage, ...]
    available_lines: tuple[int, ...] = field(default_factory=tuple)

    @property
    def total_shortfall(self) -> Decimal:
        return sum((s.shortfall for s in self.shortages), ZERO)


@dataclass(frozen=True)
class SplitAllocation:
    """One child of a split: how much goes where."""

    location: str
    quantity: Decimal
    notes: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "quantity", to_quantity(self.quantity, "allocation.quantity")
        )
        if self.quantity < ZERO:
            raise InvalidQuantityError(self.quantity, "allocation.quantity")
        if not self.location:
            raise ValueError("Split allocation location must be non-empty")
