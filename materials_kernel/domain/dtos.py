"""
Data Transfer Objects (``materials_kernel.domain.dtos``).

Frozen views of persisted entities and the input specs callers hand to
services.  ORM models convert themselves with ``to_dto()``; nothing
outside the kernel holds a live ORM row.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from materials_kernel.domain.values import ZERO, positive_quantity


@dataclass(frozen=True)
class RequestItemSpec:
    """One requested line, as submitted."""

    material_id: UUID
    quantity: Decimal
    unit: str | None = None
    urgency: str = "normal"
    reason: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "quantity", positive_quantity(self.quantity, "requested_quantity")
        )


@dataclass(frozen=True)
class DispatchLineSpec:
    """How much of one request line to send in a partial dispatch."""

    line_no: int
    quantity: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "quantity", positive_quantity(self.quantity, "dispatch_quantity")
        )


@dataclass(frozen=True)
class MaterialView:
    id: UUID
    code: str
    name: str
    unit: str
    reorder_level: Decimal
    max_level: Decimal | None
    quality_grade: str | None
    category: str | None
    status: str
    home_location: str


@dataclass(frozen=True)
class RequestItemView:
    line_no: int
    material_id: UUID
    requested_quantity: Decimal
    approved_quantity: Decimal
    unit: str
    urgency: str
    reason: str | None


@dataclass(frozen=True)
class WorkflowStep:
    """One entry of a request's audit trail."""

    step: int
    actor_id: str
    actor_name: str
    role: str
    action: str
    from_state: str | None
    to_state: str
    comment: str | None
    created_at: datetime


@dataclass(frozen=True)
class RequestView:
    id: UUID
    family: str
    request_type: str
    status: str
    priority: str
    notes: str | None
    batch_reference: str | None
    requester_id: str
    requester_name: str
    requester_role: str
    items: tuple[RequestItemView, ...]
    workflow: tuple[WorkflowStep, ...]
    created_at: datetime
    updated_at: datetime

    @property
    def status_path(self) -> tuple[str, ...]:
        """Statuses in the order the trail entered them."""
        return tuple(step.to_state for step in self.workflow)

    def item(self, line_no: int) -> RequestItemView:
        for item in self.items:
            if item.line_no == line_no:
                return item
        raise KeyError(line_no)


@dataclass(frozen=True)
class DispatchLineView:
    line_no: int
    material_id: UUID
    requested_quantity: Decimal
    dispatched_quantity: Decimal
    unit: str
    batch_number: str | None
    stock_before: Decimal
    stock_after: Decimal


@dataclass(frozen=True)
class DispatchView:
    id: UUID
    request_id: UUID
    family: str
    source_location: str
    destination_location: str
    status: str
    lines: tuple[DispatchLineView, ...]
    dispatched_by_id: str
    dispatched_by_name: str
    dispatched_at: datetime
    received_by_id: str | None
    received_by_name: str | None
    received_at: datetime | None
    notes: str | None
    receipt_notes: str | None

    @property
    def total_quantity(self) -> Decimal:
        return sum((line.dispatched_quantity for line in self.lines), ZERO)


@dataclass(frozen=True)
class LocationEntryView:
    id: UUID
    product_id: str
    batch_number: str
    location: str
    quantity: Decimal
    split_from: UUID | None
    split_index: int | None
    notes: str | None


@dataclass(frozen=True)
class StorageLocationView:
    code: str
    name: str
    capacity: int | None
