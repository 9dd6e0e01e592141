"""
materials_services.events -- domain events and the in-process event bus.

Responsibility:
    Frozen event records emitted by the workflow orchestrator after a
    transaction commits, and ``EventBus``, the explicit channel that
    replaces store-level change subscriptions.

Invariants enforced:
    - Events are published only after commit; a rolled-back action emits
      nothing.
    - A failing subscriber never fails the action or starves the other
      subscribers: the failure is logged with ``exc_info`` and delivery
      continues.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from materials_kernel.domain.dtos import RequestItemView
from materials_kernel.domain.values import LineShortage
from materials_kernel.logging_config import get_logger

logger = get_logger("services.events")


@dataclass(frozen=True)
class DomainEvent:
    occurred_at: datetime

    @property
    def event_type(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class RequestSubmitted(DomainEvent):
    request_id: UUID
    family: str
    request_type: str
    status: str
    requester_id: str
    line_count: int


@dataclass(frozen=True)
class RequestForwarded(DomainEvent):
    request_id: UUID
    family: str
    status: str
    requester_id: str
    actor_id: str


@dataclass(frozen=True)
class RequestApproved(DomainEvent):
    request_id: UUID
    family: str
    status: str
    requester_id: str
    actor_id: str


@dataclass(frozen=True)
class RequestRejected(DomainEvent):
    request_id: UUID
    family: str
    status: str
    requester_id: str
    actor_id: str
    actor_role: str
    comment: str | None


@dataclass(frozen=True)
class StockShortageReported(DomainEvent):
    """A dispatch was refused; nothing moved."""

    request_id: UUID
    family: str
    status: str
    requester_id: str
    shortages: tuple[LineShortage, ...]

    @property
    def total_shortfall(self) -> Decimal:
        return sum((s.shortfall for s in self.shortages), Decimal("0"))


@dataclass(frozen=True)
class MaterialsDispatched(DomainEvent):
    request_id: UUID
    dispatch_id: UUID
    family: str
    status: str
    requester_id: str
    destination_location: str
    total_quantity: Decimal
    fully_dispatched: bool


@dataclass(frozen=True)
class ReceiptAcknowledged(DomainEvent):
    request_id: UUID
    dispatch_id: UUID
    family: str
    status: str
    actor_id: str
    destination_location: str


@dataclass(frozen=True)
class ProcurementRequired(DomainEvent):
    """A standard request received final approval; stock must be bought."""

    request_id: UUID
    request_type: str
    items: tuple[RequestItemView, ...]


@dataclass(frozen=True)
class LowStockDetected(DomainEvent):
    material_id: UUID
    material_code: str
    location: str
    balance: Decimal
    reorder_level: Decimal


@dataclass(frozen=True)
class EntrySplit(DomainEvent):
    entry_id: UUID
    product_id: str
    batch_number: str
    child_ids: tuple[UUID, ...]


@dataclass(frozen=True)
class EntryMoved(DomainEvent):
    entry_id: UUID
    product_id: str
    batch_number: str
    from_location: str
    to_location: str


Handler = Callable[[DomainEvent], None]


class EventBus:
    """Synchronous publish/subscribe.

    ``subscribe(None, handler)`` receives every event.  Handlers run on the
    publishing thread in subscription order.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: list[tuple[type[DomainEvent] | None, Handler]] = []

    def subscribe(
        self,
        event_type: type[DomainEvent] | None,
        handler: Handler,
    ) -> Callable[[], None]:
        """Register ``handler``; returns a function that unregisters it."""
        entry = (event_type, handler)
        with self._lock:
            self._handlers.append(entry)

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._handlers:
                    self._handlers.remove(entry)

        return unsubscribe

    def publish(self, event: DomainEvent) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for event_type, handler in handlers:
            if event_type is not None and not isinstance(event, event_type):
                continue
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "event_subscriber_failed",
                    extra={
                        "event_type": event.event_type,
                        "handler": getattr(handler, "__qualname__", repr(handler)),
                    },
                )

    def publish_all(self, events: list[DomainEvent]) -> None:
        for event in events:
            self.publish(event)
