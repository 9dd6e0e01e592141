"""
Module: materials_kernel.models.dispatch
Responsibility: ORM persistence for dispatches and their quantity-bound lines.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - A dispatch is created in the same transaction as the ``out``
      movements it records (allocator).
    - Lines are append-only; the dispatch itself is frozen once
      ``status = received`` (db/immutability.py).
    - ``version`` is an optimistic-lock column: two concurrent receipt
      acknowledgments cannot both flip the status.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from materials_kernel.db.base import Base, UUIDString


class DispatchStatus(str, Enum):
    DISPATCHED = "dispatched"
    RECEIVED = "received"


class Dispatch(Base):
    """A committed, quantity-bound transfer of stock for a request."""

    __tablename__ = "dispatches"

    __table_args__ = (
        Index("idx_dispatch_request", "request_id"),
        Index("idx_dispatch_status", "status"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("material_requests.id"),
        nullable=False,
    )
    family: Mapped[str] = mapped_column(String(30), nullable=False)
    source_location: Mapped[str] = mapped_column(String(100), nullable=False)
    destination_location: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DispatchStatus.DISPATCHED.value
    )

    dispatched_by_id: Mapped[str] = mapped_column(String(128), nullable=False)
    dispatched_by_name: Mapped[str] = mapped_column(String(200), nullable=False)
    dispatched_at: Mapped[datetime] = mapped_column(nullable=False)
    received_by_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    received_by_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    received_at: Mapped[datetime | None] = mapped_column(nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    receipt_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(nullable=False, default=1)

    lines: Mapped[list["DispatchLine"]] = relationship(
        "DispatchLine",
        back_populates="dispatch",
        order_by="DispatchLine.line_no",
        lazy="selectin",
        passive_deletes="all",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_received(self) -> bool:
        return self.status == DispatchStatus.RECEIVED.value

    def __repr__(self) -> str:
        return f"<Dispatch {self.id} request={self.request_id} {self.status}>"

    def to_dto(self):
        from materials_kernel.domain.dtos import DispatchView

        return DispatchView(
            id=self.id,
            request_id=self.request_id,
            family=self.family,
            source_location=self.source_location,
            destination_location=self.destination_location,
            status=self.status,
            lines=tuple(line.to_dto() for line in self.lines),
            dispatched_by_id=self.dispatched_by_id,
            dispatched_by_name=self.dispatched_by_name,
            dispatched_at=self.dispatched_at,
            received_by_id=self.received_by_id,
            received_by_name=self.received_by_name,
            received_at=self.received_at,
            notes=self.notes,
            receipt_notes=self.receipt_notes,
        )


class DispatchLine(Base):
    """One dispatched line with the balance it saw at posting time."""

    __tablename__ = "dispatch_lines"

    __table_args__ = (
        UniqueConstraint("dispatch_id", "line_no", name="uq_dispatch_line"),
    )

    dispatch_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("dispatches.id"),
        nullable=False,
    )
    line_no: Mapped[int] = mapped_column(nullable=False)
    material_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("materials.id"),
        nullable=False,
    )
    requested_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    dispatched_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)
    batch_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    stock_before: Mapped[Decimal] = mapped_column(nullable=False)
    stock_after: Mapped[Decimal] = mapped_column(nullable=False)
    movement_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    dispatch: Mapped[Dispatch] = relationship("Dispatch", back_populates="lines")

    def to_dto(self):
        from materials_kernel.domain.dtos import DispatchLineView

        return DispatchLineView(
            line_no=self.line_no,
            material_id=self.material_id,
            requested_quantity=self.requested_quantity,
            dispatched_quantity=self.dispatched_quantity,
            unit=self.unit,
            batch_number=self.batch_number,
            stock_before=self.stock_before,
            stock_after=self.stock_after,
        )
