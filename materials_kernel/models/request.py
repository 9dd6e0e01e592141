"""
Module: materials_kernel.models.request
Responsibility: ORM persistence for material requests, their line items,
    and the append-only workflow trail.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - A request is mutated only through RequestStateMachine transitions;
      ``version`` is an optimistic-lock column so two concurrent
      transitions on the same request cannot both commit.
    - (request_id, step) is unique on the workflow trail; records are
      append-only (db/immutability.py).
    - (request_id, line_no) is unique on items.
    - Requests are never deleted.

Failure modes:
    - StaleDataError on a concurrent transition (-> OptimisticLockError).
    - IntegrityError on a duplicate workflow step.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from materials_kernel.db.base import Base, TrackedBase, UUIDString


class MaterialRequest(TrackedBase):
    """
    A request of any family.

    Contract:
        ``status`` always holds a state of the family's workflow graph.
        ``created_by_id`` is the requester.
    """

    __tablename__ = "material_requests"

    __table_args__ = (
        Index("idx_request_family_status", "family", "status"),
        Index("idx_request_requester", "requester_id"),
    )

    family: Mapped[str] = mapped_column(String(30), nullable=False)
    request_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default="normal")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    batch_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    requester_id: Mapped[str] = mapped_column(String(128), nullable=False)
    requester_name: Mapped[str] = mapped_column(String(200), nullable=False)
    requester_role: Mapped[str] = mapped_column(String(50), nullable=False)

    version: Mapped[int] = mapped_column(nullable=False, default=1)

    items: Mapped[list["RequestItem"]] = relationship(
        "RequestItem",
        back_populates="request",
        order_by="RequestItem.line_no",
        lazy="selectin",
        passive_deletes="all",
    )

    workflow: Mapped[list["WorkflowRecord"]] = relationship(
        "WorkflowRecord",
        back_populates="request",
        order_by="WorkflowRecord.step",
        lazy="selectin",
        passive_deletes="all",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<MaterialRequest {self.id} {self.family} status={self.status}>"

    def to_dto(self):
        from materials_kernel.domain.dtos import RequestView

        return RequestView(
            id=self.id,
            family=self.family,
            request_type=self.request_type,
            status=self.status,
            priority=self.priority,
            notes=self.notes,
            batch_reference=self.batch_reference,
            requester_id=self.requester_id,
            requester_name=self.requester_name,
            requester_role=self.requester_role,
            items=tuple(item.to_dto() for item in self.items),
            workflow=tuple(record.to_dto() for record in self.workflow),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class RequestItem(Base):
    """One requested line.  ``approved_quantity`` defaults to the request."""

    __tablename__ = "request_items"

    __table_args__ = (
        UniqueConstraint("request_id", "line_no", name="uq_request_item_line"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("material_requests.id"),
        nullable=False,
    )
    line_no: Mapped[int] = mapped_column(nullable=False)
    material_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("materials.id"),
        nullable=False,
    )
    requested_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    approved_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)
    urgency: Mapped[str] = mapped_column(String(20), nullable=False, default="normal")
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    request: Mapped[MaterialRequest] = relationship(
        "MaterialRequest", back_populates="items"
    )

    def to_dto(self):
        from materials_kernel.domain.dtos import RequestItemView

        return RequestItemView(
            line_no=self.line_no,
            material_id=self.material_id,
            requested_quantity=self.requested_quantity,
            approved_quantity=self.approved_quantity,
            unit=self.unit,
            urgency=self.urgency,
            reason=self.reason,
        )


class WorkflowRecord(Base):
    """One step of a request's audit trail.  Append-only."""

    __tablename__ = "request_workflow"

    __table_args__ = (
        UniqueConstraint("request_id", "step", name="uq_request_workflow_step"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("material_requests.id"),
        nullable=False,
    )
    step: Mapped[int] = mapped_column(nullable=False)
    actor_id: Mapped[str] = mapped_column(String(128), nullable=False)
    actor_name: Mapped[str] = mapped_column(String(200), nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    from_state: Mapped[str | None] = mapped_column(String(30), nullable=True)
    to_state: Mapped[str] = mapped_column(String(30), nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    request: Mapped[MaterialRequest] = relationship(
        "MaterialRequest", back_populates="workflow"
    )

    def to_dto(self):
        from materials_kernel.domain.dtos import WorkflowStep

        return WorkflowStep(
            step=self.step,
            actor_id=self.actor_id,
            actor_name=self.actor_name,
            role=self.role,
            action=self.action,
            from_state=self.from_state,
            to_state=self.to_state,
            comment=self.comment,
            created_at=self.created_at,
        )
