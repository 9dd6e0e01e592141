"""
Module: materials_kernel.selectors.request_selector
Responsibility: Read-only queries over requests and dispatches: queues by
    family/status, requester history, and cumulative dispatched quantity
    per request line (the basis of partial-dispatch accounting).
Architecture position: Kernel > Selectors.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from materials_kernel.domain.dtos import DispatchView, RequestView
from materials_kernel.models.dispatch import Dispatch, DispatchLine
from materials_kernel.models.request import MaterialRequest
from materials_kernel.selectors.base import BaseSelector


class RequestSelector(BaseSelector):
    """Queues and histories for the request workflow."""

    def list_requests(
        self,
        family: str | None = None,
        status: str | None = None,
        requested_by: str | None = None,
        limit: int | None = None,
    ) -> list[RequestView]:
        query = select(MaterialRequest)
        if family is not None:
            query = query.where(MaterialRequest.family == family)
        if status is not None:
            query = query.where(MaterialRequest.status == status)
        if requested_by is not None:
            query = query.where(MaterialRequest.requester_id == requested_by)
        query = query.order_by(
            MaterialRequest.created_at.desc(), MaterialRequest.id
        )
        if limit is not None:
            query = query.limit(limit)
        return [r.to_dto() for r in self.session.execute(query).scalars().all()]

    def dispatched_totals(self, request_id: UUID) -> dict[int, Decimal]:
        """Cumulative dispatched quantity per request line, over all dispatches."""
        rows = self.session.execute(
            select(
                DispatchLine.line_no,
                func.sum(DispatchLine.dispatched_quantity),
            )
            .join(Dispatch, Dispatch.id == DispatchLine.dispatch_id)
            .where(Dispatch.request_id == request_id)
            .group_by(DispatchLine.line_no)
        ).all()
        return {line_no: Decimal(total) for line_no, total in rows}

    def dispatches_for(self, request_id: UUID) -> list[DispatchView]:
        rows = self.session.execute(
            select(Dispatch)
            .where(Dispatch.request_id == request_id)
            .order_by(Dispatch.dispatched_at, Dispatch.id)
        ).scalars().all()
        return [d.to_dto() for d in rows]

    def pending_receipts(self, destination_location: str | None = None) -> list[DispatchView]:
        query = select(Dispatch).where(Dispatch.status == "dispatched")
        if destination_location is not None:
            query = query.where(Dispatch.destination_location == destination_location)
        rows = self.session.execute(
            query.order_by(Dispatch.dispatched_at, Dispatch.id)
        ).scalars().all()
        return [d.to_dto() for d in rows]
