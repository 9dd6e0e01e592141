"""
RequestStateMachine -- persistence half of the request workflow.

Responsibility:
    Creates requests in their family's initial state and applies
    transitions: resolves the edge through ``domain.workflow`` (the single
    validation path), appends one WorkflowRecord, updates the status and
    bumps the request version.

Architecture position:
    Kernel > Services -- imperative shell over the pure graphs in
    ``materials_kernel.domain.workflow``.

Invariants enforced:
    - The workflow trail is a valid path of the family's graph: every
      record is produced by ``resolve_transition``.
    - One record per transition, steps numbered 1..n without gaps; the
      submit record is step 1.
    - Concurrent transitions on the same request cannot both commit: the
      request row is version-checked and (request_id, step) is unique.
    - Terminal states accept no further actions.

Failure modes:
    - IllegalTransitionError: unmapped (state, action), wrong role, terminal
      state, or no guard satisfied.
    - InvalidRequestError: empty item list, bad approved quantities.
    - RequestNotFoundError / MaterialNotFoundError / InactiveMaterialError.
    - OptimisticLockError: lost a concurrent transition.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from materials_kernel.domain.clock import Clock
from materials_kernel.domain.dtos import RequestItemSpec, RequestView
from materials_kernel.domain.identity import Actor
from materials_kernel.domain.values import positive_quantity
from materials_kernel.domain.workflow import (
    Action,
    RequestFamily,
    Transition,
    resolve_submission,
    resolve_transition,
)
from materials_kernel.exceptions import (
    InactiveMaterialError,
    InvalidRequestError,
    MaterialNotFoundError,
    RequestNotFoundError,
)
from materials_kernel.logging_config import get_logger
from materials_kernel.models.material import Material
from materials_kernel.models.request import MaterialRequest, RequestItem, WorkflowRecord
from materials_kernel.selectors.request_selector import RequestSelector
from materials_kernel.services.base import BaseService

logger = get_logger("services.request_state_machine")

DEFAULT_REQUEST_TYPES: dict[RequestFamily, str] = {
    RequestFamily.STANDARD: "raw_material",
    RequestFamily.PRODUCTION_DIRECT: "production_material",
    RequestFamily.DISTRIBUTOR: "finished_goods",
}


class RequestStateMachine(BaseService):
    """
    Create requests and move them along their family's graph.

    Non-goals:
        - Does NOT touch the stock ledger.  Transitions with
          ``posts_movements`` are paired with allocator calls by the
          orchestrator inside the same transaction.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)
        self._selector = RequestSelector(session)

    def create_request(
        self,
        family: RequestFamily | str,
        actor: Actor,
        items: Sequence[RequestItemSpec],
        request_type: str | None = None,
        priority: str = "normal",
        notes: str | None = None,
        batch_reference: str | None = None,
        comment: str | None = None,
    ) -> MaterialRequest:
        """Persist a new request in its family's initial state.

        The submit edge is recorded as workflow step 1 with no from_state.
        """
        family = RequestFamily(family)
        initial_state = resolve_submission(family, actor.role)
        if not items:
            raise InvalidRequestError("a request needs at least one item")

        now = self.clock.now()
        request = MaterialRequest(
            family=family.value,
            request_type=request_type or DEFAULT_REQUEST_TYPES[family],
            status=initial_state,
            priority=priority,
            notes=notes,
            batch_reference=batch_reference,
            requester_id=actor.user_id,
            requester_name=actor.display_name,
            requester_role=actor.role.value,
            created_at=now,
            updated_at=now,
            created_by_id=actor.user_id,
        )
        self.session.add(request)
        self._flush("create_request", "MaterialRequest", None)

        for line_no, requested in enumerate(items, start=1):
            material = self.session.get(Material, requested.material_id)
            if material is None:
                raise MaterialNotFoundError(requested.material_id)
            if not material.is_active:
                raise InactiveMaterialError(str(material.id), material.code)
            self.session.add(
                RequestItem(
                    request_id=request.id,
                    line_no=line_no,
                    material_id=material.id,
                    requested_quantity=requested.quantity,
                    approved_quantity=requested.quantity,
                    unit=requested.unit or material.unit,
                    urgency=requested.urgency,
                    reason=requested.reason,
                )
            )

        self.session.add(
            WorkflowRecord(
                request_id=request.id,
                step=1,
                actor_id=actor.user_id,
                actor_name=actor.display_name,
                role=actor.role.value,
                action=Action.SUBMIT.value,
                from_state=None,
                to_state=initial_state,
                comment=comment,
                created_at=now,
            )
        )
        self._flush("create_request", "MaterialRequest", request.id)
        self.session.refresh(request, ["items", "workflow"])

        logger.info(
            "request_submitted",
            extra={
                "request_id": str(request.id),
                "family": family.value,
                "status": initial_state,
                "line_count": len(items),
                "requester_id": actor.user_id,
            },
        )
        return request

    def get_request(self, request_id: UUID, for_update: bool = False) -> MaterialRequest:
        """Load a request.  ``for_update`` re-reads it FOR UPDATE on PostgreSQL."""
        if for_update:
            request = self.session.execute(
                select(MaterialRequest)
                .where(MaterialRequest.id == request_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
        else:
            request = self.session.get(MaterialRequest, request_id)
        if request is None:
            raise RequestNotFoundError(request_id)
        return request

    def list_requests(
        self,
        family: RequestFamily | str | None = None,
        status: str | None = None,
        requested_by: str | None = None,
        limit: int | None = None,
    ) -> list[RequestView]:
        return self._selector.list_requests(
            family=RequestFamily(family).value if family is not None else None,
            status=status,
            requested_by=requested_by,
            limit=limit,
        )

    def resolve(
        self,
        request: MaterialRequest,
        action: Action | str,
        actor: Actor,
        context: Mapping[str, Any] | None = None,
    ) -> Transition:
        """Resolve without applying.  Raises IllegalTransitionError."""
        return resolve_transition(
            request.family,
            request.status,
            Action(action).value,
            actor.role,
            context=context,
            request_id=str(request.id),
        )

    def apply_transition(
        self,
        request_id: UUID,
        action: Action | str,
        actor: Actor,
        comment: str | None = None,
        context: Mapping[str, Any] | None = None,
        approved_quantities: Mapping[int, Any] | None = None,
    ) -> MaterialRequest:
        """
        Resolve and apply one transition.

        ``context`` feeds the guards (``shortages`` / ``remaining``).
        ``approved_quantities`` (line_no -> quantity) may accompany an
        approve action to lower what will be fulfilled; each must be
        positive and no more than the requested quantity.
        """
        request = self.get_request(request_id, for_update=True)
        action = Action(action)
        transition = self.resolve(request, action, actor, context)

        if approved_quantities:
            if action != Action.APPROVE:
                raise InvalidRequestError(
                    "approved quantities can only accompany an approval"
                )
            self._apply_approved_quantities(request, approved_quantities)

        now = self.clock.now()
        from_state = request.status
        step = len(request.workflow) + 1
        record = WorkflowRecord(
            request_id=request.id,
            step=step,
            actor_id=actor.user_id,
            actor_name=actor.display_name,
            role=actor.role.value,
            action=action.value,
            from_state=from_state,
            to_state=transition.to_state,
            comment=comment,
            created_at=now,
        )
        self.session.add(record)

        request.status = transition.to_state
        request.updated_at = now
        request.updated_by_id = actor.user_id
        # A self-loop leaves every column equal; force the versioned UPDATE.
        flag_modified(request, "status")

        self._flush("apply_transition", "MaterialRequest", request.id)
        self.session.refresh(request, ["workflow"])

        logger.info(
            "request_transitioned",
            extra={
                "request_id": str(request.id),
                "family": request.family,
                "action": action.value,
                "from_state": from_state,
                "to_state": transition.to_state,
                "step": step,
                "actor_id": actor.user_id,
                "role": actor.role.value,
            },
        )
        return request

    def _apply_approved_quantities(
        self,
        request: MaterialRequest,
        approved_quantities: Mapping[int, Any],
    ) -> None:
        items = {item.line_no: item for item in request.items}
        for line_no, raw in approved_quantities.items():
            item = items.get(line_no)
            if item is None:
                raise InvalidRequestError(f"request has no line {line_no}")
            quantity = positive_quantity(raw, "approved_quantity")
            if quantity > item.requested_quantity:
                raise InvalidRequestError(
                    f"line {line_no}: approved {quantity} exceeds requested "
                    f"{item.requested_quantity}"
                )
            item.approved_quantity = quantity
