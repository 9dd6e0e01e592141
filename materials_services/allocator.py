"""
materials_services.allocator -- dispatch and split allocation.

Responsibility:
    Moves stock between locations and request stages while conserving
    quantity.  Dispatch: all-or-nothing availability check, then one ``out``
    movement per line and a Dispatch record in the same transaction.
    Receipt: one ``in`` movement per line into the destination.  Split and
    move: quantity-conserving rearrangement of finished-goods inventory
    entries across storage locations.

Architecture position:
    Services -- composes the kernel's StockLedgerService with the dispatch
    and location models.  Flushes only; the orchestrator owns the
    transaction.

Invariants enforced:
    - All-or-nothing dispatch: if any line is short, nothing is written and
      a ShortageReport is returned.
    - Cumulative dispatched quantity per line never exceeds the approved
      quantity (OverDispatchError).
    - Every dispatch/receipt movement carries an idempotency key derived
      from the dispatch id and line number; re-posting is rejected.
    - Split conservation: |sum(children) - parent| <= split tolerance.
    - A location with a declared capacity never holds more entries.

Failure modes:
    - InvalidRequestError, OverDispatchError, DispatchNotFoundError,
      DispatchAlreadyReceivedError, LocationEntryNotFoundError,
      QuantityMismatchError, InvalidQuantityError,
      LocationCapacityExceededError, LocationCodeExistsError.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from materials_config.schema import LocationsConfig
from materials_kernel.domain.clock import Clock, SystemClock
from materials_kernel.domain.dtos import DispatchLineSpec
from materials_kernel.domain.identity import Actor
from materials_kernel.domain.values import (
    ZERO,
    Availability,
    LineShortage,
    MovementDirection,
    MovementMeta,
    MovementResult,
    ShortageReport,
    SplitAllocation,
    positive_quantity,
)
from materials_kernel.domain.workflow import RequestFamily
from materials_kernel.exceptions import (
    DispatchAlreadyReceivedError,
    DispatchNotFoundError,
    InvalidRequestError,
    LocationCapacityExceededError,
    LocationCodeExistsError,
    LocationEntryNotFoundError,
    OverDispatchError,
    QuantityMismatchError,
)
from materials_kernel.logging_config import get_logger
from materials_kernel.models.dispatch import Dispatch, DispatchLine, DispatchStatus
from materials_kernel.models.location import (
    LocationEntry,
    LocationMovement,
    LocationMovementKind,
    StorageLocation,
)
from materials_kernel.models.request import MaterialRequest, RequestItem
from materials_kernel.selectors.location_selector import LocationSelector
from materials_kernel.selectors.request_selector import RequestSelector
from materials_kernel.services.base import translate_storage_errors
from materials_kernel.services.stock_ledger import StockLedgerService
from materials_kernel.utils.idempotency import dispatch_key, receipt_key

logger = get_logger("services.allocator")

DEFAULT_SPLIT_TOLERANCE = Decimal("0.01")


class DispatchAllocator:
    """
    Dispatch, receipt, split and move.

    Contract:
        Receives a Session, the ledger service sharing it, and the location
        names from configuration.  Returns ORM rows to the orchestrator,
        which converts them to views after commit.
    """

    def __init__(
        self,
        session: Session,
        ledger: StockLedgerService,
        clock: Clock | None = None,
        split_tolerance: Decimal = DEFAULT_SPLIT_TOLERANCE,
        locations: LocationsConfig | None = None,
    ):
        self._session = session
        self._ledger = ledger
        self._clock = clock or SystemClock()
        self._split_tolerance = Decimal(str(split_tolerance))
        self._locations = locations or LocationsConfig()
        self._requests = RequestSelector(session)
        self._places = LocationSelector(session)
        # Postings of this allocator that left a balance at/below reorder level.
        self.low_stock: list[MovementResult] = []

    def _flush(self, operation: str, entity_type: str, entity_id: object) -> None:
        with translate_storage_errors(operation, entity_type, entity_id):
            self._session.flush()

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def route_for(self, family: RequestFamily | str) -> tuple[str, str]:
        """(source, destination) locations a family's dispatches use."""
        family = RequestFamily(family)
        if family == RequestFamily.PRODUCTION_DIRECT:
            return self._locations.warehouse, self._locations.production
        if family == RequestFamily.DISTRIBUTOR:
            return self._locations.finished_goods, self._locations.external
        raise InvalidRequestError(
            "standard requests are fulfilled through procurement, not dispatch"
        )

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    def check_availability(
        self,
        material_id: UUID,
        quantity: Any,
        location: str | None = None,
        family: RequestFamily | str | None = None,
    ) -> Availability:
        """Pure read: can ``quantity`` be drawn right now?

        The balance checked is the one at ``location`` when given, else the
        source of ``family``'s route (the location a dispatch would draw
        from), else the material's home location.
        """
        qty = positive_quantity(quantity)
        material = self._ledger.get_material(material_id)
        if location is not None:
            where = location
        elif family is not None:
            where = self.route_for(family)[0]
        else:
            where = material.home_location
        balance = self._ledger.get_balance(material_id, where)
        return Availability(
            material_id=material_id,
            location=where,
            requested=qty,
            current_balance=balance,
            shortfall=max(ZERO, qty - balance),
        )

    def _shortages(
        self,
        planned: Sequence[tuple[RequestItem, Decimal]],
        location: str,
    ) -> tuple[list[LineShortage], list[int]]:
        """Lines that cannot be covered, drawing down each balance in line order.

        Two lines of the same material compete for one balance.
        """
        balances: dict[UUID, Decimal] = {}
        drawn: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
        shortages: list[LineShortage] = []
        available: list[int] = []
        for item, qty in planned:
            if item.material_id not in balances:
                balances[item.material_id] = self._ledger.get_balance(
                    item.material_id, location
                )
            balance = balances[item.material_id]
            left = max(ZERO, balance - drawn[item.material_id])
            drawn[item.material_id] += qty
            if qty > left:
                shortages.append(
                    LineShortage(
                        line_no=item.line_no,
                        material_id=item.material_id,
                        requested=qty,
                        current_balance=balance,
                        shortfall=qty - left,
                    )
                )
            else:
                available.append(item.line_no)
        return shortages, available

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def remaining_quantities(self, request: MaterialRequest) -> dict[int, Decimal]:
        """Approved minus cumulative dispatched, per line."""
        dispatched = self._requests.dispatched_totals(request.id)
        return {
            item.line_no: item.approved_quantity - dispatched.get(item.line_no, ZERO)
            for item in request.items
        }

    def approve_and_dispatch(
        self,
        request: MaterialRequest,
        actor: Actor,
        notes: str | None = None,
        dispatch_id: UUID | None = None,
    ) -> Dispatch | ShortageReport:
        """
        Dispatch everything still outstanding on the request, or nothing.

        Returns:
            The new Dispatch, or a ShortageReport when any line is short
            (no movement, no dispatch written).
        """
        remaining = self.remaining_quantities(request)
        planned = [
            (item, remaining[item.line_no])
            for item in request.items
            if remaining[item.line_no] > ZERO
        ]
        if not planned:
            raise InvalidRequestError("nothing left to dispatch on this request")
        return self._dispatch(request, planned, actor, notes, dispatch_id)

    def dispatch_partial(
        self,
        request: MaterialRequest,
        lines: Sequence[DispatchLineSpec],
        actor: Actor,
        notes: str | None = None,
        dispatch_id: UUID | None = None,
    ) -> Dispatch | ShortageReport:
        """
        Dispatch part of a distributor request.

        Each line's quantity plus what was already dispatched must not
        exceed the approved quantity.  The lines of one call are still
        all-or-nothing against stock.
        """
        if request.family != RequestFamily.DISTRIBUTOR.value:
            raise InvalidRequestError(
                f"partial dispatch is only defined for distributor requests, "
                f"not {request.family}"
            )
        if not lines:
            raise InvalidRequestError("a partial dispatch needs at least one line")

        items = {item.line_no: item for item in request.items}
        dispatched = self._requests.dispatched_totals(request.id)
        seen: set[int] = set()
        planned: list[tuple[RequestItem, Decimal]] = []
        for wanted in lines:
            item = items.get(wanted.line_no)
            if item is None:
                raise InvalidRequestError(f"request has no line {wanted.line_no}")
            if wanted.line_no in seen:
                raise InvalidRequestError(f"line {wanted.line_no} listed twice")
            seen.add(wanted.line_no)
            already = dispatched.get(wanted.line_no, ZERO)
            if already + wanted.quantity > item.approved_quantity:
                raise OverDispatchError(
                    str(request.id),
                    str(item.material_id),
                    item.approved_quantity,
                    already,
                    wanted.quantity,
                )
            planned.append((item, wanted.quantity))
        planned.sort(key=lambda pair: pair[0].line_no)
        return self._dispatch(request, planned, actor, notes, dispatch_id)

    def _dispatch(
        self,
        request: MaterialRequest,
        planned: Sequence[tuple[RequestItem, Decimal]],
        actor: Actor,
        notes: str | None,
        dispatch_id: UUID | None = None,
    ) -> Dispatch | ShortageReport:
        source, destination = self.route_for(request.family)
        now = self._clock.now()

        shortages, available = self._shortages(planned, source)
        if shortages:
            report = ShortageReport(
                request_id=request.id,
                checked_at=now,
                shortages=tuple(shortages),
                available_lines=tuple(available),
            )
            logger.warning(
                "stock_shortage_reported",
                extra={
                    "request_id": str(request.id),
                    "family": request.family,
                    "short_lines": [s.line_no for s in shortages],
                    "total_shortfall": report.total_shortfall,
                },
            )
            return report

        dispatch = Dispatch(
            id=dispatch_id or uuid4(),
            request_id=request.id,
            family=request.family,
            source_location=source,
            destination_location=destination,
            status=DispatchStatus.DISPATCHED.value,
            dispatched_by_id=actor.user_id,
            dispatched_by_name=actor.display_name,
            dispatched_at=now,
            notes=notes,
        )
        self._session.add(dispatch)
        self._flush("create_dispatch", "Dispatch", dispatch.id)

        for item, qty in planned:
            result = self._ledger.post_movement(
                item.material_id,
                MovementDirection.OUT,
                qty,
                MovementMeta(
                    location=source,
                    reason=f"dispatch for request {request.id}",
                    request_id=request.id,
                    dispatch_id=dispatch.id,
                    batch_number=request.batch_reference,
                    idempotency_key=dispatch_key(dispatch.id, item.line_no),
                    actor=actor,
                ),
            )
            dispatch.lines.append(
                DispatchLine(
                    line_no=item.line_no,
                    material_id=item.material_id,
                    requested_quantity=item.requested_quantity,
                    dispatched_quantity=qty,
                    unit=item.unit,
                    batch_number=request.batch_reference,
                    stock_before=result.balance_before,
                    stock_after=result.balance_after,
                    movement_id=result.movement_id,
                )
            )
            if result.below_reorder_level:
                self.low_stock.append(result)

        self._flush("create_dispatch", "Dispatch", dispatch.id)

        logger.info(
            "dispatch_created",
            extra={
                "dispatch_id": str(dispatch.id),
                "request_id": str(request.id),
                "family": request.family,
                "source_location": source,
                "destination_location": destination,
                "line_count": len(planned),
            },
        )
        return dispatch

    # ------------------------------------------------------------------
    # Receipt
    # ------------------------------------------------------------------

    def get_dispatch(self, dispatch_id: UUID, for_update: bool = False) -> Dispatch:
        query = select(Dispatch).where(Dispatch.id == dispatch_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        dispatch = self._session.execute(query).scalar_one_or_none()
        if dispatch is None:
            raise DispatchNotFoundError(dispatch_id)
        return dispatch

    def acknowledge_receipt(
        self,
        dispatch_id: UUID,
        actor: Actor,
        notes: str | None = None,
    ) -> Dispatch:
        """Post one ``in`` per line into the destination and close the dispatch."""
        dispatch = self.get_dispatch(dispatch_id, for_update=True)
        if dispatch.is_received:
            logger.warning(
                "duplicate_receipt_rejected",
                extra={
                    "dispatch_id": str(dispatch_id),
                    "received_by_id": dispatch.received_by_id,
                },
            )
            raise DispatchAlreadyReceivedError(
                str(dispatch_id), dispatch.received_by_name
            )

        for line in dispatch.lines:
            self._ledger.post_movement(
                line.material_id,
                MovementDirection.IN,
                line.dispatched_quantity,
                MovementMeta(
                    location=dispatch.destination_location,
                    reason=f"receipt of dispatch {dispatch.id}",
                    request_id=dispatch.request_id,
                    dispatch_id=dispatch.id,
                    batch_number=line.batch_number,
                    idempotency_key=receipt_key(dispatch.id, line.line_no),
                    actor=actor,
                ),
            )

        dispatch.status = DispatchStatus.RECEIVED.value
        dispatch.received_by_id = actor.user_id
        dispatch.received_by_name = actor.display_name
        dispatch.received_at = self._clock.now()
        dispatch.receipt_notes = notes
        self._flush("acknowledge_receipt", "Dispatch", dispatch.id)

        logger.info(
            "receipt_acknowledged",
            extra={
                "dispatch_id": str(dispatch.id),
                "request_id": str(dispatch.request_id),
                "destination_location": dispatch.destination_location,
                "line_count": len(dispatch.lines),
            },
        )
        return dispatch

    # ------------------------------------------------------------------
    # Storage locations and entries
    # ------------------------------------------------------------------

    def register_location(
        self,
        code: str,
        name: str,
        actor: Actor,
        capacity: int | None = None,
    ) -> StorageLocation:
        if not code:
            raise InvalidRequestError("location code must be non-empty")
        if capacity is not None and capacity < 1:
            raise InvalidRequestError(f"capacity must be >= 1, got {capacity}")
        if self._places.find_location(code) is not None:
            raise LocationCodeExistsError(code)
        location = StorageLocation(
            code=code,
            name=name,
            capacity=capacity,
            created_at=self._clock.now(),
            created_by_id=actor.user_id,
        )
        self._session.add(location)
        self._flush("register_location", "StorageLocation", code)
        logger.info(
            "location_registered",
            extra={"location": code, "capacity": capacity},
        )
        return location

    def _ensure_capacity(
        self,
        code: str,
        incoming: int = 1,
        leaving: UUID | None = None,
    ) -> None:
        """Raise if ``incoming`` more entries would overfill ``code``."""
        location = self._places.find_location(code)
        if location is None or location.capacity is None:
            return
        occupied = self._places.occupancy(code, exclude=leaving)
        if occupied + incoming > location.capacity:
            logger.warning(
                "location_capacity_exceeded",
                extra={
                    "location": code,
                    "capacity": location.capacity,
                    "occupied": occupied,
                    "incoming": incoming,
                },
            )
            raise LocationCapacityExceededError(code, location.capacity, occupied)

    def _record(
        self,
        entry: LocationEntry,
        kind: LocationMovementKind,
        quantity: Decimal,
        from_location: str | None,
        actor: Actor,
        note: str | None,
    ) -> None:
        self._session.add(
            LocationMovement(
                entry_id=entry.id,
                product_id=entry.product_id,
                batch_number=entry.batch_number,
                kind=kind.value,
                quantity=quantity,
                from_location=from_location,
                to_location=entry.location,
                actor_id=actor.user_id,
                actor_name=actor.display_name,
                note=note,
                created_at=self._clock.now(),
            )
        )

    def place_entry(
        self,
        product_id: str,
        batch_number: str,
        location: str,
        quantity: Any,
        actor: Actor,
        notes: str | None = None,
    ) -> LocationEntry:
        """Put a new inventory entry into a storage location."""
        qty = positive_quantity(quantity)
        self._ensure_capacity(location)
        entry = LocationEntry(
            id=uuid4(),
            product_id=product_id,
            batch_number=batch_number,
            location=location,
            quantity=qty,
            notes=notes,
            placed_at=self._clock.now(),
            placed_by_id=actor.user_id,
        )
        self._session.add(entry)
        self._record(entry, LocationMovementKind.PLACE, qty, None, actor, notes)
        self._flush("place_entry", "LocationEntry", entry.id)
        logger.info(
            "entry_placed",
            extra={
                "entry_id": str(entry.id),
                "product_id": product_id,
                "batch_number": batch_number,
                "location": location,
                "quantity": qty,
            },
        )
        return entry

    def get_entry(self, entry_id: UUID, for_update: bool = False) -> LocationEntry:
        query = select(LocationEntry).where(LocationEntry.id == entry_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        entry = self._session.execute(query).scalar_one_or_none()
        if entry is None:
            raise LocationEntryNotFoundError(entry_id)
        return entry

    def split(
        self,
        entry_id: UUID,
        allocations: Sequence[SplitAllocation],
        actor: Actor,
    ) -> list[LocationEntry]:
        """
        Replace one entry by children across locations.

        Preconditions:
            - |sum(allocations) - entry.quantity| <= split tolerance.
            - No allocation is negative (SplitAllocation enforces it).
        Postconditions:
            - The parent is deleted; one child per non-zero allocation,
              ``split_index`` 1..n in allocation order.
            - One ``split`` LocationMovement per child.
        """
        parent = self.get_entry(entry_id, for_update=True)
        total = sum((a.quantity for a in allocations), ZERO)
        if abs(total - parent.quantity) > self._split_tolerance:
            logger.warning(
                "split_quantity_mismatch",
                extra={
                    "entry_id": str(entry_id),
                    "expected": parent.quantity,
                    "actual": total,
                    "tolerance": self._split_tolerance,
                },
            )
            raise QuantityMismatchError(parent.quantity, total, self._split_tolerance)

        kept = [a for a in allocations if a.quantity > ZERO]
        if not kept:
            raise QuantityMismatchError(
                parent.quantity,
                total,
                self._split_tolerance,
                message="A split needs at least one non-zero allocation",
            )

        incoming: dict[str, int] = defaultdict(int)
        for allocation in kept:
            incoming[allocation.location] += 1
        for code, count in sorted(incoming.items()):
            self._ensure_capacity(code, incoming=count, leaving=parent.id)

        parent_id = parent.id
        parent_location = parent.location
        parent_quantity = parent.quantity
        now = self._clock.now()
        children: list[LocationEntry] = []
        for index, allocation in enumerate(kept, start=1):
            child = LocationEntry(
                id=uuid4(),
                product_id=parent.product_id,
                batch_number=parent.batch_number,
                location=allocation.location,
                quantity=allocation.quantity,
                split_from=parent_id,
                split_index=index,
                notes=allocation.notes,
                placed_at=now,
                placed_by_id=actor.user_id,
            )
            self._session.add(child)
            self._record(
                child,
                LocationMovementKind.SPLIT,
                allocation.quantity,
                parent_location,
                actor,
                allocation.notes,
            )
            children.append(child)

        self._session.delete(parent)
        self._flush("split_entry", "LocationEntry", parent_id)

        logger.info(
            "entry_split",
            extra={
                "entry_id": str(parent_id),
                "child_ids": [str(c.id) for c in children],
                "parent_quantity": parent_quantity,
                "allocated_quantity": total,
            },
        )
        return children

    def move(
        self,
        entry_id: UUID,
        new_location: str,
        actor: Actor,
        note: str | None = None,
    ) -> LocationEntry:
        """Relocate an entry in place.  Moving to where it already is does nothing."""
        if not new_location:
            raise InvalidRequestError("target location must be non-empty")
        entry = self.get_entry(entry_id, for_update=True)
        if entry.location == new_location:
            logger.debug(
                "entry_move_noop",
                extra={"entry_id": str(entry_id), "location": new_location},
            )
            return entry

        self._ensure_capacity(new_location)
        previous = entry.location
        entry.location = new_location
        entry.updated_at = self._clock.now()
        entry.updated_by_id = actor.user_id
        self._record(
            entry, LocationMovementKind.RELOCATE, entry.quantity, previous, actor, note
        )
        self._flush("move_entry", "LocationEntry", entry.id)

        logger.info(
            "entry_moved",
            extra={
                "entry_id": str(entry.id),
                "from_location": previous,
                "to_location": new_location,
            },
        )
        return entry
