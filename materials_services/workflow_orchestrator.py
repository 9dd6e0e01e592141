"""
materials_services.workflow_orchestrator -- one transaction per user action.

Responsibility:
    The single entry point for every user-facing action.  Composes the
    request state machine, the stock ledger and the dispatch allocator into
    one atomic unit per action, serializes actions that touch the same keys,
    retries lost optimistic races, and publishes domain events once the
    transaction has committed.

Architecture position:
    Services -- top of the service layer.  Owns transaction boundaries
    (commit/rollback); the kernel services it wires only flush.

Invariants enforced:
    - Atomicity: an action's movements, dispatch, status change and
      workflow record commit together or not at all.
    - Role checks happen exactly once per transition, inside
      ``resolve_transition``.
    - Rejection never touches the ledger.
    - Events are published only after a successful commit.
    - Lock keys are resolved in a short read session before the action's
      own transaction opens, then held (sorted) until commit/rollback.

Failure modes:
    - Domain errors from the kernel propagate unchanged after rollback.
    - Retryable errors (OptimisticLockError, StorageUnavailableError) are
      retried per RetryPolicy; the last one propagates.

Audit relevance:
    Every action runs under a LogContext carrying a fresh correlation_id and
    the actor id, so all log lines of one action can be joined.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterator, TypeVar
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from materials_config.schema import MaterialsConfig
from materials_kernel.domain.clock import Clock, SystemClock
from materials_kernel.domain.dtos import (
    DispatchLineSpec,
    DispatchView,
    LocationEntryView,
    MaterialView,
    RequestItemSpec,
    RequestView,
    StorageLocationView,
)
from materials_kernel.domain.identity import Actor
from materials_kernel.domain.values import (
    Availability,
    MovementDirection,
    MovementFilter,
    MovementMeta,
    MovementResult,
    ShortageReport,
    SplitAllocation,
)
from materials_kernel.domain.workflow import (
    Action,
    DistributorStatus,
    RequestFamily,
    StandardStatus,
    can_transition,
)
from materials_kernel.exceptions import (
    DispatchAlreadyReceivedError,
    DuplicateMovementError,
    InvalidRequestError,
)
from materials_kernel.logging_config import LogContext, get_logger
from materials_kernel.models.dispatch import Dispatch, DispatchLine
from materials_kernel.models.location import LocationEntry
from materials_kernel.models.request import MaterialRequest, RequestItem
from materials_kernel.selectors.ledger_selector import BalanceMismatch, MovementRecord
from materials_kernel.selectors.location_selector import LocationSelector
from materials_kernel.selectors.request_selector import RequestSelector
from materials_kernel.services.base import translate_storage_errors
from materials_kernel.services.request_state_machine import RequestStateMachine
from materials_kernel.services.stock_ledger import StockLedgerService
from materials_kernel.utils import idempotency
from materials_services.allocator import DispatchAllocator
from materials_services.events import (
    DomainEvent,
    EntryMoved,
    EntrySplit,
    EventBus,
    LowStockDetected,
    MaterialsDispatched,
    ProcurementRequired,
    ReceiptAcknowledged,
    RequestApproved,
    RequestForwarded,
    RequestRejected,
    RequestSubmitted,
    StockShortageReported,
)
from materials_services.locking import (
    KeyedLockRegistry,
    dispatch_key,
    entry_key,
    location_key,
    material_key,
    request_key,
)
from materials_services.retry import run_with_retry

logger = get_logger("services.workflow_orchestrator")

T = TypeVar("T")


@dataclass(frozen=True)
class DispatchOutcome:
    """Result of a dispatch or receipt action.

    Exactly one of ``dispatch`` / ``shortage`` is set.
    """

    request: RequestView
    dispatch: DispatchView | None = None
    shortage: ShortageReport | None = None

    @property
    def dispatched(self) -> bool:
        return self.dispatch is not None


@dataclass
class _Unit:
    """Services bound to one action's session, plus the events it will emit."""

    session: Session
    ledger: StockLedgerService
    machine: RequestStateMachine
    allocator: DispatchAllocator
    events: list[DomainEvent] = field(default_factory=list)


class WorkflowOrchestrator:
    """
    Per-action transactions over the kernel services.

    Contract:
        Receives a session factory (one new Session per attempt), and
        optionally a clock, configuration, event bus and lock registry.
        Every public mutating method is one transaction; every return value
        is a frozen view, never a live ORM row.

    Non-goals:
        - Does NOT authenticate; the caller supplies the Actor.
        - Does NOT render notifications; subscribers on the bus do.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        config: MaterialsConfig | None = None,
        bus: EventBus | None = None,
        locks: KeyedLockRegistry | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._config = config or MaterialsConfig()
        self.bus = bus or EventBus()
        self._locks = locks or KeyedLockRegistry()
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Transaction plumbing
    # ------------------------------------------------------------------

    def _unit(self, session: Session) -> _Unit:
        ledger = StockLedgerService(
            session, self._clock, default_location=self._config.locations.warehouse
        )
        return _Unit(
            session=session,
            ledger=ledger,
            machine=RequestStateMachine(session, self._clock),
            allocator=DispatchAllocator(
                session,
                ledger,
                self._clock,
                split_tolerance=self._config.allocation.split_tolerance,
                locations=self._config.locations,
            ),
        )

    @contextmanager
    def _read_session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
        finally:
            session.rollback()
            session.close()

    def _execute(
        self,
        operation: str,
        actor: Actor | None,
        work: Callable[[_Unit], T],
        keys: Iterable[str] = (),
        resolve_keys: Callable[[Session], Iterable[str]] | None = None,
    ) -> T:
        """Run ``work`` in its own transaction under the action's locks."""

        def attempt() -> T:
            lock_keys = set(keys)
            if resolve_keys is not None:
                with self._read_session() as session:
                    lock_keys.update(resolve_keys(session))

            with self._locks.hold(lock_keys):
                session = self._session_factory()
                try:
                    unit = self._unit(session)
                    result = work(unit)
                    with translate_storage_errors(operation, "transaction"):
                        session.commit()
                except BaseException:
                    session.rollback()
                    raise
                finally:
                    session.close()

            self.bus.publish_all(unit.events)
            return result

        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=actor.user_id if actor else None,
        ):
            try:
                return run_with_retry(
                    operation, attempt, self._config.retry, sleep=self._sleep
                )
            except Exception as exc:
                logger.info(
                    "action_failed",
                    extra={
                        "operation": operation,
                        "error_code": getattr(exc, "code", type(exc).__name__),
                    },
                )
                raise

    def _request_keys(self, request_id: UUID) -> Callable[[Session], list[str]]:
        """Lock keys for a request and every material on it."""

        def resolve(session: Session) -> list[str]:
            material_ids = session.execute(
                select(RequestItem.material_id).where(RequestItem.request_id == request_id)
            ).scalars().all()
            return [request_key(request_id)] + [material_key(m) for m in material_ids]

        return resolve

    def _dispatch_keys(self, dispatch_id: UUID) -> Callable[[Session], list[str]]:
        def resolve(session: Session) -> list[str]:
            keys = [dispatch_key(dispatch_id)]
            request_id = session.execute(
                select(Dispatch.request_id).where(Dispatch.id == dispatch_id)
            ).scalar_one_or_none()
            if request_id is not None:
                keys.append(request_key(request_id))
            keys.extend(
                material_key(m)
                for m in session.execute(
                    select(DispatchLine.material_id).where(
                        DispatchLine.dispatch_id == dispatch_id
                    )
                ).scalars().all()
            )
            return keys

        return resolve

    def _entry_keys(self, entry_id: UUID) -> Callable[[Session], list[str]]:
        def resolve(session: Session) -> list[str]:
            location = session.execute(
                select(LocationEntry.location).where(LocationEntry.id == entry_id)
            ).scalar_one_or_none()
            keys = [entry_key(entry_id)]
            if location is not None:
                keys.append(location_key(location))
            return keys

        return resolve

    def _low_stock_events(self, unit: _Unit, results: Iterable[MovementResult]) -> None:
        for result in results:
            if not result.below_reorder_level:
                continue
            material = unit.ledger.get_material(result.material_id)
            logger.warning(
                "low_stock_detected",
                extra={
                    "material_id": str(material.id),
                    "material_code": material.code,
                    "location": result.location,
                    "balance": result.balance_after,
                    "reorder_level": material.reorder_level,
                },
            )
            unit.events.append(
                LowStockDetected(
                    occurred_at=self._clock.now(),
                    material_id=material.id,
                    material_code=material.code,
                    location=result.location,
                    balance=result.balance_after,
                    reorder_level=material.reorder_level,
                )
            )

    # ------------------------------------------------------------------
    # Request lifecycle
    # ------------------------------------------------------------------

    def submit_request(
        self,
        family: RequestFamily | str,
        actor: Actor,
        items: Sequence[RequestItemSpec],
        request_type: str | None = None,
        priority: str = "normal",
        notes: str | None = None,
        batch_reference: str | None = None,
        comment: str | None = None,
    ) -> RequestView:
        """Create a request in its family's initial state."""

        def work(unit: _Unit) -> RequestView:
            request = unit.machine.create_request(
                family,
                actor,
                items,
                request_type=request_type,
                priority=priority,
                notes=notes,
                batch_reference=batch_reference,
                comment=comment,
            )
            view = request.to_dto()
            unit.events.append(
                RequestSubmitted(
                    occurred_at=self._clock.now(),
                    request_id=view.id,
                    family=view.family,
                    request_type=view.request_type,
                    status=view.status,
                    requester_id=view.requester_id,
                    line_count=len(view.items),
                )
            )
            return view

        return self._execute("submit_request", actor, work)

    def forward_to_director(
        self,
        request_id: UUID,
        actor: Actor,
        comment: str | None = None,
    ) -> RequestView:
        """HO forwards a standard request to the Main Director."""

        def work(unit: _Unit) -> RequestView:
            view = unit.machine.apply_transition(
                request_id, Action.FORWARD, actor, comment=comment
            ).to_dto()
            unit.events.append(
                RequestForwarded(
                    occurred_at=self._clock.now(),
                    request_id=view.id,
                    family=view.family,
                    status=view.status,
                    requester_id=view.requester_id,
                    actor_id=actor.user_id,
                )
            )
            return view

        with LogContext.bind(request_id=str(request_id)):
            return self._execute(
                "forward_to_director", actor, work, keys=[request_key(request_id)]
            )

    def approve(
        self,
        request_id: UUID,
        actor: Actor,
        comment: str | None = None,
        approved_quantities: dict[int, Any] | None = None,
    ) -> RequestView:
        """
        Approve a request.

        Final approval of a standard request emits ProcurementRequired.
        Distributor approvals may lower per-line approved quantities.
        """

        def work(unit: _Unit) -> RequestView:
            view = unit.machine.apply_transition(
                request_id,
                Action.APPROVE,
                actor,
                comment=comment,
                approved_quantities=approved_quantities,
            ).to_dto()
            now = self._clock.now()
            unit.events.append(
                RequestApproved(
                    occurred_at=now,
                    request_id=view.id,
                    family=view.family,
                    status=view.status,
                    requester_id=view.requester_id,
                    actor_id=actor.user_id,
                )
            )
            if view.status == StandardStatus.MD_APPROVED.value:
                logger.info(
                    "procurement_required",
                    extra={"request_id": str(view.id), "line_count": len(view.items)},
                )
                unit.events.append(
                    ProcurementRequired(
                        occurred_at=now,
                        request_id=view.id,
                        request_type=view.request_type,
                        items=view.items,
                    )
                )
            return view

        with LogContext.bind(request_id=str(request_id)):
            return self._execute(
                "approve", actor, work, keys=[request_key(request_id)]
            )

    def reject(
        self,
        request_id: UUID,
        actor: Actor,
        comment: str | None = None,
    ) -> RequestView:
        """Reject a request.  Never touches the ledger."""

        def work(unit: _Unit) -> RequestView:
            view = unit.machine.apply_transition(
                request_id, Action.REJECT, actor, comment=comment
            ).to_dto()
            unit.events.append(
                RequestRejected(
                    occurred_at=self._clock.now(),
                    request_id=view.id,
                    family=view.family,
                    status=view.status,
                    requester_id=view.requester_id,
                    actor_id=actor.user_id,
                    actor_role=actor.role.value,
                    comment=comment,
                )
            )
            return view

        with LogContext.bind(request_id=str(request_id)):
            return self._execute(
                "reject", actor, work, keys=[request_key(request_id)]
            )

    def dispatch(
        self,
        request_id: UUID,
        actor: Actor,
        lines: Sequence[DispatchLineSpec] | None = None,
        notes: str | None = None,
        comment: str | None = None,
        dispatch_id: UUID | None = None,
    ) -> DispatchOutcome:
        """
        Fill a production or distributor request from stock.

        production_direct: all lines or nothing; a short line parks the
        request in ``stock_shortage`` (retry by dispatching again).
        distributor: ``lines`` selects a partial dispatch; without it every
        outstanding quantity is sent.  A short dispatch leaves the request
        ``Approved`` and reports the shortage.

        ``dispatch_id`` is fixed for the whole action, retries included, so
        an attempt that committed but reported a failure is rejected on
        redrive with DuplicateMovementError instead of dispatching twice.
        """

        def work(unit: _Unit) -> DispatchOutcome:
            if unit.session.get(Dispatch, dispatch_id) is not None:
                raise DuplicateMovementError(idempotency.dispatch_key(dispatch_id, 1))
            request = unit.machine.get_request(request_id, for_update=True)
            if not can_transition(actor.role, request.family, request.status, Action.DISPATCH.value):
                # Raises the precise IllegalTransitionError (terminal, role, ...).
                unit.machine.resolve(request, Action.DISPATCH, actor)

            family = RequestFamily(request.family)
            if family == RequestFamily.PRODUCTION_DIRECT:
                if lines:
                    raise InvalidRequestError(
                        "production requests are dispatched whole, not by line"
                    )
                outcome = unit.allocator.approve_and_dispatch(
                    request, actor, notes, dispatch_id
                )
            elif lines:
                outcome = unit.allocator.dispatch_partial(
                    request, lines, actor, notes, dispatch_id
                )
            else:
                outcome = unit.allocator.approve_and_dispatch(
                    request, actor, notes, dispatch_id
                )

            now = self._clock.now()
            if isinstance(outcome, ShortageReport):
                if family == RequestFamily.PRODUCTION_DIRECT:
                    request = unit.machine.apply_transition(
                        request_id,
                        Action.DISPATCH,
                        actor,
                        comment=comment,
                        context={"shortages": outcome.shortages},
                    )
                view = request.to_dto()
                unit.events.append(
                    StockShortageReported(
                        occurred_at=now,
                        request_id=view.id,
                        family=view.family,
                        status=view.status,
                        requester_id=view.requester_id,
                        shortages=outcome.shortages,
                    )
                )
                return DispatchOutcome(request=view, shortage=outcome)

            if family == RequestFamily.PRODUCTION_DIRECT:
                context: dict[str, Any] = {"shortages": ()}
            else:
                context = {"remaining": unit.allocator.remaining_quantities(request)}
            request = unit.machine.apply_transition(
                request_id, Action.DISPATCH, actor, comment=comment, context=context
            )
            view = request.to_dto()
            dispatch_view = outcome.to_dto()
            unit.events.append(
                MaterialsDispatched(
                    occurred_at=now,
                    request_id=view.id,
                    dispatch_id=dispatch_view.id,
                    family=view.family,
                    status=view.status,
                    requester_id=view.requester_id,
                    destination_location=dispatch_view.destination_location,
                    total_quantity=dispatch_view.total_quantity,
                    fully_dispatched=view.status != DistributorStatus.APPROVED.value,
                )
            )
            self._low_stock_events(unit, unit.allocator.low_stock)
            return DispatchOutcome(request=view, dispatch=dispatch_view)

        dispatch_id = dispatch_id or uuid4()
        with LogContext.bind(request_id=str(request_id)):
            return self._execute(
                "dispatch", actor, work, resolve_keys=self._request_keys(request_id)
            )

    def acknowledge_receipt(
        self,
        dispatch_id: UUID,
        actor: Actor,
        notes: str | None = None,
        comment: str | None = None,
    ) -> DispatchOutcome:
        """Receive a production dispatch into the production location."""

        def work(unit: _Unit) -> DispatchOutcome:
            dispatch = unit.allocator.get_dispatch(dispatch_id, for_update=True)
            if dispatch.is_received:
                raise DispatchAlreadyReceivedError(
                    str(dispatch_id), dispatch.received_by_name
                )
            request = unit.machine.get_request(dispatch.request_id, for_update=True)
            unit.machine.resolve(request, Action.ACKNOWLEDGE_RECEIPT, actor)

            dispatch = unit.allocator.acknowledge_receipt(dispatch_id, actor, notes)
            view = unit.machine.apply_transition(
                request.id, Action.ACKNOWLEDGE_RECEIPT, actor, comment=comment
            ).to_dto()
            dispatch_view = dispatch.to_dto()
            unit.events.append(
                ReceiptAcknowledged(
                    occurred_at=self._clock.now(),
                    request_id=view.id,
                    dispatch_id=dispatch_view.id,
                    family=view.family,
                    status=view.status,
                    actor_id=actor.user_id,
                    destination_location=dispatch_view.destination_location,
                )
            )
            return DispatchOutcome(request=view, dispatch=dispatch_view)

        with LogContext.bind(dispatch_id=str(dispatch_id)):
            return self._execute(
                "acknowledge_receipt",
                actor,
                work,
                resolve_keys=self._dispatch_keys(dispatch_id),
            )

    # ------------------------------------------------------------------
    # Finished-goods storage
    # ------------------------------------------------------------------

    def register_location(
        self,
        code: str,
        name: str,
        actor: Actor,
        capacity: int | None = None,
    ) -> StorageLocationView:
        def work(unit: _Unit) -> StorageLocationView:
            return unit.allocator.register_location(code, name, actor, capacity).to_dto()

        return self._execute(
            "register_location", actor, work, keys=[location_key(code)]
        )

    def place_entry(
        self,
        product_id: str,
        batch_number: str,
        location: str,
        quantity: Any,
        actor: Actor,
        notes: str | None = None,
    ) -> LocationEntryView:
        def work(unit: _Unit) -> LocationEntryView:
            return unit.allocator.place_entry(
                product_id, batch_number, location, quantity, actor, notes
            ).to_dto()

        return self._execute("place_entry", actor, work, keys=[location_key(location)])

    def split_entry(
        self,
        entry_id: UUID,
        allocations: Sequence[SplitAllocation],
        actor: Actor,
    ) -> list[LocationEntryView]:
        """Split an entry across locations, conserving quantity."""

        def work(unit: _Unit) -> list[LocationEntryView]:
            parent = unit.allocator.get_entry(entry_id)
            product_id, batch_number = parent.product_id, parent.batch_number
            children = [c.to_dto() for c in unit.allocator.split(entry_id, allocations, actor)]
            unit.events.append(
                EntrySplit(
                    occurred_at=self._clock.now(),
                    entry_id=entry_id,
                    product_id=product_id,
                    batch_number=batch_number,
                    child_ids=tuple(c.id for c in children),
                )
            )
            return children

        with LogContext.bind(entry_id=entry_id):
            return self._execute(
                "split_entry",
                actor,
                work,
                keys=[location_key(a.location) for a in allocations],
                resolve_keys=self._entry_keys(entry_id),
            )

    def move_entry(
        self,
        entry_id: UUID,
        new_location: str,
        actor: Actor,
        note: str | None = None,
    ) -> LocationEntryView:
        def work(unit: _Unit) -> LocationEntryView:
            before = unit.allocator.get_entry(entry_id).location
            entry = unit.allocator.move(entry_id, new_location, actor, note).to_dto()
            if before != entry.location:
                unit.events.append(
                    EntryMoved(
                        occurred_at=self._clock.now(),
                        entry_id=entry.id,
                        product_id=entry.product_id,
                        batch_number=entry.batch_number,
                        from_location=before,
                        to_location=entry.location,
                    )
                )
            return entry

        with LogContext.bind(entry_id=entry_id):
            return self._execute(
                "move_entry",
                actor,
                work,
                keys=[location_key(new_location)],
                resolve_keys=self._entry_keys(entry_id),
            )

    # ------------------------------------------------------------------
    # Material registry and direct ledger postings
    # ------------------------------------------------------------------

    def register_material(
        self,
        actor: Actor,
        code: str,
        name: str,
        unit: str,
        reorder_level: Any = Decimal("0"),
        max_level: Any = None,
        quality_grade: str | None = None,
        category: str | None = None,
        home_location: str | None = None,
        opening_balance: Any = None,
    ) -> MaterialView:
        def work(u: _Unit) -> MaterialView:
            return u.ledger.register_material(
                actor,
                code,
                name,
                unit,
                reorder_level=reorder_level,
                max_level=max_level,
                quality_grade=quality_grade,
                category=category,
                home_location=home_location,
                opening_balance=opening_balance,
            ).to_dto()

        return self._execute(
            "register_material", actor, work, keys=[f"material_code:{code}"]
        )

    def deactivate_material(self, material_id: UUID, actor: Actor) -> MaterialView:
        def work(unit: _Unit) -> MaterialView:
            return unit.ledger.deactivate_material(material_id, actor).to_dto()

        return self._execute(
            "deactivate_material", actor, work, keys=[material_key(material_id)]
        )

    def record_goods_receipt(
        self,
        material_id: UUID,
        quantity: Any,
        actor: Actor,
        batch_number: str | None = None,
        location: str | None = None,
        reason: str = "goods_receipt",
        idempotency_key: str | None = None,
    ) -> MovementResult:
        """Stock arriving from a supplier (GRN): an ``in`` movement.

        The movement key is generated once per call unless the caller brings
        its own (e.g. derived from the supplier delivery note), so a retried
        attempt whose commit already landed raises DuplicateMovementError.
        """

        def work(unit: _Unit) -> MovementResult:
            return unit.ledger.post_movement(
                material_id,
                MovementDirection.IN,
                quantity,
                MovementMeta(
                    location=location,
                    reason=reason,
                    batch_number=batch_number,
                    idempotency_key=idempotency_key,
                    actor=actor,
                ),
            )

        idempotency_key = idempotency_key or idempotency.movement_key(
            "grn", uuid4(), 1, MovementDirection.IN.value
        )
        with LogContext.bind(material_id=str(material_id)):
            return self._execute(
                "record_goods_receipt", actor, work, keys=[material_key(material_id)]
            )

    def post_correction(
        self,
        material_id: UUID,
        direction: MovementDirection | str,
        quantity: Any,
        actor: Actor,
        reason: str,
        location: str | None = None,
        idempotency_key: str | None = None,
    ) -> MovementResult:
        """Compensating movement.  Movements are never edited."""
        if not reason:
            raise InvalidRequestError("a correction needs a reason")

        def work(unit: _Unit) -> MovementResult:
            result = unit.ledger.post_movement(
                material_id,
                direction,
                quantity,
                MovementMeta(
                    location=location,
                    reason=f"correction: {reason}",
                    idempotency_key=idempotency_key,
                    actor=actor,
                ),
            )
            self._low_stock_events(unit, [result])
            return result

        idempotency_key = idempotency_key or idempotency.movement_key(
            "correction", uuid4(), 1, MovementDirection(direction).value
        )
        with LogContext.bind(material_id=str(material_id)):
            return self._execute(
                "post_correction", actor, work, keys=[material_key(material_id)]
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_request(self, request_id: UUID) -> RequestView:
        with self._read_session() as session:
            return RequestStateMachine(session, self._clock).get_request(request_id).to_dto()

    def list_requests(
        self,
        family: RequestFamily | str | None = None,
        status: str | None = None,
        requested_by: str | None = None,
        limit: int | None = None,
    ) -> list[RequestView]:
        with self._read_session() as session:
            return RequestStateMachine(session, self._clock).list_requests(
                family=family, status=status, requested_by=requested_by, limit=limit
            )

    def dispatches_for(self, request_id: UUID) -> list[DispatchView]:
        with self._read_session() as session:
            return RequestSelector(session).dispatches_for(request_id)

    def pending_receipts(self, destination_location: str | None = None) -> list[DispatchView]:
        """Dispatches still waiting for their receiver, oldest first."""
        with self._read_session() as session:
            return RequestSelector(session).pending_receipts(destination_location)

    def get_material(self, material_id: UUID) -> MaterialView:
        with self._read_session() as session:
            return self._unit(session).ledger.get_material(material_id).to_dto()

    def get_balance(self, material_id: UUID, location: str | None = None) -> Decimal:
        with self._read_session() as session:
            return self._unit(session).ledger.get_balance(material_id, location)

    def balances_by_location(self, material_id: UUID) -> dict[str, Decimal]:
        with self._read_session() as session:
            return self._unit(session).ledger.balances_by_location(material_id)

    def check_availability(
        self,
        material_id: UUID,
        quantity: Any,
        location: str | None = None,
        family: RequestFamily | str | None = None,
    ) -> Availability:
        with self._read_session() as session:
            return self._unit(session).allocator.check_availability(
                material_id, quantity, location, family
            )

    def list_movements(
        self,
        material_id: UUID,
        filters: MovementFilter | None = None,
    ) -> list[MovementRecord]:
        """Materialized history; use the ledger service directly for lazy paging."""
        with self._read_session() as session:
            return self._unit(session).ledger.list_movements(material_id, filters).to_list()

    def verify_balances(self, material_id: UUID | None = None) -> list[BalanceMismatch]:
        with self._read_session() as session:
            return self._unit(session).ledger.verify_balances(material_id)

    def list_entries(
        self,
        location: str | None = None,
        product_id: str | None = None,
        batch_number: str | None = None,
    ) -> list[LocationEntryView]:
        with self._read_session() as session:
            return LocationSelector(session).entries(location, product_id, batch_number)
