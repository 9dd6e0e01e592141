"""
Module: materials_kernel.selectors.ledger_selector
Responsibility: Read-only ledger queries: movement history, full-rescan
    balance replay, and the cached-vs-replayed comparison used by
    ``verify_balances``.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Ledger reproducibility: ``replay_balance`` folds movements in seq
      order applying the same per-step clamp as posting, so it equals the
      cached StockBalance for every (material, location).
    - History is newest-first (created_at, seq, id descending), keyset-paged
      so an iteration is finite and can be restarted by iterating again.

Failure modes:
    - Returns zero / empty results when a material has no movements.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from materials_kernel.domain.values import ZERO, MovementDirection, MovementFilter
from materials_kernel.models.material import StockBalance
from materials_kernel.models.movement import StockMovement
from materials_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class MovementRecord:
    """A single movement as read from the ledger."""

    id: UUID
    material_id: UUID
    location: str
    direction: MovementDirection
    quantity: Decimal
    balance_before: Decimal
    balance_after: Decimal
    clamped_quantity: Decimal
    seq: int
    reason: str
    request_id: UUID | None
    dispatch_id: UUID | None
    batch_number: str | None
    idempotency_key: str | None
    actor_id: str
    actor_name: str
    created_at: datetime

    @classmethod
    def from_model(cls, row: StockMovement) -> MovementRecord:
        return cls(
            id=row.id,
            material_id=row.material_id,
            location=row.location,
            direction=MovementDirection(row.direction),
            quantity=row.quantity,
            balance_before=row.balance_before,
            balance_after=row.balance_after,
            clamped_quantity=row.clamped_quantity,
            seq=row.seq,
            reason=row.reason,
            request_id=row.request_id,
            dispatch_id=row.dispatch_id,
            batch_number=row.batch_number,
            idempotency_key=row.idempotency_key,
            actor_id=row.actor_id,
            actor_name=row.actor_name,
            created_at=row.created_at,
        )


@dataclass(frozen=True)
class BalanceMismatch:
    """A (material, location) whose cached balance disagrees with replay."""

    material_id: UUID
    location: str
    cached: Decimal
    replayed: Decimal


def _before(created_at: datetime, seq: int, movement_id: UUID):
    """Rows strictly after the cursor in (created_at, seq, id) descending order.

    Each value is compared against its own column so it is bound with that
    column's type; SQLite stores timestamps as text and an untyped bind
    would not compare equal to the stored form.
    """
    m = StockMovement
    return or_(
        m.created_at < created_at,
        and_(
            m.created_at == created_at,
            or_(m.seq < seq, and_(m.seq == seq, m.id < movement_id)),
        ),
    )


class MovementHistory:
    """
    Lazy, finite, restartable view over a material's movements.

    Nothing is queried until iteration starts.  Each ``iter()`` starts a
    fresh walk from the newest movement; pages are fetched on demand with a
    keyset cursor, so rows written after the walk started sort ahead of
    the cursor and are not visited.
    """

    def __init__(
        self,
        session: Session,
        material_id: UUID,
        filters: MovementFilter | None = None,
    ):
        self._session = session
        self._material_id = material_id
        self._filters = filters or MovementFilter()

    def _base_query(self):
        f = self._filters
        query = select(StockMovement).where(
            StockMovement.material_id == self._material_id
        )
        if f.direction is not None:
            query = query.where(StockMovement.direction == f.direction.value)
        if f.location is not None:
            query = query.where(StockMovement.location == f.location)
        if f.request_id is not None:
            query = query.where(StockMovement.request_id == f.request_id)
        if f.dispatch_id is not None:
            query = query.where(StockMovement.dispatch_id == f.dispatch_id)
        if f.since is not None:
            query = query.where(StockMovement.created_at >= f.since)
        if f.until is not None:
            query = query.where(StockMovement.created_at <= f.until)
        return query

    def __iter__(self) -> Iterator[MovementRecord]:
        cursor = None
        while True:
            query = self._base_query()
            if cursor is not None:
                query = query.where(_before(*cursor))
            query = query.order_by(
                StockMovement.created_at.desc(),
                StockMovement.seq.desc(),
                StockMovement.id.desc(),
            ).limit(self._filters.page_size)

            page = self._session.execute(query).scalars().all()
            for row in page:
                yield MovementRecord.from_model(row)
            if len(page) < self._filters.page_size:
                return
            last = page[-1]
            cursor = (last.created_at, last.seq, last.id)

    def first(self) -> MovementRecord | None:
        return next(iter(self), None)

    def to_list(self) -> list[MovementRecord]:
        return list(self)


class LedgerSelector(BaseSelector):
    """
    Selector for ledger queries.

    Contract:
        Reads StockMovement and StockBalance rows only.  Every balance is
        Decimal (never float).
    """

    def history(
        self,
        material_id: UUID,
        filters: MovementFilter | None = None,
    ) -> MovementHistory:
        return MovementHistory(self.session, material_id, filters)

    def cached_balance(self, material_id: UUID, location: str) -> Decimal:
        quantity = self.session.execute(
            select(StockBalance.quantity).where(
                StockBalance.material_id == material_id,
                StockBalance.location == location,
            )
        ).scalar_one_or_none()
        return quantity if quantity is not None else ZERO

    def replay_balance(self, material_id: UUID, location: str) -> Decimal:
        """Full rescan: fold every movement for the key in posting order."""
        balance = ZERO
        rows = self.session.execute(
            select(StockMovement.direction, StockMovement.quantity)
            .where(
                StockMovement.material_id == material_id,
                StockMovement.location == location,
            )
            .order_by(StockMovement.seq)
            .execution_options(yield_per=500)
        )
        for direction, quantity in rows:
            if direction == MovementDirection.IN.value:
                balance = balance + quantity
            else:
                balance = max(ZERO, balance - quantity)
        return balance

    def balance_keys(self, material_id: UUID | None = None) -> list[tuple[UUID, str]]:
        """Every (material, location) that has a balance row or a movement."""
        balances = select(StockBalance.material_id, StockBalance.location)
        movements = select(
            StockMovement.material_id, StockMovement.location
        ).distinct()
        if material_id is not None:
            balances = balances.where(StockBalance.material_id == material_id)
            movements = movements.where(StockMovement.material_id == material_id)
        keys = set(self.session.execute(balances).all())
        keys.update(self.session.execute(movements).all())
        return sorted(((m, loc) for m, loc in keys), key=lambda k: (str(k[0]), k[1]))

    def locations_for(self, material_id: UUID) -> dict[str, Decimal]:
        rows = self.session.execute(
            select(StockBalance.location, StockBalance.quantity)
            .where(StockBalance.material_id == material_id)
            .order_by(StockBalance.location)
        ).all()
        return {location: quantity for location, quantity in rows}

    def mismatches(self, material_id: UUID | None = None) -> list[BalanceMismatch]:
        result: list[BalanceMismatch] = []
        for mat_id, location in self.balance_keys(material_id):
            cached = self.cached_balance(mat_id, location)
            replayed = self.replay_balance(mat_id, location)
            if cached != replayed:
                result.append(BalanceMismatch(mat_id, location, cached, replayed))
        return result
