"""
StockLedgerService -- append-only stock ledger with a cached balance.

Responsibility:
    Owns StockMovement, StockBalance and the Material registry.  Appends
    movements and, in the same flush, folds each into the cached balance
    for its (material, location).  Answers balance reads from the cache and
    can reproduce any balance by a full rescan.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the allocator and the
    workflow orchestrator; never calls upward.

Invariants enforced:
    - Ledger reproducibility: cached balance == replay of movements.
    - Append-only: movements are inserted, never updated (ORM listeners).
    - Positive quantities: quantity <= 0 is rejected before anything is
      written.
    - Clamp at zero: an out movement larger than the balance leaves the
      balance at 0; the swallowed amount is recorded on the movement,
      returned as NegativeBalance and logged at WARNING.
    - Atomic per material: the balance row is read FOR UPDATE (PostgreSQL)
      and carries an optimistic version column, so two postings against the
      same (material, location) cannot both apply on top of the same
      balance.  Different materials never share a lock.

Failure modes:
    - InvalidQuantityError: quantity <= 0 / not a number.
    - MaterialNotFoundError / InactiveMaterialError.
    - DuplicateMovementError: idempotency key already posted.
    - OptimisticLockError / StorageUnavailableError from the flush.

Audit relevance:
    Every posting logs ``movement_posted`` with material, location, seq and
    the before/after balance; clamps log ``negative_balance_clamped``.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from materials_kernel.domain.clock import Clock
from materials_kernel.domain.identity import Actor
from materials_kernel.domain.values import (
    ZERO,
    MovementDirection,
    MovementFilter,
    MovementMeta,
    MovementResult,
    NegativeBalance,
    positive_quantity,
    to_quantity,
)
from materials_kernel.exceptions import (
    DuplicateMovementError,
    InactiveMaterialError,
    InvalidQuantityError,
    MaterialCodeExistsError,
    MaterialNotFoundError,
)
from materials_kernel.logging_config import get_logger
from materials_kernel.models.material import Material, MaterialStatus, StockBalance
from materials_kernel.models.movement import StockMovement
from materials_kernel.selectors.ledger_selector import (
    BalanceMismatch,
    LedgerSelector,
    MovementHistory,
)
from materials_kernel.services.base import BaseService, translate_storage_errors

logger = get_logger("services.stock_ledger")

SYSTEM_ACTOR_ID = "system"


class StockLedgerService(BaseService):
    """
    The stock ledger.

    Contract:
        ``post_movement`` is the only write path for balances.  The caller
        owns the transaction; the movement and balance update are flushed
        together and commit or roll back together.

    Non-goals:
        - Does NOT decide whether stock is sufficient for a request; the
          allocator does that before posting.
        - Does NOT refuse an over-draw; it clamps and reports it.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        default_location: str = "warehouse",
    ):
        super().__init__(session, clock)
        self._default_location = default_location
        self._selector = LedgerSelector(session)

    # ------------------------------------------------------------------
    # Material registry
    # ------------------------------------------------------------------

    def register_material(
        self,
        actor: Actor,
        code: str,
        name: str,
        unit: str,
        reorder_level: Any = ZERO,
        max_level: Any = None,
        quality_grade: str | None = None,
        category: str | None = None,
        home_location: str | None = None,
        opening_balance: Any = None,
    ) -> Material:
        """Register a material, optionally with an opening ``in`` movement."""
        existing = self.session.execute(
            select(Material.id).where(Material.code == code)
        ).scalar_one_or_none()
        if existing is not None:
            raise MaterialCodeExistsError(code)

        reorder = to_quantity(reorder_level, "reorder_level")
        if reorder < ZERO:
            raise InvalidQuantityError(reorder_level, "reorder_level")
        maximum = None
        if max_level is not None:
            maximum = positive_quantity(max_level, "max_level")

        now = self.clock.now()
        material = Material(
            code=code,
            name=name,
            unit=unit,
            reorder_level=reorder,
            max_level=maximum,
            quality_grade=quality_grade,
            category=category,
            status=MaterialStatus.ACTIVE.value,
            home_location=home_location or self._default_location,
            created_at=now,
            updated_at=now,
            created_by_id=actor.user_id,
        )
        self.session.add(material)
        self._flush("register_material", "Material", code)

        logger.info(
            "material_registered",
            extra={
                "material_id": str(material.id),
                "material_code": code,
                "home_location": material.home_location,
            },
        )

        if opening_balance is not None and to_quantity(opening_balance) > ZERO:
            self.post_movement(
                material.id,
                MovementDirection.IN,
                opening_balance,
                MovementMeta(reason="opening_balance", actor=actor),
            )
        return material

    def deactivate_material(self, material_id: UUID, actor: Actor) -> Material:
        """Soft delete: the material keeps its history but takes no postings."""
        material = self.get_material(material_id)
        if material.is_active:
            material.status = MaterialStatus.INACTIVE.value
            material.updated_at = self.clock.now()
            material.updated_by_id = actor.user_id
            self._flush("deactivate_material", "Material", material_id)
            logger.info(
                "material_deactivated",
                extra={"material_id": str(material_id), "material_code": material.code},
            )
        return material

    def get_material(self, material_id: UUID) -> Material:
        material = self.session.get(Material, material_id)
        if material is None:
            raise MaterialNotFoundError(material_id)
        return material

    # ------------------------------------------------------------------
    # Postings
    # ------------------------------------------------------------------

    def post_movement(
        self,
        material_id: UUID,
        direction: MovementDirection | str,
        quantity: Any,
        meta: MovementMeta | None = None,
    ) -> MovementResult:
        """
        Append one movement and fold it into the cached balance.

        Preconditions:
            - quantity > 0 (InvalidQuantityError otherwise, nothing written).
            - The material exists and is active.
        Postconditions:
            - One StockMovement row with seq = previous seq + 1.
            - Cached balance = max(0, before +/- quantity).

        Returns:
            MovementResult, with ``negative_balance`` set when the clamp fired.
        """
        qty = positive_quantity(quantity)
        direction = MovementDirection(direction)
        meta = meta or MovementMeta()

        material = self.get_material(material_id)
        if not material.is_active:
            raise InactiveMaterialError(str(material_id), material.code)
        location = meta.location or material.home_location

        if meta.idempotency_key is not None:
            taken = self.session.execute(
                select(StockMovement.id).where(
                    StockMovement.idempotency_key == meta.idempotency_key
                )
            ).scalar_one_or_none()
            if taken is not None:
                logger.warning(
                    "duplicate_movement_rejected",
                    extra={"idempotency_key": meta.idempotency_key,
                           "existing_movement_id": str(taken)},
                )
                raise DuplicateMovementError(meta.idempotency_key)

        balance = self._lock_balance(material_id, location)
        before = balance.quantity
        raw_after = before + qty if direction == MovementDirection.IN else before - qty
        after = max(ZERO, raw_after)
        clamped = after - raw_after
        seq = balance.last_seq + 1
        now = self.clock.now()

        actor = meta.actor
        movement = StockMovement(
            material_id=material_id,
            location=location,
            direction=direction.value,
            quantity=qty,
            balance_before=before,
            balance_after=after,
            clamped_quantity=clamped,
            seq=seq,
            reason=meta.reason,
            request_id=meta.request_id,
            dispatch_id=meta.dispatch_id,
            batch_number=meta.batch_number,
            idempotency_key=meta.idempotency_key,
            actor_id=actor.user_id if actor else SYSTEM_ACTOR_ID,
            actor_name=actor.display_name if actor else SYSTEM_ACTOR_ID,
            actor_role=actor.role.value if actor else SYSTEM_ACTOR_ID,
            created_at=now,
        )
        self.session.add(movement)

        balance.quantity = after
        balance.movement_count += 1
        balance.last_seq = seq
        balance.last_movement_at = now

        self._flush(
            "post_movement",
            "StockBalance",
            f"{material_id}@{location}",
            idempotency_key=meta.idempotency_key,
        )

        negative = None
        if clamped > ZERO:
            negative = NegativeBalance(
                material_id=material_id,
                location=location,
                balance_before=before,
                requested=qty,
                clamped_quantity=clamped,
            )
            logger.warning(
                "negative_balance_clamped",
                extra={
                    "material_id": str(material_id),
                    "location": location,
                    "balance_before": before,
                    "requested": qty,
                    "clamped_quantity": clamped,
                    "movement_id": str(movement.id),
                },
            )

        below_reorder = (
            direction == MovementDirection.OUT
            and location == material.home_location
            and material.reorder_level > ZERO
            and after <= material.reorder_level
        )

        logger.info(
            "movement_posted",
            extra={
                "movement_id": str(movement.id),
                "material_id": str(material_id),
                "location": location,
                "direction": direction.value,
                "quantity": qty,
                "seq": seq,
                "balance_before": before,
                "balance_after": after,
                "reason": meta.reason,
            },
        )

        return MovementResult(
            movement_id=movement.id,
            material_id=material_id,
            location=location,
            direction=direction,
            quantity=qty,
            balance_before=before,
            balance_after=after,
            seq=seq,
            negative_balance=negative,
            below_reorder_level=below_reorder,
        )

    def _lock_balance(self, material_id: UUID, location: str) -> StockBalance:
        """Read the balance row FOR UPDATE, creating it on first use.

        A concurrent first posting may create the row between our read and
        insert; the savepoint absorbs that IntegrityError and we re-read.
        """
        query = (
            select(StockBalance)
            .where(
                StockBalance.material_id == material_id,
                StockBalance.location == location,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        with translate_storage_errors("lock_balance", "StockBalance", material_id):
            balance = self.session.execute(query).scalar_one_or_none()
            if balance is not None:
                return balance

            savepoint = self.session.begin_nested()
            try:
                balance = StockBalance(
                    material_id=material_id,
                    location=location,
                    quantity=ZERO,
                    movement_count=0,
                    last_seq=0,
                )
                self.session.add(balance)
                self.session.flush()
                savepoint.commit()
                return balance
            except IntegrityError:
                logger.debug(
                    "balance_row_race_retry",
                    extra={"material_id": str(material_id), "location": location},
                )
                savepoint.rollback()
                return self.session.execute(query).scalar_one()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_balance(self, material_id: UUID, location: str | None = None) -> Decimal:
        """Cached balance; the material's home location unless given."""
        material = self.get_material(material_id)
        return self._selector.cached_balance(
            material_id, location or material.home_location
        )

    def balances_by_location(self, material_id: UUID) -> dict[str, Decimal]:
        """Cached balance at every location the material has been posted to."""
        self.get_material(material_id)
        return self._selector.locations_for(material_id)

    def recompute_balance(
        self, material_id: UUID, location: str | None = None
    ) -> Decimal:
        """Full rescan of the movement history.  Must equal ``get_balance``."""
        material = self.get_material(material_id)
        return self._selector.replay_balance(
            material_id, location or material.home_location
        )

    def verify_balances(self, material_id: UUID | None = None) -> list[BalanceMismatch]:
        """Compare every cached balance against a replay; return mismatches."""
        mismatches = self._selector.mismatches(material_id)
        for m in mismatches:
            logger.error(
                "balance_mismatch_detected",
                extra={
                    "material_id": str(m.material_id),
                    "location": m.location,
                    "cached": m.cached,
                    "replayed": m.replayed,
                },
            )
        return mismatches

    def list_movements(
        self,
        material_id: UUID,
        filters: MovementFilter | None = None,
    ) -> MovementHistory:
        """Lazy, restartable history, newest first."""
        self.get_material(material_id)
        return self._selector.history(material_id, filters)
