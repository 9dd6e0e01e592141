"""
Module: materials_kernel.models.movement
Responsibility: ORM persistence for stock movements -- the single source
    of truth for material balances.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: ORM listeners block UPDATE/DELETE (db/immutability.py).
    - quantity > 0; the direction carries the sign.
    - (material_id, location, seq) is unique: seq is the per-key posting
      order and backs up the optimistic lock on StockBalance.
    - idempotency_key is unique when set, so a re-driven dispatch or
      receipt cannot post twice.
    - balance_after = max(0, balance_before +/- quantity) and
      clamped_quantity records how much the clamp swallowed, so a replay
      reproduces the cached balance exactly.

Failure modes:
    - IntegrityError on duplicate idempotency_key or (material, location, seq).
    - ImmutabilityViolationError on UPDATE/DELETE.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from materials_kernel.db.base import Base, UUIDString


class StockMovement(Base):
    """
    One signed quantity movement for a material at a location.

    Guarantees:
        - Never edited or deleted; corrections are compensating entries.
        - Carries the balance before/after so history is self-describing.
    """

    __tablename__ = "stock_movements"

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_movement_idempotency"),
        UniqueConstraint(
            "material_id", "location", "seq", name="uq_movement_material_seq"
        ),
        Index("idx_movement_material_created", "material_id", "created_at"),
        Index("idx_movement_request", "request_id"),
        Index("idx_movement_dispatch", "dispatch_id"),
    )

    material_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("materials.id"),
        nullable=False,
    )
    location: Mapped[str] = mapped_column(String(100), nullable=False)
    direction: Mapped[str] = mapped_column(String(3), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    balance_before: Mapped[Decimal] = mapped_column(nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(nullable=False)
    clamped_quantity: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0")
    )
    seq: Mapped[int] = mapped_column(nullable=False)
    reason: Mapped[str] = mapped_column(String(200), nullable=False, default="")

    request_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    dispatch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    batch_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    actor_id: Mapped[str] = mapped_column(String(128), nullable=False)
    actor_name: Mapped[str] = mapped_column(String(200), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    @property
    def signed_quantity(self) -> Decimal:
        return self.quantity if self.direction == "in" else -self.quantity

    def __repr__(self) -> str:
        return (
            f"<StockMovement {self.material_id}@{self.location} #{self.seq}: "
            f"{self.direction} {self.quantity} -> {self.balance_after}>"
        )
