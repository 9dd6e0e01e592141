"""
Module: materials_kernel.models.material
Responsibility: ORM persistence for the material registry and the cached
    stock balance projection.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, selectors/, or outer layers.

Invariants enforced:
    - Material code uniqueness (UNIQUE constraint).
    - Materials are never deleted; ``status = inactive`` is the soft delete
      (ORM listener in db/immutability.py blocks DELETE).
    - StockBalance is a projection, not ground truth: one row per
      (material, location), always equal to the replay of that pair's
      movements.  ``version`` is an optimistic-lock column, so two writers
      that read the same balance cannot both update it.

Failure modes:
    - IntegrityError on duplicate material code.
    - StaleDataError when a balance row was updated by another transaction
      between read and flush (translated to OptimisticLockError).
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from materials_kernel.db.base import Base, TrackedBase, UUIDString


class MaterialStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Material(TrackedBase):
    """
    A stocked material (raw, packing or finished product).

    Contract:
        Balance is NOT stored here.  ``reorder_level`` drives the low-stock
        signal raised after out movements at the home location.
    """

    __tablename__ = "materials"

    __table_args__ = (
        UniqueConstraint("code", name="uq_material_code"),
        Index("idx_material_status", "status"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)
    category: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reorder_level: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    max_level: Mapped[Decimal | None] = mapped_column(nullable=True)
    quality_grade: Mapped[str | None] = mapped_column(String(20), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=MaterialStatus.ACTIVE.value
    )
    home_location: Mapped[str] = mapped_column(
        String(100), nullable=False, default="warehouse"
    )

    @property
    def is_active(self) -> bool:
        return self.status == MaterialStatus.ACTIVE.value

    def __repr__(self) -> str:
        return f"<Material {self.code}: {self.name} ({self.status})>"

    def to_dto(self):
        from materials_kernel.domain.dtos import MaterialView

        return MaterialView(
            id=self.id,
            code=self.code,
            name=self.name,
            unit=self.unit,
            reorder_level=self.reorder_level,
            max_level=self.max_level,
            quality_grade=self.quality_grade,
            category=self.category,
            status=self.status,
            home_location=self.home_location,
        )


class StockBalance(Base):
    """
    Cached balance for one (material, location).

    Contract:
        Written only by StockLedgerService, in the same flush as the
        movement that changes it.  ``last_seq`` is the seq of the newest
        movement folded into ``quantity``.
    """

    __tablename__ = "stock_balances"

    __table_args__ = (
        UniqueConstraint("material_id", "location", name="uq_stock_balance_key"),
    )

    material_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("materials.id"),
        nullable=False,
    )
    location: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    movement_count: Mapped[int] = mapped_column(nullable=False, default=0)
    last_seq: Mapped[int] = mapped_column(nullable=False, default=0)
    last_movement_at: Mapped[datetime | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<StockBalance {self.material_id}@{self.location}: "
            f"{self.quantity} v{self.version}>"
        )
