"""
Module: materials_kernel.models.location
Responsibility: ORM persistence for finished-goods storage locations,
    the inventory entries placed in them, and the placement audit trail.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - A split deletes the parent entry and creates children whose
      quantities sum to the parent's (allocator; tolerance from config).
    - A move rewrites ``location`` in place; ``version`` is an
      optimistic-lock column so concurrent moves/splits of the same entry
      cannot both commit.
    - LocationMovement rows are append-only (db/immutability.py).
    - ``capacity`` on a StorageLocation, when set, bounds how many entries
      the location may hold.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from materials_kernel.db.base import Base, UUIDString


class LocationMovementKind(str, Enum):
    PLACE = "place"
    SPLIT = "split"
    RELOCATE = "relocate"


class StorageLocation(Base):
    """A named place in the finished-goods store (rack, bay, cold room)."""

    __tablename__ = "storage_locations"

    __table_args__ = (
        UniqueConstraint("code", name="uq_storage_location_code"),
    )

    code: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    capacity: Mapped[int | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    created_by_id: Mapped[str] = mapped_column(String(128), nullable=False)

    def __repr__(self) -> str:
        return f"<StorageLocation {self.code} capacity={self.capacity}>"

    def to_dto(self):
        from materials_kernel.domain.dtos import StorageLocationView

        return StorageLocationView(code=self.code, name=self.name, capacity=self.capacity)


class LocationEntry(Base):
    """A quantity of one product batch sitting at one location."""

    __tablename__ = "location_entries"

    __table_args__ = (
        Index("idx_location_entry_location", "location"),
        Index("idx_location_entry_product_batch", "product_id", "batch_number"),
    )

    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    batch_number: Mapped[str] = mapped_column(String(100), nullable=False)
    location: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    split_from: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    split_index: Mapped[int | None] = mapped_column(nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    placed_at: Mapped[datetime] = mapped_column(nullable=False)
    placed_by_id: Mapped[str] = mapped_column(String(128), nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    updated_by_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<LocationEntry {self.id} {self.product_id}/{self.batch_number} "
            f"@{self.location} qty={self.quantity}>"
        )

    def to_dto(self):
        from materials_kernel.domain.dtos import LocationEntryView

        return LocationEntryView(
            id=self.id,
            product_id=self.product_id,
            batch_number=self.batch_number,
            location=self.location,
            quantity=self.quantity,
            split_from=self.split_from,
            split_index=self.split_index,
            notes=self.notes,
        )


class LocationMovement(Base):
    """Audit row for every placement, split child and relocation."""

    __tablename__ = "location_movements"

    __table_args__ = (
        Index("idx_location_movement_entry", "entry_id"),
        Index("idx_location_movement_product", "product_id", "batch_number"),
    )

    entry_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    batch_number: Mapped[str] = mapped_column(String(100), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    from_location: Mapped[str | None] = mapped_column(String(100), nullable=True)
    to_location: Mapped[str] = mapped_column(String(100), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(128), nullable=False)
    actor_name: Mapped[str] = mapped_column(String(200), nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
