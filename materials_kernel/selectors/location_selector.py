"""
Module: materials_kernel.selectors.location_selector
Responsibility: Read-only queries over finished-goods storage: declared
    locations, the entries currently sitting in a location, and the
    placement trail of a product batch.
Architecture position: Kernel > Selectors.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select

from materials_kernel.domain.dtos import LocationEntryView
from materials_kernel.models.location import (
    LocationEntry,
    LocationMovement,
    StorageLocation,
)
from materials_kernel.selectors.base import BaseSelector


class LocationSelector(BaseSelector):
    def find_location(self, code: str) -> StorageLocation | None:
        return self.session.execute(
            select(StorageLocation).where(StorageLocation.code == code)
        ).scalar_one_or_none()

    def occupancy(self, code: str, exclude: UUID | None = None) -> int:
        """Number of entries at ``code``, optionally not counting one entry."""
        query = select(func.count(LocationEntry.id)).where(LocationEntry.location == code)
        if exclude is not None:
            query = query.where(LocationEntry.id != exclude)
        return self.session.execute(query).scalar_one()

    def entries(
        self,
        location: str | None = None,
        product_id: str | None = None,
        batch_number: str | None = None,
    ) -> list[LocationEntryView]:
        query = select(LocationEntry)
        if location is not None:
            query = query.where(LocationEntry.location == location)
        if product_id is not None:
            query = query.where(LocationEntry.product_id == product_id)
        if batch_number is not None:
            query = query.where(LocationEntry.batch_number == batch_number)
        query = query.order_by(LocationEntry.placed_at, LocationEntry.id)
        return [e.to_dto() for e in self.session.execute(query).scalars().all()]

    def trail(self, product_id: str, batch_number: str) -> list[LocationMovement]:
        """Placement, split and relocation rows for a batch, oldest first."""
        return list(
            self.session.execute(
                select(LocationMovement)
                .where(
                    LocationMovement.product_id == product_id,
                    LocationMovement.batch_number == batch_number,
                )
                .order_by(LocationMovement.created_at, LocationMovement.id)
            ).scalars().all()
        )
