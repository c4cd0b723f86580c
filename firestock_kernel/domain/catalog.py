"""
Checkable catalog -- read-only view of what should be on an apparatus.

Apparatus, compartment and manifest master data are owned elsewhere.  The
check core only needs the compartment/item layout at the moment a check
starts (to size ``total_items``) and when listing items with their status.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol, runtime_checkable
from uuid import UUID

from firestock_kernel.domain.dtos import ApparatusDetails


@runtime_checkable
class CatalogReader(Protocol):
    """Source of apparatus layouts."""

    def get_apparatus_details(self, apparatus_id: UUID) -> ApparatusDetails | None:
        """Return the apparatus with its compartments and items, or None."""
        ...

    def list_apparatus_for_station(self, station_id: UUID) -> list[ApparatusDetails]:
        """Apparatus assigned to the station, ordered by unit number."""
        ...


class StaticCatalogReader:
    """In-memory CatalogReader backed by a dict; used by tests and tooling."""

    def __init__(self, apparatus: Iterable[ApparatusDetails] = ()):
        self._apparatus: dict[UUID, ApparatusDetails] = {a.id: a for a in apparatus}

    def register(self, details: ApparatusDetails) -> None:
        self._apparatus[details.id] = details

    def get_apparatus_details(self, apparatus_id: UUID) -> ApparatusDetails | None:
        return self._apparatus.get(apparatus_id)

    def list_apparatus_for_station(self, station_id: UUID) -> list[ApparatusDetails]:
        return sorted(
            (a for a in self._apparatus.values() if a.station_id == station_id),
            key=lambda a: a.unit_number,
        )
