"""
Persistence capabilities consumed by the scheduling core.

Operating hours and service offerings are owned elsewhere and only read
here; bookings are read and written. Implementations must make
``add_booking`` reject a second active booking at the same
(resource, service, start) with ConflictError, and report any other
storage failure as InternalError.
"""

from datetime import datetime
from typing import Collection, Iterable, Optional, Protocol

from salon_scheduler.schemas.booking_schema import Booking, BookingStatus
from salon_scheduler.schemas.scheduling_schema import OperatingHours, ServiceOffering


class HoursReader(Protocol):
    async def get_operating_hours(
        self, resource_id: str, day_of_week: int
    ) -> Optional[OperatingHours]: ...


class OfferingReader(Protocol):
    async def get_service_offering(
        self, resource_id: str, service_id: str
    ) -> Optional[ServiceOffering]: ...


class BookingStore(Protocol):
    async def list_bookings(
        self,
        resource_id: str,
        service_id: str,
        start: datetime,
        end: datetime,
        statuses: Collection[BookingStatus],
    ) -> list[Booking]: ...

    async def find_booking_at(
        self,
        resource_id: str,
        service_id: str,
        start: datetime,
        statuses: Collection[BookingStatus],
    ) -> Optional[Booking]: ...

    async def add_booking(self, booking: Booking) -> Booking: ...

    async def get_booking(self, booking_id: str) -> Optional[Booking]: ...

    async def get_bookings(self, booking_ids: Iterable[str]) -> list[Booking]: ...

    async def update_status(
        self, booking_ids: Iterable[str], status: BookingStatus, updated_at: datetime
    ) -> int: ...

    async def delete_booking(self, booking_id: str) -> bool: ...


class SchedulingStore(HoursReader, OfferingReader, BookingStore, Protocol):
    """All capabilities in one object, as both bundled stores provide."""
