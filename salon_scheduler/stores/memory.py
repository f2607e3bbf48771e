"""
In-memory scheduling store.

Backs the test fixtures and local demos. Check-and-insert in
``add_booking`` runs without an await in between, so two coroutines racing
for the same slot cannot both win.
"""

import logging
from datetime import datetime
from typing import Collection, Iterable, Optional

from salon_scheduler.errors import ConflictError
from salon_scheduler.schemas.booking_schema import ACTIVE_STATUSES, Booking, BookingStatus
from salon_scheduler.schemas.scheduling_schema import OperatingHours, ServiceOffering

logger = logging.getLogger(__name__)


class InMemoryStore:
    """Dict-backed implementation of every store capability."""

    def __init__(self) -> None:
        self._hours: dict[tuple[str, int], OperatingHours] = {}
        self._offerings: dict[tuple[str, str], ServiceOffering] = {}
        self._bookings: dict[str, Booking] = {}

    # ------------------------------------------------------------------ #
    # Configuration owned by other parts of the application
    # ------------------------------------------------------------------ #

    async def put_operating_hours(self, hours: OperatingHours) -> None:
        self._hours[(hours.resource_id, hours.day_of_week)] = hours

    async def put_service_offering(self, offering: ServiceOffering) -> None:
        self._offerings[(offering.resource_id, offering.service_id)] = offering

    async def get_operating_hours(
        self, resource_id: str, day_of_week: int
    ) -> Optional[OperatingHours]:
        return self._hours.get((resource_id, day_of_week))

    async def get_service_offering(
        self, resource_id: str, service_id: str
    ) -> Optional[ServiceOffering]:
        return self._offerings.get((resource_id, service_id))

    # ------------------------------------------------------------------ #
    # Bookings
    # ------------------------------------------------------------------ #

    async def list_bookings(
        self,
        resource_id: str,
        service_id: str,
        start: datetime,
        end: datetime,
        statuses: Collection[BookingStatus],
    ) -> list[Booking]:
        matches = [
            b.model_copy()
            for b in self._bookings.values()
            if b.resource_id == resource_id
            and b.service_id == service_id
            and start <= b.start_datetime < end
            and b.status in statuses
        ]
        return sorted(matches, key=lambda b: b.start_datetime)

    async def find_booking_at(
        self,
        resource_id: str,
        service_id: str,
        start: datetime,
        statuses: Collection[BookingStatus],
    ) -> Optional[Booking]:
        return self._find_at(resource_id, service_id, start, statuses)

    def _find_at(
        self,
        resource_id: str,
        service_id: str,
        start: datetime,
        statuses: Collection[BookingStatus],
    ) -> Optional[Booking]:
        for b in self._bookings.values():
            if (
                b.resource_id == resource_id
                and b.service_id == service_id
                and b.start_datetime == start
                and b.status in statuses
            ):
                return b.model_copy()
        return None

    async def add_booking(self, booking: Booking) -> Booking:
        if booking.status in ACTIVE_STATUSES and self._find_at(
            booking.resource_id, booking.service_id, booking.start_datetime, ACTIVE_STATUSES
        ):
            raise ConflictError("This time slot is already booked")
        self._bookings[booking.id] = booking.model_copy()
        logger.debug("Stored booking %s at %s", booking.id, booking.start_datetime)
        return booking

    async def get_booking(self, booking_id: str) -> Optional[Booking]:
        booking = self._bookings.get(booking_id)
        return booking.model_copy() if booking else None

    async def get_bookings(self, booking_ids: Iterable[str]) -> list[Booking]:
        return [self._bookings[i].model_copy() for i in booking_ids if i in self._bookings]

    async def update_status(
        self, booking_ids: Iterable[str], status: BookingStatus, updated_at: datetime
    ) -> int:
        targets = [self._bookings[i] for i in booking_ids if i in self._bookings]
        if status in ACTIVE_STATUSES:
            target_ids = {b.id for b in targets}
            for booking in targets:
                holder = self._find_at(
                    booking.resource_id, booking.service_id, booking.start_datetime, ACTIVE_STATUSES
                )
                if holder is not None and holder.id not in target_ids:
                    raise ConflictError("This time slot is already booked")
        count = 0
        for booking in targets:
            self._bookings[booking.id] = booking.model_copy(
                update={"status": status, "updated_at": updated_at}
            )
            count += 1
        return count

    async def delete_booking(self, booking_id: str) -> bool:
        return self._bookings.pop(booking_id, None) is not None

    def reset(self) -> None:
        """Clear all bookings. Used by test fixtures for isolation."""
        self._bookings.clear()
