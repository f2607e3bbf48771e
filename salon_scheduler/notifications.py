"""
Booking notification hook.

In production, this would hand the event to an e-mail or SMS sender. The
ledger runs the notifier as a background task after the booking is
committed; failures and timeouts are logged and never reach the caller.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Protocol

from salon_scheduler.schemas.booking_schema import Booking

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingCreatedEvent:
    """Details the notification collaborator needs to tell the customer."""

    booking_id: str
    resource_id: str
    service_id: str
    start_datetime: datetime
    status: str
    total_amount: Decimal
    customer_name: str
    customer_phone: str
    customer_email: Optional[str] = None

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingCreatedEvent":
        return cls(
            booking_id=booking.id,
            resource_id=booking.resource_id,
            service_id=booking.service_id,
            start_datetime=booking.start_datetime,
            status=booking.status.value,
            total_amount=booking.total_amount,
            customer_name=booking.customer_name,
            customer_phone=booking.customer_phone,
            customer_email=booking.customer_email,
        )


class BookingNotifier(Protocol):
    async def booking_created(self, event: BookingCreatedEvent) -> None: ...


class LoggingNotifier:
    """Default notifier: records the event in the application log."""

    async def booking_created(self, event: BookingCreatedEvent) -> None:
        logger.info(
            "Notify %s: booking %s for %s at %s (%s)",
            event.customer_email or event.customer_phone,
            event.booking_id,
            event.service_id,
            event.start_datetime.isoformat(timespec="minutes"),
            event.status,
        )
