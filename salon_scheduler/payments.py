"""
Payment webhook events -> booking status updates.

Signature verification happens in the webhook endpoint before anything
reaches this module. Here we only map an already-trusted event to the
batch status change it implies. Booking ids travel in the payment's
metadata as a comma-separated ``bookingIds`` string.
"""

import logging
from typing import Any, Optional

from pydantic import BaseModel, Field

from salon_scheduler.errors import ValidationError
from salon_scheduler.schemas.booking_schema import BookingStatus, StatusUpdateRequest

logger = logging.getLogger(__name__)

EVENT_STATUS: dict[str, BookingStatus] = {
    "payment_intent.succeeded": BookingStatus.CONFIRMED,
    "payment_intent.payment_failed": BookingStatus.FAILED,
    "payment_intent.canceled": BookingStatus.CANCELLED,
    "charge.refunded": BookingStatus.CANCELLED,
    "payment.cancel": BookingStatus.CANCELLED,
}


class PaymentEvent(BaseModel):
    """Verified webhook event from a payment provider."""

    provider: str = "stripe"
    event_type: str
    payment_id: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


def parse_booking_ids(raw: Any) -> list[str]:
    """Split a ``bookingIds`` metadata value into ids, dropping blanks."""
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        parts = [str(p) for p in raw]
    else:
        parts = str(raw).split(",")
    return [p.strip() for p in parts if p.strip()]


def status_update_for(event: PaymentEvent) -> Optional[StatusUpdateRequest]:
    """
    Map a payment event to the status update it triggers.

    Returns None for event types that do not affect bookings.

    Raises:
        ValidationError: If a handled event carries no booking ids.
    """
    new_status = EVENT_STATUS.get(event.event_type)
    if new_status is None:
        logger.info("Unhandled %s event type: %s", event.provider, event.event_type)
        return None

    booking_ids = parse_booking_ids(event.metadata.get("bookingIds"))
    if not booking_ids:
        raise ValidationError(
            f"No booking IDs found in {event.provider} event {event.payment_id or event.event_type}"
        )
    logger.info(
        "%s %s for %s -> %d booking(s) to '%s'",
        event.provider, event.event_type, event.payment_id, len(booking_ids), new_status.value,
    )
    return StatusUpdateRequest(booking_ids=booking_ids, new_status=new_status)
