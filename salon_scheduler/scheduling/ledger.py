"""
Booking ledger: validates and records bookings, and drives their status.

Creation runs a fixed sequence of checks, each failing fast with its own
error: offering -> opening bounds -> slot boundary -> weekday -> conflict.
The conflict check is repeated inside the store write (unique rule on
active slots), so a request that loses a race still gets ConflictError
rather than a double booking.

Usage:
    ledger = BookingLedger(store, store, store)
    booking = await ledger.create_booking(
        "salon-1", "haircut", "2025-03-17T10:00",
        CustomerInfo(customer_name="Aino", customer_phone="040 123 4567"),
    )
    await ledger.apply_status_update([booking.id], BookingStatus.CONFIRMED)
"""

import asyncio
import uuid
from datetime import datetime
from typing import Callable, Iterable, Optional, Union

from salon_scheduler.config import SchedulingPolicy, settings
from salon_scheduler.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnavailableError,
    ValidationError,
)
from salon_scheduler.logging_context import get_request_logger
from salon_scheduler.notifications import BookingCreatedEvent, BookingNotifier, LoggingNotifier
from salon_scheduler.scheduling.availability import resolve_day_window
from salon_scheduler.scheduling.status_machine import (
    TRIGGER_FOR_STATUS,
    BookingStatusMachine,
    StatusTrigger,
)
from salon_scheduler.schemas.booking_schema import (
    ACTIVE_STATUSES,
    Actor,
    Booking,
    BookingStatus,
    CustomerInfo,
    PaymentMethod,
    StatusUpdateResult,
)
from salon_scheduler.schemas.scheduling_schema import ServiceOffering
from salon_scheduler.stores.base import BookingStore, HoursReader, OfferingReader
from salon_scheduler.utils import (
    bounded,
    day_of_week,
    format_wall_clock,
    minutes_since_midnight,
    normalize_phone,
)

logger = get_request_logger(__name__)

MIN_PHONE_DIGITS = 7
MAX_PHONE_DIGITS = 15

INITIAL_STATUS: dict[PaymentMethod, BookingStatus] = {
    PaymentMethod.ONLINE: BookingStatus.PENDING,
    PaymentMethod.PAY_AT_VENUE: BookingStatus.CONFIRMED,
}


def parse_start(value: Union[datetime, str]) -> datetime:
    """Parse a booking start into a naive local datetime on a whole minute."""
    if isinstance(value, datetime):
        start = value
    else:
        raw = str(value).strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            start = datetime.fromisoformat(raw)
        except ValueError:
            raise ValidationError(f"Invalid booking time: {value!r}") from None
    if start.tzinfo is not None:
        start = start.astimezone().replace(tzinfo=None)
    if start.second or start.microsecond:
        raise ValidationError("Booking time must start on a whole minute")
    return start


def parse_status(value: Union[BookingStatus, str]) -> BookingStatus:
    try:
        return BookingStatus(value)
    except ValueError:
        valid = [s.value for s in BookingStatus]
        raise ValidationError(f"Unknown booking status {value!r}. Valid: {valid}") from None


class BookingLedger:
    """Owns the no-double-booking rule and the booking status lifecycle."""

    def __init__(
        self,
        hours: HoursReader,
        offerings: OfferingReader,
        bookings: BookingStore,
        policy: Optional[SchedulingPolicy] = None,
        notifier: Optional[BookingNotifier] = None,
        clock: Callable[[], datetime] = datetime.now,
        timeout: Optional[float] = None,
    ) -> None:
        self._hours = hours
        self._offerings = offerings
        self._bookings = bookings
        self.policy = policy or settings.policy
        self._notifier = notifier or LoggingNotifier()
        self._clock = clock
        self._timeout = timeout if timeout is not None else settings.storage.timeout_seconds
        self._notifications: set[asyncio.Task] = set()

    def _limit(self, timeout: Optional[float]) -> Optional[float]:
        return timeout if timeout is not None else self._timeout

    # ------------------------------------------------------------------ #
    # Creation
    # ------------------------------------------------------------------ #

    async def create_booking(
        self,
        resource_id: str,
        service_id: str,
        start_datetime: Union[datetime, str],
        customer: CustomerInfo,
        *,
        payment_method: PaymentMethod = PaymentMethod.ONLINE,
        timeout: Optional[float] = None,
    ) -> Booking:
        """
        Validate a requested slot and record the booking.

        Returns:
            The stored booking: pending for online payment, confirmed when
            paying at the venue.

        Raises:
            ValidationError: Missing customer fields, unparsable time, time
                outside opening hours or off the slot grid.
            NotFoundError: Unknown or unavailable service offering.
            UnavailableError: Closed day or service not offered that weekday.
            ConflictError: The slot already has an active booking.
            InternalError: The store failed to write.
        """
        limit = self._limit(timeout)
        phone = self._validate_customer(customer)
        try:
            method = PaymentMethod(payment_method)
        except ValueError:
            raise ValidationError(f"Unknown payment method {payment_method!r}") from None
        start = parse_start(start_datetime)

        offering = await bounded(
            self._offerings.get_service_offering(resource_id, service_id), limit
        )
        if offering is None or not offering.is_available:
            raise NotFoundError("Service not found or not available")

        await self._check_slot(offering, start, limit)

        existing = await bounded(
            self._bookings.find_booking_at(resource_id, service_id, start, ACTIVE_STATUSES),
            limit,
        )
        if existing is not None:
            logger.info(
                "Slot %s for %s/%s already held by %s",
                start.isoformat(timespec="minutes"), resource_id, service_id, existing.id,
            )
            raise ConflictError("This time slot is already booked")

        now = self._clock()
        booking = Booking(
            id=str(uuid.uuid4()),
            resource_id=resource_id,
            service_id=service_id,
            start_datetime=start,
            status=INITIAL_STATUS[method],
            total_amount=offering.price,
            customer_name=customer.customer_name.strip(),
            customer_phone=phone,
            customer_email=customer.customer_email,
            notes=customer.notes,
            customer_user_id=customer.customer_user_id,
            payment_method=method,
            created_at=now,
            updated_at=now,
        )
        stored = await bounded(self._bookings.add_booking(booking), limit)
        logger.info(
            "Booking created: %s for %s at %s (%s)",
            stored.id, service_id, start.isoformat(timespec="minutes"), stored.status.value,
        )
        self._notify_created(stored, limit)
        return stored

    def _validate_customer(self, customer: CustomerInfo) -> str:
        missing = [
            field_name
            for field_name, value in [
                ("customer_name", customer.customer_name),
                ("customer_phone", customer.customer_phone),
            ]
            if not value or not value.strip()
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        phone = normalize_phone(customer.customer_phone)
        digits = phone.lstrip("+")
        if not MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS:
            raise ValidationError(f"The phone number '{customer.customer_phone}' doesn't look right")
        return phone

    async def _check_slot(
        self, offering: ServiceOffering, start: datetime, limit: Optional[float]
    ) -> None:
        weekday = day_of_week(start.date())
        hours = await bounded(
            self._hours.get_operating_hours(offering.resource_id, weekday), limit
        )
        window = resolve_day_window(self.policy, offering, hours)
        if window.is_closed:
            raise UnavailableError("We are closed on this day")

        minute_of_day = minutes_since_midnight(start)
        if not window.contains(minute_of_day):
            raise ValidationError(
                f"Booking time must be between {window.open_label} and {window.close_label}"
            )
        if not window.is_boundary(minute_of_day):
            raise ValidationError(
                f"Booking time must be on a {window.step_minutes}-minute interval "
                f"from {window.open_label}, got {format_wall_clock(minute_of_day)}"
            )
        if not offering.is_offered_on(weekday):
            raise UnavailableError("Service is not available on this day")

    def _notify_created(self, booking: Booking, limit: Optional[float]) -> None:
        event = BookingCreatedEvent.from_booking(booking)
        task = asyncio.create_task(
            bounded(self._notifier.booking_created(event), limit),
            name=f"notify-{booking.id}",
        )
        self._notifications.add(task)
        task.add_done_callback(self._notification_done)

    def _notification_done(self, task: asyncio.Task) -> None:
        self._notifications.discard(task)
        if task.cancelled():
            logger.warning("Booking notification cancelled: %s", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Booking notification failed: %s", task.get_name(),
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def drain_notifications(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight notifications; cancel those still running after ``timeout``."""
        if not self._notifications:
            return
        _, pending = await asyncio.wait(list(self._notifications), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------ #
    # Status lifecycle
    # ------------------------------------------------------------------ #

    async def apply_status_update(
        self,
        booking_ids: Iterable[str],
        new_status: Union[BookingStatus, str],
        *,
        timeout: Optional[float] = None,
    ) -> StatusUpdateResult:
        """
        Apply a payment-driven status change to a batch of bookings.

        Idempotent: bookings already in ``new_status`` are left alone, and
        bookings the lattice does not allow to move are skipped with a
        warning instead of failing the batch.
        """
        limit = self._limit(timeout)
        target = parse_status(new_status)
        trigger = TRIGGER_FOR_STATUS.get(target)
        if trigger is None:
            raise ValidationError(f"'{target.value}' is not a valid status update target")
        ids = list(dict.fromkeys(i for i in booking_ids if i))
        if not ids:
            raise ValidationError("No booking IDs given")

        found = {b.id: b for b in await bounded(self._bookings.get_bookings(ids), limit)}
        result = StatusUpdateResult(new_status=target)
        for booking_id in ids:
            booking = found.get(booking_id)
            if booking is None:
                result.missing.append(booking_id)
            elif booking.status == target:
                result.unchanged.append(booking_id)
            elif BookingStatusMachine(booking.status).can_transition(trigger):
                result.updated.append(booking_id)
            else:
                logger.warning(
                    "Skipping %s: no transition from '%s' to '%s'",
                    booking_id, booking.status.value, target.value,
                )
                result.skipped.append(booking_id)

        if result.updated:
            await bounded(
                self._bookings.update_status(result.updated, target, self._clock()), limit
            )
        logger.info(
            "Status update to '%s': %d updated, %d unchanged, %d skipped, %d missing",
            target.value, len(result.updated), len(result.unchanged),
            len(result.skipped), len(result.missing),
        )
        return result

    async def cancel_booking(
        self,
        booking_id: str,
        actor: Optional[Actor] = None,
        *,
        timeout: Optional[float] = None,
    ) -> Booking:
        """Cancel an active booking; cancelling twice is a no-op.

        Raises:
            InvalidTransitionError: If the booking already failed.
        """
        limit = self._limit(timeout)
        booking = await self._require_booking(booking_id, limit)
        if actor is not None:
            self._authorize(booking, actor, allow_customer=True)
        if booking.status == BookingStatus.CANCELLED:
            return booking
        machine = BookingStatusMachine(booking.status)
        machine.transition(StatusTrigger.CANCELLED)
        return await self._store_status(booking, machine.current_status, limit)

    async def force_status(
        self,
        booking_id: str,
        new_status: Union[BookingStatus, str],
        actor: Actor,
        *,
        timeout: Optional[float] = None,
    ) -> Booking:
        """Operator override: set any known status, bypassing the lattice."""
        limit = self._limit(timeout)
        target = parse_status(new_status)
        booking = await self._require_booking(booking_id, limit)
        self._authorize(booking, actor, allow_customer=False)
        machine = BookingStatusMachine(booking.status)
        machine.force(target)
        logger.warning(
            "Status of %s forced by %s: %s -> %s",
            booking_id, actor.user_id, booking.status.value, target.value,
        )
        return await self._store_status(booking, target, limit)

    async def _store_status(
        self, booking: Booking, status: BookingStatus, limit: Optional[float]
    ) -> Booking:
        now = self._clock()
        await bounded(self._bookings.update_status([booking.id], status, now), limit)
        return booking.model_copy(update={"status": status, "updated_at": now})

    # ------------------------------------------------------------------ #
    # Lookup and deletion
    # ------------------------------------------------------------------ #

    async def get_booking(self, booking_id: str, *, timeout: Optional[float] = None) -> Booking:
        return await self._require_booking(booking_id, self._limit(timeout))

    async def delete_booking(
        self, booking_id: str, actor: Actor, *, timeout: Optional[float] = None
    ) -> None:
        """Hard-delete a booking. Allowed for the resource owner, staff, or the customer."""
        limit = self._limit(timeout)
        booking = await self._require_booking(booking_id, limit)
        self._authorize(booking, actor, allow_customer=True)
        await bounded(self._bookings.delete_booking(booking_id), limit)
        logger.info(
            "Booking deleted: %s by %s (was %s)", booking_id, actor.user_id, booking.status.value
        )

    async def _require_booking(self, booking_id: str, limit: Optional[float]) -> Booking:
        booking = await bounded(self._bookings.get_booking(booking_id), limit)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")
        return booking

    @staticmethod
    def _authorize(booking: Booking, actor: Actor, allow_customer: bool) -> None:
        if actor.can_manage(booking.resource_id):
            return
        if allow_customer and booking.customer_user_id and booking.customer_user_id == actor.user_id:
            return
        raise ForbiddenError(f"User {actor.user_id} may not modify booking {booking.id}")
