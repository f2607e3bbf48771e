"""Tests for booking creation and the status lifecycle."""

import asyncio
from datetime import datetime
from decimal import Decimal

import pytest

from salon_scheduler.config import SchedulingPolicy
from salon_scheduler.errors import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    UnavailableError,
    ValidationError,
)
from salon_scheduler.scheduling.ledger import BookingLedger, parse_start
from salon_scheduler.schemas.booking_schema import Actor, BookingStatus, PaymentMethod
from salon_scheduler.schemas.scheduling_schema import OperatingHours, ServiceOffering
from salon_scheduler.stores.memory import InMemoryStore

from tests.conftest import MONDAY, RESOURCE, SERVICE, SUNDAY, at, make_booking, make_customer

OWNER = Actor(user_id="owner-1", owned_resource_ids={RESOURCE})
STAFF = Actor(user_id="staff-1", is_staff=True)
STRANGER = Actor(user_id="someone-else")
CUSTOMER = Actor(user_id="customer-1")


class BrokenNotifier:
    async def booking_created(self, event) -> None:
        raise RuntimeError("smtp down")


class HangingNotifier:
    async def booking_created(self, event) -> None:
        await asyncio.Event().wait()


class SlowStore(InMemoryStore):
    async def get_service_offering(self, resource_id, service_id):
        await asyncio.sleep(1)
        return await super().get_service_offering(resource_id, service_id)


class TestParseStart:
    def test_naive_iso_string(self):
        assert parse_start("2025-03-17T10:00") == datetime(2025, 3, 17, 10, 0)

    def test_datetime_passthrough(self):
        assert parse_start(datetime(2025, 3, 17, 10, 30)) == datetime(2025, 3, 17, 10, 30)

    def test_rejects_seconds(self):
        with pytest.raises(ValidationError, match="whole minute"):
            parse_start("2025-03-17T10:00:30")

    def test_rejects_garbage(self):
        with pytest.raises(ValidationError, match="Invalid booking time"):
            parse_start("next tuesday")


class TestCreateBooking:
    @pytest.mark.asyncio
    async def test_online_booking_starts_pending(self, ledger):
        booking = await ledger.create_booking(RESOURCE, SERVICE, "2025-03-17T10:00", make_customer())
        assert booking.status == BookingStatus.PENDING
        assert booking.payment_method == PaymentMethod.ONLINE
        assert booking.start_datetime == at(MONDAY, "10:00")

    @pytest.mark.asyncio
    async def test_pay_at_venue_starts_confirmed(self, ledger):
        booking = await ledger.create_booking(
            RESOURCE, SERVICE, "2025-03-17T10:00", make_customer(),
            payment_method=PaymentMethod.PAY_AT_VENUE,
        )
        assert booking.status == BookingStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_total_amount_is_offering_price(self, ledger):
        booking = await ledger.create_booking(RESOURCE, SERVICE, "2025-03-17T10:00", make_customer())
        assert booking.total_amount == Decimal("35.00")

    @pytest.mark.asyncio
    async def test_price_is_snapshotted(self, store, ledger):
        booking = await ledger.create_booking(RESOURCE, SERVICE, "2025-03-17T10:00", make_customer())
        await store.put_service_offering(ServiceOffering(
            resource_id=RESOURCE, service_id=SERVICE, duration_minutes=30, price=Decimal("50.00"),
        ))
        stored = await ledger.get_booking(booking.id)
        assert stored.total_amount == Decimal("35.00")

    @pytest.mark.asyncio
    async def test_customer_fields_normalized(self, ledger):
        booking = await ledger.create_booking(
            RESOURCE, SERVICE, "2025-03-17T10:00", make_customer(name="  Aino  "),
        )
        assert booking.customer_name == "Aino"
        assert booking.customer_phone == "0401234567"

    @pytest.mark.asyncio
    async def test_booking_is_stored(self, ledger):
        booking = await ledger.create_booking(RESOURCE, SERVICE, "2025-03-17T10:00", make_customer())
        assert (await ledger.get_booking(booking.id)).id == booking.id

    @pytest.mark.asyncio
    async def test_notifier_receives_event(self, ledger, notifier):
        booking = await ledger.create_booking(RESOURCE, SERVICE, "2025-03-17T10:00", make_customer())
        await ledger.drain_notifications()
        assert len(notifier.events) == 1
        assert notifier.events[0].booking_id == booking.id
        assert notifier.events[0].status == "pending"

    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_undo_booking(self, store, clock):
        ledger = BookingLedger(
            store, store, store,
            policy=SchedulingPolicy.salon_hours(), notifier=BrokenNotifier(), clock=clock,
        )
        booking = await ledger.create_booking(RESOURCE, SERVICE, "2025-03-17T10:00", make_customer())
        await ledger.drain_notifications()
        assert (await ledger.get_booking(booking.id)).status == BookingStatus.PENDING

    @pytest.mark.asyncio
    async def test_hanging_notifier_does_not_block_booking(self, store, clock):
        ledger = BookingLedger(
            store, store, store,
            policy=SchedulingPolicy.salon_hours(), notifier=HangingNotifier(), clock=clock,
        )
        booking = await asyncio.wait_for(
            ledger.create_booking(
                RESOURCE, SERVICE, "2025-03-17T10:00", make_customer(), timeout=5,
            ),
            1,
        )
        assert (await ledger.get_booking(booking.id)).status == BookingStatus.PENDING
        await ledger.drain_notifications(timeout=0.01)

    @pytest.mark.asyncio
    async def test_hanging_notifier_is_bounded_by_timeout(self, store, clock):
        ledger = BookingLedger(
            store, store, store,
            policy=SchedulingPolicy.salon_hours(), notifier=HangingNotifier(), clock=clock,
            timeout=0.05,
        )
        await ledger.create_booking(RESOURCE, SERVICE, "2025-03-17T10:00", make_customer())
        # Finishes on its own once the per-call deadline cancels the notifier.
        await asyncio.wait_for(ledger.drain_notifications(), 1)


class TestCreateBookingValidation:
    @pytest.mark.asyncio
    async def test_missing_name(self, ledger):
        with pytest.raises(ValidationError, match="Missing required fields: customer_name"):
            await ledger.create_booking(
                RESOURCE, SERVICE, "2025-03-17T10:00", make_customer(name=" "),
            )

    @pytest.mark.asyncio
    async def test_missing_name_and_phone(self, ledger):
        with pytest.raises(ValidationError, match="customer_name, customer_phone"):
            await ledger.create_booking(
                RESOURCE, SERVICE, "2025-03-17T10:00", make_customer(name="", phone=""),
            )

    @pytest.mark.asyncio
    async def test_implausible_phone(self, ledger):
        with pytest.raises(ValidationError, match="doesn't look right"):
            await ledger.create_booking(
                RESOURCE, SERVICE, "2025-03-17T10:00", make_customer(phone="12-34"),
            )

    @pytest.mark.asyncio
    async def test_unknown_payment_method(self, ledger):
        with pytest.raises(ValidationError, match="payment method"):
            await ledger.create_booking(
                RESOURCE, SERVICE, "2025-03-17T10:00", make_customer(), payment_method="cash",
            )

    @pytest.mark.asyncio
    async def test_unknown_service(self, ledger):
        with pytest.raises(NotFoundError, match="Service not found"):
            await ledger.create_booking(RESOURCE, "tattoo", "2025-03-17T10:00", make_customer())

    @pytest.mark.asyncio
    async def test_closed_day(self, store, ledger):
        await store.put_operating_hours(OperatingHours(resource_id=RESOURCE, day_of_week=0, is_open=False))
        with pytest.raises(UnavailableError, match="closed"):
            await ledger.create_booking(RESOURCE, SERVICE, at(SUNDAY, "10:00"), make_customer())

    @pytest.mark.asyncio
    @pytest.mark.parametrize("start", ["2025-03-17T08:30", "2025-03-17T12:00", "2025-03-17T13:00"])
    async def test_outside_opening_hours(self, ledger, start):
        with pytest.raises(ValidationError, match="between 09:00 and 12:00"):
            await ledger.create_booking(RESOURCE, SERVICE, start, make_customer())

    @pytest.mark.asyncio
    async def test_off_grid_start(self, ledger):
        with pytest.raises(ValidationError, match="30-minute interval"):
            await ledger.create_booking(RESOURCE, SERVICE, "2025-03-17T10:15", make_customer())

    @pytest.mark.asyncio
    async def test_service_not_offered_that_day(self, store, ledger):
        await store.put_service_offering(ServiceOffering(
            resource_id=RESOURCE, service_id=SERVICE, duration_minutes=30, available_days={2},
        ))
        with pytest.raises(UnavailableError, match="not available on this day"):
            await ledger.create_booking(RESOURCE, SERVICE, "2025-03-17T10:00", make_customer())

    @pytest.mark.asyncio
    async def test_nothing_stored_on_failure(self, store, ledger):
        with pytest.raises(ValidationError):
            await ledger.create_booking(RESOURCE, SERVICE, "2025-03-17T10:15", make_customer())
        bookings = await store.list_bookings(
            RESOURCE, SERVICE, at(MONDAY, "00:00"), at(MONDAY, "23:59"), set(BookingStatus),
        )
        assert bookings == []


class TestCheckOrder:
    @pytest.mark.asyncio
    async def test_customer_checked_before_service(self, ledger):
        with pytest.raises(ValidationError):
            await ledger.create_booking(RESOURCE, "tattoo", "2025-03-17T10:00", make_customer(name=""))

    @pytest.mark.asyncio
    async def test_service_checked_before_hours(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.create_booking(RESOURCE, "tattoo", "2025-03-17T03:00", make_customer())

    @pytest.mark.asyncio
    async def test_closed_checked_before_grid(self, store, ledger):
        await store.put_operating_hours(OperatingHours(resource_id=RESOURCE, day_of_week=0, is_open=False))
        with pytest.raises(UnavailableError):
            await ledger.create_booking(RESOURCE, SERVICE, at(SUNDAY, "10:15"), make_customer())

    @pytest.mark.asyncio
    async def test_grid_checked_before_weekday(self, store, ledger):
        await store.put_service_offering(ServiceOffering(
            resource_id=RESOURCE, service_id=SERVICE, duration_minutes=30, available_days={2},
        ))
        with pytest.raises(ValidationError):
            await ledger.create_booking(RESOURCE, SERVICE, "2025-03-17T10:15", make_customer())

    @pytest.mark.asyncio
    async def test_weekday_checked_before_conflict(self, store, ledger):
        await store.add_booking(make_booking(at(MONDAY, "10:00")))
        await store.put_service_offering(ServiceOffering(
            resource_id=RESOURCE, service_id=SERVICE, duration_minutes=30, available_days={2},
        ))
        with pytest.raises(UnavailableError):
            await ledger.create_booking(RESOURCE, SERVICE, "2025-03-17T10:00", make_customer())


class TestConflicts:
    @pytest.mark.asyncio
    async def test_second_booking_for_slot_conflicts(self, ledger):
        await ledger.create_booking(RESOURCE, SERVICE, "2025-03-17T10:00", make_customer())
        with pytest.raises(ConflictError, match="already booked"):
            await ledger.create_booking(
                RESOURCE, SERVICE, "2025-03-17T10:00", make_customer(name="Other"),
            )

    @pytest.mark.asyncio
    async def test_cancelled_slot_can_be_rebooked(self, store, ledger):
        await store.add_booking(make_booking(at(MONDAY, "10:00"), status=BookingStatus.CANCELLED))
        booking = await ledger.create_booking(RESOURCE, SERVICE, "2025-03-17T10:00", make_customer())
        assert booking.status == BookingStatus.PENDING

    @pytest.mark.asyncio
    async def test_concurrent_requests_one_wins(self, ledger):
        results = await asyncio.gather(
            ledger.create_booking(RESOURCE, SERVICE, "2025-03-17T10:00", make_customer(name="A")),
            ledger.create_booking(RESOURCE, SERVICE, "2025-03-17T10:00", make_customer(name="B")),
            return_exceptions=True,
        )
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(conflicts) == 1
        assert len(results) - len(conflicts) == 1

    @pytest.mark.asyncio
    async def test_booked_slot_disappears_from_availability(self, ledger, calculator):
        await ledger.create_booking(RESOURCE, SERVICE, "2025-03-17T10:00", make_customer())
        result = await calculator.compute_available_slots(RESOURCE, SERVICE, MONDAY)
        assert "10:00" not in [s.time for s in result.slots]


class TestStatusUpdates:
    @pytest.mark.asyncio
    async def test_pending_to_confirmed(self, store, ledger, clock):
        booking = make_booking(at(MONDAY, "10:00"), status=BookingStatus.PENDING)
        await store.add_booking(booking)
        clock.now = datetime(2025, 3, 2, 9, 0)
        result = await ledger.apply_status_update([booking.id], BookingStatus.CONFIRMED)
        assert result.updated == [booking.id]
        stored = await ledger.get_booking(booking.id)
        assert stored.status == BookingStatus.CONFIRMED
        assert stored.updated_at == datetime(2025, 3, 2, 9, 0)

    @pytest.mark.asyncio
    async def test_repeat_update_is_unchanged(self, store, ledger):
        booking = make_booking(at(MONDAY, "10:00"), status=BookingStatus.PENDING)
        await store.add_booking(booking)
        await ledger.apply_status_update([booking.id], "confirmed")
        result = await ledger.apply_status_update([booking.id], "confirmed")
        assert result.updated == []
        assert result.unchanged == [booking.id]

    @pytest.mark.asyncio
    async def test_disallowed_move_is_skipped(self, store, ledger):
        booking = make_booking(at(MONDAY, "10:00"), status=BookingStatus.FAILED)
        await store.add_booking(booking)
        result = await ledger.apply_status_update([booking.id], BookingStatus.CONFIRMED)
        assert result.skipped == [booking.id]
        assert (await ledger.get_booking(booking.id)).status == BookingStatus.FAILED

    @pytest.mark.asyncio
    async def test_confirmed_not_failed_by_late_event(self, store, ledger):
        booking = make_booking(at(MONDAY, "10:00"), status=BookingStatus.CONFIRMED)
        await store.add_booking(booking)
        result = await ledger.apply_status_update([booking.id], BookingStatus.FAILED)
        assert result.skipped == [booking.id]

    @pytest.mark.asyncio
    async def test_mixed_batch(self, store, ledger):
        pending = make_booking(at(MONDAY, "09:00"), status=BookingStatus.PENDING)
        confirmed = make_booking(at(MONDAY, "09:30"), status=BookingStatus.CONFIRMED)
        failed = make_booking(at(MONDAY, "10:00"), status=BookingStatus.FAILED)
        for b in (pending, confirmed, failed):
            await store.add_booking(b)
        result = await ledger.apply_status_update(
            [pending.id, confirmed.id, failed.id, "nope", pending.id], BookingStatus.CONFIRMED,
        )
        assert result.updated == [pending.id]
        assert result.unchanged == [confirmed.id]
        assert result.skipped == [failed.id]
        assert result.missing == ["nope"]

    @pytest.mark.asyncio
    async def test_cancellation_frees_slot(self, store, ledger, calculator):
        booking = make_booking(at(MONDAY, "10:00"), status=BookingStatus.CONFIRMED)
        await store.add_booking(booking)
        await ledger.apply_status_update([booking.id], BookingStatus.CANCELLED)
        result = await calculator.compute_available_slots(RESOURCE, SERVICE, MONDAY)
        assert "10:00" in [s.time for s in result.slots]

    @pytest.mark.asyncio
    async def test_pending_is_not_a_target(self, ledger):
        with pytest.raises(ValidationError):
            await ledger.apply_status_update(["x"], BookingStatus.PENDING)

    @pytest.mark.asyncio
    async def test_unknown_status(self, ledger):
        with pytest.raises(ValidationError, match="Unknown booking status"):
            await ledger.apply_status_update(["x"], "paid")

    @pytest.mark.asyncio
    async def test_empty_batch(self, ledger):
        with pytest.raises(ValidationError, match="No booking IDs"):
            await ledger.apply_status_update(["", ""], BookingStatus.CONFIRMED)


class TestCancelBooking:
    @pytest.mark.asyncio
    async def test_cancel_pending(self, store, ledger):
        booking = make_booking(at(MONDAY, "10:00"), status=BookingStatus.PENDING)
        await store.add_booking(booking)
        cancelled = await ledger.cancel_booking(booking.id)
        assert cancelled.status == BookingStatus.CANCELLED
        assert (await ledger.get_booking(booking.id)).status == BookingStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_twice_is_noop(self, store, ledger):
        booking = make_booking(at(MONDAY, "10:00"))
        await store.add_booking(booking)
        await ledger.cancel_booking(booking.id)
        again = await ledger.cancel_booking(booking.id)
        assert again.status == BookingStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cannot_cancel_failed(self, store, ledger):
        booking = make_booking(at(MONDAY, "10:00"), status=BookingStatus.FAILED)
        await store.add_booking(booking)
        with pytest.raises(InvalidTransitionError):
            await ledger.cancel_booking(booking.id)

    @pytest.mark.asyncio
    async def test_customer_may_cancel_own(self, store, ledger):
        booking = make_booking(at(MONDAY, "10:00"), customer_user_id=CUSTOMER.user_id)
        await store.add_booking(booking)
        cancelled = await ledger.cancel_booking(booking.id, CUSTOMER)
        assert cancelled.status == BookingStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_stranger_may_not_cancel(self, store, ledger):
        booking = make_booking(at(MONDAY, "10:00"), customer_user_id=CUSTOMER.user_id)
        await store.add_booking(booking)
        with pytest.raises(ForbiddenError):
            await ledger.cancel_booking(booking.id, STRANGER)

    @pytest.mark.asyncio
    async def test_unknown_booking(self, ledger):
        with pytest.raises(NotFoundError, match="not found"):
            await ledger.cancel_booking("missing-id")


class TestForceStatus:
    @pytest.mark.asyncio
    async def test_owner_can_revive_failed(self, store, ledger):
        booking = make_booking(at(MONDAY, "10:00"), status=BookingStatus.FAILED)
        await store.add_booking(booking)
        forced = await ledger.force_status(booking.id, BookingStatus.CONFIRMED, OWNER)
        assert forced.status == BookingStatus.CONFIRMED
        assert (await ledger.get_booking(booking.id)).status == BookingStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_staff_can_force(self, store, ledger):
        booking = make_booking(at(MONDAY, "10:00"))
        await store.add_booking(booking)
        forced = await ledger.force_status(booking.id, "pending", STAFF)
        assert forced.status == BookingStatus.PENDING

    @pytest.mark.asyncio
    async def test_customer_cannot_force(self, store, ledger):
        booking = make_booking(at(MONDAY, "10:00"), customer_user_id=CUSTOMER.user_id)
        await store.add_booking(booking)
        with pytest.raises(ForbiddenError):
            await ledger.force_status(booking.id, BookingStatus.CANCELLED, CUSTOMER)

    @pytest.mark.asyncio
    async def test_unknown_status_rejected(self, store, ledger):
        booking = make_booking(at(MONDAY, "10:00"))
        await store.add_booking(booking)
        with pytest.raises(ValidationError):
            await ledger.force_status(booking.id, "refunded", OWNER)

    @pytest.mark.asyncio
    async def test_reactivation_onto_taken_slot_conflicts(self, store, ledger):
        old = make_booking(at(MONDAY, "10:00"), status=BookingStatus.CANCELLED)
        new = make_booking(at(MONDAY, "10:00"), status=BookingStatus.CONFIRMED)
        await store.add_booking(old)
        await store.add_booking(new)
        with pytest.raises(ConflictError):
            await ledger.force_status(old.id, BookingStatus.CONFIRMED, OWNER)
        assert (await ledger.get_booking(old.id)).status == BookingStatus.CANCELLED


class TestDeleteBooking:
    @pytest.mark.asyncio
    async def test_owner_deletes(self, store, ledger):
        booking = make_booking(at(MONDAY, "10:00"))
        await store.add_booking(booking)
        await ledger.delete_booking(booking.id, OWNER)
        with pytest.raises(NotFoundError):
            await ledger.get_booking(booking.id)

    @pytest.mark.asyncio
    async def test_customer_deletes_own(self, store, ledger):
        booking = make_booking(at(MONDAY, "10:00"), customer_user_id=CUSTOMER.user_id)
        await store.add_booking(booking)
        await ledger.delete_booking(booking.id, CUSTOMER)
        assert await store.get_booking(booking.id) is None

    @pytest.mark.asyncio
    async def test_stranger_forbidden(self, store, ledger):
        booking = make_booking(at(MONDAY, "10:00"), customer_user_id=CUSTOMER.user_id)
        await store.add_booking(booking)
        with pytest.raises(ForbiddenError):
            await ledger.delete_booking(booking.id, STRANGER)
        assert await store.get_booking(booking.id) is not None


class TestTimeouts:
    @pytest.mark.asyncio
    async def test_slow_store_times_out(self, clock):
        store = SlowStore()
        ledger = BookingLedger(
            store, store, store, policy=SchedulingPolicy.salon_hours(), clock=clock, timeout=0.01,
        )
        with pytest.raises(asyncio.TimeoutError):
            await ledger.create_booking(RESOURCE, SERVICE, "2025-03-17T10:00", make_customer())

    @pytest.mark.asyncio
    async def test_per_call_timeout_overrides(self, clock):
        store = SlowStore()
        ledger = BookingLedger(store, store, store, policy=SchedulingPolicy.salon_hours(), clock=clock)
        with pytest.raises(asyncio.TimeoutError):
            await ledger.create_booking(
                RESOURCE, SERVICE, "2025-03-17T10:00", make_customer(), timeout=0.01,
            )
