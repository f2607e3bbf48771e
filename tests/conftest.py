"""Shared test fixtures and helpers."""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

import pytest
import pytest_asyncio

from salon_scheduler.config import SchedulingPolicy
from salon_scheduler.scheduling.availability import AvailabilityCalculator
from salon_scheduler.scheduling.ledger import BookingLedger
from salon_scheduler.schemas.booking_schema import (
    Booking,
    BookingStatus,
    CustomerInfo,
    PaymentMethod,
)
from salon_scheduler.schemas.scheduling_schema import OperatingHours, ServiceOffering
from salon_scheduler.stores.memory import InMemoryStore

RESOURCE = "salon-1"
SERVICE = "haircut"

# 2025-03-17 is a Monday (weekday 1 with Sunday = 0).
MONDAY = date(2025, 3, 17)
TUESDAY = date(2025, 3, 18)
SUNDAY = date(2025, 3, 16)


class FixedClock:
    """Callable clock returning a settable naive local datetime."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingNotifier:
    def __init__(self) -> None:
        self.events = []

    async def booking_created(self, event) -> None:
        self.events.append(event)


@pytest_asyncio.fixture
async def store():
    s = InMemoryStore()
    await s.put_service_offering(
        ServiceOffering(
            resource_id=RESOURCE,
            service_id=SERVICE,
            duration_minutes=30,
            price=Decimal("35.00"),
        )
    )
    # Open Monday 09:00-12:00; every other day falls back to the policy window.
    await s.put_operating_hours(
        OperatingHours(resource_id=RESOURCE, day_of_week=1, start_time="09:00", end_time="12:00")
    )
    return s


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 3, 1, 8, 0))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def calculator(store, clock):
    return AvailabilityCalculator(
        store, store, store, policy=SchedulingPolicy.salon_hours(), clock=clock
    )


@pytest_asyncio.fixture
async def ledger(store, clock, notifier):
    ledger = BookingLedger(
        store, store, store,
        policy=SchedulingPolicy.salon_hours(), notifier=notifier, clock=clock,
    )
    yield ledger
    await ledger.drain_notifications()


def make_customer(
    name: str = "Aino Virtanen",
    phone: str = "040 123 4567",
    email: Optional[str] = "aino@example.com",
    user_id: Optional[str] = None,
) -> CustomerInfo:
    """Helper to create CustomerInfo with sensible defaults."""
    return CustomerInfo(
        customer_name=name,
        customer_phone=phone,
        customer_email=email,
        customer_user_id=user_id,
    )


def make_booking(
    start: datetime,
    status: BookingStatus = BookingStatus.CONFIRMED,
    resource_id: str = RESOURCE,
    service_id: str = SERVICE,
    customer_user_id: Optional[str] = None,
) -> Booking:
    """Helper to build a stored Booking directly, bypassing ledger checks."""
    return Booking(
        id=str(uuid.uuid4()),
        resource_id=resource_id,
        service_id=service_id,
        start_datetime=start,
        status=status,
        total_amount=Decimal("35.00"),
        customer_name="Existing Customer",
        customer_phone="0401112222",
        customer_user_id=customer_user_id,
        payment_method=PaymentMethod.ONLINE,
        created_at=datetime(2025, 3, 1, 8, 0),
        updated_at=datetime(2025, 3, 1, 8, 0),
    )


def at(day: date, hhmm: str) -> datetime:
    """Naive datetime for ``HH:MM`` on ``day``."""
    hour, minute = (int(p) for p in hhmm.split(":"))
    return datetime(day.year, day.month, day.day, hour, minute)
