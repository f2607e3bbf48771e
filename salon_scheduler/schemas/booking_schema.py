"""Booking, slot and status-update data models."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class BookingStatus(str, Enum):
    """Lifecycle status of a booking."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    FAILED = "failed"


ACTIVE_STATUSES: frozenset[BookingStatus] = frozenset(
    {BookingStatus.PENDING, BookingStatus.CONFIRMED}
)


class PaymentMethod(str, Enum):
    """How the customer pays; decides the initial booking status."""

    ONLINE = "online"
    PAY_AT_VENUE = "pay_at_venue"


class CustomerInfo(BaseModel):
    """Customer details captured with a booking."""

    customer_name: str
    customer_phone: str
    customer_email: Optional[str] = None
    notes: Optional[str] = None
    customer_user_id: Optional[str] = None


class Booking(BaseModel):
    """Booking record as stored."""

    id: str
    resource_id: str
    service_id: str
    start_datetime: datetime
    status: BookingStatus
    total_amount: Decimal
    customer_name: str
    customer_phone: str
    customer_email: Optional[str] = None
    notes: Optional[str] = None
    customer_user_id: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.ONLINE
    created_at: datetime
    updated_at: datetime

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class BookingRequest(BaseModel):
    """Inbound booking submission."""

    resource_id: str
    service_id: str
    start_datetime: str
    customer_name: str = ""
    customer_phone: str = ""
    customer_email: Optional[str] = None
    notes: Optional[str] = None
    customer_user_id: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.ONLINE


class SlotQuery(BaseModel):
    """Inbound availability query for one resource, service and day."""

    resource_id: str
    service_id: str
    date: str
    exclude_past: bool = False


class Slot(BaseModel):
    """Single bookable start time."""

    time: str
    start_datetime: datetime


class AvailabilityResult(BaseModel):
    """Free slots for one day, or an explicit reason why there are none."""

    resource_id: str
    service_id: str
    date: date
    slots: list[Slot] = Field(default_factory=list)
    is_closed: bool = False
    reason: Optional[str] = None
    duration_minutes: int = 0
    price: Optional[Decimal] = None


class StatusUpdateRequest(BaseModel):
    """Batch status change pushed by the payment collaborator."""

    booking_ids: list[str] = Field(min_length=1)
    new_status: BookingStatus


class StatusUpdateResult(BaseModel):
    """Per-booking outcome of a batch status change."""

    new_status: BookingStatus
    updated: list[str] = Field(default_factory=list)
    unchanged: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    missing: list[str] = Field(default_factory=list)


@dataclass
class Actor:
    """
    The authenticated user performing a privileged booking operation.

    Authentication happens upstream; the core only checks ownership.
    """

    user_id: str
    owned_resource_ids: set[str] = field(default_factory=set)
    is_staff: bool = False

    def can_manage(self, resource_id: str) -> bool:
        return self.is_staff or resource_id in self.owned_resource_ids
