"""Operating-hours and service-offering records read by the scheduling core."""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from salon_scheduler.utils import parse_wall_clock


class OperatingHours(BaseModel):
    """Open/close configuration for one resource on one weekday (0 = Sunday)."""

    resource_id: str
    day_of_week: int = Field(ge=0, le=6)
    is_open: bool = True
    start_time: str = "09:00"
    end_time: str = "17:00"
    # Stored for the owner's dashboard; stepping uses the service duration.
    slot_duration_minutes: int = 30
    break_time_minutes: int = 15
    max_bookings_per_slot: int = 1

    @field_validator("start_time", "end_time")
    @classmethod
    def _check_wall_clock(cls, value: str) -> str:
        parse_wall_clock(value)
        return value.strip()

    @property
    def open_minutes(self) -> int:
        return parse_wall_clock(self.start_time)

    @property
    def close_minutes(self) -> int:
        return parse_wall_clock(self.end_time)


class ServiceOffering(BaseModel):
    """Pricing, duration and availability of one service at one resource."""

    resource_id: str
    service_id: str
    duration_minutes: Optional[int] = None
    price: Decimal = Decimal("0")
    is_available: bool = True
    # None means bookable on any weekday; an empty set means never.
    available_days: Optional[frozenset[int]] = None

    def is_offered_on(self, weekday: int) -> bool:
        return self.available_days is None or weekday in self.available_days
