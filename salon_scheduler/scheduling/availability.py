"""
Slot availability for one resource + service on a given day.

Candidate start times are laid out from the day's opening time in steps of
the service's own duration and kept while they start strictly before
closing time. Whether the last slot plus its duration still fits before
close is not checked. Occupancy is an exact (hour, minute) match against
active bookings, never an interval overlap, because every booking starts on
a slot boundary.

Usage:
    calculator = AvailabilityCalculator(store, store, store)
    result = await calculator.compute_available_slots("salon-1", "haircut", "2025-03-17")
    [slot.time for slot in result.slots]  # ['09:00', '09:30', ...]
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Optional, Union

from salon_scheduler.config import SchedulingPolicy, settings
from salon_scheduler.errors import NotFoundError, ValidationError
from salon_scheduler.logging_context import get_request_logger
from salon_scheduler.schemas.booking_schema import ACTIVE_STATUSES, AvailabilityResult, Slot
from salon_scheduler.schemas.scheduling_schema import OperatingHours, ServiceOffering
from salon_scheduler.stores.base import BookingStore, HoursReader, OfferingReader
from salon_scheduler.utils import (
    bounded,
    day_bounds,
    day_of_week,
    format_wall_clock,
    parse_wall_clock,
)

logger = get_request_logger(__name__)

CLOSED_REASON = "We are closed on this day"
NOT_OFFERED_REASON = "Service is not available on this day"
DEFAULT_HORIZON_DAYS = 14

DateLike = Union[date, str]


@dataclass(frozen=True)
class DayWindow:
    """Resolved opening window and slot step for one weekday."""

    open_minutes: int
    close_minutes: int
    step_minutes: int
    is_closed: bool = False
    from_fallback: bool = False

    def __post_init__(self) -> None:
        if self.step_minutes < 1:
            raise ValidationError(f"Slot step must be at least one minute, got {self.step_minutes}")

    def contains(self, minute_of_day: int) -> bool:
        return self.open_minutes <= minute_of_day < self.close_minutes

    def is_boundary(self, minute_of_day: int) -> bool:
        return (minute_of_day - self.open_minutes) % self.step_minutes == 0

    @property
    def open_label(self) -> str:
        return format_wall_clock(self.open_minutes)

    @property
    def close_label(self) -> str:
        return format_wall_clock(self.close_minutes)


def resolve_step(offering: ServiceOffering, policy: SchedulingPolicy) -> int:
    """Service duration drives stepping; the policy default covers a missing one."""
    if offering.duration_minutes and offering.duration_minutes > 0:
        return offering.duration_minutes
    return policy.default_duration_minutes


def resolve_day_window(
    policy: SchedulingPolicy,
    offering: ServiceOffering,
    hours: Optional[OperatingHours],
) -> DayWindow:
    """Pick the configured hours row when present, otherwise the policy fallback."""
    step = resolve_step(offering, policy)
    if hours is None:
        return DayWindow(
            open_minutes=parse_wall_clock(policy.fallback_open),
            close_minutes=parse_wall_clock(policy.fallback_close),
            step_minutes=step,
            from_fallback=True,
        )
    return DayWindow(
        open_minutes=hours.open_minutes,
        close_minutes=hours.close_minutes,
        step_minutes=step,
        is_closed=not hours.is_open,
    )


def generate_candidates(window: DayWindow) -> list[int]:
    """Start minutes from open, one step apart, while they start before close."""
    if window.is_closed:
        return []
    candidates = []
    current = window.open_minutes
    while current < window.close_minutes:
        candidates.append(current)
        current += window.step_minutes
    return candidates


def parse_day(value: Union[DateLike, datetime]) -> date:
    """Accept a date or a ``YYYY-MM-DD`` string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value).strip(), "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError(f"Invalid date format: {value!r}") from None


class AvailabilityCalculator:
    """Computes bookable slots from hours configuration and existing bookings."""

    def __init__(
        self,
        hours: HoursReader,
        offerings: OfferingReader,
        bookings: BookingStore,
        policy: Optional[SchedulingPolicy] = None,
        clock: Callable[[], datetime] = datetime.now,
        timeout: Optional[float] = None,
    ) -> None:
        self._hours = hours
        self._offerings = offerings
        self._bookings = bookings
        self.policy = policy or settings.policy
        self._clock = clock
        self._timeout = timeout if timeout is not None else settings.storage.timeout_seconds

    async def _load_offering(
        self, resource_id: str, service_id: str, timeout: Optional[float]
    ) -> ServiceOffering:
        offering = await bounded(
            self._offerings.get_service_offering(resource_id, service_id), timeout
        )
        if offering is None or not offering.is_available:
            raise NotFoundError(
                f"Service '{service_id}' not found or not available at '{resource_id}'"
            )
        return offering

    async def compute_available_slots(
        self,
        resource_id: str,
        service_id: str,
        day: DateLike,
        *,
        exclude_past: bool = False,
        timeout: Optional[float] = None,
    ) -> AvailabilityResult:
        """
        Free slots for a resource + service on one day.

        Returns an empty result flagged ``is_closed`` when the hours row
        marks the day closed, and an empty result with a reason when the
        service is not offered on that weekday.

        Raises:
            ValidationError: If ``day`` cannot be parsed.
            NotFoundError: If the offering is unknown or unavailable.
        """
        limit = timeout if timeout is not None else self._timeout
        requested = parse_day(day)
        offering = await self._load_offering(resource_id, service_id, limit)
        return await self._compute_for_day(offering, requested, exclude_past, limit)

    async def _compute_for_day(
        self,
        offering: ServiceOffering,
        requested: date,
        exclude_past: bool,
        timeout: Optional[float],
    ) -> AvailabilityResult:
        weekday = day_of_week(requested)
        hours = await bounded(
            self._hours.get_operating_hours(offering.resource_id, weekday), timeout
        )
        window = resolve_day_window(self.policy, offering, hours)
        result = AvailabilityResult(
            resource_id=offering.resource_id,
            service_id=offering.service_id,
            date=requested,
            duration_minutes=window.step_minutes,
            price=offering.price,
        )

        if window.is_closed:
            result.is_closed = True
            result.reason = CLOSED_REASON
            return result
        if not offering.is_offered_on(weekday):
            result.reason = NOT_OFFERED_REASON
            return result

        day_start, day_end = day_bounds(requested)
        existing = await bounded(
            self._bookings.list_bookings(
                offering.resource_id, offering.service_id, day_start, day_end, ACTIVE_STATUSES
            ),
            timeout,
        )
        occupied = {(b.start_datetime.hour, b.start_datetime.minute) for b in existing}
        now = self._clock() if exclude_past else None

        for minute_of_day in generate_candidates(window):
            if (minute_of_day // 60, minute_of_day % 60) in occupied:
                continue
            start = day_start + timedelta(minutes=minute_of_day)
            if now is not None and not start > now:
                continue
            result.slots.append(Slot(time=format_wall_clock(minute_of_day), start_datetime=start))

        logger.debug(
            "Availability %s/%s on %s: %d free of window %s-%s (step %d)",
            offering.resource_id, offering.service_id, requested.isoformat(),
            len(result.slots), window.open_label, window.close_label, window.step_minutes,
        )
        return result

    async def compute_range(
        self,
        resource_id: str,
        service_id: str,
        start_day: DateLike,
        days: int = 7,
        *,
        exclude_past: bool = False,
        timeout: Optional[float] = None,
    ) -> list[AvailabilityResult]:
        """One availability result per day, starting at ``start_day`` (weekly grid)."""
        if days < 1:
            raise ValidationError(f"days must be >= 1, got {days}")
        limit = timeout if timeout is not None else self._timeout
        first = parse_day(start_day)
        offering = await self._load_offering(resource_id, service_id, limit)
        return [
            await self._compute_for_day(offering, first + timedelta(days=offset), exclude_past, limit)
            for offset in range(days)
        ]

    async def find_next_available(
        self,
        resource_id: str,
        service_id: str,
        from_day: Optional[DateLike] = None,
        *,
        horizon_days: int = DEFAULT_HORIZON_DAYS,
        exclude_past: bool = True,
        timeout: Optional[float] = None,
    ) -> Optional[Slot]:
        """First free slot at or after ``from_day`` (today by default) within the horizon."""
        start_day = parse_day(from_day) if from_day is not None else self._clock().date()
        for result in await self.compute_range(
            resource_id, service_id, start_day, horizon_days,
            exclude_past=exclude_past, timeout=timeout,
        ):
            if result.slots:
                return result.slots[0]
        return None
