"""
Request-level facade over the availability calculator and booking ledger.

Accepts the inbound records as pydantic models or plain dicts (as decoded
from a JSON body), turns malformed input into ValidationError, and tags
every request with a correlation id for the logs.
"""

from datetime import datetime
from typing import Any, Callable, Optional, TypeVar, Union

import pydantic

from salon_scheduler.config import SchedulingPolicy
from salon_scheduler.errors import HTTP_STATUS_BY_CODE, SchedulingError, ValidationError
from salon_scheduler.logging_context import set_request_id
from salon_scheduler.notifications import BookingNotifier
from salon_scheduler.payments import PaymentEvent, status_update_for
from salon_scheduler.scheduling.availability import AvailabilityCalculator
from salon_scheduler.scheduling.ledger import BookingLedger
from salon_scheduler.schemas.booking_schema import (
    AvailabilityResult,
    Booking,
    BookingRequest,
    CustomerInfo,
    SlotQuery,
    StatusUpdateRequest,
    StatusUpdateResult,
)
from salon_scheduler.stores.base import SchedulingStore

M = TypeVar("M", bound=pydantic.BaseModel)


def coerce_record(model: type[M], data: Union[M, dict[str, Any]]) -> M:
    """Validate a model or plain dict, raising ValidationError on bad input."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
        raise ValidationError(f"Invalid {model.__name__}: {', '.join(fields)}") from exc


def error_payload(exc: SchedulingError) -> dict[str, Any]:
    """Transport-neutral error body with the matching HTTP status."""
    return {
        "error": exc.code,
        "message": str(exc),
        "status": HTTP_STATUS_BY_CODE.get(exc.code, 500),
    }


class BookingService:
    """Entry points for slot queries, booking submission and status updates."""

    def __init__(self, calculator: AvailabilityCalculator, ledger: BookingLedger) -> None:
        self.calculator = calculator
        self.ledger = ledger

    @classmethod
    def with_store(
        cls,
        store: SchedulingStore,
        policy: Optional[SchedulingPolicy] = None,
        notifier: Optional[BookingNotifier] = None,
        clock: Callable[[], datetime] = datetime.now,
        timeout: Optional[float] = None,
    ) -> "BookingService":
        """Wire both components to one store implementing every capability."""
        return cls(
            AvailabilityCalculator(store, store, store, policy=policy, clock=clock, timeout=timeout),
            BookingLedger(
                store, store, store,
                policy=policy, notifier=notifier, clock=clock, timeout=timeout,
            ),
        )

    async def get_available_slots(
        self, query: Union[SlotQuery, dict[str, Any]]
    ) -> AvailabilityResult:
        set_request_id()
        q = coerce_record(SlotQuery, query)
        return await self.calculator.compute_available_slots(
            q.resource_id, q.service_id, q.date, exclude_past=q.exclude_past
        )

    async def submit_booking(self, request: Union[BookingRequest, dict[str, Any]]) -> Booking:
        set_request_id()
        r = coerce_record(BookingRequest, request)
        customer = CustomerInfo(
            customer_name=r.customer_name,
            customer_phone=r.customer_phone,
            customer_email=r.customer_email,
            notes=r.notes,
            customer_user_id=r.customer_user_id,
        )
        return await self.ledger.create_booking(
            r.resource_id, r.service_id, r.start_datetime, customer,
            payment_method=r.payment_method,
        )

    async def apply_status_update(
        self, request: Union[StatusUpdateRequest, dict[str, Any]]
    ) -> StatusUpdateResult:
        set_request_id()
        r = coerce_record(StatusUpdateRequest, request)
        return await self.ledger.apply_status_update(r.booking_ids, r.new_status)

    async def handle_payment_event(
        self, event: Union[PaymentEvent, dict[str, Any]]
    ) -> Optional[StatusUpdateResult]:
        """Apply the status change a verified payment event implies, if any."""
        set_request_id()
        update = status_update_for(coerce_record(PaymentEvent, event))
        if update is None:
            return None
        return await self.ledger.apply_status_update(update.booking_ids, update.new_status)
