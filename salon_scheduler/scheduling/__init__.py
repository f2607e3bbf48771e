from salon_scheduler.scheduling.availability import AvailabilityCalculator, DayWindow
from salon_scheduler.scheduling.ledger import BookingLedger
from salon_scheduler.scheduling.status_machine import (
    BookingStatusMachine,
    StatusTrigger,
)

__all__ = [
    "AvailabilityCalculator",
    "DayWindow",
    "BookingLedger",
    "BookingStatusMachine",
    "StatusTrigger",
]
