"""
Finite state machine for the booking status lifecycle.

Automatic transitions driven by payment events follow an explicit
lattice: a booking starts pending (paid online) or confirmed (paid at the
venue), moves to confirmed or failed when the payment settles, and can be
cancelled while still active. Operators may bypass the lattice through
``force``, which is recorded in the history like any other move.

Usage:
    sm = BookingStatusMachine(BookingStatus.PENDING)
    sm.transition(StatusTrigger.PAYMENT_SUCCEEDED)
    assert sm.current_status == BookingStatus.CONFIRMED
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from salon_scheduler.errors import InvalidTransitionError
from salon_scheduler.schemas.booking_schema import BookingStatus

logger = logging.getLogger(__name__)


class StatusTrigger(str, Enum):
    """External events that move a booking between statuses."""
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    CANCELLED = "cancelled"


# Target status of a batch update -> the event that produces it.
TRIGGER_FOR_STATUS: dict[BookingStatus, StatusTrigger] = {
    BookingStatus.CONFIRMED: StatusTrigger.PAYMENT_SUCCEEDED,
    BookingStatus.FAILED: StatusTrigger.PAYMENT_FAILED,
    BookingStatus.CANCELLED: StatusTrigger.CANCELLED,
}


@dataclass
class Transition:
    """A single valid status transition."""
    from_status: BookingStatus
    to_status: BookingStatus
    trigger: StatusTrigger


@dataclass
class StatusEntry:
    """Recorded history entry for a status change."""
    status: BookingStatus
    entered_at: datetime
    trigger: Optional[StatusTrigger] = None
    forced: bool = False


class BookingStatusMachine:
    """
    Status lattice for a single booking.

    ``transition`` only follows the table below; anything else raises
    InvalidTransitionError listing the triggers valid from the current
    status. ``force`` is the operator escape hatch.
    """

    TRANSITIONS: list[Transition] = [
        Transition(BookingStatus.PENDING, BookingStatus.CONFIRMED,
                   StatusTrigger.PAYMENT_SUCCEEDED),
        Transition(BookingStatus.PENDING, BookingStatus.FAILED,
                   StatusTrigger.PAYMENT_FAILED),
        Transition(BookingStatus.PENDING, BookingStatus.CANCELLED,
                   StatusTrigger.CANCELLED),
        Transition(BookingStatus.CONFIRMED, BookingStatus.CANCELLED,
                   StatusTrigger.CANCELLED),
    ]

    INITIAL_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)

    def __init__(self, status: BookingStatus = BookingStatus.PENDING) -> None:
        self._current_status = BookingStatus(status)
        self._history: list[StatusEntry] = [
            StatusEntry(status=self._current_status, entered_at=datetime.now(timezone.utc))
        ]

    @property
    def current_status(self) -> BookingStatus:
        return self._current_status

    def can_transition(self, trigger: StatusTrigger) -> bool:
        return trigger in self.get_valid_triggers()

    def transition(self, trigger: StatusTrigger) -> BookingStatus:
        """
        Apply an automatic status transition.

        Args:
            trigger: The event driving the transition.

        Returns:
            The new booking status.

        Raises:
            InvalidTransitionError: If no valid transition exists.
        """
        for t in self.TRANSITIONS:
            if t.from_status == self._current_status and t.trigger == trigger:
                old_status = self._current_status
                self._current_status = t.to_status
                self._history.append(StatusEntry(
                    status=self._current_status,
                    entered_at=datetime.now(timezone.utc),
                    trigger=trigger,
                ))
                logger.debug(
                    "Status transition: %s -> %s (trigger: %s)",
                    old_status.value, self._current_status.value, trigger.value,
                )
                return self._current_status

        valid = [t.value for t in self.get_valid_triggers()]
        raise InvalidTransitionError(
            f"No valid transition from '{self._current_status.value}' "
            f"with trigger '{trigger.value}'. Valid triggers: {valid}"
        )

    def force(self, status: BookingStatus) -> BookingStatus:
        """Set any status regardless of the lattice (operator override)."""
        old_status = self._current_status
        self._current_status = BookingStatus(status)
        self._history.append(StatusEntry(
            status=self._current_status,
            entered_at=datetime.now(timezone.utc),
            forced=True,
        ))
        logger.debug(
            "Forced status: %s -> %s", old_status.value, self._current_status.value
        )
        return self._current_status

    def get_valid_triggers(self) -> list[StatusTrigger]:
        """Return all triggers valid from the current status."""
        return [t.trigger for t in self.TRANSITIONS if t.from_status == self._current_status]

    def get_history(self) -> list[StatusEntry]:
        """Return the full status history."""
        return list(self._history)

    def get_status_trace(self) -> list[str]:
        """Return ordered list of statuses visited."""
        return [entry.status.value for entry in self._history]

    def is_terminal(self) -> bool:
        """Check if no automatic transition can leave the current status."""
        return not self.get_valid_triggers()
