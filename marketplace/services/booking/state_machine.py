# marketplace/services/booking/state_machine.py
"""
Booking lifecycle transitions.

pending -> accepted | declined | cancelled
accepted -> in_progress | completed | cancelled
in_progress -> completed
completed, declined and cancelled are terminal.
"""
from typing import Dict, FrozenSet

from marketplace.core.exceptions import ConflictError, PolicyViolationError
from marketplace.models.booking import BookingStatus, TERMINAL_STATUSES

TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({
        BookingStatus.ACCEPTED, BookingStatus.DECLINED, BookingStatus.CANCELLED
    }),
    BookingStatus.ACCEPTED: frozenset({
        BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED, BookingStatus.CANCELLED
    }),
    BookingStatus.IN_PROGRESS: frozenset({BookingStatus.COMPLETED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.DECLINED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}


class BookingStateMachine:

    @staticmethod
    def is_terminal(status) -> bool:
        return BookingStatus(status) in TERMINAL_STATUSES

    @staticmethod
    def can_transition(current, target) -> bool:
        return BookingStatus(target) in TRANSITIONS[BookingStatus(current)]

    @staticmethod
    def allowed_targets(current) -> FrozenSet[BookingStatus]:
        return TRANSITIONS[BookingStatus(current)]

    @staticmethod
    def assert_transition(current, target) -> None:
        """ConflictError when leaving a terminal state, PolicyViolationError for any other illegal move"""
        current = BookingStatus(current)
        target = BookingStatus(target)

        if current in TERMINAL_STATUSES:
            raise ConflictError(
                f"Booking is already {current.value}",
                {"status": current.value, "requested": target.value}
            )
        if target not in TRANSITIONS[current]:
            raise PolicyViolationError(
                f"Cannot move a booking from {current.value} to {target.value}",
                {"status": current.value, "requested": target.value}
            )
