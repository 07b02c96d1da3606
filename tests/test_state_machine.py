"""Tests for the booking lifecycle transition table."""
import pytest

from marketplace.core.exceptions import ConflictError, PolicyViolationError
from marketplace.models.booking import BookingStatus
from marketplace.services.booking.state_machine import BookingStateMachine


class TestTransitions:
    @pytest.mark.parametrize("current,target", [
        (BookingStatus.PENDING, BookingStatus.ACCEPTED),
        (BookingStatus.PENDING, BookingStatus.DECLINED),
        (BookingStatus.PENDING, BookingStatus.CANCELLED),
        (BookingStatus.ACCEPTED, BookingStatus.IN_PROGRESS),
        (BookingStatus.ACCEPTED, BookingStatus.COMPLETED),
        (BookingStatus.ACCEPTED, BookingStatus.CANCELLED),
        (BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED),
    ])
    def test_legal_transitions(self, current, target):
        assert BookingStateMachine.can_transition(current, target)
        BookingStateMachine.assert_transition(current, target)

    def test_accepts_plain_strings(self):
        assert BookingStateMachine.can_transition("pending", "accepted")

    @pytest.mark.parametrize("terminal", [
        BookingStatus.COMPLETED, BookingStatus.DECLINED, BookingStatus.CANCELLED
    ])
    def test_leaving_terminal_state_is_a_conflict(self, terminal):
        assert BookingStateMachine.is_terminal(terminal)
        assert BookingStateMachine.allowed_targets(terminal) == frozenset()
        with pytest.raises(ConflictError):
            BookingStateMachine.assert_transition(terminal, BookingStatus.ACCEPTED)

    def test_completing_pending_booking_is_a_policy_violation(self):
        with pytest.raises(PolicyViolationError):
            BookingStateMachine.assert_transition(BookingStatus.PENDING, BookingStatus.COMPLETED)

    def test_in_progress_cannot_be_cancelled(self):
        with pytest.raises(PolicyViolationError):
            BookingStateMachine.assert_transition(BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED)
