"""Booking lifecycle.

    DRAFT -confirm-> PENDING -verify-> VERIFIED -pay-> CONFIRMED -start-> ONGOING -complete-> COMPLETED

PENDING and VERIFIED bookings that stall are cancelled by the expiration
sweeps, owners may cancel while the booking is PENDING, VERIFIED or CONFIRMED,
and admins may additionally cancel drafts. Nothing leaves a terminal status.
"""

from dataclasses import replace
from datetime import datetime
from enum import Enum

from car_rental.models.bookings import Booking, BookingStatus
from car_rental.utils.custom_exceptions import BadUserInput


class BookingEvent(str, Enum):
    CONFIRM = "CONFIRM"
    VERIFY = "VERIFY"
    PAY = "PAY"
    START_TRIP = "START_TRIP"
    COMPLETE_TRIP = "COMPLETE_TRIP"
    CANCEL = "CANCEL"
    ADMIN_CANCEL = "ADMIN_CANCEL"
    EXPIRE = "EXPIRE"
    UNPAID_TIMEOUT = "UNPAID_TIMEOUT"
    REJECT = "REJECT"


S = BookingStatus

BOOKING_TRANSITIONS = {
    BookingEvent.CONFIRM: (frozenset({S.DRAFT}), S.PENDING),
    BookingEvent.VERIFY: (frozenset({S.PENDING}), S.VERIFIED),
    BookingEvent.PAY: (frozenset({S.VERIFIED}), S.CONFIRMED),
    BookingEvent.START_TRIP: (frozenset({S.CONFIRMED, S.VERIFIED}), S.ONGOING),
    BookingEvent.COMPLETE_TRIP: (frozenset({S.ONGOING}), S.COMPLETED),
    BookingEvent.CANCEL: (frozenset({S.PENDING, S.VERIFIED, S.CONFIRMED}), S.CANCELLED),
    BookingEvent.ADMIN_CANCEL: (
        frozenset({S.DRAFT, S.PENDING, S.VERIFIED, S.CONFIRMED}),
        S.CANCELLED,
    ),
    BookingEvent.EXPIRE: (frozenset({S.PENDING}), S.CANCELLED),
    BookingEvent.UNPAID_TIMEOUT: (frozenset({S.VERIFIED}), S.CANCELLED),
    BookingEvent.REJECT: (frozenset({S.PENDING, S.VERIFIED, S.CONFIRMED}), S.REJECTED),
}


class BookingTransitionError(BadUserInput):
    def __init__(self, current: BookingStatus, event: BookingEvent):
        self.current = current
        self.event = event
        super().__init__(
            f"Cannot {event.value.lower().replace('_', ' ')} a booking in {current.value} status"
        )


def can_transition(current: BookingStatus, event: BookingEvent) -> bool:
    sources, _ = BOOKING_TRANSITIONS[event]
    return current in sources


def next_status(current: BookingStatus, event: BookingEvent) -> BookingStatus:
    sources, target = BOOKING_TRANSITIONS[event]
    if current not in sources:
        raise BookingTransitionError(current, event)
    return target


def apply_transition(booking: Booking, event: BookingEvent, now: datetime, **changes) -> Booking:
    """Return a copy of ``booking`` moved along ``event``; the input is untouched."""
    status = next_status(booking.status, event)
    return replace(booking, status=status, updated_at=now, **changes)
