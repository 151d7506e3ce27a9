"""Legal transitions for booking status and payment status.

Both axes are plain lookup tables. Functions here are pure so the ledger can
evaluate them inside a transaction.
"""

from app.db.models.booking import BookingStatus, PaymentStatus
from app.services.outcomes import InvalidTransition

ACTIVE_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.COMPLETED})
TERMINAL_STATUSES = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELED, BookingStatus.NO_SHOW})

STATUS_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELED}),
    BookingStatus.CONFIRMED: frozenset(
        {BookingStatus.COMPLETED, BookingStatus.CANCELED, BookingStatus.NO_SHOW}
    ),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELED: frozenset(),
    BookingStatus.NO_SHOW: frozenset(),
}

PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.REQUIRES_PAYMENT: frozenset({PaymentStatus.PAID, PaymentStatus.CANCELED}),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED, PaymentStatus.CANCELED}),
    PaymentStatus.REFUNDED: frozenset(),
    PaymentStatus.CANCELED: frozenset(),
}


def allowed_transitions(current: BookingStatus | str) -> frozenset[BookingStatus]:
    return STATUS_TRANSITIONS[BookingStatus(current)]


def can_transition(current: BookingStatus | str, requested: BookingStatus | str) -> bool:
    return BookingStatus(requested) in allowed_transitions(current)


def apply_transition(
    current: BookingStatus | str, requested: BookingStatus | str
) -> BookingStatus | InvalidTransition:
    current = BookingStatus(current)
    requested = BookingStatus(requested)
    if not can_transition(current, requested):
        return InvalidTransition(
            detail=f"Cannot move booking from {current.value} to {requested.value}",
            current=current.value,
            requested=requested.value,
        )
    return requested


def can_transition_payment(current: PaymentStatus | str, requested: PaymentStatus | str) -> bool:
    return PaymentStatus(requested) in PAYMENT_TRANSITIONS[PaymentStatus(current)]


def apply_payment_transition(
    current: PaymentStatus | str, requested: PaymentStatus | str
) -> PaymentStatus | InvalidTransition:
    current = PaymentStatus(current)
    requested = PaymentStatus(requested)
    if not can_transition_payment(current, requested):
        return InvalidTransition(
            detail=f"Cannot move payment from {current.value} to {requested.value}",
            current=current.value,
            requested=requested.value,
        )
    return requested


def initial_status(requires_confirmation: bool) -> BookingStatus:
    return BookingStatus.PENDING if requires_confirmation else BookingStatus.CONFIRMED


def is_terminal(status: BookingStatus | str) -> bool:
    return BookingStatus(status) in TERMINAL_STATUSES
