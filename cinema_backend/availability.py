"""
Unavailable seats of a screening.

The seats taken for a screening are the seat lists of its bookings laid end to
end, skipping cancelled bookings and bookings without seats. Order follows the
bookings, then the seats inside each booking. Duplicates are passed through
untouched: if two live bookings hold the same seat, it appears twice.
"""

from typing import Iterable, List, Protocol, Sequence

from .schemas import CANCELLED, Seat


class HasSeats(Protocol):
    status: str
    seats: Sequence[Seat]


def unavailable_seats(bookings: Iterable[HasSeats]) -> List[Seat]:
    taken: List[Seat] = []
    for booking in bookings:
        if booking.status == CANCELLED or not booking.seats:
            continue
        taken.extend(booking.seats)
    return taken
