"""Booking admission and cancellation.

``BookingGuard`` is the only code path that creates or deletes bookings.
Input is validated before the store is touched. What happens next depends
on the configured policy:

``strict``
    The desk's bookings for the date are re-read and checked for overlap
    inside the store's atomic section; an overlap raises ``Conflict`` and
    nothing is written.

``weak``
    The booking is inserted unconditionally. Two clients racing for the
    same desk can both succeed; the live availability view then lists
    both bookings as occupants of that desk. This is a known race kept for
    deployments whose store has no transactions.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, List, Literal, Optional

from .bookings import BookingRecordStore, booking_id_for
from .errors import Conflict, Forbidden, InvalidRequest, NotFound
from .intervals import TimeInterval, overlaps
from .layout import LayoutTree
from .models import Booking, BookingCandidate, UserHandle

logger = logging.getLogger(__name__)

BookingPolicy = Literal["strict", "weak"]

_REQUIRED = ("date", "building_id", "floor_id", "desk_id", "start", "end")


def validate_candidate(candidate: BookingCandidate) -> TimeInterval:
    """Check presence and ordering of every field; return the interval."""
    missing = [name for name in _REQUIRED if getattr(candidate, name) in (None, "")]
    if missing:
        raise InvalidRequest(f"missing booking fields: {', '.join(missing)}")
    if not candidate.end > candidate.start:
        raise InvalidRequest("end time must be after start time")
    return TimeInterval(start=candidate.start, end=candidate.end)


class BookingGuard:
    def __init__(
        self,
        bookings: BookingRecordStore,
        policy: BookingPolicy = "strict",
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if policy not in ("strict", "weak"):
            raise ValueError(f"unknown booking policy {policy!r}")
        self._bookings = bookings
        self.policy = policy
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def submit(
        self,
        candidate: BookingCandidate,
        user: UserHandle,
        layout: Optional[LayoutTree] = None,
        is_recurring: bool = False,
    ) -> str:
        """Admit ``candidate`` for ``user`` and return the new booking id.

        Raises ``InvalidRequest`` or ``NotFound`` without contacting the
        store, ``Conflict`` under the strict policy, and ``StoreError`` on
        store failure.
        """
        interval = validate_candidate(candidate)
        if layout is not None and not layout.has_desk(candidate.building_id, candidate.floor_id, candidate.desk_id):
            raise NotFound(f"desk {candidate.desk_id!r} is not part of the current layout")

        booking = Booking(
            id=booking_id_for(
                candidate.date, candidate.building_id, candidate.floor_id, candidate.desk_id, interval
            ),
            user_id=user.uid,
            user_email=user.email,
            date=candidate.date,
            interval=interval,
            building_id=candidate.building_id,
            floor_id=candidate.floor_id,
            desk_id=candidate.desk_id,
            created_at=self._clock(),
            is_recurring=is_recurring,
        )

        if self.policy == "weak":
            booking_id = await self._bookings.insert(booking)
        else:
            booking_id = await self._bookings.insert_checked(
                booking, lambda existing: self._reject_overlaps(booking, existing)
            )
        logger.info("Booked %s for %s (%s)", booking_id, user.email, self.policy)
        return booking_id

    @staticmethod
    def _reject_overlaps(booking: Booking, existing: List[Booking]) -> None:
        for other in existing:
            if overlaps(other.interval, booking.interval):
                raise Conflict(f"desk {booking.desk_id} is already booked {other.interval} on {booking.date}")

    async def cancel(self, booking_id: str, user: UserHandle, is_admin: bool = False) -> Booking:
        """Delete a booking owned by ``user`` (or any booking, for an admin)."""
        booking = await self._bookings.get(booking_id)
        if booking is None:
            raise NotFound(f"booking {booking_id!r} does not exist")
        if booking.user_id != user.uid and not is_admin:
            raise Forbidden("only the owner or an admin can cancel this booking")
        await self._bookings.delete(booking_id)
        logger.info("Cancelled %s by %s", booking_id, user.email)
        return booking
