"""Booking records on top of a document store.

This is the only module that knows how a booking is laid out as a stored
document. Two layouts exist in the wild:

- the flat layout written by this service (``userId``, ``date``,
  ``startTime`` ... at the top level), and
- an older nested layout (``bookingDetails``, ``locationDetails``,
  ``userDetails``).

Both are normalised into ``Booking`` on read; only the flat layout is ever
written. Store queries filter on the flat top-level fields.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from .errors import StoreError
from .intervals import TimeInterval, format_time, parse_time
from .models import Booking
from .store import Document, DocumentStore, ErrorCallback, Query, Subscription

logger = logging.getLogger(__name__)

BOOKINGS_COLLECTION = "bookings"


def booking_id_for(
    date: dt.date, building_id: str, floor_id: str, desk_id: str, interval: TimeInterval
) -> str:
    """Deterministic document id for a booking."""
    return "-".join(
        [
            date.isoformat(),
            building_id,
            floor_id,
            desk_id,
            format_time(interval.start).replace(":", ""),
            format_time(interval.end).replace(":", ""),
        ]
    )


def to_document(booking: Booking) -> Dict[str, Any]:
    return {
        "user": booking.user_email,
        "userId": booking.user_id,
        "date": booking.date.isoformat(),
        "buildingId": booking.building_id,
        "floorId": booking.floor_id,
        "deskId": booking.desk_id,
        "startTime": format_time(booking.interval.start),
        "endTime": format_time(booking.interval.end),
        "timestamp": booking.created_at.isoformat() if booking.created_at else None,
        "isRecurring": booking.is_recurring,
    }


def _flatten_legacy(data: Dict[str, Any]) -> Dict[str, Any]:
    details = data.get("bookingDetails") or {}
    location = data.get("locationDetails") or {}
    user = data.get("userDetails") or {}
    flat = dict(data)
    flat.update(
        {
            "date": details.get("date", data.get("date")),
            "startTime": details.get("startTime", data.get("startTime")),
            "endTime": details.get("endTime", data.get("endTime")),
            "isRecurring": details.get("isRecurring", data.get("isRecurring", False)),
            "buildingId": location.get("buildingId", data.get("buildingId")),
            "floorId": location.get("floorId", data.get("floorId")),
            "deskId": location.get("deskId", data.get("deskId")),
            "userId": user.get("userId", data.get("userId")),
            "user": user.get("email", data.get("user", data.get("userEmail"))),
        }
    )
    return flat


def _parse_timestamp(value: Any) -> Optional[dt.datetime]:
    if value is None or value == "":
        return None
    if not isinstance(value, dt.datetime):
        value = dt.datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    # naive timestamps are UTC
    return value if value.tzinfo else value.replace(tzinfo=dt.timezone.utc)


def from_document(doc_id: str, data: Dict[str, Any]) -> Booking:
    """Normalise a stored document of either layout into a ``Booking``.

    Raises ``ValueError`` when required fields are missing or malformed.
    """
    if any(key in data for key in ("bookingDetails", "locationDetails", "userDetails")):
        data = _flatten_legacy(data)
    try:
        return Booking(
            id=doc_id,
            user_id=data["userId"],
            user_email=data.get("user") or "",
            date=dt.date.fromisoformat(str(data["date"])),
            interval=TimeInterval(start=parse_time(data["startTime"]), end=parse_time(data["endTime"])),
            building_id=data["buildingId"],
            floor_id=data["floorId"],
            desk_id=data["deskId"],
            created_at=_parse_timestamp(data.get("timestamp")),
            is_recurring=bool(data.get("isRecurring", False)),
        )
    except (KeyError, TypeError, AttributeError, ValidationError) as exc:
        raise ValueError(f"malformed booking document {doc_id!r}: {exc}") from exc


def to_bookings(documents: List[Document]) -> List[Booking]:
    """Convert documents, skipping (and logging) any that cannot be read."""
    bookings: List[Booking] = []
    for document in documents:
        try:
            bookings.append(from_document(document.id, document.data))
        except ValueError as exc:
            logger.warning("Skipping booking document: %s", exc)
    return bookings


# ---------- queries ----------
def scope_query(date: dt.date, building_id: str, floor_id: str) -> Query:
    return (
        Query()
        .where("date", "==", date.isoformat())
        .where("buildingId", "==", building_id)
        .where("floorId", "==", floor_id)
    )


def desk_query(date: dt.date, building_id: str, floor_id: str, desk_id: str) -> Query:
    return scope_query(date, building_id, floor_id).where("deskId", "==", desk_id)


def user_query(user_id: str) -> Query:
    return Query().where("userId", "==", user_id)


def upcoming_query(from_date: dt.date, limit: Optional[int] = None) -> Query:
    query = Query().where("date", ">=", from_date.isoformat()).order("date").order("startTime")
    return query.take(limit) if limit else query


ALL_BOOKINGS = Query()


class BookingRecordStore:
    """Typed access to the bookings collection."""

    def __init__(self, documents: DocumentStore) -> None:
        self._documents = documents

    def subscribe(
        self,
        query: Query,
        callback: Callable[[List[Booking]], Any],
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        def _deliver(documents: List[Document]) -> Any:
            return callback(to_bookings(documents))

        return self._documents.subscribe(BOOKINGS_COLLECTION, query, _deliver, on_error)

    async def insert(self, booking: Booking) -> str:
        await self._documents.set(BOOKINGS_COLLECTION, booking.id, to_document(booking))
        return booking.id

    async def insert_checked(self, booking: Booking, check: Callable[[List[Booking]], None]) -> str:
        """Insert ``booking`` only if ``check`` accepts the desk's current bookings."""
        query = desk_query(booking.date, booking.building_id, booking.floor_id, booking.desk_id)
        await self._documents.set_guarded(
            BOOKINGS_COLLECTION,
            booking.id,
            to_document(booking),
            query,
            lambda documents: check(to_bookings(documents)),
        )
        return booking.id

    async def delete(self, booking_id: str) -> None:
        await self._documents.delete(BOOKINGS_COLLECTION, booking_id)

    async def get(self, booking_id: str) -> Optional[Booking]:
        data = await self._documents.get(BOOKINGS_COLLECTION, booking_id)
        if data is None:
            return None
        try:
            return from_document(booking_id, data)
        except ValueError as exc:
            raise StoreError(str(exc)) from exc

    async def list(self, query: Query = ALL_BOOKINGS) -> List[Booking]:
        return to_bookings(await self._documents.query(BOOKINGS_COLLECTION, query))
