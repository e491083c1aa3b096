import datetime as dt

import pytest

from deskbook.bookings import (
    BOOKINGS_COLLECTION,
    BookingRecordStore,
    booking_id_for,
    from_document,
    scope_query,
    to_bookings,
    to_document,
    upcoming_query,
)
from deskbook.intervals import TimeInterval
from deskbook.models import Booking
from deskbook.store import Document

FLAT = {
    "user": "alice@example.com",
    "userId": "u-alice",
    "date": "2024-03-01",
    "buildingId": "building-a",
    "floorId": "floor-1",
    "deskId": "A1-01",
    "startTime": "09:00",
    "endTime": "10:00",
    "timestamp": "2024-02-20T08:00:00Z",
}

NESTED = {
    "bookingDetails": {"date": "2024-03-01", "startTime": "09:00", "endTime": "10:00", "isRecurring": True},
    "locationDetails": {"buildingId": "building-a", "floorId": "floor-1", "deskId": "A1-01"},
    "userDetails": {"userId": "u-alice", "email": "alice@example.com"},
    "timestamp": "2024-02-20T08:00:00",
}


def test_booking_id_is_deterministic():
    interval = TimeInterval(start=dt.time(9), end=dt.time(10, 30))
    booking_id = booking_id_for(dt.date(2024, 3, 1), "building-a", "floor-1", "A1-01", interval)
    assert booking_id == "2024-03-01-building-a-floor-1-A1-01-0900-1030"
    other_floor = booking_id_for(dt.date(2024, 3, 1), "building-a", "floor-2", "A1-01", interval)
    assert other_floor != booking_id


def test_flat_and_nested_documents_normalise_to_the_same_booking():
    flat = from_document("x", FLAT)
    nested = from_document("x", NESTED)
    assert flat.desk_id == nested.desk_id == "A1-01"
    assert flat.user_email == nested.user_email == "alice@example.com"
    assert flat.interval == nested.interval
    assert flat.created_at == nested.created_at
    assert flat.created_at.tzinfo is not None
    assert nested.is_recurring and not flat.is_recurring


def test_written_documents_are_flat():
    booking = from_document("x", NESTED)
    document = to_document(booking)
    assert "bookingDetails" not in document
    assert document["startTime"] == "09:00"
    assert document["isRecurring"] is True
    assert from_document("x", document) == booking


def test_malformed_documents_are_skipped():
    broken = dict(FLAT, endTime="08:00")
    missing = {k: v for k, v in FLAT.items() if k != "deskId"}
    bookings = to_bookings([Document("ok", FLAT), Document("b1", broken), Document("b2", missing)])
    assert [b.id for b in bookings] == ["ok"]
    with pytest.raises(ValueError):
        from_document("b1", broken)


def test_queries_use_flat_fields():
    query = scope_query(dt.date(2024, 3, 1), "building-a", "floor-1")
    assert query.matches(FLAT)
    assert not query.matches(dict(FLAT, floorId="floor-2"))
    assert upcoming_query(dt.date(2024, 3, 1)).matches(FLAT)
    assert not upcoming_query(dt.date(2024, 3, 2)).matches(FLAT)


async def test_store_insert_get_list_delete(documents):
    store = BookingRecordStore(documents)
    booking = from_document("2024-03-01-building-a-A1-01-0900-1000", FLAT)
    booking_id = await store.insert(booking)
    assert await store.get(booking_id) == booking
    assert [b.id for b in await store.list()] == [booking_id]
    await store.delete(booking_id)
    assert await store.get(booking_id) is None


async def test_legacy_documents_are_readable_through_the_store(documents):
    await documents.set(BOOKINGS_COLLECTION, "legacy", NESTED)
    store = BookingRecordStore(documents)
    booking = await store.get("legacy")
    assert isinstance(booking, Booking)
    assert booking.floor_id == "floor-1"
