"""Shared fixtures: an in-memory store, the seed layout and two users."""

from __future__ import annotations

import pytest

from deskbook.bookings import BookingRecordStore
from deskbook.guard import BookingGuard
from deskbook.layout import LayoutTree
from deskbook.models import UserHandle
from deskbook.store import MemoryDocumentStore

from .helpers import FIXED_NOW


@pytest.fixture
def documents() -> MemoryDocumentStore:
    return MemoryDocumentStore("test-app")


@pytest.fixture
def bookings(documents: MemoryDocumentStore) -> BookingRecordStore:
    return BookingRecordStore(documents)


@pytest.fixture
def layout() -> LayoutTree:
    return LayoutTree.seed()


@pytest.fixture
def alice() -> UserHandle:
    return UserHandle(uid="u-alice", email="alice@example.com")


@pytest.fixture
def bob() -> UserHandle:
    return UserHandle(uid="u-bob", email="bob@example.com")


@pytest.fixture
def strict_guard(bookings: BookingRecordStore) -> BookingGuard:
    return BookingGuard(bookings, "strict", clock=lambda: FIXED_NOW)


@pytest.fixture
def weak_guard(bookings: BookingRecordStore) -> BookingGuard:
    return BookingGuard(bookings, "weak", clock=lambda: FIXED_NOW)
