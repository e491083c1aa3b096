"""Builders and store doubles shared by the tests."""

from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Optional

from deskbook.errors import StoreError
from deskbook.models import BookingCandidate
from deskbook.store import MemoryDocumentStore, Query

FIXED_NOW = dt.datetime(2024, 2, 20, 8, 0, tzinfo=dt.timezone.utc)


def _time(value: Any) -> Optional[dt.time]:
    return dt.time.fromisoformat(value) if isinstance(value, str) else value


def candidate(
    desk: str = "A1-01", start: Any = "09:00", end: Any = "10:00", day: str = "2024-03-01", **kw: Any
) -> BookingCandidate:
    fields: Dict[str, Any] = {
        "date": dt.date.fromisoformat(day),
        "building_id": "building-a",
        "floor_id": "floor-1",
        "desk_id": desk,
        "start": _time(start),
        "end": _time(end),
    }
    fields.update(kw)
    return BookingCandidate(**fields)


class RecordingStore(MemoryDocumentStore):
    """Memory store that records every call, for asserting the store was not touched."""

    def __init__(self) -> None:
        super().__init__("test-app")
        self.calls: List[str] = []

    async def get(self, collection, doc_id):
        self.calls.append("get")
        return await super().get(collection, doc_id)

    async def set(self, collection, doc_id, data):
        self.calls.append("set")
        await super().set(collection, doc_id, data)

    async def delete(self, collection, doc_id):
        self.calls.append("delete")
        await super().delete(collection, doc_id)

    async def query(self, collection, query: Query):
        self.calls.append("query")
        return await super().query(collection, query)

    def subscribe(self, collection, query, on_snapshot, on_error=None):
        self.calls.append("subscribe")
        return super().subscribe(collection, query, on_snapshot, on_error)

    async def set_guarded(self, collection, doc_id, data, query, check):
        self.calls.append("set_guarded")
        await super().set_guarded(collection, doc_id, data, query, check)


class FailingStore(MemoryDocumentStore):
    """Memory store whose writes fail, or every call when ``reads`` is set."""

    def __init__(self, reads: bool = False) -> None:
        super().__init__("test-app")
        self.reads = reads

    async def get(self, collection, doc_id):
        if self.reads:
            raise StoreError("permission denied")
        return await super().get(collection, doc_id)

    async def query(self, collection, query):
        if self.reads:
            raise StoreError("permission denied")
        return await super().query(collection, query)

    async def set(self, collection, doc_id, data):
        raise StoreError("network unreachable")

    async def set_guarded(self, collection, doc_id, data, query, check):
        raise StoreError("network unreachable")
