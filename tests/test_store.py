import asyncio

import pytest

from deskbook.store import Condition, Document, MemoryDocumentStore, Query, collection_path


def test_collection_path_is_tenant_scoped():
    assert collection_path("acme", "bookings") == "artifacts/acme/public/data/bookings"


def test_query_filters_orders_and_limits():
    docs = [
        Document("a", {"date": "2024-03-02", "floorId": "f1"}),
        Document("b", {"date": "2024-03-01", "floorId": "f1"}),
        Document("c", {"date": "2024-02-28", "floorId": "f1"}),
        Document("d", {"date": "2024-03-05", "floorId": "f2"}),
    ]
    query = Query().where("floorId", "==", "f1").where("date", ">=", "2024-03-01").order("date")
    assert [d.id for d in query.apply(docs)] == ["b", "a"]
    assert [d.id for d in Query().order("date", descending=True).take(2).apply(docs)] == ["d", "a"]


def test_condition_on_nested_and_missing_fields():
    assert Condition("details.desk", "==", "A1").matches({"details": {"desk": "A1"}})
    assert not Condition("details.desk", "==", "A1").matches({"desk": "A1"})
    with pytest.raises(ValueError):
        Condition("x", "~", 1)


async def test_subscription_gets_initial_and_matching_snapshots(documents: MemoryDocumentStore):
    seen = []
    await documents.set("bookings", "1", {"floorId": "f1"})
    sub = documents.subscribe("bookings", Query().where("floorId", "==", "f1"), lambda docs: seen.append([d.id for d in docs]))
    await sub.settled()
    assert seen == [["1"]]

    await documents.set("bookings", "2", {"floorId": "f2"})  # not matching: no event
    await documents.set("bookings", "3", {"floorId": "f1"})
    await documents.delete("bookings", "1")
    await sub.settled()
    assert seen == [["1"], ["1", "3"], ["3"]]
    sub.cancel()


async def test_snapshots_are_delivered_in_order_even_with_slow_callbacks(documents: MemoryDocumentStore):
    seen = []

    async def slow(docs):
        await asyncio.sleep(0.01 if len(docs) == 1 else 0)
        seen.append(len(docs))

    sub = documents.subscribe("bookings", Query(), slow)
    for i in range(3):
        await documents.set("bookings", str(i), {"n": i})
    await sub.settled()
    assert seen == [0, 1, 2, 3]
    sub.cancel()


async def test_cancel_is_idempotent_and_stops_delivery(documents: MemoryDocumentStore):
    seen = []
    sub = documents.subscribe("bookings", Query(), lambda docs: seen.append(len(docs)))
    await sub.settled()
    sub.cancel()
    sub.cancel()
    assert not sub.active
    await documents.set("bookings", "x", {})
    await asyncio.sleep(0)
    assert seen == [0]


async def test_failing_callback_does_not_stop_subscription(documents: MemoryDocumentStore):
    seen = []

    def flaky(docs):
        if not docs:
            raise RuntimeError("render failed")
        seen.append(len(docs))

    sub = documents.subscribe("bookings", Query(), flaky)
    await documents.set("bookings", "x", {})
    await sub.settled()
    assert seen == [1]
    sub.cancel()


async def test_set_guarded_aborts_when_check_raises(documents: MemoryDocumentStore):
    await documents.set("bookings", "old", {"deskId": "A1"})

    def reject(existing):
        if existing:
            raise LookupError("taken")

    with pytest.raises(LookupError):
        await documents.set_guarded("bookings", "new", {"deskId": "A1"}, Query().where("deskId", "==", "A1"), reject)
    assert await documents.get("bookings", "new") is None

    await documents.set_guarded("bookings", "other", {"deskId": "B1"}, Query().where("deskId", "==", "B1"), reject)
    assert await documents.get("bookings", "other") == {"deskId": "B1"}


async def test_documents_are_copied(documents: MemoryDocumentStore):
    data = {"tags": ["a"]}
    await documents.set("layout", "main", data)
    data["tags"].append("b")
    fetched = await documents.get("layout", "main")
    fetched["tags"].append("c")
    assert await documents.get("layout", "main") == {"tags": ["a"]}
