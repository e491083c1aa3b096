import asyncio
import threading

import pytest
from google.cloud import exceptions as gexc
from google.cloud import firestore

from deskbook.errors import Conflict, StoreError
from deskbook.firestore_store import FirestoreDocumentStore
from deskbook.store import Query


class FakeSnapshot:
    def __init__(self, doc_id, data):
        self.id = doc_id
        self._data = data
        self.exists = data is not None

    def to_dict(self):
        return dict(self._data) if self._data is not None else None


class FakeDocument:
    def __init__(self, client, path, doc_id):
        self._client = client
        self.key = (path, doc_id)

    def get(self):
        self._client.check()
        return FakeSnapshot(self.key[1], self._client.data.get(self.key))

    def set(self, data):
        self._client.check()
        self._client.data[self.key] = dict(data)

    def delete(self):
        self._client.check()
        self._client.data.pop(self.key, None)


class FakeQuery:
    """Records the chain of ``where``/``order_by``/``limit`` calls."""

    def __init__(self, client, path, calls=()):
        self._client = client
        self.path = path
        self.calls = list(calls)

    def _chain(self, call):
        return FakeQuery(self._client, self.path, self.calls + [call])

    def where(self, filter):
        return self._chain(("where", filter.field_path, filter.op_string, filter.value))

    def order_by(self, field_path, direction):
        return self._chain(("order_by", field_path, direction))

    def limit(self, count):
        return self._chain(("limit", count))

    def document(self, doc_id):
        return FakeDocument(self._client, self.path, doc_id)

    def stream(self):
        self._client.check()
        self._client.built.append(self)
        return [FakeSnapshot(key[1], data) for key, data in self._client.data.items() if key[0] == self.path]

    def on_snapshot(self, callback):
        self._client.check()
        self._client.watches.append(callback)
        return FakeWatch()


class FakeWatch:
    def __init__(self):
        self.unsubscribed = False

    def unsubscribe(self):
        self.unsubscribed = True


class FakeTransaction:
    def __init__(self, client):
        self._client = client
        self.writes = []

    def get(self, query):
        return query.stream()

    def set(self, ref, data):
        self.writes.append((ref.key, data))


class FakeClient:
    def __init__(self, failure=None):
        self.data = {}
        self.failure = failure
        self.built = []
        self.watches = []
        self.transactions = []

    def check(self):
        if self.failure is not None:
            raise self.failure

    def collection(self, path):
        return FakeQuery(self, path)

    def transaction(self):
        transaction = FakeTransaction(self)
        self.transactions.append(transaction)
        return transaction


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def store(client):
    return FirestoreDocumentStore("test-app", client=client)


@pytest.fixture
def plain_transactions(monkeypatch):
    """Run transactional functions once, directly, against the fake transaction."""
    monkeypatch.setattr(firestore, "transactional", lambda fn: fn)


PATH = "artifacts/test-app/public/data/bookings"


async def test_documents_live_under_the_app_path(store, client):
    await store.set("bookings", "b1", {"deskId": "A1-01"})
    assert client.data == {(PATH, "b1"): {"deskId": "A1-01"}}
    assert await store.get("bookings", "b1") == {"deskId": "A1-01"}
    assert await store.get("bookings", "missing") is None
    await store.delete("bookings", "b1")
    assert client.data == {}


async def test_query_translation(store, client):
    query = (
        Query()
        .where("date", ">=", "2024-03-01")
        .where("userId", "==", "u-alice")
        .order("date")
        .order("startTime", descending=True)
        .take(5)
    )
    await store.query("bookings", query)
    assert client.built[-1].calls == [
        ("where", "date", ">=", "2024-03-01"),
        ("where", "userId", "==", "u-alice"),
        ("order_by", "date", firestore.Query.ASCENDING),
        ("order_by", "startTime", firestore.Query.DESCENDING),
        ("limit", 5),
    ]


async def test_cloud_errors_become_store_errors():
    store = FirestoreDocumentStore("test-app", client=FakeClient(gexc.GoogleCloudError("permission denied")))
    for call in (store.get("bookings", "b1"), store.set("bookings", "b1", {}), store.query("bookings", Query())):
        with pytest.raises(StoreError):
            await call


async def test_failed_watch_raises_store_error():
    store = FirestoreDocumentStore("test-app", client=FakeClient(gexc.GoogleCloudError("unavailable")))
    with pytest.raises(StoreError):
        store.subscribe("bookings", Query(), lambda documents: None)


async def test_snapshots_from_the_watch_thread_arrive_in_order(store, client):
    seen = []
    subscription = store.subscribe("bookings", Query(), lambda documents: seen.append([d.id for d in documents]))
    callback = client.watches[0]

    def fire():
        for n in range(1, 4):
            callback([FakeSnapshot(f"b{i}", {}) for i in range(n)], [], None)

    thread = threading.Thread(target=fire)
    thread.start()
    thread.join()
    await asyncio.sleep(0)
    await subscription.settled()
    assert seen == [["b0"], ["b0", "b1"], ["b0", "b1", "b2"]]


async def test_cancel_unsubscribes_the_watch(store, client, monkeypatch):
    watch = FakeWatch()
    monkeypatch.setattr(FakeQuery, "on_snapshot", lambda self, callback: watch)
    subscription = store.subscribe("bookings", Query(), lambda documents: None)
    subscription.cancel()
    assert watch.unsubscribed


async def test_guarded_write_commits_when_the_check_passes(store, client, plain_transactions):
    client.data[(PATH, "old")] = {"deskId": "A1-01"}
    checked = []
    query = Query().where("deskId", "==", "A1-01")
    await store.set_guarded("bookings", "new", {"deskId": "A1-01"}, query, lambda docs: checked.extend(docs))

    assert [d.id for d in checked] == ["old"]
    assert client.built[-1].calls == [("where", "deskId", "==", "A1-01")]
    assert client.transactions[-1].writes == [((PATH, "new"), {"deskId": "A1-01"})]


async def test_guarded_write_rejected_by_the_check_writes_nothing(store, client, plain_transactions):
    client.data[(PATH, "old")] = {"deskId": "A1-01"}

    def reject(documents):
        raise Conflict("taken")

    with pytest.raises(Conflict):
        await store.set_guarded("bookings", "new", {"deskId": "A1-01"}, Query(), reject)
    assert client.transactions[-1].writes == []
    assert list(client.data) == [(PATH, "old")]
