"""Firestore implementation of the document store.

Collections live under ``artifacts/{app_id}/public/data/`` so several
tenants can share one project. The client is the synchronous
``google.cloud.firestore.Client`` built with Application Default
Credentials; blocking calls run in worker threads and live-query snapshots
are handed back to the event loop that opened the subscription.

The guarded write uses a Firestore transaction, which retries automatically
on contention, so two clients racing for the same desk cannot both pass the
overlap check.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, TypeVar

from google.cloud import exceptions as gexc
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from .errors import StoreError
from .store import (
    Document,
    DocumentStore,
    ErrorCallback,
    Query,
    SnapshotCallback,
    Subscription,
    collection_path,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _documents(snapshots: Any) -> List[Document]:
    return [Document(snap.id, snap.to_dict() or {}) for snap in snapshots]


class FirestoreDocumentStore(DocumentStore):
    def __init__(self, app_id: str, client: Optional[firestore.Client] = None, project: str = "") -> None:
        self.app_id = app_id
        # project ID inferred from ADC when not given
        self._client = client or firestore.Client(project=project or None)

    def _collection(self, name: str) -> firestore.CollectionReference:
        return self._client.collection(collection_path(self.app_id, name))

    def _build(self, name: str, query: Query) -> Any:
        built: Any = self._collection(name)
        for condition in query.conditions:
            built = built.where(filter=FieldFilter(condition.field, condition.op, condition.value))
        for field_path, descending in query.order_by:
            direction = firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
            built = built.order_by(field_path, direction=direction)
        if query.limit is not None:
            built = built.limit(query.limit)
        return built

    async def _call(self, what: str, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(fn, *args)
        except gexc.GoogleCloudError as err:  # network / perms
            logger.error("Firestore %s failed: %s", what, err)
            raise StoreError(f"Firestore error: {err}") from err

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        snapshot = await self._call("get", self._collection(collection).document(doc_id).get)
        return snapshot.to_dict() if snapshot.exists else None

    async def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        await self._call("set", self._collection(collection).document(doc_id).set, data)

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._call("delete", self._collection(collection).document(doc_id).delete)

    async def query(self, collection: str, query: Query) -> List[Document]:
        built = self._build(collection, query)
        return await self._call("query", lambda: _documents(built.stream()))

    def subscribe(
        self,
        collection: str,
        query: Query,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        loop = asyncio.get_running_loop()
        subscription = Subscription(on_snapshot, on_error)

        # Runs on the Firestore watch thread.
        def _forward(snapshots: Any, changes: Any, read_time: Any) -> None:
            loop.call_soon_threadsafe(subscription.push, _documents(snapshots))

        try:
            watch = self._build(collection, query).on_snapshot(_forward)
        except gexc.GoogleCloudError as err:
            subscription.cancel()
            logger.error("Firestore live query on %s failed: %s", collection, err)
            raise StoreError(f"Firestore error: {err}") from err
        subscription.on_cancel(watch.unsubscribe)
        return subscription

    async def set_guarded(
        self,
        collection: str,
        doc_id: str,
        data: Dict[str, Any],
        query: Query,
        check: Callable[[List[Document]], None],
    ) -> None:
        ref = self._collection(collection).document(doc_id)
        built = self._build(collection, query)

        # Firestore transactions retry automatically on contention
        @firestore.transactional
        def _txn(transaction: firestore.Transaction) -> None:
            check(_documents(transaction.get(built)))
            transaction.set(ref, data)

        await self._call("transaction", lambda: _txn(self._client.transaction()))
