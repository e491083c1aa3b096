"""Document store contract and the in-memory implementation.

The core talks to persistence through ``DocumentStore``: a small set of
operations over named collections of JSON-like documents, including live
queries. Two implementations exist: ``MemoryDocumentStore`` here (the
default, also used by the tests) and ``FirestoreDocumentStore`` in
``deskbook.firestore_store``.

Live queries return a ``Subscription``. Snapshots for one subscription are
queued and delivered by a single task, so callbacks never run concurrently
and never out of order. ``Subscription.cancel`` is synchronous and may be
called any number of times.
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import logging
import operator
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


def collection_path(app_id: str, collection: str) -> str:
    """Tenant-scoped path of a logical collection."""
    return f"artifacts/{app_id}/public/data/{collection}"


def _lookup(data: Dict[str, Any], field_path: str) -> Any:
    value: Any = data
    for part in field_path.split("."):
        if not isinstance(value, dict) or part not in value:
            return None
        value = value[part]
    return value


def _sort_key(value: Any) -> Tuple[bool, str]:
    # Sort fields are ISO date/time strings; missing values sort last.
    return value is None, "" if value is None else str(value)


@dataclass(frozen=True)
class Document:
    id: str
    data: Dict[str, Any]


@dataclass(frozen=True)
class Condition:
    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in _OPERATORS:
            raise ValueError(f"unsupported operator {self.op!r}")

    def matches(self, data: Dict[str, Any]) -> bool:
        actual = _lookup(data, self.field)
        if actual is None:
            return False
        try:
            return _OPERATORS[self.op](actual, self.value)
        except TypeError:
            return False


@dataclass(frozen=True)
class Query:
    """Exact-match and range conditions, with optional ordering and limit."""

    conditions: Tuple[Condition, ...] = ()
    order_by: Tuple[Tuple[str, bool], ...] = ()
    limit: Optional[int] = None

    def where(self, field_path: str, op: str, value: Any) -> "Query":
        return replace(self, conditions=self.conditions + (Condition(field_path, op, value),))

    def order(self, field_path: str, descending: bool = False) -> "Query":
        return replace(self, order_by=self.order_by + ((field_path, descending),))

    def take(self, limit: int) -> "Query":
        return replace(self, limit=limit)

    def matches(self, data: Dict[str, Any]) -> bool:
        return all(c.matches(data) for c in self.conditions)

    def apply(self, documents: List[Document]) -> List[Document]:
        """Filter, sort and truncate ``documents`` the way a store would."""
        result = [d for d in documents if self.matches(d.data)]
        # Stable sorts applied last-key-first give multi-key ordering.
        for field_path, descending in reversed(self.order_by):
            result.sort(key=lambda d, f=field_path: _sort_key(_lookup(d.data, f)), reverse=descending)
        if self.limit is not None:
            result = result[: self.limit]
        return result


SnapshotCallback = Callable[[List[Document]], Union[None, Awaitable[None]]]
ErrorCallback = Callable[[Exception], Union[None, Awaitable[None]]]


class Subscription:
    """Handle for a live query.

    Must be created while an event loop is running; deliveries happen on
    that loop.
    """

    def __init__(self, on_snapshot: SnapshotCallback, on_error: Optional[ErrorCallback] = None) -> None:
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self._queue: "asyncio.Queue[Tuple[str, Any]]" = asyncio.Queue()
        self._closed = False
        self._teardown: List[Callable[[], None]] = []
        self._task = asyncio.get_running_loop().create_task(self._pump())

    @property
    def active(self) -> bool:
        return not self._closed

    def on_cancel(self, fn: Callable[[], None]) -> None:
        self._teardown.append(fn)

    def push(self, documents: List[Document]) -> None:
        if not self._closed:
            self._queue.put_nowait(("snapshot", documents))

    def fail(self, exc: Exception) -> None:
        if not self._closed:
            self._queue.put_nowait(("error", exc))

    async def settled(self) -> None:
        """Wait until every queued snapshot has been delivered."""
        if not self._closed:
            await self._queue.join()

    def cancel(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._task.cancel()
        for fn in self._teardown:
            try:
                fn()
            except Exception:
                logger.exception("Error tearing down subscription")
        self._teardown.clear()

    async def _pump(self) -> None:
        while True:
            kind, payload = await self._queue.get()
            try:
                if kind == "snapshot":
                    result = self._on_snapshot(payload)
                elif self._on_error is not None:
                    result = self._on_error(payload)
                else:
                    logger.error("Live query failed: %s", payload)
                    result = None
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Subscription callback failed")
            finally:
                self._queue.task_done()


class DocumentStore(ABC):
    """A collection-of-documents store with query-and-subscribe.

    Every method raises ``StoreError`` on transport or permission failure.
    """

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        ...

    @abstractmethod
    async def query(self, collection: str, query: Query) -> List[Document]:
        ...

    @abstractmethod
    def subscribe(
        self,
        collection: str,
        query: Query,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        ...

    @abstractmethod
    async def set_guarded(
        self,
        collection: str,
        doc_id: str,
        data: Dict[str, Any],
        query: Query,
        check: Callable[[List[Document]], None],
    ) -> None:
        """Atomically read ``query``, call ``check`` on the result, then write.

        ``check`` raises to abort; nothing is written in that case.
        """


@dataclass
class _LiveQuery:
    collection: str
    query: Query
    subscription: Subscription = field(repr=False)


class MemoryDocumentStore(DocumentStore):
    """Process-local store. Documents are deep-copied in and out."""

    def __init__(self, app_id: str = "default-app-id") -> None:
        self.app_id = app_id
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._live: List[_LiveQuery] = []
        self._write_lock = asyncio.Lock()

    def _docs(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(collection_path(self.app_id, collection), {})

    def _snapshot(self, collection: str, query: Query) -> List[Document]:
        docs = [Document(doc_id, copy.deepcopy(data)) for doc_id, data in self._docs(collection).items()]
        return query.apply(docs)

    def _notify(self, collection: str, before: Optional[Dict[str, Any]], after: Optional[Dict[str, Any]]) -> None:
        for live in list(self._live):
            if live.collection != collection or not live.subscription.active:
                continue
            touched = (before is not None and live.query.matches(before)) or (
                after is not None and live.query.matches(after)
            )
            if touched:
                live.subscription.push(self._snapshot(collection, live.query))

    def _write(self, collection: str, doc_id: str, data: Optional[Dict[str, Any]]) -> None:
        docs = self._docs(collection)
        before = docs.get(doc_id)
        if data is None:
            docs.pop(doc_id, None)
        else:
            docs[doc_id] = copy.deepcopy(data)
        self._notify(collection, before, data)

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        data = self._docs(collection).get(doc_id)
        return copy.deepcopy(data) if data is not None else None

    async def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        self._write(collection, doc_id, data)

    async def delete(self, collection: str, doc_id: str) -> None:
        if doc_id in self._docs(collection):
            self._write(collection, doc_id, None)

    async def query(self, collection: str, query: Query) -> List[Document]:
        return self._snapshot(collection, query)

    def subscribe(
        self,
        collection: str,
        query: Query,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        subscription = Subscription(on_snapshot, on_error)
        live = _LiveQuery(collection, query, subscription)
        self._live.append(live)
        subscription.on_cancel(lambda: self._live.remove(live) if live in self._live else None)
        subscription.push(self._snapshot(collection, query))
        logger.debug("Live query opened on %s (%d active)", collection, len(self._live))
        return subscription

    async def set_guarded(
        self,
        collection: str,
        doc_id: str,
        data: Dict[str, Any],
        query: Query,
        check: Callable[[List[Document]], None],
    ) -> None:
        async with self._write_lock:
            check(self._snapshot(collection, query))
            self._write(collection, doc_id, data)
