"""
Reactive document store abstraction.

Shared game state lives in documents grouped by collection. Every write
bumps the document's revision and fans the new snapshot out to subscribers.
Subscriber callbacks run on their own tasks, so a writer never waits on them.
"""

import asyncio
import copy
import inspect
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable


logger = logging.getLogger(__name__)


# =============================================================================
# Errors
# =============================================================================

class StoreError(Exception):
    """Base class for document store failures."""


class DocumentNotFoundError(StoreError):
    """The addressed document does not exist."""

    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"Document {collection}/{doc_id} not found")
        self.collection = collection
        self.doc_id = doc_id


class StaleRevisionError(StoreError):
    """A conditional write was based on an outdated revision."""

    def __init__(self, collection: str, doc_id: str, expected: int, actual: int):
        super().__init__(
            f"Stale write to {collection}/{doc_id}: expected revision {expected}, found {actual}"
        )
        self.collection = collection
        self.doc_id = doc_id
        self.expected = expected
        self.actual = actual


class TransactionConflictError(StoreError):
    """A transaction kept losing races until it ran out of attempts."""


# =============================================================================
# Snapshots and subscriptions
# =============================================================================

@dataclass
class Snapshot:
    """Point-in-time copy of one document."""
    collection: str
    id: str
    data: dict[str, Any]
    revision: int


@dataclass
class QuerySnapshot:
    """Result set of a query subscription."""
    documents: list[Snapshot]
    # Documents touched by the write that triggered this delivery
    changes: list[Snapshot] = field(default_factory=list)


SnapshotCallback = Callable[[Snapshot | None], Any]
QueryCallback = Callable[[QuerySnapshot], Any]
ErrorCallback = Callable[[Exception], Any]


@dataclass(eq=False)
class _Listener:
    collection: str
    doc_id: str | None
    on_update: Callable[[Any], Any]
    on_error: ErrorCallback | None = None
    # Query listeners only
    field_name: str | None = None
    value: Any = None
    known_ids: set[str] = field(default_factory=set)
    active: bool = True


class Subscription:
    """Handle returned by subscribe(); call unsubscribe() to stop deliveries."""

    def __init__(self, store: "DocumentStore", listener: _Listener):
        self._store = store
        self._listener = listener

    @property
    def active(self) -> bool:
        return self._listener.active

    def unsubscribe(self) -> None:
        self._store._remove_listener(self._listener)


# =============================================================================
# Store
# =============================================================================

class DocumentStore(ABC):
    """
    Base class for document stores.

    Subclasses implement the storage primitives; this class provides the
    public API, merge semantics, revision checks and subscriber fan-out.
    """

    def __init__(self):
        self._doc_listeners: dict[tuple[str, str], list[_Listener]] = {}
        self._query_listeners: dict[str, list[_Listener]] = {}
        self._pending: set[asyncio.Task] = set()

    # -------------------------------------------------------------------------
    # Storage primitives
    # -------------------------------------------------------------------------

    @abstractmethod
    async def _read(self, collection: str, doc_id: str) -> tuple[dict, int] | None:
        """Return (data, revision) or None."""

    @abstractmethod
    async def _put(self, collection: str, doc_id: str, data: dict) -> int:
        """Create or overwrite a document unconditionally. Returns new revision."""

    @abstractmethod
    async def _replace(
        self,
        collection: str,
        doc_id: str,
        data: dict,
        expected_revision: int
    ) -> int:
        """Overwrite a document only if its revision matches. Returns new revision."""

    @abstractmethod
    async def _remove(
        self,
        collection: str,
        doc_id: str,
        expected_revision: int | None
    ) -> bool:
        """Delete a document. Returns False if it did not exist."""

    @abstractmethod
    async def _scan(self, collection: str) -> list[tuple[str, dict, int]]:
        """Return (id, data, revision) for every document in a collection."""

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get(self, collection: str, doc_id: str) -> Snapshot | None:
        """Read one document."""
        found = await self._read(collection, doc_id)
        if found is None:
            return None
        data, revision = found
        return Snapshot(collection, doc_id, copy.deepcopy(data), revision)

    async def query(self, collection: str, field_name: str, value: Any) -> list[Snapshot]:
        """Return every document whose top-level field equals value."""
        rows = await self._scan(collection)
        return [
            Snapshot(collection, doc_id, copy.deepcopy(data), revision)
            for doc_id, data, revision in rows
            if data.get(field_name) == value
        ]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def set(self, collection: str, doc_id: str, data: dict) -> Snapshot:
        """Create or overwrite a document."""
        revision = await self._put(collection, doc_id, copy.deepcopy(data))
        snapshot = Snapshot(collection, doc_id, copy.deepcopy(data), revision)
        self._notify(collection, doc_id, snapshot)
        return snapshot

    async def add(self, collection: str, data: dict) -> Snapshot:
        """Create a document with a generated id."""
        return await self.set(collection, str(uuid.uuid4()), data)

    async def update(
        self,
        collection: str,
        doc_id: str,
        fields: dict,
        expected_revision: int | None = None
    ) -> Snapshot:
        """
        Merge top-level fields into an existing document.

        Without expected_revision the write is last-writer-wins at field
        granularity. With it, the write is rejected with StaleRevisionError
        if anyone else wrote the document first.
        """
        while True:
            found = await self._read(collection, doc_id)
            if found is None:
                raise DocumentNotFoundError(collection, doc_id)
            current, revision = found
            if expected_revision is not None and revision != expected_revision:
                raise StaleRevisionError(collection, doc_id, expected_revision, revision)

            merged = copy.deepcopy(current)
            merged.update(copy.deepcopy(fields))

            try:
                new_revision = await self._replace(collection, doc_id, merged, revision)
            except StaleRevisionError:
                if expected_revision is not None:
                    raise
                # Lost a race on an unconditional update; merge onto the newer copy
                continue

            snapshot = Snapshot(collection, doc_id, copy.deepcopy(merged), new_revision)
            self._notify(collection, doc_id, snapshot)
            return snapshot

    async def delete(
        self,
        collection: str,
        doc_id: str,
        expected_revision: int | None = None
    ) -> bool:
        """Delete a document. Returns False if it was already gone."""
        removed = await self._remove(collection, doc_id, expected_revision)
        if removed:
            self._notify(collection, doc_id, None)
        return removed

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def subscribe(
        self,
        collection: str,
        doc_id: str,
        on_update: SnapshotCallback,
        on_error: ErrorCallback | None = None
    ) -> Subscription:
        """
        Watch one document.

        on_update receives the current snapshot right away, then a fresh
        snapshot after every write, and None once the document is deleted.
        """
        listener = _Listener(collection, doc_id, on_update, on_error)
        self._doc_listeners.setdefault((collection, doc_id), []).append(listener)
        self._schedule(self._deliver_initial_document(listener))
        return Subscription(self, listener)

    def subscribe_query(
        self,
        collection: str,
        field_name: str,
        value: Any,
        on_update: QueryCallback,
        on_error: ErrorCallback | None = None
    ) -> Subscription:
        """Watch every document in a collection whose field equals value."""
        listener = _Listener(
            collection, None, on_update, on_error,
            field_name=field_name, value=value,
        )
        self._query_listeners.setdefault(collection, []).append(listener)
        self._schedule(self._deliver_query(listener, None, initial=True))
        return Subscription(self, listener)

    async def drain(self) -> None:
        """Wait until every scheduled delivery has run."""
        while True:
            pending = [task for task in self._pending if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def _remove_listener(self, listener: _Listener) -> None:
        listener.active = False
        if listener.doc_id is not None:
            listeners = self._doc_listeners.get((listener.collection, listener.doc_id), [])
        else:
            listeners = self._query_listeners.get(listener.collection, [])
        if listener in listeners:
            listeners.remove(listener)

    # -------------------------------------------------------------------------
    # Fan-out
    # -------------------------------------------------------------------------

    def _notify(self, collection: str, doc_id: str, snapshot: Snapshot | None) -> None:
        for listener in list(self._doc_listeners.get((collection, doc_id), [])):
            payload = copy.deepcopy(snapshot)
            self._schedule(self._invoke(listener, payload))

        for listener in list(self._query_listeners.get(collection, [])):
            self._schedule(self._deliver_query(listener, doc_id))

    def _schedule(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver_initial_document(self, listener: _Listener) -> None:
        try:
            snapshot = await self.get(listener.collection, listener.doc_id)
        except Exception as e:
            await self._report(listener, e)
            return
        await self._invoke(listener, snapshot)

    async def _deliver_query(
        self,
        listener: _Listener,
        changed_id: str | None,
        initial: bool = False
    ) -> None:
        try:
            documents = await self.query(listener.collection, listener.field_name, listener.value)
        except Exception as e:
            await self._report(listener, e)
            return

        matching_ids = {doc.id for doc in documents}
        if not initial and changed_id not in matching_ids and changed_id not in listener.known_ids:
            return
        listener.known_ids = matching_ids

        if initial:
            changes = list(documents)
        else:
            changes = [doc for doc in documents if doc.id == changed_id]
        await self._invoke(listener, QuerySnapshot(documents=documents, changes=changes))

    async def _invoke(self, listener: _Listener, payload: Any) -> None:
        if not listener.active:
            return
        try:
            result = listener.on_update(payload)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.exception(f"Subscriber for {listener.collection}/{listener.doc_id or '*'} failed: {e}")
            await self._report(listener, e)

    async def _report(self, listener: _Listener, error: Exception) -> None:
        if not listener.on_error:
            return
        try:
            result = listener.on_error(error)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Subscriber error handler failed")
