"""
In-process document store.

Used by tests and single-process deployments. Each primitive runs without
yielding to the event loop, so a conditional write is atomic relative to
every other coroutine.
"""

from server.store.base import DocumentNotFoundError, DocumentStore, StaleRevisionError


class InMemoryDocumentStore(DocumentStore):
    """Dictionary-backed DocumentStore."""

    def __init__(self):
        super().__init__()
        # collection -> doc_id -> (data, revision)
        self._documents: dict[str, dict[str, tuple[dict, int]]] = {}

    async def _read(self, collection: str, doc_id: str) -> tuple[dict, int] | None:
        return self._documents.get(collection, {}).get(doc_id)

    async def _put(self, collection: str, doc_id: str, data: dict) -> int:
        documents = self._documents.setdefault(collection, {})
        previous = documents.get(doc_id)
        revision = previous[1] + 1 if previous else 1
        documents[doc_id] = (data, revision)
        return revision

    async def _replace(
        self,
        collection: str,
        doc_id: str,
        data: dict,
        expected_revision: int
    ) -> int:
        documents = self._documents.get(collection, {})
        current = documents.get(doc_id)
        if current is None:
            raise DocumentNotFoundError(collection, doc_id)
        if current[1] != expected_revision:
            raise StaleRevisionError(collection, doc_id, expected_revision, current[1])
        documents[doc_id] = (data, expected_revision + 1)
        return expected_revision + 1

    async def _remove(
        self,
        collection: str,
        doc_id: str,
        expected_revision: int | None
    ) -> bool:
        documents = self._documents.get(collection, {})
        current = documents.get(doc_id)
        if current is None:
            return False
        if expected_revision is not None and current[1] != expected_revision:
            raise StaleRevisionError(collection, doc_id, expected_revision, current[1])
        del documents[doc_id]
        return True

    async def _scan(self, collection: str) -> list[tuple[str, dict, int]]:
        return [
            (doc_id, data, revision)
            for doc_id, (data, revision) in self._documents.get(collection, {}).items()
        ]
