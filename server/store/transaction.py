"""
Optimistic read-modify-write transactions over a DocumentStore.

A transaction reads a snapshot, lets the caller compute the changes, and
commits them conditioned on the revision it read. If another client wrote
first, the commit is rejected and the whole cycle runs again on fresh data.
"""

import copy
import logging
from dataclasses import dataclass
from typing import Callable

from server.config import settings
from server.store.base import (
    DocumentNotFoundError,
    DocumentStore,
    Snapshot,
    StaleRevisionError,
    TransactionConflictError,
)


logger = logging.getLogger(__name__)


class _DeleteDocument:
    def __repr__(self) -> str:
        return "DELETE_DOCUMENT"


# Return this from a mutator to delete the document instead of updating it
DELETE_DOCUMENT = _DeleteDocument()

# Mutators receive a private copy of the document data and return the
# top-level fields to write, DELETE_DOCUMENT, or None to abort without writing
Mutator = Callable[[dict], "dict | _DeleteDocument | None"]


@dataclass
class TransactionResult:
    """Outcome of run_transaction."""
    committed: bool
    # Document after the commit, or the last snapshot read if nothing was written
    snapshot: Snapshot | None
    deleted: bool = False
    attempts: int = 1

    @property
    def found(self) -> bool:
        return self.snapshot is not None or self.deleted


async def run_transaction(
    store: DocumentStore,
    collection: str,
    doc_id: str,
    mutate: Mutator,
    max_attempts: int | None = None
) -> TransactionResult:
    """
    Apply mutate to a document with optimistic concurrency control.

    A missing document is not an error: the result has committed=False and
    snapshot=None, and the mutator is never called.
    """
    max_attempts = max_attempts or settings.TRANSACTION_MAX_ATTEMPTS

    for attempt in range(1, max_attempts + 1):
        snapshot = await store.get(collection, doc_id)
        if snapshot is None:
            return TransactionResult(committed=False, snapshot=None, attempts=attempt)

        changes = mutate(copy.deepcopy(snapshot.data))
        if changes is None:
            return TransactionResult(committed=False, snapshot=snapshot, attempts=attempt)

        try:
            if changes is DELETE_DOCUMENT:
                deleted = await store.delete(collection, doc_id, expected_revision=snapshot.revision)
                return TransactionResult(
                    committed=deleted, snapshot=None, deleted=deleted, attempts=attempt
                )

            updated = await store.update(
                collection, doc_id, changes, expected_revision=snapshot.revision
            )
            return TransactionResult(committed=True, snapshot=updated, attempts=attempt)

        except StaleRevisionError as e:
            logger.debug(f"Transaction on {collection}/{doc_id} lost a race (attempt {attempt}): {e}")
        except DocumentNotFoundError:
            return TransactionResult(committed=False, snapshot=None, attempts=attempt)

    raise TransactionConflictError(
        f"Gave up on {collection}/{doc_id} after {max_attempts} conflicting attempts"
    )
