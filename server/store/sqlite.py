"""
SQLite-backed document store.

Documents are stored as JSON with a revision column; conditional writes are
a single UPDATE guarded by the expected revision. Blocking sqlite calls run
in worker threads so the event loop is never held up.
"""

import asyncio
import json
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from server.config import settings
from server.store.base import DocumentNotFoundError, DocumentStore, StaleRevisionError


class Database:
    """
    Thread-safe SQLite database manager.

    Hands out one connection per thread and initializes the schema once.
    """

    def __init__(self, db_path: str | Path | None = None):
        self.db_path = str(db_path or settings.DATABASE_PATH)
        self._local = threading.local()
        self._init_lock = threading.Lock()
        self._initialized = False
        self._ensure_directory()
        self._ensure_schema()

    def _ensure_directory(self) -> None:
        """Create database directory if it doesn't exist."""
        db_file = Path(self.db_path)
        db_file.parent.mkdir(parents=True, exist_ok=True)

    def _ensure_schema(self) -> None:
        """Initialize database schema (once per instance)."""
        with self._init_lock:
            if not self._initialized:
                with self.get_connection() as conn:
                    conn.executescript(SCHEMA_SQL)
                self._initialized = True

    @contextmanager
    def get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Get a thread-local database connection.

        Usage:
            with db.get_connection() as conn:
                cursor = conn.execute("SELECT ...")
        """
        if getattr(self._local, "connection", None) is None:
            self._local.connection = self._create_connection()

        conn = self._local.connection
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def _create_connection(self) -> sqlite3.Connection:
        """Create a new database connection with optimal settings."""
        conn = sqlite3.connect(
            self.db_path,
            check_same_thread=False,
            timeout=30.0
        )

        # Use WAL mode for better concurrent access
        conn.execute("PRAGMA journal_mode = WAL")

        conn.row_factory = sqlite3.Row
        return conn

    def close_connection(self) -> None:
        """Close the current thread's connection."""
        connection = getattr(self._local, "connection", None)
        if connection is not None:
            connection.close()
            self._local.connection = None


SCHEMA_SQL = """
-- Documents table: one row per document, JSON body plus revision counter
CREATE TABLE IF NOT EXISTS documents (
    collection TEXT NOT NULL,
    id TEXT NOT NULL,
    data_json TEXT NOT NULL,
    revision INTEGER NOT NULL DEFAULT 1,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,

    PRIMARY KEY (collection, id)
);

CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection);
"""


class SqliteDocumentStore(DocumentStore):
    """DocumentStore persisted in a SQLite database."""

    def __init__(self, database: Database | None = None):
        super().__init__()
        self.db = database or Database()

    # -------------------------------------------------------------------------
    # Async primitives
    # -------------------------------------------------------------------------

    async def _read(self, collection: str, doc_id: str) -> tuple[dict, int] | None:
        return await asyncio.to_thread(self._read_sync, collection, doc_id)

    async def _put(self, collection: str, doc_id: str, data: dict) -> int:
        return await asyncio.to_thread(self._put_sync, collection, doc_id, data)

    async def _replace(
        self,
        collection: str,
        doc_id: str,
        data: dict,
        expected_revision: int
    ) -> int:
        return await asyncio.to_thread(
            self._replace_sync, collection, doc_id, data, expected_revision
        )

    async def _remove(
        self,
        collection: str,
        doc_id: str,
        expected_revision: int | None
    ) -> bool:
        return await asyncio.to_thread(self._remove_sync, collection, doc_id, expected_revision)

    async def _scan(self, collection: str) -> list[tuple[str, dict, int]]:
        return await asyncio.to_thread(self._scan_sync, collection)

    # -------------------------------------------------------------------------
    # Blocking implementations
    # -------------------------------------------------------------------------

    def _read_sync(self, collection: str, doc_id: str) -> tuple[dict, int] | None:
        with self.db.get_connection() as conn:
            row = conn.execute(
                "SELECT data_json, revision FROM documents WHERE collection = ? AND id = ?",
                (collection, doc_id)
            ).fetchone()
        if row is None:
            return None
        return json.loads(row["data_json"]), row["revision"]

    def _put_sync(self, collection: str, doc_id: str, data: dict) -> int:
        with self.db.get_connection() as conn:
            conn.execute(
                """
                INSERT INTO documents (collection, id, data_json, revision)
                VALUES (?, ?, ?, 1)
                ON CONFLICT (collection, id) DO UPDATE SET
                    data_json = excluded.data_json,
                    revision = documents.revision + 1,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (collection, doc_id, json.dumps(data))
            )
            row = conn.execute(
                "SELECT revision FROM documents WHERE collection = ? AND id = ?",
                (collection, doc_id)
            ).fetchone()
        return row["revision"]

    def _replace_sync(
        self,
        collection: str,
        doc_id: str,
        data: dict,
        expected_revision: int
    ) -> int:
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE documents
                SET data_json = ?,
                    revision = revision + 1,
                    updated_at = CURRENT_TIMESTAMP
                WHERE collection = ? AND id = ? AND revision = ?
                """,
                (json.dumps(data), collection, doc_id, expected_revision)
            )
            if cursor.rowcount == 0:
                row = conn.execute(
                    "SELECT revision FROM documents WHERE collection = ? AND id = ?",
                    (collection, doc_id)
                ).fetchone()
                if row is None:
                    raise DocumentNotFoundError(collection, doc_id)
                raise StaleRevisionError(collection, doc_id, expected_revision, row["revision"])
        return expected_revision + 1

    def _remove_sync(self, collection: str, doc_id: str, expected_revision: int | None) -> bool:
        with self.db.get_connection() as conn:
            if expected_revision is None:
                cursor = conn.execute(
                    "DELETE FROM documents WHERE collection = ? AND id = ?",
                    (collection, doc_id)
                )
                return cursor.rowcount > 0

            cursor = conn.execute(
                "DELETE FROM documents WHERE collection = ? AND id = ? AND revision = ?",
                (collection, doc_id, expected_revision)
            )
            if cursor.rowcount > 0:
                return True
            row = conn.execute(
                "SELECT revision FROM documents WHERE collection = ? AND id = ?",
                (collection, doc_id)
            ).fetchone()
            if row is None:
                return False
            raise StaleRevisionError(collection, doc_id, expected_revision, row["revision"])

    def _scan_sync(self, collection: str) -> list[tuple[str, dict, int]]:
        with self.db.get_connection() as conn:
            rows = conn.execute(
                "SELECT id, data_json, revision FROM documents WHERE collection = ? ORDER BY created_at",
                (collection,)
            ).fetchall()
        return [(row["id"], json.loads(row["data_json"]), row["revision"]) for row in rows]
