"""
Document store using SQLite.

A self-hosted stand-in for the hosted real-time document database. Stores
JSON documents keyed by physical address and notifies in-process
subscribers when documents change.

The store is the reference implementation of RemoteStoreProtocol:
- Documents live at even-length addresses (container/id/container/id...)
- Collections are the set of documents sharing a parent address
- ``set_document(merge=True)`` deep-merges nested maps, like the hosted store
- Batches commit in a single SQLite transaction, up to ``batch_limit`` ops

Subscriber callbacks are scheduled on the running event loop, never invoked
inside the write call, so writers observe the same asynchronous delivery as
with the hosted store.
"""

import asyncio
import copy
import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from .errors import BatchLimitError, RemoteStoreError
from .paths import address_to_str, parent_collection
from .protocol import (
    Address,
    CollectionCallback,
    DocumentCallback,
    ErrorCallback,
    Unsubscribe,
)
from .types import DocumentSnapshot

logger = logging.getLogger(__name__)

DEFAULT_BATCH_LIMIT = 500


def merge_data(existing: dict[str, Any], update: dict[str, Any]) -> dict[str, Any]:
    """Deep-merge ``update`` into a copy of ``existing``.

    Nested maps merge key by key; any other value (lists included)
    replaces the existing one. Fields absent from ``update`` are kept.
    """
    merged = copy.deepcopy(existing)
    for key, value in update.items():
        current = merged.get(key)
        if isinstance(value, dict) and isinstance(current, dict):
            merged[key] = merge_data(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _sort_key(snapshot: DocumentSnapshot, field: str):
    """Order key for ``order_by``: documents missing the field sort first."""
    value = (snapshot.data or {}).get(field)
    if value is None:
        return (0, "", snapshot.id)
    if isinstance(value, (int, float)):
        return (1, value, snapshot.id)
    return (2, str(value), snapshot.id)


def _check_document_address(address: Address) -> None:
    if len(address) < 2 or len(address) % 2 != 0:
        raise ValueError(f"Not a document address: {address_to_str(address)!r}")


def _check_collection_address(address: Address) -> None:
    if not address or len(address) % 2 != 1:
        raise ValueError(f"Not a collection address: {address_to_str(address)!r}")


@dataclass
class _Listener:
    """One active subscription."""
    kind: str  # "document" or "collection"
    address: Address
    on_change: Any
    on_error: Optional[ErrorCallback]
    order_by: Optional[str] = None
    active: bool = True


class DocumentBatch:
    """
    Write batch for DocumentStore.

    Operations are buffered and applied in one transaction on commit.
    """

    def __init__(self, store: "DocumentStore"):
        self._store = store
        self._ops: list[tuple[str, Address, Optional[dict], bool]] = []
        self._committed = False

    def set(self, address: Address, data: dict[str, Any], *, merge: bool = False) -> None:
        _check_document_address(address)
        self._ops.append(("set", address, copy.deepcopy(data), merge))

    def delete(self, address: Address) -> None:
        _check_document_address(address)
        self._ops.append(("delete", address, None, False))

    def __len__(self) -> int:
        return len(self._ops)

    async def commit(self) -> None:
        if self._committed:
            raise RemoteStoreError("Batch already committed")
        if len(self._ops) > self._store.batch_limit:
            raise BatchLimitError(
                f"Batch has {len(self._ops)} operations; limit is {self._store.batch_limit}"
            )
        self._store._apply(self._ops)
        self._committed = True


class DocumentStore:
    """
    SQLite-backed real-time document store.

    Implements RemoteStoreProtocol for local use and tests.
    """

    def __init__(self, store_path: Path, *, batch_limit: int = DEFAULT_BATCH_LIMIT):
        """
        Args:
            store_path: Path to SQLite database file
            batch_limit: Maximum operations per write batch
        """
        self._db_path = store_path
        self.batch_limit = batch_limit
        self._conn: Optional[sqlite3.Connection] = None
        self._listeners: list[_Listener] = []
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                path TEXT PRIMARY KEY,
                parent TEXT NOT NULL,
                doc_id TEXT NOT NULL,
                data_json TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        # Index for collection queries
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_documents_parent
            ON documents(parent)
        """)

        self._conn.commit()

    def _now(self) -> str:
        """Current timestamp in ISO format."""
        return datetime.now(timezone.utc).isoformat()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _read_document(self, address: Address) -> DocumentSnapshot:
        try:
            row = self._conn.execute(
                "SELECT data_json FROM documents WHERE path = ?",
                (address_to_str(address),),
            ).fetchone()
        except sqlite3.Error as e:
            raise RemoteStoreError(f"Read failed for {address_to_str(address)}: {e}") from e
        data = json.loads(row["data_json"]) if row is not None else None
        return DocumentSnapshot(id=address[-1], data=data)

    def _read_collection(self, address: Address, order_by: Optional[str]) -> list[DocumentSnapshot]:
        try:
            rows = self._conn.execute(
                "SELECT doc_id, data_json FROM documents WHERE parent = ? ORDER BY doc_id",
                (address_to_str(address),),
            ).fetchall()
        except sqlite3.Error as e:
            raise RemoteStoreError(f"Read failed for {address_to_str(address)}: {e}") from e
        snapshots = [DocumentSnapshot(id=row["doc_id"], data=json.loads(row["data_json"])) for row in rows]
        if order_by:
            snapshots.sort(key=lambda s: _sort_key(s, order_by))
        return snapshots

    async def get_document(self, address: Address) -> DocumentSnapshot:
        """One-time read of a document; ``data`` is None if it does not exist."""
        _check_document_address(address)
        return self._read_document(address)

    async def get_collection(
        self,
        address: Address,
        *,
        order_by: Optional[str] = None,
    ) -> list[DocumentSnapshot]:
        """One-time read of every document in a collection."""
        _check_collection_address(address)
        return self._read_collection(address, order_by)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def set_document(
        self,
        address: Address,
        data: dict[str, Any],
        *,
        merge: bool = False,
    ) -> None:
        """Write a document. With ``merge`` unspecified fields are preserved."""
        _check_document_address(address)
        self._apply([("set", address, copy.deepcopy(data), merge)])

    async def delete_document(self, address: Address) -> None:
        _check_document_address(address)
        self._apply([("delete", address, None, False)])

    def batch(self) -> DocumentBatch:
        return DocumentBatch(self)

    def _apply(self, ops: list[tuple[str, Address, Optional[dict], bool]]) -> None:
        """Apply write operations in one transaction, then notify subscribers."""
        now = self._now()
        touched: list[Address] = []
        try:
            with self._conn:
                for kind, address, data, merge in ops:
                    path = address_to_str(address)
                    if kind == "delete":
                        self._conn.execute("DELETE FROM documents WHERE path = ?", (path,))
                    else:
                        row = self._conn.execute(
                            "SELECT data_json, created_at FROM documents WHERE path = ?",
                            (path,),
                        ).fetchone()
                        created_at = row["created_at"] if row else now
                        if merge and row is not None:
                            data = merge_data(json.loads(row["data_json"]), data)
                        self._conn.execute("""
                            INSERT OR REPLACE INTO documents
                            (path, parent, doc_id, data_json, created_at, updated_at)
                            VALUES (?, ?, ?, ?, ?, ?)
                        """, (
                            path,
                            address_to_str(parent_collection(address)),
                            address[-1],
                            json.dumps(data, ensure_ascii=False),
                            created_at,
                            now,
                        ))
                    touched.append(address)
        except sqlite3.Error as e:
            raise RemoteStoreError(f"Write failed: {e}") from e
        self._notify(touched)

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def subscribe_document(
        self,
        address: Address,
        on_change: DocumentCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        _check_document_address(address)
        return self._add_listener(_Listener("document", address, on_change, on_error))

    def subscribe_collection(
        self,
        address: Address,
        on_change: CollectionCallback,
        on_error: Optional[ErrorCallback] = None,
        *,
        order_by: Optional[str] = None,
    ) -> Unsubscribe:
        _check_collection_address(address)
        return self._add_listener(
            _Listener("collection", address, on_change, on_error, order_by=order_by)
        )

    def _add_listener(self, listener: _Listener) -> Unsubscribe:
        self._listeners.append(listener)
        self._schedule(listener)

        def unsubscribe() -> None:
            listener.active = False
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, touched: list[Address]) -> None:
        documents = set(touched)
        collections = {parent_collection(address) for address in touched}
        for listener in list(self._listeners):
            if listener.kind == "document" and listener.address in documents:
                self._schedule(listener)
            elif listener.kind == "collection" and listener.address in collections:
                self._schedule(listener)

    def _schedule(self, listener: _Listener) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; dropping event for %s", address_to_str(listener.address))
            return
        loop.call_soon(self._deliver, listener)

    def _deliver(self, listener: _Listener) -> None:
        """Read current state and hand it to the listener (if still subscribed)."""
        if not listener.active:
            return
        try:
            if listener.kind == "document":
                payload = self._read_document(listener.address)
            else:
                payload = self._read_collection(listener.address, listener.order_by)
        except RemoteStoreError as e:
            if listener.on_error is not None:
                listener.on_error(e)
            else:
                logger.error("Subscription error for %s: %s", address_to_str(listener.address), e)
            return
        listener.on_change(payload)

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        for listener in self._listeners:
            listener.active = False
        self._listeners.clear()
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        self.close()
