"""
Reactive cache for a planner collection (tasks, routines, daily reads).

Items are plain dicts carrying their document id under ``"id"``. Each
subscription event replaces ``items`` wholesale. Mutations are optimistic:

- ``add`` appends immediately and rolls back if the remote write fails
- ``update`` patches immediately (stamped with ``updatedAt``); a failed write
  is left for the next subscription event to reconcile
- ``remove`` drops the item immediately; a failed delete is not restored

Without an identity all three mutate the local fallback store synchronously.
"""

import json
import logging
import sqlite3
from typing import Any, Callable, Optional

from .errors import RemoteStoreError
from .paths import collection_address, is_valid_item_id, item_address, local_collection_key
from .protocol import LocalStoreProtocol, RemoteStoreProtocol, Unsubscribe
from .types import DocumentSnapshot, Identity, now_ms

logger = logging.getLogger(__name__)

Listener = Callable[["CollectionCache"], None]

_last_id = 0


def new_entry_id() -> str:
    """Time-based client-side id (epoch ms), strictly increasing per process."""
    global _last_id
    _last_id = max(now_ms(), _last_id + 1)
    return str(_last_id)


class CollectionCache:
    """Ordered item list with optimistic add/update/remove for one collection path."""

    def __init__(
        self,
        path: str,
        *,
        remote: RemoteStoreProtocol,
        local: LocalStoreProtocol,
        identity: Optional[Identity] = None,
        order_by: Optional[str] = None,
    ):
        self._path = path
        self._remote = remote
        self._local = local
        self._identity = identity
        self._order_by = order_by

        self.items: list[dict[str, Any]] = []
        self.loading = True

        self._unsubscribe: Optional[Unsubscribe] = None
        self._generation = 0
        self._listeners: list[Listener] = []

        self._subscribe()

    @property
    def path(self) -> str:
        return self._path

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    def set_identity(self, identity: Optional[Identity]) -> None:
        """Re-bind the cache after sign-in or sign-out."""
        if identity == self._identity:
            return
        self._identity = identity
        self.items = []
        self.loading = True
        self._subscribe()

    # -------------------------------------------------------------------------
    # Subscription
    # -------------------------------------------------------------------------

    def _subscribe(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._generation += 1
        generation = self._generation

        if self._identity is None:
            self.items = self._read_local()
            self.loading = False
            self._notify()
            return

        self._unsubscribe = self._remote.subscribe_collection(
            self._address(),
            lambda snapshots: self._on_snapshot(generation, snapshots),
            lambda error: self._on_error(generation, error),
            order_by=self._order_by,
        )

    def _address(self) -> tuple[str, ...]:
        return collection_address(self._identity, self._path)

    def _read_local(self) -> list[dict[str, Any]]:
        try:
            saved = self._local.get(local_collection_key(self._path))
            if saved:
                return json.loads(saved)
        except (json.JSONDecodeError, sqlite3.Error) as e:
            logger.warning("Local store read error for %s: %s", self._path, e)
        return []

    def _write_local(self) -> None:
        self._local.set(local_collection_key(self._path), json.dumps(self.items))

    def _on_snapshot(self, generation: int, snapshots: list[DocumentSnapshot]) -> None:
        if generation != self._generation:
            return
        self.items = [{"id": s.id, **(s.data or {})} for s in snapshots]
        self.loading = False
        self._notify()

    def _on_error(self, generation: int, error: Exception) -> None:
        if generation != self._generation:
            return
        logger.error("Collection subscription error for %s: %s", self._path, error)
        self.loading = False
        self._notify()

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def add(self, data: dict[str, Any], id: Optional[str] = None) -> Optional[str]:
        """
        Add an item, returning its id (None if the id is invalid or the remote
        write failed).

        Args:
            data: Item fields (``createdAt`` defaults to now, epoch ms)
            id: Caller-supplied id; a time-based id is generated otherwise
        """
        item_id = id or new_entry_id()
        if not is_valid_item_id(item_id):
            logger.error("Add rejected for %s: invalid id %r", self._path, item_id)
            return None
        fields = {**data, "createdAt": data.get("createdAt") or now_ms()}
        entry = {"id": item_id, **fields}

        if self._identity is None:
            self.items = [*self.items, entry]
            self._write_local()
            self._notify()
            return item_id

        # Optimistic
        self.items = [*self.items, entry]
        self._notify()

        try:
            await self._remote.set_document(item_address(self._address(), item_id), fields)
            logger.debug("Added to %s: %s", self._path, item_id)
            return item_id
        except RemoteStoreError as e:
            logger.error("Add failed for %s/%s: %s", self._path, item_id, e)
            self.items = [item for item in self.items if item["id"] != item_id]
            self._notify()
            return None

    async def update(self, id: str, patch: dict[str, Any]) -> None:
        """Patch an item in place; failures are left to the next event to reconcile."""
        if not is_valid_item_id(id):
            logger.error("Update rejected for %s: invalid id %r", self._path, id)
            return
        stamped = {**patch, "updatedAt": now_ms()}
        self.items = [
            {**item, **stamped} if item["id"] == id else item
            for item in self.items
        ]
        self._notify()

        if self._identity is None:
            self._write_local()
            return

        try:
            await self._remote.set_document(item_address(self._address(), id), stamped, merge=True)
            logger.debug("Updated %s/%s", self._path, id)
        except RemoteStoreError as e:
            logger.error("Update failed for %s/%s: %s", self._path, id, e)

    async def remove(self, id: str) -> None:
        """Remove an item; a failed remote delete is not restored."""
        if not is_valid_item_id(id):
            logger.error("Delete rejected for %s: invalid id %r", self._path, id)
            return
        self.items = [item for item in self.items if item["id"] != id]
        self._notify()

        if self._identity is None:
            self._write_local()
            return

        try:
            await self._remote.delete_document(item_address(self._address(), id))
            logger.debug("Deleted %s/%s", self._path, id)
        except RemoteStoreError as e:
            logger.error("Delete failed for %s/%s: %s", self._path, id, e)

    # -------------------------------------------------------------------------
    # Consumers
    # -------------------------------------------------------------------------

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(cache)`` after every change to items or loading."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    def close(self) -> None:
        """Cancel the subscription."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._generation += 1
        self._listeners.clear()
