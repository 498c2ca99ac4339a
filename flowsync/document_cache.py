"""
Reactive cache for a single planner document.

A DocumentCache holds the live value of one logical path. With an identity
it mirrors the remote document through a subscription; without one it reads
and writes the local fallback store.

Writes are optimistic and debounced:

- ``write(value)`` updates ``value`` immediately and raises the
  write-pending lock
- the remote write is scheduled ``debounce_delay`` seconds later; a newer
  write cancels and replaces the scheduled one, so only the latest value
  is ever sent
- while the lock is held, subscription events are ignored so the echo of
  an older value never clobbers a local edit
- the lock is released once the flush settles (success or failure)

Switching paths keeps the previously displayed value until the first event
for the new path arrives (``loading`` is True in between).
"""

import asyncio
import copy
import json
import logging
import sqlite3
from typing import Any, Callable, Optional

from .errors import RemoteStoreError
from .paths import document_address, local_document_key
from .protocol import LocalStoreProtocol, RemoteStoreProtocol, Unsubscribe
from .types import DocumentSnapshot, Identity

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_DELAY = 0.8  # seconds

Listener = Callable[["DocumentCache"], None]


class DocumentCache:
    """Live value, loading flag and debounced write queue for one document path."""

    def __init__(
        self,
        path: str,
        default: Any = None,
        *,
        remote: RemoteStoreProtocol,
        local: LocalStoreProtocol,
        identity: Optional[Identity] = None,
        debounce_delay: float = DEFAULT_DEBOUNCE_DELAY,
    ):
        self._remote = remote
        self._local = local
        self._identity = identity
        self._debounce_delay = debounce_delay
        self._default = default

        self._path: Optional[str] = None
        self.value: Any = copy.deepcopy(default)
        self.loading = True

        # Write-pending lock: while True, subscription events are dropped
        self._write_pending = False

        self._unsubscribe: Optional[Unsubscribe] = None
        # Bumped on every (re)subscribe so late events from an old
        # subscription are recognized and dropped
        self._generation = 0

        self._flush_handle: Optional[asyncio.TimerHandle] = None
        self._scheduled: Optional[tuple[Any, str, Optional[Identity]]] = None
        self._flush_tasks: set[asyncio.Task] = set()

        self._listeners: list[Listener] = []
        self._closed = False

        self.open(path)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def path(self) -> Optional[str]:
        return self._path

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    @property
    def pending(self) -> bool:
        """True while a local write has not yet settled remotely."""
        return self._write_pending

    # -------------------------------------------------------------------------
    # Subscription
    # -------------------------------------------------------------------------

    def open(self, path: str, default: Any = ...) -> None:
        """Point the cache at ``path`` (no-op resubscribe if unchanged).

        The displayed value is retained until the new path delivers data.
        """
        if default is not ...:
            self._default = default
        path_changed = path != self._path
        self._path = path
        if path_changed:
            self._write_pending = False
            self.loading = True
        self._closed = False
        self._subscribe()

    def set_identity(self, identity: Optional[Identity]) -> None:
        """Re-bind the cache after sign-in or sign-out."""
        if identity == self._identity:
            return
        self._identity = identity
        self._write_pending = False
        self.loading = True
        self._subscribe()

    def _subscribe(self) -> None:
        self._drop_subscription()
        self._generation += 1
        generation = self._generation

        if self._identity is None:
            self.value = self._read_local()
            self.loading = False
            self._notify()
            return

        address = document_address(self._identity, self._path)
        self._unsubscribe = self._remote.subscribe_document(
            address,
            lambda snapshot: self._on_snapshot(generation, snapshot),
            lambda error: self._on_error(generation, error),
        )
        self._notify()

    def _drop_subscription(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _read_local(self) -> Any:
        try:
            saved = self._local.get(local_document_key(self._path))
            if saved:
                return json.loads(saved)
        except (json.JSONDecodeError, sqlite3.Error) as e:
            logger.warning("Local store read error for %s: %s", self._path, e)
        return copy.deepcopy(self._default)

    def _on_snapshot(self, generation: int, snapshot: DocumentSnapshot) -> None:
        if generation != self._generation:
            return
        if self._write_pending:
            # Local optimistic value wins until the in-flight write settles
            logger.debug("Ignoring event for %s while write pending", self._path)
            return
        if snapshot.exists:
            self.value = snapshot.data
        else:
            self.value = copy.deepcopy(self._default)
        self.loading = False
        self._notify()

    def _on_error(self, generation: int, error: Exception) -> None:
        if generation != self._generation:
            return
        logger.error("Subscription error for %s: %s", self._path, error)
        self.loading = False
        self._notify()

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def write(self, value: Any) -> None:
        """Set the value now and schedule a debounced remote write.

        Must be called from within a running event loop.
        """
        self._write_pending = True
        self.value = value
        self._notify()

        if self._flush_handle is not None:
            self._flush_handle.cancel()

        loop = asyncio.get_running_loop()
        self._scheduled = (value, self._path, self._identity)
        self._flush_handle = loop.call_later(self._debounce_delay, self._start_flush)

    def _start_flush(self) -> asyncio.Task:
        value, path, identity = self._scheduled
        self._flush_handle = None
        self._scheduled = None
        task = asyncio.ensure_future(self._flush(value, path, identity))
        self._flush_tasks.add(task)
        task.add_done_callback(self._flush_tasks.discard)
        return task

    async def _flush(self, value: Any, path: str, identity: Optional[Identity]) -> None:
        try:
            if value is None:
                return
            if identity is None:
                self._local.set(local_document_key(path), json.dumps(value))
            else:
                await self._remote.set_document(
                    document_address(identity, path), value, merge=True,
                )
            logger.debug("Saved: %s", path)
        except (RemoteStoreError, sqlite3.Error, TypeError, ValueError) as e:
            logger.error("Save failed for %s: %s", path, e)
        finally:
            # A newer write already scheduled keeps the lock
            if path == self._path and self._flush_handle is None:
                self._write_pending = False

    async def drain(self) -> None:
        """Flush a scheduled write immediately and wait for in-flight writes."""
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._start_flush()
        if self._flush_tasks:
            await asyncio.gather(*list(self._flush_tasks))

    # -------------------------------------------------------------------------
    # Consumers
    # -------------------------------------------------------------------------

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(cache)`` after every value or loading change."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    def close(self) -> None:
        """Stop listening for changes.

        A write already scheduled still flushes with the value it captured.
        """
        self._drop_subscription()
        self._generation += 1
        self._listeners.clear()
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed
