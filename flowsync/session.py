"""
Sync session: owns the stores, the current identity and the open caches.

Each consumer (a view, a CLI command) asks the session for its own cache
and releases it when done. Releasing closes the subscription; pending
debounced writes still flush. ``close()`` drains every pending write before
shutting the caches down.
"""

import logging
from typing import Any, Optional, Union

from .backend import StoreBundle, create_stores
from .collection_cache import CollectionCache
from .config import SyncConfig
from .document_cache import DEFAULT_DEBOUNCE_DELAY, DocumentCache
from .protocol import LocalStoreProtocol, RemoteStoreProtocol
from .types import Identity

logger = logging.getLogger(__name__)

Cache = Union[DocumentCache, CollectionCache]


class SyncSession:
    """Factory and registry for reactive caches bound to one identity."""

    def __init__(
        self,
        remote: RemoteStoreProtocol,
        local: LocalStoreProtocol,
        identity: Optional[Identity] = None,
        *,
        debounce_delay: float = DEFAULT_DEBOUNCE_DELAY,
    ):
        self.remote = remote
        self.local = local
        self._identity = identity
        self._debounce_delay = debounce_delay
        self._caches: list[Cache] = []
        # Released document caches whose debounced write has not settled
        self._released: list[DocumentCache] = []
        self._bundle: Optional[StoreBundle] = None

    @classmethod
    def from_config(cls, config: SyncConfig, identity: Optional[Identity] = None) -> "SyncSession":
        """Open the configured backend; ``identity`` overrides the configured one."""
        bundle = create_stores(config)
        session = cls(
            bundle.remote,
            bundle.local,
            identity if identity is not None else config.identity,
            debounce_delay=config.debounce_delay,
        )
        session._bundle = bundle
        return session

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    def set_identity(self, identity: Optional[Identity]) -> None:
        """Switch identity (sign-in / sign-out) and re-bind every open cache."""
        if identity == self._identity:
            return
        logger.info("Identity changed: %s", identity.id if identity else "(none)")
        self._identity = identity
        for cache in self._caches:
            cache.set_identity(identity)

    def document(self, path: str, default: Any = None) -> DocumentCache:
        cache = DocumentCache(
            path,
            default,
            remote=self.remote,
            local=self.local,
            identity=self._identity,
            debounce_delay=self._debounce_delay,
        )
        self._caches.append(cache)
        return cache

    def collection(self, path: str, order_by: Optional[str] = None) -> CollectionCache:
        cache = CollectionCache(
            path,
            remote=self.remote,
            local=self.local,
            identity=self._identity,
            order_by=order_by,
        )
        self._caches.append(cache)
        return cache

    def release(self, cache: Cache) -> None:
        """Close a cache whose consumer is gone."""
        if cache in self._caches:
            self._caches.remove(cache)
        cache.close()
        if isinstance(cache, DocumentCache) and cache.pending:
            self._released.append(cache)

    @property
    def open_caches(self) -> int:
        return len(self._caches)

    async def close(self) -> None:
        """Flush pending writes, close all caches and the owned stores."""
        for cache in list(self._caches):
            if isinstance(cache, DocumentCache):
                await cache.drain()
            cache.close()
        self._caches.clear()
        for cache in self._released:
            await cache.drain()
        self._released.clear()
        if self._bundle is not None:
            self._bundle.close()
            self._bundle = None
