"""
Pluggable storage backend factory.

Creates the remote document store and the local fallback store based on
configuration. The local backend uses SQLite for both. Hosted backends
register via the ``flowsync.backends`` entry point group.

External backend packages provide a factory function::

    def create_stores(config: SyncConfig) -> StoreBundle:
        ...

and register it in their pyproject.toml::

    [project.entry-points."flowsync.backends"]
    my-backend = "my_package.backend:create_stores"
"""

from typing import NamedTuple

from .config import SyncConfig
from .protocol import LocalStoreProtocol, RemoteStoreProtocol


class StoreBundle(NamedTuple):
    """Storage backends returned by the factory."""
    remote: RemoteStoreProtocol
    local: LocalStoreProtocol

    def close(self) -> None:
        for store in (self.remote, self.local):
            close = getattr(store, "close", None)
            if close is not None:
                close()


def create_stores(config: SyncConfig) -> StoreBundle:
    """
    Create storage backends from configuration.

    For ``backend = "local"`` (default), creates the SQLite DocumentStore
    and LocalStore in the store directory.

    For other values, loads the backend via the ``flowsync.backends`` entry
    point group.
    """
    if config.backend == "local":
        return _create_local_stores(config)
    return _load_backend(config.backend, config)


def _create_local_stores(config: SyncConfig) -> StoreBundle:
    """Create the default local storage backends."""
    from .document_store import DocumentStore
    from .local_store import LocalStore

    store_path = config.path
    return StoreBundle(
        remote=DocumentStore(store_path / "remote.db", batch_limit=config.batch_limit),
        local=LocalStore(store_path / "local.db"),
    )


def _load_backend(name: str, config: SyncConfig) -> StoreBundle:
    """Load a backend by entry point name."""
    from importlib.metadata import entry_points

    eps = entry_points(group="flowsync.backends")
    for ep in eps:
        if ep.name == name:
            factory = ep.load()
            return factory(config)

    available = [ep.name for ep in eps]
    if available:
        raise ValueError(
            f"Unknown backend: {name!r}. Available: {available}"
        )
    raise ValueError(
        f"Unknown backend: {name!r}. No backends registered. "
        f"Install a backend package that provides a 'flowsync.backends' entry point."
    )
