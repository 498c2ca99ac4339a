"""
Protocol definitions for the storage boundaries.

Defines interface contracts for the three external collaborators:
- RemoteStoreProtocol: real-time document/collection store (hosted, or the
  SQLite DocumentStore locally)
- LocalStoreProtocol: synchronous key/value fallback used without a session
- BackupRepositoryProtocol: git object-model API of the backup repository
"""

from typing import Any, Callable, Optional, Protocol, runtime_checkable

from .types import DocumentSnapshot, RepoTreeItem, TreeEntry

Address = tuple[str, ...]
Unsubscribe = Callable[[], None]
ErrorCallback = Callable[[Exception], None]
DocumentCallback = Callable[[DocumentSnapshot], None]
CollectionCallback = Callable[[list[DocumentSnapshot]], None]


@runtime_checkable
class WriteBatchProtocol(Protocol):
    """Atomic group of writes, committed together."""

    def set(self, address: Address, data: dict[str, Any], *, merge: bool = False) -> None: ...

    def delete(self, address: Address) -> None: ...

    def __len__(self) -> int: ...

    async def commit(self) -> None: ...


@runtime_checkable
class RemoteStoreProtocol(Protocol):
    """
    Real-time document store.

    Subscription callbacks run on the event loop after the subscribe call
    returns; the first event carries the current state.
    """

    batch_limit: int

    def subscribe_document(
        self,
        address: Address,
        on_change: DocumentCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe: ...

    def subscribe_collection(
        self,
        address: Address,
        on_change: CollectionCallback,
        on_error: Optional[ErrorCallback] = None,
        *,
        order_by: Optional[str] = None,
    ) -> Unsubscribe: ...

    async def get_document(self, address: Address) -> DocumentSnapshot: ...

    async def get_collection(
        self,
        address: Address,
        *,
        order_by: Optional[str] = None,
    ) -> list[DocumentSnapshot]: ...

    async def set_document(
        self,
        address: Address,
        data: dict[str, Any],
        *,
        merge: bool = False,
    ) -> None: ...

    async def delete_document(self, address: Address) -> None: ...

    def batch(self) -> WriteBatchProtocol: ...


@runtime_checkable
class LocalStoreProtocol(Protocol):
    """Synchronous string key/value store (browser localStorage equivalent)."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...


@runtime_checkable
class BackupRepositoryProtocol(Protocol):
    """
    Git object-model operations on one backup repository.

    Implemented by GitHubRepository (REST API).
    """

    async def get_default_branch(self) -> str: ...

    async def create_repository(self, *, private: bool = True, auto_init: bool = True) -> str: ...

    async def get_branch_head(self, branch: str) -> Optional[str]: ...

    async def get_commit_tree(self, commit_sha: str) -> str: ...

    async def create_tree(self, entries: list[TreeEntry], *, base_tree: Optional[str] = None) -> str: ...

    async def create_commit(self, message: str, tree_sha: str, parents: list[str]) -> str: ...

    async def create_branch(self, branch: str, sha: str) -> None: ...

    async def update_branch(self, branch: str, sha: str) -> None: ...

    async def list_tree(self, ref: str, *, recursive: bool = True) -> list[RepoTreeItem]: ...

    async def read_blob(self, sha: str) -> str: ...

    async def write_file(self, path: str, content: str, *, message: str, branch: str) -> None: ...


__all__ = [
    "Address",
    "BackupRepositoryProtocol",
    "LocalStoreProtocol",
    "RemoteStoreProtocol",
    "Unsubscribe",
    "WriteBatchProtocol",
]
