"""
Logical path to physical address resolution.

Application code names state with slash-delimited logical paths such as
``planner/daily/2025-01-01`` or ``tasks/active``. The remote store needs
addresses whose segments alternate container/item: a document address has an
even number of segments, a collection address an odd number. Logical paths
that violate the rule are normalized by joining the leading segments into a
single container name.

Every component that touches the remote store (caches, migration, backup
export/import) resolves through this module so they always agree on where a
logical path lives.
"""

from typing import Optional

from .types import Identity

# All identity-scoped data lives under users/{id}/...
USERS_ROOT = "users"

# Joiner used when folding several logical segments into one container name
CONTAINER_JOINER = "_"

# Local fallback store key prefixes
LOCAL_DOC_PREFIX = "doc:"
LOCAL_COLLECTION_PREFIX = "collection:"


def split_path(path: str) -> list[str]:
    """Split a logical path into its non-empty segments."""
    return [s for s in path.split("/") if s]


def document_segments(path: str) -> tuple[str, ...]:
    """Normalize a logical document path to an even number of segments.

    ``planner/daily/2025-01-01`` -> ``("planner_daily", "2025-01-01")``
    ``profile/settings``         -> ``("profile", "settings")``
    """
    segments = split_path(path)
    if not segments:
        raise ValueError(f"Empty document path: {path!r}")
    if len(segments) % 2 != 0:
        if len(segments) == 1:
            raise ValueError(f"Document path needs a container and an id: {path!r}")
        doc_id = segments.pop()
        return (CONTAINER_JOINER.join(segments), doc_id)
    return tuple(segments)


def collection_segments(path: str) -> tuple[str, ...]:
    """Normalize a logical collection path to an odd number of segments.

    ``tasks/active`` -> ``("tasks_active",)``
    ``daily_reads``  -> ``("daily_reads",)``
    """
    segments = split_path(path)
    if not segments:
        raise ValueError(f"Empty collection path: {path!r}")
    if len(segments) % 2 == 0:
        return (CONTAINER_JOINER.join(segments),)
    return tuple(segments)


def document_address(identity: Identity, path: str) -> tuple[str, ...]:
    """Physical address of a document, scoped under the identity."""
    return (USERS_ROOT, identity.id, *document_segments(path))


def collection_address(identity: Identity, path: str) -> tuple[str, ...]:
    """Physical address of a collection, scoped under the identity."""
    return (USERS_ROOT, identity.id, *collection_segments(path))


def is_valid_item_id(item_id: str) -> bool:
    return bool(item_id) and "/" not in item_id


def item_address(collection: tuple[str, ...], item_id: str) -> tuple[str, ...]:
    """Address of one document inside a collection address."""
    if not is_valid_item_id(item_id):
        raise ValueError(f"Invalid item id: {item_id!r}")
    return (*collection, item_id)


def address_to_str(address: tuple[str, ...]) -> str:
    return "/".join(address)


def parent_collection(address: tuple[str, ...]) -> Optional[tuple[str, ...]]:
    """Collection address containing a document address (None for a bare id)."""
    if len(address) < 2:
        return None
    return address[:-1]


def local_document_key(path: str) -> str:
    """Local fallback key for a document (keyed by logical path, not address)."""
    return LOCAL_DOC_PREFIX + path


def local_collection_key(path: str) -> str:
    """Local fallback key for a collection."""
    return LOCAL_COLLECTION_PREFIX + path
