"""
flowsync: real-time sync, migration and Markdown backup for planner state.

Basic usage::

    from flowsync import SyncSession, Identity
    from flowsync.config import load_or_create_config, get_default_store_path

    config = load_or_create_config(get_default_store_path())
    session = SyncSession.from_config(config, Identity("alice"))
    settings = session.document("profile/settings", default={})
"""

from .backup_export import BackupExporter
from .backup_import import BackupImporter
from .collection_cache import CollectionCache
from .document_cache import DocumentCache
from .session import SyncSession
from .types import Identity, SyncResult, SyncStatus

__version__ = "0.1.0"

__all__ = [
    "BackupExporter",
    "BackupImporter",
    "CollectionCache",
    "DocumentCache",
    "Identity",
    "SyncResult",
    "SyncSession",
    "SyncStatus",
]
