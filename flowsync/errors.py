"""
Error types and error logging for flowsync.

Logs full stack traces for debugging while showing clean messages to users.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class FlowSyncError(Exception):
    """Base class for synchronization errors."""


class NotAuthenticatedError(FlowSyncError):
    """An operation that needs an identity was called without one."""


class RemoteStoreError(FlowSyncError):
    """The remote document store failed a subscribe, read, or write."""


class BatchLimitError(RemoteStoreError):
    """A write batch exceeded the provider's per-batch operation limit."""


class RepositoryError(FlowSyncError):
    """The backup repository API returned an error."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RepositoryNotFoundError(RepositoryError):
    """The backup repository does not exist (or the token cannot see it)."""


class RepositoryBootstrapError(RepositoryError):
    """The repository could not be created or given its first commit."""


class RefConflictError(RepositoryError):
    """The branch moved between head resolution and the ref update."""


def _error_log_path() -> Path:
    """Resolve error log path, respecting FLOWSYNC_STORE_PATH."""
    store = os.environ.get("FLOWSYNC_STORE_PATH")
    if store:
        return Path(store) / "flowsync-errors.log"
    return Path.home() / ".flowsync" / "flowsync-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # Can't write error log; don't crash over it
    return log_path
