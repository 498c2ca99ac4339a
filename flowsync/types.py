"""
Data types for planner state synchronization.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds.

    Entry timestamps (createdAt, updatedAt, migratedAt) use this format
    so they sort numerically in the remote store.
    """
    return int(time.time() * 1000)


def utc_now() -> str:
    """Current UTC timestamp in canonical format: YYYY-MM-DDTHH:MM:SS."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")


@dataclass(frozen=True)
class Identity:
    """An authenticated account. Absence of a session is ``None``, not an Identity."""
    id: str

    def __post_init__(self):
        if not self.id or "/" in self.id:
            raise ValueError(f"Invalid identity id: {self.id!r}")


@dataclass
class DocumentSnapshot:
    """One document as seen by a read or a subscription event."""
    id: str
    data: Optional[dict[str, Any]]

    @property
    def exists(self) -> bool:
        return self.data is not None


# -----------------------------------------------------------------------------
# Backup pipeline
# -----------------------------------------------------------------------------


class SyncStatus(str, Enum):
    """Progress label reported by the export and import pipelines."""
    FETCHING = "fetching"
    FORMATTING = "formatting"
    PUSHING = "pushing"
    CREATING_REPO = "creating_repo"
    PULLING = "pulling"
    RESTORING = "restoring"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class SyncResult:
    """Outcome of an export or import run.

    ``status`` is SUCCESS or ERROR; ``message`` is the human-readable
    label shown to the user.
    """
    status: SyncStatus
    message: str
    commit_sha: Optional[str] = None
    files: int = 0
    stats: dict[str, int] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == SyncStatus.SUCCESS


@dataclass(frozen=True)
class ExportFile:
    """A rendered backup file, path relative to the repository root."""
    relative_path: str
    content: str


@dataclass(frozen=True)
class TreeEntry:
    """One blob descriptor in a commit plan (git tree entry with inline content)."""
    path: str
    content: str
    mode: str = "100644"
    type: str = "blob"

    def to_dict(self) -> dict[str, str]:
        return {"path": self.path, "mode": self.mode, "type": self.type, "content": self.content}


@dataclass
class CommitPlan:
    """File changes for one backup commit.

    Only valid against ``parent``: if the branch has moved the plan must be
    rebuilt on the new head.
    """
    parent: Optional[str]
    base_tree: Optional[str]
    entries: list[TreeEntry]
    message: str

    @classmethod
    def from_files(
        cls,
        files: list[ExportFile],
        *,
        parent: Optional[str],
        base_tree: Optional[str],
        message: str,
    ) -> "CommitPlan":
        entries = [TreeEntry(path=f.relative_path, content=f.content) for f in files]
        return cls(parent=parent, base_tree=base_tree, entries=entries, message=message)


@dataclass(frozen=True)
class RepoTreeItem:
    """One entry from a recursive repository tree listing."""
    path: str
    type: str
    sha: str


# -----------------------------------------------------------------------------
# Migration
# -----------------------------------------------------------------------------


@dataclass
class MigrationResult:
    success: bool
    already_migrated: bool = False
    writes: int = 0
    error: Optional[str] = None
