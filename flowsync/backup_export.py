"""
Export planner state to the backup repository as one commit.

The pipeline reads everything with one-time reads (never through the
caches), renders it to Markdown files and writes them as a single commit
on the repository's default branch:

    fetching -> formatting -> pushing [-> creating_repo] -> success | error

A missing repository is created (private, auto-initialized). A repository
whose branch has no commits gets one seed README through the contents API,
since the git data API cannot commit to an empty repository. The branch head
is resolved again immediately before the tree is built; if the branch still
moves before the ref update, the update is rejected as a conflict and the
export fails (no retry).
"""

import logging
from typing import Callable, Optional

from .backup_format import BackupData, render_backup
from .errors import (
    FlowSyncError,
    NotAuthenticatedError,
    RepositoryBootstrapError,
    RepositoryError,
    RepositoryNotFoundError,
)
from .paths import collection_address, document_address
from .protocol import BackupRepositoryProtocol, RemoteStoreProtocol
from .types import CommitPlan, ExportFile, Identity, SyncResult, SyncStatus, utc_now

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[SyncStatus, str], None]

# Logical paths read by the export
TASKS_PATH = "tasks/active"
DAILY_NOTES_PATH = "planner/daily"
MONTHLY_PLANS_PATH = "planner/monthly"
YEARLY_PLANS_PATH = "planner/yearly"
JOURNAL_PATH = "userData/dailyJournalData"
FORTIFICATION_PATH = "userData/relapseJournalData"

SEED_PATH = "README.md"
SEED_CONTENT = "# Flow Planner Backup\n\nThis repository contains your Flow Planner data backup.\n"
SEED_MESSAGE = "Initialize repository for Flow Planner sync"


class BackupExporter:
    """Snapshot the remote store and commit it to the backup repository."""

    def __init__(
        self,
        remote: RemoteStoreProtocol,
        repository: BackupRepositoryProtocol,
        *,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self._remote = remote
        self._repository = repository
        self._on_progress = on_progress

    def _progress(self, status: SyncStatus, message: str) -> None:
        logger.info("[%s] %s", status.value, message)
        if self._on_progress is not None:
            self._on_progress(status, message)

    async def run(self, identity: Optional[Identity]) -> SyncResult:
        try:
            if identity is None:
                raise NotAuthenticatedError("User not authenticated")
            self._progress(SyncStatus.FETCHING, "Fetching data from database...")
            data = await self.fetch(identity)

            self._progress(SyncStatus.FORMATTING, "Organizing data...")
            files = render_backup(data)

            self._progress(SyncStatus.PUSHING, "Connecting to the backup repository...")
            commit_sha = await self.push(files)
        except FlowSyncError as e:
            logger.error("Export failed: %s", e)
            return self._fail(str(e))

        message = f"Synced {len(files)} files"
        self._progress(SyncStatus.SUCCESS, message)
        return SyncResult(SyncStatus.SUCCESS, message, commit_sha=commit_sha, files=len(files))

    def _fail(self, message: str) -> SyncResult:
        self._progress(SyncStatus.ERROR, message)
        return SyncResult(SyncStatus.ERROR, message)

    async def fetch(self, identity: Identity) -> BackupData:
        """One-time reads of everything the backup covers."""
        remote = self._remote

        async def by_id(path: str) -> dict[str, dict]:
            snapshots = await remote.get_collection(collection_address(identity, path))
            return {s.id: s.data for s in snapshots if s.data is not None}

        async def document(path: str) -> dict:
            snapshot = await remote.get_document(document_address(identity, path))
            return snapshot.data or {}

        tasks = [
            {"id": s.id, **s.data}
            for s in await remote.get_collection(collection_address(identity, TASKS_PATH))
            if s.data is not None
        ]
        return BackupData(
            tasks=tasks,
            daily_notes=await by_id(DAILY_NOTES_PATH),
            monthly_plans=await by_id(MONTHLY_PLANS_PATH),
            yearly_plans=await by_id(YEARLY_PLANS_PATH),
            journal=await document(JOURNAL_PATH),
            fortification=await document(FORTIFICATION_PATH),
        )

    async def _resolve_branch(self) -> str:
        repository = self._repository
        try:
            return await repository.get_default_branch()
        except RepositoryNotFoundError:
            self._progress(SyncStatus.CREATING_REPO, "Repository not found. Creating it...")
        try:
            return await repository.create_repository(private=True, auto_init=True)
        except RepositoryError as e:
            raise RepositoryBootstrapError(
                f"Could not create repository. Check token permissions (need 'repo' scope). {e}",
                status=e.status,
            ) from e

    async def _bootstrap(self, branch: str) -> None:
        """Give an empty branch its first commit."""
        logger.info("Branch %s has no commits; writing seed %s", branch, SEED_PATH)
        try:
            await self._repository.write_file(
                SEED_PATH, SEED_CONTENT, message=SEED_MESSAGE, branch=branch,
            )
        except RepositoryError as e:
            raise RepositoryBootstrapError(
                f"Cannot initialize empty repository: {e}", status=e.status,
            ) from e

    async def push(self, files: list[ExportFile]) -> str:
        """Commit ``files`` on the default branch; returns the new commit sha."""
        repository = self._repository
        branch = await self._resolve_branch()

        if await repository.get_branch_head(branch) is None:
            await self._bootstrap(branch)

        # Resolve again right before building: the plan is only valid on this head
        head = await repository.get_branch_head(branch)
        base_tree = await repository.get_commit_tree(head) if head else None
        plan = CommitPlan.from_files(
            files,
            parent=head,
            base_tree=base_tree,
            message=f"Sync from Flow Planner: {utc_now()}",
        )

        tree_sha = await repository.create_tree(plan.entries, base_tree=plan.base_tree)
        commit_sha = await repository.create_commit(
            plan.message, tree_sha, [plan.parent] if plan.parent else [],
        )
        if plan.parent:
            await repository.update_branch(branch, commit_sha)
        else:
            await repository.create_branch(branch, commit_sha)
        logger.info("Committed %d files to %s as %s", len(files), branch, commit_sha[:7])
        return commit_sha
