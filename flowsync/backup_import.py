"""
Restore planner state from the backup repository.

Every Markdown file on the default branch is read, dispatched by file name
and parsed with the backup grammar. Parsed fields are merged into the
remote store through bounded batches, committed as they fill. Journal and
fortification entries live in two multi-date documents; their fragments are
collected across all daily files and merged once, in the final batch.

All writes merge, so only fields present in the backup are overwritten.
A failure part-way leaves earlier batches committed.
"""

import hashlib
import logging
import posixpath
from collections import Counter
from typing import Any, Callable, Optional

from .backup_export import (
    DAILY_NOTES_PATH,
    FORTIFICATION_PATH,
    JOURNAL_PATH,
    MONTHLY_PLANS_PATH,
    TASKS_PATH,
    YEARLY_PLANS_PATH,
)
from .backup_format import (
    DAY_FILE_RE,
    MONTH_FILE_RE,
    YEAR_FILE_RE,
    DailyPage,
    month_key,
    parse_daily_page,
    parse_monthly_plan,
    parse_yearly_plan,
)
from .batching import BatchWriter
from .errors import FlowSyncError, NotAuthenticatedError
from .paths import document_address
from .protocol import BackupRepositoryProtocol, RemoteStoreProtocol
from .types import Identity, SyncResult, SyncStatus, now_ms

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[SyncStatus, str], None]


def restored_task_id(date_str: str, name: str) -> str:
    """Stable id for a task line without an id marker."""
    digest = hashlib.sha1(f"{date_str}|{name}".encode("utf-8")).hexdigest()
    return f"restored-{digest[:16]}"


class BackupImporter:
    """Read the backup repository and merge it into the remote store."""

    def __init__(
        self,
        remote: RemoteStoreProtocol,
        repository: BackupRepositoryProtocol,
        *,
        batch_limit: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self._remote = remote
        self._repository = repository
        self._batch_limit = batch_limit
        self._on_progress = on_progress

    def _progress(self, status: SyncStatus, message: str) -> None:
        logger.info("[%s] %s", status.value, message)
        if self._on_progress is not None:
            self._on_progress(status, message)

    async def run(self, identity: Optional[Identity]) -> SyncResult:
        stats: Counter = Counter()
        try:
            if identity is None:
                raise NotAuthenticatedError("User not authenticated")
            self._progress(SyncStatus.PULLING, "Fetching files from GitHub...")
            branch = await self._repository.get_default_branch()
            files = [
                item for item in await self._repository.list_tree(branch, recursive=True)
                if item.type == "blob" and item.path.endswith(".md")
            ]

            self._progress(SyncStatus.RESTORING, f"Restoring {len(files)} files...")
            writer = BatchWriter(self._remote, limit=self._batch_limit)
            journal: dict[str, Any] = {}
            fortification: dict[str, Any] = {}

            for item in files:
                filename = posixpath.basename(item.path)
                kind = self._classify(filename)
                if kind is None:
                    stats["skipped"] += 1
                    continue
                try:
                    content = await self._repository.read_blob(item.sha)
                except UnicodeDecodeError as e:
                    logger.warning("Skipping %s: not UTF-8 text (%s)", item.path, e)
                    stats["skipped"] += 1
                    continue

                if kind == "yearly":
                    year = YEAR_FILE_RE.match(filename).group("year")
                    await self._write(writer, identity, f"{YEARLY_PLANS_PATH}/{year}",
                                      parse_yearly_plan(content))
                    stats["yearly"] += 1
                elif kind == "monthly":
                    m = MONTH_FILE_RE.match(filename)
                    key = month_key(int(m.group("year")), int(m.group("month")))
                    await self._write(writer, identity, f"{MONTHLY_PLANS_PATH}/{key}",
                                      parse_monthly_plan(content))
                    stats["monthly"] += 1
                else:
                    date_str = DAY_FILE_RE.match(filename).group("date")
                    page = parse_daily_page(content)
                    await self._restore_day(writer, identity, date_str, page, stats)
                    if page.journal is not None:
                        journal[date_str] = page.journal
                    if page.fortification is not None:
                        fortification[date_str] = page.fortification
                    stats["daily"] += 1

            # Multi-date documents go last, in the final batch
            if journal:
                await writer.set(document_address(identity, JOURNAL_PATH), journal, merge=True)
                stats["journal"] = len(journal)
            if fortification:
                await writer.set(document_address(identity, FORTIFICATION_PATH), fortification, merge=True)
                stats["fortification"] = len(fortification)
            await writer.flush()
        except FlowSyncError as e:
            logger.error("Import failed: %s", e)
            self._progress(SyncStatus.ERROR, str(e))
            return SyncResult(SyncStatus.ERROR, str(e), stats=dict(stats))

        message = "Restore completed!"
        self._progress(SyncStatus.SUCCESS, message)
        restored = stats["yearly"] + stats["monthly"] + stats["daily"]
        return SyncResult(SyncStatus.SUCCESS, message, files=restored, stats=dict(stats))

    @staticmethod
    def _classify(filename: str) -> Optional[str]:
        if YEAR_FILE_RE.match(filename):
            return "yearly"
        if MONTH_FILE_RE.match(filename):
            return "monthly"
        if DAY_FILE_RE.match(filename):
            return "daily"
        return None

    @staticmethod
    async def _write(writer: BatchWriter, identity: Identity, path: str, data: dict) -> None:
        if not data:
            logger.debug("Nothing to restore for %s", path)
            return
        await writer.set(document_address(identity, path), data, merge=True)

    async def _restore_day(
        self,
        writer: BatchWriter,
        identity: Identity,
        date_str: str,
        page: DailyPage,
        stats: Counter,
    ) -> None:
        for task in page.tasks:
            fields = {k: v for k, v in task.items() if k != "id"}
            fields["date"] = date_str
            task_id = (task.get("id") or "").replace("/", "_")
            if not task_id:
                task_id = restored_task_id(date_str, task["name"])
                fields["createdAt"] = now_ms()
            await writer.set(
                document_address(identity, f"{TASKS_PATH}/{task_id}"), fields, merge=True,
            )
            stats["tasks"] += 1

        if page.note is not None:
            await writer.set(
                document_address(identity, f"{DAILY_NOTES_PATH}/{date_str}"),
                {"content": page.note},
                merge=True,
            )
            stats["notes"] += 1
