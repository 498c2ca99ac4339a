"""
One-time migration from the flat legacy layout to the hierarchical layout.

Legacy clients kept each feature's state as a single document under
``users/{id}/userData/{key}``: arrays wrapped as ``{"_isArray": True,
"items": [...]}`` and per-date data as maps keyed by date. The current
layout stores one document per item / date under hierarchical logical paths
(``tasks/active/{id}``, ``planner/daily/{date}``, ...).

Migration runs once per identity, gated by a record at ``profile/migration``.
The record is written as the final operation of the final batch, so it is
only marked complete after every rewritten document has been committed.
A failed run leaves the record incomplete and the next call redoes the
whole migration; all writes merge by stable ids, so re-applying them is safe.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .batching import BatchWriter
from .errors import RemoteStoreError
from .paths import collection_address, document_address
from .protocol import RemoteStoreProtocol
from .types import Identity, MigrationResult, now_ms

logger = logging.getLogger(__name__)

MIGRATION_RECORD_PATH = "profile/migration"
LEGACY_CONTAINER = "userData"

# Record flag written by the previous web client
LEGACY_COMPLETE_FLAG = "v2Complete"


@dataclass(frozen=True)
class PlannedWrite:
    """One document write produced by the key mapping."""
    path: str
    data: dict[str, Any]


def _is_complete(record: Optional[dict[str, Any]]) -> bool:
    if not record:
        return False
    return bool(record.get("completed") or record.get(LEGACY_COMPLETE_FLAG))


def _array_items(data: Any) -> list:
    """Unwrap ``{"_isArray": True, "items": [...]}`` (or a bare list)."""
    if isinstance(data, dict) and data.get("_isArray") and isinstance(data.get("items"), list):
        return data["items"]
    if isinstance(data, list):
        return data
    return []


def _date_entries(data: dict[str, Any]):
    """Date-keyed map entries, skipping ``_``-prefixed bookkeeping keys."""
    for key, value in data.items():
        if not key.startswith("_"):
            yield key, value


def _item_id(item: dict[str, Any], legacy_key: str, index: int) -> str:
    item_id = item.get("id")
    if item_id is None or str(item_id) == "":
        return f"{legacy_key}-{index}"
    return str(item_id).replace("/", "_")


def _per_item(destination: str, *, stamp: bool = False) -> Callable:
    def plan(key: str, data: Any, migrated_at: int) -> list[PlannedWrite]:
        writes = []
        for index, item in enumerate(_array_items(data)):
            if not isinstance(item, dict):
                continue
            fields = dict(item)
            if stamp:
                fields.update(migratedFrom=key, migratedAt=migrated_at)
            writes.append(PlannedWrite(f"{destination}/{_item_id(item, key, index)}", fields))
        return writes
    return plan


def _per_date(destination: str, *, wrap: Optional[str] = None, stamp: bool = False) -> Callable:
    def plan(key: str, data: Any, migrated_at: int) -> list[PlannedWrite]:
        writes = []
        for date_key, value in _date_entries(data if isinstance(data, dict) else {}):
            if wrap:
                fields = {wrap: value}
            elif isinstance(value, dict):
                fields = dict(value)
            else:
                continue
            if stamp:
                fields["migratedAt"] = migrated_at
            writes.append(PlannedWrite(f"{destination}/{date_key}", fields))
        return writes
    return plan


def _singleton(destination: str, *, field: Optional[str] = None) -> Callable:
    def plan(key: str, data: Any, migrated_at: int) -> list[PlannedWrite]:
        if field:
            value = _array_items(data) if isinstance(data, dict) and data.get("_isArray") else data
            return [PlannedWrite(destination, {field: value})]
        if not isinstance(data, dict):
            return []
        return [PlannedWrite(destination, dict(data))]
    return plan


# legacy document id -> planner producing its hierarchical writes
LEGACY_MAPPING: dict[str, Callable] = {
    "allTasks": _per_item("tasks/active", stamp=True),
    "scheduledTasks": _per_item("tasks/active", stamp=True),
    "taskDumpData": _per_item("tasks/dump"),
    "dailyNotes": _per_date("planner/daily", wrap="content", stamp=True),
    "dailyJournalData": _per_date("journal/entries", stamp=True),
    "journalPrompts": _singleton("journal/config/prompts"),
    "weeklyPlannerData": _per_date("planner/weekly"),
    "monthlyPlannerData": _per_date("planner/monthly"),
    "yearlyPlannerData": _per_date("planner/yearly"),
    "routineData": _per_item("routines/list"),
    "pomodoroSettings": _singleton("profile/pomodoroSettings"),
    "pomodoroStats": _singleton("pomodoro/stats/overall"),
    "navConfig": _singleton("profile/settings", field="navConfig"),
}


def plan_migration(
    legacy_docs: dict[str, Any],
    *,
    migrated_at: Optional[int] = None,
) -> list[PlannedWrite]:
    """
    Map legacy flat documents to hierarchical writes.

    Args:
        legacy_docs: legacy document id -> document data
        migrated_at: timestamp stamped on migrated entries (epoch ms)

    Returns:
        Writes in legacy-key order; unknown keys are skipped.
    """
    if migrated_at is None:
        migrated_at = now_ms()
    writes: list[PlannedWrite] = []
    for key, data in legacy_docs.items():
        planner = LEGACY_MAPPING.get(key)
        if planner is None:
            logger.debug("Skipping unrecognized legacy document %r", key)
            continue
        writes.extend(planner(key, data, migrated_at))
    return writes


async def needs_migration(remote: RemoteStoreProtocol, identity: Identity) -> bool:
    """True if the identity's migration record is absent or incomplete. Read only."""
    snapshot = await remote.get_document(document_address(identity, MIGRATION_RECORD_PATH))
    return not _is_complete(snapshot.data)


async def migrate(remote: RemoteStoreProtocol, identity: Identity) -> MigrationResult:
    """
    Rewrite an identity's legacy documents into the hierarchical layout.

    Returns immediately if the migration record is already complete.
    Store failures are reported in the result, never raised; the record
    stays incomplete so the next call retries.
    """
    try:
        if not await needs_migration(remote, identity):
            logger.info("Migration already complete for %s", identity.id)
            return MigrationResult(success=True, already_migrated=True)

        logger.info("Starting data migration for %s", identity.id)
        legacy = await remote.get_collection(collection_address(identity, LEGACY_CONTAINER))
        migrated_at = now_ms()
        writes = plan_migration(
            {snap.id: snap.data for snap in legacy if snap.data is not None},
            migrated_at=migrated_at,
        )

        writer = BatchWriter(remote)
        for write in writes:
            await writer.set(document_address(identity, write.path), write.data, merge=True)
        # Last operation of the last batch
        await writer.set(
            document_address(identity, MIGRATION_RECORD_PATH),
            {"completed": True, "completedAt": migrated_at},
            merge=True,
        )
        await writer.flush()
    except RemoteStoreError as e:
        logger.error("Migration failed for %s: %s", identity.id, e)
        return MigrationResult(success=False, error=str(e))

    logger.info("Migration complete for %s: %d documents in %d batch(es)",
                identity.id, len(writes), writer.commits)
    return MigrationResult(success=True, writes=len(writes))
