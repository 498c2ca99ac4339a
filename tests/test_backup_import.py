"""Tests for the backup import pipeline."""

import pytest

from flowsync.backup_export import BackupExporter
from flowsync.backup_import import BackupImporter, restored_task_id
from flowsync.paths import collection_address, document_address
from flowsync.types import SyncStatus


TASK_FIELDS = ("name", "completed", "priority", "tag", "date")


async def seed_planner(store, identity):
    def doc(path):
        return document_address(identity, path)

    await store.set_document(doc("tasks/active/t1"), {
        "name": "Write report", "completed": True, "priority": "P1", "tag": "work",
        "date": "2025-03-04", "createdAt": 1,
    })
    await store.set_document(doc("tasks/active/t2"), {
        "name": "Call mom", "completed": False, "priority": "P3", "date": "2025-03-05", "createdAt": 2,
    })
    await store.set_document(doc("planner/daily/2025-03-04"), {"content": "Busy day\n# with a hash line"})
    await store.set_document(doc("planner/monthly/2025-3"), {
        "monthlyFocus": "Health",
        "goals": [{"text": "Run", "completed": False}],
        "journal": {"wins": "Consistency"},
        "notes": "n",
    })
    await store.set_document(doc("planner/yearly/2025"), {
        "yearFocus": "Build", "vision": "Calm", "goals": [{"text": "Ship", "completed": True}],
    })
    await store.set_document(doc("userData/dailyJournalData"), {
        "2025-03-04": {"responses": {"gratitude": "tea\nand cake"}, "notes": "dump"},
    })
    await store.set_document(doc("userData/relapseJournalData"), {"2025-03-06": {"rating": 4, "notes": ["a"]}})


async def snapshot(store, identity):
    """Modeled planner state, keyed the way the application reads it."""
    tasks = {
        s.id: {k: s.data.get(k) for k in TASK_FIELDS if s.data.get(k) is not None}
        for s in await store.get_collection(collection_address(identity, "tasks/active"))
    }

    async def by_id(path):
        return {s.id: s.data for s in await store.get_collection(collection_address(identity, path))}

    async def doc(path):
        return (await store.get_document(document_address(identity, path))).data

    return {
        "tasks": tasks,
        "daily": await by_id("planner/daily"),
        "monthly": await by_id("planner/monthly"),
        "yearly": await by_id("planner/yearly"),
        "journal": await doc("userData/dailyJournalData"),
        "fortification": await doc("userData/relapseJournalData"),
    }


class TestRoundTrip:
    @pytest.mark.asyncio
    async def test_export_then_import_restores_state(self, store, make_store, identity, repository):
        await seed_planner(store, identity)
        assert (await BackupExporter(store, repository).run(identity)).ok

        fresh = make_store("fresh.db")
        result = await BackupImporter(fresh, repository).run(identity)

        assert result.ok, result.message
        assert result.stats["daily"] == 3
        assert result.stats["monthly"] == 1
        assert result.stats["yearly"] == 1
        assert await snapshot(fresh, identity) == await snapshot(store, identity)

    @pytest.mark.asyncio
    async def test_import_merges_into_existing_fields(self, store, identity, repository):
        await seed_planner(store, identity)
        assert (await BackupExporter(store, repository).run(identity)).ok
        address = document_address(identity, "planner/monthly/2025-3")
        await store.set_document(address, {"monthlyFocus": "Changed", "extra": "kept"}, merge=True)

        assert (await BackupImporter(store, repository).run(identity)).ok

        data = (await store.get_document(address)).data
        assert data["monthlyFocus"] == "Health"
        assert data["extra"] == "kept"


class TestDispatch:
    @pytest.mark.asyncio
    async def test_only_known_markdown_files(self, store, identity, repository):
        repository.commit_files({
            "2025/03-March/2025-03-04.md": "# 2025-03-04\n\n## 🗒️ Notes Panel\nhello\n",
            "2025/03-March/notes.md": "# not a planner file\n",
            "2025/03-March/2025-03-04.txt": "ignored",
        })
        statuses = []
        result = await BackupImporter(
            store, repository, on_progress=lambda s, m: statuses.append(s),
        ).run(identity)

        assert result.ok
        assert statuses == [SyncStatus.PULLING, SyncStatus.RESTORING, SyncStatus.SUCCESS]
        # README.md and notes.md are markdown but not planner files
        assert result.stats["skipped"] == 2
        note = await store.get_document(document_address(identity, "planner/daily/2025-03-04"))
        assert note.data == {"content": "hello"}

    @pytest.mark.asyncio
    async def test_monthly_file_restores_application_key(self, store, identity, repository):
        repository.commit_files({"2025/05-May/2025-05-Overview.md": "# Plan for 2025-05\n\n## 📝 Notes\nmay\n"})
        assert (await BackupImporter(store, repository).run(identity)).ok
        snap = await store.get_document(document_address(identity, "planner/monthly/2025-5"))
        assert snap.data == {"notes": "may"}

    @pytest.mark.asyncio
    async def test_tasks_without_marker_get_stable_ids(self, store, identity, repository):
        repository.commit_files({
            "2025/01-January/2025-01-02.md": "# 2025-01-02\n\n## ✅ Tasks\n### P2\n- [ ] Plain task\n",
        })
        importer = BackupImporter(store, repository)
        assert (await importer.run(identity)).ok
        assert (await importer.run(identity)).ok

        tasks = await store.get_collection(collection_address(identity, "tasks/active"))
        assert [t.id for t in tasks] == [restored_task_id("2025-01-02", "Plain task")]
        assert tasks[0].data["priority"] == "P2"
        assert tasks[0].data["date"] == "2025-01-02"

    @pytest.mark.asyncio
    async def test_requires_identity(self, store, repository):
        result = await BackupImporter(store, repository).run(None)
        assert result.status == SyncStatus.ERROR
        assert result.message == "User not authenticated"


class TestBatching:
    @pytest.mark.asyncio
    async def test_many_items_span_several_batches(self, make_store, identity, repository):
        files = {}
        for day in range(1, 11):
            date = f"2025-01-{day:02d}"
            lines = "\n".join(f"- [ ] Task {day}-{n} <!-- id:d{day}n{n} -->" for n in range(3))
            files[f"2025/01-January/{date}.md"] = (
                f"# {date}\n\n## 📔 Daily Journal\n> **mood**: ok {day}\n\n## ✅ Tasks\n### P1\n{lines}\n"
            )
        repository.commit_files(files)
        small = make_store("small.db", batch_limit=7)

        result = await BackupImporter(small, repository).run(identity)

        assert result.ok, result.message
        assert small.commits > 1
        assert all(len(batch) <= 7 for batch in small.writes)
        tasks = await small.get_collection(collection_address(identity, "tasks/active"))
        assert len(tasks) == 30
        journal = (await small.get_document(document_address(identity, "userData/dailyJournalData"))).data
        assert len(journal) == 10
        assert journal["2025-01-10"] == {"responses": {"mood": "ok 10"}}
        # Multi-date documents are written in the final batch
        assert small.writes[-1][-1][1] == document_address(identity, "userData/dailyJournalData")

    @pytest.mark.asyncio
    async def test_failure_keeps_earlier_batches(self, make_store, identity, repository):
        files = {
            f"2025/01-January/2025-01-{d:02d}.md": f"# 2025-01-{d:02d}\n\n## 🗒️ Notes Panel\nday {d}\n"
            for d in range(1, 7)
        }
        repository.commit_files(files)
        small = make_store("small.db", batch_limit=2)
        small.fail_after_commits = 1

        result = await BackupImporter(small, repository, batch_limit=2).run(identity)

        assert result.status == SyncStatus.ERROR
        restored = await small.get_collection(collection_address(identity, "planner/daily"))
        assert len(restored) == 2
