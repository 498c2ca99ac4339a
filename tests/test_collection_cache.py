"""Tests for the optimistic collection cache."""

import asyncio
import json
import logging

import pytest

from flowsync.collection_cache import CollectionCache, new_entry_id
from flowsync.paths import collection_address, item_address


async def settle(delay: float = 0.01) -> None:
    await asyncio.sleep(delay)


@pytest.fixture
def make_cache(store, local, identity):
    caches = []

    def make(path="tasks/active", *, who=identity, order_by="createdAt"):
        cache = CollectionCache(path, remote=store, local=local, identity=who, order_by=order_by)
        caches.append(cache)
        return cache

    yield make
    for cache in caches:
        cache.close()


def test_entry_ids_strictly_increase():
    ids = [int(new_entry_id()) for _ in range(50)]
    assert ids == sorted(set(ids))


class TestSubscription:
    @pytest.mark.asyncio
    async def test_items_replaced_on_event(self, store, identity, make_cache):
        coll = collection_address(identity, "tasks/active")
        await store.set_document(item_address(coll, "t1"), {"name": "first", "createdAt": 1})
        cache = make_cache()
        assert cache.loading
        await settle()
        assert cache.items == [{"id": "t1", "name": "first", "createdAt": 1}]

        await store.set_document(item_address(coll, "t0"), {"name": "zero", "createdAt": 0})
        await settle()
        assert [item["id"] for item in cache.items] == ["t0", "t1"]


class TestAdd:
    @pytest.mark.asyncio
    async def test_add_writes_with_created_at(self, store, identity, make_cache):
        cache = make_cache()
        await settle()
        item_id = await cache.add({"name": "Write report"})
        assert item_id is not None
        assert cache.items[-1]["id"] == item_id

        snap = await store.get_document(item_address(collection_address(identity, "tasks/active"), item_id))
        assert snap.data["name"] == "Write report"
        assert isinstance(snap.data["createdAt"], int)

    @pytest.mark.asyncio
    async def test_add_with_explicit_id(self, make_cache):
        cache = make_cache()
        await settle()
        assert await cache.add({"name": "x"}, id="custom") == "custom"

    @pytest.mark.asyncio
    async def test_failed_add_rolls_back(self, store, make_cache):
        cache = make_cache()
        await settle()
        seen = []
        cache.add_listener(lambda c: seen.append([i["id"] for i in c.items]))

        store.fail_writes = True
        result = await cache.add({"name": "doomed"}, id="t9")

        assert result is None
        assert cache.items == []
        # Appeared optimistically, then removed
        assert seen == [["t9"], []]

    @pytest.mark.asyncio
    async def test_invalid_id_is_rejected_before_apply(self, store, make_cache, caplog):
        cache = make_cache()
        await settle()
        seen = []
        cache.add_listener(lambda c: seen.append(list(c.items)))

        with caplog.at_level(logging.ERROR):
            assert await cache.add({"name": "x"}, id="a/b") is None
            await cache.update("a/b", {"name": "y"})
            await cache.remove("a/b")

        assert cache.items == []
        assert seen == []
        assert store.commits == 0
        assert "invalid id 'a/b'" in caplog.text


class TestUpdateRemove:
    @pytest.mark.asyncio
    async def test_update_patches_and_stamps(self, store, identity, make_cache):
        cache = make_cache()
        await settle()
        await cache.add({"name": "task", "completed": False}, id="t1")
        await cache.update("t1", {"completed": True})

        item = next(i for i in cache.items if i["id"] == "t1")
        assert item["completed"] is True
        assert "updatedAt" in item
        snap = await store.get_document(item_address(collection_address(identity, "tasks/active"), "t1"))
        assert snap.data["completed"] is True
        assert snap.data["name"] == "task"

    @pytest.mark.asyncio
    async def test_failed_update_is_not_rolled_back(self, store, make_cache):
        cache = make_cache()
        await settle()
        await cache.add({"name": "task"}, id="t1")
        store.fail_writes = True
        await cache.update("t1", {"name": "renamed"})
        assert cache.items[0]["name"] == "renamed"

    @pytest.mark.asyncio
    async def test_remove(self, store, identity, make_cache):
        cache = make_cache()
        await settle()
        await cache.add({"name": "task"}, id="t1")
        await cache.remove("t1")
        assert cache.items == []
        assert await store.get_collection(collection_address(identity, "tasks/active")) == []


class TestLocalMode:
    @pytest.mark.asyncio
    async def test_mutations_use_local_store(self, store, local, make_cache):
        cache = make_cache(who=None)
        assert not cache.loading
        await cache.add({"name": "offline"}, id="l1")
        await cache.update("l1", {"completed": True})

        saved = json.loads(local.get("collection:tasks/active"))
        assert saved[0]["id"] == "l1"
        assert saved[0]["completed"] is True
        assert store.commits == 0

        await cache.remove("l1")
        assert json.loads(local.get("collection:tasks/active")) == []

        again = make_cache(who=None)
        assert again.items == []

    @pytest.mark.asyncio
    async def test_invalid_id_rejected_without_identity(self, local, make_cache):
        cache = make_cache(who=None)
        assert await cache.add({"name": "x"}, id="a/b") is None
        assert cache.items == []
        assert local.get("collection:tasks/active") is None
