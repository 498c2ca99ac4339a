"""Tests for the sync session (cache registry and lifecycle)."""

import asyncio

import pytest

from flowsync.config import SyncConfig
from flowsync.paths import document_address
from flowsync.session import SyncSession
from flowsync.types import Identity


async def settle(delay: float = 0.01) -> None:
    await asyncio.sleep(delay)


@pytest.fixture
def session(store, local, identity):
    return SyncSession(store, local, identity, debounce_delay=30)


class TestCaches:
    @pytest.mark.asyncio
    async def test_each_consumer_gets_its_own_cache(self, session):
        a = session.document("profile/settings", {})
        b = session.document("profile/settings", {})
        assert a is not b
        assert session.open_caches == 2
        session.release(a)
        assert session.open_caches == 1
        assert a.closed
        await session.close()

    @pytest.mark.asyncio
    async def test_set_identity_rebinds_open_caches(self, store, local):
        session = SyncSession(store, local, None)
        doc = session.document("profile/settings", {})
        tasks = session.collection("tasks/active")
        who = Identity("bob")
        await store.set_document(document_address(who, "profile/settings"), {"theme": "dark"})

        session.set_identity(who)
        assert doc.identity == who
        assert tasks.identity == who
        await settle()
        assert doc.value == {"theme": "dark"}
        await session.close()


class TestClose:
    @pytest.mark.asyncio
    async def test_close_drains_pending_writes(self, store, session, identity):
        cache = session.document("profile/settings", {})
        await settle()
        cache.write({"theme": "dark"})
        await session.close()
        assert (await store.get_document(document_address(identity, "profile/settings"))).data == {"theme": "dark"}
        assert session.open_caches == 0

    @pytest.mark.asyncio
    async def test_released_cache_still_flushes(self, store, session, identity):
        cache = session.document("planner/daily/2025-01-01", {})
        await settle()
        cache.write({"content": "late"})
        session.release(cache)
        await session.close()
        snap = await store.get_document(document_address(identity, "planner/daily/2025-01-01"))
        assert snap.data == {"content": "late"}


class TestFromConfig:
    @pytest.mark.asyncio
    async def test_opens_local_backend(self, tmp_path):
        config = SyncConfig(path=tmp_path / "store", identity_id="carol", debounce_delay=0.01)
        session = SyncSession.from_config(config)
        assert session.identity == Identity("carol")
        cache = session.document("profile/settings", {})
        await settle()
        cache.write({"x": 1})
        await session.close()
        assert (tmp_path / "store" / "remote.db").exists()
        assert (tmp_path / "store" / "local.db").exists()
