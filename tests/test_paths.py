"""Tests for logical path resolution."""

import pytest

from flowsync.paths import (
    collection_address,
    collection_segments,
    document_address,
    document_segments,
    item_address,
    local_collection_key,
    local_document_key,
    parent_collection,
    split_path,
)
from flowsync.types import Identity


class TestSplitPath:
    def test_ignores_empty_segments(self):
        assert split_path("/planner//daily/") == ["planner", "daily"]

    def test_empty(self):
        assert split_path("") == []


class TestDocumentSegments:
    def test_even_path_unchanged(self):
        assert document_segments("profile/settings") == ("profile", "settings")

    def test_odd_path_folds_container(self):
        assert document_segments("planner/daily/2025-01-01") == ("planner_daily", "2025-01-01")

    def test_five_segments(self):
        assert document_segments("a/b/c/d/e") == ("a_b_c_d", "e")

    def test_single_segment_rejected(self):
        with pytest.raises(ValueError):
            document_segments("settings")

    def test_empty_rejected(self):
        with pytest.raises(ValueError):
            document_segments("//")


class TestCollectionSegments:
    def test_even_path_joined(self):
        assert collection_segments("tasks/active") == ("tasks_active",)

    def test_odd_path_unchanged(self):
        assert collection_segments("daily_reads") == ("daily_reads",)
        assert collection_segments("a/b/c") == ("a", "b", "c")

    def test_empty_rejected(self):
        with pytest.raises(ValueError):
            collection_segments("")


class TestAddresses:
    def test_scoped_under_identity(self):
        who = Identity("u1")
        assert document_address(who, "planner/daily/2025-01-01") == (
            "users", "u1", "planner_daily", "2025-01-01",
        )
        assert collection_address(who, "tasks/active") == ("users", "u1", "tasks_active")

    def test_document_is_item_of_collection(self):
        who = Identity("u1")
        coll = collection_address(who, "planner/daily")
        assert item_address(coll, "2025-01-01") == document_address(who, "planner/daily/2025-01-01")
        assert parent_collection(document_address(who, "planner/daily/x")) == coll

    def test_item_id_validated(self):
        with pytest.raises(ValueError):
            item_address(("users",), "a/b")
        with pytest.raises(ValueError):
            item_address(("users",), "")

    def test_identity_validated(self):
        with pytest.raises(ValueError):
            Identity("")
        with pytest.raises(ValueError):
            Identity("a/b")


def test_local_keys():
    assert local_document_key("profile/settings") == "doc:profile/settings"
    assert local_collection_key("tasks/active") == "collection:tasks/active"
