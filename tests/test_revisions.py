# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for RevisionStore

Tests the append-only revision log, its ordering guarantees and the
integrity checks run on load.
"""

import json

import pytest

from installation_manager.exceptions import (
    ConcurrentWriteError,
    EmptyHistoryError,
    NotFoundError,
    StoreCorruptedError,
)
from installation_manager.locking import InstallationLock
from installation_manager.models import RevisionKind
from installation_manager.revisions import RevisionStore


@pytest.fixture
def lock_file(tmp_path):
    return tmp_path / "installation.lock"


@pytest.fixture
def store(tmp_path, lock_file):
    return RevisionStore(tmp_path / "revisions.jsonl", InstallationLock(lock_file))


class TestEmptyStore:
    """Test behaviour before the first record"""

    def test_current_raises_empty_history(self, store):
        """Should raise a NotFoundError subclass when nothing is recorded"""
        with pytest.raises(EmptyHistoryError) as exc_info:
            store.current()
        assert isinstance(exc_info.value, NotFoundError)

    def test_history_is_empty_list(self, store):
        assert store.history() == []
        assert store.is_empty()


class TestAppend:
    """Test appending revisions"""

    def test_first_revision(self, store):
        revision = store.append({"a": "1.0"}, RevisionKind.INSTALL, "initial")

        assert revision.sequence == 1
        assert revision.parent is None
        assert revision.id.startswith("000001-")
        assert store.current() == revision

    def test_chain_links_parents(self, store):
        first = store.append({"a": "1.0"}, RevisionKind.INSTALL)
        second = store.append({"a": "1.1"})

        assert second.parent == first.id
        assert second.sequence == 2
        assert store.get(first.id).artifacts == {"a": "1.0"}

    def test_ids_sort_in_creation_order(self, store):
        ids = [store.append({"a": f"1.{i}"}).id for i in range(12)]
        assert sorted(ids) == ids

    def test_survives_reopen(self, tmp_path, store, lock_file):
        """Should read the same history from a fresh store instance"""
        revision = store.append({"a": "1.0"}, RevisionKind.INSTALL)

        reopened = RevisionStore(tmp_path / "revisions.jsonl", InstallationLock(lock_file))
        assert reopened.current() == revision


class TestHistory:
    """Test history listing"""

    def test_newest_first(self, store):
        ids = [store.append({"a": f"1.{i}"}).id for i in range(3)]

        history = store.history()
        assert [h.id for h in history] == list(reversed(ids))
        assert history[0].timestamp > history[1].timestamp > history[2].timestamp

    def test_limit(self, store):
        for i in range(3):
            store.append({"a": f"1.{i}"})
        assert len(store.history(limit=2)) == 2

    def test_returns_fresh_list(self, store):
        """Should not expose internal state through the returned list"""
        store.append({"a": "1.0"}, RevisionKind.INSTALL)
        history = store.history()
        history.clear()
        assert len(store.history()) == 1

    def test_get_unknown(self, store):
        with pytest.raises(NotFoundError):
            store.get("000042-deadbeefcafe")


class TestIntegrity:
    """Test load-time verification"""

    def test_tampered_record_detected(self, store):
        """Should refuse a log whose record content was edited"""
        store.append({"a": "1.0"}, RevisionKind.INSTALL)
        store.append({"a": "1.1"})

        lines = store.log_file.read_text().splitlines(keepends=True)
        record = json.loads(lines[0])
        record["artifacts"] = {"a": "9.9"}
        lines[0] = json.dumps(record) + "\n"
        store.log_file.write_text("".join(lines))

        with pytest.raises(StoreCorruptedError) as exc_info:
            store.history()
        assert exc_info.value.line == 1

    def test_truncated_record_detected(self, store):
        store.append({"a": "1.0"}, RevisionKind.INSTALL)
        with open(store.log_file, "a") as f:
            f.write('{"id": "000002-')

        with pytest.raises(StoreCorruptedError):
            store.current()

    def test_garbage_detected(self, store):
        store.log_file.write_text("not json\n")
        with pytest.raises(StoreCorruptedError):
            store.history()


class TestCommit:
    """Test the prepare/commit split"""

    def test_prepare_writes_nothing(self, store):
        store.prepare({"a": "1.0"}, RevisionKind.INSTALL)
        assert store.is_empty()

    def test_commit_refuses_stale_parent(self, store):
        """Should refuse a prepared revision once the head has moved"""
        store.append({"a": "1.0"}, RevisionKind.INSTALL)
        stale = store.prepare({"a": "1.1"}, RevisionKind.UPDATE)
        store.append({"a": "1.2"})

        with pytest.raises(ConcurrentWriteError):
            store.commit(stale)
        assert store.current().artifacts == {"a": "1.2"}

    def test_append_refused_while_locked_elsewhere(self, store, lock_file):
        """Should fail fast when another writer holds the installation"""
        other = InstallationLock(lock_file)
        with other:
            with pytest.raises(ConcurrentWriteError):
                store.append({"a": "1.0"}, RevisionKind.INSTALL)
        assert store.is_empty()
