# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for StagingCommitter

Tests target validation, candidate fallback, verification and rollback.
"""

import json
import logging
from unittest.mock import patch

import pytest

from installation_manager.exceptions import (
    ConcurrentWriteError,
    InvalidTargetError,
    RepositoryUnavailableError,
)
from installation_manager.logging import JSONFormatter
from installation_manager.models import Channel, Direction, RevisionKind

from conftest import (
    artifact_content,
    file_repo,
    leftovers,
    publish,
    seed_installation,
    sha256_of,
    staged_artifacts,
    write_index,
)


def subscribe(manager, *repositories):
    manager.add_channel(Channel(name="core", repositories=list(repositories)))


class TestValidateTarget:
    """Test target directory checks"""

    def test_new_directory_accepted(self, manager, tmp_path):
        assert manager.committer.validate_target(tmp_path / "new") == (tmp_path / "new").resolve()

    def test_file_refused(self, manager, tmp_path):
        target = tmp_path / "file"
        target.write_text("x")
        with pytest.raises(InvalidTargetError):
            manager.committer.validate_target(target)

    def test_missing_parent_refused(self, manager, tmp_path):
        with pytest.raises(InvalidTargetError):
            manager.committer.validate_target(tmp_path / "missing" / "target")

    def test_root_and_ancestors_refused(self, manager, installation_root):
        for target in (installation_root, installation_root.parent, installation_root / ".."):
            with pytest.raises(InvalidTargetError):
                manager.committer.validate_target(target)


class TestCandidates:
    """Test artifact sources and verification"""

    @pytest.mark.asyncio
    async def test_falls_back_after_checksum_mismatch(self, manager, tmp_path):
        """Should use the next repository when the first copy fails verification"""
        seed_installation(manager, {"A": "1.0"})
        bad = tmp_path / "bad"
        publish(bad, "A", "1.1", content=b"tampered")
        write_index(bad, {"A": {"1.1": {"location": "A/1.1/A-1.1.jar",
                                        "sha256": sha256_of(artifact_content("A", "1.1"))}}})
        good = tmp_path / "good"
        publish(good, "A", "1.1")
        subscribe(manager, file_repo("bad", bad), file_repo("good", good))
        target = tmp_path / "staged"

        await manager.prepare_update(str(target))

        assert (target / "artifacts" / "A" / "A-1.1.jar").read_bytes() == artifact_content("A", "1.1")

    @pytest.mark.asyncio
    async def test_exhausted_candidates_roll_back(self, manager, tmp_path, repo_dir):
        seed_installation(manager, {"A": "1.0"})
        publish(repo_dir, "A", "1.1")
        write_index(repo_dir, {"A": {"1.1": {"location": "A/1.1/A-1.1.jar", "sha256": "0" * 64}}})
        subscribe(manager, file_repo("core-repo", repo_dir))
        target = tmp_path / "staged"

        with pytest.raises(RepositoryUnavailableError) as exc_info:
            await manager.prepare_update(str(target))

        assert exc_info.value.repositories == ["core-repo"]
        assert not target.exists()
        assert leftovers(tmp_path) == []
        assert len(manager.history()) == 1
        assert manager.repository_health()["core-repo"]["failure_count"] == 1

    @pytest.mark.asyncio
    async def test_reuses_installed_copy(self, manager, tmp_path):
        """Should take unchanged artifacts from the running installation"""
        seed_installation(manager, {"A": "1.0", "B": "2.0"})
        repo = tmp_path / "repo-a"
        publish(repo, "A", "1.1")
        publish(repo, "B", "2.0", content=b"repository copy")
        subscribe(manager, file_repo("core-repo", repo))
        target = tmp_path / "staged"

        await manager.prepare_update(str(target))

        assert (target / "artifacts" / "B" / "B-2.0.jar").read_bytes() == artifact_content("B", "2.0")

    @pytest.mark.asyncio
    async def test_signature_checked_for_gpgcheck_repository(self, manager, repo_dir, tmp_path):
        seed_installation(manager, {"A": "1.0"})
        artifact = publish(repo_dir, "A", "1.1")
        artifact.with_name(artifact.name + ".asc").write_text("signature")
        subscribe(manager, file_repo("signed", repo_dir, gpgcheck=True))
        target = tmp_path / "staged"

        with patch("installation_manager.signing.verify_signature", return_value=(True, "")) as verify:
            await manager.prepare_update(str(target))

        signature_path = verify.call_args[0][1]
        assert signature_path.name == "A-1.1.jar.asc"
        assert not (target / "artifacts" / "A" / "A-1.1.jar.asc").exists()
        assert staged_artifacts(target) == {"A": "1.1"}

    @pytest.mark.asyncio
    async def test_missing_signature_rejected(self, manager, repo_dir, tmp_path):
        seed_installation(manager, {"A": "1.0"})
        publish(repo_dir, "A", "1.1")
        subscribe(manager, file_repo("signed", repo_dir, gpgcheck=True))
        target = tmp_path / "staged"

        with pytest.raises(RepositoryUnavailableError):
            await manager.prepare_update(str(target))
        assert not target.exists()


class TestPublish:
    """Test publishing onto existing targets and commit failures"""

    @pytest.mark.asyncio
    async def test_existing_target_replaced(self, manager, repo_dir, tmp_path):
        seed_installation(manager, {"A": "1.0"})
        publish(repo_dir, "A", "1.1")
        subscribe(manager, file_repo("core-repo", repo_dir))
        target = tmp_path / "staged"
        target.mkdir()
        (target / "old.txt").write_text("previous staging")

        await manager.prepare_update(str(target))

        assert not (target / "old.txt").exists()
        assert staged_artifacts(target) == {"A": "1.1"}
        assert leftovers(tmp_path) == []

    @pytest.mark.asyncio
    async def test_commit_failure_restores_target(self, manager, repo_dir, tmp_path, monkeypatch):
        """Should unpublish and restore the previous target when the commit fails"""
        seed_installation(manager, {"A": "1.0"})
        publish(repo_dir, "A", "1.1")
        subscribe(manager, file_repo("core-repo", repo_dir))
        target = tmp_path / "staged"
        target.mkdir()
        (target / "old.txt").write_text("previous staging")

        def refuse(revision):
            raise ConcurrentWriteError("revision history")

        monkeypatch.setattr(manager.revision_store, "commit", refuse)

        with pytest.raises(ConcurrentWriteError):
            await manager.prepare_update(str(target))

        assert (target / "old.txt").read_text() == "previous staging"
        assert not (target / ".installation").exists()
        assert leftovers(tmp_path) == []
        assert len(manager.history()) == 1

    @pytest.mark.asyncio
    async def test_stale_resolution_refused(self, manager, repo_dir, tmp_path):
        """Should refuse a resolution computed before the head moved"""
        seed_installation(manager, {"A": "1.0"})
        publish(repo_dir, "A", "1.1")
        subscribe(manager, file_repo("core-repo", repo_dir))
        resolution = await manager.resolver.plan(Direction.UPDATE)
        manager.revision_store.append({"A": "1.0", "C": "1.0"})
        target = tmp_path / "staged"

        with pytest.raises(ConcurrentWriteError):
            await manager.committer.stage(target, resolution, RevisionKind.UPDATE)

        assert not target.exists()
        assert leftovers(tmp_path) == []


class TestStagingEvents:
    """Test structured commit and rollback events"""

    @pytest.mark.asyncio
    async def test_commit_event(self, manager, repo_dir, tmp_path, caplog):
        seed_installation(manager, {"A": "1.0"})
        publish(repo_dir, "A", "1.1")
        subscribe(manager, file_repo("core-repo", repo_dir))
        target = tmp_path / "staged"

        with caplog.at_level(logging.INFO, logger="installation_manager.staging"):
            new_id = await manager.prepare_update(str(target))

        events = [r for r in caplog.records if r.getMessage() == "revision_staged"]
        assert len(events) == 1
        assert events[0].revision == new_id
        assert events[0].kind == "update"
        assert events[0].target == str(target.resolve())
        assert events[0].changes == 1

    @pytest.mark.asyncio
    async def test_rollback_event(self, manager, repo_dir, tmp_path, caplog):
        seed_installation(manager, {"A": "1.0"})
        publish(repo_dir, "A", "1.1")
        write_index(repo_dir, {"A": {"1.1": {"location": "A/1.1/A-1.1.jar", "sha256": "0" * 64}}})
        subscribe(manager, file_repo("core-repo", repo_dir))
        base = manager.current_revision().id

        with caplog.at_level(logging.INFO, logger="installation_manager.staging"):
            with pytest.raises(RepositoryUnavailableError):
                await manager.prepare_update(str(tmp_path / "staged"))

        events = [r for r in caplog.records if r.getMessage() == "staging_rolled_back"]
        assert len(events) == 1
        assert events[0].levelname == "WARNING"
        assert events[0].base_revision == base
        assert json.loads(JSONFormatter().format(events[0]))["base_revision"] == base
